# -*- coding: utf-8 -*-
"""
    db.py: the storage used by the handlers

    DB is the storage interface consumed by the operation pipeline, Tx is a DB bound to a
    transaction. SQLAlchemyDB implements both on top of a SQLAlchemy session:
    - reads are ORM selects: the fieldset columns are loaded with load_only, the included relations
      with selectinload
    - writes are core insert/update/delete statements on the mapped tables
    - outside a transaction every write is committed, inside a transaction writes are only
      committed by Tx.commit()

    Every call checks the operation context first, a cancelled or expired context fails fast.
"""
#
# pylint: disable=logging-format-interpolation,line-too-long
import abc
import enum
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from sqlalchemy import and_, delete, func, insert, select, update
from sqlalchemy.orm import load_only, selectinload

import jsonapi_pipeline
from .context import OperationContext
from .errors import GenericError, InternalError, InvalidQueryParameter, NoResultError
from .mapping import ModelStruct, RelationKind, StructField
from .query import FieldSet, FilterField, IncludedRelation, Operator, Scope


class TxState(enum.Enum):
    BEGUN = "begun"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"

    @property
    def done(self) -> bool:
        return self is not TxState.BEGUN


@dataclass(frozen=True)
class TxOptions:
    isolation_level: Optional[str] = None


class DB(abc.ABC):
    """
    Storage capabilities used by the default handler
    """

    @abc.abstractmethod
    def get(self, ctx: OperationContext, scope: Scope) -> Any:
        """
        :return: the single model matching the scope filters
        :raise NoResultError: nothing matches
        """

    @abc.abstractmethod
    def find(self, ctx: OperationContext, scope: Scope) -> List[Any]:
        """
        :return: the models matching the scope filters, sorting and pagination
        """

    @abc.abstractmethod
    def count(self, ctx: OperationContext, scope: Scope) -> int:
        """
        :return: number of models matching the scope filters, the pagination is ignored
        """

    @abc.abstractmethod
    def insert(self, ctx: OperationContext, model_struct: ModelStruct, model: Any, field_set: FieldSet) -> None:
        """Insert the fieldset values of the model, a generated primary key is set on the model"""

    @abc.abstractmethod
    def update(self, ctx: OperationContext, model_struct: ModelStruct, model: Any, field_set: FieldSet) -> int:
        """
        :return: number of updated rows
        """

    @abc.abstractmethod
    def delete(self, ctx: OperationContext, scope: Scope) -> int:
        """
        :return: number of deleted rows
        """

    @abc.abstractmethod
    def add_relations(self, ctx: OperationContext, model: Any, relation: StructField, related: Sequence[Any]) -> None:
        """Add the related models to the relation of the model"""

    @abc.abstractmethod
    def set_relations(self, ctx: OperationContext, model: Any, relation: StructField, related: Sequence[Any]) -> None:
        """Replace the members of the relation with the related models"""

    @abc.abstractmethod
    def clear_relations(self, ctx: OperationContext, model: Any, relation: StructField) -> int:
        """
        :return: number of removed relation members
        """

    @abc.abstractmethod
    def refresh(self, ctx: OperationContext, scope: Scope) -> List[Any]:
        """Re-fetch the scope fieldset and includes for the already identified scope models
        :return: the refreshed models matching the scope filters, in the order of scope.models
            unless the scope is sorted
        """

    @abc.abstractmethod
    def begin(self, ctx: OperationContext, options: Optional[TxOptions] = None) -> "Tx":
        """Begin a transaction"""


class Tx(DB):
    """
    DB bound to a transaction
    """

    @property
    @abc.abstractmethod
    def state(self) -> TxState:
        pass

    @abc.abstractmethod
    def commit(self) -> None:
        pass

    @abc.abstractmethod
    def rollback(self) -> None:
        pass


def _filter_expression(filter_field: FilterField):
    column = filter_field.struct_field.column
    values = filter_field.values
    operator = filter_field.operator
    if operator is Operator.IS_NULL:
        return column.is_(None)
    if operator is Operator.NOT_NULL:
        return column.is_not(None)
    if operator is Operator.IN:
        return column.in_(values)
    if operator is Operator.NOT_IN:
        return column.not_in(values)
    if not values:
        raise InvalidQueryParameter(f"no value provided for the '{filter_field.struct_field.name}' filter")
    if len(values) > 1:
        # several values for a single valued operator: any of them matches
        return column.in_(values) if operator is Operator.EQUAL else and_(*[_single_value_expression(column, operator, value) for value in values])
    return _single_value_expression(column, operator, values[0])


def _single_value_expression(column, operator: Operator, value: Any):
    if operator is Operator.EQUAL:
        return column == value
    if operator is Operator.NOT_EQUAL:
        return column != value
    if operator is Operator.GREATER_THAN:
        return column > value
    if operator is Operator.GREATER_EQUAL:
        return column >= value
    if operator is Operator.LESS_THAN:
        return column < value
    if operator is Operator.LESS_EQUAL:
        return column <= value
    if operator is Operator.CONTAINS:
        return column.contains(value, autoescape=True)
    if operator is Operator.STARTS_WITH:
        return column.startswith(value, autoescape=True)
    if operator is Operator.ENDS_WITH:
        return column.endswith(value, autoescape=True)
    raise InvalidQueryParameter(f"unsupported filter operator: '{operator.value}'")


class SQLAlchemyDB(DB):
    """
    DB implementation on top of a SQLAlchemy (scoped) session
    """

    def __init__(self, session) -> None:
        self.session = session

    def _written(self) -> None:
        self.session.commit()

    def _execute(self, ctx: OperationContext, statement):
        ctx.check()
        try:
            return self.session.execute(statement)
        except Exception:
            # leave the session usable for the next request
            if not isinstance(self, Tx):
                self.session.rollback()
            raise

    # Reads
    def _load_options(self, model_struct: ModelStruct, field_set: FieldSet, includes: Sequence[IncludedRelation]) -> list:
        model_class = model_struct.model_class
        columns = [field for field in field_set if field.column is not None]
        if columns:
            for included in includes:
                foreign_key = included.struct_field.relationship.foreign_key
                if foreign_key is not None and foreign_key not in columns:
                    # the belongs-to relation is loaded from its foreign key value
                    columns.append(foreign_key)
            if model_struct.primary not in columns:
                columns.insert(0, model_struct.primary)
        options = [load_only(*[getattr(model_class, field.attr_name) for field in columns])] if columns else []
        for included in includes:
            loader = selectinload(getattr(model_class, included.struct_field.attr_name))
            nested = self._load_options(included.related_struct, included.field_set, included.included_relations)
            if nested:
                loader = loader.options(*nested)
            options.append(loader)
        return options

    def _select(self, scope: Scope):
        model_struct = scope.model_struct
        statement = select(model_struct.model_class).execution_options(populate_existing=True)
        statement = statement.options(*self._load_options(model_struct, scope.field_set, scope.included_relations))
        for filter_field in scope.filters:
            statement = statement.where(_filter_expression(filter_field))
        return statement

    def _order(self, statement, scope: Scope):
        for sort_field in scope.sorting_order:
            column = sort_field.struct_field.column
            statement = statement.order_by(column.desc() if sort_field.descending else column.asc())
        if scope.pagination is not None:
            # offset/limit need a deterministic order
            statement = statement.order_by(scope.model_struct.primary.column.asc())
            if scope.pagination.offset:
                statement = statement.offset(scope.pagination.offset)
            if scope.pagination.limit:
                statement = statement.limit(scope.pagination.limit)
        return statement

    def get(self, ctx: OperationContext, scope: Scope) -> Any:
        result = self._execute(ctx, self._select(scope)).scalars().first()
        if result is None:
            raise NoResultError(f"no '{scope.model_struct.collection}' found")
        return result

    def find(self, ctx: OperationContext, scope: Scope) -> List[Any]:
        statement = self._order(self._select(scope), scope)
        return list(self._execute(ctx, statement).scalars().all())

    def count(self, ctx: OperationContext, scope: Scope) -> int:
        model_struct = scope.model_struct
        statement = select(func.count()).select_from(model_struct.table)
        for filter_field in scope.filters:
            statement = statement.where(_filter_expression(filter_field))
        return int(self._execute(ctx, statement).scalar_one())

    def refresh(self, ctx: OperationContext, scope: Scope) -> List[Any]:
        model_struct = scope.model_struct
        if not scope.models:
            return []
        primary_keys = [model_struct.primary_value(model) for model in scope.models]
        statement = self._order(self._select(scope).where(model_struct.primary.column.in_(primary_keys)), scope)
        refreshed = list(self._execute(ctx, statement).scalars().all())
        if scope.sorting_order:
            return refreshed
        position = {key: index for index, key in enumerate(primary_keys)}
        return sorted(refreshed, key=lambda model: position.get(model_struct.primary_value(model), len(position)))

    # Writes
    def insert(self, ctx: OperationContext, model_struct: ModelStruct, model: Any, field_set: FieldSet) -> None:
        values = {field.column: model_struct.get_field_value(model, field) for field in field_set if field.column is not None}
        result = self._execute(ctx, insert(model_struct.table).values(values))
        if model_struct.is_primary_zero(model) and result.inserted_primary_key:
            model_struct.set_primary_value(model, result.inserted_primary_key[0])
        jsonapi_pipeline.log.debug(f"Inserted {model_struct.collection} {model_struct.primary_string(model)}")
        self._written()

    def update(self, ctx: OperationContext, model_struct: ModelStruct, model: Any, field_set: FieldSet) -> int:
        primary = model_struct.primary
        values = {field.column: model_struct.get_field_value(model, field) for field in field_set if field.column is not None and field is not primary}
        primary_value = model_struct.primary_value(model)
        if not values:
            statement = select(func.count()).select_from(model_struct.table).where(primary.column == primary_value)
            return int(self._execute(ctx, statement).scalar_one())
        statement = update(model_struct.table).where(primary.column == primary_value).values(values)
        result = self._execute(ctx, statement)
        self._written()
        return result.rowcount

    def delete(self, ctx: OperationContext, scope: Scope) -> int:
        statement = delete(scope.model_struct.table)
        if not scope.filters:
            raise InternalError(f"refusing to delete all '{scope.model_struct.collection}' without filters")
        for filter_field in scope.filters:
            statement = statement.where(_filter_expression(filter_field))
        result = self._execute(ctx, statement)
        self._written()
        return result.rowcount

    def _related_keys(self, relation: StructField, related: Sequence[Any]) -> list:
        related_struct = relation.relationship.related_struct
        return [related_struct.primary_value(model) for model in related if model is not None]

    def _write_relations(self, ctx: OperationContext, model: Any, relation: StructField, related: Sequence[Any], replace: bool) -> None:
        model_struct = relation.model_struct
        relationship = relation.relationship
        related_struct = relationship.related_struct
        root_key = model_struct.primary_value(model)
        keys = self._related_keys(relation, related)

        if relationship.kind is RelationKind.BELONGS_TO:
            if len(keys) > 1:
                raise InternalError(f"to-one relation '{relation.name}' can't hold {len(keys)} models")
            value = keys[0] if keys else None
            statement = update(model_struct.table).where(model_struct.primary.column == root_key).values({relationship.foreign_key_column: value})
            self._execute(ctx, statement)
        elif relationship.is_many_to_many:
            join_table = relationship.join_table
            if replace:
                self._execute(ctx, delete(join_table).where(relationship.join_local == root_key))
                existing = set()
            else:
                statement = select(relationship.join_remote).where(relationship.join_local == root_key)
                existing = set(self._execute(ctx, statement).scalars().all())
            rows = [{relationship.join_local.key: root_key, relationship.join_remote.key: key} for key in dict.fromkeys(keys) if key not in existing]
            if rows:
                ctx.check()
                self.session.execute(insert(join_table), rows)
        else:
            foreign_key = relationship.foreign_key_column
            primary = related_struct.primary.column
            if replace or relationship.kind is RelationKind.HAS_ONE:
                statement = update(related_struct.table).where(foreign_key == root_key)
                if keys:
                    statement = statement.where(primary.not_in(keys))
                self._execute(ctx, statement.values({foreign_key: None}))
            if keys:
                statement = update(related_struct.table).where(primary.in_(keys)).values({foreign_key: root_key})
                self._execute(ctx, statement)
        self._written()

    def add_relations(self, ctx: OperationContext, model: Any, relation: StructField, related: Sequence[Any]) -> None:
        self._write_relations(ctx, model, relation, related, replace=False)

    def set_relations(self, ctx: OperationContext, model: Any, relation: StructField, related: Sequence[Any]) -> None:
        self._write_relations(ctx, model, relation, related, replace=True)

    def clear_relations(self, ctx: OperationContext, model: Any, relation: StructField) -> int:
        model_struct = relation.model_struct
        relationship = relation.relationship
        root_key = model_struct.primary_value(model)
        if relationship.kind is RelationKind.BELONGS_TO:
            statement = (
                update(model_struct.table)
                .where(model_struct.primary.column == root_key)
                .where(relationship.foreign_key_column.is_not(None))
                .values({relationship.foreign_key_column: None})
            )
        elif relationship.is_many_to_many:
            statement = delete(relationship.join_table).where(relationship.join_local == root_key)
        else:
            foreign_key = relationship.foreign_key_column
            statement = update(relationship.related_struct.table).where(foreign_key == root_key).values({foreign_key: None})
        result = self._execute(ctx, statement)
        self._written()
        return result.rowcount

    def begin(self, ctx: OperationContext, options: Optional[TxOptions] = None) -> "SQLAlchemyTx":
        ctx.check()
        return SQLAlchemyTx(self.session, options)


class SQLAlchemyTx(SQLAlchemyDB, Tx):
    """
    Transaction on the session: the writes are flushed but only committed by commit()
    """

    def __init__(self, session, options: Optional[TxOptions] = None) -> None:
        super().__init__(session)
        self._state = TxState.BEGUN
        if options is not None and options.isolation_level:
            if session.in_transaction():
                jsonapi_pipeline.log.warning(f"Session already in a transaction, isolation level {options.isolation_level} not applied")
            else:
                session.connection(execution_options={"isolation_level": options.isolation_level})

    @property
    def state(self) -> TxState:
        return self._state

    def _written(self) -> None:
        if self._state.done:
            raise InternalError(f"transaction already {self._state.value}")
        self.session.flush()

    def _execute(self, ctx: OperationContext, statement):
        if self._state.done:
            raise InternalError(f"transaction already {self._state.value}")
        return super()._execute(ctx, statement)

    def begin(self, ctx: OperationContext, options: Optional[TxOptions] = None) -> "SQLAlchemyTx":
        # no nested transactions: the running transaction is reused
        ctx.check()
        return self

    def commit(self) -> None:
        if self._state.done:
            raise InternalError(f"transaction already {self._state.value}")
        try:
            self.session.commit()
        except Exception as exc:
            self.rollback()
            raise GenericError(f"Committing transaction failed: {exc}") from exc
        self._state = TxState.COMMITTED

    def rollback(self) -> None:
        if self._state.done:
            return
        self._state = TxState.ROLLED_BACK
        self.session.rollback()
