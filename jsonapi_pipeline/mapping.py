"""Model descriptors derived from SQLAlchemy mapped classes.

A :class:`ModelStruct` describes a json:api resource type: the primary key, the attributes,
the foreign keys and the relations. The structs are created once by
:meth:`ModelRegistry.from_models` and are read-only afterwards, the registry is the only
state shared by concurrent operations.
"""

from __future__ import annotations

import enum
import uuid
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import inspect as sqla_inspect
from sqlalchemy.orm.interfaces import MANYTOMANY, MANYTOONE, ONETOMANY

import jsonapi_pipeline
from .errors import ServerOptionsError


class FieldKind(enum.Enum):
    PRIMARY = "primary"
    ATTRIBUTE = "attribute"
    FOREIGN_KEY = "foreign_key"
    RELATIONSHIP_SINGLE = "relationship_single"
    RELATIONSHIP_MULTIPLE = "relationship_multiple"


class RelationKind(enum.Enum):
    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"


class StructField:
    """
    A field of a model struct. Fields are compared by identity, a FieldSet "contains"
    a field only if it holds this very instance.
    """

    def __init__(self, model_struct: "ModelStruct", name: str, attr_name: str, kind: FieldKind, column=None) -> None:
        """
        :param model_struct: owner struct
        :param name: json:api name of the field
        :param attr_name: name of the mapped class attribute
        :param kind: field kind
        :param column: sqlalchemy column, None for relations
        """
        self.model_struct = model_struct
        self.name = name
        self.attr_name = attr_name
        self.kind = kind
        self.column = column
        self.relationship: Optional[Relationship] = None

    def __repr__(self) -> str:
        return f"<StructField {self.model_struct.collection}.{self.name} ({self.kind.value})>"

    @property
    def is_relation(self) -> bool:
        return self.kind in (FieldKind.RELATIONSHIP_SINGLE, FieldKind.RELATIONSHIP_MULTIPLE)

    @property
    def is_to_many(self) -> bool:
        return self.kind is FieldKind.RELATIONSHIP_MULTIPLE

    @property
    def python_type(self) -> type:
        try:
            return self.column.type.python_type
        except (AttributeError, NotImplementedError):
            return str

    def parse(self, value: Any) -> Any:
        """Convert a (string) value to the python type of the column
        :raise ValueError: the value can't be converted
        """
        python_type = self.python_type
        if value is None or isinstance(value, python_type):
            return value
        if python_type is bool:
            if isinstance(value, str):
                if value.lower() in ("true", "1"):
                    return True
                if value.lower() in ("false", "0"):
                    return False
                raise ValueError(f"invalid boolean value: '{value}'")
            return bool(value)
        if python_type is uuid.UUID:
            return uuid.UUID(str(value))
        if python_type in (int, float, str):
            return python_type(value)
        return value


class Relationship:
    """
    Relation between the owner struct of a relation field and its related struct

    foreign_key: the struct field holding the related primary key, only set for belongs-to relations
    foreign_key_column: the column holding the foreign key, on the owner table for belongs-to
        relations and on the related table for has-one/has-many relations
    join_table, join_local, join_remote: association table and its columns for many-to-many relations
    """

    def __init__(self, kind: RelationKind, related_struct: "ModelStruct", prop) -> None:
        self.kind = kind
        self.related_struct = related_struct
        self.property = prop
        self.foreign_key: Optional[StructField] = None
        self.foreign_key_column = None
        self.join_table = None
        self.join_local = None
        self.join_remote = None

    @property
    def is_to_many(self) -> bool:
        return self.kind is RelationKind.HAS_MANY

    @property
    def is_many_to_many(self) -> bool:
        return self.join_table is not None


class ModelStruct:
    """
    Immutable description of a mapped class exposed as a json:api resource type
    """

    def __init__(self, model_class: type) -> None:
        mapper = sqla_inspect(model_class)
        self.model_class = model_class
        self.mapper = mapper
        self.table = mapper.local_table
        self.collection: str = getattr(model_class, "__jsonapi_type__", None) or mapper.local_table.name
        self.allow_client_id: bool = bool(getattr(model_class, "allow_client_generated_ids", False))

        if len(mapper.primary_key) != 1:
            raise ServerOptionsError(f"model: '{model_class.__name__}' must have a single column primary key")
        pk_column = mapper.primary_key[0]
        pk_prop = mapper.get_property_by_column(pk_column)
        self.primary = StructField(self, "id", pk_prop.key, FieldKind.PRIMARY, pk_column)

        self._fk_columns = {pair[1] for rel in mapper.relationships if rel.direction == MANYTOONE for pair in rel.synchronize_pairs}
        attributes = []
        foreign_keys = []
        for prop in mapper.column_attrs:
            column = prop.columns[0]
            if column is pk_column or prop.key.startswith("_"):
                continue
            if column in self._fk_columns:
                foreign_keys.append(StructField(self, prop.key, prop.key, FieldKind.FOREIGN_KEY, column))
            else:
                attributes.append(StructField(self, prop.key, prop.key, FieldKind.ATTRIBUTE, column))
        self.attributes: Tuple[StructField, ...] = tuple(attributes)
        self.foreign_keys: Tuple[StructField, ...] = tuple(foreign_keys)
        self.relation_fields: Tuple[StructField, ...] = ()
        self._by_name: Mapping[str, StructField] = MappingProxyType({})

    def __repr__(self) -> str:
        return f"<ModelStruct {self.collection}>"

    def _set_relations(self, registry: Mapping[type, "ModelStruct"]) -> None:
        """Second construction step, relations can only be resolved once all structs exist"""
        relations = []
        for prop in self.mapper.relationships:
            if prop.key.startswith("_"):
                continue
            related_struct = registry.get(prop.mapper.class_)
            if related_struct is None:
                jsonapi_pipeline.log.debug(f"Not exposing relation {self.collection}.{prop.key}: {prop.mapper.class_.__name__} is not registered")
                continue
            if prop.direction == MANYTOONE:
                kind = RelationKind.BELONGS_TO
            elif prop.direction == ONETOMANY and not prop.uselist:
                kind = RelationKind.HAS_ONE
            else:
                kind = RelationKind.HAS_MANY
            field_kind = FieldKind.RELATIONSHIP_MULTIPLE if kind is RelationKind.HAS_MANY else FieldKind.RELATIONSHIP_SINGLE
            field = StructField(self, prop.key, prop.key, field_kind)
            relationship = Relationship(kind, related_struct, prop)
            if prop.direction == MANYTOMANY:
                relationship.join_table = prop.secondary
                relationship.join_local = prop.synchronize_pairs[0][1]
                relationship.join_remote = prop.secondary_synchronize_pairs[0][1]
            else:
                relationship.foreign_key_column = prop.synchronize_pairs[0][1]
            if kind is RelationKind.BELONGS_TO:
                relationship.foreign_key = next((fk for fk in self.foreign_keys if fk.column is relationship.foreign_key_column), None)
            field.relationship = relationship
            relations.append(field)
        self.relation_fields = tuple(relations)

        by_name: Dict[str, StructField] = {self.primary.name: self.primary}
        for field in self.attributes + self.relation_fields:
            if field.name in by_name:
                raise ServerOptionsError(f"model: '{self.model_class.__name__}' has a duplicated field name: '{field.name}'")
            by_name[field.name] = field
        self._by_name = MappingProxyType(by_name)

    def field_by_name(self, name: str) -> Optional[StructField]:
        return self._by_name.get(name)

    def attribute_by_name(self, name: str) -> Optional[StructField]:
        field = self._by_name.get(name)
        return field if field is not None and field.kind is FieldKind.ATTRIBUTE else None

    def relation_by_name(self, name: str) -> Optional[StructField]:
        field = self._by_name.get(name)
        return field if field is not None and field.is_relation else None

    # model instance helpers
    def new_model(self) -> Any:
        return self.model_class()

    def get_field_value(self, model: Any, field: StructField) -> Any:
        return getattr(model, field.attr_name, None)

    def set_field_value(self, model: Any, field: StructField, value: Any) -> None:
        setattr(model, field.attr_name, value)

    def primary_value(self, model: Any) -> Any:
        return getattr(model, self.primary.attr_name, None)

    def set_primary_value(self, model: Any, value: Any) -> None:
        setattr(model, self.primary.attr_name, value)

    def parse_primary(self, value: str) -> Any:
        """
        :param value: string representation of the primary key, f.i. an url parameter
        :raise ValueError: the value can't be converted to the primary key type
        """
        return self.primary.parse(value)

    def is_primary_zero(self, model: Any) -> bool:
        return is_zero(self.primary_value(model))

    def primary_string(self, model: Any) -> str:
        value = self.primary_value(model)
        return "" if value is None else str(value)

    def relation_models(self, model: Any, relation: StructField) -> List[Any]:
        """
        :return: the related models of a relation field as a list, with at most one item for to-one relations
        """
        value = getattr(model, relation.attr_name, None)
        if relation.is_to_many:
            return [item for item in (value or []) if item is not None]
        return [] if value is None else [value]

    def set_relation_models(self, model: Any, relation: StructField, models: Sequence[Any]) -> None:
        if relation.is_to_many:
            setattr(model, relation.attr_name, list(models))
        else:
            setattr(model, relation.attr_name, models[0] if models else None)


def is_zero(value: Any) -> bool:
    if value is None or value == "" or value == 0:
        return True
    return isinstance(value, uuid.UUID) and value.int == 0


class ModelRegistry(Mapping):
    """
    Immutable mapping: model class => ModelStruct
    """

    def __init__(self, structs: Mapping[type, ModelStruct]) -> None:
        self._structs = MappingProxyType(dict(structs))
        self._collections = MappingProxyType({struct.collection: struct for struct in self._structs.values()})

    @classmethod
    def from_models(cls, *models: type) -> "ModelRegistry":
        """
        :param models: SQLAlchemy mapped classes
        :raise ServerOptionsError: a model can't be exposed
        """
        structs: Dict[type, ModelStruct] = {}
        for model in models:
            if model in structs:
                continue
            structs[model] = ModelStruct(model)
        collections: Dict[str, ModelStruct] = {}
        for struct in structs.values():
            if struct.collection in collections:
                raise ServerOptionsError(f"duplicated json:api collection: '{struct.collection}'")
            collections[struct.collection] = struct
        for struct in structs.values():
            struct._set_relations(structs)
        return cls(structs)

    def __getitem__(self, model: type) -> ModelStruct:
        return self._structs[model]

    def __iter__(self) -> Iterator[type]:
        return iter(self._structs)

    def __len__(self) -> int:
        return len(self._structs)

    def by_collection(self, collection: str) -> Optional[ModelStruct]:
        return self._collections.get(collection)

    def model_struct(self, model: Any) -> ModelStruct:
        """
        :param model: mapped class, mapped instance or ModelStruct
        :raise ServerOptionsError: the model isn't registered
        """
        if isinstance(model, ModelStruct):
            return model
        model_class = model if isinstance(model, type) else type(model)
        try:
            return self._structs[model_class]
        except KeyError:
            raise ServerOptionsError(f"model: '{model_class.__name__}' is not registered in the json:api") from None
