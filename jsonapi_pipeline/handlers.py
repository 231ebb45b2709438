# -*- coding: utf-8 -*-
"""
    handlers.py: model handlers and the handler registry

    Every operation is handled in three stages: an optional "before" hook, the core handler and an
    optional "after" hook. A model handler is any object (or mapping) providing some of the
    following members, where <op> is one of OPERATIONS:

    - handle_before_<op>: hook invoked before the core handler
    - handle_<op>: core handler, replaces the DefaultHandler implementation
    - handle_after_<op>: hook invoked with the core handler result
    - <op>_with_context(ctx): returns the operation context used by the chain
    - <op>_with_transaction: TxOptions (or True), the chain runs in a transaction
    - <op>_decorators: flask view decorators applied to the endpoints of the operation

    The members are looked up once when the registry is built: the resulting OperationSlots are
    immutable and a handler object that changes afterwards doesn't affect the registry.

    hook signatures:
        insert, update:         before/handle(ctx, db, payload)            after(ctx, db, result)
        get, list:              before/handle(ctx, db, scope)              after(ctx, db, result)
        delete:                 before/handle(ctx, db, scope)              after(ctx, db, scope, result)
        get_relation:           before/handle(ctx, db, scope, related_scope, relation)
                                after(ctx, db, result)
        insert_relations,
        update_relations,
        delete_relations:       before(ctx, db, model, payload)            after(ctx, db, model, relations, result)
        set_relations:          handle(ctx, db, model, relations, relation)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence, Tuple

import jsonapi_pipeline
from .config import Options
from .context import OperationContext
from .db import DB, TxOptions
from .errors import NoResultError, ServerOptionsError
from .mapping import ModelRegistry, ModelStruct, RelationKind, StructField
from .payload import Payload
from .query import Scope
from .tx import transaction

INSERT = "insert"
GET = "get"
LIST = "list"
UPDATE = "update"
DELETE = "delete"
GET_RELATION = "get_relation"
INSERT_RELATIONS = "insert_relations"
UPDATE_RELATIONS = "update_relations"
DELETE_RELATIONS = "delete_relations"
SET_RELATIONS = "set_relations"

OPERATIONS = (INSERT, GET, LIST, UPDATE, DELETE, GET_RELATION, INSERT_RELATIONS, UPDATE_RELATIONS, DELETE_RELATIONS, SET_RELATIONS)
# relationship mutations have no core handler of their own, the members are persisted by set_relations
HOOK_ONLY_OPERATIONS = (INSERT_RELATIONS, UPDATE_RELATIONS, DELETE_RELATIONS)


@dataclass(frozen=True)
class OperationSlots:
    """
    The resolved stages of one operation for one model
    custom: whether the core handler is provided by the model handler
    """

    operation: str
    handle: Optional[Callable] = None
    before: Optional[Callable] = None
    after: Optional[Callable] = None
    with_context: Optional[Callable[[OperationContext], OperationContext]] = None
    tx_options: Optional[TxOptions] = None
    decorators: Tuple[Callable, ...] = ()
    custom: bool = False

    def context(self, ctx: OperationContext) -> OperationContext:
        if self.with_context is None:
            return ctx
        result = self.with_context(ctx)
        return ctx if result is None else result


@dataclass(frozen=True)
class HandlerSlots:
    model_struct: ModelStruct
    handler: Any = None
    operations: Mapping[str, OperationSlots] = field(default_factory=dict)

    def __getitem__(self, operation: str) -> OperationSlots:
        return self.operations[operation]


def _member(handler: Any, name: str) -> Any:
    if handler is None:
        return None
    if isinstance(handler, Mapping):
        return handler.get(name)
    return getattr(handler, name, None)


def _callable_member(handler: Any, name: str) -> Optional[Callable]:
    member = _member(handler, name)
    if member is None:
        return None
    if not callable(member):
        raise ServerOptionsError(f"handler member '{name}' of {handler!r} is not callable")
    return member


def _tx_options(handler: Any, operation: str) -> Optional[TxOptions]:
    member = _member(handler, f"{operation}_with_transaction")
    if callable(member):
        member = member()
    if member is None or member is False:
        return None
    if member is True:
        return TxOptions()
    if not isinstance(member, TxOptions):
        raise ServerOptionsError(f"{operation}_with_transaction of {handler!r} must provide TxOptions, got {member!r}")
    return member


def resolve_slots(model_struct: ModelStruct, handler: Any, default_handler: "DefaultHandler") -> HandlerSlots:
    """Resolve the operation stages of a model handler, the default handler provides the missing core handlers
    :raise ServerOptionsError: a handler member has the wrong type
    """
    operations = {}
    for operation in OPERATIONS:
        handle = None if operation in HOOK_ONLY_OPERATIONS else _callable_member(handler, f"handle_{operation}")
        custom = handle is not None
        if handle is None and operation not in HOOK_ONLY_OPERATIONS:
            handle = getattr(default_handler, f"handle_{operation}")
        decorators = _member(handler, f"{operation}_decorators") or ()
        operations[operation] = OperationSlots(
            operation=operation,
            handle=handle,
            before=_callable_member(handler, f"handle_before_{operation}"),
            after=_callable_member(handler, f"handle_after_{operation}"),
            with_context=_callable_member(handler, f"{operation}_with_context"),
            tx_options=_tx_options(handler, operation),
            decorators=tuple(decorators),
            custom=custom,
        )
    return HandlerSlots(model_struct, handler, MappingProxyType(operations))


class HandlerRegistry(Mapping):
    """
    Immutable mapping: ModelStruct => HandlerSlots, built once when the API is constructed
    """

    def __init__(self, slots: Mapping[ModelStruct, HandlerSlots]) -> None:
        self._slots = MappingProxyType(dict(slots))

    @classmethod
    def from_options(cls, registry: ModelRegistry, options: Options, default_handler: Optional["DefaultHandler"] = None) -> "HandlerRegistry":
        """
        :raise ServerOptionsError: a model has more than one handler or a handler is invalid
        """
        default_handler = default_handler or DefaultHandler()
        handlers = options.model_handler_map
        slots = {}
        for model_class, model_struct in registry.items():
            handler = handlers.get(model_class)
            if handler is not None:
                jsonapi_pipeline.log.debug(f"Registering handler {handler!r} for {model_struct.collection}")
            slots[model_struct] = resolve_slots(model_struct, handler, default_handler)
        return cls(slots)

    def __getitem__(self, model_struct: ModelStruct) -> HandlerSlots:
        return self._slots[model_struct]

    def __iter__(self) -> Iterator[ModelStruct]:
        return iter(self._slots)

    def __len__(self) -> int:
        return len(self._slots)


def _relation_members(model_struct: ModelStruct, model: Any, payload: Payload) -> List[Tuple[StructField, List[Any]]]:
    return [
        (included.struct_field, model_struct.relation_models(model, included.struct_field))
        for included in payload.included_relations
        if included.struct_field.relationship.kind is not RelationKind.BELONGS_TO
    ]


class DefaultHandler:
    """
    Baseline implementation of every operation, directly on the storage
    """

    def handle_insert(self, ctx: OperationContext, db: DB, payload: Payload) -> Payload:
        model_struct = payload.model_struct
        model = payload.data[0]
        relations = _relation_members(model_struct, model, payload)
        if not relations:
            db.insert(ctx, model_struct, model, payload.field_set)
        else:
            with transaction(ctx, db) as tx:
                tx.insert(ctx, model_struct, model, payload.field_set)
                self._write_relations(ctx, tx, model, relations)
        return Payload(model_struct=model_struct, data=[model], field_sets=[list(payload.field_set)])

    def handle_get(self, ctx: OperationContext, db: DB, scope: Scope) -> Payload:
        model = db.get(ctx, scope)
        return Payload(model_struct=scope.model_struct, data=[model], field_sets=scope.field_sets, included_relations=scope.included_relations)

    def handle_list(self, ctx: OperationContext, db: DB, scope: Scope) -> Payload:
        models = db.find(ctx, scope)
        return Payload(
            model_struct=scope.model_struct,
            data=models,
            field_sets=[scope.field_set] * len(models),
            included_relations=scope.included_relations,
        )

    def handle_update(self, ctx: OperationContext, db: DB, payload: Payload) -> Payload:
        model_struct = payload.model_struct
        model = payload.data[0]
        relations = _relation_members(model_struct, model, payload)
        if not relations:
            updated = db.update(ctx, model_struct, model, payload.field_set)
        else:
            with transaction(ctx, db) as tx:
                updated = tx.update(ctx, model_struct, model, payload.field_set)
                if updated:
                    self._write_relations(ctx, tx, model, relations)
        if not updated:
            raise NoResultError(f"no '{model_struct.collection}' with id: '{model_struct.primary_string(model)}'")
        return Payload(model_struct=model_struct, data=[model], field_sets=[list(payload.field_set)])

    def handle_delete(self, ctx: OperationContext, db: DB, scope: Scope) -> Payload:
        deleted = db.delete(ctx, scope)
        if not deleted:
            raise NoResultError(f"no '{scope.model_struct.collection}' found to delete")
        return Payload(model_struct=scope.model_struct)

    def handle_get_relation(self, ctx: OperationContext, db: DB, scope: Scope, related_scope: Scope, relation: StructField) -> Payload:
        model_struct = scope.model_struct
        related_struct = related_scope.model_struct
        root = db.get(ctx, scope)
        related = model_struct.relation_models(root, relation)
        result = Payload(
            model_struct=related_struct,
            data=related,
            field_sets=[related_scope.field_set] * len(related),
            included_relations=related_scope.included_relations,
        )
        if not related:
            return result
        needs_refresh = (
            any(related_field is not related_struct.primary for related_field in related_scope.field_set)
            or related_scope.included_relations
            or related_scope.filters
            or related_scope.sorting_order
            or related_scope.pagination is not None
        )
        if needs_refresh:
            related_scope.models = related
            result.data = db.refresh(ctx, related_scope)
            result.field_sets = [related_scope.field_set] * len(result.data)
        return result

    def handle_set_relations(self, ctx: OperationContext, db: DB, model: Any, relations: Sequence[Any], relation: StructField) -> Payload:
        if relations:
            db.set_relations(ctx, model, relation, relations)
        else:
            db.clear_relations(ctx, model, relation)
        return Payload(model_struct=relation.model_struct, data=[model])

    @staticmethod
    def _write_relations(ctx: OperationContext, db: DB, model: Any, relations: Sequence[Tuple[StructField, List[Any]]]) -> None:
        for relation, members in relations:
            if not members:
                db.clear_relations(ctx, model, relation)
            elif relation.relationship.kind is RelationKind.HAS_ONE:
                db.add_relations(ctx, model, relation, members)
            else:
                db.set_relations(ctx, model, relation, members)
