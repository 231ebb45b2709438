# -*- coding: utf-8 -*-
"""
    relationships.py: the relationship operations

    http://jsonapi.org/format/#fetching-relationships
    http://jsonapi.org/format/#crud-updating-relationships

    GET    /{collection}/{id}/{relation}                  get_related
    GET    /{collection}/{id}/relationships/{relation}    get_relationship
    POST   /{collection}/{id}/relationships/{relation}    insert_relationship
    PATCH  /{collection}/{id}/relationships/{relation}    update_relationship
    DELETE /{collection}/{id}/relationships/{relation}    delete_relationship

    The root resource of a relationship operation is only queried for its primary key and
    the related primary keys.

    A relationship mutation reads the current members and writes the reconciled members in one
    transaction:
        get chain -> before hook -> reconcile -> set_relations chain -> after hook -> commit
    Posting members that are already present, or deleting members that aren't, changes nothing:
    the transaction is committed without a write.
"""
# pylint: disable=no-member,redefined-builtin,too-many-arguments,too-many-locals
from http import HTTPStatus
from typing import Any, Callable, Optional, Union

import jsonapi_pipeline
from .chain import dispatch, execute
from .codec import JSONAPI_VERSION, UnmarshalOptions
from .context import OperationContext
from .errors import InternalError, InvalidInput, InvalidJSONFieldValue, InvalidQueryParameter
from .fieldset import resolve
from .handlers import DELETE_RELATIONS, GET, GET_RELATION, INSERT_RELATIONS, SET_RELATIONS, UPDATE_RELATIONS
from .mapping import StructField
from .payload import LinkType, OperationResult
from .query import Scope
from .reconcile import Reconciliation, reconcile_delete, reconcile_insert, reconcile_update
from .tx import transaction


def _reconcile_to_one_insert(current, submitted, primary_key) -> Reconciliation:
    # a to-one relation holds at most one member: a new member replaces the current one
    reconciliation = reconcile_insert(current, submitted, primary_key)
    if reconciliation.changed:
        return Reconciliation(list(submitted), True)
    return reconciliation


class RelationshipOperations:
    """
    Mixin of the API class implementing the relationship endpoints
    """

    def _root_scope(self, relation: StructField, primary: Any, *related_fields: StructField) -> Scope:
        model_struct = relation.model_struct
        scope = Scope(model_struct, field_sets=[[model_struct.primary]])
        scope.filter_primary(primary)
        scope.include(relation, *related_fields)
        return scope

    def get_related(self, model: Any, id: Any, relation: Union[str, StructField], params: Any = None, ctx: Optional[OperationContext] = None) -> OperationResult:
        """Fetch the related resources of a relation

        :param relation: relation name or field
        :param params: url query arguments applying to the related resources, sorting,
            pagination and filters are only allowed for to-many relations
        """
        ctx = self.context(ctx)
        model_struct = self.model_struct(model)
        relation = self.relation(model_struct, relation)
        primary = self.parse_id(model_struct, id)
        related_struct = relation.relationship.related_struct
        jsonapi_pipeline.log.debug(f"[GET_RELATED][{model_struct.collection}] id: {primary}, relation: {relation.name}")

        related_scope = Scope(related_struct)
        self.codec.parse_parameters(related_scope, params)
        if not relation.is_to_many:
            self.reject_list_parameters(related_scope, "to-one related")
        query_fields, query_includes = self.resolve_scope(related_scope)

        related_columns = [field for field in related_scope.field_set if field.column is not None]
        scope = self._root_scope(relation, primary, *related_columns)
        result = execute(self.handlers[model_struct][GET_RELATION], ctx, self.db, (scope, related_scope, relation))

        result.model_struct = related_struct
        result.field_sets = [query_fields] * len(result.data)
        result.included_relations = query_includes
        result.marshal_singular_format = not relation.is_to_many
        result.marshal_links = self.link_options(related_scope, LinkType.RELATED, str(primary), relation)
        return OperationResult(HTTPStatus.OK.value, self.codec.marshal_payload(result))

    def get_relationship(self, model: Any, id: Any, relation: Union[str, StructField], params: Any = None, ctx: Optional[OperationContext] = None) -> OperationResult:
        """Fetch the resource identifiers of a relation

        :param params: url query arguments, fieldsets are rejected, sorting, pagination and filters
            are only allowed for to-many relations
        """
        ctx = self.context(ctx)
        model_struct = self.model_struct(model)
        relation = self.relation(model_struct, relation)
        primary = self.parse_id(model_struct, id)
        related_struct = relation.relationship.related_struct
        jsonapi_pipeline.log.debug(f"[GET_RELATIONSHIP][{model_struct.collection}] id: {primary}, relation: {relation.name}")

        related_scope = Scope(related_struct)
        if params:
            self.codec.parse_parameters(related_scope, params)
            if not relation.is_to_many:
                self.reject_list_parameters(related_scope, "to-one relationship")
            if related_scope.field_sets:
                raise InvalidQueryParameter("fieldsets are not allowed on relationship queries")
        # only the relations of the included resources are needed, the identifiers are rendered
        include_relations = [included.struct_field for included in related_scope.included_relations]
        field_set, includes = resolve(related_struct, include_relations, related_scope.included_relations, self.options.include_nested_limit)
        related_scope.field_sets = [field_set]
        related_scope.included_relations = includes

        scope = self._root_scope(relation, primary)
        result = execute(self.handlers[model_struct][GET_RELATION], ctx, self.db, (scope, related_scope, relation))

        result.model_struct = related_struct
        result.field_sets = [[related_struct.primary]] * len(result.data)
        result.included_relations = []
        result.marshal_singular_format = not relation.is_to_many
        result.marshal_links = self.link_options(related_scope, LinkType.RELATIONSHIP, str(primary), relation)
        return OperationResult(HTTPStatus.OK.value, self.codec.marshal_payload(result))

    def insert_relationship(self, model: Any, id: Any, relation: Union[str, StructField], body: Any, accept_jsonapi: bool = False, ctx: Optional[OperationContext] = None) -> OperationResult:
        """Add members to a relation, members that are already present are left alone"""
        return self._mutate_relationship(INSERT_RELATIONS, model, id, relation, body, accept_jsonapi, ctx)

    def update_relationship(self, model: Any, id: Any, relation: Union[str, StructField], body: Any, accept_jsonapi: bool = False, ctx: Optional[OperationContext] = None) -> OperationResult:
        """Replace the members of a relation, empty data clears the relation"""
        return self._mutate_relationship(UPDATE_RELATIONS, model, id, relation, body, accept_jsonapi, ctx)

    def delete_relationship(self, model: Any, id: Any, relation: Union[str, StructField], body: Any, accept_jsonapi: bool = False, ctx: Optional[OperationContext] = None) -> OperationResult:
        """Remove members from a relation, removing an absent member is not an error"""
        return self._mutate_relationship(DELETE_RELATIONS, model, id, relation, body, accept_jsonapi, ctx)

    def _reconcile_function(self, operation: str, relation: StructField) -> Callable[..., Reconciliation]:
        if operation == INSERT_RELATIONS:
            return reconcile_insert if relation.is_to_many else _reconcile_to_one_insert
        if operation == UPDATE_RELATIONS:
            return reconcile_update
        return reconcile_delete

    def _mutate_relationship(self, operation: str, model: Any, id: Any, relation: Union[str, StructField], body: Any, accept_jsonapi: bool, ctx: Optional[OperationContext]) -> OperationResult:
        """
        :return: 204, or 200 with the meta of the set_relations result when the client accepts json:api
        """
        ctx = self.context(ctx)
        model_struct = self.model_struct(model)
        relation = self.relation(model_struct, relation)
        primary = self.parse_id(model_struct, id)
        related_struct = relation.relationship.related_struct
        log_prefix = f"[{operation.upper()}][{model_struct.collection}]"
        jsonapi_pipeline.log.debug(f"{log_prefix} id: {primary}, relation: {relation.name}")

        payload = self.codec.unmarshal_payload(body, UnmarshalOptions(related_struct, self.options.strict_unmarshal))
        if not relation.is_to_many and len(payload.data) > 1:
            raise InvalidInput(f"to-one relation: '{relation.name}' can't hold {len(payload.data)} resources")
        for member in payload.data:
            if related_struct.is_primary_zero(member):
                raise InvalidJSONFieldValue(f"a '{related_struct.collection}' member of relation: '{relation.name}' has no id")
        if not payload.data and operation != UPDATE_RELATIONS:
            jsonapi_pipeline.log.debug(f"{log_prefix} nothing to change")
            return OperationResult(HTTPStatus.NO_CONTENT.value)

        slots = self.handlers[model_struct]
        operation_slots = slots[operation]
        ctx = operation_slots.context(ctx)
        reconcile = self._reconcile_function(operation, relation)
        with transaction(ctx, self.db, operation_slots.tx_options) as tx:
            scope = self._root_scope(relation, primary)
            root = execute(slots[GET], ctx, tx, (scope,))
            if not root.data:
                raise InternalError(f"the get handler of '{model_struct.collection}' returned no data")
            instance = root.data[0]

            if operation_slots.before is not None:
                operation_slots.before(ctx, tx, instance, payload)

            current = model_struct.relation_models(instance, relation)
            reconciliation = reconcile(current, payload.data, related_struct.primary_value)
            if not reconciliation.changed:
                jsonapi_pipeline.log.debug(f"{log_prefix} the relation is unchanged")
                return OperationResult(HTTPStatus.NO_CONTENT.value)

            result = dispatch(slots[SET_RELATIONS], ctx, tx, (instance, reconciliation.members, relation))
            if operation_slots.after is not None:
                ctx.check()
                operation_slots.after(ctx, tx, instance, reconciliation.members, result)

        if accept_jsonapi and result.meta:
            return OperationResult(HTTPStatus.OK.value, {"meta": result.meta, "jsonapi": {"version": JSONAPI_VERSION}})
        return OperationResult(HTTPStatus.NO_CONTENT.value)
