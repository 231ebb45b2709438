# -*- coding: utf-8 -*-
"""
    resources.py: the resource operations

    http://jsonapi.org/format/#crud

    POST   /{collection}        insert
    GET    /{collection}        list
    GET    /{collection}/{id}   get
    PATCH  /{collection}/{id}   update
    DELETE /{collection}/{id}   delete
"""
# pylint: disable=no-member,redefined-builtin,too-many-arguments
from http import HTTPStatus
from typing import Any, Optional

import jsonapi_pipeline
from .chain import execute
from .codec import JSONAPI_VERSION, UnmarshalOptions, query_items
from .context import OperationContext
from .errors import ForbiddenError, InternalError, InvalidInput
from .fieldset import default_fields
from .handlers import DELETE, GET, INSERT, LIST, UPDATE
from .mapping import ModelStruct, RelationKind
from .pagination import Pagination, PaginationLinks, build_pagination_links, page_link
from .payload import LinkType, OperationResult, Payload
from .query import Scope


def has_post_write_relations(payload: Payload) -> bool:
    """Relations other than belongs-to are written after the resource, in the same transaction"""
    return any(included.struct_field.relationship.kind is not RelationKind.BELONGS_TO for included in payload.included_relations)


class ResourceOperations:
    """
    Mixin of the API class implementing the resource endpoints
    """

    def _unmarshal_single(self, model_struct: ModelStruct, body: Any, operation: str) -> Payload:
        payload = self.codec.unmarshal_payload(body, UnmarshalOptions(model_struct, self.options.strict_unmarshal))
        if not payload.data:
            raise InvalidInput(f"nothing to {operation}")
        if len(payload.data) > 1:
            raise InvalidInput(f"bulk {operation} is not supported")
        return payload

    def insert(self, model: Any, body: Any, ctx: Optional[OperationContext] = None) -> OperationResult:
        """Create a resource

        :param model: mapped class or ModelStruct
        :param body: request document
        :return: 201 with the created resource, 204 when the client provided the id and
            no_content_on_insert is set
        :raise ForbiddenError: the client provided an id and the model doesn't allow it
        """
        ctx = self.context(ctx)
        model_struct = self.model_struct(model)
        jsonapi_pipeline.log.debug(f"[INSERT][{model_struct.collection}] begins")
        payload = self._unmarshal_single(model_struct, body, "insert")

        instance = payload.data[0]
        client_id = not model_struct.is_primary_zero(instance)
        if client_id and not model_struct.allow_client_id:
            raise ForbiddenError(f"client generated ids are not allowed for '{model_struct.collection}'")

        slots = self.handlers[model_struct][INSERT]
        result = execute(slots, ctx, self.db, (payload,), with_transaction=has_post_write_relations(payload))

        if client_id and self.options.no_content_on_insert:
            jsonapi_pipeline.log.debug(f"[INSERT][{model_struct.collection}] created with client id, no content")
            return OperationResult(HTTPStatus.NO_CONTENT.value)
        if not result.data:
            raise InternalError(f"the insert handler of '{model_struct.collection}' returned no data")

        created = result.data[0]
        result.model_struct = model_struct
        result.field_sets = [default_fields(model_struct)]
        result.included_relations = []
        result.marshal_singular_format = True
        result.marshal_links = self.link_options(Scope(model_struct), LinkType.RESOURCE)
        location = f"{self.base_url}/{model_struct.collection}/{model_struct.primary_string(created)}"
        jsonapi_pipeline.log.debug(f"[INSERT][{model_struct.collection}] created {location}")
        return OperationResult(HTTPStatus.CREATED.value, self.codec.marshal_payload(result), {"Location": location})

    def get(self, model: Any, id: Any, params: Any = None, ctx: Optional[OperationContext] = None) -> OperationResult:
        """Fetch a single resource

        :param id: url id
        :param params: url query arguments, sorting, pagination and filters are rejected
        """
        ctx = self.context(ctx)
        model_struct = self.model_struct(model)
        primary = self.parse_id(model_struct, id)
        jsonapi_pipeline.log.debug(f"[GET][{model_struct.collection}] id: {primary}")

        scope = Scope(model_struct)
        self.codec.parse_parameters(scope, params)
        self.reject_list_parameters(scope, "GET single")
        scope.filter_primary(primary)
        query_fields, query_includes = self.resolve_scope(scope)

        result = execute(self.handlers[model_struct][GET], ctx, self.db, (scope,))
        if not result.data:
            raise InternalError(f"the get handler of '{model_struct.collection}' returned no data")
        result.model_struct = model_struct
        result.field_sets = [query_fields]
        result.included_relations = query_includes
        result.marshal_singular_format = True
        result.marshal_links = self.link_options(scope, LinkType.RESOURCE)
        path = f"{self.base_url}/{model_struct.collection}/{model_struct.primary_string(result.data[0])}"
        result.pagination_links = PaginationLinks(self=page_link(path, query_items(params)))
        return OperationResult(HTTPStatus.OK.value, self.codec.marshal_payload(result))

    def list(self, model: Any, params: Any = None, ctx: Optional[OperationContext] = None) -> OperationResult:
        """Fetch a collection

        :param params: url query arguments
        :return: 200 with the resources and the pagination links
        """
        ctx = self.context(ctx)
        model_struct = self.model_struct(model)
        jsonapi_pipeline.log.debug(f"[LIST][{model_struct.collection}] begins")

        scope = Scope(model_struct)
        self.codec.parse_parameters(scope, params)
        if scope.pagination is None and self.options.default_page_size > 0:
            scope.pagination = Pagination(limit=self.options.default_page_size)
        query_fields, query_includes = self.resolve_scope(scope)
        count_scope = scope.copy()

        result = execute(self.handlers[model_struct][LIST], ctx, self.db, (scope,))
        result.model_struct = model_struct
        result.field_sets = [query_fields] * len(result.data)
        result.included_relations = query_includes
        result.marshal_singular_format = False
        result.marshal_links = self.link_options(scope, LinkType.RESOURCE)

        path = f"{self.base_url}/{model_struct.collection}"
        items = query_items(params)
        if scope.pagination is None or not result.data:
            result.pagination_links = PaginationLinks(self=page_link(path, items))
        else:
            total = self.db.count(ctx, count_scope)
            result.pagination_links = build_pagination_links(path, items, scope.pagination, total)
            result.meta["count"] = result.meta["total"] = result.pagination_links.total
        return OperationResult(HTTPStatus.OK.value, self.codec.marshal_payload(result))

    def update(self, model: Any, id: Any, body: Any, params: Any = None, accept_jsonapi: bool = True, ctx: Optional[OperationContext] = None) -> OperationResult:
        """Update a resource

        :param id: url id, a document id must match it
        :param params: url query arguments of the returned resource
        :param accept_jsonapi: the client accepts a json:api document, 204 otherwise
        :return: 200 with the updated resource
        """
        ctx = self.context(ctx)
        model_struct = self.model_struct(model)
        primary = self.parse_id(model_struct, id)
        jsonapi_pipeline.log.debug(f"[UPDATE][{model_struct.collection}] id: {primary}")

        get_scope = Scope(model_struct)
        self.codec.parse_parameters(get_scope, params)
        self.reject_list_parameters(get_scope, "PATCH")

        payload = self._unmarshal_single(model_struct, body, "update")
        instance = payload.data[0]
        if model_struct.is_primary_zero(instance):
            model_struct.set_primary_value(instance, primary)
        elif model_struct.primary_value(instance) != primary:
            raise InvalidInput(f"the document id: '{model_struct.primary_string(instance)}' doesn't match the url id: '{id}'")

        slots = self.handlers[model_struct]
        result = execute(slots[UPDATE], ctx, self.db, (payload,), with_transaction=has_post_write_relations(payload))
        if not accept_jsonapi:
            return OperationResult(HTTPStatus.NO_CONTENT.value)

        get_scope.filter_primary(primary)
        query_fields, query_includes = self.resolve_scope(get_scope)
        get_result = execute(slots[GET], ctx, self.db, (get_scope,))
        if not get_result.data:
            raise InternalError(f"the get handler of '{model_struct.collection}' returned no data")
        get_result.model_struct = model_struct
        get_result.meta = {**get_result.meta, **result.meta}
        get_result.field_sets = [query_fields]
        get_result.included_relations = query_includes
        get_result.marshal_singular_format = True
        get_result.marshal_links = self.link_options(get_scope, LinkType.RESOURCE)
        return OperationResult(HTTPStatus.OK.value, self.codec.marshal_payload(get_result))

    def delete(self, model: Any, id: Any, ctx: Optional[OperationContext] = None) -> OperationResult:
        """Delete a resource

        :return: 204, or 200 with the meta provided by the handler
        :raise NoResultError: nothing was deleted
        """
        ctx = self.context(ctx)
        model_struct = self.model_struct(model)
        primary = self.parse_id(model_struct, id)
        jsonapi_pipeline.log.debug(f"[DELETE][{model_struct.collection}] id: {primary}")

        scope = Scope(model_struct)
        scope.filter_primary(primary)
        result = execute(self.handlers[model_struct][DELETE], ctx, self.db, (scope,), (scope,))
        if result.meta:
            return OperationResult(HTTPStatus.OK.value, {"meta": result.meta, "jsonapi": {"version": JSONAPI_VERSION}})
        return OperationResult(HTTPStatus.NO_CONTENT.value)
