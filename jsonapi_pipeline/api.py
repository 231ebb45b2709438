# -*- coding: utf-8 -*-
"""
    api.py: the json:api operations

    API exposes the operations of every registered model:
    insert, get, list, update, delete (cfr. resources.py) and get_related, get_relationship,
    insert_relationship, update_relationship, delete_relationship (cfr. relationships.py).

    The operations don't depend on flask: they take the url id, the query arguments and the
    request body and return an OperationResult. The flask binding is in rest_api.py.

    Everything that can be validated is validated when the API is constructed, a misconfigured
    API raises ServerOptionsError before it serves any request.
"""
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

import jsonapi_pipeline
from .codec import JsonapiCodec
from .config import Options
from .context import OperationContext
from .db import DB
from .errors import InvalidQueryParameter, ServerOptionsError, URIParameterError
from .fieldset import default_fields, resolve
from .handlers import (
    DELETE,
    DELETE_RELATIONS,
    GET,
    GET_RELATION,
    INSERT,
    INSERT_RELATIONS,
    LIST,
    UPDATE,
    UPDATE_RELATIONS,
    HandlerRegistry,
)
from .mapping import ModelRegistry, ModelStruct, StructField, is_zero
from .payload import LinkOptions, LinkType
from .query import FieldSet, IncludedRelation, QueryMethod, Scope
from .relationships import RelationshipOperations
from .resources import ResourceOperations

# handler operation whose hooks, decorators and transaction options apply to an endpoint
HANDLER_OPERATIONS = {
    QueryMethod.INSERT: INSERT,
    QueryMethod.GET: GET,
    QueryMethod.LIST: LIST,
    QueryMethod.UPDATE: UPDATE,
    QueryMethod.DELETE: DELETE,
    QueryMethod.GET_RELATED: GET_RELATION,
    QueryMethod.GET_RELATIONSHIP: GET_RELATION,
    QueryMethod.INSERT_RELATIONSHIP: INSERT_RELATIONS,
    QueryMethod.UPDATE_RELATIONSHIP: UPDATE_RELATIONS,
    QueryMethod.DELETE_RELATIONSHIP: DELETE_RELATIONS,
}


@dataclass(frozen=True)
class Endpoint:
    """
    An exposed route: the path is a werkzeug rule, f.i. "/api/users/<id>/relationships/books"
    """

    path: str
    http_method: str
    query_method: QueryMethod
    model_struct: ModelStruct
    relation: Optional[StructField] = None

    @property
    def handler_operation(self) -> str:
        return HANDLER_OPERATIONS[self.query_method]


class API(ResourceOperations, RelationshipOperations):
    """
    json:api operation pipeline over a storage

    :param db: the storage, f.i. SQLAlchemyDB(db.session)
    :param codec: document codec, a JsonapiCodec by default
    :param options: Options fields, overlaying the JSONAPI_<OPTION> app config
    :raise ServerOptionsError: invalid options
    """

    def __init__(self, db: DB, codec: Optional[JsonapiCodec] = None, **options: Any) -> None:
        self.options = Options.from_config(**options)
        models = self.options.models
        if not models:
            raise ServerOptionsError("no models provided")
        self.registry = ModelRegistry.from_models(*models)
        self.handlers = HandlerRegistry.from_options(self.registry, self.options)
        self.db = db
        self.codec = codec or JsonapiCodec(self.registry, self.options.include_nested_limit, self.options.filter_value_limit)
        self.endpoints: Tuple[Endpoint, ...] = tuple(self._create_endpoints())
        jsonapi_pipeline.log.debug(f"json:api created with {len(self.endpoints)} endpoints for {', '.join(s.collection for s in self.registry.values())}")

    @property
    def base_url(self) -> str:
        return self.options.path_prefix

    def _create_endpoints(self) -> List[Endpoint]:
        endpoints = []
        for model_struct in self.registry.values():
            collection_path = f"{self.base_url}/{model_struct.collection}"
            instance_path = f"{collection_path}/<id>"
            endpoints += [
                Endpoint(collection_path, "POST", QueryMethod.INSERT, model_struct),
                Endpoint(collection_path, "GET", QueryMethod.LIST, model_struct),
                Endpoint(instance_path, "GET", QueryMethod.GET, model_struct),
                Endpoint(instance_path, "PATCH", QueryMethod.UPDATE, model_struct),
                Endpoint(instance_path, "DELETE", QueryMethod.DELETE, model_struct),
            ]
            for relation in model_struct.relation_fields:
                related_path = f"{instance_path}/{relation.name}"
                relationship_path = f"{instance_path}/relationships/{relation.name}"
                endpoints += [
                    Endpoint(related_path, "GET", QueryMethod.GET_RELATED, model_struct, relation),
                    Endpoint(relationship_path, "GET", QueryMethod.GET_RELATIONSHIP, model_struct, relation),
                    Endpoint(relationship_path, "POST", QueryMethod.INSERT_RELATIONSHIP, model_struct, relation),
                    Endpoint(relationship_path, "PATCH", QueryMethod.UPDATE_RELATIONSHIP, model_struct, relation),
                    Endpoint(relationship_path, "DELETE", QueryMethod.DELETE_RELATIONSHIP, model_struct, relation),
                ]
        return endpoints

    #
    # helpers shared by the operations
    #
    def model_struct(self, model: Any) -> ModelStruct:
        """
        :param model: mapped class or ModelStruct
        :raise ServerOptionsError: the model isn't exposed by this API
        """
        return self.registry.model_struct(model)

    def relation(self, model: Any, relation: Union[str, StructField]) -> StructField:
        """
        :param model: mapped class or ModelStruct
        :param relation: relation name or field
        :raise ServerOptionsError: the model has no such relation
        """
        model_struct = self.model_struct(model)
        if isinstance(relation, StructField):
            if relation.model_struct is model_struct and relation.is_relation:
                return relation
            relation = relation.name
        result = model_struct.relation_by_name(relation)
        if result is None:
            raise ServerOptionsError(f"relation: '{relation}' not found for the model: '{model_struct.collection}'")
        return result

    @staticmethod
    def parse_id(model_struct: ModelStruct, value: Any) -> Any:
        """
        :param value: the url id
        :return: the primary key value
        :raise URIParameterError: no id, an invalid id or a zero value id
        """
        if value is None or value == "":
            raise URIParameterError(f"no '{model_struct.collection}' id provided")
        try:
            result = model_struct.parse_primary(value)
        except (TypeError, ValueError):
            raise URIParameterError(f"invalid '{model_struct.collection}' id: '{value}'") from None
        if is_zero(result):
            raise URIParameterError(f"invalid '{model_struct.collection}' id: '{value}'")
        return result

    @staticmethod
    def context(ctx: Optional[OperationContext]) -> OperationContext:
        return ctx if ctx is not None else OperationContext.background()

    def resolve_scope(self, scope: Scope) -> Tuple[FieldSet, List[IncludedRelation]]:
        """Replace the requested fieldset and includes of the scope with the storage ones
        :return: the requested (fieldset, includes), used to render the result
        """
        query_fields = scope.field_set or default_fields(scope.model_struct)
        query_includes = scope.included_relations
        field_set, includes = resolve(scope.model_struct, query_fields, query_includes, self.options.include_nested_limit)
        scope.field_sets = [field_set]
        scope.included_relations = includes
        return query_fields, query_includes

    @staticmethod
    def reject_list_parameters(scope: Scope, description: str) -> None:
        """
        :raise InvalidQueryParameter: the scope has sorting, pagination or filters
        """
        if scope.sorting_order:
            raise InvalidQueryParameter(f"sorting is not allowed on {description} queries")
        if scope.pagination is not None:
            raise InvalidQueryParameter(f"pagination is not allowed on {description} queries")
        if scope.filters:
            raise InvalidQueryParameter(f"filtering is not allowed on {description} queries")

    def link_options(self, scope: Scope, link_type: LinkType, root_id: str = "", relation: Optional[StructField] = None) -> LinkOptions:
        """
        The links url query argument overrides the payload_links option
        """
        marshal_links = scope.store.get("links", self.options.payload_links)
        if not marshal_links:
            link_type = LinkType.NONE
        collection = relation.model_struct.collection if relation is not None else scope.model_struct.collection
        return LinkOptions(type=link_type, base_url=self.base_url, root_id=root_id, collection=collection, relation_field=relation)
