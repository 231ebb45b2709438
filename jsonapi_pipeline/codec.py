# -*- coding: utf-8 -*-
"""
    codec.py: json:api document (un)marshaling and url query argument parsing

    http://jsonapi.org/format/#document-structure

    The codec converts between json:api documents and the Payload/Scope objects of the
    operation pipeline:
    - unmarshal_payload: request document => Payload of transient model instances
    - marshal_payload: operation result => response document
    - marshal_errors: errors => error document
    - parse_parameters: url query arguments => Scope fieldsets, includes, sorting, pagination, filters

    The model instances created by unmarshal_payload are never added to a session, they only
    carry the submitted values.
"""
# pylint: disable=too-many-branches,too-many-locals
import datetime
import decimal
import json
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from werkzeug.datastructures import MultiDict

import jsonapi_pipeline
from .errors import ConflictError, InvalidInput, InvalidJSONFieldValue, InvalidQueryParameter, JsonapiError
from .fieldset import default_fields
from .mapping import FieldKind, ModelRegistry, ModelStruct, RelationKind, StructField, is_zero
from .pagination import PAGE_PARAMS, OFFSET_PARAMS, Pagination
from .payload import LinkOptions, LinkType, Payload
from .query import FieldSet, FilterField, IncludedRelation, Operator, Scope, SortField, find_include

JSONAPI_VERSION = "1.0"
JSONAPI_MIMETYPE = "application/vnd.api+json"

PARAM_INCLUDE = "include"
PARAM_SORT = "sort"
PARAM_LINKS = "links"
FIELDS_RE = re.compile(r"^fields\[([^\]]+)\]$")
FILTER_RE = re.compile(r"^filter\[([^\]]+)\](?:\[([^\]]+)\])?$")


@dataclass
class UnmarshalOptions:
    """
    model_struct: the resource type of the submitted document
    strict: reject unknown attributes and relationships instead of ignoring them
    """

    model_struct: ModelStruct
    strict: bool = False


def query_items(params: Any) -> List[Tuple[str, str]]:
    """(key, value) pairs of url query arguments given as a MultiDict, a mapping or pairs"""
    if params is None:
        return []
    if isinstance(params, MultiDict):
        return list(params.items(multi=True))
    if hasattr(params, "items"):
        return list(params.items())
    return list(params)


def _parse_bool(value: str, name: str) -> bool:
    lowered = str(value).lower()
    if lowered in ("true", "1", ""):
        return True
    if lowered in ("false", "0"):
        return False
    raise InvalidQueryParameter(f"invalid boolean value for '{name}': '{value}'")


def _parse_int(value: str, name: str, minimum: int = 0) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise InvalidQueryParameter(f"invalid integer value for '{name}': '{value}'") from None
    if result < minimum:
        raise InvalidQueryParameter(f"'{name}' must be at least {minimum}")
    return result


def attribute_value(struct_field: StructField, value: Any) -> Any:
    """Convert a json value to the python type of the column
    :raise ValueError: the value can't be converted
    """
    if value is None:
        return None
    python_type = struct_field.python_type
    if python_type is datetime.datetime and isinstance(value, str):
        return datetime.datetime.fromisoformat(value)
    if python_type is datetime.date and isinstance(value, str):
        return datetime.date.fromisoformat(value)
    if python_type is datetime.time and isinstance(value, str):
        return datetime.time.fromisoformat(value)
    if python_type is decimal.Decimal:
        try:
            return decimal.Decimal(str(value))
        except decimal.InvalidOperation:
            raise ValueError(f"invalid decimal value: '{value}'") from None
    if python_type is uuid.UUID:
        return uuid.UUID(str(value))
    if python_type is int and isinstance(value, bool):
        raise ValueError(f"invalid integer value: {value}")
    if python_type in (int, float):
        if not isinstance(value, (int, float)):
            raise ValueError(f"expected a number, got: {value!r}")
        return python_type(value)
    if python_type in (str, bool, dict, list) and not isinstance(value, python_type):
        raise ValueError(f"expected a {python_type.__name__} value, got: {value!r}")
    return value


class JsonapiCodec:
    """
    Default codec, rendering the registry models
    """

    def __init__(self, registry: ModelRegistry, include_nested_limit: Optional[int] = 3, filter_value_limit: Optional[int] = 50) -> None:
        self.registry = registry
        self.include_nested_limit = include_nested_limit
        self.filter_value_limit = filter_value_limit

    #
    # Unmarshaling
    #
    def unmarshal_payload(self, body: Any, options: UnmarshalOptions) -> Payload:
        """Create a payload from a request document

        :param body: json text or the decoded document
        :param options: unmarshal options
        :return: payload, one data item per submitted resource, a null data member yields an empty payload
        :raise InvalidInput: the document is malformed
        :raise ConflictError: a resource type doesn't match options.model_struct
        """
        if isinstance(body, (bytes, str)):
            try:
                body = json.loads(body or "null")
            except ValueError as exc:
                raise InvalidInput(f"invalid json document: {exc}") from None
        if not isinstance(body, dict) or "data" not in body:
            raise InvalidInput("the request document must be an object with a 'data' member")

        model_struct = options.model_struct
        data = body["data"]
        payload = Payload(model_struct=model_struct, meta=body.get("meta") or {})
        if data is None:
            payload.marshal_singular_format = True
            return payload
        if isinstance(data, dict):
            payload.marshal_singular_format = True
            items = [data]
        elif isinstance(data, list):
            items = data
        else:
            raise InvalidInput("the 'data' member must be an object, an array or null")

        for item in items:
            model, field_set, relations = self._unmarshal_resource(item, options)
            payload.data.append(model)
            payload.field_sets.append(field_set)
            for relation in relations:
                if find_include(payload.included_relations, relation) is None:
                    payload.included_relations.append(IncludedRelation(relation, [relation.relationship.related_struct.primary]))
        return payload

    def _unmarshal_resource(self, item: Any, options: UnmarshalOptions) -> Tuple[Any, FieldSet, List[StructField]]:
        model_struct = options.model_struct
        if not isinstance(item, dict):
            raise InvalidInput("a resource object must be a json object")
        resource_type = item.get("type")
        if not isinstance(resource_type, str) or not resource_type:
            raise InvalidInput("a resource object must have a 'type' member")
        if resource_type != model_struct.collection:
            raise ConflictError(f"invalid resource type: '{resource_type}', expected '{model_struct.collection}'")

        model = model_struct.new_model()
        field_set: FieldSet = []
        relations: List[StructField] = []
        if item.get("id") is not None:
            model_struct.set_primary_value(model, self._parse_id(model_struct, item["id"]))
            field_set.append(model_struct.primary)

        attributes = item.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise InvalidInput("the 'attributes' member must be an object")
        for name, value in attributes.items():
            struct_field = model_struct.attribute_by_name(name)
            if struct_field is None:
                if options.strict:
                    raise InvalidJSONFieldValue(f"unknown attribute: '{name}' of '{model_struct.collection}'")
                jsonapi_pipeline.log.debug(f"Ignoring unknown attribute {model_struct.collection}.{name}")
                continue
            try:
                value = attribute_value(struct_field, value)
            except (TypeError, ValueError) as exc:
                raise InvalidJSONFieldValue(f"invalid value for attribute '{name}': {exc}") from None
            model_struct.set_field_value(model, struct_field, value)
            if struct_field not in field_set:
                field_set.append(struct_field)

        relationships = item.get("relationships") or {}
        if not isinstance(relationships, dict):
            raise InvalidInput("the 'relationships' member must be an object")
        for name, relationship_object in relationships.items():
            relation = model_struct.relation_by_name(name)
            if relation is None:
                if options.strict:
                    raise InvalidJSONFieldValue(f"unknown relationship: '{name}' of '{model_struct.collection}'")
                jsonapi_pipeline.log.debug(f"Ignoring unknown relationship {model_struct.collection}.{name}")
                continue
            if not isinstance(relationship_object, dict) or "data" not in relationship_object:
                raise InvalidInput(f"relationship '{name}' must be an object with a 'data' member")
            members = self._unmarshal_linkage(relation, relationship_object["data"])
            model_struct.set_relation_models(model, relation, members)
            relationship = relation.relationship
            if relationship.kind is RelationKind.BELONGS_TO and relationship.foreign_key is not None:
                value = relationship.related_struct.primary_value(members[0]) if members else None
                model_struct.set_field_value(model, relationship.foreign_key, value)
                if relationship.foreign_key not in field_set:
                    field_set.append(relationship.foreign_key)
            relations.append(relation)
        return model, field_set, relations

    def _unmarshal_linkage(self, relation: StructField, data: Any) -> List[Any]:
        related_struct = relation.relationship.related_struct
        if data is None:
            if relation.is_to_many:
                raise InvalidInput(f"to-many relationship '{relation.name}' data must be an array")
            return []
        if relation.is_to_many:
            if not isinstance(data, list):
                raise InvalidInput(f"to-many relationship '{relation.name}' data must be an array")
            identifiers = data
        else:
            if not isinstance(data, dict):
                raise InvalidInput(f"to-one relationship '{relation.name}' data must be an object or null")
            identifiers = [data]

        members = []
        for identifier in identifiers:
            if not isinstance(identifier, dict):
                raise InvalidInput(f"relationship '{relation.name}' contains an invalid resource identifier")
            if identifier.get("type") != related_struct.collection:
                raise InvalidJSONFieldValue(f"invalid type for relationship '{relation.name}': '{identifier.get('type')}'")
            if identifier.get("id") is None:
                raise InvalidJSONFieldValue(f"relationship '{relation.name}' contains a resource identifier without id")
            member = related_struct.new_model()
            related_struct.set_primary_value(member, self._parse_id(related_struct, identifier["id"]))
            members.append(member)
        return members

    @staticmethod
    def _parse_id(model_struct: ModelStruct, value: Any) -> Any:
        try:
            result = model_struct.parse_primary(value)
        except (TypeError, ValueError):
            raise InvalidJSONFieldValue(f"invalid '{model_struct.collection}' id: '{value}'") from None
        if is_zero(result):
            raise InvalidJSONFieldValue(f"invalid '{model_struct.collection}' id: '{value}'")
        return result

    #
    # Marshaling
    #
    def marshal_payload(self, payload: Payload) -> Dict[str, Any]:
        """Create the response document of an operation result

        :param payload: operation result, field_sets and included_relations hold the requested
            fields and includes
        :return: json:api document
        """
        model_struct = payload.model_struct
        links = payload.marshal_links
        document: Dict[str, Any] = {}
        resources = []
        rendered = set()
        for index, model in enumerate(payload.data):
            field_set = payload.field_sets[index] if index < len(payload.field_sets) else payload.field_set
            resources.append(self._resource_object(model_struct, model, field_set, links.type, links.base_url))
            rendered.add((model_struct.collection, model_struct.primary_string(model)))

        if payload.marshal_singular_format:
            document["data"] = resources[0] if resources else None
        else:
            document["data"] = resources

        included: List[Dict[str, Any]] = []
        for model in payload.data:
            self._included(model_struct, model, payload.included_relations, links, rendered, included)
        if included:
            document["included"] = included

        document_links = self._document_links(payload)
        if document_links:
            document["links"] = document_links
        if payload.meta:
            document["meta"] = payload.meta
        document["jsonapi"] = {"version": JSONAPI_VERSION}
        return document

    def _resource_object(self, model_struct: ModelStruct, model: Any, field_set: FieldSet, link_type: LinkType, base_url: str = "") -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": model_struct.collection, "id": model_struct.primary_string(model)}
        attributes = {}
        relationships = {}
        resource_url = f"{base_url}/{model_struct.collection}/{result['id']}"
        for struct_field in field_set:
            if struct_field.kind is FieldKind.ATTRIBUTE:
                attributes[struct_field.name] = model_struct.get_field_value(model, struct_field)
            elif struct_field.is_relation:
                relationship = {"data": self._linkage(model_struct, model, struct_field)}
                if link_type is not LinkType.NONE and link_type is not LinkType.RELATIONSHIP:
                    relationship["links"] = {
                        "self": f"{resource_url}/relationships/{struct_field.name}",
                        "related": f"{resource_url}/{struct_field.name}",
                    }
                relationships[struct_field.name] = relationship
        if attributes:
            result["attributes"] = attributes
        if relationships:
            result["relationships"] = relationships
        if link_type is not LinkType.NONE and link_type is not LinkType.RELATIONSHIP:
            result["links"] = {"self": resource_url}
        return result

    @staticmethod
    def _linkage(model_struct: ModelStruct, model: Any, relation: StructField) -> Any:
        related_struct = relation.relationship.related_struct
        members = model_struct.relation_models(model, relation)
        identifiers = [{"type": related_struct.collection, "id": related_struct.primary_string(member)} for member in members]
        if relation.is_to_many:
            return identifiers
        return identifiers[0] if identifiers else None

    def _included(self, model_struct, model, includes, links: LinkOptions, rendered, result) -> None:
        if links.type is LinkType.RELATIONSHIP:
            return
        resource_link_type = LinkType.NONE if links.type is LinkType.NONE else LinkType.RESOURCE
        for included in includes:
            related_struct = included.related_struct
            for member in model_struct.relation_models(model, included.struct_field):
                key = (related_struct.collection, related_struct.primary_string(member))
                if key not in rendered:
                    rendered.add(key)
                    result.append(self._resource_object(related_struct, member, included.field_set, resource_link_type, links.base_url))
                self._included(related_struct, member, included.included_relations, links, rendered, result)

    def _document_links(self, payload: Payload) -> Dict[str, str]:
        links = payload.marshal_links
        if payload.pagination_links is not None:
            return payload.pagination_links.to_dict()
        if links.type is LinkType.RELATED and links.relation_field is not None:
            return {"self": f"{links.base_url}/{links.collection}/{links.root_id}/{links.relation_field.name}"}
        if links.type is LinkType.RELATIONSHIP and links.relation_field is not None:
            root = f"{links.base_url}/{links.collection}/{links.root_id}"
            return {"self": f"{root}/relationships/{links.relation_field.name}", "related": f"{root}/{links.relation_field.name}"}
        return {}

    @staticmethod
    def marshal_errors(*errors: JsonapiError) -> Tuple[int, Dict[str, Any]]:
        """
        :return: (http status, json:api error document), the status of several errors is the highest one
        """
        status = max((error.status_code for error in errors), default=500)
        return status, {"errors": [error.to_dict() for error in errors], "jsonapi": {"version": JSONAPI_VERSION}}

    #
    # Url query arguments
    #
    def parse_parameters(self, scope: Scope, params: Any) -> None:
        """Parse the url query arguments into the scope

        fields[type]: requested fieldset of a resource type
        include: comma separated relation paths, f.i. "author.books,tags"
        sort: comma separated attribute names, "-" prefix for descending order
        page[limit]/page[offset] or page[number]/page[size]: pagination window
        filter[field] or filter[field][operator]: comma separated filter values
        links: render the resource links

        :param scope: scope to populate
        :param params: MultiDict, mapping or (key, value) pairs
        :raise InvalidQueryParameter: an argument is invalid
        """
        items = query_items(params)
        fieldsets: Dict[str, FieldSet] = {}
        for key, value in items:
            match = FIELDS_RE.match(key)
            if match is None:
                continue
            collection = match.group(1)
            model_struct = self.registry.by_collection(collection)
            if model_struct is None:
                raise InvalidQueryParameter(f"invalid fields collection: '{collection}'")
            if collection in fieldsets:
                raise InvalidQueryParameter(f"duplicated fields parameter for: '{collection}'")
            fieldsets[collection] = self._parse_fields(model_struct, value)

        if scope.model_struct.collection in fieldsets:
            scope.field_sets = [fieldsets[scope.model_struct.collection]]

        pagination_args: Dict[str, str] = {}
        for key, value in items:
            if FIELDS_RE.match(key):
                continue
            if key == PARAM_INCLUDE:
                self._parse_include(scope, value, fieldsets)
            elif key == PARAM_SORT:
                self._parse_sort(scope, value)
            elif key in PAGE_PARAMS or key in OFFSET_PARAMS:
                if key in pagination_args:
                    raise InvalidQueryParameter(f"duplicated pagination parameter: '{key}'")
                pagination_args[key] = value
            elif key == PARAM_LINKS:
                scope.store["links"] = _parse_bool(value, key)
            elif FILTER_RE.match(key):
                self._parse_filter(scope, key, value)
            else:
                raise InvalidQueryParameter(f"unsupported query parameter: '{key}'")
        if pagination_args:
            scope.pagination = self._parse_pagination(pagination_args)

    @staticmethod
    def _parse_fields(model_struct: ModelStruct, value: str) -> FieldSet:
        result: FieldSet = []
        for name in (name.strip() for name in value.split(",")):
            if not name:
                continue
            struct_field = model_struct.field_by_name(name)
            if struct_field is None:
                raise InvalidQueryParameter(f"invalid field: '{name}' for '{model_struct.collection}'")
            if struct_field in result:
                raise InvalidQueryParameter(f"duplicated field: '{name}' for '{model_struct.collection}'")
            # the primary key stays in the fieldset: fields[type]=id requests identifiers only
            result.append(struct_field)
        return result

    def _parse_include(self, scope: Scope, value: str, fieldsets: Dict[str, FieldSet]) -> None:
        for path in (path.strip() for path in value.split(",")):
            if not path:
                continue
            names = path.split(".")
            if self.include_nested_limit is not None and len(names) > self.include_nested_limit:
                raise InvalidQueryParameter(f"included relation: '{path}' is nested deeper than the limit: {self.include_nested_limit}")
            model_struct = scope.model_struct
            includes = scope.included_relations
            for name in names:
                relation = model_struct.relation_by_name(name)
                if relation is None:
                    raise InvalidQueryParameter(f"invalid include: '{path}', '{name}' is not a relation of '{model_struct.collection}'")
                included = find_include(includes, relation)
                if included is None:
                    related_struct = relation.relationship.related_struct
                    field_set = list(fieldsets.get(related_struct.collection) or default_fields(related_struct))
                    included = IncludedRelation(relation, field_set)
                    includes.append(included)
                model_struct = included.related_struct
                includes = included.included_relations

    @staticmethod
    def _parse_sort(scope: Scope, value: str) -> None:
        model_struct = scope.model_struct
        for name in (name.strip() for name in value.split(",")):
            if not name:
                continue
            descending = name.startswith("-")
            name = name.lstrip("-")
            struct_field = model_struct.field_by_name(name)
            if struct_field is None or struct_field.column is None:
                raise InvalidQueryParameter(f"invalid sort field: '{name}' for '{model_struct.collection}'")
            if any(sort_field.struct_field is struct_field for sort_field in scope.sorting_order):
                raise InvalidQueryParameter(f"duplicated sort field: '{name}'")
            scope.sorting_order.append(SortField(struct_field, descending))

    @staticmethod
    def _parse_pagination(args: Dict[str, str]) -> Pagination:
        page_style = [key for key in args if key in PAGE_PARAMS]
        offset_style = [key for key in args if key in OFFSET_PARAMS]
        if page_style and offset_style:
            raise InvalidQueryParameter("page[number]/page[size] can't be combined with page[limit]/page[offset]")
        if offset_style:
            limit = _parse_int(args.get("page[limit]", "0"), "page[limit]")
            offset = _parse_int(args.get("page[offset]", "0"), "page[offset]")
            return Pagination(limit=limit, offset=offset)
        if "page[size]" not in args:
            raise InvalidQueryParameter("page[number] requires page[size]")
        size = _parse_int(args["page[size]"], "page[size]", 1)
        number = _parse_int(args.get("page[number]", "1"), "page[number]", 1)
        return Pagination.from_page(number, size)

    def _parse_filter(self, scope: Scope, key: str, value: str) -> None:
        model_struct = scope.model_struct
        name, operator_name = FILTER_RE.match(key).groups()
        struct_field = model_struct.field_by_name(name)
        if struct_field is None or struct_field.column is None:
            raise InvalidQueryParameter(f"invalid filter field: '{name}' for '{model_struct.collection}'")
        try:
            operator = Operator(operator_name or Operator.EQUAL.value)
        except ValueError:
            raise InvalidQueryParameter(f"invalid filter operator: '{operator_name}'") from None

        values: List[Any] = []
        if operator.takes_values:
            raw_values = [raw for raw in value.split(",")] if value != "" else []
            if not raw_values:
                raise InvalidQueryParameter(f"no value for filter: '{key}'")
            if self.filter_value_limit and len(raw_values) > self.filter_value_limit:
                raise InvalidQueryParameter(f"too many values for filter: '{key}', the limit is {self.filter_value_limit}")
            for raw in raw_values:
                try:
                    values.append(struct_field.parse(raw))
                except (TypeError, ValueError):
                    raise InvalidQueryParameter(f"invalid value for filter: '{key}': '{raw}'") from None
        scope.filter(FilterField(struct_field, operator, values))

