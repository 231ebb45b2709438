import json

import pytest
from werkzeug.datastructures import MultiDict

from jsonapi_pipeline import (
    ConflictError,
    IncludedRelation,
    InvalidInput,
    InvalidJSONFieldValue,
    InvalidQueryParameter,
    JsonapiCodec,
    ModelRegistry,
    NoResultError,
    Scope,
    UnmarshalOptions,
)
from jsonapi_pipeline.payload import LinkOptions, LinkType, Payload
from jsonapi_pipeline.query import Operator

from conftest import Book, MODELS, Tag, User

registry = ModelRegistry.from_models(*MODELS)
books = registry[Book]
users = registry[User]
codec = JsonapiCodec(registry, include_nested_limit=2, filter_value_limit=3)


def parse(params, model_struct=books) -> Scope:
    scope = Scope(model_struct)
    codec.parse_parameters(scope, MultiDict(params))
    return scope


def test_fieldset_of_the_queried_collection() -> None:
    scope = parse([("fields[books]", "title,user"), ("fields[users]", "name")])

    assert scope.field_set == [books.attribute_by_name("title"), books.relation_by_name("user")]


def test_fieldset_applies_to_included_resources() -> None:
    scope = parse([("include", "user"), ("fields[users]", "name")])

    (included,) = scope.included_relations
    assert included.struct_field is books.relation_by_name("user")
    assert included.field_set == [users.attribute_by_name("name")]


def test_fieldset_of_identifiers_only() -> None:
    scope = parse([("include", "user"), ("fields[books]", "id"), ("fields[users]", "id")])

    assert scope.field_set == [books.primary]
    assert scope.included_relations[0].field_set == [users.primary]


@pytest.mark.parametrize(
    "params",
    [
        [("fields[books]", "nope")],
        [("fields[nope]", "title")],
        [("include", "nope")],
        [("include", "user.books.user")],
        [("sort", "nope")],
        [("page[number]", "1"), ("page[limit]", "10")],
        [("page[number]", "2")],
        [("page[size]", "0")],
        [("page[limit]", "x")],
        [("filter[pages][gt]", "many")],
        [("filter[id][in]", "1,2,3,4")],
        [("filter[title][like]", "Dune")],
        [("links", "maybe")],
        [("unknown", "1")],
    ],
)
def test_invalid_query_parameters(params) -> None:
    with pytest.raises(InvalidQueryParameter):
        parse(params)


def test_include_paths_build_a_tree() -> None:
    scope = parse([("include", "user.books,tags,user")])

    user_include, tags_include = scope.included_relations
    assert user_include.struct_field is books.relation_by_name("user")
    assert tags_include.struct_field is books.relation_by_name("tags")
    assert user_include.included_relations[0].struct_field is users.relation_by_name("books")
    assert user_include.depth() == 2


def test_sort_and_page_number_style() -> None:
    scope = parse([("sort", "-pages,title"), ("page[number]", "3"), ("page[size]", "10")])

    assert [(s.struct_field.name, s.descending) for s in scope.sorting_order] == [("pages", True), ("title", False)]
    assert scope.pagination.offset == 20
    assert scope.pagination.limit == 10
    assert scope.pagination.page_based


def test_filters() -> None:
    scope = parse([("filter[title]", "Dune"), ("filter[pages][ge]", "100"), ("filter[pages][isnull]", "")])

    equal, greater, is_null = scope.filters
    assert equal.operator is Operator.EQUAL and equal.values == ["Dune"]
    assert greater.operator is Operator.GREATER_EQUAL and greater.values == [100]
    assert is_null.operator is Operator.IS_NULL and is_null.values == []


def test_links_argument() -> None:
    assert parse([("links", "false")]).store["links"] is False


def test_unmarshal_resource() -> None:
    body = {
        "data": {
            "type": "books",
            "attributes": {"title": "Dune", "pages": 412, "unknown": 1},
            "relationships": {"user": {"data": {"type": "users", "id": "1"}}, "tags": {"data": [{"type": "tags", "id": "2"}]}},
        }
    }
    payload = codec.unmarshal_payload(json.dumps(body), UnmarshalOptions(books))

    book = payload.data[0]
    assert book.id is None
    assert book.title == "Dune"
    assert book.user_id == 1
    assert [tag.id for tag in book.tags] == [2]
    user_fk = books.relation_by_name("user").relationship.foreign_key
    assert payload.field_set == [books.attribute_by_name("title"), books.attribute_by_name("pages"), user_fk]
    assert [included.struct_field.name for included in payload.included_relations] == ["user", "tags"]
    assert payload.marshal_singular_format


def test_unmarshal_null_data() -> None:
    payload = codec.unmarshal_payload({"data": None}, UnmarshalOptions(books))

    assert payload.data == []
    assert payload.marshal_singular_format


@pytest.mark.parametrize(
    "body, error",
    [
        ({"data": {"type": "users"}}, ConflictError),
        ({"data": {"type": "books", "id": "0"}}, InvalidJSONFieldValue),
        ({"data": {"type": "books", "id": "abc"}}, InvalidJSONFieldValue),
        ({"data": {"type": "books", "attributes": {"pages": "many"}}}, InvalidJSONFieldValue),
        ({"data": {"type": "books", "relationships": {"tags": {"data": {"type": "tags", "id": "1"}}}}}, InvalidInput),
        ({"data": {"type": "books", "relationships": {"user": {"data": {"type": "tags", "id": "1"}}}}}, InvalidJSONFieldValue),
        ({"data": "books"}, InvalidInput),
        ({"type": "books"}, InvalidInput),
        ("{not json", InvalidInput),
    ],
)
def test_unmarshal_errors(body, error) -> None:
    with pytest.raises(error):
        codec.unmarshal_payload(body, UnmarshalOptions(books))


def test_strict_unmarshal_rejects_unknown_attributes() -> None:
    body = {"data": {"type": "books", "attributes": {"unknown": 1}}}

    with pytest.raises(InvalidJSONFieldValue):
        codec.unmarshal_payload(body, UnmarshalOptions(books, strict=True))


def test_marshal_payload() -> None:
    alice = User(id=1, name="alice", email="alice@example.com")
    dune = Book(id=1, title="Dune", pages=412, user_id=1, user=alice)
    emma = Book(id=2, title="Emma", pages=300, user_id=1, user=alice)
    user_relation = books.relation_by_name("user")
    field_set = [books.attribute_by_name("title"), user_relation]
    payload = Payload(
        model_struct=books,
        data=[dune, emma],
        field_sets=[field_set, field_set],
        included_relations=[IncludedRelation(user_relation, [users.attribute_by_name("name")])],
        marshal_links=LinkOptions(LinkType.RESOURCE, base_url="/api"),
    )

    document = codec.marshal_payload(payload)

    first = document["data"][0]
    assert first["type"] == "books"
    assert first["id"] == "1"
    assert first["attributes"] == {"title": "Dune"}
    assert first["relationships"]["user"]["data"] == {"type": "users", "id": "1"}
    assert first["relationships"]["user"]["links"]["related"] == "/api/books/1/user"
    assert first["links"] == {"self": "/api/books/1"}
    # the related user is included once
    assert document["included"] == [{"type": "users", "id": "1", "attributes": {"name": "alice"}, "links": {"self": "/api/users/1"}}]
    assert document["jsonapi"] == {"version": "1.0"}


def test_marshal_relationship_document() -> None:
    tags = registry[Tag]
    tag_relation = books.relation_by_name("tags")
    payload = Payload(
        model_struct=tags,
        data=[Tag(id=1, name="scifi")],
        field_sets=[[tags.primary]],
        marshal_links=LinkOptions(LinkType.RELATIONSHIP, base_url="/api", root_id="1", collection="books", relation_field=tag_relation),
    )

    document = codec.marshal_payload(payload)

    assert document["data"] == [{"type": "tags", "id": "1"}]
    assert document["links"] == {"self": "/api/books/1/relationships/tags", "related": "/api/books/1/tags"}
    assert "included" not in document


def test_marshal_errors() -> None:
    status, document = codec.marshal_errors(InvalidInput("bad"), NoResultError("missing"))

    assert status == 404
    assert [error["status"] for error in document["errors"]] == ["400", "404"]
    assert document["errors"][0]["detail"] == "bad"
