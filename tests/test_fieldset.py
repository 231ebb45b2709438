import pytest

from jsonapi_pipeline import InvalidQueryParameter, ModelRegistry
from jsonapi_pipeline.fieldset import default_fields, resolve
from jsonapi_pipeline.query import IncludedRelation, find_include

from conftest import Book, MODELS, Tag, User

registry = ModelRegistry.from_models(*MODELS)
books = registry[Book]
tags = registry[Tag]
users = registry[User]


def test_primary_key_is_always_present_once() -> None:
    title = books.attribute_by_name("title")

    for requested in ([], [title], [books.primary, title, books.primary]):
        fields, _ = resolve(books, requested, [])
        assert fields[0] is books.primary
        assert sum(1 for field in fields if field is books.primary) == 1


def test_belongs_to_adds_the_foreign_key_once() -> None:
    user = books.relation_by_name("user")
    title = books.attribute_by_name("title")

    fields, includes = resolve(books, [user, title, user], [])

    foreign_key = user.relationship.foreign_key
    assert foreign_key is not None
    assert sum(1 for field in fields if field is foreign_key) == 1
    assert title in fields
    assert user not in fields
    assert len(includes) == 1
    assert includes[0].struct_field is user
    assert includes[0].field_set == [users.primary]


def test_relations_get_a_link_only_include() -> None:
    tag_relation = books.relation_by_name("tags")

    fields, includes = resolve(books, [tag_relation], [])

    assert fields == [books.primary]
    assert find_include(includes, tag_relation).field_set == [tags.primary]


def test_requested_include_gets_the_related_primary_key() -> None:
    tag_relation = books.relation_by_name("tags")
    tag_name = tags.attribute_by_name("name")
    requested = [IncludedRelation(tag_relation, [tag_name])]

    _, includes = resolve(books, [tag_relation], requested)

    assert len(includes) == 1
    assert includes[0].field_set == [tags.primary, tag_name]
    # the requested include tree isn't modified
    assert requested[0].field_set == [tag_name]


def test_nested_includes_are_resolved_recursively() -> None:
    user_relation = books.relation_by_name("user")
    profile_relation = users.relation_by_name("profile")
    name = users.attribute_by_name("name")
    requested = [IncludedRelation(user_relation, [name, profile_relation], [IncludedRelation(profile_relation, [])])]

    _, includes = resolve(books, [user_relation], requested)

    user_include = find_include(includes, user_relation)
    assert user_include.field_set == [users.primary, name]
    profile_include = find_include(user_include.included_relations, profile_relation)
    assert profile_include.field_set[0] is profile_relation.relationship.related_struct.primary


def test_resolution_is_deterministic() -> None:
    tag_relation = books.relation_by_name("tags")
    user_relation = books.relation_by_name("user")
    requested_fields = [*books.attributes, tag_relation, user_relation]
    requested_includes = [IncludedRelation(tag_relation, default_fields(tags))]

    first = resolve(books, requested_fields, requested_includes)
    second = resolve(books, requested_fields, requested_includes)

    assert first == second


def test_include_nesting_limit_is_a_client_error() -> None:
    user_relation = books.relation_by_name("user")
    books_relation = users.relation_by_name("books")
    requested = [IncludedRelation(user_relation, [], [IncludedRelation(books_relation, [], [IncludedRelation(user_relation, [])])])]

    resolve(books, [], requested, nested_limit=3)
    with pytest.raises(InvalidQueryParameter):
        resolve(books, [], requested, nested_limit=2)


def test_default_fields() -> None:
    assert default_fields(books) == [*books.attributes, *books.relation_fields]
    assert books.relation_by_name("user").relationship.foreign_key not in default_fields(books)
