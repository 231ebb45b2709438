from http import HTTPStatus

from jsonapi_pipeline import ForbiddenError, JsonapiRestApi

from conftest import Book, HEADERS, identifiers, make_api, send


def tags(*ids: str) -> dict:
    return {"data": [{"type": "tags", "id": id} for id in ids]}


def test_get_related_to_one(client, seed) -> None:
    response = client.get("/books/1/user", headers=HEADERS)

    assert response.status_code == HTTPStatus.OK
    document = response.get_json()
    assert document["data"]["type"] == "users"
    assert document["data"]["attributes"] == {"name": "alice", "email": "alice@example.com"}
    assert sorted(book["id"] for book in document["data"]["relationships"]["books"]["data"]) == ["1", "2"]
    assert document["links"] == {"self": "/books/1/user"}


def test_get_related_to_many(client, seed) -> None:
    response = client.get("/users/1/books", query_string={"sort": "-title", "fields[books]": "title"}, headers=HEADERS)

    assert response.status_code == HTTPStatus.OK
    data = response.get_json()["data"]
    assert [(item["id"], item["attributes"]["title"]) for item in data] == [("2", "Emma"), ("1", "Dune")]
    assert identifiers(client.get("/users/1/books", query_string={"filter[title]": "Dune"}, headers=HEADERS)) == ["1"]


def test_get_related_empty(client, seed) -> None:
    assert client.get("/users/2/books", headers=HEADERS).get_json()["data"] == []
    assert client.get("/users/2/profile", headers=HEADERS).get_json()["data"] is None
    assert identifiers(client.get("/users/1/profile", headers=HEADERS)) == ["1"]


def test_get_related_to_one_rejects_list_arguments(client, seed) -> None:
    response = client.get("/books/1/user", query_string={"sort": "name"}, headers=HEADERS)

    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_get_related_of_missing_resource(client, seed) -> None:
    assert client.get("/books/99/user", headers=HEADERS).status_code == HTTPStatus.NOT_FOUND


def test_get_relationship(client, seed) -> None:
    response = client.get("/books/1/relationships/tags", headers=HEADERS)

    assert response.status_code == HTTPStatus.OK
    document = response.get_json()
    assert sorted(document["data"], key=lambda item: item["id"]) == [{"type": "tags", "id": "1"}, {"type": "tags", "id": "2"}]
    assert document["links"] == {"self": "/books/1/relationships/tags", "related": "/books/1/tags"}

    to_one = client.get("/books/1/relationships/user", headers=HEADERS).get_json()
    assert to_one["data"] == {"type": "users", "id": "1"}


def test_get_relationship_rejects_fieldsets(client, seed) -> None:
    response = client.get("/books/1/relationships/tags", query_string={"fields[tags]": "name"}, headers=HEADERS)

    assert response.status_code == HTTPStatus.BAD_REQUEST


def test_insert_relationship(client, seed) -> None:
    response = send(client, "POST", "/books/1/relationships/tags", tags("3"))

    assert response.status_code == HTTPStatus.NO_CONTENT
    assert identifiers(client.get("/books/1/relationships/tags", headers=HEADERS)) == ["1", "2", "3"]


def test_insert_relationship_of_present_member_changes_nothing(client, seed) -> None:
    response = send(client, "POST", "/books/1/relationships/tags", tags("1", "1"))

    assert response.status_code == HTTPStatus.NO_CONTENT
    assert identifiers(client.get("/books/1/relationships/tags", headers=HEADERS)) == ["1", "2"]


def test_insert_relationship_without_members(client, seed) -> None:
    assert send(client, "POST", "/books/1/relationships/tags", {"data": []}).status_code == HTTPStatus.NO_CONTENT


def test_delete_relationship(client, seed) -> None:
    response = send(client, "DELETE", "/books/1/relationships/tags", tags("2"))

    assert response.status_code == HTTPStatus.NO_CONTENT
    assert identifiers(client.get("/books/1/relationships/tags", headers=HEADERS)) == ["1"]


def test_delete_relationship_of_absent_member(client, seed) -> None:
    response = send(client, "DELETE", "/books/1/relationships/tags", tags("3"))

    assert response.status_code == HTTPStatus.NO_CONTENT
    assert identifiers(client.get("/books/1/relationships/tags", headers=HEADERS)) == ["1", "2"]


def test_update_relationship_replaces_the_members(client, seed) -> None:
    response = send(client, "PATCH", "/books/1/relationships/tags", tags("3"))

    assert response.status_code == HTTPStatus.NO_CONTENT
    assert identifiers(client.get("/books/1/relationships/tags", headers=HEADERS)) == ["3"]

    assert send(client, "PATCH", "/books/1/relationships/tags", tags()).status_code == HTTPStatus.NO_CONTENT
    assert identifiers(client.get("/books/1/relationships/tags", headers=HEADERS)) == []


def test_update_to_one_relationship(client, seed) -> None:
    response = send(client, "PATCH", "/books/1/relationships/user", {"data": {"type": "users", "id": "2"}})

    assert response.status_code == HTTPStatus.NO_CONTENT
    assert identifiers(client.get("/books/1/relationships/user", headers=HEADERS)) == ["2"]

    assert send(client, "PATCH", "/books/1/relationships/user", {"data": None}).status_code == HTTPStatus.NO_CONTENT
    assert client.get("/books/1/relationships/user", headers=HEADERS).get_json()["data"] is None


def test_update_one_to_many_relationship(client, seed) -> None:
    response = send(client, "PATCH", "/users/2/relationships/books", {"data": [{"type": "books", "id": "2"}]})

    assert response.status_code == HTTPStatus.NO_CONTENT
    assert identifiers(client.get("/users/2/relationships/books", headers=HEADERS)) == ["2"]
    assert identifiers(client.get("/users/1/relationships/books", headers=HEADERS)) == ["1"]


def test_to_one_relationship_holds_a_single_member(client, seed) -> None:
    document = {"data": [{"type": "users", "id": "1"}, {"type": "users", "id": "2"}]}

    assert send(client, "PATCH", "/books/1/relationships/user", document).status_code == HTTPStatus.BAD_REQUEST


def test_relationship_members_need_an_id(client, seed) -> None:
    response = send(client, "POST", "/books/1/relationships/tags", {"data": [{"type": "tags"}]})
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert response.get_json()["errors"][0]["code"] == "invalid_json_field_value"
    assert identifiers(client.get("/books/1/relationships/tags", headers=HEADERS)) == ["1", "2"]

    response = send(client, "PATCH", "/users/1/relationships/books", {"data": [{"type": "books", "id": "2"}, {"type": "books"}]})
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert identifiers(client.get("/users/1/relationships/books", headers=HEADERS)) == ["1", "2"]

    response = send(client, "PATCH", "/books/1/relationships/user", {"data": {"type": "users"}})
    assert response.status_code == HTTPStatus.BAD_REQUEST
    assert identifiers(client.get("/books/1/relationships/user", headers=HEADERS)) == ["1"]


def test_relationship_member_type_must_match(client, seed) -> None:
    response = send(client, "POST", "/books/1/relationships/tags", {"data": [{"type": "users", "id": "1"}]})

    assert response.status_code == HTTPStatus.CONFLICT


def test_relationship_of_missing_resource(client, seed) -> None:
    assert send(client, "POST", "/books/99/relationships/tags", tags("1")).status_code == HTTPStatus.NOT_FOUND


class LockedTags:
    def __init__(self) -> None:
        self.after = []

    def handle_before_delete_relations(self, ctx, db, model, payload):
        raise ForbiddenError("the tags are locked")

    def handle_after_insert_relations(self, ctx, db, model, members, result):
        self.after.append(sorted(member.id for member in members))


def test_relationship_hooks(app, seed) -> None:
    handler = LockedTags()
    client = app.test_client()
    JsonapiRestApi(app, make_api(model_handlers=[(Book, handler)]))

    response = send(client, "DELETE", "/books/1/relationships/tags", tags("1"))
    assert response.status_code == HTTPStatus.FORBIDDEN
    assert response.get_json()["errors"][0]["detail"] == "the tags are locked"
    assert identifiers(client.get("/books/1/relationships/tags", headers=HEADERS)) == ["1", "2"]

    assert send(client, "POST", "/books/1/relationships/tags", tags("3")).status_code == HTTPStatus.NO_CONTENT
    assert handler.after == [[1, 2, 3]]


class FailingAfterUpdateRelations:
    def handle_after_update_relations(self, ctx, db, model, members, result):
        raise ValueError("after hook failed")


def test_failing_after_relationship_hook_rolls_back(app, seed) -> None:
    client = app.test_client()
    JsonapiRestApi(app, make_api(model_handlers=[(Book, FailingAfterUpdateRelations())]))

    response = send(client, "PATCH", "/books/1/relationships/tags", tags("3"))

    assert response.status_code == HTTPStatus.INTERNAL_SERVER_ERROR
    assert identifiers(client.get("/books/1/relationships/tags", headers=HEADERS)) == ["1", "2"]
