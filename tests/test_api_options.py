from functools import wraps
from http import HTTPStatus

import pytest
from flask import Flask, request

from jsonapi_pipeline import DefaultHandler, JSONAPI_MIMETYPE, JsonapiRestApi, OperationCancelled, OperationContext, ServerOptionsError
from jsonapi_pipeline.query import QueryMethod

from conftest import Book, HEADERS, MODELS, User, db, make_api, send


@pytest.mark.parametrize(
    "options",
    [
        dict(default_handler_models=[]),
        dict(default_page_size=-1),
        dict(include_nested_limit=-1),
        dict(path_prefix="http://example.com/api"),
        dict(model_handlers=[(Book, object()), (Book, object())]),
        dict(unknown_option=True),
    ],
)
def test_invalid_options(app, options) -> None:
    with pytest.raises(ServerOptionsError):
        make_api(**options)


def test_unknown_relation_is_rejected(api) -> None:
    with pytest.raises(ServerOptionsError):
        api.relation(Book, "nope")
    with pytest.raises(ServerOptionsError):
        api.get_related(Book, "1", "nope")


def test_unregistered_model_is_rejected(app) -> None:
    api = make_api(default_handler_models=[Book])

    with pytest.raises(ServerOptionsError):
        api.model_struct(User)
    # relations to unregistered models aren't exposed
    assert api.model_struct(Book).relation_by_name("user") is None


def test_options_from_the_app_config(app) -> None:
    app.config["JSONAPI_DEFAULT_PAGE_SIZE"] = 5
    app.config["JSONAPI_PATH_PREFIX"] = "/v1/"

    api = make_api(include_nested_limit=1)

    assert api.options.default_page_size == 5
    assert api.options.path_prefix == "/v1"
    assert api.options.include_nested_limit == 1


def test_endpoints(api) -> None:
    paths = {(endpoint.http_method, endpoint.path) for endpoint in api.endpoints}

    assert ("POST", "/books") in paths
    assert ("PATCH", "/books/<id>") in paths
    assert ("GET", "/books/<id>/tags") in paths
    assert ("DELETE", "/books/<id>/relationships/tags") in paths
    # 5 resource endpoints per model, 5 endpoints per relation
    relations = sum(len(api.model_struct(model).relation_fields) for model in MODELS)
    assert len(api.endpoints) == 5 * len(MODELS) + 5 * relations


def test_operations_without_flask(app, seed) -> None:
    api = make_api()

    result = api.get(Book, "1", {"fields[books]": "title"}, ctx=OperationContext.background())

    assert result.status == HTTPStatus.OK
    assert result.document["data"]["attributes"] == {"title": "Dune"}


def test_cancelled_context(app, seed) -> None:
    api = make_api()
    ctx = OperationContext.background()
    ctx.cancel()

    with pytest.raises(OperationCancelled) as exc_info:
        api.list(Book, ctx=ctx)
    assert exc_info.value.status_code == HTTPStatus.SERVICE_UNAVAILABLE


def test_unsupported_media_type(client, seed) -> None:
    document = {"data": {"type": "books", "attributes": {"title": "x"}}}

    response = send(client, "POST", "/books", document, headers={"Content-Type": "application/json", "Accept": JSONAPI_MIMETYPE})
    assert response.status_code == HTTPStatus.UNSUPPORTED_MEDIA_TYPE
    assert response.get_json()["errors"][0]["status"] == "415"

    response = send(client, "POST", "/books", document, headers={"Content-Type": f"{JSONAPI_MIMETYPE}; charset=utf-8"})
    assert response.status_code == HTTPStatus.UNSUPPORTED_MEDIA_TYPE


def test_not_acceptable(client, seed) -> None:
    response = client.get("/books", headers={"Accept": "application/json"})

    assert response.status_code == HTTPStatus.NOT_ACCEPTABLE
    assert response.get_json()["errors"][0]["code"] == "not_acceptable"


def test_middlewares_and_handler_decorators(app, seed) -> None:
    calls = []

    def middleware(fun):
        @wraps(fun)
        def wrapper(*args, **kwargs):
            calls.append(("middleware", request.method, request.path))
            return fun(*args, **kwargs)

        return wrapper

    def list_decorator(fun):
        @wraps(fun)
        def wrapper(*args, **kwargs):
            calls.append(("list", request.method, request.path))
            return fun(*args, **kwargs)

        return wrapper

    class BookHandler:
        list_decorators = [list_decorator]

    client = app.test_client()
    api = make_api(middlewares=[middleware], model_handlers=[(Book, BookHandler())])
    JsonapiRestApi(app, api)

    client.get("/books", headers=HEADERS)
    client.get("/books/1", headers=HEADERS)

    assert calls == [("middleware", "GET", "/books"), ("list", "GET", "/books"), ("middleware", "GET", "/books/1")]
    endpoint = next(e for e in api.endpoints if e.query_method is QueryMethod.LIST and e.model_struct.model_class is Book)
    assert endpoint.handler_operation == "list"


def test_handler_context(app, seed) -> None:
    seen = []

    class BookHandler:
        @staticmethod
        def get_with_context(ctx):
            return ctx.with_value("tenant", "library")

        @staticmethod
        def handle_before_get(ctx, db, scope):
            seen.append((ctx.value("tenant"), ctx.value("http_method")))

    client = app.test_client()
    JsonapiRestApi(app, make_api(model_handlers=[(Book, BookHandler())]))

    assert client.get("/books/1", headers=HEADERS).status_code == HTTPStatus.OK
    assert seen == [("library", "GET")]


class DelegatingHandler:
    def handle_get(self, ctx, db, scope):
        return DefaultHandler().handle_get(ctx, db, scope)


def test_delegating_handler_renders_like_the_default_handler(app, seed) -> None:
    default_document = make_api().get(Book, "1", {"include": "tags"}).document
    custom_api = make_api(model_handlers=[(Book, DelegatingHandler())])

    assert custom_api.handlers[custom_api.model_struct(Book)]["get"].custom
    assert custom_api.get(Book, "1", {"include": "tags"}).document == default_document


def test_rest_api_over_the_flask_sqlalchemy_extension(app, seed) -> None:
    client = app.test_client()
    rest_api = JsonapiRestApi(app, models=MODELS, JSONAPI_DEFAULT_PAGE_SIZE=1)

    assert rest_api.jsonapi.db.session is db.session
    assert rest_api.jsonapi.options.default_page_size == 1
    response = client.get("/books/1", headers=HEADERS)
    assert response.status_code == HTTPStatus.OK
    assert response.get_json()["data"]["attributes"]["title"] == "Dune"


def test_rest_api_needs_operations_or_an_extension() -> None:
    with pytest.raises(ServerOptionsError):
        JsonapiRestApi(Flask("bare"), models=MODELS)
