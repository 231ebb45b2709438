#  This file contains the flask-restful "Resource" objects exposing the json:api operations:
#  - CollectionResource: POST and GET /{collection}
#  - InstanceResource: GET, PATCH and DELETE /{collection}/{id}
#  - RelatedResource: GET /{collection}/{id}/{relation}
#  - RelationshipResource: GET, POST, PATCH and DELETE /{collection}/{id}/relationships/{relation}
#
#  The resource classes are subclassed by JsonapiRestApi for every exposed model and relation,
#  the subclasses set the api, model_struct and relation class variables.
#
# pylint: disable=redefined-builtin,invalid-name,line-too-long,no-member,logging-format-interpolation
#
from functools import wraps
from typing import Callable
import werkzeug
from flask import request, make_response as flask_make_response, json
from flask_restful import Resource, abort
import jsonapi_pipeline
from .codec import JSONAPI_MIMETYPE
from .context import OperationContext
from .errors import GenericError, JsonapiError, NotAcceptableError, UnsupportedMediaTypeError
from .payload import OperationResult


def make_response(result: OperationResult):
    """
    Create the flask response of an operation result
    """
    body = "" if result.document is None else json.dumps(result.document)
    response = flask_make_response(body, result.status)
    response.headers["Content-Type"] = JSONAPI_MIMETYPE
    for name, value in result.headers.items():
        response.headers[name] = value
    return response


def accepts_jsonapi() -> bool:
    """
    :return: whether the Accept request header contains the json:api media type
    """
    return any(mimetype == JSONAPI_MIMETYPE for mimetype, _ in request.accept_mimetypes)


def require_content_type() -> None:
    """
    http://jsonapi.org/format/#content-negotiation-servers
    Servers MUST respond with a 415 Unsupported Media Type status code if a request specifies the header
    "Content-Type: application/vnd.api+json" with any media type parameters.
    """
    if request.content_type != JSONAPI_MIMETYPE:
        raise UnsupportedMediaTypeError(f"the request Content-Type must be '{JSONAPI_MIMETYPE}', got '{request.content_type}'")


def require_accept() -> None:
    if not accepts_jsonapi():
        raise NotAcceptableError(f"the request Accept header must contain '{JSONAPI_MIMETYPE}'")


def http_method_decorator(fun: Callable) -> Callable:
    """Decorator for the exposed http methods
    - convert all exceptions to json:api error documents

    :param fun: resource http method
    :return: wrapped fun
    """

    @wraps(fun)
    def method_wrapper(self, *args, **kwargs):
        try:
            return fun(self, *args, **kwargs)

        except JsonapiError as exc:
            error = exc

        except werkzeug.exceptions.HTTPException as exc:
            jsonapi_pipeline.log.error(f"{exc.code}: {exc.description}")
            error = JsonapiError(exc.description, exc.code)
            error.code = str(exc.code)
            error.title = exc.name

        except Exception as exc:
            jsonapi_pipeline.log.exception(exc)
            error = GenericError(str(exc))

        status_code, document = self.api.codec.marshal_errors(error)
        abort(status_code, **document)

    return method_wrapper


class JsonapiResource(Resource):
    """
    Superclass of the exposed endpoints
    """

    # the jsonapi_pipeline.API exposing the operations
    api = None
    # the ModelStruct of the exposed collection
    model_struct = None
    # the relation field of the related and relationship endpoints
    relation = None

    @staticmethod
    def context() -> OperationContext:
        return OperationContext(values={"http_method": request.method, "path": request.path})


class CollectionResource(JsonapiResource):
    @http_method_decorator
    def post(self, **kwargs):
        """
        http://jsonapi.org/format/#crud-creating
        """
        require_content_type()
        return make_response(self.api.insert(self.model_struct, request.get_data(), ctx=self.context()))

    @http_method_decorator
    def get(self, **kwargs):
        """
        http://jsonapi.org/format/#fetching-resources
        """
        require_accept()
        return make_response(self.api.list(self.model_struct, request.args, ctx=self.context()))


class InstanceResource(JsonapiResource):
    @http_method_decorator
    def get(self, id=None, **kwargs):
        require_accept()
        return make_response(self.api.get(self.model_struct, id, request.args, ctx=self.context()))

    @http_method_decorator
    def patch(self, id=None, **kwargs):
        """
        http://jsonapi.org/format/#crud-updating
        """
        require_content_type()
        result = self.api.update(self.model_struct, id, request.get_data(), request.args, accept_jsonapi=accepts_jsonapi(), ctx=self.context())
        return make_response(result)

    @http_method_decorator
    def delete(self, id=None, **kwargs):
        """
        http://jsonapi.org/format/#crud-deleting
        """
        return make_response(self.api.delete(self.model_struct, id, ctx=self.context()))


class RelatedResource(JsonapiResource):
    @http_method_decorator
    def get(self, id=None, **kwargs):
        require_accept()
        return make_response(self.api.get_related(self.model_struct, id, self.relation, request.args, ctx=self.context()))


class RelationshipResource(JsonapiResource):
    @http_method_decorator
    def get(self, id=None, **kwargs):
        require_accept()
        return make_response(self.api.get_relationship(self.model_struct, id, self.relation, request.args, ctx=self.context()))

    @http_method_decorator
    def post(self, id=None, **kwargs):
        require_content_type()
        result = self.api.insert_relationship(self.model_struct, id, self.relation, request.get_data(), accept_jsonapi=accepts_jsonapi(), ctx=self.context())
        return make_response(result)

    @http_method_decorator
    def patch(self, id=None, **kwargs):
        require_content_type()
        result = self.api.update_relationship(self.model_struct, id, self.relation, request.get_data(), accept_jsonapi=accepts_jsonapi(), ctx=self.context())
        return make_response(result)

    @http_method_decorator
    def delete(self, id=None, **kwargs):
        require_content_type()
        result = self.api.delete_relationship(self.model_struct, id, self.relation, request.get_data(), accept_jsonapi=accepts_jsonapi(), ctx=self.context())
        return make_response(result)
