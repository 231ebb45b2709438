# Exception Handlers
#
# The application loglevel determines the level of detail shown to the user.
# If set to debug, too much sensitive info might be shown !
#
# The exceptions are raised by the operations and rendered by the codec, for example:
# {
#     "errors": [
#         {
#             "status": "400",
#             "code": "invalid_query_parameter",
#             "title": "Invalid Query Parameter",
#             "detail": "sorting is not allowed on GET single queries"
#         }
#     ]
# }
#
import traceback
from http import HTTPStatus
from sqlalchemy.exc import DontWrapMixin
import jsonapi_pipeline
from .config import is_debug

HIDDEN_LOG = "(debug logging disabled)"


class ServerOptionsError(ValueError):
    """
    Raised when the API is constructed with invalid options or routes,
    before the server starts serving requests
    """


class JsonapiError(Exception, DontWrapMixin):
    """
    Base class of the errors that are rendered as json:api error objects
    """

    status_code = HTTPStatus.INTERNAL_SERVER_ERROR.value
    code = "internal_error"
    title = "Internal Error"

    def __init__(self, detail: str = "", status_code: int = None) -> None:
        Exception.__init__(self, detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code

    @property
    def message(self) -> str:
        return f"{self.title}: {self.detail}" if self.detail else self.title

    def to_dict(self) -> dict:
        result = dict(status=str(self.status_code), code=self.code, title=self.title)
        if self.detail:
            result["detail"] = self.detail
        return result


class ValidationError(JsonapiError):
    """
    This exception is raised when invalid input has been detected (client side input)
    Always send back the detail to the client in the response
    """

    status_code = HTTPStatus.BAD_REQUEST.value
    code = "bad_request"
    title = "Bad Request"

    def __init__(self, detail: str = "", status_code: int = None) -> None:
        super().__init__(detail, status_code)
        jsonapi_pipeline.log.warning("%s: %s", type(self).__name__, detail)


class InvalidQueryParameter(ValidationError):
    code = "invalid_query_parameter"
    title = "Invalid Query Parameter"


class URIParameterError(ValidationError):
    code = "invalid_uri_parameter"
    title = "Invalid URI Parameter"


class InvalidInput(ValidationError):
    code = "invalid_input"
    title = "Invalid Input"


class InvalidJSONFieldValue(ValidationError):
    code = "invalid_json_field_value"
    title = "Invalid JSON Field Value"


class ForbiddenError(ValidationError):
    """
    Raised when the client tries to do something the model doesn't allow, f.i. provide its own id
    """

    status_code = HTTPStatus.FORBIDDEN.value
    code = "forbidden"
    title = "Forbidden"


class ConflictError(ValidationError):
    """
    The submitted resource type doesn't match the endpoint collection
    """

    status_code = HTTPStatus.CONFLICT.value
    code = "conflict"
    title = "Conflict"


class NotAcceptableError(ValidationError):
    status_code = HTTPStatus.NOT_ACCEPTABLE.value
    code = "not_acceptable"
    title = "Not Acceptable"


class UnsupportedMediaTypeError(ValidationError):
    status_code = HTTPStatus.UNSUPPORTED_MEDIA_TYPE.value
    code = "unsupported_media_type"
    title = "Unsupported Media Type"


class NotFoundError(JsonapiError):
    """
    This exception is raised when an item was not found
    """

    status_code = HTTPStatus.NOT_FOUND.value
    code = "not_found"
    title = "Not Found"

    def __init__(self, detail: str = "", status_code: int = None) -> None:
        super().__init__(detail, status_code)
        jsonapi_pipeline.log.info("Not found: %s", detail)


class NoResultError(NotFoundError):
    """
    The storage found nothing to get, update or delete
    """

    code = "no_result"
    title = "No Result"


class GenericError(JsonapiError):
    """
    This exception is raised when an error has been detected on the server side,
    the detail is only shown to the client when debug logging is enabled
    """

    def __init__(self, detail: str = "", status_code: int = None) -> None:
        super().__init__(str(detail), status_code)
        jsonapi_pipeline.log.error("%s: %s", type(self).__name__, detail)
        if is_debug():
            jsonapi_pipeline.log.debug(traceback.format_exc(120))
        else:
            self.detail = HIDDEN_LOG


class InternalError(GenericError):
    """
    A collaborator doesn't behave as expected, f.i. a handler returned no result
    """


class OperationCancelled(JsonapiError):
    """
    The operation context was cancelled or its deadline passed
    """

    status_code = HTTPStatus.SERVICE_UNAVAILABLE.value
    code = "operation_cancelled"
    title = "Operation Cancelled"

    def __init__(self, detail: str = "", status_code: int = None) -> None:
        super().__init__(detail, status_code)
        jsonapi_pipeline.log.warning("Operation cancelled: %s", detail)
