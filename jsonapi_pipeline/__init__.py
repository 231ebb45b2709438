# flake8: noqa: F401
#
# The import order matters: the logger and the configuration defaults are used by the other modules
#
from .pipeline_init import JsonapiConfig, log
from .errors import (
    JsonapiError,
    ValidationError,
    InvalidQueryParameter,
    URIParameterError,
    InvalidInput,
    InvalidJSONFieldValue,
    ForbiddenError,
    ConflictError,
    NotAcceptableError,
    UnsupportedMediaTypeError,
    NotFoundError,
    NoResultError,
    GenericError,
    InternalError,
    OperationCancelled,
    ServerOptionsError,
)
from .config import Options, get_config
from .context import OperationContext
from .mapping import ModelRegistry, ModelStruct, StructField, RelationKind
from .query import Scope, IncludedRelation, FilterField, SortField, Operator, QueryMethod
from .pagination import Pagination, PaginationLinks, build_pagination_links
from .fieldset import resolve, default_fields
from .reconcile import Reconciliation, reconcile_insert, reconcile_update, reconcile_delete
from .db import DB, Tx, TxOptions, TxState, SQLAlchemyDB
from .tx import transaction, run_in_transaction
from .payload import Payload, LinkOptions, LinkType, OperationResult
from .handlers import DefaultHandler, HandlerRegistry
from .codec import JsonapiCodec, UnmarshalOptions, JSONAPI_MIMETYPE
from .api import API, Endpoint
from .rest_api import JsonapiRestApi
from .__about__ import __version__, __description__

__all__ = (
    "__version__",
    "__description__",
    #
    "API",
    "JsonapiRestApi",
    "Options",
    "OperationContext",
    # storage:
    "DB",
    "Tx",
    "TxOptions",
    "SQLAlchemyDB",
    "transaction",
    # handlers:
    "DefaultHandler",
    "Payload",
    "Scope",
    # codec:
    "JsonapiCodec",
    "JSONAPI_MIMETYPE",
    # Errors:
    "JsonapiError",
    "ValidationError",
    "NotFoundError",
    "GenericError",
    "ServerOptionsError",
)
