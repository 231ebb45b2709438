# flask_restful API subclass exposing the json:api endpoints
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Type
from flask.app import Flask
from flask_restful import Api
from flask_restful.representations.json import output_json
from flask_sqlalchemy import SQLAlchemy
import jsonapi_pipeline
from .api import API, Endpoint
from .codec import JSONAPI_MIMETYPE
from .db import SQLAlchemyDB
from .errors import ServerOptionsError
from .json_encoder import JsonapiJSONProvider
from .jsonapi import CollectionResource, InstanceResource, JsonapiResource, RelatedResource, RelationshipResource
from .pipeline_init import JsonapiConfig
from .query import QueryMethod

DEFAULT_REPRESENTATIONS = [(JSONAPI_MIMETYPE, output_json)]

# resource class implementing the http methods of an endpoint
RESOURCE_CLASSES = {
    QueryMethod.INSERT: CollectionResource,
    QueryMethod.LIST: CollectionResource,
    QueryMethod.GET: InstanceResource,
    QueryMethod.UPDATE: InstanceResource,
    QueryMethod.DELETE: InstanceResource,
    QueryMethod.GET_RELATED: RelatedResource,
    QueryMethod.GET_RELATIONSHIP: RelationshipResource,
    QueryMethod.INSERT_RELATIONSHIP: RelationshipResource,
    QueryMethod.UPDATE_RELATIONSHIP: RelationshipResource,
    QueryMethod.DELETE_RELATIONSHIP: RelationshipResource,
}


class JsonapiRestApi(Api):
    """
    Subclass of the flask_restful Api class creating a route for every endpoint of a json:api

    http://jsonapi.org/format/#content-negotiation-servers
    Servers MUST send all JSON:API data in response documents with
    the header Content-Type: application/vnd.api+json without any media type parameters.
    """

    def __init__(self, app: Flask, api: Optional[API] = None, app_db: Optional[SQLAlchemy] = None, models: Sequence[type] = (), **kwargs) -> None:
        """
        :param app: flask app
        :param api: the json:api operations to expose
        :param app_db: Flask-SQLAlchemy extension, the app one by default. When no api is given,
            the models are exposed with the default handlers over its session
        :param models: models exposed when no api is given
        :param kwargs: flask_restful Api arguments, JSONAPI_* configuration defaults
        :raise ServerOptionsError: no api is given and the app has no Flask-SQLAlchemy extension
        """
        config = {key: kwargs.pop(key) for key in list(kwargs) if key.startswith("JSONAPI_")}
        app_db = JsonapiConfig().init_app(app, app_db, **config)
        if api is None:
            if app_db is None:
                raise ServerOptionsError("no json:api operations provided and the app has no Flask-SQLAlchemy extension")
            with app.app_context():
                api = API(SQLAlchemyDB(app_db.session), default_handler_models=models)
        # error responses are json:api documents, flask_restful mustn't add its "message" hints
        app.config.setdefault("ERROR_404_HELP", False)
        kwargs["default_mediatype"] = JSONAPI_MIMETYPE
        super().__init__(app, **kwargs)
        app.json = JsonapiJSONProvider(app)
        self.representations = OrderedDict(DEFAULT_REPRESENTATIONS)
        self.jsonapi = api
        self.expose_endpoints()

    def expose_endpoints(self) -> None:
        """
        Create one flask_restful resource per endpoint path
        """
        paths: Dict[str, List[Endpoint]] = OrderedDict()
        for endpoint in self.jsonapi.endpoints:
            paths.setdefault(endpoint.path, []).append(endpoint)
        for path, endpoints in paths.items():
            resource = self._create_resource(endpoints)
            self.add_resource(resource, path, endpoint=resource.__name__)
            jsonapi_pipeline.log.info(f"Exposing {', '.join(e.http_method for e in endpoints)} {path}")

    def _create_resource(self, endpoints: List[Endpoint]) -> Type[JsonapiResource]:
        first = endpoints[0]
        base_class = RESOURCE_CLASSES[first.query_method]
        slots = self.jsonapi.handlers[first.model_struct]
        method_decorators = {}
        for endpoint in endpoints:
            # flask_restful applies the decorators in order: the middlewares end up outermost
            decorators = list(slots[endpoint.handler_operation].decorators) + list(self.jsonapi.options.middlewares)
            if decorators:
                method_decorators[endpoint.http_method.lower()] = decorators
        name = first.model_struct.collection
        if first.relation is not None:
            name = f"{name}_{first.relation.name}"
        properties = dict(
            api=self.jsonapi,
            model_struct=first.model_struct,
            relation=first.relation,
            method_decorators=method_decorators,
        )
        return type(f"{name}_{base_class.__name__}", (base_class,), properties)
