import logging
import os
import sys
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
import flask.app
import jsonapi_pipeline


class JsonapiConfig:
    """Default configuration of the json:api operation pipeline.

    Every setting can be overridden by a Flask ``app.config`` entry or an environment variable
    with the same name (cfr. :func:`jsonapi_pipeline.config.get_config`)
    """

    # Configuration settings are stored as class variables
    JSONAPI_PATH_PREFIX = ""
    # 0: no default pagination, list queries are unbounded when the client sends no page[...] args
    JSONAPI_DEFAULT_PAGE_SIZE = 0
    JSONAPI_NO_CONTENT_ON_INSERT = False
    JSONAPI_STRICT_UNMARSHAL = False
    # maximum depth of the include= url query argument (include=a.b.c has depth 3)
    JSONAPI_INCLUDE_NESTED_LIMIT = 3
    # maximum number of values in a single filter[...] query argument
    JSONAPI_FILTER_VALUE_LIMIT = 50
    JSONAPI_PAYLOAD_LINKS = True
    LOGLEVEL = logging.WARNING

    def __init__(self, app: flask.app.Flask = None, **kwargs) -> None:
        self.app = app
        if app is not None:
            self.init_app(app, **kwargs)

    def init_app(self, app: flask.app.Flask, app_db: SQLAlchemy = None, **kwargs) -> SQLAlchemy:
        """
        Application initialization, returns the Flask-SQLAlchemy extension that will be used
        """
        if not isinstance(app, Flask):  # pragma: no cover
            raise TypeError("'app' should be Flask.")

        if app_db is None:
            app_db = app.extensions.get("sqlalchemy")

        app.url_map.strict_slashes = False

        if app.config.get("DEBUG", False):
            log.setLevel(logging.DEBUG)

        for conf_name, conf_val in kwargs.items():
            app.config.setdefault(conf_name, conf_val)

        return app_db

    @staticmethod
    def init_logging(loglevel: int = logging.WARNING) -> logging.Logger:
        """
        Specify the log format used in the webserver logs
        The webserver will catch stdout so we redirect eveything to sys.stderr
        """
        log = logging.getLogger(jsonapi_pipeline.__name__)
        if log.level == logging.NOTSET:
            handler = logging.StreamHandler(sys.stderr)
            formatter = logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s")
            handler.setFormatter(formatter)
            log.setLevel(loglevel)
            log.addHandler(handler)
        return log


#
# logging initialization
#
try:
    DEBUG = os.getenv("DEBUG", logging.WARNING)
    LOGLEVEL = int(DEBUG)
except ValueError:  # pragma: no cover
    print(f'Invalid LogLevel in DEBUG Environment Variable! "{DEBUG}"')
    LOGLEVEL = logging.INFO

log = JsonapiConfig.init_logging(LOGLEVEL)
