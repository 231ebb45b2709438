__version__ = "0.1.0"
__description__ = "jsonapi_pipeline : json:api operation pipeline for Flask and SqlAlchemy"
