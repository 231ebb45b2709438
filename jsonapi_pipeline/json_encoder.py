# json:api document encoding

import datetime
import decimal
from uuid import UUID
from flask.json.provider import DefaultJSONProvider
import jsonapi_pipeline
from .config import is_debug
from .codec import JSONAPI_MIMETYPE


class _JsonapiJSONEncoder:
    """
    JSON encoding of the attribute values found in the rendered documents
    """

    # pylint: disable=too-many-return-statements,arguments-differ,method-hidden
    def default(self, obj, **kwargs):
        """
        override the default json encoding
        :param obj: object to be encoded
        :return: encoded/serialized object
        """
        if obj is None:
            return None
        if isinstance(obj, datetime.timedelta):
            return str(obj)
        if isinstance(obj, datetime.datetime):
            return obj.isoformat(" ")
        if isinstance(obj, (datetime.date, datetime.time)):
            return obj.isoformat()
        if isinstance(obj, set):
            return list(obj)
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, decimal.Decimal):
            return float(obj)
        if isinstance(obj, bytes):
            if obj == b"":
                return ""
            jsonapi_pipeline.log.debug("JsonapiJSONEncoder: serializing bytes obj")
            return obj.hex()

        # getting here means a column type we don't know how to render
        if not is_debug():
            jsonapi_pipeline.log.warning(f'JSON Encoding Error: Unknown object type "{type(obj)}" for {obj}')
            return {"error": "JsonapiJSONEncoder invalid object"}
        return str(obj)


class JsonapiJSONProvider(_JsonapiJSONEncoder, DefaultJSONProvider):
    """
    Flask JSON encoding
    """

    mimetype = JSONAPI_MIMETYPE
