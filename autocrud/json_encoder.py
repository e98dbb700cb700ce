# autocrud to json encoding

import datetime
import decimal
import json
from uuid import UUID

from flask.json.provider import DefaultJSONProvider

import autocrud
from .config import is_debug
from .db import PersistedEntity


class _CrudJSONEncoder:
    """
    JSON encoding for the records and the common types that aren't json serializable
    """

    # pylint: disable=too-many-return-statements,arguments-differ,method-hidden
    def default(self, obj, **kwargs):
        """
        override the default json encoding
        :param obj: object to be encoded
        :return: encoded/serialized object
        """
        if isinstance(obj, PersistedEntity):
            return obj.to_dict()
        if isinstance(obj, datetime.datetime):
            return obj.isoformat()
        if isinstance(obj, (datetime.date, datetime.time)):
            return obj.isoformat()
        if isinstance(obj, datetime.timedelta):
            return str(obj)
        if isinstance(obj, (set, frozenset, tuple)):
            return list(obj)
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, decimal.Decimal):
            return float(obj)
        if isinstance(obj, bytes):
            return obj.hex()

        autocrud.log.warning(f'JSON Encoding Error: Unknown object type "{type(obj)}" for {obj}')
        if is_debug():
            return str(obj)
        return None


class CrudJSONProvider(_CrudJSONEncoder, DefaultJSONProvider):
    """
    Flask JSON encoding (flask.jsonify)
    """

    pass


class CrudJSONEncoder(_CrudJSONEncoder, json.JSONEncoder):
    """
    Common JSON encoding, used by flask_restful (RESTFUL_JSON)
    """

    pass
