"""
Encode and decode a collection as one text blob.

We use JSON, but have to augment it with date and datetime functionality.

Decoding returns plain dicts; the collection's record class parses the
ISO strings back into dates and datetimes.
"""
import json
from datetime import date, datetime


def _json_serial(obj):
    """JSON serializer for objects not serializable by default json code"""

    if isinstance(obj, (datetime, date)):
        # Example of aware datetime format: 2021-12-30T17:07:27.918653+00:00
        # Example of date format: 2021-12-30
        return obj.isoformat()
    raise TypeError('Type %s not serializable' % type(obj))


class JsonEncoder:
    def encode(self, obj) -> str:
        """Encode a record, a dict, or a sequence of either."""
        if hasattr(obj, 'to_dict'):
            obj = obj.to_dict()
        elif isinstance(obj, (list, tuple)):
            obj = [item.to_dict() if hasattr(item, 'to_dict') else item
                   for item in obj]
        return json.dumps(obj, default=_json_serial)


class JsonDecoder:
    def decode(self, json_str):
        """Decode a collection blob to a list of dicts.

        None or an empty string is an empty collection."""
        if not json_str:
            return []
        try:
            ret = json.loads(json_str)
        except json.JSONDecodeError as err:
            raise ValueError(f'Collection blob is not JSON: {err}') from err
        if not isinstance(ret, list):
            raise ValueError(
                f'Collection blob must be a JSON list, got {type(ret).__name__}')
        return ret
