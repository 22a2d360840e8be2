"""Request body helpers shared by the route modules."""
from flask import request

from errors import ValidationFailed


def json_body() -> dict:
    """
    Parsed JSON object from the request body.
    A missing or unparseable body reads as {}; any other JSON value is rejected.
    """
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return data
