from __future__ import annotations

from datetime import datetime
from typing import Any

from bson import Int64, ObjectId, Timestamp


def is_timestamp(value: Any) -> bool:
    """Return True for values that can stand in as an activity timestamp."""
    return isinstance(value, (datetime, Timestamp))


def describe_type(value: Any) -> str:
    """Name the BSON type of a value for error messages."""
    if value is None:
        return "null"

    # bool is a subclass of int
    if isinstance(value, bool):
        return "bool"

    if isinstance(value, Int64):
        return "long"

    if isinstance(value, int):
        return "int"

    if isinstance(value, float):
        return "double"

    if isinstance(value, str):
        return "string"

    if isinstance(value, dict):
        return "object"

    if isinstance(value, list):
        return "array"

    if isinstance(value, datetime):
        return "date"

    if isinstance(value, Timestamp):
        return "timestamp"

    if isinstance(value, ObjectId):
        return "objectId"

    return type(value).__name__
