"""
Extended JSON codec: wire representation <-> native BSON values.

Decode (request → driver) recognises the tagged shapes a browser client or a
language model can produce:

    {"$oid": "<24 hex>"}                       → bson.ObjectId
    {"$date": "2024-01-31T10:00:00Z"}          → datetime (UTC)
    {"$date": 1700000000000}                   → datetime (epoch millis)
    {"$date": {"$numberLong": "1700000..."}}   → datetime (epoch millis)
    {"$numberLong": "9007199254740993"}        → str (no precision loss)
    {"$numberDecimal": "12.34"}                → str
    {"$regex": "^ab", "$options": "i"}         → bson.regex.Regex

A malformed tagged literal (e.g. ``{"$oid": 42}``) is returned unchanged;
decoding never raises.

Encode (driver → response) makes every result document string-safe JSON:
ObjectIds become their hex string wherever they appear.
"""

import re
from datetime import datetime, timezone
from typing import Any

from bson import Decimal128, ObjectId
from bson.errors import InvalidId
from bson.regex import Regex


# ---------------------- DECODE ----------------------

def _parse_instant(raw: Any) -> datetime:
    """Convert a ``$date`` payload to an aware UTC datetime.

    Raises ``ValueError`` / ``TypeError`` / ``OverflowError`` on bad input;
    the caller turns that into a pass-through.
    """
    if isinstance(raw, bool):
        raise TypeError("boolean is not a timestamp")
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw / 1000.0, tz=timezone.utc)
    if isinstance(raw, dict) and isinstance(raw.get("$numberLong"), str):
        return datetime.fromtimestamp(int(raw["$numberLong"]) / 1000.0, tz=timezone.utc)
    if isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise TypeError(f"unsupported $date payload: {type(raw).__name__}")


def decode(value: Any) -> Any:
    """Recursively turn extended-JSON tags into BSON values."""
    if isinstance(value, list):
        return [decode(item) for item in value]
    if not isinstance(value, dict):
        return value

    if "$oid" in value and isinstance(value["$oid"], str):
        try:
            return ObjectId(value["$oid"])
        except (InvalidId, TypeError):
            return value

    if "$date" in value:
        try:
            return _parse_instant(value["$date"])
        except (ValueError, TypeError, OverflowError, OSError):
            return value

    if "$numberLong" in value and isinstance(value["$numberLong"], str):
        return value["$numberLong"]

    if "$numberDecimal" in value and isinstance(value["$numberDecimal"], str):
        return value["$numberDecimal"]

    if "$regex" in value and isinstance(value["$regex"], str):
        options = value.get("$options")
        try:
            return Regex(value["$regex"], options if isinstance(options, str) else "")
        except (ValueError, TypeError):
            return value

    return {key: decode(item) for key, item in value.items()}


# ---------------------- ENCODE ----------------------

_FLAG_LETTERS = (
    (re.IGNORECASE, "i"),
    (re.LOCALE, "l"),
    (re.MULTILINE, "m"),
    (re.DOTALL, "s"),
    (re.UNICODE, "u"),
    (re.VERBOSE, "x"),
)


def _flags_to_str(flags: Any) -> str:
    if isinstance(flags, str):
        return flags
    return "".join(letter for bit, letter in _FLAG_LETTERS if flags & bit)


def encode(value: Any) -> Any:
    """Recursively convert BSON / non-JSON values into safe representations."""
    if isinstance(value, dict):
        return {key: encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode(item) for item in value]
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal128):
        return str(value)
    if isinstance(value, Regex):
        return {"$regex": value.pattern, "$options": _flags_to_str(value.flags)}
    if isinstance(value, bytes):
        # Binary fields (e.g. vector embeddings): try UTF-8, else a placeholder
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError:
            return f"[binary {len(value)} bytes]"
    if isinstance(value, (int, float, str, bool, type(None))):
        return value
    return str(value)

