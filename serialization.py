"""
Conversion between stored documents and their wire representation.

Stored documents use native types (ObjectId `_id`, naive UTC datetimes,
money as integer hundredths of the currency unit); the wire form has a
string `id`, ISO-8601 timestamps and money as a decimal number.
"""

import re
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from bson import ObjectId

from errors import ValidationError

OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")

# Fields that hold points in time, per collection.
DATETIME_FIELDS = {
    "wallets": ("createdAt", "updatedAt"),
    "categories": ("createdAt", "updatedAt"),
    "transactions": ("date", "createdAt", "updatedAt"),
    "keywordMappings": ("createdAt", "updatedAt"),
    "budgets": ("createdAt", "updatedAt"),
}

# Money fields, stored as integer minor units so balances add up exactly.
MONEY_FIELDS = ("amount", "balance", "openingBalance")
MINOR_PER_UNIT = 100


def is_object_id(value: Any) -> bool:
    # ObjectId.is_valid also accepts any 12-character string, which would
    # swallow short names, so match the 24-hex form only.
    return isinstance(value, str) and bool(OBJECT_ID_RE.match(value))


def object_id(value: str, label: str = "ID") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not is_object_id(value):
        raise ValidationError(f"Invalid {label}", [{"field": "id", "message": "not a valid id"}])
    return ObjectId(value)


def normalize_datetime(value: datetime) -> datetime:
    """Naive UTC, truncated to the millisecond precision BSON keeps."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def utc_now() -> datetime:
    return normalize_datetime(datetime.now(timezone.utc))


def parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return normalize_datetime(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return normalize_datetime(datetime.fromisoformat(text))
        except ValueError:
            pass
    raise ValidationError("Invalid date", [{"field": "date", "message": f"not an ISO-8601 datetime: {value!r}"}])


def serialize(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    d = dict(doc)
    _id = d.get("_id")
    if _id is not None:
        d["id"] = str(_id)
        del d["_id"]
    # Convert datetime/date to isoformat strings for JSON
    for k, v in list(d.items()):
        if isinstance(v, (datetime, date)):
            d[k] = v.isoformat()
        elif isinstance(v, ObjectId):
            d[k] = str(v)
        elif k in MONEY_FIELDS and isinstance(v, int) and not isinstance(v, bool):
            d[k] = from_minor(v)
    return d


def deserialize(data: Dict[str, Any], collection: str) -> Dict[str, Any]:
    """Inverse of `serialize` for documents of `collection`."""
    d = dict(data)
    _id = d.pop("id", None)
    if _id is not None:
        d["_id"] = object_id(_id)
    for k in DATETIME_FIELDS.get(collection, ()):
        if d.get(k) is not None:
            d[k] = parse_datetime(d[k])
    for k in MONEY_FIELDS:
        if d.get(k) is not None:
            d[k] = to_minor(d[k])
    return d


def month_range(month: str):
    # month format YYYY-MM
    try:
        start = datetime.strptime(month + "-01", "%Y-%m-%d")
    except ValueError:
        raise ValidationError("Invalid month", [{"field": "month", "message": "expected YYYY-MM"}])
    # Get next month
    if start.month == 12:
        next_month = datetime(start.year + 1, 1, 1)
    else:
        next_month = datetime(start.year, start.month + 1, 1)
    return start, next_month


def to_minor(value) -> int:
    """Major units (e.g. 12.345) to integer minor units, rounding half up."""
    return int((Decimal(str(value)) * MINOR_PER_UNIT).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor(value: int) -> float:
    return value / MINOR_PER_UNIT
