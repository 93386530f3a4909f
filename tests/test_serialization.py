from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from errors import ValidationError
from serialization import (
    deserialize,
    from_minor,
    is_object_id,
    month_range,
    normalize_datetime,
    parse_datetime,
    serialize,
    to_minor,
    utc_now,
)


def test_serialize_replaces_object_id_and_dates():
    oid = ObjectId()
    doc = {"_id": oid, "name": "Cash", "balance": 1050, "createdAt": datetime(2024, 5, 1, 12, 0, 0, 123000)}
    out = serialize(doc)
    assert out == {"id": str(oid), "name": "Cash", "balance": 10.5, "createdAt": "2024-05-01T12:00:00.123000"}
    assert "_id" in doc  # input is left alone


@pytest.mark.parametrize("collection", ["wallets", "categories", "transactions", "keywordMappings", "budgets"])
def test_serialize_deserialize_round_trip(collection):
    now = utc_now()
    doc = {
        "_id": ObjectId(),
        "name": "x",
        "walletId": str(ObjectId()),
        "createdAt": now,
        "updatedAt": now,
    }
    if collection == "transactions":
        doc["date"] = datetime(2024, 2, 29, 23, 59, 59)
        doc["amount"] = 123456789
    if collection == "wallets":
        doc["balance"] = -5
        doc["openingBalance"] = 0
    assert deserialize(serialize(doc), collection) == doc


def test_serialize_passes_empty_documents_through():
    assert serialize(None) is None
    assert serialize({}) == {}


def test_is_object_id_requires_24_hex_characters():
    assert is_object_id(str(ObjectId()))
    assert not is_object_id("Coffee shops")  # 12 bytes, still a name
    assert not is_object_id("z" * 24)
    assert not is_object_id(None)


def test_parse_datetime_normalizes_to_naive_utc():
    assert parse_datetime("2024-03-05T10:00:00Z") == datetime(2024, 3, 5, 10, 0)
    assert parse_datetime("2024-03-05T12:00:00+02:00") == datetime(2024, 3, 5, 10, 0)
    aware = datetime(2024, 3, 5, 10, 0, 0, 123456, tzinfo=timezone(timedelta(hours=-1)))
    assert parse_datetime(aware) == datetime(2024, 3, 5, 11, 0, 0, 123000)


def test_parse_datetime_rejects_garbage():
    with pytest.raises(ValidationError):
        parse_datetime("yesterday")


def test_utc_now_has_millisecond_precision():
    now = utc_now()
    assert now.tzinfo is None
    assert now.microsecond % 1000 == 0
    assert normalize_datetime(now) == now


def test_month_range_wraps_december():
    assert month_range("2024-12") == (datetime(2024, 12, 1), datetime(2025, 1, 1))
    assert month_range("2024-02") == (datetime(2024, 2, 1), datetime(2024, 3, 1))
    with pytest.raises(ValidationError):
        month_range("2024-13")


def test_money_converts_between_major_and_minor_units():
    assert to_minor(0.1) + to_minor(0.2) == to_minor(0.3) == 30
    assert to_minor(2.675) == 268
    assert to_minor(45000) == 4500000
    assert from_minor(-1999) == -19.99
    assert serialize({"amount": 30, "name": "x"})["amount"] == 0.3
    # flags are not money even though bool subclasses int
    assert serialize({"balance": True})["balance"] is True
