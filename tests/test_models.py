"""
Tests for the canonical receipt record.
"""

import datetime as dt
import json

import pytest

from receipt_extractor.core.models import (LineItem, Notes, Promotion, ReceiptRecord, Totals,
                                           TransactionInfo, VendorInfo)


def _record(**overrides) -> ReceiptRecord:
    values = dict(
        raw_text="JOE'S DINER\nTOTAL 21.40",
        confidence=0.9,
        receipt_type="Restaurant Dining",
        category="Meals & Entertainment",
        vendor_info=VendorInfo(vendor="Joe's Diner LLC", store_name="Joe's Diner",
                               city="austin", state="TX"),
        transaction_info=TransactionInfo(
            date="2024-04-12",
            promotions=[Promotion(promo_type="Coupon", details="$2 off")],
            code_definitions={"T": "Taxable"},
        ),
        items=[LineItem(description="Burger", quantity=1, unit_price=12.5, total_price=12.5,
                        expense_category="Meals & Entertainment", codes=["T"])],
        totals=Totals(subtotal=17.0, tax=1.4, total=21.4),
        notes=Notes(description="Lunch meeting"),
    )
    values.update(overrides)
    return ReceiptRecord(**values)


def test_id_is_immutable():
    record = _record()
    with pytest.raises(AttributeError):
        record.id = "other"


def test_ids_are_unique():
    assert _record().id != _record().id


@pytest.mark.parametrize("value,expected", [(1.7, 1.0), (-0.2, 0.0), (0.55, 0.55)])
def test_confidence_is_clamped(value, expected):
    assert _record(confidence=value).confidence == expected
    record = _record()
    record.confidence = value
    assert record.confidence == expected


def test_updated_at_never_precedes_created_at():
    created = dt.datetime(2024, 4, 12, tzinfo=dt.timezone.utc)
    record = _record(created_at=created, updated_at=created - dt.timedelta(days=1))
    assert record.updated_at == created
    fresh = _record()
    assert fresh.created_at <= fresh.updated_at


def test_derived_views():
    record = _record()
    assert record.vendor_name == "Joe's Diner"
    assert record.location == "austin, TX"
    assert record.amount == 21.4

    bare = ReceiptRecord(vendor_info=VendorInfo(vendor="Full Name Inc", state="TX"))
    assert bare.vendor_name == "Full Name Inc"
    assert bare.location == "TX"
    assert ReceiptRecord().location is None


def test_needs_review_is_derived():
    record = _record()
    assert record.needs_review is False

    record.confidence = 0.5
    assert record.needs_review is True
    record.confidence = 0.9

    record.items[0].needs_review = True
    assert record.needs_review is True


def test_reassign_category():
    record = _record()
    before = record.updated_at
    record.reassign_category("Travel")
    assert record.category == "Travel"
    assert record.updated_at >= before


def test_reassign_category_rejects_unknown_values():
    record = _record()
    with pytest.raises(ValueError):
        record.reassign_category("Snacks")
    assert record.category == "Meals & Entertainment"


def test_clear_review():
    record = _record(confidence=0.4)
    record.items[0].needs_review = True
    before = record.updated_at
    assert record.needs_review is True

    record.clear_review()
    assert record.needs_review is False
    assert record.confidence == 1.0
    assert record.items[0].needs_review is False
    assert record.updated_at >= before


@pytest.mark.parametrize("overrides", [
    {"totals": Totals(total=None)},
    {"totals": Totals(total=0.0)},
    {"vendor_info": VendorInfo()},
])
def test_clear_review_requires_total_and_vendor(overrides):
    record = _record(confidence=0.4, **overrides)
    with pytest.raises(ValueError):
        record.clear_review()
    assert record.needs_review is True


def test_to_dict_is_json_ready():
    data = _record().to_dict()
    json.dumps(data)
    assert data["vendor"] == "Joe's Diner"
    assert data["location"] == "austin, TX"
    assert data["amount"] == 21.4
    assert data["needs_review"] is False
    assert data["transaction_info"]["promotions"] == [{"promo_type": "Coupon",
                                                       "details": "$2 off"}]


def test_blobs_preserve_every_sub_record():
    record = _record()
    row = record.to_blobs()

    assert set(row) >= {"vendor_info", "transaction_info", "items", "totals", "notes"}
    for key in ("vendor_info", "transaction_info", "items", "totals", "notes"):
        assert isinstance(row[key], str)

    restored = ReceiptRecord.from_blobs(row)
    assert restored == record
    assert isinstance(restored.transaction_info.promotions[0], Promotion)


def test_naive_stored_timestamps_are_utc():
    row = _record().to_blobs()
    row["created_at"] = "2024-01-01T00:00:00"
    row["updated_at"] = "2024-01-02T08:30:00"

    restored = ReceiptRecord.from_blobs(row)
    assert restored.created_at == dt.datetime(2024, 1, 1, tzinfo=dt.timezone.utc)
    assert restored.updated_at.tzinfo is not None

    restored.reassign_category("Travel")
    restored.clear_review()
    assert restored.updated_at > dt.datetime(2024, 1, 2, 8, 30, tzinfo=dt.timezone.utc)
    assert ReceiptRecord.from_blobs(restored.to_blobs()) == restored


def test_sub_record_ignores_unknown_keys():
    info = VendorInfo.from_json('{"vendor": "Acme", "added_later": 1}')
    assert info == VendorInfo(vendor="Acme")
    assert Totals.from_json(None) == Totals()
