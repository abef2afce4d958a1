"""
Shared fakes and sample data for the test suite.
"""

import asyncio
import copy

from receipt_extractor.core.ocr import OCRResult
from receipt_extractor.core.schema import ReceiptExtraction

WALMART_TEXT = "WALMART\n123 MAIN ST\nTOTAL $45.67\n04/12/2024"

SAMPLE_PAYLOAD = {
    "receipt_type": "Restaurant Dining",
    "vendor_info": {
        "store_name": "Joe's Diner",
        "vendor": "Joe's Diner LLC",
        "address": "12 Oak Ave",
        "city": "Austin",
        "state": "Texas",
        "zip_code": "78701",
        "phone": "512-555-0100",
    },
    "transaction_info": {
        "date": "2024/04/12",
        "time": "12:30",
        "transaction_id": 88123,
        "payment_method": "Visa",
        "card_ending": "4242",
        "customer_number": "L-77",
        "promotions": [{"promo_type": "Coupon", "details": "$2 off"}],
        "code_definitions": {"T": "Taxable"},
    },
    "items": [
        {"description": "Burger", "quantity": 1, "unit_price": 12.5, "total_price": 12.5,
         "expense_category": "Meals & Entertainment", "codes": ["T"], "is_expense": True,
         "needs_review": False},
        {"description": "Coffee", "quantity": 2, "unit_price": "$2.25", "total_price": 4.5,
         "expense_category": "meals & entertainment"},
    ],
    "totals": {"subtotal": 17.0, "tax": 1.4, "tip": 3.0, "total": 21.4},
    "notes": {"description": "Lunch meeting"},
}

# Minimal JPEG header, enough for MIME sniffing
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 16


def sample_payload() -> dict:
    return copy.deepcopy(SAMPLE_PAYLOAD)


def comparable(record) -> dict:
    """Record dict without the per-instance identity and timestamps."""
    data = record.to_dict()
    for key in ("id", "created_at", "updated_at"):
        data.pop(key)
    return data


class FakeTextSource:
    """Text source returning canned OCR text, or raising queued errors first."""

    def __init__(self, text: str = WALMART_TEXT, errors=(), by_image=None):
        self.text = text
        self.errors = list(errors)
        self.by_image = by_image or {}
        self.calls = 0

    async def recognize(self, image):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        outcome = self.by_image.get(image, self.text)
        if isinstance(outcome, Exception):
            raise outcome
        return OCRResult.from_text(outcome, confidence=0.9)


class FakeClient:
    """Structured extraction client returning a fixed payload or raising."""

    def __init__(self, payload=None, error=None, delay: float = 0.0):
        self.payload = payload if payload is not None else sample_payload()
        self.error = error
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def extract(self, image_bytes, ocr_text=None):
        self.calls.append((image_bytes, ocr_text))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return ReceiptExtraction.model_validate(self.payload)
        finally:
            self.in_flight -= 1

    async def aclose(self):
        pass
