"""
Confidence scoring for structured extraction results.
"""

from typing import Iterable, Optional

# Below this score a human has to look at the record
REVIEW_THRESHOLD = 0.7

# Fixed score for records recovered by pattern parsing only
HEURISTIC_CONFIDENCE = 0.3

# Rubric weights (tunable)
WEIGHTS = {
    "vendor": 1.0,
    "vendor_location": 1.0,
    "date": 1.0,
    "payment_method": 0.5,
    "transaction_id": 0.5,
    "total": 1.5,
    "subtotal": 0.25,
    "tax": 0.25,
    "receipt_type": 0.5,
    "items": 1.0,
    "item_completeness": 1.0,
}
ITEM_REVIEW_PENALTY = 0.5


def clamp(score: float) -> float:
    """Bound a score to [0, 1]."""
    return max(0.0, min(float(score), 1.0))


def estimate_confidence(extraction) -> float:
    """
    Score a structured extraction result in [0, 1].

    Each present field earns its weight; the item completeness weight only
    counts toward the maximum when the result has items. Any item the
    service flagged for review costs a fixed penalty.
    """
    vendor = extraction.vendor_info
    txn = extraction.transaction_info
    totals = extraction.totals
    items = extraction.items or []

    earned = 0.0
    possible = 0.0

    def award(key: str, present: bool):
        nonlocal earned, possible
        possible += WEIGHTS[key]
        if present:
            earned += WEIGHTS[key]

    award("vendor", bool(vendor and (vendor.store_name or vendor.vendor)))
    award("vendor_location", bool(vendor and (vendor.city or vendor.state or vendor.address)))
    award("date", bool(txn and txn.date))
    award("payment_method", bool(txn and txn.payment_method))
    award("transaction_id", bool(txn and txn.transaction_id))
    award("total", bool(totals and totals.total))
    award("subtotal", bool(totals and totals.subtotal is not None))
    award("tax", bool(totals and totals.tax is not None))
    award("receipt_type", bool(extraction.receipt_type))
    award("items", bool(items))

    if items:
        complete = all(item.description and item.total_price is not None for item in items)
        award("item_completeness", complete)
        if any(item.needs_review for item in items):
            earned -= ITEM_REVIEW_PENALTY

    if possible <= 0:
        return 0.0
    return clamp(earned / possible)


def requires_review(confidence: float, total: Optional[float],
                    vendor: Optional[str], items: Iterable = ()) -> bool:
    """The review rule shared by every extraction path."""
    if confidence < REVIEW_THRESHOLD:
        return True
    if not total:
        return True
    if not (vendor or "").strip():
        return True
    return any(getattr(item, "needs_review", False) for item in items)
