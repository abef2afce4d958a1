"""
Data models for receipt processing.
"""

import datetime as dt
import json
import uuid
from dataclasses import asdict, dataclass, field, fields
from typing import Dict, List, Optional

from .categorization import TAX_CATEGORIES
from .confidence import clamp, requires_review


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _as_utc(value: dt.datetime) -> dt.datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


class _SubRecord:
    """JSON blob helpers shared by the nested record sections."""

    def to_dict(self) -> Dict:
        """Convert to a plain dictionary."""
        return asdict(self)

    def to_json(self) -> str:
        """Serialize to a JSON blob."""
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Optional[Dict]):
        """Build from a dictionary, ignoring unknown keys."""
        data = data or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_json(cls, blob: Optional[str]):
        """Build from a JSON blob; an empty blob gives an empty section."""
        return cls.from_dict(json.loads(blob) if blob else None)


@dataclass
class VendorInfo(_SubRecord):
    """Merchant identity and location."""
    vendor: Optional[str] = None
    store_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    tax_id: Optional[str] = None
    slogan: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        """Simplified store name when known, else the full vendor string."""
        return self.store_name or self.vendor


@dataclass
class Promotion(_SubRecord):
    """A coupon, discount or loyalty offer printed on the receipt."""
    promo_type: Optional[str] = None
    details: Optional[str] = None


@dataclass
class TransactionInfo(_SubRecord):
    """When and how the purchase was paid."""
    date: Optional[str] = None
    time: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_method: Optional[str] = None
    card_ending: Optional[str] = None
    auth_code: Optional[str] = None
    cashier: Optional[str] = None
    register: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    return_policy: Optional[str] = None
    promotions: List[Promotion] = field(default_factory=list)
    code_definitions: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict]):
        """Build from a dictionary, restoring nested promotions."""
        info = super().from_dict(data)
        info.promotions = [p if isinstance(p, Promotion) else Promotion.from_dict(p)
                           for p in info.promotions or []]
        info.code_definitions = dict(info.code_definitions or {})
        return info


@dataclass
class LineItem(_SubRecord):
    """A single purchased line."""
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    unit_subtotal: Optional[float] = None
    total_price: Optional[float] = None
    tax_category: Optional[str] = None
    expense_category: Optional[str] = None
    sku: Optional[str] = None
    discount: Optional[float] = None
    codes: List[str] = field(default_factory=list)
    is_expense: Optional[bool] = None
    needs_review: bool = False


@dataclass
class Totals(_SubRecord):
    """Money summary of the receipt."""
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    tax_rate: Optional[float] = None
    tip: Optional[float] = None
    discount: Optional[float] = None
    total: Optional[float] = None
    cash_back: Optional[float] = None
    change: Optional[float] = None


@dataclass
class Notes(_SubRecord):
    """Free-form annotations and the text the extraction saw."""
    handwriting: Optional[str] = None
    description: Optional[str] = None
    vehicle: Optional[str] = None
    mileage: Optional[str] = None
    trip: Optional[str] = None
    business_purpose: Optional[str] = None
    raw_text: Optional[str] = None


@dataclass
class ReceiptRecord:
    """
    Canonical receipt record produced by every extraction path.

    ``needs_review`` is derived from the review rule on every access. The
    only supported mutations are the corrections below, each of which
    refreshes ``updated_at``.
    """
    raw_text: str = ""
    confidence: float = 0.0
    receipt_type: Optional[str] = None
    category: str = "Other Business"
    extraction_method: str = "structured"
    vendor_info: VendorInfo = field(default_factory=VendorInfo)
    transaction_info: TransactionInfo = field(default_factory=TransactionInfo)
    items: List[LineItem] = field(default_factory=list)
    totals: Totals = field(default_factory=Totals)
    notes: Notes = field(default_factory=Notes)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: dt.datetime = field(default_factory=_utcnow)
    updated_at: Optional[dt.datetime] = None

    def __post_init__(self):
        self.created_at = _as_utc(self.created_at)
        if self.updated_at is not None:
            self.updated_at = _as_utc(self.updated_at)
        if self.updated_at is None or self.updated_at < self.created_at:
            self.updated_at = self.created_at

    def __setattr__(self, name, value):
        if name == "id" and "id" in self.__dict__:
            raise AttributeError("receipt id is immutable")
        if name == "confidence":
            value = clamp(value)
        super().__setattr__(name, value)

    @property
    def vendor_name(self) -> Optional[str]:
        """Display name of the vendor."""
        return self.vendor_info.display_name

    @property
    def amount(self) -> Optional[float]:
        """Receipt total."""
        return self.totals.total

    @property
    def location(self) -> Optional[str]:
        """City and state joined for display, when either is known."""
        parts = [p for p in (self.vendor_info.city, self.vendor_info.state) if p]
        return ", ".join(parts) if parts else None

    @property
    def needs_review(self) -> bool:
        """Whether a human should check this record."""
        return requires_review(self.confidence, self.totals.total, self.vendor_name, self.items)

    def touch(self):
        """Refresh ``updated_at`` without ever moving it backwards."""
        self.updated_at = max(_utcnow(), self.updated_at)

    def reassign_category(self, category: str):
        """Correct the tax category by hand."""
        if category not in TAX_CATEGORIES:
            raise ValueError(f"Unknown category: {category}")
        self.category = category
        self.touch()

    def clear_review(self):
        """
        Record that a human verified this receipt.

        A verified record is fully trusted, so confidence becomes 1.0 and
        item flags are cleared. Records without a total or a vendor still
        fail the review rule and cannot be cleared.
        """
        if not self.totals.total:
            raise ValueError("Cannot clear review: receipt has no total")
        if not self.vendor_name:
            raise ValueError("Cannot clear review: vendor is unresolved")
        self.confidence = 1.0
        for item in self.items:
            item.needs_review = False
        self.touch()

    def to_dict(self) -> Dict:
        """Convert to a JSON-ready dictionary, including derived fields."""
        return {
            "id": self.id,
            "raw_text": self.raw_text,
            "confidence": self.confidence,
            "needs_review": self.needs_review,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "receipt_type": self.receipt_type,
            "category": self.category,
            "extraction_method": self.extraction_method,
            "vendor": self.vendor_name,
            "location": self.location,
            "amount": self.amount,
            "vendor_info": self.vendor_info.to_dict(),
            "transaction_info": self.transaction_info.to_dict(),
            "items": [item.to_dict() for item in self.items],
            "totals": self.totals.to_dict(),
            "notes": self.notes.to_dict(),
        }

    def to_blobs(self) -> Dict[str, object]:
        """
        Flatten into scalar columns plus one JSON blob per sub-record, so a
        store can evolve each section without migrating the others.
        """
        return {
            "id": self.id,
            "raw_text": self.raw_text,
            "confidence": self.confidence,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "receipt_type": self.receipt_type,
            "category": self.category,
            "extraction_method": self.extraction_method,
            "vendor_info": self.vendor_info.to_json(),
            "transaction_info": self.transaction_info.to_json(),
            "items": json.dumps([item.to_dict() for item in self.items], sort_keys=True),
            "totals": self.totals.to_json(),
            "notes": self.notes.to_json(),
        }

    @classmethod
    def from_blobs(cls, row: Dict[str, object]) -> "ReceiptRecord":
        """Rebuild a record from ``to_blobs`` output."""
        items = json.loads(row.get("items") or "[]")
        return cls(
            id=row["id"],
            raw_text=row.get("raw_text") or "",
            confidence=row.get("confidence") or 0.0,
            created_at=dt.datetime.fromisoformat(row["created_at"]),
            updated_at=dt.datetime.fromisoformat(row["updated_at"]),
            receipt_type=row.get("receipt_type"),
            category=row.get("category") or "Other Business",
            extraction_method=row.get("extraction_method") or "structured",
            vendor_info=VendorInfo.from_json(row.get("vendor_info")),
            transaction_info=TransactionInfo.from_json(row.get("transaction_info")),
            items=[LineItem.from_dict(item) for item in items],
            totals=Totals.from_json(row.get("totals")),
            notes=Notes.from_json(row.get("notes")),
        )
