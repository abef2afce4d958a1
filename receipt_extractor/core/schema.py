"""
Wire schema for the structured extraction service.

Decoding happens in two typed steps: the outer envelope returned by the
generate endpoint, then the JSON string it carries. Every inner field is
optional and unknown keys are ignored, so partial answers still decode.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils import normalize_amount


class GenerateEnvelope(BaseModel):
    """Body of a non-streaming ``/api/generate`` reply."""
    model_config = ConfigDict(extra="ignore")

    response: str
    model: Optional[str] = None
    done: Optional[bool] = None


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _loose_number(value):
    # Models sometimes answer "$4.50" or "" despite the formatting rules
    if isinstance(value, str):
        if not value.strip():
            return None
        parsed = normalize_amount(value.rstrip("%"))
        return parsed if parsed is not None else value
    return value


def _loose_string(value):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class VendorSection(_Section):
    """Merchant block of the extraction."""
    vendor: Optional[str] = None
    store_name: Optional[str] = None
    slogan: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    tax_id: Optional[str] = None

    @field_validator("zip_code", "phone", "tax_id", mode="before")
    @classmethod
    def stringify_numbers(cls, v):
        """ZIP codes and phone numbers are often emitted as bare numbers."""
        return _loose_string(v)


class PromotionSection(_Section):
    promo_type: Optional[str] = None
    details: Optional[str] = None


class TransactionSection(_Section):
    """Date, payment and identifiers of the purchase."""
    date: Optional[str] = None
    time: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_method: Optional[str] = None
    card_ending: Optional[str] = None
    auth_code: Optional[str] = None
    cashier: Optional[str] = None
    register: Optional[str] = None
    customer_name: Optional[str] = None
    customer_number: Optional[str] = None
    return_policy: Optional[str] = None
    promotions: List[PromotionSection] = Field(default_factory=list)
    code_definitions: Dict[str, str] = Field(default_factory=dict)

    @field_validator("transaction_id", "card_ending", "auth_code", "cashier", "register",
                     "customer_number", mode="before")
    @classmethod
    def stringify_ids(cls, v):
        """Identifiers are often emitted as bare numbers."""
        return _loose_string(v)

    @field_validator("promotions", "code_definitions", mode="before")
    @classmethod
    def null_to_empty(cls, v, info):
        if v is None:
            return {} if info.field_name == "code_definitions" else []
        if info.field_name == "code_definitions" and isinstance(v, dict):
            return {str(k): _loose_string(d) for k, d in v.items()}
        return v


class ItemSection(_Section):
    """One purchased line."""
    description: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    unit_subtotal: Optional[float] = None
    total_price: Optional[float] = None
    tax_category: Optional[str] = None
    expense_category: Optional[str] = None
    sku: Optional[str] = None
    discount: Optional[float] = None
    codes: List[str] = Field(default_factory=list)
    is_expense: Optional[bool] = None
    needs_review: Optional[bool] = None

    @field_validator("quantity", "unit_price", "unit_subtotal", "total_price", "discount",
                     mode="before")
    @classmethod
    def coerce_numbers(cls, v):
        return _loose_number(v)

    @field_validator("sku", mode="before")
    @classmethod
    def stringify_sku(cls, v):
        return _loose_string(v)

    @field_validator("codes", mode="before")
    @classmethod
    def coerce_codes(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


class TotalsSection(_Section):
    """Money summary; every field accepts loose numbers."""
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    tax_rate: Optional[float] = None
    tip: Optional[float] = None
    discount: Optional[float] = None
    total: Optional[float] = None
    cash_back: Optional[float] = None
    change: Optional[float] = None

    @field_validator("*", mode="before")
    @classmethod
    def coerce_numbers(cls, v):
        return _loose_number(v)


class NotesSection(_Section):
    """Annotations and the text the model read."""
    handwriting: Optional[str] = None
    description: Optional[str] = None
    vehicle: Optional[str] = None
    mileage: Optional[str] = None
    trip: Optional[str] = None
    business_purpose: Optional[str] = None
    raw_text: Optional[str] = None

    @field_validator("mileage", mode="before")
    @classmethod
    def stringify_mileage(cls, v):
        return _loose_string(v)


class ReceiptExtraction(_Section):
    """The six-section object the prompt asks for."""
    receipt_type: Optional[str] = None
    vendor_info: VendorSection = Field(default_factory=VendorSection)
    transaction_info: TransactionSection = Field(default_factory=TransactionSection)
    items: List[ItemSection] = Field(default_factory=list)
    totals: TotalsSection = Field(default_factory=TotalsSection)
    notes: NotesSection = Field(default_factory=NotesSection)

    @field_validator("vendor_info", "transaction_info", "totals", "notes", mode="before")
    @classmethod
    def null_section(cls, v):
        return {} if v is None else v

    @field_validator("items", mode="before")
    @classmethod
    def null_items(cls, v):
        return [] if v is None else v
