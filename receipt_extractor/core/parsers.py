"""
Parsers for extracting information from receipt text.

Pattern-based and dependency-free: every function returns None (or an
empty list) instead of raising when a field cannot be found, so the
extractor can always produce a result.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .categorization import classify
from .confidence import HEURISTIC_CONFIDENCE
from .models import LineItem, Notes, ReceiptRecord, Totals, TransactionInfo, VendorInfo
from .utils import (AMOUNT_PATTERNS, DATE_PATTERNS, format_date, normalize_amount,
                    normalize_city, normalize_state, parse_date_string)

VENDOR_PATTERNS = [
    r"^[A-Z][A-Z\s&]+$",                                          # All caps company names
    r"^[A-Za-z\s&'.-]+(?:LLC|Inc|Corp|Co\.|Ltd|Limited)\b.*$",    # Company suffixes
    r"^[A-Z][a-z]+\s+[A-Z][a-z]+.*$",                             # Title case names
]

PAYMENT_PATTERNS = [
    r"(?i)\b(visa|mastercard|amex|american express|discover|cash|debit|credit)\b",
    r"(?i)card\s*ending\s*in\s*(\d{4})",
    r"(?i)(\*{4}\d{4}|x{4}\d{4})",
    r"(?i)payment\s*method[:\s]*(.+)",
]

CARD_ENDING_RE = re.compile(r"(?i)(?:card\s*ending\s*in\s*|\*{4}|x{4})(\d{4})\b")

LOCATION_PATTERNS = [
    r"\d+\s+[A-Za-z\s]+\b(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Drive|Dr|Lane|Ln)\b\.?",
    r"[A-Za-z\s]+,\s*[A-Z]{2}\s*\d{5}",
    r"[A-Za-z\s]+\s+[A-Z]{2}\s+\d{5}",
]

CITY_STATE_ZIP_RE = re.compile(r"([A-Za-z][A-Za-z\s]*?),?\s+([A-Z]{2})\s*(\d{5}(?:-\d{4})?)\b")

ITEM_PATTERN = re.compile(r"^(.+?)\s+\$?([0-9][0-9,]*\.[0-9]{2})$")

# Summary lines look like items but never are
SUMMARY_LINE_RE = re.compile(
    r"(?i)\b(sub\s*total|total|tax|change|balance|amount\s*due|cash|tip|tendered)\b")

# Receipt type labels checked in order; first keyword hit wins
RECEIPT_TYPE_KEYWORDS = {
    "Groceries": ["grocery", "supermarket", "walmart", "target", "safeway", "kroger",
                  "whole foods", "trader joe", "market", "food"],
    "Gas": ["gas", "fuel", "shell", "exxon", "chevron", "bp", "mobil", "station", "arco",
            "valero", "speedway", "circle k"],
    "Restaurant": ["restaurant", "cafe", "coffee", "pizza", "burger", "diner", "bar",
                   "starbucks", "mcdonald", "subway"],
    "Retail": ["store", "shop", "mall", "clothing", "electronics", "amazon", "best buy",
               "costco", "sam's club"],
    "Pharmacy": ["pharmacy", "cvs", "walgreens", "rite aid", "drug", "medicine",
                 "prescription"],
    "Transportation": ["uber", "lyft", "taxi", "metro", "bus", "train", "parking", "toll",
                       "rental car"],
    "Entertainment": ["movie", "theater", "cinema", "concert", "game", "entertainment",
                      "ticket"],
    "Office": ["office", "supplies", "staples", "depot", "business", "equipment",
               "stationery", "software"],
    "Gifts": ["gift", "flower", "ftd", "1-800-flowers", "basket", "bouquet", "wine",
              "spirits"],
    "Auto": ["auto", "vehicle", "maintenance", "repair", "oil change", "car wash",
             "autozone", "o'reilly", "napa"],
    "Professional": ["attorney", "lawyer", "cpa", "accountant", "consultant", "legal",
                     "tax preparation"],
    "Banking": ["bank", "service charge", "paypal", "square", "merchant",
                "payment processing"],
    "Shipping": ["fedex", "ups", "usps", "dhl", "shipping", "postage", "courier",
                 "delivery"],
    "Travel": ["hotel", "airline", "flight", "lodging", "airbnb", "expedia", "booking",
               "travel"],
}
DEFAULT_RECEIPT_TYPE = "Other"


@dataclass
class ParsedLineItem:
    """A line item found by pattern matching."""
    description: str
    price: float


@dataclass
class HeuristicResult:
    """Best-effort fields recovered from OCR text alone."""
    vendor: Optional[str] = None
    amount: Optional[float] = None
    date: Optional[str] = None
    payment_method: Optional[str] = None
    card_ending: Optional[str] = None
    location: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    line_items: List[ParsedLineItem] = field(default_factory=list)
    receipt_type: str = DEFAULT_RECEIPT_TYPE
    raw_text: str = ""


def _clean_lines(lines: Sequence[str]) -> List[str]:
    return [ln.strip() for ln in lines if ln and ln.strip()]


def parse_vendor(lines: Sequence[str]) -> Optional[str]:
    """
    Extract vendor name from the first few receipt lines.

    Skips lines that look like phone numbers or addresses, prefers company
    looking names and otherwise falls back to the very first line.
    """
    for idx, raw in enumerate(lines[:5]):
        ln = (raw or "").strip()

        if len(ln) < 3:
            continue
        if any(c.isdigit() for c in ln) and len(ln) > 8:
            continue
        if re.search(r"(?i)\b(?:phone|tel)\b", ln):
            continue

        for pattern in VENDOR_PATTERNS:
            if re.search(pattern, ln):
                return ln

        if idx == 0 and len(ln) > 3:
            return ln

    return None


def find_amounts(lines: Sequence[str]) -> List[Tuple[float, int]]:
    """
    Collect (amount, priority) candidates from every line.

    Lines mentioning the word "total" rank first, then "amount", then by
    pattern order. Lower priority numbers win.
    """
    candidates = []
    for ln in lines:
        for pattern_idx, pattern in enumerate(AMOUNT_PATTERNS):
            m = re.search(pattern, ln)
            if not m:
                continue
            val = normalize_amount(m.group(1))
            if val is None or val <= 0:
                continue
            if re.search(r"(?i)\btotal\b", ln):
                priority = 0
            elif re.search(r"(?i)\bamount\b", ln):
                priority = 1
            else:
                priority = pattern_idx + 2
            candidates.append((val, priority))
    return candidates


def parse_amount(lines: Sequence[str]) -> Optional[float]:
    """Extract the receipt total; ties go to the first occurrence."""
    candidates = find_amounts(lines)
    if not candidates:
        return None
    return min(candidates, key=lambda c: c[1])[0]


def parse_date(lines: Sequence[str]) -> Optional[str]:
    """Extract the transaction date as a canonical string."""
    for ln in lines[:10]:
        for pattern in DATE_PATTERNS:
            for m in re.finditer(pattern, ln):
                parsed = parse_date_string(m.group(0))
                if parsed:
                    return format_date(parsed)
    return None


def parse_payment_method(lines: Sequence[str]) -> Optional[str]:
    """Parse payment method from receipt lines."""
    for ln in lines:
        for pattern in PAYMENT_PATTERNS:
            m = re.search(pattern, ln)
            if m:
                return m.group(0).strip()
    return None


def parse_card_ending(lines: Sequence[str]) -> Optional[str]:
    """Parse the last four card digits."""
    for ln in lines:
        m = CARD_ENDING_RE.search(ln)
        if m:
            return m.group(1)
    return None


def parse_location(lines: Sequence[str]) -> Optional[str]:
    """Parse a street address or city line."""
    for ln in lines:
        for pattern in LOCATION_PATTERNS:
            m = re.search(pattern, ln)
            if m:
                return m.group(0).strip()
    return None


def parse_city_state_zip(lines: Sequence[str]) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Split a "City, ST 12345" line into normalized parts."""
    for ln in lines:
        m = CITY_STATE_ZIP_RE.search(ln)
        if m:
            return normalize_city(m.group(1)), normalize_state(m.group(2)), m.group(3)
    return None, None, None


def parse_line_items(lines: Sequence[str]) -> List[ParsedLineItem]:
    """Split "description  price" lines into line items."""
    items = []
    for ln in lines:
        m = ITEM_PATTERN.match(ln.strip())
        if not m:
            continue
        price = normalize_amount(m.group(2))
        if price is None or price <= 0:
            continue
        description = m.group(1).strip()
        if len(description) < 3 or SUMMARY_LINE_RE.search(description):
            continue
        items.append(ParsedLineItem(description=description, price=price))
    return items


def infer_receipt_type(text: str) -> str:
    """Label the receipt from keywords in the full text."""
    lowered = (text or "").lower()
    for label, keywords in RECEIPT_TYPE_KEYWORDS.items():
        for keyword in keywords:
            if re.search(r"(?<![a-z0-9])" + re.escape(keyword) + r"(?![a-z0-9])", lowered):
                return label
    return DEFAULT_RECEIPT_TYPE


def extract_fields(lines: Sequence[str]) -> HeuristicResult:
    """Run every heuristic parser over the OCR lines."""
    lines = _clean_lines(lines)
    text = "\n".join(lines)
    city, state, postal_code = parse_city_state_zip(lines)
    return HeuristicResult(
        vendor=parse_vendor(lines),
        amount=parse_amount(lines),
        date=parse_date(lines),
        payment_method=parse_payment_method(lines),
        card_ending=parse_card_ending(lines),
        location=parse_location(lines),
        city=city,
        state=state,
        postal_code=postal_code,
        line_items=parse_line_items(lines),
        receipt_type=infer_receipt_type(text),
        raw_text=text,
    )


def build_heuristic_record(ocr) -> ReceiptRecord:
    """
    Build a canonical record from OCR output alone.

    Used when structured extraction is unavailable. The record always
    carries the fixed fallback confidence and therefore always needs review.
    """
    result = extract_fields([line.text for line in ocr.lines])
    items = [
        LineItem(description=item.description, quantity=1.0, unit_price=item.price,
                 total_price=item.price)
        for item in result.line_items
    ]
    return ReceiptRecord(
        raw_text=result.raw_text,
        confidence=HEURISTIC_CONFIDENCE,
        receipt_type=result.receipt_type,
        category=classify([], result.receipt_type),
        extraction_method="heuristic",
        vendor_info=VendorInfo(vendor=result.vendor, address=result.location,
                               city=result.city, state=result.state,
                               postal_code=result.postal_code),
        transaction_info=TransactionInfo(date=result.date,
                                         payment_method=result.payment_method,
                                         card_ending=result.card_ending),
        items=items,
        totals=Totals(total=result.amount),
        notes=Notes(description="Extracted by pattern matching; structured extraction unavailable",
                    raw_text=result.raw_text),
    )
