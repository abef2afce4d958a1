"""
Tax categorization for receipts.

The same classifier runs for every extraction path, so the category of a
record never depends on how its fields were recovered.
"""

import re
from collections import Counter
from typing import Iterable, Optional

TAX_CATEGORIES = [
    "Office Supplies",
    "Travel",
    "Meals & Entertainment",
    "Fuel & Vehicle",
    "Professional Services",
    "Marketing & Advertising",
    "Utilities",
    "Rent & Facilities",
    "Insurance",
    "Equipment & Technology",
    "Training & Education",
    "Medical & Health",
    "Home & Garden",
    "Groceries & Food",
    "Clothing & Personal",
    "Gifts & Entertainment",
    "Banking & Finance",
    "Shipping & Postage",
    "Other Business",
    "Personal",
]

DEFAULT_CATEGORY = "Other Business"

_CATEGORY_LOOKUP = {c.lower(): c for c in TAX_CATEGORIES}

# Ordered receipt-type rules: (category, any of these substrings, none of these)
RECEIPT_TYPE_RULES = [
    ("Fuel & Vehicle", ["fuel", "gas", "diesel", "auto", "vehicle", "maintenance",
                        "car wash", "oil change"], []),
    ("Meals & Entertainment", ["restaurant", "food", "dining", "cafe", "coffee", "bar",
                               "catering", "meal"], ["grocer"]),
    ("Gifts & Entertainment", ["gift", "flower", "basket", "entertainment"], []),
    ("Office Supplies", ["office", "supplies", "stationery"], []),
    ("Equipment & Technology", ["equipment", "software", "technology", "electronics"], []),
    ("Travel", ["travel", "hotel", "airline", "flight", "lodging", "rental", "transport",
                "taxi", "rideshare"], []),
    ("Groceries & Food", ["grocer", "supermarket", "market"], ["marketing"]),
    ("Professional Services", ["legal", "accounting", "consulting", "professional",
                               "service"], ["auto"]),
    ("Banking & Finance", ["bank", "financ", "payment", "fee", "interest"], []),
    ("Clothing & Personal", ["clothing", "apparel"], []),
    ("Medical & Health", ["medical", "health", "pharmacy"], []),
    ("Shipping & Postage", ["shipping", "postage", "courier"], []),
    ("Utilities", ["utility", "utilities"], []),
    ("Insurance", ["insurance"], []),
    ("Rent & Facilities", ["rent", "lease"], ["car", "vehicle"]),
    ("Marketing & Advertising", ["marketing", "advertising"], []),
    ("Training & Education", ["education", "training", "conference"], []),
]

BUSINESS_PURPOSES = {
    "Fuel & Vehicle": "Business travel - fuel expense for {vendor}",
    "Meals & Entertainment": "Business meal at {vendor}",
    "Gifts & Entertainment": "Business gift from {vendor} - client appreciation",
    "Office Supplies": "Office supplies from {vendor}",
    "Travel": "Business travel expense - {vendor}",
    "Professional Services": "Professional services from {vendor}",
    "Banking & Finance": "Business banking/finance fee - {vendor}",
    "Shipping & Postage": "Business shipping/postage - {vendor}",
    "Marketing & Advertising": "Marketing/advertising expense - {vendor}",
    "Equipment & Technology": "Business equipment purchase - {vendor}",
    "Training & Education": "Professional development - {vendor}",
    "Utilities": "Business utility expense - {vendor}",
    "Rent & Facilities": "Business facility expense - {vendor}",
    "Insurance": "Business insurance - {vendor}",
}


def normalize_category(value: Optional[str]) -> Optional[str]:
    """
    Map a free-form category onto the taxonomy.

    Matching is case-insensitive and ignores trailing qualifiers such as
    "Medical & Health (Business-related)". Returns None when nothing fits.
    """
    if not value:
        return None
    key = re.sub(r"\s*\(.*?\)\s*$", "", str(value)).strip().lower()
    key = key.replace(" and ", " & ")
    return _CATEGORY_LOOKUP.get(key)


def category_for_receipt_type(receipt_type: Optional[str]) -> Optional[str]:
    """Apply the ordered receipt-type rules; first matching rule wins."""
    if not receipt_type:
        return None
    text = receipt_type.lower()
    for category, keywords, excludes in RECEIPT_TYPE_RULES:
        if any(k in text for k in keywords) and not any(x in text for x in excludes):
            return category
    return None


def classify(item_categories: Iterable[Optional[str]],
             receipt_type: Optional[str] = None) -> str:
    """
    Pick one taxonomy category for a receipt.

    Args:
        item_categories: Per-item expense categories (None entries allowed)
        receipt_type: Free-text receipt type, used when items give no answer

    Returns:
        The most common item category (first seen wins ties), else the
        receipt-type mapping, else "Other Business"
    """
    tally = Counter(c for c in (normalize_category(v) for v in item_categories) if c)
    if tally:
        return tally.most_common(1)[0][0]
    return category_for_receipt_type(receipt_type) or DEFAULT_CATEGORY


def suggest_business_purpose(category: str, vendor: Optional[str]) -> Optional[str]:
    """Suggest a business purpose line for a categorized receipt."""
    if category == "Personal":
        return None
    vendor = vendor or "vendor"
    template = BUSINESS_PURPOSES.get(category)
    if template:
        return template.format(vendor=vendor)
    return f"Business expense - {category.lower()} from {vendor}"
