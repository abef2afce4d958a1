"""
Utility functions and constants for receipt processing.
"""

import datetime as dt
import re
from typing import Optional

# File type constants
IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".tif", ".tiff", ".bmp", ".webp"}
PDF_EXTS = {".pdf"}

# Canonical storage format for every transaction date
CANONICAL_DATE_FORMAT = "%Y-%m-%d"

# Pattern constants for parsing (order matters: first match wins)
DATE_PATTERNS = [
    r"\b\d{4}[-/]\d{1,2}[-/]\d{1,2}\b",                    # YYYY-MM-DD or YYYY/MM/DD
    r"\b\d{1,2}/\d{1,2}/\d{2,4}\b",                        # MM/DD/YYYY
    r"\b\d{1,2}-\d{1,2}-\d{2,4}\b",                        # MM-DD-YYYY
    r"(?i)\b(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?\s+\d{1,2},?\s+\d{2,4}\b",
    r"(?i)\b\d{1,2}\s+(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*\.?,?\s+\d{2,4}\b",
]

# Numeric formats tried in order; %Y only accepts four digit years
DATE_FORMATS = [
    "%Y/%m/%d",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%m-%d-%Y",
    "%m-%d-%y",
    "%d/%m/%Y",
    "%d-%m-%Y",
]

AMOUNT_PATTERNS = [
    # Labeled amounts (most reliable)
    r"(?i)\btotal[:\s]*\$?\s*([0-9][0-9,]*\.?[0-9]*)",
    r"(?i)\bamount[:\s]*\$?\s*([0-9][0-9,]*\.?[0-9]*)",

    # Currency symbol with decimals
    r"\$\s*([0-9][0-9,]*\.[0-9]{2})(?:\s|$)",

    # Bare decimal amounts
    r"\b([0-9][0-9,]*\.[0-9]{2})(?:\s|$)",
]

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_MONTH_FIRST_RE = re.compile(r"(?i)^([a-z]{3})[a-z]*\.?\s+(\d{1,2}),?\s+(\d{2,4})$")
_DAY_FIRST_RE = re.compile(r"(?i)^(\d{1,2})\s+([a-z]{3})[a-z]*\.?,?\s+(\d{2,4})$")

US_STATES = {
    "alabama": "AL", "alaska": "AK", "arizona": "AZ", "arkansas": "AR",
    "california": "CA", "colorado": "CO", "connecticut": "CT", "delaware": "DE",
    "district of columbia": "DC", "florida": "FL", "georgia": "GA", "hawaii": "HI",
    "idaho": "ID", "illinois": "IL", "indiana": "IN", "iowa": "IA",
    "kansas": "KS", "kentucky": "KY", "louisiana": "LA", "maine": "ME",
    "maryland": "MD", "massachusetts": "MA", "michigan": "MI", "minnesota": "MN",
    "mississippi": "MS", "missouri": "MO", "montana": "MT", "nebraska": "NE",
    "nevada": "NV", "new hampshire": "NH", "new jersey": "NJ", "new mexico": "NM",
    "new york": "NY", "north carolina": "NC", "north dakota": "ND", "ohio": "OH",
    "oklahoma": "OK", "oregon": "OR", "pennsylvania": "PA", "rhode island": "RI",
    "south carolina": "SC", "south dakota": "SD", "tennessee": "TN", "texas": "TX",
    "utah": "UT", "vermont": "VT", "virginia": "VA", "washington": "WA",
    "west virginia": "WV", "wisconsin": "WI", "wyoming": "WY",
}


def normalize_amount(s: str) -> Optional[float]:
    """Normalize amount string to float."""
    if not s:
        return None
    s = s.replace("$", "").replace(",", "").replace(" ", "")
    try:
        return float(s)
    except ValueError:
        return None


def _year(raw: str) -> int:
    y = int(raw)
    return y + 2000 if y < 100 else y


def parse_date_string(value: Optional[str]) -> Optional[dt.date]:
    """
    Parse a date string using the ordered list of known formats.

    Month names are matched against a fixed English table so the result
    does not depend on the process locale.
    """
    if not value:
        return None
    s = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return dt.datetime.strptime(s, fmt).date()
        except ValueError:
            continue

    m = _MONTH_FIRST_RE.match(s)
    if m:
        month, day, year = MONTHS.get(m.group(1).lower()), int(m.group(2)), _year(m.group(3))
    else:
        m = _DAY_FIRST_RE.match(s)
        if not m:
            return None
        day, month, year = int(m.group(1)), MONTHS.get(m.group(2).lower()), _year(m.group(3))
    if month is None:
        return None
    try:
        return dt.date(year, month, day)
    except ValueError:
        return None


def format_date(value: dt.date) -> str:
    """Format a date in the canonical storage format."""
    return value.strftime(CANONICAL_DATE_FORMAT)


def canonical_date(value: Optional[str]) -> Optional[str]:
    """Re-express any supported date string in the canonical format."""
    parsed = parse_date_string(value)
    return format_date(parsed) if parsed else None


def normalize_city(city: Optional[str]) -> Optional[str]:
    """Lowercase a city name; blank becomes None."""
    city = (city or "").strip()
    return city.lower() or None


def normalize_state(state: Optional[str]) -> Optional[str]:
    """Return a 2-letter uppercase state code, mapping full US state names."""
    state = (state or "").strip().rstrip(".")
    if not state:
        return None
    if len(state) == 2 and state.isalpha():
        return state.upper()
    return US_STATES.get(state.lower())


def clean_text(value: Optional[str]) -> Optional[str]:
    """Strip a string and collapse empty values to None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None
