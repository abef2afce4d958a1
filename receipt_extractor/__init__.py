"""
Receipt Extractor

Turns photographed receipts into structured, tax-categorized expense
records with a confidence score that decides when a human must review them.
"""

__version__ = "1.0.0"
__author__ = "Receipt Extractor Contributors"

from receipt_extractor.core.config import ExtractionSettings
from receipt_extractor.core.models import ReceiptRecord
from receipt_extractor.core.processor import ReceiptProcessor

__all__ = ["ExtractionSettings", "ReceiptProcessor", "ReceiptRecord"]
