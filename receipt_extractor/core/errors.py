"""
Error types raised while scanning receipts.

Two families: ``ReceiptScanError`` is fatal for the current scan and reaches
the caller; ``ExtractionError`` comes from the structured extraction service
and is absorbed by the processor, which falls back to pattern parsing.
"""

from typing import Optional


class ReceiptScanError(Exception):
    """A scan failed and no record was produced."""

    default_message = "Receipt scan failed"
    recovery_suggestion = "Please try again"
    retryable = True

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class InvalidImageError(ReceiptScanError):
    """The input could not be read or decoded as an image."""

    default_message = "The provided image is invalid or cannot be processed"
    recovery_suggestion = "Try taking a new photo with better quality"
    retryable = False


class NoTextFoundError(ReceiptScanError):
    """Text recognition found nothing usable."""

    default_message = "No text was found in the image"
    recovery_suggestion = "Try taking a clearer photo with better lighting"


class OCRProcessingError(ReceiptScanError):
    """The OCR engine itself failed."""

    default_message = "Text recognition processing failed"
    recovery_suggestion = "Check that Tesseract is installed and retry"


class ExtractionError(Exception):
    """Structured extraction failed; callers fall back to pattern parsing."""

    kind = "extraction"

    def __init__(self, message: str, *, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class ServiceConfigurationError(ExtractionError):
    """Credentials or SDK for the configured provider are missing."""

    kind = "configuration"


class ServiceRequestError(ExtractionError):
    """Network failure or non-success status from the service."""

    kind = "request"

    def __init__(self, message: str, *, status: Optional[int] = None,
                 body: Optional[str] = None):
        super().__init__(message, raw=body)
        self.status = status
        self.body = body

    def __str__(self) -> str:
        code = self.status if self.status is not None else "-"
        return f"[{code}] {self.args[0]}"


class ServiceTimeoutError(ExtractionError):
    """The service did not answer in time."""

    kind = "timeout"


class EnvelopeDecodeError(ExtractionError):
    """The outer response body could not be decoded."""

    kind = "envelope"


class PayloadDecodeError(ExtractionError):
    """The JSON string inside the response could not be decoded."""

    kind = "payload"
