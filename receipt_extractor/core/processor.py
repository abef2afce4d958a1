"""
Main receipt processing orchestration.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Union

from .categorization import classify, suggest_business_purpose
from .confidence import estimate_confidence
from .config import ExtractionSettings
from .errors import ExtractionError, NoTextFoundError, ReceiptScanError, ServiceTimeoutError
from .llm import StructuredExtractionClient, map_extraction
from .models import ReceiptRecord
from .ocr import ImageInput, OCRResult, load_image_bytes
from .parsers import build_heuristic_record

logger = logging.getLogger(__name__)


class ScanStage(str, Enum):
    """Stages a single scan moves through."""
    IDLE = "idle"
    EXTRACTING_TEXT = "extracting_text"
    STRUCTURED_EXTRACTION = "structured_extraction"
    SUCCESS = "success"
    FAILURE = "failure"
    HEURISTIC_FALLBACK = "heuristic_fallback"
    CATEGORIZING = "categorizing"
    DONE = "done"


StageCallback = Callable[[ScanStage], None]


@dataclass(frozen=True)
class RetryPolicy:
    """
    User-initiated retries of failed scans.

    ``attempt`` is the 1-based number of the retry about to run, so the
    default policy allows three retries waiting 2, 4 and 6 seconds.
    """
    max_attempts: int = 3
    backoff_step: float = 2.0

    def can_retry(self, error: BaseException, attempt: int) -> bool:
        """Whether ``error`` may be retried on this attempt."""
        if not isinstance(error, ReceiptScanError) or not error.retryable:
            return False
        return 1 <= attempt <= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before ``attempt``."""
        return self.backoff_step * attempt


class ReceiptProcessor:
    """
    Turns one receipt image into one canonical record.

    Structured extraction is tried first; any failure there falls back to
    pattern parsing of the OCR text, so every scan whose OCR succeeds yields
    a record. OCR failures are raised to the caller.
    """

    def __init__(self, text_source, settings: Optional[ExtractionSettings] = None,
                 client: Optional[StructuredExtractionClient] = None,
                 retry_policy: Optional[RetryPolicy] = None):
        """
        Initialize receipt processor.

        Args:
            text_source: Object with ``async recognize(image) -> OCRResult``
            settings: Extraction settings (defaults to a local Ollama server)
            client: Structured extraction client; built from ``settings`` when
                omitted and extraction is enabled
            retry_policy: Policy for user-initiated retries
        """
        self.settings = settings or ExtractionSettings()
        self.text_source = text_source
        self._owns_client = client is None
        if client is None and self.settings.enabled:
            client = StructuredExtractionClient(self.settings)
        self.client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self._extraction_slots = asyncio.Semaphore(self.settings.max_concurrent_extractions)

    async def scan(self, image: ImageInput,
                   on_stage: Optional[StageCallback] = None) -> ReceiptRecord:
        """
        Scan a receipt image.

        Args:
            image: Image or PDF as bytes or a file path
            on_stage: Optional callback invoked on every stage transition

        Returns:
            The finished record

        Raises:
            ReceiptScanError: text recognition failed; no record is produced
        """
        def enter(stage: ScanStage):
            logger.debug("Scan stage: %s", stage.value)
            if on_stage is not None:
                on_stage(stage)

        enter(ScanStage.IDLE)
        enter(ScanStage.EXTRACTING_TEXT)
        ocr = await self.text_source.recognize(image)
        if not ocr.text.strip():
            raise NoTextFoundError()

        record = None
        if self.client is not None and self.settings.enabled:
            enter(ScanStage.STRUCTURED_EXTRACTION)
            try:
                record = await self._extract_structured(image, ocr)
                enter(ScanStage.SUCCESS)
            except ExtractionError as e:
                enter(ScanStage.FAILURE)
                logger.warning("Structured extraction failed (%s): %s; using pattern parsing",
                               e.kind, e)
            except Exception:
                enter(ScanStage.FAILURE)
                logger.exception("Unexpected structured extraction error; using pattern parsing")
        else:
            logger.info("Structured extraction disabled; using pattern parsing")

        if record is None:
            enter(ScanStage.HEURISTIC_FALLBACK)
            record = build_heuristic_record(ocr)

        enter(ScanStage.CATEGORIZING)
        self._categorize(record)

        enter(ScanStage.DONE)
        logger.info("Scanned receipt %s: %s | %s | %s (confidence %.2f%s)",
                    record.id, record.vendor_name or "(no vendor)",
                    record.transaction_info.date or "(no date)",
                    f"${record.amount:.2f}" if record.amount else "(no amount)",
                    record.confidence, ", needs review" if record.needs_review else "")
        return record

    async def _extract_structured(self, image: ImageInput, ocr: OCRResult) -> ReceiptRecord:
        try:
            image_bytes = await asyncio.to_thread(load_image_bytes, image)
        except ReceiptScanError as e:
            raise ExtractionError(f"Could not prepare image for extraction: {e}") from e

        async with self._extraction_slots:
            try:
                extraction = await asyncio.wait_for(
                    self.client.extract(image_bytes, ocr.text), timeout=self.settings.timeout)
            except asyncio.TimeoutError as e:
                raise ServiceTimeoutError(
                    f"Structured extraction timed out after {self.settings.timeout}s") from e

        confidence = estimate_confidence(extraction)
        return map_extraction(extraction, ocr.text, confidence)

    @staticmethod
    def _categorize(record: ReceiptRecord):
        """Assign the tax category and fill in a missing business purpose."""
        record.category = classify([item.expense_category for item in record.items],
                                   record.receipt_type)
        if not record.notes.business_purpose:
            record.notes.business_purpose = suggest_business_purpose(record.category,
                                                                     record.vendor_name)

    async def retry(self, image: ImageInput, attempt: int, error: BaseException,
                    on_stage: Optional[StageCallback] = None) -> ReceiptRecord:
        """
        Re-run a failed scan after the policy's backoff delay.

        Raises ``error`` again when the policy does not allow this attempt.
        """
        if not self.retry_policy.can_retry(error, attempt):
            raise error
        delay = self.retry_policy.delay_for(attempt)
        logger.info("Retrying scan (attempt %d of %d) in %.0fs",
                    attempt, self.retry_policy.max_attempts, delay)
        await asyncio.sleep(delay)
        return await self.scan(image, on_stage)

    async def scan_many(self, images: List[ImageInput]) -> List[Union[ReceiptRecord, ReceiptScanError]]:
        """
        Scan several receipts concurrently.

        Returns one entry per image in input order: the record, or the
        ``ReceiptScanError`` that stopped that scan.
        """
        results = await asyncio.gather(*(self.scan(image) for image in images),
                                       return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, ReceiptScanError):
                raise result
        return list(results)

    async def aclose(self):
        """Close the extraction client if this processor created it."""
        if self._owns_client and self.client is not None:
            await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()
