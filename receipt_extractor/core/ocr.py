"""
OCR text source for receipt images and PDFs.

Any object with an ``async recognize(image) -> OCRResult`` method can act as
a text source; ``TesseractTextSource`` is the bundled implementation.
"""

import asyncio
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Union

from .errors import InvalidImageError, NoTextFoundError, OCRProcessingError
from .utils import IMAGE_EXTS, PDF_EXTS

logger = logging.getLogger(__name__)

ImageInput = Union[bytes, str, Path]

# PDFs are rendered at twice their nominal resolution before OCR
PDF_RENDER_ZOOM = 2


@dataclass
class OCRLine:
    """One recognized line with its mean word confidence."""
    text: str
    confidence: float


@dataclass
class OCRResult:
    """Recognized lines in reading order."""
    lines: List[OCRLine] = field(default_factory=list)
    average_confidence: float = 0.0

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)

    @classmethod
    def from_text(cls, text: str, confidence: float = 1.0) -> "OCRResult":
        """Build a result from plain text, one line per non-blank line."""
        lines = [OCRLine(ln.strip(), confidence) for ln in text.splitlines() if ln.strip()]
        return cls(lines=lines, average_confidence=confidence if lines else 0.0)


def group_lines(data: Dict[str, list]) -> List[OCRLine]:
    """
    Group word-level Tesseract output into lines.

    Args:
        data: ``pytesseract.image_to_data`` output as a dict of columns

    Returns:
        Lines keyed by (block, paragraph, line), each with the mean word
        confidence scaled from 0-100 to 0-1
    """
    groups: Dict[tuple, list] = {}
    for i, word in enumerate(data.get("text", [])):
        word = (word or "").strip()
        try:
            conf = float(data["conf"][i])
        except (TypeError, ValueError):
            conf = -1.0
        if not word or conf < 0:
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        groups.setdefault(key, []).append((word, conf))

    lines = []
    for words in groups.values():
        mean = sum(c for _, c in words) / len(words)
        lines.append(OCRLine(" ".join(w for w, _ in words), round(mean / 100.0, 4)))
    return lines


def _read_source(image: ImageInput) -> bytes:
    if isinstance(image, (bytes, bytearray)):
        data = bytes(image)
    else:
        path = Path(image)
        if path.suffix.lower() not in IMAGE_EXTS | PDF_EXTS:
            raise InvalidImageError(f"Unsupported file type: {path.name}")
        try:
            data = path.read_bytes()
        except OSError as e:
            raise InvalidImageError(f"Could not read {path}: {e}") from e
    if not data:
        raise InvalidImageError()
    return data


def _render_pdf_first_page(data: bytes) -> bytes:
    """Rasterize the first PDF page to PNG bytes using PyMuPDF."""
    import fitz  # pymupdf

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise InvalidImageError(f"Could not open PDF: {e}") from e
    try:
        if doc.page_count == 0:
            raise InvalidImageError("PDF has no pages")
        mat = fitz.Matrix(PDF_RENDER_ZOOM, PDF_RENDER_ZOOM)
        pix = doc[0].get_pixmap(matrix=mat, alpha=False)
        return pix.tobytes("png")
    finally:
        doc.close()


def load_image_bytes(image: ImageInput) -> bytes:
    """Return encoded image bytes for an image or PDF (first page as PNG)."""
    data = _read_source(image)
    if data.startswith(b"%PDF"):
        return _render_pdf_first_page(data)
    return data


def _open_image(data: bytes):
    from PIL import Image, UnidentifiedImageError

    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImageError(f"Could not decode image: {e}") from e
    return img


class TesseractTextSource:
    """Tesseract-backed text source; blocking work runs in a worker thread."""

    def __init__(self, lang: str = "eng", config: str = ""):
        self.lang = lang
        self.config = config

    async def recognize(self, image: ImageInput) -> OCRResult:
        """Recognize text without blocking the event loop."""
        return await asyncio.to_thread(self.recognize_sync, image)

    def recognize_sync(self, image: ImageInput) -> OCRResult:
        """Recognize text in the calling thread."""
        import pytesseract

        img = _open_image(load_image_bytes(image))
        # Improve OCR: convert to grayscale
        if img.mode != "L":
            img = img.convert("L")

        try:
            data = pytesseract.image_to_data(img, lang=self.lang, config=self.config,
                                             output_type=pytesseract.Output.DICT)
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError) as e:
            raise OCRProcessingError(f"Tesseract failed: {e}") from e

        lines = group_lines(data)
        if not lines:
            raise NoTextFoundError()

        average = sum(line.confidence for line in lines) / len(lines)
        logger.debug("Recognized %d line(s), average confidence %.2f", len(lines), average)
        return OCRResult(lines=lines, average_confidence=average)
