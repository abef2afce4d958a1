"""
Structured receipt extraction through a multimodal model service.

Supports a local Ollama server (primary) and chat-style providers through
their SDKs (OpenAI, Azure OpenAI, Anthropic). Each call is a single attempt;
retrying is left to the caller.
"""

import base64
import logging
import os
import re
from typing import Optional

import httpx
from pydantic import ValidationError

from .categorization import TAX_CATEGORIES, classify, normalize_category
from .config import API_KEY_ENV_VARS, ExtractionSettings, LLMProvider
from .errors import (EnvelopeDecodeError, PayloadDecodeError, ServiceConfigurationError,
                     ServiceRequestError, ServiceTimeoutError)
from .models import (LineItem, Notes, Promotion, ReceiptRecord, Totals, TransactionInfo,
                     VendorInfo)
from .schema import GenerateEnvelope, ReceiptExtraction
from .utils import canonical_date, clean_text, normalize_city, normalize_state

logger = logging.getLogger(__name__)

PROMPT_VERSION = "receipt-v3"

# Raw bodies are truncated to this many characters in log messages
LOG_BODY_LIMIT = 2000

PROMPT_TEMPLATE = """You are an expert financial document parser. Read the attached receipt image and return a single valid JSON object. Do not write anything before or after the JSON.

The object must have exactly these six top-level keys:
{{
  "receipt_type": "short description, e.g. 'Retail Sale', 'Fuel Receipt', 'Restaurant Dining', 'Service Invoice', 'Other'",
  "vendor_info": {{
    "store_name": "simplified common name, e.g. 'Walmart'",
    "vendor": "full name as printed",
    "slogan": "string or null",
    "address": "street address",
    "city": "lowercase city name",
    "state": "2-letter uppercase postal code, e.g. 'NY'",
    "zip_code": "5 or 9 digit postal code",
    "phone": "phone number",
    "website": "website",
    "tax_id": "EIN, VAT or other tax id"
  }},
  "transaction_info": {{
    "date": "YYYY-MM-DD",
    "time": "HH:MM or HH:MM:SS",
    "transaction_id": "receipt or transaction number",
    "payment_method": "e.g. 'Visa', 'Cash', 'Debit'",
    "card_ending": "last 4 card digits",
    "auth_code": "authorization code",
    "cashier": "cashier name or id",
    "register": "register or terminal id",
    "customer_name": "customer name",
    "customer_number": "loyalty or customer id",
    "return_policy": "short summary",
    "promotions": [{{"promo_type": "e.g. 'Coupon'", "details": "e.g. '$5 off'"}}],
    "code_definitions": {{"F": "Food item"}}
  }},
  "items": [
    {{
      "description": "item description",
      "quantity": 1,
      "unit_price": 0.0,
      "unit_subtotal": 0.0,
      "total_price": 0.0,
      "tax_category": "e.g. 'Taxable'",
      "expense_category": "one of the categories listed below",
      "sku": "product code",
      "discount": 0.0,
      "codes": ["F"],
      "is_expense": true,
      "needs_review": false
    }}
  ],
  "totals": {{
    "subtotal": 0.0,
    "tax": 0.0,
    "tax_rate": 0.0,
    "tip": 0.0,
    "discount": 0.0,
    "total": 0.0,
    "cash_back": 0.0,
    "change": 0.0
  }},
  "notes": {{
    "handwriting": "transcribed handwritten notes",
    "description": "general description of the receipt",
    "vehicle": "vehicle or pump identifier",
    "mileage": "odometer reading",
    "trip": "trip label",
    "business_purpose": "likely business purpose",
    "raw_text": "all text visible on the receipt"
  }}
}}

Rules:
- Dates use the YYYY-MM-DD format.
- City is lowercase; state is the 2-letter uppercase postal abbreviation.
- Money, quantity and rate fields are JSON numbers, never strings. Do not include currency symbols.
- Boolean fields are JSON true or false.
- Use null for anything that is not clearly present. Never guess.
- Set "needs_review" to true on any item you are unsure about.
- "expense_category" must be exactly one of: {categories}
"""

OCR_HINT_TEMPLATE = """
Text recognized on the receipt by OCR (may contain errors, prefer the image when they disagree):
{ocr_text}
"""

_FENCE_RE = re.compile(r"```[A-Za-z]*[ \t]*\n?(.*?)```", re.DOTALL)


def build_prompt(ocr_text: Optional[str] = None) -> str:
    """Render the extraction prompt, optionally with OCR text as a hint."""
    prompt = PROMPT_TEMPLATE.format(categories=", ".join(TAX_CATEGORIES))
    if ocr_text and ocr_text.strip():
        prompt += OCR_HINT_TEMPLATE.format(ocr_text=ocr_text.strip()[:4000])
    return prompt


def strip_code_fences(text: Optional[str]) -> str:
    """Remove Markdown code fences around a JSON reply."""
    text = (text or "").strip()
    m = _FENCE_RE.search(text)
    if m:
        return m.group(1).strip()
    if text.startswith("```"):
        # Opening fence without a closing one
        return text.split("\n", 1)[1].strip() if "\n" in text else ""
    return text


def decode_envelope(body: str) -> str:
    """Decode a generate reply and return the inner JSON string."""
    try:
        envelope = GenerateEnvelope.model_validate_json(body)
    except ValidationError as e:
        logger.warning("Malformed response envelope: %s", _truncate(body))
        raise EnvelopeDecodeError(f"Malformed response envelope ({e.error_count()} error(s))",
                                  raw=body) from e
    return envelope.response


def decode_payload(payload: str) -> ReceiptExtraction:
    """Decode the inner JSON string into the six-section schema."""
    text = strip_code_fences(payload)
    try:
        return ReceiptExtraction.model_validate_json(text)
    except ValidationError as e:
        logger.warning("Malformed extraction payload: %s", _truncate(payload))
        raise PayloadDecodeError(f"Malformed extraction payload ({e.error_count()} error(s))",
                                 raw=payload) from e


def guess_mime_type(data: bytes) -> str:
    """Guess an image MIME type from its leading bytes."""
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def _truncate(text: Optional[str]) -> str:
    text = text or ""
    if len(text) <= LOG_BODY_LIMIT:
        return text
    return text[:LOG_BODY_LIMIT] + "...[truncated]"


class StructuredExtractionClient:
    """
    Client for the structured extraction service.

    Args:
        settings: Service configuration
        http_client: Optional shared ``httpx.AsyncClient``. It is used for the
            Ollama endpoint and handed to the provider SDKs; the caller keeps
            ownership of a client passed in here.
    """

    def __init__(self, settings: ExtractionSettings,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._sdk_client = None

    @property
    def provider(self) -> LLMProvider:
        return self.settings.provider

    async def extract(self, image_bytes: bytes,
                      ocr_text: Optional[str] = None) -> ReceiptExtraction:
        """
        Run one structured extraction.

        Raises:
            ExtractionError: any subclass, one per failure mode
        """
        prompt = build_prompt(ocr_text)
        image_b64 = base64.b64encode(image_bytes).decode("ascii")
        mime = guess_mime_type(image_bytes)
        logger.debug("Structured extraction via %s (%s, prompt %s)",
                     self.provider.value, self.settings.resolved_model, PROMPT_VERSION)

        if self.provider == LLMProvider.OLLAMA:
            payload = await self._generate_ollama(prompt, image_b64)
        elif self.provider in (LLMProvider.OPENAI, LLMProvider.AZURE_OPENAI):
            payload = await self._chat_openai(prompt, image_b64, mime)
        elif self.provider == LLMProvider.ANTHROPIC:
            payload = await self._messages_anthropic(prompt, image_b64, mime)
        else:
            raise ServiceConfigurationError(f"Unsupported LLM provider: {self.provider}")

        return decode_payload(payload)

    async def check_connection(self) -> bool:
        """Return True when the configured service answers a listing request."""
        try:
            if self.provider == LLMProvider.OLLAMA:
                url = f"{self.settings.resolved_base_url}/api/tags"
                response = await self._http().get(url, timeout=self.settings.probe_timeout)
                ok = response.is_success
                if not ok:
                    logger.warning("Connectivity probe %s returned %s", url, response.status_code)
                return ok

            client = self._sdk().with_options(timeout=self.settings.probe_timeout)
            await client.models.list()
            return True
        except ServiceConfigurationError as e:
            logger.warning("Connectivity probe skipped: %s", e)
            return False
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Connectivity probe failed: %s", e)
            return False
        except self._sdk_module().APIError as e:
            logger.warning("Connectivity probe failed: %s", e)
            return False

    async def aclose(self):
        if self._sdk_client is not None:
            # Closing the SDK client also closes the httpx client it wraps
            if self._owns_http_client:
                await self._sdk_client.close()
            self._sdk_client = None
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    # -- Ollama --------------------------------------------------------------

    def _http(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.settings.timeout)
        return self._http_client

    async def _generate_ollama(self, prompt: str, image_b64: str) -> str:
        url = f"{self.settings.resolved_base_url}/api/generate"
        body = {
            "model": self.settings.resolved_model,
            "prompt": prompt,
            "images": [image_b64],
            "format": "json",
            "stream": False,
            "options": {"temperature": self.settings.temperature},
        }
        try:
            response = await self._http().post(url, json=body, timeout=self.settings.timeout)
        except httpx.TimeoutException as e:
            raise ServiceTimeoutError(
                f"Request to {url} timed out after {self.settings.timeout}s") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ServiceRequestError(f"Request to {url} failed: {e}") from e

        if not response.is_success:
            logger.warning("Extraction service returned %s: %s",
                           response.status_code, _truncate(response.text))
            raise ServiceRequestError(f"Extraction service returned {response.status_code}",
                                      status=response.status_code, body=response.text)
        return decode_envelope(response.text)

    # -- SDK providers -------------------------------------------------------

    def _sdk_module(self):
        if self.provider == LLMProvider.ANTHROPIC:
            import anthropic
            return anthropic
        import openai
        return openai

    def _sdk(self):
        """Get or create the provider SDK client (lazy initialization)."""
        if self._sdk_client is not None:
            return self._sdk_client

        key_var = API_KEY_ENV_VARS.get(self.provider)
        api_key = self.settings.api_key or (os.getenv(key_var) if key_var else None)
        if not api_key:
            raise ServiceConfigurationError(
                f"No API key configured for {self.provider.value} (set LLM_API_KEY or {key_var})")

        sdk = self._sdk_module()
        common = {
            "api_key": api_key,
            "max_retries": 0,
            "timeout": self.settings.timeout,
            "http_client": self._http_client,
        }
        try:
            if self.provider == LLMProvider.AZURE_OPENAI:
                self._sdk_client = sdk.AsyncAzureOpenAI(
                    api_version=self.settings.azure_api_version,
                    azure_endpoint=self.settings.resolved_base_url, **common)
            elif self.provider == LLMProvider.OPENAI:
                self._sdk_client = sdk.AsyncOpenAI(base_url=self.settings.resolved_base_url,
                                                   **common)
            else:
                self._sdk_client = sdk.AsyncAnthropic(base_url=self.settings.resolved_base_url,
                                                      **common)
        except (ValueError, sdk.APIError) as e:
            raise ServiceConfigurationError(f"Could not create {self.provider.value} client: {e}") from e
        return self._sdk_client

    def _translate_sdk_error(self, sdk, e: Exception):
        if isinstance(e, sdk.APITimeoutError):
            return ServiceTimeoutError(f"{self.provider.value} request timed out after "
                                       f"{self.settings.timeout}s")
        if isinstance(e, sdk.APIStatusError):
            body = e.response.text
            logger.warning("Extraction service returned %s: %s", e.status_code, _truncate(body))
            return ServiceRequestError(f"{self.provider.value} returned {e.status_code}",
                                       status=e.status_code, body=body)
        if isinstance(e, sdk.APIResponseValidationError):
            body = e.response.text
            logger.warning("Malformed response envelope: %s", _truncate(body))
            return EnvelopeDecodeError("Malformed response envelope", raw=body)
        return ServiceRequestError(f"{self.provider.value} request failed: {e}")

    async def _chat_openai(self, prompt: str, image_b64: str, mime: str) -> str:
        client = self._sdk()
        sdk = self._sdk_module()
        try:
            completion = await client.chat.completions.create(
                model=self.settings.resolved_model,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url",
                         "image_url": {"url": f"data:{mime};base64,{image_b64}"}},
                    ],
                }],
                max_tokens=self.settings.max_tokens,
                temperature=self.settings.temperature,
            )
        except sdk.APIError as e:
            raise self._translate_sdk_error(sdk, e) from e

        choices = getattr(completion, "choices", None)
        content = choices[0].message.content if choices else None
        if not content:
            raise EnvelopeDecodeError("Chat completion carried no message content",
                                      raw=str(completion))
        return content

    async def _messages_anthropic(self, prompt: str, image_b64: str, mime: str) -> str:
        client = self._sdk()
        sdk = self._sdk_module()
        try:
            message = await client.messages.create(
                model=self.settings.resolved_model,
                max_tokens=self.settings.max_tokens,
                temperature=self.settings.temperature,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "image",
                         "source": {"type": "base64", "media_type": mime, "data": image_b64}},
                        {"type": "text", "text": prompt},
                    ],
                }],
            )
        except sdk.APIError as e:
            raise self._translate_sdk_error(sdk, e) from e

        text = "".join(block.text for block in message.content if block.type == "text")
        if not text:
            raise EnvelopeDecodeError("Message carried no text content", raw=str(message))
        return text


def map_extraction(extraction: ReceiptExtraction, raw_text: str,
                   confidence: float) -> ReceiptRecord:
    """
    Map a decoded extraction into the canonical record.

    Dates are re-expressed in the canonical format (unparseable dates become
    None), city and state are normalized, and item categories outside the
    taxonomy are dropped before the record is categorized.
    """
    v = extraction.vendor_info
    t = extraction.transaction_info
    totals = extraction.totals
    notes = extraction.notes

    date = canonical_date(t.date)
    if t.date and date is None:
        logger.debug("Dropping unparseable date %r", t.date)

    items = [
        LineItem(
            description=clean_text(item.description),
            quantity=item.quantity,
            unit_price=item.unit_price,
            unit_subtotal=item.unit_subtotal,
            total_price=item.total_price,
            tax_category=clean_text(item.tax_category),
            expense_category=normalize_category(item.expense_category),
            sku=clean_text(item.sku),
            discount=item.discount,
            codes=[c for c in (clean_text(code) for code in item.codes) if c],
            is_expense=item.is_expense,
            needs_review=bool(item.needs_review),
        )
        for item in extraction.items
    ]

    receipt_type = clean_text(extraction.receipt_type)
    return ReceiptRecord(
        raw_text=raw_text or "",
        confidence=confidence,
        receipt_type=receipt_type,
        category=classify([item.expense_category for item in items], receipt_type),
        extraction_method="structured",
        vendor_info=VendorInfo(
            vendor=clean_text(v.vendor),
            store_name=clean_text(v.store_name),
            address=clean_text(v.address),
            city=normalize_city(v.city),
            state=normalize_state(v.state),
            postal_code=clean_text(v.zip_code),
            phone=clean_text(v.phone),
            website=clean_text(v.website),
            tax_id=clean_text(v.tax_id),
            slogan=clean_text(v.slogan),
        ),
        transaction_info=TransactionInfo(
            date=date,
            time=clean_text(t.time),
            transaction_id=clean_text(t.transaction_id),
            payment_method=clean_text(t.payment_method),
            card_ending=clean_text(t.card_ending),
            auth_code=clean_text(t.auth_code),
            cashier=clean_text(t.cashier),
            register=clean_text(t.register),
            customer_id=clean_text(t.customer_number),
            customer_name=clean_text(t.customer_name),
            return_policy=clean_text(t.return_policy),
            promotions=[Promotion(promo_type=clean_text(p.promo_type), details=clean_text(p.details))
                        for p in t.promotions],
            code_definitions=dict(t.code_definitions),
        ),
        items=items,
        totals=Totals(
            subtotal=totals.subtotal,
            tax=totals.tax,
            tax_rate=totals.tax_rate,
            tip=totals.tip,
            discount=totals.discount,
            total=totals.total,
            cash_back=totals.cash_back,
            change=totals.change,
        ),
        notes=Notes(
            handwriting=clean_text(notes.handwriting),
            description=clean_text(notes.description),
            vehicle=clean_text(notes.vehicle),
            mileage=clean_text(notes.mileage),
            trip=clean_text(notes.trip),
            business_purpose=clean_text(notes.business_purpose),
            raw_text=clean_text(notes.raw_text) or raw_text or None,
        ),
    )
