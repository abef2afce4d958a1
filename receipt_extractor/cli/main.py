#!/usr/bin/env python3
"""
Main CLI entrypoint for the receipt extractor.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List

from receipt_extractor.core.config import ExtractionSettings, LLMProvider
from receipt_extractor.core.errors import ReceiptScanError
from receipt_extractor.core.ocr import TesseractTextSource
from receipt_extractor.core.processor import ReceiptProcessor

logger = logging.getLogger("receipt_extractor")


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="receipt-extract",
        description="Extract structured, tax-categorized expense records from receipt images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Extract with a local Ollama server (default)
  receipt-extract receipt.jpg

  # Use OpenAI instead (reads OPENAI_API_KEY)
  receipt-extract --provider openai receipt.jpg scan.pdf

  # Pattern parsing only, no model service
  receipt-extract --no-llm receipt.jpg

  # Check that the configured service is reachable
  receipt-extract --check
        """
    )
    parser.add_argument("images", nargs="*",
                        help="Receipt images or PDFs (first page is used)")

    # LLM configuration
    parser.add_argument("--provider", choices=[p.value for p in LLMProvider],
                        help="Extraction service provider (default: ollama, or LLM_PROVIDER env var)")
    parser.add_argument("--model",
                        help="Model name (uses provider default if not specified, or LLM_MODEL env var)")
    parser.add_argument("--base-url",
                        help="Service base URL (or LLM_BASE_URL env var)")
    parser.add_argument("--timeout", type=float,
                        help="Request timeout in seconds (default: 60, or LLM_TIMEOUT env var)")
    parser.add_argument("--no-llm", action="store_true",
                        help="Disable structured extraction, use only pattern-based parsing")
    parser.add_argument("--check", action="store_true",
                        help="Only check connectivity to the extraction service")

    parser.add_argument("--retries", type=int, default=0,
                        help="Retry failed scans up to N times with increasing backoff (max 3)")
    parser.add_argument("--lang", default="eng",
                        help="Tesseract language (default: eng)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Show detailed processing information for debugging")
    return parser


async def _scan_one(processor: ReceiptProcessor, image: str, retries: int):
    try:
        return await processor.scan(image)
    except ReceiptScanError as e:
        error = e

    attempt = 1
    while attempt <= retries:
        try:
            return await processor.retry(image, attempt, error)
        except ReceiptScanError as e:
            error = e
            attempt += 1
    raise error


async def run(args, settings: ExtractionSettings) -> int:
    """Scan every image and print the records; return the exit status."""
    processor = ReceiptProcessor(TesseractTextSource(lang=args.lang), settings)
    async with processor:
        if args.check:
            if processor.client is None:
                logger.error("Structured extraction is disabled")
                return 1
            ok = await processor.client.check_connection()
            if ok:
                logger.info("%s is reachable (%s)", settings.provider.value,
                            settings.resolved_base_url or "default endpoint")
                return 0
            logger.error("%s is not reachable", settings.provider.value)
            return 1

        if settings.enabled:
            logger.info("LLM: %s (%s)", settings.provider.value, settings.resolved_model)

        retries = max(0, min(args.retries, processor.retry_policy.max_attempts))
        records: List[dict] = []
        failed = 0
        for image in args.images:
            logger.info("Processing %s", image)
            try:
                record = await _scan_one(processor, image, retries)
            except ReceiptScanError as e:
                failed += 1
                logger.error("Failed %s: %s. %s", image, e.message, e.recovery_suggestion)
                continue
            records.append(record.to_dict())

    json.dump(records, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 1 if failed else 0


def main(argv=None) -> int:
    """Main CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.check and not args.images:
        parser.error("at least one image is required unless --check is given")

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="[%(levelname)s] %(message)s", stream=sys.stderr)

    try:
        settings = ExtractionSettings.from_env(
            provider=args.provider,
            model=args.model,
            base_url=args.base_url,
            timeout=args.timeout,
            enabled=False if args.no_llm else None,
        )
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
