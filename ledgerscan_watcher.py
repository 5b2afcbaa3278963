#!/usr/bin/env python3
"""
Receipt Folder Watcher - Automatic Extraction

Watches a folder for new receipts and invoices and runs each one through the
extraction pipeline in-process. Clean records move to the processed folder,
records that need a human move to the review folder.

Usage:
    python ledgerscan_watcher.py --watch-folder ./inbox --vendors vendors.json
    python ledgerscan_watcher.py --once ./inbox/receipt.jpg
"""

import argparse
import asyncio
import json
import mimetypes
import sys
import time
from datetime import datetime
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ledgerscan.core.config import settings
from ledgerscan.core.logging import setup_logging
from ledgerscan.models.extraction import PipelineResult, Vendor
from ledgerscan.services.events.event_publisher import create_event_publisher
from ledgerscan.services.pipeline import ExtractionPipeline

SUPPORTED_SUFFIXES = {".pdf", ".png", ".jpg", ".jpeg", ".tif", ".tiff", ".webp", ".bmp", ".txt"}


def media_type_for(path: Path) -> str:
    media_type, _ = mimetypes.guess_type(path.name)
    return media_type or "application/octet-stream"


def load_vendors(path: str | None) -> list[Vendor]:
    """Vendors from a JSON list of {id, name, displayOrder}; empty if no file"""
    if not path or not Path(path).exists():
        return []
    with open(path, "r", encoding="utf-8") as f:
        return [Vendor.model_validate(entry) for entry in json.load(f)]


def save_vendors(path: str | None, vendors: list[Vendor]) -> None:
    if not path:
        return
    with open(path, "w", encoding="utf-8") as f:
        json.dump([v.model_dump(by_alias=True) for v in vendors], f, indent=2, ensure_ascii=False)


class ReceiptHandler(FileSystemEventHandler):
    """Handles new document file events"""

    def __init__(self, pipeline, watch_folder, processed_folder, review_folder,
                 tenant_id, home_currency, vendors_file=None):
        self.pipeline = pipeline
        self.watch_folder = Path(watch_folder)
        self.processed_folder = Path(processed_folder)
        self.review_folder = Path(review_folder)
        self.tenant_id = tenant_id
        self.home_currency = home_currency
        self.vendors_file = vendors_file
        self.vendors = load_vendors(vendors_file)
        self.processed_files = set()

        self.processed_folder.mkdir(exist_ok=True)
        self.review_folder.mkdir(exist_ok=True)

    def on_created(self, event):
        """Called when a file is created in the watched folder"""
        if event.is_directory:
            return

        file_path = Path(event.src_path)
        if file_path.suffix.lower() not in SUPPORTED_SUFFIXES:
            return
        if file_path in self.processed_files:
            return

        # Small delay to ensure file is fully written
        time.sleep(1)
        if not file_path.exists():
            return

        self.processed_files.add(file_path)
        self.process_document(file_path)

    def process_document(self, file_path: Path):
        print("\n" + "=" * 70)
        print(f"📄 NEW DOCUMENT: {file_path.name}")
        print("=" * 70)
        print(f"Time: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        print(f"Size: {file_path.stat().st_size:,} bytes")

        result = asyncio.run(
            self.pipeline.process(
                self.tenant_id,
                file_path.read_bytes(),
                media_type_for(file_path),
                self.home_currency,
                self.vendors,
            )
        )
        self.remember_vendor(result)
        self.handle_result(file_path, result)

    def remember_vendor(self, result: PipelineResult):
        if not result.vendor.is_new:
            return
        self.vendors.append(
            Vendor(id=result.vendor.id, name=result.vendor.name, display_order=result.vendor.display_order or 0)
        )
        save_vendors(self.vendors_file, self.vendors)

    def handle_result(self, file_path: Path, result: PipelineResult):
        print_summary(result)

        if result.needs_review:
            destination, status_emoji = self.review_folder, "⏳"
        else:
            destination, status_emoji = self.processed_folder, "✅"

        dest_path = destination / f"{status_emoji}_{file_path.name}"
        file_path.rename(dest_path)
        print(f"\n📁 Moved to: {dest_path}")

        self.log_processing(file_path.name, result, dest_path)
        print("=" * 70)

    def log_processing(self, filename: str, result: PipelineResult, dest_path: Path):
        """Append the result to processing_log.json next to the watch folder"""
        log_file = self.watch_folder.parent / "processing_log.json"

        if log_file.exists():
            with open(log_file, "r", encoding="utf-8") as f:
                log_data = json.load(f)
        else:
            log_data = []

        log_data.append({
            "timestamp": datetime.now().isoformat(),
            "filename": filename,
            "needs_review": result.needs_review,
            "record": result.record.to_contract(),
            "vendor": result.vendor.model_dump(by_alias=True),
            "conversion": result.conversion.model_dump(by_alias=True) if result.conversion else None,
            "destination": str(dest_path),
        })

        with open(log_file, "w", encoding="utf-8") as f:
            json.dump(log_data, f, indent=2, ensure_ascii=False)


def print_summary(result: PipelineResult):
    record = result.record
    print()
    print("📊 EXTRACTION RESULTS:")
    print(f"   Vendor: {record.vendor_name} ({'new' if result.vendor.is_new else 'known'})")
    print(f"   Invoice #: {record.invoice_number}")
    print(f"   Date: {record.invoice_date}")
    print(f"   Total: {record.currency} {record.total_amount}")
    if result.conversion:
        print(f"   Normalized: {result.conversion.normalized_amount} (rate {result.conversion.fx_rate})")
    print(f"   Text: {result.recognition.method.value}")
    for warning in record.warnings:
        print(f"   ⚠️  {warning}")
    print()
    print("📧 RESULT: NEEDS REVIEW" if result.needs_review else "✅ RESULT: READY")


def main():
    parser = argparse.ArgumentParser(
        description="Watch a folder for receipts and invoices and extract them automatically"
    )
    parser.add_argument("--watch-folder", default="./inbox",
                        help="Folder to watch for new documents (default: ./inbox)")
    parser.add_argument("--processed-folder", default="./processed",
                        help="Folder for records that passed validation (default: ./processed)")
    parser.add_argument("--review-folder", default="./review",
                        help="Folder for records that need review (default: ./review)")
    parser.add_argument("--tenant", default="default", help="Tenant id carried into events")
    parser.add_argument("--home-currency", default=settings.default_currency,
                        help=f"Currency to normalize totals into (default: {settings.default_currency})")
    parser.add_argument("--vendors", default=None,
                        help="JSON file with known vendors; new vendors are appended")
    parser.add_argument("--once", metavar="FILE", default=None,
                        help="Process a single file, print the JSON record and exit")
    args = parser.parse_args()

    setup_logging()
    pipeline = ExtractionPipeline.from_settings(settings, publisher=create_event_publisher(settings))

    if args.once:
        path = Path(args.once)
        result = asyncio.run(
            pipeline.process(args.tenant, path.read_bytes(), media_type_for(path),
                             args.home_currency, load_vendors(args.vendors))
        )
        json.dump(result.model_dump(by_alias=True, mode="json"), sys.stdout, indent=2, ensure_ascii=False)
        print()
        return

    watch_folder = Path(args.watch_folder)
    watch_folder.mkdir(exist_ok=True)

    event_handler = ReceiptHandler(
        pipeline,
        args.watch_folder,
        args.processed_folder,
        args.review_folder,
        tenant_id=args.tenant,
        home_currency=args.home_currency,
        vendors_file=args.vendors,
    )
    observer = Observer()
    observer.schedule(event_handler, str(watch_folder), recursive=False)
    observer.start()

    print("=" * 70)
    print("🔍 RECEIPT WATCHER - AUTOMATIC EXTRACTION")
    print("=" * 70)
    print(f"Watching: {watch_folder.absolute()}")
    print(f"Ready → {Path(args.processed_folder).absolute()}")
    print(f"Needs Review → {Path(args.review_folder).absolute()}")
    print(f"LLM provider: {settings.llm_provider}  OCR: {settings.ocr_provider}  FX: {settings.fx_provider}")
    print(f"Home currency: {args.home_currency}")
    print()
    print("💡 Drop PDFs, photos or scans into the watch folder")
    print("Press Ctrl+C to stop")
    print("=" * 70)

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("\n\n👋 Stopping watcher...")
        observer.stop()

    observer.join()
    print("✅ Watcher stopped")


if __name__ == "__main__":
    main()
