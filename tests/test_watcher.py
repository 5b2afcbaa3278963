"""
Tests for the folder watcher: vendor file handling and result routing.
"""

import json

from ledgerscan.models.extraction import (
    AcquisitionMethod,
    ExtractedRecord,
    PipelineResult,
    RecognitionResult,
    ValidationOutcome,
    Vendor,
    VendorMatch,
)
from ledgerscan_watcher import ReceiptHandler, load_vendors, media_type_for, save_vendors


class FakePipeline:
    def __init__(self, needs_review: bool, is_new: bool = False):
        self.needs_review = needs_review
        self.is_new = is_new
        self.calls = []

    async def process(self, tenant_id, content, media_type, home_currency, tenant_vendors):
        self.calls.append((tenant_id, media_type, home_currency, list(tenant_vendors)))
        return PipelineResult(
            tenant_id=tenant_id,
            record=ExtractedRecord(vendor_name="Acme Corp", total_amount=10.0, currency="ILS"),
            validation=ValidationOutcome(needs_review=self.needs_review),
            vendor=VendorMatch(id="v-9", name="Acme Corp", is_new=self.is_new, display_order=1),
            recognition=RecognitionResult(text="Acme Corp", method=AcquisitionMethod.DIRECT_TEXT),
        )


def make_handler(tmp_path, pipeline, vendors_file=None):
    watch = tmp_path / "inbox"
    watch.mkdir()
    return ReceiptHandler(
        pipeline,
        watch,
        tmp_path / "processed",
        tmp_path / "review",
        tenant_id="tenant-1",
        home_currency="ILS",
        vendors_file=vendors_file,
    )


def test_media_types(tmp_path):
    assert media_type_for(tmp_path / "a.pdf") == "application/pdf"
    assert media_type_for(tmp_path / "a.JPG") == "image/jpeg"
    assert media_type_for(tmp_path / "a.txt") == "text/plain"
    assert media_type_for(tmp_path / "a.unknownext") == "application/octet-stream"


def test_vendor_file_round_trip(tmp_path):
    path = tmp_path / "vendors.json"
    save_vendors(str(path), [Vendor(id="v-1", name="סופר פארם", display_order=2)])

    assert json.loads(path.read_text(encoding="utf-8")) == [
        {"id": "v-1", "name": "סופר פארם", "displayOrder": 2}
    ]
    assert load_vendors(str(path)) == [Vendor(id="v-1", name="סופר פארם", display_order=2)]


def test_missing_vendor_file(tmp_path):
    assert load_vendors(str(tmp_path / "nope.json")) == []
    assert load_vendors(None) == []


def test_ready_document_moves_to_processed(tmp_path):
    pipeline = FakePipeline(needs_review=False)
    handler = make_handler(tmp_path, pipeline)
    doc = tmp_path / "inbox" / "receipt.txt"
    doc.write_text("Acme Corp", encoding="utf-8")

    handler.process_document(doc)

    assert (tmp_path / "processed" / "✅_receipt.txt").exists()
    assert not doc.exists()
    assert pipeline.calls[0][:3] == ("tenant-1", "text/plain", "ILS")

    log = json.loads((tmp_path / "processing_log.json").read_text(encoding="utf-8"))
    assert log[0]["filename"] == "receipt.txt"
    assert log[0]["record"]["vendorName"] == "Acme Corp"


def test_flagged_document_moves_to_review(tmp_path):
    handler = make_handler(tmp_path, FakePipeline(needs_review=True))
    doc = tmp_path / "inbox" / "scan.txt"
    doc.write_text("x", encoding="utf-8")

    handler.process_document(doc)

    assert (tmp_path / "review" / "⏳_scan.txt").exists()


def test_new_vendor_is_saved(tmp_path):
    vendors_file = tmp_path / "vendors.json"
    handler = make_handler(tmp_path, FakePipeline(needs_review=False, is_new=True), str(vendors_file))
    doc = tmp_path / "inbox" / "receipt.txt"
    doc.write_text("Acme Corp", encoding="utf-8")

    handler.process_document(doc)

    assert load_vendors(str(vendors_file)) == [Vendor(id="v-9", name="Acme Corp", display_order=1)]
