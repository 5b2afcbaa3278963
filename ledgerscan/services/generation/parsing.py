"""
Turning a completion into an ExtractedRecord, and the field rules applied to
every record leaving the orchestrator (backend or fallback).
"""

import json
import math
import re
from datetime import date

from ...core.errors import GenerationResponseError
from ...models.extraction import ConfidenceScores, ExtractedRecord, LineItem
from ..candidates import normalize_currency_code, normalize_date, parse_amount

INVALID_TOTAL_CONFIDENCE_CAP = 0.3
INVALID_CURRENCY_CONFIDENCE_CAP = 0.4

_CONFIDENCE_KEYS = {"vendorName", "invoiceDate", "totalAmount", "currency"}


def parse_generation_response(raw: str) -> dict:
    """
    Parse the JSON object embedded in a completion.

    Surrounding prose or code fences are ignored: everything from the first
    ``{`` to the last ``}`` is parsed.

    Raises:
        GenerationResponseError: if no JSON object can be parsed
    """
    if not raw:
        raise GenerationResponseError("Empty completion", raw)

    start = raw.find("{")
    end = raw.rfind("}")
    if start == -1 or end <= start:
        raise GenerationResponseError("No JSON object in completion", raw)

    try:
        data = json.loads(raw[start:end + 1])
    except json.JSONDecodeError as e:
        raise GenerationResponseError(f"Invalid JSON in completion: {e.msg}", raw) from e

    if not isinstance(data, dict):
        raise GenerationResponseError("Completion JSON is not an object", raw)
    return data


# ========== Tolerant coercion ==========

def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _coerce_total(value) -> float | None:
    """None stays None; anything that is not a usable number becomes NaN so the rules can flag it"""
    if value is None:
        return None
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        if not value.strip():
            return None
        cleaned = re.sub(r"[₪$€£\s,]", "", value)
        try:
            return float(cleaned)
        except ValueError:
            return math.nan
    return math.nan


def _optional_number(value) -> float | None:
    if _is_number(value) and math.isfinite(value):
        return float(value)
    if isinstance(value, str):
        return parse_amount(value)
    return None


def _optional_text(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _line_items(value) -> list[LineItem]:
    if not isinstance(value, list):
        return []
    items = []
    for entry in value:
        if not isinstance(entry, dict):
            continue
        description = _optional_text(entry.get("description"))
        if not description:
            continue
        items.append(
            LineItem(
                description=description,
                quantity=_optional_number(entry.get("quantity")),
                unit_price=_optional_number(entry.get("unitPrice")),
                amount=_optional_number(entry.get("amount")),
            )
        )
    return items


def coerce_record(data: dict) -> ExtractedRecord:
    """Build a record from loosely typed completion JSON without rejecting it"""
    confidence = data.get("confidence")
    confidence = confidence if isinstance(confidence, dict) else {}
    warnings = data.get("warnings")
    warnings = [str(w) for w in warnings if w] if isinstance(warnings, list) else []

    return ExtractedRecord(
        vendor_name=_optional_text(data.get("vendorName")),
        invoice_date=_optional_text(data.get("invoiceDate")),
        total_amount=_coerce_total(data.get("totalAmount")),
        currency=_optional_text(data.get("currency")),
        invoice_number=_optional_text(data.get("invoiceNumber")),
        vat_amount=_optional_number(data.get("vatAmount")),
        subtotal_amount=_optional_number(data.get("subtotalAmount")),
        line_items=_line_items(data.get("lineItems")),
        # Only keys that are present; absent ones take the neutral default
        confidence=ConfidenceScores(**{k: v for k, v in confidence.items() if k in _CONFIDENCE_KEYS}),
        warnings=warnings,
    )


# ========== Field rules ==========

def apply_field_rules(
    record: ExtractedRecord,
    accepted_currencies: tuple[str, ...] = ("ILS", "USD", "EUR", "GBP"),
    default_currency: str = "ILS",
) -> ExtractedRecord:
    """
    Enforce the output invariants on a record.

    After this, ``total_amount`` is None or a finite positive number and
    ``currency`` is always one of ``accepted_currencies`` (falling back to
    ``default_currency``). Every correction lowers the field's confidence and
    adds a warning.

    Args:
        record: Record from the backend or the deterministic fallback
        accepted_currencies: Currency codes the tenant books in
        default_currency: Replacement for missing or unknown codes

    Returns:
        A new ExtractedRecord
    """
    confidence = record.confidence.model_dump()
    warnings = list(record.warnings)
    total = record.total_amount

    if total is not None and (not math.isfinite(total) or total <= 0):
        total = None
        confidence["total_amount"] = min(confidence["total_amount"], INVALID_TOTAL_CONFIDENCE_CAP)
        warnings.append("Invalid totalAmount extracted")

    if total is None:
        confidence["total_amount"] = 0.0
        warnings.append("Total amount not found")

    currency = record.currency
    if currency is not None:
        normalized = normalize_currency_code(currency)
        if normalized in accepted_currencies:
            currency = normalized
        else:
            warnings.append(f"Unrecognized currency '{currency}', defaulting to {default_currency}")
            currency = default_currency
            confidence["currency"] = min(confidence["currency"], INVALID_CURRENCY_CONFIDENCE_CAP)
    else:
        currency = default_currency
        confidence["currency"] = 0.0
        warnings.append(f"Currency not detected, defaulting to {default_currency}")

    invoice_date = record.invoice_date
    if invoice_date and not _is_iso_date(invoice_date):
        # Leave unparsable dates for the validation gate to flag
        invoice_date = normalize_date(invoice_date) or invoice_date

    return record.model_copy(
        update={
            "total_amount": total,
            "currency": currency,
            "invoice_date": invoice_date,
            "confidence": ConfidenceScores(**confidence),
            "warnings": warnings,
        }
    )


def _is_iso_date(value: str) -> bool:
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return len(value) == 10
