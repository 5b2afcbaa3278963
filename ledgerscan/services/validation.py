"""
Validation and confidence gate.

Final sanity pass over an extracted record. Nothing here raises: every problem
becomes a warning and sets needs_review so a human looks at the document.
"""

import re
from datetime import date
from typing import Callable, Iterable

from loguru import logger
from pydantic import BaseModel

from ..models.extraction import ExtractedRecord, ValidationOutcome

CURRENCY_CODE_FORMAT = re.compile(r"^[A-Z]{3}$")

FIELD_LABELS = {
    "vendor_name": "vendor name",
    "invoice_date": "invoice date",
    "total_amount": "total amount",
    "currency": "currency",
}


class ValidationRulesConfig(BaseModel):
    """Configuration for the gate (loaded from environment)"""
    confidence_threshold: float = 0.7


class RecordValidationRules:
    """
    Decides whether an extracted record needs human review.

    Checks:
    - total amount present and positive
    - invoice date parses and is not in the future
    - currency is a three-letter upper-case code
    - vendor, total and currency confidence (and date confidence when a date
      exists) reach the threshold
    - no upstream acquisition or generation error was reported
    """

    def __init__(self, config: ValidationRulesConfig = None, today: Callable[[], date] = date.today):
        self.config = config or ValidationRulesConfig()
        self.today = today

    def validate(self, record: ExtractedRecord, upstream_errors: Iterable[str] = ()) -> ValidationOutcome:
        """
        Validate a record.

        Args:
            record: Record produced by the generation orchestrator
            upstream_errors: Already-labelled error messages from earlier stages,
                e.g. "OCR error: ..." or "LLM error: ..."

        Returns:
            ValidationOutcome; warnings start with the record's own warnings
        """
        checks = {}
        warnings = list(record.warnings)

        # Check 1: Total amount
        amount_ok = record.total_amount is not None and record.total_amount > 0
        checks["total_amount_valid"] = amount_ok
        if not amount_ok:
            warnings.append("Invalid total amount (must be positive)")

        # Check 2: Invoice date
        date_ok = True
        if record.invoice_date:
            try:
                parsed = date.fromisoformat(record.invoice_date)
            except ValueError:
                date_ok = False
                warnings.append("Invalid invoice date format")
            else:
                if parsed > self.today():
                    date_ok = False
                    warnings.append("Invoice date is in the future")
        checks["invoice_date_valid"] = date_ok

        # Check 3: Currency code
        currency_ok = bool(record.currency) and bool(CURRENCY_CODE_FORMAT.match(record.currency))
        checks["currency_valid"] = currency_ok
        if not currency_ok:
            warnings.append("Invalid currency code format")

        # Check 4: Confidence
        low_fields = self.low_confidence_fields(record)
        confidence_ok = not low_fields
        checks["confidence_sufficient"] = confidence_ok
        if not confidence_ok:
            warnings.append("Low confidence in: " + ", ".join(FIELD_LABELS[f] for f in low_fields))

        # Check 5: Upstream errors
        errors = [e for e in upstream_errors if e]
        checks["upstream_ok"] = not errors
        warnings.extend(errors)

        needs_review = not all(checks.values())

        logger.info(
            "Record validation outcome",
            needs_review=needs_review,
            vendor=record.vendor_name,
            total=record.total_amount,
            checks=checks,
        )

        return ValidationOutcome(needs_review=needs_review, warnings=warnings, checks=checks)

    def low_confidence_fields(self, record: ExtractedRecord) -> list[str]:
        threshold = self.config.confidence_threshold
        scores = record.confidence
        low = []
        if scores.vendor_name < threshold:
            low.append("vendor_name")
        if record.invoice_date and scores.invoice_date < threshold:
            low.append("invoice_date")
        if scores.total_amount < threshold:
            low.append("total_amount")
        if scores.currency < threshold:
            low.append("currency")
        return low


def create_validation_rules(confidence_threshold: float = None) -> RecordValidationRules:
    """
    Factory function to create the gate with optional overrides.

    Uses environment variables as defaults.
    """
    from ..core.config import settings

    config = ValidationRulesConfig(
        confidence_threshold=confidence_threshold if confidence_threshold is not None
        else getattr(settings, "review_confidence_threshold", 0.7),
    )
    return RecordValidationRules(config)


def validate(record: ExtractedRecord, upstream_errors: Iterable[str] = ()) -> ValidationOutcome:
    """Validate with the configured default rules"""
    return create_validation_rules().validate(record, upstream_errors)
