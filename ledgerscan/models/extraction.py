"""
Records passed between pipeline stages.

Attributes are snake_case; serialization with ``by_alias=True`` produces the
camelCase JSON consumed downstream.
"""

import math
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ========== Text acquisition ==========

class AcquisitionMethod(str, Enum):
    DIRECT_TEXT = "direct_text"
    OPTICAL = "optical"
    FAILED = "failed"


class PassDiagnostics(_Record):
    mode: str
    score: float = 0.0
    confidence: float = 0.0  # recognizer-reported, 0-100
    text_length: int = 0
    page: int = 1
    error: str | None = None


class RecognitionResult(_Record):
    text: str = ""
    method: AcquisitionMethod
    chosen_pass: PassDiagnostics | None = None
    passes: tuple[PassDiagnostics, ...] = ()
    page_count: int = 1
    error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.method == AcquisitionMethod.FAILED


# ========== Deterministic candidates ==========

class AmountCandidate(_Record):
    value: float
    category: str
    context: str = ""


class CandidateSet(_Record):
    dates: tuple[str, ...] = ()
    invoice_numbers: tuple[str, ...] = ()
    amounts: tuple[AmountCandidate, ...] = ()
    currencies: tuple[str, ...] = ()
    vendor_candidates: tuple[str, ...] = ()


# ========== Extracted record ==========

class LineItem(_Record):
    description: str
    quantity: float | None = None
    unit_price: float | None = None
    amount: float | None = None


class ConfidenceScores(_Record):
    vendor_name: float = 0.5
    invoice_date: float = 0.5
    total_amount: float = 0.5
    currency: float = 0.5

    @field_validator("*", mode="before")
    @classmethod
    def clamp(cls, value):
        """Missing or non-numeric scores become neutral, the rest are clamped to [0, 1]"""
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0.5
        if math.isnan(value):
            return 0.5
        return min(1.0, max(0.0, float(value)))


class ExtractedRecord(_Record):
    vendor_name: str | None = None
    invoice_date: str | None = None
    total_amount: float | None = None
    currency: str | None = None
    invoice_number: str | None = None
    vat_amount: float | None = None
    subtotal_amount: float | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    confidence: ConfidenceScores = Field(default_factory=ConfidenceScores)
    warnings: list[str] = Field(default_factory=list)

    def to_contract(self) -> dict:
        """JSON-ready dict in the downstream camelCase shape"""
        return self.model_dump(by_alias=True, mode="json")


# ========== Downstream outcomes ==========

class ValidationOutcome(_Record):
    needs_review: bool
    warnings: list[str] = Field(default_factory=list)
    checks: dict[str, bool] = Field(default_factory=dict)


class Vendor(_Record):
    id: str
    name: str
    display_order: int = 0


class VendorMatch(_Record):
    id: str
    name: str
    is_new: bool
    display_order: int | None = None


class ConversionResult(_Record):
    normalized_amount: float
    fx_rate: float
    fx_date: str
    warning: str | None = None

    @property
    def degraded(self) -> bool:
        return self.warning is not None


class PipelineResult(_Record):
    tenant_id: str
    record: ExtractedRecord
    validation: ValidationOutcome
    vendor: VendorMatch
    conversion: ConversionResult | None = None
    recognition: RecognitionResult

    @property
    def needs_review(self) -> bool:
        return self.validation.needs_review
