"""
Generation orchestrator: backend-assisted structured extraction with retry and
a deterministic fallback.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from ...core.config import Settings, settings as default_settings
from ...models.extraction import CandidateSet, ConfidenceScores, ExtractedRecord
from ..candidates import normalize_date, scan_first_date, scan_largest_money_amount
from .backends import GenerationBackend, build_backend
from .parsing import apply_field_rules, coerce_record, parse_generation_response
from .prompts import DEFAULT_TEXT_BUDGET, CandidateHints, build_messages
from .retry import RetryPolicy, describe_error, run_with_retry

FALLBACK_CONFIDENCE = 0.3
FALLBACK_WARNING = "LLM extraction failed, using regex fallback"
DISABLED_WARNING = "LLM extraction unavailable, using regex fallback"
EMPTY_TEXT_WARNING = "No text could be read from the document"


@dataclass(frozen=True)
class GenerationOutcome:
    """
    Attributes:
        record: Final record, field rules already applied
        used_fallback: True when the record came from deterministic hints only
        attempts: Backend attempts made (0 when the backend was not called)
        error: Why generation was exhausted, for the validation gate
    """

    record: ExtractedRecord
    used_fallback: bool = False
    attempts: int = 0
    error: str | None = None


class GenerationOrchestrator:
    """
    Extracts an ExtractedRecord from document text.

    Usage:
        orchestrator = GenerationOrchestrator.from_settings(settings)
        record = await orchestrator.extract(text, extract_candidates(text))

    ``extract`` never raises for backend failures or poor text. When the
    backend is disabled or every attempt fails, the record is assembled from
    the deterministic candidates.
    """

    def __init__(
        self,
        backend: GenerationBackend | None,
        retry_policy: RetryPolicy = RetryPolicy(),
        timeout_seconds: float = 60.0,
        text_budget: int = DEFAULT_TEXT_BUDGET,
        accepted_currencies: tuple[str, ...] = ("ILS", "USD", "EUR", "GBP"),
        default_currency: str = "ILS",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.backend = backend
        self.retry_policy = retry_policy
        self.timeout_seconds = timeout_seconds
        self.text_budget = text_budget
        self.accepted_currencies = accepted_currencies
        self.default_currency = default_currency
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings | None = None, backend: GenerationBackend | None = None):
        settings = settings or default_settings
        return cls(
            backend=backend if backend is not None else build_backend(settings),
            retry_policy=RetryPolicy(
                max_retries=settings.llm_max_retries,
                backoff_seconds=settings.llm_backoff_seconds,
            ),
            timeout_seconds=settings.llm_timeout_seconds,
            text_budget=settings.llm_text_budget,
            accepted_currencies=settings.accepted_currency_codes,
            default_currency=settings.default_currency,
        )

    async def extract(self, text: str, candidates: CandidateSet | None = None) -> ExtractedRecord:
        return (await self.run(text, candidates)).record

    async def run(self, text: str, candidates: CandidateSet | None = None) -> GenerationOutcome:
        """
        Extract a record and report how it was obtained.

        Args:
            text: Acquired document text (may be empty)
            candidates: Deterministic candidates for the same text

        Returns:
            GenerationOutcome with the final record
        """
        hints = CandidateHints.from_candidates(candidates, self.default_currency)

        if not text.strip():
            logger.warning("No text to extract from, returning empty record")
            return GenerationOutcome(record=self._fallback(text, hints, EMPTY_TEXT_WARNING), used_fallback=True)

        if self.backend is None:
            return GenerationOutcome(record=self._fallback(text, hints, DISABLED_WARNING), used_fallback=True)

        messages = build_messages(text, hints, self.text_budget)
        result = await run_with_retry(lambda: self._attempt(messages), self.retry_policy, self.sleep)

        if result.ok:
            record = self._finalize(coerce_record(result.value))
            logger.info(
                "Generation succeeded",
                provider=self.backend.name,
                attempts=result.attempts,
                vendor=record.vendor_name,
                total=record.total_amount,
                currency=record.currency,
            )
            return GenerationOutcome(record=record, attempts=result.attempts)

        error = f"{self.backend.name} failed after {result.attempts} attempt(s): {describe_error(result.error)}"
        logger.error("Generation exhausted, using deterministic fallback", provider=self.backend.name, error=error)
        return GenerationOutcome(
            record=self._fallback(text, hints, FALLBACK_WARNING),
            used_fallback=True,
            attempts=result.attempts,
            error=error,
        )

    async def _attempt(self, messages: list[dict[str, str]]) -> dict:
        raw = await asyncio.wait_for(self.backend.generate(messages), timeout=self.timeout_seconds)
        return parse_generation_response(raw)

    def _finalize(self, record: ExtractedRecord) -> ExtractedRecord:
        return apply_field_rules(record, self.accepted_currencies, self.default_currency)

    def _fallback(self, text: str, hints: CandidateHints, warning: str) -> ExtractedRecord:
        """
        Record built from deterministic hints, with last-resort scans for a
        missing amount or date. Every field found this way gets confidence 0.3.
        """
        total = hints.total if hints.total is not None else scan_largest_money_amount(text)
        invoice_date = normalize_date(hints.date) if hints.date else None
        if invoice_date is None:
            invoice_date = scan_first_date(text)
        vendor = hints.vendors[0] if hints.vendors else None

        def score(value) -> float:
            return FALLBACK_CONFIDENCE if value is not None else 0.0

        record = ExtractedRecord(
            vendor_name=vendor,
            invoice_date=invoice_date,
            total_amount=total,
            currency=hints.currency,
            invoice_number=hints.invoice_number,
            confidence=ConfidenceScores(
                vendor_name=score(vendor),
                invoice_date=score(invoice_date),
                total_amount=score(total),
                currency=score(hints.currency),
            ),
            warnings=[warning],
        )
        logger.info(
            "Fallback record assembled",
            vendor=vendor, total=total, currency=hints.currency, date=invoice_date,
        )
        return self._finalize(record)
