"""
End-to-end extraction pipeline.

acquire text -> deterministic candidates -> generation (or fallback)
-> validation gate -> {vendor resolution, currency normalization} -> result

The pipeline is a total function over readable input: data-quality problems
and unavailable remote services end up as warnings and ``needs_review``.
Only configuration errors (raised while constructing it) and programming
errors propagate.
"""

import asyncio
from typing import Iterable

from loguru import logger

from ..core.config import Settings, settings as default_settings
from ..models.extraction import (
    ConversionResult,
    ExtractedRecord,
    PipelineResult,
    ValidationOutcome,
    Vendor,
)
from .acquisition.text_acquisition import TextAcquirer
from .candidates import extract_candidates, text_preview
from .currency.fx_cache import FxRateCache
from .currency.normalizer import CurrencyNormalizer
from .events.event_publisher import EventPublisher, ExtractionCompletedEvent
from .generation.orchestrator import GenerationOrchestrator
from .validation import RecordValidationRules, ValidationRulesConfig
from .vendor_resolver import resolve_vendor


class ExtractionPipeline:
    """
    Wires the stages together for one worker.

    Usage:
        pipeline = ExtractionPipeline.from_settings(settings)
        result = await pipeline.process("tenant-1", pdf_bytes, "application/pdf", "ILS", vendors)
        payload = result.record.to_contract()
    """

    def __init__(
        self,
        acquirer: TextAcquirer,
        orchestrator: GenerationOrchestrator,
        normalizer: CurrencyNormalizer,
        rules: RecordValidationRules | None = None,
        publisher: EventPublisher | None = None,
    ):
        self.acquirer = acquirer
        self.orchestrator = orchestrator
        self.normalizer = normalizer
        self.rules = rules or RecordValidationRules()
        self.publisher = publisher or EventPublisher(service_bus_sender=None)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        fx_cache: FxRateCache | None = None,
        publisher: EventPublisher | None = None,
    ) -> "ExtractionPipeline":
        """
        Build every stage from settings.

        Raises:
            ConfigurationError: if a selected provider lacks credentials
        """
        settings = settings or default_settings
        return cls(
            acquirer=TextAcquirer.from_settings(settings),
            orchestrator=GenerationOrchestrator.from_settings(settings),
            normalizer=CurrencyNormalizer.from_settings(settings, cache=fx_cache),
            rules=RecordValidationRules(
                ValidationRulesConfig(confidence_threshold=settings.review_confidence_threshold)
            ),
            publisher=publisher,
        )

    async def process(
        self,
        tenant_id: str,
        content: bytes,
        media_type: str,
        home_currency: str,
        tenant_vendors: Iterable[Vendor] = (),
    ) -> PipelineResult:
        """
        Run one document through every stage.

        Args:
            tenant_id: Owner of the document, carried into the event
            content: Raw document bytes
            media_type: Declared MIME type
            home_currency: Currency the tenant books in
            tenant_vendors: The tenant's known vendors, loaded by the caller

        Returns:
            PipelineResult; ``record`` carries every warning from every stage
        """
        recognition = await asyncio.to_thread(self.acquirer.acquire, content, media_type)
        candidates = extract_candidates(recognition.text)
        logger.debug("Acquired text", tenant_id=tenant_id, preview=text_preview(recognition.text))
        generation = await self.orchestrator.run(recognition.text, candidates)
        record = generation.record

        upstream_errors = []
        if recognition.error:
            upstream_errors.append(f"OCR error: {recognition.error}")
        if generation.error:
            upstream_errors.append(f"LLM error: {generation.error}")
        validation = self.rules.validate(record, upstream_errors)

        vendor, conversion = await asyncio.gather(
            asyncio.to_thread(resolve_vendor, record.vendor_name, list(tenant_vendors)),
            self._convert(record, home_currency),
        )

        if conversion is not None and conversion.degraded:
            validation = ValidationOutcome(
                needs_review=True,
                warnings=[*validation.warnings, conversion.warning],
                checks={**validation.checks, "conversion_ok": False},
            )

        result = PipelineResult(
            tenant_id=tenant_id,
            record=record.model_copy(update={"warnings": list(validation.warnings)}),
            validation=validation,
            vendor=vendor,
            conversion=conversion,
            recognition=recognition,
        )
        self._publish(result)

        logger.info(
            "Document processed",
            tenant_id=tenant_id,
            method=recognition.method.value,
            used_fallback=generation.used_fallback,
            needs_review=validation.needs_review,
            vendor_id=vendor.id,
            new_vendor=vendor.is_new,
            warnings=len(validation.warnings),
        )
        return result

    async def _convert(self, record: ExtractedRecord, home_currency: str) -> ConversionResult | None:
        if record.total_amount is None or not record.currency:
            return None
        return await self.normalizer.convert(record.total_amount, record.currency, home_currency)

    def _publish(self, result: PipelineResult) -> None:
        event = ExtractionCompletedEvent(
            tenant_id=result.tenant_id,
            vendor_id=result.vendor.id,
            vendor_name=result.vendor.name,
            is_new_vendor=result.vendor.is_new,
            total_amount=result.record.total_amount,
            currency=result.record.currency,
            normalized_amount=result.conversion.normalized_amount if result.conversion else None,
            needs_review=result.needs_review,
            warnings=list(result.record.warnings),
        )
        try:
            self.publisher.publish_extraction_completed(event)
        except Exception as e:
            # Publishing is best-effort; the result is still returned
            logger.warning(f"Failed to publish extraction event: {e}")
