"""
Text acquisition: direct text extraction or multi-pass optical recognition.

``TextAcquirer.acquire`` never raises for unreadable input. When no text can
be obtained it returns a RecognitionResult with method FAILED, empty text and
the error message, and the pipeline carries on with a degraded record.
"""

from PIL import Image
from loguru import logger

from ...core.config import Settings, settings as default_settings
from ...core.errors import RecognitionError
from ...models.extraction import AcquisitionMethod, PassDiagnostics, RecognitionResult
from .pdf_text import PAGE_BREAK, extract_pdf_text, rasterize_pdf
from .preprocessing import load_image, preprocess
from .recognizers import PassResult, Recognizer, build_recognizer
from .scoring import ScoringWeights, score_text

PDF_MEDIA_TYPES = {"application/pdf", "application/x-pdf"}
TEXT_MEDIA_TYPES = {"text/plain"}


def run_passes(
    recognizer: Recognizer,
    image: Image.Image,
    weights: ScoringWeights,
    page: int = 1,
) -> tuple[PassResult, PassDiagnostics, list[PassDiagnostics]]:
    """
    Recognize ``image`` under every segmentation mode of ``recognizer``.

    Passes run one after another on the same recognizer. A failing pass is
    recorded in the diagnostics and skipped; the highest scoring pass wins
    (the earliest one on ties).

    Returns:
        (best pass, its diagnostics, diagnostics of every pass)

    Raises:
        RecognitionError: if every pass failed
    """
    best: PassResult | None = None
    best_diag: PassDiagnostics | None = None
    diagnostics: list[PassDiagnostics] = []
    errors: list[str] = []

    for mode in recognizer.modes:
        try:
            result = recognizer.recognize(image, mode)
        except Exception as e:
            logger.warning(
                "Recognition pass failed",
                recognizer=recognizer.name, mode=mode.name, page=page, error=str(e),
            )
            diagnostics.append(PassDiagnostics(mode=mode.name, page=page, error=str(e)))
            errors.append(f"{mode.name}: {e}")
            continue

        score = score_text(result.text, weights)
        diag = PassDiagnostics(
            mode=mode.name,
            score=score,
            confidence=result.confidence,
            text_length=len(result.text),
            page=page,
        )
        diagnostics.append(diag)
        logger.debug(
            "Recognition pass scored",
            mode=mode.name, page=page, score=round(score, 2), length=len(result.text),
        )
        if best_diag is None or score > best_diag.score:
            best, best_diag = result, diag

    if best is None:
        raise RecognitionError("All recognition passes failed: " + "; ".join(errors))
    return best, best_diag, diagnostics


class TextAcquirer:
    """
    Turns raw document bytes into plain text.

    Usage:
        acquirer = TextAcquirer.from_settings(settings)
        result = acquirer.acquire(pdf_bytes, "application/pdf")

    One acquirer holds one recognizer and must not be shared by documents
    processed at the same time; create one per worker.
    """

    def __init__(
        self,
        recognizer: Recognizer,
        weights: ScoringWeights = ScoringWeights(),
        min_direct_chars: int = 50,
        min_dimension: int = 1500,
        max_pdf_pages: int = 2,
        raster_dpi: int = 300,
    ):
        self.recognizer = recognizer
        self.weights = weights
        self.min_direct_chars = min_direct_chars
        self.min_dimension = min_dimension
        self.max_pdf_pages = max_pdf_pages
        self.raster_dpi = raster_dpi

    @classmethod
    def from_settings(cls, settings: Settings | None = None, recognizer: Recognizer | None = None):
        settings = settings or default_settings
        return cls(
            recognizer=recognizer or build_recognizer(settings),
            weights=ScoringWeights.from_settings(settings),
            min_direct_chars=settings.pdf_min_text_chars,
            min_dimension=settings.ocr_min_dimension,
            max_pdf_pages=settings.pdf_max_ocr_pages,
            raster_dpi=settings.pdf_raster_dpi,
        )

    def acquire(self, content: bytes, media_type: str) -> RecognitionResult:
        """
        Acquire text from a document.

        Args:
            content: Raw document bytes
            media_type: Declared MIME type (e.g. application/pdf, image/jpeg)

        Returns:
            RecognitionResult; method FAILED with empty text if nothing could be read
        """
        media_type = (media_type or "").split(";")[0].strip().lower()

        try:
            if media_type in PDF_MEDIA_TYPES:
                result = self._acquire_pdf(content)
            elif media_type.startswith("image/"):
                result = self._acquire_image(content)
            elif media_type in TEXT_MEDIA_TYPES:
                result = RecognitionResult(
                    text=content.decode("utf-8", errors="replace").strip(),
                    method=AcquisitionMethod.DIRECT_TEXT,
                )
            else:
                raise RecognitionError(f"Unsupported media type: {media_type or 'unknown'}")
        except Exception as e:
            logger.error("Text acquisition failed", media_type=media_type, error=str(e))
            return RecognitionResult(text="", method=AcquisitionMethod.FAILED, error=str(e))

        logger.info(
            "Text acquired",
            media_type=media_type,
            method=result.method.value,
            characters=len(result.text),
            pages=result.page_count,
            chosen_mode=result.chosen_pass.mode if result.chosen_pass else None,
        )
        return result

    def _acquire_pdf(self, content: bytes) -> RecognitionResult:
        page_count = 1
        try:
            text, page_count = extract_pdf_text(content)
        except Exception as e:
            logger.warning(f"PDF text layer unreadable, falling back to OCR: {e}")
            text = ""

        if len(text.strip()) > self.min_direct_chars:
            return RecognitionResult(
                text=text.strip(),
                method=AcquisitionMethod.DIRECT_TEXT,
                page_count=page_count,
            )

        logger.info("PDF has no usable text layer, running OCR", characters=len(text.strip()))
        images = rasterize_pdf(content, dpi=self.raster_dpi, max_pages=self.max_pdf_pages)
        if not images:
            raise RecognitionError("PDF rendered no pages")
        return self._recognize_pages(images, page_count=max(page_count, len(images)))

    def _acquire_image(self, content: bytes) -> RecognitionResult:
        return self._recognize_pages([load_image(content)], page_count=1)

    def _recognize_pages(self, images: list[Image.Image], page_count: int) -> RecognitionResult:
        texts: list[str] = []
        chosen: PassDiagnostics | None = None
        passes: list[PassDiagnostics] = []
        failures: list[str] = []

        for page_number, image in enumerate(images, start=1):
            if self.recognizer.wants_preprocessing:
                image = preprocess(image, self.min_dimension)
            try:
                best, best_diag, page_passes = run_passes(
                    self.recognizer, image, self.weights, page=page_number
                )
            except RecognitionError as e:
                failures.append(f"page {page_number}: {e}")
                continue
            passes.extend(page_passes)
            if chosen is None:
                chosen = best_diag
            if best.text.strip():
                texts.append(best.text.strip())

        if chosen is None:
            raise RecognitionError("; ".join(failures))

        return RecognitionResult(
            text=PAGE_BREAK.join(texts),
            method=AcquisitionMethod.OPTICAL,
            chosen_pass=chosen,
            passes=tuple(passes),
            page_count=page_count,
        )
