"""
Optical recognizer strategies.

Each recognizer turns one image into text under one segmentation mode. The
acquirer drives the passes; a recognizer instance is reused serially for all
passes of a document.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from io import BytesIO

import pytesseract
from azure.ai.documentintelligence import DocumentIntelligenceClient
from azure.core.credentials import AzureKeyCredential
from loguru import logger
from PIL import Image

from ...core.config import Settings
from ...core.errors import ConfigurationError


@dataclass(frozen=True)
class SegmentationMode:
    name: str
    psm: int | None = None


@dataclass(frozen=True)
class PassResult:
    text: str
    confidence: float  # 0-100


TESSERACT_MODES = (
    SegmentationMode("block_of_text", 6),
    SegmentationMode("single_column", 4),
    SegmentationMode("sparse_text", 11),
    SegmentationMode("auto_page", 3),
    SegmentationMode("sparse_osd", 12),
)


class Recognizer(ABC):
    name: str = "recognizer"
    # Cloud recognizers do their own image cleanup
    wants_preprocessing: bool = True

    @property
    @abstractmethod
    def modes(self) -> tuple[SegmentationMode, ...]:
        ...

    @abstractmethod
    def recognize(self, image: Image.Image, mode: SegmentationMode) -> PassResult:
        """Run one pass; raise on failure"""

    @classmethod
    @abstractmethod
    def from_settings(cls, settings: Settings) -> "Recognizer":
        ...


# pytesseract reads the binary path from a module global; calls hold this lock
# while that global points at their own command
_TESSERACT_LOCK = threading.Lock()
_DEFAULT_TESSERACT_CMD = pytesseract.pytesseract.tesseract_cmd


class TesseractRecognizer(Recognizer):
    name = "tesseract"

    def __init__(self, languages: str = "eng+heb", tesseract_cmd: str | None = None):
        self.languages = languages
        self.tesseract_cmd = tesseract_cmd or _DEFAULT_TESSERACT_CMD

    @classmethod
    def from_settings(cls, settings: Settings) -> "TesseractRecognizer":
        return cls(settings.tesseract_langs, settings.tesseract_cmd)

    @property
    def modes(self) -> tuple[SegmentationMode, ...]:
        return TESSERACT_MODES

    def recognize(self, image: Image.Image, mode: SegmentationMode) -> PassResult:
        config = f"--oem 3 --psm {mode.psm} -c preserve_interword_spaces=1"
        with _TESSERACT_LOCK:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
            data = pytesseract.image_to_data(
                image,
                lang=self.languages,
                config=config,
                output_type=pytesseract.Output.DICT,
            )
        return PassResult(text=_join_words(data), confidence=_mean_confidence(data))


def _join_words(data: dict) -> str:
    """Rebuild line-ordered text from Tesseract's word table"""
    lines: dict[tuple[int, int, int], list[str]] = {}
    for i, word in enumerate(data.get("text", [])):
        if not word or not word.strip():
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word.strip())
    return "\n".join(" ".join(words) for _, words in sorted(lines.items()))


def _mean_confidence(data: dict) -> float:
    scores = []
    for value in data.get("conf", []):
        try:
            score = float(value)
        except (TypeError, ValueError):
            continue
        if score >= 0:
            scores.append(score)
    return sum(scores) / len(scores) if scores else 0.0


class AzureReadRecognizer(Recognizer):
    """Azure Document Intelligence ``prebuilt-read``; a single layout-agnostic pass"""

    name = "azure"
    wants_preprocessing = False

    def __init__(self, endpoint: str | None = None, api_key: str | None = None, client=None):
        if client is None:
            if not endpoint or not api_key:
                raise ConfigurationError(
                    "OCR_PROVIDER=azure requires AZ_DI_ENDPOINT and AZ_DI_API_KEY"
                )
            client = DocumentIntelligenceClient(
                endpoint=endpoint,
                credential=AzureKeyCredential(api_key),
            )
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "AzureReadRecognizer":
        return cls(settings.az_di_endpoint, settings.az_di_api_key)

    @property
    def modes(self) -> tuple[SegmentationMode, ...]:
        return (SegmentationMode("prebuilt_read"),)

    def recognize(self, image: Image.Image, mode: SegmentationMode) -> PassResult:
        buffer = BytesIO()
        image.save(buffer, format="PNG")

        poller = self.client.begin_analyze_document(
            "prebuilt-read",
            body=buffer.getvalue(),
            content_type="application/octet-stream",
        )
        result = poller.result()

        text = result.content if getattr(result, "content", None) else ""
        confidences = [
            word.confidence
            for page in (getattr(result, "pages", None) or [])
            for word in (getattr(page, "words", None) or [])
            if getattr(word, "confidence", None) is not None
        ]
        confidence = 100 * sum(confidences) / len(confidences) if confidences else 0.0
        return PassResult(text=text, confidence=confidence)


RECOGNIZERS: dict[str, type[Recognizer]] = {
    "tesseract": TesseractRecognizer,
    "azure": AzureReadRecognizer,
}


def build_recognizer(settings: Settings) -> Recognizer:
    """Pick the recognizer named by OCR_PROVIDER; unknown names fall back to Tesseract"""
    provider = (settings.ocr_provider or "tesseract").lower()
    if provider not in RECOGNIZERS:
        logger.warning("Unknown OCR provider, using tesseract", provider=provider)
        provider = "tesseract"
    return RECOGNIZERS[provider].from_settings(settings)
