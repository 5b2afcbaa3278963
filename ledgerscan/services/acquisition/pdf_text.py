from io import BytesIO

from loguru import logger
from pdf2image import convert_from_bytes
from PIL import Image
from pypdf import PdfReader

PAGE_BREAK = "\n\n--- PAGE BREAK ---\n\n"


def extract_pdf_text(content: bytes) -> tuple[str, int]:
    """
    Read the embedded text layer of a PDF.

    Returns:
        (text joined across pages, page count); text is empty for scans
    """
    reader = PdfReader(BytesIO(content))
    pages = []
    for page in reader.pages:
        pages.append((page.extract_text() or "").strip())
    text = PAGE_BREAK.join(page for page in pages if page)
    logger.debug("Read PDF text layer", pages=len(reader.pages), characters=len(text))
    return text, len(reader.pages)


def rasterize_pdf(content: bytes, dpi: int = 300, max_pages: int = 2) -> list[Image.Image]:
    """Render the first ``max_pages`` pages to images (requires poppler)"""
    return convert_from_bytes(content, dpi=dpi, first_page=1, last_page=max_pages)
