"""
Vendor resolution against a tenant's known vendors.

Matching is done on normalized names: an exact pass first, then the closest
name within a small edit distance. Anything else becomes a new vendor. The
caller persists new vendors; nothing here writes to storage.
"""

import re
import uuid
from typing import Iterable

from loguru import logger
from rapidfuzz.distance import Levenshtein

from ..models.extraction import Vendor, VendorMatch

MAX_FUZZY_DISTANCE = 2
UNKNOWN_VENDOR = "Unknown Vendor"

_NOT_LETTER_DIGIT_SPACE = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


def normalize_vendor_name(name: str) -> str:
    """
    Lowercase, keep only letters (any script), digits and whitespace, collapse
    whitespace. Applying it twice gives the same result as applying it once.
    """
    lowered = (name or "").lower().strip()
    stripped = _NOT_LETTER_DIGIT_SPACE.sub("", lowered)
    return _WHITESPACE.sub(" ", stripped).strip()


def distance(a: str, b: str) -> int:
    """Levenshtein edit distance; symmetric"""
    return Levenshtein.distance(a, b)


def resolve_vendor(candidate: str | None, tenant_vendors: Iterable[Vendor]) -> VendorMatch:
    """
    Match ``candidate`` to a known vendor or describe a new one.

    Args:
        candidate: Vendor name from the extracted record (None uses a placeholder name)
        tenant_vendors: The tenant's existing vendors

    Returns:
        VendorMatch; ``is_new`` is True when no existing vendor matched, in which
        case the caller is expected to persist it
    """
    name = (candidate or "").strip() or UNKNOWN_VENDOR
    vendors = list(tenant_vendors)
    normalized = normalize_vendor_name(name)

    # Exact pass
    for vendor in vendors:
        if normalize_vendor_name(vendor.name) == normalized:
            logger.info("Vendor matched", match="exact", vendor_id=vendor.id, vendor=vendor.name)
            return VendorMatch(id=vendor.id, name=vendor.name, is_new=False, display_order=vendor.display_order)

    # Fuzzy pass; the earliest vendor wins ties
    best, best_distance = None, None
    for vendor in vendors:
        d = distance(normalized, normalize_vendor_name(vendor.name))
        if best_distance is None or d < best_distance:
            best, best_distance = vendor, d

    if best is not None and best_distance <= MAX_FUZZY_DISTANCE:
        logger.info(
            "Vendor matched",
            match="fuzzy", vendor_id=best.id, vendor=best.name, candidate=name, distance=best_distance,
        )
        return VendorMatch(id=best.id, name=best.name, is_new=False, display_order=best.display_order)

    display_order = max((v.display_order for v in vendors), default=0) + 1
    match = VendorMatch(id=str(uuid.uuid4()), name=name, is_new=True, display_order=display_order)
    logger.info("New vendor", vendor_id=match.id, vendor=name, display_order=display_order)
    return match
