"""
Deterministic candidate parsing.

Pure regex and heuristic passes over recognized text. Nothing here performs
I/O; every function takes text and returns plain values so that it can be
unit-tested without a recognizer or a generation backend. Patterns cover
Hebrew and English documents.
"""

import math
import re
from datetime import date

from ..models.extraction import AmountCandidate, CandidateSet

# ========== Dates ==========

HEBREW_MONTHS = {
    "ינואר": 1, "פברואר": 2, "מרץ": 3, "מרס": 3, "אפריל": 4, "מאי": 5, "יוני": 6,
    "יולי": 7, "אוגוסט": 8, "ספטמבר": 9, "אוקטובר": 10, "נובמבר": 11, "דצמבר": 12,
}

ENGLISH_MONTHS = {
    "january": 1, "jan": 1, "february": 2, "feb": 2, "march": 3, "mar": 3,
    "april": 4, "apr": 4, "may": 5, "june": 6, "jun": 6, "july": 7, "jul": 7,
    "august": 8, "aug": 8, "september": 9, "sept": 9, "sep": 9,
    "october": 10, "oct": 10, "november": 11, "nov": 11, "december": 12, "dec": 12,
}

MONTH_NAMES = {**HEBREW_MONTHS, **ENGLISH_MONTHS}

# Longest names first so "sept" wins over "sep"
_MONTH_ALTERNATION = "|".join(sorted(MONTH_NAMES, key=len, reverse=True))

DMY_DATE = re.compile(r"\b(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{2,4})\b")
ISO_DATE = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
NAMED_MONTH_DATE = re.compile(
    rf"\b(\d{{1,2}})\s+(?:ב)?({_MONTH_ALTERNATION})\.?,?\s+(\d{{4}})\b",
    re.IGNORECASE,
)
DATE_PATTERNS = (DMY_DATE, ISO_DATE, NAMED_MONTH_DATE)

# ========== Invoice numbers ==========

_HE_NUMBER_LABEL = "(?:מס['׳״\"]?|מספר)"
_TOKEN = r"([A-Z]{0,4}-?\d+(?:[\-/]\d+)*)"

INVOICE_NUMBER_PATTERNS = (
    re.compile(r"חשבונית\s*" + _HE_NUMBER_LABEL + r"?\s*[:#]?\s*" + _TOKEN, re.IGNORECASE),
    re.compile(r"קבלה\s*" + _HE_NUMBER_LABEL + r"?\s*[:#]?\s*" + _TOKEN, re.IGNORECASE),
    re.compile(r"\binvoice\s*(?:no\.?|number|num\.?|#)?\s*[:#]?\s*" + _TOKEN + r"\b", re.IGNORECASE),
    re.compile(r"\binv(?:\.|\s*#|\s*no\.?)\s*[:#]?\s*" + _TOKEN + r"\b", re.IGNORECASE),
    re.compile(r"\breceipt\s*(?:no\.?|number|#)?\s*[:#]?\s*" + _TOKEN + r"\b", re.IGNORECASE),
)

# ========== Amounts ==========

_NUMBER = r"([₪$€£]?\s*\d[\d,]*(?:\.\d+)?)"

# (category, pattern) in table order; ties in priority keep this order
AMOUNT_PATTERNS = (
    ("total_to_pay_he", re.compile(r"סה[\"״']?כ\s*לתשלום\s*[:\s]*" + _NUMBER)),
    ("to_pay_he", re.compile(r"לתשלום\s*[:\s]*" + _NUMBER)),
    ("balance_due_he", re.compile(r"יתרה\s*לתשלום\s*[:\s]*" + _NUMBER)),
    ("total_amount_he", re.compile(r"סכום\s*כולל\s*[:\s]*" + _NUMBER)),
    ("total_he", re.compile(r"סה[\"״']?כ\s*[:\s]*" + _NUMBER)),
    ("amount_due_en", re.compile(r"\bamount\s+due\s*[:\s]*" + _NUMBER, re.IGNORECASE)),
    ("grand_total_en", re.compile(r"\bgrand\s+total\s*[:\s]*" + _NUMBER, re.IGNORECASE)),
    ("balance_due_en", re.compile(r"\bbalance\s+due\s*[:\s]*" + _NUMBER, re.IGNORECASE)),
    ("total_amount_en", re.compile(r"\btotal\s+amount\s*[:\s]*" + _NUMBER, re.IGNORECASE)),
    ("total_en", re.compile(r"\btotal\s*[:\s]*" + _NUMBER, re.IGNORECASE)),
    ("balance_en", re.compile(r"\bbalance\s*[:\s]*" + _NUMBER, re.IGNORECASE)),
)

AMOUNT_PRIORITY = {
    "total_to_pay_he": 1,
    "amount_due_en": 1,
    "to_pay_he": 2,
    "grand_total_en": 2,
    "balance_due_he": 3,
    "balance_due_en": 3,
    "total_he": 4,
    "total_en": 4,
}
UNRANKED_PRIORITY = 10
CONTEXT_RADIUS = 50

# ========== Currencies ==========

CURRENCY_SYMBOLS = {"₪": "ILS", "$": "USD", "€": "EUR", "£": "GBP"}
CURRENCY_ALIASES = {"NIS": "ILS"}
CURRENCY_SYMBOL = re.compile("[" + "".join(map(re.escape, CURRENCY_SYMBOLS)) + "]")
CURRENCY_CODE = re.compile(r"\b(ILS|NIS|USD|EUR|GBP)\b", re.IGNORECASE)

# ========== Vendor candidates ==========

VENDOR_HEAD_CHARS = 500
VENDOR_MAX_LINES = 5
VENDOR_MIN_LENGTH = 3
VENDOR_MAX_LENGTH = 80
VENDOR_MIN_LETTER_RATIO = 0.5
VENDOR_SKIP_KEYWORDS = ("חשבונית", "קבלה", "invoice", "receipt", "tel:", "phone:", "email:")

# ========== Last-resort scans ==========

MONEY_SHAPED = re.compile(r"(?<![\d.,])(\d{1,3}(?:,\d{3})+|\d+)\.(\d{2})(?![\d])")
LOOSE_DATE = re.compile(r"\b(\d{4}[/.\-]\d{1,2}[/.\-]\d{1,2}|\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4})\b")


def extract_dates(text: str) -> list[str]:
    """All unique date-shaped strings in the order they appear in the text"""
    found: list[tuple[int, str]] = []
    for pattern in DATE_PATTERNS:
        for match in pattern.finditer(text):
            found.append((match.start(), match.group(0)))
    found.sort(key=lambda item: item[0])

    dates: list[str] = []
    for _, raw in found:
        if raw not in dates:
            dates.append(raw)
    return dates


def extract_invoice_numbers(text: str) -> list[str]:
    numbers: list[str] = []
    for pattern in INVOICE_NUMBER_PATTERNS:
        for match in pattern.finditer(text):
            value = match.group(1).strip()
            if value and value not in numbers:
                numbers.append(value)
    return numbers


def parse_amount(raw: str) -> float | None:
    """Strip currency glyphs and thousands separators, return a positive float or None"""
    cleaned = re.sub(r"[₪$€£\s,]", "", raw)
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def _context(text: str, start: int, end: int) -> str:
    snippet = text[max(0, start - CONTEXT_RADIUS):min(len(text), end + CONTEXT_RADIUS)]
    return " ".join(snippet.split())


def extract_amounts(text: str) -> list[AmountCandidate]:
    """
    Keyword-anchored amounts ordered by keyword priority.

    The ordering depends only on the priority table and the table/encounter
    order, so identical text always yields identical ordering.
    """
    amounts: list[AmountCandidate] = []
    for category, pattern in AMOUNT_PATTERNS:
        for match in pattern.finditer(text):
            value = parse_amount(match.group(1))
            if value is None:
                continue
            amounts.append(
                AmountCandidate(
                    value=value,
                    category=category,
                    context=_context(text, match.start(), match.end()),
                )
            )
    return sorted(amounts, key=lambda a: AMOUNT_PRIORITY.get(a.category, UNRANKED_PRIORITY))


def normalize_currency_code(code: str) -> str:
    code = code.strip().upper()
    return CURRENCY_ALIASES.get(code, code)


def extract_currencies(text: str) -> list[str]:
    """Unique currency codes from symbols and ISO codes, in the order they appear"""
    found: list[tuple[int, str]] = []
    for match in CURRENCY_SYMBOL.finditer(text):
        found.append((match.start(), CURRENCY_SYMBOLS[match.group(0)]))
    for match in CURRENCY_CODE.finditer(text):
        found.append((match.start(), normalize_currency_code(match.group(1))))
    found.sort(key=lambda item: item[0])

    currencies: list[str] = []
    for _, code in found:
        if code not in currencies:
            currencies.append(code)
    return currencies


def _letter_ratio(line: str) -> float:
    if not line:
        return 0.0
    return sum(1 for ch in line if ch.isalpha()) / len(line)


def extract_vendor_candidates(text: str) -> list[str]:
    head = text[:VENDOR_HEAD_CHARS]
    lines = [line.strip() for line in head.splitlines() if line.strip()]

    candidates = []
    for line in lines[:VENDOR_MAX_LINES]:
        if not VENDOR_MIN_LENGTH <= len(line) <= VENDOR_MAX_LENGTH:
            continue
        if _letter_ratio(line) < VENDOR_MIN_LETTER_RATIO:
            continue
        lowered = line.lower()
        if any(keyword in lowered for keyword in VENDOR_SKIP_KEYWORDS):
            continue
        if line in candidates:
            continue
        candidates.append(line)
    return candidates


def extract_candidates(text: str) -> CandidateSet:
    """Run every deterministic pass over the text"""
    return CandidateSet(
        dates=tuple(extract_dates(text)),
        invoice_numbers=tuple(extract_invoice_numbers(text)),
        amounts=tuple(extract_amounts(text)),
        currencies=tuple(extract_currencies(text)),
        vendor_candidates=tuple(extract_vendor_candidates(text)),
    )


# ========== Selectors ==========

def best_amount(candidates: CandidateSet) -> float | None:
    return candidates.amounts[0].value if candidates.amounts else None


def best_currency(candidates: CandidateSet, local_currency: str = "ILS") -> str | None:
    if not candidates.currencies:
        return None
    if len(candidates.currencies) == 1:
        return candidates.currencies[0]
    if local_currency in candidates.currencies:
        return local_currency
    return candidates.currencies[0]


def best_date(candidates: CandidateSet) -> str | None:
    return candidates.dates[0] if candidates.dates else None


# ========== Normalization helpers ==========

def _expand_year(year: int) -> int:
    return 2000 + year if year < 100 else year


def _safe_date(year: int, month: int, day: int) -> str | None:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def normalize_date(raw: str | None) -> str | None:
    """
    Convert a candidate date string to ISO YYYY-MM-DD.

    Numeric dates are read day-first; when the middle component cannot be a
    month (e.g. 03/25/2024) the month-first reading is used instead.
    """
    if not raw:
        return None
    raw = raw.strip()

    match = re.fullmatch(r"(\d{4})[/.\-](\d{1,2})[/.\-](\d{1,2})", raw)
    if match:
        year, month, day = (int(part) for part in match.groups())
        return _safe_date(year, month, day)

    match = re.fullmatch(r"(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{2,4})", raw)
    if match:
        first, second, year = (int(part) for part in match.groups())
        year = _expand_year(year)
        if second > 12 >= first:
            return _safe_date(year, first, second)
        return _safe_date(year, second, first)

    match = NAMED_MONTH_DATE.fullmatch(raw)
    if match:
        day, month_name, year = match.groups()
        month = MONTH_NAMES.get(month_name.lower())
        if month:
            return _safe_date(int(year), month, int(day))
    return None


def scan_largest_money_amount(text: str) -> float | None:
    """Largest money-shaped number (two decimals) anywhere in the text"""
    values = [parse_amount(f"{whole}.{cents}") for whole, cents in MONEY_SHAPED.findall(text)]
    values = [v for v in values if v is not None]
    return max(values) if values else None


def scan_first_date(text: str) -> str | None:
    for match in LOOSE_DATE.finditer(text):
        normalized = normalize_date(match.group(1))
        if normalized:
            return normalized
    return None


def text_preview(text: str, size: int = 400) -> str:
    """First and last ``size`` characters, for logs"""
    if len(text) <= size * 2:
        return text
    return f"{text[:size]}\n...\n{text[-size:]}"
