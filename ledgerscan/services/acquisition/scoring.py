"""
Heuristic scoring of optical recognition passes.

A pass that reads totals, dates and money-shaped numbers is worth more than one
that only produced a lot of characters; garbled output full of stray symbols is
penalised.
"""

import re
from dataclasses import dataclass

from ...core.config import Settings

KEYWORD_PATTERNS = (
    re.compile(r"סה[\"״']?כ"),
    re.compile(r"לתשלום"),
    re.compile(r"מע[\"״']?מ"),
    re.compile(r"חשבונית"),
    re.compile(r"קבלה"),
    re.compile(r"תאריך"),
    re.compile(r"\btotal\b", re.IGNORECASE),
    re.compile(r"\bamount\b", re.IGNORECASE),
    re.compile(r"\bvat\b", re.IGNORECASE),
    re.compile(r"\binvoice\b", re.IGNORECASE),
    re.compile(r"\breceipt\b", re.IGNORECASE),
    re.compile(r"\bdate\b", re.IGNORECASE),
)

MONEY_PATTERN = re.compile(r"[₪$€£]?\s*\d{1,10}[.,]\d{2}\b")
DATE_PATTERN = re.compile(r"\b\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4}\b|\b\d{4}-\d{2}-\d{2}\b")
SPECIAL_CHAR_PATTERN = re.compile(r"[^\w\s.,:;!?@#$%&*()/\-'\"₪€£]")


@dataclass(frozen=True)
class ScoringWeights:
    keyword: float = 10.0
    money: float = 5.0
    date: float = 3.0
    length_bonus_cap: float = 20.0
    garbage_ratio: float = 0.10
    garbage_penalty: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringWeights":
        return cls(
            keyword=settings.ocr_keyword_weight,
            money=settings.ocr_money_weight,
            date=settings.ocr_date_weight,
            length_bonus_cap=settings.ocr_length_bonus_cap,
            garbage_ratio=settings.ocr_garbage_ratio,
            garbage_penalty=settings.ocr_garbage_penalty,
        )


def score_text(text: str, weights: ScoringWeights = ScoringWeights()) -> float:
    """
    Score recognized text for how much it looks like a financial document.

    Args:
        text: Recognized text of one pass
        weights: Weights for each signal

    Returns:
        Non-negative score, higher is better
    """
    if not text:
        return 0.0

    score = 0.0
    for pattern in KEYWORD_PATTERNS:
        score += len(pattern.findall(text)) * weights.keyword

    score += len(MONEY_PATTERN.findall(text)) * weights.money
    score += len(DATE_PATTERN.findall(text)) * weights.date
    score += min(len(text) / 100, weights.length_bonus_cap)

    special = len(SPECIAL_CHAR_PATTERN.findall(text))
    if special / len(text) > weights.garbage_ratio:
        score -= weights.garbage_penalty

    return max(0.0, score)
