"""
Prompt construction for structured extraction.

The system message fixes the JSON contract; the user message carries the
(possibly truncated) document text and the deterministic hints.
"""

import re
from dataclasses import dataclass, field

from ...models.extraction import CandidateSet
from ..candidates import best_amount, best_currency, best_date

DEFAULT_TEXT_BUDGET = 4000

KEYWORD_LINE = re.compile(
    r"(סה[\"״']?כ|לתשלום|יתרה לתשלום|סכום|מע[\"״']?מ|VAT|TOTAL|AMOUNT\s+DUE|Invoice"
    r"|חשבונית|קבלה|מס['״]?|תאריך|Date|קופה)",
    re.IGNORECASE,
)

KEYWORD_START = "--- KEYWORD LINES ---"
KEYWORD_END = "--- END ---"

SYSTEM_PROMPT = """You extract structured data from receipts and invoices. Documents may be in Hebrew, English, or both.

Return ONLY one JSON object, no prose and no code fences, with exactly this shape:
{
  "vendorName": string | null,
  "invoiceDate": "YYYY-MM-DD" | null,
  "totalAmount": number | null,
  "currency": "ILS" | "USD" | "EUR" | "GBP" | null,
  "invoiceNumber": string | null,
  "vatAmount": number | null,
  "subtotalAmount": number | null,
  "lineItems": [{"description": string, "quantity": number | null, "unitPrice": number | null, "amount": number | null}],
  "confidence": {"vendorName": number, "invoiceDate": number, "totalAmount": number, "currency": number},
  "warnings": [string]
}

Field rules:
1. vendorName: the business that issued the document, usually in the first lines. Never use the customer, a street address, or a phone number.
2. totalAmount: the final amount paid. Prefer, in order: "סה"כ לתשלום", "לתשלום", "Amount Due", "Grand Total", "יתרה לתשלום", "סה"כ", "Total". Never use a subtotal, VAT line, or single item. Plain number, no symbols or thousands separators.
3. invoiceDate: the issue date, converted to YYYY-MM-DD. Numeric dates are day-first (15/01/2024 is 2024-01-15).
4. currency: from symbols or words. ₪, ש"ח, שקל, NIS mean ILS; $ means USD; € means EUR; £ means GBP. Hebrew documents without a symbol are usually ILS.
5. vatAmount and subtotalAmount: only when printed on the document.
6. lineItems: only rows you can read clearly; use [] otherwise.

Confidence for each field is a number between 0 and 1:
- 0.9 to 1.0: printed clearly next to an explicit label
- 0.7 to 0.89: clearly present but the label is missing or slightly ambiguous
- 0.4 to 0.69: inferred from context or partially garbled text
- 0.0 to 0.39: guessed; prefer null with a low score over inventing a value

Add a short entry to "warnings" for anything you were unsure about."""


@dataclass(frozen=True)
class CandidateHints:
    total: float | None = None
    currency: str | None = None
    date: str | None = None
    vendors: tuple[str, ...] = field(default_factory=tuple)
    invoice_number: str | None = None

    @classmethod
    def from_candidates(cls, candidates: CandidateSet | None, local_currency: str = "ILS") -> "CandidateHints":
        if candidates is None:
            return cls()
        return cls(
            total=best_amount(candidates),
            currency=best_currency(candidates, local_currency),
            date=best_date(candidates),
            vendors=candidates.vendor_candidates[:3],
            invoice_number=candidates.invoice_numbers[0] if candidates.invoice_numbers else None,
        )

    @property
    def empty(self) -> bool:
        return not (self.total or self.currency or self.date or self.vendors)


def _take_lines(lines: list[str], limit: int) -> list[str]:
    taken, used = [], 0
    for line in lines:
        if used + len(line) + 1 > limit:
            break
        taken.append(line)
        used += len(line) + 1
    return taken


def truncate_text(text: str, budget: int = DEFAULT_TEXT_BUDGET) -> str:
    """
    Fit ``text`` into ``budget`` characters.

    Keeps whole lines from the head and the tail (3/8 of the budget each) and
    fills what is left with keyword lines from the middle, in document order.
    Text already inside the budget is returned unchanged.
    """
    if len(text) <= budget:
        return text

    edge = budget * 3 // 8
    lines = text.splitlines()

    head = _take_lines(lines, edge)
    tail = list(reversed(_take_lines(list(reversed(lines[len(head):])), edge)))
    middle = lines[len(head):len(lines) - len(tail)]

    # A single very long line cannot be split on newlines
    head_text = "\n".join(head) or text[:edge]
    tail_text = "\n".join(tail) or text[-edge:]
    used = len(head_text) + len(tail_text) + 2
    markers = len(KEYWORD_START) + len(KEYWORD_END) + 4
    room = budget - used - markers

    keyword_lines = []
    for line in middle:
        if not line.strip() or not KEYWORD_LINE.search(line):
            continue
        if len(line) + 1 > room:
            break
        keyword_lines.append(line)
        room -= len(line) + 1

    parts = [head_text]
    if keyword_lines:
        parts.append("\n".join([KEYWORD_START, *keyword_lines, KEYWORD_END]))
    parts.append(tail_text)
    return "\n".join(part for part in parts if part)


def build_user_prompt(text: str, hints: CandidateHints, budget: int = DEFAULT_TEXT_BUDGET) -> str:
    sections = ["Extract the invoice data from this document."]

    if not hints.empty:
        hint_lines = ["HINTS from pattern matching (verify against the text, do not trust blindly):"]
        if hints.total is not None:
            hint_lines.append(f"- Likely total: {hints.total}")
        if hints.currency:
            hint_lines.append(f"- Likely currency: {hints.currency}")
        if hints.date:
            hint_lines.append(f"- Likely date: {hints.date}")
        if hints.vendors:
            hint_lines.append(f"- Vendor candidates: {', '.join(hints.vendors)}")
        sections.append("\n".join(hint_lines))

    sections.append("DOCUMENT TEXT:\n" + truncate_text(text, budget))
    return "\n\n".join(sections)


def build_messages(text: str, hints: CandidateHints, budget: int = DEFAULT_TEXT_BUDGET) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_prompt(text, hints, budget)},
    ]
