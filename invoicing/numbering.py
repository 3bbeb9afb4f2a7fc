"""
Sequential invoice numbers.

Only numbers of the form INV-<digits> (any case) take part in the sequence;
anything else (CUSTOM-001, ABC123) is ignored rather than rejected.
"""
import re
from typing import Iterable, Optional

from models.invoice import Invoice

_SEQUENCE_RE = re.compile(r"INV-(\d+)", re.IGNORECASE | re.ASCII)

PREFIX = "INV-"
MIN_DIGITS = 3


def next_invoice_number(existing_numbers: Iterable[str]) -> str:
    """
    Return max(existing sequence numbers) + 1, formatted INV-001.

    Gaps are not refilled, and numbers past 999 simply grow (INV-1000).
    """
    values = [
        int(match.group(1))
        for match in (_SEQUENCE_RE.fullmatch(num) for num in existing_numbers if num)
        if match
    ]
    next_value = (max(values) if values else 0) + 1
    return f"{PREFIX}{next_value:0{MIN_DIGITS}d}"


def is_invoice_number_unique(
    candidate: str,
    invoices: Iterable[Invoice],
    exclude_id: Optional[str] = None,
) -> bool:
    """True if no invoice other than exclude_id already uses candidate (case-insensitive)."""
    wanted = candidate.lower()
    return not any(
        inv.invoice_number.lower() == wanted and inv.id != exclude_id
        for inv in invoices
    )
