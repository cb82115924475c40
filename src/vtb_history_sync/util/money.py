from __future__ import annotations

import re
from decimal import Decimal, ROUND_HALF_UP


CURRENCY_MARKER = "₽"

# ASCII hyphen, the minus sign and the en dash all show up as a leading minus in the portal.
_MINUS_MARKERS = ("-", "−", "–")
_WHITESPACE_RE = re.compile(r"[\s\u00a0\u2007\u202f\ufeff]+")
_AMOUNT_RE = re.compile(r"(\d+)(?:[.,](\d{2}))?")


def parse_amount(value: str) -> Decimal:
    """
    Parse signed ruble amounts as rendered by the portal:
    - "−1 234,56 ₽" -> Decimal("-1234.56")
    - "+500 ₽"      -> Decimal("500")
    - "1 234 ₽"     -> Decimal("1234")

    Text without digits parses to zero.
    """
    s = _WHITESPACE_RE.sub("", value or "")
    if not s:
        return Decimal(0)

    negative = s.startswith(_MINUS_MARKERS)
    m = _AMOUNT_RE.search(s)
    if not m:
        return Decimal(0)

    whole, frac = m.group(1), m.group(2)
    dec = Decimal(f"{whole}.{frac}") if frac else Decimal(whole)
    return -dec if negative else dec


def has_currency_marker(text: str) -> bool:
    return CURRENCY_MARKER in (text or "")


def amount_to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))
