from .dates import parse_iso_date, parse_ru_datetime
from .money import parse_amount, amount_to_cents, cents_to_amount

__all__ = ["parse_iso_date", "parse_ru_datetime", "parse_amount", "amount_to_cents", "cents_to_amount"]
