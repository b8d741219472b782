import math
import re
from datetime import date, datetime
from typing import Optional, Union

import config

BRN_PATTERN = re.compile(r"^[CI]\d{8}$", re.IGNORECASE)


def format_currency(amount: Optional[float], currency: Optional[str] = None) -> str:
    if amount is None or (isinstance(amount, float) and math.isnan(amount)):
        amount = 0
    return f"{currency or config.DEFAULT_CURRENCY} {amount:,.2f}"


def format_date(value: Union[str, date, datetime, None], fmt: str = "%d %b %Y") -> str:
    try:
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        return value.strftime(fmt)
    except (TypeError, ValueError, AttributeError):
        return "Invalid Date"


def is_valid_brn(brn: Optional[str]) -> bool:
    """Business registration number: C or I followed by 8 digits."""
    if not brn:
        return False
    return bool(BRN_PATTERN.match(brn.strip()))


def client_prefix(client_name: Optional[str]) -> str:
    return ((client_name or "").strip() or "CLIENT")[:3].upper()


def round_money(value: float) -> float:
    return round(float(value), 2)
