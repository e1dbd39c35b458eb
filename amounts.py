import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

Number = Union[int, float, str, Decimal]

# Leaves headroom below the signed 64-bit INTEGER range for summed totals.
MAX_AMOUNT_CENTS = 10**15

_THOUSANDS_COMMA = re.compile(r"^\d{1,3}(,\d{3})+$")


def parse_amount(value: Number, *, allow_negative: bool = False) -> int:
    """Parse a JSON number or numeric string into integer cents.

    Strings may carry a currency symbol, spaces or a decimal comma
    (``"€1 234,50"``). A lone comma before exactly three digits
    (``"1,234"``) could be a thousands separator or a decimal comma, so it
    is rejected. Booleans are rejected even though they are ints.
    """
    if value is None or isinstance(value, bool):
        raise ValueError("Invalid amount")
    if isinstance(value, str):
        clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
        if _THOUSANDS_COMMA.match(clean.lstrip("-")):
            raise ValueError("Ambiguous amount")
        clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
    elif isinstance(value, (int, float, Decimal)):
        clean = str(value)
    else:
        raise ValueError("Invalid amount")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    # checked before quantize, which fails past the decimal context precision
    if abs(amount * 100) > MAX_AMOUNT_CENTS:
        raise ValueError("Amount too large")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def cents_to_amount(cents: int) -> float:
    return cents / 100
