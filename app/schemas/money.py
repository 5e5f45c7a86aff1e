"""
Monetary amounts.

Prices are Decimal inside the service and plain numbers on the wire.
Floats go through their string form, so 0.1 stays 0.1; "$12,500" style
strings from the completion service are cleaned before conversion.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Any, Optional

from pydantic import BeforeValidator, PlainSerializer

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any) -> Any:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, str):
        return value.replace("$", "").replace(",", "").strip()
    return value


def to_money(value: Any) -> Decimal:
    """Round an amount to cents. None counts as zero."""
    if value is None:
        return ZERO.quantize(CENT)
    amount = value if isinstance(value, Decimal) else Decimal(to_decimal(value))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def optional_money(value: Any) -> Optional[Decimal]:
    return None if value is None else to_money(value)


Money = Annotated[
    Decimal,
    BeforeValidator(to_decimal),
    PlainSerializer(float, return_type=float, when_used="json"),
]
