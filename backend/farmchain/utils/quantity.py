"""Quantity and money arithmetic helpers.

All batch arithmetic runs on ``Decimal`` and is rounded to two places
(ROUND_HALF_UP) after every step.  Crop quantities arrive as strings
(the legacy wire format) and are parsed leniently:

    parse_quantity("12.5")   → Decimal("12.50")
    parse_quantity("abc")    → Decimal("0.00")   (logged)
    parse_quantity(None)     → Decimal("0.00")
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")
# Tolerance for comparing rounded sums
EPSILON = Decimal("0.01")


def round2(value) -> Decimal:
    """Round to two decimal places, half-up.

    Floats go through ``str`` first so 2.675 rounds to 2.68, not 2.67.
    """
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_quantity(raw) -> Decimal:
    """Parse a crop quantity; unparsable or non-finite input becomes 0.00."""
    if raw is None:
        return ZERO
    if isinstance(raw, (int, float, Decimal)):
        text = str(raw)
    else:
        text = str(raw).strip()
        if not text:
            return ZERO
    try:
        value = Decimal(text)
    except InvalidOperation:
        logger.warning("Unparsable quantity %r treated as 0.00", raw)
        return ZERO
    if not value.is_finite():
        logger.warning("Non-finite quantity %r treated as 0.00", raw)
        return ZERO
    return round2(value)


def format_quantity(value) -> str:
    """Render a quantity for the string column, e.g. ``"40.00"``."""
    return str(round2(value))
