"""Exact arithmetic for token amounts and numeraire values.

Token amounts are integers in the token's smallest unit. Values in the
numeraire are ``Decimal`` and every operation on them goes through
``MONEY_CONTEXT`` so identical inputs always produce identical outputs,
independent of whatever the thread's default decimal context is.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_EVEN, Context, Decimal

MONEY_CONTEXT = Context(prec=78, rounding=ROUND_HALF_EVEN)
NUMERAIRE_QUANTUM = Decimal("1e-18")
ZERO = Decimal(0)


def to_units(raw: int, decimals: int) -> Decimal:
    return MONEY_CONTEXT.scaleb(Decimal(raw), -decimals)


def to_raw(units: Decimal, decimals: int) -> int:
    scaled = MONEY_CONTEXT.scaleb(units, decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def value_of(raw: int, decimals: int, price: Decimal) -> Decimal:
    """Numeraire value of ``raw`` smallest units priced at ``price`` per whole token."""
    return MONEY_CONTEXT.multiply(to_units(raw, decimals), price)


def difference(minuend: Decimal, *subtrahends: Decimal) -> Decimal:
    result = minuend
    for value in subtrahends:
        result = MONEY_CONTEXT.subtract(result, value)
    return result


def ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    return MONEY_CONTEXT.divide(numerator, denominator)


def quantize(value: Decimal) -> Decimal:
    return value.quantize(NUMERAIRE_QUANTUM, context=MONEY_CONTEXT)
