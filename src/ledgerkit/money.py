"""Exact decimal arithmetic for monetary values.

Every public operation returns a ``Decimal`` quantized to two places using
ROUND_HALF_UP. Values arriving from the boundary as floats are converted via
``str()`` so that binary representation error is never amplified.
"""

import logging
from collections.abc import Iterable, Sequence
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, NamedTuple

from .exceptions import DivisionByZero, ValidationError

if TYPE_CHECKING:
    from .models import Split

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")

MoneyLike = Decimal | int | float | str | None


def to_decimal(value: MoneyLike) -> Decimal:
    """
    Convert a boundary value into an exact Decimal.

    Floats go through ``str()`` (``0.1`` becomes ``Decimal("0.1")``, not the
    binary expansion). ``None`` is treated as zero.

    Raises:
        ValidationError: If the value cannot be read as a number
    """
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationError(f"Not a monetary value: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError(f"Not a monetary value: {value!r}") from e
    if not result.is_finite():
        raise ValidationError(f"Not a finite monetary value: {value!r}")
    return result


def round_money(value: MoneyLike, places: int = 2) -> Decimal:
    """Round to ``places`` decimals using ROUND_HALF_UP."""
    exponent = Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def sum_money(values: Iterable[MoneyLike]) -> Decimal:
    """Sum monetary values exactly, rounding only the result."""
    total = Decimal("0")
    for value in values:
        total += to_decimal(value)
    return round_money(total)


def subtract(a: MoneyLike, b: MoneyLike) -> Decimal:
    return round_money(to_decimal(a) - to_decimal(b))


def multiply(a: MoneyLike, b: MoneyLike) -> Decimal:
    return round_money(to_decimal(a) * to_decimal(b))


def divide(a: MoneyLike, b: MoneyLike) -> Decimal:
    """
    Divide ``a`` by ``b`` and round to cents.

    Raises:
        DivisionByZero: If ``b`` is zero. This is always a caller error.
    """
    divisor = to_decimal(b)
    if divisor == 0:
        raise DivisionByZero(f"Cannot divide {a} by zero")
    return round_money(to_decimal(a) / divisor)


def equals(a: MoneyLike, b: MoneyLike, tolerance: MoneyLike = CENT) -> bool:
    """True if ``a`` and ``b`` differ by at most ``tolerance``."""
    return abs(to_decimal(a) - to_decimal(b)) <= to_decimal(tolerance)


class SumCheck(NamedTuple):
    """Outcome of validate_sum."""

    valid: bool
    actual_sum: Decimal
    difference: Decimal


def validate_sum(
    values: Iterable[MoneyLike], expected_total: MoneyLike, tolerance: MoneyLike = CENT
) -> SumCheck:
    """Check that ``values`` add up to ``expected_total`` within ``tolerance``."""
    actual = sum_money(values)
    difference = abs(subtract(actual, expected_total))
    return SumCheck(
        valid=difference <= to_decimal(tolerance),
        actual_sum=actual,
        difference=difference,
    )


def split_evenly(total: MoneyLike, count: int) -> list[Decimal]:
    """
    Split ``total`` into ``count`` parts that add up to it exactly.

    Every part but the last is ``round(total / count)``; the last part takes
    whatever is left. When ``total / count`` rounds up, that last part can
    come out smaller than the rest, or even negative for tiny totals over
    many parts (0.05 over 10 gives nine 0.01 parts and -0.04). The parts
    still sum exactly to ``total``.

    Raises:
        DivisionByZero: If ``count`` is zero
        ValidationError: If ``count`` is negative
    """
    if count < 0:
        raise ValidationError(f"Cannot split into {count} parts")
    base = divide(total, count)
    parts = [base] * (count - 1)
    parts.append(subtract(total, sum_money(parts)))
    return parts


def normalize_splits(splits: Sequence["Split"], total: MoneyLike) -> list["Split"]:
    """
    Rescale splits so they add up to exactly ``total``.

    If the current sum is within one cent of ``total`` the splits are returned
    unchanged (as copies). Otherwise each split is scaled by
    ``total / current_sum`` and the last split absorbs the residual. When the
    current sum is zero the total is divided equally.

    Applying this twice gives the same result as applying it once.
    """
    if not splits:
        return []

    target = round_money(total)
    current_sum = sum_money(s.assigned_amount for s in splits)

    if equals(current_sum, target):
        return [s.model_copy() for s in splits]

    if current_sum == 0:
        amounts = split_evenly(target, len(splits))
    else:
        ratio = to_decimal(target) / current_sum
        amounts = [multiply(s.assigned_amount, ratio) for s in splits]
        residual = subtract(target, sum_money(amounts))
        if residual != 0:
            amounts[-1] = round_money(amounts[-1] + residual)
            logger.debug(f"Last split absorbed residual of {residual}")

    logger.info(f"Normalized {len(splits)} splits from {current_sum} to {target}")

    return [
        s.model_copy(update={"assigned_amount": amount})
        for s, amount in zip(splits, amounts, strict=True)
    ]


# ============================================================================
# Time value of money
# ============================================================================


def compound_interest(principal: MoneyLike, rate: MoneyLike, periods: int) -> Decimal:
    """Value of ``principal`` after ``periods`` of compounding at ``rate``."""
    factor = (Decimal(1) + to_decimal(rate)) ** periods
    return round_money(to_decimal(principal) * factor)


def future_value(present: MoneyLike, rate: MoneyLike, periods: int) -> Decimal:
    return compound_interest(present, rate, periods)


def present_value(future: MoneyLike, rate: MoneyLike, periods: int) -> Decimal:
    """Discount ``future`` back ``periods`` at ``rate``."""
    factor = (Decimal(1) + to_decimal(rate)) ** periods
    if factor == 0:
        raise DivisionByZero(f"Discount factor is zero for rate {rate}")
    return round_money(to_decimal(future) / factor)


def payment(principal: MoneyLike, rate: MoneyLike, periods: int) -> Decimal:
    """
    Fixed installment that amortizes ``principal`` over ``periods`` (PMT).

    A zero rate degenerates to ``principal / periods``.
    """
    if periods == 0:
        raise DivisionByZero("Cannot amortize over zero periods")
    rate_dec = to_decimal(rate)
    principal_dec = to_decimal(principal)
    if rate_dec == 0:
        return divide(principal_dec, periods)
    factor = (Decimal(1) + rate_dec) ** periods
    return round_money(principal_dec * rate_dec * factor / (factor - 1))
