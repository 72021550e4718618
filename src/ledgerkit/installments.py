"""Installment scheduling: one purchase expanded into a dated series."""

import calendar
import logging
import re
import uuid
from collections.abc import Iterable, Sequence
from datetime import date

from .exceptions import SeriesLockedError, ValidationError
from .models import InstallmentIntent, InstallmentMember, Split
from .money import round_money, split_evenly, sum_money

logger = logging.getLogger(__name__)

ANTICIPATED_SUFFIX = "(Anticipated)"

_COUNTER_SUFFIX = re.compile(r"\s*\(\d+/\d+\)\s*$")


def add_months(origin: date, months: int) -> date:
    """
    Same day of month, ``months`` later.

    The day is clamped to the target month's length (Jan 31 + 1 month is
    Feb 28, or Feb 29 in a leap year).
    """
    month_index = origin.month - 1 + months
    year = origin.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(origin.day, last_day))


def _strip_counter(description: str) -> str:
    return _COUNTER_SUFFIX.sub("", description).strip()


def expand_installments(
    intent: InstallmentIntent,
    count: int,
    *,
    series_id: str | None = None,
) -> list[InstallmentMember]:
    """
    Expand a purchase into ``count`` monthly installments.

    Installment 1 is dated on the purchase date, the rest on the same day of
    each following month (clamped to the month's length). Amounts are
    allocated with ``split_evenly`` so the series sums exactly to
    ``intent.amount``; every member's split is allocated the same way, on
    its own, so each member's installments sum exactly to their split.

    Args:
        intent: The purchase to expand
        count: Number of installments
        series_id: Id shared by the whole batch (a new uuid when omitted)

    Returns:
        The installments, in order, ready to be committed as one batch

    Raises:
        DivisionByZero: If ``count`` is zero
        ValidationError: If ``count`` is negative
    """
    amounts = split_evenly(intent.amount, count)
    split_amounts = [split_evenly(split.assigned_amount, count) for split in intent.splits]
    series_id = series_id or uuid.uuid4().hex
    description = _strip_counter(intent.description)

    installments = []
    for index, amount in enumerate(amounts):
        number = index + 1
        splits = [
            Split(member_id=split.member_id, assigned_amount=member_amounts[index])
            for split, member_amounts in zip(intent.splits, split_amounts, strict=True)
        ]
        installments.append(
            InstallmentMember(
                id=f"{series_id}-{number}",
                amount=amount,
                date=add_months(intent.date, index),
                description=f"{description} ({number}/{count})".strip(),
                currency=intent.currency,
                trip_id=intent.trip_id,
                category=intent.category,
                account_id=intent.account_id,
                payer_id=intent.payer_id,
                splits=splits,
                series_id=series_id,
                installment_number=number,
                installment_total=count,
            )
        )

    logger.info(
        f"Expanded {round_money(intent.amount)} into {count} installments "
        f"(series {series_id})"
    )
    return installments


def reschedule_series(
    series: Sequence[InstallmentMember],
    new_count: int,
    *,
    series_id: str | None = None,
) -> list[InstallmentMember]:
    """
    Regenerate a series with a different number of installments.

    The new series keeps the original total, the first installment's date,
    account and description, and gets a new series id.

    Raises:
        ValidationError: If the series is empty
        SeriesLockedError: If any installment or split is already settled,
                           or if the series is shared with other members
    """
    live = [tx for tx in series if not tx.deleted]
    if not live:
        raise ValidationError("Cannot reschedule an empty series")

    old_series_id = live[0].series_id
    if any(tx.is_settled or any(s.is_settled for s in tx.splits) for tx in live):
        raise SeriesLockedError(
            old_series_id,
            f"Series {old_series_id} already has settled installments",
        )
    if any(tx.is_shared for tx in live):
        raise SeriesLockedError(
            old_series_id,
            f"Series {old_series_id} is shared; delete it and create it again",
        )

    first = min(live, key=lambda tx: (tx.date, tx.installment_number))
    intent = InstallmentIntent(
        description=first.description,
        amount=sum_money(tx.amount for tx in live),
        date=first.date,
        account_id=first.account_id,
        currency=first.currency,
        trip_id=first.trip_id,
        category=first.category,
    )

    logger.info(
        f"Rescheduling series {old_series_id} from {len(live)} to {new_count} installments"
    )
    return expand_installments(intent, new_count, series_id=series_id)


def anticipate_installments(
    series: Iterable[InstallmentMember],
    ids: Iterable[str],
    target_date: date,
    *,
    account_id: str | None = None,
) -> list[InstallmentMember]:
    """
    Pay the chosen installments early.

    The selected installments are re-dated to ``target_date`` (and moved to
    ``account_id`` when given); their description is marked as anticipated
    once. Other installments are returned unchanged.

    Raises:
        ValidationError: If none of ``ids`` belongs to the series
    """
    wanted = set(ids)
    result = []
    moved = 0
    for tx in series:
        if tx.id not in wanted:
            result.append(tx)
            continue
        description = tx.description
        if ANTICIPATED_SUFFIX not in description:
            description = f"{description} {ANTICIPATED_SUFFIX}".strip()
        result.append(
            tx.model_copy(
                update={
                    "date": target_date,
                    "account_id": account_id or tx.account_id,
                    "description": description,
                }
            )
        )
        moved += 1

    if not moved:
        raise ValidationError("None of the given installments belong to this series")

    logger.info(f"Anticipated {moved} installments to {target_date}")
    return result
