"""Debt settlement netting across the members of a group.

The greedy sweep below always yields a valid zero-sum settlement. It is not
proven to produce the fewest possible transfers for every debt graph.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from decimal import Decimal

from .config import load_settings
from .models import (
    Member,
    SettlementLine,
    Transaction,
    TransactionKind,
    paid_by_third_party,
)
from .money import CENT, ZERO, round_money, split_evenly, subtract, sum_money

logger = logging.getLogger(__name__)


def _resolve_tolerance(tolerance: Decimal | None) -> Decimal:
    return load_settings().tolerance if tolerance is None else tolerance


def compute_net_balances(
    transactions: Iterable[Transaction],
    participants: Sequence[Member],
    *,
    self_id: str | None = None,
    tolerance: Decimal | None = None,
) -> dict[str, Decimal]:
    """
    Net balance per member id (positive = is owed, negative = owes).

    Only open shared expenses count:
    - Caller paid: every unsettled split debits its member and credits the
      caller by the same amount
    - Someone else paid: every split is debited and the payer is credited
      their sum. If the caller has no split of their own, the part the
      splits leave uncovered is the caller's share and is charged to them
    - Shared with no splits: divided equally among the caller and all
      participants

    A payer given by linked identity is credited under their member id.
    Every transaction moves balances by a net of zero.
    """
    if self_id is None:
        self_id = load_settings().self_member_id
    tolerance = _resolve_tolerance(tolerance)

    balances: dict[str, Decimal] = {self_id: ZERO}
    for participant in participants:
        balances.setdefault(participant.id, ZERO)
    linked = {p.linked_user_id: p.id for p in participants if p.linked_user_id}

    def move(member_id: str, amount: Decimal) -> None:
        balances[member_id] = sum_money([balances.get(member_id, ZERO), amount])

    everyone = [self_id] + [p.id for p in participants if p.id != self_id]

    for tx in transactions:
        if tx.deleted or tx.kind is not TransactionKind.EXPENSE:
            continue

        third_party = paid_by_third_party(tx, self_id)
        if not (tx.is_shared or tx.splits or third_party):
            continue
        if third_party and tx.is_settled:
            continue

        if tx.splits and not third_party:
            owed = [
                s
                for s in tx.splits
                if not s.is_settled and s.member_id != self_id
            ]
            for split in owed:
                move(split.member_id, -split.assigned_amount)
            move(self_id, sum_money(s.assigned_amount for s in owed))

        elif tx.splits:
            payer = linked.get(tx.payer_id, tx.payer_id)
            credited = sum_money(s.assigned_amount for s in tx.splits)
            for split in tx.splits:
                move(split.member_id, -split.assigned_amount)
            if not any(s.member_id == self_id for s in tx.splits):
                remainder = subtract(tx.amount, credited)
                if remainder > tolerance:
                    move(self_id, -remainder)
                    credited = sum_money([credited, remainder])
            move(payer, credited)

        else:
            shares = split_evenly(tx.amount, len(everyone))
            if third_party:
                move(linked.get(tx.payer_id, tx.payer_id), tx.amount)
                for member_id, share in zip(everyone, shares, strict=True):
                    move(member_id, -share)
            else:
                for member_id, share in zip(everyone[1:], shares[1:], strict=True):
                    move(member_id, -share)
                move(self_id, sum_money(shares[1:]))

    return balances


def settle_balances(
    balances: Mapping[str, Decimal], tolerance: Decimal = CENT
) -> list[SettlementLine]:
    """
    Turn net balances into "debtor pays creditor" instructions.

    Steps:
    1. Debtors (below -tolerance) sorted ascending, creditors (above
       tolerance) sorted descending; ties keep their input order
    2. Match the current debtor with the current creditor for the smaller
       of the two amounts
    3. Advance whichever side reached zero; repeat until one side runs out

    Returns an empty list when nothing is owed.
    """
    debtors = sorted(
        ([member_id, round_money(b)] for member_id, b in balances.items() if b < -tolerance),
        key=lambda entry: entry[1],
    )
    creditors = sorted(
        ([member_id, round_money(b)] for member_id, b in balances.items() if b > tolerance),
        key=lambda entry: entry[1],
        reverse=True,
    )

    lines: list[SettlementLine] = []
    i = 0
    j = 0
    while i < len(debtors) and j < len(creditors):
        debtor = debtors[i]
        creditor = creditors[j]
        amount = round_money(min(-debtor[1], creditor[1]))

        if amount > 0:
            lines.append(
                SettlementLine(debtor_id=debtor[0], creditor_id=creditor[0], amount=amount)
            )
            debtor[1] = sum_money([debtor[1], amount])
            creditor[1] = subtract(creditor[1], amount)

        if abs(debtor[1]) < tolerance:
            i += 1
        if creditor[1] < tolerance:
            j += 1

    return lines


def compute_settlement(
    transactions: Iterable[Transaction],
    participants: Sequence[Member],
    *,
    self_id: str | None = None,
    tolerance: Decimal | None = None,
) -> list[SettlementLine]:
    """
    Settlement instructions for a group.

    Balances within ``tolerance`` of zero (settings default: one cent) are
    treated as settled. Returns a single all-settled line when there is
    nothing to pay.
    """
    tolerance = _resolve_tolerance(tolerance)
    balances = compute_net_balances(
        transactions, participants, self_id=self_id, tolerance=tolerance
    )
    lines = settle_balances(balances, tolerance)

    if not lines:
        return [SettlementLine.all_settled()]

    logger.info(
        f"Settlement for {len(balances)} members needs {len(lines)} transfers"
    )
    return lines


def apply_settlement(
    balances: Mapping[str, Decimal], lines: Iterable[SettlementLine]
) -> dict[str, Decimal]:
    """Balances after every instruction in ``lines`` has been paid."""
    result = dict(balances)
    for line in lines:
        if line.is_all_settled:
            continue
        result[line.debtor_id] = sum_money([result.get(line.debtor_id, ZERO), line.amount])
        result[line.creditor_id] = subtract(result.get(line.creditor_id, ZERO), line.amount)
    return result


def mark_settled(
    transactions: Iterable[Transaction],
    member: Member | str,
    *,
    settled_at: datetime | None = None,
    self_id: str | None = None,
    trip_id: str | None = None,
) -> list[Transaction]:
    """
    Record that the caller and ``member`` have squared up.

    Returns a new log where the member's open splits on expenses the caller
    paid are flagged settled (with ``settled_at``), and expenses the member
    paid are flagged ``is_settled``. Only those flags change; nothing else
    in the log is touched.

    Args:
        transactions: The ledger
        member: The member (or member id) that was settled with
        settled_at: Settlement timestamp (defaults to now)
        self_id: The caller's member id (defaults from settings)
        trip_id: Only settle expenses of this trip
    """
    if self_id is None:
        self_id = load_settings().self_member_id
    settled_at = settled_at or datetime.now()

    if isinstance(member, Member):
        member_ids = {member.id, member.linked_user_id} - {None}
    else:
        member_ids = {member}

    result: list[Transaction] = []
    changed = 0
    for tx in transactions:
        if tx.deleted or tx.kind is not TransactionKind.EXPENSE:
            result.append(tx)
            continue
        if trip_id is not None and tx.trip_id != trip_id:
            result.append(tx)
            continue

        if paid_by_third_party(tx, self_id):
            if tx.payer_id in member_ids and not tx.is_settled:
                tx = tx.model_copy(update={"is_settled": True})
                changed += 1
        elif any(s.member_id in member_ids and not s.is_settled for s in tx.splits):
            splits = [
                s.model_copy(update={"is_settled": True, "settled_at": settled_at})
                if s.member_id in member_ids and not s.is_settled
                else s
                for s in tx.splits
            ]
            tx = tx.model_copy(update={"splits": splits})
            changed += 1

        result.append(tx)

    logger.info(f"Marked {changed} transactions settled with {sorted(member_ids)}")
    return result
