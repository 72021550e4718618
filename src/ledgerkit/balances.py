"""Balance reconstruction from the transaction log.

Balances are never trusted as stored truth: every call starts from each
account's ``initial_balance`` and replays the log in the order given.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from decimal import Decimal

from .config import load_settings
from .models import (
    Account,
    IssueCode,
    IssueSeverity,
    LedgerIssue,
    ReconstructionResult,
    Transaction,
    TransactionKind,
    Transfer,
    paid_by_third_party,
    self_share,
)
from .money import ZERO, round_money, subtract, sum_money

logger = logging.getLogger(__name__)


def _cutoff_date(cutoff: date | datetime | str | None) -> date | None:
    """Reduce a cutoff to a calendar date (the whole day is included)."""
    if cutoff is None:
        return None
    if isinstance(cutoff, datetime):
        return cutoff.date()
    if isinstance(cutoff, date):
        return cutoff
    return date.fromisoformat(cutoff[:10])


def is_floating(tx: Transaction, self_id: str) -> bool:
    """
    True for shared/installment transactions with no funding account yet.

    These live only in the invoice system until an account is assigned.
    """
    return (
        (tx.is_shared or tx.is_installment)
        and tx.account_id is None
        and not paid_by_third_party(tx, self_id)
    )


class _Replay:
    """Working state for one reconstruction pass."""

    def __init__(self, accounts: Sequence[Account]):
        self.balances: dict[str, Decimal] = {
            account.id: round_money(account.initial_balance) for account in accounts
        }
        self.currencies = {account.id: account.currency for account in accounts}
        self.issues: list[LedgerIssue] = []

    def report(
        self,
        severity: IssueSeverity,
        code: IssueCode,
        tx: Transaction,
        message: str,
    ) -> None:
        logger.warning(f"{code.value} in transaction {tx.id}: {message}")
        self.issues.append(
            LedgerIssue(
                severity=severity, code=code, transaction_id=tx.id, message=message
            )
        )

    def credit(self, account_id: str, amount: Decimal) -> None:
        self.balances[account_id] = sum_money([self.balances[account_id], amount])

    def debit(self, account_id: str, amount: Decimal) -> None:
        self.balances[account_id] = subtract(self.balances[account_id], amount)

    def apply_cash_flow(self, tx: Transaction, self_id: str) -> None:
        """EXPENSE / INCOME effect on the source account."""
        if tx.kind is TransactionKind.EXPENSE and paid_by_third_party(tx, self_id):
            # Tracked as an invoice debit instead
            return

        if tx.account_id not in self.balances:
            self.report(
                IssueSeverity.WARNING,
                IssueCode.MISSING_SOURCE_ACCOUNT,
                tx,
                f"Source account {tx.account_id!r} not found; transaction skipped",
            )
            return

        outflow = tx.kind is TransactionKind.EXPENSE
        if tx.is_refund:
            outflow = not outflow

        if outflow:
            self.debit(tx.account_id, tx.amount)
        else:
            self.credit(tx.account_id, tx.amount)

    def apply_transfer(self, tx: Transfer) -> None:
        """Move ``amount`` out of the source and the incoming amount into the destination."""
        has_source = tx.account_id in self.balances
        if has_source:
            self.debit(tx.account_id, tx.amount)

        if tx.destination_account_id not in self.balances:
            if has_source:
                # Put back what was taken so nothing leaks out of the ledger
                self.credit(tx.account_id, tx.amount)
            self.report(
                IssueSeverity.WARNING,
                IssueCode.MISSING_DESTINATION_ACCOUNT,
                tx,
                f"Destination account {tx.destination_account_id!r} not found; "
                f"source debit reversed",
            )
            return

        if not has_source:
            self.report(
                IssueSeverity.WARNING,
                IssueCode.MISSING_SOURCE_ACCOUNT,
                tx,
                f"Source account {tx.account_id!r} not found; "
                f"destination still credited",
            )

        incoming = tx.amount
        if tx.destination_amount is not None and tx.destination_amount > 0:
            incoming = round_money(tx.destination_amount)
        elif (
            has_source
            and self.currencies[tx.account_id]
            != self.currencies[tx.destination_account_id]
        ):
            self.report(
                IssueSeverity.WARNING,
                IssueCode.CURRENCY_FALLBACK,
                tx,
                f"{self.currencies[tx.account_id]} -> "
                f"{self.currencies[tx.destination_account_id]} transfer has no "
                f"destination amount; applied 1:1",
            )

        self.credit(tx.destination_account_id, incoming)


def reconstruct(
    accounts: Sequence[Account],
    transactions: Iterable[Transaction],
    cutoff: date | datetime | str | None = None,
    *,
    self_id: str | None = None,
) -> ReconstructionResult:
    """
    Derive account balances by replaying the log.

    Steps:
    1. Seed every account from ``initial_balance`` (stored balances are ignored)
    2. Replay transactions in log order, skipping deleted ones, malformed
       ones (reported), ones dated after ``cutoff`` and floating ones
    3. Return fresh account copies; the inputs are never mutated

    No record aborts the pass. Problems are isolated and returned as issues.

    Args:
        accounts: Account seeds
        transactions: The ledger, in log order
        cutoff: Optional "as of" date, inclusive of the whole day
        self_id: The caller's member id (defaults from settings)

    Returns:
        Reconstructed accounts plus the issues found
    """
    if self_id is None:
        self_id = load_settings().self_member_id

    cutoff_day = _cutoff_date(cutoff)
    replay = _Replay(accounts)
    skipped = 0

    for tx in transactions:
        if tx.deleted:
            continue

        if tx.amount <= 0:
            replay.report(
                IssueSeverity.ERROR,
                IssueCode.INVALID_AMOUNT,
                tx,
                f"Non-positive amount {tx.amount}; transaction skipped",
            )
            continue

        if cutoff_day is not None and tx.date > cutoff_day:
            skipped += 1
            continue

        if is_floating(tx, self_id):
            logger.debug(f"Transaction {tx.id} is floating; excluded from balances")
            continue

        if isinstance(tx, Transfer):
            replay.apply_transfer(tx)
        else:
            replay.apply_cash_flow(tx, self_id)

    if skipped:
        logger.debug(f"Skipped {skipped} transactions dated after {cutoff_day}")

    return ReconstructionResult(
        accounts=[
            account.model_copy(update={"balance": replay.balances[account.id]})
            for account in accounts
        ],
        issues=replay.issues,
    )


# ============================================================================
# Receivables / payables
# ============================================================================


def total_receivables(
    transactions: Iterable[Transaction],
    *,
    self_id: str | None = None,
    default_currency: str | None = None,
) -> dict[str, Decimal]:
    """
    Money others owe the caller, per currency.

    Unsettled splits of shared expenses the caller paid from one of their
    accounts. Expenses with no funding account are ignored.
    """
    if self_id is None or default_currency is None:
        settings = load_settings()
        self_id = self_id or settings.self_member_id
        default_currency = default_currency or settings.default_currency

    totals: dict[str, Decimal] = {}
    for tx in transactions:
        if tx.deleted or tx.kind is not TransactionKind.EXPENSE:
            continue
        if not tx.is_shared or tx.account_id is None:
            continue
        if paid_by_third_party(tx, self_id):
            continue

        pending = [
            s.assigned_amount
            for s in tx.splits
            if not s.is_settled and s.member_id != self_id
        ]
        if not pending:
            continue
        currency = tx.currency or default_currency
        totals[currency] = sum_money([totals.get(currency, ZERO), *pending])

    return totals


def total_payables(
    transactions: Iterable[Transaction],
    *,
    self_id: str | None = None,
    default_currency: str | None = None,
) -> dict[str, Decimal]:
    """Money the caller owes on expenses someone else paid, per currency."""
    if self_id is None or default_currency is None:
        settings = load_settings()
        self_id = self_id or settings.self_member_id
        default_currency = default_currency or settings.default_currency

    totals: dict[str, Decimal] = {}
    for tx in transactions:
        if tx.deleted or tx.kind is not TransactionKind.EXPENSE:
            continue
        if not paid_by_third_party(tx, self_id) or tx.is_settled:
            continue

        share = self_share(tx, self_id)
        if share <= 0:
            continue
        currency = tx.currency or default_currency
        totals[currency] = sum_money([totals.get(currency, ZERO), share])

    return totals
