"""Shared-expense invoices: per-member credit/debit line items derived from the log."""

import logging
import re
from collections.abc import Iterable, Sequence
from datetime import date
from decimal import Decimal
from enum import Enum

from .config import Settings, load_settings
from .models import (
    InvoiceItem,
    InvoiceItemKind,
    InvoiceTotals,
    IssueCode,
    IssueSeverity,
    LedgerIssue,
    Member,
    Transaction,
    TransactionKind,
    paid_by_third_party,
    self_share,
)
from .money import ZERO, round_money, subtract, sum_money

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "Unknown member"


class InvoiceView(str, Enum):
    REGULAR = "REGULAR"  # current month, no trip
    TRAVEL = "TRAVEL"  # trip expenses only
    HISTORY = "HISTORY"  # paid items only


def is_shared_expense(tx: Transaction, self_id: str) -> bool:
    """An expense that belongs in the invoice system."""
    return tx.kind is TransactionKind.EXPENSE and (
        tx.is_shared or bool(tx.splits) or paid_by_third_party(tx, self_id)
    )


def resolve_member(member_id: str, members: Iterable[Member]) -> Member:
    """
    Look up a member, falling back to a synthetic placeholder.

    Historical invoices can reference members that are no longer on the
    roster; they still get an entry so the history stays navigable.
    """
    for member in members:
        if member.id == member_id:
            return member
    return Member(id=member_id, name=PLACEHOLDER_NAME, is_placeholder=True)


class PayerResolver:
    """Maps a transaction's payer id onto a roster member id."""

    def __init__(self, members: Sequence[Member], markers: Sequence[str]):
        self.members = members
        self.by_linked_user = {
            m.linked_user_id: m for m in members if m.linked_user_id is not None
        }
        self.by_id = {m.id: m for m in members}
        self.patterns = [re.compile(marker, re.IGNORECASE) for marker in markers]

    def _match_name(self, description: str) -> Member | None:
        for pattern in self.patterns:
            match = pattern.search(description)
            if not match or not match.group(1):
                continue
            name = match.group(1).strip().lower()
            for member in self.members:
                full_name = member.name.strip().lower()
                first_name = full_name.split(" ")[0] if full_name else ""
                if name and name in (full_name, first_name):
                    return member
        return None

    def resolve(self, tx: Transaction) -> tuple[str, bool]:
        """
        Resolve the payer's member id.

        Returns:
            Tuple of (member_id, degraded). ``degraded`` is True when the
            member was found by matching a name in the description.
        """
        payer_id = tx.payer_id or ""

        member = self.by_linked_user.get(payer_id) or self.by_id.get(payer_id)
        if member:
            return member.id, False

        member = self._match_name(tx.description)
        if member:
            logger.warning(
                f"Payer {payer_id!r} of transaction {tx.id} resolved to member "
                f"{member.id!r} by name match (no linked identity)"
            )
            return member.id, True

        return payer_id, False


def build_invoices_with_issues(
    transactions: Iterable[Transaction],
    members: Sequence[Member],
    *,
    self_id: str | None = None,
    default_currency: str | None = None,
    settings: Settings | None = None,
) -> tuple[dict[str, list[InvoiceItem]], list[LedgerIssue]]:
    """
    Build every member's invoice and report degraded payer attributions.

    For each non-deleted shared expense:
    - Caller paid: one CREDIT per split (the member owes the caller)
    - Someone else paid: one DEBIT under the payer for the caller's share,
      if that share is above ``settings.tolerance`` (one cent by default)

    Returns:
        Tuple of (invoice map keyed by member id, issues)
    """
    settings = settings or load_settings()
    self_id = self_id or settings.self_member_id
    default_currency = default_currency or settings.default_currency

    resolver = PayerResolver(members, settings.shared_by_markers)
    invoices: dict[str, list[InvoiceItem]] = {m.id: [] for m in members}
    issues: list[LedgerIssue] = []

    for tx in transactions:
        if tx.deleted or not is_shared_expense(tx, self_id):
            continue

        currency = tx.currency or default_currency
        installment_number = getattr(tx, "installment_number", None)
        installment_total = getattr(tx, "installment_total", None)

        if not paid_by_third_party(tx, self_id):
            for split in tx.splits:
                if split.member_id == self_id:
                    continue
                invoices.setdefault(split.member_id, []).append(
                    InvoiceItem(
                        id=f"{tx.id}-credit-{split.member_id}",
                        source_transaction_id=tx.id,
                        member_id=split.member_id,
                        kind=InvoiceItemKind.CREDIT,
                        amount=round_money(split.assigned_amount),
                        currency=currency,
                        is_paid=split.is_settled,
                        date=tx.date,
                        description=tx.description,
                        trip_id=tx.trip_id,
                        installment_number=installment_number,
                        installment_total=installment_total,
                    )
                )
            continue

        member_id, degraded = resolver.resolve(tx)
        if degraded:
            issues.append(
                LedgerIssue(
                    severity=IssueSeverity.WARNING,
                    code=IssueCode.AMBIGUOUS_ATTRIBUTION,
                    transaction_id=tx.id,
                    message=f"Payer resolved to {member_id!r} by description match",
                )
            )

        share = round_money(self_share(tx, self_id))
        if share < 0:
            logger.warning(
                f"Splits of transaction {tx.id} exceed its amount {tx.amount}"
            )
        if share <= settings.tolerance:
            continue

        invoices.setdefault(member_id, []).append(
            InvoiceItem(
                id=f"{tx.id}-debit-{member_id}",
                source_transaction_id=tx.id,
                member_id=member_id,
                kind=InvoiceItemKind.DEBIT,
                amount=share,
                currency=currency,
                is_paid=tx.is_settled,
                date=tx.date,
                description=tx.description,
                trip_id=tx.trip_id,
                installment_number=installment_number,
                installment_total=installment_total,
                degraded_attribution=degraded,
            )
        )

    return invoices, issues


def build_invoices(
    transactions: Iterable[Transaction],
    members: Sequence[Member],
    *,
    self_id: str | None = None,
    default_currency: str | None = None,
    settings: Settings | None = None,
) -> dict[str, list[InvoiceItem]]:
    """Invoice items per member id. See ``build_invoices_with_issues``."""
    invoices, _ = build_invoices_with_issues(
        transactions,
        members,
        self_id=self_id,
        default_currency=default_currency,
        settings=settings,
    )
    return invoices


def filter_invoice(
    items: Iterable[InvoiceItem],
    view: InvoiceView = InvoiceView.REGULAR,
    period: date | None = None,
    *,
    trip_id: str | None = None,
) -> list[InvoiceItem]:
    """
    Select the items shown for one invoice view, newest first.

    Args:
        items: One member's invoice items
        view: REGULAR (calendar month of ``period``, no trip), TRAVEL
              (trip items) or HISTORY (paid items)
        period: Any day in the month to show for REGULAR (defaults to today)
        trip_id: Restrict to a single trip
    """
    if view is InvoiceView.TRAVEL:
        selected = [i for i in items if i.trip_id]
    elif view is InvoiceView.HISTORY:
        selected = [i for i in items if i.is_paid]
    else:
        period = period or date.today()
        selected = [
            i
            for i in items
            if not i.trip_id
            and i.date.year == period.year
            and i.date.month == period.month
        ]

    if trip_id is not None:
        selected = [i for i in selected if i.trip_id == trip_id]

    return sorted(selected, key=lambda i: i.date, reverse=True)


def invoice_totals(items: Iterable[InvoiceItem]) -> dict[str, InvoiceTotals]:
    """
    Open credits, debits and net per currency.

    Paid items are left out; ``net`` is credits minus debits.
    """
    credits: dict[str, Decimal] = {}
    debits: dict[str, Decimal] = {}

    for item in items:
        credits.setdefault(item.currency, ZERO)
        debits.setdefault(item.currency, ZERO)
        if item.is_paid:
            continue
        if item.kind is InvoiceItemKind.CREDIT:
            credits[item.currency] = sum_money([credits[item.currency], item.amount])
        else:
            debits[item.currency] = sum_money([debits[item.currency], item.amount])

    return {
        currency: InvoiceTotals(
            credits=credits[currency],
            debits=debits[currency],
            net=subtract(credits[currency], debits[currency]),
        )
        for currency in credits
    }
