"""Pydantic domain models for ledgerkit."""

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel, to_snake

from .exceptions import (
    AmbiguousAttribution,
    LedgerKitError,
    ReferentialIntegrityWarning,
    ValidationError,
)
from .money import to_decimal

Money = Annotated[Decimal, BeforeValidator(to_decimal)]


class LedgerModel(BaseModel):
    """Base for all ledgerkit models (immutable, accepts camelCase input)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )


# ============================================================================
# Ledger Models
# ============================================================================


class AccountType(str, Enum):
    CHECKING = "CHECKING"
    SAVINGS = "SAVINGS"
    CASH = "CASH"
    CREDIT_CARD = "CREDIT_CARD"
    INVESTMENT = "INVESTMENT"
    OTHER = "OTHER"


class Account(LedgerModel):
    """An account seeded by its initial balance.

    ``balance`` is derived output. It is ignored on input; reconstruction
    always starts again from ``initial_balance``.
    """

    id: str
    name: str = ""
    currency: str = "BRL"
    type: AccountType = AccountType.CHECKING
    initial_balance: Money = Decimal("0")
    balance: Money | None = None


class Member(LedgerModel):
    """A person expenses can be shared with."""

    id: str
    name: str = ""
    linked_user_id: str | None = None  # external identity (auth user id)
    is_placeholder: bool = False


class Split(LedgerModel):
    """One member's share of a transaction."""

    member_id: str
    assigned_amount: Money
    is_settled: bool = False
    settled_at: datetime | None = None


class TransactionKind(str, Enum):
    EXPENSE = "EXPENSE"
    INCOME = "INCOME"
    TRANSFER = "TRANSFER"


class _TransactionBase(LedgerModel):
    id: str
    amount: Money
    date: date
    description: str = ""
    currency: str | None = None
    trip_id: str | None = None
    category: str | None = None
    deleted: bool = False  # soft delete


class _Unshared:
    """Neutral shared-expense attributes for variants that cannot be shared."""

    @property
    def payer_id(self) -> str | None:
        return None

    @property
    def splits(self) -> list[Split]:
        return []

    @property
    def is_settled(self) -> bool:
        return False

    @property
    def is_shared(self) -> bool:
        return False

    @property
    def is_installment(self) -> bool:
        return False


class Income(_Unshared, _TransactionBase):
    variant: Literal["income"] = "income"
    account_id: str | None = None
    is_refund: bool = False

    @property
    def kind(self) -> TransactionKind:
        return TransactionKind.INCOME


class Transfer(_Unshared, _TransactionBase):
    """Money moved between two accounts.

    ``amount`` is in the source account's currency; ``destination_amount``
    is what arrives, when the two currencies differ. Either account may be
    missing on a damaged record; reconstruction reports it and moves on.
    """

    variant: Literal["transfer"] = "transfer"
    account_id: str | None = None
    destination_account_id: str | None = None
    destination_amount: Money | None = None

    @property
    def kind(self) -> TransactionKind:
        return TransactionKind.TRANSFER

    @property
    def is_refund(self) -> bool:
        return False


class SimpleExpense(_Unshared, _TransactionBase):
    variant: Literal["simple_expense"] = "simple_expense"
    account_id: str | None = None
    is_refund: bool = False

    @property
    def kind(self) -> TransactionKind:
        return TransactionKind.EXPENSE


class SharedExpense(_TransactionBase):
    """An expense split with other members, possibly paid by one of them.

    ``payer_id`` is unset (or the caller's own id) when the caller paid. The
    part of ``amount`` not covered by ``splits`` belongs to the payer.
    """

    variant: Literal["shared_expense"] = "shared_expense"
    account_id: str | None = None
    payer_id: str | None = None
    splits: list[Split] = Field(default_factory=list)
    is_settled: bool = False
    is_refund: bool = False

    @property
    def kind(self) -> TransactionKind:
        return TransactionKind.EXPENSE

    @property
    def is_shared(self) -> bool:
        return True

    @property
    def is_installment(self) -> bool:
        return False


class InstallmentMember(_TransactionBase):
    """One dated installment of a series created by the installment scheduler."""

    variant: Literal["installment"] = "installment"
    account_id: str | None = None
    payer_id: str | None = None
    splits: list[Split] = Field(default_factory=list)
    is_settled: bool = False
    is_refund: bool = False
    series_id: str
    installment_number: int = Field(ge=1)
    installment_total: int = Field(ge=1)

    @property
    def kind(self) -> TransactionKind:
        return TransactionKind.EXPENSE

    @property
    def is_shared(self) -> bool:
        return bool(self.splits) or self.payer_id is not None

    @property
    def is_installment(self) -> bool:
        return True


Transaction = Annotated[
    Union[Income, Transfer, SimpleExpense, SharedExpense, InstallmentMember],
    Field(discriminator="variant"),
]

_TRANSACTION_ADAPTER: TypeAdapter[Transaction] = TypeAdapter(Transaction)

# Older record field names mapped to the current ones
_LEGACY_FIELDS = {
    "type": "kind",
    "shared_with": "splits",
    "source_account_id": "account_id",
    "installment_index": "installment_number",
    "current_installment": "installment_number",
    "total_installments": "installment_total",
}


def _classify(data: Mapping[str, Any]) -> str:
    """Pick the transaction variant for a loosely-shaped record."""
    raw_kind = data.get("kind")
    if raw_kind is None:
        raise ValidationError(f"Transaction record {data.get('id')!r} has no kind")
    try:
        kind = TransactionKind(str(getattr(raw_kind, "value", raw_kind)).upper())
    except ValueError as e:
        raise ValidationError(f"Unknown transaction kind: {raw_kind!r}") from e

    if kind is TransactionKind.TRANSFER:
        return "transfer"
    if kind is TransactionKind.INCOME:
        return "income"
    if data.get("is_installment") or data.get("series_id"):
        return "installment"
    if data.get("is_shared") or data.get("splits") or data.get("payer_id"):
        return "shared_expense"
    return "simple_expense"


def parse_transaction(record: Mapping[str, Any] | BaseModel) -> Transaction:
    """
    Build the right transaction variant from a loosely-shaped record.

    Accepts snake_case or camelCase keys, and the older field names in
    ``_LEGACY_FIELDS``. Records that already carry ``variant`` are validated
    as-is. Already-parsed transactions are returned unchanged.

    Raises:
        ValidationError: If the record has no recognizable kind
        pydantic.ValidationError: If the record does not fit its variant
    """
    if isinstance(record, _TransactionBase):
        return record  # type: ignore[return-value]
    if isinstance(record, BaseModel):
        record = record.model_dump()

    data = {to_snake(key): value for key, value in record.items()}
    for legacy, current in _LEGACY_FIELDS.items():
        if legacy in data and current not in data:
            data[current] = data.pop(legacy)

    if "variant" not in data:
        data["variant"] = _classify(data)

    return _TRANSACTION_ADAPTER.validate_python(data)


def parse_transactions(records: Iterable[Mapping[str, Any] | BaseModel]) -> list[Transaction]:
    """Parse a whole log, preserving order."""
    return [parse_transaction(record) for record in records]


def paid_by_third_party(tx: Transaction, self_id: str) -> bool:
    """True if someone other than the caller paid for ``tx``."""
    return tx.payer_id is not None and tx.payer_id != self_id


def self_share(tx: Transaction, self_id: str) -> Decimal:
    """
    The caller's share of a shared expense.

    The caller's own split when they appear in ``splits``; otherwise whatever
    the splits leave uncovered. May be negative if the splits exceed the
    amount, which callers should treat as a data problem.
    """
    for split in tx.splits:
        if split.member_id == self_id:
            return to_decimal(split.assigned_amount)
    covered = sum((to_decimal(s.assigned_amount) for s in tx.splits), Decimal("0"))
    return to_decimal(tx.amount) - covered


# ============================================================================
# Derived Models
# ============================================================================


class InvoiceItemKind(str, Enum):
    CREDIT = "CREDIT"  # the member owes the caller
    DEBIT = "DEBIT"  # the caller owes the member


class InvoiceItem(LedgerModel):
    """A derived credit/debit between the caller and one member. Never persisted."""

    id: str
    source_transaction_id: str
    member_id: str
    kind: InvoiceItemKind
    amount: Money
    currency: str
    is_paid: bool = False
    date: date
    description: str = ""
    trip_id: str | None = None
    installment_number: int | None = None
    installment_total: int | None = None
    degraded_attribution: bool = False


class InvoiceTotals(LedgerModel):
    credits: Money = Decimal("0.00")
    debits: Money = Decimal("0.00")
    net: Money = Decimal("0.00")


class SettlementLine(LedgerModel):
    """One "debtor pays creditor amount" instruction.

    A line with no debtor and no creditor means everything is settled.
    """

    debtor_id: str | None = None
    creditor_id: str | None = None
    amount: Money = Decimal("0.00")

    @classmethod
    def all_settled(cls) -> "SettlementLine":
        return cls()

    @property
    def is_all_settled(self) -> bool:
        return self.debtor_id is None and self.creditor_id is None

    def describe(self, names: Mapping[str, str] | None = None) -> str:
        """Human-readable instruction, using ``names`` for member ids when given."""
        if self.is_all_settled:
            return "All settled! No open balances."
        names = names or {}
        debtor = names.get(self.debtor_id or "", self.debtor_id)
        creditor = names.get(self.creditor_id or "", self.creditor_id)
        return f"{debtor} pays {creditor} {self.amount:.2f}"


class IssueSeverity(str, Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"


class IssueCode(str, Enum):
    INVALID_AMOUNT = "INVALID_AMOUNT"
    MISSING_SOURCE_ACCOUNT = "MISSING_SOURCE_ACCOUNT"
    MISSING_DESTINATION_ACCOUNT = "MISSING_DESTINATION_ACCOUNT"
    CURRENCY_FALLBACK = "CURRENCY_FALLBACK"
    AMBIGUOUS_ATTRIBUTION = "AMBIGUOUS_ATTRIBUTION"


class LedgerIssue(LedgerModel):
    """A problem found in one record. The record was isolated, the pass went on."""

    severity: IssueSeverity
    code: IssueCode
    transaction_id: str | None = None
    message: str

    def as_exception(self) -> LedgerKitError:
        """The exception a strict caller would raise for this issue."""
        if self.code is IssueCode.INVALID_AMOUNT:
            return ValidationError(self.message)
        if self.code is IssueCode.AMBIGUOUS_ATTRIBUTION:
            return AmbiguousAttribution(self.message)
        if self.code is IssueCode.CURRENCY_FALLBACK:
            return LedgerKitError(self.message)
        return ReferentialIntegrityWarning(self.message)


class ReconstructionResult(BaseModel):
    """Freshly derived accounts plus everything that was skipped or repaired."""

    accounts: list[Account]
    issues: list[LedgerIssue] = Field(default_factory=list)

    def by_id(self) -> dict[str, Account]:
        return {account.id: account for account in self.accounts}

    def balance_of(self, account_id: str) -> Decimal:
        """Derived balance of one account.

        Raises:
            KeyError: If the account is unknown
        """
        balance = self.by_id()[account_id].balance
        return balance if balance is not None else Decimal("0.00")

    @property
    def warnings(self) -> list[LedgerIssue]:
        return [i for i in self.issues if i.severity is IssueSeverity.WARNING]

    @property
    def errors(self) -> list[LedgerIssue]:
        return [i for i in self.issues if i.severity is IssueSeverity.ERROR]


class InstallmentIntent(LedgerModel):
    """A purchase to be expanded into a dated installment series."""

    id: str | None = None
    description: str = ""
    amount: Money
    date: date
    account_id: str | None = None
    payer_id: str | None = None
    splits: list[Split] = Field(default_factory=list)
    currency: str | None = None
    trip_id: str | None = None
    category: str | None = None
