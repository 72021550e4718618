"""ledgerkit - Exact ledger reconstruction, shared invoices, settlements and installments."""

__version__ = "0.1.0"

from .balances import reconstruct, total_payables, total_receivables
from .config import Settings, load_settings
from .exceptions import (
    AmbiguousAttribution,
    ConfigurationError,
    DivisionByZero,
    LedgerKitError,
    ReferentialIntegrityWarning,
    SeriesLockedError,
    ValidationError,
)
from .installments import (
    add_months,
    anticipate_installments,
    expand_installments,
    reschedule_series,
)
from .invoices import (
    InvoiceView,
    build_invoices,
    build_invoices_with_issues,
    filter_invoice,
    invoice_totals,
    resolve_member,
)
from .models import (
    Account,
    Income,
    InstallmentIntent,
    InstallmentMember,
    InvoiceItem,
    LedgerIssue,
    Member,
    ReconstructionResult,
    SettlementLine,
    SharedExpense,
    SimpleExpense,
    Split,
    Transaction,
    Transfer,
    parse_transaction,
    parse_transactions,
)
from .repository import ChangeChannel, LedgerRepository, LedgerSource, TTLCache
from .settlement import (
    apply_settlement,
    compute_net_balances,
    compute_settlement,
    mark_settled,
)

__all__ = [
    "Settings",
    "load_settings",
    "ConfigurationError",
    "LedgerKitError",
    "ValidationError",
    "ReferentialIntegrityWarning",
    "DivisionByZero",
    "AmbiguousAttribution",
    "SeriesLockedError",
    "Account",
    "Member",
    "Split",
    "Transaction",
    "Income",
    "Transfer",
    "SimpleExpense",
    "SharedExpense",
    "InstallmentMember",
    "InstallmentIntent",
    "InvoiceItem",
    "LedgerIssue",
    "ReconstructionResult",
    "SettlementLine",
    "parse_transaction",
    "parse_transactions",
    "reconstruct",
    "total_receivables",
    "total_payables",
    "InvoiceView",
    "build_invoices",
    "build_invoices_with_issues",
    "filter_invoice",
    "invoice_totals",
    "resolve_member",
    "compute_net_balances",
    "compute_settlement",
    "apply_settlement",
    "mark_settled",
    "add_months",
    "expand_installments",
    "reschedule_series",
    "anticipate_installments",
    "LedgerRepository",
    "LedgerSource",
    "TTLCache",
    "ChangeChannel",
]
