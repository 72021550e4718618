"""Cached, dependency-injected access to the derived ledger views.

The repository composes the pure engines with whatever supplies the raw
records. It owns no global state: the source, cache, change channel and
settings are all passed in, so tests can swap each of them out.
"""

import copy
import logging
import time
from collections.abc import Callable, Hashable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Protocol, runtime_checkable

from .balances import reconstruct
from .config import Settings, load_settings
from .invoices import build_invoices_with_issues
from .models import (
    Account,
    InvoiceItem,
    LedgerIssue,
    Member,
    ReconstructionResult,
    SettlementLine,
    Transaction,
)
from .settlement import compute_settlement

logger = logging.getLogger(__name__)


@runtime_checkable
class LedgerSource(Protocol):
    """Supplies the raw records (the persistence/sync layer implements this)."""

    def fetch_accounts(self) -> Sequence[Account]: ...

    def fetch_transactions(self) -> Sequence[Transaction]: ...

    def fetch_members(self) -> Sequence[Member]: ...


# ============================================================================
# TTL cache
# ============================================================================


@dataclass
class _CacheEntry:
    value: Any
    expires_at: float


class TTLCache:
    """In-memory cache whose entries expire ``ttl_seconds`` after being set."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._data: dict[Hashable, _CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Any | None:
        """Cached value, or None if the key is missing or expired."""
        entry = self._data.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() >= entry.expires_at:
            del self._data[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def set(self, key: Hashable, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._data[key] = _CacheEntry(value=value, expires_at=self._clock() + ttl)

    def invalidate(self, key: Hashable) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


# ============================================================================
# Change channel
# ============================================================================


@dataclass(frozen=True)
class LedgerChanged:
    """Published whenever the underlying records changed."""

    reason: str
    occurred_at: datetime = field(default_factory=datetime.now)


ChangeHandler = Callable[[LedgerChanged], None]


class ChangeChannel:
    """Observer channel for ledger change notifications.

    Handler errors are logged and never reach the publisher.
    """

    def __init__(self) -> None:
        self._handlers: list[ChangeHandler] = []

    def subscribe(self, handler: ChangeHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: ChangeHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def publish(self, event: LedgerChanged) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"Ledger change handler failed: {e}", exc_info=True)


# ============================================================================
# Repository
# ============================================================================


class LedgerRepository:
    """Derived balances, invoices and settlements over a ``LedgerSource``."""

    def __init__(
        self,
        source: LedgerSource,
        *,
        cache: TTLCache | None = None,
        channel: ChangeChannel | None = None,
        settings: Settings | None = None,
    ):
        """Initialize the repository."""
        self.source = source
        self.settings = settings or load_settings()
        self.cache = (
            cache
            if cache is not None
            else TTLCache(ttl_seconds=self.settings.cache_ttl_seconds)
        )
        self.channel = channel if channel is not None else ChangeChannel()

    def _cached(self, key: Hashable, compute: Callable[[], Any]) -> Any:
        """Cached result for ``key``; callers always get their own copy."""
        value = self.cache.get(key)
        if value is not None:
            logger.debug(f"Cache hit for {key!r}")
            return copy.deepcopy(value)
        logger.debug(f"Cache miss for {key!r}")
        value = compute()
        self.cache.set(key, value)
        return copy.deepcopy(value)

    def balances(self, cutoff: date | None = None) -> ReconstructionResult:
        """Accounts reconstructed from the current log, optionally as of ``cutoff``."""
        return self._cached(
            ("balances", cutoff),
            lambda: reconstruct(
                self.source.fetch_accounts(),
                self.source.fetch_transactions(),
                cutoff,
                self_id=self.settings.self_member_id,
            ),
        )

    def invoices_with_issues(
        self,
    ) -> tuple[dict[str, list[InvoiceItem]], list[LedgerIssue]]:
        return self._cached(
            ("invoices",),
            lambda: build_invoices_with_issues(
                self.source.fetch_transactions(),
                self.source.fetch_members(),
                settings=self.settings,
            ),
        )

    def invoices(self) -> dict[str, list[InvoiceItem]]:
        """Invoice items per member id."""
        invoices, _ = self.invoices_with_issues()
        return invoices

    def settlement(
        self, participants: Sequence[Member] | None = None
    ) -> list[SettlementLine]:
        """Settlement instructions among ``participants`` (defaults to all members)."""
        if participants is None:
            participants = self.source.fetch_members()
        key = ("settlement", tuple(p.id for p in participants))
        return self._cached(
            key,
            lambda: compute_settlement(
                self.source.fetch_transactions(),
                participants,
                self_id=self.settings.self_member_id,
                tolerance=self.settings.tolerance,
            ),
        )

    def notify_changed(self, reason: str = "changed") -> None:
        """Drop every cached view and tell subscribers the ledger changed."""
        self.cache.clear()
        logger.info(f"Ledger changed ({reason}); cache cleared")
        self.channel.publish(LedgerChanged(reason=reason))

    def commit_installments(self, batch: Sequence[Transaction]) -> None:
        """
        Hand an installment batch to the source for a durable commit.

        The source must provide ``commit_transactions(batch)``.
        """
        commit = getattr(self.source, "commit_transactions", None)
        if commit is None:
            raise TypeError(
                f"{type(self.source).__name__} does not support committing transactions"
            )
        commit(list(batch))
        self.notify_changed(f"committed {len(batch)} installments")
