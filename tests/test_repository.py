"""Tests for the cached ledger repository, its TTL cache and change channel."""

from datetime import date
from decimal import Decimal

import pytest

from ledgerkit.models import SharedExpense, SimpleExpense, Split
from ledgerkit.repository import (
    ChangeChannel,
    LedgerChanged,
    LedgerRepository,
    LedgerSource,
    TTLCache,
)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeSource:
    """In-memory source that counts fetches."""

    def __init__(self, accounts, transactions, members):
        self.accounts = list(accounts)
        self.transactions = list(transactions)
        self.members = list(members)
        self.fetches = 0
        self.committed = []

    def fetch_accounts(self):
        return self.accounts

    def fetch_transactions(self):
        self.fetches += 1
        return self.transactions

    def fetch_members(self):
        return self.members

    def commit_transactions(self, batch):
        self.committed.append(batch)
        self.transactions.extend(batch)


class ReadOnlySource:
    def fetch_accounts(self):
        return []

    def fetch_transactions(self):
        return []

    def fetch_members(self):
        return []


@pytest.fixture
def source(accounts, members):
    return FakeSource(
        accounts,
        [
            SimpleExpense(
                id="t1",
                amount=Decimal("100.00"),
                date=date(2025, 3, 1),
                account_id="checking",
            ),
            SharedExpense(
                id="t2",
                amount=Decimal("60.00"),
                date=date(2025, 3, 5),
                account_id="checking",
                splits=[Split(member_id="ana", assigned_amount=Decimal("30.00"))],
            ),
        ],
        members,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repository(source, clock, settings):
    return LedgerRepository(
        source, cache=TTLCache(ttl_seconds=60, clock=clock), settings=settings
    )


class TestTTLCache:
    def test_get_and_set(self, clock):
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.set("key", "value")
        assert cache.get("key") == "value"
        assert cache.hits == 1

    def test_missing_key(self, clock):
        cache = TTLCache(clock=clock)
        assert cache.get("missing") is None
        assert cache.misses == 1

    def test_expiry(self, clock):
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.set("key", "value")
        clock.now = 9.9
        assert cache.get("key") == "value"
        clock.now = 10.0
        assert cache.get("key") is None
        assert len(cache) == 0

    def test_per_entry_ttl(self, clock):
        cache = TTLCache(ttl_seconds=10, clock=clock)
        cache.set("short", 1, ttl_seconds=1)
        clock.now = 2
        assert cache.get("short") is None

    def test_invalidate_and_clear(self, clock):
        cache = TTLCache(clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.invalidate("a")
        assert cache.get("a") is None
        assert len(cache) == 1
        cache.clear()
        assert len(cache) == 0


class TestChangeChannel:
    def test_publish_reaches_subscribers(self):
        channel = ChangeChannel()
        received = []
        channel.subscribe(received.append)
        channel.subscribe(received.append)  # duplicate is ignored
        channel.publish(LedgerChanged(reason="sync"))
        assert [event.reason for event in received] == ["sync"]

    def test_unsubscribe(self):
        channel = ChangeChannel()
        received = []
        channel.subscribe(received.append)
        channel.unsubscribe(received.append)
        channel.publish(LedgerChanged(reason="sync"))
        assert received == []

    def test_handler_errors_are_contained(self, caplog):
        channel = ChangeChannel()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        channel.subscribe(broken)
        channel.subscribe(received.append)
        channel.publish(LedgerChanged(reason="sync"))

        assert len(received) == 1
        assert "boom" in caplog.text


class TestLedgerRepository:
    def test_fake_source_satisfies_protocol(self, source):
        assert isinstance(source, LedgerSource)

    def test_balances(self, repository):
        result = repository.balances()
        assert result.balance_of("checking") == Decimal("840.00")

    def test_balances_are_cached(self, repository, source):
        first = repository.balances()
        second = repository.balances()
        assert first == second
        assert source.fetches == 1

    def test_callers_cannot_corrupt_cached_results(self, repository, source):
        invoices = repository.invoices()
        invoices["ana"].clear()
        invoices["intruder"] = []

        result = repository.balances()
        result.accounts.clear()

        again = repository.invoices()
        assert len(again["ana"]) == 1
        assert "intruder" not in again
        assert repository.balances().balance_of("checking") == Decimal("840.00")
        assert source.fetches == 2

    def test_cutoff_is_part_of_cache_key(self, repository):
        early = repository.balances(date(2025, 3, 2))
        late = repository.balances()
        assert early.balance_of("checking") == Decimal("900.00")
        assert late.balance_of("checking") == Decimal("840.00")

    def test_cache_expires(self, repository, source, clock):
        repository.balances()
        clock.now = 61
        repository.balances()
        assert source.fetches == 2

    def test_notify_changed_invalidates_and_publishes(self, repository, source):
        received = []
        repository.channel.subscribe(received.append)
        repository.balances()

        source.transactions.append(
            SimpleExpense(
                id="t3",
                amount=Decimal("40.00"),
                date=date(2025, 3, 9),
                account_id="checking",
            )
        )
        assert repository.balances().balance_of("checking") == Decimal("840.00")

        repository.notify_changed("sync")
        assert repository.balances().balance_of("checking") == Decimal("800.00")
        assert [event.reason for event in received] == ["sync"]

    def test_invoices(self, repository):
        invoices = repository.invoices()
        [item] = invoices["ana"]
        assert item.amount == Decimal("30.00")

    def test_settlement(self, repository):
        [line] = repository.settlement()
        assert line.debtor_id == "ana"
        assert line.creditor_id == "me"
        assert line.amount == Decimal("30.00")

    def test_commit_installments(self, repository, source):
        received = []
        repository.channel.subscribe(received.append)
        batch = [
            SimpleExpense(
                id="t9",
                amount=Decimal("10.00"),
                date=date(2025, 3, 10),
                account_id="checking",
            )
        ]
        repository.balances()
        repository.commit_installments(batch)

        assert source.committed == [batch]
        assert len(received) == 1
        assert repository.balances().balance_of("checking") == Decimal("830.00")

    def test_commit_requires_writable_source(self, settings):
        repository = LedgerRepository(ReadOnlySource(), settings=settings)
        with pytest.raises(TypeError):
            repository.commit_installments([])
