"""Shared fixtures for ledgerkit tests."""

from decimal import Decimal

import pytest

from ledgerkit.config import Settings
from ledgerkit.models import Account, AccountType, Member


@pytest.fixture
def settings():
    """Settings with explicit values, independent of the environment."""
    return Settings(self_member_id="me", default_currency="BRL", cache_ttl_seconds=60)


@pytest.fixture
def accounts():
    """Three accounts seeded with initial balances."""
    return [
        Account(
            id="checking",
            name="Checking",
            currency="BRL",
            initial_balance=Decimal("1000.00"),
        ),
        Account(
            id="savings",
            name="Savings",
            currency="BRL",
            type=AccountType.SAVINGS,
            initial_balance=Decimal("500.00"),
        ),
        Account(
            id="wallet-usd",
            name="USD Wallet",
            currency="USD",
            type=AccountType.CASH,
            initial_balance=Decimal("0.00"),
        ),
    ]


@pytest.fixture
def members():
    """Group roster; Ana and Bruno are linked to external identities."""
    return [
        Member(id="ana", name="Ana Souza", linked_user_id="user-ana"),
        Member(id="bruno", name="Bruno Lima", linked_user_id="user-bruno"),
        Member(id="carla", name="Carla"),
    ]
