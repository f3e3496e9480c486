"""
Pytest configuration and fixtures for the points ledger tests
"""

from datetime import datetime, timedelta
from decimal import Decimal
from itertools import count

import pytest

from points_ledger.models import RegisterUserRequest, SubmitBetRequest
from points_ledger.service import LedgerService
from points_ledger.store import LedgerStore

SESSION_START = datetime(2024, 5, 1, 18, 0, 0)


@pytest.fixture
def store():
    """Isolated in-memory database per test."""
    store = LedgerStore("sqlite:///:memory:")
    store.create_schema()
    yield store
    store.dispose()


@pytest.fixture
def service(store):
    return LedgerService(
        store,
        individual_cost=Decimal("25.00"),
        group_cost=Decimal("500.00"),
        allow_overdraft=True,
    )


@pytest.fixture
def make_user(service):
    """Register a user, optionally seeding an opening balance."""
    external_ids = count(1000)

    def _make_user(balance: str = "0.00", is_admin: bool = False, first_name: str = "Player"):
        user = service.register_user(RegisterUserRequest(
            external_id=next(external_ids),
            first_name=first_name,
            is_admin=is_admin,
        ))
        if Decimal(balance) != 0:
            service.adjust_balance(user.id, Decimal(balance), description="Opening balance")
        return user

    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user(is_admin=True, first_name="Admin")


def bet_request(user_id: int, **overrides) -> SubmitBetRequest:
    data = {
        "user_id": user_id,
        "platform": "Blaze",
        "game": "Crash",
        "stake": Decimal("20.00"),
        "win_amount": Decimal("50.00"),
        "loss_amount": Decimal("0.00"),
        "start_time": SESSION_START,
        "end_time": SESSION_START + timedelta(minutes=30),
        "bet_type": "session",
    }
    data.update(overrides)
    return SubmitBetRequest(**data)
