"""Shared pytest fixtures for Budget Tracker tests.

Provides reusable fixtures for:
- engine / session_factory: a temporary SQLite database with the schema
  created, one per test.
- transaction_store / rule_store: stores bound to that database.
- adapter / make_adapter: a scriptable stand-in for the hosted classifier.
- classifier / service: wired with the mock adapter.
- make_txn: factory for Transaction objects that are not stored.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from budget_tracker.categorizer import Classifier
from budget_tracker.db import create_schema, make_engine, make_session_factory
from budget_tracker.models import Transaction
from budget_tracker.rules import RuleStore
from budget_tracker.service import BudgetService
from budget_tracker.transactions import TransactionStore

# ---------------------------------------------------------------------------
# Mock hosted classifier
# ---------------------------------------------------------------------------


class MockClassifierAdapter:
    """A scriptable hosted classifier.

    Returns *reply* for every call (None simulates an outage), or raises
    ``ConnectionError`` when *should_fail* is set.  Every call is recorded.
    """

    def __init__(
        self,
        reply: dict | None = None,
        *,
        should_fail: bool = False,
    ):
        self.reply = reply
        self.should_fail = should_fail
        self.calls: list[tuple[str, Decimal, str | None, list[str]]] = []

    def classify(
        self,
        merchant: str,
        amount: Decimal,
        description: str | None,
        categories: list[str],
    ) -> dict | None:
        self.calls.append((merchant, amount, description, categories))
        if self.should_fail:
            raise ConnectionError("classifier unavailable")
        return self.reply


# ---------------------------------------------------------------------------
# Database and stores
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path: Path):
    """A fresh SQLite database file with all tables created."""
    eng = make_engine(f"sqlite:///{tmp_path / 'budget.db'}")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def transaction_store(session_factory) -> TransactionStore:
    return TransactionStore(session_factory)


@pytest.fixture
def rule_store(session_factory) -> RuleStore:
    return RuleStore(session_factory)


@pytest.fixture
def adapter() -> MockClassifierAdapter:
    """Hosted classifier that confidently answers Food."""
    return MockClassifierAdapter({"category": "Food", "confidence": 0.9, "reasoning": "cafe"})


@pytest.fixture
def make_adapter():
    """Factory fixture returning :class:`MockClassifierAdapter`."""
    return MockClassifierAdapter


@pytest.fixture
def classifier(rule_store: RuleStore, adapter: MockClassifierAdapter) -> Classifier:
    return Classifier(rule_store, adapter)


@pytest.fixture
def service(
    transaction_store: TransactionStore,
    rule_store: RuleStore,
    classifier: Classifier,
) -> BudgetService:
    return BudgetService(transaction_store, rule_store, classifier)


# ---------------------------------------------------------------------------
# Transaction factory
# ---------------------------------------------------------------------------


def _make_txn(
    merchant: str = "Corner Cafe",
    amount_cents: int = 1000,
    category: str = "Food",
    txn_date: date = date(2026, 5, 10),
    *,
    txn_id: str = "",
    user_id: str = "user-1",
) -> Transaction:
    """Build an unsaved Transaction for pure-function tests."""
    return Transaction(
        id=txn_id or f"t-{merchant[:6].lower().replace(' ', '-')}-{amount_cents}",
        user_id=user_id,
        merchant=merchant,
        amount_cents=amount_cents,
        category=category,
        date=txn_date,
    )


@pytest.fixture
def make_txn():
    """Factory fixture returning :func:`_make_txn`."""
    return _make_txn
