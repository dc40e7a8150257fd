"""Transaction store: CRUD plus the date-range and page queries the core needs.

Every query is scoped by ``user_id``; a transaction owned by someone else
behaves exactly like a missing one (:class:`NotFoundError`).
"""

from __future__ import annotations

import logging
import uuid
from datetime import date

from sqlalchemy import delete, func, select
from sqlalchemy.orm import sessionmaker

from budget_tracker.db import TransactionRow, session_scope, utcnow
from budget_tracker.errors import NotFoundError
from budget_tracker.models import Transaction, TransactionPage

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

UPDATABLE_FIELDS = ("merchant", "amount_cents", "category", "date", "description")


def _to_transaction(row: TransactionRow) -> Transaction:
    return Transaction(
        id=row.id,
        user_id=row.user_id,
        merchant=row.merchant,
        amount_cents=row.amount_cents,
        category=row.category,
        date=row.date,
        description=row.description,
        ai_confidence=row.ai_confidence,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class TransactionStore:
    """Persists :class:`~budget_tracker.models.Transaction` records.

    Args:
        session_factory: A SQLAlchemy ``sessionmaker``.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def add(
        self,
        user_id: str,
        merchant: str,
        amount_cents: int,
        category: str,
        txn_date: date,
        description: str | None = None,
        ai_confidence: float | None = None,
    ) -> Transaction:
        """Insert a new transaction and return it with its generated id."""
        now = utcnow()
        row = TransactionRow(
            id=str(uuid.uuid4()),
            user_id=user_id,
            merchant=merchant,
            amount_cents=amount_cents,
            category=category,
            date=txn_date,
            description=description,
            ai_confidence=ai_confidence,
            created_at=now,
            updated_at=now,
        )
        with session_scope(self._session_factory, "create transaction") as session:
            session.add(row)
            session.flush()
            return _to_transaction(row)

    def get(self, user_id: str, transaction_id: str) -> Transaction:
        """Return one transaction.

        Raises:
            NotFoundError: If it does not exist or belongs to another user.
        """
        with session_scope(self._session_factory, "fetch transaction") as session:
            row = self._owned_row(session, user_id, transaction_id)
            return _to_transaction(row)

    def update(self, user_id: str, transaction_id: str, /, **changes) -> Transaction:
        """Apply a partial update.

        Only keys in :data:`UPDATABLE_FIELDS` are accepted; the caller is
        responsible for validating their values.

        Raises:
            NotFoundError: If the transaction is missing or not owned by *user_id*.
            ValueError: If *changes* contains an unknown field.
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        with session_scope(self._session_factory, "update transaction") as session:
            row = self._owned_row(session, user_id, transaction_id)
            for name, value in changes.items():
                setattr(row, name, value)
            row.updated_at = utcnow()
            session.flush()
            return _to_transaction(row)

    def delete(self, user_id: str, transaction_id: str) -> None:
        """Delete one transaction.

        Raises:
            NotFoundError: If nothing was deleted.
        """
        with session_scope(self._session_factory, "delete transaction") as session:
            result = session.execute(
                delete(TransactionRow).where(
                    TransactionRow.id == transaction_id,
                    TransactionRow.user_id == user_id,
                )
            )
            deleted = result.rowcount
        if not deleted:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

    def list_between(self, user_id: str, start: date, end: date) -> list[Transaction]:
        """All of *user_id*'s transactions dated within ``[start, end]``, oldest first."""
        with session_scope(self._session_factory, "query transactions") as session:
            rows = session.scalars(
                select(TransactionRow)
                .where(
                    TransactionRow.user_id == user_id,
                    TransactionRow.date >= start,
                    TransactionRow.date <= end,
                )
                .order_by(TransactionRow.date, TransactionRow.created_at)
            ).all()
            return [_to_transaction(row) for row in rows]

    def list_page(
        self,
        user_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> TransactionPage:
        """One page of *user_id*'s transactions, newest first.

        *page* is 1-based and clamped to at least 1; *limit* is clamped to
        ``[1, MAX_PAGE_SIZE]``.
        """
        page = max(1, page)
        limit = min(max(1, limit), MAX_PAGE_SIZE)
        offset = (page - 1) * limit
        with session_scope(self._session_factory, "list transactions") as session:
            total = session.scalar(
                select(func.count()).select_from(TransactionRow).where(
                    TransactionRow.user_id == user_id
                )
            ) or 0
            rows = session.scalars(
                select(TransactionRow)
                .where(TransactionRow.user_id == user_id)
                .order_by(TransactionRow.date.desc(), TransactionRow.created_at.desc())
                .offset(offset)
                .limit(limit)
            ).all()
            transactions = [_to_transaction(row) for row in rows]
        return TransactionPage(
            transactions=transactions,
            total=total,
            page=page,
            limit=limit,
            has_more=total > offset + limit,
        )

    @staticmethod
    def _owned_row(session, user_id: str, transaction_id: str) -> TransactionRow:
        row = session.get(TransactionRow, transaction_id)
        if row is None or row.user_id != user_id:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        return row
