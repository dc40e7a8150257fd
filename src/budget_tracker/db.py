"""SQLAlchemy schema, engine and session factory for the local store.

Two tables back the core: ``transactions`` and ``category_rules``.  The
unique constraint on ``(user_id, merchant_key)`` is what makes rule
upserts atomic: ``rules.RuleStore`` relies on the database's
``INSERT ... ON CONFLICT DO UPDATE`` against it.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from sqlalchemy import (
    Date,
    DateTime,
    Engine,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from budget_tracker.errors import StorageError

logger = logging.getLogger(__name__)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy Declarative Base."""


class TransactionRow(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    merchant: Mapped[str] = mapped_column(String(255))
    amount_cents: Mapped[int] = mapped_column(Integer)
    category: Mapped[str] = mapped_column(String(32), index=True)
    date: Mapped[dt.date] = mapped_column(Date, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (Index("ix_transactions_user_date", "user_id", "date"),)


class CategoryRuleRow(Base):
    __tablename__ = "category_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    merchant_key: Mapped[str] = mapped_column(String(255), nullable=False)
    merchant: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "merchant_key", name="uq_rule_user_merchant_key"),
    )

    def __repr__(self) -> str:
        return (
            f"<CategoryRuleRow(id={self.id}, user_id={self.user_id}, "
            f"merchant_key={self.merchant_key}, category={self.category})>"
        )


def make_engine(url: str, timeout: float = 5.0) -> Engine:
    """Create an engine for *url* with a bounded wait on the database.

    SQLite gets ``check_same_thread=False`` (dashboard reads run on worker
    threads) and its busy timeout; in-memory SQLite shares one connection
    so every session sees the same data.  Other databases get a connect
    timeout and pre-ping.
    """
    kwargs: dict = {"future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": timeout}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["connect_args"] = {"connect_timeout": max(1, int(timeout))}
        kwargs["pool_pre_ping"] = True
    logger.debug("Creating engine for %s", url.split("@")[-1])
    return create_engine(url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)


@contextmanager
def session_scope(session_factory: sessionmaker, action: str) -> Iterator[Session]:
    """Run one unit of work in its own transaction.

    Commits on success and rolls back on error.  Any ``SQLAlchemyError``
    is logged and re-raised as :class:`StorageError` naming *action*.
    """
    try:
        with session_factory.begin() as session:
            yield session
    except SQLAlchemyError as exc:
        logger.error("Failed to %s: %s", action, exc)
        raise StorageError(f"Failed to {action}") from exc


def dialect_insert(session: Session) -> Callable:
    """Return the dialect-specific ``insert`` that supports ``on_conflict_do_update``."""
    name = session.get_bind().dialect.name
    if name == "sqlite":
        return sqlite.insert
    if name == "postgresql":
        return postgresql.insert
    raise StorageError(f"Atomic upsert is not supported on the {name!r} dialect")
