"""Rule store accessor: per-user, per-merchant category rules.

Rules are keyed on ``(user_id, normalize_merchant(merchant))``.  Every
write is a single statement so concurrent requests cannot create two
rules for the same merchant or lose a usage increment:

- a correction is one ``INSERT ... ON CONFLICT DO UPDATE`` that either
  creates the rule at :data:`INITIAL_CONFIDENCE` or bumps the existing
  rule's confidence by :data:`CONFIDENCE_STEP` up to :data:`CONFIDENCE_CAP`;
- a classification hit is one ``UPDATE ... SET usage_count = usage_count + 1``.
"""

from __future__ import annotations

import logging

from sqlalchemy import case, delete, select, update
from sqlalchemy.orm import sessionmaker

from budget_tracker.db import CategoryRuleRow, dialect_insert, session_scope, utcnow
from budget_tracker.models import CategoryRule, normalize_merchant

logger = logging.getLogger(__name__)

INITIAL_CONFIDENCE = 0.7
CONFIDENCE_STEP = 0.1
CONFIDENCE_CAP = 0.95


def _to_rule(row: CategoryRuleRow) -> CategoryRule:
    return CategoryRule(
        id=row.id,
        user_id=row.user_id,
        merchant_key=row.merchant_key,
        merchant=row.merchant,
        category=row.category,
        confidence=row.confidence,
        usage_count=row.usage_count,
        last_used=row.last_used,
    )


class RuleStore:
    """Reads and writes :class:`~budget_tracker.models.CategoryRule` records.

    Args:
        session_factory: A SQLAlchemy ``sessionmaker``; each method runs in
            its own session and transaction.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def lookup(self, user_id: str, merchant: str) -> CategoryRule | None:
        """Return the rule for *merchant*, or None if there is none."""
        key = normalize_merchant(merchant)
        with session_scope(self._session_factory, "look up category rule") as session:
            row = session.scalars(
                select(CategoryRuleRow).where(
                    CategoryRuleRow.user_id == user_id,
                    CategoryRuleRow.merchant_key == key,
                )
            ).one_or_none()
            return _to_rule(row) if row is not None else None

    def record_hit(self, rule_id: int) -> CategoryRule | None:
        """Increment a rule's usage count and refresh ``last_used``.

        Returns:
            The updated rule, or None if it was deleted in the meantime.
        """
        with session_scope(self._session_factory, "record category rule usage") as session:
            session.execute(
                update(CategoryRuleRow)
                .where(CategoryRuleRow.id == rule_id)
                .values(
                    usage_count=CategoryRuleRow.usage_count + 1,
                    last_used=utcnow(),
                )
            )
            row = session.get(CategoryRuleRow, rule_id, populate_existing=True)
            return _to_rule(row) if row is not None else None

    def upsert_correction(self, user_id: str, merchant: str, category: str) -> CategoryRule:
        """Create or reinforce the rule for *merchant* in one atomic statement.

        New rule: ``confidence = 0.7``, ``usage_count = 1``.
        Existing rule: category replaced, ``confidence = min(confidence + 0.1,
        0.95)``, ``usage_count + 1``, ``last_used`` refreshed.

        Returns:
            The rule as stored after the write.
        """
        key = normalize_merchant(merchant)
        now = utcnow()
        with session_scope(self._session_factory, "save category rule") as session:
            insert = dialect_insert(session)
            stmt = insert(CategoryRuleRow).values(
                user_id=user_id,
                merchant_key=key,
                merchant=merchant.strip(),
                category=category,
                confidence=INITIAL_CONFIDENCE,
                usage_count=1,
                last_used=now,
                created_at=now,
                updated_at=now,
            )
            bumped = CategoryRuleRow.confidence + CONFIDENCE_STEP
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "merchant_key"],
                set_={
                    "merchant": stmt.excluded.merchant,
                    "category": stmt.excluded.category,
                    "confidence": case(
                        (bumped > CONFIDENCE_CAP, CONFIDENCE_CAP), else_=bumped
                    ),
                    "usage_count": CategoryRuleRow.usage_count + 1,
                    "last_used": stmt.excluded.last_used,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            session.execute(stmt)
            row = session.scalars(
                select(CategoryRuleRow)
                .where(
                    CategoryRuleRow.user_id == user_id,
                    CategoryRuleRow.merchant_key == key,
                )
                .execution_options(populate_existing=True)
            ).one()
            rule = _to_rule(row)

        logger.debug(
            "Rule %r -> %s (confidence %.2f, used %d)",
            rule.merchant_key,
            rule.category,
            rule.confidence,
            rule.usage_count,
        )
        return rule

    def list_rules(self, user_id: str) -> list[CategoryRule]:
        """All rules for *user_id*, most used first, then by merchant."""
        with session_scope(self._session_factory, "list category rules") as session:
            rows = session.scalars(
                select(CategoryRuleRow)
                .where(CategoryRuleRow.user_id == user_id)
                .order_by(CategoryRuleRow.usage_count.desc(), CategoryRuleRow.merchant_key)
            ).all()
            return [_to_rule(row) for row in rows]

    def delete_rule(self, user_id: str, merchant: str) -> bool:
        """Delete the rule for *merchant*.  Returns True if one was deleted."""
        key = normalize_merchant(merchant)
        with session_scope(self._session_factory, "delete category rule") as session:
            result = session.execute(
                delete(CategoryRuleRow).where(
                    CategoryRuleRow.user_id == user_id,
                    CategoryRuleRow.merchant_key == key,
                )
            )
            return result.rowcount > 0
