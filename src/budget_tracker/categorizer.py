"""Categorization engine: learned rules, hosted classifier, keyword fallback.

Resolution order for one transaction:

1. **Learned rule** -- the user's rule for the (normalized) merchant, used
   only when its confidence is above the threshold (0.8 by default).  A
   hit bumps the rule's usage count.
2. **Hosted classifier** -- the configured ``ClassifierAdapter``.  Its
   answer is untrusted: a category outside the fixed set becomes
   ``"Other"`` with confidence 0.5, and confidence is clamped to [0, 1].
3. **Keyword fallback** -- when the hosted call fails, times out or
   returns something unparseable, a case-insensitive substring match
   over the merchant picks the category with confidence 0.3.  The
   result keeps ``source="ai"`` and is marked ``fallback=True``.

Categorization never fails for upstream reasons; only invalid input and
rule-store failures propagate.

The ``reinforce`` function is the other half of the learning loop: it is
called when the user corrects a transaction's category.
"""

from __future__ import annotations

import logging
import math
from decimal import Decimal

from budget_tracker.llm import ClassifierAdapter
from budget_tracker.models import (
    CATEGORIES,
    FALLBACK_CATEGORY,
    SOURCE_AI,
    SOURCE_RULE,
    CategoryRule,
    Classification,
    validate_amount,
    validate_category,
    validate_merchant,
)
from budget_tracker.rules import RuleStore

logger = logging.getLogger(__name__)

DEFAULT_RULE_THRESHOLD = 0.8
INVALID_CATEGORY_CONFIDENCE = 0.5
FALLBACK_CONFIDENCE = 0.3

# Tested in this order; the first category with a matching keyword wins.
FALLBACK_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "Food",
        ("grocery", "supermarket", "restaurant", "cafe", "food", "pizza", "mcdonald", "subway"),
    ),
    ("Transport", ("gas", "fuel", "uber", "lyft", "taxi", "transport")),
    ("Shopping", ("amazon", "target", "walmart", "shop", "store")),
    ("Entertainment", ("netflix", "spotify", "movie", "theater", "entertainment")),
    ("Bills", ("electric", "water", "internet", "phone", "utility", "bill")),
    ("Healthcare", ("hospital", "pharmacy", "doctor", "health", "medical")),
)


# ---------------------------------------------------------------------------
# Keyword fallback
# ---------------------------------------------------------------------------


def keyword_category(merchant: str) -> str:
    """Pick a category from hand-curated merchant keywords.

    Case-insensitive substring match, categories tested in
    :data:`FALLBACK_KEYWORDS` order.  Returns ``"Other"`` when nothing
    matches.
    """
    merchant_lower = merchant.lower()
    for category, keywords in FALLBACK_KEYWORDS:
        if any(keyword in merchant_lower for keyword in keywords):
            return category
    return FALLBACK_CATEGORY


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class Classifier:
    """Resolves a category for a transaction.

    Args:
        rule_store: Where learned rules are looked up (re-read on every call).
        adapter: Hosted classifier; use ``NullAdapter`` to disable it.
        rule_threshold: A rule is used only if its confidence is strictly
            greater than this.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        adapter: ClassifierAdapter,
        rule_threshold: float = DEFAULT_RULE_THRESHOLD,
    ) -> None:
        self.rule_store = rule_store
        self.adapter = adapter
        self.rule_threshold = rule_threshold

    def classify(
        self,
        user_id: str,
        merchant: str,
        amount_cents: int,
        description: str | None = None,
    ) -> Classification:
        """Categorize one transaction.

        Raises:
            ValidationError: If *merchant* is empty or *amount_cents* is
                not a positive integer.
            StorageError: If the rule store cannot be read.
        """
        merchant = validate_merchant(merchant)
        validate_amount(amount_cents)

        rule = self.rule_store.lookup(user_id, merchant)
        if rule is not None and rule.confidence > self.rule_threshold:
            return self._from_rule(rule)

        amount = Decimal(amount_cents) / 100
        try:
            suggestion = self.adapter.classify(merchant, amount, description, list(CATEGORIES))
        except Exception as exc:
            logger.warning("Hosted classifier raised for %r: %s", merchant, exc)
            suggestion = None

        if suggestion is None:
            return self._fallback(merchant)
        return self._from_suggestion(merchant, suggestion)

    def _from_rule(self, rule: CategoryRule) -> Classification:
        used = self.rule_store.record_hit(rule.id) or rule
        logger.debug("Rule hit for %r -> %s", rule.merchant_key, rule.category)
        return Classification(
            category=rule.category,
            confidence=rule.confidence,
            source=SOURCE_RULE,
            rule=used,
        )

    def _from_suggestion(self, merchant: str, suggestion: dict) -> Classification:
        category = suggestion.get("category")
        confidence = suggestion.get("confidence", 0.0)
        try:
            confidence = float(confidence)
        except (TypeError, ValueError):
            confidence = 0.0

        if category not in CATEGORIES:
            logger.warning(
                "Classifier returned invalid category %r for %r, defaulting to %s",
                category,
                merchant,
                FALLBACK_CATEGORY,
            )
            category = FALLBACK_CATEGORY
            confidence = INVALID_CATEGORY_CONFIDENCE

        if math.isnan(confidence):
            confidence = 0.0
        confidence = min(max(confidence, 0.0), 1.0)

        return Classification(
            category=category,
            confidence=confidence,
            source=SOURCE_AI,
            reasoning=str(suggestion.get("reasoning") or ""),
        )

    def _fallback(self, merchant: str) -> Classification:
        category = keyword_category(merchant)
        logger.warning(
            "Hosted classifier unavailable; keyword fallback chose %s for %r",
            category,
            merchant,
        )
        return Classification(
            category=category,
            confidence=FALLBACK_CONFIDENCE,
            source=SOURCE_AI,
            fallback=True,
            reasoning="Fallback categorization due to classifier error",
        )


# ---------------------------------------------------------------------------
# Rule learner
# ---------------------------------------------------------------------------


def reinforce(
    rule_store: RuleStore,
    user_id: str,
    merchant: str,
    new_category: str,
) -> CategoryRule:
    """Record a manual category correction for *merchant*.

    Creates the rule (confidence 0.7, usage 1) or, if one exists, points
    it at *new_category*, raises its confidence by 0.1 up to 0.95 and
    increments its usage.  Confidence never decays.  The write is a single
    atomic upsert, so concurrent corrections cannot create duplicate rules.

    Raises:
        ValidationError: If *merchant* is empty or *new_category* is not
            in the category set.
        StorageError: If the write fails.
    """
    merchant = validate_merchant(merchant)
    validate_category(new_category)
    rule = rule_store.upsert_correction(user_id, merchant, new_category)
    logger.info(
        "Learned %r -> %s (confidence %.2f)", rule.merchant, rule.category, rule.confidence
    )
    return rule
