"""Tests for budget_tracker.categorizer -- rules, hosted classifier, fallback, learning."""

from __future__ import annotations

from decimal import Decimal

import pytest

from budget_tracker.categorizer import (
    FALLBACK_CONFIDENCE,
    INVALID_CATEGORY_CONFIDENCE,
    Classifier,
    keyword_category,
    reinforce,
)
from budget_tracker.errors import ValidationError
from budget_tracker.models import CATEGORIES
from budget_tracker.rules import RuleStore

USER = "user-1"


def _teach(rule_store: RuleStore, merchant: str, category: str, times: int) -> None:
    for _ in range(times):
        reinforce(rule_store, USER, merchant, category)


# ---------------------------------------------------------------------------
# Keyword fallback
# ---------------------------------------------------------------------------


class TestKeywordCategory:
    @pytest.mark.parametrize(
        "merchant, expected",
        [
            ("Whole Foods Market", "Food"),
            ("Joe's PIZZA", "Food"),
            ("UBER *TRIP", "Transport"),
            ("Shell Gas #42", "Transport"),
            ("Amazon Marketplace", "Shopping"),
            ("Netflix.com", "Entertainment"),
            ("City Water Dept", "Bills"),
            ("CVS Pharmacy", "Healthcare"),
            ("Acme Widgets", "Other"),
        ],
    )
    def test_matches(self, merchant: str, expected: str):
        assert keyword_category(merchant) == expected

    def test_first_category_in_order_wins(self):
        # "store" (Shopping) and "pharmacy" (Healthcare) both match.
        assert keyword_category("Drug Store Pharmacy") == "Shopping"
        # "cafe" (Food) beats "gas" (Transport).
        assert keyword_category("Gas Station Cafe") == "Food"


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class TestRuleResolution:
    def test_confident_rule_used_without_hosted_call(
        self, classifier: Classifier, rule_store: RuleStore, adapter
    ):
        _teach(rule_store, "Blue Bottle", "Entertainment", 3)
        before = rule_store.lookup(USER, "Blue Bottle")

        result = classifier.classify(USER, "blue bottle", 450)

        assert result.category == "Entertainment"
        assert result.source == "rule"
        assert result.confidence == pytest.approx(before.confidence)
        assert result.fallback is False
        assert adapter.calls == []
        assert result.rule.usage_count == before.usage_count + 1
        assert rule_store.lookup(USER, "Blue Bottle").usage_count == before.usage_count + 1

    def test_rule_at_threshold_is_not_used(
        self, classifier: Classifier, rule_store: RuleStore, adapter
    ):
        # Two corrections leave the rule at 0.8, which is not above 0.8.
        _teach(rule_store, "Blue Bottle", "Entertainment", 2)

        result = classifier.classify(USER, "Blue Bottle", 450)

        assert result.source == "ai"
        assert result.category == "Food"
        assert len(adapter.calls) == 1
        assert rule_store.lookup(USER, "Blue Bottle").usage_count == 2

    def test_threshold_is_configurable(self, rule_store: RuleStore, adapter):
        _teach(rule_store, "Blue Bottle", "Entertainment", 1)
        classifier = Classifier(rule_store, adapter, rule_threshold=0.5)

        result = classifier.classify(USER, "Blue Bottle", 450)

        assert result.source == "rule"
        assert result.category == "Entertainment"

    def test_rules_of_other_users_ignored(
        self, classifier: Classifier, rule_store: RuleStore, adapter
    ):
        for _ in range(3):
            reinforce(rule_store, "someone-else", "Blue Bottle", "Entertainment")

        result = classifier.classify(USER, "Blue Bottle", 450)

        assert result.source == "ai"
        assert len(adapter.calls) == 1


class TestHostedClassifier:
    def test_valid_suggestion(self, classifier: Classifier, adapter):
        result = classifier.classify(USER, "Corner Cafe", 1250, "lunch")

        assert result.category == "Food"
        assert result.confidence == pytest.approx(0.9)
        assert result.source == "ai"
        assert result.fallback is False
        assert result.reasoning == "cafe"
        merchant, amount, description, categories = adapter.calls[0]
        assert merchant == "Corner Cafe"
        assert amount == Decimal("12.50")
        assert description == "lunch"
        assert categories == list(CATEGORIES)

    def test_merchant_trimmed_before_call(self, classifier: Classifier, adapter):
        classifier.classify(USER, "  Corner Cafe  ", 1250)
        assert adapter.calls[0][0] == "Corner Cafe"

    def test_invalid_category_becomes_other(self, rule_store: RuleStore, make_adapter):
        adapter = make_adapter({"category": "Groceries", "confidence": 0.99})
        result = Classifier(rule_store, adapter).classify(USER, "Trader Joe's", 5000)

        assert result.category == "Other"
        assert result.confidence == pytest.approx(INVALID_CATEGORY_CONFIDENCE)
        assert result.source == "ai"
        assert result.fallback is False

    @pytest.mark.parametrize(
        "raw, expected",
        [(1.7, 1.0), (-0.2, 0.0), (float("nan"), 0.0), ("0.6", 0.6), ("high", 0.0)],
    )
    def test_confidence_clamped(self, rule_store: RuleStore, make_adapter, raw, expected):
        adapter = make_adapter({"category": "Bills", "confidence": raw})
        result = Classifier(rule_store, adapter).classify(USER, "PG&E", 9000)

        assert result.category == "Bills"
        assert result.confidence == pytest.approx(expected)
        assert 0.0 <= result.confidence <= 1.0


class TestFallback:
    def test_unavailable_uses_keywords(self, rule_store: RuleStore, make_adapter):
        result = Classifier(rule_store, make_adapter(None)).classify(USER, "UBER *TRIP", 2300)

        assert result.category == "Transport"
        assert result.confidence == pytest.approx(FALLBACK_CONFIDENCE)
        assert result.source == "ai"
        assert result.fallback is True
        assert "Fallback" in result.reasoning

    def test_raising_adapter_uses_keywords(self, rule_store: RuleStore, make_adapter):
        adapter = make_adapter(should_fail=True)
        result = Classifier(rule_store, adapter).classify(USER, "Acme Widgets", 2300)

        assert result.category == "Other"
        assert result.fallback is True
        assert len(adapter.calls) == 1

    def test_fallback_logs_warning(self, rule_store: RuleStore, make_adapter, caplog):
        with caplog.at_level("WARNING", logger="budget_tracker.categorizer"):
            Classifier(rule_store, make_adapter(None)).classify(USER, "Netflix", 1599)
        assert "keyword fallback" in caplog.text


class TestValidation:
    @pytest.mark.parametrize("merchant", ["", "   "])
    def test_empty_merchant(self, classifier: Classifier, adapter, merchant: str):
        with pytest.raises(ValidationError):
            classifier.classify(USER, merchant, 100)
        assert adapter.calls == []

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_amount(self, classifier: Classifier, adapter, amount: int):
        with pytest.raises(ValidationError):
            classifier.classify(USER, "Shell", amount)
        assert adapter.calls == []


# ---------------------------------------------------------------------------
# Rule learner
# ---------------------------------------------------------------------------


class TestReinforce:
    def test_creates_then_strengthens(self, rule_store: RuleStore):
        first = reinforce(rule_store, USER, "Shell", "Transport")
        second = reinforce(rule_store, USER, "Shell", "Transport")

        assert first.confidence == pytest.approx(0.7)
        assert second.confidence == pytest.approx(0.8)
        assert second.usage_count == 2

    def test_correction_changes_category(self, rule_store: RuleStore):
        reinforce(rule_store, USER, "Shell", "Transport")
        rule = reinforce(rule_store, USER, "Shell", "Food")

        assert rule.category == "Food"
        assert rule.confidence == pytest.approx(0.8)

    def test_invalid_category(self, rule_store: RuleStore):
        with pytest.raises(ValidationError):
            reinforce(rule_store, USER, "Shell", "Fuel")
        assert rule_store.lookup(USER, "Shell") is None

    def test_empty_merchant(self, rule_store: RuleStore):
        with pytest.raises(ValidationError):
            reinforce(rule_store, USER, "  ", "Food")

    def test_learned_rule_takes_over(self, classifier: Classifier, rule_store: RuleStore, adapter):
        _teach(rule_store, "Corner Cafe", "Entertainment", 3)

        result = classifier.classify(USER, "Corner Cafe", 800)

        assert result.category == "Entertainment"
        assert result.source == "rule"
        assert adapter.calls == []
