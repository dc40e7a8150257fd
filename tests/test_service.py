"""Tests for budget_tracker.service -- request flows and wiring from config."""

from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest

from budget_tracker.errors import NotFoundError, ValidationError
from budget_tracker.llm import AnthropicAdapter, NullAdapter, OpenAIAdapter
from budget_tracker.models import AppConfig
from budget_tracker.periods import month_period
from budget_tracker.service import BudgetService, build_adapter

USER = "user-1"
DAY = date(2026, 5, 10)


# ---------------------------------------------------------------------------
# Adapter selection
# ---------------------------------------------------------------------------


class TestBuildAdapter:
    def test_none_provider(self):
        assert isinstance(build_adapter(AppConfig(llm_provider="none"), {}), NullAdapter)

    def test_anthropic_reads_key_once(self):
        adapter = build_adapter(AppConfig(), {"ANTHROPIC_API_KEY": "sk-ant"})

        assert isinstance(adapter, AnthropicAdapter)
        assert adapter.api_key == "sk-ant"
        assert adapter.model == AppConfig().llm_model

    def test_openai(self):
        config = AppConfig(
            llm_provider="openai",
            llm_model="gpt-4o-mini",
            llm_api_key_env="OPENAI_API_KEY",
            llm_timeout=3.0,
        )
        adapter = build_adapter(config, {"OPENAI_API_KEY": "sk-oa"})

        assert isinstance(adapter, OpenAIAdapter)
        assert adapter.api_key == "sk-oa"
        assert adapter.timeout == 3.0

    def test_missing_key_warns(self, caplog):
        with caplog.at_level("WARNING", logger="budget_tracker.service"):
            adapter = build_adapter(AppConfig(), {})
        assert adapter.api_key == ""
        assert "ANTHROPIC_API_KEY" in caplog.text


class TestFromConfig:
    def test_creates_database_under_root(self, tmp_path: Path):
        config = AppConfig(database_url="sqlite:///data.db", llm_provider="none")

        service = BudgetService.from_config(config, tmp_path)
        txn, _ = service.create_transaction(USER, "Shell", 4000, DAY)

        assert (tmp_path / "data.db").exists()
        assert service.transactions.get(USER, txn.id).merchant == "Shell"

    def test_no_llm_forces_null_adapter(self, tmp_path: Path):
        service = BudgetService.from_config(AppConfig(), tmp_path, no_llm=True, environ={})
        assert isinstance(service.classifier.adapter, NullAdapter)

    def test_rule_threshold_from_config(self, tmp_path: Path):
        config = AppConfig(rule_threshold=0.6, llm_provider="none")
        service = BudgetService.from_config(config, tmp_path)
        assert service.classifier.rule_threshold == 0.6


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestCreateTransaction:
    def test_classified_and_stored(self, service: BudgetService):
        txn, result = service.create_transaction(USER, " Corner Cafe ", 1250, DAY, "lunch")

        assert txn.merchant == "Corner Cafe"
        assert txn.category == result.category == "Food"
        assert txn.ai_confidence == pytest.approx(result.confidence)
        assert txn.description == "lunch"
        assert service.transactions.get(USER, txn.id).category == "Food"

    def test_fallback_still_stores(self, service: BudgetService, adapter):
        adapter.should_fail = True

        txn, result = service.create_transaction(USER, "Uber", 2300, DAY)

        assert result.fallback is True
        assert txn.category == "Transport"
        assert txn.ai_confidence == pytest.approx(0.3)

    @pytest.mark.parametrize("merchant, amount", [("", 100), ("Shell", 0), ("Shell", -1)])
    def test_invalid_input_stores_nothing(self, service: BudgetService, merchant, amount):
        with pytest.raises(ValidationError):
            service.create_transaction(USER, merchant, amount, DAY)
        assert service.list_transactions(USER).total == 0


class TestUpdateTransaction:
    def test_category_change_teaches_rule(self, service: BudgetService):
        txn, _ = service.create_transaction(USER, "Corner Cafe", 1250, DAY)

        updated = service.update_transaction(USER, txn.id, category="Entertainment")

        assert updated.category == "Entertainment"
        rule = service.rules.lookup(USER, "corner cafe")
        assert rule.category == "Entertainment"
        assert rule.confidence == pytest.approx(0.7)
        assert rule.usage_count == 1

    def test_same_category_does_not_teach(self, service: BudgetService):
        txn, _ = service.create_transaction(USER, "Corner Cafe", 1250, DAY)

        service.update_transaction(USER, txn.id, category="Food")

        assert service.rules.lookup(USER, "Corner Cafe") is None

    def test_other_fields_do_not_teach(self, service: BudgetService):
        txn, _ = service.create_transaction(USER, "Corner Cafe", 1250, DAY)

        updated = service.update_transaction(
            USER, txn.id, amount_cents=999, description="refill", txn_date=date(2026, 5, 1)
        )

        assert updated.amount_cents == 999
        assert updated.description == "refill"
        assert updated.date == date(2026, 5, 1)
        assert service.list_rules(USER) == []

    def test_rule_learned_for_stored_merchant(self, service: BudgetService):
        txn, _ = service.create_transaction(USER, "Corner Cafe", 1250, DAY)

        service.update_transaction(USER, txn.id, merchant="Corner Bar", category="Entertainment")

        assert service.rules.lookup(USER, "Corner Cafe").category == "Entertainment"
        assert service.rules.lookup(USER, "Corner Bar") is None

    def test_repeated_corrections_take_over_classification(self, service: BudgetService, adapter):
        for _ in range(3):
            txn, _ = service.create_transaction(USER, "Corner Cafe", 1250, DAY)
            service.update_transaction(USER, txn.id, category="Entertainment")
        calls_before = len(adapter.calls)

        _, result = service.create_transaction(USER, "corner cafe", 1250, DAY)

        assert result.source == "rule"
        assert result.category == "Entertainment"
        assert len(adapter.calls) == calls_before

    def test_invalid_category(self, service: BudgetService):
        txn, _ = service.create_transaction(USER, "Corner Cafe", 1250, DAY)
        with pytest.raises(ValidationError):
            service.update_transaction(USER, txn.id, category="Coffee")
        assert service.list_rules(USER) == []

    def test_not_found(self, service: BudgetService):
        with pytest.raises(NotFoundError):
            service.update_transaction(USER, "missing", category="Food")

    def test_no_changes_returns_existing(self, service: BudgetService):
        txn, _ = service.create_transaction(USER, "Corner Cafe", 1250, DAY)
        assert service.update_transaction(USER, txn.id).id == txn.id


class TestDeleteAndList:
    def test_delete(self, service: BudgetService):
        txn, _ = service.create_transaction(USER, "Corner Cafe", 1250, DAY)

        service.delete_transaction(USER, txn.id)

        assert service.list_transactions(USER).total == 0
        with pytest.raises(NotFoundError):
            service.delete_transaction(USER, txn.id)

    def test_list(self, service: BudgetService):
        for day in (1, 2, 3):
            service.create_transaction(USER, f"Shop {day}", 100, date(2026, 5, day))

        page = service.list_transactions(USER, page=1, limit=2)

        assert [t.merchant for t in page.transactions] == ["Shop 3", "Shop 2"]
        assert page.has_more is True


class TestImportTransactions:
    def test_mixed_rows(self, service: BudgetService):
        rows = [
            {"merchant": "Corner Cafe", "amount": "$12.50", "date": "2026-05-01"},
            {"merchant": "", "amount": "3.00", "date": "2026-05-02"},
            {"merchant": "Shell", "amount": "abc", "date": "2026-05-02"},
            {"merchant": "Shell", "amount": 4000, "date": date(2026, 5, 3), "description": "fuel"},
            {"merchant": "Shell", "amount": "40", "date": "05/03/2026"},
        ]

        result = service.import_transactions(USER, rows)

        assert result.success_count == 2
        assert result.error_count == 3
        assert [row for row, _ in result.errors] == [2, 3, 5]
        assert [t.amount_cents for t in result.transactions] == [1250, 4000]
        assert result.transactions[1].description == "fuel"
        assert service.list_transactions(USER).total == 2

    def test_missing_amount(self, service: BudgetService):
        result = service.import_transactions(USER, [{"merchant": "Shell", "date": "2026-05-01"}])
        assert result.error_count == 1


# ---------------------------------------------------------------------------
# Rules and dashboard
# ---------------------------------------------------------------------------


class TestRulesAndDashboard:
    def test_forget_rule(self, service: BudgetService):
        txn, _ = service.create_transaction(USER, "Corner Cafe", 1250, DAY)
        service.update_transaction(USER, txn.id, category="Bills")

        assert [r.merchant for r in service.list_rules(USER)] == ["Corner Cafe"]
        assert service.forget_rule(USER, "corner cafe") is True
        assert service.list_rules(USER) == []
        assert service.forget_rule(USER, "corner cafe") is False

    def test_dashboard_uses_config(self, transaction_store, rule_store, classifier):
        service = BudgetService(
            transaction_store, rule_store, classifier, AppConfig(monthly_baseline_cents=1000)
        )
        service.create_transaction(USER, "Corner Cafe", 2000, DAY)

        result = service.dashboard(USER, month_period("2026-05"))

        assert result.period == "2026-05"
        assert result.current_month.total_spent == 2000
        assert "budget_alert" in [i.type for i in result.insights]
