"""Request-level flows over the stores, the classifier and the analytics.

``BudgetService`` is what the CLI (or any other front end) talks to.  It
validates input, wires the classifier into transaction creation, calls
the rule learner when a category is corrected, and assembles dashboards.
Every collaborator is passed in explicitly; :meth:`BudgetService.from_config`
is the one place that builds them from an :class:`AppConfig`.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from datetime import date
from pathlib import Path

from budget_tracker.categorizer import Classifier, reinforce
from budget_tracker.config import resolve_database_url
from budget_tracker.dashboard import build_dashboard
from budget_tracker.db import create_schema, make_engine, make_session_factory
from budget_tracker.errors import ValidationError
from budget_tracker.llm import AnthropicAdapter, ClassifierAdapter, NullAdapter, OpenAIAdapter
from budget_tracker.models import (
    AppConfig,
    CategoryRule,
    Classification,
    DashboardInsights,
    ImportResult,
    Transaction,
    TransactionPage,
    parse_amount,
    parse_date,
    validate_amount,
    validate_category,
    validate_merchant,
)
from budget_tracker.periods import Period
from budget_tracker.rules import RuleStore
from budget_tracker.transactions import DEFAULT_PAGE_SIZE, TransactionStore

logger = logging.getLogger(__name__)


def build_adapter(config: AppConfig, environ: Mapping[str, str] | None = None) -> ClassifierAdapter:
    """Build the hosted classifier adapter named by ``config.llm_provider``.

    The API key is read from *environ* (default: ``os.environ``) here, once,
    and handed to the adapter's constructor.
    """
    if config.llm_provider == "none":
        return NullAdapter()

    environ = os.environ if environ is None else environ
    api_key = environ.get(config.llm_api_key_env, "") if config.llm_api_key_env else ""
    if not api_key:
        logger.warning(
            "LLM API key not found in environment variable '%s'; "
            "classification will use the keyword fallback",
            config.llm_api_key_env,
        )

    adapter_cls = OpenAIAdapter if config.llm_provider == "openai" else AnthropicAdapter
    return adapter_cls(
        model=config.llm_model,
        api_key=api_key,
        timeout=config.llm_timeout,
        base_url=config.llm_base_url,
    )


class BudgetService:
    """Transaction, categorization and dashboard operations for one store.

    Args:
        transactions: Transaction store.
        rules: Rule store (shared with *classifier*).
        classifier: Classifier used on create and for previews.
        config: Supplies the insight thresholds.  Defaults to
            :class:`AppConfig` defaults.
    """

    def __init__(
        self,
        transactions: TransactionStore,
        rules: RuleStore,
        classifier: Classifier,
        config: AppConfig | None = None,
    ) -> None:
        self.transactions = transactions
        self.rules = rules
        self.classifier = classifier
        self.config = config or AppConfig()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        root: Path,
        *,
        no_llm: bool = False,
        environ: Mapping[str, str] | None = None,
    ) -> BudgetService:
        """Open the configured store (creating tables if needed) and wire everything."""
        engine = make_engine(resolve_database_url(config, root), timeout=config.storage_timeout)
        create_schema(engine)
        session_factory = make_session_factory(engine)

        rules = RuleStore(session_factory)
        adapter = NullAdapter() if no_llm else build_adapter(config, environ)
        classifier = Classifier(rules, adapter, rule_threshold=config.rule_threshold)
        return cls(TransactionStore(session_factory), rules, classifier, config)

    # -- Categorization -------------------------------------------------------

    def categorize(
        self,
        user_id: str,
        merchant: str,
        amount_cents: int,
        description: str | None = None,
    ) -> Classification:
        """Classify without storing anything (a rule hit still counts as usage)."""
        return self.classifier.classify(user_id, merchant, amount_cents, description)

    # -- Transactions ---------------------------------------------------------

    def create_transaction(
        self,
        user_id: str,
        merchant: str,
        amount_cents: int,
        txn_date: date,
        description: str | None = None,
    ) -> tuple[Transaction, Classification]:
        """Validate, classify and store a new transaction.

        Raises:
            ValidationError: On invalid merchant or amount.
            StorageError: If the rule lookup or the insert fails.
        """
        merchant = validate_merchant(merchant)
        validate_amount(amount_cents)
        description = description or None

        classification = self.classifier.classify(user_id, merchant, amount_cents, description)
        txn = self.transactions.add(
            user_id=user_id,
            merchant=merchant,
            amount_cents=amount_cents,
            category=classification.category,
            txn_date=txn_date,
            description=description,
            ai_confidence=classification.confidence,
        )
        logger.info(
            "Created %s: %s -> %s (%s, %.2f)",
            txn.id,
            merchant,
            classification.category,
            classification.source,
            classification.confidence,
        )
        return txn, classification

    def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        *,
        merchant: str | None = None,
        amount_cents: int | None = None,
        category: str | None = None,
        txn_date: date | None = None,
        description: str | None = None,
    ) -> Transaction:
        """Apply a partial update; arguments left as None are unchanged.

        When *category* differs from the stored category, the correction is
        learned for the transaction's stored merchant before the update is
        written.

        Raises:
            ValidationError: On invalid values.
            NotFoundError: If the transaction is not *user_id*'s.
            StorageError: If a read or write fails.
        """
        changes: dict[str, object] = {}
        if merchant is not None:
            changes["merchant"] = validate_merchant(merchant)
        if amount_cents is not None:
            changes["amount_cents"] = validate_amount(amount_cents)
        if category is not None:
            changes["category"] = validate_category(category)
        if txn_date is not None:
            changes["date"] = txn_date
        if description is not None:
            changes["description"] = description or None

        existing = self.transactions.get(user_id, transaction_id)
        if not changes:
            return existing

        if category is not None and category != existing.category:
            reinforce(self.rules, user_id, existing.merchant, category)

        return self.transactions.update(user_id, transaction_id, **changes)

    def delete_transaction(self, user_id: str, transaction_id: str) -> None:
        """Raises :class:`NotFoundError` if there was nothing to delete."""
        self.transactions.delete(user_id, transaction_id)
        logger.info("Deleted %s", transaction_id)

    def list_transactions(
        self,
        user_id: str,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> TransactionPage:
        return self.transactions.list_page(user_id, page=page, limit=limit)

    def import_transactions(
        self,
        user_id: str,
        rows: Iterable[Mapping[str, object]],
    ) -> ImportResult:
        """Create one transaction per row, collecting per-row validation errors.

        Each row needs ``merchant``, ``amount`` (integer cents, or currency
        text such as ``"$12.50"``) and ``date`` (``date`` or ISO string);
        ``description`` is optional.  Invalid rows are reported and skipped;
        a storage failure aborts the import.
        """
        result = ImportResult()
        for row_number, row in enumerate(rows, start=1):
            try:
                amount = row.get("amount")
                if isinstance(amount, str):
                    amount = parse_amount(amount)
                raw_date = row.get("date")
                txn_date = raw_date if isinstance(raw_date, date) else parse_date(str(raw_date or ""))
                txn, _ = self.create_transaction(
                    user_id,
                    str(row.get("merchant") or ""),
                    amount,  # type: ignore[arg-type]
                    txn_date,
                    description=str(row.get("description") or "") or None,
                )
            except ValidationError as exc:
                result.error_count += 1
                result.errors.append((row_number, str(exc)))
                continue
            result.success_count += 1
            result.transactions.append(txn)

        logger.info(
            "Imported %d transaction(s), %d error(s)", result.success_count, result.error_count
        )
        return result

    # -- Rules ----------------------------------------------------------------

    def list_rules(self, user_id: str) -> list[CategoryRule]:
        return self.rules.list_rules(user_id)

    def forget_rule(self, user_id: str, merchant: str) -> bool:
        return self.rules.delete_rule(user_id, merchant)

    # -- Dashboard ------------------------------------------------------------

    def dashboard(self, user_id: str, period: Period) -> DashboardInsights:
        return build_dashboard(
            self.transactions,
            user_id,
            period,
            baseline_months=self.config.baseline_months,
            new_merchant_threshold=self.config.new_merchant_threshold_cents,
            monthly_baseline=self.config.monthly_baseline_cents,
            budget_alert_ratio=self.config.budget_alert_ratio,
        )
