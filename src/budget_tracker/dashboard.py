"""Dashboard assembly.

One dashboard request needs three independent reads from the transaction
store: the current month, the previous month, and the trailing baseline
window for anomaly detection.  They are issued concurrently on a small
thread pool and joined before any analytics run.  A failed read fails the
whole request with the store's :class:`StorageError`.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from budget_tracker.insights import (
    DEFAULT_BASELINE_MONTHS,
    DEFAULT_BUDGET_ALERT_RATIO,
    DEFAULT_MONTHLY_BASELINE,
    DEFAULT_NEW_MERCHANT_THRESHOLD,
    aggregate,
    compare,
    detect_anomalies,
    generate_insights,
)
from budget_tracker.models import DashboardInsights
from budget_tracker.periods import Period, shift, trailing_window
from budget_tracker.transactions import TransactionStore

logger = logging.getLogger(__name__)


def build_dashboard(
    store: TransactionStore,
    user_id: str,
    period: Period,
    *,
    baseline_months: int = DEFAULT_BASELINE_MONTHS,
    new_merchant_threshold: int = DEFAULT_NEW_MERCHANT_THRESHOLD,
    monthly_baseline: int = DEFAULT_MONTHLY_BASELINE,
    budget_alert_ratio: float = DEFAULT_BUDGET_ALERT_RATIO,
) -> DashboardInsights:
    """Compute the dashboard for *user_id* and the calendar month *period*.

    Args:
        store: Transaction store to read from.
        user_id: Whose transactions to analyse.
        period: The current month.
        baseline_months: Full months of history for anomaly baselines.
        new_merchant_threshold: Cents above which a first-time merchant
            is flagged.
        monthly_baseline: Reference monthly spend for the budget alert.
        budget_alert_ratio: Multiple of *monthly_baseline* that triggers it.

    Returns:
        A freshly computed :class:`DashboardInsights`.

    Raises:
        StorageError: If any of the reads fails.
    """
    previous = shift(period, -1)
    window = trailing_window(period, baseline_months)

    with ThreadPoolExecutor(max_workers=3, thread_name_prefix="dashboard") as pool:
        current_future = pool.submit(store.list_between, user_id, period.start, period.end)
        previous_future = pool.submit(store.list_between, user_id, previous.start, previous.end)
        history_future = pool.submit(store.list_between, user_id, window.start, window.end)
        current_txns = current_future.result()
        previous_txns = previous_future.result()
        history_txns = history_future.result()

    current_summary = aggregate(current_txns)
    previous_summary = aggregate(previous_txns)
    comparison = compare(
        current_summary.total_spent,
        previous_summary.total_spent,
        current_summary.transaction_count,
        previous_summary.transaction_count,
    )
    anomalies = detect_anomalies(
        store,
        user_id,
        period,
        current_txns,
        baseline_months,
        new_merchant_threshold,
        historical=history_txns,
    )
    insights = generate_insights(
        current_summary.total_spent,
        previous_summary.total_spent,
        current_summary.categories,
        comparison.spending_change_percent,
        comparison.transaction_change_percent,
        monthly_baseline=monthly_baseline,
        budget_alert_ratio=budget_alert_ratio,
    )

    logger.info(
        "Dashboard %s for %s: %d txns, %d anomalies, %d insights",
        period.label,
        user_id,
        current_summary.transaction_count,
        len(anomalies),
        len(insights),
    )
    return DashboardInsights(
        period=period.label,
        current_month=current_summary,
        previous_month=previous_summary,
        comparison=comparison,
        anomalies=anomalies,
        insights=insights,
    )
