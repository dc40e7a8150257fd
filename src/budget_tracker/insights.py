"""Spending analytics: aggregation, comparison, anomalies and insights.

Everything here except :func:`detect_anomalies` is a pure function of its
arguments.  Amounts stay in integer cents; the only floats are
percentages and confidence-like ratios.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable

from budget_tracker.models import (
    Anomaly,
    CategoryBreakdown,
    Comparison,
    Insight,
    PeriodSummary,
    Transaction,
    format_cents,
    normalize_merchant,
)
from budget_tracker.periods import Period, trailing_window
from budget_tracker.transactions import TransactionStore

logger = logging.getLogger(__name__)

UNUSUAL_AMOUNT = "unusual_amount"
UNUSUAL_MERCHANT = "unusual_merchant"

SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_LOW = "low"
SEVERITY_RANK = {SEVERITY_HIGH: 0, SEVERITY_MEDIUM: 1, SEVERITY_LOW: 2}

SPENDING_TREND = "spending_trend"
CATEGORY_INSIGHT = "category_insight"
BUDGET_ALERT = "budget_alert"

DEFAULT_BASELINE_MONTHS = 3
DEFAULT_NEW_MERCHANT_THRESHOLD = 5000
DEFAULT_MONTHLY_BASELINE = 250000
DEFAULT_BUDGET_ALERT_RATIO = 1.5

# Deviation multiples of the category's monthly average.
ANOMALY_MULTIPLE = 2
HIGH_SEVERITY_MULTIPLE = 5

SPENDING_TREND_THRESHOLD = 10.0
SPENDING_ACTION_THRESHOLD = 25.0
TOP_CATEGORY_THRESHOLD = 40.0
TOP_CATEGORY_ACTION_THRESHOLD = 60.0
FREQUENCY_THRESHOLD = 20.0


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


def aggregate(
    transactions: Iterable[Transaction],
    period_total: int | None = None,
) -> PeriodSummary:
    """Total, count and per-category breakdown of *transactions*.

    Args:
        transactions: The period's transactions.
        period_total: Denominator for category percentages.  Defaults to
            the sum of *transactions*.

    Returns:
        A :class:`PeriodSummary` whose categories are sorted by amount,
        largest first (ties keep first-seen order).  Percentages are 0
        when the total is 0.
    """
    amounts: dict[str, int] = defaultdict(int)
    counts: dict[str, int] = defaultdict(int)
    total_spent = 0
    transaction_count = 0
    for txn in transactions:
        total_spent += txn.amount_cents
        transaction_count += 1
        amounts[txn.category] += txn.amount_cents
        counts[txn.category] += 1

    denominator = total_spent if period_total is None else period_total
    categories = [
        CategoryBreakdown(
            category=category,
            amount_cents=amount,
            count=counts[category],
            percentage=(amount / denominator * 100) if denominator > 0 else 0.0,
        )
        for category, amount in amounts.items()
    ]
    categories.sort(key=lambda c: c.amount_cents, reverse=True)

    return PeriodSummary(
        total_spent=total_spent,
        transaction_count=transaction_count,
        categories=categories,
    )


# ---------------------------------------------------------------------------
# Comparator
# ---------------------------------------------------------------------------


def percent_change(current: int, previous: int) -> float:
    """``(current - previous) / previous * 100``, or 0 when *previous* is 0."""
    if previous == 0:
        return 0.0
    return (current - previous) / previous * 100


def compare(
    current_total: int,
    previous_total: int,
    current_count: int,
    previous_count: int,
) -> Comparison:
    """Period-over-period percent change of spend and transaction count."""
    return Comparison(
        spending_change_percent=percent_change(current_total, previous_total),
        transaction_change_percent=percent_change(current_count, previous_count),
    )


# ---------------------------------------------------------------------------
# Anomaly detector
# ---------------------------------------------------------------------------


def find_anomalies(
    current: Iterable[Transaction],
    historical: Iterable[Transaction],
    baseline_months: int = DEFAULT_BASELINE_MONTHS,
    new_merchant_threshold: int = DEFAULT_NEW_MERCHANT_THRESHOLD,
) -> list[Anomaly]:
    """Flag current-period transactions that break the user's pattern.

    *historical* should cover exactly *baseline_months* full months before
    the current period.  With no history at all nothing is flagged.

    Two independent checks run per transaction, so one transaction can
    yield two anomalies:

    - ``unusual_amount``: ``|amount - avg| > 2 * avg`` where ``avg`` is
      the category's historical spend divided by *baseline_months*;
      ``high`` above ``5 * avg``, otherwise ``medium``.  Categories with no
      history are skipped.
    - ``unusual_merchant`` (``low``): the merchant never appeared in the
      history and the amount is above *new_merchant_threshold*.

    The comparisons are done on ``amount * baseline_months`` against the
    category total, which keeps them in exact integer arithmetic.

    Returns:
        Anomalies in detection order: all amount anomalies, then all
        merchant anomalies.  Use :func:`rank_anomalies` for display order.
    """
    current = list(current)
    historical = list(historical)
    if not historical:
        return []

    category_totals: dict[str, int] = defaultdict(int)
    merchants: set[str] = set()
    for txn in historical:
        category_totals[txn.category] += txn.amount_cents
        merchants.add(normalize_merchant(txn.merchant))

    anomalies: list[Anomaly] = []
    for txn in current:
        total = category_totals.get(txn.category, 0)
        if total <= 0:
            continue
        scaled = txn.amount_cents * baseline_months
        deviation = abs(scaled - total)
        if deviation > ANOMALY_MULTIPLE * total:
            if deviation > HIGH_SEVERITY_MULTIPLE * total:
                severity = SEVERITY_HIGH
            else:
                severity = SEVERITY_MEDIUM
            direction = "high" if scaled > total else "low"
            anomalies.append(
                Anomaly(
                    transaction_id=txn.id,
                    type=UNUSUAL_AMOUNT,
                    severity=severity,
                    description=(
                        f"{format_cents(txn.amount_cents)} spent at {txn.merchant} "
                        f"is unusually {direction} for {txn.category}"
                    ),
                )
            )

    for txn in current:
        if (
            normalize_merchant(txn.merchant) not in merchants
            and txn.amount_cents > new_merchant_threshold
        ):
            anomalies.append(
                Anomaly(
                    transaction_id=txn.id,
                    type=UNUSUAL_MERCHANT,
                    severity=SEVERITY_LOW,
                    description=f"First time spending at {txn.merchant}",
                )
            )

    return anomalies


def rank_anomalies(anomalies: Iterable[Anomaly]) -> list[Anomaly]:
    """Order anomalies high, medium, low; stable within a severity."""
    return sorted(anomalies, key=lambda a: SEVERITY_RANK.get(a.severity, len(SEVERITY_RANK)))


def detect_anomalies(
    store: TransactionStore,
    user_id: str,
    period: Period,
    current: Iterable[Transaction],
    baseline_months: int = DEFAULT_BASELINE_MONTHS,
    new_merchant_threshold: int = DEFAULT_NEW_MERCHANT_THRESHOLD,
    historical: Iterable[Transaction] | None = None,
) -> list[Anomaly]:
    """Check *current* against the trailing history for *period*, ranked.

    The history is the *baseline_months* full calendar months before
    *period*; the current period is never part of it.  It is read from
    *store* unless *historical* is given, which lets
    :func:`budget_tracker.dashboard.build_dashboard` fetch the window
    alongside its other reads.

    Raises:
        StorageError: If the history cannot be read.
    """
    if historical is None:
        window = trailing_window(period, baseline_months)
        historical = store.list_between(user_id, window.start, window.end)
    historical = list(historical)
    if not historical:
        logger.debug("No history for %s before %s; skipping anomalies", user_id, period.label)
    return rank_anomalies(
        find_anomalies(current, historical, baseline_months, new_merchant_threshold)
    )


# ---------------------------------------------------------------------------
# Insight generator
# ---------------------------------------------------------------------------


def generate_insights(
    current_total: int,
    previous_total: int,
    categories: list[CategoryBreakdown],
    spending_change_percent: float,
    transaction_change_percent: float,
    monthly_baseline: int = DEFAULT_MONTHLY_BASELINE,
    budget_alert_ratio: float = DEFAULT_BUDGET_ALERT_RATIO,
) -> list[Insight]:
    """Turn the period's numbers into readable observations.

    Each rule is evaluated independently:

    - spend changed by more than 10% -> ``spending_trend`` (action above +25%);
    - top category above 40% of spend -> ``category_insight`` (action above 60%);
    - spend above ``monthly_baseline * budget_alert_ratio`` -> ``budget_alert``;
    - transaction count changed by more than 20% -> frequency ``spending_trend``.

    *categories* must be sorted largest first, as :func:`aggregate` returns
    them.  *previous_total* is accepted for symmetry with the dashboard
    payload; the rules above only need the percentages.
    """
    insights: list[Insight] = []

    if abs(spending_change_percent) > SPENDING_TREND_THRESHOLD:
        up = spending_change_percent > 0
        insights.append(
            Insight(
                type=SPENDING_TREND,
                title=f"Spending {'increased' if up else 'decreased'} significantly",
                description=(
                    f"You've spent {abs(spending_change_percent):.1f}% "
                    f"{'more' if up else 'less'} this month compared to last month."
                ),
                action_required=spending_change_percent > SPENDING_ACTION_THRESHOLD,
            )
        )

    if categories:
        top = categories[0]
        if top.percentage > TOP_CATEGORY_THRESHOLD:
            insights.append(
                Insight(
                    type=CATEGORY_INSIGHT,
                    title=f"{top.category} dominates your spending",
                    description=(
                        f"{top.percentage:.1f}% of your spending this month was on "
                        f"{top.category}. Consider if this aligns with your priorities."
                    ),
                    action_required=top.percentage > TOP_CATEGORY_ACTION_THRESHOLD,
                )
            )

    if monthly_baseline > 0 and current_total > monthly_baseline * budget_alert_ratio:
        insights.append(
            Insight(
                type=BUDGET_ALERT,
                title="High spending detected",
                description=(
                    f"Your spending this month is {current_total / monthly_baseline * 100:.0f}% "
                    "of your typical monthly spending."
                ),
                action_required=True,
            )
        )

    if abs(transaction_change_percent) > FREQUENCY_THRESHOLD:
        up = transaction_change_percent > 0
        insights.append(
            Insight(
                type=SPENDING_TREND,
                title=f"Transaction frequency {'increased' if up else 'decreased'}",
                description=(
                    f"You made {abs(transaction_change_percent):.1f}% "
                    f"{'more' if up else 'fewer'} transactions this month."
                ),
                action_required=False,
            )
        )

    return insights
