"""Dashboard output: JSON-ready dicts and the printed text summary."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, datetime

from budget_tracker.models import (
    Classification,
    DashboardInsights,
    Transaction,
    format_cents,
)


def dashboard_to_dict(dashboard: DashboardInsights) -> dict:
    """Return the dashboard payload as plain JSON-serializable data.

    Keys: ``period``, ``current_month`` (totals and ``categories``),
    ``previous_month`` (totals only), ``comparison``, ``anomalies`` and
    ``insights``.  Amounts are integer cents.
    """
    data = asdict(dashboard)
    data["previous_month"].pop("categories", None)
    return data


def transaction_to_dict(txn: Transaction) -> dict:
    data = asdict(txn)
    for key, value in data.items():
        if isinstance(value, (date, datetime)):
            data[key] = value.isoformat()
    return data


def classification_to_dict(result: Classification) -> dict:
    data = {
        "category": result.category,
        "confidence": result.confidence,
        "source": result.source,
        "fallback": result.fallback,
    }
    if result.reasoning:
        data["reasoning"] = result.reasoning
    if result.rule is not None:
        data["rule_used"] = {
            "merchant": result.rule.merchant,
            "category": result.rule.category,
            "confidence": result.rule.confidence,
            "usage_count": result.rule.usage_count,
        }
    return data


def _signed_percent(value: float) -> str:
    return f"{value:+.1f}%"


def print_dashboard(dashboard: DashboardInsights) -> None:
    """Print a human-readable dashboard summary to stdout."""
    current = dashboard.current_month
    previous = dashboard.previous_month
    comparison = dashboard.comparison

    print()
    print(f"== Dashboard: {dashboard.period} ==")
    print(
        f"Spent:        {format_cents(current.total_spent)} "
        f"({current.transaction_count} transactions)"
    )
    print(
        f"Last month:   {format_cents(previous.total_spent)} "
        f"({previous.transaction_count} transactions)"
    )
    print(
        f"Change:       {_signed_percent(comparison.spending_change_percent)} spend, "
        f"{_signed_percent(comparison.transaction_change_percent)} transactions"
    )

    if current.categories:
        print()
        print("Spending by category:")
        for cat in current.categories:
            print(
                f"  {cat.category + ':':<15} {format_cents(cat.amount_cents):>12}"
                f"  {cat.percentage:5.1f}%  ({cat.count} txns)"
            )

    if dashboard.anomalies:
        print()
        print(f"Anomalies: {len(dashboard.anomalies)}")
        for anomaly in dashboard.anomalies:
            print(f"  [{anomaly.severity}] {anomaly.description}")

    if dashboard.insights:
        print()
        print("Insights:")
        for insight in dashboard.insights:
            marker = "!" if insight.action_required else "-"
            print(f"  {marker} {insight.title}: {insight.description}")

    print()
