"""Core data models for Budget Tracker.

This module defines the dataclasses, the closed category set, and the small
validation and money helpers used throughout the package.  Apart from the
exception taxonomy in ``errors`` it has no internal imports -- everything
depends on it, but it depends on nothing else within the package.

Monetary values are always integers in minor currency units (cents).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from budget_tracker.errors import ValidationError

CATEGORIES: tuple[str, ...] = (
    "Food",
    "Transport",
    "Shopping",
    "Entertainment",
    "Bills",
    "Healthcare",
    "Other",
)

FALLBACK_CATEGORY = "Other"

SOURCE_RULE = "rule"
SOURCE_AI = "ai"

MAX_MERCHANT_LENGTH = 255


# ---------------------------------------------------------------------------
# Validation and money helpers
# ---------------------------------------------------------------------------


def normalize_merchant(merchant: str) -> str:
    """Return the comparison key for a merchant string.

    Leading/trailing whitespace is stripped, internal runs of whitespace
    collapse to a single space, and the result is case-folded.  Rule
    lookups and the historical-merchant set used for anomaly detection
    both compare on this key, so ``"Blue Bottle "`` and ``"BLUE  BOTTLE"``
    are the same merchant.
    """
    return " ".join(merchant.split()).lower()


def validate_merchant(merchant: str) -> str:
    """Return *merchant* stripped, or raise if it is empty or too long."""
    if not isinstance(merchant, str) or not merchant.strip():
        raise ValidationError("Merchant must be a non-empty string")
    merchant = merchant.strip()
    if len(merchant) > MAX_MERCHANT_LENGTH:
        raise ValidationError(
            f"Merchant must be at most {MAX_MERCHANT_LENGTH} characters"
        )
    return merchant


def validate_amount(amount_cents: int) -> int:
    """Return *amount_cents* if it is a positive integer, else raise."""
    # bool is an int subclass
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError(f"Amount must be an integer number of cents: {amount_cents!r}")
    if amount_cents <= 0:
        raise ValidationError(f"Amount must be positive: {amount_cents}")
    return amount_cents


def validate_category(category: str) -> str:
    """Return *category* if it belongs to :data:`CATEGORIES`, else raise."""
    if category not in CATEGORIES:
        raise ValidationError(
            f"Unknown category {category!r}. Expected one of: {', '.join(CATEGORIES)}"
        )
    return category


def parse_amount(text: str) -> int:
    """Parse currency text such as ``"$1,234.56"`` into integer cents.

    Anything other than digits, ``.`` and ``-`` is dropped before parsing.
    Fractions of a cent are rounded half-up.  The result is validated to
    be positive.

    Raises:
        ValidationError: If the text is not a number or is not positive.
    """
    cleaned = "".join(ch for ch in str(text) if ch.isdigit() or ch in ".-")
    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {text!r}") from None
    cents = int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return validate_amount(cents)


def format_cents(amount_cents: int) -> str:
    """Format integer cents as a dollar string, e.g. ``123456 -> "$1,234.56"``."""
    sign = "-" if amount_cents < 0 else ""
    dollars, cents = divmod(abs(amount_cents), 100)
    return f"{sign}${dollars:,}.{cents:02d}"


def parse_date(text: str) -> date:
    """Parse an ISO ``YYYY-MM-DD`` date (a full ISO datetime is also accepted)."""
    try:
        if "T" in text:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        return date.fromisoformat(text)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date: {text!r}. Expected YYYY-MM-DD.") from None


# ---------------------------------------------------------------------------
# Stored entities
# ---------------------------------------------------------------------------


@dataclass
class Transaction:
    """A single user transaction.

    Attributes:
        id: Opaque unique identifier (uuid string).
        user_id: Owning user.
        merchant: Merchant/payee as entered by the user.
        amount_cents: Positive amount in cents.
        category: One of :data:`CATEGORIES`.
        date: Date the transaction occurred.
        description: Optional free text.
        ai_confidence: Classifier confidence recorded at creation, or None
            for transactions categorized by hand.
        created_at: Creation timestamp (UTC).
        updated_at: Last update timestamp (UTC).
    """

    id: str
    user_id: str
    merchant: str
    amount_cents: int
    category: str
    date: date
    description: str | None = None
    ai_confidence: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class CategoryRule:
    """A learned per-user, per-merchant category override.

    There is at most one rule per ``(user_id, merchant_key)``.

    Attributes:
        id: Store-assigned identifier.
        user_id: Owning user.
        merchant_key: Normalized merchant (see :func:`normalize_merchant`).
        merchant: Merchant text as it was last corrected.
        category: Target category.
        confidence: 0.7 on creation, +0.1 per further correction, capped
            at 0.95.
        usage_count: Corrections plus classification hits.
        last_used: Timestamp of the last correction or hit.
    """

    id: int
    user_id: str
    merchant_key: str
    merchant: str
    category: str
    confidence: float
    usage_count: int
    last_used: datetime | None = None


# ---------------------------------------------------------------------------
# Categorization results
# ---------------------------------------------------------------------------


@dataclass
class Classification:
    """Outcome of classifying one transaction.

    Attributes:
        category: Always a member of :data:`CATEGORIES`.
        confidence: In ``[0, 1]``.
        source: ``"rule"`` or ``"ai"``.
        fallback: True when the hosted classifier was unavailable and the
            keyword matcher produced the result (source stays ``"ai"``).
        reasoning: Free-text explanation from the hosted classifier, if any.
        rule: The rule used, when ``source == "rule"``.
    """

    category: str
    confidence: float
    source: str
    fallback: bool = False
    reasoning: str = ""
    rule: CategoryRule | None = None


# ---------------------------------------------------------------------------
# Dashboard analytics (derived, never persisted)
# ---------------------------------------------------------------------------


@dataclass
class CategoryBreakdown:
    category: str
    amount_cents: int
    count: int
    percentage: float


@dataclass
class PeriodSummary:
    total_spent: int = 0
    transaction_count: int = 0
    categories: list[CategoryBreakdown] = field(default_factory=list)


@dataclass
class Comparison:
    spending_change_percent: float = 0.0
    transaction_change_percent: float = 0.0


@dataclass
class Anomaly:
    """A flagged transaction.

    Attributes:
        transaction_id: The flagged transaction.
        type: ``"unusual_amount"`` or ``"unusual_merchant"``.
        severity: ``"high"``, ``"medium"`` or ``"low"``.
        description: Human-readable explanation.
    """

    transaction_id: str
    type: str
    severity: str
    description: str


@dataclass
class Insight:
    type: str
    title: str
    description: str
    action_required: bool = False


@dataclass
class DashboardInsights:
    """Everything the dashboard shows for one period.

    Recomputed on every request; it has no lifecycle of its own.
    """

    period: str
    current_month: PeriodSummary
    previous_month: PeriodSummary
    comparison: Comparison
    anomalies: list[Anomaly] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Request-level results
# ---------------------------------------------------------------------------


@dataclass
class TransactionPage:
    transactions: list[Transaction]
    total: int
    page: int
    limit: int
    has_more: bool


@dataclass
class ImportResult:
    """Outcome of a bulk import.

    Attributes:
        success_count: Rows stored.
        error_count: Rows rejected.
        errors: ``(row_number, message)`` pairs, 1-based.
        transactions: The stored transactions, in input order.
    """

    success_count: int = 0
    error_count: int = 0
    errors: list[tuple[int, str]] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class AppConfig:
    """Top-level application configuration loaded from config.toml.

    Attributes:
        default_user: User id used by the CLI when ``--user`` is omitted.
        database_url: SQLAlchemy URL of the transaction/rule store.
            Relative SQLite paths are resolved against the project root.
        storage_timeout: Seconds to wait on the store before failing.
        llm_provider: ``"anthropic"``, ``"openai"`` or ``"none"``.
        llm_model: Model identifier sent to the provider.
        llm_api_key_env: Name of the environment variable holding the API
            key.  The key itself is read once, when the adapter is built.
        llm_base_url: Optional endpoint override; empty means the
            provider default.
        llm_timeout: Seconds before a classification call is abandoned
            and the keyword fallback is used.
        rule_threshold: A rule is used only when its confidence is
            strictly greater than this.
        monthly_baseline_cents: Reference monthly spend for budget alerts.
        budget_alert_ratio: Budget alert fires when spend exceeds
            ``monthly_baseline_cents * budget_alert_ratio``.
        baseline_months: Full months of history used for anomaly baselines.
        new_merchant_threshold_cents: First-time merchants are flagged
            only above this amount.
    """

    default_user: str = "local"
    database_url: str = "sqlite:///budget.db"
    storage_timeout: float = 5.0
    llm_provider: str = "anthropic"
    llm_model: str = "claude-sonnet-4-20250514"
    llm_api_key_env: str = "ANTHROPIC_API_KEY"
    llm_base_url: str = ""
    llm_timeout: float = 10.0
    rule_threshold: float = 0.8
    monthly_baseline_cents: int = 250000
    budget_alert_ratio: float = 1.5
    baseline_months: int = 3
    new_merchant_threshold_cents: int = 5000
