"""Click CLI entry point for the ``budget`` command.

Handles argument parsing, config loading, and error display.  All business
logic is delegated to ``service``, ``config`` and ``export``.
"""

from __future__ import annotations

import csv
import json
import logging
import sys
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date
from pathlib import Path

import click

from budget_tracker import __version__
from budget_tracker.errors import (
    BudgetTrackerError,
    ConfigError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from budget_tracker.models import CATEGORIES, format_cents


def _configure_logging(verbose: bool, debug: bool) -> None:
    """Set up logging based on verbosity flags."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        force=True,
    )


def _common_options(func: Callable) -> Callable:
    """Attach ``--user``, ``--verbose`` and ``--debug`` to a command."""
    func = click.option(
        "--debug", is_flag=True, default=False, help="Developer-level diagnostics."
    )(func)
    func = click.option(
        "--verbose", is_flag=True, default=False, help="Detailed progress output."
    )(func)
    func = click.option(
        "--user", default=None, help="User id (default: general.default_user)."
    )(func)
    return func


@contextmanager
def _reporting_errors() -> Iterator[None]:
    """Turn package errors into a one-line message and exit status 1."""
    try:
        yield
    except FileNotFoundError as exc:
        click.echo(
            f"Error: {exc}. Run 'budget init' to create the project structure.",
            err=True,
        )
        sys.exit(1)
    except ValidationError as exc:
        click.echo(f"Error: invalid input: {exc}", err=True)
        sys.exit(1)
    except NotFoundError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    except StorageError as exc:
        click.echo(f"Error: storage failure: {exc}", err=True)
        sys.exit(1)
    except ConfigError as exc:
        click.echo(f"Error in configuration: {exc}", err=True)
        sys.exit(1)
    except BudgetTrackerError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


def _open(user: str | None, no_llm: bool = False):
    """Load ``config.toml`` from the working directory and build the service."""
    from budget_tracker.config import load_config
    from budget_tracker.service import BudgetService

    root = Path.cwd()
    config = load_config(root)
    service = BudgetService.from_config(config, root, no_llm=no_llm)
    return service, user or config.default_user


def _parse_cli_date(value: str | None) -> date:
    from budget_tracker.models import parse_date

    return date.today() if not value else parse_date(value)


@click.group()
@click.version_option(version=__version__, prog_name="budget-tracker")
def cli() -> None:
    """Personal finance tracking with learned categorization and spending insights."""


@cli.command()
@click.option(
    "--dir", "target_dir", default=".", type=click.Path(), help="Directory to initialize."
)
@click.option("--database-url", default=None, help="SQLAlchemy database URL.")
@click.option(
    "--provider",
    type=click.Choice(["anthropic", "openai", "none"]),
    default=None,
    help="Hosted classifier provider.",
)
def init(target_dir: str, database_url: str | None, provider: str | None) -> None:
    """Initialize a project directory with config.toml and an empty database."""
    from budget_tracker.config import initialize, load_config
    from budget_tracker.models import AppConfig
    from budget_tracker.service import BudgetService

    target = Path(target_dir).resolve()
    config = None
    if database_url or provider:
        config = AppConfig()
        if database_url:
            config.database_url = database_url
        if provider:
            config.llm_provider = provider
            if provider == "openai":
                config.llm_model = "gpt-4o-mini"
                config.llm_api_key_env = "OPENAI_API_KEY"

    with _reporting_errors():
        initialize(target, config)
        BudgetService.from_config(load_config(target), target, no_llm=True)

    click.echo(f"Initialized budget tracker project in {target}")


@cli.command()
@click.argument("merchant")
@click.argument("amount")
@click.option(
    "--date", "txn_date", default=None, help="Transaction date, YYYY-MM-DD (default: today)."
)
@click.option("--description", default=None, help="Optional description.")
@click.option("--no-llm", is_flag=True, default=False, help="Skip the hosted classifier.")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON.")
@_common_options
def add(
    merchant: str,
    amount: str,
    txn_date: str | None,
    description: str | None,
    no_llm: bool,
    as_json: bool,
    user: str | None,
    verbose: bool,
    debug: bool,
) -> None:
    """Record a transaction; AMOUNT is in dollars, e.g. 12.50."""
    _configure_logging(verbose, debug)
    from budget_tracker.export import classification_to_dict, transaction_to_dict
    from budget_tracker.models import parse_amount

    with _reporting_errors():
        amount_cents = parse_amount(amount)
        parsed_date = _parse_cli_date(txn_date)
        service, user_id = _open(user, no_llm)
        txn, result = service.create_transaction(
            user_id, merchant, amount_cents, parsed_date, description
        )

    if as_json:
        payload = transaction_to_dict(txn)
        payload["classification"] = classification_to_dict(result)
        click.echo(json.dumps(payload, indent=2))
        return

    source = "fallback" if result.fallback else result.source
    click.echo(
        f"{txn.id}  {txn.date.isoformat()}  {txn.merchant}  "
        f"{format_cents(txn.amount_cents)}  -> {txn.category} "
        f"({source}, {result.confidence:.2f})"
    )


@cli.command()
@click.argument("merchant")
@click.argument("amount")
@click.option("--description", default=None, help="Optional description.")
@click.option("--no-llm", is_flag=True, default=False, help="Skip the hosted classifier.")
@_common_options
def categorize(
    merchant: str,
    amount: str,
    description: str | None,
    no_llm: bool,
    user: str | None,
    verbose: bool,
    debug: bool,
) -> None:
    """Show which category a transaction would get, without saving it."""
    _configure_logging(verbose, debug)
    from budget_tracker.export import classification_to_dict
    from budget_tracker.models import parse_amount

    with _reporting_errors():
        amount_cents = parse_amount(amount)
        service, user_id = _open(user, no_llm)
        result = service.categorize(user_id, merchant, amount_cents, description)

    click.echo(json.dumps(classification_to_dict(result), indent=2))


@cli.command()
@click.argument("transaction_id")
@click.option("--merchant", default=None, help="New merchant.")
@click.option("--amount", default=None, help="New amount in dollars.")
@click.option("--category", type=click.Choice(CATEGORIES), default=None, help="New category.")
@click.option("--date", "txn_date", default=None, help="New date, YYYY-MM-DD.")
@click.option("--description", default=None, help="New description.")
@_common_options
def edit(
    transaction_id: str,
    merchant: str | None,
    amount: str | None,
    category: str | None,
    txn_date: str | None,
    description: str | None,
    user: str | None,
    verbose: bool,
    debug: bool,
) -> None:
    """Change a transaction.  A new category teaches a rule for its merchant."""
    _configure_logging(verbose, debug)
    from budget_tracker.models import parse_amount, parse_date

    with _reporting_errors():
        amount_cents = parse_amount(amount) if amount is not None else None
        parsed_date = parse_date(txn_date) if txn_date else None
        service, user_id = _open(user, no_llm=True)
        txn = service.update_transaction(
            user_id,
            transaction_id,
            merchant=merchant,
            amount_cents=amount_cents,
            category=category,
            txn_date=parsed_date,
            description=description,
        )

    click.echo(
        f"Updated {txn.id}: {txn.merchant}  {format_cents(txn.amount_cents)}  {txn.category}"
    )


@cli.command()
@click.argument("transaction_id")
@_common_options
def delete(transaction_id: str, user: str | None, verbose: bool, debug: bool) -> None:
    """Delete a transaction."""
    _configure_logging(verbose, debug)
    with _reporting_errors():
        service, user_id = _open(user, no_llm=True)
        service.delete_transaction(user_id, transaction_id)
    click.echo(f"Deleted {transaction_id}")


@cli.command(name="list")
@click.option("--page", default=1, type=int, show_default=True, help="Page number.")
@click.option("--limit", default=20, type=int, show_default=True, help="Rows per page (max 100).")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON.")
@_common_options
def list_cmd(
    page: int,
    limit: int,
    as_json: bool,
    user: str | None,
    verbose: bool,
    debug: bool,
) -> None:
    """List transactions, newest first."""
    _configure_logging(verbose, debug)
    from budget_tracker.export import transaction_to_dict

    with _reporting_errors():
        service, user_id = _open(user, no_llm=True)
        result = service.list_transactions(user_id, page=page, limit=limit)

    if as_json:
        click.echo(
            json.dumps(
                {
                    "transactions": [transaction_to_dict(t) for t in result.transactions],
                    "total": result.total,
                    "page": result.page,
                    "limit": result.limit,
                    "has_more": result.has_more,
                },
                indent=2,
            )
        )
        return

    for txn in result.transactions:
        click.echo(
            f"{txn.id}  {txn.date.isoformat()}  {txn.merchant:<30}  "
            f"{format_cents(txn.amount_cents):>12}  {txn.category}"
        )
    click.echo(f"Page {result.page} ({len(result.transactions)} of {result.total})")


@cli.command(name="import")
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--no-llm", is_flag=True, default=False, help="Skip the hosted classifier.")
@_common_options
def import_cmd(
    csv_file: str,
    no_llm: bool,
    user: str | None,
    verbose: bool,
    debug: bool,
) -> None:
    """Import a CSV with columns merchant, amount, date and optional description."""
    _configure_logging(verbose, debug)
    with _reporting_errors():
        with open(csv_file, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        service, user_id = _open(user, no_llm)
        result = service.import_transactions(user_id, rows)

    click.echo()
    click.echo("== Import Summary ==")
    click.echo(f"  Imported:  {result.success_count}")
    click.echo(f"  Rejected:  {result.error_count}")
    for row_number, message in result.errors:
        click.echo(f"  - row {row_number}: {message}")
    click.echo()


@cli.command()
@click.option("--forget", "forget_merchant", default=None, help="Delete the rule for a merchant.")
@_common_options
def rules(forget_merchant: str | None, user: str | None, verbose: bool, debug: bool) -> None:
    """Show learned merchant rules."""
    _configure_logging(verbose, debug)
    with _reporting_errors():
        service, user_id = _open(user, no_llm=True)
        if forget_merchant:
            if not service.forget_rule(user_id, forget_merchant):
                raise NotFoundError(f"No rule for merchant: {forget_merchant}")
            click.echo(f"Forgot rule for {forget_merchant}")
            return
        learned = service.list_rules(user_id)

    if not learned:
        click.echo("No learned rules.")
        return
    for rule in learned:
        click.echo(
            f'  "{rule.merchant}" -> {rule.category}  '
            f"(confidence {rule.confidence:.2f}, used {rule.usage_count}x)"
        )


@cli.command()
@click.option("--month", default=None, help="Target month in YYYY-MM format (default: this month).")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print JSON.")
@_common_options
def dashboard(
    month: str | None,
    as_json: bool,
    user: str | None,
    verbose: bool,
    debug: bool,
) -> None:
    """Show totals, comparisons, anomalies and insights for a month."""
    _configure_logging(verbose, debug)
    from budget_tracker.export import dashboard_to_dict, print_dashboard
    from budget_tracker.periods import month_period, period_containing

    with _reporting_errors():
        period = month_period(month) if month else period_containing(date.today())
        service, user_id = _open(user, no_llm=True)
        result = service.dashboard(user_id, period)

    if as_json:
        click.echo(json.dumps(dashboard_to_dict(result), indent=2))
    else:
        print_dashboard(result)
