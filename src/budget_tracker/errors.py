"""Exception taxonomy for Budget Tracker.

Upstream classification failures have no exception here: the classifier
recovers from them locally and never raises.
"""

from __future__ import annotations


class BudgetTrackerError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(BudgetTrackerError):
    """Input was malformed or out of range (amount, merchant, category, date)."""


class NotFoundError(BudgetTrackerError):
    """The requested transaction does not exist or belongs to another user."""


class StorageError(BudgetTrackerError):
    """A read or write against the transaction or rule store failed."""


class ConfigError(BudgetTrackerError):
    """The configuration file contains an invalid value."""
