"""Personal finance tracking: transaction categorization and spending insights."""

__version__ = "0.1.0"
