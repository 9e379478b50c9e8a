"""Payment orchestration: routing, provider fallback, double-entry ledger and reconciliation."""

__version__ = "0.1.0"
