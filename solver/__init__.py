"""Intents solver package."""

from .version import __version__

__all__ = [
    "alerts",
    "amounts",
    "assets",
    "auction",
    "config",
    "indexer",
    "main",
    "order_ledger",
    "payment_client",
    "processor",
    "retry",
    "settlement",
    "state_store",
    "withdrawal_poller",
]
