"""Ledger client interface and the in-process simulated ledger."""

from .client import ConfirmationStatus, LedgerClient
from .local import LocalLedger

__all__ = [
    "ConfirmationStatus",
    "LedgerClient",
    "LocalLedger",
]
