from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Protocol


class ConfirmationStatus(str, Enum):
    """Commitment levels reported by the ledger, weakest first."""

    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"


class LedgerClient(Protocol):
    """Interface the relay consumes from a ledger node.

    Every call may suspend on network I/O and may raise ``errors.LedgerError``
    for transient failures. ``None`` and ``False`` results are definite
    negative answers from the ledger; callers must never conflate them with a
    raised error or a timeout.
    """

    async def broadcast(self, tx_bytes: bytes) -> str:
        """Submit a fully-signed transaction; returns its network signature.

        Raises ``errors.AlreadyProcessedError`` when the ledger has already
        seen the transaction.
        """
        ...

    async def signature_status(
        self,
        signature: str,
        *,
        search_history: bool = False,
    ) -> Optional[ConfirmationStatus]: ...

    async def is_recency_marker_valid(self, marker: str) -> bool: ...

    async def finalized_height(self) -> int: ...

    async def get_full_record(self, signature: str) -> Optional[Dict[str, Any]]: ...
