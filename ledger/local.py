"""
In-process simulated ledger node.

Heights advance on a timer (``run``) or on demand (``advance``). Broadcast
transactions are included at the next height and their commitment grows with
depth: processed at inclusion, confirmed one height later, finalized once the
finalized height reaches the inclusion height.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import trio
from blake3 import blake3

from errors import AlreadyProcessedError, LedgerError, MalformedTransaction
from transaction import Transaction

from .client import ConfirmationStatus

logger = logging.getLogger(__name__)


@dataclass
class _Inclusion:
    signature: str
    height: int
    encoded: bytes


class LocalLedger:
    def __init__(
        self,
        *,
        marker_validity: int = 150,
        finalization_depth: int = 32,
        status_cache_depth: int = 300,
    ) -> None:
        self._lock = threading.Lock()
        self._marker_validity = marker_validity
        self._finalization_depth = finalization_depth
        self._status_cache_depth = status_cache_depth
        self._height = 0
        self._markers: Dict[str, int] = {}
        self._latest_marker = ""
        self._pending: List[Tuple[str, bytes]] = []
        self._included: Dict[str, _Inclusion] = {}
        self._drop_broadcasts = False
        self._issue_marker()

    # --- simulation controls ---

    @property
    def height(self) -> int:
        with self._lock:
            return self._height

    def _issue_marker(self) -> None:
        marker = blake3(f"marker:{self._height}".encode("ascii")).hexdigest()
        self._markers[marker] = self._height
        self._latest_marker = marker

    def latest_recency_marker(self) -> Tuple[str, int]:
        """Return the newest marker and the last height at which it is honored."""
        with self._lock:
            return self._latest_marker, self._height + self._marker_validity

    def drop_broadcasts(self, enabled: bool = True) -> None:
        """Accept broadcasts without ever including them (simulates lost transactions)."""
        with self._lock:
            self._drop_broadcasts = enabled

    def advance(self, count: int = 1) -> int:
        with self._lock:
            for _ in range(count):
                self._height += 1
                for signature, encoded in self._pending:
                    self._included[signature] = _Inclusion(signature, self._height, encoded)
                    logger.debug("Included %s... at height %s", signature[:16], self._height)
                self._pending = []
                self._issue_marker()
            return self._height

    async def run(self, slot_time: float, stop_event: Optional[threading.Event] = None) -> None:
        """Produce one height per ``slot_time`` until cancelled or ``stop_event`` is set."""
        logger.info("Local ledger producing heights every %ss", slot_time)
        while stop_event is None or not stop_event.is_set():
            await trio.sleep(slot_time)
            self.advance()

    def _marker_valid(self, marker: Optional[str]) -> bool:
        issued = self._markers.get(marker) if marker else None
        return issued is not None and self._height <= issued + self._marker_validity

    def _status_of(self, inclusion: _Inclusion) -> ConfirmationStatus:
        if inclusion.height <= self._finalized_height():
            return ConfirmationStatus.FINALIZED
        if self._height > inclusion.height:
            return ConfirmationStatus.CONFIRMED
        return ConfirmationStatus.PROCESSED

    def _finalized_height(self) -> int:
        return max(0, self._height - self._finalization_depth)

    # --- LedgerClient ---

    async def broadcast(self, tx_bytes: bytes) -> str:
        try:
            tx = Transaction.from_bytes(tx_bytes)
        except MalformedTransaction as exc:
            raise LedgerError(f"Transaction rejected by ledger: {exc}") from exc
        if not tx.is_fully_signed():
            raise LedgerError("Transaction rejected by ledger: missing signatures.")
        signature = tx.network_signature
        with self._lock:
            if signature in self._included or any(sig == signature for sig, _ in self._pending):
                raise AlreadyProcessedError("This transaction has already been processed.")
            if not self._marker_valid(tx.recent_marker):
                raise LedgerError("Recency marker not found or expired.")
            if self._drop_broadcasts:
                logger.debug("Dropping broadcast of %s...", signature[:16])
                return signature
            self._pending.append((signature, bytes(tx_bytes)))
        return signature

    async def signature_status(
        self,
        signature: str,
        *,
        search_history: bool = False,
    ) -> Optional[ConfirmationStatus]:
        with self._lock:
            inclusion = self._included.get(signature)
            if inclusion is None:
                return None
            if not search_history and self._height - inclusion.height > self._status_cache_depth:
                return None
            return self._status_of(inclusion)

    async def is_recency_marker_valid(self, marker: str) -> bool:
        with self._lock:
            return self._marker_valid(marker)

    async def finalized_height(self) -> int:
        with self._lock:
            return self._finalized_height()

    async def get_full_record(self, signature: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            inclusion = self._included.get(signature)
            if inclusion is None:
                return None
            return {
                "signature": inclusion.signature,
                "height": inclusion.height,
                "status": self._status_of(inclusion).value,
                "transaction": inclusion.encoded,
            }
