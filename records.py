from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional, Protocol, Tuple


class LifecycleState(str, Enum):
    ACCEPTED = "ACCEPTED"
    SUBMITTED = "SUBMITTED"
    OBSERVED_PROCESSED = "OBSERVED_PROCESSED"
    OBSERVED_CONFIRMED = "OBSERVED_CONFIRMED"
    OBSERVED_FINALIZED = "OBSERVED_FINALIZED"
    FAILED = "FAILED"


TERMINAL_STATES = frozenset({LifecycleState.OBSERVED_FINALIZED, LifecycleState.FAILED})

_RANK = {
    LifecycleState.ACCEPTED: 0,
    LifecycleState.SUBMITTED: 1,
    LifecycleState.OBSERVED_PROCESSED: 2,
    LifecycleState.OBSERVED_CONFIRMED: 3,
    LifecycleState.OBSERVED_FINALIZED: 4,
}


def can_transition(current: LifecycleState, target: LifecycleState) -> bool:
    """Forward moves only; FAILED from any non-terminal state; terminal states are frozen."""
    if current in TERMINAL_STATES:
        return False
    if target is LifecycleState.FAILED:
        return True
    return _RANK[target] > _RANK[current]


@dataclass(frozen=True)
class TransferRecord:
    """One admitted transfer. Only ``state`` and ``updated_at`` ever change."""

    id: str
    encoded_transaction: bytes
    sender: str
    recipient: str
    amount: int
    expiry_height: int
    state: LifecycleState = LifecycleState.ACCEPTED
    created_at: float = 0.0
    updated_at: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


class RecordStore(Protocol):
    """Keyed persistence for transfer records."""

    def put_if_absent(self, record: TransferRecord) -> Tuple[TransferRecord, bool]:
        """Insert ``record`` unless its id exists. Returns (stored record, created)."""
        ...

    def get(self, record_id: str) -> Optional[TransferRecord]: ...

    def update_state(self, record_id: str, state: LifecycleState) -> bool:
        """Apply a legal transition. Returns False when refused; KeyError for unknown ids."""
        ...

    def list_non_terminal(self) -> List[TransferRecord]: ...

    def list_all(self) -> List[TransferRecord]: ...


class MemoryRecordStore:
    """Thread-safe in-memory record store."""

    def __init__(self, clock=time.time) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, TransferRecord] = {}
        self._clock = clock

    def put_if_absent(self, record: TransferRecord) -> Tuple[TransferRecord, bool]:
        with self._lock:
            existing = self._records.get(record.id)
            if existing is not None:
                return existing, False
            now = self._clock()
            stored = replace(record, created_at=record.created_at or now, updated_at=record.updated_at or now)
            self._records[record.id] = stored
            return stored, True

    def get(self, record_id: str) -> Optional[TransferRecord]:
        with self._lock:
            return self._records.get(record_id)

    def update_state(self, record_id: str, state: LifecycleState) -> bool:
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise KeyError(record_id)
            if not can_transition(current.state, state):
                return False
            self._records[record_id] = replace(current, state=state, updated_at=self._clock())
            return True

    def list_non_terminal(self) -> List[TransferRecord]:
        with self._lock:
            pending = [r for r in self._records.values() if not r.is_terminal]
        return sorted(pending, key=lambda r: r.created_at)

    def list_all(self) -> List[TransferRecord]:
        with self._lock:
            records = list(self._records.values())
        return sorted(records, key=lambda r: r.created_at)
