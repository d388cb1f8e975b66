"""Read-only status lookup for submitted transfers.

Two signals are exposed on purpose: a sender may treat a transfer as
succeeded once it is observed confirmed, while settlement (and its
notification) waits for finality.
"""
from __future__ import annotations

from typing import Optional

from records import LifecycleState, RecordStore


def query_status(store: RecordStore, record_id: str) -> Optional[LifecycleState]:
    record = store.get(record_id)
    return record.state if record is not None else None


def is_fast_success(state: Optional[LifecycleState]) -> bool:
    return state in (LifecycleState.OBSERVED_CONFIRMED, LifecycleState.OBSERVED_FINALIZED)


def is_settled(state: Optional[LifecycleState]) -> bool:
    return state is LifecycleState.OBSERVED_FINALIZED


def is_failed(state: Optional[LifecycleState]) -> bool:
    return state is LifecycleState.FAILED
