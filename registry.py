"""Registered identities allowed to use the relay, with their compliance results."""
from __future__ import annotations

import threading
from typing import Dict, Protocol


class IdentityRegistry(Protocol):
    def is_registered(self, identity: str) -> bool: ...

    def is_compliant(self, identity: str) -> bool: ...

    def register(self, identity: str, *, compliant: bool = True) -> None: ...


class MemoryIdentityRegistry:
    """In-memory registry; unregistered identities are never compliant."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._identities: Dict[str, bool] = {}

    def register(self, identity: str, *, compliant: bool = True) -> None:
        with self._lock:
            self._identities[identity] = bool(compliant)

    def is_registered(self, identity: str) -> bool:
        with self._lock:
            return identity in self._identities

    def is_compliant(self, identity: str) -> bool:
        with self._lock:
            return self._identities.get(identity, False)
