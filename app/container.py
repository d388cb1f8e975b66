"""Dependency wiring helpers for the relay server."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import config
from commands import getmarker, getrelayer, register, status, submit
from db import SqliteIdentityRegistry, SqliteRecordStore
from errors import DependencyError
from ledger import LocalLedger
from reconciler import Reconciler, log_receipt
from records import MemoryRecordStore
from registry import MemoryIdentityRegistry
from relayer import AdmissionGate
from transaction import Keypair


def _build_persistence(database: config.DatabaseSettings) -> Tuple[Any, Any]:
    if database.backend == "memory":
        return MemoryRecordStore(), MemoryIdentityRegistry()
    store = SqliteRecordStore(database.path)
    return store, SqliteIdentityRegistry(store.connection)


@dataclass
class ServiceContainer:
    """Simple dependency container to ease testing and wiring."""

    settings: config.Settings
    logger: logging.Logger
    command_handlers: Dict[str, Any]
    store: Any
    registry: Any
    ledger: Any
    relayer: Keypair
    admission: AdmissionGate
    reconciler: Reconciler
    overrides: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        *,
        settings: Optional[config.Settings] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ServiceContainer":
        resolved_settings = settings or config.settings
        override_map = overrides or {}

        logger: logging.Logger = override_map.get("logger") or logging.getLogger("relay.server")
        command_handlers = override_map.get("command_handlers") or {
            "submit": submit,
            "status": status,
            "getrelayer": getrelayer,
            "getmarker": getmarker,
            "register": register,
        }

        store = override_map.get("store")
        registry = override_map.get("registry")
        if store is None or registry is None:
            default_store, default_registry = _build_persistence(resolved_settings.database)
            store = store if store is not None else default_store
            registry = registry if registry is not None else default_registry

        ledger = override_map.get("ledger") or LocalLedger(
            marker_validity=resolved_settings.ledger.marker_validity,
            finalization_depth=resolved_settings.ledger.finalization_depth,
        )

        relayer = override_map.get("relayer")
        if relayer is None:
            try:
                relayer = Keypair.from_hex(resolved_settings.relayer.privkey)
            except ValueError as exc:
                raise DependencyError(f"Cannot load relayer key: {exc}") from exc

        admission = override_map.get("admission") or AdmissionGate(
            relayer,
            resolved_settings.relayer.asset_id,
            store,
            registry,
        )
        reconciler = override_map.get("reconciler") or Reconciler(
            store,
            ledger,
            interval=resolved_settings.reconciler.interval,
            call_timeout=resolved_settings.reconciler.call_timeout,
            max_concurrency=resolved_settings.reconciler.max_concurrency,
            notifier=override_map.get("notifier", log_receipt),
        )

        return cls(
            settings=resolved_settings,
            logger=logger,
            command_handlers=command_handlers,
            store=store,
            registry=registry,
            ledger=ledger,
            relayer=relayer,
            admission=admission,
            reconciler=reconciler,
            overrides=override_map,
        )

    def get_command_handler(self, name: str) -> Any:
        handler = self.command_handlers.get(name)
        if handler is None:
            raise DependencyError(f"Unknown command handler requested: {name}")
        return handler

    def close(self) -> None:
        closer = getattr(self.store, "close", None)
        if callable(closer):
            closer()
