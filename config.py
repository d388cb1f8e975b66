"""Environment-aware configuration for the relay server."""
from __future__ import annotations

import copy
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from errors import ConfigurationError


DATA_DIR = os.path.join(os.path.dirname(__file__), "data")
DEFAULT_PROD_DB_PATH = os.path.join(DATA_DIR, "relay.db")

# Development-only relayer key; production deployments must override RELAY_PRIVKEY.
DEV_RELAYER_PRIVKEY = "1b6c2f0e9a4d5e3c7b8a69f0d1e2c3b4a5968778695a4b3c2d1e0f1a2b3c4d5e"
# Asset identifier of the sponsored stablecoin on the local ledger.
DEFAULT_ASSET_ID = "4f8b3c1e0d2a7f6e5d4c3b2a19081726354453627180f9e8d7c6b5a493827160"


def _is_hex(value: str, length: int) -> bool:
    if not (isinstance(value, str) and len(value) == length):
        return False
    try:
        bytes.fromhex(value)
    except ValueError:
        return False
    return True


@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 65433
    buffer_size: int = 65536

    def validate(self) -> None:
        if not self.host:
            raise ConfigurationError("Server host must be provided.")
        if not (0 <= self.port <= 65535):
            raise ConfigurationError(f"Invalid server port: {self.port}")
        if self.buffer_size <= 0:
            raise ConfigurationError("Buffer size must be positive.")


@dataclass
class RelayerSettings:
    privkey: str = DEV_RELAYER_PRIVKEY
    asset_id: str = DEFAULT_ASSET_ID
    asset_decimals: int = 6

    def validate(self) -> None:
        if not _is_hex(self.privkey, 64):
            raise ConfigurationError("Relayer privkey must be a 64-character hex string.")
        if int(self.privkey, 16) == 0:
            raise ConfigurationError("Relayer privkey must be non-zero.")
        if not _is_hex(self.asset_id, 64):
            raise ConfigurationError("Relayer asset_id must be a 64-character hex string.")
        if not (0 <= self.asset_decimals <= 255):
            raise ConfigurationError(f"Invalid asset decimals: {self.asset_decimals}")


@dataclass
class ReconcilerSettings:
    interval: float = 1.0
    call_timeout: float = 5.0
    max_concurrency: int = 8

    def validate(self) -> None:
        if self.interval <= 0:
            raise ConfigurationError("Reconciler interval must be positive.")
        if self.call_timeout <= 0:
            raise ConfigurationError("Reconciler call timeout must be positive.")
        if self.max_concurrency < 1:
            raise ConfigurationError("Reconciler max_concurrency must be at least 1.")


@dataclass
class LedgerSettings:
    slot_time: float = 0.4
    marker_validity: int = 150
    finalization_depth: int = 32

    def validate(self) -> None:
        if self.slot_time <= 0:
            raise ConfigurationError("Ledger slot time must be positive.")
        if self.marker_validity <= 0:
            raise ConfigurationError("Recency marker validity must be positive.")
        if self.finalization_depth < 0:
            raise ConfigurationError("Finalization depth cannot be negative.")


@dataclass
class DatabaseSettings:
    backend: str = "sqlite"
    path: str = DEFAULT_PROD_DB_PATH

    def validate(self) -> None:
        if self.backend not in ("sqlite", "memory"):
            raise ConfigurationError(f"Unknown database backend: {self.backend!r}")
        if self.backend == "sqlite" and not self.path:
            raise ConfigurationError("Database path must be configured.")


@dataclass
class RegistrySettings:
    open_registration: bool = True


@dataclass
class TimeoutSettings:
    client_wait_timeout: int = 10
    shutdown_timeout: int = 5

    def validate(self) -> None:
        for name, value in asdict(self).items():
            if value <= 0:
                raise ConfigurationError(f"Timeout '{name}' must be greater than zero (got {value}).")


@dataclass
class LoggingSettings:
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
    datefmt: str = "%Y-%m-%d %H:%M:%S"

    def validate(self) -> None:
        if not self.level:
            raise ConfigurationError("Logging level must be provided.")
        if not self.format:
            raise ConfigurationError("Logging format must be provided.")


@dataclass
class Settings:
    env: str
    server: ServerSettings
    relayer: RelayerSettings
    reconciler: ReconcilerSettings
    ledger: LedgerSettings
    database: DatabaseSettings
    registry: RegistrySettings
    timeouts: TimeoutSettings
    logging: LoggingSettings

    def validate(self) -> None:
        self.server.validate()
        self.relayer.validate()
        self.reconciler.validate()
        self.ledger.validate()
        self.database.validate()
        self.timeouts.validate()
        self.logging.validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "env": self.env,
            "server": asdict(self.server),
            "relayer": asdict(self.relayer),
            "reconciler": asdict(self.reconciler),
            "ledger": asdict(self.ledger),
            "database": asdict(self.database),
            "registry": asdict(self.registry),
            "timeouts": asdict(self.timeouts),
            "logging": asdict(self.logging),
        }


BASE_DEFAULTS: Dict[str, Any] = {
    "server": asdict(ServerSettings()),
    "relayer": asdict(RelayerSettings()),
    "reconciler": asdict(ReconcilerSettings()),
    "ledger": asdict(LedgerSettings()),
    "database": asdict(DatabaseSettings()),
    "registry": asdict(RegistrySettings()),
    "timeouts": asdict(TimeoutSettings()),
    "logging": asdict(LoggingSettings()),
}

ENVIRONMENT_OVERRIDES: Dict[str, Dict[str, Any]] = {
    "development": {},
    "test": {
        "logging": {"level": "DEBUG"},
        "database": {"backend": "memory"},
        "reconciler": {"interval": 0.05, "call_timeout": 0.5},
        "ledger": {"slot_time": 0.01, "marker_validity": 20, "finalization_depth": 2},
        "timeouts": {"client_wait_timeout": 5, "shutdown_timeout": 1},
    },
    "production": {
        "logging": {"level": "WARNING"},
        "registry": {"open_registration": False},
        "reconciler": {"interval": 2.0, "call_timeout": 10.0},
        "timeouts": {"client_wait_timeout": 15, "shutdown_timeout": 10},
    },
}


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


_ENV_VALUE_CASTERS: Dict[str, Any] = {
    "RELAY_HOST": ("server", "host", str),
    "RELAY_PORT": ("server", "port", int),
    "RELAY_BUFFER_SIZE": ("server", "buffer_size", int),
    "RELAY_PRIVKEY": ("relayer", "privkey", str),
    "RELAY_ASSET_ID": ("relayer", "asset_id", str),
    "RELAY_ASSET_DECIMALS": ("relayer", "asset_decimals", int),
    "RELAY_RECONCILE_INTERVAL": ("reconciler", "interval", float),
    "RELAY_CALL_TIMEOUT": ("reconciler", "call_timeout", float),
    "RELAY_MAX_CONCURRENCY": ("reconciler", "max_concurrency", int),
    "RELAY_LEDGER_SLOT_TIME": ("ledger", "slot_time", float),
    "RELAY_MARKER_VALIDITY": ("ledger", "marker_validity", int),
    "RELAY_FINALIZATION_DEPTH": ("ledger", "finalization_depth", int),
    "RELAY_DB_BACKEND": ("database", "backend", str),
    "RELAY_DB_PATH": ("database", "path", str),
    "RELAY_OPEN_REGISTRATION": ("registry", "open_registration", _parse_bool),
    "RELAY_CLIENT_WAIT_TIMEOUT": ("timeouts", "client_wait_timeout", int),
    "RELAY_SHUTDOWN_TIMEOUT": ("timeouts", "shutdown_timeout", int),
    "RELAY_LOG_LEVEL": ("logging", "level", str),
    "RELAY_LOG_FORMAT": ("logging", "format", str),
    "RELAY_LOG_DATEFMT": ("logging", "datefmt", str),
}


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _overrides_from_env() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_key, (section, key, caster) in _ENV_VALUE_CASTERS.items():
        raw = os.environ.get(env_key)
        if raw is None:
            continue
        try:
            parsed = caster(raw)
        except Exception as exc:  # pragma: no cover - configuration error path
            raise ConfigurationError(f"Failed to coerce environment variable {env_key}: {exc}") from exc
        overrides.setdefault(section, {})[key] = parsed
    return overrides


def _settings_from_dict(env: str, payload: Dict[str, Any]) -> Settings:
    return Settings(
        env=env,
        server=ServerSettings(**payload["server"]),
        relayer=RelayerSettings(**payload["relayer"]),
        reconciler=ReconcilerSettings(**payload["reconciler"]),
        ledger=LedgerSettings(**payload["ledger"]),
        database=DatabaseSettings(**payload["database"]),
        registry=RegistrySettings(**payload["registry"]),
        timeouts=TimeoutSettings(**payload["timeouts"]),
        logging=LoggingSettings(**payload["logging"]),
    )


def load_settings(env: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> Settings:
    env_name = (env or os.environ.get("RELAY_ENV", "development")).lower()
    base = copy.deepcopy(BASE_DEFAULTS)
    env_specific = ENVIRONMENT_OVERRIDES.get(env_name, {})
    base = _deep_merge(base, copy.deepcopy(env_specific))
    base = _deep_merge(base, _overrides_from_env())
    if overrides:
        base = _deep_merge(base, overrides)
    settings_obj = _settings_from_dict(env_name, base)
    settings_obj.validate()
    return settings_obj


def _sync_legacy_exports(current: Settings) -> None:
    global HOST, PORT, BUFFER_SIZE
    global RELAYER_PRIVKEY, ASSET_ID, ASSET_DECIMALS
    global RECONCILE_INTERVAL, CALL_TIMEOUT
    global DB_BACKEND, DB_PATH
    global CLIENT_WAIT_TIMEOUT, SHUTDOWN_TIMEOUT
    global LOGGING

    HOST = current.server.host
    PORT = current.server.port
    BUFFER_SIZE = current.server.buffer_size

    RELAYER_PRIVKEY = current.relayer.privkey
    ASSET_ID = current.relayer.asset_id
    ASSET_DECIMALS = current.relayer.asset_decimals

    RECONCILE_INTERVAL = current.reconciler.interval
    CALL_TIMEOUT = current.reconciler.call_timeout

    DB_BACKEND = current.database.backend
    DB_PATH = current.database.path

    CLIENT_WAIT_TIMEOUT = current.timeouts.client_wait_timeout
    SHUTDOWN_TIMEOUT = current.timeouts.shutdown_timeout

    LOGGING = current.logging


def reload_settings(env: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> Settings:
    global settings
    settings = load_settings(env=env or settings.env, overrides=overrides)
    _sync_legacy_exports(settings)
    return settings


def set_database_path(path: str) -> None:
    if not path:
        raise ConfigurationError("Database path cannot be empty.")
    settings.database.path = path
    settings.database.validate()
    _sync_legacy_exports(settings)


settings: Settings = load_settings()
_sync_legacy_exports(settings)

__all__ = [
    "settings",
    "reload_settings",
    "set_database_path",
    "Settings",
    "ServerSettings",
    "RelayerSettings",
    "ReconcilerSettings",
    "LedgerSettings",
    "DatabaseSettings",
    "RegistrySettings",
    "TimeoutSettings",
    "LoggingSettings",
    "DATA_DIR",
    "DEFAULT_PROD_DB_PATH",
    "HOST",
    "PORT",
    "BUFFER_SIZE",
    "RELAYER_PRIVKEY",
    "ASSET_ID",
    "ASSET_DECIMALS",
    "RECONCILE_INTERVAL",
    "CALL_TIMEOUT",
    "DB_BACKEND",
    "DB_PATH",
    "CLIENT_WAIT_TIMEOUT",
    "SHUTDOWN_TIMEOUT",
    "LOGGING",
]
