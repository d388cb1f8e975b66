"""Shared pytest fixtures for the relay test-suite."""
from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import config
import relay_logging
from ledger import LocalLedger
from records import MemoryRecordStore
from registry import MemoryIdentityRegistry
from relayer import AdmissionGate
from transaction import SIGNATURE_SIZE, Keypair, Transaction, build_transfer

ASSET = config.DEFAULT_ASSET_ID
DECIMALS = 6
AMOUNT = 1_500_000


@pytest.fixture(scope="session", autouse=True)
def test_environment() -> Iterator[None]:
    """Ensure tests run with the dedicated 'test' configuration and logging."""
    original_env = os.environ.get("RELAY_ENV")
    os.environ["RELAY_ENV"] = "test"

    config.reload_settings(env="test")
    relay_logging.configure(config.LOGGING, force=True)

    yield

    if original_env is None:
        os.environ.pop("RELAY_ENV", None)
        config.reload_settings(env="development")
    else:
        os.environ["RELAY_ENV"] = original_env
        config.reload_settings(env=original_env)


@pytest.fixture()
def temp_database(tmp_path) -> Iterator[str]:
    """Provide a temporary SQLite database path and restore the configured one afterwards."""
    original_path = config.DB_PATH
    db_path = tmp_path / "relay.sqlite"
    config.set_database_path(str(db_path))
    yield str(db_path)
    config.set_database_path(original_path)


# --- keys and transactions (BLS is slow in pure Python, so these are session-wide) ---

@pytest.fixture(scope="session")
def relayer_keypair() -> Keypair:
    return Keypair.from_seed(b"relay-tests:relayer")


@pytest.fixture(scope="session")
def sender_keypair() -> Keypair:
    return Keypair.from_seed(b"relay-tests:sender")


@pytest.fixture(scope="session")
def recipient_keypair() -> Keypair:
    return Keypair.from_seed(b"relay-tests:recipient")


@pytest.fixture(scope="session")
def initial_marker() -> str:
    """Marker every fresh LocalLedger issues at height 0."""
    return LocalLedger().latest_recency_marker()[0]


@pytest.fixture(scope="session")
def signed_transfer(relayer_keypair, sender_keypair, recipient_keypair, initial_marker) -> bytes:
    """A well-formed transfer carrying a genuine sender signature."""
    tx = build_transfer(
        sender_keypair,
        relayer_keypair.pubkey,
        recipient_keypair.pubkey,
        AMOUNT,
        asset=ASSET,
        decimals=DECIMALS,
        recent_marker=initial_marker,
    )
    return tx.to_bytes()


def fill_dummy_signatures(tx: Transaction, *pubkeys: str, tag: int = 1) -> Transaction:
    """Fill the named slots with well-sized but unverifiable signatures."""
    for index, slot in enumerate(tx.signatures):
        if slot.pubkey in pubkeys:
            slot.signature = bytes([(tag + index) % 256]) * SIGNATURE_SIZE
    return tx


@pytest.fixture()
def dummy_sign():
    return fill_dummy_signatures


@pytest.fixture()
def ledger_transaction(relayer_keypair):
    """Factory for encoded transactions with a distinct network signature per tag."""

    def factory(tag: int, marker: str = "marker") -> bytes:
        tx = Transaction.create(fee_payer=relayer_keypair.pubkey, recent_marker=marker, instructions=[])
        tx.signatures[0].signature = bytes([tag % 256]) * SIGNATURE_SIZE
        return tx.to_bytes()

    return factory


# --- admission wiring ---

@pytest.fixture()
def registry(sender_keypair, recipient_keypair) -> MemoryIdentityRegistry:
    reg = MemoryIdentityRegistry()
    reg.register(sender_keypair.pubkey)
    reg.register(recipient_keypair.pubkey)
    return reg


@pytest.fixture()
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture()
def gate(relayer_keypair, store, registry) -> AdmissionGate:
    return AdmissionGate(relayer_keypair, ASSET, store, registry)
