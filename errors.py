"""Central exception hierarchy for the fee-sponsoring relay."""
from __future__ import annotations

from enum import Enum


class RelayError(Exception):
    """Base exception for all custom errors raised by the relay."""


class ConfigurationError(RelayError):
    """Raised when configuration loading or validation fails."""


class DatabaseError(RelayError):
    """Raised for database related issues (initialization, queries, etc.)."""


class DependencyError(RelayError):
    """Raised when dependency wiring or injection fails."""


class CommandError(RelayError):
    """Raised when a client command cannot be processed correctly."""


class RejectReason(str, Enum):
    """Reason codes reported to the submitter of a rejected transaction."""

    MALFORMED_ENCODING = "MALFORMED_ENCODING"
    INVALID_EXPIRY_HEIGHT = "INVALID_EXPIRY_HEIGHT"
    MISSING_RECENCY_MARKER = "MISSING_RECENCY_MARKER"
    FEE_PAYER_NOT_RELAYER = "FEE_PAYER_NOT_RELAYER"

    INSTRUCTION_COUNT = "INSTRUCTION_COUNT"
    ACCOUNT_CREATION_PROGRAM = "ACCOUNT_CREATION_PROGRAM"
    ACCOUNT_CREATION_KIND = "ACCOUNT_CREATION_KIND"
    ACCOUNT_CREATION_ACCOUNTS = "ACCOUNT_CREATION_ACCOUNTS"
    ACCOUNT_CREATION_ASSET = "ACCOUNT_CREATION_ASSET"
    ACCOUNT_CREATION_TARGET = "ACCOUNT_CREATION_TARGET"
    TRANSFER_PROGRAM = "TRANSFER_PROGRAM"
    TRANSFER_KIND = "TRANSFER_KIND"
    TRANSFER_ACCOUNTS = "TRANSFER_ACCOUNTS"
    TRANSFER_ASSET = "TRANSFER_ASSET"
    TRANSFER_SOURCE = "TRANSFER_SOURCE"
    TRANSFER_DESTINATION = "TRANSFER_DESTINATION"

    UNEXPECTED_SIGNER = "UNEXPECTED_SIGNER"
    UNEXPECTED_WRITABLE_ACCOUNT = "UNEXPECTED_WRITABLE_ACCOUNT"
    SENDER_NOT_REGISTERED = "SENDER_NOT_REGISTERED"
    RECIPIENT_NOT_REGISTERED = "RECIPIENT_NOT_REGISTERED"
    SENDER_NOT_COMPLIANT = "SENDER_NOT_COMPLIANT"
    RECIPIENT_NOT_COMPLIANT = "RECIPIENT_NOT_COMPLIANT"
    SENDER_SIGNATURE_MISSING = "SENDER_SIGNATURE_MISSING"
    SENDER_SIGNATURE_INVALID = "SENDER_SIGNATURE_INVALID"
    RELAYER_ALREADY_SIGNED = "RELAYER_ALREADY_SIGNED"


class TransactionRejected(RelayError):
    """Raised by the admission path when a candidate transaction is refused.

    Rejections are local and never stored; the caller may fix the input and
    resubmit.
    """

    def __init__(self, reason: RejectReason, message: str) -> None:
        super().__init__(f"{reason.value}: {message}")
        self.reason = reason
        self.message = message


class MalformedTransaction(TransactionRejected):
    """Undecodable transaction or unexpected instruction shape."""


class PolicyViolation(TransactionRejected):
    """Well-formed transaction the relayer refuses to sponsor."""


class LedgerError(RelayError):
    """Raised by ledger clients for transient failures (RPC errors, outages)."""


class AlreadyProcessedError(LedgerError):
    """Raised on broadcast when the ledger has already seen the transaction."""
