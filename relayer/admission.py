from __future__ import annotations

import logging
import time
from typing import Optional

from errors import MalformedTransaction, PolicyViolation, RejectReason
from records import RecordStore, TransferRecord
from registry import IdentityRegistry
from relay_logging import short_id
from transaction import Keypair, Transaction, derive_holding_account, verify_signature

from .validator import TransferIntent, check_instruction_count, validate_instructions

logger = logging.getLogger(__name__)


class AdmissionGate:
    """
    Decides whether the relayer may co-sign and sponsor an untrusted,
    sender-signed transaction, and records each accepted one exactly once.

    The gate never reorders or rewrites instructions: it appends the
    relayer's signature and persists the result.
    """

    def __init__(
        self,
        relayer: Keypair,
        asset: str,
        store: RecordStore,
        registry: IdentityRegistry,
        *,
        clock=time.time,
    ) -> None:
        self._relayer = relayer
        self._asset = asset
        self._store = store
        self._registry = registry
        self._clock = clock

    @property
    def relayer_pubkey(self) -> str:
        return self._relayer.pubkey

    @property
    def asset(self) -> str:
        return self._asset

    def admit(self, raw_transaction: bytes, expiry_height: int) -> str:
        """Validate, co-sign and persist; returns the record id.

        Raises MalformedTransaction or PolicyViolation. Resubmitting an
        already admitted transaction returns the existing id.
        """
        if isinstance(expiry_height, bool) or not isinstance(expiry_height, int) or expiry_height < 0:
            raise MalformedTransaction(
                RejectReason.INVALID_EXPIRY_HEIGHT,
                f"Expiry height must be a non-negative integer, got {expiry_height!r}",
            )
        tx = Transaction.from_bytes(raw_transaction)

        existing = self._existing_record_id(tx)
        if existing is not None:
            logger.info("Transaction %s already admitted; returning existing id", short_id(existing))
            return existing

        self._check_structure(tx)
        intent = validate_instructions(tx.instructions, self._asset)
        self._check_signer_set(tx, intent)
        self._check_identities(intent)
        self._check_signatures(tx, intent)

        tx.sign_partial(self._relayer)
        record_id = tx.signature_for(intent.sender).hex()
        now = self._clock()
        record = TransferRecord(
            id=record_id,
            encoded_transaction=tx.to_bytes(),
            sender=intent.sender,
            recipient=intent.recipient,
            amount=intent.amount,
            expiry_height=expiry_height,
            created_at=now,
            updated_at=now,
        )
        stored, created = self._store.put_if_absent(record)
        if created:
            logger.info(
                "Transaction accepted: %s (%s -> %s, amount=%s)",
                short_id(stored.id),
                short_id(intent.sender),
                short_id(intent.recipient),
                intent.amount,
            )
        else:
            logger.info("Concurrent admission of %s resolved to the stored record", short_id(stored.id))
        return stored.id

    def _existing_record_id(self, tx: Transaction) -> Optional[str]:
        """Fast path for retries: same sender signature over the same message."""
        candidate = tx.sender_signature_id(self._relayer.pubkey)
        if candidate is None:
            return None
        record = self._store.get(candidate)
        if record is None:
            return None
        try:
            stored_tx = Transaction.from_bytes(record.encoded_transaction)
        except MalformedTransaction:
            logger.warning("Stored transaction %s no longer decodes", short_id(record.id))
            return None
        if stored_tx.message_bytes() != tx.message_bytes():
            return None
        return record.id

    def _check_structure(self, tx: Transaction) -> None:
        check_instruction_count(tx.instructions)
        if tx.fee_payer != self._relayer.pubkey:
            raise PolicyViolation(RejectReason.FEE_PAYER_NOT_RELAYER, "Fee payer must be the relayer")
        if not tx.recent_marker:
            raise MalformedTransaction(RejectReason.MISSING_RECENCY_MARKER, "Transaction has no recency marker")
        # Relayer plus one sender; which signer is the sender is only known after validation.
        signers = tx.required_signers()
        if len(signers) > 2:
            raise PolicyViolation(
                RejectReason.UNEXPECTED_SIGNER,
                f"Expected at most 2 signers (relayer and sender), got {len(signers)}",
            )

    def _check_signer_set(self, tx: Transaction, intent: TransferIntent) -> None:
        allowed_signers = {self._relayer.pubkey, intent.sender}
        for signer in tx.required_signers():
            if signer not in allowed_signers:
                raise PolicyViolation(RejectReason.UNEXPECTED_SIGNER, f"Unexpected signer: {signer}")
        allowed_writable = allowed_signers | {
            derive_holding_account(intent.sender, self._asset),
            intent.recipient_account,
        }
        for account in tx.writable_accounts():
            if account not in allowed_writable:
                raise PolicyViolation(
                    RejectReason.UNEXPECTED_WRITABLE_ACCOUNT,
                    f"Unexpected writable account: {account}",
                )

    def _check_identities(self, intent: TransferIntent) -> None:
        if not self._registry.is_registered(intent.sender):
            raise PolicyViolation(RejectReason.SENDER_NOT_REGISTERED, "Sender is not a registered user")
        if not self._registry.is_registered(intent.recipient):
            raise PolicyViolation(RejectReason.RECIPIENT_NOT_REGISTERED, "Recipient is not a registered user")
        if not self._registry.is_compliant(intent.sender):
            raise PolicyViolation(RejectReason.SENDER_NOT_COMPLIANT, "Sender is not compliant")
        if not self._registry.is_compliant(intent.recipient):
            raise PolicyViolation(RejectReason.RECIPIENT_NOT_COMPLIANT, "Recipient is not compliant")

    def _check_signatures(self, tx: Transaction, intent: TransferIntent) -> None:
        if tx.signature_for(self._relayer.pubkey) is not None:
            raise PolicyViolation(
                RejectReason.RELAYER_ALREADY_SIGNED,
                "Relayer signature should not be present yet",
            )
        sender_signature = tx.signature_for(intent.sender)
        if sender_signature is None:
            raise PolicyViolation(RejectReason.SENDER_SIGNATURE_MISSING, "Sender signature is missing")
        if not verify_signature(intent.sender, tx.message_bytes(), sender_signature):
            raise PolicyViolation(RejectReason.SENDER_SIGNATURE_INVALID, "Sender signature does not verify")
