"""
transaction.py

Native transaction model of the ledger the relay sponsors fees on, plus BLS
key handling and the canonical holding-account derivation.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from blake3 import blake3
from py_ecc.bls import G2Basic

from errors import MalformedTransaction, RejectReason

logger = logging.getLogger(__name__)

HOLDING_ACCOUNT_PROGRAM_ID = "holding-account-program"
TOKEN_PROGRAM_ID = "token-program"
SYSTEM_PROGRAM_ID = "system-program"

CREATE_IDEMPOTENT_DISCRIMINATOR = 1
TRANSFER_CHECKED_DISCRIMINATOR = 12

SIGNATURE_SIZE = 96
MAX_TRANSACTION_BYTES = 16384
MAX_U64 = (1 << 64) - 1

# Lowercase hex keys/accounts and dashed program names.
_ADDRESS_RE = re.compile(r"^[0-9a-z][0-9a-z\-]{0,127}$")


def _canonical_json(payload: Any) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class Keypair:
    """BLS12-381 keypair; ``pubkey`` is the hex identity reference."""

    secret: int = field(repr=False)
    pubkey: str

    @classmethod
    def from_secret(cls, secret: int) -> "Keypair":
        return cls(secret=secret, pubkey=G2Basic.SkToPk(secret).hex())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Keypair":
        ikm = seed if len(seed) >= 32 else hashlib.sha256(seed).digest()
        return cls.from_secret(G2Basic.KeyGen(ikm))

    @classmethod
    def generate(cls) -> "Keypair":
        return cls.from_seed(secrets.token_bytes(32))

    @classmethod
    def from_hex(cls, privkey_hex: str) -> "Keypair":
        raw = bytes.fromhex(privkey_hex[2:] if privkey_hex.lower().startswith("0x") else privkey_hex)
        if len(raw) != 32:
            raise ValueError(f"Invalid private key length: {len(raw)} bytes, expected 32.")
        return cls.from_secret(int.from_bytes(raw, byteorder="big", signed=False))

    def privkey_hex(self) -> str:
        return self.secret.to_bytes(32, byteorder="big", signed=False).hex()

    def sign(self, message: bytes) -> bytes:
        return bytes(G2Basic.Sign(self.secret, message))


def verify_signature(pubkey_hex: str, message: bytes, signature: Optional[bytes]) -> bool:
    """Verify a BLS signature; malformed keys or signatures simply fail."""
    if not signature:
        return False
    try:
        pubkey = bytes.fromhex(pubkey_hex)
    except ValueError:
        return False
    try:
        return bool(G2Basic.Verify(pubkey, message, signature))
    except Exception:  # pragma: no cover - py_ecc raises assorted errors on bad points
        logger.debug("Signature verification raised for %s...", pubkey_hex[:10], exc_info=True)
        return False


def derive_holding_account(owner: str, asset: str) -> str:
    """Return the canonical holding account of ``owner`` for ``asset``."""
    hasher = blake3()
    hasher.update(b"holding-account:")
    hasher.update(owner.encode("ascii"))
    hasher.update(b":")
    hasher.update(asset.encode("ascii"))
    hasher.update(b":")
    hasher.update(TOKEN_PROGRAM_ID.encode("ascii"))
    return hasher.hexdigest()


@dataclass(frozen=True)
class AccountMeta:
    pubkey: str
    is_signer: bool = False
    is_writable: bool = False

    def to_list(self) -> List[Any]:
        return [self.pubkey, self.is_signer, self.is_writable]


@dataclass
class Instruction:
    program_id: str
    accounts: List[AccountMeta]
    data: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "program_id": self.program_id,
            "accounts": [meta.to_list() for meta in self.accounts],
            "data": self.data.hex(),
        }


@dataclass
class SignatureSlot:
    pubkey: str
    signature: Optional[bytes] = None


def _malformed(message: str) -> MalformedTransaction:
    return MalformedTransaction(RejectReason.MALFORMED_ENCODING, message)


def _parse_address(value: Any, name: str) -> str:
    if not (isinstance(value, str) and _ADDRESS_RE.match(value)):
        raise _malformed(f"Invalid {name}: {value!r}")
    return value


def _parse_instruction(index: int, payload: Any) -> Instruction:
    if not isinstance(payload, dict):
        raise _malformed(f"Instruction #{index + 1} must be an object.")
    program_id = _parse_address(payload.get("program_id"), f"program_id of instruction #{index + 1}")
    raw_accounts = payload.get("accounts")
    if not isinstance(raw_accounts, list):
        raise _malformed(f"Instruction #{index + 1} accounts must be a list.")
    accounts = []
    for entry in raw_accounts:
        if not (
            isinstance(entry, list)
            and len(entry) == 3
            and isinstance(entry[1], bool)
            and isinstance(entry[2], bool)
        ):
            raise _malformed(f"Invalid account entry in instruction #{index + 1}: {entry!r}")
        pubkey = _parse_address(entry[0], f"account in instruction #{index + 1}")
        accounts.append(AccountMeta(pubkey=pubkey, is_signer=entry[1], is_writable=entry[2]))
    data_hex = payload.get("data")
    if not isinstance(data_hex, str):
        raise _malformed(f"Instruction #{index + 1} data must be a hex string.")
    try:
        data = bytes.fromhex(data_hex)
    except ValueError as exc:
        raise _malformed(f"Instruction #{index + 1} data is not valid hex.") from exc
    return Instruction(program_id=program_id, accounts=accounts, data=data)


@dataclass
class Transaction:
    fee_payer: str
    recent_marker: Optional[str]
    instructions: List[Instruction]
    signatures: List[SignatureSlot] = field(default_factory=list)

    @classmethod
    def create(cls, fee_payer: str, recent_marker: Optional[str], instructions: List[Instruction]) -> "Transaction":
        """Build an unsigned transaction with one empty slot per required signer."""
        tx = cls(fee_payer=fee_payer, recent_marker=recent_marker, instructions=list(instructions))
        tx.signatures = [SignatureSlot(pubkey) for pubkey in tx.required_signers()]
        return tx

    def required_signers(self) -> List[str]:
        """Fee payer first, then every signer account in order of first appearance."""
        signers = [self.fee_payer]
        for instruction in self.instructions:
            for meta in instruction.accounts:
                if meta.is_signer and meta.pubkey not in signers:
                    signers.append(meta.pubkey)
        return signers

    def writable_accounts(self) -> List[str]:
        writable = [self.fee_payer]
        for instruction in self.instructions:
            for meta in instruction.accounts:
                if meta.is_writable and meta.pubkey not in writable:
                    writable.append(meta.pubkey)
        return writable

    def message_dict(self) -> Dict[str, Any]:
        return {
            "fee_payer": self.fee_payer,
            "recent_marker": self.recent_marker,
            "instructions": [ix.to_dict() for ix in self.instructions],
        }

    def message_bytes(self) -> bytes:
        """Canonical bytes every signer signs over."""
        return _canonical_json(self.message_dict())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message_dict(),
            "signatures": [
                [slot.pubkey, slot.signature.hex() if slot.signature else None]
                for slot in self.signatures
            ],
        }

    def to_bytes(self) -> bytes:
        return _canonical_json(self.to_dict())

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Transaction":
        """Decode an untrusted transaction; raises MalformedTransaction on any defect."""
        if not isinstance(raw, (bytes, bytearray)):
            raise _malformed("Transaction must be raw bytes.")
        if len(raw) > MAX_TRANSACTION_BYTES:
            raise _malformed(f"Transaction exceeds {MAX_TRANSACTION_BYTES} bytes.")
        try:
            payload = json.loads(bytes(raw).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise _malformed(f"Transaction is not valid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise _malformed("Transaction must be a JSON object.")
        message = payload.get("message")
        if not isinstance(message, dict):
            raise _malformed("Missing 'message' object.")

        fee_payer = _parse_address(message.get("fee_payer"), "fee_payer")
        recent_marker = message.get("recent_marker")
        if recent_marker is not None and not (isinstance(recent_marker, str) and len(recent_marker) <= 128):
            raise _malformed("recent_marker must be a string of at most 128 characters.")
        raw_instructions = message.get("instructions")
        if not isinstance(raw_instructions, list):
            raise _malformed("Message instructions must be a list.")
        instructions = [_parse_instruction(i, entry) for i, entry in enumerate(raw_instructions)]

        raw_signatures = payload.get("signatures")
        if not isinstance(raw_signatures, list):
            raise _malformed("Transaction signatures must be a list.")
        slots = []
        for entry in raw_signatures:
            if not (isinstance(entry, list) and len(entry) == 2):
                raise _malformed(f"Invalid signature entry: {entry!r}")
            pubkey = _parse_address(entry[0], "signer")
            sig_hex = entry[1]
            signature = None
            if sig_hex is not None:
                if not isinstance(sig_hex, str):
                    raise _malformed(f"Signature for {pubkey[:10]}... must be hex or null.")
                try:
                    signature = bytes.fromhex(sig_hex)
                except ValueError as exc:
                    raise _malformed(f"Signature for {pubkey[:10]}... is not valid hex.") from exc
                if len(signature) != SIGNATURE_SIZE:
                    raise _malformed(
                        f"Signature for {pubkey[:10]}... has {len(signature)} bytes, expected {SIGNATURE_SIZE}."
                    )
            slots.append(SignatureSlot(pubkey=pubkey, signature=signature))

        tx = cls(fee_payer=fee_payer, recent_marker=recent_marker, instructions=instructions, signatures=slots)
        if [slot.pubkey for slot in slots] != tx.required_signers():
            raise _malformed("Signature slots do not match the message's required signers.")
        return tx

    def signature_for(self, pubkey: str) -> Optional[bytes]:
        for slot in self.signatures:
            if slot.pubkey == pubkey:
                return slot.signature
        return None

    def sign_partial(self, keypair: Keypair) -> bytes:
        """Fill the slot belonging to ``keypair``; the message is never altered."""
        for slot in self.signatures:
            if slot.pubkey == keypair.pubkey:
                slot.signature = keypair.sign(self.message_bytes())
                return slot.signature
        raise ValueError(f"{keypair.pubkey[:10]}... is not a required signer of this transaction.")

    def is_fully_signed(self) -> bool:
        return bool(self.signatures) and all(slot.signature for slot in self.signatures)

    @property
    def network_signature(self) -> Optional[str]:
        """The fee payer's signature: the identifier the ledger knows the transaction by."""
        if not self.signatures or not self.signatures[0].signature:
            return None
        return self.signatures[0].signature.hex()

    def sender_signature_id(self, relayer_pubkey: str) -> Optional[str]:
        """Hex of the first non-relayer signature; computable without the relayer."""
        for slot in self.signatures:
            if slot.pubkey != relayer_pubkey and slot.signature:
                return slot.signature.hex()
        return None


def create_holding_account_idempotent(payer: str, holding_account: str, owner: str, asset: str) -> Instruction:
    return Instruction(
        program_id=HOLDING_ACCOUNT_PROGRAM_ID,
        accounts=[
            AccountMeta(payer, is_signer=True, is_writable=True),
            AccountMeta(holding_account, is_writable=True),
            AccountMeta(owner),
            AccountMeta(asset),
            AccountMeta(SYSTEM_PROGRAM_ID),
            AccountMeta(TOKEN_PROGRAM_ID),
        ],
        data=bytes([CREATE_IDEMPOTENT_DISCRIMINATOR]),
    )


def transfer_checked(
    source: str,
    asset: str,
    destination: str,
    owner: str,
    amount: int,
    decimals: int,
) -> Instruction:
    if not (0 <= amount <= MAX_U64):
        raise ValueError(f"Amount must fit an unsigned 64-bit integer, got {amount}.")
    if not (0 <= decimals <= 255):
        raise ValueError(f"Decimals must fit one byte, got {decimals}.")
    data = (
        bytes([TRANSFER_CHECKED_DISCRIMINATOR])
        + amount.to_bytes(8, byteorder="little", signed=False)
        + bytes([decimals])
    )
    return Instruction(
        program_id=TOKEN_PROGRAM_ID,
        accounts=[
            AccountMeta(source, is_writable=True),
            AccountMeta(asset),
            AccountMeta(destination, is_writable=True),
            AccountMeta(owner, is_signer=True),
        ],
        data=data,
    )


def build_transfer(
    sender: Keypair,
    relayer_pubkey: str,
    recipient: str,
    amount: int,
    *,
    asset: str,
    decimals: int,
    recent_marker: str,
) -> Transaction:
    """Sender-side construction: create-if-absent plus checked transfer, fee paid by the relayer."""
    recipient_account = derive_holding_account(recipient, asset)
    sender_account = derive_holding_account(sender.pubkey, asset)
    tx = Transaction.create(
        fee_payer=relayer_pubkey,
        recent_marker=recent_marker,
        instructions=[
            create_holding_account_idempotent(relayer_pubkey, recipient_account, recipient, asset),
            transfer_checked(sender_account, asset, recipient_account, sender.pubkey, amount, decimals),
        ],
    )
    tx.sign_partial(sender)
    return tx
