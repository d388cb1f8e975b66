"""
Structural validation of the two instructions a sponsored transfer may carry.

Pure functions: no I/O, no side effects. Each check closes one abuse vector
and fails fast with its own reason code.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from errors import MalformedTransaction, RejectReason
from transaction import (
    CREATE_IDEMPOTENT_DISCRIMINATOR,
    HOLDING_ACCOUNT_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    TRANSFER_CHECKED_DISCRIMINATOR,
    Instruction,
    derive_holding_account,
)

EXPECTED_INSTRUCTION_COUNT = 2

# Account positions inside the create-idempotent instruction.
_CREATE_HOLDING = 1
_CREATE_OWNER = 2
_CREATE_ASSET = 3
_CREATE_MIN_ACCOUNTS = 6

# Account positions inside the transfer-checked instruction.
_TRANSFER_SOURCE = 0
_TRANSFER_ASSET = 1
_TRANSFER_DESTINATION = 2
_TRANSFER_OWNER = 3
_TRANSFER_MIN_ACCOUNTS = 4
# discriminator (1) + u64 amount (8) + decimals (1)
_TRANSFER_DATA_LEN = 10


@dataclass(frozen=True)
class TransferIntent:
    sender: str
    recipient: str
    amount: int
    recipient_account: str
    decimals: int


def _reject(reason: RejectReason, message: str) -> MalformedTransaction:
    return MalformedTransaction(reason, message)


def check_instruction_count(instructions: Sequence[Instruction]) -> None:
    if len(instructions) != EXPECTED_INSTRUCTION_COUNT:
        raise _reject(
            RejectReason.INSTRUCTION_COUNT,
            f"Expected {EXPECTED_INSTRUCTION_COUNT} instructions, got {len(instructions)}",
        )


def _validate_account_creation(instruction: Instruction, asset: str) -> tuple:
    """Returns (target holding account, recipient owner)."""
    if instruction.program_id != HOLDING_ACCOUNT_PROGRAM_ID:
        raise _reject(
            RejectReason.ACCOUNT_CREATION_PROGRAM,
            "First instruction must target the holding-account program",
        )
    if instruction.data != bytes([CREATE_IDEMPOTENT_DISCRIMINATOR]):
        raise _reject(
            RejectReason.ACCOUNT_CREATION_KIND,
            "First instruction must be an idempotent holding-account creation",
        )
    if len(instruction.accounts) < _CREATE_MIN_ACCOUNTS:
        raise _reject(RejectReason.ACCOUNT_CREATION_ACCOUNTS, "Invalid account-creation instruction accounts")

    target = instruction.accounts[_CREATE_HOLDING].pubkey
    owner = instruction.accounts[_CREATE_OWNER].pubkey
    if instruction.accounts[_CREATE_ASSET].pubkey != asset:
        raise _reject(RejectReason.ACCOUNT_CREATION_ASSET, "Holding account must be for the sponsored asset")
    if target != derive_holding_account(owner, asset):
        raise _reject(
            RejectReason.ACCOUNT_CREATION_TARGET,
            "Account creation must target the recipient's canonical holding account",
        )
    return target, owner


def validate_instructions(instructions: Sequence[Instruction], asset: str) -> TransferIntent:
    """Check the create-then-transfer pair and extract the transfer it encodes.

    Raises MalformedTransaction with a distinct reason on the first violation.
    """
    check_instruction_count(instructions)
    create_ix, transfer_ix = instructions

    recipient_account, recipient = _validate_account_creation(create_ix, asset)

    if transfer_ix.program_id != TOKEN_PROGRAM_ID:
        raise _reject(RejectReason.TRANSFER_PROGRAM, "Second instruction must target the token program")
    if len(transfer_ix.data) != _TRANSFER_DATA_LEN or transfer_ix.data[0] != TRANSFER_CHECKED_DISCRIMINATOR:
        raise _reject(RejectReason.TRANSFER_KIND, "Second instruction must be a checked transfer")
    if len(transfer_ix.accounts) < _TRANSFER_MIN_ACCOUNTS:
        raise _reject(RejectReason.TRANSFER_ACCOUNTS, "Invalid checked-transfer instruction accounts")

    amount = int.from_bytes(transfer_ix.data[1:9], byteorder="little", signed=False)
    decimals = transfer_ix.data[9]

    source = transfer_ix.accounts[_TRANSFER_SOURCE].pubkey
    destination = transfer_ix.accounts[_TRANSFER_DESTINATION].pubkey
    sender = transfer_ix.accounts[_TRANSFER_OWNER].pubkey

    if transfer_ix.accounts[_TRANSFER_ASSET].pubkey != asset:
        raise _reject(RejectReason.TRANSFER_ASSET, "Transfer must move the sponsored asset")
    if source != derive_holding_account(sender, asset):
        raise _reject(RejectReason.TRANSFER_SOURCE, "Source does not match the sender's holding account")
    if destination != recipient_account:
        raise _reject(
            RejectReason.TRANSFER_DESTINATION,
            "Destination does not match the recipient's holding account",
        )

    return TransferIntent(
        sender=sender,
        recipient=recipient,
        amount=amount,
        recipient_account=recipient_account,
        decimals=decimals,
    )
