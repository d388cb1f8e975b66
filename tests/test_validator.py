from dataclasses import replace

import pytest

from conftest import ASSET
from errors import MalformedTransaction, RejectReason
from relayer.validator import validate_instructions
from transaction import (
    HOLDING_ACCOUNT_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    AccountMeta,
    create_holding_account_idempotent,
    derive_holding_account,
    transfer_checked,
)

RELAYER = "aa" * 48
SENDER = "bb" * 48
RECIPIENT = "cc" * 48
OTHER = "dd" * 48
OTHER_ASSET = "ee" * 32


def _instructions(amount=10):
    recipient_account = derive_holding_account(RECIPIENT, ASSET)
    sender_account = derive_holding_account(SENDER, ASSET)
    return [
        create_holding_account_idempotent(RELAYER, recipient_account, RECIPIENT, ASSET),
        transfer_checked(sender_account, ASSET, recipient_account, SENDER, amount, 6),
    ]


def _set_account(instruction, index, pubkey):
    instruction.accounts[index] = replace(instruction.accounts[index], pubkey=pubkey)


def test_valid_pair_yields_transfer_intent():
    intent = validate_instructions(_instructions(amount=2**64 - 1), ASSET)
    assert intent.sender == SENDER
    assert intent.recipient == RECIPIENT
    assert intent.amount == 2**64 - 1
    assert intent.decimals == 6
    assert intent.recipient_account == derive_holding_account(RECIPIENT, ASSET)


def _drop_last(ixs):
    ixs.pop()


def _append_third(ixs):
    ixs.append(transfer_checked("aa", ASSET, "bb", SENDER, 1, 6))


def _create_program(ixs):
    ixs[0].program_id = TOKEN_PROGRAM_ID


def _create_kind(ixs):
    ixs[0].data = bytes([0])


def _create_accounts(ixs):
    del ixs[0].accounts[3:]


def _create_asset(ixs):
    _set_account(ixs[0], 3, OTHER_ASSET)


def _create_target(ixs):
    _set_account(ixs[0], 1, derive_holding_account(OTHER, ASSET))


def _create_target_owner_mismatch(ixs):
    _set_account(ixs[0], 2, OTHER)


def _transfer_program(ixs):
    ixs[1].program_id = HOLDING_ACCOUNT_PROGRAM_ID


def _transfer_kind(ixs):
    ixs[1].data = bytes([3]) + ixs[1].data[1:]


def _transfer_short_data(ixs):
    ixs[1].data = ixs[1].data[:9]


def _transfer_accounts(ixs):
    del ixs[1].accounts[2:]


def _transfer_asset(ixs):
    _set_account(ixs[1], 1, OTHER_ASSET)


def _transfer_source(ixs):
    _set_account(ixs[1], 0, derive_holding_account(OTHER, ASSET))


def _transfer_destination(ixs):
    _set_account(ixs[1], 2, derive_holding_account(OTHER, ASSET))


def _transfer_destination_other_asset(ixs):
    _set_account(ixs[1], 2, derive_holding_account(RECIPIENT, OTHER_ASSET))


@pytest.mark.parametrize(
    "mutate, reason",
    [
        (_drop_last, RejectReason.INSTRUCTION_COUNT),
        (_append_third, RejectReason.INSTRUCTION_COUNT),
        (_create_program, RejectReason.ACCOUNT_CREATION_PROGRAM),
        (_create_kind, RejectReason.ACCOUNT_CREATION_KIND),
        (_create_accounts, RejectReason.ACCOUNT_CREATION_ACCOUNTS),
        (_create_asset, RejectReason.ACCOUNT_CREATION_ASSET),
        (_create_target, RejectReason.ACCOUNT_CREATION_TARGET),
        (_create_target_owner_mismatch, RejectReason.ACCOUNT_CREATION_TARGET),
        (_transfer_program, RejectReason.TRANSFER_PROGRAM),
        (_transfer_kind, RejectReason.TRANSFER_KIND),
        (_transfer_short_data, RejectReason.TRANSFER_KIND),
        (_transfer_accounts, RejectReason.TRANSFER_ACCOUNTS),
        (_transfer_asset, RejectReason.TRANSFER_ASSET),
        (_transfer_source, RejectReason.TRANSFER_SOURCE),
        (_transfer_destination, RejectReason.TRANSFER_DESTINATION),
        (_transfer_destination_other_asset, RejectReason.TRANSFER_DESTINATION),
    ],
)
def test_each_violation_has_its_own_reason(mutate, reason):
    instructions = _instructions()
    mutate(instructions)
    with pytest.raises(MalformedTransaction) as excinfo:
        validate_instructions(instructions, ASSET)
    assert excinfo.value.reason is reason


def test_asset_mismatch_rejected_even_when_consistent():
    """A pair built entirely for another asset is refused on the first asset check."""
    recipient_account = derive_holding_account(RECIPIENT, OTHER_ASSET)
    instructions = [
        create_holding_account_idempotent(RELAYER, recipient_account, RECIPIENT, OTHER_ASSET),
        transfer_checked(
            derive_holding_account(SENDER, OTHER_ASSET), OTHER_ASSET, recipient_account, SENDER, 1, 6
        ),
    ]
    with pytest.raises(MalformedTransaction) as excinfo:
        validate_instructions(instructions, ASSET)
    assert excinfo.value.reason is RejectReason.ACCOUNT_CREATION_ASSET


def test_extra_trailing_accounts_are_tolerated():
    instructions = _instructions()
    instructions[1].accounts.append(AccountMeta(OTHER))
    assert validate_instructions(instructions, ASSET).sender == SENDER
