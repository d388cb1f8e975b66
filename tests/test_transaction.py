import json

import pytest

from conftest import AMOUNT, ASSET, DECIMALS
from errors import MalformedTransaction, RejectReason
from transaction import (
    CREATE_IDEMPOTENT_DISCRIMINATOR,
    HOLDING_ACCOUNT_PROGRAM_ID,
    MAX_TRANSACTION_BYTES,
    MAX_U64,
    SYSTEM_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    TRANSFER_CHECKED_DISCRIMINATOR,
    Keypair,
    Transaction,
    create_holding_account_idempotent,
    derive_holding_account,
    transfer_checked,
    verify_signature,
)


def test_holding_account_is_deterministic_and_distinct(sender_keypair, recipient_keypair):
    a = derive_holding_account(sender_keypair.pubkey, ASSET)
    assert a == derive_holding_account(sender_keypair.pubkey, ASSET)
    assert a != derive_holding_account(recipient_keypair.pubkey, ASSET)
    assert a != derive_holding_account(sender_keypair.pubkey, "00" * 32)
    assert len(a) == 64


def test_transfer_checked_layout():
    ix = transfer_checked("src", ASSET, "dst", "owner", 258, 6)
    assert ix.program_id == TOKEN_PROGRAM_ID
    assert ix.data == bytes([TRANSFER_CHECKED_DISCRIMINATOR]) + (258).to_bytes(8, "little") + bytes([6])
    assert [m.pubkey for m in ix.accounts] == ["src", ASSET, "dst", "owner"]
    assert ix.accounts[3].is_signer
    assert ix.accounts[0].is_writable and ix.accounts[2].is_writable


@pytest.mark.parametrize("amount", [-1, MAX_U64 + 1])
def test_transfer_checked_rejects_out_of_range_amount(amount):
    with pytest.raises(ValueError):
        transfer_checked("src", ASSET, "dst", "owner", amount, 6)


def test_create_holding_account_layout():
    ix = create_holding_account_idempotent("payer", "holding", "owner", ASSET)
    assert ix.program_id == HOLDING_ACCOUNT_PROGRAM_ID
    assert ix.data == bytes([CREATE_IDEMPOTENT_DISCRIMINATOR])
    assert [m.pubkey for m in ix.accounts] == ["payer", "holding", "owner", ASSET, SYSTEM_PROGRAM_ID, TOKEN_PROGRAM_ID]


def test_required_signers_fee_payer_first(relayer_keypair, sender_keypair, recipient_keypair):
    tx = Transaction.create(
        fee_payer=relayer_keypair.pubkey,
        recent_marker="marker",
        instructions=[
            create_holding_account_idempotent(relayer_keypair.pubkey, "holding", recipient_keypair.pubkey, ASSET),
            transfer_checked("src", ASSET, "holding", sender_keypair.pubkey, 5, DECIMALS),
        ],
    )
    assert tx.required_signers() == [relayer_keypair.pubkey, sender_keypair.pubkey]
    assert [slot.pubkey for slot in tx.signatures] == tx.required_signers()
    assert tx.network_signature is None


def test_signed_transfer_decodes_and_verifies(signed_transfer, relayer_keypair, sender_keypair):
    tx = Transaction.from_bytes(signed_transfer)
    assert tx.to_bytes() == signed_transfer
    assert tx.signature_for(relayer_keypair.pubkey) is None
    sender_sig = tx.signature_for(sender_keypair.pubkey)
    assert verify_signature(sender_keypair.pubkey, tx.message_bytes(), sender_sig)
    assert tx.sender_signature_id(relayer_keypair.pubkey) == sender_sig.hex()
    assert not tx.is_fully_signed()


def test_verify_signature_never_raises(sender_keypair):
    assert verify_signature(sender_keypair.pubkey, b"msg", b"\x01" * 96) is False
    assert verify_signature("not-hex", b"msg", b"\x01" * 96) is False
    assert verify_signature(sender_keypair.pubkey, b"msg", None) is False


def test_sign_partial_requires_signer(ledger_transaction):
    tx = Transaction.from_bytes(ledger_transaction(1))
    stranger = Keypair.from_seed(b"relay-tests:stranger")
    with pytest.raises(ValueError):
        tx.sign_partial(stranger)


def test_keypair_hex_roundtrip(sender_keypair):
    restored = Keypair.from_hex(sender_keypair.privkey_hex())
    assert restored.pubkey == sender_keypair.pubkey
    assert "secret" not in repr(sender_keypair)


def _mutated(raw: bytes, mutate) -> bytes:
    payload = json.loads(raw)
    mutate(payload)
    return json.dumps(payload).encode("utf-8")


@pytest.mark.parametrize(
    "mutate",
    [
        lambda p: p.pop("message"),
        lambda p: p["message"].update(fee_payer="NOT VALID"),
        lambda p: p["message"].update(instructions="nope"),
        lambda p: p["message"].update(recent_marker=7),
        lambda p: p.update(signatures=[]),
        lambda p: p["signatures"][1].__setitem__(1, "abcd"),
        lambda p: p["signatures"][1].__setitem__(1, "zz" * 96),
        lambda p: p["message"]["instructions"][0].update(data="xyz"),
        lambda p: p["message"]["instructions"][0]["accounts"].append(["abc", "yes", False]),
    ],
)
def test_from_bytes_rejects_structural_defects(signed_transfer, mutate):
    with pytest.raises(MalformedTransaction) as excinfo:
        Transaction.from_bytes(_mutated(signed_transfer, mutate))
    assert excinfo.value.reason is RejectReason.MALFORMED_ENCODING


@pytest.mark.parametrize(
    "raw",
    [b"", b"not json", b"[]", b"\xff\xfe", b"{" + b" " * MAX_TRANSACTION_BYTES + b"}", "text"],
)
def test_from_bytes_rejects_garbage(raw):
    with pytest.raises(MalformedTransaction):
        Transaction.from_bytes(raw)


def test_amount_survives_encoding(signed_transfer):
    tx = Transaction.from_bytes(signed_transfer)
    data = tx.instructions[1].data
    assert int.from_bytes(data[1:9], "little") == AMOUNT
    assert data[9] == DECIMALS
