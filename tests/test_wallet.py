import functools

import pytest
import trio

import wallet
from errors import CommandError
from records import LifecycleState


def _query(states):
    """Replay ``states``, repeating the last one once exhausted."""
    remaining = list(states)

    def query():
        return remaining.pop(0) if len(remaining) > 1 else remaining[0]

    return query


def _wait(states, **kwargs):
    kwargs.setdefault("timeout", 2.0)
    kwargs.setdefault("interval", 0.01)
    return trio.run(functools.partial(wallet.wait_for_outcome, _query(states), **kwargs))


def test_fast_success_at_confirmed():
    outcome = _wait([LifecycleState.ACCEPTED, LifecycleState.SUBMITTED, LifecycleState.OBSERVED_CONFIRMED])
    assert outcome.succeeded
    assert not outcome.settled
    assert not outcome.timed_out
    assert outcome.state is LifecycleState.OBSERVED_CONFIRMED


def test_settlement_waits_for_finality():
    outcome = _wait(
        [LifecycleState.OBSERVED_CONFIRMED, LifecycleState.OBSERVED_CONFIRMED, LifecycleState.OBSERVED_FINALIZED],
        wait_for_settlement=True,
    )
    assert outcome.settled and outcome.succeeded
    assert not outcome.timed_out


def test_failure_is_an_outcome():
    outcome = _wait([LifecycleState.SUBMITTED, LifecycleState.FAILED])
    assert outcome.failed
    assert not outcome.succeeded
    assert not outcome.timed_out


def test_times_out_when_nothing_happens():
    outcome = _wait([LifecycleState.SUBMITTED], timeout=0.1)
    assert outcome.timed_out
    assert outcome.state is LifecycleState.SUBMITTED


def test_parse_responses():
    assert wallet.parse_relayer_info("RELAYER: aa bb 6\r\n") == ("aa", "bb", 6)
    assert wallet.parse_marker("MARKER: mm 42\r\n") == ("mm", 42)
    assert wallet.parse_status("STATUS: SUBMITTED\r\n") is LifecycleState.SUBMITTED
    assert wallet.parse_status("ERROR: Transaction not found\r\n") is None


@pytest.mark.parametrize(
    "parser, response",
    [
        (wallet.parse_relayer_info, "ERROR: Unknown command 'getrelayer'"),
        (wallet.parse_relayer_info, "RELAYER: only-two 6"),
        (wallet.parse_marker, ""),
        (wallet.parse_status, "ERROR: Internal error processing command."),
    ],
)
def test_parse_unexpected_responses(parser, response):
    with pytest.raises(CommandError):
        parser(response)


def test_parse_privkey_hex_and_decimal(sender_keypair):
    from_hex = wallet._parse_privkey(sender_keypair.privkey_hex())
    from_decimal = wallet._parse_privkey(str(sender_keypair.secret))
    assert from_hex.pubkey == from_decimal.pubkey == sender_keypair.pubkey


def test_new_prints_keypair(capsys):
    wallet.main(["new"])
    out = capsys.readouterr().out
    assert "Private Key (hex): " in out
    assert "Public Key (hex): " in out
