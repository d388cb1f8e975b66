#!/usr/bin/env python3
"""
Console wallet for the fee-sponsoring relay.

Features:
- Generate a new BLS keypair
- Register an identity with the relay (when registration is open)
- Send a sponsored stablecoin transfer and optionally wait for its outcome
- Query the lifecycle state of a submitted transfer
"""

import argparse
import base64
import functools
import socket
import sys
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import trio

import config
from errors import CommandError
from records import LifecycleState
from relayer.status import is_failed, is_fast_success, is_settled
from transaction import Keypair, build_transfer


def rpc_command(cmd_str, host, port, buffer_size=65536):
    """Send one command line and return the server's single-line response."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.connect((host, port))
        sock.sendall(cmd_str.encode('utf-8'))
        chunks = []
        while True:
            data = sock.recv(buffer_size)
            if not data:
                break
            chunks.append(data)
            if data.endswith(b"\n"):
                break
    return b"".join(chunks).decode('utf-8')


def _parse_privkey(sk_str: str) -> Keypair:
    """
    Parse a private key string in hex or decimal format.
    Accepts:
      - Hex string of exactly 64 hex digits, with or without '0x' prefix.
      - Decimal integer string.
    """
    s = sk_str.strip()
    if s.lower().startswith('0x') or any(c in s for c in 'abcdefABCDEF'):
        return Keypair.from_hex(s)
    n = int(s, 10)
    if n <= 0 or n >= 1 << (8 * 32):
        raise ValueError("Private key integer out of range for 32 bytes.")
    return Keypair.from_secret(n)


def _expect(response: str, prefix: str) -> str:
    response = response.strip()
    if not response.startswith(prefix):
        raise CommandError(response or f"Empty response, expected {prefix.strip()}")
    return response[len(prefix):].strip()


def parse_relayer_info(response: str) -> Tuple[str, str, int]:
    """Parse ``RELAYER: <pubkey> <asset> <decimals>``."""
    fields = _expect(response, "RELAYER:").split()
    if len(fields) != 3:
        raise CommandError(f"Malformed relayer info: {response.strip()}")
    return fields[0], fields[1], int(fields[2])


def parse_marker(response: str) -> Tuple[str, int]:
    """Parse ``MARKER: <marker> <expiry-height>``."""
    fields = _expect(response, "MARKER:").split()
    if len(fields) != 2:
        raise CommandError(f"Malformed marker response: {response.strip()}")
    return fields[0], int(fields[1])


def parse_status(response: str) -> Optional[LifecycleState]:
    response = response.strip()
    if response == "ERROR: Transaction not found":
        return None
    return LifecycleState(_expect(response, "STATUS:"))


@dataclass(frozen=True)
class Outcome:
    state: Optional[LifecycleState]
    timed_out: bool

    @property
    def succeeded(self) -> bool:
        return is_fast_success(self.state)

    @property
    def settled(self) -> bool:
        return is_settled(self.state)

    @property
    def failed(self) -> bool:
        return is_failed(self.state)


async def wait_for_outcome(
    query: Callable[[], Optional[LifecycleState]],
    *,
    timeout: float,
    interval: float = 0.5,
    wait_for_settlement: bool = False,
) -> Outcome:
    """
    Poll ``query`` until the transfer reaches an outcome or ``timeout`` elapses.

    Success is reported as soon as the transfer is observed confirmed, unless
    ``wait_for_settlement`` asks to hold out for finality. ``query`` is a
    blocking callable and runs in a worker thread.
    """
    state = None
    decided = False
    with trio.move_on_after(timeout):
        while True:
            state = await trio.to_thread.run_sync(query)
            if is_failed(state) or is_settled(state):
                decided = True
            elif is_fast_success(state) and not wait_for_settlement:
                decided = True
            if decided:
                break
            await trio.sleep(interval)
    return Outcome(state=state, timed_out=not decided)


def cmd_new(args):
    keypair = Keypair.generate()
    print(f"Private Key (hex): {keypair.privkey_hex()}")
    print(f"Public Key (hex): {keypair.pubkey}")


def get_address(args):
    if getattr(args, 'privkey', None):
        return _parse_privkey(args.privkey).pubkey
    return args.address


def cmd_register(args):
    addr = get_address(args)
    suffix = " noncompliant" if args.noncompliant else ""
    resp = rpc_command(f"register {addr}{suffix}\r\n", args.host, args.port)
    print(resp.strip())


def cmd_status(args):
    resp = rpc_command(f"status {args.id}\r\n", args.host, args.port)
    print(resp.strip())


def cmd_send(args):
    sender = _parse_privkey(args.privkey)
    relayer_pubkey, asset, decimals = parse_relayer_info(rpc_command("getrelayer\r\n", args.host, args.port))
    marker, expiry_height = parse_marker(rpc_command("getmarker\r\n", args.host, args.port))

    tx = build_transfer(
        sender,
        relayer_pubkey,
        args.to,
        args.amount,
        asset=asset,
        decimals=decimals,
        recent_marker=marker,
    )
    blob = base64.b64encode(tx.to_bytes()).decode('ascii')
    resp = rpc_command(f"submit {blob} {expiry_height}\r\n", args.host, args.port).strip()
    print(resp)
    if not resp.startswith("ACCEPTED:") or not args.wait:
        return

    record_id = _expect(resp, "ACCEPTED:")
    def query():
        return parse_status(rpc_command(f"status {record_id}\r\n", args.host, args.port))

    outcome = trio.run(
        functools.partial(
            wait_for_outcome,
            query,
            timeout=args.timeout,
            interval=args.interval,
            wait_for_settlement=args.settle,
        )
    )
    state = outcome.state.value if outcome.state else "UNKNOWN"
    if outcome.failed:
        print(f"Transfer failed ({state})")
    elif outcome.settled:
        print(f"Transfer settled ({state})")
    elif outcome.succeeded:
        print(f"Transfer succeeded ({state}); settlement pending")
    else:
        print(f"No outcome within {args.timeout}s (last state: {state})")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="wallet", description="Relay console wallet")
    parser.add_argument("--host", default=config.HOST, help="Relay host")
    parser.add_argument("--port", type=int, default=config.PORT, help="Relay port")
    sub = parser.add_subparsers(dest="command", required=True)

    p_new = sub.add_parser("new", help="Generate new BLS keypair")
    p_new.set_defaults(func=cmd_new)

    p_reg = sub.add_parser("register", help="Register an identity with the relay")
    gr = p_reg.add_mutually_exclusive_group(required=True)
    gr.add_argument("--privkey", "-k", help="Private key (hex or decimal)")
    gr.add_argument("--address", "-a", help="Public key hex")
    p_reg.add_argument("--noncompliant", action="store_true", help="Register with a failed compliance check")
    p_reg.set_defaults(func=cmd_register)

    p_status = sub.add_parser("status", help="Query a submitted transfer")
    p_status.add_argument("id", help="Transaction id returned by send")
    p_status.set_defaults(func=cmd_status)

    p_send = sub.add_parser("send", help="Send a sponsored transfer")
    p_send.add_argument("--privkey", "-k", required=True, help="Sender private key (hex or decimal)")
    p_send.add_argument("--to", "-t", required=True, help="Recipient public key hex")
    p_send.add_argument("--amount", "-m", required=True, type=int, help="Amount in base units")
    p_send.add_argument("--wait", "-w", action="store_true", help="Wait for the transfer outcome")
    p_send.add_argument("--settle", action="store_true", help="With --wait, wait for finality")
    p_send.add_argument("--timeout", type=float, default=config.CLIENT_WAIT_TIMEOUT, help="Wait timeout in seconds")
    p_send.add_argument("--interval", type=float, default=0.5, help="Polling interval in seconds")
    p_send.set_defaults(func=cmd_send)

    args = parser.parse_args(argv)
    try:
        args.func(args)
    except (CommandError, ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
