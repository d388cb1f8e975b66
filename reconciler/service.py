from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

import trio

from errors import AlreadyProcessedError, LedgerError
from ledger.client import ConfirmationStatus, LedgerClient
from records import LifecycleState, RecordStore, TransferRecord
from relay_logging import short_id
from transaction import Transaction

logger = logging.getLogger(__name__)


class _NoAnswer:
    """Result of a ledger call that timed out or failed: neither yes nor no."""

    def __repr__(self) -> str:
        return "NO_ANSWER"


NO_ANSWER = _NoAnswer()

_STATUS_TO_STATE = {
    ConfirmationStatus.PROCESSED: LifecycleState.OBSERVED_PROCESSED,
    ConfirmationStatus.CONFIRMED: LifecycleState.OBSERVED_CONFIRMED,
    ConfirmationStatus.FINALIZED: LifecycleState.OBSERVED_FINALIZED,
}


@dataclass(frozen=True)
class SettlementNotice:
    id: str
    sender: str
    recipient: str
    amount: int
    state: LifecycleState


def log_receipt(notice: SettlementNotice) -> None:
    logger.info(
        "Receipt: transfer %s settled (%s -> %s, amount=%s, state=%s)",
        short_id(notice.id),
        short_id(notice.sender),
        short_id(notice.recipient),
        notice.amount,
        notice.state.value,
    )


@dataclass
class CycleStats:
    examined: int = 0
    advanced: int = 0
    broadcast: int = 0
    failed: int = 0
    unanswered: int = 0
    errors: int = 0


class Reconciler:
    """
    Drives every non-terminal transfer towards a definitive outcome by
    polling the ledger once per cycle.

    A transfer is only marked FAILED after its recency marker expired, the
    finalized height passed its expiry height, and neither a history search
    nor a full-record lookup can find it. A timed-out or failed ledger call
    never changes state.
    """

    def __init__(
        self,
        store: RecordStore,
        ledger: LedgerClient,
        *,
        interval: float = 1.0,
        call_timeout: float = 5.0,
        max_concurrency: int = 8,
        notifier: Optional[Callable[[SettlementNotice], Any]] = log_receipt,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._interval = max(0.01, float(interval))
        self._call_timeout = float(call_timeout)
        self._max_concurrency = max(1, int(max_concurrency))
        self._notifier = notifier
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # --- cycle ---

    async def run_cycle(self) -> CycleStats:
        """Process every non-terminal record once. Overlapping calls are skipped."""
        stats = CycleStats()
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Reconciliation cycle already in progress; skipping.")
            return stats
        try:
            records = self._store.list_non_terminal()
            limiter = trio.CapacityLimiter(self._max_concurrency)
            async with trio.open_nursery() as nursery:
                for record in records:
                    nursery.start_soon(self._process_guarded, record, stats, limiter)
        finally:
            self._cycle_lock.release()
        return stats

    async def _process_guarded(self, record: TransferRecord, stats: CycleStats, limiter: trio.CapacityLimiter) -> None:
        async with limiter:
            stats.examined += 1
            try:
                await self._process(record, stats)
            except Exception:
                stats.errors += 1
                logger.exception("Error processing transfer %s; retrying next cycle", short_id(record.id))

    async def _ask(self, description: str, call: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Run one ledger call under the per-call timeout; NO_ANSWER on timeout or failure."""
        with trio.move_on_after(self._call_timeout) as scope:
            try:
                return await call(*args, **kwargs)
            except AlreadyProcessedError:
                raise
            except (LedgerError, OSError) as exc:
                logger.warning("Ledger %s failed: %s", description, exc)
                return NO_ANSWER
        if scope.cancelled_caught:
            logger.warning("Ledger %s timed out after %ss", description, self._call_timeout)
        return NO_ANSWER

    async def _process(self, record: TransferRecord, stats: CycleStats) -> None:
        tx = Transaction.from_bytes(record.encoded_transaction)
        signature = tx.network_signature
        if signature is None:
            logger.error("Transfer %s has no network signature", short_id(record.id))
            stats.errors += 1
            return

        status = await self._ask("status query", self._ledger.signature_status, signature)
        if status is NO_ANSWER:
            stats.unanswered += 1
        elif status is None:
            await self._handle_unknown(record, tx, signature, stats)
        else:
            self._apply_status(record, status, stats)

    async def _handle_unknown(self, record: TransferRecord, tx: Transaction, signature: str, stats: CycleStats) -> None:
        valid = await self._ask("recency marker check", self._ledger.is_recency_marker_valid, tx.recent_marker)
        if valid is NO_ANSWER:
            stats.unanswered += 1
        elif valid:
            await self._submit(record, signature, stats)
        else:
            await self._determine_failure(record, signature, stats)

    async def _submit(self, record: TransferRecord, signature: str, stats: CycleStats) -> None:
        logger.info("Submitting transfer %s (network signature %s)", short_id(record.id), short_id(signature))
        try:
            result = await self._ask("broadcast", self._ledger.broadcast, record.encoded_transaction)
        except AlreadyProcessedError:
            # Landed between the status query and this broadcast.
            logger.info("Transfer %s already processed by the ledger", short_id(record.id))
            result = signature
        if result is NO_ANSWER:
            stats.unanswered += 1
            return
        stats.broadcast += 1
        if record.state is LifecycleState.ACCEPTED and self._transition(record, LifecycleState.SUBMITTED):
            stats.advanced += 1

    async def _determine_failure(self, record: TransferRecord, signature: str, stats: CycleStats) -> None:
        height = await self._ask("finalized height query", self._ledger.finalized_height)
        if height is NO_ANSWER:
            stats.unanswered += 1
            return
        if height < record.expiry_height:
            logger.debug(
                "Waiting for finalized height to reach expiry for %s (current: %s, expiry: %s)",
                short_id(record.id),
                height,
                record.expiry_height,
            )
            return

        status = await self._ask(
            "history search", self._ledger.signature_status, signature, search_history=True
        )
        if status is NO_ANSWER:
            stats.unanswered += 1
            return
        if status is not None:
            # Landed earlier than assumed. Record what the history reports
            # (monotonic, never FAILED) instead of leaving the record to
            # re-enter failure determination every cycle.
            logger.info("Transfer %s found in ledger history", short_id(record.id))
            self._apply_status(record, status, stats)
            return

        full_record = await self._ask("full record lookup", self._ledger.get_full_record, signature)
        if full_record is NO_ANSWER:
            stats.unanswered += 1
            return
        if full_record is not None:
            logger.info("Transfer %s found via full record lookup", short_id(record.id))
            return

        if self._transition(record, LifecycleState.FAILED):
            stats.failed += 1
            logger.warning("Transfer %s FAILED (recency marker expired, not found on ledger)", short_id(record.id))

    def _apply_status(self, record: TransferRecord, status: ConfirmationStatus, stats: CycleStats) -> None:
        target = _STATUS_TO_STATE[ConfirmationStatus(status)]
        if not self._transition(record, target):
            return
        stats.advanced += 1
        if target is LifecycleState.OBSERVED_FINALIZED:
            self._notify(record, target)

    def _transition(self, record: TransferRecord, target: LifecycleState) -> bool:
        applied = self._store.update_state(record.id, target)
        if applied:
            logger.info("Transfer %s status: %s -> %s", short_id(record.id), record.state.value, target.value)
        return applied

    def _notify(self, record: TransferRecord, state: LifecycleState) -> None:
        if self._notifier is None:
            return
        notice = SettlementNotice(
            id=record.id,
            sender=record.sender,
            recipient=record.recipient,
            amount=record.amount,
            state=state,
        )
        try:
            self._notifier(notice)
        except Exception:
            logger.exception("Settlement notifier failed for %s", short_id(record.id))

    # --- lifetime ---

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    async def run(self, *, task_status=trio.TASK_STATUS_IGNORED) -> None:
        """Run cycles until stop() is called; the in-flight cycle always completes."""
        logger.info(
            "Reconciliation loop active. Interval=%ss, call timeout=%ss",
            self._interval,
            self._call_timeout,
        )
        task_status.started()
        while not self._stop_event.is_set():
            try:
                stats = await self.run_cycle()
            except Exception:
                logger.exception("Reconciliation cycle failed")
            else:
                if stats.examined:
                    logger.debug("Reconciliation cycle finished: %s", stats)

            # Sleep in short bursts to allow quick shutdown
            deadline = trio.current_time() + self._interval
            while not self._stop_event.is_set():
                remaining = deadline - trio.current_time()
                if remaining <= 0:
                    break
                await trio.sleep(min(remaining, 0.1))
        logger.info("Reconciliation loop stopped.")

    def start(self, companions: Sequence[Callable[[], Awaitable[Any]]] = ()) -> None:
        """Run the loop in a dedicated trio thread, alongside optional companion tasks."""
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Reconciler already running.")
            return
        self._stop_event.clear()

        def _runner() -> None:
            async def main() -> None:
                async with trio.open_nursery() as nursery:
                    for companion in companions:
                        nursery.start_soon(companion)
                    await self.run()
                    nursery.cancel_scope.cancel()

            trio.run(main)

        self._thread = threading.Thread(target=_runner, name="ReconcilerLoop", daemon=True)
        self._thread.start()
        logger.info("Reconciler started.")

    def stop(self, timeout: float = 5.0) -> bool:
        """Request shutdown and join the background thread.

        Returns False while a cycle is still in flight after ``timeout``; the
        store must stay open until the thread has exited.
        """
        self._stop_event.set()
        if self._thread is None or not self._thread.is_alive():
            return True
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("Reconciler thread did not stop within %ss; cycle still in flight.", timeout)
            return False
        logger.info("Reconciler stopped.")
        return True
