"""Background polling of custodial withdrawals until they hit the chain.

Each withdrawal gets its own asyncio task. A task polls the payment API
until the withdrawal is confirmed with a blockchain transaction id, is
terminated without one, or the attempt budget runs out. A confirmed
transaction id is then recorded on the order ledger with exponential
backoff.

State machine per withdrawal::

    PENDING -> CONFIRMED(tx_id) | TERMINATED(status) | TIMED_OUT
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from . import alerts
from .alerts import AlertSink
from .exceptions import RetryExhausted
from .order_ledger import OrderLedger
from .payment_client import PaymentClient, WithdrawalJob
from .retry import exp_retry


class PollState(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    TERMINATED = "terminated"
    TIMED_OUT = "timed_out"


@dataclass
class PollResult:
    order_id: str
    transaction_id: str
    state: PollState
    attempts: int
    blockchain_tx_id: Optional[str] = None
    job_status: Optional[str] = None
    recorded: bool = False


class WithdrawalPoller:
    def __init__(
        self,
        payment_client: PaymentClient,
        ledger: OrderLedger,
        alert_sink: Optional[AlertSink] = None,
        interval_seconds: float = 2.0,
        max_attempts: int = 60,
        require_completed_status: bool = True,
        ledger_max_retries: int = 5,
        ledger_retry_delay: float = 5.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.payment_client = payment_client
        self.ledger = ledger
        self.logger = logger or logging.getLogger(__name__)
        self.alerts = alert_sink or AlertSink(logger=self.logger)
        self.interval_seconds = max(0.0, float(interval_seconds))
        self.max_attempts = max(1, int(max_attempts))
        self.require_completed_status = require_completed_status
        self.ledger_max_retries = ledger_max_retries
        self.ledger_retry_delay = ledger_retry_delay
        self._sleep = sleep
        self._tasks: Dict[str, asyncio.Task] = {}
        # Withdrawals whose payout tx is being written to the ledger
        self._recording: Set[str] = set()

    @property
    def active(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    def is_tracking(self, transaction_id: str) -> bool:
        task = self._tasks.get(transaction_id)
        return task is not None and not task.done()

    def start(self, order_id: str, job: WithdrawalJob) -> asyncio.Task:
        """Start polling ``job`` in the background and return its task.

        A withdrawal that is already being polled keeps its existing task.
        """
        existing = self._tasks.get(job.transaction_id)
        if existing is not None and not existing.done():
            self.logger.info(f"Withdrawal {job.transaction_id} for order {order_id} is already being polled")
            return existing

        task = asyncio.create_task(
            self.await_completion(order_id, job),
            name=f"withdrawal-{order_id}",
        )
        self._tasks[job.transaction_id] = task
        task.add_done_callback(lambda t, tx=job.transaction_id: self._forget(tx, t))
        return task

    def _forget(self, transaction_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(transaction_id) is task:
            del self._tasks[transaction_id]

    def _accepted_tx_id(self, job: WithdrawalJob) -> Optional[str]:
        if not job.blockchain_tx_id:
            return None
        if self.require_completed_status and not job.is_completed:
            return None
        return job.blockchain_tx_id

    async def await_completion(self, order_id: str, job: WithdrawalJob) -> PollResult:
        """Poll ``job`` to a terminal state and record a confirmed payout."""
        try:
            result = await self._poll(order_id, job)
            if result.state is PollState.CONFIRMED:
                result.recorded = await self._record_guarded(order_id, job.transaction_id, result.blockchain_tx_id)
            return result
        except asyncio.CancelledError:
            self.logger.info(f"Stopped polling withdrawal {job.transaction_id} for order {order_id}")
            raise
        except Exception as e:
            self.logger.error(f"Unexpected error following withdrawal for order {order_id}: {e}", exc_info=True)
            return PollResult(order_id, job.transaction_id, PollState.PENDING, 0)

    async def _poll(self, order_id: str, job: WithdrawalJob) -> PollResult:
        transaction_id = job.transaction_id
        last_status: Optional[str] = job.status or None

        for attempt in range(1, self.max_attempts + 1):
            try:
                current = await self.payment_client.get_transaction(transaction_id)
            except Exception as e:
                self.logger.warning(
                    f"Error polling transaction {transaction_id} for order {order_id} "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )
            else:
                last_status = current.status
                tx_id = self._accepted_tx_id(current)
                if tx_id:
                    self.logger.info(
                        f"Withdrawal {transaction_id} for order {order_id} confirmed on-chain: {tx_id} "
                        f"after {attempt} poll(s)"
                    )
                    return PollResult(order_id, transaction_id, PollState.CONFIRMED, attempt, tx_id, current.status)

                if current.is_terminated:
                    self.alerts.critical(
                        alerts.WITHDRAWAL_TERMINATED,
                        order_id,
                        f"withdrawal {transaction_id} terminated with status '{current.status}' "
                        f"(blockchain tx: {current.blockchain_tx_id or 'none'})",
                    )
                    return PollResult(order_id, transaction_id, PollState.TERMINATED, attempt, None, current.status)

                self.logger.debug(
                    f"Withdrawal {transaction_id} for order {order_id} still pending "
                    f"(status={current.status}, attempt {attempt}/{self.max_attempts})"
                )

            if attempt < self.max_attempts:
                await self._sleep(self.interval_seconds)

        self.alerts.critical(
            alerts.WITHDRAWAL_TIMEOUT,
            order_id,
            f"timeout waiting for blockchain tx of withdrawal {transaction_id} "
            f"after {self.max_attempts} polls (last status '{last_status}')",
        )
        return PollResult(order_id, transaction_id, PollState.TIMED_OUT, self.max_attempts, None, last_status)

    async def _record_guarded(self, order_id: str, transaction_id: str, tx_id: Optional[str]) -> bool:
        self._recording.add(transaction_id)
        try:
            return await self._record(order_id, tx_id)
        except asyncio.CancelledError:
            self.alerts.critical(
                alerts.SETTLEMENT_RECORD_FAILED,
                order_id,
                f"payout {tx_id} sent but recording it on-chain was cancelled",
            )
            raise
        finally:
            self._recording.discard(transaction_id)

    async def _record(self, order_id: str, tx_id: Optional[str]) -> bool:
        if not tx_id:
            return False
        try:
            await exp_retry(
                lambda: self.ledger.set_solver_tx_on_quote_network(order_id, tx_id),
                max_retries=self.ledger_max_retries,
                base_delay=self.ledger_retry_delay,
                description=f"setSolverTxOnQuoteNetwork({order_id})",
                logger=self.logger,
                sleep=self._sleep,
            )
        except RetryExhausted as e:
            self.alerts.critical(
                alerts.SETTLEMENT_RECORD_FAILED,
                order_id,
                f"payout {tx_id} sent but could not be recorded on-chain: {e.last_error}",
            )
            return False

        self.logger.info(f"✅ Recorded payout {tx_id} for order {order_id}")
        self.alerts.record_outcome("settled")
        return True

    async def wait(self, timeout: Optional[float] = None) -> None:
        """Wait for all running polls to finish."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        if not tasks:
            return
        await asyncio.wait(tasks, timeout=timeout)

    @property
    def recording(self) -> int:
        return len(self._recording)

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel running polls and let payout recordings finish.

        A cancelled poll is resumed by re-delivering the order's
        WAIT_FOR_SOLVER_TX event, which finds the same withdrawal again.
        A recording still running after ``timeout`` is cancelled and raises
        a critical alert.
        """
        running = {tx: t for tx, t in self._tasks.items() if not t.done()}
        recording = [t for tx, t in running.items() if tx in self._recording]
        polling = [t for tx, t in running.items() if tx not in self._recording]

        for task in polling:
            task.cancel()
        if recording:
            self.logger.info(f"Waiting for {len(recording)} payout recording(s) to finish...")
            _, still_pending = await asyncio.wait(recording, timeout=timeout)
            for task in still_pending:
                task.cancel()
        if running:
            await asyncio.gather(*running.values(), return_exceptions=True)
            self.logger.info(f"Stopped {len(running)} withdrawal poll(s) ({len(polling)} cancelled while polling)")
        self._tasks.clear()
