"""Order status event source.

Polls the order engine for ``OrderStatusChanged`` logs and hands every
``(order_id, status)`` pair to the registered processors in chain order.
The next block to scan is persisted, so a restarted solver resumes from
where it stopped; on first start it rescans ``start_block_offset`` blocks.
Delivery is at-least-once.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, List, Optional

from .state_store import StateStore

EventProcessor = Callable[[str, int], Awaitable[Any]]


class OrderIndexer:
    def __init__(
        self,
        web3: Any,
        contract: Any,
        state_store: StateStore,
        polling_interval: float = 1.5,
        start_block_offset: int = 1800,
        max_block_range: int = 2000,
        logger: Optional[logging.Logger] = None,
    ):
        self.web3 = web3
        self.contract = contract
        self.state_store = state_store
        self.polling_interval = float(polling_interval)
        self.start_block_offset = max(0, int(start_block_offset))
        self.max_block_range = max(1, int(max_block_range))
        self.logger = logger or logging.getLogger(__name__)
        self._processors: List[EventProcessor] = []
        self._stop_event = asyncio.Event()
        self._latest_block: Optional[int] = None

    def add_processor(self, processor: EventProcessor) -> None:
        self._processors.append(processor)

    async def _run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    async def _deliver(self, order_id: str, status: int) -> None:
        for processor in self._processors:
            try:
                await processor(order_id, status)
            except Exception as e:
                self.logger.error(f"Processor failed on order {order_id} status {status}: {e}", exc_info=True)

    async def poll_once(self) -> int:
        """Scan the next block range and deliver its events. Returns the event count."""
        latest = int(await self._run(lambda: self.web3.eth.block_number))
        self._latest_block = latest

        from_block = self.state_store.get_next_block()
        if from_block is None:
            from_block = max(0, latest - self.start_block_offset)
            self.logger.info(f"No saved position, starting from block {from_block} (latest {latest})")
        if from_block > latest:
            return 0

        to_block = min(latest, from_block + self.max_block_range - 1)
        logs = await self._run(
            self.contract.events.OrderStatusChanged.get_logs,
            from_block=from_block,
            to_block=to_block,
        )
        logs = sorted(logs, key=lambda log: (log["blockNumber"], log["logIndex"]))

        for log in logs:
            args = log["args"]
            order_id, status = str(args["orderId"]), int(args["status"])
            self.logger.debug(f"Order {order_id} -> status {status} (block {log['blockNumber']})")
            await self._deliver(order_id, status)

        self.state_store.set_next_block(to_block + 1)
        if logs:
            self.logger.info(f"Processed {len(logs)} order event(s) in blocks {from_block}-{to_block}")
        return len(logs)

    @property
    def caught_up(self) -> bool:
        next_block = self.state_store.get_next_block()
        if next_block is None or self._latest_block is None:
            return True
        return next_block > self._latest_block

    async def start(self) -> None:
        """Poll until stop() is called."""
        self.logger.info(f"Order indexer started (polling every {self.polling_interval}s)")

        while not self._stop_event.is_set():
            try:
                await self.poll_once()
                caught_up = self.caught_up
            except Exception as e:
                self.logger.error(f"Error polling order events: {e}")
                caught_up = True
            if caught_up:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.polling_interval)
                except asyncio.TimeoutError:
                    pass

        self.logger.info("Order indexer stopped")

    async def stop(self) -> None:
        self._stop_event.set()
