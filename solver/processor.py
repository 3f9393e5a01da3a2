"""Order status event routing.

The processor turns ``(order_id, status)`` notifications into work for the
auction reactor or the settlement engine. Notifications are hints only:
both handlers re-read the order before acting, so stale, duplicated or
reordered events end up as no-ops.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from .auction import AUCTION_STATUSES, AuctionReactor
from .order_ledger import OrderStatus
from .settlement import SettlementEngine
from .withdrawal_poller import WithdrawalPoller


class OrderProcessor:
    def __init__(
        self,
        reactor: AuctionReactor,
        settlement: SettlementEngine,
        poller: WithdrawalPoller,
        logger: Optional[logging.Logger] = None,
    ):
        self.reactor = reactor
        self.settlement = settlement
        self.poller = poller
        self.logger = logger or logging.getLogger(__name__)
        self._in_flight: Set[Tuple[str, str]] = set()
        self._tasks: Set[asyncio.Task] = set()

    def _route(self, status: OrderStatus) -> Optional[Tuple[str, Callable[[str], Awaitable[Any]]]]:
        if status in AUCTION_STATUSES:
            return "react", self.reactor.react
        if status is OrderStatus.WAIT_FOR_SOLVER_TX:
            return "settle", self.settlement.settle
        return None

    async def handle(self, order_id: str, status: Any) -> Optional[Any]:
        """Process one status notification. Never raises."""
        parsed = OrderStatus.parse(status)
        if parsed is None:
            self.logger.warning(f"Ignoring order {order_id} event with unknown status {status!r}")
            return None

        route = self._route(parsed)
        if route is None:
            self.logger.debug(f"Nothing to do for order {order_id} at status {parsed.name}")
            return None

        name, handler = route
        key = (order_id, name)
        if key in self._in_flight:
            self.logger.info(f"Order {order_id} is already being handled ({name}), skipping duplicate event")
            return None

        self._in_flight.add(key)
        try:
            return await handler(order_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Error processing order {order_id} ({name}, status {parsed.name}): {e}", exc_info=True)
            return None
        finally:
            self._in_flight.discard(key)

    def dispatch(self, order_id: str, status: Any) -> asyncio.Task:
        """Handle an event in the background so other orders are not held up."""
        task = asyncio.create_task(self.handle(order_id, status), name=f"order-{order_id}-{status}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def process(self, order_id: str, status: Any) -> None:
        """Indexer callback."""
        self.dispatch(order_id, status)

    @property
    def in_flight(self) -> Dict[str, int]:
        return {
            "handlers": len(self._tasks),
            "withdrawals": self.poller.active,
            "recordings": self.poller.recording,
        }

    async def stop(self, timeout: Optional[float] = 60.0) -> None:
        """Let in-flight handlers and payout recordings finish, then stop polls."""
        pending = [t for t in self._tasks if not t.done()]
        if pending:
            self.logger.info(f"Waiting for {len(pending)} in-flight order handler(s)...")
            _, still_pending = await asyncio.wait(pending, timeout=timeout)
            for task in still_pending:
                task.cancel()
            if still_pending:
                await asyncio.gather(*still_pending, return_exceptions=True)
                self.logger.warning(f"Cancelled {len(still_pending)} order handler(s) that did not finish in {timeout}s")
        await self.poller.stop(timeout=timeout)
