"""Auction participation: commit the solver to freshly created orders."""
from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Dict, Optional, Protocol

from .amounts import format_price_e18
from .exceptions import PaymentApiError
from .order_ledger import Order, OrderLedger, OrderStatus
from .payment_client import PaymentClient

AUCTION_STATUSES = frozenset({OrderStatus.USER_INITIATED, OrderStatus.AUCTION_IN_PROGRESS})


class ReactionOutcome(Enum):
    COMMITTED = "committed"
    STALE = "stale"
    EXPIRED = "expired"
    UNSUPPORTED_NETWORK = "unsupported_network"
    FAILED = "failed"


class PricePolicy(Protocol):
    def price_for(self, order: Order) -> int:
        """Return the price (scaled by 1e18) the solver commits to."""
        ...


class MaxPricePolicy:
    """Bid the highest price the user accepts."""

    def price_for(self, order: Order) -> int:
        return order.pricing_params.max_price_e18


PRICE_POLICIES: Dict[str, Callable[[], PricePolicy]] = {
    "max_price": MaxPricePolicy,
}


def build_price_policy(name: str) -> PricePolicy:
    try:
        return PRICE_POLICIES[name]()
    except KeyError:
        raise ValueError(f"Unknown price policy '{name}'") from None


class AuctionReactor:
    def __init__(
        self,
        ledger: OrderLedger,
        payment_client: PaymentClient,
        account_id: str,
        price_policy: Optional[PricePolicy] = None,
        deposit_addresses: Optional[Dict[str, str]] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.ledger = ledger
        self.payment_client = payment_client
        self.account_id = account_id
        self.price_policy = price_policy or MaxPricePolicy()
        self.deposit_addresses = dict(deposit_addresses or {})
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    async def funding_address(self, network_id: str) -> Optional[str]:
        """Solver deposit address on ``network_id``, or None if unsupported."""
        static = self.deposit_addresses.get(network_id)
        if static:
            return static
        addresses = await self.payment_client.get_deposit_addresses(self.account_id, network_id, limit=1)
        for entry in addresses:
            address = entry.get("address") if isinstance(entry, dict) else None
            if address:
                return str(address)
        return None

    async def react(self, order_id: str) -> ReactionOutcome:
        order = await self.ledger.get_order(order_id)

        if OrderStatus.parse(order.status) not in AUCTION_STATUSES:
            self.logger.info(f"Order {order_id} is no longer in auction (status={order.status}), skipping")
            return ReactionOutcome.STALE

        self.logger.info(f"Reacting on order {order_id}, status={order.status}, {order.describe()}")

        now = self.clock()
        if now >= order.auction_deadline:
            self.logger.info(f"Auction expired for order {order_id} (deadline {order.auction_deadline}, now {int(now)})")
            return ReactionOutcome.EXPIRED

        network_id = order.base_params.network_id
        try:
            address = await self.funding_address(network_id)
        except PaymentApiError as e:
            self.logger.error(f"Failed to look up deposit address on {network_id} for order {order_id}: {e}")
            return ReactionOutcome.FAILED

        if not address:
            self.logger.error(f"No deposit address found for network {network_id}, skipping order {order_id}")
            return ReactionOutcome.UNSUPPORTED_NETWORK

        price = self.price_policy.price_for(order)
        self.logger.info(f"Placing price for order {order_id}: {format_price_e18(price)} (deposit address {address})")

        try:
            await self.ledger.solver_react(order_id, address, price)
        except Exception as e:
            # Auction may have closed or another solver won; next event decides
            self.logger.error(f"Failed to commit to order {order_id}: {e}")
            return ReactionOutcome.FAILED

        self.logger.info(f"✅ Committed to order {order_id}")
        return ReactionOutcome.COMMITTED
