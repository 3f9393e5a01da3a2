"""Settlement of orders assigned to this solver.

Once the order engine reports WAIT_FOR_SOLVER_TX for an order the solver
won, the quote leg is paid out from the custodial account. The withdrawal
is created with the deterministic external id ``<order_id>-solver`` so a
repeated event, an operator replay or a restart between creation and
completion always lands on the same withdrawal instead of paying twice.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from . import alerts
from .alerts import AlertSink
from .amounts import compute_quote_amount, to_decimal_string
from .assets import AssetResolver
from .exceptions import AssetNotFound, PaymentApiError, WithdrawalAlreadyExists
from .order_ledger import OrderLedger, OrderStatus
from .payment_client import PaymentClient, WithdrawalJob
from .withdrawal_poller import WithdrawalPoller


class SettlementOutcome(Enum):
    STARTED = "started"
    ALREADY_POLLING = "already_polling"
    STALE = "stale"
    NOT_OUR_ORDER = "not_our_order"
    ASSET_NOT_FOUND = "asset_not_found"
    FAILED = "failed"


@dataclass
class SettlementResult:
    outcome: SettlementOutcome
    job: Optional[WithdrawalJob] = None
    quote_amount: Optional[int] = None


def external_id_for(order_id: str) -> str:
    """Idempotency key of the payout withdrawal for ``order_id``."""
    return f"{order_id}-solver"


class SettlementEngine:
    def __init__(
        self,
        ledger: OrderLedger,
        payment_client: PaymentClient,
        asset_resolver: AssetResolver,
        poller: WithdrawalPoller,
        account_id: str,
        solver_address: str,
        alert_sink: Optional[AlertSink] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.ledger = ledger
        self.payment_client = payment_client
        self.asset_resolver = asset_resolver
        self.poller = poller
        self.account_id = account_id
        self.solver_address = solver_address
        self.logger = logger or logging.getLogger(__name__)
        self.alerts = alert_sink or AlertSink(logger=self.logger)

    async def settle(self, order_id: str) -> SettlementResult:
        order = await self.ledger.get_order(order_id)
        self.logger.info(f"Fetched order {order_id}: status={order.status}, solver={order.solver}, {order.describe()}")

        if OrderStatus.parse(order.status) is not OrderStatus.WAIT_FOR_SOLVER_TX:
            self.logger.info(f"Order {order_id} is not waiting for a solver tx (status={order.status}), skipping")
            return SettlementResult(SettlementOutcome.STALE)

        if not order.is_solved_by(self.solver_address):
            self.logger.info(f"Order {order_id} is assigned to solver {order.solver}, not us, skipping")
            return SettlementResult(SettlementOutcome.NOT_OUR_ORDER)

        base, quote, pricing = order.base_params, order.quote_params, order.pricing_params
        try:
            base_asset = await self.asset_resolver.resolve(base.token_address, base.network_id)
            quote_asset = await self.asset_resolver.resolve(quote.token_address, quote.network_id)
        except AssetNotFound as e:
            self.logger.error(f"Cannot settle order {order_id}: {e}")
            return SettlementResult(SettlementOutcome.ASSET_NOT_FOUND)

        quote_amount = compute_quote_amount(
            base_amount=pricing.base_amount,
            price_e18=pricing.price_e18,
            base_decimals=base_asset.decimals,
            quote_decimals=quote_asset.decimals,
            quote_amount=pricing.quote_amount,
        )
        amount = to_decimal_string(quote_amount, quote_asset.decimals)

        job = await self._create_or_find_withdrawal(
            order_id, amount, quote_asset.asset_id, quote.user_address
        )
        if job is None:
            return SettlementResult(SettlementOutcome.FAILED, quote_amount=quote_amount)

        self.logger.info(
            f"Withdrawal {job.transaction_id} for order {order_id}: {amount} {quote_asset.asset_id} "
            f"to {quote.user_address} (status={job.status or 'new'})"
        )

        if self.poller.is_tracking(job.transaction_id):
            self.logger.info(f"Withdrawal {job.transaction_id} is already being followed for order {order_id}")
            return SettlementResult(SettlementOutcome.ALREADY_POLLING, job, quote_amount)

        self.poller.start(order_id, job)
        return SettlementResult(SettlementOutcome.STARTED, job, quote_amount)

    async def _create_or_find_withdrawal(
        self,
        order_id: str,
        amount: str,
        asset_id: str,
        to_address: str,
    ) -> Optional[WithdrawalJob]:
        external_id = external_id_for(order_id)
        try:
            return await self.payment_client.create_withdrawal(
                account_id=self.account_id,
                external_id=external_id,
                amount=amount,
                asset_id=asset_id,
                to_address=to_address,
            )
        except WithdrawalAlreadyExists:
            self.logger.info(f"Withdrawal {external_id} already exists, fetching it")
        except PaymentApiError as e:
            self.alerts.critical(
                alerts.WITHDRAWAL_CREATE_FAILED, order_id, f"failed to create withdrawal {external_id}: {e}"
            )
            return None

        try:
            existing = await self.payment_client.find_transactions(self.account_id, external_id, limit=1)
        except PaymentApiError as e:
            self.alerts.critical(
                alerts.WITHDRAWAL_NOT_FOUND, order_id, f"failed to fetch existing withdrawal {external_id}: {e}"
            )
            return None

        if not existing:
            self.alerts.critical(
                alerts.WITHDRAWAL_NOT_FOUND, order_id, f"withdrawal {external_id} reported as existing but not found"
            )
            return None
        return existing[0]
