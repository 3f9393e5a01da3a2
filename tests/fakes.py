"""Fake order ledger and payment API used across the test suite."""
from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from solver.exceptions import LedgerTransactionError, WithdrawalAlreadyExists
from solver.order_ledger import Order, OrderLeg, OrderStatus, PricingParams
from solver.payment_client import WithdrawalJob

SOLVER_ADDRESS = "0x1111111111111111111111111111111111111111"
OTHER_SOLVER = "0x2222222222222222222222222222222222222222"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NOW = 1_700_000_000


def make_order(
    order_id: str = "0xABC",
    status: int = OrderStatus.USER_INITIATED,
    solver: str = ZERO_ADDRESS,
    base_amount: int = 1_000_000,
    quote_amount: int = 0,
    price_e18: int = 2 * 10 ** 18,
    max_price_e18: int = 3 * 10 ** 18,
    auction_duration: int = 60,
    created_at: int = NOW - 10,
    base_network: str = "ETH",
    base_token: str = "0xbase",
    quote_network: str = "TRX",
    quote_token: str = "0xquote",
) -> Order:
    return Order(
        order_id=order_id,
        user="0x3333333333333333333333333333333333333333",
        solver=solver,
        status=int(status),
        base_params=OrderLeg(base_network, base_token, "0xuser-base"),
        quote_params=OrderLeg(quote_network, quote_token, "user-quote-address"),
        pricing_params=PricingParams(
            base_amount=base_amount,
            quote_amount=quote_amount,
            price_e18=price_e18,
            max_price_e18=max_price_e18,
            auction_duration=auction_duration,
        ),
        created_at=created_at,
    )


def job(
    transaction_id: str = "tx-1",
    status: str = "signing",
    tx_id: Optional[str] = None,
    terminated_at: Optional[str] = None,
    external_id: str = "0xABC-solver",
) -> WithdrawalJob:
    payload: Dict[str, Any] = {
        "transactionId": transaction_id,
        "externalId": external_id,
        "status": status,
    }
    if terminated_at:
        payload["terminatedAt"] = terminated_at
    if tx_id:
        payload["extra"] = {"blockchainDetails": [{"blockchainTxId": tx_id}]}
    return WithdrawalJob.from_api(payload)


class FakeLedger:
    def __init__(self, orders=None, solver_address: str = SOLVER_ADDRESS):
        self.orders: Dict[str, Order] = {o.order_id: o for o in (orders or [])}
        self.solver_address = solver_address
        self.react_calls: List[Tuple[str, str, int]] = []
        self.settlement_calls: List[Tuple[str, str]] = []
        self.react_error: Optional[Exception] = None
        self.settlement_failures = 0

    def put(self, order: Order) -> None:
        self.orders[order.order_id] = order

    async def get_order(self, order_id: str) -> Order:
        return self.orders[order_id]

    async def solver_react(self, order_id: str, address: str, price_e18: int):
        self.react_calls.append((order_id, address, price_e18))
        if self.react_error is not None:
            raise self.react_error
        return {"status": 1}

    async def set_solver_tx_on_quote_network(self, order_id: str, tx_id: str):
        self.settlement_calls.append((order_id, tx_id))
        if self.settlement_failures > 0:
            self.settlement_failures -= 1
            raise LedgerTransactionError("transaction reverted", "0xfeed")
        order = self.orders.get(order_id)
        if order is not None:
            self.orders[order_id] = replace(order, status=int(OrderStatus.WAIT_FOR_SOLVER_TX_CONFIRMATION))
        return {"status": 1}


class FakePaymentClient:
    def __init__(self):
        self.networks: Dict[str, Dict[str, Any]] = {}
        self.assets_by_id: Dict[str, Dict[str, Any]] = {}
        self.token_assets: Dict[Tuple[str, str], List[Dict[str, Any]]] = {}
        self.deposit_addresses: Dict[str, List[Dict[str, Any]]] = {}
        self.jobs: Dict[str, WithdrawalJob] = {}
        self.scripts: Dict[str, List[Any]] = {}
        self.create_calls: List[Dict[str, Any]] = []
        self.find_calls: List[str] = []
        self.poll_calls: List[str] = []
        self.lookup_calls = 0
        self.create_error: Optional[Exception] = None

    def add_token(self, network_id: str, contract: str, asset_id: str, decimals: int) -> None:
        self.token_assets.setdefault((network_id, contract), []).append(
            {"assetId": asset_id, "decimals": str(decimals)}
        )

    def add_native(self, network_id: str, asset_id: str, decimals: int) -> None:
        self.networks[network_id] = {"networkId": network_id, "nativeAssetId": asset_id}
        self.assets_by_id[asset_id] = {"assetId": asset_id, "decimals": decimals}

    def script(self, transaction_id: str, *responses: Any) -> None:
        """Responses returned by successive polls; the last one repeats."""
        self.scripts[transaction_id] = list(responses)

    async def get_network(self, network_id: str):
        self.lookup_calls += 1
        return self.networks.get(network_id, {})

    async def get_asset(self, asset_id: str):
        self.lookup_calls += 1
        return self.assets_by_id.get(asset_id, {})

    async def get_assets(self, network_id: str, contract_address: str, limit: int = 2):
        self.lookup_calls += 1
        return list(self.token_assets.get((network_id, contract_address), []))

    async def get_deposit_addresses(self, account_id: str, network_id: str, limit: int = 1):
        return list(self.deposit_addresses.get(network_id, []))

    async def create_withdrawal(self, account_id, external_id, amount, asset_id, to_address):
        self.create_calls.append({
            "account_id": account_id,
            "external_id": external_id,
            "amount": amount,
            "asset_id": asset_id,
            "to_address": to_address,
        })
        if self.create_error is not None:
            raise self.create_error
        if external_id in self.jobs:
            raise WithdrawalAlreadyExists("HTTP 409: already-exists", status=409)
        created = job(transaction_id=f"tx-{len(self.jobs) + 1}", status="new", external_id=external_id)
        self.jobs[external_id] = created
        return created

    async def find_transactions(self, account_id: str, external_id: str, limit: int = 1):
        self.find_calls.append(external_id)
        found = self.jobs.get(external_id)
        return [found] if found else []

    async def get_transaction(self, transaction_id: str):
        self.poll_calls.append(transaction_id)
        responses = self.scripts.get(transaction_id)
        if not responses:
            return job(transaction_id=transaction_id, status="signing")
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class SleepRecorder:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


