"""Order engine contract client.

This module handles:
1. Reading orders from the order engine contract
2. Committing the solver to an auction (``solverReact``)
3. Recording the payout transaction id (``setSolverTxOnQuoteNetwork``)

web3 is synchronous, so every contract call runs in the default executor
and the event loop keeps serving other orders while a call is in flight.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import threading
import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from eth_account import Account
from eth_utils import to_checksum_address
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from .exceptions import LedgerError, LedgerTransactionError

DEFAULT_GAS_LIMIT = 500_000


class OrderStatus(IntEnum):
    """Order lifecycle as stored by the order engine."""
    NOT_EXIST = 0
    USER_INITIATED = 1
    AUCTION_IN_PROGRESS = 2
    MATCHED = 3
    WAIT_FOR_USER_TX_CONFIRMATION = 4
    WAIT_FOR_SOLVER_TX = 5
    WAIT_FOR_SOLVER_TX_CONFIRMATION = 6
    SETTLED = 7
    LIQUIDATED = 8
    CANCELLED = 9

    @classmethod
    def parse(cls, value: Any) -> Optional["OrderStatus"]:
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return None


_ORDER_PARAMS_COMPONENTS = [
    {"name": "networkId", "type": "string"},
    {"name": "tokenAddress", "type": "string"},
    {"name": "userAddress", "type": "string"},
    {"name": "solverAddress", "type": "string"},
]

ORDER_ENGINE_ABI = [
    {
        "inputs": [{"name": "orderId", "type": "string"}],
        "name": "getOrder",
        "outputs": [
            {
                "components": [
                    {"name": "user", "type": "address"},
                    {"name": "solver", "type": "address"},
                    {"name": "status", "type": "uint8"},
                    {"components": _ORDER_PARAMS_COMPONENTS, "name": "baseParams", "type": "tuple"},
                    {"components": _ORDER_PARAMS_COMPONENTS, "name": "quoteParams", "type": "tuple"},
                    {
                        "components": [
                            {"name": "baseAmount", "type": "uint256"},
                            {"name": "quoteAmount", "type": "uint256"},
                            {"name": "price_e18", "type": "uint256"},
                            {"name": "maxPrice_e18", "type": "uint256"},
                            {"name": "auctionDuration", "type": "uint64"},
                        ],
                        "name": "pricingParams",
                        "type": "tuple",
                    },
                    {"name": "createdAt", "type": "uint64"},
                ],
                "name": "",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "orderId", "type": "string"},
            {"name": "solverAddress", "type": "string"},
            {"name": "price_e18", "type": "uint256"},
        ],
        "name": "solverReact",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "orderId", "type": "string"},
            {"name": "txHash", "type": "string"},
        ],
        "name": "setSolverTxOnQuoteNetwork",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": False, "name": "orderId", "type": "string"},
            {"indexed": False, "name": "status", "type": "uint8"},
        ],
        "name": "OrderStatusChanged",
        "type": "event",
    },
]


def _field(raw: Any, name: str, index: int) -> Any:
    if isinstance(raw, Mapping):
        return raw[name]
    return raw[index]


@dataclass(frozen=True)
class OrderLeg:
    network_id: str
    token_address: str
    user_address: str
    solver_address: str = ""

    @classmethod
    def from_contract(cls, raw: Any) -> "OrderLeg":
        return cls(
            network_id=str(_field(raw, "networkId", 0)),
            token_address=str(_field(raw, "tokenAddress", 1)),
            user_address=str(_field(raw, "userAddress", 2)),
            solver_address=str(_field(raw, "solverAddress", 3)),
        )


@dataclass(frozen=True)
class PricingParams:
    base_amount: int
    quote_amount: int
    price_e18: int
    max_price_e18: int
    auction_duration: int

    @classmethod
    def from_contract(cls, raw: Any) -> "PricingParams":
        return cls(
            base_amount=int(_field(raw, "baseAmount", 0)),
            quote_amount=int(_field(raw, "quoteAmount", 1)),
            price_e18=int(_field(raw, "price_e18", 2)),
            max_price_e18=int(_field(raw, "maxPrice_e18", 3)),
            auction_duration=int(_field(raw, "auctionDuration", 4)),
        )


@dataclass(frozen=True)
class Order:
    order_id: str
    user: str
    solver: str
    status: int
    base_params: OrderLeg
    quote_params: OrderLeg
    pricing_params: PricingParams
    created_at: int

    @classmethod
    def from_contract(cls, order_id: str, raw: Sequence[Any]) -> "Order":
        return cls(
            order_id=order_id,
            user=str(_field(raw, "user", 0)),
            solver=str(_field(raw, "solver", 1)),
            status=int(_field(raw, "status", 2)),
            base_params=OrderLeg.from_contract(_field(raw, "baseParams", 3)),
            quote_params=OrderLeg.from_contract(_field(raw, "quoteParams", 4)),
            pricing_params=PricingParams.from_contract(_field(raw, "pricingParams", 5)),
            created_at=int(_field(raw, "createdAt", 6)),
        )

    @property
    def auction_deadline(self) -> int:
        return self.created_at + self.pricing_params.auction_duration

    def is_solved_by(self, address: str) -> bool:
        return bool(self.solver) and self.solver.lower() == (address or "").lower()

    def describe(self) -> str:
        base, quote, pricing = self.base_params, self.quote_params, self.pricing_params
        return (
            f"base={base.network_id}:{base.token_address} amount={pricing.base_amount}, "
            f"quote={quote.network_id}:{quote.token_address} amount={pricing.quote_amount}, "
            f"price_e18={pricing.price_e18}, max_price_e18={pricing.max_price_e18}"
        )


class OrderLedger:
    """
    Reads and writes orders on the order engine contract.

    Writes are signed locally with the solver key, sent with a fixed gas
    limit, and awaited until a receipt arrives. A reverted transaction
    raises LedgerTransactionError.
    """

    def __init__(
        self,
        web3: "Web3",
        order_engine_address: str,
        private_key: str,
        gas_limit: int = DEFAULT_GAS_LIMIT,
        receipt_timeout: int = 120,
        logger: Optional[logging.Logger] = None,
    ):
        self.web3 = web3
        self.order_engine_address = to_checksum_address(order_engine_address)
        self.gas_limit = int(gas_limit)
        self.receipt_timeout = receipt_timeout
        self.logger = logger or logging.getLogger(__name__)

        self.contract = web3.eth.contract(address=self.order_engine_address, abi=ORDER_ENGINE_ABI)
        self.account = Account.from_key(private_key)
        self._private_key = private_key
        # One nonce sequence for the signing key
        self._send_lock = threading.Lock()

        self.logger.info(f"Solver account: {self.account.address}")

    @property
    def solver_address(self) -> str:
        return self.account.address

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    def _get_order_sync(self, order_id: str) -> Order:
        try:
            raw = self.contract.functions.getOrder(order_id).call()
        except ContractLogicError as e:
            raise LedgerError(f"getOrder({order_id}) reverted: {e}") from e
        return Order.from_contract(order_id, raw)

    def _send_sync(self, description: str, contract_fn: Any) -> Dict[str, Any]:
        with self._send_lock:
            tx = contract_fn.build_transaction({
                "from": self.account.address,
                "gas": self.gas_limit,
                "nonce": self.web3.eth.get_transaction_count(self.account.address, "pending"),
                "chainId": self.web3.eth.chain_id,
            })
            signed_tx = self.web3.eth.account.sign_transaction(tx, self._private_key)
            tx_hash = self.web3.eth.send_raw_transaction(signed_tx.raw_transaction)

        tx_hash_hex = Web3.to_hex(tx_hash)
        self.logger.info(f"{description}: transaction submitted: {tx_hash_hex}")

        started = time.time()
        try:
            receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as e:
            raise LedgerTransactionError(f"{description}: no receipt after {self.receipt_timeout}s", tx_hash_hex) from e

        if receipt["status"] != 1:
            raise LedgerTransactionError(f"{description}: transaction reverted", tx_hash_hex)

        self.logger.info(
            f"{description}: confirmed in block {receipt['blockNumber']} "
            f"(gas {receipt['gasUsed']}, {time.time() - started:.1f}s)"
        )
        return dict(receipt)

    def _solver_react_sync(self, order_id: str, solver_address: str, price_e18: int) -> Dict[str, Any]:
        fn = self.contract.functions.solverReact(order_id, solver_address, int(price_e18))
        return self._send_sync(f"solverReact({order_id})", fn)

    def _set_solver_tx_sync(self, order_id: str, tx_id: str) -> Dict[str, Any]:
        fn = self.contract.functions.setSolverTxOnQuoteNetwork(order_id, tx_id)
        return self._send_sync(f"setSolverTxOnQuoteNetwork({order_id})", fn)

    async def get_order(self, order_id: str) -> Order:
        return await self._run(self._get_order_sync, order_id)

    async def solver_react(self, order_id: str, solver_address: str, price_e18: int) -> Dict[str, Any]:
        return await self._run(self._solver_react_sync, order_id, solver_address, price_e18)

    async def set_solver_tx_on_quote_network(self, order_id: str, tx_id: str) -> Dict[str, Any]:
        if not tx_id:
            raise ValueError(f"Refusing to record an empty transaction id for order {order_id}")
        return await self._run(self._set_solver_tx_sync, order_id, tx_id)
