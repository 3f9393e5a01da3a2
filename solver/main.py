"""Intents solver - follow order events, commit to auctions, pay out settlements (async)."""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import List, Optional, Sequence

from web3 import Web3

from .alerts import AlertSink
from .assets import AssetResolver
from .auction import AuctionReactor, build_price_policy
from .config import SolverConfig
from .exceptions import ConfigurationException
from .indexer import OrderIndexer
from .order_ledger import OrderLedger
from .payment_client import PaymentClient
from .processor import OrderProcessor
from .settlement import SettlementEngine
from .state_store import StateStore
from .version import __version__
from .withdrawal_poller import WithdrawalPoller

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT, force=True)
    # web3 and aiohttp are chatty at DEBUG
    for noisy in ("web3", "urllib3", "aiohttp"):
        logging.getLogger(noisy).setLevel(max(logging.getLogger().level, logging.INFO))


class SolverApp:
    """Wires the solver components together from a SolverConfig."""

    def __init__(self, config: SolverConfig, web3: Optional[Web3] = None, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger or logging.getLogger("solver")

        self.web3 = web3 or Web3(Web3.HTTPProvider(config.rpc_url))
        self.ledger = OrderLedger(
            web3=self.web3,
            order_engine_address=config.order_engine_address,
            private_key=config.solver_private_key,
            gas_limit=config.gas_limit,
            receipt_timeout=config.receipt_timeout_seconds,
        )
        self.payment_client = PaymentClient(
            base_url=config.bron_api_url,
            api_key=config.bron_api_key,
            workspace_id=config.bron_workspace_id,
            timeout=config.bron_timeout,
            max_retries=config.bron_max_retries,
            backoff_seconds=config.bron_backoff_seconds,
        )
        self.alerts = AlertSink(base_dir=config.state_dir)
        self.state_store = StateStore(base_dir=config.state_dir)

        self.poller = WithdrawalPoller(
            payment_client=self.payment_client,
            ledger=self.ledger,
            alert_sink=self.alerts,
            interval_seconds=config.poll_interval_seconds,
            max_attempts=config.poll_max_attempts,
            require_completed_status=config.require_completed_status,
            ledger_max_retries=config.ledger_max_retries,
            ledger_retry_delay=config.ledger_retry_delay_seconds,
        )
        self.reactor = AuctionReactor(
            ledger=self.ledger,
            payment_client=self.payment_client,
            account_id=config.bron_account_id,
            price_policy=build_price_policy(config.price_policy),
            deposit_addresses=config.deposit_addresses,
        )
        self.settlement = SettlementEngine(
            ledger=self.ledger,
            payment_client=self.payment_client,
            asset_resolver=AssetResolver(self.payment_client),
            poller=self.poller,
            account_id=config.bron_account_id,
            solver_address=self.ledger.solver_address,
            alert_sink=self.alerts,
        )
        self.processor = OrderProcessor(self.reactor, self.settlement, self.poller)
        self.indexer = OrderIndexer(
            web3=self.web3,
            contract=self.ledger.contract,
            state_store=self.state_store,
            polling_interval=config.indexer_polling_interval_seconds,
            start_block_offset=config.indexer_start_block_offset,
            max_block_range=config.indexer_max_block_range,
        )
        self.indexer.add_processor(self.processor.process)

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._request_shutdown, sig)
            except NotImplementedError:  # pragma: no cover - Windows
                pass

        self.logger.info(f"{'=' * 60}")
        self.logger.info(f"Starting solver v{__version__}")
        self.logger.info(f"   Solver address: {self.ledger.solver_address}")
        self.logger.info(f"   Order engine: {self.ledger.order_engine_address}")
        self.logger.info(f"   Payment API: {self.config.bron_api_url} (account {self.config.bron_account_id})")
        self.logger.info(f"{'=' * 60}")

        try:
            await self.indexer.start()
        finally:
            await self.shutdown()

    def _request_shutdown(self, sig: signal.Signals) -> None:
        self.logger.info(f"Received {sig.name}, shutting down gracefully...")
        asyncio.get_running_loop().create_task(self.indexer.stop())

    async def shutdown(self) -> None:
        await self.indexer.stop()
        in_flight = self.processor.in_flight
        self.logger.info(
            f"Stopping with {in_flight['handlers']} order handler(s), {in_flight['withdrawals']} withdrawal poll(s), "
            f"{in_flight['recordings']} payout recording(s) in flight"
        )
        await self.processor.stop(timeout=self.config.shutdown_timeout_seconds)
        await self.payment_client.close()
        self.logger.info("Solver stopped")


def load_config(argv: Optional[Sequence[str]] = None) -> SolverConfig:
    config = SolverConfig.load(argv)
    config.validate()
    return config


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the solver."""
    try:
        config = load_config(argv)
    except ConfigurationException as e:
        setup_logging("INFO")
        logging.getLogger("solver").error(str(e))
        return 2

    setup_logging(config.log_level)
    app = SolverApp(config)
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        logging.getLogger("solver").info("Shutting down solver")
    return 0


if __name__ == "__main__":
    sys.exit(main())
