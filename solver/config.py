"""Solver configuration from command line flags and environment.

Environment variables (optionally loaded from a ``.env`` file) take
precedence over command line flags, which fall back to the defaults below.
"""
from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from dotenv import load_dotenv

from .exceptions import ConfigurationException

DEFAULT_BRON_API_URL = "https://api.bron.org"
PRICE_POLICIES = ("max_price",)

TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _to_bool(value, default: bool, name: str = "value") -> bool:
    """Parse a boolean setting; empty means unset, anything unrecognised is an error."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if not text:
        return default
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise ConfigurationException(f"{name} must be true or false, got '{value}'")


def parse_deposit_addresses(raw: Optional[str]) -> Dict[str, str]:
    """Parse ``"ETH=0xabc,TRX=T9yD..."`` into ``{"ETH": "0xabc", ...}``."""
    result: Dict[str, str] = {}
    if not raw:
        return result
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise ConfigurationException(f"Invalid deposit address entry '{item}' (expected NETWORK=ADDRESS)")
        network, address = item.split("=", 1)
        network, address = network.strip(), address.strip()
        if not network or not address:
            raise ConfigurationException(f"Invalid deposit address entry '{item}' (expected NETWORK=ADDRESS)")
        result[network] = address
    return result


@dataclass
class SolverConfig:
    rpc_url: str = ""
    order_engine_address: str = ""
    solver_private_key: str = ""

    bron_api_url: str = DEFAULT_BRON_API_URL
    bron_api_key: str = ""
    bron_workspace_id: str = ""
    bron_account_id: str = ""
    bron_timeout: int = 10
    bron_max_retries: int = 3
    bron_backoff_seconds: float = 0.5

    poll_interval_seconds: float = 2.0
    poll_max_attempts: int = 60
    require_completed_status: bool = True
    price_policy: str = "max_price"

    ledger_max_retries: int = 5
    ledger_retry_delay_seconds: float = 5.0
    gas_limit: int = 500_000
    receipt_timeout_seconds: int = 120

    indexer_polling_interval_seconds: float = 1.5
    indexer_start_block_offset: int = 1800
    indexer_max_block_range: int = 2000
    shutdown_timeout_seconds: float = 300.0

    state_dir: str = field(default_factory=os.getcwd)
    deposit_addresses: Dict[str, str] = field(default_factory=dict)
    log_level: str = "INFO"

    @classmethod
    def build_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(description="Intents solver")

        # Chain / order engine
        parser.add_argument("--chain.rpc_url", type=str, default=None, help="Order engine chain RPC URL")
        parser.add_argument("--chain.order_engine", type=str, default=None, help="Order engine contract address")
        parser.add_argument("--chain.gas_limit", type=int, default=cls.gas_limit, help="Gas limit for ledger transactions")
        parser.add_argument("--chain.receipt_timeout", type=int, default=cls.receipt_timeout_seconds, help="Seconds to wait for a transaction receipt")

        # Payment API
        parser.add_argument("--bron.api_url", type=str, default=DEFAULT_BRON_API_URL, help="Payment API base URL")
        parser.add_argument("--bron.workspace_id", type=str, default=None, help="Payment API workspace id")
        parser.add_argument("--bron.account_id", type=str, default=None, help="Custodial account funding payouts")
        parser.add_argument("--bron.timeout", type=int, default=cls.bron_timeout, help="Payment API request timeout")
        parser.add_argument("--bron.max_retries", type=int, default=cls.bron_max_retries, help="HTTP max retries to the payment API")
        parser.add_argument("--bron.backoff_seconds", type=float, default=cls.bron_backoff_seconds, help="HTTP backoff factor (seconds)")

        # Settlement
        parser.add_argument("--settlement.poll_interval", type=float, default=cls.poll_interval_seconds, help="Seconds between withdrawal polls")
        parser.add_argument("--settlement.poll_max_attempts", type=int, default=cls.poll_max_attempts, help="Withdrawal polls before giving up")
        parser.add_argument("--settlement.allow_incomplete", action="store_true", help="Accept a chain tx id before the withdrawal reports completed")
        parser.add_argument("--settlement.ledger_max_retries", type=int, default=cls.ledger_max_retries, help="Retries for recording the payout tx on-chain")
        parser.add_argument("--settlement.ledger_retry_delay", type=float, default=cls.ledger_retry_delay_seconds, help="Base backoff delay (seconds)")

        # Auction
        parser.add_argument("--auction.price_policy", type=str, default=cls.price_policy, choices=PRICE_POLICIES, help="Price commitment policy")
        parser.add_argument("--auction.deposit_addresses", type=str, default=None, help="Static funding addresses, NETWORK=ADDRESS,...")

        # Indexer
        parser.add_argument("--indexer.polling_interval", type=float, default=cls.indexer_polling_interval_seconds, help="Seconds between log polls")
        parser.add_argument("--indexer.start_block_offset", type=int, default=cls.indexer_start_block_offset, help="Blocks to rescan on first start")
        parser.add_argument("--indexer.max_block_range", type=int, default=cls.indexer_max_block_range, help="Max blocks per get_logs call")

        # Runtime
        parser.add_argument("--state_dir", type=str, default=None, help="Directory for state and alert snapshots")
        parser.add_argument("--shutdown_timeout", type=float, default=cls.shutdown_timeout_seconds, help="Seconds to wait for in-flight ledger writes on shutdown")
        parser.add_argument("--logging.level", type=str, default="INFO", help="Log level")
        parser.add_argument("--logging.debug", action="store_true", help="Enable debug logging")
        return parser

    @classmethod
    def load(
        cls,
        argv: Optional[Sequence[str]] = None,
        env: Optional[Mapping[str, str]] = None,
        dotenv: bool = True,
    ) -> "SolverConfig":
        """Build a config from ``argv`` and the environment."""
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ
        args = vars(cls.build_parser().parse_args(argv))

        def pick(env_key: str, arg_key: str, default=None):
            value = env.get(env_key)
            if value is not None and value != "":
                return value
            value = args.get(arg_key)
            return default if value is None else value

        log_level = pick("LOG_LEVEL", "logging.level", "INFO")
        if args.get("logging.debug"):
            log_level = "DEBUG"

        try:
            return cls(
                rpc_url=pick("INDEXER_ETH_RPC_URL", "chain.rpc_url", ""),
                order_engine_address=pick("ORDER_ENGINE_ADDRESS", "chain.order_engine", ""),
                solver_private_key=env.get("SOLVER_PRIVATE_KEY", ""),
                bron_api_url=pick("BRON_API_URL", "bron.api_url", DEFAULT_BRON_API_URL),
                bron_api_key=env.get("BRON_API_KEY", ""),
                bron_workspace_id=pick("BRON_WORKSPACE_ID", "bron.workspace_id", ""),
                bron_account_id=pick("BRON_ACCOUNT_ID", "bron.account_id", ""),
                bron_timeout=int(pick("BRON_TIMEOUT", "bron.timeout", cls.bron_timeout)),
                bron_max_retries=int(pick("BRON_MAX_RETRIES", "bron.max_retries", cls.bron_max_retries)),
                bron_backoff_seconds=float(pick("BRON_BACKOFF_SECONDS", "bron.backoff_seconds", cls.bron_backoff_seconds)),
                poll_interval_seconds=float(pick("SOLVER_POLL_INTERVAL_SECONDS", "settlement.poll_interval", cls.poll_interval_seconds)),
                poll_max_attempts=int(pick("SOLVER_POLL_MAX_ATTEMPTS", "settlement.poll_max_attempts", cls.poll_max_attempts)),
                require_completed_status=_to_bool(
                    env.get("SOLVER_REQUIRE_COMPLETED_STATUS"),
                    not args.get("settlement.allow_incomplete", False),
                    "SOLVER_REQUIRE_COMPLETED_STATUS",
                ),
                price_policy=str(pick("SOLVER_PRICE_POLICY", "auction.price_policy", cls.price_policy)),
                ledger_max_retries=int(pick("SOLVER_LEDGER_MAX_RETRIES", "settlement.ledger_max_retries", cls.ledger_max_retries)),
                ledger_retry_delay_seconds=float(pick("SOLVER_LEDGER_RETRY_DELAY_SECONDS", "settlement.ledger_retry_delay", cls.ledger_retry_delay_seconds)),
                gas_limit=int(pick("SOLVER_GAS_LIMIT", "chain.gas_limit", cls.gas_limit)),
                receipt_timeout_seconds=int(pick("SOLVER_RECEIPT_TIMEOUT_SECONDS", "chain.receipt_timeout", cls.receipt_timeout_seconds)),
                indexer_polling_interval_seconds=float(pick("INDEXER_POLLING_INTERVAL_SECONDS", "indexer.polling_interval", cls.indexer_polling_interval_seconds)),
                indexer_start_block_offset=int(pick("INDEXER_START_BLOCK_OFFSET", "indexer.start_block_offset", cls.indexer_start_block_offset)),
                indexer_max_block_range=int(pick("INDEXER_MAX_BLOCK_RANGE", "indexer.max_block_range", cls.indexer_max_block_range)),
                shutdown_timeout_seconds=float(pick("SOLVER_SHUTDOWN_TIMEOUT_SECONDS", "shutdown_timeout", cls.shutdown_timeout_seconds)),
                state_dir=pick("SOLVER_STATE_DIR", "state_dir", os.getcwd()),
                deposit_addresses=parse_deposit_addresses(pick("SOLVER_DEPOSIT_ADDRESSES", "auction.deposit_addresses", "")),
                log_level=str(log_level).upper(),
            )
        except ValueError as e:
            raise ConfigurationException(f"Invalid numeric configuration value: {e}") from e

    def problems(self) -> List[str]:
        """Return a list of human readable configuration problems."""
        errors = []
        required = {
            "INDEXER_ETH_RPC_URL": self.rpc_url,
            "ORDER_ENGINE_ADDRESS": self.order_engine_address,
            "SOLVER_PRIVATE_KEY": self.solver_private_key,
            "BRON_API_KEY": self.bron_api_key,
            "BRON_WORKSPACE_ID": self.bron_workspace_id,
            "BRON_ACCOUNT_ID": self.bron_account_id,
        }
        for name, value in required.items():
            if not value:
                errors.append(f"{name} is required")
        if self.poll_interval_seconds < 0:
            errors.append("settlement.poll_interval must be >= 0")
        if self.poll_max_attempts <= 0:
            errors.append("settlement.poll_max_attempts must be > 0")
        if self.ledger_max_retries < 0:
            errors.append("settlement.ledger_max_retries must be >= 0")
        if self.ledger_retry_delay_seconds < 0:
            errors.append("settlement.ledger_retry_delay must be >= 0")
        if self.gas_limit <= 0:
            errors.append("chain.gas_limit must be > 0")
        if self.indexer_polling_interval_seconds <= 0:
            errors.append("indexer.polling_interval must be > 0")
        if self.indexer_start_block_offset < 0:
            errors.append("indexer.start_block_offset must be >= 0")
        if self.indexer_max_block_range <= 0:
            errors.append("indexer.max_block_range must be > 0")
        if self.shutdown_timeout_seconds < 0:
            errors.append("shutdown_timeout must be >= 0")
        if self.price_policy not in PRICE_POLICIES:
            errors.append(f"price policy must be one of {', '.join(PRICE_POLICIES)}")
        return errors

    def validate(self) -> None:
        """Raise ConfigurationException if the configuration is unusable."""
        errors = self.problems()
        if errors:
            raise ConfigurationException("Solver configuration invalid: " + "; ".join(errors))
