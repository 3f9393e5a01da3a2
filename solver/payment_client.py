"""Async HTTP client for the custodial payment API.

This module provides the PaymentClient class used to look up assets and
deposit addresses, create withdrawal transactions keyed by an external id,
and poll those transactions until they are broadcast on-chain.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp

from .exceptions import PaymentApiError, WithdrawalAlreadyExists

COMPLETED_STATUSES = frozenset({"completed"})
FAILED_STATUSES = frozenset({"failed", "cancelled", "canceled", "rejected", "expired", "error"})
ALREADY_EXISTS_MARKER = "already-exists"


def _is_already_exists(error: PaymentApiError) -> bool:
    if error.status is None or error.status >= 500:
        return False
    return error.status == 409 or ALREADY_EXISTS_MARKER in error.body


@dataclass
class WithdrawalJob:
    """Snapshot of a custodial withdrawal transaction."""

    transaction_id: str
    external_id: Optional[str] = None
    status: str = ""
    terminated_at: Optional[str] = None
    blockchain_tx_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "WithdrawalJob":
        if not isinstance(data, dict) or not data.get("transactionId"):
            raise PaymentApiError(f"Malformed transaction payload: {data!r}")

        extra = data.get("extra") or {}
        details = extra.get("blockchainDetails") or []
        tx_id = None
        if details and isinstance(details[0], dict):
            tx_id = details[0].get("blockchainTxId") or None

        return cls(
            transaction_id=str(data["transactionId"]),
            external_id=data.get("externalId"),
            status=str(data.get("status") or "").lower(),
            terminated_at=data.get("terminatedAt") or None,
            blockchain_tx_id=tx_id,
            raw=data,
        )

    @property
    def is_completed(self) -> bool:
        return self.status in COMPLETED_STATUSES

    @property
    def is_terminated(self) -> bool:
        return bool(self.terminated_at) or self.status in FAILED_STATUSES


class PaymentClient:
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        workspace_id: str,
        timeout: int = 10,
        logger: Optional[logging.Logger] = None,
        verify_ssl: bool = True,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.workspace_id = workspace_id
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self.verify_ssl = verify_ssl
        self.max_retries = max(0, int(max_retries))
        self.backoff_seconds = float(backoff_seconds)
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_lock: Optional[asyncio.Lock] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        # Lock is created lazily so it binds to the running loop
        if self._session_lock is None:
            self._session_lock = asyncio.Lock()

        async with self._session_lock:
            if self._session is None or self._session.closed:
                connector = aiohttp.TCPConnector(ssl=self.verify_ssl)
                self._session = aiohttp.ClientSession(connector=connector)
            return self._session

    async def close(self) -> None:
        if self._session_lock is not None:
            async with self._session_lock:
                if self._session is not None:
                    await self._session.close()
                    self._session = None

    def _workspace_path(self, suffix: str) -> str:
        return f"/workspaces/{self.workspace_id}{suffix}"

    async def _request(
        self,
        endpoint: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{endpoint}"
        headers: Dict[str, str] = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"ApiKey {self.api_key}"

        attempt = 0
        while True:
            attempt += 1
            try:
                session = await self._get_session()
                request_kwargs: Dict[str, Any] = {
                    "headers": headers,
                    "timeout": aiohttp.ClientTimeout(total=self.timeout),
                }
                if params:
                    request_kwargs["params"] = params
                if json is not None:
                    request_kwargs["json"] = json

                async with session.request(method, url, **request_kwargs) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        error = PaymentApiError(f"HTTP {resp.status}: {text}", status=resp.status, body=text)
                        if resp.status >= 500 and attempt <= self.max_retries:
                            self.logger.warning(f"Payment API {method} {url} returned {resp.status}, retrying")
                            await asyncio.sleep(self.backoff_seconds * attempt)
                            continue
                        raise error
                    try:
                        return await resp.json()
                    except (aiohttp.ContentTypeError, ValueError) as json_err:
                        text = await resp.text()
                        self.logger.error(f"Failed to parse JSON response from {url}: {json_err}, response: {text[:200]}")
                        raise PaymentApiError(f"Invalid JSON response: {json_err}") from json_err
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                self.logger.error(f"Payment API request error ({method} {url}): {e}")
                if attempt > self.max_retries:
                    raise PaymentApiError(str(e)) from e
                await asyncio.sleep(self.backoff_seconds * attempt)

    async def get_network(self, network_id: str) -> Dict[str, Any]:
        data = await self._request(f"/dictionary/networks/{network_id}")
        return data if isinstance(data, dict) else {}

    async def get_asset(self, asset_id: str) -> Dict[str, Any]:
        data = await self._request(f"/dictionary/assets/{asset_id}")
        return data if isinstance(data, dict) else {}

    async def get_assets(self, network_id: str, contract_address: str, limit: int = 2) -> List[Dict[str, Any]]:
        """Assets on ``network_id`` whose contract address matches."""
        params = {
            "networkIds": network_id,
            "contractAddress": contract_address,
            "limit": str(limit),
        }
        data = await self._request("/dictionary/assets", params=params)
        assets = data.get("assets") if isinstance(data, dict) else None
        return assets if isinstance(assets, list) else []

    async def get_deposit_addresses(self, account_id: str, network_id: str, limit: int = 1) -> List[Dict[str, Any]]:
        params = {"accountId": account_id, "networkId": network_id, "limit": str(limit)}
        data = await self._request(self._workspace_path("/addresses"), params=params)
        addresses = data.get("addresses") if isinstance(data, dict) else None
        return addresses if isinstance(addresses, list) else []

    async def create_withdrawal(
        self,
        account_id: str,
        external_id: str,
        amount: str,
        asset_id: str,
        to_address: str,
    ) -> WithdrawalJob:
        """Create a withdrawal keyed by ``external_id``.

        Raises:
            WithdrawalAlreadyExists: a transaction with this external id exists.
            PaymentApiError: any other failure.
        """
        payload = {
            "accountId": account_id,
            "externalId": external_id,
            "transactionType": "withdrawal",
            "params": {
                "amount": amount,
                "assetId": asset_id,
                "toAddress": to_address,
            },
        }
        try:
            data = await self._request(self._workspace_path("/transactions"), method="POST", json=payload)
        except PaymentApiError as e:
            if _is_already_exists(e):
                raise WithdrawalAlreadyExists(str(e), status=e.status, body=e.body) from e
            raise
        return WithdrawalJob.from_api(data)

    async def find_transactions(self, account_id: str, external_id: str, limit: int = 1) -> List[WithdrawalJob]:
        params = {"accountIds": account_id, "externalId": external_id, "limit": str(limit)}
        data = await self._request(self._workspace_path("/transactions"), params=params)
        items = data.get("transactions") if isinstance(data, dict) else None
        return [WithdrawalJob.from_api(item) for item in (items or [])]

    async def get_transaction(self, transaction_id: str) -> WithdrawalJob:
        data = await self._request(self._workspace_path(f"/transactions/{transaction_id}"))
        return WithdrawalJob.from_api(data)
