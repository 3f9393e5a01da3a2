"""Tests for PaymentClient HTTP interactions using mocks."""
import asyncio
from unittest.mock import patch

import aiohttp
import pytest

from solver.exceptions import PaymentApiError, WithdrawalAlreadyExists
from solver.payment_client import PaymentClient, WithdrawalJob


class MockResponse:
    """Mock aiohttp response."""

    def __init__(self, json_data=None, status=200, text=""):
        self._json_data = json_data
        self.status = status
        self._text = text

    async def json(self):
        if isinstance(self._json_data, Exception):
            raise self._json_data
        return self._json_data

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


class MockSession:
    """Mock aiohttp ClientSession."""

    def __init__(self, responses=None):
        self.responses = responses or []
        self.call_count = 0
        self.requests = []
        self.closed = False

    def request(self, method, url, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        if self.call_count < len(self.responses):
            resp = self.responses[self.call_count]
            self.call_count += 1
            if isinstance(resp, Exception):
                raise resp
            return resp
        return MockResponse(json_data={}, status=200)

    async def close(self):
        self.closed = True


def make_client(**kwargs):
    return PaymentClient(
        base_url="https://bron.test/",
        api_key="test-key",
        workspace_id="ws-1",
        backoff_seconds=0,
        **kwargs,
    )


def run_with_session(responses, coro_fn, **client_kwargs):
    """Run ``coro_fn(client)`` against a mocked session; return (result, session)."""
    session = MockSession(responses)

    async def run_test():
        with patch("aiohttp.ClientSession", return_value=session), patch("aiohttp.TCPConnector"):
            client = make_client(**client_kwargs)
            try:
                return await coro_fn(client)
            finally:
                await client.close()

    return asyncio.run(run_test()), session


def test_withdrawal_job_parsing():
    parsed = WithdrawalJob.from_api({
        "transactionId": "tx-1",
        "externalId": "0xABC-solver",
        "status": "Completed",
        "extra": {"blockchainDetails": [{"blockchainTxId": "0xhash"}]},
    })
    assert parsed.status == "completed"
    assert parsed.blockchain_tx_id == "0xhash"
    assert parsed.is_completed
    assert not parsed.is_terminated


def test_withdrawal_job_terminated_markers():
    assert WithdrawalJob.from_api({"transactionId": "t", "terminatedAt": "2025-01-01"}).is_terminated
    assert WithdrawalJob.from_api({"transactionId": "t", "status": "failed"}).is_terminated
    assert not WithdrawalJob.from_api({"transactionId": "t", "status": "signing"}).is_terminated


def test_withdrawal_job_rejects_malformed_payload():
    with pytest.raises(PaymentApiError):
        WithdrawalJob.from_api({"status": "completed"})


def test_create_withdrawal_payload_and_headers():
    created = {"transactionId": "tx-1", "externalId": "0xABC-solver", "status": "new"}

    result, session = run_with_session(
        [MockResponse(json_data=created)],
        lambda c: c.create_withdrawal("acc-1", "0xABC-solver", "2", "USDT_TRX", "TUser"),
    )

    assert result.transaction_id == "tx-1"
    request = session.requests[0]
    assert request["method"] == "POST"
    assert request["url"] == "https://bron.test/workspaces/ws-1/transactions"
    assert request["headers"]["Authorization"] == "ApiKey test-key"
    assert request["json"] == {
        "accountId": "acc-1",
        "externalId": "0xABC-solver",
        "transactionType": "withdrawal",
        "params": {"amount": "2", "assetId": "USDT_TRX", "toAddress": "TUser"},
    }
    assert session.closed


def test_create_withdrawal_conflict_raises_already_exists():
    with pytest.raises(WithdrawalAlreadyExists) as exc_info:
        run_with_session(
            [MockResponse(status=409, text='{"code":"already-exists"}')],
            lambda c: c.create_withdrawal("acc-1", "0xABC-solver", "2", "USDT_TRX", "TUser"),
        )
    assert exc_info.value.status == 409


def test_already_exists_marker_in_body():
    with pytest.raises(WithdrawalAlreadyExists):
        run_with_session(
            [MockResponse(status=400, text='{"error":"transaction already-exists"}')],
            lambda c: c.create_withdrawal("acc-1", "0xABC-solver", "2", "USDT_TRX", "TUser"),
        )


def test_conflict_on_read_is_plain_api_error():
    with pytest.raises(PaymentApiError) as exc_info:
        run_with_session(
            [MockResponse(status=409, text='{"code":"already-exists"}')],
            lambda c: c.get_transaction("tx-1"),
        )
    assert exc_info.value.status == 409
    assert not isinstance(exc_info.value, WithdrawalAlreadyExists)


def test_server_error_mentioning_already_exists_is_not_a_conflict():
    with pytest.raises(PaymentApiError) as exc_info:
        run_with_session(
            [MockResponse(status=503, text="upstream already-exists cache miss")] * 2,
            lambda c: c.create_withdrawal("acc-1", "0xABC-solver", "2", "USDT_TRX", "TUser"),
            max_retries=1,
        )
    assert exc_info.value.status == 503
    assert not isinstance(exc_info.value, WithdrawalAlreadyExists)


def test_client_error_is_not_retried():
    with pytest.raises(PaymentApiError) as exc_info:
        run_with_session(
            [MockResponse(status=400, text="insufficient balance"), MockResponse(json_data={})],
            lambda c: c.get_transaction("tx-1"),
        )
    assert exc_info.value.status == 400
    assert not isinstance(exc_info.value, WithdrawalAlreadyExists)


def test_server_error_is_retried():
    ok = {"transactionId": "tx-1", "status": "signing"}
    result, session = run_with_session(
        [MockResponse(status=503, text="unavailable"), MockResponse(json_data=ok)],
        lambda c: c.get_transaction("tx-1"),
    )
    assert result.status == "signing"
    assert session.call_count == 2


def test_connection_errors_exhaust_retries():
    errors = [aiohttp.ClientConnectionError("refused")] * 3
    with pytest.raises(PaymentApiError):
        run_with_session(errors, lambda c: c.get_transaction("tx-1"), max_retries=2)


def test_invalid_json_raises():
    with pytest.raises(PaymentApiError, match="Invalid JSON"):
        run_with_session(
            [MockResponse(json_data=ValueError("bad json"), text="<html>")],
            lambda c: c.get_transaction("tx-1"),
        )


def test_find_transactions_query():
    payload = {"transactions": [{"transactionId": "tx-9", "externalId": "0xABC-solver", "status": "signing"}]}
    result, session = run_with_session(
        [MockResponse(json_data=payload)],
        lambda c: c.find_transactions("acc-1", "0xABC-solver"),
    )

    assert [j.transaction_id for j in result] == ["tx-9"]
    assert session.requests[0]["params"] == {"accountIds": "acc-1", "externalId": "0xABC-solver", "limit": "1"}


def test_get_assets_and_addresses():
    async def calls(client):
        assets = await client.get_assets("TRX", "0xquote")
        addresses = await client.get_deposit_addresses("acc-1", "ETH")
        missing = await client.get_assets("TRX", "0xother")
        return assets, addresses, missing

    (assets, addresses, missing), session = run_with_session(
        [
            MockResponse(json_data={"assets": [{"assetId": "USDT_TRX", "decimals": "6"}]}),
            MockResponse(json_data={"addresses": [{"address": "0xdeposit"}]}),
            MockResponse(json_data={"unexpected": True}),
        ],
        calls,
    )

    assert assets == [{"assetId": "USDT_TRX", "decimals": "6"}]
    assert addresses == [{"address": "0xdeposit"}]
    assert missing == []
    assert session.requests[0]["url"] == "https://bron.test/dictionary/assets"
    assert session.requests[1]["url"] == "https://bron.test/workspaces/ws-1/addresses"


def test_no_auth_header_without_key():
    async def run_test():
        session = MockSession([MockResponse(json_data={"networkId": "ETH"})])
        with patch("aiohttp.ClientSession", return_value=session), patch("aiohttp.TCPConnector"):
            client = PaymentClient(base_url="https://bron.test", api_key=None, workspace_id="ws-1")
            await client.get_network("ETH")
            await client.close()
        return session

    session = asyncio.run(run_test())
    assert "Authorization" not in session.requests[0]["headers"]
