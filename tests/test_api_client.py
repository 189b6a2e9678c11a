import asyncio
import json
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from stackmate.api_client import ApiClient, ApiResponse, is_retryable_status
from stackmate.backoff import RetryPolicy
from stackmate.configuration import Configuration
from stackmate.exceptions import ApiClientError

TX_URL = "https://api.testnet.hiro.so/extended/v1/tx/0xabc"


class HighRng:
    def uniform(self, a, b):
        return b


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


def response(status, body=b"", headers=None, url=TX_URL):
    if isinstance(body, (dict, list)):
        body = json.dumps(body).encode()
    return ApiResponse(status, url, body, headers or {})


@pytest.fixture
def configuration():
    return Configuration(env_path="missing.env", yaml_file="missing.yaml", DEV_MODE=False)


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def api_client(configuration, sleeps):
    policy = RetryPolicy(min_gap_ms=0)
    return ApiClient(configuration, policy=policy, sleep=sleeps, rng=HighRng())


def test_retryable_statuses():
    assert is_retryable_status(429)
    assert is_retryable_status(500)
    assert is_retryable_status(503)
    assert not is_retryable_status(404)
    assert not is_retryable_status(200)
    assert not is_retryable_status(301)


def test_api_response_helpers():
    r = response(200, {"tx_status": "pending"}, headers={"Retry-After": "3"})
    assert r.ok
    assert r.header("retry-after") == "3"
    assert r.json() == {"tx_status": "pending"}
    assert response(204).json() is None


@pytest.mark.asyncio
async def test_server_errors_exhaust_retries_and_return_last_response(api_client, sleeps):
    with patch.object(api_client, "_send", new=AsyncMock(return_value=response(500))) as mock_send:
        result = await api_client.fetch_with_retry(TX_URL)

    assert result.status == 500
    assert mock_send.await_count == 4
    assert sleeps.calls == [1.0, 2.0, 4.0]


@pytest.mark.asyncio
async def test_client_error_is_not_retried(api_client, sleeps):
    with patch.object(api_client, "_send", new=AsyncMock(return_value=response(404))) as mock_send:
        result = await api_client.fetch_with_retry(TX_URL)

    assert result.status == 404
    mock_send.assert_awaited_once()
    assert sleeps.calls == []


@pytest.mark.asyncio
async def test_retry_after_takes_precedence_when_larger(api_client, sleeps):
    side_effect = [response(429, headers={"Retry-After": "2"}), response(200, {"ok": True})]
    with patch.object(api_client, "_send", new=AsyncMock(side_effect=side_effect)):
        result = await api_client.fetch_with_retry(TX_URL)

    assert result.ok
    assert sleeps.calls == [2.0]


@pytest.mark.asyncio
async def test_retry_after_is_clamped_to_max_delay(api_client, sleeps):
    side_effect = [response(429, headers={"Retry-After": "120"}), response(200)]
    with patch.object(api_client, "_send", new=AsyncMock(side_effect=side_effect)):
        await api_client.fetch_with_retry(TX_URL)

    assert sleeps.calls == [10.0]


@pytest.mark.asyncio
async def test_retry_after_ignored_when_policy_disables_it(api_client, sleeps):
    policy = RetryPolicy(min_gap_ms=0, respect_retry_after=False)
    side_effect = [response(429, headers={"Retry-After": "5"}), response(200)]
    with patch.object(api_client, "_send", new=AsyncMock(side_effect=side_effect)):
        await api_client.fetch_with_retry(TX_URL, policy=policy)

    assert sleeps.calls == [1.0]


@pytest.mark.asyncio
async def test_transport_errors_are_retried_then_raised(api_client, sleeps):
    error = aiohttp.ClientConnectionError("connection reset")
    with patch.object(api_client, "_send", new=AsyncMock(side_effect=error)) as mock_send:
        with pytest.raises(ApiClientError) as excinfo:
            await api_client.fetch_with_retry(TX_URL)

    assert mock_send.await_count == 4
    assert excinfo.value.__cause__ is error
    assert excinfo.value.url == TX_URL
    assert len(sleeps.calls) == 3


@pytest.mark.asyncio
async def test_transport_error_then_success(api_client, sleeps):
    side_effect = [aiohttp.ClientConnectionError("reset"), response(200, {"tx_status": "success"})]
    with patch.object(api_client, "_send", new=AsyncMock(side_effect=side_effect)):
        result = await api_client.fetch_with_retry(TX_URL)

    assert result.json() == {"tx_status": "success"}
    assert sleeps.calls == [1.0]


@pytest.mark.asyncio
async def test_requests_go_through_host_scheduler(api_client):
    with patch.object(api_client, "_send", new=AsyncMock(return_value=response(200))):
        await api_client.fetch_with_retry(TX_URL)

    assert "api.testnet.hiro.so" in api_client.schedulers.snapshot()


@pytest.mark.asyncio
async def test_scheduler_skipped_when_concurrency_limit_disabled(api_client):
    policy = RetryPolicy(limit_concurrency=False)
    with patch.object(api_client, "_send", new=AsyncMock(return_value=response(200))):
        await api_client.fetch_with_retry(TX_URL, policy=policy)

    assert api_client.schedulers.snapshot() == {}


@pytest.mark.asyncio
async def test_fetch_json_raises_on_non_ok(api_client):
    with patch.object(api_client, "_send", new=AsyncMock(return_value=response(404, b"not found"))):
        with pytest.raises(ApiClientError) as excinfo:
            await api_client.fetch_json(TX_URL)
    assert excinfo.value.status == 404


@pytest.mark.asyncio
async def test_fetch_stx_balance(api_client, sleeps):
    body = {"stx": {"balance": "1500000"}}
    with patch.object(api_client, "_send", new=AsyncMock(return_value=response(200, body))) as mock_send:
        balance = await api_client.fetch_stx_balance("ST1ADDR", "testnet")

    assert balance.micro == "1500000"
    assert balance.stx == "1.5"
    method, url = mock_send.await_args.args
    assert method == "GET"
    assert url == "https://api.testnet.hiro.so/extended/v1/address/ST1ADDR/balances"


@pytest.mark.asyncio
async def test_fetch_stx_balance_uses_its_own_retry_budget(api_client, sleeps):
    with patch.object(api_client, "_send", new=AsyncMock(return_value=response(503))) as mock_send:
        with pytest.raises(ApiClientError, match="Failed to fetch balance"):
            await api_client.fetch_stx_balance("SP1ADDR", "mainnet")

    assert mock_send.await_count == 3
    assert sleeps.calls[0] == 2.0


@pytest.mark.asyncio
async def test_block_height_is_cached(api_client):
    body = {"stacks_tip_height": 152_000, "burn_block_height": 870_000}
    with patch.object(api_client, "_send", new=AsyncMock(return_value=response(200, body))) as mock_send:
        first = await api_client.get_block_height("mainnet")
        second = await api_client.get_block_height("mainnet")

    assert first == second == 152_000
    mock_send.assert_awaited_once()


@pytest.mark.asyncio
async def test_block_height_falls_back_to_nested_tip(api_client):
    body = {"stacks_tip": {"height": 77}}
    with patch.object(api_client, "_send", new=AsyncMock(return_value=response(200, body))):
        assert await api_client.get_block_height("testnet") == 77


def test_api_url_uses_dev_proxy_when_enabled(sleeps):
    cfg = Configuration(env_path="missing.env", yaml_file="missing.yaml", DEV_MODE=True)
    client = ApiClient(cfg, sleep=sleeps)
    assert client.api_url("testnet", "/v2/info") == "http://localhost:5173/hiro/v2/info"
    assert client.api_url("mainnet", "/v2/info") == "http://localhost:5173/hiro-mainnet/v2/info"


@pytest.mark.asyncio
async def test_per_call_policy_limits_concurrency(api_client):
    in_flight = 0
    peak = 0

    async def slow_send(method, url, **kwargs):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return response(200)

    strict = RetryPolicy(max_concurrent=1, min_gap_ms=0)
    with patch.object(api_client, "_send", new=AsyncMock(side_effect=slow_send)):
        results = await asyncio.gather(*(api_client.fetch_with_retry(TX_URL, policy=strict) for _ in range(4)))

    assert all(r.ok for r in results)
    assert peak == 1
    assert "api.testnet.hiro.so[1/0ms]" in api_client.schedulers.snapshot()
