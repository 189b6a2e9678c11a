import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from stackmate.api_client import ApiClient, ApiResponse
from stackmate.backoff import RetryPolicy
from stackmate.configuration import Configuration
from stackmate.exceptions import ApiClientError
from stackmate.tx_poller import TransactionPoller, failure_reason, is_failed_status
from stackmate.tx_store import TxStatus

TX_ID = "0xabc"
TX_URL = f"https://api.testnet.hiro.so/extended/v1/tx/{TX_ID}"


def response(status, body=None, headers=None):
    raw = json.dumps(body).encode() if isinstance(body, dict) else (body or b"")
    return ApiResponse(status, TX_URL, raw, headers or {})


@pytest.fixture
def configuration():
    # no waiting between polls
    return Configuration(
        env_path="missing.env",
        yaml_file="missing.yaml",
        DEV_MODE=False,
        POLL_BASE_DELAY_MS=0,
        POLL_STEP_MS=0,
    )


@pytest.fixture
def api():
    client = MagicMock()
    client.fetch_transaction = AsyncMock()
    return client


@pytest.fixture
def poller(api, configuration):
    return TransactionPoller(api, configuration)


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, status, data):
        self.events.append((status, data))

    @property
    def statuses(self):
        return [s for s, _ in self.events]


def test_failed_status_classification():
    assert is_failed_status("abort_by_post_condition")
    assert is_failed_status("abort_by_response")
    assert is_failed_status("failed")
    assert is_failed_status("dropped_replace_by_fee")
    assert not is_failed_status("pending")
    assert not is_failed_status("success")


def test_failure_reason_prefers_error_then_result_repr():
    assert failure_reason({"error": "PostConditionFailed", "tx_result": {"repr": "(err u1)"}}) == "PostConditionFailed"
    assert failure_reason({"tx_result": {"hex": "0x08", "repr": "(err u101)"}}) == "(err u101)"
    assert failure_reason({"tx_status": "abort_by_response"}) == "abort_by_response"


def test_poll_delay_is_a_capped_linear_ramp():
    cfg = Configuration(env_path="missing.env", yaml_file="missing.yaml")
    poller = TransactionPoller(MagicMock(), cfg)
    assert poller.poll_delay(1) == pytest.approx(1.3)
    assert poller.poll_delay(5) == pytest.approx(2.5)
    assert poller.poll_delay(100) == pytest.approx(6.0)


@pytest.mark.asyncio
async def test_pending_then_success(poller, api):
    api.fetch_transaction.side_effect = [
        response(200, {"tx_status": "pending"}),
        response(200, {"tx_status": "pending"}),
        response(200, {"tx_status": "success"}),
    ]
    recorder = Recorder()

    outcome = await poller.poll(TX_ID, "testnet", recorder)

    assert outcome is TxStatus.SUCCESS
    assert recorder.statuses == [TxStatus.CONFIRMING, TxStatus.CONFIRMING, TxStatus.SUCCESS]
    assert recorder.events[0][1] == {"txId": TX_ID, "status": "pending"}


@pytest.mark.asyncio
async def test_post_condition_abort_reports_reason(poller, api):
    api.fetch_transaction.side_effect = [
        response(200, {"tx_status": "abort_by_post_condition", "tx_result": {"repr": "(err none)"}}),
    ]
    recorder = Recorder()

    outcome = await poller.poll(TX_ID, "testnet", recorder)

    assert outcome is TxStatus.FAILED
    assert recorder.events == [(TxStatus.FAILED, {"txId": TX_ID, "reason": "(err none)"})]


@pytest.mark.asyncio
async def test_individual_poll_failures_are_swallowed(poller, api):
    api.fetch_transaction.side_effect = [
        ApiClientError("network down", url=TX_URL),
        response(404, b"not found yet"),
        response(200, b"<html>"),
        response(200, {"tx_status": "success"}),
    ]
    recorder = Recorder()

    outcome = await poller.poll(TX_ID, "testnet", recorder)

    assert outcome is TxStatus.SUCCESS
    assert recorder.statuses == [TxStatus.SUCCESS]
    assert api.fetch_transaction.await_count == 4


@pytest.mark.asyncio
async def test_observer_errors_do_not_stop_polling(poller, api):
    api.fetch_transaction.side_effect = [
        response(200, {"tx_status": "pending"}),
        response(200, {"tx_status": "success"}),
    ]

    def explode(status, data):
        raise RuntimeError("widget crashed")

    assert await poller.poll(TX_ID, "testnet", explode) is TxStatus.SUCCESS


@pytest.mark.asyncio
async def test_cancel_before_start_returns_none(poller, api):
    cancel = asyncio.Event()
    cancel.set()

    assert await poller.poll(TX_ID, "testnet", cancel_event=cancel) is None
    api.fetch_transaction.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancel_interrupts_a_running_poll(api):
    cfg = Configuration(env_path="missing.env", yaml_file="missing.yaml", POLL_BASE_DELAY_MS=60_000)
    poller = TransactionPoller(api, cfg)
    api.fetch_transaction.return_value = response(200, {"tx_status": "pending"})
    cancel = asyncio.Event()

    task = asyncio.create_task(poller.poll(TX_ID, "testnet", cancel_event=cancel))
    await asyncio.sleep(0.01)
    cancel.set()

    assert await asyncio.wait_for(task, timeout=1) is None
    api.fetch_transaction.assert_awaited_once()


@pytest.mark.asyncio
async def test_rate_limited_indexer_end_to_end(configuration):
    """429 with Retry-After: 2, then pending, then success."""
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    client = ApiClient(configuration, policy=RetryPolicy(min_gap_ms=0), sleep=fake_sleep)
    poller = TransactionPoller(client, configuration)
    side_effect = [
        response(429, b"slow down", headers={"Retry-After": "2"}),
        response(200, {"tx_status": "pending"}),
        response(200, {"tx_status": "success"}),
    ]
    recorder = Recorder()

    with patch.object(client, "_send", new=AsyncMock(side_effect=side_effect)) as mock_send:
        outcome = await poller.poll(TX_ID, "testnet", recorder)

    assert outcome is TxStatus.SUCCESS
    assert recorder.statuses == [TxStatus.CONFIRMING, TxStatus.SUCCESS]
    assert mock_send.await_count == 3
    assert sleeps and sleeps[0] >= 2.0
    method, url = mock_send.await_args_list[0].args
    assert url == TX_URL
