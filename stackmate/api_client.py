# api_client.py
"""
Stackmate – ApiClient
=====================

Resilient HTTP access to the Stacks indexer: per-host admission control,
jittered exponential backoff on 429/5xx/transport failures and
``Retry-After`` compliance, plus a few typed indexer helpers.
"""

from __future__ import annotations

import asyncio
import json
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp
from cachetools import TTLCache

from .backoff import RetryPolicy, clamp_delay, next_delay, parse_retry_after
from .configuration import Configuration
from .exceptions import ApiClientError
from .loggingconfig import setup_logging
from .network_config import NetworkName, get_api_base_url, micro_to_stx, parse_network
from .request_scheduler import SchedulerRegistry

logger = setup_logging("ApiClient")

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


# --------------------------------------------------------------------------- #
# value objects                                                               #
# --------------------------------------------------------------------------- #


@dataclass(slots=True)
class ApiResponse:
    """A fully-read HTTP response, detached from the aiohttp connection."""

    status: int
    url: str
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.headers = {k.lower(): v for k, v in self.headers.items()}

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        text = self.text()
        return json.loads(text) if text else None


@dataclass(frozen=True, slots=True)
class StxBalance:
    micro: str
    stx: str


def is_retryable_status(status: int) -> bool:
    return status == 429 or status >= 500


# --------------------------------------------------------------------------- #
# main class                                                                  #
# --------------------------------------------------------------------------- #


class ApiClient:
    """
    Talks to the Hiro indexer for one process.

    Every request goes through a single retry loop; when the policy enables
    concurrency limiting it is also admitted through the scheduler of the
    target host.
    """

    BALANCE_POLICY = {"max_retries": 2, "initial_delay_ms": 2000}

    def __init__(
        self,
        configuration: Optional[Configuration] = None,
        policy: Optional[RetryPolicy] = None,
        schedulers: Optional[SchedulerRegistry] = None,
        session: Optional[aiohttp.ClientSession] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Any = random,
    ) -> None:
        self.cfg = configuration or Configuration()
        self.policy = policy or RetryPolicy.from_config(self.cfg)
        self.schedulers = schedulers or SchedulerRegistry(
            self.policy.max_concurrent, self.policy.min_gap_ms
        )
        self._session = session
        self._owns_session = session is None
        self._sleep = sleep
        self._rng = rng
        self.chain_info_cache: TTLCache = TTLCache(
            maxsize=4, ttl=float(self.cfg.get_config_value("CHAIN_INFO_TTL", 10))
        )

    # ------------------------------------------------------------------ #
    # life-cycle                                                         #
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *_exc) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
            logger.debug("ApiClient session closed")
        self._session = None
        self.chain_info_cache.clear()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=float(self.cfg.get_config_value("HTTP_TIMEOUT", 30)))
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    # ------------------------------------------------------------------ #
    # low-level request helpers                                          #
    # ------------------------------------------------------------------ #

    async def _send(self, method: str, url: str, **kwargs: Any) -> ApiResponse:
        """One raw HTTP exchange; the body is read before the connection is released."""
        async with self._get_session().request(method, url, **kwargs) as resp:
            body = await resp.read()
            return ApiResponse(resp.status, str(resp.url), body, dict(resp.headers))

    async def _dispatch(self, method: str, url: str, policy: RetryPolicy, **kwargs: Any) -> ApiResponse:
        if not policy.limit_concurrency:
            return await self._send(method, url, **kwargs)
        scheduler = self.schedulers.for_url(url, policy.max_concurrent, policy.min_gap_ms)
        return await scheduler.schedule(lambda: self._send(method, url, **kwargs))

    async def fetch_with_retry(
        self,
        url: str,
        method: str = "GET",
        policy: Optional[RetryPolicy] = None,
        **kwargs: Any,
    ) -> ApiResponse:
        """
        Issue a request, retrying transport failures, 429 and 5xx.

        Any other status is returned as-is. When retries run out on a 429/5xx
        the last response is returned; when they run out on transport errors
        an ApiClientError chained from the last one is raised.
        """
        policy = policy or self.policy
        service = SchedulerRegistry.service_name(url)
        delay = float(policy.initial_delay_ms)
        last_error: Optional[BaseException] = None

        for attempt in range(policy.max_retries + 1):
            exhausted = attempt >= policy.max_retries
            try:
                response = await self._dispatch(method, url, policy, **kwargs)
            except _TRANSPORT_ERRORS as exc:
                last_error = exc
                if exhausted:
                    break
                wait = clamp_delay(delay, policy.max_delay_ms)
                logger.warning(
                    "%s network error on %s, retrying in %dms (attempt %d/%d): %s",
                    service, url, wait, attempt + 1, policy.max_retries, exc,
                    extra={"service": service},
                )
                await self._sleep(wait / 1000.0)
                delay = next_delay(delay, policy.backoff_factor, policy.max_delay_ms, self._rng)
                continue

            if not is_retryable_status(response.status) or exhausted:
                return response

            wait = delay
            if response.status == 429 and policy.respect_retry_after:
                hinted = parse_retry_after(response.header("Retry-After"))
                if hinted is not None:
                    wait = max(wait, hinted)
            wait = clamp_delay(wait, policy.max_delay_ms)
            logger.warning(
                "%s HTTP %d on %s, retrying in %dms (attempt %d/%d)",
                service, response.status, url, wait, attempt + 1, policy.max_retries,
                extra={"service": service},
            )
            await self._sleep(wait / 1000.0)
            delay = next_delay(delay, policy.backoff_factor, policy.max_delay_ms, self._rng)

        raise ApiClientError(
            f"Failed to fetch {url} after {policy.max_retries} retries: {last_error}",
            url=url,
        ) from last_error

    async def fetch_json(self, url: str, policy: Optional[RetryPolicy] = None, **kwargs: Any) -> Any:
        response = await self.fetch_with_retry(url, policy=policy, **kwargs)
        if not response.ok:
            raise ApiClientError(
                f"HTTP {response.status} from {url}", url=url, status=response.status
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ApiClientError(f"Invalid JSON from {url}: {exc}", url=url, status=response.status) from exc

    # ------------------------------------------------------------------ #
    # indexer helpers                                                    #
    # ------------------------------------------------------------------ #

    def api_url(self, network: str | NetworkName, path: str) -> str:
        return f"{get_api_base_url(network, self.cfg)}{path}"

    async def fetch_transaction(self, tx_id: str, network: str | NetworkName) -> ApiResponse:
        return await self.fetch_with_retry(self.api_url(network, f"/extended/v1/tx/{tx_id}"))

    async def fetch_stx_balance(self, address: str, network: str | NetworkName) -> StxBalance:
        url = self.api_url(network, f"/extended/v1/address/{address}/balances")
        response = await self.fetch_with_retry(url, policy=self.policy.with_overrides(**self.BALANCE_POLICY))
        if not response.ok:
            raise ApiClientError(
                f"Failed to fetch balance ({response.status})", url=url, status=response.status
            )
        data = response.json() or {}
        micro = str((data.get("stx") or {}).get("balance") or "0")
        return StxBalance(micro=micro, stx=micro_to_stx(micro))

    async def get_block_height(self, network: str | NetworkName) -> int:
        net = parse_network(network)
        if net in self.chain_info_cache:
            return self.chain_info_cache[net]

        data = await self.fetch_json(self.api_url(net, "/v2/info")) or {}
        height = (
            data.get("stacks_tip_height")
            or (data.get("stacks_tip") or {}).get("height")
            or data.get("burn_block_height")
            or 0
        )
        height = int(height)
        self.chain_info_cache[net] = height
        return height

    def __repr__(self) -> str:
        return f"<ApiClient policy={self.policy} schedulers={list(self.schedulers.snapshot())}>"
