# tx_poller.py
"""
Stackmate – TransactionPoller
=============================

Follows a broadcast transaction on the indexer until it reaches a terminal
status. Individual poll failures are treated as "not known yet"; only the
indexer can end the loop, or the caller through ``cancel_event``.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Optional

from .api_client import ApiClient
from .configuration import Configuration
from .loggingconfig import setup_logging
from .network_config import NetworkName
from .tx_store import TxStatus

logger = setup_logging("TransactionPoller")

StatusCallback = Callable[[TxStatus, Dict[str, Any]], Any]

FAILED_TX_STATUSES = frozenset({"abort_by_post_condition", "abort_by_response", "failed"})


def is_failed_status(raw: str) -> bool:
    return raw in FAILED_TX_STATUSES or raw.startswith("dropped_")


def failure_reason(payload: Dict[str, Any]) -> str:
    if payload.get("error"):
        return str(payload["error"])
    result = payload.get("tx_result")
    if isinstance(result, dict) and result.get("repr"):
        return str(result["repr"])
    if result:
        return str(result)
    return str(payload.get("tx_status") or "failed")


class TransactionPoller:
    def __init__(
        self,
        api_client: ApiClient,
        configuration: Optional[Configuration] = None,
    ) -> None:
        self.api = api_client
        cfg = configuration or api_client.cfg
        self.base_delay_ms = int(cfg.get_config_value("POLL_BASE_DELAY_MS", 1000))
        self.step_ms = int(cfg.get_config_value("POLL_STEP_MS", 300))
        self.max_delay_ms = int(cfg.get_config_value("POLL_MAX_DELAY_MS", 6000))

    def poll_delay(self, tries: int) -> float:
        """Seconds to wait before poll number ``tries + 1``; linear, capped."""
        return min(self.max_delay_ms, self.base_delay_ms + tries * self.step_ms) / 1000.0

    async def poll(
        self,
        tx_id: str,
        network: str | NetworkName,
        on_status: Optional[StatusCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[TxStatus]:
        """
        Returns TxStatus.SUCCESS or TxStatus.FAILED once the indexer reports a
        terminal status, or None when ``cancel_event`` is set first.
        """
        tries = 0
        while not (cancel_event is not None and cancel_event.is_set()):
            payload = await self._fetch_status(tx_id, network)
            if payload is not None:
                raw = str(payload.get("tx_status") or "")
                if raw == "success":
                    self._emit(on_status, TxStatus.SUCCESS, {"txId": tx_id})
                    logger.info("Transaction %s confirmed", tx_id, extra={"tx_id": tx_id})
                    return TxStatus.SUCCESS
                if is_failed_status(raw):
                    reason = failure_reason(payload)
                    self._emit(on_status, TxStatus.FAILED, {"txId": tx_id, "reason": reason})
                    logger.warning("Transaction %s failed: %s", tx_id, reason, extra={"tx_id": tx_id})
                    return TxStatus.FAILED
                self._emit(on_status, TxStatus.CONFIRMING, {"txId": tx_id, "status": raw})

            tries += 1
            if await self._wait(self.poll_delay(tries), cancel_event):
                break

        logger.info("Stopped polling %s (cancelled)", tx_id, extra={"tx_id": tx_id})
        return None

    async def _fetch_status(self, tx_id: str, network: str | NetworkName) -> Optional[Dict[str, Any]]:
        try:
            response = await self.api.fetch_transaction(tx_id, network)
            if not response.ok:
                logger.debug("Poll %s: HTTP %d", tx_id, response.status)
                return None
            payload = response.json()
        except Exception as exc:
            logger.debug("Poll %s failed: %s", tx_id, exc)
            return None
        return payload if isinstance(payload, dict) else None

    @staticmethod
    async def _wait(delay: float, cancel_event: Optional[asyncio.Event]) -> bool:
        """Sleep ``delay`` seconds; True if the cancel event fired meanwhile."""
        if cancel_event is None:
            await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    @staticmethod
    def _emit(callback: Optional[StatusCallback], status: TxStatus, data: Dict[str, Any]) -> None:
        if callback is None:
            return
        try:
            callback(status, data)
        except Exception as exc:
            logger.error("Status observer raised on %s: %s", status.value, exc)
