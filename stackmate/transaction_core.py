# transaction_core.py
"""
Stackmate – TransactionCore
===========================

Drives one contract call through its whole lifecycle:

    idle → requesting_signature → submitted → confirming → success | failed

The store is updated before every observer notification, so a status widget
reading the store never lags behind the callback. ``send_transaction`` is the
boundary where exceptions turn into a ``TxResult``.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .configuration import Configuration
from .exceptions import UserCancelledError
from .loggingconfig import setup_logging
from .network_config import NetworkName, explorer_tx_url, parse_network
from .tx_poller import StatusCallback, TransactionPoller
from .tx_store import TransactionRecord, TransactionStore, TxStatus

logger = setup_logging("TransactionCore")

RunResult = Any
Runner = Callable[[], Awaitable[RunResult]]

_TX_ID_KEYS = ("txId", "txid", "tx_id")


@dataclass(frozen=True, slots=True)
class TxResult:
    ok: bool
    tx_id: Optional[str] = None
    error: Optional[str] = None


def extract_tx_id(result: RunResult) -> Optional[str]:
    """Accepts a bare txId, a mapping carrying one, or an object with ``tx_id``."""
    if isinstance(result, str):
        return result or None
    if isinstance(result, Mapping):
        for key in _TX_ID_KEYS:
            if result.get(key):
                return str(result[key])
        return None
    value = getattr(result, "tx_id", None)
    return str(value) if value else None


class TransactionCore:
    def __init__(
        self,
        store: TransactionStore,
        poller: TransactionPoller,
        configuration: Optional[Configuration] = None,
    ) -> None:
        self.store = store
        self.poller = poller
        self.cfg = configuration or poller.api.cfg

    # ------------------------------------------------------------------ #
    # public API                                                         #
    # ------------------------------------------------------------------ #

    async def send_transaction(
        self,
        label: str,
        network: str | NetworkName,
        run: Runner,
        on_status: Optional[StatusCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TxResult:
        net = parse_network(network)
        record_id = uuid.uuid4().hex
        self.store.upsert(
            TransactionRecord(
                id=record_id,
                label=label,
                network=net.value,
                status=TxStatus.REQUESTING_SIGNATURE,
            )
        )
        self._notify(on_status, TxStatus.REQUESTING_SIGNATURE, {"id": record_id})

        try:
            result = await run()
        except UserCancelledError as exc:
            return self._fail(record_id, exc.message, on_status)
        except asyncio.CancelledError:
            self.store.update(record_id, status=TxStatus.FAILED, error="Cancelled")
            raise
        except Exception as exc:
            logger.error("%s: wallet submission failed: %s", label, exc)
            return self._fail(record_id, str(exc) or "Transaction failed", on_status)

        tx_id = extract_tx_id(result)
        if not tx_id:
            return self._fail(record_id, "No txId returned", on_status)

        self.store.update(
            record_id,
            tx_id=tx_id,
            status=TxStatus.SUBMITTED,
            url=explorer_tx_url(net, tx_id, self.cfg),
        )
        self._notify(on_status, TxStatus.SUBMITTED, {"txId": tx_id})
        logger.info("%s submitted as %s", label, tx_id, extra={"tx_id": tx_id})

        def mirror(status: TxStatus, data: Dict[str, Any]) -> None:
            if status is TxStatus.FAILED:
                self.store.update(record_id, status=status, error=data.get("reason"))
            else:
                self.store.update(record_id, status=status)
            self._notify(on_status, status, data)

        try:
            outcome = await self.poller.poll(tx_id, net, mirror, cancel_event)
        except asyncio.CancelledError:
            self.store.update(record_id, status=TxStatus.FAILED, error="Cancelled")
            raise

        if outcome is None:
            self.store.update(record_id, status=TxStatus.FAILED, error="Polling cancelled")
            return TxResult(ok=False, tx_id=tx_id, error="Polling cancelled")
        if outcome is TxStatus.SUCCESS:
            return TxResult(ok=True, tx_id=tx_id)
        record = self.store.get(record_id)
        return TxResult(ok=False, tx_id=tx_id, error=record.error if record else None)

    def dismiss(self, id_or_tx: str) -> None:
        self.store.remove(id_or_tx)

    # ------------------------------------------------------------------ #
    # helpers                                                            #
    # ------------------------------------------------------------------ #

    def _fail(self, record_id: str, reason: str, on_status: Optional[StatusCallback]) -> TxResult:
        self.store.update(record_id, status=TxStatus.FAILED, error=reason)
        self._notify(on_status, TxStatus.FAILED, {"reason": reason})
        return TxResult(ok=False, error=reason)

    @staticmethod
    def _notify(callback: Optional[StatusCallback], status: TxStatus, data: Dict[str, Any]) -> None:
        if callback is None:
            return
        try:
            callback(status, data)
        except Exception as exc:
            logger.error("Status observer raised on %s: %s", status.value, exc)
