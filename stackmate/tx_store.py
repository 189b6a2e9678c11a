# tx_store.py
"""
Stackmate – TransactionStore
============================

Process-wide registry of in-flight and recent transactions, newest first,
capped and persisted as one JSON array under a fixed storage key.

Persistence is fail-soft: storage errors are logged and the in-memory list
stays authoritative for the session. Several processes writing the same
storage file are not coordinated (last writer wins).
"""

from __future__ import annotations

import asyncio
import enum
import json
import os
import tempfile
import time
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .loggingconfig import setup_logging

logger = setup_logging("TransactionStore")

DEFAULT_STORE_KEY = "stackmate:tx:recent"
DEFAULT_LIMIT = 10


class TxStatus(str, enum.Enum):
    IDLE = "idle"
    REQUESTING_SIGNATURE = "requesting_signature"
    SUBMITTED = "submitted"
    CONFIRMING = "confirming"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TxStatus.SUCCESS, TxStatus.FAILED)

    @property
    def is_active(self) -> bool:
        return self in (TxStatus.REQUESTING_SIGNATURE, TxStatus.SUBMITTED, TxStatus.CONFIRMING)


def now_ms() -> int:
    return int(time.time() * 1000)


# camelCase keys keep the persisted layout stable across front-ends
_FIELD_KEYS = {
    "id": "id",
    "tx_id": "txId",
    "label": "label",
    "status": "status",
    "network": "network",
    "url": "url",
    "error": "error",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}


@dataclass(slots=True)
class TransactionRecord:
    id: str
    network: str
    status: TxStatus = TxStatus.IDLE
    tx_id: Optional[str] = None
    label: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0

    def __post_init__(self) -> None:
        self.status = TxStatus(self.status)
        self.network = str(getattr(self.network, "value", self.network))
        if not self.created_at:
            self.created_at = now_ms()
        if not self.updated_at:
            self.updated_at = self.created_at

    def matches(self, id_or_tx: str) -> bool:
        return self.id == id_or_tx or (self.tx_id is not None and self.tx_id == id_or_tx)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return {_FIELD_KEYS[k]: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionRecord":
        kwargs = {attr: data[key] for attr, key in _FIELD_KEYS.items() if key in data}
        return cls(**kwargs)


# --------------------------------------------------------------------------- #
# storage back-ends                                                           #
# --------------------------------------------------------------------------- #


class MemoryStorage:
    """Volatile key/value storage."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileStorage:
    """Durable key/value storage in a single JSON file, local-storage style."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        return data if isinstance(data, dict) else {}

    def get_item(self, key: str) -> Optional[str]:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        try:
            data = self._read_all()
        except ValueError:
            logger.warning("Storage file %s is corrupt, rewriting it", self.path)
            data = {}
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


# --------------------------------------------------------------------------- #
# store                                                                       #
# --------------------------------------------------------------------------- #


class TransactionStore:
    def __init__(
        self,
        storage: Any = None,
        key: str = DEFAULT_STORE_KEY,
        limit: int = DEFAULT_LIMIT,
        success_ttl: float = 3.0,
    ) -> None:
        self.storage = storage if storage is not None else MemoryStorage()
        self.key = key
        self.limit = limit
        self.success_ttl = success_ttl
        self._items: List[TransactionRecord] = self._load()
        self._subscribers: List[Callable[[List[TransactionRecord]], Any]] = []
        self._expiries: Dict[str, asyncio.TimerHandle] = {}

    @classmethod
    def from_config(cls, configuration: Any) -> "TransactionStore":
        get = configuration.get_config_value
        return cls(
            storage=JsonFileStorage(get("TX_STORE_PATH", ".stackmate/storage.json")),
            key=get("TX_STORE_KEY", DEFAULT_STORE_KEY),
            limit=int(get("TX_STORE_LIMIT", DEFAULT_LIMIT)),
            success_ttl=float(get("TX_SUCCESS_TTL", 3.0)),
        )

    # ------------------------------------------------------------------ #
    # reads                                                              #
    # ------------------------------------------------------------------ #

    @property
    def items(self) -> List[TransactionRecord]:
        return list(self._items)

    @property
    def active(self) -> Optional[TransactionRecord]:
        return next((r for r in self._items if r.status.is_active), None)

    def get(self, id_or_tx: str) -> Optional[TransactionRecord]:
        return next((r for r in self._items if r.matches(id_or_tx)), None)

    def __len__(self) -> int:
        return len(self._items)

    def subscribe(self, callback: Callable[[List[TransactionRecord]], Any]) -> Callable[[], None]:
        """Register an observer called with the item list after every mutation."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------ #
    # mutations                                                          #
    # ------------------------------------------------------------------ #

    def upsert(self, record: TransactionRecord) -> None:
        """Insert at the head, replacing any row with the same id or txId."""
        rest = [
            r for r in self._items
            if r.id != record.id and not (record.tx_id and r.tx_id == record.tx_id)
        ]
        self._items = [record] + rest
        self._commit()
        if record.status is TxStatus.SUCCESS:
            self._schedule_expiry(record)

    def update(self, id_or_tx: str, **patch: Any) -> Optional[TransactionRecord]:
        patch.pop("updated_at", None)
        updated: Optional[TransactionRecord] = None
        items = []
        for r in self._items:
            if updated is None and r.matches(id_or_tx):
                r = replace(r, **patch, updated_at=now_ms())
                updated = r
            items.append(r)
        if updated is None:
            logger.debug("update: no record for %s", id_or_tx)
            return None
        if patch.get("tx_id"):
            # a txId belongs to one row only
            for r in items:
                if r is not updated and r.tx_id == updated.tx_id:
                    self._cancel_expiry(r.id)
            items = [r for r in items if r is updated or r.tx_id != updated.tx_id]
        self._items = items
        self._commit()
        if updated.status is TxStatus.SUCCESS:
            self._schedule_expiry(updated)
        return updated

    def remove(self, id_or_tx: str) -> None:
        kept = [r for r in self._items if not r.matches(id_or_tx)]
        for r in self._items:
            if r.matches(id_or_tx):
                self._cancel_expiry(r.id)
        self._items = kept
        self._commit()

    def reset(self) -> None:
        for handle in self._expiries.values():
            handle.cancel()
        self._expiries.clear()
        self._items = []
        self._commit()

    # ------------------------------------------------------------------ #
    # internals                                                          #
    # ------------------------------------------------------------------ #

    def _schedule_expiry(self, record: TransactionRecord) -> None:
        if self.success_ttl <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._cancel_expiry(record.id)
        self._expiries[record.id] = loop.call_later(self.success_ttl, self._expire, record.id)

    def _cancel_expiry(self, record_id: str) -> None:
        handle = self._expiries.pop(record_id, None)
        if handle is not None:
            handle.cancel()

    def _expire(self, record_id: str) -> None:
        self._expiries.pop(record_id, None)
        record = self.get(record_id)
        if record is not None and record.status is TxStatus.SUCCESS:
            logger.debug("Auto-dismissing %s", record.tx_id or record.id)
            self.remove(record_id)

    def _commit(self) -> None:
        self._items = self._items[: self.limit]
        self._save()
        for callback in list(self._subscribers):
            try:
                callback(self.items)
            except Exception as exc:
                logger.error("Store subscriber failed: %s", exc)

    def _load(self) -> List[TransactionRecord]:
        try:
            raw = self.storage.get_item(self.key)
            if not raw:
                return []
            rows = json.loads(raw)
        except Exception as exc:
            logger.warning("Could not load recent transactions: %s", exc)
            return []
        if not isinstance(rows, list):
            return []

        records: List[TransactionRecord] = []
        for row in rows[: self.limit]:
            try:
                records.append(TransactionRecord.from_dict(row))
            except (TypeError, ValueError) as exc:
                logger.debug("Skipping malformed stored record %r: %s", row, exc)
        return records

    def _save(self) -> None:
        try:
            payload = json.dumps([r.to_dict() for r in self._items[: self.limit]])
            self.storage.set_item(self.key, payload)
        except Exception as exc:
            logger.warning("Could not persist recent transactions: %s", exc)
