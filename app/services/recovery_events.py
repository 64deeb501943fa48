from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Protocol

from app.core.logging import get_logger
from app.core.metrics import record_recovery_event
from app.schemas.recovery import StoreScanResult

CART_IMPORTED = "cart_imported"
CART_ABANDONED = "cart_abandoned"
CART_RECOVERED = "cart_recovered"
MESSAGE_SENT = "message_sent"
MESSAGE_FAILED = "message_failed"
FOLLOW_UP_SENT = "follow_up_sent"
CARTS_LOST = "carts_lost"
CART_ERROR = "cart_error"
STORE_ERROR = "store_error"
ITEM_UNMAPPED = "item_unmapped"
SYNC_FAILED = "sync_failed"
REMOTE_FETCH_FAILED = "remote_fetch_failed"

_LEVELS = {
    MESSAGE_FAILED: logging.WARNING,
    ITEM_UNMAPPED: logging.WARNING,
    SYNC_FAILED: logging.WARNING,
    REMOTE_FETCH_FAILED: logging.WARNING,
    CART_ERROR: logging.ERROR,
    STORE_ERROR: logging.ERROR,
}


class RecoveryEventSink(Protocol):
    def emit(self, event: str, *, store_id: Any = None, amount: int = 1, **fields: Any) -> None:
        ...


class LoggingEventSink:
    """Writes every event as a structured log record and a Prometheus increment."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or get_logger("app.recovery")

    def emit(self, event: str, *, store_id: Any = None, amount: int = 1, **fields: Any) -> None:
        extra = {"event": event, "amount": amount, **{k: str(v) for k, v in fields.items()}}
        if store_id is not None:
            extra["store_id"] = str(store_id)
        self.logger.log(_LEVELS.get(event, logging.INFO), event, extra=extra)
        record_recovery_event(event, amount)


class ScanRecorder(LoggingEventSink):
    """Event sink that also keeps per-store tallies for the run summary."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        super().__init__(logger)
        self._totals: Counter[str] = Counter()
        self._by_store: Counter[tuple[str, str]] = Counter()

    def emit(self, event: str, *, store_id: Any = None, amount: int = 1, **fields: Any) -> None:
        super().emit(event, store_id=store_id, amount=amount, **fields)
        self._totals[event] += amount
        if store_id is not None:
            self._by_store[(str(store_id), event)] += amount

    def count(self, event: str, store_id: Any = None) -> int:
        if store_id is None:
            return self._totals[event]
        return self._by_store[(str(store_id), event)]

    def store_result(self, store_id: Any, *, recovered: int = 0) -> StoreScanResult:
        return StoreScanResult(
            store_id=store_id,
            imported=self.count(CART_IMPORTED, store_id),
            abandoned=self.count(CART_ABANDONED, store_id),
            notified=self.count(MESSAGE_SENT, store_id),
            follow_up=self.count(FOLLOW_UP_SENT, store_id),
            recovered=recovered,
            lost=self.count(CARTS_LOST, store_id),
            errors=self.count(CART_ERROR, store_id) + self.count(STORE_ERROR, store_id),
        )
