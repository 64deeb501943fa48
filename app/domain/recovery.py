"""Cart recovery lifecycle.

Every status change a cart goes through is resolved here, so the rule
"a second reminder always lands on NOTIFIED_FINAL" lives in one place::

    NONE -> ABANDONED -> NOTIFIED_FIRST -> NOTIFIED_FINAL -> LOST
    (any status) -> RECOVERED
"""

from __future__ import annotations

from app.domain.enums import RecoveryEvent, RecoveryStatus


class InvalidTransitionError(ValueError):
    def __init__(self, current: RecoveryStatus, event: RecoveryEvent):
        self.current = current
        self.event = event
        super().__init__(f"Cannot apply {event.value} to a cart in status {current.value}")


_MESSAGE_SOURCES = frozenset(
    {
        RecoveryStatus.NONE,
        RecoveryStatus.ABANDONED,
        RecoveryStatus.NOTIFIED_FIRST,
        RecoveryStatus.NOTIFIED_FINAL,
    }
)

_SOURCES: dict[RecoveryEvent, frozenset[RecoveryStatus]] = {
    RecoveryEvent.MARKED_ABANDONED: frozenset({RecoveryStatus.NONE}),
    RecoveryEvent.MESSAGE_SENT: _MESSAGE_SOURCES,
    # El engine no revalida: el caller decide si la recuperacion es legitima.
    RecoveryEvent.CUSTOMER_RECOVERED: frozenset(RecoveryStatus),
    RecoveryEvent.EXPIRED: frozenset({RecoveryStatus.NOTIFIED_FINAL}),
}


def statuses_for(event: RecoveryEvent) -> frozenset[RecoveryStatus]:
    """Statuses from which ``event`` is allowed."""
    return _SOURCES[event]


def can_apply(current: RecoveryStatus, event: RecoveryEvent) -> bool:
    return current in _SOURCES[event]


def next_status(current: RecoveryStatus, event: RecoveryEvent) -> RecoveryStatus:
    if not can_apply(current, event):
        raise InvalidTransitionError(current, event)

    if event is RecoveryEvent.MARKED_ABANDONED:
        return RecoveryStatus.ABANDONED
    if event is RecoveryEvent.MESSAGE_SENT:
        if current is RecoveryStatus.ABANDONED:
            return RecoveryStatus.NOTIFIED_FIRST
        return RecoveryStatus.NOTIFIED_FINAL
    if event is RecoveryEvent.CUSTOMER_RECOVERED:
        return RecoveryStatus.RECOVERED
    return RecoveryStatus.LOST
