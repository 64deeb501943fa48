# app/domain/enums.py
import enum


class RecoveryStatus(str, enum.Enum):
    NONE = "NONE"
    ABANDONED = "ABANDONED"
    NOTIFIED_FIRST = "NOTIFIED_FIRST"
    NOTIFIED_FINAL = "NOTIFIED_FINAL"
    RECOVERED = "RECOVERED"
    LOST = "LOST"

    @property
    def is_terminal(self) -> bool:
        return self in (RecoveryStatus.RECOVERED, RecoveryStatus.LOST)

    @property
    def is_notified(self) -> bool:
        return self in (RecoveryStatus.NOTIFIED_FIRST, RecoveryStatus.NOTIFIED_FINAL)


class RecoveryEvent(str, enum.Enum):
    MARKED_ABANDONED = "marked_abandoned"
    MESSAGE_SENT = "message_sent"
    CUSTOMER_RECOVERED = "customer_recovered"
    EXPIRED = "expired"
