from __future__ import annotations

from enum import StrEnum


class DeliveryState(StrEnum):
    """Lifecycle stage of an alert draft on this device."""

    __slots__ = ()

    DRAFT = "draft"
    QUEUED = "queued"
    SENDING = "sending"
    DELIVERED = "delivered"
    FAILED = "failed"


class SendStatus(StrEnum):
    __slots__ = ()

    DELIVERED = "delivered"
    QUEUED_OFFLINE = "queued_offline"
    FAILED = "failed"


class AlertStatus(StrEnum):
    """Server-side handling status of a submitted alert."""

    __slots__ = ()

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> AlertStatus:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class PanicState(StrEnum):
    __slots__ = ()

    IDLE = "idle"
    TRIGGERED = "triggered"
    AUTO_SEND_SCHEDULED = "auto_send_scheduled"
    SENDING = "sending"
    ESCALATING = "escalating"


class TriggerSource(StrEnum):
    __slots__ = ()

    MANUAL = "manual"
    MOTION = "motion"


class MediaKind(StrEnum):
    __slots__ = ()

    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"
