"""Alert draft and related models.

An :class:`AlertDraft` is the unit of work of the submission subsystem: one
emergency report assembled on the device, pending or completed delivery.
Everything on a draft is frozen except its delivery state, which only moves
along the lifecycle below::

    draft ──> queued ──> sending ──> delivered
      │          ^          │
      └──────────┼──────────┤
                 └───────── failed

A draft may not leave ``draft`` without a location, and ``delivered`` is
terminal.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Final
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from src.models.enums import AlertStatus, DeliveryState
from src.models.errors import InvalidDraftError, InvalidTransitionError

MAX_MESSAGE_LENGTH: Final[int] = 1000

_ALLOWED_TRANSITIONS: Final[dict[DeliveryState, frozenset[DeliveryState]]] = {
    DeliveryState.DRAFT: frozenset({DeliveryState.QUEUED, DeliveryState.SENDING}),
    DeliveryState.QUEUED: frozenset({DeliveryState.SENDING}),
    DeliveryState.SENDING: frozenset(
        {DeliveryState.DELIVERED, DeliveryState.QUEUED, DeliveryState.FAILED}
    ),
    DeliveryState.FAILED: frozenset({DeliveryState.QUEUED, DeliveryState.SENDING}),
    DeliveryState.DELIVERED: frozenset(),
}


# ---------------------------------------------------------------------------
# Location & media
# ---------------------------------------------------------------------------


def format_coordinates(latitude: float, longitude: float) -> str:
    return f"{latitude:.6f}, {longitude:.6f}"


class Location(BaseModel):
    """A geographic fix with a human-readable address."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: str

    @classmethod
    def from_coordinates(
        cls, latitude: float, longitude: float, address: str | None = None
    ) -> Location:
        """Build a location, falling back to formatted coordinates for the address."""
        address = (address or "").strip()
        return cls(
            latitude=latitude,
            longitude=longitude,
            address=address or format_coordinates(latitude, longitude),
        )


class MediaReference(BaseModel):
    """Pointer to captured media on the device."""

    model_config = ConfigDict(frozen=True)

    uri: str
    mime_type: str
    duration_ms: int | None = Field(default=None, ge=0)

    @classmethod
    def photo(cls, uri: str) -> MediaReference:
        return cls(uri=uri, mime_type="image/jpeg")

    @classmethod
    def video(cls, uri: str, duration_ms: int | None = None) -> MediaReference:
        return cls(uri=uri, mime_type="video/mp4", duration_ms=duration_ms)

    @classmethod
    def audio(cls, uri: str, duration_ms: int | None = None) -> MediaReference:
        return cls(uri=uri, mime_type="audio/m4a", duration_ms=duration_ms)


# ---------------------------------------------------------------------------
# Alert draft
# ---------------------------------------------------------------------------


class AlertDraft(BaseModel):
    """Immutable emergency report payload with a mutable delivery state."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    user_name: str
    user_phone: str
    message: str = Field(default="", max_length=MAX_MESSAGE_LENGTH)
    location: Location | None = None
    photo: MediaReference | None = None
    video: MediaReference | None = None
    audio: MediaReference | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    is_emergency: bool = False

    _delivery_state: DeliveryState = PrivateAttr(default=DeliveryState.DRAFT)

    @field_validator("user_name", "user_phone")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @property
    def delivery_state(self) -> DeliveryState:
        return self._delivery_state

    def missing_fields(self) -> list[str]:
        missing: list[str] = []
        if not self.user_name:
            missing.append("user_name")
        if not self.user_phone:
            missing.append("user_phone")
        if self.location is None:
            missing.append("location")
        return missing

    def ensure_submittable(self) -> None:
        """Raise :class:`InvalidDraftError` if required fields are absent."""
        missing = self.missing_fields()
        if missing:
            raise InvalidDraftError(missing)

    def transition_to(self, target: DeliveryState) -> None:
        current = self._delivery_state
        if current == target:
            return
        if target not in _ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current, target)
        if current == DeliveryState.DRAFT and self.location is None:
            raise InvalidDraftError(["location"])
        self._delivery_state = target

    # -- Persistence ------------------------------------------------------

    def to_record(self) -> dict[str, Any]:
        record = self.model_dump(mode="json")
        record["delivery_state"] = self._delivery_state.value
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> AlertDraft:
        data = dict(record)
        state = DeliveryState(data.pop("delivery_state", DeliveryState.DRAFT))
        draft = cls.model_validate(data)
        draft._delivery_state = state
        return draft


# ---------------------------------------------------------------------------
# Profile & server records
# ---------------------------------------------------------------------------


class UserProfile(BaseModel):
    """Registered identity of the device owner."""

    user_name: str = ""
    user_phone: str = ""

    @property
    def is_complete(self) -> bool:
        return bool(self.user_name.strip() and self.user_phone.strip())


class ServerAlert(BaseModel):
    """An alert as listed by ``GET /alerts``."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_phone: str = ""
    message: str = ""
    location: str = ""
    status: AlertStatus = AlertStatus.UNKNOWN
    created_at: datetime | None = None
    photo: str | None = None

    @field_validator("id", "user_phone", "message", "location", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, int | float):
            return str(value)
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, value: Any) -> AlertStatus:
        return AlertStatus.parse(value)
