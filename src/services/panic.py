"""Panic mode: timed auto-send followed by an emergency-call prompt.

State machine::

    idle ──trigger──> triggered ──(same call)──> auto_send_scheduled
                                                     │ timer / send_now()
                                                     v
    idle <──prompt surfaced── escalating <────── sending

``cancel()`` returns to ``idle`` from any state until the emergency-call
prompt has been surfaced.  Every timer belongs to one :class:`PanicSession`
and runs as its own asyncio task; a cancelled or superseded task can never
move the machine, because each step re-checks that its session and task are
still the current ones.

The emergency call is never blocked by the network: whatever happens to the
auto-send (offline, rejected, no location fix), the machine still escalates.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final, Protocol
from uuid import uuid4

import structlog

from src.models.alert import AlertDraft, Location, UserProfile
from src.models.enums import PanicState, TriggerSource
from src.models.errors import LocationUnavailableError, PermissionDeniedError

if TYPE_CHECKING:
    from src.services.geolocation import LocationService
    from src.services.offline_queue import OfflineQueueManager, SendOutcome

logger = structlog.get_logger(__name__)

FALLBACK_USER_NAME: Final[str] = "Emergency User"
FALLBACK_USER_PHONE: Final[str] = "Not provided"

_EMERGENCY_MESSAGES: Final[dict[TriggerSource, str]] = {
    TriggerSource.MOTION: "AUTOMATIC ALERT - EMERGENCY DETECTED BY SUDDEN MOVEMENT",
    TriggerSource.MANUAL: "AUTOMATIC ALERT - PANIC MODE ACTIVATED",
}

Unsubscribe = Callable[[], None]


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class EmergencyDialer(Protocol):
    """Platform telephony: shows the call prompt for the given numbers."""

    async def offer_call(self, numbers: Sequence[str]) -> str | None:
        """Return the number the user dialled, or ``None``."""
        ...


class AlertFeedback(Protocol):
    """Sound / vibration shown while panic mode is active."""

    def start(self) -> None: ...

    def stop(self) -> None: ...


class MotionSensor(Protocol):
    def subscribe(self, callback: Callable[[float, float, float], None]) -> Unsubscribe: ...


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class PanicSession:
    """One activation, from trigger to resolution."""

    source: TriggerSource
    auto_send_delay: float
    warning_seconds: int
    session_id: str = field(default_factory=lambda: uuid4().hex)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    state: PanicState = PanicState.IDLE
    task: asyncio.Task | None = None  # type: ignore[type-arg]
    draft: AlertDraft | None = None
    outcome: SendOutcome | None = None
    call_initiated: bool = False
    dialed_number: str | None = None


StateListener = Callable[[PanicState, PanicState, PanicSession], None]


def acceleration_magnitude(x: float, y: float, z: float) -> float:
    """Magnitude of a 3-axis accelerometer sample, in g."""
    return math.sqrt(x * x + y * y + z * z)


# ---------------------------------------------------------------------------
# Machine
# ---------------------------------------------------------------------------


class PanicEscalationMachine:
    """Drives panic sessions.

    Parameters
    ----------
    queue:
        Submission path shared with user-composed alerts.
    location:
        Source of the location fix for the emergency draft.
    profile:
        Returns the registered identity at send time.
    dialer:
        Surfaces the emergency-call prompt.
    feedback:
        Optional sound / vibration driver.
    motion_threshold_g:
        Samples strictly above this magnitude trigger panic mode.
    auto_send_delay:
        Seconds between trigger and auto-send.
    warning_seconds:
        Countdown shown to the user; informational only.
    call_delay:
        Seconds between the send resolving and the call prompt.
    emergency_numbers:
        Numbers offered by the call prompt.
    shake_detection:
        When ``False``, motion samples are ignored.
    """

    def __init__(
        self,
        queue: OfflineQueueManager,
        location: LocationService,
        profile: Callable[[], UserProfile],
        dialer: EmergencyDialer,
        *,
        feedback: AlertFeedback | None = None,
        motion_threshold_g: float = 2.5,
        auto_send_delay: float = 3.0,
        warning_seconds: int = 10,
        call_delay: float = 2.0,
        emergency_numbers: Sequence[str] = ("193", "112"),
        shake_detection: bool = True,
    ) -> None:
        self._queue = queue
        self._location = location
        self._profile = profile
        self._dialer = dialer
        self._feedback = feedback
        self._threshold = motion_threshold_g
        self._auto_send_delay = auto_send_delay
        self._warning_seconds = warning_seconds
        self._call_delay = call_delay
        self._numbers = tuple(emergency_numbers)
        self._shake_detection = shake_detection
        self._session: PanicSession | None = None
        self._listeners: list[StateListener] = []

    # ------------------------------------------------------------------
    # Inspection & observers
    # ------------------------------------------------------------------

    @property
    def state(self) -> PanicState:
        return self._session.state if self._session is not None else PanicState.IDLE

    @property
    def session(self) -> PanicSession | None:
        return self._session

    def subscribe(self, listener: StateListener) -> Unsubscribe:
        """Call *listener* with ``(old, new, session)`` on every transition."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, session: PanicSession, new: PanicState) -> None:
        old = session.state
        session.state = new
        logger.info(
            "panic.state_changed",
            session_id=session.session_id,
            old=old,
            new=new,
        )
        for listener in list(self._listeners):
            try:
                listener(old, new, session)
            except Exception:
                logger.error("panic.listener_failed", exc_info=True)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def trigger(self, source: TriggerSource = TriggerSource.MANUAL) -> PanicSession | None:
        """Start a session; ignored (returns ``None``) unless idle.

        Must be called from within the running event loop.
        """
        if self._session is not None:
            logger.info("panic.trigger_ignored", source=source, state=self.state)
            return None

        session = PanicSession(
            source=source,
            auto_send_delay=self._auto_send_delay,
            warning_seconds=self._warning_seconds,
        )
        self._session = session
        self._set_state(session, PanicState.TRIGGERED)
        self._start_feedback()

        session.task = asyncio.get_running_loop().create_task(
            self._run(session, self._auto_send_delay)
        )
        self._set_state(session, PanicState.AUTO_SEND_SCHEDULED)
        return session

    def on_motion(self, x: float, y: float, z: float) -> bool:
        """Feed one accelerometer sample; returns ``True`` if it triggered."""
        if not self._shake_detection or self._session is not None:
            return False
        magnitude = acceleration_magnitude(x, y, z)
        if magnitude <= self._threshold:
            return False
        logger.warning("panic.motion_detected", magnitude=round(magnitude, 3))
        return self.trigger(TriggerSource.MOTION) is not None

    def attach_motion_sensor(self, sensor: MotionSensor) -> Unsubscribe:
        return sensor.subscribe(self.on_motion)

    def send_now(self) -> bool:
        """Skip the remaining countdown and send immediately."""
        session = self._session
        if session is None or session.state != PanicState.AUTO_SEND_SCHEDULED:
            return False
        if session.task is not None:
            session.task.cancel()
        session.task = asyncio.get_running_loop().create_task(self._run(session, 0))
        logger.info("panic.send_now", session_id=session.session_id)
        return True

    def cancel(self) -> bool:
        """Abort the active session unless the call prompt was already surfaced."""
        session = self._session
        if session is None:
            return False
        if session.call_initiated:
            logger.info("panic.cancel_refused", session_id=session.session_id)
            return False

        self._session = None
        if session.task is not None and not session.task.done():
            session.task.cancel()
        self._stop_feedback()
        self._set_state(session, PanicState.IDLE)
        logger.info("panic.cancelled", session_id=session.session_id)
        return True

    async def wait(self) -> None:
        """Wait for the active session (if any) to resolve."""
        while self._session is not None and self._session.task is not None:
            task = self._session.task
            await asyncio.gather(task, return_exceptions=True)
            if self._session is not None and self._session.task is task:
                break

    async def aclose(self) -> None:
        """Tear down on shutdown, whatever the session state."""
        session = self._session
        if session is None:
            return
        self._session = None
        self._stop_feedback()
        if session.task is not None and not session.task.done():
            session.task.cancel()
            await asyncio.gather(session.task, return_exceptions=True)
        self._set_state(session, PanicState.IDLE)

    # ------------------------------------------------------------------
    # Session task
    # ------------------------------------------------------------------

    def _owns(self, session: PanicSession) -> bool:
        return self._session is session and session.task is asyncio.current_task()

    async def _run(self, session: PanicSession, delay: float) -> None:
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            if not self._owns(session) or session.state != PanicState.AUTO_SEND_SCHEDULED:
                return
            await self._send(session)
            if not self._owns(session):
                return
            await self._escalate(session)
        finally:
            if self._owns(session):
                self._finish(session)

    async def _send(self, session: PanicSession) -> None:
        self._set_state(session, PanicState.SENDING)
        try:
            location = await self._location.ensure_location()
        except (LocationUnavailableError, PermissionDeniedError) as exc:
            logger.error(
                "panic.location_failed",
                session_id=session.session_id,
                error_code=exc.error_code,
            )
            return

        session.draft = self.build_emergency_draft(session.source, location)
        try:
            session.outcome = await self._queue.try_send_now(session.draft)
        except Exception:
            logger.error("panic.auto_send_failed", session_id=session.session_id, exc_info=True)
            return
        logger.info(
            "panic.auto_send_resolved",
            session_id=session.session_id,
            status=session.outcome.status,
        )

    async def _escalate(self, session: PanicSession) -> None:
        self._set_state(session, PanicState.ESCALATING)
        if self._call_delay > 0:
            await asyncio.sleep(self._call_delay)
        if not self._owns(session):
            return
        session.call_initiated = True
        logger.warning(
            "panic.emergency_call_prompt",
            session_id=session.session_id,
            numbers=list(self._numbers),
        )
        try:
            session.dialed_number = await self._dialer.offer_call(self._numbers)
        except Exception:
            logger.error("panic.dialer_failed", session_id=session.session_id, exc_info=True)

    def _finish(self, session: PanicSession) -> None:
        self._session = None
        self._stop_feedback()
        self._set_state(session, PanicState.IDLE)
        logger.info(
            "panic.session_complete",
            session_id=session.session_id,
            dialed=session.dialed_number,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def build_emergency_draft(self, source: TriggerSource, location: Location) -> AlertDraft:
        profile = self._profile()
        return AlertDraft(
            user_name=profile.user_name.strip() or FALLBACK_USER_NAME,
            user_phone=profile.user_phone.strip() or FALLBACK_USER_PHONE,
            message=_EMERGENCY_MESSAGES[source],
            location=location,
            is_emergency=True,
        )

    def _start_feedback(self) -> None:
        if self._feedback is None:
            return
        try:
            self._feedback.start()
        except Exception:
            logger.warning("panic.feedback_failed", exc_info=True)

    def _stop_feedback(self) -> None:
        if self._feedback is None:
            return
        try:
            self._feedback.stop()
        except Exception:
            logger.warning("panic.feedback_failed", exc_info=True)
