"""FireAlert client core entry point.

Builds the explicitly owned :class:`AlertContext` that wires the submission
client, offline queue, connectivity monitor, location service, panic machine
and history service together, and manages their lifecycle::

    async with AlertContext(position_provider=gps, dialer=dialer) as ctx:
        await ctx.register("Ana", "+551199999999")
        outcome = await ctx.submit_alert("Smoke on the 3rd floor")

Platform collaborators (GPS, dialer, vibration) are injected; everything else
is constructed from :mod:`config.settings`.
"""

from __future__ import annotations

import logging
from types import TracebackType

import structlog

from config.settings import Settings, settings as default_settings
from src.models.alert import AlertDraft, MediaReference, ServerAlert, UserProfile
from src.models.enums import SendStatus
from src.services.alert_client import AlertSubmissionClient
from src.services.connectivity import ConnectivityMonitor
from src.services.geolocation import LocationService, PositionProvider
from src.services.history import AlertHistoryService
from src.services.offline_queue import OfflineQueueManager, SendOutcome
from src.services.panic import AlertFeedback, EmergencyDialer, PanicEscalationMachine
from src.services.storage import ProfileRepository, QueueStore, create_backend

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging(config: Settings) -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelNamesMapping().get(config.log_level.upper(), logging.INFO),
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application context
# ---------------------------------------------------------------------------


class AlertContext:
    """Owns every component of the alert subsystem for one app run.

    Parameters
    ----------
    position_provider:
        Platform GPS / geocoder.
    dialer:
        Platform telephony for the emergency-call prompt.
    feedback:
        Optional sound / vibration driver for panic mode.
    config:
        Settings; defaults to the module-level singleton.
    client:
        Pre-built submission client (tests inject one with a mock transport).
    connectivity:
        Pre-built connectivity monitor.
    configure_logging:
        Whether :meth:`start` configures structlog.
    """

    def __init__(
        self,
        position_provider: PositionProvider,
        dialer: EmergencyDialer,
        *,
        feedback: AlertFeedback | None = None,
        config: Settings | None = None,
        client: AlertSubmissionClient | None = None,
        connectivity: ConnectivityMonitor | None = None,
        configure_logging: bool = False,
    ) -> None:
        self.config = config or default_settings
        self._configure_logging = configure_logging
        self._started = False
        self._unsubscribe_connectivity = None
        self.profile = UserProfile()

        # -- 1. Local storage ---------------------------------------------------
        self.profiles = ProfileRepository(create_backend(self.config.profile_path))
        queue_store = QueueStore(create_backend(self.config.queue_path)) if self.config.queue_path else None

        # -- 2. Network -----------------------------------------------------------
        self.client = client or AlertSubmissionClient(
            self.config.api_base_url,
            timeout=self.config.request_timeout_seconds,
        )
        self.connectivity = connectivity or ConnectivityMonitor(
            probe_url=self.config.api_base_url,
            poll_interval=self.config.connectivity_poll_seconds,
            probe_timeout=self.config.connectivity_probe_timeout_seconds,
        )

        # -- 3. Location ----------------------------------------------------------
        self.location = LocationService(
            position_provider,
            timeout_seconds=self.config.location_timeout_seconds,
        )

        # -- 4. Queue, panic machine, history -----------------------------------
        self.queue = OfflineQueueManager(self.client, self.connectivity, store=queue_store)
        self.panic = PanicEscalationMachine(
            self.queue,
            self.location,
            lambda: self.profile,
            dialer,
            feedback=feedback,
            motion_threshold_g=self.config.motion_threshold_g,
            auto_send_delay=self.config.panic_auto_send_seconds,
            warning_seconds=self.config.panic_warning_seconds,
            call_delay=self.config.panic_call_delay_seconds,
            emergency_numbers=self.config.emergency_numbers,
            shake_detection=self.config.shake_detection,
        )
        self.history = AlertHistoryService(self.client)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, *, probe_connectivity: bool = False) -> None:
        """Load persisted state and start listening for reconnects."""
        if self._started:
            return
        if self._configure_logging:
            _configure_logging(self.config)

        self.profile = await self.profiles.load()
        restored = await self.queue.load()
        self._unsubscribe_connectivity = self.connectivity.subscribe(self._on_connectivity_change)
        if probe_connectivity:
            self.connectivity.start()
        self._started = True
        logger.info(
            "app.startup",
            api=self.config.api_base_url,
            profile_complete=self.profile.is_complete,
            queued=restored,
        )

        if restored and self.connectivity.is_reachable:
            await self.queue.drain()

    async def aclose(self) -> None:
        """Stop timers and listeners, then release network resources."""
        if self._unsubscribe_connectivity is not None:
            self._unsubscribe_connectivity()
            self._unsubscribe_connectivity = None
        await self.panic.aclose()
        await self.connectivity.stop()
        await self.client.close()
        self._started = False
        logger.info("app.shutdown", queued=len(self.queue))

    async def __aenter__(self) -> AlertContext:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def _on_connectivity_change(self, reachable: bool):
        # One drain per offline -> online transition.
        if reachable:
            return self.queue.drain()
        return None

    # ------------------------------------------------------------------
    # User flows
    # ------------------------------------------------------------------

    async def register(self, user_name: str, user_phone: str) -> UserProfile:
        self.profile = UserProfile(user_name=user_name.strip(), user_phone=user_phone.strip())
        await self.profiles.save(self.profile)
        return self.profile

    async def submit_alert(
        self,
        message: str = "",
        *,
        photo: MediaReference | None = None,
        video: MediaReference | None = None,
        audio: MediaReference | None = None,
    ) -> SendOutcome:
        """Compose an alert from the registered profile and current fix, then send it.

        Raises
        ------
        InvalidDraftError
            No registered name/phone.
        PermissionDeniedError, LocationUnavailableError
            No location fix; the caller offers a retry.
        """
        await self.profiles.save(self.profile)
        location = await self.location.ensure_location()
        draft = AlertDraft(
            user_name=self.profile.user_name,
            user_phone=self.profile.user_phone,
            message=message,
            location=location,
            photo=photo,
            video=video,
            audio=audio,
        )
        outcome = await self.queue.try_send_now(draft)
        self._log_outcome(outcome)
        return outcome

    async def retry(self, draft: AlertDraft) -> SendOutcome:
        """Manual retry that reuses *draft* verbatim."""
        outcome = await self.queue.try_send_now(draft)
        self._log_outcome(outcome)
        return outcome

    async def load_history(self) -> list[ServerAlert]:
        return await self.history.list_for_phone(self.profile.user_phone)

    @staticmethod
    def _log_outcome(outcome: SendOutcome) -> None:
        if outcome.status == SendStatus.DELIVERED:
            logger.info("app.alert_delivered", draft_id=outcome.draft.id)
        elif outcome.status == SendStatus.QUEUED_OFFLINE:
            logger.info("app.alert_saved_offline", draft_id=outcome.draft.id)
        else:
            logger.warning(
                "app.alert_failed",
                draft_id=outcome.draft.id,
                error_code=outcome.error.error_code if outcome.error else None,
            )
