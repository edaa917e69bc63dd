"""FireAlert service layer -- submission, offline queue, panic mode and supporting integrations."""

from __future__ import annotations

from src.services.alert_client import AlertSubmissionClient, SubmissionReceipt
from src.services.connectivity import ConnectivityMonitor
from src.services.geolocation import LocationService, PositionProvider
from src.services.history import AlertHistoryService
from src.services.offline_queue import DrainReport, OfflineQueueManager, SendOutcome
from src.services.panic import (
    AlertFeedback,
    EmergencyDialer,
    MotionSensor,
    PanicEscalationMachine,
    PanicSession,
)
from src.services.storage import (
    InMemoryStorageBackend,
    JsonFileStorageBackend,
    ProfileRepository,
    QueueStore,
)

__all__ = [
    "AlertFeedback",
    "AlertHistoryService",
    "AlertSubmissionClient",
    "ConnectivityMonitor",
    "DrainReport",
    "EmergencyDialer",
    "InMemoryStorageBackend",
    "JsonFileStorageBackend",
    "LocationService",
    "MotionSensor",
    "OfflineQueueManager",
    "PanicEscalationMachine",
    "PanicSession",
    "PositionProvider",
    "ProfileRepository",
    "QueueStore",
    "SendOutcome",
    "SubmissionReceipt",
]
