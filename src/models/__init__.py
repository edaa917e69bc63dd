from src.models.alert import (
    MAX_MESSAGE_LENGTH,
    AlertDraft,
    Location,
    MediaReference,
    ServerAlert,
    UserProfile,
    format_coordinates,
)
from src.models.enums import (
    AlertStatus,
    DeliveryState,
    MediaKind,
    PanicState,
    SendStatus,
    TriggerSource,
)
from src.models.errors import (
    ConnectivityLostError,
    FireAlertError,
    HistoryUnavailableError,
    InvalidDraftError,
    InvalidTransitionError,
    LocationUnavailableError,
    MediaUnavailableError,
    PermissionDeniedError,
    SubmissionError,
    SubmissionRejectedError,
    TransportFailureError,
)

__all__ = [
    "AlertDraft",
    "AlertStatus",
    "ConnectivityLostError",
    "DeliveryState",
    "FireAlertError",
    "HistoryUnavailableError",
    "InvalidDraftError",
    "InvalidTransitionError",
    "Location",
    "LocationUnavailableError",
    "MAX_MESSAGE_LENGTH",
    "MediaKind",
    "MediaReference",
    "MediaUnavailableError",
    "PanicState",
    "PermissionDeniedError",
    "SendStatus",
    "ServerAlert",
    "SubmissionError",
    "SubmissionRejectedError",
    "TransportFailureError",
    "TriggerSource",
    "UserProfile",
    "format_coordinates",
]
