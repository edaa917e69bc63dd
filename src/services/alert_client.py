"""HTTP client for the alerts REST API.

``POST {base}/alerts`` takes a multipart form::

    user_name, user_phone, message, location, latitude, longitude
    photo  -> alert_photo.jpg   (optional)
    video  -> alert_video.mp4   (optional)
    audio  -> alert_audio.m4a   (optional)

and answers 200/201 with a JSON object such as
``{"success": true, "id": 42}``.  ``GET {base}/alerts`` returns the JSON list
of every alert known to the server.

:meth:`AlertSubmissionClient.submit` performs exactly one POST and never
touches the offline queue; classifying the outcome is its only job.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

import httpx
import orjson
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.models.alert import AlertDraft, MediaReference
from src.models.enums import MediaKind
from src.models.errors import (
    HistoryUnavailableError,
    MediaUnavailableError,
    SubmissionRejectedError,
    TransportFailureError,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_SUCCESS_STATUSES: Final[frozenset[int]] = frozenset({200, 201})

_MEDIA_FILENAMES: Final[dict[MediaKind, str]] = {
    MediaKind.PHOTO: "alert_photo.jpg",
    MediaKind.VIDEO: "alert_video.mp4",
    MediaKind.AUDIO: "alert_audio.m4a",
}

# Raw bodies are truncated in logs; the exception keeps the full text.
_LOG_BODY_LIMIT: Final[int] = 500


@dataclass(frozen=True, slots=True)
class SubmissionReceipt:
    """Confirmed server acceptance of one alert."""

    alert_id: str
    status_code: int
    payload: dict[str, Any] = field(default_factory=dict)


def _media_path(uri: str) -> Path:
    if uri.startswith("file://"):
        uri = uri[len("file://"):]
    return Path(uri)


def _extract_alert_id(payload: dict[str, Any]) -> str | None:
    for candidate in (payload.get("id"), payload.get("alert_id")):
        if candidate not in (None, ""):
            return str(candidate)
    data = payload.get("data")
    if isinstance(data, dict) and data.get("id") not in (None, ""):
        return str(data["id"])
    return None


class AlertSubmissionClient:
    """Serialises alert drafts and exchanges them with the alerts endpoint.

    Parameters
    ----------
    base_url:
        API root, e.g. ``https://example.org/api``.
    timeout:
        Per-request timeout in seconds.
    http_client:
        Optional pre-built client (tests pass one with a mock transport).
        An injected client is not closed by :meth:`close`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._alerts_url = f"{base_url.rstrip('/')}/alerts"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Accept": "application/json"},
            follow_redirects=True,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def build_form(self, draft: AlertDraft) -> list[tuple[str, tuple[str | None, bytes, str | None]]]:
        """Build the multipart parts for *draft*.

        Text fields are sent as parts without a filename, so the body is
        ``multipart/form-data`` even when no media is attached.
        """
        draft.ensure_submittable()
        location = draft.location
        assert location is not None  # noqa: S101

        text_fields = {
            "user_name": draft.user_name,
            "user_phone": draft.user_phone,
            "message": draft.message,
            "location": location.address,
            "latitude": str(location.latitude),
            "longitude": str(location.longitude),
        }
        parts: list[tuple[str, tuple[str | None, bytes, str | None]]] = [
            (name, (None, value.encode("utf-8"), None)) for name, value in text_fields.items()
        ]

        for kind in MediaKind:
            media: MediaReference | None = getattr(draft, kind.value)
            if media is None:
                continue
            content = await self._read_media(kind, media)
            parts.append((kind.value, (_MEDIA_FILENAMES[kind], content, media.mime_type)))
        return parts

    async def _read_media(self, kind: MediaKind, media: MediaReference) -> bytes:
        try:
            return await asyncio.to_thread(_media_path(media.uri).read_bytes)
        except OSError as exc:
            logger.warning("alert_client.media_unreadable", kind=kind, uri=media.uri)
            raise MediaUnavailableError(kind.value, media.uri) from exc

    async def submit(self, draft: AlertDraft) -> SubmissionReceipt:
        """POST *draft* once and classify the outcome.

        Returns
        -------
        SubmissionReceipt
            On HTTP 200/201 with a JSON object carrying a truthy ``success``
            and a server identifier.

        Raises
        ------
        SubmissionRejectedError
            Any other status, or a success status with an unusable body.
        TransportFailureError
            No HTTP response was received.
        MediaUnavailableError
            An attached media file could not be read.
        """
        parts = await self.build_form(draft)
        log = logger.bind(draft_id=draft.id, is_emergency=draft.is_emergency)

        try:
            response = await self._client.post(self._alerts_url, files=parts)
        except httpx.TransportError as exc:
            log.warning("alert_client.transport_failure", error=str(exc))
            raise TransportFailureError(
                f"Could not reach {self._alerts_url}: {exc}", error_type=type(exc).__name__
            ) from exc

        body = response.text
        log.info(
            "alert_client.response",
            status=response.status_code,
            body=body[:_LOG_BODY_LIMIT],
        )

        if response.status_code not in _SUCCESS_STATUSES:
            raise SubmissionRejectedError(
                f"Alert rejected with HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        try:
            payload = orjson.loads(response.content)
        except orjson.JSONDecodeError:
            raise SubmissionRejectedError(
                "Alert response is not valid JSON",
                status_code=response.status_code,
                body=body,
            ) from None

        if not isinstance(payload, dict) or not payload.get("success"):
            raise SubmissionRejectedError(
                "Alert response does not report success",
                status_code=response.status_code,
                body=body,
            )

        alert_id = _extract_alert_id(payload)
        if alert_id is None:
            raise SubmissionRejectedError(
                "Alert response carries no identifier",
                status_code=response.status_code,
                body=body,
            )

        log.info("alert_client.delivered", alert_id=alert_id)
        return SubmissionReceipt(
            alert_id=alert_id, status_code=response.status_code, payload=payload
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _get_alerts(self) -> httpx.Response:
        return await self._client.get(self._alerts_url)

    async def list_alerts(self) -> list[dict[str, Any]]:
        """Fetch every alert record from the server.

        Transport errors are retried; a bad status or a non-list body raises
        :class:`HistoryUnavailableError`.
        """
        try:
            response = await self._get_alerts()
        except httpx.TransportError as exc:
            logger.warning("alert_client.history_unreachable", error=str(exc))
            raise HistoryUnavailableError(str(exc) or "History endpoint unreachable") from exc

        if response.status_code != 200:
            logger.warning("alert_client.history_http_error", status=response.status_code)
            raise HistoryUnavailableError(
                f"History request failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = orjson.loads(response.content)
        except orjson.JSONDecodeError:
            raise HistoryUnavailableError("History response is not valid JSON") from None

        if isinstance(data, dict):
            data = data.get("data", data.get("alerts"))
        if not isinstance(data, list):
            raise HistoryUnavailableError("History response is not a list")
        return [record for record in data if isinstance(record, dict)]
