"""Read-only history of the user's alerts.

The server exposes every alert through one endpoint; the client keeps the
ones matching the registered phone number.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

import structlog
from pydantic import ValidationError

from src.models.alert import ServerAlert
from src.models.enums import AlertStatus

if TYPE_CHECKING:
    from src.services.alert_client import AlertSubmissionClient

logger = structlog.get_logger(__name__)


class AlertHistoryService:
    """Lists and summarises the alerts of one phone number."""

    __slots__ = ("_client",)

    def __init__(self, client: AlertSubmissionClient) -> None:
        self._client = client

    async def list_for_phone(self, phone: str) -> list[ServerAlert]:
        """Alerts whose ``user_phone`` equals *phone*, newest first.

        Raises :class:`HistoryUnavailableError` when the server cannot be
        queried.  Malformed records are skipped.
        """
        phone = phone.strip()
        if not phone:
            return []

        alerts: list[ServerAlert] = []
        for record in await self._client.list_alerts():
            if str(record.get("user_phone", "")).strip() != phone:
                continue
            try:
                alerts.append(ServerAlert.model_validate(record))
            except ValidationError:
                logger.warning("history.record_invalid", record_id=record.get("id"))

        alerts.sort(
            key=lambda a: a.created_at.timestamp() if a.created_at else float("-inf"),
            reverse=True,
        )
        logger.info("history.loaded", count=len(alerts))
        return alerts

    @staticmethod
    def summarize(alerts: list[ServerAlert]) -> dict[AlertStatus, int]:
        """Count alerts per status; every status is present in the result."""
        counts = Counter(alert.status for alert in alerts)
        return {status: counts.get(status, 0) for status in AlertStatus}
