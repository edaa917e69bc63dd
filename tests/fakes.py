"""Test doubles for the platform collaborators and the submission client.

All tests run WITHOUT network access.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import Any

from src.models.alert import AlertDraft, Location
from src.models.errors import SubmissionError, SubmissionRejectedError
from src.services.alert_client import SubmissionReceipt


class FakeSubmissionClient:
    """Records submitted draft ids.

    Drafts listed in ``failures`` raise the mapped error; ``fail_all`` fails
    every draft.  While ``gate`` is set, each submit blocks until it fires.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.failures: dict[str, SubmissionError] = {}
        self.fail_all: SubmissionError | None = None
        self.gate: asyncio.Event | None = None
        self._counter = 0

    async def submit(self, draft: AlertDraft) -> SubmissionReceipt:
        self.calls.append(draft.id)
        if self.gate is not None:
            await self.gate.wait()
        error = self.fail_all or self.failures.get(draft.id)
        if error is not None:
            raise error
        self._counter += 1
        return SubmissionReceipt(
            alert_id=str(self._counter),
            status_code=201,
            payload={"success": True, "id": self._counter},
        )

    async def list_alerts(self) -> list[dict[str, Any]]:
        return []

    async def close(self) -> None:
        return None


class FakePositionProvider:
    def __init__(
        self,
        position: tuple[float, float] = (-25.9692, 32.5732),
        addresses: list[dict[str, Any]] | None = None,
        delay: float = 0.0,
        error: Exception | None = None,
    ) -> None:
        self.position = position
        self.addresses = addresses if addresses is not None else [
            {"street": "Av. 24 de Julho", "city": "Maputo", "region": "Maputo City"}
        ]
        self.delay = delay
        self.error = error
        self.calls = 0

    async def current_position(self) -> tuple[float, float]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.position

    async def reverse_geocode(self, latitude: float, longitude: float) -> list[dict[str, Any]]:
        return self.addresses


class FakeDialer:
    def __init__(self) -> None:
        self.offers: list[tuple[str, ...]] = []

    async def offer_call(self, numbers: Sequence[str]) -> str | None:
        self.offers.append(tuple(numbers))
        return numbers[0] if numbers else None


class FakeFeedback:
    def __init__(self) -> None:
        self.started = 0
        self.stopped = 0

    def start(self) -> None:
        self.started += 1

    def stop(self) -> None:
        self.stopped += 1


def rejection(status_code: int = 500, body: str = '{"error":"db down"}') -> SubmissionRejectedError:
    return SubmissionRejectedError(
        f"Alert rejected with HTTP {status_code}", status_code=status_code, body=body
    )


def make_draft(**overrides: Any) -> AlertDraft:
    fields: dict[str, Any] = {
        "user_name": "Ana",
        "user_phone": "+551199999999",
        "message": "Fire in the building",
        "location": Location(latitude=-23.55, longitude=-46.63, address="Rua Augusta, São Paulo, SP"),
    }
    fields.update(overrides)
    return AlertDraft(**fields)


async def wait_until(predicate: Callable[[], object], *, timeout: float = 1.0) -> None:
    """Poll *predicate* on the event loop until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition was not reached in time")
        await asyncio.sleep(0.001)
