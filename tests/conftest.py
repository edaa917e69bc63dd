"""Shared pytest fixtures.  The doubles themselves live in :mod:`tests.fakes`."""

from __future__ import annotations

import pytest

from src.services.connectivity import ConnectivityMonitor
from src.services.geolocation import LocationService
from tests.fakes import FakeDialer, FakeFeedback, FakePositionProvider, FakeSubmissionClient


@pytest.fixture
def fake_client() -> FakeSubmissionClient:
    return FakeSubmissionClient()


@pytest.fixture
def online() -> ConnectivityMonitor:
    return ConnectivityMonitor(initially_reachable=True)


@pytest.fixture
def offline() -> ConnectivityMonitor:
    return ConnectivityMonitor(initially_reachable=False)


@pytest.fixture
def position_provider() -> FakePositionProvider:
    return FakePositionProvider()


@pytest.fixture
def location_service(position_provider: FakePositionProvider) -> LocationService:
    return LocationService(position_provider, timeout_seconds=1.0)


@pytest.fixture
def dialer() -> FakeDialer:
    return FakeDialer()


@pytest.fixture
def feedback() -> FakeFeedback:
    return FakeFeedback()
