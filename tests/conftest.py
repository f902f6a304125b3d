"""Shared fixtures for the linkwatch test suite."""

import os

# Set test environment before the package reads its settings
os.environ.update({
    "APP_ENV": "test",
    "LOG_LEVEL": "WARNING",
    "NATS_ENABLED": "false",
    "RUN_MIGRATIONS": "false",
    "LINKWATCH_CREDENTIAL_KEY": "test-credential-key",
})

import pytest

from linkwatch.collectors.base import DeviceClientRegistry
from linkwatch.core.config import Settings
from linkwatch.models.device import ConnectionMethod, Device

from fakes import (
    FakeState,
    InMemoryRepositories,
    RecordingPublisher,
    ScriptedDeviceClient,
    make_device,
)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        poll_interval=60,
        device_fetch_timeout=0.05,
        max_concurrent_polls=4,
        alert_confirmation_checks=3,
        unreachable_confirmation_checks=2,
        realtime_fetch_timeout=0.05,
        realtime_poll_interval=0.1,
        realtime_history_points=10,
        realtime_queue_size=2,
        retention_batch_size=2,
        nats_enabled=False,
    )


@pytest.fixture
def state() -> FakeState:
    return FakeState()


@pytest.fixture
def repos(state) -> InMemoryRepositories:
    return InMemoryRepositories(state)


@pytest.fixture
def device_client() -> ScriptedDeviceClient:
    return ScriptedDeviceClient()


@pytest.fixture
def clients(device_client) -> DeviceClientRegistry:
    return DeviceClientRegistry({
        ConnectionMethod.API: device_client,
        ConnectionMethod.REST: device_client,
        ConnectionMethod.SNMP: device_client,
    })


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def device(state) -> Device:
    return state.add_device(make_device())
