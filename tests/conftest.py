"""Shared test fixtures for all test modules."""

import threading
import uuid
from typing import Callable, List, Optional

import pytest

from telemetry.context import HostContext
from telemetry.endpoint import Endpoint
from telemetry.exceptions import DeliveryError
from telemetry.source import SourceRegistry, scalar_source
from telemetry.task import ScheduledHandle, Scheduler


class ManualHandle(ScheduledHandle):
    def __init__(self, callback: Callable[[], None], interval: float, delay: Optional[float]):
        self.callback = callback
        self.interval = interval
        self.delay = delay
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """Scheduler whose callbacks only run when a test ticks them."""

    def __init__(self) -> None:
        self.handles: List[ManualHandle] = []

    def schedule_repeating(self, callback, interval, delay=None) -> ManualHandle:
        handle = ManualHandle(callback, interval, delay)
        self.handles.append(handle)
        return handle

    def tick(self, index: int) -> None:
        handle = self.handles[index]
        if not handle.cancelled:
            handle.callback()


class RecordingEndpoint(Endpoint):
    """Endpoint keeping every payload it receives."""

    def __init__(self, on_consume: Optional[Callable[[bytes], None]] = None) -> None:
        self.payloads: List[bytes] = []
        self.on_consume = on_consume
        self.lock = threading.Lock()

    def consume(self, payload: bytes, cancel_event=None) -> None:
        if self.on_consume is not None:
            self.on_consume(payload)
        with self.lock:
            self.payloads.append(payload)


class FailingEndpoint(Endpoint):
    """Endpoint rejecting every payload."""

    def __init__(self) -> None:
        self.attempts = 0

    def consume(self, payload: bytes, cancel_event=None) -> None:
        self.attempts += 1
        raise DeliveryError("Request returned 500, 204 was expected.", status_code=500)


class BlockingEndpoint(Endpoint):
    """Endpoint that hangs until cancelled or released."""

    def __init__(self) -> None:
        self.release = threading.Event()
        self.started = threading.Event()
        self.cancelled = False

    def consume(self, payload: bytes, cancel_event=None) -> None:
        self.started.set()
        while not self.release.is_set():
            if cancel_event is not None and cancel_event.wait(0.01):
                self.cancelled = True
                raise DeliveryError("cancelled")


@pytest.fixture
def server_id() -> uuid.UUID:
    return uuid.UUID("8d1f6a1e-3c0b-4f3e-9a57-0c6b2d4e5f60")


@pytest.fixture
def context(server_id: uuid.UUID) -> HostContext:
    return HostContext(server_id=server_id, app_name="test-app", app_version="1.2.3", server_name="test-host")


@pytest.fixture
def sys_registry() -> SourceRegistry:
    """Registry with the two sources of the end-to-end example."""
    return SourceRegistry([
        scalar_source("sys", "os_name", lambda context: "Linux"),
        scalar_source("sys", "cpu_count", lambda context: 4),
    ])


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def recording_endpoint() -> RecordingEndpoint:
    return RecordingEndpoint()


@pytest.fixture
def blocking_endpoint():
    endpoint = BlockingEndpoint()
    yield endpoint
    endpoint.release.set()
