from typing import Any, Callable, List, Optional

import pytest

from cloudprof.cloudprof_errors import BackendError
from cloudprof.cloudprof_types import (
    CollectorConfiguration,
    ProfileKind,
    ProfileRequest,
)

FOLDED_CPU = b"main (app.py:10);handle (app.py:42);parse (json.py:7) 3\nmain (app.py:10);idle (app.py:99) 1\n"
FOLDED_HEAP = b"app.py:10 (app.py:10);cache.py:5 (cache.py:5) 4 4096\n"


def make_request(kind: ProfileKind = ProfileKind.CPU, duration: float = 10.0) -> ProfileRequest:
    name = f"projects/demo/profiles/{kind.value.lower()}-1"
    return ProfileRequest(
        kind=kind,
        duration=duration,
        name=name,
        resource={"name": name, "profileType": kind.value, "duration": f"{duration:g}s"},
    )


class FakeClient:
    """Scripted stand-in for BackendClient.

    Each script entry is either an exception to raise or a value to return;
    once a script runs out, calls succeed."""

    def __init__(self, creates: Optional[List[Any]] = None, uploads: Optional[List[Any]] = None) -> None:
        self.creates = list(creates or [])
        self.uploads = list(uploads or [])
        self.create_calls: List[ProfileKind] = []
        self.upload_calls: List[Any] = []
        self.closed = False

    def create_profile(self, kind: ProfileKind) -> ProfileRequest:
        self.create_calls.append(kind)
        if self.creates:
            outcome = self.creates.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return make_request(kind)

    def upload_profile(self, request: ProfileRequest, profile_bytes: bytes) -> None:
        self.upload_calls.append((request, profile_bytes))
        if self.uploads:
            outcome = self.uploads.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome

    def close(self) -> None:
        self.closed = True


class FakeCollector:
    def __init__(self, data: bytes = FOLDED_CPU, error: Optional[BaseException] = None, clock: Optional["FakeClock"] = None) -> None:
        self.data = data
        self.error = error
        self.clock = clock
        self.calls: List[float] = []
        self.configurations: List[CollectorConfiguration] = []

    def collect(self, duration: float, configuration: CollectorConfiguration) -> bytes:
        self.calls.append(duration)
        self.configurations.append(configuration)
        if self.clock is not None:
            self.clock.now += duration
        if self.error is not None:
            raise self.error
        return self.data


class FakeClock:
    """Simulated monotonic clock; sleep() advances it and records the delay."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []
        self.on_sleep: Optional[Callable[[float], bool]] = None

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> bool:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep is not None:
            return bool(self.on_sleep(seconds))
        return False


def retryable(status: Optional[int] = 503) -> BackendError:
    return BackendError(f"backend returned {status}", status=status, retryable=True)


def terminal(status: int = 400) -> BackendError:
    return BackendError(f"backend returned {status}", status=status, retryable=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def quiet_logging():
    from cloudprof import cloudprof_logging

    cloudprof_logging.set_quiet(True)
    yield
    cloudprof_logging.set_quiet(False)
