"""
One profiling round: create -> collect -> encode -> upload.
"""

import threading
import time
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple

from cloudprof.cloudprof_backoff import BackoffState, RetryPolicy
from cloudprof.cloudprof_client import BackendClient
from cloudprof.cloudprof_config import AGENT_THREAD_PREFIX
from cloudprof.cloudprof_errors import (
    BackendError,
    CollectionFailed,
    CreateFailed,
    CycleCancelled,
    EncodeFailed,
    UploadFailed,
)
from cloudprof.cloudprof_logging import log, warn
from cloudprof.cloudprof_pprof import ProfileEncoder
from cloudprof.cloudprof_types import (
    CollectorConfiguration,
    CycleResult,
    ProfileKind,
    ProfileRequest,
    RawProfile,
)

COLLECTOR_THREAD_NAME = f"{AGENT_THREAD_PREFIX}collector"


class Collector(Protocol):
    def collect(self, duration: float, configuration: CollectorConfiguration) -> bytes:
        ...


class ProfilingCycle:
    """Runs exactly one collect-encode-upload round for one profile kind.

    Backend failures are retried with backoff up to the policy's attempt
    cap per stage; everything else ends the round at once. Failures are
    raised as ProfilingError subclasses; success returns a CycleResult.
    """

    def __init__(
        self,
        client: BackendClient,
        collectors: Mapping[ProfileKind, Collector],
        policy: RetryPolicy,
        backoff: BackoffState,
        sleep: Callable[[float], bool],
        encoder: Optional[ProfileEncoder] = None,
        clock: Callable[[], float] = time.monotonic,
        get_configuration: Optional[Callable[[], CollectorConfiguration]] = None,
        default_configuration: Optional[CollectorConfiguration] = None,
        collect_grace: float = 30.0,
    ) -> None:
        self.__client = client
        self.__collectors = collectors
        self.__policy = policy
        self.__backoff = backoff
        # sleep(seconds) returns True if the agent was asked to stop meanwhile
        self.__sleep = sleep
        self.__encoder = encoder if encoder is not None else ProfileEncoder()
        self.__clock = clock
        self.__get_configuration = get_configuration
        # how long past the assigned window a collector may run
        self.__collect_grace = collect_grace
        self.__default_configuration = (
            default_configuration
            if default_configuration is not None
            else CollectorConfiguration()
        )

    def run(self, kind: ProfileKind) -> CycleResult:
        start = self.__clock()
        configuration = self.configuration()
        request, create_attempts = self.__create(kind)
        raw = self.__collect(request, configuration)
        try:
            encoded = self.__encoder.encode(raw, configuration.sampling_rate)
        except EncodeFailed:
            raise
        except Exception as exc:
            raise EncodeFailed(f"encoding {raw.kind.value} profile: {exc!r}") from exc
        upload_attempts = self.__upload(request, encoded)
        elapsed = self.__clock() - start
        log(
            f"uploaded {request.kind.value} profile ({len(encoded)} bytes, "
            f"{elapsed:.3f}s)"
        )
        return CycleResult(
            kind=request.kind,
            elapsed=elapsed,
            create_attempts=create_attempts,
            upload_attempts=upload_attempts,
            encoded_size=len(encoded),
        )

    def configuration(self) -> CollectorConfiguration:
        """Collector settings for this round; defaults if the callback faults."""
        if self.__get_configuration is None:
            return self.__default_configuration
        try:
            configuration = self.__get_configuration()
        except Exception as exc:
            warn(f"configuration callback raised {exc!r}; using defaults")
            return self.__default_configuration
        if not isinstance(configuration, CollectorConfiguration):
            warn(f"configuration callback returned {configuration!r}; using defaults")
            return self.__default_configuration
        return configuration

    def __wait(self, stage: str, delay: float) -> None:
        log(f"retrying {stage} in {delay:.3f} seconds...")
        if self.__sleep(delay):
            raise CycleCancelled(f"stopped while waiting to retry {stage}")

    def __create(self, kind: ProfileKind) -> Tuple[ProfileRequest, int]:
        attempt = 0
        while True:
            attempt += 1
            try:
                request = self.__client.create_profile(kind)
            except BackendError as exc:
                if attempt >= self.__policy.max_attempts:
                    self.__policy.count_failure(self.__backoff)
                    raise CreateFailed(
                        f"create {kind.value} profile failed after {attempt} attempts: {exc}"
                    ) from exc
                warn(f"error creating profile: {exc}")
                delay = self.__policy.record_failure(self.__backoff, exc.retry_after)
                self.__wait("create", delay)
                continue
            self.__policy.reset(self.__backoff)
            return request, attempt

    def __collect(
        self, request: ProfileRequest, configuration: CollectorConfiguration
    ) -> RawProfile:
        collector = self.__collectors.get(request.kind)
        if collector is None:
            raise CollectionFailed(f"no collector for {request.kind.value} profiles")
        log(f"collecting {request.kind.value} profile for {request.duration:.3f}s")
        outcome: Dict[str, Any] = {}
        done = threading.Event()

        def run() -> None:
            try:
                outcome["data"] = collector.collect(request.duration, configuration)
            except Exception as exc:
                outcome["error"] = exc
            finally:
                done.set()

        # A collector that never returns is left behind on its daemon thread.
        worker = threading.Thread(target=run, name=COLLECTOR_THREAD_NAME, daemon=True)
        worker.start()
        if not done.wait(request.duration + self.__collect_grace):
            raise CollectionFailed(
                f"{request.kind.value} collector still running "
                f"{self.__collect_grace:g}s after its {request.duration:g}s window"
            )
        if "error" in outcome:
            exc = outcome["error"]
            raise CollectionFailed(
                f"collecting {request.kind.value} profile: {exc!r}"
            ) from exc
        data = outcome["data"]
        return RawProfile(kind=request.kind, duration=request.duration, data=data)

    def __upload(self, request: ProfileRequest, encoded: bytes) -> int:
        attempt = 0
        while True:
            attempt += 1
            try:
                self.__client.upload_profile(request, encoded)
            except BackendError as exc:
                if not exc.retryable:
                    raise UploadFailed(
                        f"upload of {request.name} rejected: {exc}",
                        retryable=False,
                        status=exc.status,
                    ) from exc
                if attempt >= self.__policy.max_attempts:
                    self.__policy.count_failure(self.__backoff)
                    raise UploadFailed(
                        f"upload of {request.name} failed after {attempt} attempts: {exc}",
                        retryable=True,
                        status=exc.status,
                    ) from exc
                warn(f"error uploading profile: {exc}")
                delay = self.__policy.record_failure(self.__backoff, exc.retry_after)
                self.__wait("upload", delay)
                continue
            self.__policy.reset(self.__backoff)
            return attempt
