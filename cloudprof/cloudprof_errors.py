from typing import Optional


class ProfilingError(Exception):
    """Base class for everything that can end a profiling cycle early."""


class GateEvaluationError(ProfilingError):
    """The enablement predicate raised; the gate reads as closed."""


class BackendError(ProfilingError):
    """A create or upload call to the profiling backend failed.

    `status` is the HTTP status when the server answered, or None when the
    request never completed (connection error, timeout)."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        retryable: bool = True,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retryable = retryable
        self.retry_after = retry_after

    @staticmethod
    def is_retryable_status(status: int) -> bool:
        """5xx, request timeout and rate limiting are worth another try."""
        return status >= 500 or status in (408, 429)


class CreateFailed(ProfilingError):
    """The backend would not hand out a profile assignment."""


class CollectionFailed(ProfilingError):
    """The collector raised while sampling."""


class EncodeFailed(ProfilingError):
    """Collector output could not be turned into a pprof profile.

    Always an agent bug, never the backend's fault."""


class UploadFailed(ProfilingError):
    def __init__(
        self, message: str, retryable: bool, status: Optional[int] = None
    ) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.status = status


class CycleCancelled(ProfilingError):
    """Stop was requested while the cycle was waiting to retry."""
