from typing import Callable, Optional

from cloudprof.cloudprof_errors import GateEvaluationError
from cloudprof.cloudprof_logging import warn
from cloudprof.cloudprof_types import Enablement


class EnablementGate:
    """Decides whether profiling should be running right now.

    A static gate answers the configured value forever. A dynamic gate
    calls its predicate on every evaluation, with no caching, so a flag
    flipped by the host takes effect at the next check. A predicate that
    raises reads as disabled for that evaluation only.
    """

    def __init__(
        self,
        static: Optional[bool] = None,
        predicate: Optional[Callable[[], bool]] = None,
    ) -> None:
        if (static is None) == (predicate is None):
            raise ValueError("exactly one of static or predicate is required")
        self.__static = static
        self.__predicate = predicate
        self.__last_error: Optional[GateEvaluationError] = None

    @classmethod
    def from_enablement(cls, enablement: Enablement) -> "EnablementGate":
        if isinstance(enablement, bool):
            return cls(static=enablement)
        return cls(predicate=enablement)

    @property
    def is_dynamic(self) -> bool:
        return self.__predicate is not None

    @property
    def last_error(self) -> Optional[GateEvaluationError]:
        """The fault from the most recent evaluation, if it faulted."""
        return self.__last_error

    def is_enabled(self) -> bool:
        if self.__predicate is None:
            return bool(self.__static)
        try:
            enabled = bool(self.__predicate())
        except Exception as exc:
            self.__last_error = GateEvaluationError(
                f"enablement predicate raised {exc!r}"
            )
            warn(f"{self.__last_error}; treating profiling as disabled")
            return False
        self.__last_error = None
        return enabled
