"""
The agent's top-level loop.

    Idle -> CheckingGate -> Running(kind) -> Sleeping -> CheckingGate -> ...

Stopped is entered only when stop() is called. Nothing that happens in a
cycle ends the loop: every failure becomes an abandoned cycle followed by
a backoff sleep.
"""

import enum
import threading
import time
from typing import Callable, Optional

from cloudprof.cloudprof_backoff import BackoffState, RetryPolicy
from cloudprof.cloudprof_cycle import ProfilingCycle
from cloudprof.cloudprof_errors import (
    CycleCancelled,
    EncodeFailed,
    ProfilingError,
)
from cloudprof.cloudprof_gate import EnablementGate
from cloudprof.cloudprof_logging import ErrorReporter, log, report_error, warn
from cloudprof.cloudprof_types import CycleResult, ProfileKind


class SchedulerState(enum.Enum):
    IDLE = "idle"
    CHECKING_GATE = "checking_gate"
    RUNNING = "running"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


# Round-robin order of profile kinds.
KIND_ORDER = (ProfileKind.CPU, ProfileKind.HEAP)

TransitionListener = Callable[[SchedulerState, Optional[ProfileKind]], None]


class Scheduler:
    """Owns timing, kind rotation and the backoff state for one agent.

    `sleep(seconds)` must return True when stop was requested; the default
    waits on the scheduler's own stop event. Tests inject a simulated
    clock and sleep.
    """

    def __init__(
        self,
        gate: EnablementGate,
        cycle: ProfilingCycle,
        policy: RetryPolicy,
        backoff: BackoffState,
        gate_recheck_interval: float = 60.0,
        cycle_interval: float = 60.0,
        min_cycle_gap: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], bool]] = None,
        report_error: ErrorReporter = report_error,
        on_transition: Optional[TransitionListener] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.gate = gate
        self.cycle = cycle
        self.policy = policy
        self.backoff = backoff
        self.gate_recheck_interval = gate_recheck_interval
        self.cycle_interval = cycle_interval
        self.min_cycle_gap = min_cycle_gap
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.__clock = clock
        self.__sleep = sleep if sleep is not None else self.stop_event.wait
        self.__report_error = report_error
        self.__on_transition = on_transition
        self.__kind_cursor = 0
        self.state = SchedulerState.IDLE
        self.last_result: Optional[CycleResult] = None

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        """Request shutdown; honoured at the next state boundary."""
        self.stop_event.set()

    def sleep(self, seconds: float) -> bool:
        """Sleep, returning True if stop was requested."""
        if self.stopped:
            return True
        return bool(self.__sleep(max(0.0, seconds))) or self.stopped

    def next_kind(self) -> ProfileKind:
        kind = KIND_ORDER[self.__kind_cursor % len(KIND_ORDER)]
        self.__kind_cursor += 1
        return kind

    def run(self) -> None:
        """Run until stop() is called."""
        while not self.stopped:
            self.__transition(SchedulerState.CHECKING_GATE)
            if not self.gate.is_enabled():
                delay = self.gate_recheck_interval
            else:
                if self.stopped:
                    break
                kind = self.next_kind()
                self.__transition(SchedulerState.RUNNING, kind)
                delay = self.run_cycle(kind)
            if self.stopped:
                break
            self.__transition(SchedulerState.SLEEPING)
            if self.sleep(delay):
                break
        self.__transition(SchedulerState.STOPPED)

    def run_cycle(self, kind: ProfileKind) -> float:
        """Run one cycle and return how long to sleep before the next."""
        started = self.__clock()
        try:
            result = self.cycle.run(kind)
        except CycleCancelled:
            return 0.0
        except EncodeFailed as exc:
            # An agent bug, not backend trouble: no backoff is counted.
            self.__report_error(exc)
            return self.policy.current_delay(self.backoff)
        except ProfilingError as exc:
            warn(f"abandoned {kind.value} cycle: {exc}")
            return self.policy.current_delay(self.backoff)
        except Exception as exc:
            self.__report_error(exc)
            return self.policy.current_delay(self.backoff)
        self.last_result = result
        self.policy.reset(self.backoff)
        elapsed = max(result.elapsed, self.__clock() - started)
        return max(self.min_cycle_gap, self.cycle_interval - elapsed)

    def __transition(
        self, state: SchedulerState, kind: Optional[ProfileKind] = None
    ) -> None:
        self.state = state
        if state is SchedulerState.STOPPED:
            log("profiling agent stopped")
        if self.__on_transition is None:
            return
        try:
            self.__on_transition(state, kind)
        except Exception as exc:
            warn(f"transition listener raised {exc!r}; ignoring it")
