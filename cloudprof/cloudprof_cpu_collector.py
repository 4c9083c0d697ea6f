"""
CPU profile collection for the Python host runtime.

Samples the stacks of the host's threads at a fixed rate for the whole
window and aggregates them as folded stacks.
"""

import sys
import threading
import time
from collections import Counter
from types import FrameType
from typing import Callable, List, Optional, Set

from cloudprof.cloudprof_config import AGENT_THREAD_PREFIX
from cloudprof.cloudprof_pprof import format_frame
from cloudprof.cloudprof_types import CollectorConfiguration


def agent_threads() -> Set[int]:
    return {
        t.ident
        for t in threading.enumerate()
        if t.ident is not None and t.name.startswith(AGENT_THREAD_PREFIX)
    }


def fold_stack(frame: Optional[FrameType]) -> str:
    """Render a frame and its callers as a root-first folded stack."""
    names: List[str] = []
    while frame is not None:
        code = frame.f_code
        names.append(format_frame(code.co_name, code.co_filename, frame.f_lineno))
        frame = frame.f_back
    names.reverse()
    return ";".join(names)


class CPUCollector:
    """Statistical stack sampler; blocks the calling thread for `duration`."""

    def __init__(
        self,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.__clock = clock
        self.__sleep = sleep

    def collect(self, duration: float, configuration: CollectorConfiguration) -> bytes:
        interval = 1.0 / configuration.sampling_rate
        me = threading.get_ident()
        counts: Counter = Counter()
        start = self.__clock()
        deadline = start + duration
        next_tick = start
        while True:
            now = self.__clock()
            if now >= deadline:
                break
            if now >= next_tick:
                skip = agent_threads()
                skip.add(me)
                frames = sys._current_frames()
                for ident, frame in frames.items():
                    if ident in skip:
                        continue
                    stack = fold_stack(frame)
                    if stack:
                        counts[stack] += 1
                del frames
                next_tick += interval
                # Skip ticks we already missed rather than bursting.
                if next_tick < now:
                    next_tick = now + interval
            self.__sleep(max(0.0, min(next_tick, deadline) - self.__clock()))
        return "".join(
            f"{stack} {count}\n" for stack, count in sorted(counts.items())
        ).encode("utf-8")
