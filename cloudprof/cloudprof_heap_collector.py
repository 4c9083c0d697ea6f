"""
Heap profile collection for the Python host runtime, via tracemalloc.
"""

import os
import time
import tracemalloc
from typing import Callable, List

from cloudprof.cloudprof_pprof import format_frame
from cloudprof.cloudprof_types import CollectorConfiguration


class HeapCollector:
    """Live allocations per traceback at the end of the window.

    If tracemalloc is not already running it is started for the window and
    stopped afterwards, so the snapshot covers allocations made during the
    window that are still alive at its end.
    """

    def __init__(
        self,
        max_frames: int = 64,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_frames = max_frames
        self.__sleep = sleep

    def collect(self, duration: float, configuration: CollectorConfiguration) -> bytes:
        started_here = not tracemalloc.is_tracing()
        if started_here:
            tracemalloc.start(self.max_frames)
        try:
            self.__sleep(duration)
            snapshot = tracemalloc.take_snapshot()
        finally:
            if started_here:
                tracemalloc.stop()
        snapshot = snapshot.filter_traces(
            (
                tracemalloc.Filter(False, tracemalloc.__file__),
                tracemalloc.Filter(False, __file__),
            )
        )
        lines: List[str] = []
        for stat in snapshot.statistics("traceback"):
            # Traceback frames run oldest first, which is root-first.
            stack = ";".join(
                format_frame(
                    f"{os.path.basename(frame.filename)}:{frame.lineno}",
                    frame.filename,
                    frame.lineno,
                )
                for frame in stat.traceback
            )
            if stack:
                lines.append(f"{stack} {stat.count} {stat.size}\n")
        return "".join(lines).encode("utf-8")
