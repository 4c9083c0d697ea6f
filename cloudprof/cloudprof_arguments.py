import argparse

from cloudprof.cloudprof_config import DEFAULT_API_URL, DEFAULT_RUNTIME_LABEL


class CloudProfArguments(argparse.Namespace):
    """Encapsulates all tunables and default values for the agent."""

    def __init__(self) -> None:
        super().__init__()
        # seconds between gate evaluations while profiling is disabled
        self.gate_recheck_interval = 60.0
        # target seconds from the start of one cycle to the start of the next
        self.cycle_interval = 60.0
        # never start a new cycle sooner than this after the previous one
        self.min_cycle_gap = 1.0
        # retry delay is min(backoff_max, backoff_base * multiplier**attempt) * jitter
        self.backoff_base = 60.0
        self.backoff_max = 3600.0
        self.backoff_multiplier = 2.0
        self.jitter_low = 0.8
        self.jitter_high = 1.2
        # attempts per create/upload stage before the cycle is abandoned
        self.max_attempts = 3
        # create is long-polled by the backend until this instance should profile
        self.create_timeout = 3600.0
        self.upload_timeout = 60.0
        # seconds a collector may run past its assigned window before the
        # cycle gives up on it
        self.collect_grace = 30.0
        self.api_url = DEFAULT_API_URL
        self.runtime_label = DEFAULT_RUNTIME_LABEL
        # stack samples per second for the CPU collector
        self.sampling_rate = 100
        # deepest traceback kept by the heap collector
        self.heap_max_frames = 64
        self.quiet = False
