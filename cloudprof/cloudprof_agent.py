"""Agent lifecycle: building the scheduler and running it on its own thread."""

from __future__ import annotations

import threading
from typing import Callable, Dict, Optional

import requests

from cloudprof.cloudprof_arguments import CloudProfArguments
from cloudprof.cloudprof_backoff import BackoffState, RetryPolicy
from cloudprof.cloudprof_client import BackendClient
from cloudprof.cloudprof_config import AGENT_THREAD_PREFIX
from cloudprof.cloudprof_cpu_collector import CPUCollector
from cloudprof.cloudprof_cycle import Collector, ProfilingCycle
from cloudprof.cloudprof_gate import EnablementGate
from cloudprof.cloudprof_heap_collector import HeapCollector
from cloudprof.cloudprof_logging import ErrorReporter, log, report_error, set_quiet
from cloudprof.cloudprof_scheduler import Scheduler, TransitionListener
from cloudprof.cloudprof_types import (
    AgentConfig,
    CollectorConfiguration,
    Enablement,
    ProfileKind,
)

THREAD_NAME = f"{AGENT_THREAD_PREFIX}scheduler"

_agent_lock = threading.Lock()
_running_agent: Optional["ProfilingAgent"] = None


class ProfilingAgent:
    """Handle for a running agent."""

    def __init__(self, scheduler: Scheduler, client: BackendClient) -> None:
        self.scheduler = scheduler
        self.client = client
        self.thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if not self.thread:
            # Daemon, so a host that never calls stop() can still exit.
            self.thread = threading.Thread(
                target=self.__run, name=THREAD_NAME, daemon=True
            )
            self.thread.start()

    @property
    def running(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the scheduler and wait for its thread.

        A collection window in progress runs to completion first, so
        `timeout` bounds the wait, not the shutdown."""
        self.scheduler.stop()
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout)
        if not self.running:
            self.client.close()
            _forget(self)

    def __run(self) -> None:
        try:
            self.scheduler.run()
        finally:
            _forget(self)


def _forget(agent: ProfilingAgent) -> None:
    global _running_agent
    with _agent_lock:
        if _running_agent is agent:
            _running_agent = None


def build_scheduler(
    config: AgentConfig,
    args: CloudProfArguments,
    client: BackendClient,
    collectors: Optional[Dict[ProfileKind, Collector]] = None,
    get_configuration: Optional[Callable[[], CollectorConfiguration]] = None,
    report_error: ErrorReporter = report_error,
    on_transition: Optional[TransitionListener] = None,
) -> Scheduler:
    """Wire gate, retry policy, cycle and scheduler together."""
    if collectors is None:
        collectors = {
            ProfileKind.CPU: CPUCollector(),
            ProfileKind.HEAP: HeapCollector(max_frames=args.heap_max_frames),
        }
    policy = RetryPolicy(
        base=args.backoff_base,
        max_delay=args.backoff_max,
        multiplier=args.backoff_multiplier,
        jitter=(args.jitter_low, args.jitter_high),
        max_attempts=args.max_attempts,
    )
    backoff = BackoffState()
    # Shared so that stop() also interrupts the cycle's retry waits.
    stop_event = threading.Event()
    cycle = ProfilingCycle(
        client=client,
        collectors=collectors,
        policy=policy,
        backoff=backoff,
        sleep=stop_event.wait,
        get_configuration=get_configuration,
        default_configuration=CollectorConfiguration(sampling_rate=args.sampling_rate),
        collect_grace=args.collect_grace,
    )
    scheduler = Scheduler(
        gate=EnablementGate.from_enablement(config.enablement),
        cycle=cycle,
        policy=policy,
        backoff=backoff,
        gate_recheck_interval=args.gate_recheck_interval,
        cycle_interval=args.cycle_interval,
        min_cycle_gap=args.min_cycle_gap,
        report_error=report_error,
        on_transition=on_transition,
        stop_event=stop_event,
    )
    return scheduler


def start_profiling(
    service: str,
    service_version: str,
    enablement: Enablement,
    project_id: str,
    *,
    zone: Optional[str] = None,
    instance: Optional[str] = None,
    args: Optional[CloudProfArguments] = None,
    get_configuration: Optional[Callable[[], CollectorConfiguration]] = None,
    collectors: Optional[Dict[ProfileKind, Collector]] = None,
    session: Optional[requests.Session] = None,
    report_error: ErrorReporter = report_error,
) -> ProfilingAgent:
    """Start the profiling agent on a background thread.

    `enablement` is either a bool or a zero-argument callable that is
    re-evaluated before every cycle. Call at most once per process; a
    second call while an agent is running raises RuntimeError.
    """
    global _running_agent
    if args is None:
        args = CloudProfArguments()
    config = AgentConfig(
        service=service,
        service_version=service_version,
        project_id=project_id,
        enablement=enablement,
        zone=zone,
        instance=instance,
        runtime_label=args.runtime_label,
    )
    set_quiet(args.quiet)
    with _agent_lock:
        if _running_agent is not None:
            raise RuntimeError("start_profiling was already called in this process")
        client = BackendClient(
            config,
            api_url=args.api_url,
            create_timeout=args.create_timeout,
            upload_timeout=args.upload_timeout,
            session=session,
        )
        scheduler = build_scheduler(
            config,
            args,
            client,
            collectors=collectors,
            get_configuration=get_configuration,
            report_error=report_error,
        )
        agent = ProfilingAgent(scheduler, client)
        _running_agent = agent
    log(f"profiling {config.service} {config.service_version} as {config.runtime_label!r}")
    agent.start()
    return agent
