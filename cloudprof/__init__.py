from cloudprof.cloudprof_agent import ProfilingAgent, start_profiling
from cloudprof.cloudprof_config import cloudprof_version as __version__
from cloudprof.cloudprof_types import CollectorConfiguration, ProfileKind

__all__ = [
    "CollectorConfiguration",
    "ProfileKind",
    "ProfilingAgent",
    "__version__",
    "start_profiling",
]
