"""Current version of cloudprof; reported by --version."""

cloudprof_version = "0.3.0"
cloudprof_date = "2026.10.18"

# Cloud Profiler v2 REST endpoint
DEFAULT_API_URL = "https://cloudprofiler.googleapis.com/v2"

# Runtime the agent claims to be when creating profiles. The backend keys
# some of its behavior off this label, so it is configuration, not fact.
DEFAULT_RUNTIME_LABEL = "go"

LANGUAGE_LABEL = "language"
VERSION_LABEL = "version"
ZONE_LABEL = "zone"
INSTANCE_LABEL = "instance"

# Prefix for every diagnostic line.
LOG_PREFIX = "[cloudprof]"

# Threads the agent starts carry this prefix; the CPU collector skips them.
AGENT_THREAD_PREFIX = "cloudprof-"
