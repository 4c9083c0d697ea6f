"""
Transport for the profiling backend (Cloud Profiler v2 REST API).

Two calls only: create asks the backend which profile to take next and
for how long; upload sends the encoded profile back. Every request
carries its own timeout so a hung connection cannot stall the agent.
"""

import base64
import re
from typing import Any, Dict, Optional

import requests

from cloudprof.cloudprof_config import (
    INSTANCE_LABEL,
    LANGUAGE_LABEL,
    VERSION_LABEL,
    ZONE_LABEL,
)
from cloudprof.cloudprof_errors import BackendError
from cloudprof.cloudprof_types import AgentConfig, ProfileKind, ProfileRequest

# Durations are serialized as decimal seconds with an "s" suffix.
_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def parse_duration(value: Any) -> float:
    match = _DURATION_RE.match(str(value).strip())
    if match is None:
        raise ValueError(f"unrecognized duration {value!r}")
    return float(match.group(1))


def parse_retry_after(headers: Any) -> Optional[float]:
    raw = headers.get("Retry-After") if headers is not None else None
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return None


class BackendClient:
    def __init__(
        self,
        config: AgentConfig,
        api_url: str,
        create_timeout: float = 3600.0,
        upload_timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config
        self.api_url = api_url.rstrip("/")
        self.create_timeout = create_timeout
        self.upload_timeout = upload_timeout
        # Callers that need auth pass a session that already carries it.
        self.session = session if session is not None else requests.Session()
        self.deployment = self.build_deployment(config)

    @staticmethod
    def build_deployment(config: AgentConfig) -> Dict[str, Any]:
        """The deployment block sent with every create call."""
        labels = {
            LANGUAGE_LABEL: config.runtime_label,
            VERSION_LABEL: config.service_version,
        }
        if config.zone:
            labels[ZONE_LABEL] = config.zone
        return {
            "projectId": config.project_id,
            "target": config.service,
            "labels": labels,
        }

    def create_profile(self, kind: ProfileKind) -> ProfileRequest:
        """Ask the backend for the next profile assignment.

        The backend may hold this request open until it wants this instance
        to profile, which is why its timeout is long."""
        url = f"{self.api_url}/projects/{self.config.project_id}/profiles"
        body = {"deployment": self.deployment, "profileType": [kind.value]}
        response = self.__send("POST", url, body, self.create_timeout)
        try:
            resource = response.json()
        except ValueError as exc:
            raise BackendError(f"create returned invalid JSON: {exc}") from exc
        return self.parse_profile(resource)

    @staticmethod
    def parse_profile(resource: Any) -> ProfileRequest:
        if not isinstance(resource, dict):
            raise BackendError("create returned a non-object profile")
        name = resource.get("name")
        if not name:
            raise BackendError("create returned a profile without a name")
        if "duration" not in resource:
            raise BackendError(f"profile {name} is missing a duration")
        try:
            duration = parse_duration(resource["duration"])
            kind = ProfileKind.from_backend(str(resource.get("profileType", "")))
        except ValueError as exc:
            raise BackendError(f"profile {name} is malformed: {exc}") from exc
        return ProfileRequest(kind=kind, duration=duration, name=name, resource=resource)

    def upload_profile(self, request: ProfileRequest, profile_bytes: bytes) -> None:
        profile = dict(request.resource)
        profile["profileBytes"] = base64.b64encode(profile_bytes).decode("ascii")
        if self.config.instance:
            labels = dict(profile.get("labels") or {})
            labels[INSTANCE_LABEL] = self.config.instance
            profile["labels"] = labels
        url = f"{self.api_url}/{request.name}"
        self.__send("PATCH", url, profile, self.upload_timeout)

    def close(self) -> None:
        self.session.close()

    def __send(
        self, method: str, url: str, body: Dict[str, Any], timeout: float
    ) -> requests.Response:
        try:
            response = self.session.request(method, url, json=body, timeout=timeout)
        except requests.Timeout as exc:
            raise BackendError(
                f"{method} {url} timed out after {timeout}s: {exc}"
            ) from exc
        except requests.RequestException as exc:
            raise BackendError(f"{method} {url} failed: {exc}") from exc
        if 200 <= response.status_code < 300:
            return response
        status = response.status_code
        raise BackendError(
            f"{method} {url} returned {status}: {response.text[:200]}",
            status=status,
            retryable=BackendError.is_retryable_status(status),
            retry_after=parse_retry_after(response.headers),
        )
