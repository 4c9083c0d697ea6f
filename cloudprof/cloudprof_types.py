from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, StrictBool

from cloudprof.cloudprof_config import DEFAULT_RUNTIME_LABEL

Predicate = Callable[[], bool]
Enablement = Union[bool, Predicate]


class ProfileKind(enum.Enum):
    """Kinds of profile the agent collects; values are the backend's names."""

    CPU = "CPU"
    HEAP = "HEAP"

    @classmethod
    def from_backend(cls, name: str) -> "ProfileKind":
        return cls(name.upper())


class AgentConfig(BaseModel):
    """Process identity and enablement, fixed for the life of the agent."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    service: str = Field(min_length=1)
    service_version: str = ""
    project_id: str = Field(min_length=1)
    enablement: Union[StrictBool, Callable[[], bool]] = True
    zone: Optional[str] = None
    instance: Optional[str] = None
    runtime_label: str = Field(default=DEFAULT_RUNTIME_LABEL, min_length=1)


class CollectorConfiguration(BaseModel):
    """Per-cycle collector settings, re-read before every collection."""

    sampling_rate: PositiveInt = 100


@dataclass
class ProfileRequest:
    """A profile assignment handed out by the backend.

    `resource` is the backend's Profile object; it is sent back verbatim
    with the profile bytes on upload."""

    kind: ProfileKind
    duration: float
    name: str
    resource: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RawProfile:
    """Folded-stack output of a collector for one window."""

    kind: ProfileKind
    duration: float
    data: bytes


@dataclass
class CycleResult:
    kind: ProfileKind
    elapsed: float
    create_attempts: int = 1
    upload_attempts: int = 1
    encoded_size: int = 0
