"""
Pydantic models for kubectl-ran.

The option models are validated once, from command-line input, and are
read-only afterwards. The readiness models describe how the pod watch
ended.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import (
    InvalidOptionError,
    PodNotReadyError,
    PodTerminatedError,
    PodTimeoutError,
    PodWatchError,
)


# ---------------------------------------------------------------------------
# Run options
# ---------------------------------------------------------------------------


class EnvVar(BaseModel):
    """One environment variable for the worker container."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str = ""

    @classmethod
    def parse(cls, text: str) -> "EnvVar":
        """Parse a NAME=value pair.

        Everything after the first '=' is the value.

        Raises:
            InvalidOptionError: If there is no '=' or the name is empty.
        """
        name, sep, value = text.partition("=")
        if not sep or not name:
            raise InvalidOptionError(f"{text!r} was not formatted as name=value")
        return cls(name=name, value=value)

    def to_manifest(self) -> dict:
        return {"name": self.name, "value": self.value}


class VolumeSpec(BaseModel):
    """A local directory synced into the pod before the run and back out after."""

    model_config = ConfigDict(frozen=True)

    src: str = Field(description="Local directory")
    dst: str = Field(description="Directory inside the pod")

    @classmethod
    def parse(cls, text: str) -> "VolumeSpec":
        """Parse a src:dst pair.

        Raises:
            InvalidOptionError: Unless there is exactly one ':' with a
                non-empty path on each side.
        """
        parts = text.split(":")
        if len(parts) != 2 or not all(parts):
            raise InvalidOptionError(f"invalid volume spec {text!r}, must be src:dst")
        return cls(src=parts[0], dst=parts[1])


class RunOptions(BaseModel):
    """Everything one invocation needs, already validated."""

    model_config = ConfigDict(frozen=True)

    image: str = Field(min_length=1)
    command: List[str] = Field(min_length=1, description="Command vector run in the pod")
    env: List[EnvVar] = Field(default_factory=list)
    volumes: List[VolumeSpec] = Field(default_factory=list)
    cpu: Optional[str] = None
    memory: Optional[str] = None
    wait_timeout: float = Field(default=30.0, gt=0, description="Readiness wait in seconds")
    pod_file: Optional[Path] = None


class PodHandle(BaseModel):
    """Identity of the pod created for this run."""

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------


class ReadinessState(str, Enum):
    """How the readiness watch ended."""

    READY = "ready"
    TERMINATED = "terminated"
    ERRORED = "errored"
    TIMED_OUT = "timed_out"


_STATE_ERRORS = {
    ReadinessState.TERMINATED: PodTerminatedError,
    ReadinessState.ERRORED: PodWatchError,
    ReadinessState.TIMED_OUT: PodTimeoutError,
}


class ReadinessOutcome(BaseModel):
    """Result of waiting for a pod to become ready."""

    state: ReadinessState
    pod_name: str
    detail: str = ""

    @property
    def ready(self) -> bool:
        return self.state == ReadinessState.READY

    def to_error(self) -> Optional[PodNotReadyError]:
        """Return the error matching a non-ready outcome, or None when ready."""
        error_cls = _STATE_ERRORS.get(self.state)
        if error_cls is None:
            return None
        if self.state == ReadinessState.TERMINATED:
            message = f"pod {self.pod_name!r} terminated unexpectedly"
        elif self.state == ReadinessState.TIMED_OUT:
            message = f"timed out waiting for pod {self.pod_name!r}"
        else:
            message = f"pod {self.pod_name!r} errored"
        if self.detail:
            message = f"{message}: {self.detail}"
        return error_cls(self.pod_name, message)

    def raise_for_state(self) -> None:
        """Raise the matching PodNotReadyError unless the pod is ready."""
        error = self.to_error()
        if error is not None:
            raise error
