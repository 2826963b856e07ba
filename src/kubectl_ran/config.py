"""
Runtime configuration for kubectl-ran.

Defaults can be overridden by a YAML file at $KUBECTL_RAN_CONFIG
(default ~/.config/kubectl-ran/config.yaml), and the default wait
timeout by $KUBECTL_RAN_WAIT. Command-line flags win over both.

Example config.yaml:
    container_name: worker
    wait_timeout: 2m
    idle_command: [sleep]
    idle_args: ["3600"]
"""

from __future__ import annotations

import logging
import math
import os
import re
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from . import CONFIG_PATH
from .errors import InvalidOptionError

logger = logging.getLogger("kubectl_ran.config")

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> float:
    """Parse a Go-style duration string into seconds.

    Accepts compound values such as '1m30s' or '1.5h'. A bare number is
    taken as seconds.

    Args:
        value: Duration string.

    Returns:
        Duration in seconds.

    Raises:
        InvalidOptionError: If the string is malformed or not positive.
    """
    text = str(value).strip()
    if not text:
        raise InvalidOptionError("empty duration")

    try:
        seconds = float(text)
    except ValueError:
        pos = 0
        seconds = 0.0
        for match in _DURATION_PART.finditer(text):
            if match.start() != pos:
                break
            seconds += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
            pos = match.end()
        if pos != len(text) or pos == 0:
            raise InvalidOptionError(f"time {value!r} is not a valid duration")

    if not math.isfinite(seconds) or seconds <= 0:
        raise InvalidOptionError(f"time {value!r} must be positive")
    return seconds


class RanConfig(BaseModel):
    """Tunables shared by the pod builder, watcher and exec transport."""

    container_name: str = "worker"
    generate_name: str = "kubectl-ran-"
    # Keeps the container alive until the command is exec'd into it
    idle_command: List[str] = Field(default_factory=lambda: ["tail"])
    idle_args: List[str] = Field(default_factory=lambda: ["-f", "/dev/null"])
    wait_timeout: str = Field(
        default_factory=lambda: os.environ.get("KUBECTL_RAN_WAIT", "30s")
    )
    exec_chunk_size: int = Field(default=32 * 1024, ge=512)
    exec_poll_interval: float = Field(default=1.0, gt=0)

    @field_validator("wait_timeout", mode="before")
    @classmethod
    def _check_wait_timeout(cls, value):
        # YAML turns a bare 45 into an int
        value = str(value)
        try:
            parse_duration(value)
        except InvalidOptionError as exc:
            raise ValueError(str(exc)) from exc
        return value

    @property
    def wait_seconds(self) -> float:
        """Default readiness wait in seconds."""
        return parse_duration(self.wait_timeout)


def load_config(path: Optional[Path] = None) -> RanConfig:
    """Load configuration from disk.

    Args:
        path: Explicit config file. Defaults to CONFIG_PATH.

    Returns:
        RanConfig loaded from the YAML file, or defaults.
    """
    config_file = Path(path or CONFIG_PATH).expanduser()
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return RanConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config %s: %s; using defaults", config_file, exc)
    return RanConfig()
