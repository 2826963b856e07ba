"""
Pod manifest building.

The manifest is assembled from an optional Pod template plus the
command-line overrides. The template is never modified; every build
returns a fresh manifest dict that can be passed straight to
CoreV1Api.create_namespaced_pod.
"""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml
from kubernetes.utils import parse_quantity as _k8s_parse_quantity

from .config import RanConfig
from .errors import InvalidOptionError
from .models import EnvVar

logger = logging.getLogger("kubectl_ran.pod")


def load_pod_template(path: Path) -> Dict[str, Any]:
    """Read a Pod manifest from a YAML or JSON file.

    Args:
        path: File holding a single Pod object.

    Returns:
        The manifest as a dict.

    Raises:
        InvalidOptionError: If the file is unreadable or is not a Pod.
    """
    path = Path(path).expanduser()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise InvalidOptionError(f"failed reading pod file: {exc}") from exc
    except yaml.YAMLError as exc:
        raise InvalidOptionError(f"pod file unmarshal: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidOptionError(f"pod file unmarshal: {path} does not contain a mapping")

    kind = data.get("kind", "Pod")
    if kind != "Pod":
        raise InvalidOptionError(f"pod file unmarshal: expected kind Pod, got {kind!r}")
    return data


def parse_quantity(value: Optional[str], label: str) -> Optional[str]:
    """Validate a resource quantity such as '500m' or '1Gi'.

    Args:
        value: Quantity string, or None/empty for unset.
        label: Resource name used in error messages.

    Returns:
        The quantity string unchanged, or None when unset.

    Raises:
        InvalidOptionError: If the quantity is malformed or not positive.
    """
    if value is None or str(value).strip() == "":
        return None
    text = str(value).strip()
    try:
        amount = _k8s_parse_quantity(text)
    except ValueError as exc:
        raise InvalidOptionError(f"{label}: {exc}") from exc
    if amount <= 0:
        raise InvalidOptionError(f"{label}: quantity {text!r} must be positive")
    return text


class PodBuilder:
    """Builds the run's Pod manifest from a base template.

    Args:
        template: Base Pod manifest. Copied, never modified.
        config: Container name, generated-name prefix and idle command.
    """

    def __init__(
        self,
        template: Optional[Mapping[str, Any]] = None,
        config: Optional[RanConfig] = None,
    ) -> None:
        self._template = copy.deepcopy(dict(template or {}))
        self._config = config or RanConfig()

    def build(
        self,
        image: str,
        env: Iterable[EnvVar] = (),
        cpu: Optional[str] = None,
        memory: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return a new, fully-populated Pod manifest.

        Args:
            image: Image for the worker container.
            env: Environment variables appended to the container's list.
            cpu: CPU quantity for both request and limit, if set.
            memory: Memory quantity for both request and limit, if set.

        Returns:
            Pod manifest dict.
        """
        pod = copy.deepcopy(self._template)
        pod.setdefault("apiVersion", "v1")
        pod.setdefault("kind", "Pod")

        metadata = pod.get("metadata") or {}
        pod["metadata"] = metadata
        if not metadata.get("name"):
            metadata.pop("name", None)
            metadata.setdefault("generateName", self._config.generate_name)

        spec = pod.get("spec") or {}
        pod["spec"] = spec
        containers: List[Dict[str, Any]] = spec.get("containers") or []
        spec["containers"] = containers

        container = self._worker_container(containers)
        container["image"] = image
        if not container.get("command"):
            container["command"] = list(self._config.idle_command)
        if not container.get("args"):
            container["args"] = list(self._config.idle_args)

        env_list = container.get("env") or []
        env_list.extend(var.to_manifest() for var in env)
        if env_list:
            container["env"] = env_list

        resources = self._resources(cpu=cpu, memory=memory)
        if resources:
            current = container.get("resources") or {}
            for section in ("requests", "limits"):
                merged = dict(current.get(section) or {})
                merged.update(resources)
                current[section] = merged
            container["resources"] = current

        logger.debug(
            "Built pod manifest (container=%s, image=%s, env=%d, resources=%s)",
            container["name"], image, len(env_list), resources or "-",
        )
        return pod

    def _worker_container(self, containers: List[Dict[str, Any]]) -> Dict[str, Any]:
        name = self._config.container_name
        for container in containers:
            if container.get("name") == name:
                return container
        container: Dict[str, Any] = {"name": name}
        containers.append(container)
        return container

    @staticmethod
    def _resources(cpu: Optional[str], memory: Optional[str]) -> Dict[str, str]:
        resources: Dict[str, str] = {}
        if cpu:
            resources["cpu"] = cpu
        if memory:
            resources["memory"] = memory
        return resources
