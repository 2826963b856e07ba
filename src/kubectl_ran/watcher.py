"""
Pod readiness watch.

Subscribes to change events for a single pod and resolves as soon as
the outcome is known:

    Running + Ready=True          -> ready
    Succeeded / Failed / DELETED  -> terminated (never retried)
    ERROR event / stream failure  -> errored
    no event within the budget    -> timed_out

Running without Ready=True, Pending, and unknown phases keep the
watch going. The watch is stopped on every exit path.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from kubernetes import watch
from kubernetes.client import CoreV1Api
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError, ReadTimeoutError

from .models import ReadinessOutcome, ReadinessState

logger = logging.getLogger("kubectl_ran.watcher")


class EventType(str, Enum):
    """Watch event types, with an explicit arm for anything else."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    ERROR = "ERROR"
    BOOKMARK = "BOOKMARK"
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def parse(cls, value: Any) -> "EventType":
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.UNRECOGNIZED


class PodPhase(str, Enum):
    """Pod lifecycle phases, with an explicit arm for anything else."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"
    UNRECOGNIZED = "Unrecognized"

    @classmethod
    def parse(cls, value: Any) -> "PodPhase":
        if not value:
            return cls.PENDING
        try:
            return cls(value)
        except ValueError:
            return cls.UNRECOGNIZED


def summarize_conditions(conditions: Optional[List[Dict[str, Any]]]) -> str:
    """Render pod conditions as 'Type=Status Type=Status'."""
    return " ".join(
        f"{c.get('type')}={c.get('status')}" for c in conditions or []
    )


def is_ready(status: Dict[str, Any]) -> bool:
    """Whether a pod status carries the Ready=True condition."""
    for condition in status.get("conditions") or []:
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


def _raw_object(event: Dict[str, Any]) -> Dict[str, Any]:
    raw = event.get("raw_object")
    if isinstance(raw, dict):
        return raw
    obj = event.get("object")
    return obj if isinstance(obj, dict) else {}


class ReadinessWatcher:
    """Waits for one pod to become ready.

    Args:
        api: CoreV1Api used to list/watch pods.
        namespace: Namespace of the pod.
        watch_factory: Creates the watch (kubernetes.watch.Watch).
        clock: Monotonic clock, replaceable in tests.
    """

    def __init__(
        self,
        api: CoreV1Api,
        namespace: str,
        watch_factory: Callable[[], Any] = watch.Watch,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api = api
        self._namespace = namespace
        self._watch_factory = watch_factory
        self._clock = clock

    def await_ready(self, pod_name: str, timeout: float) -> ReadinessOutcome:
        """Block until the pod is ready, terminated, errored or timed out.

        Args:
            pod_name: Name of the pod to watch.
            timeout: Wait budget in seconds.

        Returns:
            ReadinessOutcome describing how the wait ended.
        """
        deadline = self._clock() + timeout
        w = self._watch_factory()
        events: Optional[Iterable[Dict[str, Any]]] = None
        try:
            events = w.stream(
                self._api.list_namespaced_pod,
                self._namespace,
                field_selector=f"metadata.name={pod_name}",
                _request_timeout=timeout,
            )
            return self._consume(pod_name, events, deadline)
        finally:
            w.stop()
            close = getattr(events, "close", None)
            if close is not None:
                close()

    def _consume(
        self,
        pod_name: str,
        events: Iterable[Dict[str, Any]],
        deadline: float,
    ) -> ReadinessOutcome:
        def outcome(state: ReadinessState, detail: str = "") -> ReadinessOutcome:
            return ReadinessOutcome(state=state, pod_name=pod_name, detail=detail)

        try:
            for event in events:
                result = self._handle(pod_name, event)
                if result is not None:
                    state, detail = result
                    return outcome(state, detail)
                if self._clock() >= deadline:
                    return outcome(ReadinessState.TIMED_OUT)
        except (ReadTimeoutError, TimeoutError):
            return outcome(ReadinessState.TIMED_OUT)
        except ApiException as exc:
            return outcome(ReadinessState.ERRORED, f"{exc.status} {exc.reason}")
        except HTTPError as exc:
            return outcome(ReadinessState.ERRORED, str(exc))

        return outcome(ReadinessState.ERRORED, "watch channel closed")

    def _handle(self, pod_name: str, event: Dict[str, Any]) -> Optional[tuple]:
        """Classify one event; returns (state, detail) when the wait is over."""
        event_type = EventType.parse(event.get("type"))
        raw = _raw_object(event)

        if event_type in (EventType.ADDED, EventType.MODIFIED):
            return self._handle_update(pod_name, raw)
        if event_type == EventType.DELETED:
            return ReadinessState.TERMINATED, "pod was deleted"
        if event_type == EventType.ERROR:
            return ReadinessState.ERRORED, str(raw.get("message") or raw)
        if event_type == EventType.BOOKMARK:
            logger.debug("bookmark for pod %s", pod_name)
            return None

        logger.warning("unrecognized watch event %r for pod %s", event.get("type"), pod_name)
        return None

    def _handle_update(self, pod_name: str, raw: Dict[str, Any]) -> Optional[tuple]:
        status = raw.get("status") or {}
        phase = PodPhase.parse(status.get("phase"))

        if phase == PodPhase.RUNNING:
            if is_ready(status):
                logger.info("pod %s ready", pod_name)
                return ReadinessState.READY, ""
            logger.info(
                "pod %s running: %s",
                pod_name, summarize_conditions(status.get("conditions")),
            )
            return None
        if phase in (PodPhase.SUCCEEDED, PodPhase.FAILED):
            return ReadinessState.TERMINATED, f"phase {phase.value}"
        if phase == PodPhase.PENDING:
            logger.debug("pod %s pending", pod_name)
            return None

        logger.warning("unknown state for pod %s: %s", pod_name, status or raw)
        return None
