"""
Run orchestration: one ephemeral pod per invocation.

Flow:
  1. Create the pod (failure ends the run, nothing to clean up)
  2. Wait for it to become ready
  3. Push each volume into the pod, in declared order
  4. Exec the command with stdout/stderr attached
  5. Pull each volume back out, even if the command failed
  6. Delete the pod (always, once the pod exists)

Only one error ends the run. A pull failure never replaces an exec
failure; it is logged instead.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from enum import Enum
from typing import Any, BinaryIO, Dict, Iterator, Optional

from kubernetes.client import CoreV1Api, V1DeleteOptions

from .archive import ArchiveSync
from .config import RanConfig
from .executor import PodExecutor
from .models import PodHandle, RunOptions
from .pod import PodBuilder, load_pod_template
from .watcher import ReadinessWatcher

logger = logging.getLogger("kubectl_ran.runner")


class RunPhase(str, Enum):
    """Where a run currently is."""

    PENDING = "pending"
    CREATED = "created"
    AWAITING_READY = "awaiting_ready"
    SYNCING_IN = "syncing_in"
    EXECUTING = "executing"
    SYNCING_OUT = "syncing_out"
    DELETED = "deleted"


def delete_pod(api: CoreV1Api, handle: PodHandle) -> None:
    """Delete the pod immediately; failures are only logged."""
    try:
        api.delete_namespaced_pod(
            handle.name,
            handle.namespace,
            body=V1DeleteOptions(grace_period_seconds=0),
        )
        logger.info("deleted pod %s", handle.name)
    except Exception as exc:
        logger.warning("failed to delete pod %s: %s", handle.name, exc)


@contextmanager
def ephemeral_pod(
    api: CoreV1Api,
    namespace: str,
    manifest: Dict[str, Any],
) -> Iterator[PodHandle]:
    """Create a pod for the duration of the block.

    Creation errors propagate untouched. Once the pod exists it is
    deleted exactly once when the block exits, however it exits.

    Args:
        api: CoreV1Api.
        namespace: Namespace to create the pod in.
        manifest: Pod manifest.

    Yields:
        PodHandle of the created pod.
    """
    created = api.create_namespaced_pod(namespace, manifest)
    handle = PodHandle(
        name=created.metadata.name,
        namespace=created.metadata.namespace or namespace,
    )
    logger.info("created pod %s/%s", handle.namespace, handle.name)
    try:
        yield handle
    finally:
        delete_pod(api, handle)


class Runner:
    """Runs one command in one ephemeral pod.

    Args:
        api: CoreV1Api for the target cluster.
        namespace: Namespace the pod is created in.
        options: Validated run options.
        config: Runtime configuration.
        executor: Exec transport (built from api when omitted).
        watcher: Readiness watcher (built from api when omitted).
        sync: Archive sync (built from the executor when omitted).
        stdout: Sink for the command's stdout (default sys.stdout.buffer).
        stderr: Sink for the command's stderr (default sys.stderr.buffer).
    """

    def __init__(
        self,
        api: CoreV1Api,
        namespace: str,
        options: RunOptions,
        config: Optional[RanConfig] = None,
        executor: Optional[PodExecutor] = None,
        watcher: Optional[ReadinessWatcher] = None,
        sync: Optional[ArchiveSync] = None,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
    ) -> None:
        self.api = api
        self.namespace = namespace
        self.options = options
        self.config = config or RanConfig()
        self.stdout = stdout if stdout is not None else sys.stdout.buffer
        self.stderr = stderr if stderr is not None else sys.stderr.buffer
        self.executor = executor or PodExecutor(
            api,
            container=self.config.container_name,
            chunk_size=self.config.exec_chunk_size,
            poll_interval=self.config.exec_poll_interval,
        )
        self.watcher = watcher or ReadinessWatcher(api, namespace)
        self.sync = sync or ArchiveSync(
            self.executor, namespace, stdout=self.stdout, stderr=self.stderr
        )
        self.phase = RunPhase.PENDING

    def _enter(self, phase: RunPhase) -> None:
        logger.debug("run phase %s -> %s", self.phase.value, phase.value)
        self.phase = phase

    def build_manifest(self) -> Dict[str, Any]:
        """Build the pod manifest from the template file and options."""
        template = None
        if self.options.pod_file is not None:
            template = load_pod_template(self.options.pod_file)
        builder = PodBuilder(template, self.config)
        return builder.build(
            self.options.image,
            env=self.options.env,
            cpu=self.options.cpu,
            memory=self.options.memory,
        )

    def run(self) -> None:
        """Create the pod, run the command in it, and delete it.

        Raises:
            ApiException: If the pod could not be created.
            PodNotReadyError: If the pod never became ready.
            ExecError: If a push or the command failed.
            ArchiveError, OSError, tarfile.TarError: If a pull failed and
                the command itself succeeded.
        """
        manifest = self.build_manifest()
        with ephemeral_pod(self.api, self.namespace, manifest) as handle:
            self._enter(RunPhase.CREATED)
            try:
                self.exec_in_pod(handle)
            finally:
                self._enter(RunPhase.DELETED)

    def exec_in_pod(self, handle: PodHandle) -> None:
        """Wait for the pod, sync in, run the command, sync out."""
        self._enter(RunPhase.AWAITING_READY)
        outcome = self.watcher.await_ready(handle.name, self.options.wait_timeout)
        outcome.raise_for_state()

        self._enter(RunPhase.SYNCING_IN)
        for volume in self.options.volumes:
            self.sync.push(volume.src, volume.dst, handle.name)

        self._enter(RunPhase.EXECUTING)
        exec_err: Optional[BaseException] = None
        try:
            self.executor.execute(
                handle.name,
                handle.namespace,
                self.options.command,
                stdout=self.stdout,
                stderr=self.stderr,
            )
        except Exception as exc:
            exec_err = exc

        # Keep the command's error while still reporting copy failures
        self._enter(RunPhase.SYNCING_OUT)
        for volume in self.options.volumes:
            try:
                self.sync.pull(volume.dst, volume.src, handle.name)
            except Exception as exc:
                if exec_err is not None:
                    logger.warning("failed to copy %s from pod: %s", volume.dst, exc)
                else:
                    exec_err = exc

        if exec_err is not None:
            raise exec_err
