"""
Error classes for kubectl-ran.

Every failure the run can end with is a RanError, except pod creation
failures, which surface as the Kubernetes client's ApiException.

- InvalidOptionError: bad user input, raised before touching the cluster
- PodNotReadyError: the pod never became ready (terminated, watch error, timeout)
- ArchiveError: the tar stream violated the archive format
- ExecError: the remote exec failed (connection, stream, or exit status)
"""

from __future__ import annotations

from typing import Optional


class RanError(Exception):
    """Base exception for kubectl-ran."""


class InvalidOptionError(RanError):
    """A flag, template or config value could not be used."""


class ClusterConfigError(RanError):
    """Kube config could not be loaded."""


class PodNotReadyError(RanError):
    """The pod did not reach the ready state."""

    def __init__(self, pod_name: str, message: str):
        super().__init__(message)
        self.pod_name = pod_name


class PodTerminatedError(PodNotReadyError):
    """The pod reached a terminal phase before it was ready."""


class PodWatchError(PodNotReadyError):
    """The watch reported an error or closed unexpectedly."""


class PodTimeoutError(PodNotReadyError):
    """No qualifying pod event arrived within the wait budget."""


class ArchiveError(RanError):
    """The tar stream contained an entry that must not be extracted."""


class ExecError(RanError):
    """The remote command could not be run to successful completion."""


class ExecConnectionError(ExecError):
    """The exec connection could not be established."""


class ExecStreamError(ExecError):
    """The exec stream broke while data was being transferred."""


class RemoteCommandError(ExecError):
    """The remote process exited with a non-zero status."""

    def __init__(self, exit_code: int, message: Optional[str] = None):
        super().__init__(message or f"command terminated with exit code {exit_code}")
        self.exit_code = exit_code
