"""
Remote exec transport: run a process inside a pod over the exec subresource.

The exec request is upgraded to a websocket that multiplexes the
process's stdin, stdout, stderr and a status channel. PodExecutor pumps
local file objects onto those channels and blocks until the remote
process exits or the connection breaks.

A stream argument left as None is not requested at all, so the remote
process runs without a pipe on that descriptor.
"""

from __future__ import annotations

import logging
from typing import Any, BinaryIO, Callable, Dict, Optional, Sequence
from urllib.parse import urlencode

import yaml
from kubernetes.client import CoreV1Api
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream as k8s_stream
from kubernetes.stream.ws_client import ERROR_CHANNEL, STDIN_CHANNEL
from websocket import WebSocketConnectionClosedException, WebSocketException

from .errors import (
    ExecConnectionError,
    ExecError,
    ExecStreamError,
    RemoteCommandError,
)

logger = logging.getLogger("kubectl_ran.executor")

DEFAULT_CONTAINER = "worker"
_CHUNK_SIZE = 32 * 1024


def exec_request_kwargs(
    command: Sequence[str],
    container: str,
    stdin: bool = False,
    stdout: bool = False,
    stderr: bool = False,
) -> Dict[str, Any]:
    """Build the exec subresource parameters.

    Each command token becomes one repeated 'command' query parameter,
    in order. Attach flags are only present for requested streams.

    Args:
        command: Command vector to run.
        container: Container to run it in.
        stdin: Attach stdin.
        stdout: Attach stdout.
        stderr: Attach stderr.

    Returns:
        Keyword arguments for connect_get_namespaced_pod_exec.
    """
    kwargs: Dict[str, Any] = {"command": list(command), "container": container}
    if stdin:
        kwargs["stdin"] = True
    if stdout:
        kwargs["stdout"] = True
    if stderr:
        kwargs["stderr"] = True
    return kwargs


def exec_query(kwargs: Dict[str, Any]) -> str:
    """Render exec parameters as the request's query string."""
    params = []
    for key in sorted(kwargs):
        value = kwargs[key]
        if isinstance(value, bool):
            params.append((key, "true" if value else "false"))
        elif isinstance(value, (list, tuple)):
            params.extend((key, item) for item in value)
        else:
            params.append((key, value))
    return urlencode(params)


def _exit_status(raw: Any) -> Optional[Dict[str, Any]]:
    """Parse the status document sent on the error channel."""
    if not raw:
        return None
    try:
        status = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ExecStreamError(f"unreadable exec status: {exc}") from exc
    return status if isinstance(status, dict) else None


def _raise_for_status(status: Optional[Dict[str, Any]]) -> None:
    if status is None:
        raise ExecStreamError("connection closed before the remote command reported its exit status")
    if status.get("status") == "Success":
        return

    message = status.get("message") or "remote command failed"
    if status.get("reason") == "NonZeroExitCode":
        causes = (status.get("details") or {}).get("causes") or []
        for cause in causes:
            if cause.get("reason") == "ExitCode":
                try:
                    exit_code = int(cause.get("message"))
                except (TypeError, ValueError):
                    break
                raise RemoteCommandError(exit_code, message)
    raise ExecError(message)


class PodExecutor:
    """Runs commands inside pods and bridges their streams to local files.

    Args:
        api: CoreV1Api used to address the exec subresource.
        container: Container the commands run in.
        stream_impl: Websocket opener (kubernetes.stream.stream).
        chunk_size: Maximum bytes read from stdin per write.
        poll_interval: Seconds to wait for channel data per iteration.
    """

    def __init__(
        self,
        api: CoreV1Api,
        container: str = DEFAULT_CONTAINER,
        stream_impl: Callable[..., Any] = k8s_stream,
        chunk_size: int = _CHUNK_SIZE,
        poll_interval: float = 1.0,
    ) -> None:
        self._api = api
        self._container = container
        self._stream = stream_impl
        self._chunk_size = chunk_size
        self._poll_interval = poll_interval

    @property
    def container(self) -> str:
        return self._container

    def execute(
        self,
        pod: str,
        namespace: str,
        command: Sequence[str],
        stdin: Optional[BinaryIO] = None,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
    ) -> None:
        """Run a command in the pod and wait for it to exit.

        Args:
            pod: Pod name.
            namespace: Pod namespace.
            command: Command vector.
            stdin: Source pumped into the process's stdin, if any.
            stdout: Sink for the process's stdout, if any.
            stderr: Sink for the process's stderr, if any.

        Raises:
            ExecConnectionError: If the websocket could not be opened.
            ExecStreamError: If the stream broke mid-transfer.
            RemoteCommandError: If the process exited non-zero.
            ExecError: If the API server reported another failure.
        """
        kwargs = exec_request_kwargs(
            command,
            self._container,
            stdin=stdin is not None,
            stdout=stdout is not None,
            stderr=stderr is not None,
        )
        logger.debug(
            "POST /api/v1/namespaces/%s/pods/%s/exec?%s",
            namespace, pod, exec_query(kwargs),
        )

        try:
            resp = self._stream(
                self._api.connect_get_namespaced_pod_exec,
                pod,
                namespace,
                _preload_content=False,
                binary=True,
                **kwargs,
            )
        except (ApiException, WebSocketException, OSError) as exc:
            raise ExecConnectionError(f"unable to exec in pod {pod!r}: {exc}") from exc

        try:
            self._pump(resp, stdin, stdout, stderr)
            status = _exit_status(resp.read_channel(ERROR_CHANNEL))
        except (WebSocketException, OSError) as exc:
            raise ExecStreamError(f"exec stream to pod {pod!r} failed: {exc}") from exc
        finally:
            resp.close()

        _raise_for_status(status)

    def _pump(
        self,
        resp: Any,
        stdin: Optional[BinaryIO],
        stdout: Optional[BinaryIO],
        stderr: Optional[BinaryIO],
    ) -> None:
        read = None
        if stdin is not None:
            read = getattr(stdin, "read1", stdin.read)

        while resp.is_open():
            # Only wait on the socket once there is nothing left to send
            resp.update(timeout=0 if read is not None else self._poll_interval)
            self._drain(resp, stdout, stderr)
            if read is None or not resp.is_open():
                continue
            chunk = read(self._chunk_size)
            if not chunk:
                logger.debug("stdin exhausted")
                read = None
                self._close_stdin(resp)
                continue
            try:
                resp.write_stdin(chunk)
            except (WebSocketConnectionClosedException, BrokenPipeError) as exc:
                # The exit status decides whether this was a failure
                logger.debug("remote process stopped reading stdin: %s", exc)
                read = None
        self._drain(resp, stdout, stderr)

    @staticmethod
    def _close_stdin(resp: Any) -> None:
        """Send end-of-file on the stdin channel."""
        try:
            resp.close_channel(STDIN_CHANNEL)
        except (WebSocketConnectionClosedException, BrokenPipeError) as exc:
            logger.debug("remote process already gone: %s", exc)

    @staticmethod
    def _drain(resp: Any, stdout: Optional[BinaryIO], stderr: Optional[BinaryIO]) -> None:
        if resp.peek_stdout():
            data = resp.read_stdout()
            if stdout is not None:
                stdout.write(data)
                stdout.flush()
        if resp.peek_stderr():
            data = resp.read_stderr()
            if stderr is not None:
                stderr.write(data)
                stderr.flush()
