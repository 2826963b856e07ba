"""Tests for the remote exec transport.

The websocket is a FakeWSClient, so these cover request shaping,
stream pumping and exit status mapping without a cluster.
"""

from __future__ import annotations

import io
from unittest.mock import MagicMock
from urllib.parse import parse_qsl

import pytest
from kubernetes.client.rest import ApiException
from websocket import WebSocketConnectionClosedException

from kubectl_ran.errors import (
    ExecConnectionError,
    ExecError,
    ExecStreamError,
    RemoteCommandError,
)
from kubectl_ran.executor import PodExecutor, exec_query, exec_request_kwargs

from fakes import FakeWSClient, exit_status


def _executor(ws: FakeWSClient, **kwargs):
    api = MagicMock()
    opener = MagicMock(return_value=ws)
    return PodExecutor(api, stream_impl=opener, poll_interval=0.01, **kwargs), api, opener


# ---------------------------------------------------------------------------
# Request shaping
# ---------------------------------------------------------------------------


class TestExecRequest:
    """Query parameters sent to the exec subresource."""

    def test_query_string_for_all_streams(self):
        kwargs = exec_request_kwargs(
            ["echo", "hello"], "worker", stdin=True, stdout=True, stderr=True,
        )
        assert exec_query(kwargs) == (
            "command=echo&command=hello&container=worker"
            "&stderr=true&stdin=true&stdout=true"
        )

    def test_only_requested_streams_are_flagged(self):
        kwargs = exec_request_kwargs(["ls"], "worker", stdout=True)
        assert kwargs == {"command": ["ls"], "container": "worker", "stdout": True}

    def test_command_tokens_keep_their_order(self):
        command = ["sh", "-c", "echo $A && echo b=c"]
        query = exec_query(exec_request_kwargs(command, "worker"))
        tokens = [value for key, value in parse_qsl(query) if key == "command"]
        assert tokens == command


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class TestExecute:
    """PodExecutor.execute() against a fake websocket."""

    def test_opens_stream_with_binary_channels(self):
        ws = FakeWSClient()
        executor, api, opener = _executor(ws)

        executor.execute("pod", "ns", ["echo", "hello"], stdout=io.BytesIO(), stderr=io.BytesIO())

        args, kwargs = opener.call_args
        assert args == (api.connect_get_namespaced_pod_exec, "pod", "ns")
        assert kwargs["_preload_content"] is False
        assert kwargs["binary"] is True
        assert kwargs["command"] == ["echo", "hello"]
        assert kwargs["container"] == "worker"
        assert kwargs["stdout"] is True and kwargs["stderr"] is True
        assert "stdin" not in kwargs

    def test_output_reaches_sinks(self):
        ws = FakeWSClient(stdout=b"hello\n", stderr=b"warn\n")
        executor, _, _ = _executor(ws)
        out, err = io.BytesIO(), io.BytesIO()

        executor.execute("pod", "ns", ["echo", "hello"], stdout=out, stderr=err)

        assert out.getvalue() == b"hello\n"
        assert err.getvalue() == b"warn\n"
        assert ws.closed

    def test_stdin_is_pumped_in_chunks(self):
        ws = FakeWSClient(open_polls=10)
        executor, _, _ = _executor(ws, chunk_size=4)

        executor.execute("pod", "ns", ["cat"], stdin=io.BytesIO(b"hello world"))

        assert bytes(ws.stdin) == b"hello world"

    def test_end_of_stdin_is_sent_to_remote(self):
        ws = FakeWSClient(exits_on_stdin_eof=True)
        executor, _, _ = _executor(ws, chunk_size=16)

        executor.execute("pod", "ns", ["cat"], stdin=io.BytesIO(b"x" * 100))

        assert ws.stdin_closed
        assert bytes(ws.stdin) == b"x" * 100
        assert ws.polls < ws.max_polls

    def test_empty_stdin_is_closed_immediately(self):
        ws = FakeWSClient(exits_on_stdin_eof=True)
        executor, _, _ = _executor(ws)

        executor.execute("pod", "ns", ["tar", "-xmf", "-"], stdin=io.BytesIO(b""))

        assert ws.stdin_closed
        assert ws.polls == 1

    def test_polls_do_not_wait_while_stdin_has_data(self):
        ws = FakeWSClient(open_polls=6)
        executor, _, _ = _executor(ws, chunk_size=4)

        executor.execute("pod", "ns", ["cat"], stdin=io.BytesIO(b"abcdefghijkl"))

        # Three chunks, then the read that finds end of input
        assert ws.timeouts[:4] == [0, 0, 0, 0]
        assert ws.timeouts[4:] == [0.01, 0.01]
        assert bytes(ws.stdin) == b"abcdefghijkl"

    def test_remote_closing_stdin_is_not_an_error(self):
        ws = FakeWSClient(open_polls=5, stdin_error=WebSocketConnectionClosedException("closed"))
        executor, _, _ = _executor(ws)

        executor.execute("pod", "ns", ["head", "-c", "1"], stdin=io.BytesIO(b"data"))

        assert ws.closed

    def test_nonzero_exit_code(self):
        ws = FakeWSClient(status=exit_status(2))
        executor, _, _ = _executor(ws)

        with pytest.raises(RemoteCommandError) as excinfo:
            executor.execute("pod", "ns", ["sh", "-c", "exit 2"])
        assert excinfo.value.exit_code == 2
        assert ws.closed

    def test_other_failure_status(self):
        status = b'{"status": "Failure", "message": "container not found", "reason": "InternalError"}'
        executor, _, _ = _executor(FakeWSClient(status=status))

        with pytest.raises(ExecError) as excinfo:
            executor.execute("pod", "ns", ["true"])
        assert not isinstance(excinfo.value, RemoteCommandError)
        assert "container not found" in str(excinfo.value)


class TestExecuteFailures:
    """Connection and stream failures."""

    def test_handshake_failure(self):
        api = MagicMock()
        opener = MagicMock(side_effect=ApiException(status=0, reason="Handshake status 403 Forbidden"))
        executor = PodExecutor(api, stream_impl=opener)

        with pytest.raises(ExecConnectionError, match="Handshake status 403"):
            executor.execute("pod", "ns", ["true"])

    def test_missing_status_is_a_stream_error(self):
        ws = FakeWSClient(status=None)
        executor, _, _ = _executor(ws)

        with pytest.raises(ExecStreamError):
            executor.execute("pod", "ns", ["true"])
        assert ws.closed

    def test_broken_connection_is_a_stream_error(self):
        ws = FakeWSClient(update_error=WebSocketConnectionClosedException("Connection to remote host was lost."))
        executor, _, _ = _executor(ws)

        with pytest.raises(ExecStreamError, match="remote host was lost"):
            executor.execute("pod", "ns", ["sleep", "60"], stdout=io.BytesIO())
        assert ws.closed
