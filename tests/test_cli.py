"""Tests for the kubectl-ran command line.

Cluster access and the run itself are patched out; these cover flag
validation and how run outcomes become exit codes.
"""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner
from kubernetes.client.rest import ApiException

from kubectl_ran import __version__
from kubectl_ran.cli import build_options, main
from kubectl_ran.errors import InvalidOptionError, PodTimeoutError, RemoteCommandError


@pytest.fixture
def patched(tmp_path: Path):
    """Patch cluster loading and Runner; yields (invoke, load_cluster, Runner)."""
    cluster = SimpleNamespace(api=MagicMock(), namespace="ns")
    with patch("kubectl_ran.cli.load_cluster", return_value=cluster) as load_cluster, \
            patch("kubectl_ran.cli.Runner") as runner_cls:

        def invoke(*args):
            config = ["--config", str(tmp_path / "config.yaml")]
            return CliRunner().invoke(main, config + list(args))

        yield invoke, load_cluster, runner_cls


class TestBuildOptions:
    """Flag validation before touching the cluster."""

    def test_full_options(self):
        options = build_options(
            "busybox", ("sh", "-c", "echo $A"),
            env=("A=1", "B=x=y"), volume=("./in:/in",),
            cpu="500m", memory="1Gi", wait="2m",
        )
        assert options.command == ["sh", "-c", "echo $A"]
        assert [(e.name, e.value) for e in options.env] == [("A", "1"), ("B", "x=y")]
        assert options.volumes[0].dst == "/in"
        assert options.wait_timeout == 120.0

    def test_default_wait(self):
        assert build_options("busybox", ("true",), default_wait="45s").wait_timeout == 45.0

    @pytest.mark.parametrize("kwargs", [
        {"env": ("NOVALUE",)},
        {"volume": ("/only-one",)},
        {"cpu": "fast"},
        {"wait": "soon"},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(InvalidOptionError):
            build_options("busybox", ("true",), **kwargs)

    def test_missing_command(self):
        with pytest.raises(InvalidOptionError):
            build_options("busybox", ())

    def test_duplicate_env_name(self):
        with pytest.raises(InvalidOptionError, match="duplicate environment variable 'A'"):
            build_options("busybox", ("true",), env=("A=1", "B=2", "A=2"))


class TestMain:
    """End-to-end flag handling through click."""

    def test_help(self):
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "--volume" in result.output
        assert "kubectl ran busybox" in result.output

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_runs_command(self, patched):
        invoke, load_cluster, runner_cls = patched
        result = invoke("-n", "batch", "--env", "A=1", "busybox", "--", "echo", "--flag", "hello")

        assert result.exit_code == 0, result.output
        load_cluster.assert_called_once_with(kubeconfig=None, context=None, namespace="batch")
        api, namespace, options = runner_cls.call_args.args
        assert namespace == "ns"
        assert options.image == "busybox"
        assert options.command == ["echo", "--flag", "hello"]
        runner_cls.return_value.run.assert_called_once_with()

    def test_remote_exit_code_is_propagated(self, patched):
        invoke, _, runner_cls = patched
        runner_cls.return_value.run.side_effect = RemoteCommandError(3)

        result = invoke("busybox", "--", "sh", "-c", "exit 3")
        assert result.exit_code == 3

    def test_invalid_env_fails_before_cluster(self, patched):
        invoke, load_cluster, _ = patched
        result = invoke("--env", "NOVALUE", "busybox", "--", "true")

        assert result.exit_code == 1
        assert "name=value" in result.output
        load_cluster.assert_not_called()

    def test_pod_not_ready(self, patched):
        invoke, _, runner_cls = patched
        runner_cls.return_value.run.side_effect = PodTimeoutError("p", "timed out waiting for pod 'p'")

        result = invoke("busybox", "--", "true")
        assert result.exit_code == 1
        assert "timed out waiting" in result.output

    def test_api_error(self, patched):
        invoke, _, runner_cls = patched
        runner_cls.return_value.run.side_effect = ApiException(status=403, reason="Forbidden")

        result = invoke("busybox", "--", "true")
        assert result.exit_code == 1
        assert "403 Forbidden" in result.output

    def test_interrupt(self, patched):
        invoke, _, runner_cls = patched
        runner_cls.return_value.run.side_effect = KeyboardInterrupt

        result = invoke("busybox", "--", "sleep", "60")
        assert result.exit_code == 130

    def test_command_is_required(self, patched):
        invoke, _, _ = patched
        result = invoke("busybox")
        assert result.exit_code != 0
