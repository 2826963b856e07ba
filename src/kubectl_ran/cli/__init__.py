"""
kubectl-ran CLI: run a command in an ephemeral pod.

Validates every flag before touching the cluster, then hands the run
to kubectl_ran.runner.Runner. The remote command's exit code becomes
the process exit code.

Entry point: kubectl_ran.cli:main
"""

from __future__ import annotations

import sys
import tarfile
from pathlib import Path
from typing import List, Optional, Tuple

import click
from pydantic import ValidationError
from kubernetes.client.rest import ApiException

from .. import __version__
from ..config import load_config, parse_duration
from ..errors import InvalidOptionError, RanError, RemoteCommandError
from ..kube import load_cluster
from ..models import EnvVar, RunOptions, VolumeSpec
from ..pod import parse_quantity
from ..runner import Runner
from ._common import configure_logging, console, logger, print_error

RAN_EXAMPLE = """
\b
  # Start busybox and run a command
  kubectl ran busybox -- echo "Hello world"
\b
  # Run a command with environment variables
  kubectl ran busybox --env=VAR1=Hello --env=VAR2=world -- sh -c 'echo "$VAR1 $VAR2"'
\b
  # Run a command with a synced directory
  kubectl ran busybox --volume=./stuff:/stuff -- sh -c 'echo "Hello world" > /stuff/out.txt'
"""


def build_options(
    image: str,
    command: Tuple[str, ...],
    env: Tuple[str, ...] = (),
    volume: Tuple[str, ...] = (),
    cpu: Optional[str] = None,
    memory: Optional[str] = None,
    wait: Optional[str] = None,
    pod_file: Optional[str] = None,
    default_wait: str = "30s",
) -> RunOptions:
    """Validate raw flag values into RunOptions.

    Raises:
        InvalidOptionError: On the first invalid value.
    """
    if not command:
        raise InvalidOptionError("a command to run is required after --")

    env_vars: List[EnvVar] = [EnvVar.parse(item) for item in env]
    seen = set()
    for var in env_vars:
        if var.name in seen:
            raise InvalidOptionError(f"duplicate environment variable {var.name!r}")
        seen.add(var.name)
    volumes: List[VolumeSpec] = [VolumeSpec.parse(item) for item in volume]

    cpu = parse_quantity(cpu, "cpu")
    memory = parse_quantity(memory, "memory")
    wait_timeout = parse_duration(wait or default_wait)

    try:
        return RunOptions(
            image=image,
            command=list(command),
            env=env_vars,
            volumes=volumes,
            cpu=cpu,
            memory=memory,
            wait_timeout=wait_timeout,
            pod_file=Path(pod_file) if pod_file else None,
        )
    except ValidationError as exc:
        raise InvalidOptionError(str(exc)) from exc


@click.command(
    epilog=RAN_EXAMPLE,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(version=__version__, prog_name="kubectl-ran")
@click.argument("image")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("--env", "-e", multiple=True, metavar="NAME=VALUE",
              help="Environment variable for the container.")
@click.option("--volume", multiple=True, metavar="SRC:DST",
              help="Local directory synced into the pod before and out after the command.")
@click.option("--cpu", default=None, help="CPU request and limit (e.g. 500m, 2).")
@click.option("--memory", default=None, help="Memory request and limit (e.g. 512Mi, 1Gi).")
@click.option("--wait", "wait", default=None, metavar="DURATION",
              help="How long to wait for the pod to become ready (e.g. 30s, 2m).")
@click.option("--pod-file", "-f", type=click.Path(dir_okay=False), default=None,
              help="Pod manifest used as a template for the pod.")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="kubectl-ran config file.")
@click.option("--kubeconfig", type=click.Path(dir_okay=False), default=None,
              help="Path to the kubeconfig file.")
@click.option("--context", "kube_context", default=None, help="Kubeconfig context to use.")
@click.option("--namespace", "-n", default=None, help="Namespace to run the pod in.")
@click.option("--verbose", "-v", is_flag=True, help="Show progress while the pod starts and syncs.")
def main(image, command, env, volume, cpu, memory, wait, pod_file,
         config_path, kubeconfig, kube_context, namespace, verbose):
    """Run a command in an ephemeral container with synced volume and environment.

    \b
    kubectl ran IMAGE [--env=NAME=VALUE] [--volume=SRC:DST] -- COMMAND [ARGS...]
    """
    configure_logging(verbose)
    config = load_config(Path(config_path) if config_path else None)

    try:
        options = build_options(
            image, command, env=env, volume=volume, cpu=cpu, memory=memory,
            wait=wait, pod_file=pod_file, default_wait=config.wait_timeout,
        )
        cluster = load_cluster(kubeconfig=kubeconfig, context=kube_context, namespace=namespace)
        Runner(cluster.api, cluster.namespace, options, config=config).run()
    except RemoteCommandError as exc:
        logger.info("%s", exc)
        sys.exit(exc.exit_code)
    except RanError as exc:
        print_error(str(exc))
        sys.exit(1)
    except ApiException as exc:
        print_error(f"{exc.status} {exc.reason}: {exc.body or ''}".strip())
        sys.exit(1)
    except (OSError, tarfile.TarError) as exc:
        print_error(str(exc))
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted.[/]")
        sys.exit(130)
