"""
Cluster connection.

Resolves kube config the way kubectl does (explicit file, $KUBECONFIG,
~/.kube/config) and falls back to in-cluster service-account config.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from .errors import ClusterConfigError

logger = logging.getLogger("kubectl_ran.kube")

_SERVICE_ACCOUNT_NAMESPACE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")
DEFAULT_NAMESPACE = "default"


@dataclass(frozen=True)
class Cluster:
    """A connected CoreV1 client plus the namespace the run targets."""

    api: client.CoreV1Api
    namespace: str


def _kubeconfig_exists(kubeconfig: Optional[str]) -> bool:
    if kubeconfig:
        return True
    env_paths = os.environ.get("KUBECONFIG", "")
    if any(Path(p).expanduser().exists() for p in env_paths.split(os.pathsep) if p):
        return True
    return Path(config.KUBE_CONFIG_DEFAULT_LOCATION).expanduser().exists()


def _context_namespace(kubeconfig: Optional[str], context: Optional[str]) -> Optional[str]:
    try:
        contexts, active = config.list_kube_config_contexts(config_file=kubeconfig)
    except (ConfigException, OSError) as exc:
        logger.debug("Could not list kube contexts: %s", exc)
        return None

    selected = active
    if context:
        selected = next((c for c in contexts if c.get("name") == context), None)
    if not selected:
        return None
    return (selected.get("context") or {}).get("namespace")


def _in_cluster_namespace() -> Optional[str]:
    try:
        return _SERVICE_ACCOUNT_NAMESPACE.read_text(encoding="utf-8").strip() or None
    except OSError:
        return None


def load_cluster(
    kubeconfig: Optional[str] = None,
    context: Optional[str] = None,
    namespace: Optional[str] = None,
) -> Cluster:
    """Load cluster credentials and resolve the target namespace.

    Namespace precedence: explicit argument, the kube context's
    namespace, the in-cluster service-account namespace, 'default'.

    Args:
        kubeconfig: Path to a kube config file.
        context: Kube context name.
        namespace: Explicit namespace.

    Returns:
        Cluster with a CoreV1Api and the namespace.

    Raises:
        ClusterConfigError: If no usable configuration is found.
    """
    in_cluster = False
    try:
        if _kubeconfig_exists(kubeconfig):
            config.load_kube_config(config_file=kubeconfig, context=context)
        else:
            config.load_incluster_config()
            in_cluster = True
    except (ConfigException, OSError) as exc:
        raise ClusterConfigError(f"unable to load kube config: {exc}") from exc

    resolved = namespace
    if not resolved and not in_cluster:
        resolved = _context_namespace(kubeconfig, context)
    if not resolved:
        resolved = _in_cluster_namespace() if in_cluster else None
    resolved = resolved or DEFAULT_NAMESPACE

    logger.info("Using namespace %s%s", resolved, " (in-cluster)" if in_cluster else "")
    return Cluster(api=client.CoreV1Api(), namespace=resolved)
