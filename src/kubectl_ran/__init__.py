"""
kubectl-ran: run a command in an ephemeral pod.

Creates a throwaway pod, waits for it to become ready, syncs local
directories in, runs the command with its output bridged to the
terminal, syncs the directories back out, and deletes the pod.

Entry point: kubectl_ran.cli:main
"""

import os

__version__ = "0.1.0"

CONFIG_PATH = os.environ.get(
    "KUBECTL_RAN_CONFIG", "~/.config/kubectl-ran/config.yaml"
)
