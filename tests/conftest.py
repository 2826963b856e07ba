"""Shared test fixtures for kubectl-ran."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo configure_logging() between tests so caplog keeps working."""
    logger = logging.getLogger("kubectl_ran")
    yield
    logger.handlers = []
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def pod_root(tmp_path: Path) -> Path:
    """Empty directory standing in for the pod's filesystem."""
    root = tmp_path / "pod"
    root.mkdir()
    return root


@pytest.fixture
def local_tree(tmp_path: Path) -> Path:
    """Local directory with nested files."""
    root = tmp_path / "local"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("alpha")
    (root / "sub" / "b.txt").write_text("bravo")
    return root
