"""
Directory sync into and out of a pod, using tar over exec.

There is no file-copy API for pods, so both directions stream a tar
archive through the exec transport:

    push:  make_tar(local) ──pipe──> exec `tar -xmf -`  (stdin)
    pull:  exec `tar cf -` (stdout) ──pipe──> untar_all(local)

Each call runs exactly one background producer thread that feeds an
OS pipe; the foreground side consumes it and provides the call's
result. Producer failures are logged, not returned. Whichever side
finishes first closes its pipe end so the other sees end-of-stream
(or a broken pipe) instead of blocking.

Archive names are always relative. An absolute name on the way in is
a format violation and aborts extraction.
"""

from __future__ import annotations

import logging
import os
import posixpath
import shutil
import tarfile
import tempfile
import threading
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, List, Optional, Tuple

from .errors import ArchiveError
from .executor import PodExecutor

logger = logging.getLogger("kubectl_ran.archive")

_TAR_FORMAT = tarfile.PAX_FORMAT
_SPOOL_SIZE = 8 * 1024 * 1024


# ---------------------------------------------------------------------------
# Archive names
# ---------------------------------------------------------------------------


def _archive_root(remote: str) -> Tuple[str, bool]:
    """Normalise a remote path into a relative archive root.

    Returns:
        (root, absolute): root has no leading '/', '.' for the filesystem
        root itself; absolute tells tar to run from '/'.
    """
    cleaned = posixpath.normpath(remote)
    absolute = cleaned.startswith("/")
    root = cleaned.lstrip("/") or "."
    return root, absolute


def _walk(root: str) -> Iterator[str]:
    """Depth-first, lexically ordered walk that yields root first.

    Directories that cannot be listed are logged and skipped.
    """
    yield root
    if os.path.islink(root) or not os.path.isdir(root):
        return
    try:
        names = sorted(os.listdir(root))
    except OSError as exc:
        logger.warning("unable to walk directory %s: %s", root, exc)
        return
    for name in names:
        yield from _walk(os.path.join(root, name))


# ---------------------------------------------------------------------------
# Encoding / decoding
# ---------------------------------------------------------------------------


def _spool(path: str) -> BinaryIO:
    """Read a file completely before its header is written.

    Large files overflow to a temporary file on disk.
    """
    spool = tempfile.SpooledTemporaryFile(max_size=_SPOOL_SIZE)
    try:
        with open(path, "rb") as data:
            shutil.copyfileobj(data, spool)
    except OSError:
        spool.close()
        raise
    return spool


def make_tar(src: str, dst: str, writer: BinaryIO) -> int:
    """Write src as a tar stream whose names are rooted at dst.

    Walk errors and per-file read errors are logged and the node is
    skipped. File contents are read in full before their header is
    written, so a file that changes size mid-walk cannot misalign the
    stream. Errors writing to the sink propagate. The archive is always
    closed so the reader sees a complete end-of-archive marker.

    Args:
        src: Local file or directory.
        dst: Relative archive root the tree is renamed to.
        writer: Binary sink (usually the write end of a pipe).

    Returns:
        Number of entries written.
    """
    src = os.path.normpath(src)
    dst = posixpath.normpath(dst)
    if posixpath.isabs(dst):
        raise ArchiveError(f"archive root must be relative, got {dst!r}")

    logger.info("copy from local %s to remote %s", src, dst)
    count = 0
    failures: List[str] = []

    tar = tarfile.open(fileobj=writer, mode="w|", format=_TAR_FORMAT)
    try:
        for path in _walk(src):
            rel = os.path.relpath(path, src)
            if rel == os.curdir:
                name = dst
            else:
                name = posixpath.normpath(posixpath.join(dst, *rel.split(os.sep)))
            payload = None
            try:
                info = tar.gettarinfo(path, arcname=name)
                if info is None or not (info.isdir() or info.isfile() or info.issym()):
                    logger.warning("skipping unsupported file type: %s", path)
                    continue
                if info.isfile():
                    payload = _spool(path)
            except OSError as exc:
                failures.append(f"{path}: {exc}")
                logger.warning("unable to add %s to tar: %s", path, exc)
                continue

            logger.info("%s -> %s", path, info.name)
            if payload is None:
                tar.addfile(info)
            else:
                with payload:
                    # The header must match what was read, not the earlier stat
                    info.size = payload.tell()
                    payload.seek(0)
                    tar.addfile(info, payload)
            count += 1
    finally:
        tar.close()

    if failures:
        logger.warning("failures while adding to tar: %d file(s) skipped", len(failures))
    return count


def _local_path(name: str, src: str, dst: str) -> str:
    """Map an archive name under src onto the local directory dst."""
    if posixpath.isabs(name):
        raise ArchiveError(f"unexpected tar format, leading '/' was not removed for {name}")

    cleaned = posixpath.normpath(name)
    if cleaned == ".." or cleaned.startswith("../"):
        raise ArchiveError(f"unexpected tar entry outside the archive root: {name}")

    if src == ".":
        rel = cleaned
    elif cleaned == src:
        rel = "."
    elif cleaned.startswith(src + "/"):
        rel = cleaned[len(src) + 1:]
    else:
        raise ArchiveError(f"unexpected tar entry {name} outside {src}")

    if rel == ".":
        return dst
    return os.path.join(dst, *rel.split("/"))


def untar_all(src: str, dst: str, reader: BinaryIO) -> int:
    """Extract a tar stream rooted at src into the local directory dst.

    Only directories and regular files are created; links are skipped
    with a warning. No metadata beyond content and type is kept.

    Args:
        src: Relative archive root the remote tree was stored under.
        dst: Local directory that replaces src in every name.
        reader: Binary source (usually the read end of a pipe).

    Returns:
        Number of entries extracted.

    Raises:
        ArchiveError: On an absolute or out-of-root entry name.
        OSError: If a local directory or file cannot be written.
        tarfile.TarError: If the stream is not a valid archive.
    """
    src = posixpath.normpath(src).lstrip("/") or "."
    dst = os.path.normpath(dst)
    logger.info("copy from remote %s to local %s", src, dst)

    peek = getattr(reader, "peek", None)
    if peek is not None and not peek(1):
        logger.info("empty archive from remote %s", src)
        return 0

    count = 0
    with tarfile.open(fileobj=reader, mode="r|") as tar:
        for member in tar:
            target = _local_path(member.name, src, dst)
            logger.info("%s -> %s", member.name, target)

            if member.isdir():
                os.makedirs(target, exist_ok=True)
            elif member.issym() or member.islnk():
                logger.warning("skipping link: %r -> %r", target, member.linkname)
                continue
            elif member.isfile():
                parent = os.path.dirname(target)
                if parent:
                    os.makedirs(parent, exist_ok=True)
                data = tar.extractfile(member)
                with open(target, "wb") as out:
                    if data is not None:
                        shutil.copyfileobj(data, out)
            else:
                logger.warning("skipping unsupported tar entry: %s", member.name)
                continue
            count += 1
    return count


# ---------------------------------------------------------------------------
# Pipe plumbing
# ---------------------------------------------------------------------------


def _run_producer(name: str, target: Callable[[BinaryIO], None]) -> Tuple[BinaryIO, threading.Thread]:
    """Start target(writer) on a background thread feeding a new pipe.

    The producer's write end is closed when target returns or fails.

    Returns:
        (reader, thread): read end for the foreground, and the thread.
    """
    read_fd, write_fd = os.pipe()
    reader = os.fdopen(read_fd, "rb")
    writer = os.fdopen(write_fd, "wb")

    def _produce() -> None:
        try:
            target(writer)
        except Exception as exc:
            logger.warning("%s failed: %s", name, exc)
        finally:
            try:
                writer.close()
            except OSError as exc:
                logger.debug("%s: closing pipe: %s", name, exc)

    thread = threading.Thread(target=_produce, name=name, daemon=True)
    thread.start()
    return reader, thread


def _drain(reader: BinaryIO) -> None:
    """Consume what the producer still writes after the archive ended."""
    while reader.read(64 * 1024):
        pass


def _finish(reader: BinaryIO, thread: threading.Thread) -> None:
    """Close the foreground's pipe end and wait for the producer."""
    reader.close()
    thread.join()


# ---------------------------------------------------------------------------
# ArchiveSync
# ---------------------------------------------------------------------------


class ArchiveSync:
    """Pushes and pulls directory trees through PodExecutor.

    Args:
        executor: Exec transport for the pod's container.
        namespace: Namespace of the pod.
        stdout: Sink for the remote tar's stdout on push.
        stderr: Sink for the remote tar's stderr in both directions.
    """

    def __init__(
        self,
        executor: PodExecutor,
        namespace: str,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
    ) -> None:
        self._executor = executor
        self._namespace = namespace
        self._stdout = stdout
        self._stderr = stderr

    def push(self, local_root: str, remote_root: str, pod: str) -> None:
        """Copy a local tree into the pod.

        A missing local_root is skipped. Only the remote extraction's
        result is returned; local walk failures are logged.

        Raises:
            ExecError: If the remote tar could not be run or failed.
        """
        if not Path(local_root).exists():
            logger.warning("skipping copy of %s to pod: no such file or directory", local_root)
            return

        arc_root, absolute = _archive_root(remote_root)
        command = ["tar", "-xmf", "-"]
        if absolute:
            command += ["-C", "/"]

        reader, thread = _run_producer(
            "unable to tar local files",
            lambda writer: make_tar(local_root, arc_root, writer),
        )
        try:
            self._executor.execute(
                pod,
                self._namespace,
                command,
                stdin=reader,
                stdout=self._stdout,
                stderr=self._stderr,
            )
        finally:
            _finish(reader, thread)

    def pull(self, remote_root: str, local_root: str, pod: str) -> None:
        """Copy a tree out of the pod into a local directory.

        Only the local extraction's result is returned; a failing remote
        tar is logged.

        Raises:
            ArchiveError: If the stream carries an unsafe entry.
            OSError: If local files cannot be written.
            tarfile.TarError: If the stream is not a valid archive.
        """
        arc_root, absolute = _archive_root(remote_root)
        command = ["tar", "cf", "-"]
        if absolute:
            command += ["-C", "/"]
        command.append(arc_root)

        reader, thread = _run_producer(
            "unable to tar pod files",
            lambda writer: self._executor.execute(
                pod,
                self._namespace,
                command,
                stdout=writer,
                stderr=self._stderr,
            ),
        )
        try:
            untar_all(arc_root, local_root, reader)
            # tar pads its output past the end-of-archive marker
            _drain(reader)
        finally:
            _finish(reader, thread)
