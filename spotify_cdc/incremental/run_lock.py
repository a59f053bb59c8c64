"""
Run lock preventing overlapping cycles over the same table set.

The in-process set refuses a second cycle started from the same
interpreter; an optional guard extends the refusal across processes
(a flock'd file beside the watermark file, or a PostgreSQL advisory
lock when watermarks live in the warehouse).
"""

import hashlib
import os
import threading
from collections.abc import Iterable, Iterator
from contextlib import ExitStack, contextmanager
from pathlib import Path

from spotify_cdc.core.errors import CycleInProgressError
from spotify_cdc.core.models import TableConfig
from spotify_cdc.observability.logger import get_logger

logger = get_logger(__name__)


class FileRunGuard:
    """
    Cross-process guard: one exclusive, non-blocking flock per table set.

    The lock file is left in place after release; removing it would let a
    waiting process lock an unlinked inode.
    """

    def __init__(self, directory: str | Path):
        """
        Args:
            directory: Where lock files live (usually the watermark file's directory)
        """
        self.directory = Path(directory)

    def lock_path(self, key: str) -> Path:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]
        return self.directory / f".cdc-run-{digest}.lock"

    @contextmanager
    def hold(self, key: str) -> Iterator[str]:
        """
        Raises:
            CycleInProgressError: If another process holds the lock
        """
        # POSIX only; imported here so the package still imports elsewhere
        import fcntl

        self.directory.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path(key), "a+", encoding="utf-8") as fh:
            try:
                fcntl.flock(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as e:
                raise CycleInProgressError(key) from e
            try:
                fh.seek(0)
                fh.truncate()
                fh.write(f"{os.getpid()} {key}\n")
                fh.flush()
                yield key
            finally:
                fcntl.flock(fh, fcntl.LOCK_UN)


class RunLock:
    """
    Set of table-set keys currently being loaded.

    Acquisition never blocks: a second cycle for a held key is refused
    outright rather than queued behind the first.
    """

    def __init__(self, guard=None) -> None:
        """
        Args:
            guard: Optional cross-process guard with a hold(key) context manager
                (FileRunGuard, PostgresAdvisoryGuard)
        """
        self.guard = guard
        self._held: set[str] = set()
        self._mutex = threading.Lock()

    @staticmethod
    def key_for(tables: Iterable[TableConfig]) -> str:
        """Identity of a table set, independent of configuration order."""
        return ",".join(sorted(t.table_id for t in tables))

    @contextmanager
    def hold(self, key: str) -> Iterator[str]:
        """
        Hold the lock for a table set.

        Raises:
            CycleInProgressError: If a cycle for the same set is running
        """
        with self._mutex:
            if key in self._held:
                raise CycleInProgressError(key)
            self._held.add(key)
        try:
            with ExitStack() as stack:
                if self.guard is not None:
                    try:
                        stack.enter_context(self.guard.hold(key))
                    except CycleInProgressError:
                        logger.warning(
                            f"Another process is loading {key}", extra={"lock_key": key}
                        )
                        raise
                yield key
        finally:
            with self._mutex:
                self._held.discard(key)


# Shared by every coordinator in the process unless one is injected
default_run_lock = RunLock()
