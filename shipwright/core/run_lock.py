"""Named, per-Instance mutual exclusion for pipeline runs.

One lock file per Instance name under ``lock_dir``.  The lock is taken
non-blocking for the whole run, so a second trigger for the same Instance is
refused until the first run reaches a terminal state.  The OS releases the
lock if the holding process dies.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from types import TracebackType
from typing import IO, Any

from shipwright.errors import PipelineBusyError

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")


def lock_path_for(lock_dir: Path, instance_name: str) -> Path:
    return Path(lock_dir) / f"{_SAFE_NAME.sub('_', instance_name)}.lock"


def _try_lock(handle: IO[str]) -> bool:
    try:
        if os.name == "nt":
            import msvcrt

            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            import fcntl

            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        return True
    except OSError:
        return False


def _unlock(handle: IO[str]) -> None:
    try:
        if os.name == "nt":
            import msvcrt

            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
        else:
            import fcntl

            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
    finally:
        handle.close()


def read_holder(path: Path) -> dict[str, Any]:
    """Return the ``{pid, run_id}`` the current holder wrote, or ``{}``."""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8") or "{}")
    except (OSError, ValueError):
        return {}
    return raw if isinstance(raw, dict) else {}


class InstanceLock:
    """Context manager holding the run lock for one Instance name.

    Raises ``PipelineBusyError`` on entry if another process (or another
    ``InstanceLock`` in this process) already holds it.
    """

    def __init__(self, lock_dir: Path, instance_name: str, *, run_id: str = "") -> None:
        self.instance_name = instance_name
        self.run_id = run_id
        self.path = lock_path_for(lock_dir, instance_name)
        self._handle: IO[str] | None = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = self.path.open("a+", encoding="utf-8")
        if not _try_lock(handle):
            handle.close()
            holder = read_holder(self.path)
            raise PipelineBusyError(
                f"Instance {self.instance_name!r} is locked by another pipeline run "
                f"(pid={holder.get('pid', '?')}, run_id={holder.get('run_id', '?')}). "
                "Wait for it to finish."
            )

        handle.seek(0)
        handle.truncate()
        handle.write(json.dumps({"pid": os.getpid(), "run_id": self.run_id}))
        handle.flush()
        self._handle = handle
        logger.debug("Acquired run lock %s", self.path)

    def release(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        handle.seek(0)
        handle.truncate()
        handle.flush()
        _unlock(handle)
        logger.debug("Released run lock %s", self.path)

    def __enter__(self) -> InstanceLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
