"""
ImageAnalyzer Backend: Upload Lifecycle Manager
================================================

What:  Deletes uploaded files. Nothing written by StorageWriter outlives the
       request that produced it, except until the next age sweep when that
       request died before cleaning up.
How:   Three independent deletion paths, all best-effort and idempotent:
           1. cleanup_batch():  right after a request finished (any outcome)
           2. sweep_expired():  files older than a threshold (failsafe)
           3. wipe_all():       every non-dot file (process start / stop)
       plus a read-only get_status() and a PeriodicSweeper task running (2).
Who:   IngestionService (1), the application lifespan (2, 3), the health
       route (status) and the command line (2, 3).

Batch state machine:
    STORED ──▶ CONSUMED_SUCCESSFULLY ──▶ DELETED
       │   └─▶ CONSUMED_WITH_ERROR   ──▶ DELETED
       └─────▶ ABANDONED (left to the age sweep) ──▶ DELETED

    A consumed batch whose cleanup could not remove every file is marked
    ABANDONED; the sweep reclaims what is left.

Failure semantics:
    Nothing here raises for a missing file, a permission error on a single
    file, an empty directory or a missing directory. Every call completes
    and reports what was actually removed. A file that is already gone
    counts as a successful deletion.

Command line:
    python -m imageanalyzer.services.lifecycle                 # age sweep
    python -m imageanalyzer.services.lifecycle --all           # full wipe
    python -m imageanalyzer.services.lifecycle --max-age-minutes 5
"""

import argparse
import asyncio
import logging
import os
import stat
import sys
import time
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Union

import aiofiles.os

from imageanalyzer.config import settings
from imageanalyzer.schemas.upload import StoredFile, UploadStatus

logger = logging.getLogger(__name__)


class DeletionOutcome(str, Enum):
    DELETED = "deleted"
    ALREADY_GONE = "already_gone"
    FAILED = "failed"

    @property
    def succeeded(self) -> bool:
        return self is not DeletionOutcome.FAILED


class BatchState(str, Enum):
    STORED = "stored"
    CONSUMED_SUCCESSFULLY = "consumed_successfully"
    CONSUMED_WITH_ERROR = "consumed_with_error"
    ABANDONED = "abandoned"
    DELETED = "deleted"


_TRANSITIONS = {
    BatchState.STORED: {
        BatchState.CONSUMED_SUCCESSFULLY,
        BatchState.CONSUMED_WITH_ERROR,
        BatchState.ABANDONED,
    },
    BatchState.CONSUMED_SUCCESSFULLY: {BatchState.DELETED, BatchState.ABANDONED},
    BatchState.CONSUMED_WITH_ERROR: {BatchState.DELETED, BatchState.ABANDONED},
    BatchState.ABANDONED: {BatchState.DELETED},
    BatchState.DELETED: set(),
}


class IngestedBatch:
    """The stored files of one request and where they are in their lifecycle."""

    def __init__(self, files: List[StoredFile]):
        self.files = list(files)
        self.state = BatchState.STORED
        self.deletion_outcomes: List[DeletionOutcome] = []

    def transition(self, new_state: BatchState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(f"Illegal batch transition {self.state.value} -> {new_state.value}")
        logger.debug("Batch of %d file(s): %s -> %s", len(self.files), self.state.value, new_state.value)
        self.state = new_state


PathLike = Union[str, os.PathLike]


class LifecycleManager:
    """
    Best-effort deletion of uploads under one flat upload root.

    Only regular entries directly inside the root are ever deleted; dotfiles
    (the `.gitkeep` marker) and subdirectories are left alone.
    """

    def __init__(
        self,
        upload_root: Optional[Path] = None,
        max_age_minutes: Optional[int] = None,
    ):
        self.upload_root = Path(upload_root or settings.upload_root).resolve()
        self.max_age_minutes = max_age_minutes or settings.cleanup_max_age_minutes

    # ── Single File ───────────────────────────────────────────────────────

    def _is_inside_root(self, path: Path) -> bool:
        # Why parent only: resolving the name itself would follow a symlink out
        # of the root; the link is deleted, never its target
        candidate = Path(os.path.abspath(path))
        return candidate.parent.resolve() == self.upload_root and not candidate.name.startswith(".")

    async def delete_file(self, path: PathLike) -> DeletionOutcome:
        """
        Delete one upload. Never raises.

        Returns:
            DELETED if removed, ALREADY_GONE if it did not exist, FAILED if it
            could not be removed or lies outside the upload root.
        """
        target = Path(path)
        if not self._is_inside_root(target):
            logger.error("Refusing to delete a path outside the upload directory: %s", target.name)
            return DeletionOutcome.FAILED

        try:
            await aiofiles.os.remove(target)
        except FileNotFoundError:
            logger.debug("Cleanup: file already gone: %s", target.name)
            return DeletionOutcome.ALREADY_GONE
        except OSError as e:
            logger.warning("Failed to delete %s: %s", target.name, e.strerror or type(e).__name__)
            return DeletionOutcome.FAILED

        logger.info("Deleted upload: %s", target.name)
        return DeletionOutcome.DELETED

    async def _delete_many(self, paths: Iterable[PathLike]) -> List[DeletionOutcome]:
        # Why return_exceptions: one failed removal must not stop the others
        results = await asyncio.gather(
            *(self.delete_file(p) for p in paths),
            return_exceptions=True,
        )
        outcomes = []
        for result in results:
            if isinstance(result, BaseException):
                logger.error("Unexpected deletion failure: %s", type(result).__name__)
                outcomes.append(DeletionOutcome.FAILED)
            else:
                outcomes.append(result)
        return outcomes

    # ── Per-Request Cleanup ───────────────────────────────────────────────

    async def cleanup_batch(self, files: Iterable[StoredFile]) -> List[DeletionOutcome]:
        """
        Delete every file of a request, each independently and concurrently.

        One failed deletion never prevents the others. Returns one outcome per
        file, in input order.
        """
        files = list(files)
        if not files:
            return []
        outcomes = await self._delete_many(f.absolute_path for f in files)
        failed = sum(1 for o in outcomes if not o.succeeded)
        if failed:
            logger.warning(
                "Cleanup left %d of %d file(s) for the age sweep", failed, len(files)
            )
        else:
            logger.info("Cleanup completed for %d file(s)", len(files))
        return outcomes

    async def release(self, batch: IngestedBatch) -> IngestedBatch:
        """Run cleanup for a consumed batch and record its final state."""
        batch.deletion_outcomes = await self.cleanup_batch(batch.files)
        if all(o.succeeded for o in batch.deletion_outcomes):
            batch.transition(BatchState.DELETED)
        else:
            batch.transition(BatchState.ABANDONED)
        return batch

    # ── Directory-Wide Operations ─────────────────────────────────────────

    async def _list_entries(self) -> List[tuple]:
        """
        (path, lstat) of each non-dot regular file or symlink in the root.

        Returns an empty list when the root is missing or unreadable.
        """
        try:
            names = await aiofiles.os.listdir(self.upload_root)
        except FileNotFoundError:
            return []
        except OSError as e:
            logger.error("Cannot list upload directory: %s", e.strerror or type(e).__name__)
            return []

        entries = []
        for name in names:
            if name.startswith("."):
                continue
            path = self.upload_root / name
            try:
                st = await aiofiles.os.stat(path, follow_symlinks=False)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("Error checking file %s: %s", name, e.strerror)
                continue
            if stat.S_ISDIR(st.st_mode):
                logger.warning("Unexpected subdirectory in upload directory: %s", name)
                continue
            entries.append((path, st))
        return entries

    async def sweep_expired(self, max_age_minutes: Optional[float] = None) -> int:
        """
        Delete uploads whose modification age exceeds the threshold.

        Args:
            max_age_minutes: Override of the configured threshold.

        Returns:
            Number of files actually removed.
        """
        threshold = (max_age_minutes if max_age_minutes is not None else self.max_age_minutes) * 60
        now = time.time()

        # Why strict ">": a file exactly at the threshold is still within its
        # allowed lifetime and goes on the next run
        expired = [path for path, st in await self._list_entries() if now - st.st_mtime > threshold]
        if not expired:
            return 0

        outcomes = await self._delete_many(expired)
        deleted = sum(1 for o in outcomes if o is DeletionOutcome.DELETED)
        if deleted:
            logger.info(
                "Age sweep removed %d file(s) older than %s minutes",
                deleted,
                max_age_minutes if max_age_minutes is not None else self.max_age_minutes,
            )
        return deleted

    async def wipe_all(self) -> int:
        """Delete every non-dot file in the upload root. Returns the count removed."""
        entries = await self._list_entries()
        if not entries:
            logger.debug("Upload directory is already empty")
            return 0

        outcomes = await self._delete_many(path for path, _ in entries)
        deleted = sum(1 for o in outcomes if o is DeletionOutcome.DELETED)
        logger.info("Upload directory wiped: %d file(s) deleted", deleted)
        return deleted

    async def get_status(self) -> UploadStatus:
        """Current file count, total bytes and oldest file age. Read-only."""
        if not await aiofiles.os.path.isdir(self.upload_root):
            return UploadStatus(exists=False)

        entries = await self._list_entries()
        now = time.time()
        return UploadStatus(
            exists=True,
            file_count=len(entries),
            total_bytes=sum(st.st_size for _, st in entries),
            oldest_age_seconds=(
                round(max(now - st.st_mtime for _, st in entries), 3) if entries else None
            ),
        )


class PeriodicSweeper:
    """
    Background task running LifecycleManager.sweep_expired() on an interval.

    Started and stopped by the application lifespan. A failing sweep is
    logged and the loop carries on.
    """

    def __init__(
        self,
        manager: LifecycleManager,
        interval_seconds: Optional[float] = None,
        max_age_minutes: Optional[float] = None,
    ):
        self.manager = manager
        self.interval_seconds = interval_seconds or settings.cleanup_interval_seconds
        self.max_age_minutes = max_age_minutes
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="upload-age-sweeper")
        logger.info("Upload age sweeper started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        await asyncio.wait([task])
        logger.info("Upload age sweeper stopped after %d run(s)", self.runs)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.manager.sweep_expired(self.max_age_minutes)
            except Exception:
                logger.exception("Upload age sweep failed")
            self.runs += 1


# ══════════════════════════════════════════════════════════════════════════
# Command Line
# ══════════════════════════════════════════════════════════════════════════

def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Clean up the upload directory.")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--all", action="store_true", help="delete every upload")
    group.add_argument(
        "--max-age-minutes",
        type=float,
        default=None,
        help=f"age threshold (default: {settings.cleanup_max_age_minutes})",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    manager = LifecycleManager()
    if args.all:
        count = asyncio.run(manager.wipe_all())
    else:
        count = asyncio.run(manager.sweep_expired(args.max_age_minutes))
    print(f"Cleanup completed: {count} files deleted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
