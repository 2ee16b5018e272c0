"""Batch orchestration: find a bounded slice of stale paths, delete it, repeat."""

import asyncio
import logging
import time
from pathlib import PurePosixPath

import psutil

from . import __version__
from .filters import ACCEPTS_ALL, PathFilter
from .finder import UNBOUNDED, Finder
from .logging import log_with_context, setup_logging
from .policy import RetentionPolicy, UnknownPolicyError, purge_time
from .query import FindQuery, FindResult
from .store import LocalStore, Store

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 5

# Never purge inside these: device nodes, virtual file systems, system binaries
DANGEROUS_PATHS = frozenset(
    {
        "/proc",
        "/sys",
        "/dev",
        "/run",
        "/var/run",
        "/boot",
        "/bin",
        "/sbin",
        "/lib",
        "/lib64",
        "/usr/bin",
        "/usr/sbin",
        "/usr/lib",
        "/etc",
    }
)


def get_memory_usage_mb() -> float:
    """Resident memory of this process in MB."""
    return psutil.Process().memory_info().rss / 1024 / 1024


def is_dangerous_path(path) -> bool:
    """True if ``path`` is, or is inside, a critical system directory."""
    text = str(PurePosixPath(str(path)))
    return any(text == d or text.startswith(d + "/") for d in DANGEROUS_PATHS)


class DeleteExecutor:
    """
    Delete one batch of candidates with bounded parallelism.

    The semaphore is created once and shared by every batch of a run, so no
    more than ``max_workers`` deletes are ever in flight. ``execute`` returns
    only after every delete of the batch has finished, and so does a cancelled
    ``execute`` before it re-raises.

    Paths whose delete failed during the run are kept in ``failed_paths``.
    """

    def __init__(self, store: Store, max_workers: int = DEFAULT_WORKERS, dry_run: bool = True):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.store = store
        self.max_workers = max_workers
        self.dry_run = dry_run
        self.semaphore = asyncio.Semaphore(max_workers)
        self.failed_paths = set()
        self._started = set()
        self.stats = {"paths_deleted": 0, "paths_to_delete": 0, "delete_failures": 0}

    async def _delete(self, path) -> bool:
        async with self.semaphore:
            self._started.add(asyncio.current_task())
            try:
                deleted = await self.store.delete(path, recursive=True)
            except Exception as e:
                log_with_context(
                    logger,
                    "error",
                    "Failed to delete path",
                    {"path": str(path), "error": str(e), "error_type": type(e).__name__},
                )
                self._failed(path)
                return False

        if not deleted:
            log_with_context(logger, "warning", "Path was not deleted", {"path": str(path)})
            self._failed(path)
            return False

        self.stats["paths_deleted"] += 1
        logger.debug(f"Deleted: {path}")
        return True

    def _failed(self, path) -> None:
        self.stats["delete_failures"] += 1
        self.failed_paths.add(path)

    async def execute(self, candidates: list) -> int:
        """
        Delete every candidate and wait for all of them.

        Args:
            candidates: Paths reported by one find call

        Returns:
            Number of paths deleted (or that would be deleted, in dry run)

        Raises:
            asyncio.CancelledError: If cancelled. Deletes that had not started
                are dropped; the ones already running finish first.
        """
        self.stats["paths_to_delete"] += len(candidates)

        if self.dry_run:
            for path in candidates:
                logger.debug(f"Would delete: {path}")
            return len(candidates)

        for path in candidates:
            logger.debug(f"Deleting {path}")

        self._started.clear()
        tasks = [asyncio.create_task(self._delete(path)) for path in candidates]
        batch = asyncio.gather(*tasks, return_exceptions=True)
        try:
            # Shielded so a cancel does not interrupt deletes already running
            results = await asyncio.shield(batch)
        except asyncio.CancelledError:
            waiting = [t for t in tasks if not t.done() and t not in self._started]
            log_with_context(
                logger,
                "warning",
                "Interrupted, waiting for running deletes before stopping",
                {
                    "batch_size": len(candidates),
                    "finished": sum(1 for t in tasks if t.done()),
                    "dropped": len(waiting),
                },
            )
            for task in waiting:
                task.cancel()
            await batch
            raise

        return sum(1 for ok in results if ok is True)


class RetentionRunner:
    """
    Apply retention policies to a store.

    For every (path, retention days) entry the runner repeats find and delete
    until a find call returns no candidates. The explored set of each result is
    fed into the next query so finished subtrees are not rescanned.
    """

    def __init__(
        self,
        store: Store | None = None,
        dry_run: bool = True,
        include_directories: bool = True,
        max_workers: int = DEFAULT_WORKERS,
        path_filter: PathFilter = ACCEPTS_ALL,
        log_level: str = "INFO",
    ):
        """
        Initialize the runner.

        Args:
            store: Storage backend (defaults to the local file system)
            dry_run: If True, only report what would be deleted
            include_directories: Collapse fully qualifying directories into one candidate
            max_workers: Maximum concurrent deletes
            path_filter: Directory filter applied during every search
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        """
        self.store = store if store is not None else LocalStore()
        self.dry_run = dry_run
        self.path_filter = path_filter
        self.finder = Finder(self.store, include_directories=include_directories)
        self.executor = DeleteExecutor(self.store, max_workers=max_workers, dry_run=dry_run)

        self.logger = setup_logging("batchpurge", log_level)

        self.stats = {
            "batches": 0,
            "directories_processed": 0,
            "errors": 0,
            "start_time": time.time(),
        }

    async def matching_directories(self, path_pattern: str) -> list:
        """
        Expand a path entry into the directories to search.

        A glob pattern yields every matching directory. A literal path yields
        itself if it exists; a missing literal path is only logged, so one bad
        entry does not abort the whole policy.
        """
        if self.store.has_wildcard(path_pattern):
            logger.info(f"Expanding glob pattern {path_pattern}")
            dirs = [status.path for status in await self.store.glob(path_pattern) if status.is_dir]
        elif await self.store.exists(path_pattern):
            dirs = [path_pattern]
        else:
            log_with_context(logger, "warning", "Path doesn't exist", {"path": path_pattern})
            dirs = []

        safe = []
        for directory in dirs:
            if is_dangerous_path(directory):
                log_with_context(
                    logger,
                    "error",
                    "Refusing to purge system directory",
                    {"path": str(directory)},
                )
                self.stats["errors"] += 1
            else:
                safe.append(directory)
        return safe

    async def purge_directory(self, directory, cutoff: float, batch_size: int) -> int:
        """
        Run find/delete cycles on one directory until nothing new qualifies.

        A path whose delete failed is found again by every later search. Those
        paths are left for the next run: each search is widened by the number of
        failed paths and they are dropped from the batch, so every batch deletes
        at most ``batch_size`` paths and the loop always ends.
        """
        total = 0
        result = FindResult()
        while True:
            failed = self.executor.failed_paths
            query = FindQuery.from_result(directory, result)
            result = await self.finder.find(query, cutoff, batch_size + len(failed), self.path_filter)

            batch = [path for path in result.candidates if path not in failed]
            if len(batch) > batch_size:
                # Cut back to size; the explored set no longer matches, so rescan next time
                batch = batch[:batch_size]
                result = FindResult()
            if not batch:
                if result.candidates:
                    log_with_context(
                        logger,
                        "warning",
                        "Skipping paths that failed to delete, they will be retried on the next run",
                        {"directory": str(directory), "paths": len(result.candidates)},
                    )
                break

            self.stats["batches"] += 1
            # Blocks until every delete of the batch has finished
            await self.executor.execute(batch)
            total += len(batch)
            log_with_context(
                logger,
                "info",
                "Would delete batch" if self.dry_run else "Deleted batch",
                {"directory": str(directory), "paths": len(batch), "explored": len(result.explored)},
            )

        self.stats["directories_processed"] += 1
        return total

    async def process_path_entry(self, path_pattern: str, days: float, batch_size: int) -> int:
        """
        Apply retention to one path entry of a policy.

        Returns:
            Number of paths handled under the entry
        """
        cutoff = purge_time(days)
        total = 0
        for directory in await self.matching_directories(path_pattern):
            logger.info(f"Scanning {directory}")
            try:
                total += await self.purge_directory(directory, cutoff, batch_size)
            except OSError as e:
                log_with_context(
                    logger,
                    "error",
                    "Error while applying retention, skipping directory",
                    {"directory": str(directory), "error": str(e), "error_type": type(e).__name__},
                )
                self.stats["errors"] += 1

        log_with_context(
            logger,
            "info",
            f"Done with {path_pattern}",
            {"path_pattern": path_pattern, "retention_days": days, "paths": total},
        )
        return total

    async def apply_policy(self, policy: RetentionPolicy) -> int:
        """Validate ``policy`` and apply it to every path entry. Returns paths handled."""
        policy.validate()
        batch_size = policy.effective_batch_size(self.dry_run)
        if self.dry_run and batch_size == UNBOUNDED:
            logger.info("Dry run: batching turned off")

        total = 0
        for path_pattern, days in policy.path_mapping.items():
            try:
                total += await self.process_path_entry(path_pattern, days, batch_size)
            except OSError as e:
                log_with_context(
                    logger,
                    "error",
                    "Error while expanding path entry, skipping it",
                    {"path_pattern": path_pattern, "error": str(e), "error_type": type(e).__name__},
                )
                self.stats["errors"] += 1
        return total

    async def run(self, policies: dict[str, RetentionPolicy], policy_name: str | None = None) -> dict:
        """
        Apply one named policy, or all of them in order.

        Returns:
            Dictionary with run statistics

        Raises:
            UnknownPolicyError: If ``policy_name`` is not in ``policies``
        """
        start_time = time.time()
        mode = "DRY RUN" if self.dry_run else "DELETE"

        if policy_name is not None:
            if policy_name not in policies:
                log_with_context(logger, "error", "Configuration doesn't contain policy", {"policy": policy_name})
                raise UnknownPolicyError(policy_name)
            selected = {policy_name: policies[policy_name]}
        else:
            selected = policies

        log_with_context(
            logger,
            "info",
            f"Starting retention - {mode} MODE",
            {
                "version": __version__,
                "policies": list(selected),
                "dry_run": self.dry_run,
                "include_directories": self.finder.include_directories,
                "max_workers": self.executor.max_workers,
                "path_filter": repr(self.path_filter),
            },
        )

        total = 0
        for name, policy in selected.items():
            logger.info(f"Applying data retention policy {name}")
            total += await self.apply_policy(policy)

        final_stats = {
            "duration_seconds": round(time.time() - start_time, 2),
            "paths_handled": total,
            "paths_deleted": self.executor.stats["paths_deleted"],
            "delete_failures": self.executor.stats["delete_failures"],
            "batches": self.stats["batches"],
            "directories_processed": self.stats["directories_processed"],
            "errors": self.stats["errors"],
            **self.finder.stats,
            "peak_memory_mb": round(get_memory_usage_mb(), 1),
        }
        if self.dry_run:
            final_stats["paths_to_delete"] = self.executor.stats["paths_to_delete"]

        log_with_context(logger, "info", "Retention completed", final_stats)
        return final_stats


async def async_main(
    policies: dict[str, RetentionPolicy],
    policy_name: str | None = None,
    dry_run: bool = True,
    include_directories: bool = True,
    max_workers: int = DEFAULT_WORKERS,
    path_filter: PathFilter = ACCEPTS_ALL,
    log_level: str = "INFO",
) -> dict:
    """Async entry point used by the CLI."""
    runner = RetentionRunner(
        dry_run=dry_run,
        include_directories=include_directories,
        max_workers=max_workers,
        path_filter=path_filter,
        log_level=log_level,
    )
    return await runner.run(policies, policy_name)
