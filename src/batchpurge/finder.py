"""Batched, resumable search for paths older than a cutoff time."""

import logging
import sys
from dataclasses import dataclass
from enum import Enum

from .filters import ACCEPTS_ALL, PathFilter
from .logging import log_with_context
from .query import FindQuery, FindResult
from .store import PathStatus, Store

logger = logging.getLogger(__name__)

UNBOUNDED = sys.maxsize


class SearchRootError(FileNotFoundError):
    """The search root does not exist when the search starts."""


class _Reject(Enum):
    ACCEPTED = "accepted"
    TOO_RECENT = "too_recent"
    FILTERED_OUT = "filtered_out"


@dataclass
class _Frame:
    """A directory whose children are being visited."""

    status: PathStatus
    children: list
    # Length of the candidate list when this directory was entered
    mark: int
    cursor: int = 0
    all_qualify: bool = True


class Finder:
    """
    Find files and directories older than a cutoff time.

    Each ``find`` call walks the tree depth-first and stops as soon as the batch
    is full. Directories whose subtree was walked completely are reported in
    ``FindResult.explored`` so that the next call, seeded through
    ``FindQuery.from_result``, can skip them.

    With ``include_directories`` enabled, a directory whose children all
    qualify is reported as a single candidate instead of its children.

    The walk is sequential: one stat and one listing per directory, awaited one
    after the other. Only the deletes of a batch run concurrently, and that
    happens outside the finder.
    """

    def __init__(self, store: Store, include_directories: bool = False):
        self.store = store
        self.include_directories = include_directories
        self.stats = {
            "dirs_scanned": 0,
            "files_scanned": 0,
            "dirs_skipped": 0,
            "dirs_vanished": 0,
            "dirs_replaced": 0,
        }

    async def find_all(self, query: FindQuery, cutoff: float, path_filter: PathFilter = ACCEPTS_ALL) -> list:
        """Unbounded search returning only the candidate list."""
        result = await self.find(query, cutoff, UNBOUNDED, path_filter)
        return result.candidates

    async def find(
        self,
        query: FindQuery,
        cutoff: float,
        batch_size: int = UNBOUNDED,
        path_filter: PathFilter = ACCEPTS_ALL,
    ) -> FindResult:
        """
        Search ``query.search_root`` for paths strictly older than ``cutoff``.

        Args:
            query: Search root plus directories covered by a previous call
            cutoff: POSIX timestamp; only paths modified before it qualify
            batch_size: Maximum number of candidates to return
            path_filter: Directory filter; rejected directories are pruned

        Returns:
            FindResult with at most ``batch_size`` candidates

        Raises:
            SearchRootError: If the search root does not exist
            NotADirectoryError: If the search root is not a directory
            OSError: Any store failure other than a directory vanishing mid-walk
        """
        result = FindResult()

        if not await self.store.exists(query.search_root):
            raise SearchRootError(f"{query.search_root} does not exist")
        try:
            root_status = await self.store.stat(query.search_root)
        except FileNotFoundError as e:
            raise SearchRootError(f"{query.search_root} does not exist") from e
        if not root_status.is_dir:
            raise NotADirectoryError(f"Expected a directory but found {query.search_root}")

        stack: list[_Frame] = []
        frame = await self._enter(root_status.path, query, cutoff, path_filter, result)
        if frame is not None:
            stack.append(frame)

        while stack:
            frame = stack[-1]

            if frame.cursor < len(frame.children):
                child = frame.children[frame.cursor]
                frame.cursor += 1

                if child.is_dir:
                    sub = await self._enter(child.path, query, cutoff, path_filter, result)
                    if sub is None:
                        # Covered, filtered or gone: not represented in this batch
                        frame.all_qualify = False
                    else:
                        stack.append(sub)
                    continue

                if len(result) >= batch_size:
                    self._log_batch_full(frame, batch_size)
                    return result

                self.stats["files_scanned"] += 1
                if self._check(child, cutoff) is _Reject.ACCEPTED:
                    result.add(child.path)
                else:
                    frame.all_qualify = False
                continue

            # Every child of this directory has been handled
            stack.pop()
            if self._finish(frame, root_status.path, cutoff, batch_size, result):
                self._log_batch_full(frame, batch_size)
                return result

            if stack and result.last() != frame.status.path:
                stack[-1].all_qualify = False

        return result

    async def _enter(self, path, query: FindQuery, cutoff: float, path_filter: PathFilter, result: FindResult):
        """Stat, prune and list one directory. Returns None when there is nothing to walk."""
        try:
            status = await self.store.stat(path)
        except FileNotFoundError:
            self._vanished(path)
            return None

        if not status.is_dir:
            self.stats["dirs_replaced"] += 1
            log_with_context(
                logger,
                "warning",
                "Directory was replaced by a non-directory entry during search, skipping it",
                {"directory": str(path)},
            )
            return None

        if query.is_covered(status.path):
            self.stats["dirs_skipped"] += 1
            result.mark_explored(status.path)
            return None

        if self._check(status, cutoff, path_filter) is _Reject.FILTERED_OUT:
            logger.info(f"Directory was filtered by {path_filter!r}: {status.path}")
            self.stats["dirs_skipped"] += 1
            result.mark_explored(status.path)
            return None

        try:
            children = await self.store.list(status.path)
        except FileNotFoundError:
            self._vanished(path)
            return None

        self.stats["dirs_scanned"] += 1
        logger.debug(f"Scanning {status.path} ({len(children)} entries)")
        return _Frame(status=status, children=children, mark=len(result))

    def _finish(self, frame: _Frame, root, cutoff: float, batch_size: int, result: FindResult) -> bool:
        """Collapse a fully visited directory if possible. Returns True if the batch is full."""
        path = frame.status.path

        if self.include_directories and path != root:
            if not frame.children:
                if frame.status.mtime < cutoff:
                    if len(result) >= batch_size:
                        return True
                    result.add(path)
            elif frame.all_qualify and len(result) > frame.mark:
                # The directory's own mtime is not checked here: deletes from an
                # earlier batch may have bumped it before it was fully rescanned.
                result.collapse(frame.mark, path)

        result.mark_explored(path)
        return False

    def _check(self, status: PathStatus, cutoff: float, path_filter: PathFilter | None = None) -> _Reject:
        if status.is_dir and path_filter is not None and not path_filter.accept(status.path):
            return _Reject.FILTERED_OUT
        if status.mtime >= cutoff:
            return _Reject.TOO_RECENT
        return _Reject.ACCEPTED

    def _vanished(self, path) -> None:
        self.stats["dirs_vanished"] += 1
        log_with_context(
            logger,
            "warning",
            "Directory disappeared during search, skipping it",
            {"directory": str(path)},
        )

    def _log_batch_full(self, frame: _Frame, batch_size: int) -> None:
        logger.debug(f"Batch of {batch_size} is full, stopping in {frame.status.path}")
