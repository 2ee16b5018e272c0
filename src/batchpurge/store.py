"""Store abstraction over hierarchical paths, plus the local/NFS/EFS backend."""

import abc
import asyncio
import glob
import os
import shutil
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Hashable, List

import aiofiles.os


@dataclass(frozen=True)
class PathStatus:
    """Metadata for one path, fetched fresh on every visit."""

    path: Any
    is_dir: bool
    mtime: float
    size: int = 0


class Store(abc.ABC):
    """
    Storage backend consumed by the finder and the retention runner.

    Paths are opaque to callers; they only need equality, hashing and a parent.
    Every method may be called concurrently from the delete phase, so
    implementations must not keep per-call state on the instance.
    """

    @abc.abstractmethod
    async def exists(self, path: Hashable) -> bool:
        """Return True if ``path`` exists."""

    @abc.abstractmethod
    async def stat(self, path: Hashable) -> PathStatus:
        """Return the status of ``path``; raise FileNotFoundError if absent."""

    @abc.abstractmethod
    async def list(self, path: Hashable) -> List[PathStatus]:
        """Return a single snapshot of the immediate children of ``path``."""

    @abc.abstractmethod
    async def delete(self, path: Hashable, recursive: bool = True) -> bool:
        """Delete ``path``; return False if it was already gone."""

    @abc.abstractmethod
    async def glob(self, pattern: str) -> List[PathStatus]:
        """Expand ``pattern`` into the matching paths."""

    def has_wildcard(self, pattern: str) -> bool:
        return glob.has_magic(pattern)


async def async_scandir(path: Path) -> list[PathStatus]:
    """Scan one directory in the default executor, without following symlinks."""
    loop = asyncio.get_running_loop()

    def _scandir() -> list[PathStatus]:
        children = []
        with os.scandir(path) as entries:
            for entry in entries:
                try:
                    st = entry.stat(follow_symlinks=False)
                except FileNotFoundError:
                    # Removed between readdir and lstat
                    continue
                children.append(
                    PathStatus(
                        path=Path(entry.path),
                        is_dir=stat.S_ISDIR(st.st_mode),
                        mtime=st.st_mtime,
                        size=st.st_size,
                    )
                )
        return children

    return await loop.run_in_executor(None, _scandir)


class LocalStore(Store):
    """
    Store over a mounted POSIX file system (local disk, NFS, AWS EFS).

    Symlinks are never followed below the search root: a link is reported as a
    plain entry with its own (lstat) modification time and is unlinked, not
    traversed, when deleted.
    """

    def _normalize(self, path) -> Path:
        return Path(os.path.abspath(path))

    async def exists(self, path) -> bool:
        return await aiofiles.os.path.exists(path)

    async def stat(self, path) -> PathStatus:
        st = await aiofiles.os.stat(path)
        return PathStatus(
            path=self._normalize(path),
            is_dir=stat.S_ISDIR(st.st_mode),
            mtime=st.st_mtime,
            size=st.st_size,
        )

    async def list(self, path) -> List[PathStatus]:
        return await async_scandir(self._normalize(path))

    async def delete(self, path, recursive: bool = True) -> bool:
        try:
            if await aiofiles.os.path.islink(path) or not await aiofiles.os.path.isdir(path):
                await aiofiles.os.remove(path)
            elif recursive:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, shutil.rmtree, path)
            else:
                await aiofiles.os.rmdir(path)
        except FileNotFoundError:
            return False
        return True

    async def glob(self, pattern: str) -> List[PathStatus]:
        loop = asyncio.get_running_loop()
        matches = await loop.run_in_executor(None, glob.glob, pattern)
        statuses = []
        for match in sorted(matches):
            try:
                statuses.append(await self.stat(match))
            except FileNotFoundError:
                continue
        return statuses
