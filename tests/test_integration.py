"""Integration tests for batchpurge - run in CI."""

import os
import tempfile
import time
from pathlib import Path

import pytest

from batchpurge.filters import MARKED_AS_DONT_DELETE
from batchpurge.policy import RetentionPolicy
from batchpurge.retention import RetentionRunner


@pytest.fixture
def large_test_structure():
    """Create a large test directory structure."""
    with tempfile.TemporaryDirectory() as tmpdir:
        base = Path(tmpdir)
        old_time = time.time() - (31 * 86400)

        # Flat directory, half of the files expired
        flat_dir = base / "flat"
        flat_dir.mkdir()
        for i in range(1000):
            f = flat_dir / f"file{i}.txt"
            f.write_text(f"content{i}")
            if i < 500:
                os.utime(f, (old_time, old_time))

        # Date partitions, the first five fully expired
        nested_dir = base / "nested"
        nested_dir.mkdir()
        for dir_num in range(10):
            subdir = nested_dir / f"dir{dir_num}"
            subdir.mkdir()
            for file_num in range(100):
                f = subdir / f"file{file_num}.txt"
                f.write_text(f"content{dir_num}_{file_num}")
                if dir_num < 5:
                    os.utime(f, (old_time, old_time))

        # Expired, but protected by the marker
        protected = base / "nested" / "DONT_DELETE_archive"
        protected.mkdir()
        for i in range(20):
            f = protected / f"file{i}.txt"
            f.write_text("keep")
            os.utime(f, (old_time, old_time))

        yield base


@pytest.mark.asyncio
@pytest.mark.integration
async def test_large_flat_directory(large_test_structure):
    flat_dir = large_test_structure / "flat"

    runner = RetentionRunner(dry_run=False, max_workers=20)
    stats = await runner.run({"flat": RetentionPolicy(batch_size=50, path_mapping={str(flat_dir): 30})})

    assert stats["paths_deleted"] == 500
    assert stats["batches"] == 10
    assert stats["delete_failures"] == 0
    assert len(list(flat_dir.iterdir())) == 500


@pytest.mark.asyncio
@pytest.mark.integration
async def test_nested_partitions_collapse(large_test_structure):
    nested_dir = large_test_structure / "nested"

    runner = RetentionRunner(dry_run=False, path_filter=MARKED_AS_DONT_DELETE)
    stats = await runner.run({"nested": RetentionPolicy(batch_size=200, path_mapping={str(nested_dir): 30})})

    # Each expired partition is one delete, as long as it fits in a batch
    assert stats["paths_deleted"] == 5
    remaining = sorted(p.name for p in nested_dir.iterdir())
    assert remaining == ["DONT_DELETE_archive"] + [f"dir{i}" for i in range(5, 10)]
    assert len(list((nested_dir / "DONT_DELETE_archive").iterdir())) == 20


@pytest.mark.asyncio
@pytest.mark.integration
async def test_dry_run_reports_everything_at_once(large_test_structure):
    runner = RetentionRunner(dry_run=True, include_directories=False)
    stats = await runner.run({"all": RetentionPolicy(batch_size=50, path_mapping={str(large_test_structure): 30})})

    assert stats["paths_to_delete"] == 500 + 500 + 20
    assert stats["batches"] == 1
    assert stats["paths_deleted"] == 0
    assert sum(1 for _ in large_test_structure.rglob("*.txt")) == 2020


@pytest.mark.asyncio
@pytest.mark.integration
async def test_glob_over_many_directories(large_test_structure):
    runner = RetentionRunner(dry_run=False, include_directories=False, max_workers=50)
    stats = await runner.run(
        {"nested": RetentionPolicy(batch_size=75, path_mapping={str(large_test_structure / "nested" / "dir*"): 30})}
    )

    assert stats["directories_processed"] == 10
    assert stats["paths_deleted"] == 500
    # 100 expired files per directory in batches of 75
    assert stats["batches"] == 10
    assert all((large_test_structure / "nested" / f"dir{i}").is_dir() for i in range(10))
