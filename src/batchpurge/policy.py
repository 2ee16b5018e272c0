"""Retention policies and the JSON policy file."""

import json
import time
from dataclasses import dataclass, field
from pathlib import Path

from .finder import UNBOUNDED

SECONDS_PER_DAY = 86400
DEFAULT_BATCH_SIZE = 5000


class PolicyError(ValueError):
    """A retention policy or policy file is invalid."""


class UnknownPolicyError(PolicyError):
    """The requested policy name is not in the configuration."""

    def __init__(self, policy_name: str):
        super().__init__(f"Configuration doesn't contain policy {policy_name}")
        self.policy_name = policy_name


def purge_time(days: float, now: float | None = None) -> float:
    """Cutoff timestamp: anything modified strictly before it is eligible for deletion."""
    if now is None:
        now = time.time()
    return now - days * SECONDS_PER_DAY


@dataclass(frozen=True)
class RetentionPolicy:
    """
    A batch delete size plus a mapping of paths (or glob patterns) to retention days.

    Policies are immutable; dry runs derive an unbounded batch size through
    ``effective_batch_size`` instead of changing the policy.
    """

    batch_size: int
    path_mapping: dict = field(default_factory=dict)

    @classmethod
    def for_path(cls, path: str, days: float, batch_size: int = DEFAULT_BATCH_SIZE) -> "RetentionPolicy":
        return cls(batch_size=batch_size, path_mapping={path: days})

    @classmethod
    def from_dict(cls, name: str, data: dict) -> "RetentionPolicy":
        if not isinstance(data, dict):
            raise PolicyError(f"Policy {name!r} must be a JSON object, got {type(data).__name__}")

        batch_size = data.get("batchSize", data.get("batchDeleteSize"))
        if batch_size is None:
            raise PolicyError(f"Policy {name!r} has no batchSize")
        path_mapping = data.get("pathMapping")
        if not isinstance(path_mapping, dict):
            raise PolicyError(f"Policy {name!r} has no pathMapping object")

        if isinstance(batch_size, bool) or not isinstance(batch_size, int):
            raise PolicyError(f"Policy {name!r}: batchSize must be an integer, got {batch_size!r}")
        for path, days in path_mapping.items():
            if isinstance(days, bool) or not isinstance(days, (int, float)):
                raise PolicyError(f"Policy {name!r}: retention for {path!r} must be a number, got {days!r}")

        return cls(batch_size=batch_size, path_mapping=dict(path_mapping))

    def validate(self) -> None:
        """Raise PolicyError if the policy cannot be applied."""
        if self.batch_size < 0:
            raise PolicyError(f"batch_size can't be negative, got {self.batch_size}")
        if not self.path_mapping:
            raise PolicyError("no path mapping found")
        for path, days in self.path_mapping.items():
            if days < 0:
                raise PolicyError(f"retention days for {path} must be >= 0, got {days}")

    def effective_batch_size(self, dry_run: bool) -> int:
        # Nothing is deleted in a dry run, so a bounded batch would keep finding
        # the same candidates; scan everything in a single pass instead.
        return UNBOUNDED if dry_run else self.batch_size


def load_policies(file: str | Path) -> dict[str, RetentionPolicy]:
    """
    Load a policy file.

    The file holds one JSON object keyed by policy name::

        {
          "grid.etl": {"batchSize": 500, "pathMapping": {"/data/etl/*": 10}},
          "ops.mysql": {"batchSize": 500, "pathMapping": {"/data/mysql/binlogs": 5}}
        }

    Args:
        file: Path of the JSON policy file

    Returns:
        Policies keyed by name, in file order

    Raises:
        PolicyError: If the file is not valid JSON or a policy is malformed
        OSError: If the file cannot be read
    """
    with open(file, encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as e:
            raise PolicyError(f"Invalid policy file {file}: {e}") from e

    if not isinstance(raw, dict):
        raise PolicyError(f"Policy file {file} must contain a JSON object keyed by policy name")

    return {name: RetentionPolicy.from_dict(name, data) for name, data in raw.items()}
