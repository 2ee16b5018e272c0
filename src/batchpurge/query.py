"""Resumable search state handed between successive find calls."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class FindQuery:
    """
    A search request: the directory to search plus a set of covered paths.

    Covered paths are a hint carried over from the previous call. Directories in
    the set were fully enumerated before and are skipped without being listed.
    An empty set only costs extra work; it never changes which paths qualify.
    """

    search_root: Any
    covered_paths: frozenset = frozenset()

    @classmethod
    def from_result(cls, search_root, result: "FindResult") -> "FindQuery":
        """Build the next query, carrying the explored set of ``result`` forward."""
        return cls(search_root, frozenset(result.explored))

    def is_covered(self, path) -> bool:
        return path in self.covered_paths


@dataclass
class FindResult:
    """
    Output of one find call.

    ``candidates`` keeps discovery order. ``explored`` holds the directories whose
    whole subtree was visited during this call.
    """

    candidates: list = field(default_factory=list)
    explored: set = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.candidates)

    def add(self, path) -> None:
        self.candidates.append(path)

    def mark_explored(self, path) -> None:
        self.explored.add(path)

    def last(self):
        return self.candidates[-1] if self.candidates else None

    def collapse(self, mark: int, path) -> None:
        """Replace every candidate added since position ``mark`` with ``path``."""
        if mark > len(self.candidates):
            raise ValueError(f"Have {len(self.candidates)} candidates, cannot rewind to {mark}")
        del self.candidates[mark:]
        self.candidates.append(path)
