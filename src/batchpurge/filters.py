"""Directory filters used to prune whole subtrees from a search."""

import abc

DONT_DELETE = "DONT_DELETE"


class PathFilter(abc.ABC):
    """Predicate over a directory path. Files are never passed to a filter."""

    name = "PathFilter"

    @abc.abstractmethod
    def accept(self, path) -> bool:
        """Return False to skip ``path`` and everything below it."""

    def __repr__(self) -> str:
        return self.name


class AcceptsAll(PathFilter):
    name = "ACCEPTS_ALL"

    def accept(self, path) -> bool:
        return True


class MarkedAsDontDelete(PathFilter):
    """Reject any directory whose path contains the marker token, at any depth."""

    name = "MARKED_AS_DONT_DELETE"

    def __init__(self, marker: str = DONT_DELETE):
        self.marker = marker

    def accept(self, path) -> bool:
        return self.marker not in str(path)


ACCEPTS_ALL = AcceptsAll()
MARKED_AS_DONT_DELETE = MarkedAsDontDelete()

FILTERS = {f.name: f for f in (ACCEPTS_ALL, MARKED_AS_DONT_DELETE)}


def get_filter(name: str) -> PathFilter:
    """Look up a built-in filter by name."""
    try:
        return FILTERS[name.upper()]
    except KeyError:
        raise ValueError(f"Unknown path filter {name!r}, expected one of {sorted(FILTERS)}") from None
