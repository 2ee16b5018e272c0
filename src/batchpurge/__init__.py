"""batchpurge - resumable, batched retention purger for large file trees."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("batchpurge")
except PackageNotFoundError:
    # Running from a source checkout: read the version from pyproject.toml
    try:
        import tomllib
        from pathlib import Path

        pyproject_path = Path(__file__).parent.parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            with open(pyproject_path, "rb") as f:
                __version__ = tomllib.load(f)["project"]["version"]
        else:
            __version__ = "unknown"
    except (OSError, KeyError, ValueError):
        __version__ = "unknown"
