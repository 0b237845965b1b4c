"""memquery - An in-memory query engine for normalized record tables."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("memquery")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
