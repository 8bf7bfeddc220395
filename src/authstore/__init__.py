"""authstore - libSQL storage adapter for authentication frameworks."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("authstore")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
