"""
Takealot sync package initializer.

This package keeps a local copy of a seller's Takealot offer catalogue in
sync with the marketplace, routing outbound calls through a rotating proxy
pool.

The package exposes a ``__version__`` attribute read from the installed
distribution metadata.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("takealot-sync")
except PackageNotFoundError:
    # Package is not installed (running from source without pip install -e .)
    __version__ = "0.0.0.dev"

__all__: list[str] = ["__version__"]
