"""Whence - osobní historie polohy: ingest GPS bodů, trasy po dnech a časová osa zastávek."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("whence")
except PackageNotFoundError:
    # Fallback for development without installation
    __version__ = "0.0.0-dev"
