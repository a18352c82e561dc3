"""Topix service: store, plugin runtime, scheduler, config and HTTP surface."""

from topix import __version__

__all__ = ["__version__"]
