"""Topix: personal headline aggregator with importance filtering."""

__version__ = "0.1.0"
