"""Coordinator for multi-agent feature delivery."""

__version__ = "0.1.0"
