"""Clubhouse core: persistent state and identifier generation."""

__version__ = "0.1.0"
