"""Parley - multi-provider chat completion backend."""

__version__ = "0.1.0"
