"""Versioned JSON record storage with indexes, a search query language, configuration and logging helpers."""

__version__ = "0.1.0"
__all__ = ["config", "indexrepository", "logger", "model", "queryparser", "recordrepository"]