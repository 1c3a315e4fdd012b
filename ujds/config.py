"""Application configuration."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key, {})
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise TypeError(f"config section {key!r} must be a mapping")
    return value


def _string(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"config value {key!r} must be a string")
    return value


def _string_fields(cls: type, data: Mapping[str, Any]) -> dict[str, str]:
    return {f.name: _string(data, f.name) for f in fields(cls)}


@dataclass
class Server:
    """API server settings."""

    auth_token: str = ""


@dataclass
class Database:
    """Database connection settings."""

    dsn: str = ""


@dataclass
class Config:
    """Top-level configuration."""

    db: Database = field(default_factory=Database)
    server: Server = field(default_factory=Server)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Config:
        """Build a configuration from a decoded JSON or YAML document."""
        if not isinstance(data, Mapping):
            raise TypeError("config must be a mapping")
        db = _section(data, "db")
        server = _section(data, "server")
        return cls(
            db=Database(**_string_fields(Database, db)),
            server=Server(**_string_fields(Server, server)),
        )