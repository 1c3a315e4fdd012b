"""Domain objects shared by the repositories."""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class NotFoundError(LookupError):
    """Raised when a requested entity does not exist."""

    def __init__(self, subj: str) -> None:
        super().__init__(f"{subj} not found")
        self.subj = subj

    def __eq__(self, other: object) -> bool:
        return type(other) is type(self) and other.subj == self.subj  # type: ignore[attr-defined]

    def __hash__(self) -> int:
        return hash((type(self), self.subj))


class InvalidArgError(ValueError):
    """Raised when an argument fails validation."""

    def __init__(self, subj: str, reason: str) -> None:
        super().__init__(f"invalid {subj}: {reason}")
        self.subj = subj
        self.reason = reason

    def __eq__(self, other: object) -> bool:
        return (
            type(other) is type(self)
            and other.subj == self.subj  # type: ignore[attr-defined]
            and other.reason == self.reason  # type: ignore[attr-defined]
        )

    def __hash__(self) -> int:
        return hash((type(self), self.subj, self.reason))


@dataclass
class IndexFilter:
    """Selects indexes by name."""

    names: list[str] = field(default_factory=list)


@dataclass
class Index:
    """A named collection of records with an optional JSON schema."""

    id: int = 0
    name: str = ""
    title: str | None = None
    schema: bytes = b""
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME


@dataclass
class RecordUpdate:
    """A new version of a record to be stored."""

    id: str = ""
    index_id: int = 0
    schema: bytes = b""
    data: str = ""

    def checksum(self) -> bytes:
        """SHA-256 over the data, the little-endian index id and the record id."""
        source = self.data.encode() + struct.pack("<Q", self.index_id) + self.id.encode()
        return hashlib.sha256(source).digest()


@dataclass
class Record:
    """A stored record version."""

    id: str = ""
    index_id: int = 0
    rev: int = 0
    data: str = ""
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    touched_at: datetime = ZERO_TIME