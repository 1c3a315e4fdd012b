"""Storage of indexes: named record collections with an optional JSON schema."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from ujds.model import Index, InvalidArgError, NotFoundError

_CLEAR_RECORDS = "DELETE FROM record WHERE index_id=(SELECT id FROM index WHERE name=$1 LIMIT 1)"
_CLEAR_RECORD_LOG = "DELETE FROM record_log WHERE index_id=(SELECT id FROM index WHERE name=$1 LIMIT 1)"
_GET = "SELECT id, title, schema, created_at, updated_at FROM index WHERE name=$1"
_LIST = "SELECT id, name, title, schema, created_at, updated_at FROM index"
_UPSERT = """INSERT INTO index (name, title, schema) VALUES ($1, $2, $3)
ON CONFLICT (name) DO UPDATE SET title=$2, schema=$3, updated_at=now()"""


class RepositoryError(Exception):
    """Raised when the underlying database reports a failure."""


class StringValidator(Protocol):
    """Raises an exception when a string is not acceptable."""

    def validate(self, s: str) -> None: ...


class Cursor(Protocol):
    """Result of a statement: an iterable of rows that can also yield one row."""

    def fetchone(self) -> Sequence[Any] | None: ...

    def __iter__(self) -> Iterable[Sequence[Any]]: ...


class Transaction(Protocol):
    """A database transaction."""

    def execute(self, query: str, args: Sequence[Any] = ()) -> Cursor: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class Connection(Protocol):
    """A database connection using numbered ($1, $2, ...) placeholders."""

    def execute(self, query: str, args: Sequence[Any] = ()) -> Cursor: ...

    def begin(self) -> Transaction: ...


def _as_bytes(value: Any) -> bytes:
    if value is None:
        return b""
    if isinstance(value, str):
        return value.encode()
    return bytes(value)


def _json_kind(value: Any) -> str:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "array"


class IndexRepository:
    """Creates, reads, lists and clears indexes."""

    def __init__(
        self,
        db: Connection,
        name_validator: StringValidator,
        logger: logging.Logger | None = None,
    ) -> None:
        self._db = db
        self._name_validator = name_validator
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def clear(self, name: str) -> None:
        """Delete every record and record version of the index."""
        self._name_validator.validate(name)

        try:
            tx = self._db.begin()
        except Exception as exc:
            raise RepositoryError(f"begin transaction: {exc}") from exc

        for query, what in ((_CLEAR_RECORDS, "delete records"), (_CLEAR_RECORD_LOG, "delete record log")):
            try:
                tx.execute(query, (name,))
            except Exception as exc:
                self._rollback(tx)
                raise RepositoryError(f"{what}: {exc}") from exc

        try:
            tx.commit()
        except Exception as exc:
            raise RepositoryError(f"db commit: {exc}") from exc

    def get(self, name: str) -> Index:
        """Return the index with the given name."""
        self._name_validator.validate(name)

        try:
            row = self._db.execute(_GET, (name,)).fetchone()
            if row is not None:
                index_id, title, schema, created_at, updated_at = row
        except Exception as exc:
            raise RepositoryError(f"db scan: {exc}") from exc

        if row is None:
            raise NotFoundError("index")

        return Index(
            id=int(index_id),
            name=name,
            title=title,
            schema=_as_bytes(schema),
            created_at=created_at,
            updated_at=updated_at,
        )

    def list(self) -> list[Index]:
        """Return all indexes."""
        try:
            cursor = self._db.execute(_LIST, ())
        except Exception as exc:
            raise RepositoryError(f"db query: {exc}") from exc

        result: list[Index] = []
        rows = iter(cursor)
        while True:
            try:
                row = next(rows)
            except StopIteration:
                break
            except Exception as exc:
                raise RepositoryError(f"db rows iteration: {exc}") from exc

            try:
                index_id, name, title, schema, created_at, updated_at = row
                index = Index(
                    id=int(index_id),
                    name=name,
                    title=title,
                    schema=_as_bytes(schema),
                    created_at=created_at,
                    updated_at=updated_at,
                )
            except (TypeError, ValueError) as exc:
                raise RepositoryError(f"db scan: {exc}") from exc

            result.append(index)

        return result

    def upsert(self, name: str, title: str, schema: str) -> None:
        """Create the index or update its title and schema."""
        self._name_validator.validate(name)

        if not schema:
            schema = "{}"

        try:
            decoded = json.loads(schema)
        except json.JSONDecodeError as exc:
            raise InvalidArgError("schema", str(exc)) from None
        if decoded is not None and not isinstance(decoded, dict):
            raise InvalidArgError("schema", f"cannot unmarshal {_json_kind(decoded)} into an object")

        try:
            self._db.execute(_UPSERT, (name, title or None, schema))
        except Exception as exc:
            raise RepositoryError(f"db query failed: {exc}") from exc

    def _rollback(self, tx: Transaction) -> None:
        try:
            tx.rollback()
        except Exception:
            self._logger.exception("transaction rollback failed")