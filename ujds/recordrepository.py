"""Storage of records: versioned JSON documents grouped into indexes."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Sequence
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, TypeVar

from ujds.indexrepository import Connection, Cursor, StringValidator, Transaction
from ujds.model import InvalidArgError, NotFoundError, Record, RecordUpdate
from ujds.queryparser import QuerySyntaxError, parse

_FIND_BASE = (
    "SELECT r.id, r.index_id, r.log_id, l.data, r.created_at, r.updated_at, r.touched_at FROM record r "
    "LEFT JOIN record_log l ON r.log_id = l.id LEFT JOIN index i ON r.index_id = i.id WHERE "
)
_GET = (
    "SELECT r.index_id, r.log_id, l.data, r.created_at, r.updated_at, r.touched_at FROM record r "
    "LEFT JOIN record_log l ON r.log_id = l.id LEFT JOIN index i ON r.index_id = i.id "
    "WHERE i.name=$1 AND r.id=$2 ORDER BY l.created_at DESC LIMIT 1"
)
_HISTORY_BASE = (
    "SELECT id, index_id, data, created_at FROM record_log "
    "WHERE index_id=(SELECT id FROM index WHERE name=$1 LIMIT 1) AND record_id=$2"
)
_GET_LOG = "SELECT log_id FROM record WHERE checksum=$1"
_INSERT_LOG = "INSERT INTO record_log (index_id, record_id, data) VALUES ($1, $2, $3) RETURNING id"
_UPSERT_RECORD = (
    "INSERT INTO record (id, index_id, log_id, checksum, data) VALUES ($1, $2, $3, $4, $5) "
    "ON CONFLICT (id, index_id) DO UPDATE SET log_id=$3, checksum=$4, data=$5, "
    "updated_at=now(), touched_at=now()"
)
_TOUCH_RECORD = "UPDATE record SET touched_at=now() WHERE log_id=$1"

_T = TypeVar("_T")


class RecordRepositoryError(Exception):
    """Raised when the underlying database reports a failure."""


class JSONValidator(Protocol):
    """Raises an exception when a document does not match a schema."""

    def validate(self, schema: bytes, data: bytes) -> None: ...


class ResultCursor(Cursor, Protocol):
    """A statement result that also reports the number of affected rows."""

    rowcount: int


class Statement(Protocol):
    """A prepared statement."""

    def execute(self, args: Sequence[Any] = ()) -> ResultCursor: ...

    def close(self) -> None: ...


class PreparingTransaction(Transaction, Protocol):
    """A transaction able to prepare statements."""

    def prepare(self, query: str) -> Statement: ...


@dataclass
class _Statements:
    get_log: Statement
    insert_log: Statement
    upsert_record: Statement
    touch_record: Statement


def _is_epoch(moment: datetime | None) -> bool:
    if moment is None:
        return True
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return math.floor(moment.timestamp()) == 0


def _collect(rows: Iterable[Sequence[Any]], convert: Callable[[Sequence[Any]], _T]) -> list[_T]:
    result: list[_T] = []
    iterator = iter(rows)
    while True:
        try:
            row = next(iterator)
        except StopIteration:
            break
        except Exception as exc:
            raise RecordRepositoryError(f"db rows iteration: {exc}") from exc

        try:
            result.append(convert(row))
        except (TypeError, ValueError) as exc:
            raise RecordRepositoryError(f"db scan: {exc}") from exc
    return result


class RecordRepository:
    """Stores, finds and reads records and their history."""

    def __init__(
        self,
        db: Connection,
        index_name_validator: StringValidator,
        record_id_validator: StringValidator,
        json_validator: JSONValidator,
        logger: logging.Logger | None = None,
    ) -> None:
        self._db = db
        self._index_name_validator = index_name_validator
        self._record_id_validator = record_id_validator
        self._json_validator = json_validator
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def find(
        self,
        index: str,
        search: str,
        since: datetime,
        cursor: int,
        limit: int,
    ) -> tuple[list[Record], int]:
        """Return up to ``limit`` current records of the index and the cursor of the next page (0 if none)."""
        self._index_name_validator.validate(index)

        args: list[Any] = []
        condition = ""
        if search:
            try:
                query = parse(search)
            except QuerySyntaxError as exc:
                raise QuerySyntaxError(f"search query: {exc}") from exc
            args = list(query.args())
            condition = query.to_sql("r.data", 1) + " AND "

        n = len(args)
        sql = (
            _FIND_BASE
            + condition
            + f"i.name=${n + 1} AND r.updated_at >= ${n + 2} AND l.id > ${n + 3} ORDER BY l.id LIMIT ${n + 4}"
        )
        args.extend((index, since, cursor, limit + 1))

        try:
            rows = self._db.execute(sql, tuple(args))
        except Exception as exc:
            raise RecordRepositoryError(f"db query: {exc}") from exc

        def convert(row: Sequence[Any]) -> Record:
            rec_id, index_id, log_id, data, created_at, updated_at, touched_at = row
            return Record(
                id=rec_id,
                index_id=int(index_id),
                rev=int(log_id),
                data=data,
                created_at=created_at,
                updated_at=updated_at,
                touched_at=touched_at,
            )

        records = _collect(rows, convert)
        return self._page(records, limit)

    def get(self, index: str, record_id: str) -> Record:
        """Return the latest version of a record."""
        self._index_name_validator.validate(index)
        self._record_id_validator.validate(record_id)

        try:
            row = self._db.execute(_GET, (index, record_id)).fetchone()
            if row is not None:
                index_id, log_id, data, created_at, updated_at, touched_at = row
                record = Record(
                    id=record_id,
                    index_id=int(index_id),
                    rev=int(log_id),
                    data=data,
                    created_at=created_at,
                    updated_at=updated_at,
                    touched_at=touched_at,
                )
        except Exception as exc:
            raise RecordRepositoryError(f"db scan: {exc}") from exc

        if row is None:
            raise NotFoundError("record")
        return record

    def history(
        self,
        index: str,
        record_id: str,
        since: datetime | None,
        cursor: int,
        limit: int,
    ) -> tuple[list[Record], int]:
        """Return the versions of a record, newest first, and the cursor of the next page (0 if none)."""
        self._index_name_validator.validate(index)
        self._record_id_validator.validate(record_id)

        sql = _HISTORY_BASE
        args: list[Any] = [index, record_id]

        if not _is_epoch(since):
            args.append(since)
            sql += f" AND created_at>=${len(args)}"

        if cursor:
            args.append(cursor)
            sql += f" AND id<${len(args)}"

        sql += " ORDER BY id DESC"

        if limit:
            args.append(limit + 1)
            sql += f" LIMIT ${len(args)}"

        try:
            rows = self._db.execute(sql, tuple(args))
        except Exception as exc:
            raise RecordRepositoryError(f"db query: {exc}") from exc

        def convert(row: Sequence[Any]) -> Record:
            log_id, index_id, data, created_at = row
            return Record(
                id=record_id,
                index_id=int(index_id),
                rev=int(log_id),
                data=data,
                created_at=created_at,
            )

        records = _collect(rows, convert)
        return self._page(records, limit)

    def push(self, updates: Sequence[RecordUpdate]) -> None:
        """Store record updates in one transaction; unchanged records are only touched."""
        if not updates:
            raise InvalidArgError("updates", "must not be empty")

        try:
            tx: PreparingTransaction = self._db.begin()  # type: ignore[assignment]
        except Exception as exc:
            raise RecordRepositoryError(f"db begin: {exc}") from exc

        with ExitStack() as stack:
            try:
                statements = self._prepare_statements(tx, stack)
            except RecordRepositoryError:
                self._rollback(tx)
                raise

            for i, update in enumerate(updates):
                if update.index_id == 0:
                    self._rollback(tx)
                    raise InvalidArgError(f"record {i}", "zero index id")
                try:
                    self._upsert_or_touch(statements, update)
                except Exception:
                    self._rollback(tx)
                    raise

            try:
                tx.commit()
            except Exception as exc:
                raise RecordRepositoryError(f"commit: {exc}") from exc

    @staticmethod
    def _page(records: list[Record], limit: int) -> tuple[list[Record], int]:
        if limit > 0 and len(records) > limit:
            return records[:limit], records[limit - 1].rev
        return records, 0

    def _prepare_statements(self, tx: PreparingTransaction, stack: ExitStack) -> _Statements:
        prepared: list[Statement] = []
        for query, label in (
            (_GET_LOG, "get record by log id"),
            (_INSERT_LOG, "insert record log"),
            (_UPSERT_RECORD, "insert record"),
            (_TOUCH_RECORD, "update record touch time"),
        ):
            try:
                statement = tx.prepare(query)
            except Exception as exc:
                raise RecordRepositoryError(f"prepare statements: {label}: {exc}") from exc
            stack.callback(self._close_statement, statement)
            prepared.append(statement)
        return _Statements(*prepared)

    def _upsert_or_touch(self, statements: _Statements, update: RecordUpdate) -> None:
        self._record_id_validator.validate(update.id)

        if not update.data:
            raise InvalidArgError("record data", "must not be empty")

        try:
            self._json_validator.validate(update.schema, update.data.encode())
        except Exception as exc:
            raise InvalidArgError("record data", str(exc)) from exc

        try:
            row = statements.get_log.execute((update.checksum(),)).fetchone()
            log_id = None if row is None else int(row[0])
        except Exception as exc:
            raise RecordRepositoryError(f"get record by checksum scan: {exc}") from exc

        if log_id is None:
            self._upsert(statements, update)
        else:
            self._touch(statements.touch_record, log_id)

    @staticmethod
    def _upsert(statements: _Statements, update: RecordUpdate) -> None:
        try:
            row = statements.insert_log.execute((update.index_id, update.id, update.data)).fetchone()
            if row is None:
                return
            log_id = int(row[0])
        except Exception as exc:
            raise RecordRepositoryError(f"upsert record: insert log db query: {exc}") from exc

        try:
            statements.upsert_record.execute((update.id, update.index_id, log_id, update.checksum(), update.data))
        except Exception as exc:
            raise RecordRepositoryError(f"upsert record: insert record db query: {exc}") from exc

    @staticmethod
    def _touch(statement: Statement, log_id: int) -> None:
        try:
            result = statement.execute((log_id,))
        except Exception as exc:
            raise RecordRepositoryError(f"touch record: db exec: {exc}") from exc

        if result.rowcount == 0:
            raise RecordRepositoryError("touch record: no rows affected")

    def _close_statement(self, statement: Statement) -> None:
        try:
            statement.close()
        except Exception:
            self._logger.exception("prepared statement close failed")

    def _rollback(self, tx: Transaction) -> None:
        try:
            tx.rollback()
        except Exception:
            self._logger.exception("transaction rollback failed")