# ujds

A storage layer for versioned JSON records. Every record belongs to a named
*index*. Each change to a record is kept as a new revision, so a record's
history can always be read back. Pushing data that is identical to what is
already stored only updates the record's "touched" time.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `ujds.model`: the data types `Index`, `Record`, `RecordUpdate` and
  `IndexFilter`, and the errors `NotFoundError` (a `LookupError`) and
  `InvalidArgError` (a `ValueError`). `RecordUpdate.checksum()` returns the
  SHA-256 digest of the data, the index id (8 bytes, little-endian) and the
  record id. This digest is how unchanged data is detected.
- `ujds.config`: the `Config`, `Database` (`dsn`) and `Server` (`auth_token`)
  settings. `Config.from_mapping(data)` builds them from a plain mapping, for
  example a decoded JSON or YAML document. Missing values default to empty
  strings. A `TypeError` is raised for values of the wrong type.
- `ujds.logger`: `new_logger(name="ujds")` returns a `logging.Logger` that
  writes to stderr. When stdout is a terminal the output is short, readable
  lines; otherwise it is one JSON object per line.
- `ujds.queryparser`: `parse(s)` turns a search expression into a `Query`. On
  malformed input it raises `QuerySyntaxError`.
- `ujds.indexrepository`: `IndexRepository` has `upsert`, `get`, `list` and
  `clear` for indexes. Database failures are raised as `RepositoryError`.
- `ujds.recordrepository`: `RecordRepository` has `push`, `get`, `find` and
  `history` for records. Database failures are raised as
  `RecordRepositoryError`.

## Database and validators

The repositories do not open connections themselves. You pass in an object
that uses PostgreSQL-style `$1, $2, ...` placeholders and provides these
methods:

- on the connection: `execute(query, args)`, which returns a cursor that can be
  iterated over and has `fetchone()`, and `begin()`, which returns a
  transaction;
- on a transaction: `execute`, `commit`, `rollback`, and, for
  `RecordRepository.push`, `prepare(query)`. `prepare` returns a statement
  with `execute(args)` (a cursor that also has `rowcount`) and `close()`.

You also supply the validators:

- name and id validators have `validate(s)`, which raises when the value is
  not acceptable;
- the JSON validator has `validate(schema, data)`, which takes bytes and
  raises when the data does not match the schema.

## Search queries

A query is a list of comparisons joined by `&&` or `||`. The left side of a
comparison is a JSON path, written with dots. The right side is a literal: an
integer, a float, a bare word or a quoted string.

```python
from ujds.queryparser import parse

q = parse('foo.bar = 123 && name = "Alice"')
q.to_sql("data", 1)
# "(data->'foo'->'bar')::int = $1 AND (data->'name')::text = '\"' || $2 || '\"'"
q.args()
# [123, 'Alice']
```

The comparison operators are `=`, `==`, `!=`, `<`, `<=`, `>` and `>=`.

## Paging

`RecordRepository.find(index, search, since, cursor, limit)` and
`RecordRepository.history(index, record_id, since, cursor, limit)` return a
pair `(records, cursor)`. A non-zero cursor means there are more results; pass
it back in to get the next page. `history` returns revisions newest first. For
`history`, a `limit` of 0 means no limit, and a `since` of `None` or the Unix
epoch means no time filter.

## What this package does not do

This package is a library only. It does not include:

- a network server or API;
- a command-line program;
- the SQL schema or migrations for the `index`, `record` and `record_log`
  tables;
- ready-made name, id or JSON-schema validators.

You provide the database, its tables and the validators.