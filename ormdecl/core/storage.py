"""Storage collaborators executing synthesized statements.

The mapping layer talks to the database only through the narrow `Storage`
interface:

- ``execute(sql, params)`` runs a statement and returns the affected row count
- ``query(sql, params)`` runs a query and returns its rows as tuples
- ``commit_transaction()`` and ``rollback_transaction()``

Statements arrive with ``?`` placeholders. `SqlAlchemyStorage` turns them into
bind parameters of a SQLAlchemy ``text()`` construct, which the dialect renders
in its driver's paramstyle. `DbapiStorage` rewrites them into the paramstyle of
its DB-API driver.

Two adapters are provided: `SqlAlchemyStorage`, which runs statements on a
single connection of a SQLAlchemy engine, and `DbapiStorage`, which wraps a raw
DB-API 2.0 connection such as one from `sqlite3`.

The storage handle is owned by the caller and is never pooled or shared by
this package. Because commit and rollback are exposed, code using the same
handle outside this package can interfere with its transactions; serializing
such access is the caller's responsibility.

Example:
    >>> storage = connect("sqlite://")
    >>> storage.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, val TEXT)")
    0
    >>> storage.execute("INSERT INTO t (val) VALUES (?)", ["a"])
    1
    >>> storage.query("SELECT id, val FROM t WHERE val = ?", ["a"])
    [(1, 'a')]
"""

from __future__ import annotations

import logging
import re
from typing import Any, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.expression import TextClause

from .errors import StorageError

logger = logging.getLogger(__name__)

PARAMSTYLES = ("qmark", "format", "pyformat", "numeric", "named")

_word_re = re.compile(r"\w")


def translate_placeholders(sql: str, paramstyle: str, escape_colons: bool = False) -> tuple[str, int]:
    """Rewrite ``?`` placeholders outside quoted literals for a DB-API paramstyle.

    Args:
        sql: Statement text using ``?`` placeholders.
        paramstyle: Target DB-API paramstyle.
        escape_colons: Escape colons that would otherwise read as SQLAlchemy
            ``text()`` bind parameters.

    Returns:
        Tuple of the rewritten statement and the number of placeholders found.

    Raises:
        StorageError: If the paramstyle is not supported.
    """
    if paramstyle not in PARAMSTYLES:
        raise StorageError(f"Unsupported paramstyle: {paramstyle}")
    escape_percent = paramstyle in ("format", "pyformat")
    out = []
    quote = None
    n = 0
    for i, ch in enumerate(sql):
        if escape_colons and ch == ":" and _word_re.match(sql, i + 1):
            out.append("\\:")
        elif quote:
            if ch == quote:
                quote = None
            out.append("%%" if escape_percent and ch == "%" else ch)
        elif ch in ("'", '"'):
            quote = ch
            out.append(ch)
        elif ch == "?":
            n += 1
            if paramstyle == "qmark":
                out.append("?")
            elif paramstyle in ("format", "pyformat"):
                out.append("%s")
            elif paramstyle == "numeric":
                out.append(f":{n}")
            else:
                out.append(f":p{n}")
        else:
            out.append("%%" if escape_percent and ch == "%" else ch)
    return "".join(out), n


def bind(sql: str, params: Sequence[Any] | None, paramstyle: str) -> tuple[str, Any]:
    """Prepare a statement and its parameters for a driver.

    Args:
        sql: Statement text using ``?`` placeholders.
        params: Positional parameters, one per placeholder.
        paramstyle: Target DB-API paramstyle.

    Returns:
        Tuple of the driver statement text and the driver parameter object, which
        is None when there are no parameters.
    """
    params = list(params or [])
    if not params:
        if "?" in sql and translate_placeholders(sql, "qmark")[1]:
            raise StorageError(f"Statement has placeholders but no parameters: {sql}")
        return sql, None
    rewritten, n = translate_placeholders(sql, paramstyle)
    if n != len(params):
        raise StorageError(f"Statement has {n} placeholders but {len(params)} parameters: {sql}")
    if paramstyle == "named":
        return rewritten, {f"p{i}": value for i, value in enumerate(params, start=1)}
    return rewritten, tuple(params)


def text_clause(sql: str, params: Sequence[Any] | None) -> tuple[TextClause, dict]:
    """Build a SQLAlchemy text construct for a statement.

    The ``?`` placeholders become the bind parameters ``:p1``, ``:p2``, ...

    Args:
        sql: Statement text using ``?`` placeholders.
        params: Positional parameters, one per placeholder.

    Returns:
        Tuple of the text construct and its bind parameter values.
    """
    params = list(params or [])
    named, n = translate_placeholders(sql, "named", escape_colons=True)
    if n != len(params):
        raise StorageError(f"Statement has {n} placeholders but {len(params)} parameters: {sql}")
    return text(named), {f"p{i}": value for i, value in enumerate(params, start=1)}


class Storage:
    """Interface of a storage collaborator.

    Subclasses implement `_execute`, `_query`, `commit_transaction`,
    `rollback_transaction` and `close`, and may override `_prepare`.
    """

    paramstyle = "qmark"

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> int:
        """Run a statement.

        Args:
            sql: Statement text using ``?`` placeholders.
            params: Parameters in placeholder order.

        Returns:
            The number of affected rows as reported by the driver.

        Raises:
            StorageError: If the driver reports an error.
        """
        logger.debug("Execute: %s %r", sql, list(params or []))
        count = self._execute(*self._prepare(sql, params))
        logger.debug("Affected %d row(s)", count)
        return count

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[tuple]:
        """Run a query.

        Args:
            sql: Query text using ``?`` placeholders.
            params: Parameters in placeholder order.

        Returns:
            The fetched rows as tuples of column values in select-list order.

        Raises:
            StorageError: If the driver reports an error.
        """
        logger.debug("Query: %s %r", sql, list(params or []))
        rows = self._query(*self._prepare(sql, params))
        logger.debug("Fetched %d row(s)", len(rows))
        return rows

    def _prepare(self, sql: str, params: Sequence[Any] | None) -> tuple[Any, Any]:
        return bind(sql, params, self.paramstyle)

    def _execute(self, sql: str, params: Any) -> int:
        raise NotImplementedError()

    def _query(self, sql: str, params: Any) -> list[tuple]:
        raise NotImplementedError()

    def commit_transaction(self) -> None:
        raise NotImplementedError()

    def rollback_transaction(self) -> None:
        raise NotImplementedError()

    def close(self) -> None:
        pass

    def __enter__(self) -> "Storage":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Context manager exit - close the handle."""
        self.close()
        return False


class SqlAlchemyStorage(Storage):
    """Storage running statements on one connection of a SQLAlchemy engine.

    Attributes:
        engine: The SQLAlchemy engine.
        paramstyle: The paramstyle the engine's dialect renders bind parameters in.
    """

    def __init__(self, engine: Engine):
        """Open a connection on an engine.

        Args:
            engine: A SQLAlchemy engine. The storage keeps one connection open
                until `close` is called; disposing the engine remains the
                caller's responsibility.
        """
        self.engine = engine
        self.paramstyle = engine.dialect.paramstyle
        try:
            self._conn = engine.connect()
        except SQLAlchemyError as e:
            raise StorageError(f"Unable to connect to {engine.url!r}: {e}", e)

    def __repr__(self) -> str:
        return f"<{type(self).__module__}.{type(self).__name__} {self.engine.url!r}>"

    def _prepare(self, sql: str, params: Sequence[Any] | None) -> tuple[TextClause, dict]:
        return text_clause(sql, params)

    def _execute(self, statement: TextClause, params: dict) -> int:
        try:
            result = self._conn.execute(statement, params or None)
            return max(result.rowcount, 0)
        except SQLAlchemyError as e:
            raise StorageError(f"Statement failed: {e}", e)

    def _query(self, statement: TextClause, params: dict) -> list[tuple]:
        try:
            result = self._conn.execute(statement, params or None)
            return [tuple(row) for row in result.fetchall()]
        except SQLAlchemyError as e:
            raise StorageError(f"Query failed: {e}", e)

    def commit_transaction(self) -> None:
        try:
            self._conn.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Commit failed: {e}", e)

    def rollback_transaction(self) -> None:
        try:
            self._conn.rollback()
        except SQLAlchemyError as e:
            raise StorageError(f"Rollback failed: {e}", e)

    def close(self) -> None:
        """Close the connection. The storage cannot be used afterwards."""
        if not self._conn.closed:
            self._conn.close()


class DbapiStorage(Storage):
    """Storage wrapping a raw DB-API 2.0 connection.

    Attributes:
        connection: The DB-API connection.
        paramstyle: The paramstyle of its driver module.
    """

    def __init__(self, connection: Any, paramstyle: str = "qmark"):
        if paramstyle not in PARAMSTYLES:
            raise StorageError(f"Unsupported paramstyle: {paramstyle}")
        self.connection = connection
        self.paramstyle = paramstyle
        self._error = getattr(connection, "Error", Exception)

    def _run(self, sql: str, params: Any):
        cursor = self.connection.cursor()
        if params is None:
            cursor.execute(sql)
        else:
            cursor.execute(sql, params)
        return cursor

    def _execute(self, sql: str, params: Any) -> int:
        try:
            cursor = self._run(sql, params)
            try:
                return max(cursor.rowcount, 0)
            finally:
                cursor.close()
        except self._error as e:
            raise StorageError(f"Statement failed: {e}", e)

    def _query(self, sql: str, params: Any) -> list[tuple]:
        try:
            cursor = self._run(sql, params)
            try:
                return [tuple(row) for row in cursor.fetchall()]
            finally:
                cursor.close()
        except self._error as e:
            raise StorageError(f"Query failed: {e}", e)

    def commit_transaction(self) -> None:
        try:
            self.connection.commit()
        except self._error as e:
            raise StorageError(f"Commit failed: {e}", e)

    def rollback_transaction(self) -> None:
        try:
            self.connection.rollback()
        except self._error as e:
            raise StorageError(f"Rollback failed: {e}", e)

    def close(self) -> None:
        self.connection.close()


def connect(dsn: str, credentials: dict | None = None, **engine_args: Any) -> SqlAlchemyStorage:
    """Connect to a database by SQLAlchemy URL.

    Args:
        dsn: A SQLAlchemy database URL such as ``sqlite:///path.db`` or
            ``postgresql://host/dbname``.
        credentials: Optional mapping with ``username`` and ``password`` merged
            into the URL.
        **engine_args: Extra keyword arguments for `sqlalchemy.create_engine`.

    Returns:
        A storage bound to a new engine.
    """
    try:
        url = make_url(dsn)
    except (SQLAlchemyError, ValueError) as e:
        raise StorageError(f"Invalid database URL {dsn!r}: {e}", e)
    if credentials:
        url = url.set(username=credentials.get("username", url.username),
                      password=credentials.get("password", url.password))
    logger.debug("Connecting to %r", url)
    try:
        engine = create_engine(url, future=True, **engine_args)
    except (SQLAlchemyError, ImportError) as e:
        raise StorageError(f"Unable to create engine for {url!r}: {e}", e)
    return SqlAlchemyStorage(engine)
