"""Relational handles built on SQLAlchemy Core."""

import logging
from collections.abc import Mapping

from sqlalchemy import create_engine
from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.engine import CursorResult
from sqlalchemy.engine import Engine
from sqlalchemy.engine import make_url
from sqlalchemy.pool import StaticPool

from duckbridge.config import get_settings
from duckbridge.errors import InvalidTarget
from duckbridge.errors import MemberNotFound

logger = logging.getLogger(__name__)


def _is_in_memory_sqlite(url: str) -> bool:
    """Report whether ``url`` points at a private in-memory SQLite database.

    :param url: SQLAlchemy database URL.
    :returns: ``True`` for in-memory SQLite URLs.
    """
    parsed = make_url(url)
    is_sqlite: bool = parsed.get_backend_name() == "sqlite"
    if is_sqlite is False:
        return False
    database: str | None = parsed.database
    return database is None or database in ("", ":memory:")


class ProcedureCatalog:
    """Named SQL statements invoked like stored procedures.

    Each entry maps a procedure name to SQL text using ``:name`` bind
    parameters, so procedure calls work on dialects without stored procedures.
    """

    _procedures: dict[str, str]

    def __init__(self) -> None:
        """Initialize an empty catalog."""
        self._procedures = {}

    @classmethod
    def from_mapping(cls, procedures: Mapping[str, str]) -> "ProcedureCatalog":
        """Build a catalog from ``name -> sql`` pairs.

        :param procedures: Procedure definitions.
        :returns: Populated catalog.
        """
        catalog: ProcedureCatalog = cls()
        for name, sql in procedures.items():
            catalog.register(name, sql)
        return catalog

    def register(self, name: str, sql: str) -> None:
        """Register or replace one procedure.

        :param name: Procedure name.
        :param sql: SQL text with ``:name`` bind parameters.
        :raises ValueError: If the name or SQL text is empty.
        """
        if len(name.strip()) == 0:
            raise ValueError("Procedure name cannot be empty")
        if len(sql.strip()) == 0:
            raise ValueError(f"Procedure {name!r} has empty SQL text")
        self._procedures[name] = sql

    def get(self, name: str) -> str:
        """Return the SQL text of one procedure.

        :param name: Procedure name.
        :returns: SQL text.
        :raises MemberNotFound: If the procedure is not registered.
        """
        sql: str | None = self._procedures.get(name)
        if sql is None:
            raise MemberNotFound(name, "procedure catalog")
        return sql

    def names(self) -> list[str]:
        """Return registered procedure names.

        :returns: Sorted names.
        """
        return sorted(self._procedures)


class RowCursor:
    """Forward-only cursor over one statement result."""

    _result: CursorResult
    _columns: list[str]
    _current: dict[str, object] | None
    _is_exhausted: bool
    _is_closed: bool

    def __init__(self, result: CursorResult) -> None:
        """Wrap an executed result.

        :param result: SQLAlchemy cursor result returning rows.
        """
        self._result = result
        self._columns = list(result.keys())
        self._current = None
        self._is_exhausted = False
        self._is_closed = False

    @property
    def columns(self) -> list[str]:
        """Return the result column names in select order.

        :returns: Column names.
        """
        return list(self._columns)

    @property
    def is_closed(self) -> bool:
        """Report whether the cursor has been closed.

        :returns: ``True`` once closed.
        """
        return self._is_closed

    def read(self) -> bool:
        """Advance to the next row.

        :returns: ``True`` while a row is current.
        :raises InvalidTarget: If the cursor is closed.
        """
        if self._is_closed is True:
            raise InvalidTarget("Reader is closed")
        if self._is_exhausted is True:
            return False
        row = self._result.fetchone()
        if row is None:
            self._current = None
            self._is_exhausted = True
            self._result.close()
            return False
        self._current = dict(row._mapping)
        return True

    def _require_row(self) -> dict[str, object]:
        """Return the current row or explain why there is none.

        :returns: Current row mapping.
        :raises InvalidTarget: If the cursor is closed or no row is current.
        """
        if self._is_closed is True:
            raise InvalidTarget("Reader is closed")
        if self._current is None:
            raise InvalidTarget("Reader has no current row; call read() first")
        return self._current

    def current(self) -> dict[str, object]:
        """Return a snapshot of the current row.

        :returns: Column-name keyed values.
        :raises InvalidTarget: If the cursor is closed or no row is current.
        """
        return dict(self._require_row())

    def get(self, column: str) -> object:
        """Read one column of the current row.

        :param column: Column name.
        :returns: Column value.
        :raises MemberNotFound: If the result has no such column.
        :raises InvalidTarget: If the cursor is closed or no row is current.
        """
        if self._is_closed is True:
            raise InvalidTarget("Reader is closed")
        is_known: bool = column in self._columns
        if is_known is False:
            raise MemberNotFound(column, "reader", f"columns are {self._columns}")
        return self._require_row()[column]

    def close(self) -> None:
        """Close the cursor and discard pending rows."""
        if self._is_closed is True:
            return
        self._is_closed = True
        self._current = None
        self._result.close()


class Command:
    """Parameterized statement or procedure call bound to one connection."""

    _connection: "DbConnection"
    _sql: str
    _procedure_name: str | None
    _parameters: dict[str, object]

    def __init__(self, connection: "DbConnection", sql: str, procedure_name: str | None = None) -> None:
        """Initialize a command.

        :param connection: Owning connection.
        :param sql: SQL text with ``:name`` bind parameters.
        :param procedure_name: Catalog name when created as a procedure call.
        """
        self._connection = connection
        self._sql = sql
        self._procedure_name = procedure_name
        self._parameters = {}

    @property
    def sql(self) -> str:
        """Return the SQL text executed by this command.

        :returns: SQL text.
        """
        return self._sql

    @property
    def procedure_name(self) -> str | None:
        """Return the catalog name for procedure calls.

        :returns: Procedure name or ``None`` for plain text commands.
        """
        return self._procedure_name

    @property
    def parameters(self) -> dict[str, object]:
        """Return a copy of the bound parameters in registration order.

        :returns: Parameter values keyed by name.
        """
        return dict(self._parameters)

    def set_parameter(self, name: str, value: object) -> None:
        """Register or overwrite one named parameter.

        :param name: Bind parameter name, without the leading colon.
        :param value: Bound value.
        """
        self._parameters[name.lstrip(":@")] = value

    def add_parameter(self, name: str, value: object) -> None:
        """Register one new named parameter.

        :param name: Bind parameter name, without the leading colon.
        :param value: Bound value.
        :raises InvalidTarget: If the parameter is already bound.
        """
        key: str = name.lstrip(":@")
        is_bound: bool = key in self._parameters
        if is_bound is True:
            raise InvalidTarget(f"Parameter {key!r} is already bound; assign to it to overwrite")
        self._parameters[key] = value

    def get_parameter(self, name: str) -> object:
        """Return one bound parameter.

        :param name: Bind parameter name.
        :returns: Bound value.
        :raises MemberNotFound: If the parameter has not been bound.
        """
        key: str = name.lstrip(":@")
        is_bound: bool = key in self._parameters
        if is_bound is False:
            raise MemberNotFound(name, "command", "parameter is not bound")
        return self._parameters[key]

    def clear_parameters(self) -> None:
        """Drop every bound parameter."""
        self._parameters.clear()

    def execute_reader(self) -> RowCursor:
        """Execute and return a forward-only cursor.

        :returns: Row cursor.
        :raises InvalidTarget: If the statement does not return rows.
        """
        result: CursorResult = self._execute()
        if result.returns_rows is False:
            result.close()
            raise InvalidTarget("Statement does not return rows; use execute_non_query")
        return RowCursor(result)

    def execute_non_query(self) -> int:
        """Execute and return the affected row count.

        :returns: Affected row count as reported by the driver.
        """
        result: CursorResult = self._execute()
        rowcount: int = result.rowcount
        result.close()
        self._connection.commit_if_autocommit()
        return rowcount

    def execute_scalar(self) -> object:
        """Execute and return the first column of the first row.

        :returns: Scalar value or ``None`` when no row is produced.
        """
        result: CursorResult = self._execute()
        if result.returns_rows is False:
            result.close()
            return None
        return result.scalar()

    def _execute(self) -> CursorResult:
        """Run the statement with the bound parameters.

        :returns: Executed result.
        """
        connection: Connection = self._connection.require_open()
        label: str = self._procedure_name if self._procedure_name is not None else "text"
        logger.debug("executing %s with parameters %s", label, sorted(self._parameters))
        return connection.execute(text(self._sql), self._parameters)


class DbConnection:
    """One database connection with explicit open and close."""

    _engine: Engine
    _catalog: ProcedureCatalog
    _autocommit: bool
    _connection: Connection | None

    def __init__(self, engine: Engine, catalog: ProcedureCatalog, autocommit: bool = True) -> None:
        """Initialize a closed connection.

        :param engine: Engine connections are drawn from.
        :param catalog: Procedure catalog resolved by :meth:`create_procedure`.
        :param autocommit: Commit after every non-query statement.
        """
        self._engine = engine
        self._catalog = catalog
        self._autocommit = autocommit
        self._connection = None

    @property
    def is_open(self) -> bool:
        """Report whether the connection is open.

        :returns: ``True`` while open.
        """
        return self._connection is not None

    @property
    def catalog(self) -> ProcedureCatalog:
        """Return the procedure catalog.

        :returns: Procedure catalog.
        """
        return self._catalog

    def open(self) -> None:
        """Open the connection if it is not already open."""
        if self._connection is not None:
            return
        self._connection = self._engine.connect()
        logger.info("opened connection to %s", self._engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        """Close the connection; a no-op when already closed."""
        connection: Connection | None = self._connection
        if connection is None:
            return
        self._connection = None
        connection.close()
        logger.info("closed connection to %s", self._engine.url.render_as_string(hide_password=True))

    def require_open(self) -> Connection:
        """Return the live SQLAlchemy connection.

        :returns: Open connection.
        :raises InvalidTarget: If the connection is closed.
        """
        if self._connection is None:
            raise InvalidTarget("Connection is closed")
        return self._connection

    def create_command(self, sql: str) -> Command:
        """Create a text command.

        :param sql: SQL text with ``:name`` bind parameters.
        :returns: New command.
        """
        self.require_open()
        return Command(self, sql)

    def create_procedure(self, name: str) -> Command:
        """Create a procedure call from the catalog.

        :param name: Procedure name.
        :returns: New command.
        :raises MemberNotFound: If the procedure is not registered.
        """
        self.require_open()
        sql: str = self._catalog.get(name)
        return Command(self, sql, procedure_name=name)

    def commit(self) -> None:
        """Commit the current transaction."""
        self.require_open().commit()

    def rollback(self) -> None:
        """Roll back the current transaction."""
        self.require_open().rollback()

    def commit_if_autocommit(self) -> None:
        """Commit when the connection runs in autocommit mode."""
        if self._autocommit is True:
            self.commit()

    def __enter__(self) -> "DbConnection":
        """Open the connection for a scoped block.

        :returns: This connection.
        """
        self.open()
        return self

    def __exit__(self, exc_type: object, exc_value: object, exc_traceback: object) -> None:
        """Close the connection on every exit path.

        :param exc_type: Exception type.
        :param exc_value: Exception value.
        :param exc_traceback: Exception traceback.
        """
        self.close()


class Database:
    """Engine plus procedure catalog; the factory for connections."""

    _engine: Engine
    _catalog: ProcedureCatalog

    def __init__(
        self,
        url: str | None = None,
        catalog: ProcedureCatalog | None = None,
        echo: bool | None = None,
    ) -> None:
        """Create the engine.

        :param url: SQLAlchemy URL; defaults to the configured ``database_url``.
        :param catalog: Procedure catalog; defaults to an empty one.
        :param echo: Echo SQL; defaults to the configured ``echo_sql``.
        """
        settings = get_settings()
        resolved_url: str = url if url is not None else settings.database_url
        resolved_echo: bool = echo if echo is not None else settings.echo_sql
        if _is_in_memory_sqlite(resolved_url) is True:
            # Every connection must see the same private database.
            self._engine = create_engine(
                resolved_url,
                echo=resolved_echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            self._engine = create_engine(resolved_url, echo=resolved_echo, pool_pre_ping=True)
        self._catalog = catalog if catalog is not None else ProcedureCatalog()

    @property
    def engine(self) -> Engine:
        """Return the SQLAlchemy engine.

        :returns: Engine.
        """
        return self._engine

    @property
    def catalog(self) -> ProcedureCatalog:
        """Return the procedure catalog.

        :returns: Procedure catalog.
        """
        return self._catalog

    def connect(self, autocommit: bool = True) -> DbConnection:
        """Return a new open connection.

        :param autocommit: Commit after every non-query statement.
        :returns: Open connection.
        """
        connection: DbConnection = DbConnection(self._engine, self._catalog, autocommit=autocommit)
        connection.open()
        return connection

    def dispose(self) -> None:
        """Dispose of the engine's pooled connections."""
        self._engine.dispose()
