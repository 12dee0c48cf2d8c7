"""User-facing API entrypoints for duckbridge."""

import os
from collections.abc import Iterator
from collections.abc import Mapping
from contextlib import contextmanager

from duckbridge.data.adapters import CommandAdapter
from duckbridge.data.adapters import ConnectionAdapter
from duckbridge.data.adapters import ReaderAdapter
from duckbridge.data.connection import Command
from duckbridge.data.connection import Database
from duckbridge.data.connection import DbConnection
from duckbridge.data.connection import ProcedureCatalog
from duckbridge.data.connection import RowCursor
from duckbridge.errors import InvalidTarget
from duckbridge.forwarder import Forwarder
from duckbridge.forwarder import HandleAdapter
from duckbridge.interop.adapters import ScriptContextAdapter
from duckbridge.interop.session import ScriptSession

_ROOT_ADAPTERS: dict[type, type[HandleAdapter]] = {
    DbConnection: ConnectionAdapter,
    Command: CommandAdapter,
    RowCursor: ReaderAdapter,
    ScriptSession: ScriptContextAdapter,
}


def forward(handle: object) -> Forwarder:
    """Wrap a root handle in a forwarder.

    :param handle: Connection, command, row cursor, script session, or adapter.
    :returns: Forwarder over ``handle``.
    :raises InvalidTarget: If no adapter exists for the handle's kind.
    """
    if isinstance(handle, Forwarder) is True:
        return handle  # type: ignore[return-value]
    if isinstance(handle, HandleAdapter) is True:
        return Forwarder(handle)  # type: ignore[arg-type]
    for handle_type, adapter_type in _ROOT_ADAPTERS.items():
        if isinstance(handle, handle_type) is True:
            return Forwarder(adapter_type(handle))  # type: ignore[call-arg]
    raise InvalidTarget(f"No member adapter for {type(handle).__qualname__}")


@contextmanager
def open_database(
    url: str | None = None,
    procedures: Mapping[str, str] | ProcedureCatalog | None = None,
    echo: bool | None = None,
) -> Iterator[Forwarder]:
    """Open a connection forwarder for the duration of a block.

    :param url: SQLAlchemy URL; defaults to the configured ``database_url``.
    :param procedures: Procedure catalog or ``name -> sql`` mapping.
    :param echo: Echo SQL; defaults to the configured ``echo_sql``.
    :yields: Forwarder over an open connection.
    """
    catalog: ProcedureCatalog | None
    if procedures is None or isinstance(procedures, ProcedureCatalog) is True:
        catalog = procedures  # type: ignore[assignment]
    else:
        catalog = ProcedureCatalog.from_mapping(procedures)  # type: ignore[arg-type]
    database: Database = Database(url, catalog=catalog, echo=echo)
    try:
        connection: DbConnection = database.connect()
        try:
            yield Forwarder(ConnectionAdapter(connection))
        finally:
            connection.close()
    finally:
        database.dispose()


@contextmanager
def open_script(script_path: str | os.PathLike[str]) -> Iterator[Forwarder]:
    """Run a script in a separate interpreter for the duration of a block.

    :param script_path: Script to load.
    :yields: Forwarder over the script's global namespace.
    """
    session: ScriptSession = ScriptSession(script_path)
    try:
        yield Forwarder(ScriptContextAdapter(session))
    finally:
        session.close()
