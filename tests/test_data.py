"""Tests for forwarding over relational handles."""

from collections.abc import Iterator

import pytest
from sqlalchemy import event

from duckbridge import HANDLE
from duckbridge import Forwarder
from duckbridge import InvalidTarget
from duckbridge import MemberNotFound
from duckbridge import TypeConversionError
from duckbridge import forward
from duckbridge import open_database
from duckbridge.data import Database
from duckbridge.data import DbConnection
from duckbridge.data import ProcedureCatalog
from duckbridge.demo import PROCEDURES
from duckbridge.demo import create_schema
from duckbridge.demo import seed

MEMORY_URL: str = "sqlite+pysqlite:///:memory:"


@pytest.fixture
def connection() -> Iterator[Forwarder]:
    """Open a seeded in-memory photo store.

    :yields: Connection forwarder.
    """
    with open_database(MEMORY_URL, procedures=PROCEDURES) as connection_fwd:
        create_schema(connection_fwd)
        seed(connection_fwd)
        yield connection_fwd


def _photos_for(connection_fwd: Forwarder, album_id: int) -> Forwarder:
    """Run ``GetPhotos`` for one album.

    :param connection_fwd: Connection forwarder.
    :param album_id: Album identifier.
    :returns: Reader forwarder.
    """
    command: Forwarder = connection_fwd.invoke("create_procedure", "GetPhotos")  # type: ignore[assignment]
    command.AlbumID = album_id
    return command.invoke("execute_reader")  # type: ignore[return-value]


def test_procedure_reader_reads_typed_column(connection: Forwarder) -> None:
    """Read a typed column from the current row."""
    reader: Forwarder = _photos_for(connection, 7)
    try:
        assert reader.invoke("read", returns=bool) is True
        assert reader.invoke("read", returns=bool) is True
        photo_id: object = reader.read("PhotoID", int)
        assert photo_id == 42
        assert isinstance(photo_id, int) is True
        assert reader.Caption == "Market street"
        assert reader.invoke("read", returns=bool) is False
    finally:
        reader.close()


def test_procedure_binds_named_parameter() -> None:
    """Send the bound album id to the driver with the procedure text."""
    database: Database = Database(MEMORY_URL, catalog=ProcedureCatalog.from_mapping(PROCEDURES))
    captured: list[object] = []

    def _capture(conn: object, cursor: object, statement: str, parameters: object, context: object, executemany: bool) -> None:
        if "FROM Photos WHERE AlbumID" in statement:
            captured.append(parameters)

    event.listen(database.engine, "before_cursor_execute", _capture)
    try:
        connection_fwd: Forwarder = forward(database.connect())
        try:
            create_schema(connection_fwd)
            seed(connection_fwd)
            reader: Forwarder = _photos_for(connection_fwd, 7)
            rows: list[object] = list(reader)
        finally:
            connection_fwd.close()
    finally:
        database.dispose()

    assert len(captured) == 1
    bound: object = captured[0]
    bound_values: list[object] = list(bound.values()) if isinstance(bound, dict) is True else list(bound)  # type: ignore[union-attr, call-overload]
    assert bound_values == [7]
    assert rows == [
        {"PhotoID": 41, "Caption": "Harbour at dawn"},
        {"PhotoID": 42, "Caption": "Market street"},
    ]


def test_unknown_column_raises_member_not_found(connection: Forwarder) -> None:
    """Report unknown columns by name."""
    reader: Forwarder = _photos_for(connection, 7)
    try:
        reader.invoke("read")
        with pytest.raises(MemberNotFound) as exc_info:
            reader.read("NonexistentColumn")
        assert exc_info.value.member_name == "NonexistentColumn"
        assert exc_info.value.target_kind == "reader"
    finally:
        reader.close()


def test_reader_operations_are_members_but_not_columns(connection: Forwarder) -> None:
    """List operations as members while keeping them out of column reads."""
    reader: Forwarder = _photos_for(connection, 7)
    try:
        assert "read" in reader
        assert "PhotoID" in reader
        assert reader.invoke("read", returns=bool) is True
        with pytest.raises(MemberNotFound, match="call it through invoke") as exc_info:
            reader.read("read")
        assert exc_info.value.member_name == "read"
    finally:
        reader.close()


def test_column_read_before_first_row_is_invalid(connection: Forwarder) -> None:
    """Require a current row before reading columns."""
    reader: Forwarder = _photos_for(connection, 7)
    try:
        with pytest.raises(InvalidTarget, match="no current row"):
            _ = reader.PhotoID
    finally:
        reader.close()


def test_reader_rejects_writes(connection: Forwarder) -> None:
    """Keep readers read-only."""
    reader: Forwarder = _photos_for(connection, 7)
    try:
        reader.invoke("read")
        with pytest.raises(InvalidTarget, match="read-only"):
            reader.Caption = "changed"
    finally:
        reader.close()


def test_column_conversion_mismatch(connection: Forwarder) -> None:
    """Report columns that do not match the expected type."""
    reader: Forwarder = _photos_for(connection, 7)
    try:
        reader.invoke("read")
        with pytest.raises(TypeConversionError):
            reader.read("Caption", int)
    finally:
        reader.close()


def test_command_parameters_round_trip(connection: Forwarder) -> None:
    """Read back bound parameters by name."""
    command: Forwarder = connection.invoke("create_procedure", "GetAlbum")  # type: ignore[assignment]
    command.AlbumID = 8
    assert command.AlbumID == 8
    command["AlbumID"] = 7
    assert command.read("AlbumID", int) == 7
    assert "AlbumID" in command
    with pytest.raises(MemberNotFound, match="parameter is not bound"):
        _ = command.Title
    command.invoke("clear_parameters")
    assert "AlbumID" not in command


def test_create_procedure_returns_command_forwarder(connection: Forwarder) -> None:
    """Wrap declared handle results in forwarders."""
    command: object = connection.invoke("create_procedure", "CountPhotos")
    assert isinstance(command, Forwarder) is True
    assert command.kind == "command"  # type: ignore[attr-defined]
    assert repr(command) == "<Forwarder command procedure=CountPhotos>"


def test_execute_scalar_and_non_query(connection: Forwarder) -> None:
    """Insert through a procedure and count the result."""
    insert: Forwarder = connection.invoke("create_procedure", "AddPhoto")  # type: ignore[assignment]
    insert.PhotoID = 44
    insert.AlbumID = 8
    insert.Caption = "Garden party"
    assert insert.invoke("execute_non_query", returns=int) == 1

    count: Forwarder = connection.invoke("create_procedure", "CountPhotos")  # type: ignore[assignment]
    count.AlbumID = 8
    assert count.invoke("execute_scalar", returns=int) == 2


def test_unknown_procedure_raises_member_not_found(connection: Forwarder) -> None:
    """Report procedures missing from the catalog."""
    with pytest.raises(MemberNotFound) as exc_info:
        connection.invoke("create_procedure", "DeletePhotos")
    assert exc_info.value.target_kind == "procedure catalog"


def test_unknown_operation_raises_member_not_found(connection: Forwarder) -> None:
    """Report operations the handle kind does not offer."""
    with pytest.raises(MemberNotFound):
        connection.invoke("drop_everything")
    command: Forwarder = connection.invoke("create_command", "SELECT 1")  # type: ignore[assignment]
    with pytest.raises(InvalidTarget):
        command.invoke("execute_scalar", returns=HANDLE)


def test_iterate_rows_as_handles(connection: Forwarder) -> None:
    """Iterate remaining rows as read-only row forwarders."""
    reader: Forwarder = _photos_for(connection, 7)
    with reader:
        rows: list[object] = list(reader.iterate(returns=HANDLE))
    assert [row.PhotoID for row in rows] == [41, 42]  # type: ignore[attr-defined]
    with pytest.raises(InvalidTarget):
        rows[0].Caption = "changed"  # type: ignore[attr-defined]
    with pytest.raises(MemberNotFound):
        _ = rows[0].AlbumID  # type: ignore[attr-defined]


def test_reader_non_row_statement_is_invalid(connection: Forwarder) -> None:
    """Refuse readers over statements that return no rows."""
    command: Forwarder = connection.invoke(
        "create_command",
        "UPDATE Photos SET Caption = 'x' WHERE PhotoID = -1",
    )  # type: ignore[assignment]
    with pytest.raises(InvalidTarget, match="does not return rows"):
        command.invoke("execute_reader")


def test_closed_reader_rejects_reads(connection: Forwarder) -> None:
    """Fail once the reader has been closed."""
    reader: Forwarder = _photos_for(connection, 7)
    reader.invoke("close")
    with pytest.raises(InvalidTarget, match="Reader is closed"):
        reader.invoke("read")


def test_closed_reader_rejects_column_reads(connection: Forwarder) -> None:
    """Report the closed reader rather than a missing row on column reads."""
    reader: Forwarder = _photos_for(connection, 7)
    assert reader.invoke("read", returns=bool) is True
    reader.invoke("close")
    with pytest.raises(InvalidTarget, match="Reader is closed"):
        reader.read("PhotoID")
    with pytest.raises(InvalidTarget, match="Reader is closed"):
        reader.read("NonexistentColumn")


def test_closed_connection_rejects_commands() -> None:
    """Fail once the connection has been closed."""
    database: Database = Database(MEMORY_URL)
    try:
        db_connection: DbConnection = database.connect()
        connection_fwd: Forwarder = forward(db_connection)
        assert connection_fwd.is_open is True
        connection_fwd.invoke("close")
        assert connection_fwd.is_open is False
        with pytest.raises(InvalidTarget, match="Connection is closed"):
            connection_fwd.invoke("create_command", "SELECT 1")
        connection_fwd.invoke("open")
        command: Forwarder = connection_fwd.invoke("create_command", "SELECT 1")  # type: ignore[assignment]
        assert command.invoke("execute_scalar") == 1
        connection_fwd.close()
    finally:
        database.dispose()


def test_connection_rejects_writes(connection: Forwarder) -> None:
    """Keep connection properties read-only."""
    with pytest.raises(InvalidTarget):
        connection.is_open = False


def test_rollback_discards_uncommitted_changes() -> None:
    """Undo statements run without autocommit."""
    database: Database = Database(MEMORY_URL, catalog=ProcedureCatalog.from_mapping(PROCEDURES))
    try:
        setup: Forwarder = forward(database.connect())
        create_schema(setup)
        seed(setup)
        setup.close()

        manual: Forwarder = forward(database.connect(autocommit=False))
        try:
            delete: Forwarder = manual.invoke("create_command", "DELETE FROM Photos")  # type: ignore[assignment]
            delete.invoke("execute_non_query")
            manual.invoke("rollback")
            count: Forwarder = manual.invoke("create_procedure", "CountPhotos")  # type: ignore[assignment]
            count.AlbumID = 7
            assert count.invoke("execute_scalar", returns=int) == 2
        finally:
            manual.close()
    finally:
        database.dispose()


def test_procedure_catalog_validation() -> None:
    """Reject empty procedure definitions and list registered names."""
    catalog: ProcedureCatalog = ProcedureCatalog.from_mapping(PROCEDURES)
    assert catalog.names() == sorted(PROCEDURES)
    with pytest.raises(ValueError):
        catalog.register(" ", "SELECT 1")
    with pytest.raises(ValueError):
        catalog.register("Empty", "")
    catalog.register("GetPhotos", "SELECT 1")
    assert catalog.get("GetPhotos") == "SELECT 1"


def test_add_parameter_registers_new_names(connection: Forwarder) -> None:
    """Add parameters through invocation and refuse duplicates."""
    command: Forwarder = connection.invoke("create_procedure", "CountPhotos")  # type: ignore[assignment]
    command.invoke("add_parameter", "@AlbumID", 8)
    assert command.AlbumID == 8
    with pytest.raises(InvalidTarget, match="already bound"):
        command.invoke("add_parameter", "AlbumID", 7)
    assert command.invoke("execute_scalar", returns=int) == 1
