"""Member dispatch tables for relational handles."""

from collections.abc import Iterator
from collections.abc import Mapping
from typing import ClassVar

from duckbridge.data.connection import Command
from duckbridge.data.connection import DbConnection
from duckbridge.data.connection import RowCursor
from duckbridge.errors import InvalidTarget
from duckbridge.errors import MemberNotFound
from duckbridge.forwarder import HandleAdapter
from duckbridge.forwarder import ResultShape
from duckbridge.forwarder import require_member


class _OperationAdapter(HandleAdapter):
    """Adapter whose invocable members are a fixed table of handle operations."""

    invocable: ClassVar[frozenset[str]] = frozenset()
    _handle: object

    def __init__(self, handle: object) -> None:
        """Wrap one handle.

        :param handle: Underlying relational handle.
        """
        self._handle = handle

    def invoke_member(
        self,
        name: str,
        args: tuple[object, ...],
        kwargs: dict[str, object],
        shape: ResultShape,
    ) -> object:
        """Call one operation of the wrapped handle.

        :param name: Operation name.
        :param args: Positional arguments.
        :param kwargs: Keyword arguments.
        :param shape: Declared result shape.
        :returns: Raw result or a wrapped handle adapter.
        :raises MemberNotFound: If ``name`` is not an operation of this handle.
        :raises InvalidTarget: If a handle shape is requested for a value-only operation.
        """
        require_member(self, name, self.invocable)
        wants_handle: bool = shape is ResultShape.HANDLE
        is_declared: bool = name in self.declared_shapes
        if wants_handle is True and is_declared is False:
            raise InvalidTarget(f"{self.kind} member {name!r} does not declare a handle-shaped result")
        operation = getattr(self._handle, name)
        result: object = operation(*args, **kwargs)
        if wants_handle is True:
            return self.wrap_result(name, result)
        return result

    def member_names(self) -> list[str]:
        """List invocable operation names.

        :returns: Sorted names.
        """
        return sorted(self.invocable)


class RowAdapter(HandleAdapter):
    """Read-only snapshot of one result row."""

    kind: ClassVar[str] = "row"
    _values: dict[str, object]

    def __init__(self, values: Mapping[str, object]) -> None:
        """Wrap one row snapshot.

        :param values: Column-name keyed values.
        """
        self._values = dict(values)

    def read_member(self, name: str) -> object:
        """Read one column.

        :param name: Column name.
        :returns: Column value.
        """
        require_member(self, name, self._values)
        return self._values[name]

    def write_member(self, name: str, value: object) -> None:
        """Reject writes; rows are read-only.

        :param name: Column name.
        :param value: Ignored.
        :raises InvalidTarget: Always.
        """
        _ = value
        raise InvalidTarget(f"row is read-only (attempted to set {name!r})")

    def member_names(self) -> list[str]:
        """List column names.

        :returns: Column names in select order.
        """
        return list(self._values)


class ReaderAdapter(_OperationAdapter):
    """Forward-only cursor: columns of the current row are its members."""

    kind: ClassVar[str] = "reader"
    invocable: ClassVar[frozenset[str]] = frozenset({"read", "close"})
    _handle: RowCursor

    def read_member(self, name: str) -> object:
        """Read one column of the current row.

        :param name: Column name.
        :returns: Column value.
        :raises MemberNotFound: If ``name`` is no column; operations are reached through invoke.
        """
        is_operation: bool = name in self.invocable and name not in self._handle.columns
        if is_operation is True:
            raise MemberNotFound(name, self.kind, "an operation, call it through invoke()")
        return self._handle.get(name)

    def write_member(self, name: str, value: object) -> None:
        """Reject writes; readers are read-only.

        :param name: Column name.
        :param value: Ignored.
        :raises InvalidTarget: Always.
        """
        _ = value
        raise InvalidTarget(f"reader is read-only (attempted to set {name!r})")

    def iterate(self, shape: ResultShape) -> Iterator[object]:
        """Advance through the remaining rows.

        :param shape: ``HANDLE`` yields row adapters, ``VALUE`` yields dicts.
        :returns: Row iterator.
        """
        while self._handle.read() is True:
            snapshot: dict[str, object] = self._handle.current()
            if shape is ResultShape.HANDLE:
                yield RowAdapter(snapshot)
                continue
            yield snapshot

    def member_names(self) -> list[str]:
        """List column names followed by operations.

        Operations count as members so that ``in`` and structural adapters
        see them; they are called through invoke, never read.

        :returns: Member names.
        """
        return self._handle.columns + sorted(self.invocable)

    def describe(self) -> str:
        """Describe the cursor.

        :returns: Description text.
        """
        return f"reader columns={self._handle.columns}"

    def close(self) -> None:
        """Close the cursor."""
        self._handle.close()


class CommandAdapter(_OperationAdapter):
    """Parameterized command: named parameters are its members."""

    kind: ClassVar[str] = "command"
    invocable: ClassVar[frozenset[str]] = frozenset(
        {"add_parameter", "execute_reader", "execute_non_query", "execute_scalar", "clear_parameters"}
    )
    declared_shapes: ClassVar[dict[str, type[HandleAdapter]]] = {"execute_reader": ReaderAdapter}
    _handle: Command

    def read_member(self, name: str) -> object:
        """Read one bound parameter.

        :param name: Parameter name.
        :returns: Bound value.
        """
        return self._handle.get_parameter(name)

    def write_member(self, name: str, value: object) -> None:
        """Bind one named parameter.

        :param name: Parameter name.
        :param value: Bound value.
        """
        self._handle.set_parameter(name, value)

    def member_names(self) -> list[str]:
        """List bound parameters followed by operations.

        Operations count as members; they are called through invoke, never read.

        :returns: Member names.
        """
        return list(self._handle.parameters) + sorted(self.invocable)

    def describe(self) -> str:
        """Describe the command.

        :returns: Description text.
        """
        procedure_name: str | None = self._handle.procedure_name
        if procedure_name is not None:
            return f"command procedure={procedure_name}"
        return "command text"


class ConnectionAdapter(_OperationAdapter):
    """Database connection: creates commands and procedure calls."""

    kind: ClassVar[str] = "connection"
    invocable: ClassVar[frozenset[str]] = frozenset(
        {"open", "close", "create_command", "create_procedure", "commit", "rollback"}
    )
    readable: ClassVar[frozenset[str]] = frozenset({"is_open"})
    declared_shapes: ClassVar[dict[str, type[HandleAdapter]]] = {
        "create_command": CommandAdapter,
        "create_procedure": CommandAdapter,
    }
    _handle: DbConnection

    def read_member(self, name: str) -> object:
        """Read one connection property.

        :param name: Property name.
        :returns: Property value.
        """
        require_member(self, name, self.readable)
        return getattr(self._handle, name)

    def member_names(self) -> list[str]:
        """List properties followed by operations.

        Operations count as members; they are called through invoke, never read.

        :returns: Member names.
        """
        return sorted(self.readable) + sorted(self.invocable)

    def close(self) -> None:
        """Close the connection."""
        self._handle.close()
