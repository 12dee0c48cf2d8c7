"""Dynamic member forwarding over wrapped handles."""

import enum
import logging
from collections.abc import Iterator
from typing import ClassVar

from duckbridge.conversion import convert
from duckbridge.errors import InvalidTarget
from duckbridge.errors import MemberNotFound

logger = logging.getLogger(__name__)


class ResultShape(enum.Enum):
    """Declared shape of an invocation result."""

    VALUE = "value"
    HANDLE = "handle"


HANDLE: ResultShape = ResultShape.HANDLE
VALUE: ResultShape = ResultShape.VALUE


class HandleAdapter:
    """Dispatch table for one handle kind.

    Subclasses override only the operations their handle supports; everything
    else fails with :class:`InvalidTarget`. ``declared_shapes`` maps invocable
    member names to the adapter type that wraps their handle-shaped results.
    """

    kind: ClassVar[str] = "handle"
    declared_shapes: ClassVar[dict[str, type["HandleAdapter"]]] = {}

    def read_member(self, name: str) -> object:
        """Read one named member.

        :param name: Member name.
        :returns: Raw member value.
        :raises InvalidTarget: If this handle kind has no readable members.
        """
        raise InvalidTarget(f"{self.kind} does not support member reads (requested {name!r})")

    def read_handle(self, name: str) -> "HandleAdapter | None":
        """Read one named member as a new handle.

        :param name: Member name.
        :returns: Adapter around the member, or ``None`` when the member holds no object.
        :raises InvalidTarget: If this handle kind cannot hand out member handles.
        """
        raise InvalidTarget(f"{self.kind} cannot return member {name!r} as a handle")

    def write_member(self, name: str, value: object) -> None:
        """Write one named member.

        :param name: Member name.
        :param value: New value.
        :raises InvalidTarget: If this handle kind is read-only.
        """
        _ = value
        raise InvalidTarget(f"{self.kind} does not support member writes (requested {name!r})")

    def invoke_member(
        self,
        name: str,
        args: tuple[object, ...],
        kwargs: dict[str, object],
        shape: ResultShape,
    ) -> object:
        """Invoke one named member.

        :param name: Member name.
        :param args: Positional arguments.
        :param kwargs: Keyword arguments.
        :param shape: Declared result shape.
        :returns: Raw result, or a :class:`HandleAdapter` when ``shape`` is ``HANDLE``.
        :raises InvalidTarget: If this handle kind has no invocable members.
        """
        _ = (args, kwargs, shape)
        raise InvalidTarget(f"{self.kind} does not support invocation (requested {name!r})")

    def iterate(self, shape: ResultShape) -> Iterator[object]:
        """Iterate a collection-shaped handle.

        :param shape: Declared element shape.
        :returns: Iterator over raw values or adapters.
        :raises InvalidTarget: If this handle kind is not iterable.
        """
        _ = shape
        raise InvalidTarget(f"{self.kind} is not iterable")

    def member_names(self) -> list[str]:
        """List the names currently addressable on the handle.

        :returns: Sorted member names.
        """
        return []

    def has_member(self, name: str) -> bool:
        """Report whether ``name`` is addressable on the handle.

        :param name: Member name.
        :returns: ``True`` when the member exists.
        """
        return name in self.member_names()

    def wrap_result(self, name: str, result: object) -> "HandleAdapter":
        """Wrap a handle-shaped result using the member's declared adapter.

        :param name: Member that produced ``result``.
        :param result: Raw handle.
        :returns: Adapter around ``result``.
        :raises InvalidTarget: If ``name`` declares no handle shape.
        """
        adapter_type: type[HandleAdapter] | None = self.declared_shapes.get(name)
        if adapter_type is None:
            raise InvalidTarget(f"{self.kind} member {name!r} does not declare a handle-shaped result")
        return adapter_type(result)  # type: ignore[call-arg]

    def describe(self) -> str:
        """Return a short description used in reprs and logs.

        :returns: Description text.
        """
        return self.kind

    def close(self) -> None:
        """Release the wrapped handle where the adapter owns a reference."""


Returns = object


class Forwarder:
    """Adapter object translating named-member access into handle operations.

    ``fwd.Name`` and ``fwd["Name"]`` read, ``fwd.Name = value`` and
    ``fwd["Name"] = value`` write. Invocation is always explicit through
    :meth:`invoke`, so every access is exactly one of read, write, or call.
    Members whose names collide with forwarder methods are reachable through
    :meth:`read` and :meth:`write`.
    """

    _adapter: HandleAdapter

    def __init__(self, adapter: HandleAdapter) -> None:
        """Wrap one handle adapter.

        :param adapter: Dispatch table for the wrapped handle.
        """
        object.__setattr__(self, "_adapter", adapter)

    @property
    def adapter(self) -> HandleAdapter:
        """Return the dispatch table for the wrapped handle.

        :returns: Handle adapter.
        """
        return self._adapter

    @property
    def kind(self) -> str:
        """Return the wrapped handle kind.

        :returns: Handle kind label.
        """
        return self._adapter.kind

    def read(self, name: str, expected: object = None) -> object:
        """Read ``name`` and convert it to ``expected``.

        :param name: Member name.
        :param expected: Statically expected type, ``HANDLE`` for a new forwarder,
            or ``VALUE`` / ``None`` for the raw value.
        :returns: Converted value or a new :class:`Forwarder`.
        :raises MemberNotFound: If the member is absent.
        :raises TypeConversionError: If the value is incompatible with ``expected``.
        """
        logger.debug("read %s.%s", self._adapter.kind, name)
        if expected is ResultShape.HANDLE:
            handle: HandleAdapter | None = self._adapter.read_handle(name)
            if handle is None:
                return None
            return Forwarder(handle)
        raw: object = self._adapter.read_member(name)
        if isinstance(expected, ResultShape) is True:
            return raw
        return convert(raw, expected)

    def write(self, name: str, value: object) -> None:
        """Set or register ``name = value`` on the handle.

        :param name: Member name.
        :param value: New value.
        :raises InvalidTarget: If the handle does not support writes.
        """
        logger.debug("write %s.%s", self._adapter.kind, name)
        self._adapter.write_member(name, value)

    def invoke(self, name: str, *args: object, returns: Returns = None, **kwargs: object) -> object:
        """Invoke ``name`` with the given arguments.

        ``returns=HANDLE`` wraps the result in a new forwarder, as does
        ``returns=None`` for members the adapter declares handle-shaped.
        A ``None`` result stays ``None`` in either case.
        A type converts the raw result; ``VALUE`` or ``None`` returns it as-is.

        :param name: Invocable member name.
        :param args: Positional arguments.
        :param returns: Declared result shape or expected type.
        :param kwargs: Keyword arguments.
        :returns: Raw value, converted value, or a new :class:`Forwarder`.
        :raises MemberNotFound: If no invocable member has that name.
        """
        shape: ResultShape = self._resolve_shape(name, returns)
        logger.debug("invoke %s.%s shape=%s", self._adapter.kind, name, shape.value)
        result: object = self._adapter.invoke_member(name, args, kwargs, shape)
        if shape is ResultShape.HANDLE:
            if result is None:
                return None
            if isinstance(result, HandleAdapter) is False:
                raise InvalidTarget(f"{self._adapter.kind} member {name!r} did not produce a handle")
            return Forwarder(result)  # type: ignore[arg-type]
        if isinstance(returns, ResultShape) is True:
            return result
        return convert(result, returns)

    def iterate(self, returns: Returns = None) -> Iterator[object]:
        """Iterate a collection-shaped handle.

        :param returns: Element shape or expected element type.
        :returns: Iterator over elements.
        """
        shape: ResultShape = VALUE
        if returns is HANDLE:
            shape = HANDLE
        logger.debug("iterate %s shape=%s", self._adapter.kind, shape.value)
        for item in self._adapter.iterate(shape):
            if shape is ResultShape.HANDLE:
                yield None if item is None else Forwarder(item)  # type: ignore[arg-type]
                continue
            if isinstance(returns, ResultShape) is True:
                yield item
                continue
            yield convert(item, returns)

    def has_member(self, name: str) -> bool:
        """Report whether ``name`` is addressable on the handle.

        :param name: Member name.
        :returns: ``True`` when the member exists.
        """
        return self._adapter.has_member(name)

    def member_names(self) -> list[str]:
        """List addressable member names.

        :returns: Member names.
        """
        return self._adapter.member_names()

    def close(self) -> None:
        """Release the wrapped handle."""
        self._adapter.close()

    def _resolve_shape(self, name: str, returns: Returns) -> ResultShape:
        """Pick the result shape for one invocation.

        :param name: Member name.
        :param returns: Caller-declared result shape or type.
        :returns: Effective result shape.
        """
        if isinstance(returns, ResultShape) is True:
            return returns  # type: ignore[return-value]
        if returns is None:
            is_declared: bool = name in self._adapter.declared_shapes
            if is_declared is True:
                return HANDLE
        return VALUE

    def __getattr__(self, name: str) -> object:
        """Read a member through attribute syntax.

        :param name: Member name.
        :returns: Raw member value.
        """
        if name.startswith("_") is True:
            raise AttributeError(name)
        return self.read(name)

    def __setattr__(self, name: str, value: object) -> None:
        """Write a member through attribute syntax.

        :param name: Member name.
        :param value: New value.
        """
        if name.startswith("_") is True:
            object.__setattr__(self, name, value)
            return
        self.write(name, value)

    def __getitem__(self, name: str) -> object:
        """Read a member through subscript syntax.

        :param name: Member name.
        :returns: Raw member value.
        """
        return self.read(name)

    def __setitem__(self, name: str, value: object) -> None:
        """Write a member through subscript syntax.

        :param name: Member name.
        :param value: New value.
        """
        self.write(name, value)

    def __contains__(self, name: object) -> bool:
        """Check member presence.

        :param name: Candidate member name.
        :returns: ``True`` when the member exists.
        """
        if isinstance(name, str) is False:
            return False
        return self._adapter.has_member(name)  # type: ignore[arg-type]

    def __iter__(self) -> Iterator[object]:
        """Iterate raw elements of a collection-shaped handle.

        :returns: Element iterator.
        """
        return self.iterate()

    def __dir__(self) -> list[str]:
        """Include addressable member names in ``dir()``.

        :returns: Attribute names.
        """
        names: set[str] = set(object.__dir__(self))
        names.update(self._adapter.member_names())
        return sorted(names)

    def __enter__(self) -> "Forwarder":
        """Enter a scoped acquisition block.

        :returns: This forwarder.
        """
        return self

    def __exit__(self, exc_type: object, exc_value: object, exc_traceback: object) -> None:
        """Release the wrapped handle on every exit path.

        :param exc_type: Exception type.
        :param exc_value: Exception value.
        :param exc_traceback: Exception traceback.
        """
        self.close()

    def __reduce_ex__(self, protocol: int) -> object:
        """Block pickling; forwarders reference live handles.

        :param protocol: Pickle protocol version.
        :raises InvalidTarget: Always.
        """
        raise InvalidTarget("Forwarders reference live handles and cannot be pickled")

    def __repr__(self) -> str:
        """Return a short description of the wrapped handle.

        :returns: Representation string.
        """
        return f"<Forwarder {self._adapter.describe()}>"


def require_member(adapter: HandleAdapter, name: str, members: object) -> None:
    """Raise :class:`MemberNotFound` unless ``name`` is in ``members``.

    :param adapter: Adapter performing the lookup.
    :param name: Member name.
    :param members: Container of valid names.
    :raises MemberNotFound: If ``name`` is absent.
    """
    is_present: bool = name in members  # type: ignore[operator]
    if is_present is False:
        raise MemberNotFound(name, adapter.kind)
