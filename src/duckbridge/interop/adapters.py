"""Member dispatch tables for objects living in a script runtime."""

import weakref
from collections.abc import Iterator
from typing import ClassVar

from duckbridge.errors import InvalidTarget
from duckbridge.forwarder import Forwarder
from duckbridge.forwarder import HandleAdapter
from duckbridge.forwarder import ResultShape
from duckbridge.interop.session import RemoteRef
from duckbridge.interop.session import ScriptSession


def _finalize_remote_object(session_ref: "weakref.ReferenceType[ScriptSession]", object_id: int) -> None:
    """Release one remote object when its adapter is collected.

    :param session_ref: Weak reference to the owning session.
    :param object_id: Remote object identifier.
    """
    session: ScriptSession | None = session_ref()
    if session is None:
        return
    session.release_object_safely(object_id)


def unwrap_forwarder(value: object) -> Forwarder | None:
    """Return the forwarder behind ``value`` when it wraps one.

    :param value: Candidate argument.
    :returns: Forwarder, or ``None`` for plain values.
    """
    if isinstance(value, Forwarder) is True:
        return value  # type: ignore[return-value]
    wrapped: object = getattr(type(value), "__duckbridge_forwarder__", None)
    if wrapped is None:
        return None
    forwarder: object = object.__getattribute__(value, "_forwarder")
    if isinstance(forwarder, Forwarder) is True:
        return forwarder  # type: ignore[return-value]
    return None


class RemoteObjectAdapter(HandleAdapter):
    """One object reference inside a script runtime."""

    kind: ClassVar[str] = "remote object"
    _session: ScriptSession
    _object_id: int
    _finalizer: weakref.finalize | None

    def __init__(self, session: ScriptSession, object_id: int, owned: bool = True) -> None:
        """Wrap one remote object.

        :param session: Owning session.
        :param object_id: Remote object identifier.
        :param owned: Release the remote object when this adapter goes away.
        """
        self._session = session
        self._object_id = object_id
        self._finalizer = None
        if owned is True:
            session_ref: "weakref.ReferenceType[ScriptSession]" = weakref.ref(session)
            self._finalizer = weakref.finalize(self, _finalize_remote_object, session_ref, object_id)

    @property
    def session(self) -> ScriptSession:
        """Return the owning session.

        :returns: Script session.
        """
        return self._session

    @property
    def object_id(self) -> int:
        """Return the remote object identifier.

        :returns: Remote object identifier.
        """
        return self._object_id

    def _to_wire(self, value: object) -> object:
        """Turn forwarders of this session into remote references.

        :param value: Argument value.
        :returns: Value or :class:`RemoteRef`.
        :raises InvalidTarget: If the forwarder wraps a foreign handle.
        """
        forwarder: Forwarder | None = unwrap_forwarder(value)
        if forwarder is None:
            return value
        adapter: HandleAdapter = forwarder.adapter
        is_remote: bool = isinstance(adapter, RemoteObjectAdapter)
        if is_remote is False or adapter.session is not self._session:  # type: ignore[attr-defined]
            raise InvalidTarget("Only handles from the same script session can be passed as arguments")
        return RemoteRef(adapter.object_id)  # type: ignore[attr-defined]

    def read_member(self, name: str) -> object:
        """Read one attribute by value.

        :param name: Attribute name.
        :returns: Attribute value.
        """
        return self._session.get_attr(self._object_id, name)

    def read_handle(self, name: str) -> HandleAdapter | None:
        """Read one attribute as a remote object reference.

        :param name: Attribute name.
        :returns: Adapter around the attribute's object, or ``None`` when the attribute is ``None``.
        """
        object_id: int | None = self._session.get_attr(self._object_id, name, by_reference=True)  # type: ignore[assignment]
        if object_id is None:
            return None
        return RemoteObjectAdapter(self._session, object_id)

    def write_member(self, name: str, value: object) -> None:
        """Set one attribute.

        :param name: Attribute name.
        :param value: New value or forwarder of this session.
        """
        self._session.set_attr(self._object_id, name, self._to_wire(value))

    def invoke_member(
        self,
        name: str,
        args: tuple[object, ...],
        kwargs: dict[str, object],
        shape: ResultShape,
    ) -> object:
        """Call one method.

        :param name: Method name.
        :param args: Positional arguments.
        :param kwargs: Keyword arguments.
        :param shape: ``HANDLE`` returns the result by reference.
        :returns: Result value or adapter.
        """
        by_reference: bool = shape is ResultShape.HANDLE
        wire_args: list[object] = [self._to_wire(item) for item in args]
        wire_kwargs: dict[str, object] = {key: self._to_wire(item) for key, item in kwargs.items()}
        result: object = self._session.call_attr(
            self._object_id,
            name,
            wire_args,
            wire_kwargs,
            by_reference=by_reference,
        )
        if by_reference is True and result is not None:
            return RemoteObjectAdapter(self._session, result)  # type: ignore[arg-type]
        return result

    def iterate(self, shape: ResultShape) -> Iterator[object]:
        """Iterate the remote object.

        :param shape: ``HANDLE`` yields adapters, ``VALUE`` yields copies.
        :returns: Element iterator.
        """
        by_reference: bool = shape is ResultShape.HANDLE
        iterator_id: int = self._session.open_iterator(self._object_id)
        try:
            while True:
                done, item = self._session.next_item(iterator_id, by_reference=by_reference)
                if done is True:
                    return
                if by_reference is True and item is not None:
                    yield RemoteObjectAdapter(self._session, item)  # type: ignore[arg-type]
                    continue
                yield item
        finally:
            self._session.release_object_safely(iterator_id)

    def member_names(self) -> list[str]:
        """List public member names.

        :returns: Member names.
        """
        return self._session.describe(self._object_id)

    def describe(self) -> str:
        """Describe the reference.

        :returns: Description text.
        """
        return f"{self.kind} #{self._object_id}"

    def close(self) -> None:
        """Release the remote object now."""
        finalizer: weakref.finalize | None = self._finalizer
        if finalizer is not None and finalizer.alive is True:
            finalizer()


class ScriptContextAdapter(RemoteObjectAdapter):
    """The global namespace of a loaded script."""

    kind: ClassVar[str] = "script"

    def __init__(self, session: ScriptSession) -> None:
        """Wrap the namespace of ``session``'s script.

        :param session: Script session; started if it is not running yet.
        """
        super().__init__(session, session.namespace_id, owned=False)

    def read_handle(self, name: str) -> HandleAdapter | None:
        """Resolve one named object of the script.

        :param name: Global name.
        :returns: Adapter around the resolved object, or ``None`` when the global is ``None``.
        """
        object_id: int | None = self._session.resolve(name)
        if object_id is None:
            return None
        return RemoteObjectAdapter(self._session, object_id)

    def describe(self) -> str:
        """Describe the script context.

        :returns: Description text.
        """
        return f"script {self._session.script_path}"

    def close(self) -> None:
        """Shut down the script runtime."""
        self._session.close()
