"""Child interpreter that hosts one script and serves member requests."""

import builtins
import inspect
import pickle
import traceback
from collections.abc import Iterator
from multiprocessing.connection import Connection

from duckbridge.errors import BridgeProtocolError
from duckbridge.errors import InvalidTarget
from duckbridge.errors import MemberNotFound
from duckbridge.errors import TypeConversionError

WIRE_VALUE_TAG: str = "__duckbridge_value_v1__"
WIRE_REF_TAG: str = "__duckbridge_ref_v1__"
SCRIPT_RUN_NAME: str = "__duckbridge_script__"
_ABSENT: object = object()


class ObjectRegistry:
    """Store worker-side objects under stable integer identifiers.

    Storing the same object again returns its existing identifier and adds one
    reference; the object is dropped once every reference is released.
    """

    _by_object_id: dict[int, object]
    _by_identity: dict[int, int]
    _reference_counts: dict[int, int]
    _pinned_object_ids: set[int]
    _next_object_id: int

    def __init__(self) -> None:
        """Initialize an empty object registry."""
        self._by_object_id = {}
        self._by_identity = {}
        self._reference_counts = {}
        self._pinned_object_ids = set()
        self._next_object_id = 1

    def store(self, value: object, pinned: bool = False) -> int:
        """Store a value and return its object identifier.

        :param value: Object to store.
        :param pinned: Whether the object should survive release requests.
        :returns: Integer identifier for the object.
        """
        identity: int = id(value)
        existing: int | None = self._by_identity.get(identity)
        if existing is not None:
            self._reference_counts[existing] += 1
            if pinned is True:
                self._pinned_object_ids.add(existing)
            return existing

        object_id: int = self._next_object_id
        self._next_object_id += 1
        self._by_object_id[object_id] = value
        self._by_identity[identity] = object_id
        self._reference_counts[object_id] = 1
        if pinned is True:
            self._pinned_object_ids.add(object_id)
        return object_id

    def get(self, object_id: int) -> object:
        """Get a stored object.

        :param object_id: Identifier of the object.
        :returns: Stored object.
        :raises InvalidTarget: If the identifier is unknown or released.
        """
        exists: bool = object_id in self._by_object_id
        if exists is False:
            raise InvalidTarget(f"Unknown or released remote object id: {object_id}")
        return self._by_object_id[object_id]

    def release(self, object_id: int) -> None:
        """Drop one reference to an object unless it is pinned.

        :param object_id: Identifier of the object.
        """
        is_pinned: bool = object_id in self._pinned_object_ids
        if is_pinned is True:
            return
        exists: bool = object_id in self._by_object_id
        if exists is False:
            return
        remaining: int = self._reference_counts[object_id] - 1
        if remaining > 0:
            self._reference_counts[object_id] = remaining
            return
        value: object = self._by_object_id.pop(object_id)
        self._reference_counts.pop(object_id, None)
        self._by_identity.pop(id(value), None)

    def __len__(self) -> int:
        """Return the number of live objects.

        :returns: Live object count.
        """
        return len(self._by_object_id)

    def clear(self) -> None:
        """Clear all stored objects."""
        self._by_object_id.clear()
        self._by_identity.clear()
        self._reference_counts.clear()
        self._pinned_object_ids.clear()


class ScriptNamespace:
    """Attribute view over a script's global namespace."""

    __slots__ = ("_globals",)

    def __init__(self, script_globals: dict[str, object]) -> None:
        """Wrap one globals dictionary.

        :param script_globals: Globals produced by running the script.
        """
        object.__setattr__(self, "_globals", script_globals)

    def __getattr__(self, name: str) -> object:
        """Resolve one global by name.

        :param name: Global name.
        :returns: Global value.
        :raises AttributeError: If the script defines no such global.
        """
        script_globals: dict[str, object] = object.__getattribute__(self, "_globals")
        try:
            return script_globals[name]
        except KeyError:
            raise AttributeError(name) from None

    def __setattr__(self, name: str, value: object) -> None:
        """Bind one global.

        :param name: Global name.
        :param value: New value.
        """
        script_globals: dict[str, object] = object.__getattribute__(self, "_globals")
        script_globals[name] = value

    def __dir__(self) -> list[str]:
        """List the script's globals.

        :returns: Global names.
        """
        script_globals: dict[str, object] = object.__getattribute__(self, "_globals")
        return sorted(script_globals)


def _send_ok(connection: Connection, request_id: int, payload: dict[str, object]) -> None:
    """Send a success response.

    :param connection: IPC connection.
    :param request_id: Request identifier.
    :param payload: Response payload.
    """
    message: dict[str, object] = {
        "request_id": request_id,
        "status": "ok",
        "payload": payload,
    }
    try:
        connection.send(message)
    except (BrokenPipeError, EOFError, OSError):
        return


def _send_error(connection: Connection, request_id: int, exc: BaseException, stacktrace: str) -> None:
    """Send an error response describing ``exc``.

    :param connection: IPC connection.
    :param request_id: Request identifier.
    :param exc: Exception raised while serving the request.
    :param stacktrace: Formatted stacktrace.
    """
    fields: dict[str, object] = {}
    if isinstance(exc, MemberNotFound) is True:
        fields = {"member_name": exc.member_name, "target_kind": exc.target_kind, "detail": exc.detail}
    if isinstance(exc, TypeConversionError) is True:
        fields = {"expected": exc.expected, "actual": exc.actual, "detail": exc.detail}
    message: dict[str, object] = {
        "request_id": request_id,
        "status": "error",
        "payload": {
            "error_type": type(exc).__name__,
            "error_message": str(exc),
            "error_fields": fields,
            "stacktrace": stacktrace,
        },
    }
    try:
        connection.send(message)
    except (BrokenPipeError, EOFError, OSError):
        return


def _require_request_id(message: dict[str, object]) -> int:
    """Read the integer request identifier of one message.

    :param message: Incoming message.
    :returns: Request identifier.
    :raises BridgeProtocolError: If the field is missing or not an int.
    """
    request_id: object = message.get("request_id")
    if isinstance(request_id, int) is False:
        raise BridgeProtocolError("Request is missing int request_id")
    return request_id


def _require_field(message: dict[str, object], key: str, field_type: type) -> object:
    """Read one typed field of a request.

    :param message: Incoming message.
    :param key: Field name.
    :param field_type: Required field type.
    :returns: Field value.
    :raises BridgeProtocolError: If the field is missing or mistyped.
    """
    value: object = message.get(key)
    if isinstance(value, field_type) is False:
        raise BridgeProtocolError(f"Request field {key!r} must be {field_type.__name__}")
    return value


def _load_script(script_path: str) -> dict[str, object]:
    """Execute a script and return the globals its functions share.

    :param script_path: Path of the script.
    :returns: Live globals dictionary of the script.
    """
    with open(script_path, "rb") as script_file:
        source: bytes = script_file.read()
    code = compile(source, script_path, "exec")
    script_globals: dict[str, object] = {
        "__name__": SCRIPT_RUN_NAME,
        "__file__": script_path,
        "__builtins__": builtins,
    }
    exec(code, script_globals)
    return script_globals


def _lookup(target: object, name: str, target_kind: str) -> object:
    """Resolve one attribute, mapping absence onto :class:`MemberNotFound`.

    :param target: Object to inspect.
    :param name: Attribute name.
    :param target_kind: Kind label used in the error.
    :returns: Attribute value.
    :raises MemberNotFound: If the attribute does not exist.
    :raises AttributeError: If the attribute exists but its getter fails.
    """
    try:
        return getattr(target, name)
    except AttributeError:
        static: object = inspect.getattr_static(target, name, _ABSENT)
        # An unset slot is as absent as an unknown name.
        if static is not _ABSENT and inspect.ismemberdescriptor(static) is False:
            raise
    raise MemberNotFound(name, target_kind)


class ScriptRuntime:
    """Own worker-side protocol handling and object dispatch."""

    _connection: Connection
    _script_path: str
    _registry: ObjectRegistry
    _namespace_id: int

    def __init__(self, connection: Connection, script_path: str) -> None:
        """Initialize worker runtime state.

        :param connection: Bidirectional IPC connection to the parent process.
        :param script_path: Path of the script to run before serving requests.
        """
        self._connection = connection
        self._script_path = script_path
        self._registry = ObjectRegistry()
        self._namespace_id = 0

    def run(self) -> None:
        """Load the script and run the message loop until shutdown."""
        try:
            script_globals: dict[str, object] = _load_script(self._script_path)
            namespace: ScriptNamespace = ScriptNamespace(script_globals)
            self._namespace_id = self._registry.store(namespace, pinned=True)
        except Exception as exc:
            _send_error(self._connection, 0, exc, traceback.format_exc())
            self._connection.close()
            return
        _send_ok(self._connection, 0, {"ready": True, "namespace_id": self._namespace_id})

        should_exit: bool = False
        while should_exit is False:
            try:
                incoming: object = self._connection.recv()
            except EOFError:
                break

            if isinstance(incoming, dict) is False:
                _send_error(
                    self._connection,
                    -1,
                    BridgeProtocolError("Incoming message must be a dict"),
                    "",
                )
                continue
            should_exit = self._handle_incoming_request(incoming)

        self._registry.clear()
        self._connection.close()

    def _handle_incoming_request(self, request_message: dict[str, object]) -> bool:
        """Handle one request and emit a correlated response.

        :param request_message: Request dictionary.
        :returns: ``True`` when loop shutdown is requested.
        """
        try:
            request_id: int = _require_request_id(request_message)
            payload: dict[str, object] = self._execute_request(request_message)
            _send_ok(self._connection, request_id, payload)
            return payload.get("shutdown") is True
        except Exception as exc:
            request_id_fallback: int = -1
            request_id_obj: object = request_message.get("request_id")
            if isinstance(request_id_obj, int) is True:
                request_id_fallback = request_id_obj
            _send_error(self._connection, request_id_fallback, exc, traceback.format_exc())
            return False

    def _kind_of(self, object_id: int) -> str:
        """Return the kind label used in errors for one object.

        :param object_id: Registry identifier.
        :returns: Kind label.
        """
        if object_id == self._namespace_id:
            return "script"
        target: object = self._registry.get(object_id)
        return f"remote {type(target).__name__}"

    def _decode_from_parent(self, value: object) -> object:
        """Decode one wire value received from the parent.

        :param value: Tagged wire value.
        :returns: Runtime value.
        :raises BridgeProtocolError: If the payload shape is invalid.
        """
        is_tagged: bool = isinstance(value, tuple) is True and len(value) == 2
        if is_tagged is False:
            raise BridgeProtocolError("Argument must be a tagged wire value")
        tag: object = value[0]  # type: ignore[index]
        payload: object = value[1]  # type: ignore[index]
        if tag == WIRE_REF_TAG:
            if isinstance(payload, int) is False:
                raise BridgeProtocolError("Reference object id must be an int")
            return self._registry.get(payload)
        if tag == WIRE_VALUE_TAG:
            if isinstance(payload, bytes) is False:
                raise BridgeProtocolError("Encoded value payload must be bytes")
            return pickle.loads(payload)
        raise BridgeProtocolError(f"Unknown wire tag: {tag!r}")

    def _decode_args_from_parent(self, message: dict[str, object]) -> tuple[list[object], dict[str, object]]:
        """Decode call arguments.

        :param message: Request message.
        :returns: Tuple of ``(args, kwargs)``.
        """
        raw_args: object = _require_field(message, "args", list)
        raw_kwargs: object = _require_field(message, "kwargs", dict)
        args: list[object] = [self._decode_from_parent(item) for item in raw_args]  # type: ignore[union-attr]
        kwargs: dict[str, object] = {}
        for key, item in raw_kwargs.items():  # type: ignore[union-attr]
            kwargs[key] = self._decode_from_parent(item)
        return args, kwargs

    def _encode_for_parent(self, value: object, by_reference: bool) -> tuple[str, object]:
        """Encode one result for the parent.

        :param value: Runtime value.
        :param by_reference: Send a handle instead of a copy; ``None`` is always sent as a value.
        :returns: Tagged wire value.
        :raises TypeConversionError: If a by-value result cannot be pickled.
        """
        if by_reference is True and value is not None:
            object_id: int = self._registry.store(value)
            return (WIRE_REF_TAG, object_id)
        try:
            payload: bytes = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        except (pickle.PicklingError, TypeError, AttributeError, ValueError) as exc:
            raise TypeConversionError(
                "transferable value",
                type(value).__name__,
                f"request a handle-shaped result instead ({exc})",
            ) from None
        return (WIRE_VALUE_TAG, payload)

    def _execute_request(self, message: dict[str, object]) -> dict[str, object]:
        """Execute one request from the parent.

        :param message: Request message.
        :returns: Response payload.
        :raises BridgeProtocolError: If request fields are invalid.
        """
        action: object = _require_field(message, "action", str)

        if action == "get_attr":
            object_id: int = _require_field(message, "object_id", int)  # type: ignore[assignment]
            attr_name: str = _require_field(message, "attr_name", str)  # type: ignore[assignment]
            by_reference: bool = _require_field(message, "by_reference", bool)  # type: ignore[assignment]
            target: object = self._registry.get(object_id)
            attr_value: object = _lookup(target, attr_name, self._kind_of(object_id))
            return {"value": self._encode_for_parent(attr_value, by_reference)}

        if action == "set_attr":
            object_id = _require_field(message, "object_id", int)  # type: ignore[assignment]
            attr_name = _require_field(message, "attr_name", str)  # type: ignore[assignment]
            value: object = self._decode_from_parent(message.get("value"))
            target = self._registry.get(object_id)
            try:
                setattr(target, attr_name, value)
            except (AttributeError, TypeError) as exc:
                raise InvalidTarget(
                    f"{self._kind_of(object_id)} does not accept writes to {attr_name!r}: {exc}"
                ) from None
            return {}

        if action == "call_attr":
            object_id = _require_field(message, "object_id", int)  # type: ignore[assignment]
            attr_name = _require_field(message, "attr_name", str)  # type: ignore[assignment]
            by_reference = _require_field(message, "by_reference", bool)  # type: ignore[assignment]
            args, kwargs = self._decode_args_from_parent(message)
            target = self._registry.get(object_id)
            kind: str = self._kind_of(object_id)
            callable_obj: object = _lookup(target, attr_name, kind)
            if callable(callable_obj) is False:
                raise MemberNotFound(attr_name, kind, "member is not invocable")
            result: object = callable_obj(*args, **kwargs)  # type: ignore[operator]
            return {"value": self._encode_for_parent(result, by_reference)}

        if action == "iterate":
            object_id = _require_field(message, "object_id", int)  # type: ignore[assignment]
            target = self._registry.get(object_id)
            try:
                iterator: Iterator[object] = iter(target)  # type: ignore[call-overload]
            except TypeError:
                raise InvalidTarget(f"{self._kind_of(object_id)} is not iterable") from None
            return {"iterator_id": self._registry.store(iterator)}

        if action == "next":
            iterator_id: int = _require_field(message, "iterator_id", int)  # type: ignore[assignment]
            by_reference = _require_field(message, "by_reference", bool)  # type: ignore[assignment]
            iterator = self._registry.get(iterator_id)  # type: ignore[assignment]
            try:
                item: object = next(iterator)
            except StopIteration:
                return {"done": True}
            return {"done": False, "value": self._encode_for_parent(item, by_reference)}

        if action == "describe":
            object_id = _require_field(message, "object_id", int)  # type: ignore[assignment]
            target = self._registry.get(object_id)
            names: list[str] = [name for name in dir(target) if name.startswith("_") is False]
            return {"names": names}

        if action == "release_object":
            object_id = _require_field(message, "object_id", int)  # type: ignore[assignment]
            self._registry.release(object_id)
            return {}

        if action == "shutdown":
            return {"shutdown": True}

        raise BridgeProtocolError(f"Unsupported action: {action}")


def worker_entry(connection: Connection, script_path: str) -> None:
    """Run the child interpreter message loop.

    :param connection: IPC connection from the parent process.
    :param script_path: Script loaded into the child's namespace.
    """
    runtime: ScriptRuntime = ScriptRuntime(connection, script_path)
    runtime.run()
