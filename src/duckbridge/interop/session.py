"""Parent-process side of a script runtime."""

import atexit
import logging
import multiprocessing
import os
import pickle
import threading
from dataclasses import dataclass
from multiprocessing.connection import Connection

from duckbridge.config import get_settings
from duckbridge.errors import BridgeProtocolError
from duckbridge.errors import BridgeRemoteError
from duckbridge.errors import InvalidTarget
from duckbridge.errors import MemberNotFound
from duckbridge.errors import TypeConversionError
from duckbridge.interop.worker import WIRE_REF_TAG
from duckbridge.interop.worker import WIRE_VALUE_TAG
from duckbridge.interop.worker import worker_entry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteRef:
    """Argument marker for an object that already lives in the script runtime."""

    object_id: int


def _optional_str(fields: dict[str, object], key: str) -> str | None:
    """Read one optional string field of an error payload.

    :param fields: Error fields.
    :param key: Field name.
    :returns: Field value or ``None``.
    """
    value: object = fields.get(key)
    if isinstance(value, str) is True:
        return value  # type: ignore[return-value]
    return None


class ScriptSession:
    """Run one script in a child interpreter and forward member requests to it."""

    _script_path: str
    _start_method: str
    _shutdown_timeout: float
    _connection: Connection | None
    _process: multiprocessing.process.BaseProcess | None
    _namespace_id: int | None
    _next_request_id: int
    _is_closed: bool
    _is_request_in_flight: bool
    _pending_releases: list[int]
    _lock: threading.RLock

    def __init__(
        self,
        script_path: str | os.PathLike[str],
        start_method: str | None = None,
        shutdown_timeout: float | None = None,
    ) -> None:
        """Initialize a session; the child starts on first use.

        :param script_path: Script executed in the child before serving requests.
        :param start_method: multiprocessing start method; defaults to settings.
        :param shutdown_timeout: Seconds to wait for the child on close; defaults to settings.
        :raises FileNotFoundError: If the script does not exist.
        """
        resolved_path: str = os.path.abspath(os.fspath(script_path))
        if os.path.isfile(resolved_path) is False:
            raise FileNotFoundError(resolved_path)
        settings = get_settings()
        self._script_path = resolved_path
        self._start_method = start_method if start_method is not None else settings.script_start_method
        if shutdown_timeout is None:
            shutdown_timeout = settings.shutdown_timeout_seconds
        self._shutdown_timeout = shutdown_timeout
        self._connection = None
        self._process = None
        self._namespace_id = None
        self._next_request_id = 1
        self._is_closed = False
        self._is_request_in_flight = False
        self._pending_releases = []
        self._lock = threading.RLock()

    @property
    def script_path(self) -> str:
        """Return the absolute script path.

        :returns: Script path.
        """
        return self._script_path

    @property
    def is_closed(self) -> bool:
        """Report whether this session has been closed.

        :returns: ``True`` when the session is closed.
        """
        with self._lock:
            return self._is_closed

    @property
    def namespace_id(self) -> int:
        """Return the object identifier of the script namespace, starting the child if needed.

        :returns: Namespace object identifier.
        """
        with self._lock:
            self.start()
            if self._namespace_id is None:
                raise BridgeProtocolError("Script runtime did not report a namespace")
            return self._namespace_id

    def start(self) -> None:
        """Start the child interpreter and load the script.

        :raises InvalidTarget: If the session was already closed.
        :raises BridgeRemoteError: If the script fails to load.
        """
        with self._lock:
            if self._is_closed is True:
                raise InvalidTarget("Script session is closed")
            if self._connection is not None:
                return

            context = multiprocessing.get_context(self._start_method)
            parent_connection, child_connection = context.Pipe(duplex=True)
            process = context.Process(
                target=worker_entry,
                args=(child_connection, self._script_path),
            )
            process.daemon = True
            process.start()
            child_connection.close()

            self._connection = parent_connection
            self._process = process

            try:
                response: dict[str, object] = self._wait_for_response(expected_request_id=0)
            except Exception:
                self.close()
                raise
            payload: object = response.get("payload")
            if isinstance(payload, dict) is False:
                self.close()
                raise BridgeProtocolError("Startup payload must be a dict")
            namespace_id: object = payload.get("namespace_id")
            if payload.get("ready") is not True or isinstance(namespace_id, int) is False:
                self.close()
                raise BridgeProtocolError("Startup payload missing ready marker")
            self._namespace_id = namespace_id  # type: ignore[assignment]
            logger.info("started script runtime pid=%s for %s", process.pid, self._script_path)
            atexit.register(self.close)

    def _require_connection(self) -> Connection:
        """Return the active IPC connection.

        :returns: Active connection.
        :raises InvalidTarget: If the session is closed.
        """
        if self._is_closed is True or self._connection is None:
            raise InvalidTarget("Script session is closed")
        return self._connection

    def _raise_child_error(self, payload: dict[str, object]) -> None:
        """Raise a local exception based on a child error payload.

        :param payload: Error payload dictionary.
        :raises MemberNotFound: For missing members.
        :raises InvalidTarget: For unsupported operations.
        :raises TypeConversionError: For values that cannot cross the boundary.
        :raises BridgeProtocolError: For protocol errors reported by the child.
        :raises BridgeRemoteError: For every other exception.
        """
        error_type: str = str(payload.get("error_type", "Exception"))
        error_message: str = str(payload.get("error_message", ""))
        stacktrace: str = str(payload.get("stacktrace", ""))
        fields_obj: object = payload.get("error_fields")
        fields: dict[str, object] = fields_obj if isinstance(fields_obj, dict) is True else {}  # type: ignore[assignment]

        if error_type == "MemberNotFound":
            raise MemberNotFound(
                str(fields.get("member_name", "")),
                str(fields.get("target_kind", "remote object")),
                _optional_str(fields, "detail"),
            )
        if error_type == "InvalidTarget":
            raise InvalidTarget(error_message)
        if error_type == "TypeConversionError":
            raise TypeConversionError(
                str(fields.get("expected", "")),
                str(fields.get("actual", "")),
                _optional_str(fields, "detail"),
            )
        if error_type == "BridgeProtocolError":
            raise BridgeProtocolError(f"Script runtime reported: {error_message}")
        raise BridgeRemoteError(error_type, error_message, stacktrace)

    def _encode_argument(self, value: object) -> tuple[str, object]:
        """Encode one call argument for the child.

        :param value: Argument value or :class:`RemoteRef`.
        :returns: Tagged wire value.
        :raises TypeConversionError: If the value cannot be pickled.
        """
        if isinstance(value, RemoteRef) is True:
            return (WIRE_REF_TAG, value.object_id)  # type: ignore[union-attr]
        try:
            payload: bytes = pickle.dumps(value, protocol=pickle.HIGHEST_PROTOCOL)
        except (pickle.PicklingError, TypeError, AttributeError, ValueError) as exc:
            raise TypeConversionError(
                "transferable value",
                type(value).__name__,
                f"arguments must be picklable or handles of this session ({exc})",
            ) from None
        return (WIRE_VALUE_TAG, payload)

    def _decode_value(self, value: object) -> object:
        """Decode a by-value result.

        :param value: Tagged wire value.
        :returns: Runtime value.
        :raises BridgeProtocolError: If the result is not a value payload.
        :raises TypeConversionError: If the payload cannot be rebuilt locally.
        """
        is_value: bool = isinstance(value, tuple) is True and len(value) == 2 and value[0] == WIRE_VALUE_TAG  # type: ignore[index]
        if is_value is False:
            raise BridgeProtocolError("Expected a value payload from the script runtime")
        payload: object = value[1]  # type: ignore[index]
        if isinstance(payload, bytes) is False:
            raise BridgeProtocolError("Encoded value payload must be bytes")
        try:
            return pickle.loads(payload)  # type: ignore[arg-type]
        except (pickle.UnpicklingError, EOFError, AttributeError, ImportError, ValueError) as exc:
            raise TypeConversionError(
                "local value",
                "remote value",
                f"payload cannot be rebuilt in this process ({exc})",
            ) from None

    def _decode_reference(self, value: object) -> int:
        """Decode a by-reference result.

        :param value: Tagged wire value.
        :returns: Remote object identifier.
        :raises BridgeProtocolError: If the result is not a reference.
        """
        is_reference: bool = isinstance(value, tuple) is True and len(value) == 2 and value[0] == WIRE_REF_TAG  # type: ignore[index]
        if is_reference is False:
            raise BridgeProtocolError("Expected a reference payload from the script runtime")
        object_id: object = value[1]  # type: ignore[index]
        if isinstance(object_id, int) is False:
            raise BridgeProtocolError("Reference object id must be an int")
        return object_id  # type: ignore[return-value]

    def _decode_result(self, value: object, by_reference: bool) -> object:
        """Decode one result according to the requested shape.

        :param value: Tagged wire value.
        :param by_reference: Whether a reference was requested.
        :returns: Runtime value, remote object identifier, or ``None`` for a ``None`` result.
        """
        if by_reference is True:
            is_value: bool = isinstance(value, tuple) is True and len(value) == 2 and value[0] == WIRE_VALUE_TAG  # type: ignore[arg-type, index]
            if is_value is True:
                return self._decode_value(value)
            return self._decode_reference(value)
        return self._decode_value(value)

    def _wait_for_response(self, expected_request_id: int) -> dict[str, object]:
        """Wait for one correlated child response.

        :param expected_request_id: Request id this side is waiting for.
        :returns: Response dictionary.
        :raises BridgeProtocolError: If the response shape is invalid.
        """
        connection: Connection = self._require_connection()
        try:
            incoming: object = connection.recv()
        except (EOFError, BrokenPipeError, OSError) as exc:
            raise BridgeProtocolError("Failed to receive message from script runtime") from exc

        if isinstance(incoming, dict) is False:
            raise BridgeProtocolError("Script runtime message must be a dict")
        message: dict[str, object] = incoming  # type: ignore[assignment]

        request_id_obj: object = message.get("request_id")
        if request_id_obj != expected_request_id:
            raise BridgeProtocolError(
                f"Unexpected response request_id {request_id_obj!r}; expected {expected_request_id}"
            )

        status: object = message.get("status")
        if status == "ok":
            return message
        if status != "error":
            raise BridgeProtocolError(f"Unknown script runtime response status: {status!r}")

        payload_obj: object = message.get("payload")
        if isinstance(payload_obj, dict) is False:
            raise BridgeProtocolError("Error response payload must be a dict")
        self._raise_child_error(payload_obj)  # type: ignore[arg-type]
        raise BridgeProtocolError("Unreachable script runtime error state")

    def _send_request(self, action: str, payload: dict[str, object]) -> dict[str, object]:
        """Send one request and return the response payload.

        :param action: Action name.
        :param payload: Action payload.
        :returns: Response payload dictionary.
        """
        with self._lock:
            self.start()
            self._flush_pending_releases()
            return self._exchange(action, payload)

    def _exchange(self, action: str, payload: dict[str, object]) -> dict[str, object]:
        """Send one request and wait for its correlated response.

        :param action: Action name.
        :param payload: Action payload.
        :returns: Response payload dictionary.
        """
        connection: Connection = self._require_connection()

        request_id: int = self._next_request_id
        self._next_request_id += 1

        request: dict[str, object] = {
            "request_id": request_id,
            "action": action,
        }
        request.update(payload)

        self._is_request_in_flight = True
        try:
            try:
                connection.send(request)
            except (BrokenPipeError, EOFError, OSError) as exc:
                raise BridgeProtocolError("Failed to send request to script runtime") from exc
            response: dict[str, object] = self._wait_for_response(expected_request_id=request_id)
        finally:
            self._is_request_in_flight = False
        response_payload: object = response.get("payload")
        if isinstance(response_payload, dict) is False:
            raise BridgeProtocolError(f"{action} payload must be a dict")
        return response_payload  # type: ignore[return-value]

    def _flush_pending_releases(self) -> None:
        """Send releases that were deferred while another request was in flight."""
        while len(self._pending_releases) > 0:
            object_id: int = self._pending_releases.pop()
            try:
                self._exchange("release_object", {"object_id": object_id})
            except InvalidTarget:
                continue

    def get_attr(self, object_id: int, attr_name: str, by_reference: bool = False) -> object:
        """Read an attribute of a remote object.

        :param object_id: Remote object identifier.
        :param attr_name: Attribute name.
        :param by_reference: Return a remote object identifier instead of a copy.
        :returns: Attribute value or remote object identifier.
        """
        payload: dict[str, object] = self._send_request(
            "get_attr",
            {
                "object_id": object_id,
                "attr_name": attr_name,
                "by_reference": by_reference,
            },
        )
        return self._decode_result(payload.get("value"), by_reference)

    def resolve(self, name: str) -> int | None:
        """Resolve a global of the loaded script to a remote object identifier.

        :param name: Global name.
        :returns: Remote object identifier, or ``None`` when the global is ``None``.
        :raises MemberNotFound: If the script defines no such global.
        """
        return self.get_attr(self.namespace_id, name, by_reference=True)  # type: ignore[return-value]

    def set_attr(self, object_id: int, attr_name: str, value: object) -> None:
        """Set an attribute of a remote object.

        :param object_id: Remote object identifier.
        :param attr_name: Attribute name.
        :param value: New value or :class:`RemoteRef`.
        """
        self._send_request(
            "set_attr",
            {
                "object_id": object_id,
                "attr_name": attr_name,
                "value": self._encode_argument(value),
            },
        )

    def call_attr(
        self,
        object_id: int,
        attr_name: str,
        args: list[object],
        kwargs: dict[str, object],
        by_reference: bool = False,
    ) -> object:
        """Call a method of a remote object.

        :param object_id: Remote object identifier.
        :param attr_name: Method name.
        :param args: Positional arguments.
        :param kwargs: Keyword arguments.
        :param by_reference: Return a remote object identifier instead of a copy.
        :returns: Call result or remote object identifier.
        """
        encoded_args: list[object] = [self._encode_argument(item) for item in args]
        encoded_kwargs: dict[str, object] = {}
        for key, value in kwargs.items():
            encoded_kwargs[key] = self._encode_argument(value)
        payload: dict[str, object] = self._send_request(
            "call_attr",
            {
                "object_id": object_id,
                "attr_name": attr_name,
                "args": encoded_args,
                "kwargs": encoded_kwargs,
                "by_reference": by_reference,
            },
        )
        return self._decode_result(payload.get("value"), by_reference)

    def open_iterator(self, object_id: int) -> int:
        """Create a remote iterator over a collection-shaped object.

        :param object_id: Remote object identifier.
        :returns: Remote iterator identifier.
        """
        payload: dict[str, object] = self._send_request("iterate", {"object_id": object_id})
        iterator_id: object = payload.get("iterator_id")
        if isinstance(iterator_id, int) is False:
            raise BridgeProtocolError("iterate payload missing int iterator_id")
        return iterator_id  # type: ignore[return-value]

    def next_item(self, iterator_id: int, by_reference: bool = False) -> tuple[bool, object]:
        """Advance a remote iterator.

        :param iterator_id: Remote iterator identifier.
        :param by_reference: Return a remote object identifier instead of a copy.
        :returns: Tuple of ``(done, item)``; ``item`` is ``None`` when done.
        """
        payload: dict[str, object] = self._send_request(
            "next",
            {
                "iterator_id": iterator_id,
                "by_reference": by_reference,
            },
        )
        if payload.get("done") is True:
            return True, None
        return False, self._decode_result(payload.get("value"), by_reference)

    def describe(self, object_id: int) -> list[str]:
        """List the public member names of a remote object.

        :param object_id: Remote object identifier.
        :returns: Member names.
        """
        payload: dict[str, object] = self._send_request("describe", {"object_id": object_id})
        names: object = payload.get("names")
        if isinstance(names, list) is False:
            raise BridgeProtocolError("describe payload missing names list")
        return [str(name) for name in names]  # type: ignore[union-attr]

    def release_object(self, object_id: int) -> None:
        """Release a remote object.

        :param object_id: Remote object identifier.
        """
        self._send_request("release_object", {"object_id": object_id})

    def release_object_safely(self, object_id: int) -> None:
        """Best-effort remote object release used by finalizers.

        :param object_id: Remote object identifier.
        """
        with self._lock:
            if self._is_closed is True or self._connection is None:
                return
            if self._is_request_in_flight is True:
                # A finalizer fired mid-request on this thread; send it with the next request.
                self._pending_releases.append(object_id)
                return
            try:
                self.release_object(object_id)
            except (BridgeProtocolError, InvalidTarget, OSError):
                return

    def close(self) -> None:
        """Shut down the child interpreter; a no-op when already closed."""
        with self._lock:
            if self._is_closed is True:
                return
            self._is_closed = True
            connection: Connection | None = self._connection
            process: multiprocessing.process.BaseProcess | None = self._process

            if connection is not None:
                try:
                    connection.send({"request_id": self._next_request_id, "action": "shutdown"})
                    self._next_request_id += 1
                except (BrokenPipeError, EOFError, OSError):
                    pass
                try:
                    connection.close()
                except OSError:
                    pass

            if process is not None:
                process.join(timeout=self._shutdown_timeout)
                if process.is_alive() is True:
                    logger.warning("script runtime pid=%s did not exit; terminating", process.pid)
                    process.terminate()
                    process.join(timeout=self._shutdown_timeout)
                logger.info("closed script runtime for %s", self._script_path)

            self._connection = None
            self._process = None
            self._namespace_id = None
            self._pending_releases.clear()
        atexit.unregister(self.close)

    def __enter__(self) -> "ScriptSession":
        """Start the session for a scoped block.

        :returns: This session.
        """
        self.start()
        return self

    def __exit__(self, exc_type: object, exc_value: object, exc_traceback: object) -> None:
        """Close the session on every exit path.

        :param exc_type: Exception type.
        :param exc_value: Exception value.
        :param exc_traceback: Exception traceback.
        """
        self.close()
