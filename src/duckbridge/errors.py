"""Custom error types for duckbridge."""


class DuckBridgeError(Exception):
    """Base class for all duckbridge errors."""


class MemberNotFound(DuckBridgeError):
    """Raised when a member name does not exist on the wrapped handle."""

    member_name: str
    target_kind: str
    detail: str | None

    def __init__(self, member_name: str, target_kind: str, detail: str | None = None) -> None:
        """Initialize a missing-member error.

        :param member_name: Name that failed to resolve.
        :param target_kind: Kind of handle the lookup ran against.
        :param detail: Optional extra context appended to the message.
        """
        self.member_name = member_name
        self.target_kind = target_kind
        self.detail = detail
        message: str = f"{target_kind} has no member {member_name!r}"
        if detail is not None:
            message = f"{message}: {detail}"
        super().__init__(message)


class InvalidTarget(DuckBridgeError):
    """Raised when an operation is not supported by the handle kind."""


class TypeConversionError(DuckBridgeError):
    """Raised when a value cannot be converted to the expected type."""

    expected: str
    actual: str
    detail: str | None

    def __init__(self, expected: str, actual: str, detail: str | None = None) -> None:
        """Initialize a conversion error.

        :param expected: Readable name of the expected type.
        :param actual: Readable name of the value's type.
        :param detail: Optional extra context appended to the message.
        """
        self.expected = expected
        self.actual = actual
        self.detail = detail
        message: str = f"Cannot convert {actual} to {expected}"
        if detail is not None:
            message = f"{message}: {detail}"
        super().__init__(message)


class BridgeProtocolError(DuckBridgeError):
    """Raised for unexpected messages on the parent/child IPC channel."""


class BridgeRemoteError(DuckBridgeError):
    """Raised when code inside the script runtime raises an exception."""

    remote_type_name: str
    remote_message: str
    remote_traceback: str

    def __init__(
        self,
        remote_type_name: str,
        remote_message: str,
        remote_traceback: str,
    ) -> None:
        """Initialize a remote exception wrapper.

        :param remote_type_name: Original remote exception type name.
        :param remote_message: Original remote exception message.
        :param remote_traceback: Original remote traceback text.
        """
        self.remote_type_name = remote_type_name
        self.remote_message = remote_message
        self.remote_traceback = remote_traceback
        formatted: str = (
            f"Script runtime raised {remote_type_name}: {remote_message}\n"
            + f"Remote traceback:\n{remote_traceback}"
        )
        super().__init__(formatted)
