"""Boundary value conversion against statically expected types."""

import types
import typing

from duckbridge.errors import TypeConversionError


def type_label(expected: object) -> str:
    """Build a readable label for an expected type.

    :param expected: Type object or typing construct.
    :returns: Display label.
    """
    if isinstance(expected, type) is True:
        return expected.__qualname__
    return repr(expected)


def union_members(expected: object) -> tuple[object, ...] | None:
    """Return the member types of a union annotation.

    :param expected: Candidate annotation.
    :returns: Union members, or ``None`` when ``expected`` is not a union.
    """
    origin: object = typing.get_origin(expected)
    if origin is typing.Union:
        return typing.get_args(expected)
    if origin is types.UnionType:
        return typing.get_args(expected)
    return None


def _accepts(value: object, expected: type) -> bool:
    """Report whether ``value`` satisfies a plain class without coercion.

    :param value: Candidate value.
    :param expected: Plain class.
    :returns: ``True`` when the value can be returned unchanged.
    """
    if expected is int and isinstance(value, bool) is True:
        return False
    return isinstance(value, expected)


def convert(value: object, expected: object = None) -> object:
    """Convert one boundary value to the statically expected type.

    Only ``int`` to ``float`` widening is performed implicitly; every other
    mismatch fails.

    :param value: Raw value produced by the handle.
    :param expected: Expected type, union annotation, or ``None`` for no check.
    :returns: Converted value.
    :raises TypeConversionError: If the value is incompatible.
    """
    if expected is None or expected is object or expected is typing.Any:
        return value

    members: tuple[object, ...] | None = union_members(expected)
    if members is not None:
        for member in members:
            if member is type(None) and value is None:
                return None
            try:
                return convert(value, member)
            except TypeConversionError:
                continue
        raise TypeConversionError(type_label(expected), type(value).__qualname__)

    origin: object = typing.get_origin(expected)
    if origin is not None:
        # Parameterized generics are checked against their runtime class only.
        expected = origin

    if isinstance(expected, type) is False:
        raise TypeConversionError(
            type_label(expected),
            type(value).__qualname__,
            "expected type is not a class",
        )

    is_static_interface: bool = (
        getattr(expected, "_is_protocol", False) is True
        and getattr(expected, "_is_runtime_protocol", False) is False
    )
    if is_static_interface is True:
        raise TypeConversionError(
            type_label(expected),
            type(value).__qualname__,
            "structural interfaces are matched through handle-shaped results",
        )

    if _accepts(value, expected) is True:
        return value

    if expected is float:
        is_plain_int: bool = isinstance(value, int) is True and isinstance(value, bool) is False
        if is_plain_int is True:
            return float(value)

    raise TypeConversionError(type_label(expected), type(value).__qualname__)
