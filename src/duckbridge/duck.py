"""Structural adapters: implement a declared interface by forwarding members by name.

An interface is any class (usually a ``typing.Protocol``) whose public
methods, properties and annotated attributes describe what a handle must
offer. :func:`duck_adapter` checks the handle once, up front, and returns an
object that implements the interface by forwarding every member by name.

Return annotations decide how results come back:

* another ``Protocol`` -> the result stays a handle and is adapted in turn
* ``list[Proto]`` / ``Iterator[Proto]`` / ``Iterable[Proto]`` -> each element is
  adapted
* anything else -> the value is converted to the annotation

An interface that declares ``__iter__`` gets an ``__iter__`` that walks the
handle, adapting or converting each element the same way.
"""

import collections.abc
import inspect
import threading
import typing
from collections.abc import Callable
from collections.abc import Iterator
from typing import ClassVar

from duckbridge.conversion import union_members
from duckbridge.errors import MemberNotFound
from duckbridge.forwarder import HANDLE
from duckbridge.forwarder import Forwarder

_ADAPTER_CLASS_LOCK: threading.Lock = threading.Lock()
_ADAPTER_CLASSES: dict[type, type["DuckAdapter"]] = {}
_SKIPPED_BASES: tuple[object, ...] = (object, typing.Protocol, typing.Generic)
_ITERATOR_ORIGINS: tuple[object, ...] = (collections.abc.Iterator, collections.abc.Iterable)

MemberPlan = tuple[str, str, object]


def is_interface(candidate: object) -> bool:
    """Report whether ``candidate`` is a structural interface.

    :param candidate: Annotation or class.
    :returns: ``True`` for ``typing.Protocol`` classes.
    """
    if isinstance(candidate, type) is False:
        return False
    return getattr(candidate, "_is_protocol", False) is True


def _result_plan(hint: object) -> tuple[str, object]:
    """Decide how a member's result is returned.

    :param hint: Resolved annotation, or ``None`` when unannotated.
    :returns: Tuple of ``(mode, type)`` where mode is ``value``, ``handle``, ``list`` or ``iter``.
        ``Optional[Interface]`` is handle-shaped; a ``None`` result passes through.
    """
    if is_interface(hint) is True:
        return "handle", hint
    members: tuple[object, ...] | None = union_members(hint)
    if members is not None:
        present: list[object] = [member for member in members if member is not type(None)]
        is_optional_interface: bool = len(present) == 1 and len(members) == 2 and is_interface(present[0]) is True
        if is_optional_interface is True:
            return "handle", present[0]
    origin: object = typing.get_origin(hint)
    args: tuple[object, ...] = typing.get_args(hint)
    has_interface_element: bool = len(args) == 1 and is_interface(args[0]) is True
    if has_interface_element is True:
        if origin is list:
            return "list", args[0]
        if origin in _ITERATOR_ORIGINS:
            return "iter", args[0]
    return "value", hint


def _interface_members(interface: type) -> dict[str, MemberPlan]:
    """Collect the public members an interface requires.

    :param interface: Interface class.
    :returns: Mapping of ``name -> (role, mode, type)``; role is ``method`` or ``attribute``.
    """
    members: dict[str, MemberPlan] = {}
    attribute_hints: dict[str, object] = typing.get_type_hints(interface)
    for klass in reversed(interface.__mro__):
        if klass in _SKIPPED_BASES:
            continue
        for name in inspect.get_annotations(klass):
            if name.startswith("_") is True:
                continue
            mode, result_type = _result_plan(attribute_hints.get(name))
            members[name] = ("attribute", mode, result_type)
        for name, value in vars(klass).items():
            if name.startswith("_") is True:
                continue
            if isinstance(value, property) is True:
                getter_hints: dict[str, object] = typing.get_type_hints(value.fget) if value.fget is not None else {}
                mode, result_type = _result_plan(getter_hints.get("return"))
                members[name] = ("attribute", mode, result_type)
                continue
            if inspect.isfunction(value) is True:
                method_hints: dict[str, object] = typing.get_type_hints(value)
                mode, result_type = _result_plan(method_hints.get("return"))
                members[name] = ("method", mode, result_type)
    return members


def _adapt_result(forwarder: Forwarder | None, mode: str, element_type: object) -> object:
    """Adapt a handle-shaped result according to its plan.

    :param forwarder: Forwarder returned by the read or invocation, or ``None`` for a ``None`` result.
    :param mode: ``handle``, ``list`` or ``iter``.
    :param element_type: Interface the result or its elements implement.
    :returns: Adapted result.
    """
    if forwarder is None:
        return None
    if mode == "handle":
        return duck_adapter(element_type, forwarder)  # type: ignore[arg-type]
    elements: Iterator[object] = forwarder.iterate(returns=HANDLE)
    if mode == "list":
        return [duck_adapter(element_type, item) for item in elements]  # type: ignore[arg-type]
    return (duck_adapter(element_type, item) for item in elements)  # type: ignore[arg-type]


def _make_method(name: str, mode: str, result_type: object) -> Callable[..., object]:
    """Build one forwarding method.

    :param name: Member name.
    :param mode: Result mode.
    :param result_type: Expected result type or interface.
    :returns: Function suitable for a class namespace.
    """

    def method(self: "DuckAdapter", *args: object, **kwargs: object) -> object:
        forwarder: Forwarder = object.__getattribute__(self, "_forwarder")
        if mode == "value":
            return forwarder.invoke(name, *args, returns=result_type, **kwargs)
        result: object = forwarder.invoke(name, *args, returns=HANDLE, **kwargs)
        return _adapt_result(result, mode, result_type)  # type: ignore[arg-type]

    method.__name__ = name
    method.__qualname__ = name
    return method


def _iteration_plan(interface: type) -> tuple[str, object] | None:
    """Return how an interface's ``__iter__`` yields elements.

    :param interface: Interface class.
    :returns: Tuple of ``(mode, element_type)``, or ``None`` when the interface is not iterable.
    """
    for klass in interface.__mro__:
        if klass in _SKIPPED_BASES:
            continue
        method: object = vars(klass).get("__iter__")
        if inspect.isfunction(method) is False:
            continue
        hint: object = typing.get_type_hints(method).get("return")
        mode, element_type = _result_plan(hint)
        if mode == "iter":
            return "handle", element_type
        args: tuple[object, ...] = typing.get_args(hint)
        if len(args) == 1:
            return "value", args[0]
        return "value", None
    return None


def _make_iterator(mode: str, element_type: object) -> Callable[..., Iterator[object]]:
    """Build a forwarding ``__iter__``.

    :param mode: ``handle`` adapts each element; ``value`` converts it.
    :param element_type: Element interface or expected element type.
    :returns: Function suitable for a class namespace.
    """

    def iterate(self: "DuckAdapter") -> Iterator[object]:
        forwarder: Forwarder = object.__getattribute__(self, "_forwarder")
        if mode == "handle":
            for item in forwarder.iterate(returns=HANDLE):
                yield duck_adapter(element_type, item)  # type: ignore[arg-type]
            return
        yield from forwarder.iterate(element_type)

    iterate.__name__ = "__iter__"
    iterate.__qualname__ = "__iter__"
    return iterate


def _make_property(name: str, mode: str, result_type: object) -> property:
    """Build one forwarding property.

    :param name: Member name.
    :param mode: Result mode.
    :param result_type: Expected value type or interface.
    :returns: Read/write property.
    """

    def getter(self: "DuckAdapter") -> object:
        forwarder: Forwarder = object.__getattribute__(self, "_forwarder")
        if mode == "value":
            return forwarder.read(name, result_type)
        result: object = forwarder.read(name, HANDLE)
        return _adapt_result(result, mode, result_type)  # type: ignore[arg-type]

    def setter(self: "DuckAdapter", value: object) -> None:
        forwarder: Forwarder = object.__getattribute__(self, "_forwarder")
        forwarder.write(name, value)

    return property(getter, setter, doc=f"Forwarded member {name!r}.")


class DuckAdapter:
    """Base class of generated structural adapters."""

    __duckbridge_forwarder__: ClassVar[bool] = True
    __duckbridge_interface__: ClassVar[type]
    __duckbridge_members__: ClassVar[dict[str, MemberPlan]]
    _forwarder: Forwarder

    def __init__(self, forwarder: Forwarder) -> None:
        """Bind to a forwarder after validating it against the interface.

        :param forwarder: Forwarder that must offer every interface member.
        :raises MemberNotFound: If any required member is missing.
        """
        interface: type = type(self).__duckbridge_interface__
        missing: list[str] = _missing(type(self).__duckbridge_members__, forwarder)
        if len(missing) > 0:
            raise MemberNotFound(
                ", ".join(missing),
                forwarder.kind,
                f"required by {interface.__qualname__}",
            )
        object.__setattr__(self, "_forwarder", forwarder)

    def __repr__(self) -> str:
        """Describe the adapter.

        :returns: Representation string.
        """
        interface: type = type(self).__duckbridge_interface__
        forwarder: Forwarder = object.__getattribute__(self, "_forwarder")
        return f"<{interface.__qualname__} via {forwarder!r}>"


def _adapter_class(interface: type) -> type[DuckAdapter]:
    """Return the generated adapter class for ``interface``.

    :param interface: Interface class.
    :returns: Adapter class, created on first request.
    """
    with _ADAPTER_CLASS_LOCK:
        cached: type[DuckAdapter] | None = _ADAPTER_CLASSES.get(interface)
        if cached is not None:
            return cached

        members: dict[str, MemberPlan] = _interface_members(interface)
        namespace: dict[str, object] = {
            "__module__": interface.__module__,
            "__doc__": f"Structural adapter implementing {interface.__qualname__}.",
            "__duckbridge_interface__": interface,
            "__duckbridge_members__": members,
        }
        for name, (role, mode, result_type) in members.items():
            if role == "method":
                namespace[name] = _make_method(name, mode, result_type)
                continue
            namespace[name] = _make_property(name, mode, result_type)

        iteration: tuple[str, object] | None = _iteration_plan(interface)
        if iteration is not None:
            namespace["__iter__"] = _make_iterator(*iteration)

        created: type[DuckAdapter] = type(  # type: ignore[assignment]
            f"{interface.__name__}Adapter",
            (DuckAdapter, interface),
            namespace,
        )
        _ADAPTER_CLASSES[interface] = created
        return created


def _missing(members: dict[str, MemberPlan], target: Forwarder) -> list[str]:
    """List required members the target does not offer.

    :param members: Required member plans.
    :param target: Candidate forwarder.
    :returns: Sorted missing member names.
    """
    required: list[str] = sorted(members)
    offered: set[str] = set(target.member_names())
    return [name for name in required if name not in offered]


def missing_members(interface: type, target: Forwarder) -> list[str]:
    """List interface members the target does not offer.

    :param interface: Interface class.
    :param target: Candidate forwarder.
    :returns: Sorted missing member names.
    """
    return _missing(_adapter_class(interface).__duckbridge_members__, target)


def is_compatible(interface: type, target: Forwarder) -> bool:
    """Report whether ``target`` structurally satisfies ``interface``.

    :param interface: Interface class.
    :param target: Candidate forwarder.
    :returns: ``True`` when every required member is present.
    """
    return len(missing_members(interface, target)) == 0


def duck_adapter(interface: type, target: Forwarder) -> typing.Any:
    """Implement ``interface`` on top of ``target``.

    :param interface: Interface class, typically a ``typing.Protocol``.
    :param target: Forwarder whose members back the interface.
    :returns: Adapter instance whose class subclasses ``interface``.
    :raises MemberNotFound: If ``target`` lacks required members.
    """
    adapter_type: type[DuckAdapter] = _adapter_class(interface)
    return adapter_type(target)


def forwarder_of(adapter: DuckAdapter) -> Forwarder:
    """Return the forwarder behind a structural adapter.

    :param adapter: Adapter created by :func:`duck_adapter`.
    :returns: Backing forwarder.
    """
    return object.__getattribute__(adapter, "_forwarder")
