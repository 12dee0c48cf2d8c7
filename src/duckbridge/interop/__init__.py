"""Forwarding into objects that live in a separate script runtime."""

from duckbridge.interop.adapters import RemoteObjectAdapter
from duckbridge.interop.adapters import ScriptContextAdapter
from duckbridge.interop.session import RemoteRef
from duckbridge.interop.session import ScriptSession

__all__: list[str] = [
    "RemoteObjectAdapter",
    "RemoteRef",
    "ScriptContextAdapter",
    "ScriptSession",
]
