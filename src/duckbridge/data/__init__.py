"""Relational data-access handles and their member adapters."""

from duckbridge.data.adapters import CommandAdapter
from duckbridge.data.adapters import ConnectionAdapter
from duckbridge.data.adapters import ReaderAdapter
from duckbridge.data.adapters import RowAdapter
from duckbridge.data.connection import Command
from duckbridge.data.connection import Database
from duckbridge.data.connection import DbConnection
from duckbridge.data.connection import ProcedureCatalog
from duckbridge.data.connection import RowCursor

__all__: list[str] = [
    "Command",
    "CommandAdapter",
    "ConnectionAdapter",
    "Database",
    "DbConnection",
    "ProcedureCatalog",
    "ReaderAdapter",
    "RowAdapter",
    "RowCursor",
]
