"""Public package API for duckbridge."""

from duckbridge.api import forward
from duckbridge.api import open_database
from duckbridge.api import open_script
from duckbridge.config import DuckBridgeSettings
from duckbridge.config import configure_logging
from duckbridge.config import get_settings
from duckbridge.conversion import convert
from duckbridge.duck import duck_adapter
from duckbridge.duck import is_compatible
from duckbridge.errors import BridgeProtocolError
from duckbridge.errors import BridgeRemoteError
from duckbridge.errors import DuckBridgeError
from duckbridge.errors import InvalidTarget
from duckbridge.errors import MemberNotFound
from duckbridge.errors import TypeConversionError
from duckbridge.forwarder import HANDLE
from duckbridge.forwarder import VALUE
from duckbridge.forwarder import Forwarder
from duckbridge.forwarder import HandleAdapter
from duckbridge.forwarder import ResultShape

__all__: list[str] = [
    "forward",
    "open_database",
    "open_script",
    "convert",
    "duck_adapter",
    "is_compatible",
    "configure_logging",
    "get_settings",
    "DuckBridgeSettings",
    "Forwarder",
    "HandleAdapter",
    "ResultShape",
    "HANDLE",
    "VALUE",
    "DuckBridgeError",
    "MemberNotFound",
    "InvalidTarget",
    "TypeConversionError",
    "BridgeProtocolError",
    "BridgeRemoteError",
]
