"""Demo data and scripts for showcasing duckbridge behavior."""

import pathlib

from duckbridge.demo.photo_store import PROCEDURES
from duckbridge.demo.photo_store import create_schema
from duckbridge.demo.photo_store import seed

ALBUM_SCRIPT_PATH: pathlib.Path = pathlib.Path(__file__).with_name("album_script.py")

__all__: list[str] = ["ALBUM_SCRIPT_PATH", "PROCEDURES", "create_schema", "seed"]
