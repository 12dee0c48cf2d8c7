"""Walk a photo album through both forwarder families: database rows and script objects."""

import argparse
import logging
from collections.abc import Iterator
from typing import Protocol

from duckbridge import HANDLE
from duckbridge import DuckBridgeSettings
from duckbridge import Forwarder
from duckbridge import MemberNotFound
from duckbridge import configure_logging
from duckbridge import duck_adapter
from duckbridge import open_database
from duckbridge import open_script
from duckbridge.demo import ALBUM_SCRIPT_PATH
from duckbridge.demo import PROCEDURES
from duckbridge.demo import create_schema
from duckbridge.demo import seed


class ScriptPhoto(Protocol):
    """Shape the demo expects from photos defined in the album script."""

    photo_id: int
    caption: str

    def view(self) -> int:
        """Record one view."""

    def describe(self) -> str:
        """Return a display line."""


class ScriptAlbum(Protocol):
    """Shape the demo expects from albums defined in the album script."""

    title: str

    def add_photo(self, photo_id: int, caption: str) -> ScriptPhoto:
        """Append a photo."""

    def find(self, photo_id: int) -> ScriptPhoto:
        """Look up a photo."""

    def captions(self) -> list[str]:
        """Return every caption."""


def _parse_args() -> argparse.Namespace:
    """Parse command-line arguments.

    :returns: Parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="Show dynamic member forwarding over a database and a script runtime.",
    )
    parser.add_argument("--database-url", default="sqlite+pysqlite:///:memory:", help="SQLAlchemy URL.")
    parser.add_argument("--album-id", type=int, default=7, help="Album whose photos are listed.")
    parser.add_argument("--log-level", default="WARNING", help="Logging level for duckbridge.")
    return parser.parse_args()


def _database_phase(database_url: str, album_id: int) -> int:
    """List one album's photos through a procedure call.

    :param database_url: SQLAlchemy URL.
    :param album_id: Album to list.
    :returns: Number of rows printed.
    """
    print("Phase 1: procedure call through a connection forwarder")
    row_count: int = 0
    with open_database(database_url, procedures=PROCEDURES) as connection:
        create_schema(connection)
        seed(connection)

        command: Forwarder = connection.invoke("create_procedure", "GetPhotos")
        command.AlbumID = album_id
        with command.invoke("execute_reader") as reader:
            while reader.invoke("read", returns=bool) is True:
                photo_id: object = reader.read("PhotoID", int)
                caption: object = reader.read("Caption", str)
                print(f"  photo={photo_id} caption={caption!r}")
                row_count += 1
            try:
                reader.read("NonexistentColumn")
            except MemberNotFound as exc:
                print(f"  missing column reported: {exc}")
    print(f"  rows={row_count}")
    print("")
    return row_count


def _script_phase() -> int:
    """Drive album objects that live in a separate interpreter.

    :returns: Number of photos in the scripted gallery.
    """
    print("Phase 2: structural adapter over a script runtime")
    with open_script(ALBUM_SCRIPT_PATH) as script:
        gallery: ScriptAlbum = duck_adapter(ScriptAlbum, script.read("gallery", HANDLE))
        photo: ScriptPhoto = gallery.add_photo(3, "Old town at night")
        photo.view()
        print(f"  album={gallery.title!r} captions={gallery.captions()}")
        print(f"  added={photo.describe()}")
        photos: Iterator[object] = script.read("gallery", HANDLE).iterate(returns=HANDLE)
        photo_count: int = sum(1 for _ in photos)
    print(f"  photos={photo_count}")
    print("")
    return photo_count


def main() -> int:
    """Run the demo.

    :returns: Process exit code.
    """
    args: argparse.Namespace = _parse_args()
    logging.basicConfig(level=logging.WARNING)
    configure_logging(DuckBridgeSettings(log_level=args.log_level))

    row_count: int = _database_phase(args.database_url, args.album_id)
    photo_count: int = _script_phase()

    demo_passes: bool = row_count > 0 and photo_count == 3
    if demo_passes is True:
        print("DEMO RESULT: PASS")
        return 0
    print("DEMO RESULT: FAIL")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
