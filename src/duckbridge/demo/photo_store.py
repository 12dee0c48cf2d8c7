"""Photo album schema, seed rows and procedures used by the demo and tests."""

from duckbridge.forwarder import Forwarder

SCHEMA_STATEMENTS: tuple[str, ...] = (
    "CREATE TABLE Albums (AlbumID INTEGER PRIMARY KEY, Title TEXT NOT NULL)",
    "CREATE TABLE Photos ("
    + "PhotoID INTEGER PRIMARY KEY, "
    + "AlbumID INTEGER NOT NULL REFERENCES Albums(AlbumID), "
    + "Caption TEXT NOT NULL)",
)

SEED_ALBUMS: tuple[tuple[int, str], ...] = (
    (7, "Holiday"),
    (8, "Family"),
)

SEED_PHOTOS: tuple[tuple[int, int, str], ...] = (
    (41, 7, "Harbour at dawn"),
    (42, 7, "Market street"),
    (43, 8, "Birthday cake"),
)

PROCEDURES: dict[str, str] = {
    "GetPhotos": "SELECT PhotoID, Caption FROM Photos WHERE AlbumID = :AlbumID ORDER BY PhotoID",
    "GetAlbum": "SELECT AlbumID, Title FROM Albums WHERE AlbumID = :AlbumID",
    "AddPhoto": "INSERT INTO Photos (PhotoID, AlbumID, Caption) VALUES (:PhotoID, :AlbumID, :Caption)",
    "CountPhotos": "SELECT COUNT(*) FROM Photos WHERE AlbumID = :AlbumID",
}


def create_schema(connection: Forwarder) -> None:
    """Create the album tables through a connection forwarder.

    :param connection: Forwarder over an open connection.
    """
    for statement in SCHEMA_STATEMENTS:
        command: Forwarder = connection.invoke("create_command", statement)
        command.invoke("execute_non_query")


def seed(connection: Forwarder) -> None:
    """Insert the demo albums and photos.

    :param connection: Forwarder over an open connection with the schema in place.
    """
    album_insert: Forwarder = connection.invoke(
        "create_command",
        "INSERT INTO Albums (AlbumID, Title) VALUES (:AlbumID, :Title)",
    )
    for album_id, title in SEED_ALBUMS:
        album_insert.AlbumID = album_id
        album_insert.Title = title
        album_insert.invoke("execute_non_query")

    photo_insert: Forwarder = connection.invoke("create_procedure", "AddPhoto")
    for photo_id, album_id, caption in SEED_PHOTOS:
        photo_insert.PhotoID = photo_id
        photo_insert.AlbumID = album_id
        photo_insert.Caption = caption
        photo_insert.invoke("execute_non_query")
