"""Integration tests for forwarding into a script runtime."""

import pathlib
from collections.abc import Iterator

import pytest

from duckbridge import HANDLE
from duckbridge import BridgeRemoteError
from duckbridge import Forwarder
from duckbridge import HandleAdapter
from duckbridge import InvalidTarget
from duckbridge import MemberNotFound
from duckbridge import TypeConversionError
from duckbridge import open_script
from duckbridge.interop import ScriptSession

FIXTURES: pathlib.Path = pathlib.Path(__file__).parent / "fixtures"
ALBUM_SERVICE: pathlib.Path = FIXTURES / "album_service.py"
BROKEN_SCRIPT: pathlib.Path = FIXTURES / "broken_script.py"


@pytest.fixture
def script() -> Iterator[Forwarder]:
    """Load the album service script in a child interpreter.

    :yields: Script context forwarder.
    """
    with open_script(ALBUM_SERVICE) as script_fwd:
        yield script_fwd


def test_read_globals_by_value(script: Forwarder) -> None:
    """Copy plain globals into the parent."""
    assert script.version == 3
    assert script.read("version", int) == 3
    assert script.kind == "script"


def test_write_global_is_seen_by_script_functions(script: Forwarder) -> None:
    """Rebind globals the script's own functions read."""
    script.version = 4
    assert script.invoke("current_version") == 4


def test_invoke_global_function_with_arguments(script: Forwarder) -> None:
    """Forward positional and keyword arguments."""
    assert script.invoke("total", 1, 2, 3, scale=2) == 12
    assert script.invoke("total", 1, returns=float) == 1.0


def test_read_object_as_handle_and_use_members(script: Forwarder) -> None:
    """Reach object members through a handle read."""
    album: object = script.read("album", HANDLE)
    assert isinstance(album, Forwarder) is True
    assert album.title == "Holiday"  # type: ignore[attr-defined]
    assert album.invoke("captions") == ["Harbour at dawn", "Market street"]  # type: ignore[attr-defined]
    album.title = "Summer"  # type: ignore[attr-defined]
    assert script.read("album", HANDLE).title == "Summer"  # type: ignore[attr-defined]


def test_invoke_with_handle_result_keeps_object_remote(script: Forwarder) -> None:
    """Return handle-shaped results as forwarders over live objects."""
    album: Forwarder = script.read("album", HANDLE)  # type: ignore[assignment]
    photo: Forwarder = album.invoke("add_photo", 3, "Old town", returns=HANDLE)  # type: ignore[assignment]
    assert photo.invoke("view") == 1
    assert photo.invoke("view") == 2
    assert photo.views == 2
    assert album.invoke("find", 3, returns=HANDLE).views == 2  # type: ignore[attr-defined]


def test_handles_pass_back_as_arguments(script: Forwarder) -> None:
    """Send handles back into the runtime by identity."""
    album: Forwarder = script.read("album", HANDLE)  # type: ignore[assignment]
    photo: Forwarder = album.invoke("find", 1, returns=HANDLE)  # type: ignore[assignment]
    other: Forwarder = script.invoke("create_album", "Other", returns=HANDLE)  # type: ignore[assignment]
    assert other.invoke("attach", photo) == 1
    assert other.invoke("contains", photo) is True
    assert album.invoke("contains", photo) is True
    other.invoke("attach", photo=photo)
    assert other.invoke("captions") == ["Harbour at dawn", "Harbour at dawn"]


def test_foreign_handles_cannot_be_passed(script: Forwarder) -> None:
    """Reject forwarders that do not belong to the session."""
    album: Forwarder = script.read("album", HANDLE)  # type: ignore[assignment]
    with pytest.raises(InvalidTarget, match="same script session"):
        album.invoke("attach", Forwarder(HandleAdapter()))


def test_iterate_remote_collection(script: Forwarder) -> None:
    """Iterate elements by handle and by value."""
    album: Forwarder = script.read("album", HANDLE)  # type: ignore[assignment]
    photos: list[object] = list(album.iterate(returns=HANDLE))
    assert [photo.photo_id for photo in photos] == [1, 2]  # type: ignore[attr-defined]
    captions: Forwarder = album.invoke("captions", returns=HANDLE)  # type: ignore[assignment]
    assert list(captions.iterate(str)) == ["Harbour at dawn", "Market street"]


def test_iterate_non_iterable_is_invalid(script: Forwarder) -> None:
    """Fail for objects without iteration support."""
    label: Forwarder = script.read("label", HANDLE)  # type: ignore[assignment]
    with pytest.raises(InvalidTarget, match="not iterable"):
        list(label)


def test_missing_members_raise_member_not_found(script: Forwarder) -> None:
    """Report unknown names on the namespace and on objects."""
    with pytest.raises(MemberNotFound) as exc_info:
        _ = script.no_such_global
    assert exc_info.value.member_name == "no_such_global"
    assert exc_info.value.target_kind == "script"

    album: Forwarder = script.read("album", HANDLE)  # type: ignore[assignment]
    with pytest.raises(MemberNotFound) as method_info:
        album.invoke("delete_everything")
    assert method_info.value.target_kind == "remote Album"


def test_invoking_plain_attribute_raises_member_not_found(script: Forwarder) -> None:
    """Refuse to call members that are not callable."""
    with pytest.raises(MemberNotFound, match="not invocable"):
        script.invoke("version")


def test_rejected_write_is_invalid_target(script: Forwarder) -> None:
    """Map refused attribute assignments onto InvalidTarget."""
    label: Forwarder = script.read("label", HANDLE)  # type: ignore[assignment]
    with pytest.raises(InvalidTarget, match="does not accept writes"):
        label.colour = "red"
    assert label.text == "fixed"


def test_failing_getter_is_a_remote_error(script: Forwarder) -> None:
    """Keep getter failures apart from missing members."""
    album: Forwarder = script.read("album", HANDLE)  # type: ignore[assignment]
    photo: Forwarder = album.invoke("find", 1, returns=HANDLE)  # type: ignore[assignment]
    with pytest.raises(BridgeRemoteError) as exc_info:
        _ = photo.location
    assert exc_info.value.remote_type_name == "AttributeError"
    assert exc_info.value.remote_message == "gps unavailable"
    assert "location" in photo


def test_unknown_name_on_slotted_object_is_missing_member(script: Forwarder) -> None:
    """Treat unknown names on slotted objects as missing members."""
    label: Forwarder = script.read("label", HANDLE)  # type: ignore[assignment]
    with pytest.raises(MemberNotFound) as exc_info:
        _ = label.colour
    assert exc_info.value.member_name == "colour"


def test_remote_exception_is_wrapped(script: Forwarder) -> None:
    """Surface exceptions raised by script code with their traceback."""
    album: Forwarder = script.read("album", HANDLE)  # type: ignore[assignment]
    with pytest.raises(BridgeRemoteError) as exc_info:
        album.invoke("find", 99)
    assert exc_info.value.remote_type_name == "CatalogError"
    assert exc_info.value.remote_message == "no photo 99"
    assert "album_service.py" in exc_info.value.remote_traceback


def test_untransferable_value_raises_type_conversion_error(script: Forwarder) -> None:
    """Refuse by-value results that cannot be copied."""
    album: Forwarder = script.read("album", HANDLE)  # type: ignore[assignment]
    with pytest.raises(TypeConversionError) as exc_info:
        album.invoke("make_lock")
    assert exc_info.value.expected == "transferable value"
    lock: object = album.invoke("make_lock", returns=HANDLE)
    assert lock.invoke("acquire") is True  # type: ignore[attr-defined]


def test_untransferable_argument_raises_type_conversion_error(script: Forwarder) -> None:
    """Refuse arguments that cannot be copied."""
    with pytest.raises(TypeConversionError):
        script.invoke("total", lambda: 1)


def test_converted_result_mismatch(script: Forwarder) -> None:
    """Check results against the expected type."""
    with pytest.raises(TypeConversionError):
        script.invoke("total", 1, returns=str)


def test_closed_handle_is_released_remotely(script: Forwarder) -> None:
    """Drop runtime references once a handle is closed."""
    album: Forwarder = script.read("album", HANDLE)  # type: ignore[assignment]
    photo: Forwarder = album.invoke("add_photo", 5, "Pier", returns=HANDLE)  # type: ignore[assignment]
    photo.close()
    with pytest.raises(InvalidTarget, match="released remote object"):
        _ = photo.caption


def test_member_names_list_public_members(script: Forwarder) -> None:
    """Describe objects by their public attribute names."""
    album: Forwarder = script.read("album", HANDLE)  # type: ignore[assignment]
    assert "add_photo" in album
    assert "title" in album
    assert "__iter__" not in album.member_names()
    assert "album" in script


def test_session_is_unusable_after_close() -> None:
    """Fail requests once the runtime has shut down."""
    with open_script(ALBUM_SERVICE) as script_fwd:
        assert script_fwd.version == 3
    with pytest.raises(InvalidTarget, match="closed"):
        _ = script_fwd.version


def test_script_load_failure_is_reported() -> None:
    """Surface exceptions raised while the script loads."""
    with pytest.raises(BridgeRemoteError) as exc_info:
        with open_script(BROKEN_SCRIPT):
            pass
    assert exc_info.value.remote_type_name == "RuntimeError"
    assert "album store unavailable" in exc_info.value.remote_message


def test_missing_script_raises_file_not_found() -> None:
    """Fail before starting a runtime for missing scripts."""
    with pytest.raises(FileNotFoundError):
        ScriptSession(FIXTURES / "missing_script.py")


def test_session_context_manager_starts_and_closes() -> None:
    """Start on entry and shut down on exit."""
    session: ScriptSession = ScriptSession(ALBUM_SERVICE)
    with session:
        assert session.is_closed is False
        assert session.namespace_id > 0
    assert session.is_closed is True
    with pytest.raises(InvalidTarget):
        session.start()


def test_session_resolves_named_objects() -> None:
    """Resolve script globals to stable remote identifiers."""
    with ScriptSession(ALBUM_SERVICE) as session:
        first_id: int = session.resolve("album")
        second_id: int = session.resolve("album")
        assert first_id == second_id
        assert session.get_attr(first_id, "title") == "Holiday"
        with pytest.raises(MemberNotFound):
            session.resolve("missing_album")
