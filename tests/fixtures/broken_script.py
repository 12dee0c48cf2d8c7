"""Script that fails while loading."""

raise RuntimeError("album store unavailable")
