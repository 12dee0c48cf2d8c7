"""Script loaded into the child interpreter by the script runtime tests."""

import threading


class CatalogError(Exception):
    """Raised by catalog lookups."""


class Photo:
    """Photo with a caption and a view counter."""

    def __init__(self, photo_id, caption):
        self.photo_id = photo_id
        self.caption = caption
        self.views = 0

    def view(self):
        self.views += 1
        return self.views

    def describe(self):
        return f"#{self.photo_id} {self.caption}"

    @property
    def location(self):
        raise AttributeError("gps unavailable")


class Album:
    """Ordered collection of photos."""

    def __init__(self, title):
        self.title = title
        self.photos = []

    def add_photo(self, photo_id, caption):
        photo = Photo(photo_id, caption)
        self.photos.append(photo)
        return photo

    def attach(self, photo):
        self.photos.append(photo)
        return len(self.photos)

    def contains(self, photo):
        return any(item is photo for item in self.photos)

    def find(self, photo_id):
        for photo in self.photos:
            if photo.photo_id == photo_id:
                return photo
        raise CatalogError(f"no photo {photo_id}")

    def find_or_none(self, photo_id):
        for photo in self.photos:
            if photo.photo_id == photo_id:
                return photo
        return None

    def captions(self):
        return [photo.caption for photo in self.photos]

    def make_lock(self):
        return threading.Lock()

    def __iter__(self):
        return iter(self.photos)


class FrozenLabel:
    """Object whose attributes cannot be assigned."""

    __slots__ = ("text",)

    def __init__(self, text):
        self.text = text


def create_album(title):
    return Album(title)


def total(*values, scale=1):
    return sum(values) * scale


def current_version():
    return version


album = create_album("Holiday")
album.add_photo(1, "Harbour at dawn")
album.add_photo(2, "Market street")
label = FrozenLabel("fixed")
version = 3
