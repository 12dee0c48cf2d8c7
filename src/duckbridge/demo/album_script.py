"""Photo album script loaded into a separate interpreter by the demo.

Nothing here imports duckbridge; the script only defines plain objects that
the parent process reaches by name.
"""


class Photo:
    """One photo with a mutable caption."""

    def __init__(self, photo_id, caption):
        self.photo_id = photo_id
        self.caption = caption
        self.views = 0

    def view(self):
        self.views += 1
        return self.views

    def describe(self):
        return f"#{self.photo_id} {self.caption} ({self.views} views)"


class Album:
    """Ordered collection of photos."""

    def __init__(self, title):
        self.title = title
        self.photos = []

    def add_photo(self, photo_id, caption):
        photo = Photo(photo_id, caption)
        self.photos.append(photo)
        return photo

    def find(self, photo_id):
        for photo in self.photos:
            if photo.photo_id == photo_id:
                return photo
        raise LookupError(f"no photo {photo_id} in {self.title!r}")

    def captions(self):
        return [photo.caption for photo in self.photos]

    def __iter__(self):
        return iter(self.photos)

    def __len__(self):
        return len(self.photos)


def create_album(title):
    return Album(title)


gallery = create_album("Holiday")
gallery.add_photo(1, "Harbour at dawn")
gallery.add_photo(2, "Market street")
