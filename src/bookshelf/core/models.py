"""Data models for the book library."""

from __future__ import annotations

from dataclasses import dataclass, field

READING_STATUSES = ("unread", "reading", "read")
STATUS_LABELS = {"unread": "Pas lu", "reading": "En cours de lecture", "read": "Lu"}

DEFAULT_GENRE = "Unspecified"

GENRES = [
    "Roman",
    "Science-Fiction",
    "Fantastique",
    "Policier",
    "Thriller",
    "Biographie",
    "Histoire",
    "Philosophie",
    "Science",
    "Art",
    "Cuisine",
    "Voyage",
    "Jeunesse",
    "Bande dessinée",
    "Poésie",
    "Économie",
    "Politique",
    "Psychologie",
    "Développement personnel",
    "Autre",
]

# attribute name -> serialized (canonical) key
FIELD_KEYS = {
    "id": "id",
    "title": "title",
    "author": "author",
    "genre": "genre",
    "isbn": "isbn",
    "publisher": "publisher",
    "published_date": "publishedDate",
    "cover_url": "coverUrl",
    "description": "description",
    "page_count": "pageCount",
    "reading_status": "readingStatus",
    "language": "language",
    "rating": "rating",
    "notes": "notes",
    "tags": "tags",
    "date_added": "dateAdded",
    "date_modified": "dateModified",
}
ATTRIBUTES = {key: attr for attr, key in FIELD_KEYS.items()}


def field_name(name: str) -> str:
    """Resolve either a serialized key or an attribute name to the attribute."""
    return ATTRIBUTES.get(name, name)


def _page_count(value: object) -> int:
    try:
        count = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0
    return max(count, 0)


@dataclass
class Book:
    id: str = ""
    title: str = ""
    author: str = ""
    genre: str = DEFAULT_GENRE
    isbn: str = ""
    publisher: str = ""
    published_date: str = ""
    cover_url: str = ""
    description: str = ""
    page_count: int = 0
    reading_status: str = "unread"
    # Unused by current logic; carried through storage untouched.
    language: str | None = None
    rating: int | None = None
    notes: str | None = None
    tags: list[str] = field(default_factory=list)
    date_added: str | None = None
    date_modified: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Book:
        """Build a Book from the canonical shape, filling defaults."""
        values = {}
        for attr, key in FIELD_KEYS.items():
            if key in data:
                values[attr] = data[key]
            elif attr in data:
                values[attr] = data[attr]

        book = cls(**values)
        book.id = str(book.id or "")
        for attr in ("title", "author", "isbn", "publisher", "published_date", "cover_url", "description"):
            setattr(book, attr, str(getattr(book, attr) or ""))
        book.genre = str(book.genre or DEFAULT_GENRE)
        book.page_count = _page_count(book.page_count)
        if book.reading_status not in READING_STATUSES:
            book.reading_status = "unread"
        book.tags = list(book.tags or [])
        return book

    def to_dict(self) -> dict:
        """Serialize to the canonical shape, omitting unset placeholders."""
        data: dict = {}
        for attr, key in FIELD_KEYS.items():
            value = getattr(self, attr)
            if value is None or (attr == "tags" and not value):
                continue
            data[key] = value
        return data


@dataclass
class BookFilter:
    search_term: str = ""
    genre: str | None = None
    reading_status: str | None = None
    author: str | None = None
    sort_by: str | None = None
    sort_order: str = "asc"


@dataclass
class BookStats:
    total: int = 0
    read: int = 0
    reading: int = 0
    unread: int = 0
    by_genre: dict[str, int] = field(default_factory=dict)
    by_author: dict[str, int] = field(default_factory=dict)
