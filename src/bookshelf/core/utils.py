"""Helpers for identifiers, ISBNs and book lists."""

from __future__ import annotations

import json
import re
import time
import uuid
from collections import Counter
from datetime import date

from .errors import BookValidationError
from .models import DEFAULT_GENRE, Book, BookFilter, BookStats, field_name

_ISBN10 = re.compile(r"^[\dX]{10}$")
_ISBN13 = re.compile(r"^\d{13}$")


def generate_unique_id() -> str:
    return f"{int(time.time() * 1000)}{uuid.uuid4().hex[:9]}"


def clean_isbn(isbn: str) -> str:
    return re.sub(r"[-\s]", "", isbn or "")


def is_valid_isbn(isbn: str) -> bool:
    """Check the shape of an ISBN-10 or ISBN-13 (no checksum)."""
    cleaned = clean_isbn(isbn)
    if len(cleaned) == 10:
        return bool(_ISBN10.match(cleaned))
    if len(cleaned) == 13:
        return bool(_ISBN13.match(cleaned))
    return False


def format_isbn(isbn: str) -> str:
    cleaned = clean_isbn(isbn)
    if len(cleaned) == 10:
        return f"{cleaned[0]}-{cleaned[1:4]}-{cleaned[4:9]}-{cleaned[9]}"
    if len(cleaned) == 13:
        return f"{cleaned[:3]}-{cleaned[3]}-{cleaned[4:7]}-{cleaned[7:12]}-{cleaned[12]}"
    return isbn


def sort_books(books: list[Book], sort_by: str = "title", sort_order: str = "asc") -> list[Book]:
    """Return a sorted copy. Only text fields order; others keep their position."""
    attr = field_name(sort_by)
    values = [getattr(book, attr, "") for book in books]
    if not all(isinstance(v, str) or v is None for v in values):
        return list(books)
    return sorted(
        books,
        key=lambda book: (getattr(book, attr, "") or "").casefold(),
        reverse=sort_order == "desc",
    )


def filter_books(books: list[Book], filters: dict) -> list[Book]:
    """Keep books matching every non-empty filter value.

    Strings match case-insensitively as substrings, anything else by equality.
    """
    active = {
        field_name(key): value
        for key, value in filters.items()
        if value is not None and value != ""
    }

    def matches(book: Book) -> bool:
        for attr, value in active.items():
            book_value = getattr(book, attr, None)
            if isinstance(book_value, str) and isinstance(value, str):
                if value.casefold() not in book_value.casefold():
                    return False
            elif book_value != value:
                return False
        return True

    return [book for book in books if matches(book)]


def search_books(books: list[Book], term: str) -> list[Book]:
    """Free-text search over title, author, ISBN and publisher."""
    needle = (term or "").casefold()
    if not needle:
        return list(books)
    return [
        book
        for book in books
        if any(needle in (value or "").casefold() for value in (book.title, book.author, book.isbn, book.publisher))
    ]


def apply_filter(books: list[Book], book_filter: BookFilter) -> list[Book]:
    result = search_books(books, book_filter.search_term)
    # Genre chips in the list view select an exact genre.
    if book_filter.genre:
        result = [book for book in result if book.genre == book_filter.genre]
    result = filter_books(
        result,
        {"readingStatus": book_filter.reading_status, "author": book_filter.author},
    )
    if book_filter.sort_by:
        result = sort_books(result, book_filter.sort_by, book_filter.sort_order)
    return result


def group_books_by_field(books: list[Book], field: str) -> dict[str, list[Book]]:
    groups: dict[str, list[Book]] = {}
    attr = field_name(field)
    for book in books:
        key = str(getattr(book, attr, "") or DEFAULT_GENRE)
        groups.setdefault(key, []).append(book)
    return groups


def unique_genres(books: list[Book]) -> list[str]:
    return sorted({book.genre for book in books if book.genre})


def compute_stats(books: list[Book]) -> BookStats:
    statuses = Counter(book.reading_status for book in books)
    return BookStats(
        total=len(books),
        read=statuses["read"],
        reading=statuses["reading"],
        unread=statuses["unread"],
        by_genre=dict(Counter(book.genre or DEFAULT_GENRE for book in books)),
        by_author=dict(Counter(book.author for book in books if book.author)),
    )


def validate_new_book(draft: dict) -> Book:
    """Turn an add-form draft into a fully defaulted Book.

    Title and author are required.
    """
    book = Book.from_dict(draft)
    book.title = book.title.strip()
    book.author = book.author.strip()
    if not book.title or not book.author:
        raise BookValidationError("Please fill in at least the title and the author.")
    if not book.id:
        book.id = generate_unique_id()
    return book


def export_filename(today: date | None = None) -> str:
    today = today or date.today()
    return f"ma-bibliotheque-{today.isoformat()}.json"


def parse_import(text: str) -> list[Book]:
    """Parse an exported snapshot. Raises ValueError when it holds no books."""
    data = json.loads(text)
    if not isinstance(data, list) or not data:
        raise ValueError("The file does not contain valid book data.")
    if not all(isinstance(item, dict) for item in data):
        raise ValueError("Every entry must be a book record.")
    return [Book.from_dict(item) for item in data]
