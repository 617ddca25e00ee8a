from __future__ import annotations

from bookshelf.core.models import Book


def test_from_dict_fills_defaults():
    book = Book.from_dict({"id": 17, "title": "Dune", "pageCount": -3, "readingStatus": "finished"})

    assert book.id == "17"
    assert book.author == ""
    assert book.genre == "Unspecified"
    assert book.page_count == 0
    assert book.reading_status == "unread"
    assert book.tags == []


def test_to_dict_uses_canonical_keys_and_skips_unset_placeholders():
    data = Book(
        id="1",
        title="Dune",
        author="Frank Herbert",
        published_date="1965",
        cover_url="https://c.example/dune.jpg",
        page_count=412,
        rating=5,
    ).to_dict()

    assert data["publishedDate"] == "1965"
    assert data["coverUrl"] == "https://c.example/dune.jpg"
    assert data["pageCount"] == 412
    assert data["readingStatus"] == "unread"
    assert data["rating"] == 5
    assert "notes" not in data
    assert "tags" not in data


def test_round_trip_keeps_extension_fields():
    book = Book(id="1", title="Dune", author="Frank Herbert", notes="reread", tags=["sf", "classic"], date_added="2024-01-01")
    assert Book.from_dict(book.to_dict()) == book
