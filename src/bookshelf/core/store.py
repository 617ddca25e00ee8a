"""Whole-collection persistence of books in a single storage slot."""

from __future__ import annotations

import json
import os

import structlog

from .errors import StorageUnavailableError
from .models import Book
from .storage import Storage
from .utils import generate_unique_id

log = structlog.get_logger()

STORAGE_KEY = "books"


def _with_defaults(book: Book) -> Book:
    """Copy of book with an id and a reading status."""
    stored = Book.from_dict(book.to_dict())
    if not stored.id:
        stored.id = generate_unique_id()
    return stored


class BookStore:
    """Read and write the book list stored under one key.

    Every mutating call reads the current list and writes the whole list
    back once; concurrent writers overwrite each other wholesale.
    """

    def __init__(self, storage: Storage, key: str | None = None) -> None:
        self.storage = storage
        self.key = key or os.environ.get("STORAGE_KEY", STORAGE_KEY)

    def _save(self, books: list[Book]) -> None:
        self.storage.write(self.key, self.export_books(books))

    def _load(self) -> list[Book]:
        """Read the stored list. An unreadable backend raises; corrupt data is []."""
        raw = self.storage.read(self.key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError as e:
            log.warning("storage_corrupt", key=self.key, error=str(e))
            return []
        if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
            log.warning("storage_corrupt", key=self.key, error="not a list of records")
            return []
        return [Book.from_dict(item) for item in data]

    async def get_books(self) -> list[Book]:
        """Return the stored list, or [] when storage is missing or corrupt."""
        try:
            return self._load()
        except StorageUnavailableError as e:
            log.warning("storage_unavailable", key=self.key, error=str(e))
            return []

    async def add_book(self, book: Book) -> Book:
        new_book = _with_defaults(book)
        books = self._load()
        books.append(new_book)
        self._save(books)
        log.info("book_added", id=new_book.id, title=new_book.title)
        return new_book

    async def update_book(self, book: Book) -> Book:
        """Replace the entry with the same id. Unknown ids change nothing."""
        stored = Book.from_dict(book.to_dict())
        books = self._load()
        updated = [stored if existing.id == stored.id else existing for existing in books]
        self._save(updated)
        log.info("book_updated", id=stored.id)
        return stored

    async def remove_book(self, book_id: str) -> None:
        books = self._load()
        self._save([book for book in books if book.id != book_id])
        log.info("book_removed", id=book_id)

    async def import_books(self, imported: list[Book]) -> list[Book]:
        """Merge books into the collection by id; imported entries win."""
        merged = {book.id: book for book in self._load()}
        for book in imported:
            stored = _with_defaults(book)
            merged[stored.id] = stored
        books = list(merged.values())
        self._save(books)
        log.info("books_imported", count=len(imported), total=len(books))
        return books

    def export_books(self, books: list[Book]) -> str:
        return json.dumps([book.to_dict() for book in books], indent=2, ensure_ascii=False)
