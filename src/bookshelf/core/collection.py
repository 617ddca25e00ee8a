"""In-memory view of the book collection, kept in step with the store."""

from __future__ import annotations

import structlog

from .errors import BookshelfError
from .models import Book, BookFilter, BookStats
from .store import BookStore
from .utils import apply_filter, compute_stats

log = structlog.get_logger()


class BookCollection:
    """Hold the current book list.

    Each mutation goes to the store first; the in-memory list changes only
    once the store call has succeeded. A failing store call leaves the list
    untouched, sets `error` and re-raises.
    """

    def __init__(self, store: BookStore) -> None:
        self.store = store
        self.books: list[Book] = []
        self.loading = True
        self.error: str | None = None

    async def load(self) -> list[Book]:
        self.loading = True
        try:
            self.books = await self.store.get_books()
            self.error = None
        finally:
            self.loading = False
        log.debug("collection_loaded", count=len(self.books))
        return self.books

    def _fail(self, event: str, message: str, exc: Exception) -> None:
        log.error(event, error=str(exc))
        self.error = message

    async def add_book(self, book: Book) -> Book:
        try:
            new_book = await self.store.add_book(book)
        except (BookshelfError, OSError) as e:
            self._fail("collection_add_failed", "Could not add the book. Please try again.", e)
            raise
        self.books = [*self.books, new_book]
        return new_book

    async def update_book(self, book: Book) -> Book:
        try:
            result = await self.store.update_book(book)
        except (BookshelfError, OSError) as e:
            self._fail("collection_update_failed", "Could not update the book. Please try again.", e)
            raise
        self.books = [result if existing.id == result.id else existing for existing in self.books]
        return result

    async def remove_book(self, book_id: str) -> None:
        try:
            await self.store.remove_book(book_id)
        except (BookshelfError, OSError) as e:
            self._fail("collection_remove_failed", "Could not remove the book. Please try again.", e)
            raise
        self.books = [book for book in self.books if book.id != book_id]

    async def import_books(self, imported: list[Book]) -> list[Book]:
        try:
            result = await self.store.import_books(imported)
        except (BookshelfError, OSError) as e:
            self._fail("collection_import_failed", "Could not import the books. Please try again.", e)
            raise
        merged = {book.id: book for book in self.books}
        for book in result:
            merged[book.id] = book
        self.books = list(merged.values())
        return result

    def export_books(self, books: list[Book] | None = None) -> str:
        return self.store.export_books(self.books if books is None else books)

    def get(self, book_id: str) -> Book | None:
        return next((book for book in self.books if book.id == book_id), None)

    def filtered(self, book_filter: BookFilter | None = None) -> list[Book]:
        return apply_filter(self.books, book_filter or BookFilter())

    def stats(self) -> BookStats:
        return compute_stats(self.books)
