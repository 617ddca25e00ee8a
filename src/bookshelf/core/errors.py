"""Exceptions raised by the library core."""

from __future__ import annotations


class BookshelfError(Exception):
    pass


class StorageUnavailableError(BookshelfError):
    """The persistence backend could not be read or written."""


class BookNotFoundError(BookshelfError):
    """Every lookup source failed or returned nothing for an ISBN."""

    def __init__(self, isbn: str) -> None:
        super().__init__(f"No book found for ISBN {isbn}")
        self.isbn = isbn


class ScannerUnavailableError(BookshelfError):
    """The barcode decoder library is not loaded."""


class BookValidationError(BookshelfError):
    pass
