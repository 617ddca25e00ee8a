from __future__ import annotations

import asyncio
import os
import tempfile

# The web module opens its SQLite slot at import time.
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="bookshelf-tests-"))

import httpx
import pytest

from bookshelf.core.decoder import Detection
from bookshelf.core.errors import BookNotFoundError, StorageUnavailableError
from bookshelf.core.lookup import BookLookup
from bookshelf.core.models import Book
from bookshelf.core.storage import MemoryStorage
from bookshelf.core.store import BookStore

SIMULATED_BOOK = {
    "items": [
        {
            "volumeInfo": {
                "title": "La Peste",
                "authors": ["Albert Camus"],
                "publisher": "Le Livre de Poche",
                "publishedDate": "1972",
                "pageCount": 279,
                "categories": ["Roman"],
                "imageLinks": {"thumbnail": "https://books.example/peste.jpg"},
            }
        }
    ]
}


class FakeDecoder:
    """Stand-in for the zbar adapter; frames are the code as bytes."""

    def __init__(self, available: bool = True, image_code: str | None = None) -> None:
        self.available = available
        self.image_code = image_code
        self.events: asyncio.Queue | None = None
        self.starts = 0
        self.stops = 0

    @property
    def active(self) -> bool:
        return self.events is not None

    def start(self, events: asyncio.Queue) -> None:
        self.starts += 1
        self.events = events

    def stop(self) -> None:
        self.stops += 1
        self.events = None

    def decode_single(self, image: bytes) -> str | None:
        return self.image_code

    def feed_frame(self, frame: bytes) -> bool:
        if self.events is None:
            return False
        self.events.put_nowait(Detection(code=frame.decode()))
        return True


class FakeLookup:
    """Resolves every ISBN except those listed as missing; can hold some back."""

    def __init__(self, missing: tuple[str, ...] = (), held: tuple[str, ...] = ()) -> None:
        self.missing = missing
        self.held = held
        self.release = asyncio.Event()
        self.calls: list[str] = []

    async def find(self, isbn: str) -> tuple[str, Book]:
        self.calls.append(isbn)
        if isbn in self.held:
            await self.release.wait()
        if isbn in self.missing:
            raise BookNotFoundError(isbn)
        return "google_books", Book(id=f"id-{isbn}", title=f"Book {isbn}", author="Someone", isbn=isbn)


class BrokenStorage:
    def read(self, key: str) -> str | None:
        raise StorageUnavailableError("disk gone")

    def write(self, key: str, value: str) -> None:
        raise StorageUnavailableError("disk gone")


def mock_lookup(routes: dict[str, object], seen: list[str] | None = None) -> BookLookup:
    """BookLookup whose HTTP calls are answered per host.

    A route value is an httpx.Response, an exception to raise, or a callable
    taking the request.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request.url.host)
        answer = routes.get(request.url.host, httpx.Response(404))
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer(request)
        return answer

    return BookLookup(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(storage: MemoryStorage) -> BookStore:
    return BookStore(storage)
