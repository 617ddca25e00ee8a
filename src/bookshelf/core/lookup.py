"""Look up book metadata by ISBN across several public catalogues."""

from __future__ import annotations

import os
import xml.etree.ElementTree as ET
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import httpx
import structlog

from .errors import BookNotFoundError
from .models import Book
from .utils import clean_isbn, generate_unique_id

log = structlog.get_logger()

_USER_AGENT = "Bookshelf/0.1.0"
LOOKUP_TIMEOUT = 10.0

GOOGLE_BOOKS_URL = "https://www.googleapis.com/books/v1/volumes"
OPEN_LIBRARY_URL = "https://openlibrary.org/api/books"
BNF_SRU_URL = "https://catalogue.bnf.fr/api/SRU"
WORLDCAT_URL = "https://www.worldcat.org/search"

COVER_RESULTS = 5

UNKNOWN_TITLE = "Unknown title"
UNKNOWN_AUTHOR = "Unknown author"
UNKNOWN_PUBLISHER = "Unknown publisher"
UNKNOWN_DATE = "Unknown date"
UNSPECIFIED_GENRE = "Unspecified genre"

_SRW_NS = "{http://www.loc.gov/zing/srw/}"
_DC_NS = "{http://purl.org/dc/elements/1.1/}"

Source = Callable[[httpx.AsyncClient, str], Awaitable[Book | None]]


def _names(entries: list) -> list[str]:
    """Names from a list of {"name": ...} dicts or plain strings."""
    names = []
    for entry in entries or []:
        name = entry.get("name", "") if isinstance(entry, dict) else entry
        if name:
            names.append(str(name))
    return names


class BookLookup:
    """Resolve an ISBN to a Book, first usable source wins.

    Order: Google Books → Open Library → BnF catalogue → WorldCat.
    Results are never merged across sources.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self.client = client
        self.timeout = timeout or float(os.environ.get("LOOKUP_TIMEOUT", LOOKUP_TIMEOUT))
        self.sources: list[tuple[str, Source]] = [
            ("google_books", self.fetch_google_books),
            ("open_library", self.fetch_open_library),
            ("bnf", self.fetch_bnf),
            ("worldcat", self.fetch_worldcat),
        ]

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(
            timeout=self.timeout, headers={"User-Agent": _USER_AGENT}
        ) as client:
            yield client

    async def fetch_google_books(
        self, client: httpx.AsyncClient, isbn: str
    ) -> Book | None:
        """Google Books volumes search. Richest structured source."""
        try:
            resp = await client.get(GOOGLE_BOOKS_URL, params={"q": f"isbn:{isbn}"})
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.debug("google_books_error", isbn=isbn, error=str(e))
            return None

        items = data.get("items") if isinstance(data, dict) else None
        if not items:
            log.debug("google_books_no_match", isbn=isbn)
            return None

        info = items[0].get("volumeInfo") or {}
        authors = _names(info.get("authors", []))
        categories = _names(info.get("categories", []))
        return Book(
            id=generate_unique_id(),
            title=info.get("title") or UNKNOWN_TITLE,
            author=", ".join(authors) if authors else UNKNOWN_AUTHOR,
            isbn=isbn,
            publisher=info.get("publisher") or UNKNOWN_PUBLISHER,
            published_date=info.get("publishedDate") or UNKNOWN_DATE,
            cover_url=(info.get("imageLinks") or {}).get("thumbnail", ""),
            description=info.get("description") or "",
            page_count=info.get("pageCount") or 0,
            genre=", ".join(categories) if categories else UNSPECIFIED_GENRE,
            reading_status="unread",
        )

    async def fetch_open_library(
        self, client: httpx.AsyncClient, isbn: str
    ) -> Book | None:
        """Open Library Books API, `jscmd=data` flavour."""
        key = f"ISBN:{isbn}"
        try:
            resp = await client.get(
                OPEN_LIBRARY_URL,
                params={"bibkeys": key, "format": "json", "jscmd": "data"},
                follow_redirects=True,
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.debug("open_library_error", isbn=isbn, error=str(e))
            return None

        info = data.get(key) if isinstance(data, dict) else None
        if not info:
            log.debug("open_library_no_match", isbn=isbn)
            return None

        authors = _names(info.get("authors", []))
        publishers = _names(info.get("publishers", []))
        subjects = _names((info.get("subjects") or [])[:3])
        cover = info.get("cover") or {}

        description = info.get("notes") or ""
        if isinstance(description, dict):
            description = description.get("value", "")
        if not description:
            excerpts = info.get("excerpts") or []
            if excerpts:
                description = excerpts[0].get("text", "")

        return Book(
            id=generate_unique_id(),
            title=info.get("title") or UNKNOWN_TITLE,
            author=", ".join(authors) if authors else UNKNOWN_AUTHOR,
            isbn=isbn,
            publisher=", ".join(publishers) if publishers else UNKNOWN_PUBLISHER,
            published_date=info.get("publish_date") or UNKNOWN_DATE,
            cover_url=cover.get("medium") or cover.get("large") or cover.get("small") or "",
            description=description,
            page_count=info.get("number_of_pages") or 0,
            genre=", ".join(subjects) if subjects else UNSPECIFIED_GENRE,
            reading_status="unread",
        )

    async def fetch_bnf(self, client: httpx.AsyncClient, isbn: str) -> Book | None:
        """BnF SRU endpoint, Dublin Core records. First value of each element."""
        params = {
            "version": "1.2",
            "operation": "searchRetrieve",
            "query": f'bib.isbn adj "{isbn}"',
            "recordSchema": "dublincore",
        }
        try:
            resp = await client.get(BNF_SRU_URL, params=params)
            resp.raise_for_status()
            root = ET.fromstring(resp.content)
        except (httpx.HTTPError, ET.ParseError) as e:
            log.debug("bnf_error", isbn=isbn, error=str(e))
            return None

        count = root.findtext(f"{_SRW_NS}numberOfRecords")
        if count is not None and count.strip() == "0":
            log.debug("bnf_no_match", isbn=isbn)
            return None

        def first(tag: str) -> str:
            return (root.findtext(f".//{_DC_NS}{tag}") or "").strip()

        title = first("title")
        if not title:
            log.debug("bnf_no_match", isbn=isbn)
            return None

        return Book(
            id=generate_unique_id(),
            title=title,
            author=first("creator") or UNKNOWN_AUTHOR,
            isbn=isbn,
            publisher=first("publisher") or UNKNOWN_PUBLISHER,
            published_date=first("date") or UNKNOWN_DATE,
            description=first("description"),
            genre=first("subject") or UNSPECIFIED_GENRE,
            reading_status="unread",
        )

    async def fetch_worldcat(
        self, client: httpx.AsyncClient, isbn: str
    ) -> Book | None:
        """WorldCat has no open API; a successful search page yields a stub record."""
        url = f"{WORLDCAT_URL}?q=bn:{isbn}"
        try:
            resp = await client.get(WORLDCAT_URL, params={"q": f"bn:{isbn}", "qt": "advanced"})
            resp.raise_for_status()
        except httpx.HTTPError as e:
            log.debug("worldcat_error", isbn=isbn, error=str(e))
            return None

        return Book(
            id=generate_unique_id(),
            title="Book found on WorldCat",
            author="See details on WorldCat",
            isbn=isbn,
            publisher="See details on WorldCat",
            description=f"This book was found on WorldCat. For more information see {url}",
            genre="Unspecified",
            reading_status="unread",
        )

    async def find(self, isbn: str) -> tuple[str, Book]:
        """Return (source name, book) from the first source with a usable hit.

        A source whose payload does not have the expected shape counts as a miss.
        """
        isbn = clean_isbn(isbn)
        async with self._session() as client:
            for name, fetch in self.sources:
                try:
                    book = await fetch(client, isbn)
                except (AttributeError, TypeError, KeyError, IndexError) as e:
                    log.debug(f"{name}_error", isbn=isbn, error=repr(e))
                    continue
                if book is not None:
                    log.info("lookup_hit", isbn=isbn, source=name, title=book.title)
                    return name, book
        log.warning("lookup_exhausted", isbn=isbn)
        raise BookNotFoundError(isbn)

    async def search_by_isbn(self, isbn: str) -> Book:
        _, book = await self.find(isbn)
        return book

    async def search_book_covers(self, title: str, author: str) -> AsyncIterator[str]:
        """Yield cover image URLs from a Google Books free-text search.

        Errors end the iteration early; entries without an image are skipped.
        """
        query = f"{title} {author}".strip()
        async with self._session() as client:
            try:
                resp = await client.get(
                    GOOGLE_BOOKS_URL, params={"q": query, "maxResults": COVER_RESULTS}
                )
                resp.raise_for_status()
                data = resp.json()
            except (httpx.HTTPError, ValueError) as e:
                log.debug("cover_search_error", query=query, error=str(e))
                return

            items = data.get("items") if isinstance(data, dict) else None
            if not isinstance(items, list):
                return
            for item in items:
                if not isinstance(item, dict):
                    continue
                info = item.get("volumeInfo")
                links = info.get("imageLinks") if isinstance(info, dict) else None
                url = links.get("thumbnail") if isinstance(links, dict) else None
                if url:
                    yield url
