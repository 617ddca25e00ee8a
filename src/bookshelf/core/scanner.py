"""Scan session state: barcode detections in, looked-up books out."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import structlog

from .decoder import Detection
from .errors import BookNotFoundError
from .lookup import BookLookup
from .models import Book
from .utils import clean_isbn

log = structlog.get_logger()

IDLE = "idle"
SCANNING = "scanning"
LOADING = "loading"

MIN_CODE_LENGTH = 10
SIMULATED_ISBN = "9782253093008"
EVENT_QUEUE_SIZE = 8

SCANNER_UNAVAILABLE = (
    "The scanning library is not loaded. Refresh the page or enter the ISBN manually."
)
NO_CODE_IN_IMAGE = (
    "No barcode detected in the image. Try another image or enter the ISBN manually."
)
INVALID_ISBN = "Please enter a valid ISBN (10 or 13 digits)."
SAVE_FAILED = "The book was found but could not be saved. Please try again."


def not_found_message(isbn: str) -> str:
    return f"No book found for ISBN {isbn}. Check the number or try another ISBN."


class Decoder(Protocol):
    @property
    def available(self) -> bool: ...

    @property
    def active(self) -> bool: ...

    def start(self, events: asyncio.Queue[Detection]) -> None: ...

    def stop(self) -> None: ...

    def decode_single(self, image: bytes) -> str | None: ...

    def feed_frame(self, frame: bytes) -> bool: ...


class ScanController:
    """Own the scanning session and the lookups it triggers.

    Detections reach the controller through a bounded queue filled by the
    decoder. Only the most recent lookup may update state: an older lookup
    that finishes late is discarded.
    """

    def __init__(
        self,
        decoder: Decoder,
        lookup: BookLookup,
        on_book_found: Callable[[Book], Awaitable[Any]],
        queue_size: int = EVENT_QUEUE_SIZE,
    ) -> None:
        self.decoder = decoder
        self.lookup = lookup
        self.on_book_found = on_book_found
        self.queue_size = queue_size

        self.state = IDLE
        self.error: str | None = None
        self.last_scanned_code: str | None = None
        self.search_source: str | None = None

        self._events: asyncio.Queue[Detection] | None = None
        self._listener: asyncio.Task | None = None
        self._generation = 0
        self._pending: set[asyncio.Task] = set()

    @property
    def scanning(self) -> bool:
        return self.state == SCANNING

    @property
    def loading(self) -> bool:
        return self.state == LOADING

    def snapshot(self) -> dict:
        return {
            "state": self.state,
            "scanning": self.scanning,
            "loading": self.loading,
            "error": self.error,
            "last_scanned_code": self.last_scanned_code,
            "search_source": self.search_source,
            "scanner_available": self.decoder.available,
        }

    async def start(self) -> bool:
        """Open a scan session. Refused while the decoder is not loaded."""
        self.error = None
        self.stop()

        if not self.decoder.available:
            self.error = SCANNER_UNAVAILABLE
            log.warning("scan_refused", reason="decoder_unavailable")
            return False

        self._events = asyncio.Queue(maxsize=self.queue_size)
        self.decoder.start(self._events)
        self.state = SCANNING
        self._listener = asyncio.create_task(self._listen(self._events))
        log.info("scan_started")
        return True

    def stop(self) -> None:
        """Tear the camera session down. Safe to call in any state."""
        self.decoder.stop()
        listener, self._listener = self._listener, None
        if listener is not None and listener is not asyncio.current_task():
            listener.cancel()
        self._events = None
        if self.state == SCANNING:
            self.state = IDLE
            log.info("scan_stopped")

    def close(self) -> None:
        """Stop scanning and ignore the outcome of lookups still running."""
        self.stop()
        self._generation += 1
        if self.state == LOADING:
            self.state = IDLE

    async def _listen(self, events: asyncio.Queue[Detection]) -> None:
        while True:
            detection = await events.get()
            if self.handle_detection(detection.code):
                return

    def feed_frame(self, frame: bytes) -> bool:
        if not self.scanning:
            return False
        return self.decoder.feed_frame(frame)

    def pump(self) -> None:
        """Handle detections already queued, without waiting for the listener."""
        while self._events is not None and not self._events.empty():
            if self.handle_detection(self._events.get_nowait().code):
                return

    def handle_detection(self, code: str) -> bool:
        """React to a recognised code. Returns True when it triggered a lookup."""
        if not self.scanning or len(code) < MIN_CODE_LENGTH:
            log.debug("detection_ignored", code=code, state=self.state)
            return False
        log.info("barcode_detected", code=code)
        # Camera goes down before the lookup so the same code is not read twice.
        self.stop()
        self._begin_lookup(code)
        return True

    def search_by_isbn(self, isbn: str) -> bool:
        """Manual entry. Returns False and sets an error for a short ISBN."""
        isbn = clean_isbn(isbn)
        if len(isbn) < MIN_CODE_LENGTH:
            self.error = INVALID_ISBN
            return False
        self._begin_lookup(isbn)
        return True

    def simulate_scan(self) -> None:
        self._begin_lookup(SIMULATED_ISBN)

    async def process_image(self, image: bytes) -> bool:
        """Decode a single uploaded picture and look up what it contains."""
        self.error = None
        if not self.decoder.available:
            self.error = SCANNER_UNAVAILABLE
            return False
        code = await asyncio.to_thread(self.decoder.decode_single, image)
        if not code or len(code) < MIN_CODE_LENGTH:
            log.info("image_without_code", code=code)
            self.error = NO_CODE_IN_IMAGE
            return False
        self._begin_lookup(code)
        return True

    def _begin_lookup(self, isbn: str) -> None:
        self._generation += 1
        self.state = LOADING
        self.error = None
        self.search_source = None
        self.last_scanned_code = isbn
        task = asyncio.create_task(self._fetch(isbn, self._generation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _fetch(self, isbn: str, generation: int) -> None:
        try:
            try:
                source, book = await self.lookup.find(isbn)
            except BookNotFoundError:
                self._fail(generation, not_found_message(isbn))
                return
            except Exception as e:
                log.error("lookup_failed", isbn=isbn, error=repr(e))
                self._fail(generation, not_found_message(isbn))
                return

            if generation != self._generation:
                log.info("stale_lookup_discarded", isbn=isbn, source=source)
                return

            try:
                await self.on_book_found(book)
            except Exception as e:
                log.error("scan_save_failed", isbn=isbn, error=repr(e))
                self._fail(generation, SAVE_FAILED)
                return

            if generation == self._generation:
                self.search_source = source
                self.last_scanned_code = None
        finally:
            if generation == self._generation and self.state == LOADING:
                self.state = IDLE

    def _fail(self, generation: int, message: str) -> None:
        if generation == self._generation:
            self.error = message

    async def wait(self) -> None:
        """Wait for every scheduled lookup to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
