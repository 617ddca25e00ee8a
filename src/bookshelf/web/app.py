"""FastAPI web application for Bookshelf."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

import structlog
import uvicorn
from fastapi import FastAPI, File, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles

from ..core.collection import BookCollection
from ..core.decoder import ZbarDecoder
from ..core.errors import BookNotFoundError, BookshelfError, BookValidationError
from ..core.lookup import BookLookup
from ..core.models import GENRES, READING_STATUSES, STATUS_LABELS, Book, BookFilter
from ..core.print_sheet import build_sheet, render_html
from ..core.scanner import ScanController
from ..core.storage import SQLiteStorage
from ..core.store import BookStore
from ..core.utils import export_filename, parse_import, unique_genres, validate_new_book

load_dotenv()

log = structlog.get_logger()

STATIC_DIR = Path(__file__).parent / "static"
MAX_BODY_BYTES = 5_000_000  # uploads: images and import snapshots

collection = BookCollection(BookStore(SQLiteStorage()))
lookup = BookLookup()
scanner = ScanController(ZbarDecoder(), lookup, collection.add_book)


async def _books() -> BookCollection:
    if collection.loading:
        await collection.load()
    return collection


def _error(message: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    scanner.close()
    log.info("scanner_closed")


app = FastAPI(title="Bookshelf", docs_url=None, redoc_url=None, lifespan=lifespan)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    content_length = request.headers.get("content-length")
    if content_length and int(content_length) > MAX_BODY_BYTES:
        return _error("Request too large.", status_code=413)
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "SAMEORIGIN"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "0.1.0",
        "environment": os.environ.get("ENV", "dev"),
        "scanner_available": scanner.decoder.available,
    }


@app.get("/", response_class=HTMLResponse)
async def index():
    return (STATIC_DIR / "index.html").read_text(encoding="utf-8")


def _filter_from_query(
    q: str, genre: str | None, status: str | None, author: str | None, sort: str | None, order: str
) -> BookFilter:
    return BookFilter(
        search_term=q,
        genre=genre or None,
        reading_status=status or None,
        author=author or None,
        sort_by=sort or None,
        sort_order=order,
    )


@app.get("/api/books")
async def list_books(
    q: str = "",
    genre: str | None = None,
    status: str | None = None,
    author: str | None = None,
    sort: str | None = None,
    order: str = "asc",
):
    books = await _books()
    filtered = books.filtered(_filter_from_query(q, genre, status, author, sort, order))
    return {
        "total": len(books.books),
        "books": [b.to_dict() for b in filtered],
        "genres": unique_genres(books.books),
    }


@app.get("/api/genres")
async def genres():
    return {
        "genres": GENRES,
        "reading_statuses": [{"value": s, "label": STATUS_LABELS[s]} for s in READING_STATUSES],
    }


@app.get("/api/books/stats")
async def stats():
    s = (await _books()).stats()
    return {
        "total": s.total,
        "read": s.read,
        "reading": s.reading,
        "unread": s.unread,
        "by_genre": s.by_genre,
        "by_author": s.by_author,
    }


@app.post("/api/books")
async def add_book(request: Request):
    body = await request.json()
    if not isinstance(body, dict):
        return _error("Expected a book record.")
    try:
        book = validate_new_book(body)
    except BookValidationError as e:
        return _error(str(e))

    books = await _books()
    try:
        added = await books.add_book(book)
    except BookshelfError:
        return _error(books.error or "Could not add the book.", status_code=503)
    return added.to_dict()


@app.put("/api/books/{book_id}")
async def update_book(book_id: str, request: Request):
    body = await request.json()
    if not isinstance(body, dict):
        return _error("Expected a book record.")
    books = await _books()
    if books.get(book_id) is None:
        return _error("Book not found.", status_code=404)

    book = Book.from_dict({**body, "id": book_id})
    try:
        updated = await books.update_book(book)
    except BookshelfError:
        return _error(books.error or "Could not update the book.", status_code=503)
    return updated.to_dict()


@app.delete("/api/books/{book_id}")
async def remove_book(book_id: str):
    books = await _books()
    try:
        await books.remove_book(book_id)
    except BookshelfError:
        return _error(books.error or "Could not remove the book.", status_code=503)
    return {"removed": book_id}


@app.get("/api/books/export")
async def export_books(
    q: str = "",
    genre: str | None = None,
    status: str | None = None,
    author: str | None = None,
    sort: str | None = None,
    order: str = "asc",
):
    books = await _books()
    filtered = books.filtered(_filter_from_query(q, genre, status, author, sort, order))
    filename = export_filename(date.today())
    return Response(
        content=books.export_books(filtered).encode("utf-8"),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/books/import")
async def import_books(file: UploadFile = File(...), confirm: bool = False):
    raw = await file.read()
    try:
        imported = parse_import(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        log.warning("import_rejected", filename=file.filename, error=str(e))
        return _error("Could not read the file. Check that the format is correct.")

    if not confirm:
        return {
            "confirm_required": True,
            "count": len(imported),
            "message": f"Import {len(imported)} books?",
        }

    books = await _books()
    try:
        result = await books.import_books(imported)
    except BookshelfError:
        return _error(books.error or "Could not import the books.", status_code=503)
    return {"imported": len(imported), "total": len(result)}


@app.get("/api/lookup/{isbn}")
async def lookup_isbn(isbn: str):
    try:
        source, book = await lookup.find(isbn)
    except BookNotFoundError as e:
        return _error(str(e), status_code=404)
    return {"source": source, "book": book.to_dict()}


@app.get("/api/covers")
async def covers(title: str, author: str = ""):
    return {"covers": [url async for url in lookup.search_book_covers(title, author)]}


@app.get("/api/scan")
async def scan_state():
    return scanner.snapshot()


@app.post("/api/scan/start")
async def scan_start():
    await _books()
    if not await scanner.start():
        return JSONResponse(scanner.snapshot(), status_code=503)
    return scanner.snapshot()


@app.post("/api/scan/stop")
async def scan_stop():
    scanner.stop()
    return scanner.snapshot()


@app.post("/api/scan/frame")
async def scan_frame(file: UploadFile = File(...)):
    hit = scanner.feed_frame(await file.read())
    scanner.pump()
    await scanner.wait()
    return {"detected": hit, **scanner.snapshot()}


@app.post("/api/scan/image")
async def scan_image(file: UploadFile = File(...)):
    await _books()
    if not await scanner.process_image(await file.read()):
        return JSONResponse(scanner.snapshot(), status_code=422)
    await scanner.wait()
    return scanner.snapshot()


@app.post("/api/scan/isbn")
async def scan_isbn(request: Request):
    body = await request.json()
    isbn = str(body.get("isbn", "")) if isinstance(body, dict) else ""
    await _books()
    if not scanner.search_by_isbn(isbn):
        return JSONResponse(scanner.snapshot(), status_code=400)
    await scanner.wait()
    return scanner.snapshot()


@app.post("/api/scan/simulate")
async def scan_simulate():
    await _books()
    scanner.simulate_scan()
    await scanner.wait()
    return scanner.snapshot()


@app.post("/print/distributor", response_class=HTMLResponse)
async def print_distributor(request: Request):
    """Render the print sheet for a distributor record.

    The body carries the selected record and the merchant table as the
    spreadsheet exports them (column-oriented).
    """
    body = await request.json()
    if not isinstance(body, dict):
        return _error("Expected a distributor record.")
    merchant_table = body.get("merchants") or {}

    async def fetch_table(name: str) -> dict:
        return merchant_table

    sheet = await build_sheet(body.get("distributor"), fetch_table)
    log.info("print_sheet_rendered", merchants=sheet.merchant_count)
    return render_html(sheet)


def main():
    level = getattr(logging, os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(level))
    port = int(os.environ.get("PORT", "8000"))
    is_dev = os.environ.get("ENV", "dev") == "dev"
    uvicorn.run(
        "bookshelf.web.app:app",
        host="0.0.0.0",
        port=port,
        reload=is_dev,
    )
