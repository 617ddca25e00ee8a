from __future__ import annotations

import asyncio

import httpx
import pytest

from bookshelf.core.collection import BookCollection
from bookshelf.core.errors import StorageUnavailableError
from bookshelf.core.scanner import (
    IDLE,
    INVALID_ISBN,
    LOADING,
    NO_CODE_IN_IMAGE,
    SAVE_FAILED,
    SCANNER_UNAVAILABLE,
    SCANNING,
    SIMULATED_ISBN,
    ScanController,
)
from bookshelf.core.store import BookStore

from conftest import BrokenStorage, FakeDecoder, FakeLookup, mock_lookup


@pytest.fixture
def found():
    return []


def make_controller(found, decoder=None, lookup=None):
    async def on_book_found(book):
        found.append(book)
        return book

    return ScanController(decoder or FakeDecoder(), lookup or FakeLookup(), on_book_found)


async def _until(predicate, timeout=1.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


async def test_start_refused_without_decoder(found):
    controller = make_controller(found, decoder=FakeDecoder(available=False))

    assert await controller.start() is False

    assert controller.state == IDLE
    assert controller.error == SCANNER_UNAVAILABLE


async def test_short_code_keeps_scanning(found):
    controller = make_controller(found)
    await controller.start()

    assert controller.handle_detection("123456789") is False

    assert controller.state == SCANNING
    assert controller.last_scanned_code is None
    controller.stop()


async def test_recognised_code_moves_to_loading_then_idle(found):
    decoder = FakeDecoder()
    controller = make_controller(found, decoder=decoder)
    await controller.start()

    assert controller.handle_detection("9782253093008") is True

    assert controller.state == LOADING
    assert not controller.scanning
    assert not decoder.active
    assert controller.last_scanned_code == "9782253093008"

    await controller.wait()

    assert controller.state == IDLE
    assert controller.error is None
    assert controller.last_scanned_code is None
    assert controller.search_source == "google_books"
    assert [b.isbn for b in found] == ["9782253093008"]


async def test_detections_flow_through_the_event_queue(found):
    controller = make_controller(found)
    await controller.start()

    assert controller.feed_frame(b"9782253093008")
    await _until(lambda: controller.state != SCANNING)
    await controller.wait()

    assert [b.isbn for b in found] == ["9782253093008"]


async def test_pump_handles_queued_detections(found):
    controller = make_controller(found)
    await controller.start()

    controller.feed_frame(b"42")
    controller.feed_frame(b"9782253093008")
    controller.pump()

    assert controller.state == LOADING
    await controller.wait()
    assert len(found) == 1


async def test_lookup_failure_keeps_code_and_sets_error(found):
    lookup = FakeLookup(missing=("9780000000002",))
    controller = make_controller(found, lookup=lookup)
    await controller.start()

    controller.handle_detection("9780000000002")
    await controller.wait()

    assert controller.state == IDLE
    assert "9780000000002" in controller.error
    assert controller.last_scanned_code == "9780000000002"
    assert found == []


async def test_manual_entry_bypasses_scanning(found):
    decoder = FakeDecoder()
    controller = make_controller(found, decoder=decoder)

    assert controller.search_by_isbn(" 978-2-253-09300-8 ") is True
    assert controller.state == LOADING
    await controller.wait()

    assert decoder.starts == 0
    assert [b.isbn for b in found] == ["9782253093008"]


async def test_manual_entry_rejects_short_isbn(found):
    controller = make_controller(found)

    assert controller.search_by_isbn("12345") is False

    assert controller.error == INVALID_ISBN
    assert controller.state == IDLE


async def test_simulate_scan_uses_canned_isbn(found):
    lookup = FakeLookup()
    controller = make_controller(found, lookup=lookup)

    controller.simulate_scan()
    await controller.wait()

    assert lookup.calls == [SIMULATED_ISBN]
    assert found[0].reading_status == "unread"


async def test_image_without_code(found):
    controller = make_controller(found, decoder=FakeDecoder(image_code=None))

    assert await controller.process_image(b"png") is False

    assert controller.error == NO_CODE_IN_IMAGE
    assert controller.state == IDLE


async def test_image_with_code_looks_it_up(found):
    controller = make_controller(found, decoder=FakeDecoder(image_code="9782253093008"))

    assert await controller.process_image(b"png") is True
    await controller.wait()

    assert [b.isbn for b in found] == ["9782253093008"]


async def test_latest_lookup_wins(found):
    lookup = FakeLookup(held=("1111111111",))
    controller = make_controller(found, lookup=lookup)

    controller.search_by_isbn("1111111111")
    controller.simulate_scan()
    await _until(lambda: controller.state == IDLE)
    lookup.release.set()
    await controller.wait()

    assert [b.isbn for b in found] == [SIMULATED_ISBN]
    assert controller.state == IDLE


async def test_close_suppresses_pending_lookup(found):
    lookup = FakeLookup(held=(SIMULATED_ISBN,))
    controller = make_controller(found, lookup=lookup)

    controller.simulate_scan()
    controller.close()
    lookup.release.set()
    await controller.wait()

    assert found == []
    assert lookup.calls == [SIMULATED_ISBN]
    assert controller.state == IDLE


async def test_starting_again_stops_the_previous_session(found):
    decoder = FakeDecoder()
    controller = make_controller(found, decoder=decoder)

    await controller.start()
    first_queue = decoder.events
    await controller.start()

    assert decoder.stops == 2
    assert decoder.events is not first_queue
    assert controller.state == SCANNING
    controller.close()
    controller.close()
    assert controller.state == IDLE


async def test_save_failure_is_reported(found):
    collection = BookCollection(BookStore(BrokenStorage()))
    controller = ScanController(FakeDecoder(), FakeLookup(), collection.add_book)

    controller.simulate_scan()
    await controller.wait()

    assert controller.error == SAVE_FAILED
    assert controller.last_scanned_code == SIMULATED_ISBN
    assert collection.books == []
    assert isinstance(collection.error, str)


def test_snapshot_reports_availability(found):
    controller = make_controller(found, decoder=FakeDecoder(available=False))
    assert controller.snapshot()["scanner_available"] is False
    assert controller.snapshot()["state"] == IDLE


def test_storage_error_is_a_bookshelf_error():
    from bookshelf.core.errors import BookshelfError

    assert issubclass(StorageUnavailableError, BookshelfError)


class ExplodingLookup:
    async def find(self, isbn):
        raise RuntimeError("unexpected payload")


async def test_unexpected_lookup_failure_returns_to_idle(found):
    controller = make_controller(found, lookup=ExplodingLookup())

    controller.simulate_scan()
    await controller.wait()

    assert controller.state == IDLE
    assert SIMULATED_ISBN in controller.error
    assert controller.last_scanned_code == SIMULATED_ISBN
    assert found == []


async def test_malformed_source_payload_ends_as_not_found(found):
    lookup = mock_lookup({"www.googleapis.com": httpx.Response(200, json={"items": [None]})})
    controller = make_controller(found, lookup=lookup)

    controller.simulate_scan()
    await controller.wait()

    assert controller.state == IDLE
    assert SIMULATED_ISBN in controller.error
    assert found == []


async def test_unexpected_save_failure_is_reported():
    async def on_book_found(book):
        raise OSError("disk full")

    controller = ScanController(FakeDecoder(), FakeLookup(), on_book_found)

    controller.simulate_scan()
    await controller.wait()

    assert controller.state == IDLE
    assert controller.error == SAVE_FAILED
    assert controller.last_scanned_code == SIMULATED_ISBN
