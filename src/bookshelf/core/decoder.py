"""Barcode decoding through zbar.

Decoding itself is left to pyzbar; this module only configures the accepted
symbologies and forwards detections onto an event queue.
"""

from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass

import structlog
from PIL import Image, UnidentifiedImageError

from .errors import ScannerUnavailableError

try:
    from pyzbar.pyzbar import ZBarSymbol
    from pyzbar.pyzbar import decode as zbar_decode
except ImportError:  # libzbar missing on this host
    ZBarSymbol = None
    zbar_decode = None

log = structlog.get_logger()

SYMBOLOGIES = ("EAN13", "EAN8", "UPCA", "UPCE", "CODE128")


@dataclass
class Detection:
    code: str
    symbology: str = ""


class ZbarDecoder:
    """Decode still images and live frames with zbar."""

    def __init__(self, symbologies: tuple[str, ...] = SYMBOLOGIES) -> None:
        self.symbologies = symbologies
        self._events: asyncio.Queue[Detection] | None = None

    @property
    def available(self) -> bool:
        return zbar_decode is not None

    @property
    def active(self) -> bool:
        return self._events is not None

    def start(self, events: asyncio.Queue[Detection]) -> None:
        if not self.available:
            raise ScannerUnavailableError("zbar is not installed")
        self._events = events
        log.debug("decoder_started")

    def stop(self) -> None:
        if self._events is not None:
            log.debug("decoder_stopped")
        self._events = None

    def _decode(self, image: bytes) -> Detection | None:
        if zbar_decode is None:
            raise ScannerUnavailableError("zbar is not installed")
        try:
            img = Image.open(io.BytesIO(image))
            img = img.convert("L")
        except (UnidentifiedImageError, OSError) as e:
            log.debug("decode_unreadable_image", error=str(e))
            return None

        symbols = [getattr(ZBarSymbol, name) for name in self.symbologies]
        for result in zbar_decode(img, symbols=symbols):
            code = result.data.decode("utf-8", errors="ignore").strip()
            if code:
                log.debug("decode_hit", code=code, symbology=result.type)
                return Detection(code=code, symbology=result.type)
        return None

    def decode_single(self, image: bytes) -> str | None:
        """Decode one still image; None when no barcode is found."""
        detection = self._decode(image)
        return detection.code if detection else None

    def feed_frame(self, frame: bytes) -> bool:
        """Decode a live frame and queue any detection. Returns True on a hit."""
        if self._events is None:
            return False
        detection = self._decode(frame)
        if detection is None:
            return False
        try:
            self._events.put_nowait(detection)
        except asyncio.QueueFull:
            log.debug("decode_event_dropped", code=detection.code)
        return True
