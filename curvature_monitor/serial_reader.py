from __future__ import annotations

import codecs
import logging
import re
import threading
import time
from typing import TYPE_CHECKING, List, Optional, Tuple

import serial
import serial.tools.list_ports

from . import events

if TYPE_CHECKING:  # pragma: no cover
    from .config import SerialConfig
    from .events import EventEmitter

logger = logging.getLogger(__name__)

WEIGHT_PREFIXES = ("WEIGHT:", "W:")

# Leading decimal number, matched the way a lenient float parser reads "12.5kg".
_NUMBER_RE = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def parse_weight(line: str) -> Optional[float]:
    """
    Parse one sensor record. Accepts ``WEIGHT:<n>``, ``W:<n>`` or a bare number;
    returns None when no number can be read.
    """
    text = line.strip()
    for prefix in WEIGHT_PREFIXES:
        if text.startswith(prefix):
            text = text[len(prefix):]
            break
    match = _NUMBER_RE.match(text)
    if match is None:
        return None
    return float(match.group(1))


class LineFramer:
    """
    Turns a byte stream into complete text lines.

    Decoding is incremental, so a multi-byte character split across reads is
    held until it is complete. The partial line after the last newline is kept
    for the next ``feed``.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, data: bytes) -> List[str]:
        self._buffer += self._decoder.decode(data)
        parts = self._buffer.split("\n")
        self._buffer = parts.pop()
        return [p.strip() for p in parts if p.strip()]

    def reset(self) -> None:
        self._decoder.reset()
        self._buffer = ""


class WeightRegister:
    """Latest weight reading (kg). Writers replace the whole value; last write wins."""

    def __init__(self, value: float = 0.0):
        self._entry: Tuple[float, Optional[float]] = (float(value), None)

    @property
    def value(self) -> float:
        return self._entry[0]

    @property
    def updated_at(self) -> Optional[float]:
        return self._entry[1]

    def set(self, value: float) -> None:
        self._entry = (float(value), time.monotonic())

    def reset(self) -> None:
        self._entry = (0.0, None)


def list_ports() -> List[str]:
    return [port.device for port in serial.tools.list_ports.comports()]


class SerialWeightReader:
    """
    Background reader feeding load-cell records into a ``WeightRegister``.

    ``connect`` opens the port (any pyserial URL, e.g. ``loop://``) at the
    configured 8N1 settings and starts a daemon thread; ``disconnect`` cancels
    the pending read and returns without waiting more than ``join_timeout``.
    """

    def __init__(
        self,
        cfg: "SerialConfig",
        register: WeightRegister,
        emitter: Optional["EventEmitter"] = None,
        join_timeout: float = 0.5,
    ):
        self.cfg = cfg
        self.register = register
        self.emitter = emitter
        self.join_timeout = float(join_timeout)
        self._serial: Optional[serial.SerialBase] = None
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()
        self.records_accepted = 0
        self.records_rejected = 0

    @property
    def connected(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _emit(self, event: str, *args) -> None:
        if self.emitter is not None:
            self.emitter.emit(event, *args)

    def connect(self, port: Optional[str] = None) -> None:
        if self.connected:
            return
        port = port or self.cfg.port
        if not port:
            raise ValueError("No serial port given; pass a port or set serial.port in the config")
        try:
            ser = serial.serial_for_url(
                port,
                baudrate=self.cfg.baudrate,
                bytesize=self.cfg.bytesize,
                parity=self.cfg.parity,
                stopbits=self.cfg.stopbits,
                timeout=self.cfg.read_timeout,
            )
        except serial.SerialException as exc:
            logger.error("Failed to open serial port %s: %s", port, exc)
            self._emit(events.SERIAL_ERROR, exc)
            raise
        logger.info("Serial port %s connected (%d baud)", port, self.cfg.baudrate)
        self._serial = ser
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, args=(ser,), name="SerialWeightReader", daemon=True)
        self._thread.start()
        self._emit(events.SERIAL_STATUS, True)

    def disconnect(self) -> None:
        self._stop.set()
        ser = self._serial
        if ser is not None:
            cancel = getattr(ser, "cancel_read", None)
            if cancel is not None:
                try:
                    cancel()
                except (serial.SerialException, OSError) as exc:
                    logger.debug("cancel_read failed: %s", exc)
        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=self.join_timeout)
        self._thread = None
        self.register.reset()
        self._emit(events.WEIGHT_UPDATED, 0.0)

    def handle_line(self, line: str) -> Optional[float]:
        weight = parse_weight(line)
        if weight is None:
            self.records_rejected += 1
            logger.warning("Invalid weight data received: %r", line)
            return None
        self.register.set(weight)
        self.records_accepted += 1
        logger.debug("Received weight: %s kg", weight)
        self._emit(events.WEIGHT_UPDATED, weight)
        return weight

    def _run(self, ser) -> None:
        framer = LineFramer(self.cfg.encoding)
        try:
            while not self._stop.is_set():
                data = ser.read(max(1, ser.in_waiting))
                if not data:
                    continue
                for line in framer.feed(data):
                    self.handle_line(line)
        except (serial.SerialException, OSError) as exc:
            if self._stop.is_set():
                logger.debug("Serial read cancelled: %s", exc)
            else:
                logger.error("Error reading serial data: %s", exc)
                self._emit(events.SERIAL_ERROR, exc)
        finally:
            try:
                ser.close()
            except (serial.SerialException, OSError) as exc:
                logger.debug("Serial close failed: %s", exc)
            if self._serial is ser:
                self._serial = None
            logger.info("Serial port disconnected")
            self._emit(events.SERIAL_STATUS, False)
