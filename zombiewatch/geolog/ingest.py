"""
Location ingestion
Decodes location messages ({"driverId", "latitude", "longitude"}) delivered
with an envelope timestamp and persists them to the GeoLog store.

Nothing on this path is retried: malformed messages and store failures are
logged and dropped.
"""

import json
import logging
import math
import queue
import threading
import time
from enum import Enum
from typing import Callable, Optional

from ..errors import PartialWriteError, ValidationError
from .geo import MAX_LATITUDE, MAX_LONGITUDE, MIN_LATITUDE, MIN_LONGITUDE
from .store import GeoLogStore, IngestReport, LocationSample

log = logging.getLogger(__name__)


class SampleField(Enum):
    BODY = "body"
    DRIVER_ID = "driverId"
    LATITUDE = "latitude"
    LONGITUDE = "longitude"


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _finite_float(value, field: SampleField) -> float:
    try:
        value = float(value)
    except OverflowError:
        raise ValidationError(field, "not a finite number")
    if not math.isfinite(value):
        raise ValidationError(field, "not a finite number")
    return value


def normalize_driver_id(raw) -> str:
    if isinstance(raw, str):
        if raw == "":
            raise ValidationError(SampleField.DRIVER_ID, "empty value")
        return raw
    if _is_number(raw):
        value = _finite_float(raw, SampleField.DRIVER_ID)
        if isinstance(raw, int):
            return str(raw)
        if value.is_integer():
            return str(int(value))
        return repr(value)
    raise ValidationError(SampleField.DRIVER_ID, f"wrong type {type(raw).__name__}")


def _coordinate(payload: dict, field: SampleField, low: float, high: float) -> float:
    value = payload[field.value]
    if value is None:
        raise ValidationError(field, "nil value")
    if not _is_number(value):
        raise ValidationError(field, f"wrong numeric type {type(value).__name__}")
    value = _finite_float(value, field)
    if value < low or value > high:
        raise ValidationError(field, f"value {value} out of range [{low}, {high}]")
    return value


def decode_sample(body, timestamp: int) -> LocationSample:
    """Strictly decode a message body into a LocationSample.

    Raises ValidationError naming the first field that failed.
    """
    try:
        payload = json.loads(body)
    except (TypeError, ValueError) as e:
        raise ValidationError(SampleField.BODY, f"not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise ValidationError(SampleField.BODY, "not a JSON object")

    for field in (SampleField.DRIVER_ID, SampleField.LATITUDE, SampleField.LONGITUDE):
        if field.value not in payload:
            raise ValidationError(field, "missing field")
    if payload[SampleField.DRIVER_ID.value] is None:
        raise ValidationError(SampleField.DRIVER_ID, "nil value")

    return LocationSample(
        driver_id=normalize_driver_id(payload[SampleField.DRIVER_ID.value]),
        timestamp=int(timestamp),
        latitude=_coordinate(payload, SampleField.LATITUDE, MIN_LATITUDE, MAX_LATITUDE),
        longitude=_coordinate(payload, SampleField.LONGITUDE, MIN_LONGITUDE, MAX_LONGITUDE),
    )


def handle_message(store: GeoLogStore, body, timestamp: int) -> Optional[IngestReport]:
    """Decode and persist one message. Never raises for bad input or store errors."""
    log.debug("Message body: %r", body)
    try:
        sample = decode_sample(body, timestamp)
    except ValidationError as e:
        log.warning("Message has not a valid structure and won't be persisted: %s", e)
        return None

    try:
        return store.ingest(sample)
    except PartialWriteError as e:
        log.error("An error occurred while persisting the message: %s", e)
        return e.report


class LocationConsumer:
    """Worker thread draining a queue of (body, timestamp) envelopes."""
    POLL_INTERVAL_SEC = 0.5

    def __init__(self, store: GeoLogStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock
        self.processed = 0
        self.persisted = 0
        self._queue: "queue.Queue" = queue.Queue()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def publish(self, body, timestamp: Optional[int] = None):
        if timestamp is None:
            timestamp = int(self.clock())
        self._queue.put((body, timestamp))

    def start(self) -> bool:
        if self.is_running:
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="location-consumer", daemon=True)
        self._thread.start()
        return True

    def stop(self, timeout: float = 10) -> bool:
        if not self.is_running:
            return False
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        return True

    def join(self):
        """Block until every published envelope has been handled."""
        self._queue.join()

    def _run(self):
        while not self._stop_event.is_set():
            try:
                body, timestamp = self._queue.get(timeout=self.POLL_INTERVAL_SEC)
            except queue.Empty:
                continue
            try:
                report = handle_message(self.store, body, timestamp)
                if report is not None and report.ok:
                    self.persisted += 1
            except Exception:
                log.exception("Unexpected error while handling message %r", body)
            finally:
                self.processed += 1
                self._queue.task_done()
