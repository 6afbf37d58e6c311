"""
Windowed Query Engine
Answers "where has driver X been in the last N minutes", optionally with
per-step and cumulative travelled distance.

Lookups are best effort: a sample whose position cannot be read is skipped,
and a step whose distance cannot be computed counts as zero.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..errors import DriverNotFound, NotFound, StoreUnavailable
from .geo import floor_to, timestamp_as_iso, to_millimeters
from .store import GeoLogStore

log = logging.getLogger(__name__)

DEFAULT_WINDOW_MINUTES = 5.0


@dataclass
class PositionRecord:
    timestamp: int
    latitude: float
    longitude: float
    elapsed_distance: Optional[float] = None
    cumulative_distance: Optional[float] = None

    def to_dict(self) -> Dict:
        d = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "updated_at": timestamp_as_iso(self.timestamp),
        }
        if self.elapsed_distance is not None:
            d["elapsedDistance"] = self.elapsed_distance
            d["cumulativeDistance"] = self.cumulative_distance
        return d


def timestamp_limit(window_minutes: float) -> int:
    # At most one sample per second fits in the window.
    return max(1, int(math.ceil(window_minutes * 60)))


class WindowedQueryEngine:
    def __init__(self, store: GeoLogStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def eligible_timestamps(self, driver_id: str, window_minutes: float) -> List[int]:
        """Timestamps inside the window, most recent first.

        Raises DriverNotFound when the driver has no sample at all.
        """
        now = int(self.clock())
        cutoff = now - window_minutes * 60

        recorded = self.store.list_timestamps_descending(driver_id, timestamp_limit(window_minutes))
        if not recorded:
            raise DriverNotFound(driver_id)

        eligible = []
        for ts in recorded:
            if ts < cutoff:
                # sorted: nothing after this one is fresh
                break
            eligible.append(ts)
        return eligible

    def query(self, driver_id: str, window_minutes: float = DEFAULT_WINDOW_MINUTES,
              include_distance: bool = False) -> List[PositionRecord]:
        eligible = self.eligible_timestamps(driver_id, window_minutes)
        ascending = list(reversed(eligible))
        log.debug("Eligible timestamps for driver %s: %s", driver_id, ascending)

        records = []
        total_mm = 0
        for i, ts in enumerate(ascending):
            try:
                latitude, longitude = self.store.position_at(driver_id, ts)
            except (NotFound, StoreUnavailable) as e:
                log.warning("Skipping sample of driver %s at %s: %s", driver_id, ts, e)
                continue

            record = PositionRecord(
                timestamp=ts,
                latitude=floor_to(latitude, 6),
                longitude=floor_to(longitude, 6),
            )

            if include_distance:
                elapsed_mm = 0
                if i > 0:
                    # paired with the previous eligible timestamp, skipped or not
                    elapsed_mm = self._step_millimeters(driver_id, ascending[i - 1], ts)
                total_mm += elapsed_mm
                record.elapsed_distance = elapsed_mm / 1000
                record.cumulative_distance = total_mm / 1000

            records.append(record)

        return records

    def _step_millimeters(self, driver_id: str, previous: int, current: int) -> int:
        try:
            return to_millimeters(self.store.distance_between(driver_id, previous, current))
        except (NotFound, StoreUnavailable) as e:
            log.warning("Distance between %s and %s for driver %s unavailable, counting 0: %s",
                        previous, current, driver_id, e)
            return 0
