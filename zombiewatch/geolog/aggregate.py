"""
Distance Aggregator
Re-derives the distance a driver travelled from an already ordered list of
samples (e.g. a location response whose cumulativeDistance is unusable).

Unlike the windowed query, any failed distance lookup aborts the whole
aggregation: this is the last-resort path and has nothing to fall back on.
"""

import logging
from typing import Iterable, List, Mapping

from .geo import parse_iso_timestamp
from .store import GeoLogStore

log = logging.getLogger(__name__)

TIMESTAMP_FIELD = "updated_at"


def extract_timestamps(samples: Iterable[Mapping]) -> List[int]:
    """Unix timestamps of the samples, in order. Unusable entries are dropped."""
    timestamps = []
    for i, sample in enumerate(samples):
        if not isinstance(sample, Mapping) or TIMESTAMP_FIELD not in sample:
            log.warning("%s field is not in JSON object at index %d", TIMESTAMP_FIELD, i)
            continue
        value = sample[TIMESTAMP_FIELD]
        if not isinstance(value, str):
            log.warning("%s field is not a string in JSON object at index %d", TIMESTAMP_FIELD, i)
            continue
        try:
            timestamps.append(parse_iso_timestamp(value))
        except ValueError as e:
            log.warning("Error in parsing timestamp at index %d: %s", i, e)
    return timestamps


class DistanceAggregator:
    def __init__(self, store: GeoLogStore):
        self.store = store

    def aggregate(self, driver_id: str, samples: Iterable[Mapping]) -> float:
        """Total meters covered across consecutive samples.

        Propagates NotFound / StoreUnavailable from the first failing lookup.
        """
        timestamps = extract_timestamps(samples)
        log.debug("Timestamps retrieved for driver %s: %s", driver_id, timestamps)

        total = 0.0
        for previous, current in zip(timestamps, timestamps[1:]):
            total += self.store.distance_between(driver_id, current, previous)

        log.info("Computed cumulative distance for driver %s: %s", driver_id, total)
        return total
