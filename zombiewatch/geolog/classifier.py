"""
Zombie Classifier
A driver is a zombie when it covered at most `max_distance_meters` during
the last `elapse_minutes`. Whenever the answer is inconclusive the driver is
reported as NOT a zombie.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import NotFound, StoreUnavailable
from ..models import ZombieSetting
from .aggregate import DistanceAggregator

log = logging.getLogger(__name__)

STATUS_OK = 200
STATUS_NOT_FOUND = 404
STATUS_INTERNAL_ERROR = 500
STATUS_SERVICE_UNAVAILABLE = 503


@dataclass(frozen=True)
class ZombieThresholds:
    elapse_minutes: float = 5.0
    max_distance_meters: float = 500.0


DEFAULT_THRESHOLDS = ZombieThresholds()


class ThresholdStore:
    """Zombie thresholds, settable at runtime by operators.

    Values are read from the store on every call, never cached.
    """
    ELAPSE_KEY = 'zombie-e'
    MAX_DISTANCE_KEY = 'zombie-mdc'

    def __init__(self, engine, defaults: ZombieThresholds = DEFAULT_THRESHOLDS):
        self.engine = engine
        self.defaults = defaults

    def get(self) -> ZombieThresholds:
        try:
            with Session(self.engine) as session:
                elapse = session.get(ZombieSetting, self.ELAPSE_KEY)
                max_distance = session.get(ZombieSetting, self.MAX_DISTANCE_KEY)
                raw_elapse = elapse.value if elapse else None
                raw_max_distance = max_distance.value if max_distance else None
        except SQLAlchemyError as e:
            log.warning("An error occurred reading zombie thresholds, using defaults: %s", e)
            return self.defaults

        return ZombieThresholds(
            elapse_minutes=self._parse(self.ELAPSE_KEY, raw_elapse, self.defaults.elapse_minutes,
                                       lambda v: v > 0),
            max_distance_meters=self._parse(self.MAX_DISTANCE_KEY, raw_max_distance,
                                            self.defaults.max_distance_meters, lambda v: v >= 0),
        )

    def set(self, elapse_minutes: Optional[float] = None, max_distance_meters: Optional[float] = None):
        with Session(self.engine) as session, session.begin():
            if elapse_minutes is not None:
                session.merge(ZombieSetting(key=self.ELAPSE_KEY, value=repr(float(elapse_minutes))))
            if max_distance_meters is not None:
                session.merge(ZombieSetting(key=self.MAX_DISTANCE_KEY, value=repr(float(max_distance_meters))))

    def clear(self):
        with Session(self.engine) as session, session.begin():
            for key in (self.ELAPSE_KEY, self.MAX_DISTANCE_KEY):
                setting = session.get(ZombieSetting, key)
                if setting is not None:
                    session.delete(setting)

    @staticmethod
    def _parse(key, raw, default, valid):
        if raw is None:
            log.debug("nil value for %s key, using default %s", key, default)
            return default
        try:
            value = float(raw)
        except ValueError:
            log.warning("Invalid value %r for %s key, using default %s", raw, key, default)
            return default
        if not math.isfinite(value) or not valid(value):
            log.warning("Out of range value %r for %s key, using default %s", raw, key, default)
            return default
        return value


@dataclass(frozen=True)
class Classification:
    driver_id: str
    is_zombie: bool
    status: int

    def to_dict(self):
        if self.status == STATUS_OK:
            return {"id": self.driver_id, "zombie": self.is_zombie}
        if self.status == STATUS_NOT_FOUND:
            return {"id": self.driver_id, "message": "Driver not found"}
        return {"id": self.driver_id, "message": "An error occurred"}


def format_minutes(minutes: float) -> str:
    return repr(float(minutes))


def is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class Classifier:
    def __init__(self, thresholds: ThresholdStore, aggregator: DistanceAggregator,
                 location_service_url: str, http: Optional[requests.Session] = None,
                 timeout: float = 5.0):
        self.thresholds = thresholds
        self.aggregator = aggregator
        self.location_service_url = location_service_url.rstrip('/')
        self.http = http or requests.Session()
        self.timeout = timeout

    def classify(self, driver_id: str) -> Classification:
        thresholds = self.thresholds.get()
        log.info("Params for evaluating zombie status of %s: %s min, %s m",
                 driver_id, thresholds.elapse_minutes, thresholds.max_distance_meters)

        path = requests.utils.quote(driver_id, safe='')
        url = f"{self.location_service_url}/drivers/{path}/locations"
        params = {"minutes": format_minutes(thresholds.elapse_minutes), "distance": "true"}
        try:
            resp = self.http.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            log.error("Error in contacting driver-location service: %s", e)
            return Classification(driver_id, False, STATUS_SERVICE_UNAVAILABLE)

        if resp.status_code != STATUS_OK:
            log.warning("Driver-location service answered %s for driver %s", resp.status_code, driver_id)
            return Classification(driver_id, False, resp.status_code)

        try:
            samples = resp.json()
        except ValueError as e:
            log.error("Something went wrong while decoding the location payload: %s", e)
            return Classification(driver_id, False, STATUS_INTERNAL_ERROR)
        if not isinstance(samples, list):
            log.error("Location payload for driver %s is not a JSON array", driver_id)
            return Classification(driver_id, False, STATUS_INTERNAL_ERROR)

        distance = self._distance(driver_id, samples)
        if distance is None:
            return Classification(driver_id, False, STATUS_INTERNAL_ERROR)

        is_zombie = distance <= thresholds.max_distance_meters
        log.info("Driver %s covered %s m: zombie=%s", driver_id, distance, is_zombie)
        return Classification(driver_id, is_zombie, STATUS_OK)

    def _distance(self, driver_id: str, samples: list) -> Optional[float]:
        if not samples:
            return 0.0

        last = samples[-1]
        cumulative = last.get("cumulativeDistance") if isinstance(last, dict) else None
        if is_number(cumulative):
            return float(cumulative)

        log.info("cumulativeDistance missing or invalid for driver %s, evaluating distance", driver_id)
        try:
            return self.aggregator.aggregate(driver_id, samples)
        except (NotFound, StoreUnavailable) as e:
            log.error("Distance evaluation failed for driver %s: %s", driver_id, e)
            return None
