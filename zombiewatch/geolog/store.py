"""
GeoLog Store
Append-only per-driver location history on top of SQLAlchemy:
- on_course: last known position per driver (most recent wins)
- driver_log: timestamp -> position, per driver
- driver_timestamps: set of every timestamp recorded per driver

The three writes of an ingest are independent transactions. A failed
sub-write does not roll back the others, so readers can observe a
timestamp whose position never made it to driver_log.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import PartialWriteError, StoreUnavailable, TimestampNotFound
from ..models import DriverLogEntry, DriverTimestamp, OnCourse
from .geo import haversine_m

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocationSample:
    driver_id: str
    timestamp: int
    latitude: float
    longitude: float


class IngestStep(Enum):
    ON_COURSE = "on-course"
    POSITION_LOG = "position-log"
    TIMESTAMP_SET = "timestamp-set"


@dataclass
class WriteOutcome:
    step: IngestStep
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class IngestReport:
    sample: LocationSample
    outcomes: List[WriteOutcome] = field(default_factory=list)

    @property
    def failures(self) -> List[WriteOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def ok(self) -> bool:
        return not self.failures


class GeoLogStore:
    def __init__(self, engine):
        self.engine = engine
        self._steps: Dict[IngestStep, Callable[[LocationSample], None]] = {
            IngestStep.ON_COURSE: self._write_on_course,
            IngestStep.POSITION_LOG: self._write_position,
            IngestStep.TIMESTAMP_SET: self._write_timestamp,
        }

    # -- write path -------------------------------------------------------

    def ingest(self, sample: LocationSample) -> IngestReport:
        """Write a sample to every structure, collecting per-step outcomes.

        Raises PartialWriteError (carrying the report) if any step failed.
        Steps that succeeded stay applied.
        """
        report = IngestReport(sample=sample)
        for step, write in self._steps.items():
            try:
                write(sample)
                report.outcomes.append(WriteOutcome(step))
            except SQLAlchemyError as e:
                log.warning("Error in saving %s data for driver %s: %s", step.value, sample.driver_id, e)
                report.outcomes.append(WriteOutcome(step, e))

        if not report.ok:
            raise PartialWriteError(report)

        log.debug("Sample for driver %s at %s persisted", sample.driver_id, sample.timestamp)
        return report

    def _write_on_course(self, sample: LocationSample):
        with Session(self.engine) as session, session.begin():
            session.merge(OnCourse(
                driver_id=sample.driver_id,
                latitude=sample.latitude,
                longitude=sample.longitude,
                updated_at=sample.timestamp,
            ))

    def _write_position(self, sample: LocationSample):
        with Session(self.engine) as session, session.begin():
            session.merge(DriverLogEntry(
                driver_id=sample.driver_id,
                timestamp=sample.timestamp,
                latitude=sample.latitude,
                longitude=sample.longitude,
            ))

    def _write_timestamp(self, sample: LocationSample):
        with Session(self.engine) as session, session.begin():
            session.merge(DriverTimestamp(driver_id=sample.driver_id, timestamp=sample.timestamp))

    # -- read path --------------------------------------------------------

    def list_timestamps_descending(self, driver_id: str, limit: int) -> List[int]:
        """Most recent first. An empty list means the driver is unknown."""
        stmt = (
            select(DriverTimestamp.timestamp)
            .where(DriverTimestamp.driver_id == driver_id)
            .order_by(DriverTimestamp.timestamp.desc())
            .limit(limit)
        )
        try:
            with Session(self.engine) as session:
                return [int(ts) for ts in session.scalars(stmt)]
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Error listing timestamps for driver {driver_id}: {e}") from e

    def position_at(self, driver_id: str, timestamp: int) -> Tuple[float, float]:
        """Returns (latitude, longitude) stored for the timestamp."""
        try:
            with Session(self.engine) as session:
                entry = session.get(DriverLogEntry, (driver_id, timestamp))
                if entry is None:
                    raise TimestampNotFound(driver_id, timestamp)
                return entry.latitude, entry.longitude
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Error reading position of driver {driver_id}: {e}") from e

    def distance_between(self, driver_id: str, t1: int, t2: int) -> float:
        """Great-circle distance in meters between two stored positions."""
        stmt = select(DriverLogEntry).where(
            DriverLogEntry.driver_id == driver_id,
            DriverLogEntry.timestamp.in_((t1, t2)),
        )
        try:
            with Session(self.engine) as session:
                positions = {
                    int(e.timestamp): (e.latitude, e.longitude) for e in session.scalars(stmt)
                }
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Error computing distance for driver {driver_id}: {e}") from e

        for ts in (t1, t2):
            if ts not in positions:
                raise TimestampNotFound(driver_id, ts)

        lat1, lng1 = positions[t1]
        lat2, lng2 = positions[t2]
        return haversine_m(lat1, lng1, lat2, lng2)

    def last_position(self, driver_id: str) -> Optional[Tuple[float, float, int]]:
        """Entry of the on-course index for the driver, if any."""
        try:
            with Session(self.engine) as session:
                entry = session.get(OnCourse, driver_id)
                if entry is None:
                    return None
                return entry.latitude, entry.longitude, int(entry.updated_at)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Error reading on-course position of driver {driver_id}: {e}") from e
