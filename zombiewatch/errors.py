class ZombieWatchError(Exception):
    pass


class ValidationError(ZombieWatchError):
    """Raised when an inbound location payload fails decoding.

    ``field`` is the :class:`~zombiewatch.geolog.ingest.SampleField` that failed.
    """

    def __init__(self, field, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field.value}: {reason}")


class NotFound(ZombieWatchError):
    pass


class DriverNotFound(NotFound):
    def __init__(self, driver_id: str):
        self.driver_id = driver_id
        super().__init__(f"Driver {driver_id} not found")


class TimestampNotFound(NotFound):
    def __init__(self, driver_id: str, timestamp: int):
        self.driver_id = driver_id
        self.timestamp = timestamp
        super().__init__(f"No position recorded for driver {driver_id} at {timestamp}")


class StoreUnavailable(ZombieWatchError):
    pass


class UpstreamUnavailable(ZombieWatchError):
    pass


class PartialWriteError(ZombieWatchError):
    """One or more sub-writes of an ingest failed. Successful writes are kept."""

    def __init__(self, report):
        self.report = report
        failed = ", ".join(f"{o.step.value}: {o.error}" for o in report.failures)
        super().__init__(f"There have been errors in store writes: {failed}")
