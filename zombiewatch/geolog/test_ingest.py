import json

import pytest
from sqlalchemy.exc import OperationalError

from ..errors import ValidationError
from .ingest import LocationConsumer, SampleField, decode_sample, handle_message
from .store import IngestStep

NOW = 1539850371


@pytest.mark.parametrize("payload", [
    {"driverId": "aaaa", "latitude": 22.000, "longitude": 23.444},
    {"driverId": 3273627, "latitude": 22.000, "longitude": 23.444},
    {"driverId": 3333.6, "latitude": 22.000, "longitude": 23.444},
    {"driverId": 0, "latitude": 22.000, "longitude": 23.444},
    {"driverId": 0.000, "latitude": 22.000, "longitude": 23.444},
    {"driverId": "aaa", "latitude": -78.00, "longitude": 23.444},
    {"driverId": "aaa", "latitude": 85.05112878, "longitude": -180},
    {"driverId": "aaa", "latitude": 22, "longitude": 23},
])
def test_decode_accepts_valid_payloads(payload):
    sample = decode_sample(json.dumps(payload), NOW)

    assert sample.timestamp == NOW
    assert sample.latitude == payload["latitude"]
    assert sample.longitude == payload["longitude"]


@pytest.mark.parametrize("payload, field", [
    ({"driverId": None, "latitude": 22.000, "longitude": 23.444}, SampleField.DRIVER_ID),
    ({"driverId": "aaaa", "latitude": None, "longitude": 23.444}, SampleField.LATITUDE),
    ({"driverId": "aaaa", "latitude": 22.000, "longitude": None}, SampleField.LONGITUDE),
    ({"driverId": "aaaa", "latitude": "22.000", "longitude": 23.444}, SampleField.LATITUDE),
    ({"driverId": "aaaa", "latitude": 22.000, "longitude": "23.444"}, SampleField.LONGITUDE),
    ({"driverId": "aaaa", "longitude": 23.444}, SampleField.LATITUDE),
    ({"driverId": "", "latitude": 22.000, "longitude": 23.444}, SampleField.DRIVER_ID),
    ({"driverId": True, "latitude": 22.000, "longitude": 23.444}, SampleField.DRIVER_ID),
    ({"driverId": ["a"], "latitude": 22.000, "longitude": 23.444}, SampleField.DRIVER_ID),
    ({"driverId": "aaa", "latitude": 89.00, "longitude": 23.444}, SampleField.LATITUDE),
    ({"driverId": "aaa", "latitude": -89.00, "longitude": 23.444}, SampleField.LATITUDE),
    ({"driverId": "aaa", "latitude": 78.00, "longitude": 181.001}, SampleField.LONGITUDE),
    ({"driverId": "aaa", "latitude": 78.00, "longitude": -181.001}, SampleField.LONGITUDE),
    ({"driverId": "aaa", "latitude": True, "longitude": 23.444}, SampleField.LATITUDE),
])
def test_decode_rejects_invalid_payloads(payload, field):
    with pytest.raises(ValidationError) as exc:
        decode_sample(json.dumps(payload), NOW)

    assert exc.value.field is field


@pytest.mark.parametrize("body", [b"{not json", b"[1, 2]", b'"driver"', b""])
def test_decode_rejects_malformed_bodies(body):
    with pytest.raises(ValidationError) as exc:
        decode_sample(body, NOW)

    assert exc.value.field is SampleField.BODY


def test_decode_rejects_non_finite_coordinates():
    with pytest.raises(ValidationError) as exc:
        decode_sample(b'{"driverId": "a", "latitude": NaN, "longitude": 1.0}', NOW)

    assert exc.value.field is SampleField.LATITUDE


@pytest.mark.parametrize("raw, expected", [
    ("test001", "test001"),
    (3273627, "3273627"),
    (0.0, "0"),
    (3333.6, "3333.6"),
])
def test_driver_ids_are_normalized(raw, expected):
    body = json.dumps({"driverId": raw, "latitude": 1.0, "longitude": 1.0})

    assert decode_sample(body, NOW).driver_id == expected


def test_handle_message_persists_sample(store):
    body = json.dumps({"longitude": 2.364988, "latitude": 48.864193, "driverId": "test001"})

    report = handle_message(store, body.encode(), NOW)

    assert report.ok
    assert store.position_at("test001", NOW) == (48.864193, 2.364988)


def test_handle_message_drops_invalid_message(store):
    assert handle_message(store, b'{"driverId": "test001"}', NOW) is None
    assert store.list_timestamps_descending("test001", 10) == []


def test_handle_message_swallows_partial_writes(store, monkeypatch):
    def broken(sample):
        raise OperationalError("INSERT", {}, Exception("disk I/O error"))

    monkeypatch.setitem(store._steps, IngestStep.TIMESTAMP_SET, broken)
    body = json.dumps({"longitude": 2.364988, "latitude": 48.864193, "driverId": "test001"})

    report = handle_message(store, body, NOW)

    assert not report.ok
    assert [o.step for o in report.failures] == [IngestStep.TIMESTAMP_SET]
    assert store.position_at("test001", NOW) == (48.864193, 2.364988)


def test_consumer_drains_published_messages(store, clock):
    consumer = LocationConsumer(store, clock=clock)
    assert consumer.start()
    assert not consumer.start()
    try:
        consumer.publish(json.dumps({"driverId": "test001", "latitude": 1.0, "longitude": 2.0}))
        consumer.publish(b"garbage", NOW + 1)
        consumer.publish(json.dumps({"driverId": "test001", "latitude": 1.5, "longitude": 2.5}), NOW + 2)
        consumer.join()
    finally:
        assert consumer.stop()

    assert consumer.processed == 3
    assert not consumer.is_running
    assert store.list_timestamps_descending("test001", 10) == [NOW + 2, NOW]
    assert consumer.persisted == 2


HUGE_NUMBER = "1" + "0" * 400


@pytest.mark.parametrize("body, field", [
    ('{"driverId": "a", "latitude": %s, "longitude": 2.0}' % HUGE_NUMBER, SampleField.LATITUDE),
    ('{"driverId": "a", "latitude": 1.0, "longitude": -%s}' % HUGE_NUMBER, SampleField.LONGITUDE),
    ('{"driverId": %s, "latitude": 1.0, "longitude": 2.0}' % HUGE_NUMBER, SampleField.DRIVER_ID),
    ('{"driverId": "a", "latitude": 1e400, "longitude": 2.0}', SampleField.LATITUDE),
])
def test_decode_rejects_numbers_beyond_float_range(body, field):
    with pytest.raises(ValidationError) as exc:
        decode_sample(body, NOW)

    assert exc.value.field is field


def test_handle_message_drops_numbers_beyond_float_range(store):
    body = b'{"driverId": "a", "latitude": ' + HUGE_NUMBER.encode() + b', "longitude": 2.0}'

    assert handle_message(store, body, NOW) is None
    assert store.list_timestamps_descending("a", 10) == []


def test_consumer_survives_unprocessable_messages(store, clock, monkeypatch):
    real_ingest = store.ingest
    failures = []

    def ingest_once_broken(sample):
        if not failures:
            failures.append(sample)
            raise RuntimeError("unexpected failure")
        return real_ingest(sample)

    monkeypatch.setattr(store, "ingest", ingest_once_broken)
    consumer = LocationConsumer(store, clock=clock)
    consumer.start()
    try:
        consumer.publish('{"driverId": "a", "latitude": %s, "longitude": 2.0}' % HUGE_NUMBER)
        consumer.publish(json.dumps({"driverId": "test001", "latitude": 1.0, "longitude": 2.0}), NOW + 1)
        consumer.publish(json.dumps({"driverId": "test001", "latitude": 1.5, "longitude": 2.5}), NOW + 2)
        consumer.join()
        assert consumer.is_running
    finally:
        consumer.stop()

    assert consumer.processed == 3
    assert consumer.persisted == 1
    assert len(failures) == 1
    assert store.list_timestamps_descending("test001", 10) == [NOW + 2]
