import json
from urllib.parse import urlsplit

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from .config import Config
from .main import create_app
from .geolog.store import LocationSample


LOCATION_SERVICE_URL = "http://driver-location.test"
NOW = 1539850371


class FakeClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def make_response(status_code, payload=None, content=None):
    resp = requests.Response()
    resp.status_code = status_code
    if content is None:
        content = json.dumps(payload).encode()
    resp._content = content
    resp.headers = CaseInsensitiveDict({"Content-Type": "application/json"})
    resp.encoding = "utf-8"
    return resp


class FlaskClientAdapter(BaseAdapter):
    """Routes requests.Session calls into a Flask test client."""

    def __init__(self):
        super().__init__()
        self.app = None
        self.calls = []

    def send(self, request, **kwargs):
        parts = urlsplit(request.url)
        self.calls.append(request.url)
        client = self.app.test_client()
        flask_resp = client.open(parts.path, method=request.method, query_string=parts.query)
        resp = make_response(flask_resp.status_code, content=flask_resp.get_data())
        resp.url = request.url
        resp.request = request
        return resp

    def close(self):
        pass


@pytest.fixture
def respond():
    return make_response


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def http_adapter():
    return FlaskClientAdapter()


@pytest.fixture
def app(tmp_path, clock, http_adapter):
    http = requests.Session()
    http.mount(LOCATION_SERVICE_URL, http_adapter)
    config = Config(
        database_url=f"sqlite:///{tmp_path / 'zombiewatch.db'}",
        location_service_url=LOCATION_SERVICE_URL,
    )
    app = create_app(config, http=http, clock=clock)
    app.config["TESTING"] = True
    http_adapter.app = app
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def context(app):
    return app.extensions["zombiewatch"]


@pytest.fixture
def store(context):
    return context.store


@pytest.fixture
def save(store):
    def _save(driver_id, timestamp, latitude, longitude):
        return store.ingest(LocationSample(driver_id, timestamp, latitude, longitude))
    return _save
