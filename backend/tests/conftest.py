import os
import sys
import threading
from urllib.parse import urlsplit

import pytest

# Ensure the backend root (containing the `blindbox` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from blindbox import create_app, db, socketio
from blindbox.services.catalog import StaticCatalogSource
from blindbox.sync import (
    CatalogEntry,
    ClaimArbiter,
    LocalBroadcastTransport,
    SessionStore,
)


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    TEACHER_PASSWORD = '1004'


ENTRIES = [
    CatalogEntry(id='AAPL', name='Apple', category='Technology', hint='Phones and laptops'),
    CatalogEntry(id='GOOG', name='Alphabet', category='Technology', hint='Search engine'),
    CatalogEntry(id='TSLA', name='Tesla', category='Automotive', hint='Electric cars'),
    CatalogEntry(id='KO', name='Coca-Cola', category='Beverages', hint='Soft drinks'),
]


class _Response:
    """Just enough of ``requests.Response`` for the transports."""

    def __init__(self, res):
        self._res = res
        self.status_code = res.status_code
        self.ok = res.status_code < 400

    def json(self):
        data = self._res.get_json(silent=True)
        if data is None:
            raise ValueError('response is not JSON')
        return data


class FlaskHttpSession:
    """Routes ``requests``-style calls into a Flask test client.

    Requests from different threads are handled one at a time, since the
    in-memory SQLite database sits on a single connection.
    """

    def __init__(self, client):
        self.client = client
        self.closed = False
        self._lock = threading.Lock()

    def _call(self, method, url, **kwargs):
        with self._lock:
            return _Response(getattr(self.client, method)(urlsplit(url).path, **kwargs))

    def get(self, url, timeout=None):
        return self._call('get', url)

    def put(self, url, json=None, timeout=None):
        return self._call('put', url, json=json)

    def post(self, url, json=None, timeout=None):
        return self._call('post', url, json=json)

    def delete(self, url, timeout=None):
        return self._call('delete', url)

    def close(self):
        self.closed = True


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import blindbox.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def http_session(client):
    return FlaskHttpSession(client)


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def catalog_source():
    return StaticCatalogSource(ENTRIES, shuffle=False)


@pytest.fixture()
def local_transport(tmp_path):
    return LocalBroadcastTransport(tmp_path, 'testRoom')


@pytest.fixture()
def store(local_transport, catalog_source):
    return SessionStore(local_transport, catalog_source, poll_interval=0.05)


@pytest.fixture()
def arbiter(store):
    return ClaimArbiter(store)


@pytest.fixture()
def running_store(store):
    assert store.start_session()
    return store
