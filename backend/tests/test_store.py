import time

from conftest import ENTRIES
from blindbox.services.catalog import StaticCatalogSource
from blindbox.sync import (
    HttpPollTransport,
    LocalBroadcastTransport,
    SessionPhase,
    SessionStore,
    SocketIOTransport,
)


class PollOnlyTransport(LocalBroadcastTransport):
    supports_subscribe = False


def _wait_for(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_initial_store_is_idle_and_empty(store):
    assert store.session.phase is SessionPhase.IDLE
    assert store.session.assignments == {}
    assert store.catalog == []
    assert store.loaded is False


def test_start_session(store, local_transport):
    assert store.start_session()
    session = store.session
    assert session.phase is SessionPhase.RUNNING
    assert session.started_at is not None
    assert session.ended_at is None
    assert session.assignments == {}
    assert [e.id for e in store.catalog] == [e.id for e in ENTRIES]
    # Pushed, not only cached
    assert local_transport.pull() == store.snapshot


def test_end_session_keeps_assignments(running_store, arbiter):
    assert arbiter.claim('AAPL', 'Alice')
    assert running_store.end_session()
    session = running_store.session
    assert session.phase is SessionPhase.ENDED
    assert session.ended_at is not None
    assert session.started_at is not None
    assert session.assignments == {'AAPL': 'Alice'}


def test_reset_then_start_scenario(running_store, arbiter):
    arbiter.claim('AAPL', 'Alice')
    running_store.end_session()

    assert running_store.reset_session()
    session = running_store.session
    assert session.phase is SessionPhase.IDLE
    assert session.assignments == {}
    assert session.started_at is None and session.ended_at is None
    assert running_store.catalog == []

    assert running_store.start_session()
    assert running_store.session.phase is SessionPhase.RUNNING
    assert running_store.session.assignments == {}
    assert running_store.session.ended_at is None


def test_reset_from_running_is_allowed(running_store):
    assert running_store.reset_session(refetch_catalog=True)
    assert running_store.session.phase is SessionPhase.IDLE
    assert len(running_store.catalog) == len(ENTRIES)


def test_initialize_loads_catalog(store):
    assert store.initialize()
    assert store.session.phase is SessionPhase.IDLE
    assert len(store.catalog) == len(ENTRIES)


def test_illegal_transitions_are_refused(store, local_transport):
    assert store.end_session() is False
    assert local_transport.pull() is None

    store.start_session()
    assert store.start_session() is False

    store.end_session()
    # Ended must go through reset before starting again
    assert store.start_session() is False
    assert store.end_session() is False
    assert store.session.phase is SessionPhase.ENDED


def test_controls_follow_remote_state(store, tmp_path, catalog_source):
    other = SessionStore(LocalBroadcastTransport(tmp_path, 'testRoom'), catalog_source)
    assert other.start_session()
    # This store never saw the start, but ending reads the remote phase
    assert store.end_session()
    assert store.session.phase is SessionPhase.ENDED


def test_start_with_empty_catalog_still_runs(local_transport):
    store = SessionStore(local_transport, StaticCatalogSource([]))
    assert store.start_session()
    assert store.session.phase is SessionPhase.RUNNING
    assert store.catalog == []


def test_accept_normalizes_missing_assignments(store):
    store.accept({
        'session': {'phase': 'Running', 'startedAt': 5, 'endedAt': None},
        'catalog': [e.to_dict() for e in ENTRIES],
        'updatedAt': 6,
    })
    assert store.session.phase is SessionPhase.RUNNING
    assert store.session.assignments == {}
    assert store.loaded


def test_listeners_are_notified_and_removable(store):
    seen = []

    def broken(session, catalog):
        raise RuntimeError('ui crashed')

    store.add_listener(broken)
    remove = store.add_listener(lambda session, catalog: seen.append((session.phase, len(catalog))))
    store.start_session()
    assert seen == [(SessionPhase.RUNNING, len(ENTRIES))]

    remove()
    store.end_session()
    assert len(seen) == 1


def test_failed_push_leaves_cache_untouched(store, local_transport, monkeypatch):
    monkeypatch.setattr(local_transport, 'push', lambda snapshot: False)
    assert store.start_session() is False
    assert store.session.phase is SessionPhase.IDLE
    assert store.loaded is False


def test_refresh_keeps_cache_when_remote_absent(store):
    store.accept({'session': {'phase': 'Ended'}, 'catalog': [], 'updatedAt': 1})
    assert store.refresh() is False
    assert store.session.phase is SessionPhase.ENDED


def test_attach_subscribes_and_detach_releases(tmp_path, catalog_source):
    store = SessionStore(LocalBroadcastTransport(tmp_path, 'room'), catalog_source)
    teacher = SessionStore(LocalBroadcastTransport(tmp_path, 'room'), catalog_source)

    with store:
        teacher.start_session()
        assert store.session.phase is SessionPhase.RUNNING

    teacher.end_session()
    # Detached: no more deliveries
    assert store.session.phase is SessionPhase.RUNNING


def test_attach_polls_without_subscribe(tmp_path, catalog_source):
    store = SessionStore(PollOnlyTransport(tmp_path, 'room'), catalog_source, poll_interval=0.02)
    teacher = SessionStore(LocalBroadcastTransport(tmp_path, 'room'), catalog_source)

    store.attach()
    try:
        teacher.start_session()
        assert _wait_for(lambda: store.session.phase is SessionPhase.RUNNING)
    finally:
        store.detach()

    teacher.end_session()
    time.sleep(0.1)
    assert store.session.phase is SessionPhase.RUNNING


class RefusingSocketClient:
    connected = False

    def on(self, event, handler, namespace=None):
        pass

    def connect(self, url, namespaces=None, wait_timeout=None):
        raise ConnectionError('connection refused')


def test_attach_polls_when_socket_unreachable(http_session, catalog_source):
    transport = SocketIOTransport('http://backend', 'r1', session=http_session,
                                  client_factory=RefusingSocketClient)
    store = SessionStore(transport, catalog_source, poll_interval=0.02)
    teacher = SessionStore(HttpPollTransport('http://backend', 'r1', session=http_session), catalog_source)

    store.attach()
    try:
        teacher.start_session()
        assert _wait_for(lambda: store.session.phase is SessionPhase.RUNNING)
    finally:
        store.detach()
