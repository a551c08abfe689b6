from conftest import ENTRIES
from blindbox.sync import CatalogEntry, GameSession, SessionPhase, Snapshot


def test_wire_shape():
    snapshot = Snapshot(
        session=GameSession(phase=SessionPhase.RUNNING, started_at=100, assignments={'AAPL': 'Alice'}),
        catalog=[ENTRIES[0]],
        updated_at=200,
    )
    assert snapshot.to_dict() == {
        'session': {
            'phase': 'Running',
            'startedAt': 100,
            'endedAt': None,
            'assignments': {'AAPL': 'Alice'},
        },
        'catalog': [{'id': 'AAPL', 'name': 'Apple', 'category': 'Technology', 'hint': 'Phones and laptops'}],
        'updatedAt': 200,
    }


def test_from_dict_tolerates_garbage():
    assert Snapshot.from_dict(None) == Snapshot()
    assert Snapshot.from_dict({'session': 'nope', 'catalog': 'nope'}) == Snapshot()


def test_missing_assignments_is_empty():
    snapshot = Snapshot.from_dict({'session': {'phase': 'Running'}, 'catalog': []})
    assert snapshot.session.phase is SessionPhase.RUNNING
    assert snapshot.session.assignments == {}


def test_unknown_phase_reads_as_idle():
    assert SessionPhase.parse('Paused') is SessionPhase.IDLE
    assert Snapshot.from_dict({'session': {'phase': 'RUNNING'}}).session.phase is SessionPhase.IDLE


def test_timestamps_must_be_numbers():
    session = GameSession.from_dict({'phase': 'Ended', 'startedAt': 'yesterday', 'endedAt': 12.7})
    assert session.started_at is None
    assert session.ended_at == 12


def test_idle_snapshot_carries_no_assignments():
    snapshot = Snapshot.from_dict({
        'session': {'phase': 'Idle', 'assignments': {'AAPL': 'Alice'}},
        'catalog': [e.to_dict() for e in ENTRIES],
    })
    assert snapshot.session.assignments == {}


def test_assignments_outside_catalog_are_dropped():
    snapshot = Snapshot.from_dict({
        'session': {'phase': 'Running', 'assignments': {'AAPL': 'Alice', 'MSFT': 'Bob'}},
        'catalog': [e.to_dict() for e in ENTRIES],
    })
    assert snapshot.session.assignments == {'AAPL': 'Alice'}


def test_bad_catalog_items_are_skipped():
    snapshot = Snapshot.from_dict({'catalog': [{'id': 'AAPL'}, {'name': 'no id'}, 'junk', {'id': ' '}]})
    assert snapshot.catalog == [CatalogEntry(id='AAPL')]


def test_session_lookups():
    session = GameSession(phase=SessionPhase.RUNNING, assignments={'AAPL': 'Alice'})
    assert session.owner_of('AAPL') == 'Alice'
    assert session.owner_of('GOOG') is None
    assert session.entry_of('Alice') == 'AAPL'
    assert session.entry_of('Bob') is None


def test_with_session_stamps_update_time():
    snapshot = Snapshot(catalog=list(ENTRIES), updated_at=1)
    updated = snapshot.with_session(GameSession(phase=SessionPhase.RUNNING))
    assert updated.updated_at > 1
    assert updated.catalog == snapshot.catalog
    assert snapshot.session.phase is SessionPhase.IDLE
