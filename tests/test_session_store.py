import pytest

from charterx.database.schemas import Document, RiskReport
from charterx.database.session_store import SessionStore
from charterx.services.errors import SessionNotFound, StaleRevisionError, ValidationFailure


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(ttl_seconds=60, clock=clock)


def test_create_and_get(store):
    session = store.create()
    assert store.get(session.session_id) is session
    assert session.revision == 0
    assert session.summary()["has_document"] is False
    assert len(store) == 1


def test_unknown_session(store):
    with pytest.raises(SessionNotFound):
        store.get("missing")
    with pytest.raises(SessionNotFound):
        store.delete("missing")


def test_delete_destroys_the_session(store):
    session = store.create()
    store.delete(session.session_id)
    with pytest.raises(SessionNotFound):
        store.get(session.session_id)


def test_idle_sessions_are_evicted(store, clock):
    idle = store.create()
    clock.now += 30
    active = store.create()
    clock.now += 45

    store.get(active.session_id)
    with pytest.raises(SessionNotFound):
        store.get(idle.session_id)
    assert len(store) == 1


def test_access_refreshes_ttl(store, clock):
    session = store.create()
    for _ in range(3):
        clock.now += 50
        store.get(session.session_id)
    assert store.get(session.session_id) is session


def test_check_revision(store):
    session = store.create()
    session.commit(Document(revision=3))
    session.check_revision(None)
    session.check_revision(3)
    with pytest.raises(StaleRevisionError) as excinfo:
        session.check_revision(2, "merge")
    assert excinfo.value.expected == 2
    assert excinfo.value.actual == 3


def test_commit_invalidates_reports(store):
    session = store.create()
    session.commit(Document(revision=1))
    session.risk_report = RiskReport(document_id=session.document.document_id, revision=1)
    assert session.summary()["reports"]["risk"] is True

    session.commit(Document(document_id=session.document.document_id, revision=2))
    assert session.risk_report is None


def test_snapshot_is_a_deep_copy(store):
    session = store.create()
    with pytest.raises(ValidationFailure):
        session.snapshot()

    session.commit(Document(revision=1))
    snapshot = session.snapshot()
    snapshot.title = "Changed"
    assert session.document.title == "Charter Party Contract"
