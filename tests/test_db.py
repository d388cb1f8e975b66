import pytest

import db
from errors import DatabaseError
from records import LifecycleState, TransferRecord


def _record(record_id="r1", amount=5):
    return TransferRecord(
        id=record_id,
        encoded_transaction=b'{"message":{}}',
        sender="aa" * 48,
        recipient="bb" * 48,
        amount=amount,
        expiry_height=10,
    )


@pytest.fixture()
def sqlite_store(temp_database):
    store = db.SqliteRecordStore(temp_database)
    yield store
    store.close()


def test_put_and_get_roundtrip_large_amount(sqlite_store):
    stored, created = sqlite_store.put_if_absent(_record(amount=2**64 - 1))
    assert created is True
    fetched = sqlite_store.get("r1")
    assert fetched == stored
    assert fetched.amount == 2**64 - 1
    assert fetched.encoded_transaction == b'{"message":{}}'
    assert fetched.state is LifecycleState.ACCEPTED


def test_put_if_absent_is_first_writer_wins(sqlite_store):
    sqlite_store.put_if_absent(_record(amount=1))
    stored, created = sqlite_store.put_if_absent(_record(amount=2))
    assert created is False
    assert stored.amount == 1


def test_update_state_contract(sqlite_store):
    sqlite_store.put_if_absent(_record())
    assert sqlite_store.update_state("r1", LifecycleState.SUBMITTED) is True
    assert sqlite_store.update_state("r1", LifecycleState.ACCEPTED) is False
    assert sqlite_store.update_state("r1", LifecycleState.FAILED) is True
    assert sqlite_store.update_state("r1", LifecycleState.OBSERVED_FINALIZED) is False
    assert sqlite_store.get("r1").state is LifecycleState.FAILED
    with pytest.raises(KeyError):
        sqlite_store.update_state("missing", LifecycleState.SUBMITTED)


def test_records_survive_reopen(temp_database):
    store = db.SqliteRecordStore(temp_database)
    store.put_if_absent(_record("a"))
    store.put_if_absent(_record("b"))
    store.update_state("b", LifecycleState.OBSERVED_FINALIZED)
    store.close()

    reopened = db.SqliteRecordStore(temp_database)
    try:
        assert [r.id for r in reopened.list_non_terminal()] == ["a"]
        assert {r.id for r in reopened.list_all()} == {"a", "b"}
    finally:
        reopened.close()


def test_identity_registry_upsert(sqlite_store):
    registry = db.SqliteIdentityRegistry(sqlite_store.connection)
    assert registry.is_registered("aa" * 48) is False
    assert registry.is_compliant("aa" * 48) is False

    registry.register("aa" * 48)
    assert registry.is_registered("aa" * 48) and registry.is_compliant("aa" * 48)

    registry.register("aa" * 48, compliant=False)
    assert registry.is_registered("aa" * 48)
    assert registry.is_compliant("aa" * 48) is False


def test_connect_failure_is_wrapped(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(DatabaseError):
        db.connect(str(blocker / "nested" / "relay.db"))


def test_closed_connection_errors_are_wrapped(temp_database):
    store = db.SqliteRecordStore(temp_database)
    registry = db.SqliteIdentityRegistry(store.connection)
    store.put_if_absent(_record())
    store.close()

    calls = [
        lambda: store.get("r1"),
        lambda: store.update_state("r1", LifecycleState.SUBMITTED),
        store.list_non_terminal,
        store.list_all,
        lambda: store.put_if_absent(_record("r2")),
        lambda: registry.register("aa" * 48),
        lambda: registry.is_registered("aa" * 48),
        lambda: registry.is_compliant("aa" * 48),
    ]
    for call in calls:
        with pytest.raises(DatabaseError):
            call()
