import pytest
import sqlite3
from pathlib import Path

from fundledger.storage import SQLiteStorage, create_storage, StorageBackend
from fundledger.chain.fundraising import FundRaising
from fundledger.core.errors import AlreadyActive, FundraiserNotActive, LedgerIntegrityError
from fundledger.core.types import DonationRecorded, LedgerCreated
from fundledger.core.units import MINIMUM_DONATION, parse_ether

ADMIN = "admin"
F1 = "fundraiser1"
F2 = "fundraiser2"
D1 = "donor1"


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.db"


@pytest.fixture
def storage(temp_db_path: Path) -> SQLiteStorage:
    return SQLiteStorage(db_path=temp_db_path)


def test_create_storage_dynamic_routing(temp_db_path: Path):
    storage = create_storage(f"sqlite://{temp_db_path}")
    assert isinstance(storage, SQLiteStorage)
    assert isinstance(storage, StorageBackend)
    assert str(storage.db_path) == str(temp_db_path.resolve())


def test_create_storage_rejects_unknown_scheme():
    with pytest.raises(ValueError, match="Unsupported"):
        create_storage("postgres://somewhere")


def test_sqlite_init_default_and_env(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("FUNDLEDGER_DB_PATH", raising=False)
    default_storage = SQLiteStorage()
    assert default_storage.db_path.name == "fundraising.db"
    default_storage.close()

    env_path = tmp_path / "env-test.db"
    monkeypatch.setenv("FUNDLEDGER_DB_PATH", str(env_path))
    env_storage = SQLiteStorage()
    assert env_storage.db_path == env_path.resolve()
    env_storage.close()


def test_sqlite_schema_creation(storage: SQLiteStorage):
    cursor = storage.conn.cursor()
    cursor.execute("PRAGMA table_info(events)")
    columns = {row[1] for row in cursor.fetchall()}
    assert columns == {"sequence", "kind", "timestamp", "prev_hash", "event_hash", "canonical_json"}


def test_load_empty(storage: SQLiteStorage):
    assert storage.load_events() == []
    assert storage.get_event_count() == 0
    assert storage.get_latest_timestamp() is None


def test_ledger_persists_events(storage: SQLiteStorage):
    ledger = FundRaising(ADMIN, [F1, F2], storage=storage)
    ledger.donate(D1, F1, "Great cause!", parse_ether("1.0"))

    events = storage.load_events()
    assert events == ledger.events
    assert isinstance(events[0], LedgerCreated)
    assert isinstance(events[-1], DonationRecorded)
    assert storage.get_event_count() == 4


def test_rejected_operations_not_persisted(storage: SQLiteStorage):
    ledger = FundRaising(ADMIN, [F1], storage=storage)
    count = storage.get_event_count()
    with pytest.raises(FundraiserNotActive):
        ledger.donate(D1, F2, "nope", MINIMUM_DONATION)
    assert storage.get_event_count() == count


def test_failed_construction_not_persisted(storage: SQLiteStorage):
    with pytest.raises(AlreadyActive):
        FundRaising(ADMIN, [F1, F1], storage=storage)
    assert storage.get_event_count() == 0


def test_large_amounts_survive_round_trip(storage: SQLiteStorage):
    amount = parse_ether("1000000.000000000000000001")
    ledger = FundRaising(ADMIN, [F1], storage=storage)
    ledger.donate(D1, F1, "whale", amount)

    reloaded = FundRaising.load(storage)
    assert reloaded.total_raised(F1) == amount


def test_reload_rebuilds_state(temp_db_path: Path):
    ledger = FundRaising(ADMIN, [F1, F2], storage=f"sqlite://{temp_db_path}")
    ledger.donate(D1, F1, "First", parse_ether("1.0"))
    ledger.donate(D1, F2, "Second", parse_ether("2.0"))
    ledger.withdraw(F1)
    ledger.deactivate_fundraiser(ADMIN, F2)
    ledger.close()

    reloaded = FundRaising.load(str(temp_db_path))
    assert reloaded.admin == ADMIN
    assert reloaded.is_active(F1)
    assert not reloaded.is_active(F2)
    assert reloaded.balance_of(F1) == 0
    assert reloaded.total_raised(F1) == parse_ether("1.0")
    assert reloaded.balance_of(F2) == parse_ether("2.0")
    assert reloaded.donations_of_donor(D1) == ledger.donations_of_donor(D1)
    assert reloaded.held == parse_ether("2.0")

    # the reloaded ledger keeps appending to the same journal
    reloaded.activate_fundraiser(ADMIN, F2)
    reloaded.close()
    assert FundRaising.load(str(temp_db_path)).is_active(F2)


def test_refuses_to_overwrite_existing_journal(storage: SQLiteStorage):
    FundRaising(ADMIN, [F1], storage=storage)
    with pytest.raises(ValueError, match="already holds"):
        FundRaising(ADMIN, [F2], storage=storage)


def test_load_requires_journal(storage: SQLiteStorage):
    with pytest.raises(LedgerIntegrityError):
        FundRaising.load(storage)


def test_tamper_detection(temp_db_path: Path):
    ledger = FundRaising(ADMIN, [F1], storage=f"sqlite://{temp_db_path}")
    ledger.donate(D1, F1, "Original message", parse_ether("1.0"))
    ledger.close()

    conn = sqlite3.connect(temp_db_path)
    conn.execute("""
        UPDATE events
        SET canonical_json = REPLACE(canonical_json, 'Original message', 'Tampered message')
        WHERE kind = 'donation_recorded'
    """)
    conn.commit()
    conn.close()

    with SQLiteStorage(temp_db_path) as storage:
        with pytest.raises(LedgerIntegrityError, match="Hash mismatch"):
            storage.load_events()


def test_broken_link_detection(temp_db_path: Path):
    ledger = FundRaising(ADMIN, [F1], storage=f"sqlite://{temp_db_path}")
    ledger.donate(D1, F1, "x", MINIMUM_DONATION)
    ledger.close()

    conn = sqlite3.connect(temp_db_path)
    conn.execute("DELETE FROM events WHERE sequence = 1")
    conn.commit()
    conn.close()

    with SQLiteStorage(temp_db_path) as storage:
        with pytest.raises(LedgerIntegrityError, match="Chain broken"):
            storage.load_events()


def test_export_lines(storage: SQLiteStorage):
    FundRaising(ADMIN, [F1], storage=storage)
    lines = storage.export_lines()
    assert len(lines) == 2
    assert '"kind":"ledger_created"' in lines[0]
    assert '"minimum_donation":"100000000000000"' in lines[0]


def test_close_releases_resources(temp_db_path: Path):
    storage = SQLiteStorage(temp_db_path)
    ledger = FundRaising(ADMIN, [F1], storage=storage)
    assert storage._conn is not None
    ledger.close()
    assert ledger.storage is None

    with pytest.raises(RuntimeError, match="closed"):
        storage.load_events()


def test_context_manager(temp_db_path: Path):
    with SQLiteStorage(temp_db_path) as storage:
        assert storage._conn is not None
    with pytest.raises(RuntimeError, match="closed"):
        storage.load_events()


def ledger_state(ledger):
    return {
        "balance": ledger.balance_of(F1),
        "total": ledger.total_raised(F1),
        "held": ledger.held,
        "donor_history": ledger.donations_of_donor(D1),
        "fundraiser_history": ledger.donations_of_fundraiser(F1),
        "events": ledger.events,
    }


def test_failed_journal_write_leaves_state_unchanged(storage: SQLiteStorage):
    ledger = FundRaising(ADMIN, [F1], storage=storage)
    ledger.donate(D1, F1, "kept", MINIMUM_DONATION)
    before = ledger_state(ledger)
    seen = []
    ledger.subscribe(seen.append)

    storage.close()
    with pytest.raises(RuntimeError, match="closed"):
        ledger.donate(D1, F1, "lost", MINIMUM_DONATION)

    assert ledger_state(ledger) == before
    assert ledger.donation_count_of_fundraiser(F1) == 1
    assert seen == []


def test_failed_journal_write_is_not_replayed_later(temp_db_path: Path):
    storage = SQLiteStorage(temp_db_path)
    ledger = FundRaising(ADMIN, [F1], storage=storage)
    storage.close()
    with pytest.raises(RuntimeError):
        ledger.donate(D1, F1, "lost", MINIMUM_DONATION)

    ledger.storage = SQLiteStorage(temp_db_path)
    ledger.donate(D1, F1, "kept", MINIMUM_DONATION)
    ledger.close()

    reloaded = FundRaising.load(str(temp_db_path))
    assert [d.message for d in reloaded.donations_of_fundraiser(F1)] == ["kept"]
    assert reloaded.held == MINIMUM_DONATION


def test_concurrent_writers_conflict(temp_db_path: Path):
    FundRaising(ADMIN, [F1], storage=str(temp_db_path)).close()
    first = FundRaising.load(SQLiteStorage(temp_db_path))
    second = FundRaising.load(SQLiteStorage(temp_db_path))

    first.donate(D1, F1, "from first", MINIMUM_DONATION)
    before = ledger_state(second)
    with pytest.raises(LedgerIntegrityError, match="conflict"):
        second.donate(D1, F1, "from second", 2 * MINIMUM_DONATION)
    assert ledger_state(second) == before
    first.close()
    second.close()

    reloaded = FundRaising.load(str(temp_db_path))
    assert [d.message for d in reloaded.donations_of_fundraiser(F1)] == ["from first"]
    assert reloaded.total_raised(F1) == MINIMUM_DONATION


def test_append_many_is_all_or_nothing(storage: SQLiteStorage):
    ledger = FundRaising(ADMIN, [F1], storage=storage)
    count = storage.get_event_count()
    good = DonationRecorded(
        sequence=count, timestamp="2026-01-31T14:00:00.000+00:00",
        donor=D1, fundraiser=F1, amount=MINIMUM_DONATION, message="a",
    )
    stale = ledger.events[1]

    with pytest.raises(LedgerIntegrityError):
        storage.append_many([good, stale])
    assert storage.get_event_count() == count
    assert storage.load_events() == ledger.events
