# tests/test_db.py
import sqlite3

import pytest
from freezegun import freeze_time

from modules.job_tracker.lib.config import SourceConfig
from modules.job_tracker.lib.db import RecordStore, RunLogStateError, SourceNotFound


@pytest.fixture
def seeded(store):
    store.sync_sources([
        SourceConfig(id="buscojobs", name="BuscoJobs", url="https://www.buscojobs.com.uy/empleos"),
        SourceConfig(id="linkedin", name="LinkedIn", url="https://www.linkedin.com/jobs/", enabled=False),
    ])
    return store


def _columns(db_path, table):
    with sqlite3.connect(db_path) as conn:
        return {r[1] for r in conn.execute(f"PRAGMA table_info({table})")}


def test_init_creates_schema(store, db_path):
    assert {"id", "name", "url", "enabled", "last_scraped", "total_jobs"} <= _columns(db_path, "sources")
    assert {"source_id", "external_id", "closing_date", "active", "created_at"} <= _columns(db_path, "postings")
    assert {"status", "jobs_found", "error_message", "completed_at"} <= _columns(db_path, "run_logs")
    assert store.count_postings() == 0


def test_count_postings_without_db_file(tmp_path):
    assert RecordStore(str(tmp_path / "missing.db")).count_postings() == 0


# ---------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------
def test_sync_sources_keeps_enabled_flag_after_creation(seeded):
    assert [s.id for s in seeded.enabled_sources()] == ["buscojobs"]

    seeded.set_source_enabled("buscojobs", False)
    seeded.sync_sources([SourceConfig(id="buscojobs", name="Busco Jobs UY", url="https://new.test/")])

    src = seeded.get_source("buscojobs")
    assert src.name == "Busco Jobs UY"
    assert src.url == "https://new.test/"
    assert src.enabled is False


def test_set_source_enabled_unknown(seeded):
    assert seeded.set_source_enabled("nope", True) is False
    assert seeded.set_source_enabled("linkedin", True) is True
    assert [s.id for s in seeded.enabled_sources()] == ["buscojobs", "linkedin"]


def test_require_source(seeded):
    assert seeded.require_source("linkedin").name == "LinkedIn"
    with pytest.raises(SourceNotFound) as ei:
        seeded.require_source("indeed")
    assert ei.value.source_id == "indeed"


def test_update_source_stats(seeded):
    with freeze_time("2025-03-10T12:00:00Z"):
        seeded.update_source_stats("buscojobs", 7)
    src = seeded.get_source("buscojobs")
    assert src.total_jobs == 7
    assert src.last_scraped == "2025-03-10T12:00:00Z"


# ---------------------------------------------------------------------
# Postings
# ---------------------------------------------------------------------
def test_upsert_creates_then_updates_in_place(seeded, candidate):
    with freeze_time("2025-03-01T09:00:00Z"):
        assert seeded.upsert_posting("buscojobs", candidate()) is True
    created = seeded.find_posting("buscojobs", "ext-1")

    with freeze_time("2025-03-02T09:00:00Z"):
        assert seeded.upsert_posting("buscojobs", candidate(title="Senior Backend Engineer")) is False
    updated = seeded.find_posting("buscojobs", "ext-1")

    assert seeded.count_postings() == 1
    assert updated.id == created.id
    assert updated.title == "Senior Backend Engineer"
    assert updated.created_at == "2025-03-01T09:00:00Z"
    assert updated.updated_at == "2025-03-02T09:00:00Z"


def test_same_external_id_in_two_sources_is_two_postings(seeded, candidate):
    assert seeded.upsert_posting("buscojobs", candidate()) is True
    assert seeded.upsert_posting("linkedin", candidate()) is True
    assert seeded.count_postings() == 2
    assert seeded.count_postings("linkedin") == 1


def test_upsert_never_reactivates(seeded, candidate):
    seeded.upsert_posting("buscojobs", candidate())
    posting = seeded.find_posting("buscojobs", "ext-1")
    assert seeded.deactivate_posting(posting.id) is True

    seeded.upsert_posting("buscojobs", candidate(description="seen again"))
    again = seeded.get_posting(posting.id)
    assert again.active is False
    assert again.description == "seen again"


def test_upsert_unknown_source_raises_and_logs(seeded, candidate):
    from service.logging_utils import get_error_log_path, read_records

    with pytest.raises(sqlite3.IntegrityError):
        seeded.upsert_posting("indeed", candidate())
    records = read_records(get_error_log_path())
    assert records[-1]["op"] == "upsert_posting"
    assert records[-1]["source_id"] == "indeed"


def test_query_postings_filters(seeded, candidate):
    seeded.upsert_posting("buscojobs", candidate("a", "Backend Engineer", company="ACME", location="Montevideo"))
    seeded.upsert_posting("buscojobs", candidate("b", "Chef", description="cocina de autor", location="Punta del Este"))
    seeded.upsert_posting("linkedin", candidate("c", "Data Engineer", location="Montevideo"))
    seeded.deactivate_posting(seeded.find_posting("linkedin", "c").id)

    ids = lambda ps: [p.external_id for p in ps]  # noqa: E731
    assert ids(seeded.query_postings()) == ["c", "b", "a"]
    assert ids(seeded.query_postings(active=True)) == ["b", "a"]
    assert ids(seeded.query_postings(active=False)) == ["c"]
    assert ids(seeded.query_postings(source_id="linkedin")) == ["c"]
    assert ids(seeded.query_postings(search="engineer")) == ["c", "a"]
    assert ids(seeded.query_postings(search="acme")) == ["a"]
    assert ids(seeded.query_postings(search="COCINA")) == ["b"]
    assert ids(seeded.query_postings(location="montevideo", active=True)) == ["a"]
    assert ids(seeded.query_postings(limit=1)) == ["c"]


def test_posting_stats(seeded, candidate):
    seeded.upsert_posting("buscojobs", candidate("a"))
    seeded.upsert_posting("buscojobs", candidate("b"))
    seeded.upsert_posting("linkedin", candidate("c"))
    seeded.deactivate_posting(seeded.find_posting("buscojobs", "b").id)

    assert seeded.posting_stats() == {
        "total": 3,
        "active": 2,
        "by_source": [{"source_id": "buscojobs", "count": 1}, {"source_id": "linkedin", "count": 1}],
    }


def test_deactivate_unknown_posting(seeded):
    assert seeded.deactivate_posting(999) is False


def test_sweep_expired(seeded, candidate):
    seeded.upsert_posting("buscojobs", candidate("past", closing_date="2025-03-09"))
    seeded.upsert_posting("buscojobs", candidate("today", closing_date="2025-03-10"))
    seeded.upsert_posting("buscojobs", candidate("future", closing_date="2025-04-01"))
    seeded.upsert_posting("buscojobs", candidate("open"))

    assert seeded.sweep_expired("2025-03-10") == 1
    assert seeded.sweep_expired("2025-03-10") == 0
    active = {p.external_id for p in seeded.query_postings(active=True)}
    assert active == {"today", "future", "open"}


# ---------------------------------------------------------------------
# Run logs
# ---------------------------------------------------------------------
def test_run_log_lifecycle(seeded):
    log_id = seeded.create_run_log("buscojobs")
    log = seeded.get_run_log(log_id)
    assert log.status == "running"
    assert log.completed_at is None
    assert log.source_name == "BuscoJobs"

    seeded.complete_run_log(log_id, "success", jobs_found=3, jobs_added=2, jobs_updated=1)
    log = seeded.get_run_log(log_id)
    assert (log.status, log.jobs_found, log.jobs_added, log.jobs_updated) == ("success", 3, 2, 1)
    assert log.completed_at


def test_run_log_completes_exactly_once(seeded):
    log_id = seeded.create_run_log("buscojobs")
    seeded.complete_run_log(log_id, "error", error_message="boom")

    with pytest.raises(RunLogStateError, match="already completed"):
        seeded.complete_run_log(log_id, "success")
    assert seeded.get_run_log(log_id).error_message == "boom"

    with pytest.raises(RunLogStateError, match="does not exist"):
        seeded.complete_run_log(12345, "success")
    with pytest.raises(ValueError):
        seeded.complete_run_log(seeded.create_run_log("buscojobs"), "running")


def test_run_logs_for_unknown_source_are_kept(seeded):
    log_id = seeded.create_run_log("indeed")
    seeded.complete_run_log(log_id, "error", error_message="Source not found")
    log = seeded.get_run_log(log_id)
    assert log.source_id == "indeed"
    assert log.source_name is None


def test_recent_run_logs_and_per_source(seeded):
    ids = [seeded.create_run_log(sid) for sid in ("buscojobs", "linkedin", "buscojobs")]
    assert [log.id for log in seeded.recent_run_logs()] == ids[::-1]
    assert [log.id for log in seeded.recent_run_logs(limit=1)] == [ids[2]]
    assert [log.id for log in seeded.run_logs_for_source("buscojobs")] == [ids[2], ids[0]]


def test_source_stats(seeded, candidate):
    seeded.upsert_posting("buscojobs", candidate("a"))
    seeded.upsert_posting("buscojobs", candidate("b"))
    seeded.deactivate_posting(seeded.find_posting("buscojobs", "a").id)
    first = seeded.create_run_log("buscojobs")
    last = seeded.create_run_log("buscojobs")

    stats = seeded.source_stats("buscojobs")
    assert stats["total_jobs"] == 2
    assert stats["active_jobs"] == 1
    assert stats["last_scrape"].id == last
    assert last != first
    assert seeded.source_stats("linkedin") == {"total_jobs": 0, "active_jobs": 0, "last_scrape": None}


def test_run_lease_is_exclusive_until_released(store, db_path):
    other = RecordStore(db_path)
    assert store.acquire_run_lease("host:1:a")
    assert store.acquire_run_lease("host:1:a")  # renew
    assert not other.acquire_run_lease("host:2:b")
    assert other.run_lease_holder() == "host:1:a"

    assert not other.release_run_lease("host:2:b")
    assert store.release_run_lease("host:1:a")
    assert store.run_lease_holder() is None
    assert other.acquire_run_lease("host:2:b")


def test_expired_run_lease_is_taken_over(store):
    with freeze_time("2025-03-10T12:00:00Z"):
        assert store.acquire_run_lease("host:1:a", ttl_s=60)
    with freeze_time("2025-03-10T12:00:30Z"):
        assert not store.acquire_run_lease("host:2:b")
    with freeze_time("2025-03-10T12:01:01Z"):
        assert store.run_lease_holder() is None
        assert store.acquire_run_lease("host:2:b")
        assert store.run_lease_holder() == "host:2:b"
