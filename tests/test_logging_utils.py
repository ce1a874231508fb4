import os

from modules.job_tracker.lib import logging_bridge
from service import logging_utils as L


def test_activity_and_error_paths_follow_env(tmp_path, monkeypatch):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    assert os.path.dirname(L.get_activity_log_path()) == str(tmp_path)
    assert os.path.basename(L.get_activity_log_path()).startswith("activity-test-")
    assert os.path.basename(L.get_error_log_path()).startswith("error-test-")


def test_records_are_redacted_and_enriched():
    record = {"op": "fetch", "headers": {"Authorization": "Bearer x", "Accept": "text/html"}, "api_token": "t"}
    L.write_activity_log(record)

    (written,) = L.read_records(L.get_activity_log_path())
    assert written["op"] == "fetch"
    assert written["api_token"] == "***REDACTED***"
    assert written["headers"] == {"Authorization": "***REDACTED***", "Accept": "text/html"}
    assert "ts" in written and "_meta" in written
    assert record["api_token"] == "t"  # input untouched


def test_size_rotation(monkeypatch):
    monkeypatch.setenv("ACTIVITY_LOG_MAX_BYTES", "10")
    L.write_activity_log({"op": "first"})
    L.write_activity_log({"op": "second"})

    path = L.get_activity_log_path()
    rotated = [f for f in os.listdir(os.path.dirname(path)) if f.startswith(os.path.basename(path) + ".")]
    assert len(rotated) == 1
    assert [r["op"] for r in L.read_records(path)] == ["second"]


def test_read_records_missing_file(tmp_path):
    assert L.read_records(str(tmp_path / "none.jsonl")) == []


def test_bridge_redacts_and_falls_back(monkeypatch, caplog):
    logging_bridge.error({"component": "job_tracker.db", "password": "hunter2"})
    assert L.read_records(L.get_error_log_path())[-1]["password"] == "***REDACTED***"

    def _broken(record):
        raise OSError("disk full")

    monkeypatch.setattr(L, "write_activity_log", _broken)
    with caplog.at_level("INFO", logger="job_tracker.activity"):
        logging_bridge.activity({"op": "summary", "secret": "s"})
    assert "summary" in caplog.text
    assert "'s'" not in caplog.text
