"""
tests/test_app.py

Flask routes: starting a batch, streaming progress, results, PDF,
history and report files. run_batch is replaced so no browser starts.
"""

from __future__ import annotations

import json
import uuid

import pytest

import app as webapp
import database
import lighthouse_audit
from devices import DESKTOP, MOBILE
from fakes import make_success
from lighthouse_audit import JobSpec, LedgerEntry
from lighthouse_runner import AuditFailure


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setattr(webapp, "REPORTS_DIR", str(tmp_path / "reports"))
    monkeypatch.setattr(database, "DATABASE_NAME", str(tmp_path / "audits.db"))
    webapp.active_batches.clear()
    webapp.app.config["TESTING"] = True
    with webapp.app.test_client() as c:
        yield c
    webapp.active_batches.clear()


def fake_run_batch(calls, error=None):
    def run_batch(url_rows, output_dir, status_callback=None, history=False):
        calls.append({"url_rows": url_rows, "output_dir": output_dir, "history": history})
        if error:
            raise error
        ledger = []
        total = len(url_rows) * 2
        step = 0
        for row in url_rows:
            for device, outcome in ((DESKTOP, make_success()), (MOBILE, AuditFailure("timed out"))):
                step += 1
                status_callback(f"Running {device.name} audit of {row['url']}", step, total)
                entry = LedgerEntry(JobSpec(row["url"], row["description"], device), outcome)
                ledger.append(entry)
                status_callback("done", step, total, entry=entry)
        return ledger

    return run_batch


def start(client, urls):
    resp = client.post("/api/batch-audit", json={"urls": urls})
    batch_id = resp.get_json().get("batch_id")
    if batch_id:
        webapp.active_batches[batch_id]["thread"].join(timeout=5)
    return resp, batch_id


def parse_events(body):
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines() if not line.startswith(":"))
        events.append((lines["event"], json.loads(lines["data"])))
    return events


class TestIndex:
    def test_serves_page(self, client) -> None:
        resp = client.get("/")
        assert resp.status_code == 200
        assert b"Lighthouse Batch Auditor" in resp.data


class TestStartBatch:
    def test_requires_urls(self, client) -> None:
        resp = client.post("/api/batch-audit", json={"urls": ["  ", ""]})
        assert resp.status_code == 400

    def test_runs_batch_in_background(self, client, monkeypatch) -> None:
        calls = []
        monkeypatch.setattr(lighthouse_audit, "run_batch", fake_run_batch(calls))

        resp, batch_id = start(client, ["example.com", {"url": "https://b.com", "description": "B"}])

        assert resp.status_code == 200
        assert calls[0]["url_rows"] == [
            {"url": "https://example.com", "description": "example.com"},
            {"url": "https://b.com", "description": "B"},
        ]
        assert calls[0]["output_dir"].endswith(batch_id)
        assert calls[0]["history"] is True
        assert not webapp._batch_lock.locked()

    def test_one_batch_at_a_time(self, client) -> None:
        webapp._batch_lock.acquire()
        try:
            resp = client.post("/api/batch-audit", json={"urls": ["example.com"]})
        finally:
            webapp._batch_lock.release()
        assert resp.status_code == 409

    def test_thread_start_failure_releases_lock(self, client, monkeypatch) -> None:
        def refuse(self):
            raise RuntimeError("can't start new thread")

        monkeypatch.setattr(webapp.threading.Thread, "start", refuse)

        resp = client.post("/api/batch-audit", json={"urls": ["example.com"]})

        assert resp.status_code == 500
        assert not webapp._batch_lock.locked()
        assert webapp.active_batches == {}

    def test_old_finished_batches_are_dropped(self, client, monkeypatch) -> None:
        monkeypatch.setattr(lighthouse_audit, "run_batch", fake_run_batch([]))
        monkeypatch.setattr(webapp, "MAX_FINISHED_BATCHES", 2)

        batch_ids = [start(client, ["example.com"])[1] for _ in range(4)]

        # Pruning happens when a batch starts, so the newest one is extra.
        assert list(webapp.active_batches) == batch_ids[1:]


class TestStream:
    def test_streams_progress_then_done(self, client, monkeypatch) -> None:
        monkeypatch.setattr(lighthouse_audit, "run_batch", fake_run_batch([]))
        _, batch_id = start(client, ["example.com"])

        resp = client.get(f"/api/batch-audit/{batch_id}/stream")

        assert resp.mimetype == "text/event-stream"
        events = parse_events(resp.get_data(as_text=True))
        assert [name for name, _ in events] == [
            "job_status", "job_complete", "job_status", "job_complete", "batch_complete", "done",
        ]
        assert events[1][1]["result"]["scores"]["performance"] == 91
        assert events[3][1]["result"]["error"] == "timed out"
        assert events[4][1] == {"total": 2, "successful": 1, "failed": 1}

    def test_batch_error_event(self, client, monkeypatch) -> None:
        monkeypatch.setattr(lighthouse_audit, "run_batch", fake_run_batch([], error=OSError("disk full")))
        _, batch_id = start(client, ["example.com"])

        events = parse_events(client.get(f"/api/batch-audit/{batch_id}/stream").get_data(as_text=True))

        assert events[0] == ("batch_error", {"message": "disk full"})
        assert events[-1][0] == "done"
        assert not webapp._batch_lock.locked()

    def test_unknown_batch(self, client) -> None:
        assert client.get("/api/batch-audit/nope/stream").status_code == 404


class TestResult:
    def test_finished_batch(self, client, monkeypatch) -> None:
        monkeypatch.setattr(lighthouse_audit, "run_batch", fake_run_batch([]))
        _, batch_id = start(client, ["example.com"])

        resp = client.get(f"/api/batch-audit/{batch_id}/result")

        assert resp.status_code == 200
        assert [e["device"] for e in resp.get_json()] == ["desktop", "mobile"]

    def test_failed_batch(self, client, monkeypatch) -> None:
        monkeypatch.setattr(lighthouse_audit, "run_batch", fake_run_batch([], error=OSError("disk full")))
        _, batch_id = start(client, ["example.com"])

        resp = client.get(f"/api/batch-audit/{batch_id}/result")
        assert resp.status_code == 500
        assert resp.get_json() == {"error": "disk full"}

    def test_in_progress(self, client) -> None:
        batch_id = str(uuid.uuid4())
        webapp.active_batches[batch_id] = {"done": False, "error": None, "ledger": None}
        assert client.get(f"/api/batch-audit/{batch_id}/result").status_code == 202

    def test_falls_back_to_saved_ledger(self, client, tmp_path) -> None:
        batch_id = str(uuid.uuid4())
        batch_dir = tmp_path / "reports" / batch_id
        batch_dir.mkdir(parents=True)
        saved = [{"url": "https://a.com", "description": "A", "device": "desktop", "error": "x"}]
        (batch_dir / lighthouse_audit.LEDGER_FILENAME).write_text(json.dumps(saved))

        resp = client.get(f"/api/batch-audit/{batch_id}/result")

        assert resp.status_code == 200
        assert resp.get_json() == saved

    def test_unknown_or_invalid_id(self, client) -> None:
        assert client.get(f"/api/batch-audit/{uuid.uuid4()}/result").status_code == 404
        assert client.get("/api/batch-audit/..%2F..%2Fetc/result").status_code == 404


class TestPdf:
    def test_download(self, client, monkeypatch) -> None:
        monkeypatch.setattr(lighthouse_audit, "run_batch", fake_run_batch([]))
        _, batch_id = start(client, ["example.com"])

        resp = client.get(f"/api/batch-audit/{batch_id}/pdf")

        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert resp.data.startswith(b"%PDF")
        assert batch_id[:8] in resp.headers["Content-Disposition"]

    def test_unknown_batch(self, client) -> None:
        assert client.get(f"/api/batch-audit/{uuid.uuid4()}/pdf").status_code == 404


class TestHistoryAndReports:
    def test_history_by_url(self, client) -> None:
        database.init_db()
        database.save_audit_result("https://a.com", "desktop", "success", performance=90)
        database.save_audit_result("https://b.com", "desktop", "success", performance=50)

        rows = client.get("/api/history?url=a.com").get_json()

        assert [(r["url"], r["performance"]) for r in rows] == [("https://a.com", 90)]

    def test_recent_history(self, client) -> None:
        database.init_db()
        database.save_audit_result("https://a.com", "desktop", "success")
        database.save_audit_result("https://b.com", "mobile", "failed", error="x")

        rows = client.get("/api/history").get_json()

        assert [r["url"] for r in rows] == ["https://b.com", "https://a.com"]

    def test_serves_report_files(self, client, tmp_path) -> None:
        report = tmp_path / "reports" / "desktop" / "a" / "lighthouse-report.html"
        report.parent.mkdir(parents=True)
        report.write_text("<html>report</html>")

        resp = client.get("/reports/desktop/a/lighthouse-report.html")

        assert resp.status_code == 200
        assert b"report" in resp.data
        resp.close()
