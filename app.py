"""
app.py - Flask web server for the Lighthouse batch auditor.

Wraps lighthouse_audit.py in a small web interface: paste a list of
URLs, watch each desktop/mobile audit finish in real time via
Server-Sent Events, then open the reports and screenshots.

Only one batch runs at a time. Each audit launches its own Chrome, and
running batches side by side would run those browsers in parallel.

Run:  python app.py
Open: http://localhost:8080
"""

import json
import os
import threading
import traceback
import uuid
from queue import Queue, Empty

from flask import (
    Flask, render_template, request, jsonify, Response, send_from_directory
)

import database
import lighthouse_audit
import summary_report

app = Flask(__name__)

# Every web batch writes into its own folder under here.
REPORTS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "reports")

# ────────────────────────────────────────────────────────────────────
# In-memory store for active / recent batches.
# Key: batch_id  Value: { queue, thread, urls, ledger, error, done }
# ────────────────────────────────────────────────────────────────────
active_batches = {}

# Held while a batch is running.
_batch_lock = threading.Lock()

# Finished batches kept in memory for /stream and /pdf. Older ones are
# dropped; their ledger is still served from disk by /result.
MAX_FINISHED_BATCHES = 20


def _batch_dir(batch_id):
    return os.path.join(REPORTS_DIR, batch_id)


def _prune_finished_batches():
    finished = [batch_id for batch_id, batch in active_batches.items() if batch["done"]]
    for batch_id in finished[:max(len(finished) - MAX_FINISHED_BATCHES, 0)]:
        del active_batches[batch_id]


def _parse_url_rows(urls):
    """Accept plain strings or {"url", "description"} objects."""
    rows = []
    for item in urls:
        if isinstance(item, dict):
            url = (item.get("url") or "").strip()
            description = (item.get("description") or "").strip()
        else:
            url = str(item).strip()
            description = url
        if url:
            rows.append({
                "url": lighthouse_audit.normalize_url(url),
                "description": description or lighthouse_audit.DEFAULT_DESCRIPTION,
            })
    return rows


def _load_ledger_from_disk(batch_id):
    """Load a finished batch's audit-summary.json. Returns a list or None."""
    try:
        uuid.UUID(batch_id)
    except ValueError:
        return None
    path = os.path.join(_batch_dir(batch_id), lighthouse_audit.LEDGER_FILENAME)
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r") as f:
            return json.load(f)
    except Exception as e:
        print(f"[!] Failed to load ledger for {batch_id}: {e}")
        return None


# ────────────────────────────────────────────────────────────────────
# ROUTES
# ────────────────────────────────────────────────────────────────────

@app.route("/")
def index():
    """Serve the single-page frontend."""
    return render_template("index.html")


@app.route("/api/batch-audit", methods=["POST"])
def start_batch_audit():
    """
    Start a batch audit.

    Expects JSON: {"urls": ["example.com", {"url": "...", "description": "..."}]}
    Returns JSON: {"batch_id": "..."}
    """
    data = request.get_json(silent=True) or {}
    url_rows = _parse_url_rows(data.get("urls") or [])
    if not url_rows:
        return jsonify({"error": "At least one URL is required"}), 400

    if not _batch_lock.acquire(blocking=False):
        return jsonify({"error": "A batch audit is already running"}), 409

    _prune_finished_batches()
    batch_id = str(uuid.uuid4())
    q = Queue()
    active_batches[batch_id] = {
        "queue": q,
        "urls": [row["url"] for row in url_rows],
        "ledger": None,
        "error": None,
        "done": False,
    }

    def status_callback(message, step, total_steps, entry=None):
        if entry is None:
            q.put({"event": "job_status", "data": {
                "message": message,
                "step": step,
                "total_steps": total_steps,
            }})
        else:
            q.put({"event": "job_complete", "data": {
                "step": step,
                "total_steps": total_steps,
                "result": entry.to_dict(),
            }})

    def run_batch():
        """Background thread: audits every URL, one job at a time."""
        try:
            ledger = lighthouse_audit.run_batch(
                url_rows,
                _batch_dir(batch_id),
                status_callback=status_callback,
                history=True,
            )
            active_batches[batch_id]["ledger"] = ledger
            successful = sum(1 for entry in ledger if entry.ok)
            q.put({"event": "batch_complete", "data": {
                "total": len(ledger),
                "successful": successful,
                "failed": len(ledger) - successful,
            }})
        except Exception as e:
            traceback.print_exc()
            active_batches[batch_id]["error"] = str(e)
            q.put({"event": "batch_error", "data": {"message": str(e)}})
        finally:
            active_batches[batch_id]["done"] = True
            _batch_lock.release()
            q.put(None)  # sentinel, ends the SSE stream

    thread = threading.Thread(target=run_batch, daemon=True)
    active_batches[batch_id]["thread"] = thread
    try:
        thread.start()
    except Exception as e:
        traceback.print_exc()
        del active_batches[batch_id]
        _batch_lock.release()
        return jsonify({"error": f"Could not start batch audit: {e}"}), 500

    return jsonify({"batch_id": batch_id})


@app.route("/api/batch-audit/<batch_id>/stream")
def batch_audit_stream(batch_id):
    """
    SSE endpoint: streams progress events for a batch.

    Event types:
      job_status    : an audit is starting (step N of total)
      job_complete  : an audit finished; payload is its ledger entry
      batch_complete: every audit finished
      batch_error   : the batch itself failed
      done          : terminal event, close the stream
    """
    if batch_id not in active_batches:
        return jsonify({"error": "Batch audit not found"}), 404

    def generate():
        q = active_batches[batch_id]["queue"]
        while True:
            try:
                msg = q.get(timeout=120)
                if msg is None:
                    yield f"event: done\ndata: {json.dumps({'status': 'finished'})}\n\n"
                    break
                event_type = msg.get("event", "job_status")
                data = msg.get("data", {})
                yield f"event: {event_type}\ndata: {json.dumps(data)}\n\n"
            except Empty:
                # Keepalive to prevent proxy/browser timeout.
                yield ": keepalive\n\n"

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )


@app.route("/api/batch-audit/<batch_id>/result")
def batch_audit_result(batch_id):
    """Get the ledger of a finished batch as JSON."""
    if batch_id in active_batches:
        batch = active_batches[batch_id]
        if not batch["done"]:
            return jsonify({"status": "in_progress"}), 202
        if batch["error"]:
            return jsonify({"error": batch["error"]}), 500
        return jsonify([entry.to_dict() for entry in batch["ledger"]])

    # Not in memory, check disk.
    ledger = _load_ledger_from_disk(batch_id)
    if ledger is not None:
        return jsonify(ledger)

    return jsonify({"error": "Batch audit not found"}), 404


@app.route("/api/batch-audit/<batch_id>/pdf")
def download_pdf(batch_id):
    """Generate and return the PDF summary of a finished batch."""
    batch = active_batches.get(batch_id)
    if batch is None:
        return jsonify({"error": "Batch audit not found", "retry": False}), 404
    if not batch["done"] or batch["ledger"] is None:
        return jsonify({"error": "Batch audit not yet complete", "retry": not batch["done"]}), 202

    try:
        summary = summary_report.build_summary(batch["ledger"], _batch_dir(batch_id))
        pdf_bytes = summary_report.render_pdf(summary)
    except Exception as e:
        traceback.print_exc()
        return jsonify({"error": f"PDF generation failed: {e}", "retry": False}), 500

    return Response(
        pdf_bytes,
        mimetype="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="lighthouse-summary-{batch_id[:8]}.pdf"'
        },
    )


@app.route("/api/history")
def audit_history():
    """Past audits: all runs of ?url=..., or the most recent ones."""
    url = request.args.get("url", "").strip()
    database.init_db()
    if url:
        rows = database.get_results_for_url(lighthouse_audit.normalize_url(url))
    else:
        rows = database.get_recent_audits()
    return jsonify(rows)


@app.route("/reports/<path:filename>")
def serve_report(filename):
    """Serve Lighthouse reports, screenshots and summaries."""
    return send_from_directory(REPORTS_DIR, filename)


# ────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    database.init_db()
    os.makedirs(REPORTS_DIR, exist_ok=True)
    print("\n  Lighthouse Batch Auditor Web UI")
    print("  http://localhost:8080\n")
    app.run(host="0.0.0.0", debug=False, port=8080, threaded=True)
