"""
database.py - Keeps a history of Lighthouse audit results.

Every audit (one URL on one device) becomes one row in a SQLite table,
so scores can be compared across batch runs. The JSON/HTML files under
reports/ stay the primary output; this is the long-term record.
"""

import sqlite3
from datetime import datetime

# The database file is created in the current working directory.
DATABASE_NAME = "audit_results.db"


def init_db():
    """
    Create the database and the 'audits' table if they don't already exist.

    Safe to call more than once: IF NOT EXISTS leaves existing data alone.
    """
    conn = sqlite3.connect(DATABASE_NAME)
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS audits (
            id               INTEGER PRIMARY KEY AUTOINCREMENT,
            url              TEXT    NOT NULL,
            description      TEXT,
            device           TEXT    NOT NULL,
            audit_date       TEXT    NOT NULL,
            status           TEXT    NOT NULL,
            performance      INTEGER,
            accessibility    INTEGER,
            best_practices   INTEGER,
            seo              INTEGER,
            report_path      TEXT,
            screenshot_path  TEXT,
            error            TEXT
        )
    """)

    conn.commit()
    conn.close()


def save_audit_result(
    url,
    device,
    status,
    description=None,
    performance=None,
    accessibility=None,
    best_practices=None,
    seo=None,
    report_path=None,
    screenshot_path=None,
    error=None,
):
    """
    Save one audit result to the database.

    Args:
        url:             The audited page.
        device:          "desktop" or "mobile".
        status:          "success" or "failed".
        description:     Label from the URL list.
        performance, accessibility, best_practices, seo:
                         Scores 0-100 (None for failed audits).
        report_path:     Path to the Lighthouse HTML report.
        screenshot_path: Path to the full-page screenshot, if one was taken.
        error:           Error message for failed audits.

    Returns:
        The id of the newly inserted row.
    """
    conn = sqlite3.connect(DATABASE_NAME)
    cursor = conn.cursor()

    cursor.execute(
        """
        INSERT INTO audits (
            url, description, device, audit_date, status,
            performance, accessibility, best_practices, seo,
            report_path, screenshot_path, error
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            url,
            description,
            device,
            datetime.now().isoformat(),
            status,
            performance,
            accessibility,
            best_practices,
            seo,
            report_path,
            screenshot_path,
            error,
        ),
    )

    new_id = cursor.lastrowid
    conn.commit()
    conn.close()
    return new_id


def get_failed_audits():
    """Return every audit that ended in an error, oldest first."""
    conn = sqlite3.connect(DATABASE_NAME)
    conn.row_factory = sqlite3.Row  # lets us access columns by name
    cursor = conn.cursor()

    cursor.execute("SELECT * FROM audits WHERE status = 'failed' ORDER BY id")
    rows = [dict(row) for row in cursor.fetchall()]

    conn.close()
    return rows


def get_results_for_url(url, device=None):
    """
    Return every audit of one URL, oldest first.

    Pass `device` to only get desktop or mobile runs.
    """
    conn = sqlite3.connect(DATABASE_NAME)
    conn.row_factory = sqlite3.Row
    cursor = conn.cursor()

    if device:
        cursor.execute("SELECT * FROM audits WHERE url = ? AND device = ? ORDER BY id", (url, device))
    else:
        cursor.execute("SELECT * FROM audits WHERE url = ? ORDER BY id", (url,))
    rows = [dict(row) for row in cursor.fetchall()]

    conn.close()
    return rows


def get_recent_audits(limit=50):
    """Return the newest `limit` audits, newest first."""
    conn = sqlite3.connect(DATABASE_NAME)
    conn.row_factory = sqlite3.Row
    cursor = conn.cursor()

    cursor.execute("SELECT * FROM audits ORDER BY id DESC LIMIT ?", (limit,))
    rows = [dict(row) for row in cursor.fetchall()]

    conn.close()
    return rows
