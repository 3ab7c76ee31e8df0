"""
lighthouse_audit.py - Batch Lighthouse auditor.

Reads URLs from a CSV file (or the command line), runs a desktop and a
mobile Lighthouse audit for each one, and writes a JSON ledger plus an
HTML summary of every result.

One failing URL never stops the batch: its error is recorded and the
next audit starts.

Usage:
    python lighthouse_audit.py                       (reads data/urls.csv)
    python lighthouse_audit.py --file sites.csv
    python lighthouse_audit.py https://example.com https://other.com
    python lighthouse_audit.py --check-pages         (load + screenshot only)
"""

import argparse
import csv
import gc
import json
import os
import re
import sys
import time
from dataclasses import dataclass

from playwright.sync_api import sync_playwright

import database
import summary_report
from devices import DEVICE_PROFILES, DeviceProfile
from disclaimers import handle_disclaimers
from lighthouse_runner import AuditFailure, LighthouseEngine, run_audit

# ────────────────────────────────────────────────────────────────────
# CONFIGURATION
# ────────────────────────────────────────────────────────────────────

DEFAULT_CSV_PATH = os.path.join("data", "urls.csv")

DEFAULT_OUTPUT_DIR = "reports"

LEDGER_FILENAME = "audit-summary.json"

# Used when a CSV row has no description.
DEFAULT_DESCRIPTION = "No description"

# How long (ms) the page-load check waits for navigation.
CHECK_PAGE_TIMEOUT = 60_000

CHECK_SCREENSHOTS_DIR = "browser-screenshots"


class InputError(Exception):
    """Raised when the URL list is missing or unreadable."""


# ────────────────────────────────────────────────────────────────────
# JOBS AND LEDGER
# ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class JobSpec:
    """One unit of work: audit `url` as `device`."""

    url: str
    label: str
    device: DeviceProfile


@dataclass(frozen=True)
class LedgerEntry:
    """A job and its outcome (AuditSuccess or AuditFailure)."""

    job: JobSpec
    outcome: object

    @property
    def ok(self):
        return self.outcome.ok

    def to_dict(self):
        return {
            "url": self.job.url,
            "description": self.job.label,
            "device": self.job.device.name,
            **self.outcome.to_dict(),
        }


def build_jobs(url_rows):
    """Cross every URL with every device, URL-major, desktop first."""
    return [
        JobSpec(url=row["url"], label=row["description"], device=device)
        for row in url_rows
        for device in DEVICE_PROFILES
    ]


# ────────────────────────────────────────────────────────────────────
# URL LOADING
# ────────────────────────────────────────────────────────────────────

def load_urls_from_csv(filepath):
    """
    Read {"url", "description"} rows from a CSV file.

    Rows with an empty url are skipped. A missing description becomes
    "No description".
    """
    if not os.path.exists(filepath):
        raise InputError(f"URL file not found: {filepath}")

    rows = []
    try:
        with open(filepath, "r", newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f)
            if not reader.fieldnames or "url" not in [name.strip() for name in reader.fieldnames]:
                raise InputError(f"URL file has no 'url' column: {filepath}")
            for record in reader:
                record = {(k or "").strip(): v for k, v in record.items()}
                url = (record.get("url") or "").strip()
                if not url:
                    continue
                description = (record.get("description") or "").strip()
                rows.append({"url": url, "description": description or DEFAULT_DESCRIPTION})
    except UnicodeDecodeError as e:
        raise InputError(f"URL file is not valid UTF-8: {filepath} ({e.reason})") from e

    print(f"[*] Read {len(rows)} URLs from {filepath}")
    return rows


def normalize_url(url):
    """Make sure the URL starts with http:// or https://."""
    if not url.startswith(("http://", "https://")):
        return "https://" + url
    return url


# ────────────────────────────────────────────────────────────────────
# BATCH
# ────────────────────────────────────────────────────────────────────

def save_ledger(ledger, output_dir):
    """Write the ledger to audit-summary.json and return the path."""
    path = os.path.join(output_dir, LEDGER_FILENAME)
    with open(path, "w", encoding="utf-8") as f:
        json.dump([entry.to_dict() for entry in ledger], f, indent=2)
    print(f"[*] Audit summary saved to: {path}")
    return path


def record_history(ledger):
    """Append every ledger entry to the SQLite history."""
    database.init_db()
    for entry in ledger:
        scores = entry.outcome.scores if entry.ok else {}
        database.save_audit_result(
            url=entry.job.url,
            description=entry.job.label,
            device=entry.job.device.name,
            status="success" if entry.ok else "failed",
            performance=scores.get("performance"),
            accessibility=scores.get("accessibility"),
            best_practices=scores.get("bestPractices"),
            seo=scores.get("seo"),
            report_path=entry.outcome.report_path if entry.ok else None,
            screenshot_path=entry.outcome.screenshot_path if entry.ok else None,
            error=None if entry.ok else entry.outcome.error_message,
        )
    print(f"[*] {len(ledger)} results saved to {database.DATABASE_NAME}")


def run_batch(url_rows, output_dir, runner=None, job_delay=0, collect_garbage=False,
              status_callback=None, chrome_path=None, lighthouse_bin="lighthouse",
              pdf=False, history=False):
    """
    Audit every URL on every device, one job at a time.

    Args:
        url_rows:        List of {"url", "description"} dicts, in order.
        output_dir:      Root of the report tree.
        runner:          Function(url, device, output_dir) → AuditSuccess.
                         Defaults to lighthouse_runner.run_audit.
        job_delay:       Seconds to sleep after each job. Off by default.
        collect_garbage: Run gc.collect() after each job.
        status_callback: Optional function(message, step, total_steps,
                         entry=None) called before and after every job.
                         Used by the web UI to stream progress.
        pdf:             Also render audit-summary.pdf.
        history:         Also append results to the SQLite history.

    Returns:
        The ledger: a list of LedgerEntry in execution order.

    Job errors are recorded in the ledger. Errors while saving the ledger
    or rendering the summary are raised.
    """
    if runner is None:
        engine = LighthouseEngine(lighthouse_bin=lighthouse_bin)

        def runner(url, device, out):
            return run_audit(url, device, out, engine=engine, chrome_path=chrome_path)

    os.makedirs(output_dir, exist_ok=True)
    jobs = build_jobs(url_rows)
    total = len(jobs)
    ledger = []

    def report_status(message, step, entry=None):
        if status_callback:
            status_callback(message, step, total, entry=entry)

    for step, job in enumerate(jobs, start=1):
        if job.device is DEVICE_PROFILES[0]:
            print(f"\n[*] Testing: {job.label}")
            print(f"[*] URL: {job.url}")
            print("─" * 50)
        print(f"\n[{step}/{total}] Running {job.device.name} audit...")
        report_status(f"Running {job.device.name} audit of {job.url}", step)

        try:
            outcome = runner(job.url, job.device, output_dir)
            print(f"[+] {job.device.name.capitalize()} scores: {outcome.scores}")
        except Exception as e:
            print(f"[!] {job.device.name.capitalize()} audit failed for {job.url}: {e}")
            outcome = AuditFailure(str(e))

        entry = LedgerEntry(job=job, outcome=outcome)
        ledger.append(entry)
        report_status(f"Finished {job.device.name} audit of {job.url}", step, entry=entry)

        if collect_garbage:
            gc.collect()
        if job_delay and step < total:
            time.sleep(job_delay)

    # Past this point errors are batch-level and propagate.
    save_ledger(ledger, output_dir)
    summary_report.write_summary(ledger, output_dir, pdf=pdf)
    if history:
        record_history(ledger)
    return ledger


def print_summary(ledger, output_dir):
    """Print successful/failed counts and average scores."""
    summary = summary_report.build_summary(ledger)

    print(f"\n{'=' * 50}")
    print("  FINAL AUDIT SUMMARY")
    print(f"{'=' * 50}")
    print(f"  URLs tested        : {summary['urls_tested']}")
    print(f"  Successful audits  : {summary['successful']}")
    print(f"  Failed audits      : {summary['failed']}")

    averages = summary["average_scores"]
    if averages:
        print("\n  Average Scores:")
        print(f"    Performance    : {averages['performance']}/100")
        print(f"    Accessibility  : {averages['accessibility']}/100")
        print(f"    Best Practices : {averages['bestPractices']}/100")
        print(f"    SEO            : {averages['seo']}/100")

    for entry in ledger:
        if not entry.ok:
            print(f"  [!] {entry.job.url} ({entry.job.device.name}): {entry.outcome.error_message}")

    print(f"\nAll reports saved in: {output_dir}/")


# ────────────────────────────────────────────────────────────────────
# PAGE-LOAD CHECK
# ────────────────────────────────────────────────────────────────────

def verify_pages(url_rows, output_dir, timeout=CHECK_PAGE_TIMEOUT):
    """
    Open every URL once, clear dialogs, check it has a title and screenshot it.

    A quick smoke test that the list is reachable before a long audit run.
    Navigation errors are logged and the URL is skipped.

    Returns:
        {url: screenshot path, or None if the page failed to load}
    """
    screenshots_dir = os.path.join(output_dir, CHECK_SCREENSHOTS_DIR)
    os.makedirs(screenshots_dir, exist_ok=True)
    results = {}

    with sync_playwright() as pw:
        browser = pw.chromium.launch(headless=True)
        page = browser.new_page()
        try:
            for row in url_rows:
                url, description = row["url"], row["description"]
                print(f"\n[*] Opening {description} ({url})...")
                try:
                    page.goto(url, wait_until="networkidle", timeout=timeout)
                    handle_disclaimers(page)
                    if not page.title():
                        raise ValueError("page has no title")
                    path = os.path.join(screenshots_dir, re.sub(r"[^a-zA-Z0-9]", "_", description) + ".png")
                    page.screenshot(path=path, full_page=True)
                    print(f"[+] {description} loaded successfully")
                    print(f"[*] Screenshot saved: {path}")
                    results[url] = path
                except Exception as e:
                    print(f"[!] Skipping {description} due to navigation error: {e}")
                    results[url] = None
        finally:
            browser.close()

    return results


# ────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ────────────────────────────────────────────────────────────────────

def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Batch Lighthouse auditor: desktop and mobile audits plus "
                    "screenshots for a list of URLs."
    )
    parser.add_argument("urls", nargs="*", help="One or more URLs to audit.")
    parser.add_argument(
        "--file", "-f",
        default=DEFAULT_CSV_PATH,
        help="CSV file with 'url' and optional 'description' columns. "
             "Used when no URLs are given on the command line.",
    )
    parser.add_argument("--output", "-o", default=DEFAULT_OUTPUT_DIR, help="Report directory.")
    parser.add_argument(
        "--job-delay", type=float, default=0,
        help="Seconds to wait after each audit (gives the OS time to reclaim memory).",
    )
    parser.add_argument("--gc", action="store_true", help="Run garbage collection after each audit.")
    parser.add_argument("--chrome-path", default=None, help="Chrome binary (defaults to Playwright's Chromium).")
    parser.add_argument("--lighthouse-bin", default="lighthouse", help="Lighthouse CLI executable.")
    parser.add_argument("--pdf", action="store_true", help="Also write audit-summary.pdf.")
    parser.add_argument("--history", action="store_true", help=f"Also save results to {database.DATABASE_NAME}.")
    parser.add_argument(
        "--check-pages", action="store_true",
        help="Only open each URL and save a screenshot; skip Lighthouse.",
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    print("\n[*] Lighthouse Batch Auditor")

    try:
        if args.urls:
            url_rows = [{"url": normalize_url(u), "description": u} for u in args.urls]
        else:
            print(f"[*] Reading URLs from: {args.file}")
            url_rows = load_urls_from_csv(args.file)
    except (InputError, OSError, csv.Error) as e:
        print(f"[!] {e}")
        sys.exit(1)

    if not url_rows:
        print("[!] No URLs to audit.")
        print("    Usage:  python lighthouse_audit.py https://example.com")
        print("    Or:     python lighthouse_audit.py --file urls.csv")
        sys.exit(1)

    print(f"[*] Found {len(url_rows)} URL(s) to test\n")

    try:
        if args.check_pages:
            results = verify_pages(url_rows, args.output)
            loaded = sum(1 for path in results.values() if path)
            print(f"\n[*] {loaded}/{len(results)} pages loaded")
            return

        ledger = run_batch(
            url_rows,
            args.output,
            job_delay=args.job_delay,
            collect_garbage=args.gc,
            chrome_path=args.chrome_path,
            lighthouse_bin=args.lighthouse_bin,
            pdf=args.pdf,
            history=args.history,
        )
    except Exception as e:
        print(f"[!] Error during audit: {e}")
        sys.exit(1)

    if not ledger:
        print("[!] No audit results were recorded.")
        sys.exit(1)

    print_summary(ledger, args.output)
    print("[+] Lighthouse audit completed")


if __name__ == "__main__":
    main()
