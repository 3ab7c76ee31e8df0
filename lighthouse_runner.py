"""
lighthouse_runner.py - Runs one Lighthouse audit for one URL on one device.

For each (URL, device) pair this module:

  1. Launches a dedicated headless Chrome with a remote-debugging port.
  2. Points the Lighthouse CLI at that port with a device-specific config.
  3. Saves the HTML and JSON reports under
     <output>/<device>/<url_slug>/<timestamp>/.
  4. Opens the page again in a separate Playwright browser, clears any
     consent/cookie dialogs, and saves a full-page screenshot.
  5. Kills Chrome, whatever happened above.

Launch and Lighthouse failures are raised to the caller. Screenshot
failures are only logged; the scores are still valid without one.
"""

import json
import math
import os
import re
import shutil
import socket
import subprocess
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from playwright.sync_api import sync_playwright

from devices import build_lighthouse_config
from disclaimers import handle_disclaimers

# ────────────────────────────────────────────────────────────────────
# CONFIGURATION
# ────────────────────────────────────────────────────────────────────

# Flags for the Chrome instance Lighthouse drives. No sandbox/GPU so it
# also runs inside CI containers.
CHROME_FLAGS = ["--headless", "--no-sandbox", "--disable-gpu"]

# Flags for the separate Playwright browser used for screenshots.
SCREENSHOT_BROWSER_ARGS = ["--disable-dev-shm-usage", "--no-sandbox", "--disable-setuid-sandbox"]

# How long (seconds) Chrome gets to open its debugging port.
CHROME_STARTUP_TIMEOUT = 30

# How long (seconds) a single Lighthouse run may take before it is killed.
LIGHTHOUSE_TIMEOUT = 180

# How long (ms) to wait for the page to load before the screenshot.
PAGE_LOAD_TIMEOUT = 30_000

REPORT_HTML_NAME = "lighthouse-report.html"
REPORT_JSON_NAME = "lighthouse-report.json"
SCREENSHOT_NAME = "page-screenshot.png"

# Lighthouse category id → key used in our results.
SCORE_KEYS = [
    ("performance", "performance"),
    ("accessibility", "accessibility"),
    ("best-practices", "bestPractices"),
    ("seo", "seo"),
]


class ChromeLaunchError(Exception):
    """Raised when Chrome cannot be started or never opens its debugging port."""


class LighthouseError(Exception):
    """Raised when the Lighthouse CLI fails or returns an unusable result."""


# ────────────────────────────────────────────────────────────────────
# RESULTS
# ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AuditSuccess:
    """A finished audit: where the artifacts are and the four scores."""

    report_path: str
    json_path: str
    screenshot_path: Optional[str]
    scores: dict

    ok = True

    def __post_init__(self):
        for _, key in SCORE_KEYS:
            value = self.scores.get(key)
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 100:
                raise ValueError(f"Score {key!r} must be an int between 0 and 100, got {value!r}")

    def to_dict(self):
        return {
            "report": self.report_path,
            "json": self.json_path,
            "screenshot": self.screenshot_path,
            "scores": dict(self.scores),
        }


@dataclass(frozen=True)
class AuditFailure:
    """An audit that could not produce scores."""

    error_message: str

    ok = False

    def to_dict(self):
        return {"error": self.error_message}


# ────────────────────────────────────────────────────────────────────
# OUTPUT PATHS
# ────────────────────────────────────────────────────────────────────

def url_slug(url):
    """Replace every non-alphanumeric character with '_'."""
    return re.sub(r"[^a-zA-Z0-9]", "_", url)


def filesystem_timestamp(now=None):
    """
    ISO-8601 UTC instant with ':' and '.' swapped for '-'.

    e.g. 2026-01-02T03:04:05.678Z → 2026-01-02T03-04-05-678Z
    """
    if now is None:
        now = datetime.now(timezone.utc)
    iso = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def build_output_dir(output_dir, device_name, url, now=None):
    """Create and return <output_dir>/<device>/<url_slug>/<timestamp>/."""
    path = os.path.join(output_dir, device_name, url_slug(url), filesystem_timestamp(now))
    os.makedirs(path, exist_ok=True)
    return path


# ────────────────────────────────────────────────────────────────────
# CHROME
# ────────────────────────────────────────────────────────────────────

class ChromeProcess:
    """A running Chrome that Lighthouse can connect to on `port`."""

    def __init__(self, process, port, user_data_dir):
        self.process = process
        self.port = port
        self.user_data_dir = user_data_dir

    def kill(self):
        if self.process.poll() is None:
            self.process.kill()
            try:
                self.process.wait(timeout=10)
            except subprocess.TimeoutExpired:
                print(f"[!] Chrome (pid {self.process.pid}) did not exit after kill")
        shutil.rmtree(self.user_data_dir, ignore_errors=True)


def resolve_chrome_path(chrome_path=None):
    """Use the given binary, or fall back to Playwright's bundled Chromium."""
    if chrome_path:
        return chrome_path
    with sync_playwright() as pw:
        return pw.chromium.executable_path


def _find_free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _wait_for_debugger(chrome, timeout):
    deadline = time.time() + timeout
    while time.time() < deadline:
        code = chrome.process.poll()
        if code is not None:
            raise ChromeLaunchError(f"Chrome exited during startup with code {code}")
        try:
            with socket.create_connection(("127.0.0.1", chrome.port), timeout=0.5):
                return
        except OSError:
            time.sleep(0.1)
    raise ChromeLaunchError(f"Chrome did not open port {chrome.port} within {timeout}s")


@contextmanager
def launch_chrome(flags=None, chrome_path=None, startup_timeout=CHROME_STARTUP_TIMEOUT):
    """
    Start a private headless Chrome and kill it when the block exits.

    Usage:
        with launch_chrome() as chrome:
            run_lighthouse_against(chrome.port)

    The process is killed on every exit path, including exceptions
    raised inside the block.
    """
    if flags is None:
        flags = CHROME_FLAGS
    executable = resolve_chrome_path(chrome_path)
    port = _find_free_port()
    user_data_dir = tempfile.mkdtemp(prefix="lighthouse-chrome-")
    cmd = [
        executable,
        *flags,
        f"--remote-debugging-port={port}",
        f"--user-data-dir={user_data_dir}",
        "about:blank",
    ]

    try:
        process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except OSError as e:
        shutil.rmtree(user_data_dir, ignore_errors=True)
        raise ChromeLaunchError(f"Could not start Chrome ({executable}): {e}") from e

    chrome = ChromeProcess(process, port, user_data_dir)
    try:
        _wait_for_debugger(chrome, startup_timeout)
        print(f"[*] Chrome started (pid {process.pid}, port {port})")
        yield chrome
    finally:
        chrome.kill()
        print(f"[*] Chrome stopped (pid {process.pid})")


# ────────────────────────────────────────────────────────────────────
# LIGHTHOUSE
# ────────────────────────────────────────────────────────────────────

def _tail(text, lines=5):
    return "\n".join((text or "").strip().splitlines()[-lines:])


class LighthouseEngine:
    """
    Thin wrapper around the `lighthouse` Node CLI.

    run() returns {"report": <html string>, "lhr": <result dict>}.
    """

    def __init__(self, lighthouse_bin="lighthouse", timeout=LIGHTHOUSE_TIMEOUT):
        self.lighthouse_bin = lighthouse_bin
        self.timeout = timeout

    def build_command(self, url, port, config_path, output_path):
        return [
            self.lighthouse_bin,
            url,
            f"--port={port}",
            f"--config-path={config_path}",
            "--output=html",
            "--output=json",
            f"--output-path={output_path}",
            "--quiet",
        ]

    def run(self, url, port, config):
        with tempfile.TemporaryDirectory(prefix="lighthouse-") as tmpdir:
            config_path = os.path.join(tmpdir, "config.json")
            with open(config_path, "w") as f:
                json.dump(config, f, indent=2)

            # With two --output flags Lighthouse appends .report.<ext> to this.
            output_path = os.path.join(tmpdir, "report")
            cmd = self.build_command(url, port, config_path, output_path)

            try:
                proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
            except FileNotFoundError as e:
                raise LighthouseError(f"Lighthouse CLI not found: {self.lighthouse_bin}") from e
            except subprocess.TimeoutExpired as e:
                raise LighthouseError(f"Lighthouse timed out after {self.timeout}s") from e

            if proc.returncode != 0:
                raise LighthouseError(
                    f"Lighthouse exited with code {proc.returncode}: {_tail(proc.stderr)}"
                )

            html_path = output_path + ".report.html"
            json_path = output_path + ".report.json"
            if not os.path.exists(html_path) or not os.path.exists(json_path):
                raise LighthouseError("Lighthouse finished without writing its reports")

            with open(html_path, "r", encoding="utf-8") as f:
                report = f.read()
            with open(json_path, "r", encoding="utf-8") as f:
                lhr = json.load(f)

        runtime_error = lhr.get("runtimeError")
        if runtime_error:
            raise LighthouseError(
                f"Lighthouse runtime error {runtime_error.get('code')}: {runtime_error.get('message')}"
            )
        return {"report": report, "lhr": lhr}


def extract_scores(lhr):
    """
    Turn Lighthouse's 0.0–1.0 category scores into 0–100 ints.

    Rounds half up. Raises LighthouseError if a category is missing or
    has no score (Lighthouse reports null when a category errored).
    """
    categories = lhr.get("categories") or {}
    scores = {}
    for category_id, key in SCORE_KEYS:
        score = (categories.get(category_id) or {}).get("score")
        if score is None:
            raise LighthouseError(f"Lighthouse returned no {category_id} score")
        scores[key] = int(math.floor(score * 100 + 0.5))
    return scores


# ────────────────────────────────────────────────────────────────────
# SCREENSHOT
# ────────────────────────────────────────────────────────────────────

def _close_quietly(resource):
    if resource is None:
        return
    try:
        resource.close()
    except Exception as e:
        print(f"[!] Failed to close {resource.__class__.__name__}: {e}")


def capture_screenshot(url, device, screenshot_path, timeout=PAGE_LOAD_TIMEOUT, executable_path=None):
    """
    Load `url` in a fresh browser sized like `device` and save a full-page PNG.

    Consent and cookie dialogs are dismissed first so they don't cover
    the page. Returns the screenshot path, or None if anything failed.
    """
    try:
        with sync_playwright() as pw:
            browser = pw.chromium.launch(
                headless=True,
                args=SCREENSHOT_BROWSER_ARGS,
                executable_path=executable_path,
            )
            context = None
            page = None
            try:
                context = browser.new_context(viewport=device.viewport, user_agent=device.user_agent)
                page = context.new_page()
                page.goto(url, wait_until="networkidle", timeout=timeout)
                handle_disclaimers(page)
                page.screenshot(path=screenshot_path, full_page=True)
            finally:
                _close_quietly(page)
                _close_quietly(context)
                _close_quietly(browser)
    except Exception as e:
        print(f"[!] Failed to take screenshot for {url}: {e}")
        return None

    print(f"[*] Screenshot saved to: {screenshot_path}")
    return screenshot_path


# ────────────────────────────────────────────────────────────────────
# ENTRY POINT
# ────────────────────────────────────────────────────────────────────

def run_audit(url, device, output_dir, engine=None, chrome_path=None):
    """
    Audit one URL as one device and save everything to disk.

    Args:
        url:         Page to audit.
        device:      A DeviceProfile (devices.DESKTOP or devices.MOBILE).
        output_dir:  Root of the report tree.
        engine:      Object with run(url, port, config); defaults to
                     LighthouseEngine().
        chrome_path: Optional Chrome binary; defaults to Playwright's.

    Returns:
        AuditSuccess. Raises ChromeLaunchError, LighthouseError or OSError
        when the audit itself cannot be completed.
    """
    print(f"[*] Running Lighthouse audit for {url} on {device.name}...")
    if engine is None:
        engine = LighthouseEngine()
    config = build_lighthouse_config(device)

    with launch_chrome(chrome_path=chrome_path) as chrome:
        result = engine.run(url, chrome.port, config)

        audit_dir = build_output_dir(output_dir, device.name, url)

        report_path = os.path.join(audit_dir, REPORT_HTML_NAME)
        with open(report_path, "w", encoding="utf-8") as f:
            f.write(result["report"])

        json_path = os.path.join(audit_dir, REPORT_JSON_NAME)
        with open(json_path, "w", encoding="utf-8") as f:
            json.dump(result["lhr"], f, indent=2)

        # Reports stay on disk even when a category score is unusable.
        scores = extract_scores(result["lhr"])

        screenshot_path = capture_screenshot(
            url, device, os.path.join(audit_dir, SCREENSHOT_NAME), executable_path=chrome_path
        )

    print(f"[+] Lighthouse audit completed for {url} on {device.name}")
    print(f"[*] Report saved to: {report_path}")
    return AuditSuccess(
        report_path=report_path,
        json_path=json_path,
        screenshot_path=screenshot_path,
        scores=scores,
    )
