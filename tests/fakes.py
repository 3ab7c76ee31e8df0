"""
tests/fakes.py

Stand-ins for Playwright pages/browsers, Chrome and the Lighthouse CLI so
the tests never need a browser, Node or the network.
"""

from __future__ import annotations

from contextlib import contextmanager

from lighthouse_runner import AuditSuccess

SCORES = {"performance": 91, "accessibility": 88, "bestPractices": 100, "seo": 75}


def make_lhr(performance=0.91, accessibility=0.88, best_practices=1.0, seo=0.75):
    return {
        "lighthouseVersion": "12.0.0",
        "categories": {
            "performance": {"score": performance},
            "accessibility": {"score": accessibility},
            "best-practices": {"score": best_practices},
            "seo": {"score": seo},
        },
    }


def make_success(report_path="report.html", screenshot_path="shot.png", scores=None):
    return AuditSuccess(
        report_path=report_path,
        json_path=report_path.replace(".html", ".json"),
        screenshot_path=screenshot_path,
        scores=dict(scores or SCORES),
    )


# ---------------------------------------------------------------------------
# Pages for the disclaimer handler
# ---------------------------------------------------------------------------


class FakeLocator:
    def __init__(self, page, selector):
        self.page = page
        self.selector = selector

    @property
    def first(self):
        return self

    def is_visible(self, timeout=None):
        self.page.visibility_checks.append(self.selector)
        if self.selector in self.page.broken:
            raise RuntimeError("Element is not attached to the DOM")
        return self.selector in self.page.visible

    def click(self, timeout=None):
        if self.selector in self.page.unclickable:
            raise RuntimeError("Element is intercepted by another element")
        self.page.clicks.append(self.selector)


class FakePage:
    """A page where `visible` selectors are showing and everything else isn't."""

    def __init__(self, visible=(), broken=(), unclickable=(), idle_error=None):
        self.visible = set(visible)
        self.broken = set(broken)
        self.unclickable = set(unclickable)
        self.idle_error = idle_error
        self.visibility_checks = []
        self.clicks = []
        self.waits = []
        self.load_states = []

    def locator(self, selector):
        return FakeLocator(self, selector)

    def wait_for_load_state(self, state, timeout=None):
        self.load_states.append((state, timeout))
        if self.idle_error:
            raise self.idle_error

    def wait_for_timeout(self, ms):
        self.waits.append(ms)


class ExplodingPage:
    """Every call fails, as with a page whose browser has gone away."""

    def locator(self, selector):
        raise RuntimeError("Target page, context or browser has been closed")

    def wait_for_load_state(self, state, timeout=None):
        raise RuntimeError("Target page, context or browser has been closed")

    def wait_for_timeout(self, ms):
        raise RuntimeError("Target page, context or browser has been closed")


# ---------------------------------------------------------------------------
# Playwright browser stack for screenshots
# ---------------------------------------------------------------------------


class FakeBrowserPage:
    def __init__(self, log, goto_error=None, title="Example Domain"):
        self.log = log
        self.goto_error = goto_error
        self._title = title

    def goto(self, url, wait_until=None, timeout=None):
        self.log.append(("goto", url, wait_until, timeout))
        if self.goto_error:
            raise self.goto_error

    def title(self):
        return self._title

    def screenshot(self, path=None, full_page=False):
        self.log.append(("screenshot", path, full_page))
        with open(path, "wb") as f:
            f.write(b"\x89PNG fake")

    def close(self):
        self.log.append(("close", "page"))


class FakeContext:
    def __init__(self, log, page):
        self.log = log
        self.page = page

    def new_page(self):
        return self.page

    def close(self):
        self.log.append(("close", "context"))


class FakeBrowser:
    def __init__(self, log, page):
        self.log = log
        self.page = page

    def new_context(self, viewport=None, user_agent=None):
        self.log.append(("new_context", viewport, user_agent))
        return FakeContext(self.log, self.page)

    def new_page(self):
        return self.page

    def close(self):
        self.log.append(("close", "browser"))


class FakeChromium:
    def __init__(self, log, page):
        self.log = log
        self.page = page
        self.executable_path = "/fake/chromium"

    def launch(self, headless=True, args=None, executable_path=None):
        self.log.append(("launch", headless, tuple(args or ()), executable_path))
        return FakeBrowser(self.log, self.page)


class FakePlaywright:
    def __init__(self, page=None):
        self.log = []
        self.page = page or FakeBrowserPage(self.log)
        self.page.log = self.log
        self.chromium = FakeChromium(self.log, self.page)

    def __call__(self):
        # Stands in for sync_playwright(): returns a context manager.
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


# ---------------------------------------------------------------------------
# Chrome and Lighthouse
# ---------------------------------------------------------------------------


class FakeChrome:
    def __init__(self, port=9222):
        self.port = port
        self.killed = False


class ChromeLauncher:
    """Replacement for lighthouse_runner.launch_chrome that records kills."""

    def __init__(self, error=None):
        self.error = error
        self.launched = []

    @contextmanager
    def __call__(self, flags=None, chrome_path=None, startup_timeout=None):
        if self.error:
            raise self.error
        chrome = FakeChrome(port=9222 + len(self.launched))
        self.launched.append(chrome)
        try:
            yield chrome
        finally:
            chrome.killed = True


class FakeEngine:
    """Replacement for LighthouseEngine."""

    def __init__(self, lhr=None, error=None, lighthouse_bin="lighthouse"):
        self.lhr = lhr or make_lhr()
        self.error = error
        self.calls = []

    def run(self, url, port, config):
        self.calls.append((url, port, config))
        if self.error:
            raise self.error
        return {"report": f"<html><body>Report for {url}</body></html>", "lhr": self.lhr}
