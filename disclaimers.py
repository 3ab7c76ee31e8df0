"""
disclaimers.py - Dismisses consent gates and cookie banners before a screenshot.

Many sites hide their content behind a dialog on first visit: a
"I am a Healthcare Professional" gate, a cookie banner, or both. This
module walks two ordered catalogs of candidate buttons and clicks the
first visible one in each catalog.

Nothing in here ever raises. A page with no dialogs is the normal case,
and a candidate that errors (detached node, bad selector) is just treated
as "not found".

To support a new site, append a selector to the matching catalog below.
Order matters: the first visible candidate wins.
"""

from dataclasses import dataclass

# ────────────────────────────────────────────────────────────────────
# CONFIGURATION
# ────────────────────────────────────────────────────────────────────

# How long (ms) to wait for the page to go network-idle before looking.
DEFAULT_TIMEOUT = 10_000

# How long (ms) each candidate gets to become visible.
VISIBILITY_TIMEOUT = 2_000

# How long (ms) to wait after a click for the dialog to close.
SETTLE_DELAY = 1_000

# Per-indicator visibility timeout (ms) used by has_disclaimers().
INDICATOR_TIMEOUT = 1_000

CONSENT = "consent"
COOKIE = "cookie"


@dataclass(frozen=True)
class DisclaimerCandidate:
    """One entry in a dismissal catalog: a selector we may click."""

    category: str
    selector: str
    description: str

    def is_visible(self, page, timeout=VISIBILITY_TIMEOUT):
        return page.locator(self.selector).first.is_visible(timeout=timeout)

    def click(self, page):
        page.locator(self.selector).first.click()


# ────────────────────────────────────────────────────────────────────
# CONSENT CATALOG
#
# Professional-audience gates ("I am a Healthcare Professional").
# ────────────────────────────────────────────────────────────────────

_CONSENT_SELECTORS = [
    'text="I am a Healthcare Professional"',
    'text="I am a Healthcare Professional" >> button',
    'text="I am a Healthcare Professional" >> a',
    'button:has-text("I am a Healthcare Professional")',
    'button:has-text("Healthcare Professional")',
    'button:has-text("Healthcare")',
    'a:has-text("I am a Healthcare Professional")',
    'a:has-text("Healthcare Professional")',
    'a:has-text("Healthcare")',
    '[data-testid*="consent"] button:has-text("Healthcare Professional")',
    '[data-testid*="consent"] button:has-text("Healthcare")',
    '[data-testid*="healthcare"] button',
    '.consent-button:has-text("Healthcare Professional")',
    '.consent-button:has-text("Healthcare")',
    '.healthcare-button',
    '#consent-button:has-text("Healthcare Professional")',
    '#consent-button:has-text("Healthcare")',
    '#healthcare-button',
    '[role="button"]:has-text("Healthcare Professional")',
    '[role="button"]:has-text("Healthcare")',
    '[class*="consent"] button:has-text("Healthcare")',
    '[class*="healthcare"] button',
    '[id*="consent"] button:has-text("Healthcare")',
    '[id*="healthcare"] button',
]

CONSENT_CANDIDATES = tuple(
    DisclaimerCandidate(CONSENT, selector, "Healthcare professional gate")
    for selector in _CONSENT_SELECTORS
)

# ────────────────────────────────────────────────────────────────────
# COOKIE CATALOG
#
# Plain button labels are tried first (bare text, then <button>, then
# <a>), followed by the short label list scoped to common cookie/consent
# containers.
# ────────────────────────────────────────────────────────────────────

_COOKIE_BUTTON_TEXTS = [
    "Ok",
    "OK",
    "Accept",
    "Accept All",
    "Accept All Cookies",
    "Accept Cookies",
    "I Accept",
    "Got it",
    "Close",
    "Continue",
    "Proceed",
    "Agree",
    "I Agree",
    "Allow",
    "Allow All",
]

_COOKIE_SCOPES = [
    '[data-testid*="cookie"] button',
    '[data-testid*="consent"] button',
    ".cookie-button",
    ".consent-button",
    "#cookie-accept",
    "#consent-accept",
    '[role="button"]',
    '[class*="cookie"] button',
    '[class*="consent"] button',
    '[id*="cookie"] button',
    '[id*="consent"] button',
]

_COOKIE_SCOPED_TEXTS = ["Ok", "Accept", "Accept All Cookies", "Allow"]


def _build_cookie_candidates():
    candidates = []
    for template in ('text="{}"', 'button:has-text("{}")', 'a:has-text("{}")'):
        for text in _COOKIE_BUTTON_TEXTS:
            candidates.append(DisclaimerCandidate(COOKIE, template.format(text), f'"{text}" button'))
    for scope in _COOKIE_SCOPES:
        for text in _COOKIE_SCOPED_TEXTS:
            candidates.append(DisclaimerCandidate(
                COOKIE, f'{scope}:has-text("{text}")', f'"{text}" in {scope}'
            ))
    return tuple(candidates)


COOKIE_CANDIDATES = _build_cookie_candidates()

# Used only to detect that *some* dialog is showing: every clickable
# candidate, then generic dialog containers.
_GENERIC_INDICATORS = [
    '[data-testid*="consent"]',
    '[data-testid*="cookie"]',
    ".consent-dialog",
    ".cookie-banner",
    ".disclaimer",
    ".modal",
]

DISCLAIMER_INDICATORS = list(dict.fromkeys(
    [c.selector for c in CONSENT_CANDIDATES + COOKIE_CANDIDATES] + _GENERIC_INDICATORS
))


# ────────────────────────────────────────────────────────────────────
# DISMISSAL
# ────────────────────────────────────────────────────────────────────

def dismiss_first_visible(page, candidates, visibility_timeout=VISIBILITY_TIMEOUT,
                          settle_delay=SETTLE_DELAY):
    """
    Click the first visible candidate and return it, or None.

    Stops after one click: a second matching button in the same catalog
    is never touched.
    """
    for candidate in candidates:
        try:
            if not candidate.is_visible(page, timeout=visibility_timeout):
                continue
            candidate.click(page)
        except Exception:
            # This candidate didn't work. Try the next one.
            continue
        try:
            page.wait_for_timeout(settle_delay)
        except Exception:
            pass
        return candidate
    return None


def handle_consent_disclaimer(page):
    """Click through a healthcare-professional gate, if one is showing."""
    candidate = dismiss_first_visible(page, CONSENT_CANDIDATES)
    if candidate:
        print(f"[+] Consent disclaimer found, clicked {candidate.selector}")
    return candidate


def handle_cookie_disclaimer(page):
    """Accept a cookie banner, if one is showing."""
    candidate = dismiss_first_visible(page, COOKIE_CANDIDATES)
    if candidate:
        print(f"[+] Cookie disclaimer found, clicked {candidate.selector}")
    return candidate


def handle_disclaimers(page, timeout=DEFAULT_TIMEOUT):
    """
    Best-effort removal of consent and cookie dialogs from a live page.

    Args:
        page:    A Playwright Page that has already navigated somewhere.
        timeout: Max time (ms) to wait for the page to go network-idle.
                 If it never does, we look for dialogs anyway.

    Returns:
        {"consent": candidate or None, "cookie": candidate or None}
        describing what was clicked. Never raises.
    """
    print("[*] Checking for disclaimers...")
    dismissed = {CONSENT: None, COOKIE: None}

    try:
        page.wait_for_load_state("networkidle", timeout=timeout)
    except Exception as e:
        print(f"[*] Page not idle after {timeout}ms ({e.__class__.__name__}), checking anyway")

    # Both phases always run; one finding nothing says nothing about the other.
    try:
        dismissed[CONSENT] = handle_consent_disclaimer(page)
    except Exception as e:
        print(f"[!] Consent disclaimer check failed: {e}")
    try:
        dismissed[COOKIE] = handle_cookie_disclaimer(page)
    except Exception as e:
        print(f"[!] Cookie disclaimer check failed: {e}")

    if not dismissed[CONSENT] and not dismissed[COOKIE]:
        print("[*] No disclaimers found")
    return dismissed


def has_disclaimers(page):
    """Return True if any known dialog or banner is visible. Never clicks."""
    for selector in DISCLAIMER_INDICATORS:
        try:
            if page.locator(selector).first.is_visible(timeout=INDICATOR_TIMEOUT):
                return True
        except Exception:
            continue
    return False
