"""
devices.py - Device profiles for Lighthouse audits and screenshots.

Every URL is audited twice: once as a desktop browser and once as a
mobile phone. The two profiles below hold everything that differs between
those runs (screen size, user agent, throttling), and
build_lighthouse_config() turns a profile into the config object the
Lighthouse CLI expects.
"""

from dataclasses import dataclass

# ────────────────────────────────────────────────────────────────────
# CONFIGURATION
# ────────────────────────────────────────────────────────────────────

# Lighthouse categories scored for every audit.
AUDIT_CATEGORIES = ["performance", "accessibility", "best-practices", "seo"]

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)

MOBILE_USER_AGENT = (
    "Mozilla/5.0 (Linux; Android 10; Pixel 3) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.120 Mobile Safari/537.36"
)


@dataclass(frozen=True)
class Throttling:
    """Simulated network and CPU conditions."""

    rtt_ms: int
    throughput_kbps: int
    cpu_slowdown_multiplier: int

    def to_lighthouse(self):
        return {
            "rttMs": self.rtt_ms,
            "throughputKbps": self.throughput_kbps,
            "cpuSlowdownMultiplier": self.cpu_slowdown_multiplier,
        }


@dataclass(frozen=True)
class DeviceProfile:
    """
    A fixed bundle of settings that simulates one browsing environment.

    The same profile drives both the Lighthouse run (screen emulation,
    throttling, user agent) and the Playwright context used for the
    screenshot (viewport, user agent).
    """

    name: str
    form_factor: str
    width: int
    height: int
    device_scale_factor: int
    mobile: bool
    user_agent: str
    throttling: Throttling

    @property
    def viewport(self):
        return {"width": self.width, "height": self.height}

    def screen_emulation(self):
        return {
            "mobile": self.mobile,
            "width": self.width,
            "height": self.height,
            "deviceScaleFactor": self.device_scale_factor,
            "disabled": False,
        }


# Both profiles use the same light throttling, so scores reflect the page
# rather than the simulated network.
_DEFAULT_THROTTLING = Throttling(rtt_ms=40, throughput_kbps=10240, cpu_slowdown_multiplier=1)

DESKTOP = DeviceProfile(
    name="desktop",
    form_factor="desktop",
    width=1920,
    height=1080,
    device_scale_factor=1,
    mobile=False,
    user_agent=DESKTOP_USER_AGENT,
    throttling=_DEFAULT_THROTTLING,
)

MOBILE = DeviceProfile(
    name="mobile",
    form_factor="mobile",
    width=390,
    height=844,
    device_scale_factor=2,
    mobile=True,
    user_agent=MOBILE_USER_AGENT,
    throttling=_DEFAULT_THROTTLING,
)

# Order matters: desktop is always audited before mobile for a given URL.
DEVICE_PROFILES = (DESKTOP, MOBILE)


def get_profile(name):
    """Look up a profile by name ("desktop" or "mobile")."""
    for profile in DEVICE_PROFILES:
        if profile.name == name:
            return profile
    raise KeyError(f"Unknown device profile: {name}")


def build_lighthouse_config(device):
    """
    Build the Lighthouse config object for one device profile.

    The result is written to a JSON file and passed to the CLI with
    --config-path.
    """
    return {
        "extends": "lighthouse:default",
        "settings": {
            "onlyCategories": list(AUDIT_CATEGORIES),
            "formFactor": device.form_factor,
            "throttling": device.throttling.to_lighthouse(),
            "screenEmulation": device.screen_emulation(),
            "emulatedUserAgent": device.user_agent,
        },
    }
