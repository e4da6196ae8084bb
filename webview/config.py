"""
Runtime configuration for the proxy.
Defaults reproduce the constants the service has always shipped with.
"""

import enum
import os
from dataclasses import dataclass, field, replace

from webview.embeds import DEFAULT_HOST_RULES

# Browser identity sent with every outbound request
BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}

IFRAME_ALLOW = "accelerometer; autoplay; clipboard-write; encrypted-media; gyroscope; picture-in-picture"

# Inline scripts containing any of these bootstrap the video player
PLAYER_MARKERS = ("youtube.com", "YT.Player")


class AdmissionStrategy(enum.Enum):
    # probe X-Frame-Options first, show a fallback notice when framing is refused
    FRAME_CHECK = "frame-check"
    # always fetch with browser headers, never probe
    ALWAYS_FETCH = "always-fetch"


@dataclass(frozen=True)
class ProxyConfig:
    debug: bool = False
    strategy: AdmissionStrategy = AdmissionStrategy.ALWAYS_FETCH

    timeout: float = 10.0
    max_redirects: int = 10
    max_body_bytes: int = 15 * 1024 * 1024
    resource_workers: int = 4
    global_fetch_limit: int = 32
    browser_headers: dict = field(default_factory=lambda: dict(BROWSER_HEADERS))

    minify_css: bool = True
    minify_js: bool = True

    host_rules: tuple = DEFAULT_HOST_RULES
    player_markers: tuple = PLAYER_MARKERS
    iframe_allow: str = IFRAME_ALLOW
    passthrough_origin: str = "https://www.youtube.com/"

    stats_interval: float = 60.0
    stats_recent: int = 10

    host: str = "0.0.0.0"
    port: int = 8080

    def with_overrides(self, **changes):
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ
        base = cls()
        return base.with_overrides(
            debug=_env_bool(env.get("WEBVIEW_DEBUG")),
            strategy=_env_strategy(env.get("WEBVIEW_STRATEGY")),
            timeout=_env_number(env.get("WEBVIEW_TIMEOUT"), float),
            max_redirects=_env_number(env.get("WEBVIEW_MAX_REDIRECTS"), int),
            resource_workers=_env_number(env.get("WEBVIEW_RESOURCE_WORKERS"), int),
            global_fetch_limit=_env_number(env.get("WEBVIEW_GLOBAL_FETCH_LIMIT"), int),
            stats_interval=_env_number(env.get("WEBVIEW_STATS_INTERVAL"), float),
            host=env.get("WEBVIEW_HOST"),
            port=_env_number(env.get("WEBVIEW_PORT"), int),
        )


def parse_strategy(value):
    try:
        return AdmissionStrategy(value.strip().lower())
    except ValueError:
        choices = ", ".join(s.value for s in AdmissionStrategy)
        raise ValueError(f"unknown admission strategy {value!r} (expected one of: {choices})")


def _env_bool(value):
    if value is None or value == "":
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(value, kind):
    if value is None or value == "":
        return None
    return kind(value)


def _env_strategy(value):
    if not value:
        return None
    return parse_strategy(value)
