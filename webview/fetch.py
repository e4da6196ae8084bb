"""
Outbound HTTP for the proxy: page fetches, resource fetches and the
frame-ability probe. One FetchClient per inbound request.
"""

import logging
import socket
import threading
import time
from collections import namedtuple
from contextlib import contextmanager
from urllib.parse import urljoin

import requests

from webview.errors import FetchFailure, FetchTimeout, NonSuccessStatus, TooManyRedirects

logger = logging.getLogger(__name__)

FetchResult = namedtuple("FetchResult", ["url", "status", "headers", "content", "charset"])

FRAME_DENYING_VALUES = ("deny", "sameorigin")

CHUNK_SIZE = 64 * 1024

_limiter_lock = threading.Lock()
_limiters = {}


def outbound_limiter(size):
    """Process-wide cap on concurrent outbound requests, one per size."""
    with _limiter_lock:
        if size not in _limiters:
            _limiters[size] = threading.BoundedSemaphore(size)
        return _limiters[size]


def charset_of(headers):
    for part in headers.get("Content-Type", "").split(";")[1:]:
        key, _, value = part.strip().partition("=")
        if key.lower() == "charset" and value:
            return value.strip("'\" ")
    return None


def decode_body(result):
    """Text of a FetchResult, using the declared charset or UTF-8."""
    try:
        return result.content.decode(result.charset or "utf-8", errors="replace")
    except LookupError:
        return result.content.decode("utf-8", errors="replace")


@contextmanager
def translate_errors(url):
    try:
        yield
    except requests.Timeout as e:
        raise FetchTimeout(url, f"timed out fetching {url}: {e}") from e
    except requests.TooManyRedirects as e:
        raise TooManyRedirects(url, f"too many redirects fetching {url}") from e
    except requests.RequestException as e:
        raise FetchFailure(url, f"error fetching {url}: {e}") from e


def _socket_of(resp):
    fp = getattr(getattr(resp.raw, "_fp", None), "fp", None)
    sock = getattr(getattr(fp, "raw", None), "_sock", None)
    if sock is None:
        sock = getattr(getattr(resp.raw, "_connection", None), "sock", None)
    return sock


def abort_transfer(resp):
    """
    Unblock a reader stuck in recv() on resp from another thread.
    Shutting the socket down wakes the reader with EOF.
    """
    sock = _socket_of(resp)
    try:
        if sock is not None:
            sock.shutdown(socket.SHUT_RDWR)
        else:
            resp.close()
    except OSError as e:
        logger.debug("Aborting transfer: %s", e)


class FetchClient:
    def __init__(self, config, session=None):
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update(config.browser_headers)
        self.limiter = outbound_limiter(config.global_fetch_limit)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.session.close()

    def fetch(self, url, allow_error_status=False):
        """
        GET url and return a FetchResult.

        config.timeout bounds the whole transfer: every redirect hop gets
        only what is left of it, and a watchdog cuts the body read off at
        the deadline. Non-2xx raises NonSuccessStatus unless
        allow_error_status is set.
        """
        deadline = time.monotonic() + self.config.timeout
        with self.limiter, translate_errors(url):
            resp = self._follow(self.session.get, url, deadline, stream=True)
            try:
                if not allow_error_status and not 200 <= resp.status_code < 300:
                    raise NonSuccessStatus(url, resp.status_code)
                content = self._read_body(url, resp, deadline)
            finally:
                resp.close()

        logger.debug("Fetched %s (%d, %d bytes)", resp.url, resp.status_code, len(content))
        return FetchResult(
            url=resp.url,
            status=resp.status_code,
            headers=resp.headers,
            content=content,
            charset=charset_of(resp.headers),
        )

    def fetch_text(self, url):
        return decode_body(self.fetch(url))

    def can_embed(self, url):
        """HEAD probe: False when X-Frame-Options forbids foreign framing."""
        deadline = time.monotonic() + self.config.timeout
        with self.limiter, translate_errors(url):
            resp = self._follow(self.session.head, url, deadline)
            resp.close()

        value = resp.headers.get("X-Frame-Options", "").strip().lower()
        if value in FRAME_DENYING_VALUES:
            logger.info("Framing refused by %s (X-Frame-Options: %s)", url, value)
            return False
        return True

    def _remaining(self, url, deadline):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise FetchTimeout(url, f"fetching {url} took longer than {self.config.timeout}s")
        return remaining

    def _follow(self, send, url, deadline, **kwargs):
        """Send and follow redirects by hand, at most config.max_redirects hops."""
        target = url
        for _ in range(self.config.max_redirects + 1):
            resp = send(target, timeout=self._remaining(url, deadline), allow_redirects=False, **kwargs)
            if not resp.is_redirect:
                return resp
            resp.close()
            target = urljoin(resp.url, resp.headers["Location"])
            logger.debug("Redirected to %s", target)
        raise TooManyRedirects(url, f"more than {self.config.max_redirects} redirects fetching {url}")

    def _read_body(self, url, resp, deadline):
        expired = threading.Event()

        def cut_off():
            expired.set()
            abort_transfer(resp)

        watchdog = threading.Timer(self._remaining(url, deadline), cut_off)
        watchdog.daemon = True
        watchdog.start()

        chunks = []
        size = 0
        try:
            for chunk in resp.iter_content(CHUNK_SIZE):
                chunks.append(chunk)
                size += len(chunk)
                if size > self.config.max_body_bytes:
                    raise FetchFailure(url, f"response from {url} exceeds {self.config.max_body_bytes} bytes")
        except Exception as e:
            if expired.is_set():
                raise FetchTimeout(url, f"fetching {url} took longer than {self.config.timeout}s") from e
            raise
        finally:
            watchdog.cancel()

        if expired.is_set():
            raise FetchTimeout(url, f"fetching {url} took longer than {self.config.timeout}s")
        return b"".join(chunks)
