import socket
import threading
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from webview import fetch as fetch_module
from webview.config import ProxyConfig
from webview.errors import FetchFailure, FetchTimeout, NonSuccessStatus, TooManyRedirects
from webview.fetch import FetchClient, charset_of, decode_body, outbound_limiter


def make_response(status=200, headers=None, chunks=(b"<html></html>",), url="http://example.com/"):
    resp = MagicMock()
    resp.status_code = status
    resp.url = url
    resp.is_redirect = False
    resp.headers = CaseInsensitiveDict(headers or {"Content-Type": "text/html; charset=utf-8"})
    resp.iter_content.return_value = iter(chunks)
    return resp


@pytest.fixture
def session():
    return MagicMock()


def test_session_carries_browser_identity():
    with FetchClient(ProxyConfig()) as client:
        assert client.session.headers["User-Agent"].startswith("Mozilla/5.0")
        assert client.session.headers["Sec-Fetch-Mode"] == "navigate"


def test_fetch_returns_result(session):
    session.get.return_value = make_response(chunks=[b"<p>", b"hi</p>"], url="http://example.com/final")
    client = FetchClient(ProxyConfig(), session=session)

    result = client.fetch("http://example.com")

    assert result.status == 200
    assert result.url == "http://example.com/final"
    assert result.content == b"<p>hi</p>"
    assert result.charset == "utf-8"
    args, kwargs = session.get.call_args
    assert args == ("http://example.com",)
    assert kwargs["stream"] is True
    assert kwargs["allow_redirects"] is False
    assert 0 < kwargs["timeout"] <= 10.0


def test_non_success_status_raises_unless_allowed(session):
    session.get.return_value = make_response(status=404)
    client = FetchClient(ProxyConfig(), session=session)
    with pytest.raises(NonSuccessStatus) as excinfo:
        client.fetch("http://example.com/missing")
    assert excinfo.value.status == 404

    session.get.return_value = make_response(status=404)
    assert client.fetch("http://example.com/missing", allow_error_status=True).status == 404


@pytest.mark.parametrize("exc,expected", [
    (requests.Timeout("slow"), FetchTimeout),
    (requests.ConnectTimeout("slow connect"), FetchTimeout),
    (requests.TooManyRedirects("loop"), TooManyRedirects),
    (requests.ConnectionError("refused"), FetchFailure),
    (requests.exceptions.InvalidURL("bad"), FetchFailure),
])
def test_transport_errors_are_typed(session, exc, expected):
    session.get.side_effect = exc
    client = FetchClient(ProxyConfig(), session=session)
    with pytest.raises(expected) as excinfo:
        client.fetch("http://example.com")
    assert excinfo.value.url == "http://example.com"


def test_budget_spent_before_first_hop_is_a_timeout(session, monkeypatch):
    clock = iter([0.0, 11.0])
    monkeypatch.setattr(fetch_module, "time", SimpleNamespace(monotonic=lambda: next(clock)))
    client = FetchClient(ProxyConfig(timeout=10.0), session=session)
    with pytest.raises(FetchTimeout):
        client.fetch("http://slow.example.com")
    session.get.assert_not_called()


@pytest.fixture
def slow_drip_server():
    """Announces a 100000 byte body, then sends one byte every 0.1s."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    server.settimeout(5)
    stop = threading.Event()

    def serve():
        try:
            conn, _ = server.accept()
        except OSError:
            return
        with conn:
            conn.recv(65536)
            try:
                conn.sendall(
                    b"HTTP/1.1 200 OK\r\nContent-Type: text/html\r\n"
                    b"Content-Length: 100000\r\n\r\n"
                )
                while not stop.is_set():
                    conn.sendall(b"x")
                    stop.wait(0.1)
            except OSError:
                return

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield "http://127.0.0.1:%d/" % server.getsockname()[1]
    stop.set()
    server.close()
    thread.join(2)


def test_slow_drip_body_is_cut_off_at_deadline(slow_drip_server):
    session = requests.Session()
    session.trust_env = False
    client = FetchClient(ProxyConfig(timeout=1.0), session=session)

    start = time.monotonic()
    with pytest.raises(FetchTimeout):
        client.fetch(slow_drip_server)
    assert time.monotonic() - start < 3.0


def redirect_to(location, url):
    resp = make_response(status=302, headers={"Location": location}, url=url)
    resp.is_redirect = True
    return resp


def test_redirects_are_followed_within_budget(session):
    session.get.side_effect = [
        redirect_to("/b", "http://example.com/a"),
        make_response(url="http://example.com/b"),
    ]
    client = FetchClient(ProxyConfig(), session=session)

    result = client.fetch("http://example.com/a")

    assert result.url == "http://example.com/b"
    assert session.get.call_args_list[1][0] == ("http://example.com/b",)
    assert session.get.call_args_list[1][1]["timeout"] <= session.get.call_args_list[0][1]["timeout"]


def test_redirect_cap_raises(session):
    session.get.side_effect = lambda *args, **kwargs: redirect_to("/loop", "http://example.com/loop")
    client = FetchClient(ProxyConfig(max_redirects=2), session=session)
    with pytest.raises(TooManyRedirects):
        client.fetch("http://example.com/loop")
    assert session.get.call_count == 3


def test_body_size_is_capped(session):
    session.get.return_value = make_response(chunks=[b"abcd"])
    client = FetchClient(ProxyConfig(max_body_bytes=3), session=session)
    with pytest.raises(FetchFailure):
        client.fetch("http://big.example.com")


@pytest.mark.parametrize("headers,expected", [
    ({"X-Frame-Options": "DENY"}, False),
    ({"X-Frame-Options": " SameOrigin "}, False),
    ({"x-frame-options": "sameorigin"}, False),
    ({"X-Frame-Options": "ALLOW-FROM https://a.b"}, True),
    ({"Content-Security-Policy": "frame-ancestors 'none'"}, True),
    ({}, True),
])
def test_can_embed(session, headers, expected):
    session.head.return_value = make_response(headers=headers)
    client = FetchClient(ProxyConfig(), session=session)
    assert client.can_embed("http://example.com") is expected
    args, kwargs = session.head.call_args
    assert args == ("http://example.com",)
    assert kwargs["allow_redirects"] is False


def test_can_embed_propagates_network_failure(session):
    session.head.side_effect = requests.ConnectionError("dns")
    client = FetchClient(ProxyConfig(), session=session)
    with pytest.raises(FetchFailure):
        client.can_embed("http://nowhere.invalid")


def test_charset_and_decoding():
    assert charset_of(CaseInsensitiveDict({"Content-Type": "text/css; charset=\"ISO-8859-1\""})) == "ISO-8859-1"
    assert charset_of(CaseInsensitiveDict({"Content-Type": "text/css"})) is None

    result = fetch_module.FetchResult("u", 200, {}, "café".encode("latin-1"), "latin-1")
    assert decode_body(result) == "café"
    bogus = fetch_module.FetchResult("u", 200, {}, "café".encode("utf-8"), "no-such-codec")
    assert decode_body(bogus) == "café"


def test_outbound_limiter_is_shared_per_size():
    assert outbound_limiter(7) is outbound_limiter(7)
    assert outbound_limiter(7) is not outbound_limiter(8)
