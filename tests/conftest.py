import pytest
from requests.structures import CaseInsensitiveDict

from webview.errors import FetchFailure
from webview.fetch import FetchResult, decode_body
from webview.minify import Minifier


class FakeClient:
    """Stands in for FetchClient; serves canned responses keyed by URL."""

    def __init__(self, config=None, pages=None, embeddable=True):
        self.config = config
        self.pages = pages if pages is not None else {}
        self.embeddable = embeddable
        self.fetched = []
        self.probed = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def fetch(self, url, allow_error_status=False):
        self.fetched.append(url)
        if url not in self.pages:
            raise FetchFailure(url, f"error fetching {url}: connection refused")
        body, content_type = self.pages[url]
        if isinstance(body, Exception):
            raise body
        if isinstance(body, str):
            body = body.encode("utf-8")
        return FetchResult(
            url=url,
            status=200,
            headers=CaseInsensitiveDict({"Content-Type": content_type}),
            content=body,
            charset="utf-8",
        )

    def fetch_text(self, url):
        return decode_body(self.fetch(url))

    def can_embed(self, url):
        self.probed.append(url)
        if isinstance(self.embeddable, Exception):
            raise self.embeddable
        return self.embeddable


@pytest.fixture
def minifier():
    return Minifier()


@pytest.fixture
def fake_client_factory():
    """Returns (factory, clients); every client shares the same page table."""
    pages = {}
    clients = []
    state = {"embeddable": True}

    def factory(config):
        client = FakeClient(config, pages=pages, embeddable=state["embeddable"])
        clients.append(client)
        return client

    factory.pages = pages
    factory.clients = clients
    factory.state = state
    return factory
