"""
Error taxonomy for the proxy pipeline.
Minification problems are deliberately absent: they degrade to passthrough text.
"""


class ProxyError(Exception):
    """Base class for every failure surfaced to the HTTP layer."""


class FetchError(ProxyError):
    def __init__(self, url, message):
        super().__init__(message)
        self.url = url


class FetchFailure(FetchError):
    """Network, DNS or connection failure."""


class FetchTimeout(FetchError):
    pass


class TooManyRedirects(FetchError):
    pass


class NonSuccessStatus(FetchError):
    def __init__(self, url, status):
        super().__init__(url, f"{url} answered with HTTP {status}")
        self.status = status


class ParseFailure(ProxyError):
    pass


class SerializationFailure(ProxyError):
    pass
