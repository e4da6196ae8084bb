"""
Turning resource references found in a page into absolute or proxied URLs.

resolve() is a plain join, not RFC 3986 resolution: "../", query-relative
and "//host" references are not understood. Callers that may meet
protocol-relative references go through absolutize().
"""

import enum
from urllib.parse import quote, urlparse

ABSOLUTE_PREFIXES = ("http://", "https://")
SPECIAL_PREFIXES = ("javascript:", "#", "data:", "mailto:", "tel:", "about:", "blob:")

# Characters left readable inside the proxied url parameter
PROXY_SAFE_CHARS = ":/?=@;,~"


class ReferenceKind(enum.Enum):
    ABSOLUTE = "absolute"
    RELATIVE = "relative"
    PROTOCOL_RELATIVE = "protocol-relative"
    SPECIAL = "special"


def normalize_target(raw_url):
    url = (raw_url or "").strip()
    if not url.lower().startswith(ABSOLUTE_PREFIXES):
        url = "http://" + url
    return url


def classify_reference(ref):
    if ref.lower().startswith(ABSOLUTE_PREFIXES):
        return ReferenceKind.ABSOLUTE
    if ref.startswith("//"):
        return ReferenceKind.PROTOCOL_RELATIVE
    if ref.lower().startswith(SPECIAL_PREFIXES):
        return ReferenceKind.SPECIAL
    return ReferenceKind.RELATIVE


def resolve(base, ref):
    if ref.lower().startswith(ABSOLUTE_PREFIXES):
        return ref
    return "%s/%s" % (base.rstrip("/"), ref.lstrip("/"))


def absolutize(base, ref):
    """resolve() plus the cases it leaves to callers."""
    ref = ref.strip()
    kind = classify_reference(ref)
    if kind is ReferenceKind.PROTOCOL_RELATIVE:
        scheme = urlparse(base).scheme or "http"
        return f"{scheme}:{ref}"
    if kind is ReferenceKind.SPECIAL:
        return ref
    return resolve(base, ref)


def proxied(url):
    return "/?url=" + quote(url, safe=PROXY_SAFE_CHARS)
