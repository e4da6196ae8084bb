"""
Third-party hosts that bypass the generic rewrite path.

The allow-list is plain data: each HostRule names a host pattern and the
treatments it gets. Adding a host never touches the rewriter.
"""

import re
from dataclasses import dataclass
from urllib.parse import urlparse

VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")

EMBED_TEMPLATE = """
<div class="video-container">
  <iframe
    src="https://www.youtube.com/embed/{video_id}"
    frameborder="0"
    allowfullscreen="true"
    allow="{allow}">
  </iframe>
</div>
"""


@dataclass(frozen=True)
class HostRule:
    pattern: str
    # script[src] stays external instead of being inlined
    external_scripts: bool = False
    # iframe src is left alone and gets the player feature policy
    embeddable_frames: bool = False
    # page URLs on this host may be replaced by the official embed
    video_ids: bool = False

    def matches(self, host):
        host = (host or "").lower().split(":")[0]
        return host == self.pattern or host.endswith("." + self.pattern)


DEFAULT_HOST_RULES = (
    HostRule("youtube.com", external_scripts=True, embeddable_frames=True, video_ids=True),
    HostRule("youtu.be", embeddable_frames=True, video_ids=True),
    HostRule("youtube-nocookie.com", embeddable_frames=True),
    HostRule("ytimg.com", external_scripts=True),
    HostRule("googlevideo.com", external_scripts=True),
)


def host_of(url):
    try:
        return urlparse(url).hostname or ""
    except ValueError:
        return ""


class HostAllowList:
    def __init__(self, rules=DEFAULT_HOST_RULES):
        self.rules = tuple(rules)

    def _lookup(self, url, flag):
        host = host_of(url)
        if not host:
            return False
        return any(getattr(rule, flag) and rule.matches(host) for rule in self.rules)

    def keeps_script_external(self, url):
        return self._lookup(url, "external_scripts")

    def allows_frame(self, url):
        return self._lookup(url, "embeddable_frames")

    def is_video_page(self, url):
        return self._lookup(url, "video_ids")


def extract_video_id(url):
    """
    Pull the video identifier out of a watch or short-link URL.
    Returns "" when neither form is present or the id looks wrong.
    """
    if "watch?v=" in url:
        video_id = url.split("watch?v=", 1)[1].split("&", 1)[0]
    elif "youtu.be/" in url:
        video_id = re.split(r"[?&#/]", url.split("youtu.be/", 1)[1], maxsplit=1)[0]
    else:
        return ""
    return video_id if VIDEO_ID_RE.match(video_id) else ""


def render_embed(video_id, allow):
    return EMBED_TEMPLATE.format(video_id=video_id, allow=allow)
