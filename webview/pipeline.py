"""
Page admission: decide what a target URL turns into (embed, fallback
notice, rewritten document or error) and run the fetch/rewrite when needed.
"""

import enum
import logging
from collections import namedtuple

from webview.config import AdmissionStrategy
from webview.embeds import HostAllowList, extract_video_id, render_embed
from webview.errors import FetchError, ParseFailure, SerializationFailure
from webview.fetch import FetchClient
from webview.minify import Minifier
from webview.resolver import normalize_target
from webview.rewriter import DocumentRewriter, RewriteContext, parse_document

logger = logging.getLogger(__name__)


class PageKind(enum.Enum):
    HOME = "home"
    DOCUMENT = "document"
    EMBED = "embed"
    FALLBACK = "fallback"
    ERROR = "error"


PageResult = namedtuple("PageResult", ["kind", "url", "content", "error"])


class PageLoader:
    def __init__(self, config, client_factory=FetchClient):
        self.config = config
        self.client_factory = client_factory
        self.minifier = Minifier.from_config(config)
        self.allow_list = HostAllowList(config.host_rules)

    def load(self, raw_url):
        if not raw_url or not raw_url.strip():
            return PageResult(PageKind.HOME, "", "", None)

        url = normalize_target(raw_url)

        if self.allow_list.is_video_page(url):
            video_id = extract_video_id(url)
            if video_id:
                logger.info("Embedding video %s for %s", video_id, url)
                return PageResult(PageKind.EMBED, url, render_embed(video_id, self.config.iframe_allow), None)

        with self.client_factory(self.config) as client:
            if self.config.strategy is AdmissionStrategy.FRAME_CHECK:
                try:
                    embeddable = client.can_embed(url)
                except FetchError as e:
                    return self._error(url, "Error checking page", e)
                if not embeddable:
                    return PageResult(PageKind.FALLBACK, url, "", None)

            try:
                page = client.fetch(url, allow_error_status=True)
            except FetchError as e:
                return self._error(url, "Error fetching page", e)

            try:
                soup = parse_document(page.content, page.charset)
            except ParseFailure as e:
                return self._error(url, "Error parsing HTML", e)

            context = RewriteContext(
                base_url=page.url or url,
                minifier=self.minifier,
                client=client,
                config=self.config,
                allow_list=self.allow_list,
            )
            try:
                content = DocumentRewriter(context).rewrite(soup)
            except SerializationFailure as e:
                return self._error(url, "Error extracting content", e)

        return PageResult(PageKind.DOCUMENT, url, content, None)

    def _error(self, url, prefix, exc):
        logger.warning("%s for %s: %s", prefix, url, exc, exc_info=logger.isEnabledFor(logging.DEBUG))
        return PageResult(PageKind.ERROR, url, "", f"{prefix}: {exc}")
