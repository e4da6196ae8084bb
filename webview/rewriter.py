"""
The rewrite pass: one parsed page in, one self-contained HTML string out.

Steps run in a fixed order (meta, head, stylesheets, scripts, images,
iframes, forms, anchors); later steps assume earlier ones already ran.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from bs4 import BeautifulSoup
from bs4.element import Script, Stylesheet

from webview.embeds import HostAllowList
from webview.errors import FetchError, ParseFailure, SerializationFailure
from webview.minify import CSS, JAVASCRIPT, JS_ALIASES
from webview.resolver import ReferenceKind, absolutize, classify_reference, proxied

logger = logging.getLogger(__name__)

VIEWPORT = "width=device-width, initial-scale=1.0"


@dataclass
class RewriteContext:
    base_url: str
    minifier: object
    client: object
    config: object
    allow_list: HostAllowList = None

    def __post_init__(self):
        if self.allow_list is None:
            self.allow_list = HostAllowList(self.config.host_rules)


def parse_document(content, charset=None):
    try:
        if isinstance(content, bytes):
            return BeautifulSoup(content, "html.parser", from_encoding=charset)
        return BeautifulSoup(content, "html.parser")
    except Exception as e:
        raise ParseFailure(f"could not parse document: {e}") from e


def _attr_pattern(value):
    return re.compile(r"^\s*%s\s*$" % re.escape(value), re.I)


def escape_closing_tag(text, name):
    """Keep fetched text from ending its <script>/<style> element early."""
    return re.sub(r"</(%s)" % name, r"<\\/\1", text, flags=re.I)


def _rel_tokens(tag):
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return [token.lower() for token in rel]


class DocumentRewriter:
    def __init__(self, context):
        self.ctx = context
        self.resources_inlined = 0
        self.resources_failed = 0
        self.bytes_inlined = 0

    def rewrite(self, soup):
        with ThreadPoolExecutor(max_workers=self.ctx.config.resource_workers) as pool:
            self.pool = pool
            try:
                self.process_meta(soup)
                self.process_head(soup)
                self.process_css(soup)
                self.process_js(soup)
                self.process_images(soup)
                self.process_iframes(soup)
                self.process_forms(soup)
                self.process_links(soup)
            except BaseException:
                pool.shutdown(wait=False, cancel_futures=True)
                raise
            finally:
                self.pool = None

        logger.debug(
            "Rewrote %s: %d resources inlined (%d bytes), %d left external after errors",
            self.ctx.base_url, self.resources_inlined, self.bytes_inlined, self.resources_failed,
        )
        try:
            return str(soup)
        except Exception as e:
            raise SerializationFailure(f"could not serialize {self.ctx.base_url}: {e}") from e

    def absolute(self, ref):
        return absolutize(self.ctx.base_url, ref)

    # --- meta / head ---

    def _head(self, soup):
        if soup.head is not None:
            return soup.head
        head = soup.new_tag("head")
        if soup.html is not None:
            soup.html.insert(0, head)
        else:
            soup.insert(0, head)
        return head

    def process_meta(self, soup):
        for tag in soup.find_all("meta", attrs={"name": _attr_pattern("viewport")}):
            tag.decompose()
        head = self._head(soup)
        head.insert(0, soup.new_tag("meta", attrs={"name": "viewport", "content": VIEWPORT}))

        for tag in soup.find_all("meta", charset=True):
            tag.decompose()
        charset = soup.new_tag("meta")
        # plain str, so the serializer does not rewrite it to the output encoding
        charset["charset"] = "UTF-8"
        head.insert(0, charset)

        for tag in soup.find_all("meta", attrs={"http-equiv": _attr_pattern("Content-Security-Policy")}):
            tag.decompose()

    def process_head(self, soup):
        for tag in soup.find_all("base", href=True):
            tag["href"] = self.absolute(tag["href"])
        for tag in soup.find_all("link", href=True):
            if "icon" in _rel_tokens(tag):
                tag["href"] = self.absolute(tag["href"])

    # --- stylesheets / scripts ---

    def _prefetch(self, urls):
        return [self.pool.submit(self.ctx.client.fetch_text, url) for url in urls]

    def _collect(self, future, url):
        try:
            body = future.result()
        except FetchError as e:
            self.resources_failed += 1
            logger.warning("Leaving %s external: %s", url, e)
            return None
        self.resources_inlined += 1
        self.bytes_inlined += len(body)
        return body

    def process_css(self, soup):
        inline_styles = soup.find_all("style")

        links = [
            tag for tag in soup.find_all("link", href=True)
            if "stylesheet" in _rel_tokens(tag)
        ]
        urls = [self.absolute(tag["href"]) for tag in links]
        for tag, url, future in zip(links, urls, self._prefetch(urls)):
            css = self._collect(future, url)
            if css is None:
                continue
            style = soup.new_tag("style")
            if tag.get("media"):
                style["media"] = tag["media"]
            style.string = Stylesheet(escape_closing_tag(self.ctx.minifier.minify(CSS, css), "style"))
            tag.replace_with(style)

        for tag in inline_styles:
            if tag.string is not None:
                tag.string = Stylesheet(self.ctx.minifier.minify(CSS, str(tag.string)))

    def _is_player_bootstrap(self, text):
        return any(marker in text for marker in self.ctx.config.player_markers)

    def process_js(self, soup):
        inline_scripts = [tag for tag in soup.find_all("script") if not tag.has_attr("src")]

        pending = []
        for tag in soup.find_all("script", src=True):
            url = self.absolute(tag["src"])
            if self.ctx.allow_list.keeps_script_external(url):
                tag["src"] = url
                continue
            pending.append((tag, url))

        futures = self._prefetch([url for _, url in pending])
        for (tag, url), future in zip(pending, futures):
            js = self._collect(future, url)
            if js is None:
                continue
            del tag["src"]
            tag.string = Script(escape_closing_tag(self.ctx.minifier.minify(JAVASCRIPT, js), "script"))

        for tag in inline_scripts:
            script_type = (tag.get("type") or JAVASCRIPT).split(";")[0].strip().lower()
            if script_type not in JS_ALIASES or tag.string is None:
                continue
            text = str(tag.string)
            if self._is_player_bootstrap(text):
                continue
            tag.string = Script(self.ctx.minifier.minify(JAVASCRIPT, text))

    # --- media ---

    def process_images(self, soup):
        for tag in soup.find_all("img", src=True):
            tag["src"] = self.absolute(tag["src"])

    def process_iframes(self, soup):
        for tag in soup.find_all("iframe", src=True):
            if self.ctx.allow_list.allows_frame(tag["src"]):
                tag["allowfullscreen"] = "true"
                tag["allow"] = self.ctx.config.iframe_allow
                continue
            tag["src"] = self.absolute(tag["src"])

    # --- navigation ---

    def process_forms(self, soup):
        for tag in soup.find_all("form", action=True):
            action = tag["action"]
            if classify_reference(action.strip()) is ReferenceKind.SPECIAL:
                continue
            tag["action"] = proxied(self.absolute(action))

    def process_links(self, soup):
        for tag in soup.find_all("a", href=True):
            href = tag["href"]
            # javascript: and #fragment links must keep working in place
            if classify_reference(href.strip()) is ReferenceKind.SPECIAL:
                continue
            tag["href"] = proxied(self.absolute(href))
