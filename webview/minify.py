"""
Best-effort CSS / JavaScript minification.
Malformed input and library errors fall back to the original text.
"""

import logging

import cssmin
import rjsmin

logger = logging.getLogger(__name__)

CSS = "text/css"
JAVASCRIPT = "application/javascript"

JS_ALIASES = ("application/javascript", "text/javascript", "application/x-javascript", "module")

CLOSERS = {"}": "{", ")": "(", "]": "["}


class MalformedSource(ValueError):
    pass


def check_structure(text, line_comments=False):
    """
    Raise MalformedSource on unbalanced brackets or an unterminated
    string/comment. Strings and comments are skipped while counting.
    """
    stack = []
    i = 0
    n = len(text)
    while i < n:
        c = text[i]
        if c in "\"'`":
            end = i + 1
            while end < n and text[end] != c:
                if text[end] == "\\":
                    end += 1
                elif text[end] == "\n" and c != "`":
                    raise MalformedSource(f"unterminated string at offset {i}")
                end += 1
            if end >= n:
                raise MalformedSource(f"unterminated string at offset {i}")
            i = end + 1
            continue
        if text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end < 0:
                raise MalformedSource(f"unterminated comment at offset {i}")
            i = end + 2
            continue
        if line_comments and text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end < 0 else end + 1
            continue
        if c in "{([":
            stack.append(c)
        elif c in CLOSERS:
            if not stack or stack.pop() != CLOSERS[c]:
                raise MalformedSource(f"unbalanced {c!r} at offset {i}")
        i += 1
    if stack:
        raise MalformedSource(f"unclosed {stack[-1]!r}")


def _minify_css(text):
    check_structure(text)
    return cssmin.cssmin(text)


def _minify_js(text):
    check_structure(text, line_comments=True)
    return rjsmin.jsmin(text)


class Minifier:
    def __init__(self, css=True, js=True):
        self.handlers = {}
        if css:
            self.handlers[CSS] = _minify_css
        if js:
            for name in JS_ALIASES:
                self.handlers[name] = _minify_js

    @classmethod
    def from_config(cls, config):
        return cls(css=config.minify_css, js=config.minify_js)

    def minify(self, content_type, text):
        handler = self.handlers.get(content_type.split(";")[0].strip().lower())
        if handler is None or not text.strip():
            return text
        try:
            return handler(text)
        except Exception as e:
            logger.warning("Minifying %s failed, keeping original text: %s", content_type, e)
            return text
