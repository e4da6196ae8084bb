import argparse
import logging
import time
from datetime import datetime

from flask import Flask, Response, g, jsonify, render_template_string, request

from webview.accounting import DebugStats, RequestLogEntry, StatsReporter
from webview.config import ProxyConfig, parse_strategy
from webview.errors import FetchError
from webview.fetch import FetchClient
from webview.log import setup_logging
from webview.pipeline import PageKind, PageLoader

logger = logging.getLogger("webview.app")

# --- host page template ---
INDEX_HTML = """
<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Web View</title>
<style>
body {
  background: #0e0e0e; color: #e5e5e5; font-family: system-ui, sans-serif; margin: 0; padding: 0;
}
header {
  background: #1b1b1b; padding: 10px; display: flex; align-items: center; gap: 6px;
  box-shadow: 0 2px 4px rgba(0,0,0,0.5);
}
header form { display: flex; flex: 1; gap: 6px; }
input[type=text] {
  flex: 1; padding: 8px; border-radius: 6px; border: none; background: #222; color: #eee;
}
button {
  padding: 8px 10px; border: none; border-radius: 6px;
  background: #444; color: white; cursor: pointer;
}
button:hover { background: #555; }
.notice, .error {
  margin: 40px auto; max-width: 640px; padding: 16px 20px; border-radius: 8px; background: #1b1b1b;
}
.error { border-left: 4px solid #d9534f; }
.notice a { color: #8ab4f8; }
.video-container { position: relative; padding-bottom: 56.25%; height: 0; }
.video-container iframe { position: absolute; top: 0; left: 0; width: 100%; height: 100%; }
#web-view { background: white; color: black; min-height: calc(100vh - 60px); }
</style>
</head>
<body>
<header>
  <button type="button" onclick="history.back()">&larr;</button>
  <button type="button" onclick="history.forward()">&rarr;</button>
  <button type="button" onclick="location.reload()">&#x21bb;</button>
  <form method="get" action="/">
    <input type="text" name="url" value="{{ current_url }}" placeholder="https://example.com">
    <button type="submit">Open</button>
  </form>
</header>
<main>
{% if error %}
  <div class="error">{{ error }}</div>
{% elif kind == "fallback" %}
  <div class="notice">
    <p>This page cannot be displayed inside the web view because the site does not allow it.</p>
    <p><a href="{{ current_url }}" target="_blank" rel="noopener noreferrer">Open {{ current_url }} directly</a></p>
  </div>
{% elif content %}
  <div id="web-view">{{ content|safe }}</div>
{% endif %}
</main>
</body>
</html>
"""

# --- bare fragment for thin clients that inject the document themselves ---
FRAGMENT_HTML = """
{%- if error -%}
<div class="error">{{ error }}</div>
{%- elif kind == "fallback" -%}
<div class="notice"><a href="{{ current_url }}" target="_blank" rel="noopener noreferrer">Open {{ current_url }} directly</a></div>
{%- else -%}
{{ content|safe }}
{%- endif -%}
"""


def _render(template, page):
    return render_template_string(
        template,
        kind=page.kind.value,
        current_url=page.url,
        content=page.content,
        error=page.error,
    )


def create_app(config=None, stats=None, client_factory=FetchClient):
    config = config or ProxyConfig()
    stats = stats or DebugStats(enabled=config.debug, recent=config.stats_recent)
    loader = PageLoader(config, client_factory=client_factory)

    app = Flask(__name__)
    app.extensions["webview.stats"] = stats

    @app.before_request
    def start_timer():
        if stats.enabled:
            g.request_started = time.perf_counter()
            g.request_timestamp = datetime.now()

    @app.after_request
    def record_request(response):
        if stats.enabled and "request_started" in g:
            stats.record(RequestLogEntry(
                timestamp=g.request_timestamp,
                url=request.full_path.rstrip("?"),
                duration=time.perf_counter() - g.request_started,
                status=response.status_code,
                size=response.calculate_content_length() or 0,
            ))
        return response

    @app.route("/")
    def home():
        page = loader.load(request.args.get("url"))
        return _render(INDEX_HTML, page)

    @app.route("/render")
    def render():
        page = loader.load(request.args.get("url"))
        if page.kind is PageKind.HOME:
            return Response("", content_type="text/html; charset=utf-8")
        return Response(_render(FRAGMENT_HTML, page), content_type="text/html; charset=utf-8")

    # --- same-origin passthrough for the video host's auxiliary assets ---
    @app.route("/yt/<path:path>")
    def video_passthrough(path):
        url = config.passthrough_origin + path
        if request.query_string:
            url += "?" + request.query_string.decode("latin-1")
        try:
            with client_factory(config) as client:
                upstream = client.fetch(url, allow_error_status=True)
        except FetchError as e:
            logger.warning("Passthrough to %s failed: %s", url, e)
            return Response(str(e), status=500, content_type="text/plain; charset=utf-8")

        return Response(
            upstream.content,
            status=upstream.status,
            content_type=upstream.headers.get("Content-Type", "application/octet-stream"),
        )

    if stats.enabled:
        @app.route("/debug/stats")
        def debug_stats():
            return jsonify(stats.snapshot())

    return app


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Content-rewriting proxy for embedded web views")
    parser.add_argument("--debug", action="store_true", help="Enable debug mode (request accounting)")
    parser.add_argument("-d", dest="debug_short", action="store_true", help="Enable debug mode")
    parser.add_argument("--strategy", type=parse_strategy, default=None,
                        help="Page admission strategy: frame-check or always-fetch")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--timeout", type=float, default=None, help="Outbound request timeout in seconds")
    return parser.parse_args(argv)


def build_config(args, environ=None):
    config = ProxyConfig.from_env(environ)
    return config.with_overrides(
        # Enable debug if either flag is set
        debug=True if (args.debug or args.debug_short) else None,
        strategy=args.strategy,
        host=args.host,
        port=args.port,
        timeout=args.timeout,
    )


def main(argv=None):
    config = build_config(parse_args(argv))
    setup_logging(debug=config.debug)

    stats = DebugStats(enabled=config.debug, recent=config.stats_recent)
    if stats.enabled:
        logger.info("Debug mode enabled")
        StatsReporter(stats, interval=config.stats_interval).start()

    app = create_app(config, stats)
    logger.info("Server starting on %s:%d (strategy: %s, debug mode: %s)",
                config.host, config.port, config.strategy.value, config.debug)
    app.run(host=config.host, port=config.port, threaded=True)


if __name__ == "__main__":
    main()
