"""HTTP error mapping and User-Agent rotation against a local aiohttp server."""

import asyncio

import aiohttp
import pytest
from aiohttp import test_utils, web

from ingest import config
from ingest.errors import FetchError
from ingest.rss import FeedParser, is_transient_error
from parsers.base import http_get
from parsers.fallback import FallbackParser
from parsers.primary import PrimaryParser


RSS = b"""<?xml version="1.0"?>
<rss version="2.0"><channel>
<title>Local feed</title>
<link>http://localhost/</link>
<item><title>Hello</title><link>http://localhost/hello</link><description>Body</description></item>
</channel></rss>
"""


def build_app(seen_agents):
    async def limited(request):
        return web.Response(status=429, text="Too Many Requests")

    async def slow(request):
        await asyncio.sleep(1.0)
        return web.Response(body=RSS, content_type="application/rss+xml")

    async def guarded(request):
        ua = request.headers.get("User-Agent", "")
        seen_agents.append(ua)
        if ua != "UA-2":
            return web.Response(status=403, text="Forbidden")
        return web.Response(body=RSS, content_type="application/rss+xml")

    app = web.Application()
    app.router.add_get("/limited", limited)
    app.router.add_get("/slow", slow)
    app.router.add_get("/guarded", guarded)
    return app


async def with_server(scenario, seen_agents=None):
    server = test_utils.TestServer(build_app(seen_agents if seen_agents is not None else []))
    await server.start_server()
    try:
        return await scenario(server)
    finally:
        await server.close()


def make_parser():
    return FeedParser(
        primary=PrimaryParser(user_agent="Primary/1.0", timeout=2),
        fallback=FallbackParser(user_agents=["UA-1", "UA-2", "UA-3"], referer_hosts={}, timeout=2, retry_delay=0),
    )


# ── http_get ──────────────────────────────────────────────────

class TestHttpGet:
    def test_status_code_message(self):
        async def scenario(server):
            async with aiohttp.ClientSession() as sess:
                await http_get(sess, str(server.make_url("/limited")), {}, timeout=2)

        with pytest.raises(FetchError) as exc:
            asyncio.run(with_server(scenario))
        assert str(exc.value) == "Status code 429"
        assert is_transient_error(str(exc.value), config.DEFAULT_TRANSIENT_ERROR_SIGNATURES)

    def test_timeout_message(self):
        async def scenario(server):
            async with aiohttp.ClientSession() as sess:
                await http_get(sess, str(server.make_url("/slow")), {}, timeout=0.2)

        with pytest.raises(FetchError) as exc:
            asyncio.run(with_server(scenario))
        assert str(exc.value) == "Request timeout after 0.2s"
        assert is_transient_error(str(exc.value), config.DEFAULT_TRANSIENT_ERROR_SIGNATURES)

    def test_body_returned(self):
        async def scenario(server):
            async with aiohttp.ClientSession() as sess:
                return await http_get(sess, str(server.make_url("/guarded")), {"User-Agent": "UA-2"}, timeout=2)

        assert asyncio.run(with_server(scenario)) == RSS


# ── FeedParser over HTTP ──────────────────────────────────────

class TestFeedParserOverHttp:
    def test_rate_limited_feed_still_validates(self):
        async def scenario(server):
            parser = FeedParser(
                primary=PrimaryParser(user_agent="Primary/1.0", timeout=2),
                fallback=FallbackParser(user_agents=["UA-1", "UA-3"], referer_hosts={}, timeout=2, retry_delay=0),
                transient_signatures=config.DEFAULT_TRANSIENT_ERROR_SIGNATURES,
            )
            try:
                return await parser.validate_feed_url(str(server.make_url("/limited")))
            finally:
                await parser.close()

        result = asyncio.run(with_server(scenario))
        assert result.valid is True
        assert "Primary: Status code 429" in result.warning
        assert "Fallback: All 2 User-Agent attempts failed; last error: Status code 429" in result.warning

    def test_rotation_order_seen_by_server(self):
        seen = []

        async def scenario(server):
            parser = make_parser()
            try:
                return await parser.parse(str(server.make_url("/guarded")))
            finally:
                await parser.close()

        parsed = asyncio.run(with_server(scenario, seen))
        assert seen == ["Primary/1.0", "UA-1", "UA-2"]
        assert parsed.strategy == "fallback"
        assert [i.title for i in parsed.items] == ["Hello"]
