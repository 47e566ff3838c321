import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import aiohttp
import feedparser

from ingest import config
from ingest.errors import ParseError
from ingest.models import FeedMeta
from parsers.base import ParseStrategy, RawItem, http_get

log = logging.getLogger("feedkeeper.parser.primary")


def _entry_content(entry: Any) -> str:
    content = entry.get("content")
    if content and isinstance(content, list) and len(content) > 0:
        v = content[0].get("value")
        if v:
            return str(v)
    return ""


def _published_dt(entry: Any) -> Optional[datetime]:
    st = entry.get("published_parsed") or entry.get("updated_parsed")
    if st:
        try:
            return datetime(*st[:6], tzinfo=timezone.utc)
        except (TypeError, ValueError):
            return None
    return None


def _categories(entry: Any) -> List[str]:
    out = []
    for t in (entry.get("tags") or []):
        term = t.get("term")
        if term:
            out.append(str(term))
    return out


def entry_to_raw_item(entry: Any) -> RawItem:
    return {
        "title": entry.get("title"),
        "link": entry.get("link"),
        "pub_date": _published_dt(entry),
        "content": _entry_content(entry),
        "summary": entry.get("summary"),
        "description": entry.get("description"),
        "author": entry.get("author"),
        "guid": entry.get("id") or entry.get("guid"),
        "categories": _categories(entry),
    }


def feed_to_meta(parsed: Any) -> FeedMeta:
    f = parsed.get("feed", {}) or {}
    return FeedMeta(
        title=str(f.get("title") or ""),
        description=str(f.get("subtitle") or f.get("description") or ""),
        link=str(f.get("link") or ""),
        language=str(f.get("language") or ""),
    )


class PrimaryParser(ParseStrategy):
    """One GET with a fixed User-Agent, parsed by feedparser."""

    name = "primary"

    def __init__(self, user_agent: str = config.PRIMARY_USER_AGENT,
                 timeout: float = config.PRIMARY_TIMEOUT):
        self.user_agent = user_agent
        self.timeout = timeout

    def headers(self) -> dict:
        return {
            "User-Agent": self.user_agent,
            "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml, */*",
            "Accept-Encoding": "gzip, deflate",
        }

    async def fetch(self, session: aiohttp.ClientSession, url: str) -> bytes:
        return await http_get(session, url, self.headers(), self.timeout)

    async def parse(self, session: aiohttp.ClientSession, url: str) -> Tuple[FeedMeta, List[RawItem]]:
        body = await self.fetch(session, url)
        return self.parse_body(body)

    @staticmethod
    def parse_body(body: bytes) -> Tuple[FeedMeta, List[RawItem]]:
        parsed = feedparser.parse(body)
        entries = parsed.get("entries") or []
        # feedparser tolere beaucoup: un document sans version ni entree n'est pas un flux
        if not parsed.get("version") and not entries:
            exc = parsed.get("bozo_exception")
            raise ParseError(f"Feed not recognized as RSS/Atom: {exc or 'no feed version'}")
        if parsed.get("bozo") and not entries:
            raise ParseError(f"Malformed feed: {parsed.get('bozo_exception')}")
        return feed_to_meta(parsed), [entry_to_raw_item(e) for e in entries]
