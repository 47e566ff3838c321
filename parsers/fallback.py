import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp
from bs4 import BeautifulSoup, Tag

from ingest import config
from ingest.errors import FetchError, ParseError
from ingest.models import FeedMeta
from ingest.utils import parse_feed_date, referer_for
from parsers.base import ParseStrategy, RawItem, http_get

log = logging.getLogger("feedkeeper.parser.fallback")


def _qname(tag: Tag) -> str:
    return f"{tag.prefix}:{tag.name}" if tag.prefix else tag.name


def _child(node: Tag, *names: str) -> Optional[Tag]:
    """First direct child matching one of ``names`` (qualified, in priority order)."""
    children = [c for c in node.children if isinstance(c, Tag)]
    for name in names:
        for c in children:
            if _qname(c) == name:
                return c
    return None


def _text(node: Tag, *names: str) -> str:
    c = _child(node, *names)
    if c is None:
        return ""
    return c.get_text().strip()


def _atom_link(node: Tag) -> str:
    fallback = ""
    for c in node.find_all("link", recursive=False):
        href = c.get("href")
        if not href:
            if not fallback:
                fallback = c.get_text().strip()
            continue
        if c.get("rel", "alternate") == "alternate":
            return href.strip()
        if not fallback:
            fallback = href.strip()
    return fallback


def _rss_item(item: Tag) -> RawItem:
    return {
        "title": _text(item, "title"),
        "link": _text(item, "link") or _atom_link(item),
        "pub_date": parse_feed_date(_text(item, "pubDate", "dc:date", "published", "updated")),
        "content": _text(item, "content:encoded", "encoded"),
        "summary": _text(item, "summary", "itunes:summary"),
        "description": _text(item, "description"),
        "creator": _text(item, "dc:creator", "creator"),
        "author": _text(item, "author"),
        "guid": _text(item, "guid"),
        "categories": [c.get_text().strip() for c in item.find_all("category", recursive=False)],
    }


def _atom_entry(entry: Tag) -> RawItem:
    author = _child(entry, "author")
    return {
        "title": _text(entry, "title"),
        "link": _atom_link(entry),
        "pub_date": parse_feed_date(_text(entry, "published", "updated", "issued", "modified")),
        "content": _text(entry, "content"),
        "summary": _text(entry, "summary"),
        "author": _text(author, "name") if author is not None else "",
        "guid": _text(entry, "id"),
        "categories": [
            c.get("term") or c.get_text().strip()
            for c in entry.find_all("category", recursive=False)
        ],
    }


def parse_tolerant(body: bytes) -> Tuple[FeedMeta, List[RawItem]]:
    """Parse RSS 2.0 / RSS 1.0 / Atom with lxml's recovering XML builder."""
    soup = BeautifulSoup(body, "xml")

    channel = soup.find("channel")
    atom = soup.find("feed")
    if channel is not None:
        meta = FeedMeta(
            title=_text(channel, "title"),
            description=_text(channel, "description"),
            link=_text(channel, "link") or _atom_link(channel),
            language=_text(channel, "language", "dc:language"),
        )
        # RSS 1.0 (RDF): les items sont freres du channel
        items = soup.find_all("item")
        return meta, [_rss_item(i) for i in items]
    if atom is not None:
        meta = FeedMeta(
            title=_text(atom, "title"),
            description=_text(atom, "subtitle"),
            link=_atom_link(atom),
            language=atom.get("xml:lang") or atom.get("lang") or "",
        )
        return meta, [_atom_entry(e) for e in atom.find_all("entry")]
    raise ParseError("No RSS channel or Atom feed element found")


class FallbackParser(ParseStrategy):
    """Tolerant parser tried after the primary one, rotating User-Agents.

    Attempts are strictly ordered; a failed attempt (HTTP error, timeout or
    unusable body) is followed by ``retry_delay`` seconds of pause before the
    next User-Agent. The strategy fails once every User-Agent was tried.
    """

    name = "fallback"

    def __init__(self, user_agents: Optional[List[str]] = None,
                 referer_hosts: Optional[Dict[str, str]] = None,
                 timeout: float = config.FALLBACK_TIMEOUT,
                 retry_delay: float = config.FALLBACK_RETRY_DELAY,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.user_agents = list(user_agents if user_agents is not None else config.FALLBACK_USER_AGENTS)
        self.referer_hosts = dict(referer_hosts if referer_hosts is not None else config.REFERER_HOSTS)
        self.timeout = timeout
        self.retry_delay = retry_delay
        self._sleep = sleep

    def headers(self, url: str, user_agent: str) -> Dict[str, str]:
        headers = {
            "User-Agent": user_agent,
            "Accept": "application/rss+xml, application/xml, text/xml, application/atom+xml, */*",
            "Accept-Language": "en-US,en;q=0.9",
            "Accept-Encoding": "gzip, deflate",
            "Cache-Control": "no-cache",
            "DNT": "1",
        }
        referer = referer_for(url, self.referer_hosts)
        if referer:
            headers["Referer"] = referer
        return headers

    async def fetch(self, session: aiohttp.ClientSession, url: str, headers: Dict[str, str]) -> bytes:
        return await http_get(session, url, headers, self.timeout)

    async def parse(self, session: aiohttp.ClientSession, url: str) -> Tuple[FeedMeta, List[RawItem]]:
        if not self.user_agents:
            raise ParseError("No User-Agent configured for fallback parser")

        last_error = ""
        total = len(self.user_agents)
        for i, ua in enumerate(self.user_agents, start=1):
            try:
                body = await self.fetch(session, url, self.headers(url, ua))
                return parse_tolerant(body)
            except (FetchError, ParseError) as e:
                last_error = str(e)
                log.info("Fallback User-Agent %d/%d echoue pour %s: %s", i, total, url, last_error)
            if i < total:
                await self._sleep(self.retry_delay)

        raise ParseError(f"All {total} User-Agent attempts failed; last error: {last_error}")
