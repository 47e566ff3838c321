import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

import aiohttp

from ingest import config
from ingest.errors import ParseError
from ingest.models import CandidateItem, FeedMeta, ParsedFeed, ValidationResult
from ingest.utils import clean_categories, is_http_url, truncate_text, utc_now
from parsers.base import ParseStrategy, RawItem
from parsers.fallback import FallbackParser
from parsers.primary import PrimaryParser

log = logging.getLogger("feedkeeper.rss")

UNTITLED = "Untitled Article"
TITLE_MAX = 500

UNREACHABLE_TITLE = "Feed Title (Unable to fetch)"
UNREACHABLE_DESCRIPTION = "Description will be updated when feed becomes accessible"


def _first(raw: RawItem, *keys: str) -> str:
    for k in keys:
        v = raw.get(k)
        if v is None:
            continue
        v = str(v).strip()
        if v:
            return v
    return ""


def _pub_date(raw: RawItem, now: datetime) -> datetime:
    v = raw.get("pub_date")
    if isinstance(v, datetime):
        return v
    return now


def normalize_item(raw: RawItem, now: Optional[datetime] = None) -> CandidateItem:
    now = now or utc_now()
    guid = _first(raw, "guid", "link")
    link = _first(raw, "link")
    if not link and is_http_url(guid):
        link = guid
    return CandidateItem(
        title=truncate_text(_first(raw, "title") or UNTITLED, TITLE_MAX),
        link=link,
        pub_date=_pub_date(raw, now),
        raw_content=_first(raw, "content", "content_snippet", "summary", "description"),
        author=_first(raw, "creator", "author") or None,
        guid=guid or None,
        categories=clean_categories(raw.get("categories") or []),
    )


def normalize_items(raw_items: Iterable[RawItem], now: Optional[datetime] = None) -> Tuple[List[CandidateItem], int]:
    """Normalize raw items and drop those without link or content.

    Returns ``(valid, skipped_count)``.
    """
    now = now or utc_now()
    valid: List[CandidateItem] = []
    skipped = 0
    for raw in raw_items:
        item = normalize_item(raw, now)
        if not item.link.strip():
            log.debug("Article ignore (pas de lien): %s", item.title)
            skipped += 1
            continue
        if not item.raw_content.strip():
            log.debug("Article ignore (pas de contenu): %s", item.title)
            skipped += 1
            continue
        valid.append(item)
    return valid, skipped


def is_transient_error(message: str, signatures: Iterable[str]) -> bool:
    lowered = (message or "").lower()
    return any(sig.lower() in lowered for sig in signatures if sig)


class FeedParser:
    """Turns a feed URL into metadata + candidate items.

    The primary strategy is tried once; on any failure the fallback strategy
    runs. If both fail, ``ParseError`` carries both messages.
    """

    def __init__(self, primary: Optional[ParseStrategy] = None,
                 fallback: Optional[ParseStrategy] = None,
                 transient_signatures: Optional[List[str]] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.primary = primary or PrimaryParser()
        self.fallback = fallback or FallbackParser()
        self.transient_signatures = list(
            transient_signatures if transient_signatures is not None else config.TRANSIENT_ERROR_SIGNATURES
        )
        self._session = session

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def fetch_raw(self, url: str) -> Tuple[FeedMeta, List[RawItem], str]:
        sess = await self._ensure_session()
        try:
            meta, raw_items = await self.primary.parse(sess, url)
            log.info("Flux parse (primary): %s (%d items)", url, len(raw_items))
            return meta, raw_items, self.primary.name
        except Exception as primary_error:
            log.warning("Parser primaire en echec pour %s: %s. Essai du parser de secours.", url, primary_error)
            try:
                meta, raw_items = await self.fallback.parse(sess, url)
            except Exception as fallback_error:
                log.warning("Parser de secours en echec pour %s: %s", url, fallback_error)
                raise ParseError(
                    f"Both parsers failed. Primary: {primary_error}, Fallback: {fallback_error}",
                    primary_error=str(primary_error),
                    fallback_error=str(fallback_error),
                ) from fallback_error
            log.info("Flux parse (fallback): %s (%d items)", url, len(raw_items))
            return meta, raw_items, self.fallback.name

    async def parse(self, url: str) -> ParsedFeed:
        meta, raw_items, strategy = await self.fetch_raw(url)
        items, skipped = normalize_items(raw_items)
        if skipped:
            log.info("%s: %d/%d articles retenus (%d ignores)", url, len(items), len(raw_items), skipped)
        return ParsedFeed(meta=meta, items=items, strategy=strategy, skipped=skipped)

    async def validate_feed_url(self, url: str) -> ValidationResult:
        """Check that ``url`` serves a feed.

        Failures matching the transient-error allow-list still validate, with a
        warning and placeholder metadata, so a feed is not rejected for what is
        likely an anti-bot or temporary condition.
        """
        try:
            meta, _, strategy = await self.fetch_raw(url)
        except ParseError as e:
            primary_msg = e.primary_error or ""
            fallback_msg = e.fallback_error or ""
            if (is_transient_error(primary_msg, self.transient_signatures)
                    or is_transient_error(fallback_msg, self.transient_signatures)):
                log.warning("Validation de %s: echec probablement temporaire, flux accepte.", url)
                return ValidationResult(
                    valid=True,
                    warning=(
                        "Feed may not be accessible right now (both parsers failed), "
                        f"but will be created anyway. Primary: {primary_msg}, Fallback: {fallback_msg}"
                    ),
                    meta=FeedMeta(
                        title=UNREACHABLE_TITLE,
                        description=UNREACHABLE_DESCRIPTION,
                        link=url,
                        language="en",
                    ),
                )
            return ValidationResult(valid=False, error=str(e))

        warning = None
        if strategy != self.primary.name:
            warning = "Feed parsed successfully using fallback parser"
        return ValidationResult(
            valid=True,
            warning=warning,
            meta=FeedMeta(
                title=meta.title,
                description=meta.description,
                link=meta.link or url,
                language=meta.language or "en",
            ),
        )
