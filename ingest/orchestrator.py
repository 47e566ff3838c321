import logging
import time
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ingest.dedupe import DuplicateDetector
from ingest.errors import FeedFetchError, FeedNotFoundError, FeedValidationError
from ingest.models import Feed, FetchResult, RunSummary, ValidationResult
from ingest.monitoring import RunMonitor
from ingest.rss import FeedParser
from ingest.store import ArticleStore
from ingest.utils import utc_now

log = logging.getLogger("feedkeeper.orchestrator")


class FeedFetchOrchestrator:
    """Drives parse -> dedupe -> persist for one feed, and runs over all active feeds.

    Owns the fetch/error-state transition of a feed: ``error_count`` is reset
    on success, incremented on failure, and a feed is never deactivated here.
    """

    def __init__(self, parser: FeedParser, detector: DuplicateDetector,
                 store: ArticleStore, monitor: Optional[RunMonitor] = None):
        self.parser = parser
        self.detector = detector
        self.store = store
        self.monitor = monitor

    async def fetch_one(self, feed: Feed) -> int:
        """Fetch one feed and return the number of new articles stored.

        Raises FeedFetchError if the feed could not be fetched or parsed. Database
        errors propagate unchanged: they abort the run instead of counting
        against the feed.
        """
        log.info("Recuperation: %s (%s)", feed.title, feed.url)
        try:
            parsed = await self.parser.parse(feed.url)

            if not parsed.items:
                log.info("Aucun article valide pour %s.", feed.title)
                return 0

            existing = self.store.existing_index(feed.id)
            fresh = self.detector.filter(parsed.items, existing)
            inserted = self.store.bulk_insert_deduped(fresh, feed.id)

            now = utc_now()
            self.store.mark_fetch_succeeded(feed.id, now)
            feed.error_count = 0
            feed.fetch_error = None
            feed.last_fetched = now

            log.info(
                "%s: %d nouveaux articles (%s)%s",
                feed.title, len(inserted), parsed.strategy,
                " [parser de secours]" if parsed.strategy != "primary" else "",
            )
            return len(inserted)
        except SQLAlchemyError:
            raise
        except Exception as e:
            message = str(e) or e.__class__.__name__
            now = utc_now()
            feed.error_count = self.store.mark_fetch_failed(feed.id, message, now)
            feed.fetch_error = message
            feed.last_fetched = now
            if self.monitor is not None:
                self.monitor.check_feed(feed)
            raise FeedFetchError(
                feed.id, f'Failed to fetch articles for feed "{feed.title}": {message}'
            ) from e

    async def fetch_feed_by_id(self, feed_id: int) -> int:
        feed = self.store.get_feed(feed_id)
        if feed is None:
            raise FeedNotFoundError(f"Feed not found: {feed_id}")
        return await self.fetch_one(feed)

    async def fetch_all(self) -> RunSummary:
        """Fetch every active feed sequentially.

        A failing feed is counted and logged, never fatal to the run. Database
        errors propagate and abort the run.
        """
        feeds = self.store.find_active_feeds()
        log.info("%d feeds actifs a traiter.", len(feeds))
        start = time.monotonic()

        results: List[FetchResult] = []
        for feed in feeds:
            try:
                count = await self.fetch_one(feed)
                results.append(FetchResult(feed_id=feed.id, inserted=count))
            except FeedFetchError as e:
                log.error("Echec feed %s (%s): %s", feed.id, feed.title, e)
                results.append(FetchResult(feed_id=feed.id, error=str(e)))

        summary = RunSummary(
            total_fetched=sum(r.inserted for r in results),
            total_errors=sum(1 for r in results if not r.ok),
            feeds_processed=len(feeds),
            results=results,
        )
        log.info(
            "Bilan: %d articles, %d feeds en erreur sur %d (%.1fs).",
            summary.total_fetched, summary.total_errors, summary.feeds_processed,
            time.monotonic() - start,
        )
        return summary

    async def register_feed(self, url: str, title: Optional[str] = None,
                            fetch_interval: int = 60) -> Tuple[Feed, ValidationResult, bool, Optional[int]]:
        """Validate, create and fetch a feed once.

        Returns ``(feed, validation, created, fetched)`` where ``fetched`` is the
        number of articles stored by the initial fetch, or None when that fetch
        failed (the feed is still created) or was not attempted. An already
        registered URL is returned as is, without validation nor fetch.
        """
        existing = self.store.get_feed_by_url(url)
        if existing is not None:
            return existing, ValidationResult(valid=True, warning="Feed already registered"), False, None

        validation = await self.parser.validate_feed_url(url)
        if not validation.valid:
            raise FeedValidationError(f"Invalid feed URL: {validation.error}")
        if validation.warning:
            log.warning("Feed %s: %s", url, validation.warning)

        meta = validation.meta
        feed = self.store.add_feed(
            url=url,
            title=title or (meta.title if meta and meta.title else url),
            description=meta.description if meta else None,
            link=meta.link if meta else None,
            language=meta.language if meta else None,
            fetch_interval=fetch_interval,
        )
        log.info("Feed enregistre: #%s %s", feed.id, feed.title)

        fetched: Optional[int] = None
        try:
            fetched = await self.fetch_one(feed)
        except FeedFetchError as e:
            log.warning("Premiere recuperation en echec pour #%s (feed conserve): %s", feed.id, e)
        return feed, validation, True, fetched
