import logging
from typing import Optional

from ingest import config
from ingest.store import ArticleStore

log = logging.getLogger("feedkeeper.retention")


class RetentionCleaner:
    def __init__(self, store: ArticleStore,
                 retention_days: int = config.ARTICLE_RETENTION_DAYS,
                 max_per_feed: int = config.ARTICLES_PER_FEED_MAX):
        self.store = store
        self.retention_days = retention_days
        self.max_per_feed = max_per_feed

    def cleanup(self, days_to_keep: Optional[int] = None) -> int:
        days = days_to_keep or self.retention_days
        deleted = self.store.prune(days, self.max_per_feed)
        log.info("Nettoyage: %d anciens articles supprimes (conservation %d jours).", deleted, days)
        return deleted
