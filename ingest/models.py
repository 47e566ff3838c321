from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List


@dataclass
class Feed:
    id: int
    url: str
    title: str
    description: Optional[str] = None
    link: Optional[str] = None
    language: Optional[str] = None
    is_active: bool = True
    last_fetched: Optional[datetime] = None  # UTC
    error_count: int = 0
    fetch_error: Optional[str] = None  # dernier message d'erreur
    fetch_interval: int = 60  # minutes


@dataclass(frozen=True)
class Article:
    id: int
    feed_id: int
    title: str
    link: str
    pub_date: datetime  # UTC
    raw_content: str
    author: Optional[str] = None
    guid: Optional[str] = None
    categories: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class FeedMeta:
    title: str = ""
    description: str = ""
    link: str = ""
    language: str = ""


@dataclass(frozen=True)
class CandidateItem:
    """A normalized item parsed from a feed, not yet deduplicated nor stored."""
    title: str
    link: str
    pub_date: datetime
    raw_content: str
    author: Optional[str] = None
    guid: Optional[str] = None
    categories: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """Only items with a link and some content may be stored."""
        return bool(self.link.strip()) and bool(self.raw_content.strip())


@dataclass(frozen=True)
class ParsedFeed:
    meta: FeedMeta
    items: List[CandidateItem]
    strategy: str = "primary"  # "primary" | "fallback"
    skipped: int = 0  # items rejetes (pas de lien ou pas de contenu)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    meta: Optional[FeedMeta] = None
    warning: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class FetchResult:
    feed_id: int
    inserted: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RunSummary:
    total_fetched: int
    total_errors: int
    feeds_processed: int
    results: List[FetchResult] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "totalFetched": self.total_fetched,
            "totalErrors": self.total_errors,
            "feedsProcessed": self.feeds_processed,
        }
