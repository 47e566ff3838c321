import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, List, Optional

from sqlalchemy import create_engine, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ingest import config
from ingest.dedupe import ExistingIndex
from ingest.errors import DuplicateFeedError, FeedNotFoundError
from ingest.models import Article, CandidateItem, Feed
from ingest.schema import ArticleRow, Base, FeedRow
from ingest.utils import as_utc, utc_now

log = logging.getLogger("feedkeeper.store")


def _feed(row: FeedRow) -> Feed:
    return Feed(
        id=row.id,
        url=row.url,
        title=row.title,
        description=row.description,
        link=row.link,
        language=row.language,
        is_active=bool(row.is_active),
        last_fetched=as_utc(row.last_fetched),
        error_count=row.error_count or 0,
        fetch_error=row.fetch_error,
        fetch_interval=row.fetch_interval,
    )


def _article(row: ArticleRow) -> Article:
    return Article(
        id=row.id,
        feed_id=row.feed_id,
        title=row.title,
        link=row.link,
        pub_date=as_utc(row.pub_date),
        raw_content=row.raw_content,
        author=row.author,
        guid=row.guid,
        categories=list(row.categories or []),
        created_at=as_utc(row.created_at),
    )


class ArticleStore:
    """Persistence of feeds and articles.

    Uniqueness (article link, per-feed GUID, feed URL) is enforced by the
    database; a constraint violation on article insert is logged and skipped.
    Any other SQLAlchemy error propagates to the caller.
    """

    def __init__(self, database_url: str = config.DATABASE_URL, echo: bool = False):
        self.database_url = database_url
        self.engine = create_engine(database_url, echo=echo)
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)

    def init_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session with automatic commit/rollback."""
        sess = self._sessions()
        try:
            yield sess
            sess.commit()
        except Exception:
            sess.rollback()
            raise
        finally:
            sess.close()

    # =========================
    # Feeds
    # =========================

    def add_feed(self, url: str, title: str, description: Optional[str] = None,
                 link: Optional[str] = None, language: Optional[str] = None,
                 fetch_interval: int = 60, is_active: bool = True) -> Feed:
        row = FeedRow(
            url=url,
            title=title,
            description=description,
            link=link,
            language=language,
            fetch_interval=fetch_interval,
            is_active=is_active,
            error_count=0,
        )
        try:
            with self.session() as sess:
                sess.add(row)
                sess.flush()
                return _feed(row)
        except IntegrityError as e:
            raise DuplicateFeedError(f"Feed already registered: {url}") from e

    def get_feed(self, feed_id: int) -> Optional[Feed]:
        with self.session() as sess:
            row = sess.get(FeedRow, feed_id)
            return _feed(row) if row else None

    def get_feed_by_url(self, url: str) -> Optional[Feed]:
        with self.session() as sess:
            row = sess.execute(select(FeedRow).where(FeedRow.url == url)).scalar_one_or_none()
            return _feed(row) if row else None

    def list_feeds(self) -> List[Feed]:
        with self.session() as sess:
            rows = sess.execute(select(FeedRow).order_by(FeedRow.id)).scalars().all()
            return [_feed(r) for r in rows]

    def find_active_feeds(self) -> List[Feed]:
        with self.session() as sess:
            rows = sess.execute(
                select(FeedRow).where(FeedRow.is_active.is_(True)).order_by(FeedRow.id)
            ).scalars().all()
            return [_feed(r) for r in rows]

    def set_feed_active(self, feed_id: int, active: bool) -> Feed:
        with self.session() as sess:
            row = sess.get(FeedRow, feed_id)
            if row is None:
                raise FeedNotFoundError(f"Feed not found: {feed_id}")
            row.is_active = active
            sess.flush()
            return _feed(row)

    def mark_fetch_succeeded(self, feed_id: int, when: Optional[datetime] = None) -> None:
        when = as_utc(when) or utc_now()
        with self.session() as sess:
            sess.execute(
                update(FeedRow)
                .where(FeedRow.id == feed_id)
                .values(last_fetched=when, error_count=0, fetch_error=None)
            )

    def mark_fetch_failed(self, feed_id: int, message: str, when: Optional[datetime] = None) -> int:
        """Increment the feed's error count in SQL and return the new value."""
        when = as_utc(when) or utc_now()
        with self.session() as sess:
            sess.execute(
                update(FeedRow)
                .where(FeedRow.id == feed_id)
                .values(
                    last_fetched=when,
                    error_count=FeedRow.error_count + 1,
                    fetch_error=message,
                )
            )
            count = sess.execute(
                select(FeedRow.error_count).where(FeedRow.id == feed_id)
            ).scalar_one_or_none()
            return count or 0

    # =========================
    # Articles
    # =========================

    def existing_index(self, feed_id: int) -> ExistingIndex:
        with self.session() as sess:
            rows = sess.execute(
                select(ArticleRow.link, ArticleRow.guid, ArticleRow.title)
                .where(ArticleRow.feed_id == feed_id)
            ).all()
        log.debug("Feed %s: %d articles existants.", feed_id, len(rows))
        return ExistingIndex.from_rows(rows)

    def bulk_insert_deduped(self, candidates: List[CandidateItem], feed_id: int) -> List[Article]:
        """Insert each candidate in its own transaction.

        Uniqueness violations (a concurrent fetch of the same feed, or rows the
        in-memory filter could not see) are skipped, never raised.
        """
        inserted: List[Article] = []
        for item in candidates:
            if not item.is_valid:
                log.warning("Article invalide non insere (lien ou contenu vide): %s", item.title)
                continue
            row = ArticleRow(
                feed_id=feed_id,
                title=item.title,
                link=item.link,
                pub_date=as_utc(item.pub_date),
                raw_content=item.raw_content,
                author=item.author,
                guid=item.guid or None,
                categories=list(item.categories),
                created_at=utc_now(),
            )
            try:
                with self.session() as sess:
                    sess.add(row)
                    sess.flush()
                    article = _article(row)
            except IntegrityError:
                log.info("Doublon ignore (contrainte base): %s", item.title)
                continue
            inserted.append(article)
        log.info("Feed %s: %d nouveaux articles sur %d candidats.", feed_id, len(inserted), len(candidates))
        return inserted

    def count_articles(self, feed_id: Optional[int] = None) -> int:
        stmt = select(func.count(ArticleRow.id))
        if feed_id is not None:
            stmt = stmt.where(ArticleRow.feed_id == feed_id)
        with self.session() as sess:
            return sess.execute(stmt).scalar_one()

    def recent_articles(self, limit: int = 10, feed_id: Optional[int] = None) -> List[Article]:
        stmt = select(ArticleRow).order_by(ArticleRow.pub_date.desc(), ArticleRow.id.desc()).limit(limit)
        if feed_id is not None:
            stmt = stmt.where(ArticleRow.feed_id == feed_id)
        with self.session() as sess:
            return [_article(r) for r in sess.execute(stmt).scalars().all()]

    def prune(self, max_age_days: int, max_per_feed: int, now: Optional[datetime] = None) -> int:
        """Delete articles older than ``max_age_days`` and each feed's excess beyond ``max_per_feed``.

        Both id sets are unioned and deleted in a single pass.
        """
        now = as_utc(now) or utc_now()
        cutoff = now - timedelta(days=max_age_days)

        ranked = (
            select(
                ArticleRow.id.label("id"),
                func.row_number().over(
                    partition_by=ArticleRow.feed_id,
                    order_by=(ArticleRow.pub_date.desc(), ArticleRow.id.desc()),
                ).label("rn"),
            )
            .subquery()
        )

        with self.session() as sess:
            old_ids = set(sess.execute(
                select(ArticleRow.id).where(ArticleRow.pub_date < cutoff)
            ).scalars().all())
            excess_ids = set(sess.execute(
                select(ranked.c.id).where(ranked.c.rn > max_per_feed)
            ).scalars().all())

            ids = old_ids | excess_ids
            if not ids:
                return 0
            result = sess.execute(
                delete(ArticleRow).where(ArticleRow.id.in_(sorted(ids))).execution_options(synchronize_session=False)
            )
            log.info(
                "Nettoyage: %d articles supprimes (%d trop anciens, %d au-dela de %d par feed).",
                result.rowcount, len(old_ids), len(excess_ids), max_per_feed,
            )
            return result.rowcount
