"""Relational tables backing the article store."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship

from ingest.utils import utc_now

Base = declarative_base()


class FeedRow(Base):
    __tablename__ = "feeds"

    id = Column(Integer, primary_key=True)
    url = Column(String(500), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    link = Column(String(500))
    language = Column(String(32))
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    last_fetched = Column(DateTime(timezone=True))
    error_count = Column(Integer, nullable=False, default=0)
    fetch_error = Column(Text)
    fetch_interval = Column(Integer, nullable=False, default=60)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    articles = relationship(
        "ArticleRow", back_populates="feed",
        cascade="all, delete-orphan", passive_deletes=True,
    )


class ArticleRow(Base):
    __tablename__ = "articles"
    __table_args__ = (
        UniqueConstraint("link", name="articles_link_unique"),
        # guid vide stocke NULL: la contrainte ne lie que les guid non vides
        UniqueConstraint("feed_id", "guid", name="articles_feed_guid_unique"),
        Index("articles_feed_pubdate_idx", "feed_id", "pub_date"),
        Index("articles_pubdate_idx", "pub_date"),
        Index("articles_feed_title_idx", "feed_id", "title"),
    )

    id = Column(Integer, primary_key=True)
    feed_id = Column(Integer, ForeignKey("feeds.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    link = Column(String(1000), nullable=False)
    pub_date = Column(DateTime(timezone=True), nullable=False)
    raw_content = Column(Text, nullable=False)
    author = Column(String(255))
    guid = Column(String(500))
    categories = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    feed = relationship("FeedRow", back_populates="articles")


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # ON DELETE CASCADE n'est applique par SQLite qu'avec ce pragma
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
