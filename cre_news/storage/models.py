"""SQLAlchemy models for the news database."""

from sqlalchemy import (
    create_engine, Column, Integer, String, Text, Boolean, DateTime, ForeignKey,
    Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import declarative_base

from ..ingestion.utils import utcnow

Base = declarative_base()


class SourceModel(Base):
    """A scraped source. Articles reference it by source_id."""
    __tablename__ = "sources"

    source_id = Column(String(255), primary_key=True)
    source_name = Column(String(255), nullable=False)
    url = Column(String(2048))
    type = Column(String(20))  # rss, firecrawl, linkedin
    is_national = Column(Boolean, default=False, nullable=False)
    disabled = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index('idx_sources_type', 'type'),
    )


class ArticleModel(Base):
    """A stored article."""
    __tablename__ = "articles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    link = Column(String(2048), unique=True, nullable=False)
    title = Column(Text, nullable=False)
    source_id = Column(String(255), ForeignKey("sources.source_id"), nullable=False)
    date = Column(DateTime, nullable=False)
    image_url = Column(Text)
    description = Column(Text)

    # Processing state
    is_relevant = Column(Boolean, default=True, nullable=False)
    is_categorized = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index('idx_articles_date', 'date'),
        Index('idx_articles_state', 'is_relevant', 'is_categorized'),
    )


class CountyModel(Base):
    __tablename__ = "counties"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)


class ArticleCountyModel(Base):
    __tablename__ = "article_counties"

    article_id = Column(Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True)
    county_id = Column(Integer, ForeignKey("counties.id"), primary_key=True)


class ArticleCityModel(Base):
    __tablename__ = "article_cities"

    article_id = Column(Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True)
    city = Column(String(255), primary_key=True)


class ArticleTagModel(Base):
    __tablename__ = "article_tags"

    article_id = Column(Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True)
    tag = Column(String(100), primary_key=True)


class SubscriberModel(Base):
    """Newsletter subscriber with preferences."""
    __tablename__ = "subscribers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(320), unique=True, nullable=False)  # stored lowercase
    full_name = Column(String(255), default="")
    interests = Column(Text, default="")
    timezone = Column(String(64))
    preferred_send_times = Column(Text)  # JSON [{"dayOfWeek": 5, "hour": 9}]
    is_active = Column(Boolean, default=True, nullable=False)
    subscribed_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index('idx_subscribers_active', 'is_active'),
    )


class SubscriberCountyModel(Base):
    __tablename__ = "subscriber_counties"

    subscriber_id = Column(Integer, ForeignKey("subscribers.id", ondelete="CASCADE"), primary_key=True)
    county = Column(String(100), primary_key=True)


class SubscriberCityModel(Base):
    __tablename__ = "subscriber_cities"

    subscriber_id = Column(Integer, ForeignKey("subscribers.id", ondelete="CASCADE"), primary_key=True)
    city = Column(String(255), primary_key=True)


class NewsletterModel(Base):
    """A newsletter prepared for one subscriber and one send slot."""
    __tablename__ = "newsletters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subscriber_email = Column(String(320), nullable=False)
    status = Column(String(20), nullable=False, default="scheduled")
    scheduled_send_at = Column(DateTime, nullable=False)
    sent_at = Column(DateTime)
    subject = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('subscriber_email', 'scheduled_send_at', name='uq_newsletters_slot'),
        CheckConstraint("status IN ('scheduled', 'sent', 'failed')", name='ck_newsletters_status'),
        Index('idx_newsletters_due', 'status', 'scheduled_send_at'),
    )


class NewsletterArticleModel(Base):
    """Article placed in a newsletter section."""
    __tablename__ = "newsletter_articles"

    newsletter_id = Column(Integer, ForeignKey("newsletters.id", ondelete="CASCADE"), primary_key=True)
    article_id = Column(Integer, ForeignKey("articles.id"), primary_key=True)
    section = Column(String(20), primary_key=True, default="local")  # national or local
    position = Column(Integer, default=0, nullable=False)
    rationale = Column(Text)


def init_db(database_url: str):
    """Initialize database and create all tables."""
    engine = create_engine(database_url, echo=False)
    Base.metadata.create_all(engine)
    return engine
