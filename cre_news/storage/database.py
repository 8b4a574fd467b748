"""Database operations for articles, subscribers and newsletters."""

import json
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import sessionmaker
import structlog

from .models import (
    SourceModel, ArticleModel, CountyModel, ArticleCountyModel, ArticleCityModel,
    ArticleTagModel, SubscriberModel, SubscriberCountyModel, SubscriberCityModel,
    NewsletterModel, NewsletterArticleModel, init_db
)
from ..classification.taxonomy import COUNTY_NAMES, OTHER_COUNTY
from ..config.settings import settings
from ..ingestion.interfaces import SourceConfig, SourceType, RawArticle, Article
from ..ingestion.utils import utcnow
from ..newsletter.interfaces import (
    Subscriber, Newsletter, NewsletterStatus, NewsletterSelection
)
from ..newsletter.scheduling import normalize_send_times

logger = structlog.get_logger()


class NewsStorage:
    """SQLAlchemy storage for the news pipeline (SQLite or PostgreSQL)."""

    def __init__(self, database_url: str = None):
        if database_url is None:
            database_url = settings.database_url

        # Ensure data directory exists
        if database_url.startswith("sqlite:///"):
            db_path = database_url.replace("sqlite:///", "")
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.engine = init_db(database_url)
        self.Session = sessionmaker(bind=self.engine)
        self._seed_counties()

    def _insert(self, model):
        """Dialect INSERT supporting ON CONFLICT clauses."""
        if self.engine.dialect.name == "postgresql":
            return postgresql.insert(model)
        return sqlite.insert(model)

    def _seed_counties(self) -> None:
        session = self.Session()
        try:
            session.execute(
                self._insert(CountyModel)
                .values([{"name": name} for name in COUNTY_NAMES])
                .on_conflict_do_nothing(index_elements=["name"])
            )
            session.commit()
        finally:
            session.close()

    # Sources

    def upsert_sources(self, configs: Iterable[SourceConfig]) -> int:
        """Insert or refresh source definitions."""
        rows = [{
            "source_id": c.source_id,
            "source_name": c.source_name,
            "url": c.url,
            "type": c.source_type.value,
            "is_national": c.is_national,
            "disabled": c.disabled,
        } for c in configs]
        if not rows:
            return 0

        session = self.Session()
        try:
            stmt = self._insert(SourceModel).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=["source_id"],
                set_={
                    "source_name": stmt.excluded.source_name,
                    "url": stmt.excluded.url,
                    "type": stmt.excluded.type,
                    "is_national": stmt.excluded.is_national,
                    "disabled": stmt.excluded.disabled,
                },
            )
            session.execute(stmt)
            session.commit()
            logger.info("sources_upserted", count=len(rows))
            return len(rows)
        finally:
            session.close()

    def get_sources(self, source_type: SourceType = None) -> List[SourceConfig]:
        """Enabled sources, optionally of one type, sorted by name."""
        session = self.Session()
        try:
            query = session.query(SourceModel).filter(SourceModel.disabled == False)
            if source_type is not None:
                query = query.filter(SourceModel.type == source_type.value)
            models = query.order_by(SourceModel.source_name).all()
            return [
                SourceConfig(
                    source_id=m.source_id,
                    source_name=m.source_name,
                    url=m.url or "",
                    source_type=SourceType(m.type or "rss"),
                    is_national=m.is_national,
                    disabled=m.disabled,
                )
                for m in models
            ]
        finally:
            session.close()

    def _ensure_source(self, session, source_id: str, source_name: str = None,
                       is_national: bool = False) -> None:
        session.execute(
            self._insert(SourceModel)
            .values(source_id=source_id, source_name=source_name or source_id,
                    is_national=is_national, disabled=False)
            .on_conflict_do_nothing(index_elements=["source_id"])
        )

    # Articles

    def save_articles(
        self,
        articles: List[RawArticle],
        source_id: str = None,
        source_name: str = None,
        is_national: bool = False
    ) -> int:
        """Insert new articles, skipping existing links. Returns the count inserted.

        Sources referenced by the articles are created when missing.
        Categories are written only for new articles that arrive
        already categorized.
        """
        saved = 0
        session = self.Session()
        try:
            if source_id:
                self._ensure_source(session, source_id, source_name, is_national)
            for article in articles:
                if not article.link:
                    continue
                article_source = article.source_id or source_id
                if article_source != source_id:
                    self._ensure_source(session, article_source, is_national=is_national)

                article_id = session.execute(
                    self._insert(ArticleModel)
                    .values(
                        link=article.link,
                        title=article.title or "",
                        source_id=article_source,
                        date=article.date,
                        image_url=article.image_url or None,
                        description=article.description or None,
                        is_relevant=True,
                        is_categorized=article.is_categorized,
                        created_at=utcnow(),
                    )
                    .on_conflict_do_nothing(index_elements=["link"])
                    .returning(ArticleModel.id)
                ).scalar()

                if article_id is None:
                    logger.debug("article_duplicate", link=article.link[:80])
                    continue

                saved += 1
                if article.is_categorized:
                    self._write_categories(session, article_id, article.counties,
                                           article.cities, article.tags)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        logger.info("articles_saved", source=source_id, count=saved, total=len(articles))
        return saved

    def _county_ids(self, session, names: Iterable[str]) -> Dict[str, int]:
        rows = session.query(CountyModel.name, CountyModel.id).all()
        known = {name: county_id for name, county_id in rows}
        other_id = known[OTHER_COUNTY]
        return {name: known.get(name, other_id) for name in names}

    def get_county_ids(self, names: Iterable[str]) -> Dict[str, int]:
        """County ids by name; unknown names map to the 'Other' county."""
        session = self.Session()
        try:
            return self._county_ids(session, names)
        finally:
            session.close()

    def list_counties(self, include_other: bool = False) -> List[str]:
        session = self.Session()
        try:
            names = [n for (n,) in session.query(CountyModel.name).order_by(CountyModel.name).all()]
            return names if include_other else [n for n in names if n != OTHER_COUNTY]
        finally:
            session.close()

    def _write_categories(self, session, article_id: int, counties: List[str],
                          cities: List[str], tags: List[str]) -> None:
        county_ids = set(self._county_ids(session, counties or [OTHER_COUNTY]).values())
        session.execute(
            self._insert(ArticleCountyModel)
            .values([{"article_id": article_id, "county_id": cid} for cid in county_ids])
            .on_conflict_do_nothing()
        )
        city_names = {c for c in cities or [] if c}
        if city_names:
            session.execute(
                self._insert(ArticleCityModel)
                .values([{"article_id": article_id, "city": c} for c in city_names])
                .on_conflict_do_nothing()
            )
        tag_names = {t for t in tags or [] if t}
        if tag_names:
            session.execute(
                self._insert(ArticleTagModel)
                .values([{"article_id": article_id, "tag": t} for t in tag_names])
                .on_conflict_do_nothing()
            )

    def save_categorization(self, article_id: int, counties: List[str],
                            cities: List[str], tags: List[str]) -> None:
        """Store categories and mark the article categorized."""
        session = self.Session()
        try:
            self._write_categories(session, article_id, counties, cities, tags)
            session.query(ArticleModel).filter(ArticleModel.id == article_id)\
                .update({"is_categorized": True}, synchronize_session=False)
            session.commit()
            logger.debug("article_categorized", id=article_id)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def mark_irrelevant(self, article_ids: List[int]) -> int:
        """Flag articles as irrelevant. They count as categorized so they are not retried."""
        if not article_ids:
            return 0
        session = self.Session()
        try:
            count = session.query(ArticleModel)\
                .filter(ArticleModel.id.in_(article_ids))\
                .update({"is_relevant": False, "is_categorized": True}, synchronize_session=False)
            session.commit()
            return count
        finally:
            session.close()

    def get_uncategorized(self, limit: int = 50) -> List[Article]:
        """Relevant articles still waiting for categorization, newest first."""
        session = self.Session()
        try:
            models = session.query(ArticleModel)\
                .filter(ArticleModel.is_categorized == False)\
                .filter(ArticleModel.is_relevant == True)\
                .order_by(ArticleModel.date.desc())\
                .limit(limit)\
                .all()
            return self._to_articles(session, models)
        finally:
            session.close()

    def get_recent_articles(self, since: datetime, until: datetime = None) -> List[Article]:
        """Relevant, categorized articles dated in [since, until], newest first."""
        until = until or utcnow()
        session = self.Session()
        try:
            models = session.query(ArticleModel)\
                .filter(ArticleModel.date >= since)\
                .filter(ArticleModel.date <= until)\
                .filter(ArticleModel.is_relevant == True)\
                .filter(ArticleModel.is_categorized == True)\
                .order_by(ArticleModel.date.desc())\
                .all()
            return self._to_articles(session, models)
        finally:
            session.close()

    def list_articles(self, limit: int = 50, offset: int = 0) -> List[Article]:
        """Relevant categorized articles for browsing, newest first."""
        session = self.Session()
        try:
            models = session.query(ArticleModel)\
                .filter(ArticleModel.is_relevant == True)\
                .filter(ArticleModel.is_categorized == True)\
                .order_by(ArticleModel.date.desc())\
                .offset(offset)\
                .limit(limit)\
                .all()
            return self._to_articles(session, models)
        finally:
            session.close()

    def search_candidates(self, since: datetime = None, limit: int = 100) -> List[Article]:
        """Recent relevant articles to hand to the search ranker."""
        session = self.Session()
        try:
            query = session.query(ArticleModel)\
                .filter(ArticleModel.is_relevant == True)\
                .filter(ArticleModel.is_categorized == True)
            if since is not None:
                query = query.filter(ArticleModel.date >= since)
            models = query.order_by(ArticleModel.date.desc()).limit(limit).all()
            return self._to_articles(session, models)
        finally:
            session.close()

    def _to_articles(self, session, models: List[ArticleModel]) -> List[Article]:
        """Convert models to Articles with source and categories attached."""
        if not models:
            return []
        ids = [m.id for m in models]
        sources = {
            s.source_id: s for s in session.query(SourceModel)
            .filter(SourceModel.source_id.in_({m.source_id for m in models})).all()
        }

        counties = defaultdict(list)
        for article_id, name in session.query(ArticleCountyModel.article_id, CountyModel.name)\
                .join(CountyModel, CountyModel.id == ArticleCountyModel.county_id)\
                .filter(ArticleCountyModel.article_id.in_(ids))\
                .order_by(CountyModel.name).all():
            counties[article_id].append(name)

        cities = defaultdict(list)
        for article_id, city in session.query(ArticleCityModel.article_id, ArticleCityModel.city)\
                .filter(ArticleCityModel.article_id.in_(ids))\
                .order_by(ArticleCityModel.city).all():
            cities[article_id].append(city)

        tags = defaultdict(list)
        for article_id, tag in session.query(ArticleTagModel.article_id, ArticleTagModel.tag)\
                .filter(ArticleTagModel.article_id.in_(ids))\
                .order_by(ArticleTagModel.tag).all():
            tags[article_id].append(tag)

        articles = []
        for m in models:
            source = sources.get(m.source_id)
            articles.append(Article(
                id=m.id,
                title=m.title,
                link=m.link,
                source=source.source_name if source else m.source_id,
                date=m.date,
                description=m.description or "",
                image_url=m.image_url or "",
                is_national=bool(source and source.is_national),
                counties=counties[m.id],
                cities=cities[m.id],
                tags=tags[m.id],
            ))
        return articles

    # Subscribers

    def _to_subscriber(self, session, model: SubscriberModel) -> Subscriber:
        counties = [c for (c,) in session.query(SubscriberCountyModel.county)
                    .filter(SubscriberCountyModel.subscriber_id == model.id)
                    .order_by(SubscriberCountyModel.county).all()]
        cities = [c for (c,) in session.query(SubscriberCityModel.city)
                  .filter(SubscriberCityModel.subscriber_id == model.id)
                  .order_by(SubscriberCityModel.city).all()]
        # NULL normalizes to the default slot in the subscriber's own zone
        send_times = normalize_send_times(model.preferred_send_times)
        return Subscriber(
            id=model.id,
            email=model.email,
            full_name=model.full_name or "",
            selected_counties=counties,
            selected_cities=cities,
            interests=model.interests or "",
            timezone=model.timezone,
            preferred_send_times=send_times,
            is_active=model.is_active,
            subscribed_at=model.subscribed_at,
        )

    def get_active_subscribers(self) -> List[Subscriber]:
        session = self.Session()
        try:
            models = session.query(SubscriberModel)\
                .filter(SubscriberModel.is_active == True)\
                .order_by(SubscriberModel.id)\
                .all()
            return [self._to_subscriber(session, m) for m in models]
        finally:
            session.close()

    def get_subscriber_by_email(self, email: str) -> Optional[Subscriber]:
        """Case-insensitive lookup."""
        if not email:
            return None
        session = self.Session()
        try:
            model = session.query(SubscriberModel)\
                .filter(func.lower(SubscriberModel.email) == email.strip().lower())\
                .first()
            return self._to_subscriber(session, model) if model else None
        finally:
            session.close()

    def _replace_locations(self, session, subscriber_id: int,
                           counties: Optional[List[str]], cities: Optional[List[str]]) -> None:
        if counties is not None:
            session.query(SubscriberCountyModel)\
                .filter(SubscriberCountyModel.subscriber_id == subscriber_id)\
                .delete(synchronize_session=False)
            for county in dict.fromkeys(c for c in counties if c):
                session.add(SubscriberCountyModel(subscriber_id=subscriber_id, county=county))
        if cities is not None:
            session.query(SubscriberCityModel)\
                .filter(SubscriberCityModel.subscriber_id == subscriber_id)\
                .delete(synchronize_session=False)
            for city in dict.fromkeys(c for c in cities if c):
                session.add(SubscriberCityModel(subscriber_id=subscriber_id, city=city))

    @staticmethod
    def _send_times_json(subscriber: Subscriber) -> Optional[str]:
        if not subscriber.preferred_send_times:
            return None
        return json.dumps([t.to_dict() for t in subscriber.preferred_send_times])

    def upsert_subscriber(self, subscriber: Subscriber) -> Subscriber:
        """Create or replace a subscriber keyed by lowercase email. Reactivates on resubscribe."""
        email = subscriber.email.strip().lower()
        session = self.Session()
        try:
            model = session.query(SubscriberModel)\
                .filter(func.lower(SubscriberModel.email) == email).first()
            if model is None:
                model = SubscriberModel(email=email, subscribed_at=subscriber.subscribed_at or utcnow())
                session.add(model)
            model.full_name = subscriber.full_name
            model.interests = subscriber.interests
            model.timezone = subscriber.timezone
            model.preferred_send_times = self._send_times_json(subscriber)
            model.is_active = subscriber.is_active
            session.flush()
            self._replace_locations(session, model.id, subscriber.selected_counties,
                                    subscriber.selected_cities)
            session.commit()
            logger.info("subscriber_saved", email=email)
            return self._to_subscriber(session, model)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def update_preferences(
        self,
        email: str,
        interests: str = None,
        timezone: str = None,
        preferred_send_times: list = None,
        counties: List[str] = None,
        cities: List[str] = None,
        full_name: str = None,
        is_active: bool = None
    ) -> Optional[Subscriber]:
        """Update the given fields only. Returns None for an unknown email."""
        session = self.Session()
        try:
            model = session.query(SubscriberModel)\
                .filter(func.lower(SubscriberModel.email) == email.strip().lower()).first()
            if model is None:
                return None
            if interests is not None:
                model.interests = interests
            if timezone is not None:
                model.timezone = timezone
            if full_name is not None:
                model.full_name = full_name
            if is_active is not None:
                model.is_active = is_active
            if preferred_send_times is not None:
                model.preferred_send_times = json.dumps(
                    [t.to_dict() for t in normalize_send_times(preferred_send_times)]
                )
            self._replace_locations(session, model.id, counties, cities)
            session.commit()
            logger.info("subscriber_preferences_updated", email=model.email)
            return self._to_subscriber(session, model)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def unsubscribe(self, email: str) -> bool:
        """Deactivate a subscriber. False when the email is unknown."""
        session = self.Session()
        try:
            count = session.query(SubscriberModel)\
                .filter(func.lower(SubscriberModel.email) == email.strip().lower())\
                .update({"is_active": False}, synchronize_session=False)
            session.commit()
            if count:
                logger.info("subscriber_unsubscribed", email=email.lower())
            return count > 0
        finally:
            session.close()

    # Newsletters

    def create_newsletter(self, subscriber_email: str, scheduled_send_at: datetime,
                          subject: str = None) -> Optional[int]:
        """Create a scheduled newsletter. None when the slot already has one."""
        session = self.Session()
        try:
            newsletter_id = session.execute(
                self._insert(NewsletterModel)
                .values(
                    subscriber_email=subscriber_email.lower(),
                    status=NewsletterStatus.SCHEDULED.value,
                    scheduled_send_at=scheduled_send_at,
                    subject=subject,
                    created_at=utcnow(),
                )
                .on_conflict_do_nothing(index_elements=["subscriber_email", "scheduled_send_at"])
                .returning(NewsletterModel.id)
            ).scalar()
            session.commit()
            if newsletter_id is None:
                logger.info("newsletter_slot_exists", email=subscriber_email,
                            scheduled_send_at=scheduled_send_at.isoformat())
            return newsletter_id
        finally:
            session.close()

    def newsletter_exists(self, subscriber_email: str, scheduled_send_at: datetime) -> bool:
        session = self.Session()
        try:
            return session.query(NewsletterModel)\
                .filter(NewsletterModel.subscriber_email == subscriber_email.lower())\
                .filter(NewsletterModel.scheduled_send_at == scheduled_send_at)\
                .count() > 0
        finally:
            session.close()

    def attach_articles(self, newsletter_id: int, selection: NewsletterSelection) -> int:
        """Link selected articles to a newsletter by their links. Returns rows written."""
        links = selection.links
        if not links:
            return 0
        session = self.Session()
        try:
            ids = dict(session.query(ArticleModel.link, ArticleModel.id)
                       .filter(ArticleModel.link.in_(links)).all())
            rows = []
            for section, articles in (("national", selection.national), ("local", selection.local)):
                for position, article in enumerate(articles):
                    if article.link in ids:
                        rows.append({
                            "newsletter_id": newsletter_id,
                            "article_id": ids[article.link],
                            "section": section,
                            "position": position,
                            "rationale": article.rationale,
                        })
            if rows:
                session.execute(self._insert(NewsletterArticleModel).values(rows).on_conflict_do_nothing())
                session.commit()
            return len(rows)
        finally:
            session.close()

    def _to_newsletter(self, session, model: NewsletterModel) -> Newsletter:
        placements = session.query(NewsletterArticleModel)\
            .filter(NewsletterArticleModel.newsletter_id == model.id)\
            .order_by(NewsletterArticleModel.section, NewsletterArticleModel.position)\
            .all()
        article_models = session.query(ArticleModel)\
            .filter(ArticleModel.id.in_({p.article_id for p in placements})).all()
        by_id = {a.id: a for a in self._to_articles(session, article_models)}

        newsletter = Newsletter(
            id=model.id,
            subscriber_email=model.subscriber_email,
            status=NewsletterStatus(model.status),
            scheduled_send_at=model.scheduled_send_at,
            sent_at=model.sent_at,
            subject=model.subject,
        )
        for placement in placements:
            article = by_id.get(placement.article_id)
            if article is None:
                continue
            article = replace(article, rationale=placement.rationale)
            if placement.section == "national":
                newsletter.national.append(article)
            else:
                newsletter.local.append(article)
        return newsletter

    def get_newsletter(self, newsletter_id: int) -> Optional[Newsletter]:
        session = self.Session()
        try:
            model = session.get(NewsletterModel, newsletter_id)
            return self._to_newsletter(session, model) if model else None
        finally:
            session.close()

    def get_due_newsletters(self, now: datetime = None) -> List[Newsletter]:
        """Scheduled newsletters whose send time has passed, oldest first."""
        now = now or utcnow()
        session = self.Session()
        try:
            models = session.query(NewsletterModel)\
                .filter(NewsletterModel.status == NewsletterStatus.SCHEDULED.value)\
                .filter(NewsletterModel.scheduled_send_at <= now)\
                .order_by(NewsletterModel.scheduled_send_at.asc(), NewsletterModel.id.asc())\
                .all()
            return [self._to_newsletter(session, m) for m in models]
        finally:
            session.close()

    def transition_newsletter(self, newsletter_id: int, new_status: NewsletterStatus,
                              sent_at: datetime = None, subject: str = None) -> bool:
        """Move a scheduled newsletter to sent or failed.

        The update only applies while the row is still scheduled, so a
        newsletter is finalized at most once.
        """
        if not NewsletterStatus.SCHEDULED.can_transition_to(new_status):
            raise ValueError(f"Illegal newsletter transition to {new_status.value}")

        values = {"status": new_status.value}
        if sent_at is not None:
            values["sent_at"] = sent_at
        if subject is not None:
            values["subject"] = subject

        session = self.Session()
        try:
            count = session.query(NewsletterModel)\
                .filter(NewsletterModel.id == newsletter_id)\
                .filter(NewsletterModel.status == NewsletterStatus.SCHEDULED.value)\
                .update(values, synchronize_session=False)
            session.commit()
            if not count:
                logger.warning("newsletter_transition_skipped", id=newsletter_id,
                               status=new_status.value)
            return count == 1
        finally:
            session.close()

    def get_stats(self) -> dict:
        """Get database statistics."""
        session = self.Session()
        try:
            total = session.query(ArticleModel).count()
            categorized = session.query(ArticleModel)\
                .filter(ArticleModel.is_categorized == True).count()
            irrelevant = session.query(ArticleModel)\
                .filter(ArticleModel.is_relevant == False).count()
            status_counts = dict(
                session.query(NewsletterModel.status, func.count(NewsletterModel.id))
                .group_by(NewsletterModel.status).all()
            )
            return {
                "total_articles": total,
                "categorized_articles": categorized,
                "uncategorized_articles": total - categorized,
                "irrelevant_articles": irrelevant,
                "active_subscribers": session.query(SubscriberModel)
                    .filter(SubscriberModel.is_active == True).count(),
                "newsletters": {s.value: status_counts.get(s.value, 0) for s in NewsletterStatus},
            }
        finally:
            session.close()
