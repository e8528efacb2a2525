"""Database storage for users, tracked assets, news and generated briefings.

SQLAlchemy models plus a small repository class. Works against PostgreSQL in
production and SQLite locally or in tests. Datetimes are stored as naive UTC.
"""

import logging
import os
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, Float, ForeignKey, Index, Integer,
    String, Text, UniqueConstraint, create_engine
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool

from ..contracts.schemas import GeneratedBriefing, NormalizedArticle, RelevanceMatch
from ..relevance.asset_types import generate_asset_keywords, infer_asset_type

logger = logging.getLogger(__name__)

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(Base):
    """Briefing recipient.

    Attributes:
        email: Delivery address.
        timezone: IANA zone used to pick the user's briefing date.
        preferred_send_hour: UTC hour at which the daily email goes out.
        is_free_account: Free accounts get emails without a subscription.
        subscription_status: Last known billing status (``active``, ``trialing``...).
    """

    __tablename__ = 'users'

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(200))
    timezone = Column(String(64), default='UTC')
    email_enabled = Column(Boolean, default=True)
    email_frequency = Column(String(16), default='daily')
    preferred_send_hour = Column(Integer, default=7)
    is_free_account = Column(Boolean, default=False)
    subscription_status = Column(String(32))
    created_at = Column(DateTime, default=utcnow)

    holdings = relationship('UserAsset', back_populates='user', cascade='all, delete-orphan')


class Portfolio(Base):
    __tablename__ = 'portfolios'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'name', name='uix_portfolio_user_name'),
    )


class Asset(Base):
    """Shared asset table, one row per symbol, with cached market data."""

    __tablename__ = 'assets'

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(20), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    asset_type = Column(String(20), default='stock')
    keywords = Column(JSON, default=list)
    is_active = Column(Boolean, default=True)

    current_price = Column(Float)
    previous_close = Column(Float)
    price_change_24h = Column(Float)
    price_change_pct_24h = Column(Float)
    day_high = Column(Float)
    day_low = Column(Float)
    week_52_high = Column(Float)
    week_52_low = Column(Float)
    volume = Column(Float)
    market_cap = Column(Float)

    month_change = Column(Float)
    month_change_pct = Column(Float)
    year_change = Column(Float)
    year_change_pct = Column(Float)
    ev_ebitda = Column(Float)
    next_earnings_date = Column(String(20))

    prices_updated_at = Column(DateTime)
    history_updated_at = Column(DateTime)
    fundamentals_updated_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Asset(symbol='{self.symbol}', name='{self.name}', type='{self.asset_type}')>"


class UserAsset(Base):
    __tablename__ = 'user_assets'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    asset_id = Column(Integer, ForeignKey('assets.id'), nullable=False, index=True)
    portfolio_id = Column(Integer, ForeignKey('portfolios.id'), nullable=True)
    importance_level = Column(String(16), default='normal')
    portfolio_percentage = Column(Float, default=0.0)
    created_at = Column(DateTime, default=utcnow)

    user = relationship('User', back_populates='holdings')
    asset = relationship('Asset')
    portfolio = relationship('Portfolio')

    __table_args__ = (
        UniqueConstraint('user_id', 'asset_id', 'portfolio_id', name='uix_user_asset_portfolio'),
    )


class NewsItem(Base):
    __tablename__ = 'news_items'

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_name = Column(String(200), nullable=False)
    external_id = Column(String(500))
    title = Column(Text, nullable=False)
    summary = Column(Text)
    content = Column(Text)
    url = Column(Text, nullable=False)
    image_url = Column(Text)
    author = Column(String(200))
    published_at = Column(DateTime, nullable=False, index=True)
    ingested_at = Column(DateTime, default=utcnow)
    category = Column(String(100))
    tags = Column(JSON, default=list)
    mentioned_symbols = Column(JSON, default=list)
    mentioned_entities = Column(JSON, default=list)
    content_hash = Column(String(64), unique=True, nullable=False)
    is_processed = Column(Boolean, default=False, index=True)


class NewsAssetRelevance(Base):
    __tablename__ = 'news_asset_relevance'

    id = Column(Integer, primary_key=True, autoincrement=True)
    news_item_id = Column(Integer, ForeignKey('news_items.id'), nullable=False)
    asset_id = Column(Integer, ForeignKey('assets.id'), nullable=False)
    match_type = Column(String(20), nullable=False)
    relevance_score = Column(Float, default=0.5)
    matched_terms = Column(JSON, default=list)
    created_at = Column(DateTime, default=utcnow)

    news_item = relationship('NewsItem')

    __table_args__ = (
        UniqueConstraint('news_item_id', 'asset_id', name='uix_news_asset'),
        Index('ix_relevance_asset_score', 'asset_id', 'relevance_score'),
    )


class DailyBriefing(Base):
    __tablename__ = 'daily_briefings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    briefing_date = Column(Date, nullable=False)
    market_overview = Column(Text)
    asset_summaries = Column(JSON, default=list)
    notable_headlines = Column(JSON, default=list)
    full_briefing_html = Column(Text)
    full_briefing_text = Column(Text)
    total_news_items = Column(Integer, default=0)
    assets_covered = Column(Integer, default=0)
    llm_model = Column(String(100))
    llm_tokens_used = Column(Integer)
    generation_time_ms = Column(Integer)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'briefing_date', name='uix_briefing_user_date'),
    )


class EmailSendLog(Base):
    __tablename__ = 'email_send_log'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    briefing_date = Column(Date, nullable=False)
    email_type = Column(String(32), default='daily_briefing')
    subject = Column(String(300))
    status = Column(String(16), nullable=False)
    sent_at = Column(DateTime)
    message_id = Column(String(200))
    error_message = Column(Text)
    retry_count = Column(Integer, default=0)
    news_item_count = Column(Integer)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'briefing_date', 'email_type', name='uix_email_user_date_type'),
    )


class IngestionLog(Base):
    __tablename__ = 'ingestion_log'

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_name = Column(String(200), nullable=False)
    run_type = Column(String(16), default='manual')
    status = Column(String(16), nullable=False)
    items_fetched = Column(Integer, default=0)
    items_new = Column(Integer, default=0)
    items_duplicate = Column(Integer, default=0)
    items_failed = Column(Integer, default=0)
    started_at = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime)
    duration_ms = Column(Integer)
    error_message = Column(Text)


_ASSET_PRICE_FIELDS = (
    'current_price', 'previous_close', 'price_change_24h', 'price_change_pct_24h',
    'day_high', 'day_low', 'week_52_high', 'week_52_low', 'volume', 'market_cap',
    'month_change', 'month_change_pct', 'year_change', 'year_change_pct',
    'ev_ebitda', 'next_earnings_date',
    'prices_updated_at', 'history_updated_at', 'fundamentals_updated_at',
)


def _asset_to_dict(asset: Asset) -> Dict[str, Any]:
    payload = {
        'id': asset.id,
        'symbol': asset.symbol,
        'name': asset.name,
        'asset_type': asset.asset_type,
        'keywords': list(asset.keywords or []),
        'is_active': asset.is_active,
    }
    for name in _ASSET_PRICE_FIELDS:
        payload[name] = getattr(asset, name)
    return payload


def _user_to_dict(user: User) -> Dict[str, Any]:
    return {
        'id': user.id,
        'email': user.email,
        'full_name': user.full_name,
        'timezone': user.timezone,
        'email_enabled': user.email_enabled,
        'email_frequency': user.email_frequency,
        'preferred_send_hour': user.preferred_send_hour,
        'is_free_account': user.is_free_account,
        'subscription_status': user.subscription_status,
    }


def _news_to_dict(item: NewsItem) -> Dict[str, Any]:
    return {
        'id': item.id,
        'title': item.title,
        'summary': item.summary,
        'url': item.url,
        'source_name': item.source_name,
        'published_at': as_utc(item.published_at),
        'mentioned_symbols': list(item.mentioned_symbols or []),
        'mentioned_entities': list(item.mentioned_entities or []),
        'is_processed': item.is_processed,
    }


class BriefingDatabase:
    """Database interface for the briefing pipeline.

    Example:
        >>> db = BriefingDatabase("sqlite://")
        >>> user_id = db.add_user("jane@example.com", timezone="America/New_York")
        >>> db.track_asset(user_id, "AAPL", "Apple Inc.")
    """

    def __init__(self, db_url: Optional[str] = None) -> None:
        if db_url is None:
            db_url = os.getenv('DATABASE_URL', 'sqlite:///./marketbrief.db')

        if db_url.startswith("postgres://"):
            db_url = db_url.replace("postgres://", "postgresql://", 1)

        logger.info(f"Initializing database connection: {db_url.split('@')[-1]}")

        if db_url.startswith('postgresql'):
            self.engine = create_engine(
                db_url,
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
                echo=False
            )
        else:
            self.engine = create_engine(db_url, echo=False)

        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)
        logger.info("Database tables created/verified successfully")

    # ------------------------------------------------------------------
    # Users, portfolios and tracked assets
    # ------------------------------------------------------------------

    def add_user(
        self,
        email: str,
        full_name: Optional[str] = None,
        timezone: str = 'UTC',
        preferred_send_hour: int = 7,
        is_free_account: bool = False,
        subscription_status: Optional[str] = None,
    ) -> int:
        """Create a user, or return the id of the existing user with that email."""
        session = self.Session()
        try:
            existing = session.query(User).filter_by(email=email).first()
            if existing:
                return existing.id
            user = User(
                email=email,
                full_name=full_name,
                timezone=timezone,
                preferred_send_hour=preferred_send_hour,
                is_free_account=is_free_account,
                subscription_status=subscription_status,
            )
            session.add(user)
            session.commit()
            logger.info(f"Created user {email}")
            return user.id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to add user {email}: {e}")
            raise
        finally:
            session.close()

    def get_user(self, user_id: int) -> Optional[Dict[str, Any]]:
        session = self.Session()
        try:
            user = session.get(User, user_id)
            return _user_to_dict(user) if user else None
        finally:
            session.close()

    def list_users(self) -> List[Dict[str, Any]]:
        session = self.Session()
        try:
            return [_user_to_dict(u) for u in session.query(User).order_by(User.created_at.desc()).all()]
        finally:
            session.close()

    def add_portfolio(self, user_id: int, name: str) -> int:
        session = self.Session()
        try:
            portfolio = session.query(Portfolio).filter_by(user_id=user_id, name=name).first()
            if portfolio is None:
                portfolio = Portfolio(user_id=user_id, name=name)
                session.add(portfolio)
                session.commit()
            return portfolio.id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to add portfolio {name}: {e}")
            raise
        finally:
            session.close()

    def _get_or_create_asset(
        self, session: Session, symbol: str, name: str, asset_type: Optional[str] = None
    ) -> Asset:
        symbol = symbol.upper()
        asset = session.query(Asset).filter_by(symbol=symbol).first()
        if asset is None:
            asset_type = asset_type or infer_asset_type(symbol)
            asset = Asset(
                symbol=symbol,
                name=name or symbol,
                asset_type=asset_type,
                keywords=generate_asset_keywords(symbol, name or symbol, asset_type),
            )
            session.add(asset)
            session.flush()
            logger.info(f"Created new asset entry: {symbol} ({asset_type})")
        return asset

    def ensure_asset(self, symbol: str, name: str, asset_type: Optional[str] = None) -> int:
        """Create the asset if missing, without attaching it to any user."""
        session = self.Session()
        try:
            asset = self._get_or_create_asset(session, symbol, name, asset_type)
            session.commit()
            return asset.id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to create asset {symbol}: {e}")
            raise
        finally:
            session.close()

    def track_asset(
        self,
        user_id: int,
        symbol: str,
        name: str,
        asset_type: Optional[str] = None,
        portfolio_id: Optional[int] = None,
        importance_level: str = 'normal',
        portfolio_percentage: float = 0.0,
    ) -> int:
        """Add an asset to a user's watch list and return the asset id."""
        session = self.Session()
        try:
            asset = self._get_or_create_asset(session, symbol, name, asset_type)
            holding = session.query(UserAsset).filter_by(
                user_id=user_id, asset_id=asset.id, portfolio_id=portfolio_id
            ).first()
            if holding is None:
                holding = UserAsset(user_id=user_id, asset_id=asset.id, portfolio_id=portfolio_id)
                session.add(holding)
            holding.importance_level = importance_level
            holding.portfolio_percentage = portfolio_percentage
            session.commit()
            return asset.id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to track {symbol} for user {user_id}: {e}")
            raise
        finally:
            session.close()

    def get_active_assets(self, asset_ids: Optional[Iterable[int]] = None) -> List[Dict[str, Any]]:
        session = self.Session()
        try:
            query = session.query(Asset).filter(Asset.is_active.is_(True))
            if asset_ids:
                query = query.filter(Asset.id.in_(list(asset_ids)))
            return [_asset_to_dict(a) for a in query.all()]
        except SQLAlchemyError as e:
            logger.error(f"Error fetching assets: {e}")
            return []
        finally:
            session.close()

    def get_asset(self, asset_id: int) -> Optional[Dict[str, Any]]:
        session = self.Session()
        try:
            asset = session.get(Asset, asset_id)
            return _asset_to_dict(asset) if asset else None
        finally:
            session.close()

    def get_asset_by_symbol(self, symbol: str) -> Optional[Dict[str, Any]]:
        session = self.Session()
        try:
            asset = session.query(Asset).filter_by(symbol=symbol.upper()).first()
            return _asset_to_dict(asset) if asset else None
        finally:
            session.close()

    def get_tracked_assets(self, user_id: int, portfolio_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """Assets on a user's watch list, one entry per holding row."""
        session = self.Session()
        try:
            query = session.query(UserAsset, Asset).join(Asset, UserAsset.asset_id == Asset.id)
            query = query.filter(UserAsset.user_id == user_id)
            if portfolio_id is not None:
                query = query.filter(UserAsset.portfolio_id == portfolio_id)
            rows = []
            for holding, asset in query.all():
                payload = _asset_to_dict(asset)
                payload['importance_level'] = holding.importance_level or 'normal'
                payload['portfolio_id'] = holding.portfolio_id
                rows.append(payload)
            return rows
        except SQLAlchemyError as e:
            logger.error(f"Error fetching tracked assets for user {user_id}: {e}")
            return []
        finally:
            session.close()

    def get_allocations(self, user_id: int, asset_id: int) -> List[Dict[str, Any]]:
        """Portfolio allocations of one asset across all of a user's portfolios."""
        session = self.Session()
        try:
            rows = (
                session.query(UserAsset, Portfolio)
                .outerjoin(Portfolio, UserAsset.portfolio_id == Portfolio.id)
                .filter(UserAsset.user_id == user_id, UserAsset.asset_id == asset_id)
                .all()
            )
            return [
                {
                    'portfolio_id': portfolio.id if portfolio else None,
                    'portfolio_name': portfolio.name if portfolio else 'Watchlist',
                    'percentage': holding.portfolio_percentage or 0.0,
                }
                for holding, portfolio in rows
            ]
        finally:
            session.close()

    def update_asset_prices(self, asset_id: int, values: Dict[str, Any]) -> None:
        unknown = set(values) - set(_ASSET_PRICE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown asset fields: {sorted(unknown)}")
        session = self.Session()
        try:
            asset = session.get(Asset, asset_id)
            if asset is None:
                logger.warning(f"Asset {asset_id} not found; skipping update")
                return
            for key, value in values.items():
                setattr(asset, key, value)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to update asset {asset_id}: {e}")
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # News items and relevance
    # ------------------------------------------------------------------

    def get_existing_hashes(self, hashes: Iterable[str]) -> Set[str]:
        hashes = list(hashes)
        if not hashes:
            return set()
        session = self.Session()
        try:
            rows = session.query(NewsItem.content_hash).filter(NewsItem.content_hash.in_(hashes)).all()
            return {r.content_hash for r in rows}
        finally:
            session.close()

    def insert_news_item(self, article: NormalizedArticle, content_hash: str) -> Optional[int]:
        """Insert an article; returns ``None`` when the content hash already exists."""
        session = self.Session()
        try:
            item = NewsItem(
                source_name=article.source_name,
                external_id=article.external_id,
                title=article.title,
                summary=article.summary,
                content=article.content,
                url=article.url,
                image_url=article.image_url,
                author=article.author,
                published_at=to_naive_utc(article.published_at),
                category=article.category,
                tags=list(article.tags or []),
                mentioned_symbols=list(article.mentioned_symbols or []),
                mentioned_entities=list(article.mentioned_entities or []),
                content_hash=content_hash,
            )
            session.add(item)
            session.commit()
            return item.id
        except IntegrityError:
            session.rollback()
            return None
        finally:
            session.close()

    def get_recent_titles(self, hours: int = 48, limit: int = 1000, now: Optional[datetime] = None) -> List[str]:
        cutoff = to_naive_utc(now or datetime.now(timezone.utc)) - timedelta(hours=hours)
        session = self.Session()
        try:
            rows = (
                session.query(NewsItem.title)
                .filter(NewsItem.published_at >= cutoff)
                .order_by(NewsItem.published_at.desc())
                .limit(limit)
                .all()
            )
            return [r.title for r in rows]
        finally:
            session.close()

    def get_unprocessed_news_ids(self, hours: int = 48, limit: int = 500, now: Optional[datetime] = None) -> List[int]:
        cutoff = to_naive_utc(now or datetime.now(timezone.utc)) - timedelta(hours=hours)
        session = self.Session()
        try:
            rows = (
                session.query(NewsItem.id)
                .filter(NewsItem.is_processed.is_(False), NewsItem.published_at >= cutoff)
                .limit(limit)
                .all()
            )
            return [r.id for r in rows]
        except SQLAlchemyError as e:
            logger.error(f"Error fetching unprocessed news: {e}")
            raise
        finally:
            session.close()

    def get_news_items(self, ids: Iterable[int]) -> List[Dict[str, Any]]:
        ids = list(ids)
        if not ids:
            return []
        session = self.Session()
        try:
            return [_news_to_dict(n) for n in session.query(NewsItem).filter(NewsItem.id.in_(ids)).all()]
        finally:
            session.close()

    def upsert_relevance(self, news_item_id: int, matches: List[RelevanceMatch]) -> int:
        """Insert or refresh relevance rows for one article; returns rows written."""
        session = self.Session()
        try:
            for match in matches:
                row = session.query(NewsAssetRelevance).filter_by(
                    news_item_id=news_item_id, asset_id=match.asset_id
                ).first()
                if row is None:
                    row = NewsAssetRelevance(news_item_id=news_item_id, asset_id=match.asset_id)
                    session.add(row)
                row.match_type = match.match_type
                row.relevance_score = match.relevance_score
                row.matched_terms = list(match.matched_terms)
            session.commit()
            return len(matches)
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error inserting relevance for news item {news_item_id}: {e}")
            raise
        finally:
            session.close()

    def mark_processed(self, news_item_id: int) -> None:
        session = self.Session()
        try:
            item = session.get(NewsItem, news_item_id)
            if item is not None:
                item.is_processed = True
                session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to mark news item {news_item_id} processed: {e}")
            raise
        finally:
            session.close()

    def get_relevant_news(self, asset_id: int, since: datetime, limit: int = 50) -> List[Dict[str, Any]]:
        """Relevance rows for an asset joined with their articles, best first."""
        session = self.Session()
        try:
            rows = (
                session.query(NewsAssetRelevance, NewsItem)
                .join(NewsItem, NewsAssetRelevance.news_item_id == NewsItem.id)
                .filter(NewsAssetRelevance.asset_id == asset_id, NewsItem.published_at >= to_naive_utc(since))
                .order_by(NewsAssetRelevance.relevance_score.desc())
                .limit(limit)
                .all()
            )
            results = []
            for relevance, item in rows:
                payload = _news_to_dict(item)
                payload['relevance_score'] = relevance.relevance_score
                payload['match_type'] = relevance.match_type
                payload['matched_terms'] = list(relevance.matched_terms or [])
                results.append(payload)
            return results
        finally:
            session.close()

    def get_recent_news(self, hours: int = 48, limit: int = 200, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        cutoff = to_naive_utc(now or datetime.now(timezone.utc)) - timedelta(hours=hours)
        session = self.Session()
        try:
            rows = (
                session.query(NewsItem)
                .filter(NewsItem.published_at >= cutoff)
                .order_by(NewsItem.published_at.desc())
                .limit(limit)
                .all()
            )
            return [_news_to_dict(n) for n in rows]
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Briefings
    # ------------------------------------------------------------------

    def upsert_briefing(
        self,
        user_id: int,
        briefing_date: date,
        briefing: GeneratedBriefing,
        total_news_items: int,
        assets_covered: int,
    ) -> int:
        session = self.Session()
        try:
            row = session.query(DailyBriefing).filter_by(user_id=user_id, briefing_date=briefing_date).first()
            if row is None:
                row = DailyBriefing(user_id=user_id, briefing_date=briefing_date)
                session.add(row)
            row.market_overview = briefing.market_overview
            row.asset_summaries = [a.to_dict() for a in briefing.asset_summaries]
            row.notable_headlines = [h.to_dict() for h in briefing.notable_headlines]
            row.full_briefing_html = briefing.full_briefing_html
            row.full_briefing_text = briefing.full_briefing_text
            row.total_news_items = total_news_items
            row.assets_covered = assets_covered
            row.llm_model = briefing.llm_model
            row.llm_tokens_used = briefing.tokens_used
            row.generation_time_ms = briefing.generation_time_ms
            session.commit()
            return row.id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error saving briefing for user {user_id}: {e}")
            raise
        finally:
            session.close()

    def get_briefing(self, user_id: int, briefing_date: date) -> Optional[Dict[str, Any]]:
        session = self.Session()
        try:
            row = session.query(DailyBriefing).filter_by(user_id=user_id, briefing_date=briefing_date).first()
            if row is None:
                return None
            return {
                'id': row.id,
                'briefing_date': row.briefing_date,
                'market_overview': row.market_overview,
                'asset_summaries': row.asset_summaries or [],
                'notable_headlines': row.notable_headlines or [],
                'full_briefing_html': row.full_briefing_html,
                'full_briefing_text': row.full_briefing_text,
                'total_news_items': row.total_news_items or 0,
                'assets_covered': row.assets_covered or 0,
                'llm_model': row.llm_model,
            }
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Email send log
    # ------------------------------------------------------------------

    def get_send_log(self, user_id: int, briefing_date: date, email_type: str = 'daily_briefing') -> Optional[Dict[str, Any]]:
        session = self.Session()
        try:
            row = session.query(EmailSendLog).filter_by(
                user_id=user_id, briefing_date=briefing_date, email_type=email_type
            ).first()
            if row is None:
                return None
            return {
                'id': row.id,
                'status': row.status,
                'retry_count': row.retry_count or 0,
                'message_id': row.message_id,
                'sent_at': row.sent_at,
                'error_message': row.error_message,
            }
        finally:
            session.close()

    def upsert_send_log(
        self,
        user_id: int,
        briefing_date: date,
        status: str,
        subject: Optional[str] = None,
        news_item_count: Optional[int] = None,
        email_type: str = 'daily_briefing',
    ) -> int:
        session = self.Session()
        try:
            row = session.query(EmailSendLog).filter_by(
                user_id=user_id, briefing_date=briefing_date, email_type=email_type
            ).first()
            if row is None:
                row = EmailSendLog(user_id=user_id, briefing_date=briefing_date, email_type=email_type)
                session.add(row)
            row.status = status
            row.subject = subject
            row.news_item_count = news_item_count
            session.commit()
            return row.id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error creating email log for user {user_id}: {e}")
            raise
        finally:
            session.close()

    def update_send_log(self, log_id: int, **values: Any) -> None:
        session = self.Session()
        try:
            row = session.get(EmailSendLog, log_id)
            if row is None:
                return
            for key, value in values.items():
                setattr(row, key, value)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Error updating email log {log_id}: {e}")
            raise
        finally:
            session.close()

    def users_sent_on(self, briefing_date: date, email_type: str = 'daily_briefing') -> Set[int]:
        session = self.Session()
        try:
            rows = session.query(EmailSendLog.user_id).filter_by(
                briefing_date=briefing_date, email_type=email_type, status='sent'
            ).all()
            return {r.user_id for r in rows}
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Ingestion log
    # ------------------------------------------------------------------

    def start_ingestion_log(self, source_name: str, run_type: str = 'manual') -> Optional[int]:
        session = self.Session()
        try:
            row = IngestionLog(source_name=source_name, run_type=run_type, status='started')
            session.add(row)
            session.commit()
            return row.id
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to create ingestion log: {e}")
            return None
        finally:
            session.close()

    def finish_ingestion_log(
        self,
        log_id: Optional[int],
        status: str,
        duration_ms: int,
        totals: Optional[Dict[str, int]] = None,
        error_message: Optional[str] = None,
    ) -> None:
        if log_id is None:
            return
        session = self.Session()
        try:
            row = session.get(IngestionLog, log_id)
            if row is None:
                return
            row.status = status
            row.completed_at = utcnow()
            row.duration_ms = duration_ms
            row.error_message = error_message
            for key, value in (totals or {}).items():
                setattr(row, key, value)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Failed to update ingestion log {log_id}: {e}")
        finally:
            session.close()
