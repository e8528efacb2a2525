from datetime import datetime, timedelta, timezone

import pytest

from marketbrief.config import Settings
from marketbrief.contracts.schemas import NormalizedArticle
from marketbrief.database.storage import BriefingDatabase


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    return BriefingDatabase("sqlite://")


@pytest.fixture
def settings():
    return Settings(llm_api_key=None, email_sender=None, email_password="")


@pytest.fixture
def now():
    return datetime.now(timezone.utc).replace(microsecond=0)


@pytest.fixture
def make_article(now):
    def _make(title="Apple unveils new iPhone lineup at annual event", url=None, hours_ago=1, **kwargs):
        return NormalizedArticle(
            source_name=kwargs.pop("source_name", "Reuters"),
            title=title,
            url=url or f"https://example.com/{abs(hash(title))}",
            published_at=now - timedelta(hours=hours_ago),
            **kwargs,
        )
    return _make
