"""Tests for vendor payload normalization and article validation."""

from datetime import datetime, timedelta, timezone

from marketbrief.contracts.schemas import NormalizedArticle
from marketbrief.ingestion.normalizer import (
    calculate_title_similarity,
    extract_entities_from_text,
    extract_symbols_from_text,
    generate_content_hash,
    is_duplicate_article,
    normalize_finnhub_article,
    normalize_newsapi_article,
    normalize_rss_item,
    normalize_tiingo_article,
    parse_timestamp,
    validate_article,
)

NOW = datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)


def _article(**overrides):
    values = dict(
        source_name="Reuters",
        title="Fed holds rates steady and signals patience",
        url="https://example.com/fed",
        published_at=NOW - timedelta(hours=2),
    )
    values.update(overrides)
    return NormalizedArticle(**values)


def test_content_hash_ignores_case_and_whitespace():
    h1 = generate_content_hash("Fed Holds Rates", "https://Example.com/a")
    h2 = generate_content_hash("  fed holds rates ", "https://example.com/a ")
    assert h1 == h2
    assert len(h1) == 32
    assert h1 != generate_content_hash("Fed holds rates", "https://example.com/b")


def test_extract_symbols_cashtags_then_known_tickers():
    assert extract_symbols_from_text("Shares of $NVDA and AAPL rose") == ["NVDA", "AAPL"]
    assert extract_symbols_from_text("$TSLA, $TSLA and TSLA") == ["TSLA"]
    assert extract_symbols_from_text("Nothing to see") == []


def test_extract_entities():
    assert extract_entities_from_text("Fed chair Powell spoke about Apple") == ["Apple", "Fed"]


def test_parse_timestamp_variants():
    expected = datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)
    assert parse_timestamp("2024-05-01T14:00:00Z") == expected
    assert parse_timestamp("2024-05-01T10:00:00-04:00") == expected
    assert parse_timestamp(int(expected.timestamp())) == expected
    assert parse_timestamp(datetime(2024, 5, 1, 14, 0)) == expected


def test_normalize_newsapi_article():
    article = normalize_newsapi_article({
        "source": {"id": None, "name": "CNBC"},
        "author": "Jane Doe",
        "title": "Fed holds rates steady, signals patience",
        "description": "The Federal Reserve left rates unchanged.",
        "url": "https://www.cnbc.com/fed",
        "urlToImage": None,
        "publishedAt": "2024-05-01T14:00:00Z",
        "content": None,
    })
    assert article.source_name == "CNBC"
    assert article.external_id == "https://www.cnbc.com/fed"
    assert article.summary == "The Federal Reserve left rates unchanged."
    assert article.author == "Jane Doe"
    assert article.published_at == datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)
    assert "Federal Reserve" in article.mentioned_entities


def test_normalize_finnhub_article_merges_related_symbols():
    article = normalize_finnhub_article({
        "id": 123,
        "headline": "Nvidia tops estimates as data center sales surge",
        "summary": "Revenue beat expectations.",
        "url": "https://finnhub.io/news/123",
        "datetime": 1714560000,
        "source": "Reuters",
        "related": "NVDA, AMD",
        "category": "company",
        "image": "",
    })
    assert article.external_id == "123"
    assert article.title == "Nvidia tops estimates as data center sales surge"
    assert article.published_at == datetime(2024, 5, 1, 10, 40, tzinfo=timezone.utc)
    assert article.mentioned_symbols == ["NVDA", "AMD"]
    assert article.mentioned_entities == ["NVIDIA"]
    assert article.image_url is None


def test_normalize_rss_item_feedparser_keys():
    article = normalize_rss_item({
        "id": "guid-1",
        "title": "Stocks rally as $AAPL leads tech higher",
        "link": "https://feeds.example.com/story",
        "published": "2024-05-01T14:00:00+00:00",
        "summary": "Apple gained 3%.",
        "author": "Desk",
        "tags": [{"term": "Markets"}, {"term": "Tech"}],
    }, "Example Feed")
    assert article.source_name == "Example Feed"
    assert article.external_id == "guid-1"
    assert article.tags == ["Markets", "Tech"]
    assert article.mentioned_symbols == ["AAPL"]
    assert article.author == "Desk"


def test_normalize_rss_item_rss_parser_keys():
    article = normalize_rss_item({
        "guid": "abc",
        "title": "Markets close mixed",
        "link": "https://feeds.example.com/mixed",
        "isoDate": "2024-05-01T21:00:00.000Z",
        "contentSnippet": "Indexes ended flat.",
        "creator": "Staff",
        "categories": ["Markets"],
    }, "Feed")
    assert article.published_at == datetime(2024, 5, 1, 21, 0, tzinfo=timezone.utc)
    assert article.summary == "Indexes ended flat."
    assert article.author == "Staff"
    assert article.tags == ["Markets"]


def test_normalize_tiingo_article():
    article = normalize_tiingo_article({
        "id": 99,
        "title": "Microsoft signs cloud deal",
        "description": "Multi-year agreement.",
        "url": "https://tiingo.com/99",
        "publishedDate": "2024-05-01T14:00:00Z",
        "source": "bloomberg.com",
        "tickers": ["msft"],
        "tags": ["Cloud"],
    })
    assert article.source_name == "bloomberg.com"
    assert article.external_id == "99"
    assert article.mentioned_symbols == ["MSFT"]
    assert article.tags == ["Cloud"]


def test_validate_rejects_bad_titles_and_urls():
    assert validate_article(_article(title="Too short"), now=NOW) is None
    assert validate_article(_article(title="x" * 501), now=NOW) is None
    assert validate_article(_article(url="ftp://example.com/file"), now=NOW) is None
    assert validate_article(_article(url="/relative/path"), now=NOW) is None


def test_validate_clamps_future_and_rejects_old():
    future = validate_article(_article(published_at=NOW + timedelta(hours=3)), now=NOW)
    assert future.published_at == NOW

    assert validate_article(_article(published_at=NOW - timedelta(days=8)), now=NOW) is None


def test_validate_trims_title_and_summary():
    article = validate_article(
        _article(title="   Fed holds rates steady and signals patience  ", summary=" " + "s" * 1200),
        now=NOW,
    )
    assert article.title == "Fed holds rates steady and signals patience"
    assert len(article.summary) == 1000


def test_title_similarity_and_duplicates():
    a = "Fed holds interest rates steady"
    b = "Fed holds interest rates steady again"
    # Words of two characters or fewer are ignored
    assert calculate_title_similarity(a, b) == 5 / 6
    assert calculate_title_similarity("a b", "a b") == 0.0

    assert is_duplicate_article(_article(title=b), [a])
    assert not is_duplicate_article(_article(title="Oil prices slide on supply glut"), [a])
