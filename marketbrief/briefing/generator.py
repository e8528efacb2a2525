"""Daily briefing generation.

Builds a size-conscious prompt from a user's assets and matched news, asks the
LLM for a markdown briefing and parses it back into structured sections. If the
LLM is unavailable a plain briefing is assembled from the raw headlines.
"""

import logging
import re
import time
from dataclasses import replace
from datetime import datetime, timedelta
from typing import List, Optional

from ..ai.llm_client import LLMError
from ..contracts.schemas import (
    AssetSummary,
    AssetWithNews,
    BriefingInput,
    GeneratedBriefing,
    Headline,
    RelevantNewsItem,
)
from ..relevance.asset_types import get_asset_metrics

logger = logging.getLogger(__name__)

BRIEFING_SYSTEM_PROMPT = """You are a professional financial news analyst who creates clear, concise daily briefings for investors. Your role is to synthesize multiple news sources into a readable summary.

CRITICAL GUIDELINES:
1. NEVER provide investment advice, buy/sell recommendations, or price predictions
2. NEVER use phrases like "you should", "consider buying", "it might be a good time to"
3. Always maintain a neutral, informative tone
4. Focus on FACTS reported in the news, not speculation
5. If sentiment is mentioned, attribute it to the source ("according to analysts...")
6. Clearly distinguish between confirmed facts and market speculation
7. Keep summaries concise but informative

OUTPUT FORMAT:
- Write in a calm, professional tone suitable for morning reading
- Use clear section headers
- Prioritize the most important/impactful news first
- Include relevant context but avoid excessive detail
- Make it scannable with bullet points where appropriate"""

NEWS_PER_ASSET_IN_PROMPT = 5
PROMPT_SUMMARY_CHARS = 200
ASSET_SUMMARY_CHARS = 500
MAX_HEADLINES = 5
HEADLINE_MATCH_CHARS = 30
SNIPPET_CHARS = 150

_MARKET_OVERVIEW_RE = re.compile(r"##?\s*MARKET OVERVIEW\s*\n(.*?)(?=##?\s|\Z)", re.IGNORECASE | re.DOTALL)
_HEADLINES_RE = re.compile(r"##?\s*NOTABLE HEADLINES\s*\n(.*?)(?=##?\s|\Z)", re.IGNORECASE | re.DOTALL)


def _plural_days(days: int) -> str:
    return f"{days} day{'s' if days > 1 else ''}"


def _long_date(value: datetime, with_year: bool = True) -> str:
    text = f"{value:%A, %B} {value.day}"
    return f"{text}, {value.year}" if with_year else text


def _short_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    hour = value.hour % 12 or 12
    return f"{value:%b} {value.day}, {hour}:{value:%M} {'AM' if value.hour < 12 else 'PM'}"


def _signed_pct(value: float) -> str:
    return f"{'+' if value >= 0 else ''}{value:.2f}%"


def _price_line(asset: AssetWithNews) -> Optional[str]:
    """One-line price context; funds are quoted as NAV and carry no EV/EBITDA."""
    if asset.current_price is None:
        return None
    metrics = get_asset_metrics(asset.symbol, asset.asset_type)
    parts = [f"{metrics['price_label']}: ${asset.current_price:,.2f}"]
    if asset.price_change_pct_month is not None:
        parts.append(f"1M: {_signed_pct(asset.price_change_pct_month)}")
    if asset.price_change_pct_year is not None:
        parts.append(f"1Y: {_signed_pct(asset.price_change_pct_year)}")
    if metrics["show_ev_ebitda"] and asset.ev_ebitda is not None:
        parts.append(f"EV/EBITDA: {asset.ev_ebitda:.1f}")
    if metrics["show_earnings"] and asset.next_earnings_date:
        parts.append(f"Next earnings: {asset.next_earnings_date}")
    return ", ".join(parts)


def _all_news(briefing_input: BriefingInput) -> List[RelevantNewsItem]:
    return [n for a in briefing_input.assets for n in a.news_items]


def _top_news(briefing_input: BriefingInput, limit: int = MAX_HEADLINES) -> List[RelevantNewsItem]:
    return sorted(_all_news(briefing_input), key=lambda n: n.relevance_score, reverse=True)[:limit]


def _headline_from_news(news: RelevantNewsItem, reason: str) -> Headline:
    return Headline(
        title=news.title,
        url=news.url,
        source=news.source_name,
        reason=reason,
        published_at=_short_timestamp(news.published_at),
        snippet=news.summary[:SNIPPET_CHARS] if news.summary else None,
    )


def _summary_for(asset: AssetWithNews, text: str) -> AssetSummary:
    return AssetSummary(
        asset_id=asset.asset_id,
        symbol=asset.symbol,
        name=asset.name,
        summary=text,
        news_count=len(asset.news_items),
        current_price=asset.current_price,
        price_change=asset.price_change_24h,
        price_change_percent=asset.price_change_pct_24h,
        week_52_high=asset.week_52_high,
        week_52_low=asset.week_52_low,
        price_change_pct_month=asset.price_change_pct_month,
        price_change_pct_year=asset.price_change_pct_year,
        portfolio_percentage=asset.portfolio_percentage,
        ev_ebitda=asset.ev_ebitda,
        next_earnings_date=asset.next_earnings_date,
    )


def filter_news_window(
    briefing_input: BriefingInput, days: int, end: Optional[datetime] = None
) -> BriefingInput:
    """Keep only news published within ``days`` before ``end``.

    ``end`` defaults to the briefing date. The hourly job passes the current
    time so stories from later in the day still count.
    """
    end = end or briefing_input.briefing_date
    cutoff = end - timedelta(days=days)
    assets = [
        replace(asset, news_items=[
            n for n in asset.news_items
            if n.published_at is not None and cutoff <= n.published_at <= end
        ])
        for asset in briefing_input.assets
    ]
    return replace(briefing_input, assets=assets)


def build_briefing_prompt(briefing_input: BriefingInput, news_window_days: int = 1) -> str:
    window = _plural_days(news_window_days)
    lines = [
        f"Generate a market briefing for {_long_date(briefing_input.briefing_date)}, "
        f"covering the last {window} of news.",
        "",
    ]

    overview = briefing_input.market_overview
    if overview:
        lines.append("## MARKET CONTEXT")
        for label, value in (
            ("S&P 500", overview.sp500_change),
            ("NASDAQ", overview.nasdaq_change),
            ("Dow Jones", overview.dow_change),
        ):
            if value is not None:
                lines.append(f"- {label}: {'up' if value >= 0 else 'down'} {abs(value):.2f}%")
        lines.append("")

    lines.append("## USER'S TRACKED ASSETS AND RELEVANT NEWS")
    lines.append("")

    for asset in briefing_input.assets:
        header = f"### {asset.symbol} - {asset.name}"
        if asset.price_change_pct_24h is not None:
            header += f" ({_signed_pct(asset.price_change_pct_24h)} today)"
        lines.append(header)
        lines.append(f"Importance: {asset.importance_level}")
        price_line = _price_line(asset)
        if price_line:
            lines.append(price_line)

        if not asset.news_items:
            lines.append(f"No significant news in the last {window}.")
        else:
            lines.append(f"Recent headlines ({len(asset.news_items)} items):")
            for news in asset.news_items[:NEWS_PER_ASSET_IN_PROMPT]:
                lines.append(
                    f'- "{news.title}" ({news.source_name}, relevance: {news.relevance_score * 100:.0f}%)'
                )
                if news.summary:
                    lines.append(f"  Summary: {news.summary[:PROMPT_SUMMARY_CHARS]}...")
        lines.append("")

    lines.extend([
        "## OUTPUT INSTRUCTIONS",
        "",
        "Please generate a briefing with the following sections:",
        "",
        "1. **MARKET OVERVIEW** (2-3 sentences on overall market conditions)",
        "2. **YOUR PORTFOLIO HIGHLIGHTS** (Key news for tracked assets, prioritized by importance)",
        "3. **NOTABLE HEADLINES** (3-5 most important stories with brief context)",
        "",
        "Keep the total briefing under 500 words. Be factual and avoid speculation.",
        "Format the output in clean Markdown.",
    ])
    return "\n".join(lines)


def parse_briefing_response(response: str, briefing_input: BriefingInput) -> GeneratedBriefing:
    """Split an LLM markdown briefing into overview, per-asset summaries and headlines."""
    overview_match = _MARKET_OVERVIEW_RE.search(response)
    market_overview = (
        overview_match.group(1).strip() if overview_match else "Market data not available for this briefing."
    )

    summaries = []
    for asset in briefing_input.assets:
        pattern = re.compile(
            rf"\b{re.escape(asset.symbol)}\b[:\s]*(.*?)(?=\n\n|###|\Z)", re.IGNORECASE | re.DOTALL
        )
        match = pattern.search(response)
        text = match.group(1).strip()[:ASSET_SUMMARY_CHARS] if match else ""
        summaries.append(_summary_for(asset, text or f"{len(asset.news_items)} news items tracked."))

    all_news = _all_news(briefing_input)
    headlines_match = _HEADLINES_RE.search(response)
    section = headlines_match.group(1) if headlines_match else ""
    bullets = [line for line in section.split("\n") if line.strip().startswith(("-", "*"))]

    headlines = []
    for index, line in enumerate(bullets[:MAX_HEADLINES]):
        clean = re.sub(r"^\s*[-*]\s*", "", line).strip()
        clean_lower = clean.lower()
        matched = next(
            (n for n in all_news if n.title.lower()[:HEADLINE_MATCH_CHARS] in clean_lower),
            None,
        )
        if matched:
            headline = _headline_from_news(matched, f"Key story #{index + 1}")
        else:
            headline = Headline(
                title=clean[:100],
                url="#",
                source="Various sources",
                reason=f"Key story #{index + 1}",
            )
        headlines.append(headline)

    if not headlines:
        headlines = [_headline_from_news(n, "Top relevant story") for n in _top_news(briefing_input)]

    return GeneratedBriefing(
        market_overview=market_overview,
        asset_summaries=summaries,
        notable_headlines=headlines,
        full_briefing_text=response,
        full_briefing_html=markdown_to_html(response),
    )


def generate_basic_briefing(briefing_input: BriefingInput, news_window_days: int = 1) -> GeneratedBriefing:
    """Briefing assembled without the LLM, listing raw headlines."""
    window = _plural_days(news_window_days)

    overview_lines = ["Market data overview:"]
    overview = briefing_input.market_overview
    if overview:
        for label, value in (
            ("S&P 500", overview.sp500_change),
            ("NASDAQ", overview.nasdaq_change),
            ("Dow Jones", overview.dow_change),
        ):
            if value is not None:
                overview_lines.append(f"• {label}: {_signed_pct(value)}")
    market_overview = "\n".join(overview_lines) + "\n"

    summaries = [
        _summary_for(asset, f"{len(asset.news_items)} news items tracked in last {window}.")
        for asset in briefing_input.assets
    ]

    top_news = _top_news(briefing_input)
    headlines = [_headline_from_news(n, "Top relevant story") for n in top_news]

    portfolio_lines = "\n".join(
        f"**{a.symbol}** ({a.name}): {len(a.news_items)} news items in last {window}"
        for a in briefing_input.assets
    )
    headline_lines = "\n".join(f"• {n.title} ({n.source_name})" for n in top_news)

    full_text = (
        f"# Daily Briefing - {_long_date(briefing_input.briefing_date, with_year=False)}\n\n"
        f"## Market Overview\n{market_overview}\n"
        f"## Your Portfolio Highlights\n{portfolio_lines}\n\n"
        f"## Notable Headlines\n{headline_lines or 'No significant headlines in this period.'}\n\n"
        f"---\n*Note: AI summary unavailable. Showing raw headlines for last {window}.*"
    )

    return GeneratedBriefing(
        market_overview=market_overview,
        asset_summaries=summaries,
        notable_headlines=headlines,
        full_briefing_text=full_text,
        full_briefing_html=markdown_to_html(full_text),
    )


def generate_empty_briefing(briefing_input: BriefingInput) -> GeneratedBriefing:
    """Briefing for a day with no matched news."""
    count = len(briefing_input.assets)
    overview = "No significant market news to report for your tracked assets today."
    text = (
        f"# Daily Briefing - {_long_date(briefing_input.briefing_date, with_year=False)}\n\n"
        f"## Market Overview\n\n{overview}\n\n"
        f"## Your Portfolio\n\n"
        f"You are tracking {count} asset{'s' if count != 1 else ''}. "
        "No notable headlines were found in the last 24 hours.\n\n"
        "This could mean markets are quiet, or your tracked assets haven't been in the news recently. "
        "This is normal and not necessarily a cause for concern.\n\n"
        "---\n*This briefing was generated automatically. Past performance is not indicative of future results.*"
    )
    return GeneratedBriefing(
        market_overview=overview,
        asset_summaries=[
            AssetSummary(asset_id=a.asset_id, symbol=a.symbol, name=a.name,
                         summary="No news in the last 24 hours.", news_count=0)
            for a in briefing_input.assets
        ],
        notable_headlines=[],
        full_briefing_text=text,
        full_briefing_html=markdown_to_html(text),
        llm_model=None,
    )


def markdown_to_html(markdown: str) -> str:
    """Minimal markdown to HTML for email bodies."""
    html = markdown
    html = re.sub(r"^### (.*)$", r"<h3>\1</h3>", html, flags=re.MULTILINE)
    html = re.sub(r"^## (.*)$", r"<h2>\1</h2>", html, flags=re.MULTILINE)
    html = re.sub(r"^# (.*)$", r"<h1>\1</h1>", html, flags=re.MULTILINE)
    html = re.sub(r"\*\*\*(.*?)\*\*\*", r"<strong><em>\1</em></strong>", html)
    html = re.sub(r"\*\*(.*?)\*\*", r"<strong>\1</strong>", html)
    html = re.sub(r"\*(.*?)\*", r"<em>\1</em>", html)
    html = re.sub(r"^[ \t]*[-*][ \t]+(.*)$", r"<li>\1</li>", html, flags=re.MULTILINE)
    html = html.replace("\n\n", "</p><p>")
    html = html.replace("\n", "<br>")
    html = f"<p>{html}</p>"
    html = re.sub(r"(?:<li>.*?</li>(?:<br>)?)+", lambda m: f"<ul>{m.group(0)}</ul>", html)
    return html


class BriefingGenerator:
    """Turns a ``BriefingInput`` into a ``GeneratedBriefing`` via the LLM."""

    def __init__(self, llm_client):
        self.llm_client = llm_client

    def generate_daily_briefing(
        self,
        briefing_input: BriefingInput,
        news_window_days: int = 1,
        window_end: Optional[datetime] = None,
    ) -> GeneratedBriefing:
        start = time.time()
        windowed = filter_news_window(briefing_input, news_window_days, end=window_end)
        user_prompt = build_briefing_prompt(windowed, news_window_days)

        try:
            response = self.llm_client.complete(BRIEFING_SYSTEM_PROMPT, user_prompt)
            briefing = parse_briefing_response(response.text, windowed)
            briefing.llm_model = response.model
            briefing.tokens_used = response.tokens_used
        except LLMError as e:
            logger.error(f"Error generating briefing with LLM, using fallback: {e}")
            briefing = generate_basic_briefing(windowed, news_window_days)
            briefing.llm_model = "fallback"
            briefing.tokens_used = 0

        briefing.generation_time_ms = int((time.time() - start) * 1000)
        return briefing
