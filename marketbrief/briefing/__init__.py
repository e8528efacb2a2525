"""Briefing assembly and generation."""

from .generator import BriefingGenerator, generate_empty_briefing, markdown_to_html
from .service import BriefingService, briefing_date_for

__all__ = [
    "BriefingGenerator",
    "BriefingService",
    "briefing_date_for",
    "generate_empty_briefing",
    "markdown_to_html",
]
