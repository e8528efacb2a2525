"""marketbrief: portfolio news relevance matching and daily briefing generation."""

__version__ = "0.3.0"
