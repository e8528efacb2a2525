"""Call counters for the outside services a briefing run depends on.

Providers are keyed by name: ``llm:<model>``, ``yfinance`` and ``smtp``.
A run shares one ``ProviderMetrics`` between its clients and logs the
summary at the end, which is usually enough to tell a flaky vendor from a
bad prompt or a wrong password.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from time import perf_counter
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class CallStats:
    calls: int = 0
    failed: int = 0
    elapsed_ms: float = 0.0
    last_error: Optional[str] = None

    @property
    def succeeded(self) -> int:
        return self.calls - self.failed

    def to_dict(self) -> Dict[str, object]:
        return {
            "attempts": self.calls,
            "successes": self.succeeded,
            "failures": self.failed,
            "avg_latency_ms": round(self.elapsed_ms / self.calls, 2) if self.calls else 0.0,
            "success_rate": round(100.0 * self.succeeded / self.calls, 2) if self.calls else 0.0,
            "last_error": self.last_error,
        }


class ProviderMetrics:
    def __init__(self) -> None:
        self._stats: Dict[str, CallStats] = defaultdict(CallStats)

    def timed_call(self, provider: str, success: bool, started_at: float, error: Optional[str] = None) -> None:
        """Record one call that began at ``started_at`` (a ``perf_counter`` value)."""
        stats = self._stats[provider]
        stats.calls += 1
        stats.elapsed_ms += (perf_counter() - started_at) * 1000.0
        if not success:
            stats.failed += 1
            stats.last_error = error

    def summary(self) -> Dict[str, Dict[str, object]]:
        return {provider: stats.to_dict() for provider, stats in self._stats.items()}

    def log_summary(self, level: int = logging.INFO) -> None:
        for provider, stats in sorted(self._stats.items()):
            line = (
                f"{provider}: {stats.succeeded}/{stats.calls} ok, "
                f"avg {stats.to_dict()['avg_latency_ms']}ms"
            )
            if stats.last_error:
                line += f", last error: {stats.last_error}"
            logger.log(level, line)
