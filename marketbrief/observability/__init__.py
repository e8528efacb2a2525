from .provider_metrics import ProviderMetrics, CallStats

__all__ = ["ProviderMetrics", "CallStats"]
