from .price_service import PriceService, PriceSync, Quote

__all__ = ["PriceService", "PriceSync", "Quote"]
