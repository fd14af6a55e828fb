"""Price analytics for Meu Carrim."""

from .statistics import (
    LowestPrice,
    MarketPriceComparison,
    PriceStatisticsEngine,
    calculate_statistics,
)
from .service import PriceInsights

__all__ = [
    "LowestPrice",
    "MarketPriceComparison",
    "PriceStatisticsEngine",
    "calculate_statistics",
    "PriceInsights",
]
