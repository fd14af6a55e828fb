"""
Product price insights: the read side used by the product and market pages.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from database.errors import NotFoundError
from database.stores import MarketStore, PriceHistoryStore, ProductStore
from geospatial.proximity import NearbyMarket, NearbyMarketFinder
from .statistics import (
    DEFAULT_WINDOW_DAYS,
    LowestPrice,
    MarketPriceComparison,
    PriceStatisticsEngine,
)

logger = logging.getLogger(__name__)


class PriceInsights:
    """
    Wires the stores, the statistics engine and the market finder over one
    database session.
    """

    def __init__(
        self,
        session: Session,
        window_days: int = DEFAULT_WINDOW_DAYS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session = session
        self.prices = PriceHistoryStore(session)
        self.markets = MarketStore(session)
        self.products = ProductStore(session)
        self.statistics = PriceStatisticsEngine(
            self.prices, default_window_days=window_days, clock=clock
        )
        self.finder = NearbyMarketFinder(self.markets)

    def get_average_price(
        self,
        product_id: str,
        window_days: Optional[int] = None,
    ) -> Optional[float]:
        self._require_product(product_id)
        return self.statistics.get_average_price(product_id, window_days)

    def get_lowest_price(
        self,
        product_id: str,
        window_days: Optional[int] = None,
    ) -> Optional[LowestPrice]:
        self._require_product(product_id)
        return self.statistics.get_lowest_price(product_id, window_days)

    def compare_across_markets(
        self,
        product_id: str,
        window_days: Optional[int] = None,
    ) -> List[MarketPriceComparison]:
        self._require_product(product_id)
        return self.statistics.compare_across_markets(product_id, window_days)

    def find_nearby_markets(
        self,
        latitude: float,
        longitude: float,
        radius_km: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[NearbyMarket]:
        return self.finder.find_nearby_markets(latitude, longitude, radius_km, limit)

    def get_product_summary(
        self,
        product_id: str,
        window_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Everything the product page shows in one call: the product, its
        average and lowest price, the per-market comparison and the most
        recent prices.
        """
        product = self._require_product(product_id)

        lowest = self.statistics.get_lowest_price(product_id, window_days)
        average = self.statistics.get_average_price(product_id, window_days)
        comparison = self.statistics.compare_across_markets(product_id, window_days)
        recent = self.prices.get_product_history(product_id)

        return {
            "product": product.to_dict(),
            "average_price": round(average, 2) if average is not None else None,
            "lowest_price": lowest.to_dict() if lowest else None,
            "markets": [c.to_dict() for c in comparison],
            "recent_prices": [p.to_dict() for p in recent],
        }

    def _require_product(self, product_id: str):
        product = self.products.get_product(product_id)
        if product is None:
            logger.warning(f"Price insights requested for unknown product {product_id}")
            raise NotFoundError("Product", product_id)
        return product
