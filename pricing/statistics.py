"""
Price history analytics for Meu Carrim.
Average and lowest price per product and per-market comparison over a
trailing window of days.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Dict, Optional, Any, Callable, Protocol, Sequence

from database.errors import InvalidArgumentError

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30


@dataclass
class LowestPrice:
    """The cheapest in-window observation of a product."""

    price: float
    market_id: str
    market_name: str
    city: Optional[str]
    purchase_date: datetime

    def to_dict(self) -> dict:
        return {
            "price": self.price,
            "market": {
                "id": self.market_id,
                "name": self.market_name,
                "city": self.city,
            },
            "date": self.purchase_date.isoformat(),
        }


@dataclass
class MarketPriceComparison:
    """Price summary of one product at one market."""

    market_id: str
    market_name: str
    city: Optional[str]
    average_price: float  # rounded to 2 decimals
    lowest_price: float
    highest_price: float
    sample_count: int

    def to_dict(self) -> dict:
        return {
            "market_id": self.market_id,
            "market_name": self.market_name,
            "city": self.city,
            "average_price": self.average_price,
            "lowest_price": self.lowest_price,
            "highest_price": self.highest_price,
            "price_count": self.sample_count,
        }


class ObservationSource(Protocol):
    """What the engine needs from a price-observation store."""

    def list_observations(
        self,
        product_id: Optional[str] = None,
        market_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> Sequence[Any]: ...


def calculate_statistics(prices: List[float]) -> Dict[str, float]:
    """Calculate mean, min, max and count for a list of prices."""
    if not prices:
        return {
            "mean": 0.0,
            "min": 0.0,
            "max": 0.0,
            "count": 0,
        }

    n = len(prices)
    return {
        "mean": sum(prices) / n,
        "min": min(prices),
        "max": max(prices),
        "count": n,
    }


def validate_window(window_days: Any) -> int:
    if isinstance(window_days, bool) or not isinstance(window_days, int):
        raise InvalidArgumentError("window_days must be an integer")
    if window_days <= 0:
        raise InvalidArgumentError("window_days must be greater than zero")
    return window_days


class PriceStatisticsEngine:
    """
    Computes price statistics for a product from its recorded purchases.

    Every call re-reads the observations from the injected store; nothing is
    cached between calls.
    """

    def __init__(
        self,
        price_store: ObservationSource,
        default_window_days: int = DEFAULT_WINDOW_DAYS,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the engine.

        Args:
            price_store: Store exposing ``list_observations``
            default_window_days: Window used when a call passes none
            clock: Source of "now", injectable for tests
        """
        self.price_store = price_store
        self.default_window_days = validate_window(default_window_days)
        self.clock = clock

    def get_average_price(
        self,
        product_id: str,
        window_days: Optional[int] = None,
    ) -> Optional[float]:
        """Mean price over the window, or None when there is no data."""
        observations = self._observations_in_window(product_id, window_days)
        if not observations:
            return None

        stats = calculate_statistics([float(o.price) for o in observations])
        return stats["mean"]

    def get_lowest_price(
        self,
        product_id: str,
        window_days: Optional[int] = None,
    ) -> Optional[LowestPrice]:
        """
        Cheapest observation over the window, or None when there is no data.

        Ties on price go to the earliest purchase date, then the lowest
        observation id.
        """
        observations = self._observations_in_window(product_id, window_days)
        if not observations:
            return None

        cheapest = min(
            observations,
            key=lambda o: (float(o.price), o.purchase_date, str(o.id)),
        )
        market = cheapest.market
        return LowestPrice(
            price=float(cheapest.price),
            market_id=cheapest.market_id,
            market_name=market.name if market else "Unknown market",
            city=market.city if market else None,
            purchase_date=cheapest.purchase_date,
        )

    def compare_across_markets(
        self,
        product_id: str,
        window_days: Optional[int] = None,
    ) -> List[MarketPriceComparison]:
        """
        Per-market price summary over the window, cheapest market first.

        Markets with the same average are ordered by name, then id, so the
        order is the same on every call.
        """
        observations = self._observations_in_window(product_id, window_days)

        # Group by market
        grouped: Dict[str, List[Any]] = {}
        for observation in observations:
            if observation.market_id not in grouped:
                grouped[observation.market_id] = []
            grouped[observation.market_id].append(observation)

        summaries = []
        for market_id, records in grouped.items():
            stats = calculate_statistics([float(r.price) for r in records])
            market = records[0].market
            summaries.append((
                stats["mean"],
                MarketPriceComparison(
                    market_id=market_id,
                    market_name=market.name if market else "Unknown market",
                    city=market.city if market else None,
                    average_price=round(stats["mean"], 2),
                    lowest_price=stats["min"],
                    highest_price=stats["max"],
                    sample_count=stats["count"],
                ),
            ))

        # Sort on the unrounded mean
        summaries.sort(key=lambda x: (x[0], x[1].market_name, str(x[1].market_id)))

        logger.debug(
            f"Compared {len(observations)} prices of product {product_id} "
            f"across {len(summaries)} markets"
        )
        return [summary for _, summary in summaries]

    def _observations_in_window(
        self,
        product_id: str,
        window_days: Optional[int],
    ) -> List[Any]:
        """Observations with now - window_days <= purchase_date <= now."""
        days = validate_window(
            self.default_window_days if window_days is None else window_days
        )
        now = self.clock()
        start_date = now - timedelta(days=days)

        observations = self.price_store.list_observations(
            product_id=product_id,
            start_date=start_date,
            end_date=now,
        )
        # Stores may be loose about bounds; the window is enforced here too
        return [
            o for o in observations
            if o.product_id == product_id and start_date <= o.purchase_date <= now
        ]
