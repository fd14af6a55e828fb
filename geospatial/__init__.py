"""Geographic market search for Meu Carrim."""

from .proximity import (
    Coordinate,
    NearbyMarket,
    NearbyMarketFinder,
    haversine_distance,
    markets_within_radius,
)

__all__ = [
    "Coordinate",
    "NearbyMarket",
    "NearbyMarketFinder",
    "haversine_distance",
    "markets_within_radius",
]
