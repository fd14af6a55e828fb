"""
Distance-based market search for Meu Carrim.
Finds the markets closest to a user's location.
"""

import math
import logging
from dataclasses import dataclass
from typing import List, Optional, Any, Protocol, Sequence

from database.errors import InvalidArgumentError

logger = logging.getLogger(__name__)

# Earth's radius in kilometers
EARTH_RADIUS_KM = 6371.0

DEFAULT_RADIUS_KM = 10.0
DEFAULT_LIMIT = 20


@dataclass(frozen=True)
class Coordinate:
    """Geographic coordinate in signed decimal degrees."""
    latitude: float
    longitude: float

    def validate(self) -> bool:
        """Validate coordinate values."""
        return (
            math.isfinite(self.latitude)
            and math.isfinite(self.longitude)
            and -90 <= self.latitude <= 90
            and -180 <= self.longitude <= 180
        )

    @classmethod
    def of(cls, market: Any) -> Optional["Coordinate"]:
        """The market's coordinate pair, or None if either value is missing."""
        latitude = getattr(market, "latitude", None)
        longitude = getattr(market, "longitude", None)
        if latitude is None or longitude is None:
            return None
        return cls(float(latitude), float(longitude))


@dataclass
class NearbyMarket:
    """A market annotated with its distance from the search origin."""

    market: Any
    distance_km: float

    def to_dict(self) -> dict:
        return {
            "id": self.market.id,
            "name": self.market.name,
            "address": getattr(self.market, "address", None),
            "city": getattr(self.market, "city", None),
            "state": getattr(self.market, "state", None),
            "latitude": self.market.latitude,
            "longitude": self.market.longitude,
            "distance_km": round(self.distance_km, 1),
        }


class MarketSource(Protocol):
    """What the finder needs from a market store."""

    def list_markets_with_coordinates(self) -> Sequence[Any]: ...

    def search_markets(
        self,
        search: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
    ) -> Sequence[Any]: ...


def haversine_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: Latitude and longitude of first point (in degrees)
        lat2, lon2: Latitude and longitude of second point (in degrees)

    Returns:
        Distance in kilometers
    """
    # Convert to radians
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    # Haversine formula
    a = (
        math.sin(delta_lat / 2) ** 2 +
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    # Rounding can push a just past 1 for near-antipodal points
    a = min(1.0, a)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def _require_number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgumentError(f"{name} must be a number")
    value = float(value)
    if not math.isfinite(value):
        raise InvalidArgumentError(f"{name} must be a finite number")
    return value


def validate_origin(latitude: Any, longitude: Any) -> Coordinate:
    """Build a search origin, raising InvalidArgumentError when out of range."""
    origin = Coordinate(
        _require_number("latitude", latitude),
        _require_number("longitude", longitude),
    )
    if not -90 <= origin.latitude <= 90:
        raise InvalidArgumentError("latitude must be between -90 and 90")
    if not -180 <= origin.longitude <= 180:
        raise InvalidArgumentError("longitude must be between -180 and 180")
    return origin


def validate_radius(radius_km: Any) -> float:
    radius = _require_number("radius_km", radius_km)
    if radius <= 0:
        raise InvalidArgumentError("radius_km must be greater than zero")
    return radius


def markets_within_radius(
    markets: Sequence[Any],
    origin: Coordinate,
    radius_km: float,
) -> List[NearbyMarket]:
    """
    Annotate markets with their distance to ``origin`` and keep the ones
    within ``radius_km``, closest first.

    Markets missing either coordinate are skipped. Ties on distance are
    ordered by name, then id.
    """
    nearby = []
    for market in markets:
        position = Coordinate.of(market)
        if position is None:
            continue

        distance = haversine_distance(
            origin.latitude, origin.longitude,
            position.latitude, position.longitude,
        )
        if distance <= radius_km:
            nearby.append(NearbyMarket(market=market, distance_km=distance))

    nearby.sort(key=lambda x: (x.distance_km, x.market.name or "", str(x.market.id)))
    return nearby


class NearbyMarketFinder:
    """
    Finds markets near a coordinate using great-circle distance.
    Reads markets from an injected store on every call.
    """

    def __init__(
        self,
        market_store: MarketSource,
        default_radius_km: float = DEFAULT_RADIUS_KM,
        default_limit: int = DEFAULT_LIMIT,
    ):
        self.market_store = market_store
        self.default_radius_km = default_radius_km
        self.default_limit = default_limit

    def find_nearby_markets(
        self,
        latitude: float,
        longitude: float,
        radius_km: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[NearbyMarket]:
        """
        Markets within ``radius_km`` of the origin, closest first.

        Args:
            latitude, longitude: Search origin in decimal degrees
            radius_km: Search radius (defaults to 10 km)
            limit: Maximum number of markets returned (defaults to 20)

        Returns:
            List of NearbyMarket sorted by ascending distance

        Raises:
            InvalidArgumentError: origin out of range, non-positive radius
                or limit
        """
        origin = validate_origin(latitude, longitude)
        radius = validate_radius(
            self.default_radius_km if radius_km is None else radius_km
        )
        limit = self.default_limit if limit is None else limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise InvalidArgumentError("limit must be a positive integer")

        markets = self.market_store.list_markets_with_coordinates()
        nearby = markets_within_radius(markets, origin, radius)

        logger.debug(
            f"{len(nearby)} of {len(markets)} markets within {radius} km "
            f"of ({origin.latitude}, {origin.longitude})"
        )
        return nearby[:limit]

    def search_markets(
        self,
        search: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        radius_km: Optional[float] = None,
    ) -> List[Any]:
        """
        Text search over markets, optionally restricted to a radius.

        Without an origin this is a plain text search. With one, only markets
        that have coordinates and lie within the radius are kept. Results are
        ordered by market name either way.
        """
        markets = self.market_store.search_markets(
            search=search, city=city, state=state
        )

        if latitude is None and longitude is None:
            return list(markets)
        if latitude is None or longitude is None:
            raise InvalidArgumentError(
                "latitude and longitude must be provided together"
            )

        origin = validate_origin(latitude, longitude)
        radius = validate_radius(
            self.default_radius_km if radius_km is None else radius_km
        )
        nearby = markets_within_radius(markets, origin, radius)
        return sorted(
            (entry.market for entry in nearby),
            key=lambda m: (m.name or "", str(m.id)),
        )
