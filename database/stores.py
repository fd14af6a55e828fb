"""
Session-bound data access for price observations, markets and products.

The stores never open their own sessions: callers pass one in, so the
analytics engines can run against a real database or an in-memory fake.
"""

import logging
import math
from datetime import datetime
from typing import List, Optional, Dict, Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from .errors import InvalidArgumentError, NotFoundError
from .models import Category, Market, PriceHistory, Product

logger = logging.getLogger(__name__)


def _clean_text(value: Optional[str]) -> Optional[str]:
    """Trim a string, mapping blank values to None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def match_name(query, column, name: str) -> List[Any]:
    """
    Rows of ``query`` whose ``column`` equals ``name`` ignoring case.

    SQLite's lower() only folds ASCII, so the comparison happens in Python
    on rows pre-filtered by length; accented names like "Água" still match.
    """
    key = name.casefold()
    rows = query.filter(func.length(column) == len(name)).all()
    return [row for row in rows if getattr(row, column.key).casefold() == key]


def _check_price(price: Any) -> float:
    if isinstance(price, bool):
        raise InvalidArgumentError("price must be a number")
    try:
        value = float(price)
    except (TypeError, ValueError):
        raise InvalidArgumentError("price must be a number") from None
    if not math.isfinite(value) or value <= 0:
        raise InvalidArgumentError("price must be greater than zero")
    return value


def _check_location(
    latitude: Optional[float],
    longitude: Optional[float],
):
    """Both-or-neither coordinate pair within valid ranges."""
    if (latitude is None) != (longitude is None):
        raise InvalidArgumentError(
            "latitude and longitude must be provided together"
        )
    if latitude is None:
        return None, None

    try:
        lat, lon = float(latitude), float(longitude)
    except (TypeError, ValueError):
        raise InvalidArgumentError("coordinates must be numbers") from None

    if not math.isfinite(lat) or not -90 <= lat <= 90:
        raise InvalidArgumentError("latitude must be between -90 and 90")
    if not math.isfinite(lon) or not -180 <= lon <= 180:
        raise InvalidArgumentError("longitude must be between -180 and 180")
    return lat, lon


class PriceHistoryStore:
    """Price observation log: one row per recorded purchase."""

    def __init__(self, session: Session):
        self.session = session

    def add_observation(
        self,
        product_id: str,
        market_id: str,
        price: float,
        purchase_date: Optional[datetime] = None,
    ) -> PriceHistory:
        """
        Record a purchase price.

        Args:
            product_id: Product the price refers to
            market_id: Market where the product was bought
            price: Price paid, strictly positive
            purchase_date: When it was bought (defaults to now)

        Returns:
            The persisted PriceHistory row

        Raises:
            NotFoundError: product or market does not exist
            InvalidArgumentError: price is not a positive number
        """
        value = _check_price(price)

        if self.session.get(Product, product_id) is None:
            raise NotFoundError("Product", product_id)
        if self.session.get(Market, market_id) is None:
            raise NotFoundError("Market", market_id)

        observation = PriceHistory(
            product_id=product_id,
            market_id=market_id,
            price=value,
            purchase_date=purchase_date or datetime.now(),
        )
        self.session.add(observation)
        self.session.commit()

        logger.debug(
            f"Recorded price {value:.2f} for product {product_id} at market {market_id}"
        )
        return observation

    def list_observations(
        self,
        product_id: Optional[str] = None,
        market_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[PriceHistory]:
        """
        List observations matching the given filters, newest first.

        Both date bounds are inclusive.
        """
        query = (
            self.session.query(PriceHistory)
            .options(
                joinedload(PriceHistory.market),
                joinedload(PriceHistory.product),
            )
        )

        if product_id:
            query = query.filter(PriceHistory.product_id == product_id)
        if market_id:
            query = query.filter(PriceHistory.market_id == market_id)
        if start_date:
            query = query.filter(PriceHistory.purchase_date >= start_date)
        if end_date:
            query = query.filter(PriceHistory.purchase_date <= end_date)

        query = query.order_by(
            PriceHistory.purchase_date.desc(),
            PriceHistory.id,
        )
        if limit:
            query = query.limit(limit)

        return query.all()

    def get_observation(self, observation_id: str) -> Optional[PriceHistory]:
        return self.session.get(PriceHistory, observation_id)

    def update_observation(
        self,
        observation_id: str,
        price: Optional[float] = None,
        purchase_date: Optional[datetime] = None,
    ) -> PriceHistory:
        """Correct the price and/or date of an existing observation."""
        observation = self.get_observation(observation_id)
        if observation is None:
            raise NotFoundError("PriceHistory", observation_id)

        if price is not None:
            observation.price = _check_price(price)
        if purchase_date is not None:
            observation.purchase_date = purchase_date

        self.session.commit()
        return observation

    def delete_observation(self, observation_id: str) -> bool:
        observation = self.get_observation(observation_id)
        if observation is None:
            return False
        self.session.delete(observation)
        self.session.commit()
        return True

    def get_product_history(
        self,
        product_id: str,
        limit: int = 10,
    ) -> List[PriceHistory]:
        """Most recent observations for a product."""
        return self.list_observations(product_id=product_id, limit=limit)

    def get_market_history(
        self,
        market_id: str,
        limit: int = 10,
    ) -> List[PriceHistory]:
        """Most recent observations recorded at a market."""
        return self.list_observations(market_id=market_id, limit=limit)


class MarketStore:
    """Markets and their optional locations."""

    def __init__(self, session: Session):
        self.session = session

    def get_market(self, market_id: str) -> Optional[Market]:
        return self.session.get(Market, market_id)

    def create_market(
        self,
        name: str,
        address: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        zip_code: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> Market:
        """
        Create a market.

        Raises:
            InvalidArgumentError: missing name, partial or out-of-range
                coordinates, or a market with the same name in the same city
        """
        name = _clean_text(name)
        if not name:
            raise InvalidArgumentError("market name is required")
        city = _clean_text(city)
        lat, lon = _check_location(latitude, longitude)

        if self._find_by_name(name, city) is not None:
            raise InvalidArgumentError(
                f"a market named '{name}' already exists in this city"
            )

        market = Market(
            name=name,
            address=_clean_text(address),
            city=city,
            state=_clean_text(state),
            zip_code=_clean_text(zip_code),
        )
        market.set_location(lat, lon)

        self.session.add(market)
        self.session.commit()
        logger.info(f"Created market {market.name} ({market.id})")
        return market

    def update_market(self, market_id: str, **changes: Any) -> Market:
        """
        Update market fields. Coordinates must change together: pass both
        latitude and longitude, or neither.
        """
        market = self.get_market(market_id)
        if market is None:
            raise NotFoundError("Market", market_id)

        unknown = set(changes) - {
            "name", "address", "city", "state", "zip_code", "latitude", "longitude",
        }
        if unknown:
            raise InvalidArgumentError(
                f"unknown market fields: {', '.join(sorted(unknown))}"
            )

        # Everything is checked before the market is touched
        location = None
        if "latitude" in changes or "longitude" in changes:
            if "latitude" not in changes or "longitude" not in changes:
                raise InvalidArgumentError(
                    "latitude and longitude must be updated together"
                )
            location = _check_location(
                changes.pop("latitude"), changes.pop("longitude")
            )

        name = None
        if "name" in changes:
            name = _clean_text(changes.pop("name"))
            if not name:
                raise InvalidArgumentError("market name is required")

        if location is not None:
            market.set_location(*location)
        if name is not None:
            market.name = name
        for field, value in changes.items():
            setattr(market, field, _clean_text(value))

        if self._find_by_name(market.name, market.city, exclude_id=market.id) is not None:
            self.session.rollback()
            raise InvalidArgumentError(
                f"a market named '{market.name}' already exists in this city"
            )

        self.session.commit()
        return market

    def delete_market(self, market_id: str, force: bool = False) -> bool:
        """
        Delete a market. Markets with recorded prices are kept unless
        ``force`` is set, in which case their price history goes too.
        """
        market = self.get_market(market_id)
        if market is None:
            raise NotFoundError("Market", market_id)

        history_count = (
            self.session.query(func.count(PriceHistory.id))
            .filter(PriceHistory.market_id == market_id)
            .scalar()
        )
        if history_count and not force:
            raise InvalidArgumentError(
                "market has price history and cannot be deleted"
            )

        if history_count:
            self.session.query(PriceHistory).filter(
                PriceHistory.market_id == market_id
            ).delete(synchronize_session=False)
            self.session.expire(market, ["price_history"])

        self.session.delete(market)
        self.session.commit()
        logger.info(
            f"Deleted market {market_id} ({history_count} price records removed)"
        )
        return True

    def list_markets_with_coordinates(self) -> List[Market]:
        """Markets that have both latitude and longitude set."""
        return (
            self.session.query(Market)
            .filter(Market.latitude.isnot(None), Market.longitude.isnot(None))
            .order_by(Market.name, Market.id)
            .all()
        )

    def search_markets(
        self,
        search: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
    ) -> List[Market]:
        """
        Search markets by free text (name, address or city), city and state.
        Matching is case-insensitive substring matching. Ordered by name.
        """
        query = self.session.query(Market)

        search = _clean_text(search)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Market.name.ilike(pattern),
                Market.address.ilike(pattern),
                Market.city.ilike(pattern),
            ))

        city = _clean_text(city)
        if city:
            query = query.filter(Market.city.ilike(f"%{city}%"))

        state = _clean_text(state)
        if state:
            query = query.filter(Market.state.ilike(f"%{state}%"))

        return query.order_by(Market.name, Market.id).all()

    def get_markets_by_city(self, city: str) -> List[Market]:
        return self.search_markets(city=city)

    def get_cities(self) -> List[str]:
        rows = (
            self.session.query(Market.city)
            .filter(Market.city.isnot(None))
            .distinct()
            .all()
        )
        return sorted(row[0] for row in rows)

    def get_states(self) -> List[str]:
        rows = (
            self.session.query(Market.state)
            .filter(Market.state.isnot(None))
            .distinct()
            .all()
        )
        return sorted(row[0] for row in rows)

    def get_popular_markets(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Markets with the most recorded prices first."""
        price_count = func.count(PriceHistory.id).label("price_count")
        rows = (
            self.session.query(Market, price_count)
            .outerjoin(PriceHistory, PriceHistory.market_id == Market.id)
            .group_by(Market.id)
            .order_by(price_count.desc(), Market.name, Market.id)
            .limit(limit)
            .all()
        )
        return [
            {"market": market, "price_count": count}
            for market, count in rows
        ]

    def find_market_by_name(
        self,
        name: str,
        city: Optional[str] = None,
    ) -> Optional[Market]:
        """Case-insensitive exact name lookup, optionally within a city."""
        name = _clean_text(name)
        if not name:
            return None
        matches = match_name(
            self.session.query(Market).order_by(Market.name, Market.id),
            Market.name,
            name,
        )
        city = _clean_text(city)
        if city:
            matches = [
                m for m in matches
                if m.city is not None and m.city.casefold() == city.casefold()
            ]
        return matches[0] if matches else None

    def _find_by_name(
        self,
        name: str,
        city: Optional[str],
        exclude_id: Optional[str] = None,
    ) -> Optional[Market]:
        query = self.session.query(Market).filter(Market.name == name)
        if exclude_id:
            query = query.filter(Market.id != exclude_id)
        if city is None:
            query = query.filter(Market.city.is_(None))
        else:
            query = query.filter(Market.city == city)
        return query.first()


class ProductStore:
    """Read access to the product catalog."""

    def __init__(self, session: Session):
        self.session = session

    def get_product(self, product_id: str) -> Optional[Product]:
        return self.session.get(Product, product_id)

    def get_category(self, category_id: str) -> Optional[Category]:
        return self.session.get(Category, category_id)

    def find_product_by_name(self, name: str) -> Optional[Product]:
        name = _clean_text(name)
        if not name:
            return None
        matches = match_name(self.session.query(Product), Product.name, name)
        return matches[0] if matches else None
