"""
Pytest configuration and fixtures for Meu Carrim tests.
"""

import os
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

import pytest
from hypothesis import settings, Verbosity

sys.path.insert(0, str(Path(__file__).parent.parent))

from database.models import Base, get_engine, get_session

# Configure Hypothesis for faster test runs
settings.register_profile("fast", max_examples=25, deadline=None, verbosity=Verbosity.quiet)
settings.register_profile("thorough", max_examples=300, deadline=None, verbosity=Verbosity.normal)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "fast"))

# Fixed "now" for clock-dependent tests
NOW = datetime(2026, 10, 17, 12, 0, 0)


# =============================================================================
# In-memory fakes
# =============================================================================


@dataclass
class FakeMarket:
    id: str
    name: str
    city: Optional[str] = None
    state: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass
class FakeObservation:
    id: str
    product_id: str
    market_id: str
    price: float
    purchase_date: datetime
    market: Any = None


class FakePriceStore:
    """Keeps observations in a list; applies the same filters as the real store."""

    def __init__(self, observations: Optional[List[FakeObservation]] = None):
        self.observations = list(observations or [])
        self.calls = 0

    def add(self, observation: FakeObservation):
        self.observations.append(observation)

    def list_observations(
        self,
        product_id=None,
        market_id=None,
        start_date=None,
        end_date=None,
        limit=None,
    ):
        self.calls += 1
        rows = [
            o for o in self.observations
            if (product_id is None or o.product_id == product_id)
            and (market_id is None or o.market_id == market_id)
            and (start_date is None or o.purchase_date >= start_date)
            and (end_date is None or o.purchase_date <= end_date)
        ]
        rows.sort(key=lambda o: o.purchase_date, reverse=True)
        return rows[:limit] if limit else rows


class FakeMarketStore:
    def __init__(self, markets: Optional[List[FakeMarket]] = None):
        self.markets = list(markets or [])

    def list_markets_with_coordinates(self):
        return [
            m for m in self.markets
            if m.latitude is not None and m.longitude is not None
        ]

    def search_markets(self, search=None, city=None, state=None):
        def matches(value, term):
            return term is None or (value is not None and term.lower() in value.lower())

        return [
            m for m in self.markets
            if (search is None or matches(m.name, search) or matches(m.city, search))
            and matches(m.city, city)
            and matches(m.state, state)
        ]


def make_observation(obs_id, product_id, market, price, purchase_date):
    """Observation linked to a FakeMarket the way the ORM links PriceHistory.market."""
    return FakeObservation(
        id=obs_id,
        product_id=product_id,
        market_id=market.id,
        price=price,
        purchase_date=purchase_date,
        market=market,
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    engine = get_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    session = get_session(engine)
    yield session
    session.close()
