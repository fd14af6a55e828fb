"""
Property-based tests for price statistics and geographic market search.
"""

import math
import sys
from datetime import timedelta
from pathlib import Path

import pytest
from hypothesis import given, strategies as st, settings

sys.path.insert(0, str(Path(__file__).parent.parent))

from geospatial.proximity import NearbyMarketFinder, haversine_distance
from pricing.statistics import PriceStatisticsEngine
from conftest import NOW, FakeMarket, FakeMarketStore, FakePriceStore, make_observation


PRODUCT_ID = "leite"

prices = st.floats(min_value=0.01, max_value=1000, allow_nan=False, allow_infinity=False)
latitudes = st.floats(min_value=-90, max_value=90, allow_nan=False)
longitudes = st.floats(min_value=-180, max_value=180, allow_nan=False)


@st.composite
def observation_sets(draw):
    """Observations of one product spread over a few markets, some outside the window."""
    market_count = draw(st.integers(min_value=1, max_value=4))
    markets = [
        FakeMarket(id=f"m-{i}", name=draw(st.sampled_from(["Extra", "Carrefour", "Atacadão"])))
        for i in range(market_count)
    ]

    observations = []
    count = draw(st.integers(min_value=0, max_value=20))
    for i in range(count):
        observations.append(make_observation(
            f"obs-{i}",
            draw(st.sampled_from([PRODUCT_ID, "outro"])),
            draw(st.sampled_from(markets)),
            draw(prices),
            NOW - timedelta(minutes=draw(st.integers(min_value=-2 * 24 * 60, max_value=60 * 24 * 60))),
        ))
    return observations


@st.composite
def market_sets(draw):
    """Markets around the globe, some without a location."""
    count = draw(st.integers(min_value=0, max_value=12))
    markets = []
    for i in range(count):
        located = draw(st.booleans())
        markets.append(FakeMarket(
            id=f"m-{i}",
            name=f"Mercado {draw(st.integers(min_value=0, max_value=3))}",
            latitude=draw(latitudes) if located else None,
            longitude=draw(longitudes) if located else None,
        ))
    return markets


def in_window(observations, window_days=30):
    start = NOW - timedelta(days=window_days)
    return [
        o for o in observations
        if o.product_id == PRODUCT_ID and start <= o.purchase_date <= NOW
    ]


def engine_for(observations):
    return PriceStatisticsEngine(FakePriceStore(observations), clock=lambda: NOW)


@settings(deadline=None)
@given(observations=observation_sets())
def test_average_is_mean_of_window(observations):
    """The average is the arithmetic mean of the in-window prices, or None."""
    expected = in_window(observations)
    average = engine_for(observations).get_average_price(PRODUCT_ID)

    if not expected:
        assert average is None
    else:
        mean = sum(o.price for o in expected) / len(expected)
        assert average == pytest.approx(mean)


@settings(deadline=None)
@given(observations=observation_sets())
def test_lowest_price_is_a_minimal_observation(observations):
    """The lowest price is no higher than any in-window price and belongs to one of them."""
    expected = in_window(observations)
    lowest = engine_for(observations).get_lowest_price(PRODUCT_ID)

    if not expected:
        assert lowest is None
        return

    assert all(lowest.price <= o.price for o in expected)
    assert any(
        o.price == lowest.price
        and o.market_id == lowest.market_id
        and o.purchase_date == lowest.purchase_date
        for o in expected
    )


@settings(deadline=None)
@given(observations=observation_sets())
def test_comparison_partitions_window(observations):
    """Each in-window observation is counted once, under its own market, cheapest market first."""
    expected = in_window(observations)
    comparison = engine_for(observations).compare_across_markets(PRODUCT_ID)

    assert sum(c.sample_count for c in comparison) == len(expected)
    assert {c.market_id for c in comparison} == {o.market_id for o in expected}
    assert len(comparison) == len({c.market_id for c in comparison})

    for entry in comparison:
        own = [o.price for o in expected if o.market_id == entry.market_id]
        assert entry.lowest_price == min(own)
        assert entry.highest_price == max(own)
        assert entry.lowest_price <= entry.average_price + 0.005
        assert entry.average_price <= entry.highest_price + 0.005

    averages = [c.average_price for c in comparison]
    assert averages == sorted(averages)


@settings(deadline=None)
@given(observations=observation_sets(), window_days=st.integers(min_value=1, max_value=90))
def test_wider_window_never_loses_observations(observations, window_days):
    engine = engine_for(observations)
    narrow = engine.compare_across_markets(PRODUCT_ID, window_days=window_days)
    wide = engine.compare_across_markets(PRODUCT_ID, window_days=window_days + 1)

    assert sum(c.sample_count for c in narrow) <= sum(c.sample_count for c in wide)


@settings(deadline=None)
@given(
    markets=market_sets(),
    latitude=latitudes,
    longitude=longitudes,
    radius_km=st.floats(min_value=0.1, max_value=20000, allow_nan=False),
    limit=st.integers(min_value=1, max_value=20),
)
def test_nearby_markets_respect_radius_order_and_limit(markets, latitude, longitude, radius_km, limit):
    finder = NearbyMarketFinder(FakeMarketStore(markets))
    nearby = finder.find_nearby_markets(latitude, longitude, radius_km=radius_km, limit=limit)

    assert len(nearby) <= limit
    assert all(n.market.latitude is not None and n.market.longitude is not None for n in nearby)
    assert all(n.distance_km <= radius_km for n in nearby)

    distances = [n.distance_km for n in nearby]
    assert distances == sorted(distances)

    for entry in nearby:
        assert entry.distance_km == pytest.approx(haversine_distance(
            latitude, longitude, entry.market.latitude, entry.market.longitude,
        ))


@settings(deadline=None)
@given(markets=market_sets(), latitude=latitudes, longitude=longitudes)
def test_globe_radius_returns_every_located_market(markets, latitude, longitude):
    """With a radius covering the globe every located market comes back."""
    finder = NearbyMarketFinder(FakeMarketStore(markets))
    nearby = finder.find_nearby_markets(latitude, longitude, radius_km=25000, limit=100)

    located = [m for m in markets if m.latitude is not None]
    assert sorted(n.market.id for n in nearby) == sorted(m.id for m in located)


@settings(deadline=None)
@given(lat1=latitudes, lon1=longitudes, lat2=latitudes, lon2=longitudes)
def test_haversine_symmetric_and_bounded(lat1, lon1, lat2, lon2):
    forward = haversine_distance(lat1, lon1, lat2, lon2)
    backward = haversine_distance(lat2, lon2, lat1, lon1)

    assert forward == pytest.approx(backward, abs=1e-6)
    assert 0 <= forward <= math.pi * 6371.0 + 1e-6


@settings(deadline=None)
@given(latitude=latitudes, longitude=longitudes)
def test_haversine_zero_for_same_point(latitude, longitude):
    assert haversine_distance(latitude, longitude, latitude, longitude) == pytest.approx(0.0, abs=1e-9)
