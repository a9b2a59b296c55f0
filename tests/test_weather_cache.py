"""Tests for the current-conditions and forecast caches."""

import pytest

from conftest import FakeClock
from skyview.weather import ForecastCacheStore, ForecastType, WeatherCacheStore

LAT, LON = 48.8566, 2.3522
MINUTE_MS = 60 * 1000


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def weather(tmp_path, clock):
    return WeatherCacheStore(tmp_path / "weather_cache.db", clock=clock)


@pytest.fixture
def forecasts(tmp_path, clock):
    return ForecastCacheStore(tmp_path / "weather_cache.db", clock=clock)


class TestCurrentConditions:

    def test_hit_within_tolerance(self, weather):
        weather.put(LAT, LON, {"temp": 18.5})
        entry = weather.get(LAT + 0.005, LON - 0.005)
        assert entry is not None
        assert entry.payload == {"temp": 18.5}

    def test_miss_outside_tolerance(self, weather):
        weather.put(LAT, LON, {"temp": 18.5})
        assert weather.get(LAT + 0.02, LON) is None
        assert weather.get(LAT, LON + 0.02) is None

    def test_newest_entry_wins(self, weather, clock):
        weather.put(LAT, LON, {"temp": 10})
        clock.advance(MINUTE_MS)
        weather.put(LAT, LON, {"temp": 12})
        assert weather.get(LAT, LON).payload == {"temp": 12}

    def test_stale_entry_ignored(self, weather, clock):
        weather.put(LAT, LON, {"temp": 10})
        clock.advance(31 * MINUTE_MS)
        assert weather.get(LAT, LON) is None
        assert weather.get(LAT, LON, max_age=3600) is not None

    def test_observation_timestamp_kept(self, weather):
        stored = weather.put(LAT, LON, {"temp": 1}, timestamp=123)
        assert stored.id is not None
        assert weather.get(LAT, LON).timestamp == 123

    def test_delete_expired(self, weather, clock):
        weather.put(LAT, LON, {"temp": 10})
        clock.advance(40 * MINUTE_MS)
        weather.put(LAT, LON, {"temp": 11})
        assert weather.delete_expired() == 1
        assert weather.delete_expired() == 0
        assert weather.get(LAT, LON).payload == {"temp": 11}

    def test_clear(self, weather):
        weather.put(LAT, LON, {})
        weather.put(0.0, 0.0, {})
        assert weather.clear() == 2
        assert weather.get(LAT, LON) is None


class TestForecasts:

    def test_ordered_by_slot(self, forecasts):
        forecasts.put_forecasts(
            LAT, LON, ForecastType.HOURLY, [(300, {"t": 3}), (100, {"t": 1}), (200, {"t": 2})]
        )
        assert [e.timestamp for e in forecasts.hourly(LAT, LON)] == [100, 200, 300]

    def test_put_replaces_same_type_only(self, forecasts):
        forecasts.put_forecasts(LAT, LON, ForecastType.HOURLY, [(1, {}), (2, {})])
        forecasts.put_forecasts(LAT, LON, ForecastType.DAILY, [(10, {"hi": 20})])
        assert forecasts.put_forecasts(LAT + 0.001, LON, ForecastType.HOURLY, [(5, {})]) == 1

        assert [e.timestamp for e in forecasts.hourly(LAT, LON)] == [5]
        daily = forecasts.daily(LAT, LON)
        assert [e.payload for e in daily] == [{"hi": 20}]
        assert daily[0].forecast_type == ForecastType.DAILY

    def test_other_location_untouched(self, forecasts):
        forecasts.put_forecasts(LAT, LON, "hourly", [(1, {})])
        forecasts.put_forecasts(0.0, 0.0, "hourly", [(2, {})])
        assert [e.timestamp for e in forecasts.hourly(LAT, LON)] == [1]

    def test_stale_forecast_ignored(self, forecasts, clock):
        forecasts.put_forecasts(LAT, LON, ForecastType.DAILY, [(1, {})])
        clock.advance(31 * MINUTE_MS)
        assert forecasts.daily(LAT, LON) == []
        assert forecasts.delete_expired() == 1

    def test_delete_for_location(self, forecasts):
        forecasts.put_forecasts(LAT, LON, ForecastType.HOURLY, [(1, {}), (2, {})])
        forecasts.put_forecasts(LAT, LON, ForecastType.DAILY, [(1, {})])
        assert forecasts.delete_for_location(LAT, LON) == 3
        assert forecasts.hourly(LAT, LON) == []

    def test_shares_database_with_current_cache(self, weather, forecasts):
        weather.put(LAT, LON, {"temp": 1})
        forecasts.put_forecasts(LAT, LON, ForecastType.HOURLY, [(1, {})])
        assert weather.get(LAT, LON) is not None
        assert len(forecasts.hourly(LAT, LON)) == 1
