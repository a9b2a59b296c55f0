# Weather Module - Saved Locations and Cache
#
# Unencrypted storage (weather_cache.db) for the weather screens: saved
# locations with a single default, and the current/forecast cache.

from .cache import ForecastCacheEntry, ForecastCacheStore, ForecastType, WeatherCacheEntry, WeatherCacheStore
from .locations import MAX_SAVED_LOCATIONS, SavedLocation, SavedLocationStore

__all__ = [
    "ForecastCacheEntry",
    "ForecastCacheStore",
    "ForecastType",
    "MAX_SAVED_LOCATIONS",
    "SavedLocation",
    "SavedLocationStore",
    "WeatherCacheEntry",
    "WeatherCacheStore",
]
