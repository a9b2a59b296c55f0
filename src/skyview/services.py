# SkyView - Service Wiring
#
# Builds every component from one VaultConfig so the API and the CLI share
# the same wiring. Nothing here is global: callers hold the handle.

import logging
from typing import Optional

from .core.config import VaultConfig
from .core.user_preferences import PREF_VAULT_INITIALIZED, UserPreferences, VaultPreferences
from .vault import (
    FolderManager,
    KeyManager,
    TrashManager,
    TrashSweeper,
    VaultQuery,
    VaultStore,
)
from .vault.changes import ChangeFeed
from .weather import ForecastCacheStore, SavedLocationStore, WeatherCacheStore

logger = logging.getLogger(__name__)


class SkyViewServices:
    """Every vault and weather component, wired to one configuration."""

    def __init__(self, config: VaultConfig):
        self.config = config
        config.data_dir.mkdir(parents=True, exist_ok=True)

        self.preferences = UserPreferences(config.preferences_db_path)
        self.vault_preferences = VaultPreferences(self.preferences)

        self.keys = KeyManager(
            config.vault_db_path,
            iterations=config.pbkdf2_iterations,
            db_timeout=config.db_timeout,
        )
        self.feed = ChangeFeed()
        self.store = VaultStore(
            config.vault_db_path, self.keys, feed=self.feed, db_timeout=config.db_timeout
        )
        self.folders = FolderManager(self.store, max_depth=config.max_folder_depth)
        self.trash = TrashManager(
            self.store,
            retention_ms=config.trash_retention_ms,
            max_depth=config.max_folder_depth,
        )
        self.query = VaultQuery(self.store)

        self.locations = SavedLocationStore(
            config.weather_db_path, db_timeout=config.db_timeout
        )
        self.weather_cache = WeatherCacheStore(
            config.weather_db_path,
            max_age=config.weather_cache_max_age,
            db_timeout=config.db_timeout,
        )
        self.forecast_cache = ForecastCacheStore(
            config.weather_db_path,
            max_age=config.weather_cache_max_age,
            db_timeout=config.db_timeout,
        )

        self._sweeper: Optional[TrashSweeper] = None

    def start_background(self) -> None:
        """Start the periodic trash sweep."""
        if self._sweeper is None:
            self._sweeper = TrashSweeper(self.trash, interval=self.config.sweep_interval)
        self._sweeper.start()

    def stop_background(self) -> None:
        if self._sweeper is not None:
            self._sweeper.stop()

    def enforce_auto_lock(self) -> bool:
        """Lock the vault if it has been idle longer than the user's timeout."""
        minutes = self.vault_preferences.auto_lock_timeout_minutes()
        return self.keys.lock_if_idle(minutes * 60)

    def initialize_vault(self, credential: str) -> None:
        """Create key material and record that the vault is set up."""
        self.keys.initialize(credential)
        self.preferences.set_bool(PREF_VAULT_INITIALIZED, True)

    def shutdown(self) -> None:
        self.stop_background()
        self.keys.lock()
        logger.info("SkyView services stopped")
