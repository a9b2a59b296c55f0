# SkyView - Main Package
#
# Encrypted local vault (items, folders, trash, settings) plus the saved
# locations and weather cache of the SkyView weather app.

__version__ = "0.3.0"
__description__ = "Encrypted local vault and weather cache"

from .core import (
    EventSeverity,
    EventType,
    VaultConfig,
    get_audit_logger,
    load_config,
)

__all__ = [
    "__version__",
    "EventSeverity",
    "EventType",
    "VaultConfig",
    "get_audit_logger",
    "load_config",
]
