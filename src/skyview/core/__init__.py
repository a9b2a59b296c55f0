# Core Module - Shared Utilities
#
# Core module provides shared functionality across all SkyView modules:
# - Audit logging
# - Configuration
# - SQLite connection helper
# - Host preference store

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    configure_audit_logger,
    get_audit_logger,
    log_audit_event,
)
from .config import VaultConfig, load_config

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "configure_audit_logger",
    "get_audit_logger",
    "log_audit_event",
    # Configuration
    "VaultConfig",
    "load_config",
]
