# Vault - Audit Logging
#
# Append-only audit log for every security-relevant vault event: unlock
# attempts, item and folder mutations, trash lifecycle, sweeps.
# Events are structured JSON lines (structlog) written to a daily file.
# Details carry ids and counts only. Titles, contents and credentials are
# never logged.

import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of audit events."""

    # Key management
    VAULT_CREATED = "vault.created"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_LOCKED = "vault.locked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_CREDENTIAL_CHANGED = "vault.credential.changed"
    VAULT_ERROR = "vault.error"

    # Items
    ITEM_CREATED = "vault.item.created"
    ITEM_UPDATED = "vault.item.updated"
    ITEM_ACCESSED = "vault.item.accessed"
    ITEM_DELETED = "vault.item.deleted"

    # Folders
    FOLDER_CREATED = "vault.folder.created"
    FOLDER_MOVED = "vault.folder.moved"
    FOLDER_DELETED = "vault.folder.deleted"

    # Trash
    TRASH_ADDED = "vault.trash.added"
    TRASH_RESTORED = "vault.trash.restored"
    TRASH_PURGED = "vault.trash.purged"
    TRASH_EMPTIED = "vault.trash.emptied"
    TRASH_SWEPT = "vault.trash.swept"

    # Weather-side storage
    LOCATION_DEFAULT_CHANGED = "location.default.changed"

    # System
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"


class EventSeverity(str, Enum):
    """
    Severity levels for audit events.

    - INFO: Normal activity (logged only)
    - INVESTIGATE: Something unusual worth a look
    - ALERT: Security-relevant failure (bad credential, lockout)
    - CRITICAL: Storage or encryption failure
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for vault events.

    Features:
    - Structured JSON logging
    - Automatic timestamp and event ID
    - Host context capture
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._file_handler = self._setup_file_handler()

        self.logger = structlog.get_logger("skyview.audit")

    def _setup_file_handler(self) -> logging.FileHandler:
        """Attach a daily file handler to the audit logger."""
        today = datetime.now().strftime("%Y-%m-%d")
        log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog handles formatting

        audit_logger = logging.getLogger("skyview.audit")
        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)
        return file_handler

    def close(self) -> None:
        """Detach and close the file handler."""
        logging.getLogger("skyview.audit").removeHandler(self._file_handler)
        self._file_handler.close()

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log an audit event (append-only).

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (ids and counts only)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())

        self.logger.info(
            "vault_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details=details or {},
            host_context=self._get_host_context(),
        )

        return event_id

    def log_vault_error(self, operation: str, error: BaseException) -> str:
        """Record a failed vault operation. Only the exception type is kept."""
        return self.log_event(
            event_type=EventType.VAULT_ERROR,
            severity=EventSeverity.CRITICAL,
            message=f"Vault operation failed: {operation}",
            details={"operation": operation, "error_type": type(error).__name__},
        )

    def _get_host_context(self) -> Dict[str, Any]:
        """Get default host context (OS user, hostname, platform)."""
        import os
        import socket

        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def configure_audit_logger(log_dir: Optional[Path]) -> AuditLogger:
    """Replace the global audit logger with one writing to log_dir."""
    global _audit_logger
    if _audit_logger is not None:
        _audit_logger.close()
    _audit_logger = AuditLogger(log_dir=log_dir)
    return _audit_logger


def log_audit_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging audit events.

    Usage:
        log_audit_event(
            EventType.TRASH_SWEPT,
            EventSeverity.INFO,
            "Expired trash entries purged",
            details={"purged": 3}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
