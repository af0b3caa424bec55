# Structured logging with multi-channel support
from core.config.settings import Settings
from .enhanced_logging import (
    configure_enhanced_logging,
    get_trading_logger_safe,
    get_api_logger_safe,
    get_audit_logger_safe,
    get_error_logger_safe,
    get_database_logger_safe,
)

# Global flag to prevent duplicate logging configuration
_logging_configured = False


def configure_logging(settings: Settings) -> None:
    """Configure the logging system once per process."""
    global _logging_configured

    if _logging_configured:
        return

    configure_enhanced_logging(settings)
    _logging_configured = True


__all__ = [
    "configure_logging",
    "get_trading_logger_safe",
    "get_api_logger_safe",
    "get_audit_logger_safe",
    "get_error_logger_safe",
    "get_database_logger_safe",
]
