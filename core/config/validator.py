"""
Configuration validation at application startup.

Validates that critical configuration values are set before the API starts
serving, with clear messages for missing or unsafe settings. Connectivity
checks (database, Redis) are optional so the static checks can run in tests.
"""

import logging
from pathlib import Path
from typing import List, Dict, Any
from dataclasses import dataclass

import redis.asyncio as redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from .settings import Settings, DEFAULT_SECRET_KEY

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of a configuration validation check"""
    is_valid: bool
    component: str
    message: str
    severity: str = "error"  # "error", "warning", "info"


class ConfigurationValidator:
    """Startup configuration validator."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.validation_results: List[ValidationResult] = []

    def validate_static(self) -> bool:
        """Run checks that need no external connections."""
        self._validate_file_paths()
        self._validate_auth_settings()
        self._validate_smartapi_settings()
        self._validate_logging_settings()
        self._validate_portfolio_settings()
        return not self.errors

    async def validate_all(self, check_connections: bool = True) -> bool:
        """
        Run all validation checks.

        Returns:
            bool: True if all critical validations pass
        """
        logger.info("Starting configuration validation")
        self.validate_static()
        if check_connections:
            await self._validate_database_connection()
            await self._validate_redis_connection()

        errors = self.errors
        warnings = [r for r in self.validation_results if r.severity == "warning"]

        if errors:
            logger.error(f"Configuration validation failed: {len(errors)} errors, {len(warnings)} warnings")
            for result in errors:
                logger.error(f"   ERROR [{result.component}]: {result.message}")
        for result in warnings:
            logger.warning(f"   WARNING [{result.component}]: {result.message}")
        if not errors:
            logger.info(f"Configuration validation passed with {len(warnings)} warnings")

        return len(errors) == 0

    @property
    def errors(self) -> List[ValidationResult]:
        return [r for r in self.validation_results if r.severity == "error"]

    def _add(self, component: str, message: str, severity: str = "error"):
        self.validation_results.append(ValidationResult(
            is_valid=severity == "info",
            component=component,
            message=message,
            severity=severity,
        ))

    def _validate_file_paths(self):
        logs_dir = Path(self.settings.logs_dir)
        if not logs_dir.is_absolute():
            logs_dir = Path(self.settings.base_dir) / logs_dir
        if not logs_dir.parent.exists():
            self._add("File System", f"Parent directory for logs does not exist: {logs_dir.parent}")

    async def _validate_database_connection(self):
        try:
            engine = create_async_engine(self.settings.database.postgres_url)
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            await engine.dispose()
            self._add("Database", "Database connection successful", "info")
        except Exception as e:
            self._add("Database", f"Cannot connect to database: {e}")

    async def _validate_redis_connection(self):
        try:
            redis_client = redis.from_url(self.settings.redis.url, socket_connect_timeout=5.0)
            await redis_client.ping()
            await redis_client.aclose()
            self._add("Redis", "Redis connection successful", "info")
        except Exception as e:
            # The API still serves without the cache; rate limiting fails open
            self._add("Redis", f"Cannot connect to Redis: {e}", "warning")

    def _validate_auth_settings(self):
        if len(self.settings.auth.secret_key) < 32:
            self._add("Authentication", "JWT secret key should be at least 32 characters long", "warning")

        if self.settings.auth.secret_key == DEFAULT_SECRET_KEY:
            self._add(
                "Authentication",
                "Using default JWT secret key - change in production!",
                "error" if self.settings.is_production else "warning",
            )

    def _validate_smartapi_settings(self):
        if not self.settings.smartapi.api_key:
            self._add(
                "SmartAPI",
                "SMARTAPI__API_KEY is not configured; broker login will fail",
                "error" if self.settings.is_production else "warning",
            )
        if self.settings.smartapi.retry_attempts < 1:
            self._add("SmartAPI", "retry_attempts must be at least 1")

    def _validate_logging_settings(self):
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.settings.logging.level.upper() not in valid_log_levels:
            self._add("Logging", f"Invalid log level: {self.settings.logging.level}")

    def _validate_portfolio_settings(self):
        if self.settings.portfolio.price_batch_delay_seconds < 0:
            self._add("Portfolio", "price_batch_delay_seconds cannot be negative")
        if self.settings.portfolio.price_batch_size > 50:
            self._add(
                "Portfolio",
                "Price batches above 50 instruments may hit SmartAPI rate limits",
                "warning",
            )

    def get_validation_summary(self) -> Dict[str, Any]:
        """Get a summary of validation results"""
        errors = self.errors
        warnings = [r for r in self.validation_results if r.severity == "warning"]

        return {
            "total_checks": len(self.validation_results),
            "errors": len(errors),
            "warnings": len(warnings),
            "is_valid": len(errors) == 0,
            "error_details": [{"component": r.component, "message": r.message} for r in errors],
            "warning_details": [{"component": r.component, "message": r.message} for r in warnings]
        }


async def validate_startup_configuration(settings: Settings, check_connections: bool = True) -> bool:
    """
    Convenience function to run startup configuration validation.

    Args:
        settings: Application settings to validate

    Returns:
        bool: True if validation passes (no critical errors)
    """
    validator = ConfigurationValidator(settings)
    return await validator.validate_all(check_connections=check_connections)
