"""Broker integrations."""

from .smartapi_client import SmartApiGateway, normalize_session

__all__ = ["SmartApiGateway", "normalize_session"]
