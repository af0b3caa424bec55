"""
Centralized order identifier generation.

Client order ids are assigned locally before the broker sees an order, so
they must be unique without any broker round-trip. Orders first seen in a
broker order book get a deterministic id derived from the broker's id so
that repeated syncs resolve to the same record.
"""

from __future__ import annotations

import secrets
import time

CLIENT_ORDER_PREFIX = "ORD"
SYNC_ORDER_PREFIX = "SYNC"


def generate_client_order_id() -> str:
    """Generate ``ORD_<epoch ms>_<8 uppercase hex>``."""
    ts_ms = int(time.time() * 1000)
    return f"{CLIENT_ORDER_PREFIX}_{ts_ms}_{secrets.token_hex(4).upper()}"


def sync_client_order_id(broker_order_id: str) -> str:
    return f"{SYNC_ORDER_PREFIX}_{broker_order_id}"
