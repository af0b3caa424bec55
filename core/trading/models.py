from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class GatewayResponse:
    """Uniform result of every broker gateway call.

    ``success`` is False both when the broker answered with an error
    envelope and when the transport failed after retries; ``message``
    carries the broker's (or transport's) explanation.
    """

    success: bool
    data: Any = None
    message: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, message: Optional[str] = None) -> "GatewayResponse":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, message: str, error_code: Optional[str] = None, data: Any = None) -> "GatewayResponse":
        return cls(success=False, data=data, message=message, error_code=error_code)
