"""Fixed-window rate limiting state."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from pydantic import BaseModel, Field


@dataclass
class RateLimitEntry:
    """Fixed-window counter for one client key."""

    key: str
    count: int
    reset_time_ms: float

    def expired(self, now_ms: float) -> bool:
        return now_ms > self.reset_time_ms


class RateLimitStatus(BaseModel):
    """Outcome of counting one request against a ``scope:client`` window."""

    allowed: bool
    limit: int = Field(ge=1, description="Requests admitted per window")
    remaining: int = Field(ge=0, description="Requests left in the current window")
    retry_after_seconds: int = Field(
        ge=0, description="Whole seconds until the window resets; 0 when admitted"
    )

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers
