from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field

from .base import CamelModel
from .policy import AttributeMap


class Session(CamelModel):
    """
    Server-held record binding a holder and its disclosed attributes to an
    opaque bearer token.
    """

    id: str = Field(..., description="Opaque session token")
    holder_id: str = Field(..., description="Holder identifier (usually a DID)")
    credential_ids: List[str] = Field(default_factory=list)
    attributes: AttributeMap = Field(
        default_factory=dict, description="Attributes disclosed at verification time"
    )
    created_at: datetime = Field(..., description="Creation time (UTC)")
    expires_at: datetime = Field(..., description="Expiry time (UTC)")
    last_accessed_at: datetime = Field(..., description="Last authenticated access (UTC)")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def remaining_seconds(self, now: datetime) -> int:
        return max(0, int((self.expires_at - now).total_seconds()))

    def duration_seconds(self, now: datetime) -> int:
        return max(0, int((now - self.created_at).total_seconds()))


class SessionMetadata(CamelModel):
    """
    Advisory per-session counters. Never consulted for access decisions.
    """

    model_config = ConfigDict(extra="allow")

    session_id: str
    creation_method: str = "presentation"
    created_at: Optional[datetime] = None
    access_count: int = Field(default=0, ge=0)
    last_accessed: Optional[datetime] = None
    extension_count: int = Field(default=0, ge=0)
    last_extended: Optional[datetime] = None
    endpoints_accessed: List[str] = Field(default_factory=list)


__all__ = ["Session", "SessionMetadata"]
