"""Schemas for the server-to-server sync endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ActiveSessionsRequest(_CamelModel):
    """Body sent by the edge application when polling for live sessions."""

    request_source: str = Field("unknown", alias="requestSource")
    timestamp: Optional[int] = Field(
        None, description="Caller clock in epoch milliseconds, logged for diagnosis."
    )


class TokenPayload(BaseModel):
    """Body carrying a token to validate."""

    token: str = Field(..., min_length=1, description="Plaintext token presented by the client.")


class IdentityRecord(_CamelModel):
    """Minimal identity shared with the edge application."""

    external_id: str = Field(..., alias="externalId")
    username: str
    email: str
    display_name: str = Field("", alias="displayName")
    roles: List[str] = Field(default_factory=list)
    avatar_url: Optional[str] = Field(None, alias="avatarUrl")
    metadata: Dict[str, Any] = Field(default_factory=dict)


__all__ = ["ActiveSessionsRequest", "IdentityRecord", "TokenPayload"]
