"""Schemas related to Identity Authority login."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class LoginPayload(BaseModel):
    """Credentials submitted to open an Identity Authority session."""

    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    redirect_to: Optional[str] = Field(
        None,
        alias="redirectTo",
        description="Optional URL to continue to after login; defaults to the edge app.",
    )


__all__ = ["LoginPayload"]
