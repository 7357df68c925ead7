"""Data contracts for RTC endpoints."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

MAX_UID = 2**32 - 1


class RtcTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    channel_name: str | None = Field(default=None, alias="channelName", description="Room to join")
    uid: int | None = Field(default=None, ge=0, le=MAX_UID, description="Numeric participant id")


class RtcTokenResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(..., description="Signed RTC access token")
    uid: int = Field(..., description="Participant id the token is bound to")
    app_id: str = Field(..., alias="appId", description="Public application identifier")


class ErrorResponse(BaseModel):
    error: str
    details: str | list[dict[str, Any]] | None = None
