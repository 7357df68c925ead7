"""RTC token issuance endpoint."""
from __future__ import annotations

from fastapi import APIRouter, Body

from ..schemas.rtc import ErrorResponse, RtcTokenRequest, RtcTokenResponse
from ..services import rtc as rtc_service

router = APIRouter()


@router.post(
    "/token",
    response_model=RtcTokenResponse,
    response_model_by_alias=True,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def create_rtc_token(payload: RtcTokenRequest | None = Body(default=None)) -> RtcTokenResponse:
    """Return a publisher token for the requested channel."""

    payload = payload or RtcTokenRequest()
    token = await rtc_service.issue_token(payload.channel_name, payload.uid)
    return RtcTokenResponse(token=token.token, uid=token.uid, app_id=token.app_id)
