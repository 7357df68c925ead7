"""RTC token issuance.

Tokens are signed with the vendor's builder over the configured app id and
certificate. Nothing is stored; every join asks for a fresh token."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from secrets import randbelow
from typing import Any

from agora_token_builder import RtcTokenBuilder

from ..core.config import settings

logger = logging.getLogger(__name__)

PUBLISHER_ROLE = 1
MAX_RANDOM_UID = 10_000_000


class TokenServiceError(Exception):
    """Base class for failures that map onto an HTTP error body."""

    status_code = 500

    def __init__(self, error: str, details: Any = None) -> None:
        super().__init__(error)
        self.error = error
        self.details = details

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.details is not None:
            body["details"] = self.details
        return body


class MissingChannelError(TokenServiceError):
    status_code = 400

    def __init__(self) -> None:
        super().__init__("channelName is required")


class InvalidRequestError(TokenServiceError):
    status_code = 400

    def __init__(self, details: Any = None) -> None:
        super().__init__("Invalid request body", details)


class ServerNotConfiguredError(TokenServiceError):
    """Raised when the app id / certificate pair is absent."""

    status_code = 500

    def __init__(self) -> None:
        super().__init__("Server not configured with AGORA_APP_ID and AGORA_APP_CERTIFICATE")


class TokenGenerationError(TokenServiceError):
    status_code = 500

    def __init__(self, details: str) -> None:
        super().__init__("Failed to generate token", details)


@dataclass(slots=True)
class RtcToken:
    token: str
    uid: int
    app_id: str
    expires_at: int


def resolve_uid(uid: int | None) -> int:
    """Return the caller's uid, or a random one in [0, MAX_RANDOM_UID)."""

    if uid is None:
        return randbelow(MAX_RANDOM_UID)
    return uid


async def issue_token(channel_name: str | None, uid: int | None = None, *, now: float | None = None) -> RtcToken:
    """Produce a publisher token for ``channel_name``.

    Request errors are checked before configuration so a bad request never
    reveals whether the server is configured.
    """

    if not channel_name:
        raise MissingChannelError()

    if not settings.rtc_configured:
        raise ServerNotConfiguredError()

    resolved_uid = resolve_uid(uid)
    issued_at = int(time.time() if now is None else now)
    expires_at = issued_at + settings.token_ttl_seconds

    try:
        token = RtcTokenBuilder.buildTokenWithUid(
            settings.agora_app_id,
            settings.agora_app_certificate,
            channel_name,
            resolved_uid,
            PUBLISHER_ROLE,
            expires_at,
        )
    except Exception as exc:  # noqa: BLE001 - any builder failure is a signing failure
        logger.exception("Token signing failed for channel %s", channel_name)
        raise TokenGenerationError(str(exc)) from exc

    logger.info("Issued token channel=%s uid=%s expires_at=%s", channel_name, resolved_uid, expires_at)
    return RtcToken(token=token, uid=resolved_uid, app_id=settings.agora_app_id, expires_at=expires_at)
