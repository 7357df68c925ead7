"""Capture capability probing and the guidance text shown to users."""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlsplit

from .sdk import CaptureUnsupportedError, MediaDevices, MediaStream

logger = logging.getLogger(__name__)

LOCAL_HOSTS = ("localhost", "127.0.0.1")
MOBILE_UA = re.compile(r"Android|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE)

PERMISSION_DENIED_TEXT = "Permission denied. Please allow camera/mic access in your browser settings and try again."
NO_DEVICE_TEXT = "No camera/microphone found. Please check your device."
DEVICE_BUSY_TEXT = "Camera/microphone is already in use by another application."
EDGE_OVER_IP_TEXT = (
    "Microsoft Edge requires HTTPS for camera/microphone access when using IP addresses. "
    "Please use localhost instead."
)
UNSUPPORTED_BROWSER_TEXT = (
    "Your browser does not support camera/microphone access. Please use Chrome, Firefox, Safari, or Edge."
)
VIEW_ONLY_MOBILE_TEXT = 'Joined (view only). Click "Enable Camera/Mic" and allow permissions when prompted.'

# (constraints, on_success, on_error)
LegacyGetUserMedia = Callable[[dict, Callable[[MediaStream], None], Callable[[BaseException], None]], None]


@dataclass(slots=True)
class BrowserEnvironment:
    user_agent: str = ""
    page_url: str = "http://localhost/"
    media_devices: MediaDevices | None = None
    legacy_get_user_media: LegacyGetUserMedia | None = None

    @property
    def hostname(self) -> str:
        return urlsplit(self.page_url).hostname or ""

    @property
    def is_local(self) -> bool:
        return self.hostname in LOCAL_HOSTS

    @property
    def is_secure(self) -> bool:
        return urlsplit(self.page_url).scheme == "https"

    @property
    def is_edge(self) -> bool:
        return "Edg" in self.user_agent


class LegacyMediaDevices:
    """Expose a callback-style getter through the awaitable interface."""

    def __init__(self, legacy: LegacyGetUserMedia) -> None:
        self._legacy = legacy

    async def get_user_media(self, *, video: bool, audio: bool) -> MediaStream:
        loop = asyncio.get_running_loop()
        future: asyncio.Future[MediaStream] = loop.create_future()

        def _settle(setter: Callable[[Any], None], value: Any) -> None:
            if not future.done():
                setter(value)

        def _resolve(stream: MediaStream) -> None:
            loop.call_soon_threadsafe(_settle, future.set_result, stream)

        def _reject(error: BaseException) -> None:
            loop.call_soon_threadsafe(_settle, future.set_exception, error)

        self._legacy({"video": video, "audio": audio}, _resolve, _reject)
        return await future


def ensure_media_devices(env: BrowserEnvironment) -> MediaDevices | None:
    """Return a usable capture API, shimming the legacy one if that is all there is."""

    if env.media_devices is not None:
        return env.media_devices
    if env.legacy_get_user_media is not None:
        logger.info("Using legacy getUserMedia shim")
        return LegacyMediaDevices(env.legacy_get_user_media)
    logger.info("No getUserMedia implementation found")
    return None


def capture_warnings(env: BrowserEnvironment) -> list[str]:
    warnings: list[str] = []
    if not env.is_local and not env.is_secure:
        warnings.append("HTTPS is required for camera/microphone access when not using localhost")
        if env.is_edge:
            warnings.append("Microsoft Edge requires HTTPS for camera/microphone access when using IP addresses")
    for warning in warnings:
        logger.warning(warning)
    return warnings


def is_mobile(user_agent: str) -> bool:
    return bool(MOBILE_UA.search(user_agent or ""))


async def probe_capture(env: BrowserEnvironment) -> None:
    """Ask for camera and microphone once, releasing the probe stream immediately."""

    devices = ensure_media_devices(env)
    if devices is None:
        raise CaptureUnsupportedError()
    stream = await devices.get_user_media(video=True, audio=True)
    for track in stream.get_tracks():
        track.stop()


def _not_implemented_text(env: BrowserEnvironment) -> str:
    if env.is_edge and not env.is_local:
        return EDGE_OVER_IP_TEXT
    return UNSUPPORTED_BROWSER_TEXT


def describe_capture_error(error: BaseException, env: BrowserEnvironment) -> str:
    name = getattr(error, "name", type(error).__name__)
    message = str(error)
    if name == "NotAllowedError":
        return PERMISSION_DENIED_TEXT
    if name == "NotFoundError":
        return NO_DEVICE_TEXT
    if name == "NotReadableError":
        return DEVICE_BUSY_TEXT
    if "not implemented" in message:
        return _not_implemented_text(env)
    return f"Failed to access camera/microphone: {message}"


def describe_join_failure(error: BaseException, env: BrowserEnvironment) -> str:
    message = str(error)
    if "not implemented" in message:
        return _not_implemented_text(env)
    return message or "Failed to join"

