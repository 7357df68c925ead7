"""Protocols for the vendor RTC SDK and the capture API.

The controller only talks to these shapes; adapters for a concrete SDK (or
test fakes) implement them.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Protocol, Sequence

CLIENT_MODE = "rtc"
CLIENT_CODEC = "vp8"


class MediaType(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class MediaAccessError(Exception):
    """Capture failure carrying the browser-style error name."""

    def __init__(self, message: str, name: str = "Error") -> None:
        super().__init__(message)
        self.name = name


class CaptureUnsupportedError(MediaAccessError):
    def __init__(self) -> None:
        super().__init__(
            "Camera/microphone access is not supported in this browser. "
            "Please use a modern browser like Chrome, Firefox, or Safari.",
            name="NotSupportedError",
        )


class LocalTrack(Protocol):
    async def set_enabled(self, enabled: bool) -> None: ...

    def play(self, surface: Any) -> None: ...

    def stop(self) -> None: ...

    def close(self) -> None: ...


class RemoteTrack(Protocol):
    def play(self, surface: Any = None) -> None: ...


class RemoteUser(Protocol):
    uid: int
    audio_track: RemoteTrack | None
    video_track: RemoteTrack | None


class RtcClient(Protocol):
    def on(self, event: str, handler: Callable[..., Any]) -> None: ...

    def remove_all_listeners(self) -> None: ...

    async def join(self, app_id: str, channel: str, token: str, uid: int) -> Any: ...

    async def publish(self, tracks: LocalTrack | Sequence[LocalTrack]) -> None: ...

    async def subscribe(self, user: RemoteUser, media_type: str) -> Any: ...

    async def leave(self) -> None: ...


class RtcSdk(Protocol):
    def create_client(self, *, mode: str, codec: str) -> RtcClient: ...

    async def create_microphone_and_camera_tracks(self) -> tuple[LocalTrack, LocalTrack]:
        """Return ``(audio, video)``."""
        ...

    async def create_microphone_audio_track(self) -> LocalTrack: ...


class MediaStream(Protocol):
    def get_tracks(self) -> Sequence[Any]: ...


class MediaDevices(Protocol):
    async def get_user_media(self, *, video: bool, audio: bool) -> MediaStream: ...
