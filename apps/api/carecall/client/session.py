"""The one live call session a controller may own."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum

from .events import ParticipantEventChannel
from .sdk import LocalTrack, RtcClient


class MediaTier(str, Enum):
    FULL = "full"
    AUDIO_ONLY = "audio-only"
    VIEW_ONLY = "view-only"


@dataclass
class CallSession:
    channel: str
    events: ParticipantEventChannel = field(default_factory=ParticipantEventChannel)
    client: RtcClient | None = None
    uid: int | None = None
    app_id: str | None = None
    tier: MediaTier | None = None
    combined_tracks: tuple[LocalTrack, LocalTrack] | None = None
    audio_track: LocalTrack | None = None
    video_track: LocalTrack | None = None
    consumer: asyncio.Task[None] | None = None
    leave_requested: bool = False
    requesting_permissions: bool = False

    def adopt_full(self, tracks: tuple[LocalTrack, LocalTrack]) -> None:
        self.combined_tracks = tracks
        self.audio_track, self.video_track = tracks
        self.tier = MediaTier.FULL

    def adopt_audio(self, track: LocalTrack) -> None:
        self.audio_track = track
        self.tier = MediaTier.AUDIO_ONLY

    def local_tracks(self) -> list[LocalTrack]:
        """Every distinct local handle, each listed once."""

        seen: list[LocalTrack] = []
        for track in (*(self.combined_tracks or ()), self.audio_track, self.video_track):
            if track is not None and not any(track is existing for existing in seen):
                seen.append(track)
        return seen

    def forget_tracks(self) -> None:
        self.combined_tracks = None
        self.audio_track = None
        self.video_track = None
