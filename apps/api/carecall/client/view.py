"""Observable UI state for the room view."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

CAMERA_ON_LABEL = "Camera Off"
CAMERA_OFF_LABEL = "Camera On"
MIC_ON_LABEL = "Mic Off"
MIC_OFF_LABEL = "Mic On"

LOCAL_SURFACE_ID = "local-player-inner"


@dataclass
class RenderSurface:
    """A mount point media tracks are played into."""

    element_id: str
    video_track: Any = None
    audio_track: Any = None

    def play_video(self, track: Any) -> None:
        if track is self.video_track:
            return
        track.play(self)
        self.video_track = track

    def play_audio(self, track: Any) -> None:
        if track is self.audio_track:
            return
        track.play()
        self.audio_track = track


@dataclass
class RoomView:
    status: str = ""
    join_visible: bool = True
    join_enabled: bool = True
    leave_visible: bool = False
    media_controls_visible: bool = False
    camera_toggle_visible: bool = True
    mic_toggle_visible: bool = True
    request_permissions_visible: bool = False
    camera_label: str = CAMERA_ON_LABEL
    mic_label: str = MIC_ON_LABEL
    local_surface: RenderSurface | None = None
    remote_surfaces: dict[int, RenderSurface] = field(default_factory=dict)

    def mount_remote(self, uid: int) -> RenderSurface:
        surface = self.remote_surfaces.get(uid)
        if surface is None:
            surface = RenderSurface(element_id=f"remote-{uid}")
            self.remote_surfaces[uid] = surface
        return surface

    def unmount_remote(self, uid: int) -> bool:
        return self.remote_surfaces.pop(uid, None) is not None

    def mount_local(self) -> RenderSurface:
        self.local_surface = RenderSurface(element_id=LOCAL_SURFACE_ID)
        return self.local_surface

    def show_joined(self) -> None:
        self.join_visible = False
        self.leave_visible = True

    def reset(self) -> None:
        """Return to the pre-join layout."""

        self.status = ""
        self.join_visible = True
        self.join_enabled = True
        self.leave_visible = False
        self.media_controls_visible = False
        self.camera_toggle_visible = True
        self.mic_toggle_visible = True
        self.request_permissions_visible = False
        self.camera_label = CAMERA_ON_LABEL
        self.mic_label = MIC_ON_LABEL
        self.local_surface = None
        self.remote_surfaces.clear()
