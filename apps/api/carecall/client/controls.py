"""Camera and microphone toggles."""
from __future__ import annotations

import logging

from .session import CallSession, MediaTier
from .view import CAMERA_OFF_LABEL, CAMERA_ON_LABEL, MIC_OFF_LABEL, MIC_ON_LABEL, RoomView

logger = logging.getLogger(__name__)


class MediaControls:
    """Enable/disable the acquired local handles and keep their labels in sync."""

    def __init__(self, view: RoomView) -> None:
        self._view = view
        self.camera_enabled = True
        self.mic_enabled = True

    async def toggle_camera(self, session: CallSession | None) -> bool:
        track = session.video_track if session else None
        if track is None:
            return False
        enabled = not self.camera_enabled
        await track.set_enabled(enabled)
        self.camera_enabled = enabled
        self._view.camera_label = CAMERA_ON_LABEL if enabled else CAMERA_OFF_LABEL
        logger.debug("Camera %s", "enabled" if enabled else "disabled")
        return True

    async def toggle_mic(self, session: CallSession | None) -> bool:
        track = session.audio_track if session else None
        if track is None:
            return False
        enabled = not self.mic_enabled
        await track.set_enabled(enabled)
        self.mic_enabled = enabled
        self._view.mic_label = MIC_ON_LABEL if enabled else MIC_OFF_LABEL
        logger.debug("Microphone %s", "enabled" if enabled else "disabled")
        return True

    def show_for_tier(self, tier: MediaTier) -> None:
        view = self._view
        view.media_controls_visible = True
        view.camera_toggle_visible = tier is MediaTier.FULL
        view.mic_toggle_visible = tier in (MediaTier.FULL, MediaTier.AUDIO_ONLY)
        view.request_permissions_visible = tier is MediaTier.VIEW_ONLY

    def reset(self) -> None:
        self.camera_enabled = True
        self.mic_enabled = True
