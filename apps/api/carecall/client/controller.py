"""Join/leave lifecycle for a single call session.

Join runs strictly in order: token fetch, SDK client join, then local media
in descending tiers (camera+mic, mic only, nothing). Once the signaling join
succeeds the call counts as joined whatever tier applies. Leave tears every
resource down independently so one failing release never skips the rest.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import suppress
from enum import Enum
from typing import Any, Callable

from .controls import MediaControls
from .events import EventKind, ParticipantEvent
from .media import (
    VIEW_ONLY_MOBILE_TEXT,
    BrowserEnvironment,
    capture_warnings,
    describe_capture_error,
    describe_join_failure,
    is_mobile,
    probe_capture,
)
from .router import Route, View
from .sdk import CLIENT_CODEC, CLIENT_MODE, LocalTrack, MediaType, RtcSdk
from .session import CallSession, MediaTier
from .token_client import TokenClient
from .view import RoomView

logger = logging.getLogger(__name__)

STATUS_JOINING = "Joining..."
STATUS_REQUESTING = "Requesting permissions..."
TIER_STATUS = {
    MediaTier.FULL: "Joined",
    MediaTier.AUDIO_ONLY: "Joined (audio only)",
    MediaTier.VIEW_ONLY: "Joined (view only)",
}


class CallState(str, Enum):
    IDLE = "idle"
    JOINING = "joining"
    JOINED = "joined"
    LEAVING = "leaving"
    JOIN_FAILED = "join-failed"


class _JoinAbandoned(Exception):
    """Raised inside join when a leave arrived while it was suspended."""


async def _best_effort(step: str, action: Callable[[], Any]) -> None:
    try:
        result = action()
        if inspect.isawaitable(result):
            await result
    except Exception:  # noqa: BLE001 - cleanup must run every step
        logger.warning("Cleanup step '%s' failed", step, exc_info=True)


def _close_quietly(tracks: tuple[LocalTrack, ...] | list[LocalTrack]) -> None:
    for track in tracks:
        try:
            track.close()
        except Exception:  # noqa: BLE001
            logger.warning("Failed to close abandoned track", exc_info=True)


class CallSessionController:
    """Owns the SDK client and local media for at most one session."""

    def __init__(
        self,
        sdk: RtcSdk,
        token_client: TokenClient,
        *,
        environment: BrowserEnvironment | None = None,
        view: RoomView | None = None,
    ) -> None:
        self._sdk = sdk
        self._tokens = token_client
        self.environment = environment or BrowserEnvironment()
        self.view = view or RoomView()
        self.controls = MediaControls(self.view)
        self.room_id: str | None = None
        self.state = CallState.IDLE
        self.last_error: str | None = None
        self._session: CallSession | None = None
        capture_warnings(self.environment)

    @property
    def session(self) -> CallSession | None:
        return self._session

    @property
    def tier(self) -> MediaTier | None:
        return self._session.tier if self._session else None

    def select_room(self, route: Route) -> None:
        self.room_id = route.room_id if route.view is View.ROOM else None

    def _transition(self, state: CallState) -> None:
        logger.debug("Call state %s -> %s", self.state.value, state.value)
        self.state = state

    async def join(self) -> bool:
        """Join the selected room. Returns True once the signaling join succeeded."""

        if not self.room_id or self.state is not CallState.IDLE:
            logger.debug("Join ignored (room=%s, state=%s)", self.room_id, self.state.value)
            return False

        self._transition(CallState.JOINING)
        self.view.status = STATUS_JOINING
        self.view.join_enabled = False
        self.last_error = None
        session = CallSession(channel=self.room_id)
        self._session = session

        try:
            grant = await self._tokens.fetch(session.channel)
            self._check_leave(session)
            session.uid, session.app_id = grant.uid, grant.app_id

            client = self._sdk.create_client(mode=CLIENT_MODE, codec=CLIENT_CODEC)
            session.client = client
            session.events.attach(client)
            session.consumer = asyncio.create_task(self._consume(session))

            await client.join(grant.app_id, session.channel, grant.token, grant.uid)
            self._check_leave(session)
        except _JoinAbandoned:
            await self._abandon(session)
            return False
        except Exception as exc:  # noqa: BLE001 - every pre-join failure is reported the same way
            logger.error("Join failed for room %s: %s", session.channel, exc)
            message = describe_join_failure(exc, self.environment)
            self._transition(CallState.JOIN_FAILED)
            await self._teardown(session)
            self._finish_idle()
            self.view.status = message
            self.last_error = message
            return False

        logger.info("Joined channel %s as uid %s", session.channel, session.uid)
        await self._acquire_media(session)
        if session.leave_requested:
            await self._abandon(session)
            return False

        self._transition(CallState.JOINED)
        self.view.show_joined()
        return True

    def _check_leave(self, session: CallSession) -> None:
        if session.leave_requested:
            raise _JoinAbandoned()

    async def _abandon(self, session: CallSession) -> None:
        logger.info("Leave requested during join of %s; tearing down", session.channel)
        self._transition(CallState.LEAVING)
        await self._teardown(session)
        self._finish_idle()

    async def _acquire_full(self, session: CallSession) -> None:
        await probe_capture(self.environment)
        tracks = await self._sdk.create_microphone_and_camera_tracks()
        try:
            await session.client.publish(list(tracks))
        except Exception:
            _close_quietly(tracks)
            raise
        session.adopt_full(tracks)
        if self._session is session:
            self.view.mount_local().play_video(session.video_track)

    async def _acquire_audio(self, session: CallSession) -> None:
        track = await self._sdk.create_microphone_audio_track()
        try:
            await session.client.publish(track)
        except Exception:
            _close_quietly([track])
            raise
        session.adopt_audio(track)

    async def _acquire_media(self, session: CallSession) -> None:
        try:
            await self._acquire_full(session)
        except Exception as exc:  # noqa: BLE001
            logger.info("Camera/mic access failed, trying audio only: %s", exc)
        else:
            self._apply_tier(MediaTier.FULL)
            return

        try:
            await self._acquire_audio(session)
        except Exception as exc:  # noqa: BLE001
            logger.info("Audio also failed: %s", exc)
        else:
            self._apply_tier(MediaTier.AUDIO_ONLY)
            return

        session.tier = MediaTier.VIEW_ONLY
        self._apply_tier(MediaTier.VIEW_ONLY)
        if is_mobile(self.environment.user_agent):
            self.view.status = VIEW_ONLY_MOBILE_TEXT

    def _apply_tier(self, tier: MediaTier) -> None:
        self.view.status = TIER_STATUS[tier]
        self.controls.show_for_tier(tier)

    async def request_permissions(self) -> bool:
        """Promote a view-only session to full media without rejoining."""

        session = self._session
        if self.state is not CallState.JOINED or session is None or session.tier is not MediaTier.VIEW_ONLY:
            return False
        if session.requesting_permissions:
            logger.debug("Permission request already pending")
            return False

        session.requesting_permissions = True
        self.view.request_permissions_visible = False
        self.view.status = STATUS_REQUESTING
        try:
            await self._acquire_full(session)
        except Exception as exc:  # noqa: BLE001
            logger.error("Permission request failed: %s", exc)
            if self._session is session:
                self.view.status = describe_capture_error(exc, self.environment)
                self.view.request_permissions_visible = True
            return False
        finally:
            session.requesting_permissions = False

        if self._session is not session:
            # Left while the prompt was open.
            for track in session.local_tracks():
                await _best_effort("stop late track", track.stop)
                await _best_effort("close late track", track.close)
            session.forget_tracks()
            return False

        self._apply_tier(MediaTier.FULL)
        logger.info("Enabled camera and mic after permission request")
        return True

    async def toggle_camera(self) -> bool:
        return await self.controls.toggle_camera(self._session)

    async def toggle_mic(self) -> bool:
        return await self.controls.toggle_mic(self._session)

    async def leave(self) -> None:
        """Leave the call. A no-op when idle; queued when a join is in flight."""

        session = self._session
        if self.state is CallState.JOINING and session is not None:
            session.leave_requested = True
            return
        if self.state is not CallState.JOINED or session is None:
            return

        self._transition(CallState.LEAVING)
        try:
            await self._teardown(session)
        finally:
            self._finish_idle()
        logger.info("Left channel %s", session.channel)

    async def flush_events(self) -> None:
        """Wait for every participant event delivered so far to be handled."""

        if self._session is not None:
            await self._session.events.drain()

    def _finish_idle(self) -> None:
        self._session = None
        self.controls.reset()
        self.view.reset()
        self._transition(CallState.IDLE)

    async def _teardown(self, session: CallSession) -> None:
        for track in session.local_tracks():
            await _best_effort("stop local track", track.stop)
            await _best_effort("close local track", track.close)
        session.forget_tracks()
        self.view.local_surface = None

        if session.client is not None:
            await _best_effort("leave channel", session.client.leave)
        await _best_effort("close event channel", session.events.close)

        consumer, session.consumer = session.consumer, None
        if consumer is not None and consumer is not asyncio.current_task():
            consumer.cancel()
            with suppress(asyncio.CancelledError):
                await consumer

        self.view.remote_surfaces.clear()

    async def _consume(self, session: CallSession) -> None:
        async for event in session.events:
            try:
                await self._handle_event(session, event)
            except Exception:  # noqa: BLE001 - one bad event must not stop the channel
                logger.exception("Failed handling %s for uid %s", event.kind.value, event.user.uid)
            finally:
                session.events.task_done()

    async def _handle_event(self, session: CallSession, event: ParticipantEvent) -> None:
        if self._session is not session:
            return
        user = event.user
        if event.kind is EventKind.USER_PUBLISHED:
            logger.info("Remote user published: %s %s", user.uid, event.media_type)
            await session.client.subscribe(user, event.media_type)
            surface = self.view.mount_remote(user.uid)
            if event.media_type == MediaType.VIDEO and user.video_track is not None:
                surface.play_video(user.video_track)
            elif event.media_type == MediaType.AUDIO and user.audio_track is not None:
                surface.play_audio(user.audio_track)
        elif event.kind is EventKind.USER_UNPUBLISHED:
            logger.info("Remote user unpublished: %s", user.uid)
            self.view.unmount_remote(user.uid)
        else:
            logger.info("User joined: %s", user.uid)
