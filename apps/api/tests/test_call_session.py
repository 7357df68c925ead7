"""Tests for the call session controller, media tiers, and controls."""
from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from carecall.client.controller import CallSessionController, CallState
from carecall.client.media import VIEW_ONLY_MOBILE_TEXT, BrowserEnvironment
from carecall.client.router import RoomRouter
from carecall.client.sdk import MediaAccessError
from carecall.client.session import MediaTier
from carecall.client.token_client import TokenFetchError, TokenGrant

IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15"


class DummyTrack:
    def __init__(self, kind: str, *, fail_stop: bool = False) -> None:
        self.kind = kind
        self.enabled = True
        self.stopped = False
        self.closed = False
        self.played_into: list[object] = []
        self._fail_stop = fail_stop

    async def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled

    def play(self, surface=None) -> None:
        self.played_into.append(surface)

    def stop(self) -> None:
        if self._fail_stop:
            raise RuntimeError("stop exploded")
        self.stopped = True

    def close(self) -> None:
        self.closed = True


class DummyClient:
    def __init__(self, *, fail_join: Exception | None = None, fail_leave: bool = False) -> None:
        self.listeners: dict[str, list] = {}
        self.published: list[object] = []
        self.subscribed: list[tuple[int, str]] = []
        self.joined_with: tuple | None = None
        self.left = False
        self._fail_join = fail_join
        self._fail_leave = fail_leave
        self.gate: asyncio.Event | None = None

    def on(self, event: str, handler) -> None:
        self.listeners.setdefault(event, []).append(handler)

    def remove_all_listeners(self) -> None:
        self.listeners.clear()

    def emit(self, event: str, *args) -> None:
        for handler in list(self.listeners.get(event, [])):
            handler(*args)

    async def join(self, app_id, channel, token, uid):
        if self.gate is not None:
            await self.gate.wait()
        if self._fail_join:
            raise self._fail_join
        self.joined_with = (app_id, channel, token, uid)
        return uid

    async def publish(self, tracks) -> None:
        self.published.append(tracks)

    async def subscribe(self, user, media_type) -> None:
        self.subscribed.append((user.uid, media_type))

    async def leave(self) -> None:
        self.left = True
        if self._fail_leave:
            raise RuntimeError("leave exploded")


class DummySdk:
    def __init__(self, *, camera: bool = True, mic: bool = True, client: DummyClient | None = None) -> None:
        self.camera = camera
        self.mic = mic
        self.client = client or DummyClient()
        self.created_with: dict | None = None
        self.combined: tuple[DummyTrack, DummyTrack] | None = None
        self.audio: DummyTrack | None = None

    def create_client(self, *, mode: str, codec: str) -> DummyClient:
        self.created_with = {"mode": mode, "codec": codec}
        return self.client

    async def create_microphone_and_camera_tracks(self):
        if not (self.camera and self.mic):
            raise MediaAccessError("Requested device not found", name="NotFoundError")
        self.combined = (DummyTrack("audio"), DummyTrack("video"))
        return self.combined

    async def create_microphone_audio_track(self):
        if not self.mic:
            raise MediaAccessError("Permission denied", name="NotAllowedError")
        self.audio = DummyTrack("audio")
        return self.audio


class DummyStream:
    def __init__(self) -> None:
        self.tracks = [DummyTrack("audio"), DummyTrack("video")]

    def get_tracks(self):
        return self.tracks


class DummyDevices:
    def __init__(self, sdk: DummySdk, error: Exception | None = None) -> None:
        self.sdk = sdk
        self.error = error
        self.streams: list[DummyStream] = []
        self.gate: asyncio.Event | None = None

    async def get_user_media(self, *, video: bool, audio: bool):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if not (self.sdk.camera and self.sdk.mic):
            raise MediaAccessError("Permission denied", name="NotAllowedError")
        stream = DummyStream()
        self.streams.append(stream)
        return stream


class DummyTokens:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.requests: list[str] = []
        self.gate: asyncio.Event | None = None

    async def fetch(self, channel_name: str, uid: int | None = None) -> TokenGrant:
        self.requests.append(channel_name)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return TokenGrant(token="tok", uid=42, app_id="app")


def _controller(sdk: DummySdk, tokens: DummyTokens | None = None, *, user_agent: str = "", devices=None):
    env = BrowserEnvironment(
        user_agent=user_agent,
        page_url="http://localhost:3000/?room=care-ab12cd",
        media_devices=devices if devices is not None else DummyDevices(sdk),
    )
    controller = CallSessionController(sdk, tokens or DummyTokens(), environment=env)
    controller.select_room(RoomRouter().route(env.page_url))
    return controller


def _remote(uid: int):
    return SimpleNamespace(uid=uid, audio_track=DummyTrack("audio"), video_track=DummyTrack("video"))


@pytest.mark.asyncio
async def test_join_full_tier_publishes_both_tracks():
    sdk = DummySdk()
    controller = _controller(sdk)

    assert await controller.join() is True

    view = controller.view
    assert controller.state is CallState.JOINED
    assert controller.tier is MediaTier.FULL
    assert sdk.created_with == {"mode": "rtc", "codec": "vp8"}
    assert sdk.client.joined_with == ("app", "care-ab12cd", "tok", 42)
    assert sdk.client.published == [list(sdk.combined)]
    assert view.status == "Joined"
    assert view.media_controls_visible and view.camera_toggle_visible and view.mic_toggle_visible
    assert not view.request_permissions_visible
    assert view.leave_visible and not view.join_visible
    assert sdk.combined[1].played_into == [view.local_surface]
    assert all(track.stopped for track in controller.environment.media_devices.streams[0].tracks)


@pytest.mark.asyncio
async def test_join_audio_only_tier_hides_camera_toggle():
    sdk = DummySdk(camera=False)
    controller = _controller(sdk)

    assert await controller.join() is True

    assert controller.tier is MediaTier.AUDIO_ONLY
    assert sdk.client.published == [sdk.audio]
    assert controller.view.status == "Joined (audio only)"
    assert not controller.view.camera_toggle_visible
    assert controller.view.mic_toggle_visible
    assert not controller.view.request_permissions_visible


@pytest.mark.asyncio
async def test_join_view_only_tier_offers_permission_request():
    sdk = DummySdk(camera=False, mic=False)
    controller = _controller(sdk)

    assert await controller.join() is True

    view = controller.view
    assert controller.state is CallState.JOINED
    assert controller.tier is MediaTier.VIEW_ONLY
    assert sdk.client.published == []
    assert view.status == "Joined (view only)"
    assert not view.camera_toggle_visible and not view.mic_toggle_visible
    assert view.request_permissions_visible


@pytest.mark.asyncio
async def test_view_only_on_mobile_adds_guidance():
    sdk = DummySdk(camera=False, mic=False)
    controller = _controller(sdk, user_agent=IPHONE_UA)

    await controller.join()

    assert controller.view.status == VIEW_ONLY_MOBILE_TEXT


@pytest.mark.asyncio
async def test_missing_capture_api_still_joins_audio_only():
    sdk = DummySdk()
    controller = _controller(sdk)
    controller.environment.media_devices = None

    assert await controller.join() is True

    assert controller.tier is MediaTier.AUDIO_ONLY


@pytest.mark.asyncio
async def test_join_without_room_is_noop():
    sdk = DummySdk()
    tokens = DummyTokens()
    controller = CallSessionController(sdk, tokens)

    assert await controller.join() is False
    assert tokens.requests == []
    assert controller.state is CallState.IDLE


@pytest.mark.asyncio
async def test_second_join_while_joined_is_rejected():
    sdk = DummySdk()
    tokens = DummyTokens()
    controller = _controller(sdk, tokens)

    await controller.join()
    assert await controller.join() is False

    assert tokens.requests == ["care-ab12cd"]


@pytest.mark.asyncio
async def test_concurrent_join_while_joining_is_rejected():
    sdk = DummySdk()
    tokens = DummyTokens()
    tokens.gate = asyncio.Event()
    controller = _controller(sdk, tokens)

    first = asyncio.create_task(controller.join())
    await asyncio.sleep(0)
    assert controller.state is CallState.JOINING
    assert await controller.join() is False

    tokens.gate.set()
    assert await first is True
    assert tokens.requests == ["care-ab12cd"]


@pytest.mark.asyncio
async def test_token_failure_surfaces_message_and_returns_idle():
    sdk = DummySdk()
    controller = _controller(sdk, DummyTokens(TokenFetchError("channelName is required")))

    assert await controller.join() is False

    assert controller.state is CallState.IDLE
    assert controller.session is None
    assert controller.view.status == "channelName is required"
    assert controller.last_error == "channelName is required"
    assert controller.view.join_visible and controller.view.join_enabled
    assert sdk.created_with is None


@pytest.mark.asyncio
async def test_signaling_join_failure_tears_down_client():
    client = DummyClient(fail_join=RuntimeError("invalid token"))
    sdk = DummySdk(client=client)
    controller = _controller(sdk)

    assert await controller.join() is False

    assert controller.state is CallState.IDLE
    assert controller.view.status == "invalid token"
    assert client.listeners == {}


@pytest.mark.asyncio
async def test_not_implemented_failure_gets_browser_guidance():
    client = DummyClient(fail_join=RuntimeError("getUserMedia not implemented"))
    sdk = DummySdk(client=client)
    controller = _controller(sdk)
    controller.environment.user_agent = "Mozilla/5.0 Edg/120.0"
    controller.environment.page_url = "http://192.168.1.20:3000/?room=care-ab12cd"

    await controller.join()

    assert controller.view.status.startswith("Microsoft Edge requires HTTPS")


@pytest.mark.asyncio
async def test_remote_events_mount_play_and_unmount():
    sdk = DummySdk()
    controller = _controller(sdk)
    await controller.join()
    alice = _remote(7)

    sdk.client.emit("user-joined", alice)
    sdk.client.emit("user-published", alice, "video")
    sdk.client.emit("user-published", alice, "video")
    sdk.client.emit("user-published", alice, "audio")
    await controller.flush_events()

    surface = controller.view.remote_surfaces[7]
    assert list(controller.view.remote_surfaces) == [7]
    assert alice.video_track.played_into == [surface]
    assert alice.audio_track.played_into == [None]
    assert sdk.client.subscribed == [(7, "video"), (7, "video"), (7, "audio")]

    sdk.client.emit("user-unpublished", alice, "video")
    sdk.client.emit("user-unpublished", alice, "audio")
    await controller.flush_events()

    assert controller.view.remote_surfaces == {}


@pytest.mark.asyncio
async def test_failing_event_does_not_stop_channel():
    sdk = DummySdk()
    controller = _controller(sdk)
    await controller.join()

    async def broken_subscribe(user, media_type):
        if user.uid == 1:
            raise RuntimeError("subscribe failed")
        sdk.client.subscribed.append((user.uid, media_type))

    sdk.client.subscribe = broken_subscribe
    sdk.client.emit("user-published", _remote(1), "video")
    sdk.client.emit("user-published", _remote(2), "video")
    await controller.flush_events()

    assert list(controller.view.remote_surfaces) == [2]


@pytest.mark.asyncio
async def test_toggles_flip_tracks_and_labels():
    sdk = DummySdk()
    controller = _controller(sdk)
    await controller.join()
    audio, video = sdk.combined

    assert await controller.toggle_camera() is True
    assert video.enabled is False
    assert controller.view.camera_label == "Camera On"

    assert await controller.toggle_mic() is True
    assert audio.enabled is False
    assert controller.view.mic_label == "Mic On"

    await controller.toggle_camera()
    assert video.enabled is True
    assert controller.view.camera_label == "Camera Off"


@pytest.mark.asyncio
async def test_camera_toggle_is_noop_without_camera():
    sdk = DummySdk(camera=False)
    controller = _controller(sdk)
    await controller.join()

    assert await controller.toggle_camera() is False
    assert controller.view.camera_label == "Camera Off"
    assert await controller.toggle_mic() is True


@pytest.mark.asyncio
async def test_leave_when_idle_is_noop():
    sdk = DummySdk()
    controller = _controller(sdk)
    controller.view.status = "untouched"

    await controller.leave()

    assert controller.state is CallState.IDLE
    assert controller.view.status == "untouched"


@pytest.mark.asyncio
async def test_leave_releases_everything_even_when_steps_fail():
    client = DummyClient(fail_leave=True)
    sdk = DummySdk(client=client)
    controller = _controller(sdk)
    await controller.join()
    audio, video = sdk.combined
    audio._fail_stop = True
    client.emit("user-published", _remote(9), "video")
    await controller.flush_events()
    await controller.toggle_mic()

    await controller.leave()

    view = controller.view
    assert controller.state is CallState.IDLE
    assert controller.session is None
    assert audio.closed and video.stopped and video.closed
    assert client.left
    assert client.listeners == {}
    assert view.remote_surfaces == {} and view.local_surface is None
    assert view.join_visible and view.join_enabled and not view.leave_visible
    assert not view.media_controls_visible
    assert view.mic_label == "Mic Off"
    assert controller.controls.mic_enabled is True

    await controller.leave()
    assert controller.state is CallState.IDLE


@pytest.mark.asyncio
async def test_events_after_leave_are_ignored():
    sdk = DummySdk()
    controller = _controller(sdk)
    await controller.join()
    client = sdk.client
    await controller.leave()

    client.emit("user-published", _remote(3), "video")

    assert controller.view.remote_surfaces == {}


@pytest.mark.asyncio
async def test_leave_during_join_abandons_it():
    sdk = DummySdk()
    tokens = DummyTokens()
    tokens.gate = asyncio.Event()
    controller = _controller(sdk, tokens)

    pending = asyncio.create_task(controller.join())
    await asyncio.sleep(0)
    await controller.leave()
    assert controller.state is CallState.JOINING

    tokens.gate.set()
    assert await pending is False

    assert controller.state is CallState.IDLE
    assert controller.session is None
    assert sdk.created_with is None
    assert controller.view.join_visible and not controller.view.leave_visible


@pytest.mark.asyncio
async def test_rejoin_after_leave_fetches_fresh_token():
    sdk = DummySdk()
    tokens = DummyTokens()
    controller = _controller(sdk, tokens)

    await controller.join()
    await controller.leave()
    sdk.client = DummyClient()
    assert await controller.join() is True

    assert tokens.requests == ["care-ab12cd", "care-ab12cd"]


@pytest.mark.asyncio
async def test_request_permissions_promotes_view_only_to_full():
    sdk = DummySdk(camera=False, mic=False)
    controller = _controller(sdk)
    await controller.join()

    sdk.camera = sdk.mic = True
    assert await controller.request_permissions() is True

    view = controller.view
    assert controller.tier is MediaTier.FULL
    assert controller.state is CallState.JOINED
    assert sdk.client.published == [list(sdk.combined)]
    assert view.status == "Joined"
    assert view.camera_toggle_visible and view.mic_toggle_visible
    assert not view.request_permissions_visible
    assert await controller.toggle_camera() is True


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (MediaAccessError("denied", name="NotAllowedError"), "Permission denied."),
        (MediaAccessError("none", name="NotFoundError"), "No camera/microphone found."),
        (MediaAccessError("busy", name="NotReadableError"), "Camera/microphone is already in use"),
        (RuntimeError("boom"), "Failed to access camera/microphone: boom"),
    ],
)
async def test_request_permissions_failure_keeps_view_only(error, expected):
    sdk = DummySdk(camera=False, mic=False)
    devices = DummyDevices(sdk)
    controller = _controller(sdk, devices=devices)
    await controller.join()

    devices.error = error
    assert await controller.request_permissions() is False

    assert controller.tier is MediaTier.VIEW_ONLY
    assert controller.view.status.startswith(expected)
    assert controller.view.request_permissions_visible


@pytest.mark.asyncio
async def test_request_permissions_only_from_view_only():
    sdk = DummySdk()
    controller = _controller(sdk)

    assert await controller.request_permissions() is False
    await controller.join()
    assert await controller.request_permissions() is False
    assert sdk.client.published == [list(sdk.combined)]


@pytest.mark.asyncio
async def test_overlapping_permission_requests_publish_once():
    sdk = DummySdk(camera=False, mic=False)
    devices = DummyDevices(sdk)
    controller = _controller(sdk, devices=devices)
    await controller.join()

    sdk.camera = sdk.mic = True
    devices.gate = asyncio.Event()
    first = asyncio.create_task(controller.request_permissions())
    await asyncio.sleep(0)
    assert await controller.request_permissions() is False

    devices.gate.set()
    assert await first is True
    assert len(sdk.client.published) == 1
    audio, video = sdk.combined

    await controller.leave()
    assert audio.closed and video.closed


@pytest.mark.asyncio
async def test_leave_during_signaling_join_leaves_channel():
    client = DummyClient()
    client.gate = asyncio.Event()
    sdk = DummySdk(client=client)
    controller = _controller(sdk)

    pending = asyncio.create_task(controller.join())
    while sdk.created_with is None:
        await asyncio.sleep(0)
    await controller.leave()
    assert controller.state is CallState.JOINING

    client.gate.set()
    assert await pending is False

    view = controller.view
    assert client.left
    assert client.listeners == {}
    assert client.published == []
    assert controller.state is CallState.IDLE
    assert controller.session is None
    assert view.join_visible and view.join_enabled and not view.leave_visible


@pytest.mark.asyncio
async def test_leave_during_media_tiers_releases_tracks():
    sdk = DummySdk()
    devices = DummyDevices(sdk)
    devices.gate = asyncio.Event()
    controller = _controller(sdk, devices=devices)

    pending = asyncio.create_task(controller.join())
    while sdk.client.joined_with is None:
        await asyncio.sleep(0)
    await controller.leave()
    assert controller.state is CallState.JOINING

    devices.gate.set()
    assert await pending is False

    audio, video = sdk.combined
    view = controller.view
    assert audio.stopped and audio.closed and video.stopped and video.closed
    assert sdk.client.left
    assert controller.state is CallState.IDLE
    assert controller.session is None
    assert view.local_surface is None
    assert not view.media_controls_visible
    assert view.join_visible and not view.leave_visible


@pytest.mark.asyncio
async def test_leave_while_permission_prompt_open_releases_late_tracks():
    sdk = DummySdk(camera=False, mic=False)
    devices = DummyDevices(sdk)
    controller = _controller(sdk, devices=devices)
    await controller.join()

    sdk.camera = sdk.mic = True
    devices.gate = asyncio.Event()
    pending = asyncio.create_task(controller.request_permissions())
    await asyncio.sleep(0)
    await controller.leave()
    assert controller.state is CallState.IDLE

    devices.gate.set()
    assert await pending is False

    audio, video = sdk.combined
    view = controller.view
    assert audio.stopped and audio.closed and video.stopped and video.closed
    assert controller.state is CallState.IDLE
    assert controller.session is None
    assert view.local_surface is None
    assert not view.media_controls_visible
    assert view.join_visible and not view.leave_visible
