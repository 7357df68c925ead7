"""FastAPI application for the care video-call rooms."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response

from .core.config import settings
from .core.log import configure_logging
from .routers import rtc as rtc_router
from .services.rtc import InvalidRequestError, TokenServiceError

logger = logging.getLogger(__name__)

app = FastAPI(title="Care Call API", version="0.1.0")

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

HTML_PAGE = """<!DOCTYPE html>
<html lang=\"en\">
<head>
    <meta charset=\"UTF-8\" />
    <meta name=\"viewport\" content=\"width=device-width, initial-scale=1.0\" />
    <title>Care Call</title>
    <script src=\"https://cdn.tailwindcss.com\"></script>
    <script src=\"https://download.agora.io/sdk/release/AgoraRTC_N-4.20.2.js\"></script>
    <style>.hidden { display: none !important; }</style>
</head>
<body class=\"min-h-screen bg-slate-950 text-slate-100\">
    <main class=\"mx-auto max-w-4xl px-6 py-8\">
        <section id=\"home-view\" class=\"rounded-2xl border border-slate-800 bg-slate-900/60 p-6\">
            <h1 class=\"text-xl font-semibold\">Care Call</h1>
            <button id=\"create-room-btn\" class=\"mt-4 rounded-full bg-emerald-500 px-4 py-2 text-sm font-semibold text-black\">Create room</button>
            <div id=\"share-section\" class=\"hidden mt-4 flex gap-2\">
                <input id=\"room-link\" readonly class=\"flex-1 rounded bg-slate-950 px-3 py-2 text-sm\" />
                <button id=\"copy-link-btn\" class=\"rounded border border-slate-700 px-3 text-sm\">Copy</button>
            </div>
            <div class=\"mt-6 flex gap-2\">
                <input id=\"room-id-input\" placeholder=\"Room id\" class=\"flex-1 rounded bg-slate-950 px-3 py-2 text-sm\" />
                <button id=\"go-room-btn\" class=\"rounded border border-slate-700 px-3 text-sm\">Go</button>
            </div>
        </section>

        <section id=\"room-view\" class=\"hidden rounded-2xl border border-slate-800 bg-slate-900/60 p-6\">
            <h2 id=\"room-title\" class=\"text-xl font-semibold\"></h2>
            <div class=\"mt-4 flex gap-2\">
                <input id=\"room-link-2\" readonly class=\"flex-1 rounded bg-slate-950 px-3 py-2 text-sm\" />
                <button id=\"copy-link-btn-2\" class=\"rounded border border-slate-700 px-3 text-sm\">Copy</button>
            </div>
            <div class=\"mt-4 flex flex-wrap gap-2\">
                <button id=\"join-btn\" class=\"rounded-full bg-emerald-500 px-4 py-2 text-sm font-semibold text-black\">Join</button>
                <button id=\"leave-btn\" class=\"hidden rounded-full bg-rose-500 px-4 py-2 text-sm font-semibold\">Leave</button>
                <span id=\"media-controls\" class=\"hidden flex gap-2\">
                    <button id=\"toggle-camera-btn\" class=\"rounded-full bg-blue-500 px-4 py-2 text-sm\">Camera Off</button>
                    <button id=\"toggle-mic-btn\" class=\"rounded-full bg-blue-500 px-4 py-2 text-sm\">Mic Off</button>
                    <button id=\"request-permissions-btn\" class=\"rounded-full bg-amber-500 px-4 py-2 text-sm text-black\" style=\"display:none\">Enable Camera/Mic</button>
                </span>
            </div>
            <p id=\"status\" class=\"mt-3 text-sm text-slate-400\"></p>
            <div class=\"mt-4 grid gap-4 md:grid-cols-2\">
                <div id=\"local-player\" class=\"aspect-video rounded-xl bg-black\"></div>
                <div id=\"remote-player\" class=\"aspect-video rounded-xl bg-black\"></div>
            </div>
        </section>
    </main>

    <script>
        const $ = (id) => document.getElementById(id);
        const statusEl = $('status');
        const MOBILE_UA = /Android|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini/i;
        const LOCAL_HOSTS = ['localhost', '127.0.0.1'];

        let session = null;
        let currentRoomId = null;
        let cameraEnabled = true;
        let micEnabled = true;

        function setStatus(message) { statusEl.textContent = message; }
        function show(id, visible) { $(id).classList.toggle('hidden', !visible); }
        function display(id, visible) { $(id).style.display = visible ? 'inline-block' : 'none'; }

        function generateRoomId() {
            return 'care-' + Math.random().toString(36).slice(2, 8);
        }

        function buildRoomUrl(roomId) {
            const url = new URL(window.location.href);
            url.searchParams.set('room', roomId);
            return url.toString();
        }

        function ensureGetUserMedia() {
            if (!navigator.mediaDevices) navigator.mediaDevices = {};
            if (navigator.mediaDevices.getUserMedia) return;
            const legacy = navigator.getUserMedia || navigator.webkitGetUserMedia
                || navigator.mozGetUserMedia || navigator.msGetUserMedia;
            if (legacy) {
                navigator.mediaDevices.getUserMedia = (constraints) =>
                    new Promise((resolve, reject) => legacy.call(navigator, constraints, resolve, reject));
            }
        }

        function guidanceFor(error) {
            const message = (error && error.message) || '';
            if (error && error.name === 'NotAllowedError') return 'Permission denied. Please allow camera/mic access in your browser settings and try again.';
            if (error && error.name === 'NotFoundError') return 'No camera/microphone found. Please check your device.';
            if (error && error.name === 'NotReadableError') return 'Camera/microphone is already in use by another application.';
            if (message.includes('not implemented')) {
                if (navigator.userAgent.includes('Edg') && !LOCAL_HOSTS.includes(window.location.hostname)) {
                    return 'Microsoft Edge requires HTTPS for camera/microphone access when using IP addresses. Please use localhost instead.';
                }
                return 'Your browser does not support camera/microphone access. Please use Chrome, Firefox, Safari, or Edge.';
            }
            return null;
        }

        function route() {
            const room = new URLSearchParams(window.location.search).get('room');
            currentRoomId = room || null;
            show('home-view', !room);
            show('room-view', !!room);
            if (room) {
                $('room-title').textContent = `Room: ${room}`;
                $('room-link-2').value = buildRoomUrl(room);
            }
        }

        function apiBase() {
            if (window.location.protocol === 'file:') return 'http://localhost:3000';
            return window.location.origin;
        }

        async function fetchToken(channelName) {
            let res;
            try {
                res = await fetch(`${apiBase()}/api/token`, {
                    method: 'POST',
                    headers: { 'Content-Type': 'application/json' },
                    body: JSON.stringify({ channelName }),
                });
            } catch (_err) {
                throw new Error('Network error: unable to reach token endpoint');
            }
            const body = await res.json().catch(() => null);
            if (!res.ok) throw new Error((body && body.error) || 'Failed to fetch token');
            if (!body || !body.token || !body.appId) throw new Error('Malformed token response');
            return body;
        }

        function playLocal(videoTrack) {
            const container = document.createElement('div');
            container.id = 'local-player-inner';
            container.style.width = '100%';
            container.style.height = '100%';
            $('local-player').replaceChildren(container);
            videoTrack.play(container);
        }

        async function acquireFull() {
            if (!navigator.mediaDevices || !navigator.mediaDevices.getUserMedia) {
                throw new Error('Camera/microphone access is not supported in this browser. Please use a modern browser like Chrome, Firefox, or Safari.');
            }
            const probe = await navigator.mediaDevices.getUserMedia({ video: true, audio: true });
            probe.getTracks().forEach((t) => t.stop());
            const tracks = await AgoraRTC.createMicrophoneAndCameraTracks();
            try {
                await session.client.publish(tracks);
            } catch (err) {
                tracks.forEach((t) => t.close());
                throw err;
            }
            session.tracks = tracks;
            playLocal(tracks[1]);
        }

        function showControls(camera, mic, request) {
            show('media-controls', true);
            display('toggle-camera-btn', camera);
            display('toggle-mic-btn', mic);
            display('request-permissions-btn', request);
        }

        async function onPublished(user, mediaType) {
            await session.client.subscribe(user, mediaType);
            let surface = $(`remote-${user.uid}`);
            if (!surface) {
                surface = document.createElement('div');
                surface.id = `remote-${user.uid}`;
                surface.style.width = '100%';
                surface.style.height = '100%';
                $('remote-player').appendChild(surface);
            }
            if (mediaType === 'video' && user.videoTrack) user.videoTrack.play(surface);
            if (mediaType === 'audio' && user.audioTrack) user.audioTrack.play();
        }

        function onUnpublished(user) {
            const el = $(`remote-${user.uid}`);
            if (el) el.remove();
        }

        const AGORA_SDK_URL = 'https://download.agora.io/sdk/release/AgoraRTC_N-4.20.2.js';

        function loadScript(src) {
            return new Promise((resolve, reject) => {
                const el = document.createElement('script');
                el.src = src;
                el.async = true;
                el.onload = resolve;
                el.onerror = () => reject(new Error('Failed to load ' + src));
                document.head.appendChild(el);
            });
        }

        async function ensureAgoraSDKLoaded() {
            if (window.AgoraRTC) return window.AgoraRTC;
            try {
                await loadScript(AGORA_SDK_URL);
            } catch (err) {
                console.warn('Agora SDK reload failed:', err);
            }
            if (!window.AgoraRTC) throw new Error('Agora SDK failed to load. Check your internet/cdn access.');
            return window.AgoraRTC;
        }

        async function joinRoom() {
            if (!currentRoomId || session) return;
            setStatus('Joining...');
            $('join-btn').disabled = true;
            session = { client: null, tracks: null, audioTrack: null, leaveRequested: false };
            try {
                const { token, uid, appId } = await fetchToken(currentRoomId);
                const rtc = await ensureAgoraSDKLoaded();
                session.client = rtc.createClient({ mode: 'rtc', codec: 'vp8' });
                session.client.on('user-published', onPublished);
                session.client.on('user-unpublished', onUnpublished);
                await session.client.join(appId, currentRoomId, token, uid);
            } catch (err) {
                console.error(err);
                await teardown();
                setStatus(guidanceFor(err) || (err && err.message) || 'Failed to join');
                return;
            }
            try {
                await acquireFull();
                setStatus('Joined');
                showControls(true, true, false);
            } catch (err) {
                console.warn('Camera/mic access failed, trying audio only:', err.message);
                try {
                    session.audioTrack = await AgoraRTC.createMicrophoneAudioTrack();
                    await session.client.publish(session.audioTrack);
                    setStatus('Joined (audio only)');
                    showControls(false, true, false);
                } catch (audioErr) {
                    console.warn('Audio also failed:', audioErr.message);
                    if (session.audioTrack) session.audioTrack.close();
                    session.audioTrack = null;
                    setStatus(MOBILE_UA.test(navigator.userAgent)
                        ? 'Joined (view only). Click \"Enable Camera/Mic\" and allow permissions when prompted.'
                        : 'Joined (view only)');
                    showControls(false, false, true);
                }
            }
            show('leave-btn', true);
            show('join-btn', false);
        }

        async function step(action) {
            try { await action(); } catch (err) { console.warn('Cleanup step failed:', err); }
        }

        async function teardown() {
            const current = session;
            session = null;
            if (current) {
                for (const track of current.tracks || []) await step(() => { track.stop(); track.close(); });
                if (current.audioTrack) await step(() => { current.audioTrack.stop(); current.audioTrack.close(); });
                if (current.client) {
                    await step(() => current.client.leave());
                    await step(() => current.client.removeAllListeners());
                }
            }
            $('local-player').replaceChildren();
            $('remote-player').replaceChildren();
            cameraEnabled = true;
            micEnabled = true;
            $('toggle-camera-btn').textContent = 'Camera Off';
            $('toggle-mic-btn').textContent = 'Mic Off';
            show('join-btn', true);
            $('join-btn').disabled = false;
            show('leave-btn', false);
            display('toggle-camera-btn', true);
            display('toggle-mic-btn', true);
            display('request-permissions-btn', false);
            show('media-controls', false);
        }

        async function leaveRoom() {
            if (!session) return;
            await teardown();
            setStatus('');
        }

        async function toggleCamera() {
            const track = session && session.tracks && session.tracks[1];
            if (!track) return;
            cameraEnabled = !cameraEnabled;
            await track.setEnabled(cameraEnabled);
            $('toggle-camera-btn').textContent = cameraEnabled ? 'Camera Off' : 'Camera On';
        }

        async function toggleMic() {
            const track = session && ((session.tracks && session.tracks[0]) || session.audioTrack);
            if (!track) return;
            micEnabled = !micEnabled;
            await track.setEnabled(micEnabled);
            $('toggle-mic-btn').textContent = micEnabled ? 'Mic Off' : 'Mic On';
        }

        async function requestPermissions() {
            if (!session || session.tracks || session.audioTrack) return;
            setStatus('Requesting permissions...');
            try {
                await acquireFull();
                setStatus('Joined');
                showControls(true, true, false);
            } catch (err) {
                console.error('Permission request failed:', err);
                setStatus(guidanceFor(err) || 'Failed to access camera/microphone: ' + err.message);
            }
        }

        async function copyFrom(inputId, button) {
            if (!$(inputId).value) return;
            await navigator.clipboard.writeText($(inputId).value);
            button.textContent = 'Copied!';
            setTimeout(() => (button.textContent = 'Copy'), 1200);
        }

        $('create-room-btn').addEventListener('click', () => {
            $('room-link').value = buildRoomUrl(generateRoomId());
            show('share-section', true);
        });
        $('copy-link-btn').addEventListener('click', (e) => copyFrom('room-link', e.target));
        $('copy-link-btn-2').addEventListener('click', (e) => copyFrom('room-link-2', e.target));
        $('go-room-btn').addEventListener('click', () => {
            const id = ($('room-id-input').value || '').trim();
            if (id) window.location.search = `?room=${encodeURIComponent(id)}`;
        });
        $('join-btn').addEventListener('click', joinRoom);
        $('leave-btn').addEventListener('click', leaveRoom);
        $('toggle-camera-btn').addEventListener('click', toggleCamera);
        $('toggle-mic-btn').addEventListener('click', toggleMic);
        $('request-permissions-btn').addEventListener('click', requestPermissions);

        window.addEventListener('DOMContentLoaded', () => { ensureGetUserMedia(); route(); });
        window.addEventListener('popstate', route);
    </script>
</body>
</html>
"""


@app.exception_handler(TokenServiceError)
async def token_service_error_handler(_request: Request, exc: TokenServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed bodies as request errors rather than FastAPI's 422."""

    details = [{"loc": list(error.get("loc", ())), "msg": error.get("msg", "")} for error in exc.errors()]
    error = InvalidRequestError(details)
    return JSONResponse(status_code=error.status_code, content=error.to_body())


@app.get("/health", tags=["meta"])
async def health() -> dict[str, bool]:
    """Simple liveness probe."""

    return {"ok": True}


@app.head("/health", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD for uptime monitors that only need the status code."""

    return Response(status_code=200)


app.include_router(rtc_router.router, prefix="/api", tags=["rtc"])


@app.get("/api/{_path:path}", include_in_schema=False)
async def api_not_found(_path: str) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": "Not found"})


@app.api_route("/{_path:path}", methods=["GET", "HEAD"], response_class=HTMLResponse, include_in_schema=False)
async def index(_path: str) -> HTMLResponse:
    """Serve the single-page shell; the client reads ``?room=`` itself."""

    return HTMLResponse(content=HTML_PAGE)


def run() -> None:
    """Start the API under uvicorn."""

    import uvicorn

    configure_logging()
    logger.info("Server listening on http://localhost:%s", settings.port)
    if not settings.rtc_configured:
        logger.warning("AGORA_APP_ID / AGORA_APP_CERTIFICATE not set; /api/token will answer 500")
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
