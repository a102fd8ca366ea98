"""Pytest 공용 fixture와 통화 세션 협력자 fake.

상태 머신은 시그널링 채널, 피어 링크, 미디어 유닛, 스케줄러를 주입받으므로
실제 네트워크/장치/타이머 없이 결정적으로 테스트할 수 있습니다.
"""

import asyncio
import inspect
from typing import Any, Callable, List, Optional

import pytest

from swapcall.config import CallSettings
from swapcall.media.acquisition import MediaTrackSet
from swapcall.session.machine import CallSessionMachine
from swapcall.session.retry import RetryPolicy
from swapcall.session.scheduler import Scheduler
from swapcall.session.state import Role, SessionConfig
from swapcall.shared.dto import (
    IceCandidatePayload,
    RequestOffer,
    SessionDescription,
    WebRTCSignal,
)
from swapcall.shared.errors import NegotiationError
from swapcall.webrtc.peer_link import NegotiationResult

ROOM_ID = "room-1"


async def _maybe_await(result):
    if inspect.isawaitable(result):
        await result


# ============================================================
# Gate
# ============================================================

class Gate:
    """비동기 단계를 중간에 멈춰 두는 장치. entered는 단계 진입 시, open() 후 진행."""

    def __init__(self):
        self.entered = asyncio.Event()
        self._opened = asyncio.Event()

    async def wait(self):
        self.entered.set()
        await self._opened.wait()

    def open(self):
        self._opened.set()


# ============================================================
# Scheduler
# ============================================================

class FakeHandle:
    def __init__(self, when: float, callback: Callable[[], Any]):
        self.when = when
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler(Scheduler):
    """수동으로 시간을 진행시키는 스케줄러."""

    def __init__(self):
        self.time = 0.0
        self.handles: List[FakeHandle] = []

    def now(self) -> float:
        return self.time

    def call_later(self, delay: float, callback: Callable[[], Any]) -> FakeHandle:
        handle = FakeHandle(self.time + delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> List[FakeHandle]:
        return [h for h in self.handles if not h.cancelled and not h.fired]

    async def advance(self, seconds: float):
        """seconds만큼 시간을 진행하며 만기된 콜백을 시각 순서대로 실행합니다."""
        target = self.time + seconds
        while True:
            due = sorted((h for h in self.pending if h.when <= target), key=lambda h: h.when)
            if not due:
                break
            handle = due[0]
            self.time = handle.when
            handle.fired = True
            await _maybe_await(handle.callback())
        self.time = target


# ============================================================
# Signaling Channel
# ============================================================

class FakeSignaling:
    """SignalingChannel과 같은 인터페이스의 인메모리 fake."""

    def __init__(self):
        self.handlers = {}
        self.connected = False
        self.connect_calls: List[Optional[str]] = []
        self.connect_error: Optional[Exception] = None
        self.joins: List[tuple] = []
        self.signals: List[tuple] = []
        self.offer_requests: List[str] = []
        self.leave_calls = 0
        self.disconnect_calls = 0
        self.gate: Optional[Gate] = None

    # 이벤트 등록
    def on_joined(self, cb):
        self.handlers["joined"] = cb

    def on_partner_joined(self, cb):
        self.handlers["partner_joined"] = cb

    def on_partner_info(self, cb):
        self.handlers["partner_info"] = cb

    def on_signal(self, cb):
        self.handlers["signal"] = cb

    def on_partner_left(self, cb):
        self.handlers["partner_left"] = cb

    def on_disconnected(self, cb):
        self.handlers["disconnected"] = cb

    def on_error(self, cb):
        self.handlers["error"] = cb

    # 연결
    async def connect(self, server_url=None, timeout=None):
        self.connect_calls.append(server_url)
        if self.gate is not None:
            await self.gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    async def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False

    # 송신
    async def join(self, room_id, user_id, user_name):
        self.joins.append((room_id, user_id, user_name))
        return True

    async def leave(self):
        self.leave_calls += 1
        return True

    async def send_signal(self, room_id, signal_type, payload):
        self.signals.append((signal_type, payload))
        return True

    async def request_offer(self, room_id):
        self.offer_requests.append(room_id)
        return True

    def sent(self, signal_type: str) -> list:
        return [payload for kind, payload in self.signals if kind == signal_type]

    # 수신 시뮬레이션
    async def fire(self, event: str, *args):
        await _maybe_await(self.handlers[event](*args))

    async def deliver_offer(self, sdp: str = "remote-offer"):
        await self.fire("signal", WebRTCSignal(
            roomId=ROOM_ID, type="offer", offer=SessionDescription(sdp=sdp, type="offer"),
        ))

    async def deliver_answer(self, sdp: str = "remote-answer"):
        await self.fire("signal", WebRTCSignal(
            roomId=ROOM_ID, type="answer", answer=SessionDescription(sdp=sdp, type="answer"),
        ))

    async def deliver_candidate(self, candidate: str = "candidate:1 1 udp 1 10.0.0.1 5000 typ host"):
        await self.fire("signal", WebRTCSignal(
            roomId=ROOM_ID, type="candidate",
            candidate=IceCandidatePayload(candidate=candidate, sdpMid="0", sdpMLineIndex=0),
        ))

    async def deliver_request_offer(self):
        await self.fire("signal", RequestOffer(roomId=ROOM_ID))


# ============================================================
# Peer Link
# ============================================================

class FakePeerLink:
    """PeerLink와 같은 인터페이스의 fake. offer/answer SDP는 순번으로 생성됩니다."""

    def __init__(self):
        self.opened = False
        self.closed = False
        self.restarts = 0
        self.has_remote_description = False
        self.remote_descriptions: List[SessionDescription] = []
        self.candidates: List[IceCandidatePayload] = []
        self.remote_tracks: list = []
        self.added_track_sets: list = []
        self.replaced: List[tuple] = []
        self.fail_next_answer = False
        self.gate: Optional[Gate] = None
        self._offers = 0
        self._answers = 0
        self._callbacks = {}

    def open(self):
        self.opened = True
        return self

    async def restart(self):
        self.restarts += 1
        self.has_remote_description = False
        self.remote_tracks = []

    async def close(self):
        self.closed = True

    def add_tracks(self, track_set):
        self.added_track_sets.append(track_set)

    def replace_track(self, kind, track):
        self.replaced.append((kind, track))
        return True

    async def create_offer_and_set_local(self):
        if self.gate is not None:
            await self.gate.wait()
        self._offers += 1
        return NegotiationResult(description=SessionDescription(sdp=f"offer-{self._offers}", type="offer"))

    async def set_remote_and_create_answer(self, description):
        if self.gate is not None:
            await self.gate.wait()
        self.remote_descriptions.append(description)
        if self.fail_next_answer:
            self.fail_next_answer = False
            return NegotiationResult(error=NegotiationError("set_remote_description", "bad sdp"))
        self.has_remote_description = True
        self._answers += 1
        return NegotiationResult(description=SessionDescription(sdp=f"answer-{self._answers}", type="answer"))

    async def set_remote_description(self, description):
        self.remote_descriptions.append(description)
        self.has_remote_description = True
        return NegotiationResult()

    async def add_ice_candidate(self, payload):
        self.candidates.append(payload)
        return NegotiationResult()

    def on_remote_track(self, cb):
        self._callbacks["track"] = cb

    def on_ice_candidate(self, cb):
        self._callbacks["candidate"] = cb

    def on_connectivity_change(self, cb):
        self._callbacks["connectivity"] = cb

    async def emit_connectivity(self, state: str):
        await _maybe_await(self._callbacks["connectivity"](state))

    async def emit_local_candidate(self, payload: IceCandidatePayload):
        await _maybe_await(self._callbacks["candidate"](payload))

    async def emit_remote_track(self, track):
        self.remote_tracks.append(track)
        await _maybe_await(self._callbacks["track"](track))


# ============================================================
# Media
# ============================================================

class FakeTrack:
    def __init__(self, kind: str):
        self.kind = kind
        self.enabled = True
        self.stopped = False

    def stop(self):
        self.stopped = True


class FakeMedia:
    """MediaAcquisitionUnit과 같은 인터페이스의 fake."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.track_set = None
        self.acquire_calls = 0
        self.release_calls = 0
        self.peer_link = None
        self.muted = False
        self.video_enabled = True
        self.constraints = None
        self.gate: Optional[Gate] = None

    async def acquire(self, constraints=None):
        self.acquire_calls += 1
        self.constraints = constraints
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        self.track_set = MediaTrackSet(audio=FakeTrack("audio"), video=FakeTrack("video"))
        return self.track_set

    def attach_peer_link(self, peer_link):
        self.peer_link = peer_link

    def set_muted(self, muted):
        self.muted = muted

    def set_video_enabled(self, enabled):
        self.video_enabled = enabled

    async def replace(self, kind):
        track = FakeTrack(kind)
        if self.peer_link is not None:
            self.peer_link.replace_track(kind, track)
        return track

    def release(self):
        self.release_calls += 1
        self.track_set = None


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def settings() -> CallSettings:
    return CallSettings(
        SIGNALING_URL="ws://relay.test/ws",
        SIGNALING_CONNECT_TIMEOUT=10.0,
        CONNECTION_TIMEOUT=15.0,
        RETRY_BASE_DELAY=2.0,
        RETRY_GROWTH_FACTOR=1.5,
        RETRY_MAX_DELAY=10.0,
        RETRY_MAX_ATTEMPTS=3,
        ACCESS_TOKEN=None,
    )


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def signaling() -> FakeSignaling:
    return FakeSignaling()


@pytest.fixture
def peer_link() -> FakePeerLink:
    return FakePeerLink()


@pytest.fixture
def media() -> FakeMedia:
    return FakeMedia()


@pytest.fixture
def make_machine(settings, scheduler, signaling, peer_link, media):
    """역할별 상태 머신 팩토리."""

    def factory(role: Role = Role.CALLER, on_complete=None, **config) -> CallSessionMachine:
        session_config = SessionConfig(
            room_id=ROOM_ID,
            role=role,
            user_id=config.pop("user_id", "user-1"),
            user_name=config.pop("user_name", "Alice"),
            match_id=config.pop("match_id", "match-1"),
            **config,
        )
        return CallSessionMachine(
            session_config,
            media=media,
            signaling=signaling,
            peer_link=peer_link,
            retry_policy=RetryPolicy.from_settings(settings),
            scheduler=scheduler,
            settings=settings,
            on_complete=on_complete,
        )

    return factory
