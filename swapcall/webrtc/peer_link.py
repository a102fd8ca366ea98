"""단일 피어 연결 래퍼 모듈.

aiortc RTCPeerConnection 하나를 감싸서 트랙 연결, description 교환,
ICE candidate 버퍼링, 연결 상태 이벤트를 제공합니다.

주요 기능:
    - 로컬 트랙 연결 및 교체 (재협상 없이 sender.replaceTrack)
    - offer/answer 생성 및 local/remote description 설정
    - remote description 이전 candidate 버퍼링 (PendingCandidateQueue)
    - 연결 상태 변화 콜백 (connecting/connected/disconnected/failed/closed)

Failure Semantics:
    description/candidate 적용 실패는 예외가 아니라 NegotiationResult.error로
    반환됩니다. 재시도 여부는 소유자인 상태 머신이 결정합니다.

Note:
    aiortc는 ICE restart를 지원하지 않으므로 restart()는 내부 RTCPeerConnection을
    새로 만들고 로컬 트랙을 다시 연결합니다. 이전 연결의 이벤트는 무시됩니다.

Examples:
    >>> link = PeerLink().open()
    >>> link.add_tracks(track_set)
    >>> result = await link.create_offer_and_set_local()
    >>> if result.ok:
    ...     await channel.send_signal(room_id, "offer", result.description)
    >>> await link.close()
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from aiortc import MediaStreamTrack, RTCConfiguration, RTCPeerConnection, RTCRtpSender

from ..shared.dto import IceCandidatePayload, SessionDescription
from ..shared.errors import NegotiationError
from .candidates import (
    PendingCandidateQueue,
    candidate_from_payload,
    candidate_to_payload,
    description_from_payload,
    description_to_payload,
)
from .config import ice_config

logger = logging.getLogger(__name__)

CONNECTIVITY_STATES = frozenset({"connecting", "connected", "disconnected", "failed", "closed"})


@dataclass
class NegotiationResult:
    """Peer Link 협상 작업 결과.

    Attributes:
        description (Optional[SessionDescription]): 생성된 local description
        error (Optional[NegotiationError]): 실패 시 오류
    """

    description: Optional[SessionDescription] = None
    error: Optional[NegotiationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PeerLink:
    """RTCPeerConnection 하나를 소유하는 피어 링크.

    Attributes:
        pc (Optional[RTCPeerConnection]): 현재 피어 연결
        pending (PendingCandidateQueue): remote description 이전 candidate 대기열
        remote_tracks (List[MediaStreamTrack]): 수신한 원격 트랙
    """

    def __init__(
        self,
        configuration: Optional[RTCConfiguration] = None,
        pc_factory: Optional[Callable[..., Any]] = None,
    ):
        self._configuration = configuration
        self._pc_factory = pc_factory or RTCPeerConnection
        self.pc = None
        self.pending = PendingCandidateQueue()
        self.remote_tracks: List[MediaStreamTrack] = []

        # 미디어 유닛 소유 트랙 참조 (kind -> track)
        self._local_tracks: Dict[str, MediaStreamTrack] = {}
        self._senders: Dict[str, RTCRtpSender] = {}

        self._on_remote_track: Optional[Callable] = None
        self._on_ice_candidate: Optional[Callable] = None
        self._on_connectivity_change: Optional[Callable] = None

        # 현재 pc 세대. 이전 세대 pc의 이벤트는 버림
        self._generation = 0
        self._closed = False
        # 콜백 태스크 참조 (GC 방지)
        self._tasks: Set[asyncio.Task] = set()

    # ============================================================
    # 수명 주기
    # ============================================================

    @property
    def is_open(self) -> bool:
        return self.pc is not None and not self._closed

    @property
    def has_remote_description(self) -> bool:
        return self.pc is not None and self.pc.remoteDescription is not None

    @property
    def local_tracks(self) -> Dict[str, MediaStreamTrack]:
        return dict(self._local_tracks)

    def open(self) -> "PeerLink":
        if self._closed:
            raise RuntimeError("닫힌 PeerLink는 다시 열 수 없습니다")
        if self.pc is None:
            self._create_pc()
        return self

    async def restart(self):
        """내부 피어 연결을 새로 만들고 로컬 트랙을 다시 연결합니다."""
        if self._closed:
            return
        old_pc = self.pc
        self.remote_tracks = []
        self._create_pc()
        logger.info(f"[WebRTC] 피어 연결 재생성 (세대 {self._generation})")
        if old_pc is not None:
            await self._close_pc(old_pc)

    async def close(self):
        """피어 연결을 닫고 모든 트랙 참조를 해제합니다. 여러 번 호출해도 안전합니다."""
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        pc, self.pc = self.pc, None
        self._local_tracks.clear()
        self._senders.clear()
        self.remote_tracks = []
        self.pending.reset()
        if pc is not None:
            await self._close_pc(pc)
        logger.info("[WebRTC] 피어 링크 종료")

    def _create_pc(self):
        self._generation += 1
        generation = self._generation
        configuration = self._configuration or ice_config.build_rtc_configuration()

        pc = self._pc_factory(configuration=configuration)
        self.pc = pc
        self.pending.reset()
        self._senders = {}

        @pc.on("track")
        def on_track(track):
            if generation != self._generation:
                return
            logger.info(f"[WebRTC] 원격 {track.kind} 트랙 수신")
            self.remote_tracks.append(track)
            self._emit(self._on_remote_track, track)

        @pc.on("icecandidate")
        def on_ice_candidate(candidate):
            # aiortc는 candidate를 SDP에 포함하므로 보통 발생하지 않음
            if generation != self._generation or candidate is None:
                return
            self._emit(self._on_ice_candidate, candidate_to_payload(candidate))

        @pc.on("connectionstatechange")
        def on_connection_state_change():
            if generation != self._generation:
                return
            state = pc.connectionState
            logger.info(f"[WebRTC] 연결 상태: {state}")
            if state in CONNECTIVITY_STATES:
                self._emit(self._on_connectivity_change, state)

        for kind, track in self._local_tracks.items():
            self._senders[kind] = pc.addTrack(track)

    async def _close_pc(self, pc):
        try:
            await pc.close()
        except Exception as e:
            logger.warning(f"[WebRTC] 피어 연결 종료 중 오류 (무시): {e}")

    # ============================================================
    # 트랙
    # ============================================================

    def add_tracks(self, track_set):
        """MediaTrackSet의 트랙을 현재 연결에 추가합니다 (참조만 보관)."""
        for track in track_set.tracks():
            self._local_tracks[track.kind] = track
            if self.pc is not None and track.kind not in self._senders:
                self._senders[track.kind] = self.pc.addTrack(track)
                logger.info(f"[WebRTC] 로컬 {track.kind} 트랙 추가")

    def replace_track(self, kind: str, track: MediaStreamTrack) -> bool:
        """kind의 송신 트랙을 재협상 없이 교체합니다.

        Returns:
            bool: 교체할 sender가 있었으면 True
        """
        self._local_tracks[kind] = track
        sender = self._senders.get(kind)
        if sender is None:
            return False
        sender.replaceTrack(track)
        logger.info(f"[WebRTC] {kind} 송신 트랙 교체")
        return True

    # ============================================================
    # 협상
    # ============================================================

    async def create_offer_and_set_local(self) -> NegotiationResult:
        pc = self.pc
        if pc is None:
            return self._failure("create_offer", "피어 연결 없음")
        try:
            offer = await pc.createOffer()
            await pc.setLocalDescription(offer)
        except Exception as e:
            return self._failure("create_offer", e)
        return NegotiationResult(description=description_to_payload(pc.localDescription))

    async def set_remote_and_create_answer(self, description: SessionDescription) -> NegotiationResult:
        result = await self.set_remote_description(description)
        if not result.ok:
            return result
        pc = self.pc
        if pc is None:
            return self._failure("create_answer", "피어 연결 없음")
        try:
            answer = await pc.createAnswer()
            await pc.setLocalDescription(answer)
        except Exception as e:
            return self._failure("create_answer", e)
        return NegotiationResult(description=description_to_payload(pc.localDescription))

    async def set_remote_description(self, description: SessionDescription) -> NegotiationResult:
        """remote description을 설정하고 대기 중인 candidate를 도착 순서대로 적용합니다."""
        pc = self.pc
        if pc is None:
            return self._failure("set_remote_description", "피어 연결 없음")
        try:
            await pc.setRemoteDescription(description_from_payload(description))
        except Exception as e:
            return self._failure("set_remote_description", e)

        for candidate in self.pending.drain():
            await self._apply_candidate(pc, candidate)
        return NegotiationResult()

    async def add_ice_candidate(self, payload: IceCandidatePayload) -> NegotiationResult:
        """candidate를 적용하거나, remote description이 없으면 대기열에 넣습니다."""
        pc = self.pc
        if pc is None:
            return self._failure("add_ice_candidate", "피어 연결 없음")
        if not payload.candidate.strip():
            logger.debug("[WebRTC] end-of-candidates 수신")
            return NegotiationResult()

        try:
            candidate = candidate_from_payload(payload)
        except ValueError as e:
            return self._failure("add_ice_candidate", e)

        if pc.remoteDescription is None:
            self.pending.append(candidate)
            logger.debug(f"[WebRTC] candidate 대기열 추가 (대기 {len(self.pending)}개)")
            return NegotiationResult()
        return await self._apply_candidate(pc, candidate)

    async def _apply_candidate(self, pc, candidate) -> NegotiationResult:
        try:
            await pc.addIceCandidate(candidate)
        except Exception as e:
            return self._failure("add_ice_candidate", e)
        return NegotiationResult()

    def _failure(self, operation: str, cause) -> NegotiationResult:
        error = NegotiationError(operation, str(cause))
        logger.warning(f"[WebRTC] 협상 오류: {error}")
        return NegotiationResult(error=error)

    # ============================================================
    # 이벤트
    # ============================================================

    def on_remote_track(self, callback: Callable[[MediaStreamTrack], Any]):
        self._on_remote_track = callback

    def on_ice_candidate(self, callback: Callable[[IceCandidatePayload], Any]):
        self._on_ice_candidate = callback

    def on_connectivity_change(self, callback: Callable[[str], Any]):
        self._on_connectivity_change = callback

    def _emit(self, callback: Optional[Callable], *args):
        if callback is None:
            return
        try:
            result = callback(*args)
        except Exception as e:
            logger.error(f"[WebRTC] 이벤트 콜백 오류: {e}", exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[WebRTC] 이벤트 콜백 오류: {task.exception()!r}")
