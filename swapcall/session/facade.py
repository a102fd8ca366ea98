"""통화 세션 Facade.

애플리케이션이 사용하는 공개 수명 주기 객체입니다. 상태 머신과 그 협력자
(미디어, 시그널링, 피어 링크)를 조립하고, 통화 종료 시 매칭 완료 API를
한 번 호출합니다.

Examples:
    >>> call = CallSessionFacade(match_client=MatchApiClient(...))
    >>> call.on_status_change(lambda status: print(status.value))
    >>> await call.start(SessionConfig(room_id="r1", role=Role.CALLER, user_id="u1", match_id="m1"))
    >>> call.toggle_mute()
    True
    >>> call.duration_label
    '00:42'
    >>> await call.end(rating=5)
"""

import logging
from typing import Callable, List, Optional

from ..config import CallSettings, get_call_settings
from ..media.acquisition import MediaAcquisitionUnit
from ..shared.errors import CallError, MatchApiError
from ..signaling.channel import SignalingChannel
from ..webrtc.peer_link import PeerLink
from .machine import CallSessionMachine
from .retry import RetryPolicy
from .scheduler import LoopScheduler, Scheduler
from .state import CallSession, CallStatus, SessionConfig, format_duration

logger = logging.getLogger(__name__)

RATING_RANGE = (1, 5)


class CallSessionFacade:
    """통화 한 건의 외부 인터페이스.

    start, toggle_mute, toggle_video, reconnect, end와 상태/통화 시간/상대 정보
    조회를 제공합니다. end()는 start 전을 포함한 모든 상태에서 안전합니다.

    Attributes:
        media (MediaAcquisitionUnit): 로컬 미디어 유닛 (start 전에도 존재)
        machine (Optional[CallSessionMachine]): start 이후 생성되는 상태 머신
    """

    def __init__(
        self,
        settings: Optional[CallSettings] = None,
        *,
        media: Optional[MediaAcquisitionUnit] = None,
        signaling: Optional[SignalingChannel] = None,
        peer_link: Optional[PeerLink] = None,
        scheduler: Optional[Scheduler] = None,
        retry_policy: Optional[RetryPolicy] = None,
        match_client=None,
    ):
        self._settings = settings or get_call_settings()
        self.media = media or MediaAcquisitionUnit(self._settings)
        self._signaling = signaling
        self._peer_link = peer_link
        self._scheduler = scheduler or LoopScheduler()
        self._retry_policy = retry_policy or RetryPolicy.from_settings(self._settings)
        self._match_client = match_client

        self.machine: Optional[CallSessionMachine] = None
        self._ended_before_start = False
        self._rating: Optional[int] = None
        self._observers = {
            "status": [], "partner": [], "error": [], "remote_track": [], "partner_left": [],
        }

    # ============================================================
    # 조회
    # ============================================================

    @property
    def status(self) -> CallStatus:
        if self.machine is not None:
            return self.machine.status
        return CallStatus.ENDED if self._ended_before_start else CallStatus.INIT

    @property
    def session(self) -> Optional[CallSession]:
        return self.machine.session if self.machine else None

    @property
    def duration(self) -> float:
        """Connected 이후 경과 시간 (초)."""
        return self.machine.duration if self.machine else 0.0

    @property
    def duration_label(self) -> str:
        return format_duration(self.duration)

    @property
    def partner_identity(self) -> Optional[str]:
        return self.machine.session.partner_identity if self.machine else None

    @property
    def last_error(self) -> Optional[CallError]:
        return self.machine.last_error if self.machine else None

    @property
    def muted(self) -> bool:
        return self.media.muted

    @property
    def video_enabled(self) -> bool:
        return self.media.video_enabled

    @property
    def rating(self) -> Optional[int]:
        return self._rating

    @property
    def local_tracks(self) -> List:
        track_set = self.media.track_set
        return track_set.tracks() if track_set else []

    @property
    def remote_tracks(self) -> List:
        if self.machine is None or self.machine.peer_link is None:
            return []
        return list(self.machine.peer_link.remote_tracks)

    # ============================================================
    # 관찰자
    # ============================================================

    def on_status_change(self, callback: Callable[[CallStatus], None]):
        self._subscribe("status", callback)

    def on_partner_identity(self, callback: Callable[[str], None]):
        self._subscribe("partner", callback)

    def on_error(self, callback: Callable[[CallError], None]):
        """MediaError / RetryExhausted 발생 시 호출됩니다."""
        self._subscribe("error", callback)

    def on_remote_track(self, callback: Callable):
        self._subscribe("remote_track", callback)

    def on_partner_left(self, callback: Callable[[], None]):
        self._subscribe("partner_left", callback)

    def _subscribe(self, event: str, callback: Callable):
        self._observers[event].append(callback)
        if self.machine is not None:
            self.machine.subscribe(event, callback)

    # ============================================================
    # 수명 주기
    # ============================================================

    async def start(self, config: SessionConfig):
        """세션을 만들고 미디어 획득부터 룸 참가까지 진행합니다.

        Raises:
            RuntimeError: 이미 시작했거나 종료된 Facade
        """
        if self.machine is not None or self._ended_before_start:
            raise RuntimeError("CallSessionFacade는 한 번만 시작할 수 있습니다")

        signaling = self._signaling or SignalingChannel(
            config.signaling_url or self._settings.SIGNALING_URL,
            connect_timeout=self._settings.SIGNALING_CONNECT_TIMEOUT,
            access_token=self._settings.ACCESS_TOKEN,
        )
        self.machine = CallSessionMachine(
            config,
            media=self.media,
            signaling=signaling,
            peer_link=self._peer_link or PeerLink(),
            retry_policy=self._retry_policy,
            scheduler=self._scheduler,
            settings=self._settings,
            on_complete=self._complete_match,
        )
        for event, callbacks in self._observers.items():
            for callback in callbacks:
                self.machine.subscribe(event, callback)

        logger.info(f"[Call] 세션 시작: room={config.room_id}, role={config.role.value}")
        await self.machine.start()

    def toggle_mute(self) -> bool:
        """음소거를 토글하고 새 음소거 상태를 반환합니다. 트랙 획득 전에도 안전합니다."""
        muted = not self.media.muted
        self.media.set_muted(muted)
        return muted

    def toggle_video(self) -> bool:
        """비디오를 토글하고 새 활성화 상태를 반환합니다."""
        enabled = not self.media.video_enabled
        self.media.set_video_enabled(enabled)
        return enabled

    async def switch_device(self, kind: str):
        """kind("audio"/"video") 장치를 다시 열고 송신 트랙을 교체합니다."""
        return await self.media.replace(kind)

    async def reconnect(self) -> bool:
        if self.machine is None:
            logger.warning("[Call] 시작 전에는 재연결할 수 없습니다")
            return False
        return await self.machine.reconnect()

    def set_rating(self, rating: int):
        """상대 평가 점수(1~5)를 설정합니다.

        Raises:
            ValueError: 범위를 벗어난 점수
        """
        low, high = RATING_RANGE
        if isinstance(rating, bool) or not isinstance(rating, int) or not low <= rating <= high:
            raise ValueError(f"평가 점수는 {low}~{high} 사이 정수여야 합니다: {rating!r}")
        self._rating = rating

    async def end(self, rating: Optional[int] = None):
        """통화를 종료합니다. 어느 상태에서든 안전하며 완료 API는 최대 한 번 호출됩니다.

        Note:
            범위를 벗어난 rating은 기록만 하고 버립니다. 정리는 항상 수행됩니다.
        """
        if rating is not None:
            try:
                self.set_rating(rating)
            except ValueError as e:
                logger.warning(f"[Call] 잘못된 평가 점수 무시: {e}")
        if self.machine is None:
            self._ended_before_start = True
            self.media.release()
            logger.info("[Call] 시작 전 종료")
            return
        await self.machine.end()

    async def _complete_match(self, session: CallSession):
        if not session.match_id:
            logger.info("[Call] matchId 없음 - 완료 처리 생략")
            return
        if self._rating is None:
            logger.info("[Call] 평가 점수 없음 - 완료 처리 생략")
            return
        if self._match_client is None:
            logger.warning("[Call] 매칭 API 클라이언트 없음 - 완료 처리 생략")
            return
        try:
            await self._match_client.complete_match(session.match_id, self._rating)
            logger.info(f"[Call] 매칭 완료 처리: match={session.match_id}, rating={self._rating}")
        except MatchApiError as e:
            logger.error(f"[Call] 매칭 완료 처리 실패: {e}")
