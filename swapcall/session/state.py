"""통화 세션 상태 정의.

CallSession 엔티티, 상태/역할 열거형, 명시적 전이 테이블을 정의합니다.
이 모듈은 I/O 없이 순수하게 상태만 다룹니다.

State Flow:
    Init → AcquiringMedia → Joining → (Caller) Negotiating
                                    → (Answerer) WaitingForOffer → Negotiating
    Negotiating → Connected ⇄ Reconnecting → Negotiating / WaitingForOffer
    어느 상태에서든 → Ended, Reconnecting → Failed
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional

from ..shared.errors import InvalidTransition


class CallStatus(str, Enum):
    """통화 세션 상태."""

    INIT = "init"
    ACQUIRING_MEDIA = "acquiring_media"
    JOINING = "joining"
    WAITING_FOR_OFFER = "waiting_for_offer"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ENDED = "ended"
    FAILED = "failed"


class Role(str, Enum):
    """세션 역할. 세션 생성 시 한 번 정해지며 바뀌지 않습니다."""

    CALLER = "caller"
    ANSWERER = "answerer"


TERMINAL_STATES: FrozenSet[CallStatus] = frozenset({CallStatus.ENDED, CallStatus.FAILED})

_S = CallStatus

TRANSITIONS: Dict[CallStatus, FrozenSet[CallStatus]] = {
    _S.INIT: frozenset({_S.ACQUIRING_MEDIA, _S.ENDED}),
    _S.ACQUIRING_MEDIA: frozenset({_S.JOINING, _S.FAILED, _S.ENDED}),
    _S.JOINING: frozenset({_S.NEGOTIATING, _S.WAITING_FOR_OFFER, _S.FAILED, _S.ENDED}),
    _S.WAITING_FOR_OFFER: frozenset({_S.NEGOTIATING, _S.RECONNECTING, _S.ENDED}),
    _S.NEGOTIATING: frozenset({_S.CONNECTED, _S.RECONNECTING, _S.ENDED}),
    # Connected → Negotiating: Answerer가 재연결한 Caller의 새 offer를 받은 경우
    _S.CONNECTED: frozenset({_S.RECONNECTING, _S.NEGOTIATING, _S.ENDED}),
    _S.RECONNECTING: frozenset({
        _S.NEGOTIATING, _S.WAITING_FOR_OFFER, _S.RECONNECTING, _S.FAILED, _S.ENDED,
    }),
    _S.FAILED: frozenset({_S.ENDED}),
    _S.ENDED: frozenset(),
}


def can_transition(current: CallStatus, target: CallStatus) -> bool:
    """전이 테이블에 current → target이 있는지 확인합니다."""
    return target in TRANSITIONS[current]


def format_duration(seconds: float) -> str:
    """경과 시간을 ``MM:SS`` 문자열로 변환합니다.

    Examples:
        >>> format_duration(75.9)
        '01:15'
    """
    minutes, secs = divmod(int(max(seconds, 0)), 60)
    return f"{minutes:02d}:{secs:02d}"


@dataclass
class SessionConfig:
    """Facade.start에 전달되는 세션 설정.

    Attributes:
        room_id (str): 릴레이 룸 ID
        role (Role): 세션 역할 (start_video_session 호출자 = Caller)
        user_id (str): 자신의 사용자 ID
        user_name (str): 상대에게 표시될 이름
        match_id (Optional[str]): 완료 처리에 사용할 매칭 ID
        partner_identity (Optional[str]): 알고 있는 상대 표시 이름
        signaling_url (Optional[str]): 릴레이 주소 (없으면 설정값 사용)
        audio (bool): 오디오 획득 여부
        video (bool): 비디오 획득 여부

    Raises:
        ValueError: audio와 video가 모두 꺼진 설정
    """

    room_id: str
    role: Role
    user_id: str
    user_name: str = "Anonymous"
    match_id: Optional[str] = None
    partner_identity: Optional[str] = None
    signaling_url: Optional[str] = None
    audio: bool = True
    video: bool = True

    def __post_init__(self):
        if not self.audio and not self.video:
            raise ValueError("audio와 video 중 최소 하나는 켜져 있어야 합니다")


_IMMUTABLE_FIELDS = ("room_id", "role")


@dataclass
class CallSession:
    """하나의 통화 시도를 나타내는 엔티티.

    상태 머신만 이 객체를 변경합니다. room_id와 role은 생성 후 바꿀 수 없습니다.

    Attributes:
        room_id (str): 룸 ID
        role (Role): 세션 역할
        match_id (Optional[str]): 외부 매칭 ID
        partner_identity (Optional[str]): 상대 표시 이름
        status (CallStatus): 현재 상태
        retry_count (int): 현재 재연결 에피소드의 시도 횟수
        offer_sent (bool): 현재 협상 라운드에서 offer를 보냈는지 여부
        connected_at (Optional[float]): 최초 Connected 진입 시각
        ended_at (Optional[float]): Ended/Failed 진입 시각
    """

    room_id: str
    role: Role
    match_id: Optional[str] = None
    partner_identity: Optional[str] = None
    status: CallStatus = CallStatus.INIT
    retry_count: int = 0
    offer_sent: bool = False
    started_at: Optional[float] = None
    connected_at: Optional[float] = None
    ended_at: Optional[float] = None
    history: list = field(default_factory=list)

    def __setattr__(self, name, value):
        if name in _IMMUTABLE_FIELDS and name in self.__dict__:
            raise AttributeError(f"{name}은(는) 변경할 수 없습니다")
        super().__setattr__(name, value)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def transition(self, target: CallStatus) -> CallStatus:
        """target 상태로 전이하고 이전 상태를 반환합니다.

        Raises:
            InvalidTransition: 전이 테이블에 없는 전이
        """
        if not can_transition(self.status, target):
            raise InvalidTransition(self.status, target)
        previous = self.status
        self.status = target
        self.history.append(target)
        return previous

    def mark_connected(self, now: float):
        """Connected 진입: 재시도 카운터를 초기화하고 통화 시작 시각을 기록합니다."""
        self.retry_count = 0
        if self.connected_at is None:
            self.connected_at = now

    def mark_finished(self, now: float):
        if self.ended_at is None:
            self.ended_at = now

    def duration(self, now: float) -> float:
        """Connected 이후 경과 시간 (초). 종료 후에는 고정됩니다."""
        if self.connected_at is None:
            return 0.0
        end = self.ended_at if self.ended_at is not None else now
        return max(0.0, end - self.connected_at)
