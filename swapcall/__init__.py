"""SwapCall: 매칭된 두 사용자의 1:1 화상 통화 세션 엔진.

미디어 획득, 시그널링 채널, 피어 링크를 통화 세션 상태 머신으로 묶고,
애플리케이션에는 start / toggle_mute / toggle_video / reconnect / end로
구성된 작은 수명 주기(CallSessionFacade)만 노출합니다.

Modules:
    shared: 와이어 DTO, 오류 분류, 로깅 설정
    media: 로컬 카메라/마이크 트랙
    signaling: 릴레이 서버 WebSocket 클라이언트
    webrtc: aiortc 피어 연결 래퍼 및 ICE 설정
    session: 상태 정의, 재시도 정책, 상태 머신, Facade
    matching: 매칭 백엔드 REST 클라이언트
    relay: 시그널링 릴레이 룸 관리
"""

from .config import CallSettings, get_call_settings
from .session import CallSessionFacade, CallStatus, Role, SessionConfig
from .shared.errors import CallError, MediaError, RetryExhausted

__version__ = "0.1.0"

__all__ = [
    "CallSessionFacade",
    "CallStatus",
    "Role",
    "SessionConfig",
    "CallSettings",
    "get_call_settings",
    "CallError",
    "MediaError",
    "RetryExhausted",
]
