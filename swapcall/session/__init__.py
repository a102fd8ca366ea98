"""통화 세션 모듈.

Modules:
    state: 세션 엔티티, 상태/역할 열거형, 전이 테이블
    retry: 재연결 백오프 정책
    scheduler: 타이머/시계 추상화
    machine: 통화 상태 머신
    facade: 애플리케이션용 공개 인터페이스
"""

from .facade import CallSessionFacade
from .machine import CallSessionMachine
from .retry import RetryPolicy
from .scheduler import LoopScheduler, Scheduler
from .state import (
    TERMINAL_STATES,
    TRANSITIONS,
    CallSession,
    CallStatus,
    Role,
    SessionConfig,
    can_transition,
    format_duration,
)

__all__ = [
    "CallSessionFacade",
    "CallSessionMachine",
    "RetryPolicy",
    "Scheduler",
    "LoopScheduler",
    "CallSession",
    "CallStatus",
    "Role",
    "SessionConfig",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "can_transition",
    "format_duration",
]
