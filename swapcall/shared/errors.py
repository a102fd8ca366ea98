"""통화 세션 오류 분류 모듈.

미디어, 시그널링, 협상, 재시도, 외부 매칭 API 오류를 하나의 계층으로 정의합니다.

Error Taxonomy:
    - MediaError: 장치 권한/부재/점유 등 미디어 획득 실패 (사용자에게 노출)
    - SignalingError: 릴레이 연결 실패 또는 예기치 않은 연결 끊김
    - NegotiationError: description/candidate 적용 실패 (반환값으로만 전달)
    - RetryExhausted: 재연결 시도 횟수 초과 (사용자에게 노출)
    - MatchApiError: 매칭 백엔드 REST 호출 실패

Note:
    MediaError와 RetryExhausted만 Facade 경계를 넘어 사용자에게 전달됩니다.
    나머지는 상태 머신 내부에서 흡수됩니다.
"""

import errno
from enum import Enum
from typing import Optional


class CallError(Exception):
    """통화 세션 오류의 기본 클래스."""


class InvalidTransition(CallError):
    """상태 전이 테이블에 없는 전이를 시도했을 때 발생합니다."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"{current} -> {target} 전이는 허용되지 않습니다")


# ============================================================
# 미디어 오류
# ============================================================

class MediaErrorKind(str, Enum):
    """미디어 획득 실패 유형."""

    PERMISSION_DENIED = "permission_denied"
    DEVICE_NOT_FOUND = "device_not_found"
    DEVICE_BUSY = "device_busy"
    UNKNOWN = "unknown"


_ERRNO_KINDS = {
    errno.EACCES: MediaErrorKind.PERMISSION_DENIED,
    errno.EPERM: MediaErrorKind.PERMISSION_DENIED,
    errno.ENOENT: MediaErrorKind.DEVICE_NOT_FOUND,
    errno.ENODEV: MediaErrorKind.DEVICE_NOT_FOUND,
    errno.ENXIO: MediaErrorKind.DEVICE_NOT_FOUND,
    errno.EBUSY: MediaErrorKind.DEVICE_BUSY,
}

# 브라우저 getUserMedia 오류명 + Python/PyAV 예외 클래스명
_NAME_KINDS = {
    "NotAllowedError": MediaErrorKind.PERMISSION_DENIED,
    "PermissionDeniedError": MediaErrorKind.PERMISSION_DENIED,
    "SecurityError": MediaErrorKind.PERMISSION_DENIED,
    "PermissionError": MediaErrorKind.PERMISSION_DENIED,
    "NotFoundError": MediaErrorKind.DEVICE_NOT_FOUND,
    "DevicesNotFoundError": MediaErrorKind.DEVICE_NOT_FOUND,
    "OverconstrainedError": MediaErrorKind.DEVICE_NOT_FOUND,
    "FileNotFoundError": MediaErrorKind.DEVICE_NOT_FOUND,
    "NotReadableError": MediaErrorKind.DEVICE_BUSY,
    "TrackStartError": MediaErrorKind.DEVICE_BUSY,
    "BlockingIOError": MediaErrorKind.DEVICE_BUSY,
}


class MediaError(CallError):
    """미디어 장치 획득 실패.

    Attributes:
        kind (MediaErrorKind): 실패 유형
    """

    def __init__(self, kind: MediaErrorKind, message: str = ""):
        self.kind = kind
        super().__init__(message or kind.value)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "MediaError":
        """플랫폼 예외를 MediaError로 변환합니다.

        errno가 있으면 errno 기준으로, 없으면 예외 클래스 이름(MRO 포함)으로
        분류합니다. 어느 쪽에도 해당하지 않으면 UNKNOWN입니다.

        Examples:
            >>> MediaError.from_exception(PermissionError(13, "denied")).kind
            <MediaErrorKind.PERMISSION_DENIED: 'permission_denied'>
        """
        if isinstance(exc, MediaError):
            return exc

        kind: Optional[MediaErrorKind] = _ERRNO_KINDS.get(getattr(exc, "errno", None))
        if kind is None:
            for klass in type(exc).__mro__:
                kind = _NAME_KINDS.get(klass.__name__)
                if kind is not None:
                    break

        return cls(kind or MediaErrorKind.UNKNOWN, str(exc) or type(exc).__name__)


# ============================================================
# 시그널링 오류
# ============================================================

class SignalingErrorKind(str, Enum):
    """시그널링 채널 오류 유형."""

    CONNECT_FAILED = "connect_failed"
    DISCONNECTED = "disconnected"
    REJECTED = "rejected"


class SignalingError(CallError):
    """릴레이 서버 연결 관련 오류."""

    def __init__(self, kind: SignalingErrorKind, message: str = ""):
        self.kind = kind
        super().__init__(message or kind.value)


# ============================================================
# 협상 / 재시도 / 외부 API 오류
# ============================================================

class NegotiationError(CallError):
    """description 또는 ICE candidate 적용 실패.

    Peer Link는 이 오류를 raise하지 않고 NegotiationResult에 담아 반환합니다.

    Attributes:
        operation (str): 실패한 작업 이름 (예: "set_remote_description")
    """

    def __init__(self, operation: str, message: str = ""):
        self.operation = operation
        super().__init__(f"{operation}: {message}" if message else operation)


class RetryExhausted(CallError):
    """재연결 시도 횟수를 모두 소진했습니다."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"재연결 {attempts}회 실패")


class MatchApiError(CallError):
    """매칭 백엔드 REST 호출 실패."""

    def __init__(self, status_code: Optional[int], detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"[{status_code}] {detail}" if status_code else detail)
