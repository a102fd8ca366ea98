"""공유 DTO, 오류, 로깅 유틸리티."""

from .dto import (
    MessageType,
    SessionDescription,
    IceCandidatePayload,
    JoinRoom,
    JoinedRoom,
    PartnerJoined,
    PartnerInfo,
    UserLeft,
    WebRTCSignal,
    RequestOffer,
    LeaveRoom,
    ErrorMessage,
    SignalMessage,
    envelope,
    parse_message,
)
from .errors import (
    CallError,
    InvalidTransition,
    MediaError,
    MediaErrorKind,
    SignalingError,
    SignalingErrorKind,
    NegotiationError,
    RetryExhausted,
    MatchApiError,
)
from .logging_config import setup_logging, cleanup_old_logs

__all__ = [
    # DTO
    "MessageType",
    "SessionDescription",
    "IceCandidatePayload",
    "JoinRoom",
    "JoinedRoom",
    "PartnerJoined",
    "PartnerInfo",
    "UserLeft",
    "WebRTCSignal",
    "RequestOffer",
    "LeaveRoom",
    "ErrorMessage",
    "SignalMessage",
    "envelope",
    "parse_message",
    # Errors
    "CallError",
    "InvalidTransition",
    "MediaError",
    "MediaErrorKind",
    "SignalingError",
    "SignalingErrorKind",
    "NegotiationError",
    "RetryExhausted",
    "MatchApiError",
    # Logging
    "setup_logging",
    "cleanup_old_logs",
]
