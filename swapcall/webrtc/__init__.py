"""WebRTC 피어 연결 모듈.

Modules:
    peer_link: 단일 피어 연결 래퍼
    candidates: candidate/description 변환 및 대기 큐
    config: ICE 서버 설정
"""

from .candidates import PendingCandidateQueue, candidate_from_payload, candidate_to_payload
from .config import ICEServerConfig, ice_config
from .peer_link import NegotiationResult, PeerLink

__all__ = [
    "PeerLink",
    "NegotiationResult",
    "PendingCandidateQueue",
    "candidate_from_payload",
    "candidate_to_payload",
    "ICEServerConfig",
    "ice_config",
]
