"""시그널링 릴레이 클라이언트 모듈."""

from .channel import SignalingChannel

__all__ = ["SignalingChannel"]
