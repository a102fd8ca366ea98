"""시그널링 릴레이 룸 상태 모듈."""

from .room_manager import MAX_PARTICIPANTS, Participant, RoomFullError, RoomManager

__all__ = ["RoomManager", "Participant", "RoomFullError", "MAX_PARTICIPANTS"]
