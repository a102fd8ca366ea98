"""1:1 통화 룸 관리 모듈.

시그널링 릴레이가 사용하는 룸/참가자 상태를 관리합니다. 한 룸에는 최대
두 명만 들어올 수 있으며, 먼저 들어온 참가자가 caller, 두 번째 참가자가
answerer 역할을 받습니다.

Architecture:
    - rooms: Dict[str, Dict[str, Participant]] - 룸 ID → 참가자 맵
    - peer_to_room: Dict[str, str] - 연결 ID → 룸 ID (빠른 조회용)

Examples:
    >>> manager = RoomManager()
    >>> caller = manager.join_room("room-1", "conn-a", "user-1", "Alice", ws1)
    >>> caller.role
    'caller'
    >>> manager.join_room("room-1", "conn-b", "user-2", "Bob", ws2).role
    'answerer'
    >>> manager.get_partner("conn-a").user_name
    'Bob'
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_PARTICIPANTS = 2


class RoomFullError(Exception):
    """정원이 찬 룸에 참가하려고 했습니다."""

    def __init__(self, room_id: str):
        self.room_id = room_id
        super().__init__(f"룸 '{room_id}'이(가) 가득 찼습니다")


@dataclass
class Participant:
    """룸에 참가한 연결 하나.

    Attributes:
        peer_id (str): 릴레이가 부여한 연결 ID
        user_id (str): 클라이언트가 보낸 사용자 ID
        user_name (str): 상대에게 표시될 이름
        websocket: 참가자의 WebSocket 연결 (send_json 지원)
        role (str): "caller" 또는 "answerer"
    """

    peer_id: str
    user_id: str
    user_name: str
    websocket: Any
    role: str


class RoomManager:
    """룸과 참가자를 관리합니다.

    Note:
        - 룸은 첫 참가 시 자동 생성되고 비면 자동 삭제됨
        - 같은 연결이 같은 룸에 다시 join하면 기존 역할을 유지함
        - asyncio 단일 스레드 환경 기준
    """

    def __init__(self):
        # room_id -> {peer_id: Participant}
        self.rooms: Dict[str, Dict[str, Participant]] = {}
        # peer_id -> room_id
        self.peer_to_room: Dict[str, str] = {}

    def join_room(
        self,
        room_id: str,
        peer_id: str,
        user_id: str,
        user_name: str,
        websocket,
    ) -> Participant:
        """참가자를 룸에 추가하고 역할을 배정합니다.

        Raises:
            RoomFullError: 이미 다른 참가자 두 명이 있는 경우
        """
        room = self.rooms.get(room_id, {})
        existing = room.get(peer_id)
        if existing is not None:
            existing.user_id = user_id
            existing.user_name = user_name
            return existing

        if len(room) >= MAX_PARTICIPANTS:
            logger.warning(f"[Relay] 룸 '{room_id}' 정원 초과 - {peer_id} 거부")
            raise RoomFullError(room_id)

        # 남아 있는 참가자와 겹치지 않는 역할
        taken = {participant.role for participant in room.values()}
        role = "caller" if "caller" not in taken else "answerer"

        participant = Participant(
            peer_id=peer_id,
            user_id=user_id,
            user_name=user_name,
            websocket=websocket,
            role=role,
        )
        self.rooms.setdefault(room_id, {})[peer_id] = participant
        self.peer_to_room[peer_id] = room_id
        logger.info(
            f"[Relay] '{user_name}' ({peer_id}) 룸 '{room_id}' 참가 ({role}). "
            f"참가자 {len(self.rooms[room_id])}명"
        )
        return participant

    def leave_room(self, peer_id: str) -> Optional[str]:
        """참가자를 룸에서 제거하고 룸 ID를 반환합니다. 참가 중이 아니면 None."""
        room_id = self.peer_to_room.pop(peer_id, None)
        if room_id is None:
            return None

        room = self.rooms.get(room_id, {})
        participant = room.pop(peer_id, None)
        if not room:
            self.rooms.pop(room_id, None)
            logger.info(f"[Relay] 룸 '{room_id}' 삭제 (빈 룸)")
        elif participant is not None:
            logger.info(f"[Relay] '{participant.user_name}' ({peer_id}) 룸 '{room_id}' 퇴장")
        return room_id

    def get_room_id(self, peer_id: str) -> Optional[str]:
        return self.peer_to_room.get(peer_id)

    def get_participants(self, room_id: str) -> List[Participant]:
        return list(self.rooms.get(room_id, {}).values())

    def get_partner(self, peer_id: str) -> Optional[Participant]:
        """같은 룸의 다른 참가자를 반환합니다."""
        room_id = self.peer_to_room.get(peer_id)
        if room_id is None:
            return None
        for participant in self.rooms.get(room_id, {}).values():
            if participant.peer_id != peer_id:
                return participant
        return None

    def get_room_count(self, room_id: str) -> int:
        return len(self.rooms.get(room_id, {}))

    def get_room_list(self) -> List[dict]:
        """모든 룸의 요약 정보.

        Returns:
            List[dict]: room_id, participant_count, participants(user_name, role)
        """
        return [
            {
                "room_id": room_id,
                "participant_count": len(room),
                "participants": [
                    {"user_name": participant.user_name, "role": participant.role}
                    for participant in room.values()
                ],
            }
            for room_id, room in self.rooms.items()
        ]
