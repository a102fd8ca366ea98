"""시그널링 릴레이 WebSocket 라우터.

1:1 통화 룸의 참가/퇴장을 관리하고, offer/answer/candidate 및 재-offer 요청을
같은 룸의 상대에게 받은 순서대로 전달합니다. 릴레이는 SDP 내용을 해석하지 않습니다.

메시지 (``{"type": ..., "data": {...}}``):
    수신: join-room, webrtc-signal, request-offer, leave-room
    송신: joined-room, partner-joined, partner-info, user-left, webrtc-signal,
          request-offer, error
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError

from swapcall.relay import Participant, RoomFullError, RoomManager
from swapcall.shared.dto import (
    ErrorMessage,
    JoinedRoom,
    MessageType,
    PartnerInfo,
    PartnerJoined,
    UserLeft,
    envelope,
    parse_message,
)

from .deps import verify_ws_token

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 매니저 참조 (app.py에서 설정됨)
_room_manager: Optional[RoomManager] = None


def init_managers(room_manager: RoomManager):
    """app.py에서 호출하여 글로벌 룸 매니저 참조를 설정합니다."""
    global _room_manager
    _room_manager = room_manager
    logger.info("[Relay] 시그널링 라우터 매니저 초기화 완료")


def get_room_manager() -> Optional[RoomManager]:
    return _room_manager


async def send_to(participant: Participant, message_type: MessageType, model: BaseModel) -> bool:
    """참가자에게 메시지를 보냅니다. 전송 실패 시 참가자를 룸에서 정리합니다."""
    try:
        await participant.websocket.send_json(envelope(message_type, model))
        return True
    except Exception as e:
        logger.error(f"[Relay] {participant.peer_id}에 {message_type.value} 전송 중 오류: {e}")
        if _room_manager is not None:
            _room_manager.leave_room(participant.peer_id)
        return False


async def send_error(websocket: WebSocket, message: str, code: str):
    await websocket.send_json(envelope(MessageType.ERROR, ErrorMessage(message=message, code=code)))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    """시그널링 WebSocket 엔드포인트.

    Args:
        websocket: FastAPI WebSocket 연결 객체
        token: 접근 토큰 (ACCESS_PASSWORD 설정 시 필수)
    """
    if _room_manager is None:
        logger.error("[Relay] 매니저가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    # 연결 수락 전 토큰 검증
    if not verify_ws_token(token):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    await websocket.accept()
    peer_id = str(uuid.uuid4())
    logger.info(f"[Relay] 연결 {peer_id} 수락")

    try:
        while True:
            raw = await websocket.receive_json()
            try:
                message_type, message = parse_message(raw)
            except (ValueError, ValidationError) as e:
                logger.warning(f"[Relay] 잘못된 메시지 ({peer_id}): {e}")
                await send_error(websocket, "Invalid message", "invalid-message")
                continue

            if message_type == MessageType.JOIN_ROOM:
                await _handle_join_room(websocket, peer_id, message)

            elif message_type in (MessageType.WEBRTC_SIGNAL, MessageType.REQUEST_OFFER):
                await _forward_to_partner(websocket, peer_id, message_type, message)

            elif message_type == MessageType.LEAVE_ROOM:
                await _handle_leave_room(peer_id)

            else:
                logger.warning(f"[Relay] 처리하지 않는 메시지 타입: {message_type.value}")

    except WebSocketDisconnect:
        logger.info(f"[Relay] 연결 {peer_id} 끊김")
    except Exception as e:
        logger.error(f"[Relay] 연결 {peer_id} 처리 중 오류: {e}")
    finally:
        await _handle_leave_room(peer_id)
        logger.info(f"[Relay] 연결 {peer_id} 정리 완료")


async def _handle_join_room(websocket: WebSocket, peer_id: str, message):
    current_room = _room_manager.get_room_id(peer_id)
    if current_room is not None and current_room != message.roomId:
        await _handle_leave_room(peer_id)

    try:
        participant = _room_manager.join_room(
            message.roomId, peer_id, message.userId, message.userName, websocket
        )
    except RoomFullError as e:
        await send_error(websocket, str(e), "room-full")
        return

    await send_to(
        participant,
        MessageType.JOINED_ROOM,
        JoinedRoom(role=participant.role, usersInRoom=_room_manager.get_room_count(message.roomId)),
    )

    partner = _room_manager.get_partner(peer_id)
    if partner is not None:
        await send_to(partner, MessageType.PARTNER_JOINED, PartnerJoined(userName=participant.user_name))
        await send_to(participant, MessageType.PARTNER_INFO, PartnerInfo(userName=partner.user_name))


async def _forward_to_partner(websocket: WebSocket, peer_id: str, message_type: MessageType, message):
    if _room_manager.get_room_id(peer_id) != message.roomId:
        await send_error(websocket, f"Not in room '{message.roomId}'", "not-in-room")
        return
    partner = _room_manager.get_partner(peer_id)
    if partner is None:
        # 상대가 없으면 버림 (상대 입장 시 Caller가 offer를 다시 보냄)
        logger.debug(f"[Relay] 상대 없음 - {message_type.value} 버림 ({peer_id})")
        return
    await send_to(partner, message_type, message)


async def _handle_leave_room(peer_id: str):
    partner = _room_manager.get_partner(peer_id)
    room_id = _room_manager.leave_room(peer_id)
    if room_id is None:
        return
    if partner is not None:
        await send_to(partner, MessageType.USER_LEFT, UserLeft())
    logger.info(f"[Relay] 연결 {peer_id}가 룸 '{room_id}'에서 퇴장함")
