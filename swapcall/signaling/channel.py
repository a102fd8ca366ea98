"""시그널링 채널 클라이언트.

릴레이 서버와 WebSocket 하나를 유지하면서 룸 참가, 시그널링 메시지 송수신,
연결 끊김 이벤트를 제공합니다.

주요 기능:
    - connect: 타임아웃 내 릴레이 연결 (실패 시 SignalingError CONNECT_FAILED)
    - join / leave: 룸 참가 및 퇴장
    - send_signal / request_offer: offer/answer/candidate 및 재-offer 요청 전송
    - 수신 이벤트: joined, partner_joined, partner_info, signal, partner_left,
      disconnected, error

Delivery:
    - 수신 메시지는 도착 순서대로 하나씩 콜백에 전달됨 (이전 콜백 완료 후 다음)
    - 연결이 끊긴 동안 보낸 메시지는 버려지며 재전송하지 않음
    - leave / disconnect는 연결되지 않은 상태에서 호출해도 no-op

Examples:
    >>> channel = SignalingChannel("ws://localhost:8000/ws")
    >>> channel.on_joined(handle_joined)
    >>> channel.on_signal(handle_signal)
    >>> await channel.connect()
    >>> await channel.join("room-1", "user-1", "Alice")
    >>> await channel.disconnect()
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from urllib.parse import urlencode

import websockets
from pydantic import BaseModel, ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..shared.dto import (
    IceCandidatePayload,
    JoinRoom,
    LeaveRoom,
    MessageType,
    RequestOffer,
    SessionDescription,
    WebRTCSignal,
    envelope,
    parse_message,
)
from ..shared.errors import SignalingError, SignalingErrorKind

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class SignalingChannel:
    """릴레이 서버와의 지속 WebSocket 연결.

    Attributes:
        server_url (Optional[str]): 릴레이 WebSocket 주소
        room_id (Optional[str]): 현재 참가 중인 룸
    """

    def __init__(
        self,
        server_url: Optional[str] = None,
        *,
        connect_timeout: float = 10.0,
        access_token: Optional[str] = None,
        connector: Optional[Connector] = None,
    ):
        self.server_url = server_url
        self.connect_timeout = connect_timeout
        self.room_id: Optional[str] = None
        self._user_id: Optional[str] = None
        self._access_token = access_token
        self._connector = connector or websockets.connect
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._closing = False
        self._handlers: Dict[str, Callable] = {}

    @property
    def connected(self) -> bool:
        return self._ws is not None

    # ============================================================
    # 이벤트 등록
    # ============================================================

    def on_joined(self, callback: Callable[[str, int], Any]):
        """joined-room 수신: callback(role, users_in_room)."""
        self._handlers["joined"] = callback

    def on_partner_joined(self, callback: Callable[[str], Any]):
        self._handlers["partner_joined"] = callback

    def on_partner_info(self, callback: Callable[[str], Any]):
        self._handlers["partner_info"] = callback

    def on_signal(self, callback: Callable[[Union[WebRTCSignal, RequestOffer]], Any]):
        """webrtc-signal 또는 request-offer 수신."""
        self._handlers["signal"] = callback

    def on_partner_left(self, callback: Callable[[], Any]):
        self._handlers["partner_left"] = callback

    def on_disconnected(self, callback: Callable[[str], Any]):
        """예기치 않은 연결 끊김: callback(reason). disconnect() 호출로 닫힌 경우에는 발생하지 않음."""
        self._handlers["disconnected"] = callback

    def on_error(self, callback: Callable[[str, Optional[str]], Any]):
        """릴레이가 보낸 error 메시지: callback(message, code)."""
        self._handlers["error"] = callback

    # ============================================================
    # 연결
    # ============================================================

    async def connect(self, server_url: Optional[str] = None, timeout: Optional[float] = None):
        """릴레이 서버에 연결합니다.

        Raises:
            SignalingError: 타임아웃 내 연결 실패 (CONNECT_FAILED)
        """
        if self._ws is not None:
            return
        url = server_url or self.server_url
        if not url:
            raise SignalingError(SignalingErrorKind.CONNECT_FAILED, "릴레이 주소가 없습니다")
        self.server_url = url
        timeout = timeout if timeout is not None else self.connect_timeout

        try:
            ws = await asyncio.wait_for(self._connector(self._build_url(url)), timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"[Signaling] 릴레이 연결 타임아웃 ({timeout}s): {url}")
            raise SignalingError(SignalingErrorKind.CONNECT_FAILED, f"{timeout}초 내 연결 실패") from e
        except (OSError, WebSocketException) as e:
            logger.error(f"[Signaling] 릴레이 연결 실패: {url} ({e})")
            raise SignalingError(SignalingErrorKind.CONNECT_FAILED, str(e)) from e

        self._ws = ws
        self._closing = False
        self._reader = asyncio.create_task(self._read_loop(ws))
        logger.info(f"[Signaling] 릴레이 연결됨: {url}")

    async def disconnect(self):
        """연결을 닫습니다. 연결되지 않은 상태에서는 아무 일도 하지 않습니다."""
        ws, self._ws = self._ws, None
        reader, self._reader = self._reader, None
        self.room_id = None
        if ws is None:
            return
        self._closing = True
        try:
            await ws.close()
        except Exception as e:
            logger.warning(f"[Signaling] 연결 종료 중 오류 (무시): {e}")

        # 수신 콜백 안에서 호출된 경우 자기 자신은 취소하지 않음
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"[Signaling] 수신 태스크 종료 중 오류 (무시): {e}")
        logger.info("[Signaling] 릴레이 연결 종료")

    def _build_url(self, url: str) -> str:
        if not self._access_token:
            return url
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}{urlencode({'token': self._access_token})}"

    # ============================================================
    # 송신
    # ============================================================

    async def join(self, room_id: str, user_id: str, user_name: str) -> bool:
        self.room_id = room_id
        self._user_id = user_id
        return await self._send(
            MessageType.JOIN_ROOM,
            JoinRoom(roomId=room_id, userId=user_id, userName=user_name),
        )

    async def leave(self) -> bool:
        """현재 룸에서 퇴장합니다. 참가 중이 아니면 no-op."""
        if self._ws is None or self.room_id is None:
            return False
        room_id, self.room_id = self.room_id, None
        return await self._send(
            MessageType.LEAVE_ROOM,
            LeaveRoom(roomId=room_id, userId=self._user_id or ""),
        )

    async def send_signal(
        self,
        room_id: str,
        signal_type: str,
        payload: Union[SessionDescription, IceCandidatePayload],
    ) -> bool:
        message = WebRTCSignal(roomId=room_id, type=signal_type, **{signal_type: payload})
        return await self._send(MessageType.WEBRTC_SIGNAL, message)

    async def request_offer(self, room_id: str) -> bool:
        return await self._send(MessageType.REQUEST_OFFER, RequestOffer(roomId=room_id))

    async def _send(self, message_type: MessageType, model: BaseModel) -> bool:
        ws = self._ws
        if ws is None:
            logger.warning(f"[Signaling] 연결 없음 - {message_type.value} 메시지 버림")
            return False
        try:
            await ws.send(json.dumps(envelope(message_type, model)))
        except (ConnectionClosed, OSError) as e:
            logger.warning(f"[Signaling] {message_type.value} 전송 실패 - 메시지 버림: {e}")
            return False
        logger.debug(f"[Signaling] 전송: {message_type.value}")
        return True

    # ============================================================
    # 수신
    # ============================================================

    async def _read_loop(self, ws):
        reason = "connection closed"
        try:
            async for raw in ws:
                await self._dispatch(raw)
        except ConnectionClosed as e:
            reason = str(e) or reason
        except OSError as e:
            reason = str(e)

        if self._closing or self._ws is not ws:
            return
        self._ws = None
        self._reader = None
        logger.warning(f"[Signaling] 릴레이 연결 끊김: {reason}")
        await self._call("disconnected", reason)

    async def _dispatch(self, raw):
        try:
            message_type, message = parse_message(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning(f"[Signaling] 잘못된 메시지 무시: {e}")
            return

        logger.debug(f"[Signaling] 수신: {message_type.value}")
        if message_type == MessageType.JOINED_ROOM:
            await self._call("joined", message.role, message.usersInRoom)
        elif message_type == MessageType.PARTNER_JOINED:
            await self._call("partner_joined", message.userName)
        elif message_type == MessageType.PARTNER_INFO:
            await self._call("partner_info", message.userName)
        elif message_type in (MessageType.WEBRTC_SIGNAL, MessageType.REQUEST_OFFER):
            await self._call("signal", message)
        elif message_type == MessageType.USER_LEFT:
            await self._call("partner_left")
        elif message_type == MessageType.ERROR:
            await self._call("error", message.message, message.code)
        else:
            logger.warning(f"[Signaling] 처리하지 않는 메시지 타입: {message_type.value}")

    async def _call(self, name: str, *args):
        callback = self._handlers.get(name)
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"[Signaling] '{name}' 이벤트 처리 중 오류: {e}", exc_info=True)
