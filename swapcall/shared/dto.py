"""시그널링 와이어 메시지 DTO.

릴레이 서버와 클라이언트가 주고받는 메시지를 pydantic 모델로 정의합니다.
모든 메시지는 ``{"type": <이벤트명>, "data": {...}}`` 봉투에 담겨 전송됩니다.
"""

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class MessageType(str, Enum):
    """시그널링 이벤트 이름."""

    JOIN_ROOM = "join-room"
    JOINED_ROOM = "joined-room"
    PARTNER_JOINED = "partner-joined"
    PARTNER_INFO = "partner-info"
    USER_LEFT = "user-left"
    WEBRTC_SIGNAL = "webrtc-signal"
    REQUEST_OFFER = "request-offer"
    LEAVE_ROOM = "leave-room"
    ERROR = "error"


class SessionDescription(BaseModel):
    """SDP offer/answer 페이로드."""

    sdp: str = Field(..., description="SDP 본문")
    type: Literal["offer", "answer"] = Field(..., description="description 종류")


class IceCandidatePayload(BaseModel):
    """브라우저 RTCIceCandidateInit 형식의 ICE candidate."""

    candidate: str = Field(default="", description="'candidate:' 접두어를 포함한 SDP 라인")
    sdpMid: Optional[str] = Field(default=None, description="미디어 스트림 식별자")
    sdpMLineIndex: Optional[int] = Field(default=None, description="m-line 인덱스")


class JoinRoom(BaseModel):
    roomId: str
    userId: str
    userName: str = "Anonymous"


class JoinedRoom(BaseModel):
    role: Literal["caller", "answerer"]
    usersInRoom: int = Field(..., ge=1)


class PartnerJoined(BaseModel):
    userName: str = "Partner"


class PartnerInfo(BaseModel):
    userName: str = "Partner"


class UserLeft(BaseModel):
    pass


class WebRTCSignal(BaseModel):
    """offer / answer / candidate 중 하나를 운반하는 메시지."""

    roomId: str
    type: Literal["offer", "answer", "candidate"]
    offer: Optional[SessionDescription] = None
    answer: Optional[SessionDescription] = None
    candidate: Optional[IceCandidatePayload] = None

    @model_validator(mode="after")
    def _payload_matches_type(self) -> "WebRTCSignal":
        if getattr(self, self.type) is None:
            raise ValueError(f"'{self.type}' 페이로드가 없습니다")
        return self

    @property
    def payload(self) -> Union[SessionDescription, IceCandidatePayload]:
        return getattr(self, self.type)


class RequestOffer(BaseModel):
    roomId: str


class LeaveRoom(BaseModel):
    roomId: str
    userId: str


class ErrorMessage(BaseModel):
    message: str
    code: Optional[str] = None


# 수신 측에서 type → 모델 매핑
MESSAGE_MODELS = {
    MessageType.JOIN_ROOM: JoinRoom,
    MessageType.JOINED_ROOM: JoinedRoom,
    MessageType.PARTNER_JOINED: PartnerJoined,
    MessageType.PARTNER_INFO: PartnerInfo,
    MessageType.USER_LEFT: UserLeft,
    MessageType.WEBRTC_SIGNAL: WebRTCSignal,
    MessageType.REQUEST_OFFER: RequestOffer,
    MessageType.LEAVE_ROOM: LeaveRoom,
    MessageType.ERROR: ErrorMessage,
}

# 상태 머신의 onSignal 이벤트로 전달되는 메시지
SignalMessage = Union[WebRTCSignal, RequestOffer]


def envelope(message_type: MessageType, model: BaseModel) -> dict:
    """모델을 전송용 봉투 딕셔너리로 변환합니다."""
    return {"type": message_type.value, "data": model.model_dump(exclude_none=True)}


def parse_message(raw: dict) -> tuple:
    """수신한 봉투를 (MessageType, 모델) 튜플로 파싱합니다.

    Raises:
        ValueError: 알 수 없는 type
        pydantic.ValidationError: data 형식 오류
    """
    if not isinstance(raw, dict):
        raise ValueError(f"봉투는 JSON 객체여야 합니다: {type(raw).__name__}")
    message_type = MessageType(raw.get("type"))
    model_cls = MESSAGE_MODELS[message_type]
    return message_type, model_cls.model_validate(raw.get("data") or {})
