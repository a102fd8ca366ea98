"""매칭 백엔드 REST 클라이언트.

매칭 생성, 매칭 연결, 화상 세션 시작/참가, 매칭 완료(평가) API를
httpx AsyncClient로 호출합니다.

API:
    POST /api/match/find      {desiredSkills}    → {matchId | match._id, partner}
    POST /api/match/connect   {matchId}          → {partner}
    POST /api/video/start     {matchId}          → {roomId}        (호출자 = Caller)
    POST /api/video/join      {roomId}           → {partner}       (호출자 = Answerer)
    POST /api/match/complete  {matchId, rating}

Examples:
    >>> async with MatchApiClient("http://localhost:5000", token="...") as client:
    ...     match = await client.create_match(["guitar"])
    ...     room_id = await client.start_video_session(match.match_id)
    ...     config = build_caller_config(room_id, "user-1", match)
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from ..config import CallSettings, get_call_settings
from ..shared.errors import MatchApiError
from ..session.state import Role, SessionConfig

logger = logging.getLogger(__name__)


class Partner(BaseModel):
    """매칭 상대 정보."""

    name: str = ""
    skills: List[str] = Field(default_factory=list)


class MatchResult(BaseModel):
    """create_match 응답.

    Attributes:
        match_id (Optional[str]): 매칭 ID (``matchId`` 또는 ``match._id``)
        partner (Optional[Partner]): 추천된 상대
    """

    match_id: Optional[str] = None
    partner: Optional[Partner] = None

    @property
    def found(self) -> bool:
        return self.match_id is not None


class MatchApiClient:
    """매칭 백엔드 비동기 클라이언트.

    Attributes:
        base_url (str): 백엔드 주소
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Optional[CallSettings] = None) -> "MatchApiClient":
        settings = settings or get_call_settings()
        return cls(settings.MATCH_API_URL, token=settings.ACCESS_TOKEN, timeout=settings.MATCH_API_TIMEOUT)

    async def __aenter__(self) -> "MatchApiClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        await self._client.aclose()

    # ============================================================
    # API
    # ============================================================

    async def create_match(self, desired_skills: List[str]) -> MatchResult:
        """배우고 싶은 기술로 매칭 상대를 찾습니다. 상대가 없으면 match_id가 None입니다."""
        data = await self._post("/api/match/find", {"desiredSkills": list(desired_skills)})
        match_id = data.get("matchId") or (data.get("match") or {}).get("_id")
        result = MatchResult(match_id=match_id, partner=self._partner(data))
        logger.info(f"[Match] 매칭 검색 결과: match={result.match_id}")
        return result

    async def connect_match(self, match_id: str) -> Optional[Partner]:
        data = await self._post("/api/match/connect", {"matchId": match_id})
        return self._partner(data)

    async def start_video_session(self, match_id: str) -> str:
        """화상 세션 룸을 만들고 roomId를 반환합니다 (호출자가 Caller)."""
        data = await self._post("/api/video/start", {"matchId": match_id})
        room_id = data.get("roomId")
        if not room_id:
            raise MatchApiError(None, f"roomId 없는 응답: {data}")
        logger.info(f"[Match] 화상 세션 시작: room={room_id}")
        return room_id

    async def join_video_session(self, room_id: str) -> Optional[Partner]:
        """기존 화상 세션에 참가하고 상대 정보를 반환합니다 (호출자가 Answerer)."""
        data = await self._post("/api/video/join", {"roomId": room_id})
        return self._partner(data)

    async def complete_match(self, match_id: str, rating: int) -> Dict[str, Any]:
        data = await self._post("/api/match/complete", {"matchId": match_id, "rating": rating})
        logger.info(f"[Match] 매칭 완료: match={match_id}, rating={rating}")
        return data

    # ============================================================
    # 내부
    # ============================================================

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, json=body)
        except httpx.RequestError as e:
            logger.error(f"[Match] 요청 실패: {path} ({e})")
            raise MatchApiError(None, f"요청 실패: {e}") from e

        if response.is_error:
            detail = response.text
            try:
                payload = response.json()
                if isinstance(payload, dict):
                    detail = payload.get("msg") or payload.get("message") or detail
            except ValueError:
                pass
            logger.error(f"[Match] API 오류: {path} [{response.status_code}] {detail}")
            raise MatchApiError(response.status_code, detail)

        try:
            data = response.json()
        except ValueError as e:
            raise MatchApiError(response.status_code, "JSON이 아닌 응답") from e
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _partner(data: Dict[str, Any]) -> Optional[Partner]:
        raw = data.get("partner")
        if not isinstance(raw, dict):
            return None
        try:
            return Partner.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"[Match] 상대 정보 형식 오류 (무시): {e}")
            return None


# ============================================================
# SessionConfig 생성 헬퍼
# ============================================================

def build_caller_config(
    room_id: str,
    user_id: str,
    match: MatchResult,
    user_name: str = "Anonymous",
    **options,
) -> SessionConfig:
    """start_video_session을 호출한 쪽(Caller)의 세션 설정."""
    return SessionConfig(
        room_id=room_id,
        role=Role.CALLER,
        user_id=user_id,
        user_name=user_name,
        match_id=match.match_id,
        partner_identity=match.partner.name if match.partner and match.partner.name else None,
        **options,
    )


def build_answerer_config(
    room_id: str,
    user_id: str,
    partner: Optional[Partner] = None,
    match_id: Optional[str] = None,
    user_name: str = "Anonymous",
    **options,
) -> SessionConfig:
    """join_video_session으로 참가하는 쪽(Answerer)의 세션 설정."""
    return SessionConfig(
        room_id=room_id,
        role=Role.ANSWERER,
        user_id=user_id,
        user_name=user_name,
        match_id=match_id,
        partner_identity=partner.name if partner and partner.name else None,
        **options,
    )
