"""FastAPI WebRTC 시그널링 릴레이 서버.

매칭된 두 사용자의 1:1 화상 통화를 위한 시그널링 릴레이입니다.
미디어는 피어 간 직접 연결되며, 이 서버는 룸 참가와 offer/answer/candidate
메시지 전달만 담당합니다.

주요 기능:
    - 룸당 최대 2명 (caller / answerer 역할 배정)
    - webrtc-signal, request-offer를 상대에게 순서대로 전달
    - 참가자 입/퇴장 알림 (partner-joined, partner-info, user-left)
    - ICE 서버 목록 제공 (/api/ice-servers)
"""
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routes import health_router, init_signaling_managers, signaling_router, verify_auth_header
from swapcall.relay import RoomManager
from swapcall.shared.logging_config import cleanup_old_logs, setup_logging
from swapcall.webrtc.config import ice_config

# config/.env 환경변수 로드
load_dotenv(Path(__file__).parent / "config" / ".env")

# 환경별 로그 레벨 설정 (환경변수로 제어)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENV = os.getenv("ENV", "development")

# 로그 보관 기간 (일) - 기본 60일 (2개월)
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "60"))

log_filename = setup_logging(LOG_LEVEL, prefix="server")
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={LOG_LEVEL}, env={ENV}, file={log_filename}")


# 글로벌 매니저 인스턴스
room_manager = RoomManager()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """서버 시작 시 오래된 로그를 정리하고, 종료 시 남은 룸을 비웁니다."""
    logger.info("시그널링 릴레이 서버 시작 중...")

    deleted_logs = cleanup_old_logs(retention_days=LOG_RETENTION_DAYS)
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({LOG_RETENTION_DAYS}일 이상)")

    yield

    logger.info("서버 종료 중...")
    for peer_id in list(room_manager.peer_to_room):
        room_manager.leave_room(peer_id)


app = FastAPI(title="SwapCall Signaling Relay", lifespan=lifespan)

# CORS - 개발 환경에서는 로컬 네트워크 허용
app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}):\d+$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(signaling_router)

# WebSocket 시그널링 라우터에 매니저 인스턴스 전달
init_signaling_managers(room_manager)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트.

    Returns:
        dict: status, service
    """
    return {"status": "ok", "service": "SwapCall Signaling Relay"}


@app.get("/api/rooms")
async def get_rooms_api(_: bool = Depends(verify_auth_header)):
    """활성화된 모든 룸의 목록을 조회합니다."""
    return {"rooms": room_manager.get_room_list()}


@app.get("/api/ice-servers")
async def get_ice_servers(_: bool = Depends(verify_auth_header)):
    """브라우저 RTCPeerConnection용 ICE 서버 목록을 제공합니다.

    TURN credential은 서버 환경변수에서만 관리되며 인증된 클라이언트에만 전달됩니다.

    Examples:
        [
            {"urls": "stun:stun.l.google.com:19302"},
            {"urls": "turn:turn.example.com:3478", "username": "u", "credential": "p"}
        ]
    """
    servers = ice_config.to_client_list()
    logger.info(f"ICE 서버 제공: {'STUN + TURN' if ice_config.has_turn_server else 'STUN만 (TURN 미설정)'}")
    return servers


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
