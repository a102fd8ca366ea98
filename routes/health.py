"""Health Check API 라우터."""

from fastapi import APIRouter

from .signaling import get_room_manager

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """릴레이 상태를 확인합니다.

    Returns:
        dict: status와 활성 룸/연결 수
    """
    room_manager = get_room_manager()
    if room_manager is None:
        return {"status": "not_initialized", "rooms": 0, "participants": 0}
    return {
        "status": "ok",
        "rooms": len(room_manager.rooms),
        "participants": len(room_manager.peer_to_room),
    }
