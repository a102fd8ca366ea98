"""통화 세션 설정.

릴레이 주소, 타임아웃, 재시도 정책, 매칭 API, 미디어 장치 설정.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# .env 파일 로드
_env_path = Path(__file__).parent.parent / "config" / ".env"
load_dotenv(_env_path)


class CallSettings(BaseSettings):
    """통화 세션 설정 클래스.

    환경 변수를 Python 객체로 매핑하고 유효성을 검증합니다.
    """

    # 시그널링 릴레이
    SIGNALING_URL: str = Field(
        default="ws://localhost:8000/ws",
        description="시그널링 릴레이 WebSocket 주소"
    )

    SIGNALING_CONNECT_TIMEOUT: float = Field(
        default=10.0,
        gt=0,
        description="릴레이 연결 및 join 응답 대기 타임아웃 (초)"
    )

    # 연결 수립 타임아웃
    CONNECTION_TIMEOUT: float = Field(
        default=15.0,
        gt=0,
        description="offer/answer 후 피어 연결 수립 대기 타임아웃 (초)"
    )

    # 재시도 정책
    RETRY_BASE_DELAY: float = Field(
        default=2.0,
        gt=0,
        description="첫 재시도 대기 시간 (초)"
    )

    RETRY_GROWTH_FACTOR: float = Field(
        default=1.5,
        description="재시도 대기 시간 증가 배수"
    )

    RETRY_MAX_DELAY: float = Field(
        default=10.0,
        gt=0,
        description="재시도 대기 시간 상한 (초)"
    )

    RETRY_MAX_ATTEMPTS: int = Field(
        default=3,
        description="최대 재시도 횟수"
    )

    # 매칭 백엔드 API
    MATCH_API_URL: str = Field(
        default="http://localhost:5000",
        description="매칭 백엔드 REST API 주소"
    )

    MATCH_API_TIMEOUT: float = Field(
        default=10.0,
        gt=0,
        description="매칭 API 요청 타임아웃 (초)"
    )

    ACCESS_TOKEN: Optional[str] = Field(
        default=None,
        description="매칭 API Bearer 토큰 및 릴레이 접속 토큰"
    )

    # 미디어 장치 (aiortc MediaPlayer)
    VIDEO_DEVICE: str = Field(default="/dev/video0", description="비디오 장치 경로")
    VIDEO_FORMAT: str = Field(default="v4l2", description="비디오 입력 포맷")
    VIDEO_SIZE: str = Field(default="640x480", description="비디오 해상도")
    AUDIO_DEVICE: str = Field(default="default", description="오디오 장치 이름")
    AUDIO_FORMAT: str = Field(default="pulse", description="오디오 입력 포맷 (pulse/alsa)")

    # 로깅 설정
    LOG_LEVEL: str = Field(
        default="INFO",
        description="로그 레벨"
    )

    @field_validator("RETRY_GROWTH_FACTOR")
    @classmethod
    def validate_growth_factor(cls, v: float) -> float:
        """증가 배수 유효성 검증"""
        if not 1.0 <= v <= 4.0:
            raise ValueError("RETRY_GROWTH_FACTOR는 1.0 ~ 4.0 사이여야 합니다.")
        return v

    @field_validator("RETRY_MAX_ATTEMPTS")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        """최대 재시도 횟수 유효성 검증"""
        if not 1 <= v <= 10:
            raise ValueError("RETRY_MAX_ATTEMPTS는 1 ~ 10 사이여야 합니다.")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """로그 레벨 유효성 검증"""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL은 {allowed} 중 하나여야 합니다.")
        return v.upper()

    class Config:
        """Pydantic 설정"""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_call_settings() -> CallSettings:
    """설정 싱글톤 인스턴스 반환.

    Returns:
        CallSettings: 설정 객체
    """
    settings = CallSettings()
    logger.info(f"[Call Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
    logger.info(f"[Call Config] 릴레이: {settings.SIGNALING_URL}")
    logger.info(
        f"[Call Config] 재시도: base={settings.RETRY_BASE_DELAY}s, "
        f"x{settings.RETRY_GROWTH_FACTOR}, max={settings.RETRY_MAX_DELAY}s, "
        f"attempts={settings.RETRY_MAX_ATTEMPTS}"
    )
    return settings
