"""로깅 설정 모듈.

콘솔 + 일자별 파일 핸들러로 루트 로거를 구성하고, 보관 기간이 지난
로그 파일을 정리합니다.

사용 예시:
    from swapcall.shared.logging_config import setup_logging

    # 애플리케이션 시작 시 한 번 호출
    log_file = setup_logging(prefix="client")
"""

import glob
import logging
import os
from datetime import datetime, timedelta
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# 로그 보관 기간 (일) - 기본 60일 (2개월)
DEFAULT_RETENTION_DAYS = 60


def setup_logging(
    level: Optional[str] = None,
    log_dir: str = "logs",
    prefix: str = "server",
) -> str:
    """루트 로거를 초기화합니다.

    Args:
        level: 로그 레벨 이름 (기본: LOG_LEVEL 환경변수, 없으면 INFO)
        log_dir: 로그 디렉토리
        prefix: 로그 파일 접두어 (``<prefix>_YYYYMMDD.log``)

    Returns:
        str: 생성된 로그 파일 경로

    Note:
        logging.basicConfig를 사용하므로 이미 핸들러가 있으면 무시됩니다.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    os.makedirs(log_dir, exist_ok=True)
    log_filename = os.path.join(log_dir, f"{prefix}_{datetime.now().strftime('%Y%m%d')}.log")

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),  # 콘솔 출력
            logging.FileHandler(log_filename, encoding="utf-8"),  # 파일 저장
        ],
    )
    return log_filename


def cleanup_old_logs(
    log_dir: str = "logs",
    retention_days: int = DEFAULT_RETENTION_DAYS,
    prefixes: Iterable[str] = ("server_", "client_"),
) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)
        prefixes: 정리 대상 파일 접두어

    Returns:
        삭제된 파일 수
    """
    if not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for prefix in prefixes:
        for log_file in glob.glob(os.path.join(log_dir, f"{prefix}*.log")):
            try:
                date_str = os.path.basename(log_file)[len(prefix):-len(".log")]
                file_date = datetime.strptime(date_str, "%Y%m%d")

                if file_date < cutoff_date:
                    os.remove(log_file)
                    deleted_count += 1
            except (ValueError, OSError):
                continue

    return deleted_count
