"""매칭 백엔드 REST 클라이언트 모듈."""

from .client import (
    MatchApiClient,
    MatchResult,
    Partner,
    build_answerer_config,
    build_caller_config,
)

__all__ = [
    "MatchApiClient",
    "MatchResult",
    "Partner",
    "build_caller_config",
    "build_answerer_config",
]
