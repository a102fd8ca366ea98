"""릴레이 접근 토큰 검증.

ACCESS_PASSWORD 환경변수가 비어 있으면 모든 요청을 허용합니다. 값은 호출마다
다시 읽습니다. WebSocket은 ``?token=`` 쿼리로, HTTP는 Bearer 헤더로 전달합니다.
"""

import os
import secrets
from typing import Optional

from fastapi import Header, HTTPException


def token_matches(token: Optional[str]) -> bool:
    password = os.getenv("ACCESS_PASSWORD", "")
    if not password:
        return True
    return token is not None and secrets.compare_digest(token, password)


async def verify_auth_header(authorization: Optional[str] = Header(None)) -> bool:
    """/api/rooms, /api/ice-servers 보호용 Bearer 검증.

    Raises:
        HTTPException: 토큰이 없거나 일치하지 않으면 401
    """
    scheme, _, token = (authorization or "").partition(" ")
    if token_matches(token if scheme.lower() == "bearer" else None):
        return True
    raise HTTPException(status_code=401, detail="Unauthorized")


def verify_ws_token(token: Optional[str]) -> bool:
    return token_matches(token)
