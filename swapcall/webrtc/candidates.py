"""ICE candidate / session description 변환 및 대기 큐.

브라우저 형식(``candidate:...`` 문자열 + sdpMid/sdpMLineIndex)과 aiortc
객체 사이를 변환하고, remote description 이전에 도착한 candidate를 보관합니다.
"""

import logging
from collections import deque
from typing import Deque, List

from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..shared.dto import IceCandidatePayload, SessionDescription

logger = logging.getLogger(__name__)

_CANDIDATE_PREFIX = "candidate:"


def candidate_from_payload(payload: IceCandidatePayload) -> RTCIceCandidate:
    """브라우저 형식 candidate를 aiortc RTCIceCandidate로 변환합니다.

    Raises:
        ValueError: 빈 candidate 또는 파싱 불가한 SDP 라인
    """
    sdp = payload.candidate.strip()
    if sdp.startswith(_CANDIDATE_PREFIX):
        sdp = sdp[len(_CANDIDATE_PREFIX):]
    if not sdp:
        raise ValueError("빈 candidate (end-of-candidates)")

    try:
        candidate = candidate_from_sdp(sdp)
    except (AssertionError, IndexError, ValueError) as exc:
        raise ValueError(f"candidate 파싱 실패: {payload.candidate!r}") from exc

    candidate.sdpMid = payload.sdpMid
    candidate.sdpMLineIndex = payload.sdpMLineIndex
    return candidate


def candidate_to_payload(candidate: RTCIceCandidate) -> IceCandidatePayload:
    return IceCandidatePayload(
        candidate=_CANDIDATE_PREFIX + candidate_to_sdp(candidate),
        sdpMid=candidate.sdpMid,
        sdpMLineIndex=candidate.sdpMLineIndex,
    )


def description_from_payload(payload: SessionDescription) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=payload.sdp, type=payload.type)


def description_to_payload(description: RTCSessionDescription) -> SessionDescription:
    return SessionDescription(sdp=description.sdp, type=description.type)


class PendingCandidateQueue:
    """remote description 설정 전에 도착한 ICE candidate 대기열.

    도착 순서대로 보관하고, drain()이 호출되면 모두 반환한 뒤 비웁니다.
    drain 이후에는 append할 수 없으며 reset()으로 새 협상 라운드를 시작해야 합니다.

    Examples:
        >>> queue = PendingCandidateQueue()
        >>> queue.append(c1); queue.append(c2)
        >>> queue.drain()
        [c1, c2]
        >>> queue.drained
        True
    """

    def __init__(self):
        self._items: Deque[RTCIceCandidate] = deque()
        self._drained = False

    def __len__(self) -> int:
        return len(self._items)

    @property
    def drained(self) -> bool:
        return self._drained

    def append(self, candidate: RTCIceCandidate):
        if self._drained:
            raise RuntimeError("이미 drain된 큐에는 candidate를 추가할 수 없습니다")
        self._items.append(candidate)

    def drain(self) -> List[RTCIceCandidate]:
        items = list(self._items)
        self._items.clear()
        self._drained = True
        if items:
            logger.debug(f"[WebRTC] 대기 candidate {len(items)}개 적용")
        return items

    def reset(self):
        self._items.clear()
        self._drained = False
