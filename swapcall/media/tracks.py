"""켜고 끌 수 있는 로컬 미디어 트랙.

브라우저 MediaStreamTrack.enabled와 같이, 비활성화된 동안에는 원본 프레임
대신 무음/검은 화면 프레임을 내보냅니다. 상대 쪽에서는 재협상 없이
그대로 수신됩니다.
"""

import logging
from typing import Optional

from aiortc import MediaStreamTrack
from av import AudioFrame, VideoFrame

logger = logging.getLogger(__name__)


def _silent_like(frame: AudioFrame) -> AudioFrame:
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.sample_rate = frame.sample_rate
    silent.pts = frame.pts
    if frame.time_base is not None:
        silent.time_base = frame.time_base
    return silent


def _black_like(frame: VideoFrame) -> VideoFrame:
    black = VideoFrame(width=frame.width, height=frame.height, format="yuv420p")
    # Y=0, U/V=128
    for index, plane in enumerate(black.planes):
        plane.update(bytes([0 if index == 0 else 128]) * plane.buffer_size)
    black.pts = frame.pts
    if frame.time_base is not None:
        black.time_base = frame.time_base
    return black


class SwitchableTrack(MediaStreamTrack):
    """enabled 플래그로 송출을 켜고 끄는 트랙 래퍼.

    Attributes:
        kind (str): 트랙 종류 ("audio" 또는 "video")
        source (MediaStreamTrack): 장치에서 얻은 원본 트랙
        enabled (bool): False이면 무음/검은 화면 프레임 송출

    Note:
        - 프레임 타이밍(pts)은 원본을 그대로 따름
        - stop() 시 원본 트랙도 함께 정지

    Examples:
        >>> player = MediaPlayer("default", format="pulse")
        >>> track = SwitchableTrack(player.audio)
        >>> track.enabled = False  # 음소거
        >>> frame = await track.recv()  # 무음 프레임
    """

    def __init__(self, source: MediaStreamTrack, kind: Optional[str] = None):
        super().__init__()
        self.kind = kind or source.kind
        self.source = source
        self.enabled = True

    async def recv(self):
        frame = await self.source.recv()
        if self.enabled:
            return frame
        if self.kind == "audio":
            return _silent_like(frame)
        return _black_like(frame)

    def stop(self):
        super().stop()
        self.source.stop()
