"""로컬 미디어 획득 모듈.

aiortc MediaPlayer로 카메라/마이크 트랙을 열고, 음소거/비디오 끄기,
장치 교체, 해제를 담당합니다.

주요 기능:
    - acquire: 오디오/비디오 트랙 획득 (실패 시 MediaError로 분류)
    - set_muted / set_video_enabled: 재협상 없이 트랙 enabled 토글
    - replace: 단일 트랙 재획득 후 Peer Link 송신 트랙 교체
    - release: 모든 트랙 정지 (멱등)

Note:
    트랙 획득 전에 음소거/비디오 끄기를 설정해도 오류가 아니며,
    트랙이 생성되는 시점에 적용됩니다.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from aiortc.contrib.media import MediaPlayer

from ..config import CallSettings, get_call_settings
from ..shared.errors import MediaError, MediaErrorKind
from .tracks import SwitchableTrack

logger = logging.getLogger(__name__)

MEDIA_KINDS = ("audio", "video")


@dataclass
class MediaConstraints:
    audio: bool = True
    video: bool = True


@dataclass
class MediaTrackSet:
    """로컬 오디오/비디오 트랙과 활성화 플래그.

    Attributes:
        audio (Optional[SwitchableTrack]): 로컬 오디오 트랙
        video (Optional[SwitchableTrack]): 로컬 비디오 트랙
        muted (bool): 오디오 음소거 여부
        video_off (bool): 비디오 끄기 여부
    """

    audio: Optional[SwitchableTrack] = None
    video: Optional[SwitchableTrack] = None
    muted: bool = False
    video_off: bool = False

    def tracks(self) -> List[SwitchableTrack]:
        return [track for track in (self.audio, self.video) if track is not None]

    def get(self, kind: str) -> Optional[SwitchableTrack]:
        return getattr(self, kind, None)


def default_player_factory(settings: CallSettings) -> Callable[[str], Any]:
    """설정된 장치로 MediaPlayer를 여는 팩토리를 반환합니다."""

    def create(kind: str) -> MediaPlayer:
        if kind == "audio":
            return MediaPlayer(settings.AUDIO_DEVICE, format=settings.AUDIO_FORMAT)
        return MediaPlayer(
            settings.VIDEO_DEVICE,
            format=settings.VIDEO_FORMAT,
            options={"video_size": settings.VIDEO_SIZE},
        )

    return create


class MediaAcquisitionUnit:
    """로컬 미디어 트랙의 유일한 소유자.

    Peer Link는 이 유닛이 만든 트랙을 참조만 합니다.

    Attributes:
        track_set (Optional[MediaTrackSet]): 현재 획득한 트랙 (없으면 None)

    Examples:
        >>> media = MediaAcquisitionUnit()
        >>> media.set_muted(True)          # 획득 전에도 안전
        >>> tracks = await media.acquire()
        >>> tracks.audio.enabled
        False
        >>> media.release()
    """

    def __init__(
        self,
        settings: Optional[CallSettings] = None,
        player_factory: Optional[Callable[[str], Any]] = None,
    ):
        self._settings = settings or get_call_settings()
        self._player_factory = player_factory or default_player_factory(self._settings)
        self._track_set: Optional[MediaTrackSet] = None
        # kind -> MediaPlayer (트랙이 살아있는 동안 참조 유지)
        self._players: Dict[str, Any] = {}
        self._muted = False
        self._video_off = False
        self._peer_link = None

    @property
    def track_set(self) -> Optional[MediaTrackSet]:
        return self._track_set

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def video_enabled(self) -> bool:
        return not self._video_off

    def attach_peer_link(self, peer_link):
        """replace() 시 송신 트랙을 교체할 Peer Link를 등록합니다."""
        self._peer_link = peer_link

    async def acquire(self, constraints: Optional[MediaConstraints] = None) -> MediaTrackSet:
        """요청된 트랙을 획득합니다. 이미 획득했다면 기존 트랙을 반환합니다.

        Raises:
            MediaError: 장치 권한 거부, 장치 없음, 장치 사용 중 등
        """
        if self._track_set is not None:
            return self._track_set

        constraints = constraints or MediaConstraints()
        kinds = [kind for kind in MEDIA_KINDS if getattr(constraints, kind)]
        if not kinds:
            raise ValueError("audio 또는 video 중 하나는 요청해야 합니다")

        opened: Dict[str, SwitchableTrack] = {}
        try:
            for kind in kinds:
                opened[kind] = await self._open(kind)
        except MediaError:
            for track in opened.values():
                self._stop_track(track)
            self._players.clear()
            raise

        self._track_set = MediaTrackSet(audio=opened.get("audio"), video=opened.get("video"))
        self._apply_flags()
        logger.info(f"[Media] 트랙 획득 완료: {', '.join(opened)}")
        return self._track_set

    def set_muted(self, muted: bool):
        self._muted = muted
        self._apply_flags()
        logger.info(f"[Media] 음소거: {muted}")

    def set_video_enabled(self, enabled: bool):
        self._video_off = not enabled
        self._apply_flags()
        logger.info(f"[Media] 비디오 활성화: {enabled}")

    async def replace(self, kind: str) -> SwitchableTrack:
        """kind 트랙을 다시 획득하고 Peer Link의 송신 트랙을 교체합니다.

        Raises:
            MediaError: 새 장치 획득 실패 (기존 트랙은 유지됨)
            RuntimeError: acquire 이전 호출
        """
        if kind not in MEDIA_KINDS:
            raise ValueError(f"알 수 없는 트랙 종류: {kind}")
        if self._track_set is None:
            raise RuntimeError("트랙을 획득하기 전에는 교체할 수 없습니다")

        new_track = await self._open(kind)
        old_track = self._track_set.get(kind)
        setattr(self._track_set, kind, new_track)
        self._apply_flags()

        if self._peer_link is not None:
            self._peer_link.replace_track(kind, new_track)
        if old_track is not None:
            self._stop_track(old_track)
        logger.info(f"[Media] {kind} 트랙 교체 완료")
        return new_track

    def release(self):
        """모든 트랙을 정지합니다. 어떤 상태에서 몇 번을 호출해도 안전합니다."""
        track_set, self._track_set = self._track_set, None
        self._players.clear()
        self._peer_link = None
        if track_set is None:
            return
        for track in track_set.tracks():
            self._stop_track(track)
        logger.info("[Media] 트랙 해제 완료")

    async def _open(self, kind: str) -> SwitchableTrack:
        try:
            player = await asyncio.to_thread(self._player_factory, kind)
        except Exception as e:
            error = MediaError.from_exception(e)
            logger.error(f"[Media] {kind} 장치 열기 실패: {error.kind.value} ({e})")
            raise error from e

        source = getattr(player, kind, None)
        if source is None:
            raise MediaError(MediaErrorKind.DEVICE_NOT_FOUND, f"{kind} 트랙을 찾을 수 없습니다")

        self._players[kind] = player
        return SwitchableTrack(source, kind)

    def _apply_flags(self):
        track_set = self._track_set
        if track_set is None:
            return
        track_set.muted = self._muted
        track_set.video_off = self._video_off
        if track_set.audio is not None:
            track_set.audio.enabled = not self._muted
        if track_set.video is not None:
            track_set.video.enabled = not self._video_off

    @staticmethod
    def _stop_track(track):
        try:
            track.stop()
        except Exception as e:
            logger.warning(f"[Media] 트랙 정지 중 오류 (무시): {e}")
