"""미디어 획득 유닛과 켜고 끌 수 있는 트랙 테스트."""

import errno

import pytest
from av import AudioFrame, VideoFrame

from swapcall.media.acquisition import MediaAcquisitionUnit, MediaConstraints
from swapcall.media.tracks import SwitchableTrack
from swapcall.shared.errors import MediaError, MediaErrorKind


class FakeSource:
    def __init__(self, kind, frame=None):
        self.kind = kind
        self.frame = frame
        self.stopped = False

    async def recv(self):
        return self.frame

    def stop(self):
        self.stopped = True


class FakePlayer:
    def __init__(self, audio=True, video=True):
        self.audio = FakeSource("audio") if audio else None
        self.video = FakeSource("video") if video else None


class PlayerFactory:
    """kind별로 플레이어를 만들거나 지정된 예외를 던지는 팩토리."""

    def __init__(self, errors=None, missing=()):
        self.errors = errors or {}
        self.missing = set(missing)
        self.players = []

    def __call__(self, kind):
        if kind in self.errors:
            raise self.errors[kind]
        player = FakePlayer(audio="audio" not in self.missing, video="video" not in self.missing)
        self.players.append(player)
        return player


class FakeLink:
    def __init__(self):
        self.replaced = []

    def replace_track(self, kind, track):
        self.replaced.append((kind, track))
        return True


@pytest.fixture
def factory():
    return PlayerFactory()


@pytest.fixture
def unit(settings, factory):
    return MediaAcquisitionUnit(settings, player_factory=factory)


class TestAcquire:

    async def test_acquires_audio_and_video(self, unit):
        track_set = await unit.acquire()

        assert track_set.audio.kind == "audio"
        assert track_set.video.kind == "video"
        assert [t.kind for t in track_set.tracks()] == ["audio", "video"]

    async def test_audio_only(self, unit):
        track_set = await unit.acquire(MediaConstraints(audio=True, video=False))

        assert track_set.video is None
        assert track_set.tracks() == [track_set.audio]

    async def test_acquire_is_idempotent(self, unit, factory):
        first = await unit.acquire()
        second = await unit.acquire()

        assert first is second
        assert len(factory.players) == 2

    async def test_nothing_requested_rejected(self, unit):
        with pytest.raises(ValueError):
            await unit.acquire(MediaConstraints(audio=False, video=False))

    async def test_permission_denied_mapped_by_errno(self, settings):
        unit = MediaAcquisitionUnit(
            settings, player_factory=PlayerFactory(errors={"audio": PermissionError(errno.EACCES, "denied")})
        )

        with pytest.raises(MediaError) as exc_info:
            await unit.acquire()

        assert exc_info.value.kind == MediaErrorKind.PERMISSION_DENIED
        assert unit.track_set is None

    async def test_partial_failure_stops_opened_tracks(self, settings):
        factory = PlayerFactory(errors={"video": OSError(errno.EBUSY, "busy")})
        unit = MediaAcquisitionUnit(settings, player_factory=factory)

        with pytest.raises(MediaError) as exc_info:
            await unit.acquire()

        assert exc_info.value.kind == MediaErrorKind.DEVICE_BUSY
        assert factory.players[0].audio.stopped

    async def test_missing_track_is_device_not_found(self, settings):
        unit = MediaAcquisitionUnit(settings, player_factory=PlayerFactory(missing={"video"}))

        with pytest.raises(MediaError) as exc_info:
            await unit.acquire()

        assert exc_info.value.kind == MediaErrorKind.DEVICE_NOT_FOUND


class TestToggles:

    async def test_flags_set_before_acquire_are_applied(self, unit):
        unit.set_muted(True)
        unit.set_video_enabled(False)

        track_set = await unit.acquire()

        assert not track_set.audio.enabled
        assert not track_set.video.enabled
        assert track_set.muted and track_set.video_off

    async def test_toggle_after_acquire(self, unit):
        track_set = await unit.acquire()

        unit.set_muted(True)
        assert not track_set.audio.enabled
        assert track_set.video.enabled

        unit.set_muted(False)
        unit.set_video_enabled(False)
        assert track_set.audio.enabled
        assert not track_set.video.enabled
        assert not unit.video_enabled


class TestReplaceAndRelease:

    async def test_replace_swaps_sender_then_stops_old(self, unit):
        link = FakeLink()
        track_set = await unit.acquire()
        unit.attach_peer_link(link)
        unit.set_muted(True)
        old_audio = track_set.audio

        new_audio = await unit.replace("audio")

        assert track_set.audio is new_audio
        assert link.replaced == [("audio", new_audio)]
        assert old_audio.source.stopped
        assert not new_audio.enabled

    async def test_replace_before_acquire_rejected(self, unit):
        with pytest.raises(RuntimeError):
            await unit.replace("video")

    async def test_release_is_idempotent(self, unit):
        track_set = await unit.acquire()

        unit.release()
        unit.release()

        assert unit.track_set is None
        assert track_set.audio.source.stopped
        assert track_set.video.source.stopped


class TestMediaErrorMapping:

    def test_browser_style_error_names(self):
        class NotReadableError(Exception):
            pass

        class NotAllowedError(Exception):
            pass

        assert MediaError.from_exception(NotReadableError()).kind == MediaErrorKind.DEVICE_BUSY
        assert MediaError.from_exception(NotAllowedError()).kind == MediaErrorKind.PERMISSION_DENIED

    def test_errno_wins_over_class_name(self):
        error = FileNotFoundError(errno.EBUSY, "busy")
        assert MediaError.from_exception(error).kind == MediaErrorKind.DEVICE_BUSY

    def test_unknown(self):
        assert MediaError.from_exception(RuntimeError("?")).kind == MediaErrorKind.UNKNOWN


class TestSwitchableTrack:

    async def test_enabled_passes_frames_through(self):
        frame = AudioFrame(format="s16", layout="mono", samples=160)
        track = SwitchableTrack(FakeSource("audio", frame))

        assert await track.recv() is frame

    async def test_disabled_audio_sends_silence(self):
        frame = AudioFrame(format="s16", layout="mono", samples=160)
        frame.planes[0].update(b"\x01" * frame.planes[0].buffer_size)
        frame.sample_rate = 48000
        frame.pts = 960
        track = SwitchableTrack(FakeSource("audio", frame))
        track.enabled = False

        silent = await track.recv()

        assert silent is not frame
        assert silent.pts == 960
        assert silent.samples == 160
        assert set(bytes(silent.planes[0])) == {0}

    async def test_disabled_video_sends_black(self):
        frame = VideoFrame(width=16, height=16, format="yuv420p")
        frame.pts = 3000
        track = SwitchableTrack(FakeSource("video", frame))
        track.enabled = False

        black = await track.recv()

        assert (black.width, black.height) == (16, 16)
        assert black.pts == 3000
        assert set(bytes(black.planes[0])) == {0}
        assert set(bytes(black.planes[1])) == {128}

    def test_stop_stops_source(self):
        source = FakeSource("video")
        track = SwitchableTrack(source)

        track.stop()

        assert source.stopped
        assert track.readyState == "ended"
