"""통화 세션 Facade 테스트 (평가, 매칭 완료, 관찰자 전달)."""

import pytest

from swapcall.session.facade import CallSessionFacade
from swapcall.session.state import CallStatus, Role, SessionConfig
from swapcall.shared.errors import MatchApiError


class FakeMatchClient:
    def __init__(self, error=None):
        self.error = error
        self.completed = []

    async def complete_match(self, match_id, rating):
        self.completed.append((match_id, rating))
        if self.error is not None:
            raise self.error
        return {"ok": True}


def caller_config(**overrides):
    values = dict(room_id="room-1", role=Role.CALLER, user_id="user-1", user_name="Alice", match_id="match-1")
    values.update(overrides)
    return SessionConfig(**values)


@pytest.fixture
def match_client():
    return FakeMatchClient()


@pytest.fixture
def facade(settings, media, signaling, peer_link, scheduler, match_client):
    return CallSessionFacade(
        settings,
        media=media,
        signaling=signaling,
        peer_link=peer_link,
        scheduler=scheduler,
        match_client=match_client,
    )


async def connect(facade, signaling, peer_link):
    await facade.start(caller_config())
    await signaling.fire("joined", "caller", 2)
    await signaling.deliver_answer()
    await peer_link.emit_connectivity("connected")


class TestBeforeStart:

    def test_initial_state(self, facade):
        assert facade.status == CallStatus.INIT
        assert facade.session is None
        assert facade.duration_label == "00:00"
        assert facade.local_tracks == []
        assert facade.remote_tracks == []

    def test_toggles_work_before_start(self, facade, media):
        assert facade.toggle_mute() is True
        assert facade.toggle_video() is False
        assert media.muted and not media.video_enabled
        assert facade.muted and not facade.video_enabled

        assert facade.toggle_mute() is False
        assert not facade.muted

    async def test_end_before_start_releases_media(self, facade, media, match_client):
        await facade.end(rating=4)

        assert facade.status == CallStatus.ENDED
        assert media.release_calls == 1
        assert match_client.completed == []

    async def test_cannot_start_after_end(self, facade):
        await facade.end()

        with pytest.raises(RuntimeError):
            await facade.start(caller_config())

    async def test_reconnect_before_start_is_refused(self, facade):
        assert await facade.reconnect() is False


class TestLifecycle:

    async def test_start_twice_rejected(self, facade):
        await facade.start(caller_config())

        with pytest.raises(RuntimeError):
            await facade.start(caller_config())

    async def test_connected_call_exposes_session_details(self, facade, signaling, peer_link, scheduler):
        await connect(facade, signaling, peer_link)
        await signaling.fire("partner_info", "Bob")
        await peer_link.emit_remote_track("remote-video")
        await scheduler.advance(75)

        assert facade.status == CallStatus.CONNECTED
        assert facade.partner_identity == "Bob"
        assert facade.duration_label == "01:15"
        assert facade.remote_tracks == ["remote-video"]
        assert [t.kind for t in facade.local_tracks] == ["audio", "video"]

    async def test_switch_device_replaces_sender_track(self, facade, signaling, peer_link):
        await connect(facade, signaling, peer_link)

        track = await facade.switch_device("video")

        assert peer_link.replaced == [("video", track)]

    async def test_observers_registered_before_start_are_forwarded(self, facade, signaling, peer_link):
        statuses, partners = [], []
        facade.on_status_change(statuses.append)
        facade.on_partner_identity(partners.append)

        await connect(facade, signaling, peer_link)
        await signaling.fire("partner_joined", "Bob")

        assert statuses[-1] == CallStatus.CONNECTED
        assert CallStatus.JOINING in statuses
        assert partners == ["Bob"]

    async def test_observer_registered_after_start(self, facade, signaling, peer_link):
        await facade.start(caller_config())
        left = []
        facade.on_partner_left(lambda: left.append(True))

        await signaling.fire("partner_left")

        assert left == [True]


class TestRating:

    @pytest.mark.parametrize("rating", [0, 6, 3.5, "5", True])
    def test_invalid_rating_rejected(self, facade, rating):
        with pytest.raises(ValueError):
            facade.set_rating(rating)
        assert facade.rating is None

    async def test_end_with_rating_completes_match_once(self, facade, signaling, peer_link, match_client):
        await connect(facade, signaling, peer_link)

        await facade.end(rating=5)
        await facade.end(rating=5)

        assert facade.status == CallStatus.ENDED
        assert match_client.completed == [("match-1", 5)]

    async def test_invalid_rating_at_end_still_tears_down(self, facade, signaling, peer_link, media, match_client):
        await facade.start(caller_config())
        await signaling.fire("joined", "caller", 2)

        await facade.end(rating=0)

        assert facade.status == CallStatus.ENDED
        assert media.release_calls == 1
        assert peer_link.closed
        assert signaling.disconnect_calls == 1
        assert facade.rating is None
        assert match_client.completed == []

    async def test_rating_set_before_end(self, facade, signaling, peer_link, match_client):
        await connect(facade, signaling, peer_link)
        facade.set_rating(3)

        await facade.end()

        assert match_client.completed == [("match-1", 3)]

    async def test_no_completion_without_rating(self, facade, signaling, peer_link, match_client):
        await connect(facade, signaling, peer_link)

        await facade.end()

        assert match_client.completed == []

    async def test_no_completion_without_match_id(self, facade, match_client):
        await facade.start(caller_config(match_id=None))

        await facade.end(rating=5)

        assert match_client.completed == []

    async def test_completion_failure_is_logged_not_raised(self, settings, media, signaling, peer_link, scheduler):
        client = FakeMatchClient(error=MatchApiError(500, "server error"))
        facade = CallSessionFacade(
            settings, media=media, signaling=signaling, peer_link=peer_link,
            scheduler=scheduler, match_client=client,
        )
        await facade.start(caller_config())

        await facade.end(rating=2)

        assert facade.status == CallStatus.ENDED
        assert client.completed == [("match-1", 2)]
