"""세션 상태 정의와 재시도 정책 테스트."""

import pytest

from swapcall.session.retry import RetryPolicy
from swapcall.session.state import (
    TERMINAL_STATES,
    TRANSITIONS,
    CallSession,
    CallStatus,
    Role,
    SessionConfig,
    can_transition,
    format_duration,
)
from swapcall.shared.errors import InvalidTransition


class TestTransitions:

    def test_every_status_has_an_entry(self):
        assert set(TRANSITIONS) == set(CallStatus)

    @pytest.mark.parametrize("status", [s for s in CallStatus if s != CallStatus.ENDED])
    def test_end_reachable_from_every_state(self, status):
        assert can_transition(status, CallStatus.ENDED)

    def test_ended_is_final(self):
        assert TRANSITIONS[CallStatus.ENDED] == frozenset()

    def test_failed_only_from_start_or_recovery(self):
        sources = {s for s, targets in TRANSITIONS.items() if CallStatus.FAILED in targets}
        assert sources == {CallStatus.ACQUIRING_MEDIA, CallStatus.JOINING, CallStatus.RECONNECTING}

    def test_invalid_transition_raises(self):
        session = CallSession(room_id="r", role=Role.CALLER)
        with pytest.raises(InvalidTransition):
            session.transition(CallStatus.CONNECTED)
        assert session.status == CallStatus.INIT

    def test_transition_records_history(self):
        session = CallSession(room_id="r", role=Role.ANSWERER)
        previous = session.transition(CallStatus.ACQUIRING_MEDIA)
        session.transition(CallStatus.ENDED)

        assert previous == CallStatus.INIT
        assert session.history == [CallStatus.ACQUIRING_MEDIA, CallStatus.ENDED]
        assert session.is_terminal
        assert CallStatus.ENDED in TERMINAL_STATES


class TestCallSession:

    def test_config_without_any_media_rejected(self):
        with pytest.raises(ValueError):
            SessionConfig(room_id="r", role=Role.CALLER, user_id="u", audio=False, video=False)

        assert SessionConfig(room_id="r", role=Role.CALLER, user_id="u", video=False).audio

    def test_room_and_role_are_immutable(self):
        session = CallSession(room_id="r", role=Role.CALLER)
        with pytest.raises(AttributeError):
            session.role = Role.ANSWERER
        with pytest.raises(AttributeError):
            session.room_id = "other"

    def test_partner_identity_is_mutable(self):
        session = CallSession(room_id="r", role=Role.CALLER)
        session.partner_identity = "Bob"
        assert session.partner_identity == "Bob"

    def test_duration_measured_from_first_connect(self):
        session = CallSession(room_id="r", role=Role.CALLER, retry_count=2)
        assert session.duration(100.0) == 0.0

        session.mark_connected(10.0)
        session.mark_connected(50.0)
        assert session.retry_count == 0
        assert session.duration(70.0) == pytest.approx(60.0)

        session.mark_finished(80.0)
        assert session.duration(500.0) == pytest.approx(70.0)

    @pytest.mark.parametrize("seconds,label", [(0, "00:00"), (75.9, "01:15"), (3600, "60:00"), (-3, "00:00")])
    def test_format_duration(self, seconds, label):
        assert format_duration(seconds) == label


class TestRetryPolicy:

    def test_backoff_grows_and_caps(self):
        policy = RetryPolicy(base_delay=2.0, growth_factor=2.0, max_delay=10.0)
        assert [policy.backoff(n) for n in (1, 2, 3, 4, 5)] == [2.0, 4.0, 8.0, 10.0, 10.0]

    def test_default_growth(self):
        policy = RetryPolicy()
        assert policy.backoff(3) == pytest.approx(4.5)

    def test_exhausted_after_max_attempts(self):
        policy = RetryPolicy(max_attempts=3)
        assert not policy.exhausted(3)
        assert policy.exhausted(4)

    def test_attempt_starts_at_one(self):
        with pytest.raises(ValueError):
            RetryPolicy().backoff(0)

    @pytest.mark.parametrize("kwargs", [
        {"base_delay": 0},
        {"growth_factor": 0.5},
        {"max_attempts": 0},
    ])
    def test_invalid_policy_rejected(self, kwargs):
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_from_settings(self, settings):
        policy = RetryPolicy.from_settings(settings)
        assert policy == RetryPolicy(base_delay=2.0, growth_factor=1.5, max_delay=10.0, max_attempts=3)
