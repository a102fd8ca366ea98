"""통화 세션 상태 머신.

Peer Link 하나와 Signaling Channel 하나를 소유하며, 역할에 따른
offer/answer 절차와 재연결 재시도 정책을 실행합니다.

State Flow:
    Init → AcquiringMedia → Joining
        → (Caller) Negotiating: offer 생성/전송 (offer_sent 가드)
        → (Answerer) WaitingForOffer → Negotiating: offer 적용 후 answer 전송
    Negotiating → Connected (피어 연결 성공)
    Negotiating / Connected → Reconnecting (연결 실패, 협상 타임아웃)
    Reconnecting → 백오프 후 Caller는 새 offer, Answerer는 request-offer
    Reconnecting → Failed (재시도 소진)
    어느 상태에서든 end() → Ended

Concurrency:
    - 시그널링 이벤트, 연결 상태 이벤트, 타이머 콜백은 모두 하나의 asyncio.Lock으로
      직렬화됨
    - end()는 락을 잡지 않고 active 플래그만 내림. 진행 중이던 단계는 await 이후
      플래그를 확인하고 결과를 버림
    - 정리(release/close/leave/disconnect)는 한 번만 실행되며 예외를 전파하지 않음

Examples:
    >>> machine = CallSessionMachine(
    ...     config, media=media, signaling=channel, peer_link=PeerLink(),
    ... )
    >>> await machine.start()
    >>> machine.status
    <CallStatus.NEGOTIATING: 'negotiating'>
    >>> await machine.end()
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set, Union

from ..config import CallSettings, get_call_settings
from ..media.acquisition import MediaConstraints
from ..shared.dto import IceCandidatePayload, RequestOffer, SessionDescription, WebRTCSignal
from ..shared.errors import (
    CallError,
    MediaError,
    RetryExhausted,
    SignalingError,
    SignalingErrorKind,
)
from .retry import RetryPolicy
from .scheduler import LoopScheduler, Scheduler
from .state import CallSession, CallStatus, Role, SessionConfig

logger = logging.getLogger(__name__)

# 사용자에게 노출되는 오류
USER_VISIBLE_ERRORS = (MediaError, RetryExhausted)

OBSERVER_EVENTS = ("status", "partner", "error", "remote_track", "partner_left")


class CallSessionMachine:
    """통화 한 건의 수명 주기를 관리하는 상태 머신.

    Attributes:
        session (CallSession): 상태 머신이 단독으로 소유하는 세션 엔티티
        media: MediaAcquisitionUnit (또는 같은 인터페이스)
        signaling: SignalingChannel (또는 같은 인터페이스)
        peer_link: PeerLink (또는 같은 인터페이스)
        retry_policy (RetryPolicy): 재연결 백오프 정책
        scheduler (Scheduler): 타이머/시계
        last_error (Optional[CallError]): Failed로 끝난 원인
    """

    def __init__(
        self,
        config: SessionConfig,
        *,
        media,
        signaling,
        peer_link,
        retry_policy: Optional[RetryPolicy] = None,
        scheduler: Optional[Scheduler] = None,
        settings: Optional[CallSettings] = None,
        on_complete: Optional[Callable[[CallSession], Any]] = None,
    ):
        self.config = config
        self.session = CallSession(
            room_id=config.room_id,
            role=config.role,
            match_id=config.match_id,
            partner_identity=config.partner_identity,
        )
        self.media = media
        self.signaling = signaling
        self.peer_link = peer_link
        self._settings = settings or get_call_settings()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self._settings)
        self.scheduler = scheduler or LoopScheduler()
        self._on_complete = on_complete
        self.last_error: Optional[CallError] = None

        self._observers: Dict[str, List[Callable]] = {name: [] for name in OBSERVER_EVENTS}
        self._lock = asyncio.Lock()
        self._active = True
        self._torn_down = False
        self._completed = False

        self._join_timer = None
        self._negotiation_timer = None
        self._retry_timer = None

        # Joining 중 도착한 시그널 (joined-room 이후 순서대로 재처리)
        self._early_signals: List[Union[WebRTCSignal, RequestOffer]] = []
        self._partner_present = False
        # Caller: 현재 라운드에서 보낸 offer (상대 재입장 시 재전송)
        self._local_offer: Optional[SessionDescription] = None
        # Answerer: 현재 링크에 적용한 마지막 offer
        self._applied_offer_sdp: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()

    # ============================================================
    # 조회
    # ============================================================

    @property
    def status(self) -> CallStatus:
        return self.session.status

    @property
    def active(self) -> bool:
        return self._active

    @property
    def duration(self) -> float:
        return self.session.duration(self.scheduler.now())

    def subscribe(self, event: str, callback: Callable):
        """상태 변화 관찰자를 등록합니다.

        Args:
            event: "status" | "partner" | "error" | "remote_track" | "partner_left"
            callback: 이벤트 인자를 받는 콜백
        """
        if event not in self._observers:
            raise ValueError(f"알 수 없는 이벤트: {event}")
        self._observers[event].append(callback)

    # ============================================================
    # 공개 동작
    # ============================================================

    async def start(self):
        """미디어 획득 → 피어 링크 열기 → 릴레이 연결 및 룸 참가."""
        async with self._lock:
            await self._start_locked()

    async def reconnect(self) -> bool:
        """재시도 카운터를 0으로 되돌리고 Reconnecting으로 다시 진입합니다.

        Returns:
            bool: 재연결을 시작했으면 True
        """
        async with self._lock:
            if not self._active:
                return False
            if self.status not in (
                CallStatus.WAITING_FOR_OFFER,
                CallStatus.NEGOTIATING,
                CallStatus.CONNECTED,
                CallStatus.RECONNECTING,
            ):
                logger.warning(f"[Session] {self.status.value} 상태에서는 재연결할 수 없습니다")
                return False
            self.session.retry_count = 0
            await self._enter_reconnecting("수동 재연결")
            return True

    async def end(self):
        """어느 상태에서든 Ended로 전이하고 정리 후 완료 콜백을 한 번 호출합니다."""
        if self.status == CallStatus.ENDED:
            return
        self._active = False
        self._cancel_timers()
        self._transition(CallStatus.ENDED)
        self.session.mark_finished(self.scheduler.now())
        await self._teardown()
        await self._complete()

    # ============================================================
    # 시작 절차
    # ============================================================

    async def _start_locked(self):
        if not self._active:
            return
        config = self.config
        self._transition(CallStatus.ACQUIRING_MEDIA)
        self.session.started_at = self.scheduler.now()

        try:
            track_set = await self.media.acquire(MediaConstraints(audio=config.audio, video=config.video))
        except MediaError as e:
            if self._active:
                await self._fail(e)
            return
        if not self._active:
            # end()가 먼저 호출됨 - 획득한 트랙은 버림
            self.media.release()
            return

        self.peer_link.open()
        self.peer_link.on_remote_track(self._handle_remote_track)
        self.peer_link.on_ice_candidate(self._handle_local_candidate)
        self.peer_link.on_connectivity_change(self._handle_connectivity)
        self.peer_link.add_tracks(track_set)
        self.media.attach_peer_link(self.peer_link)

        self._transition(CallStatus.JOINING)
        self._bind_signaling()
        timeout = self._settings.SIGNALING_CONNECT_TIMEOUT
        try:
            await self.signaling.connect(config.signaling_url or self._settings.SIGNALING_URL, timeout=timeout)
        except SignalingError as e:
            if self._active:
                await self._fail(e)
            return
        if not self._active:
            await self._safely(self.signaling.disconnect)
            return

        self._join_timer = self.scheduler.call_later(timeout, self._on_join_timeout)
        await self.signaling.join(config.room_id, config.user_id, config.user_name)

    def _bind_signaling(self):
        channel = self.signaling
        channel.on_joined(self._handle_joined)
        channel.on_partner_joined(self._handle_partner_joined)
        channel.on_partner_info(self._handle_partner_info)
        channel.on_signal(self._handle_signal)
        channel.on_partner_left(self._handle_partner_left)
        channel.on_disconnected(self._handle_disconnected)
        channel.on_error(self._handle_relay_error)

    # ============================================================
    # 시그널링 이벤트
    # ============================================================

    async def _handle_joined(self, role: str, users_in_room: int):
        async with self._lock:
            if not self._active:
                return
            self._join_timer = self._cancel(self._join_timer)
            if role != self.session.role.value:
                logger.warning(
                    f"[Session] 릴레이 역할({role})이 세션 역할({self.session.role.value})과 다름 - 세션 역할 유지"
                )
            if users_in_room > 1:
                self._partner_present = True

            if self.status != CallStatus.JOINING:
                logger.info(f"[Session] 룸 재참가 확인 (참가자 {users_in_room}명)")
                return

            logger.info(f"[Session] 룸 '{self.session.room_id}' 참가 완료 (참가자 {users_in_room}명)")
            if self.session.role == Role.CALLER:
                await self._negotiate_as_caller()
            else:
                self._transition(CallStatus.WAITING_FOR_OFFER)
                self._arm_negotiation_timer()

            early, self._early_signals = self._early_signals, []
            for message in early:
                if not self._active:
                    return
                await self._process_signal(message)

    async def _handle_partner_joined(self, user_name: str):
        async with self._lock:
            if not self._active:
                return
            self._partner_present = True
            self._set_partner(user_name)
            if self.session.role != Role.CALLER or self.status != CallStatus.NEGOTIATING:
                return
            self._arm_negotiation_timer()
            if self.session.offer_sent and self._local_offer and not self.peer_link.has_remote_description:
                # 상대가 들어오기 전에 보낸 offer는 릴레이에서 유실됨
                logger.info("[Session] 상대 입장 - 저장된 offer 재전송")
                await self.signaling.send_signal(self.session.room_id, "offer", self._local_offer)

    async def _handle_partner_info(self, user_name: str):
        async with self._lock:
            if not self._active:
                return
            self._partner_present = True
            self._set_partner(user_name)

    async def _handle_partner_left(self):
        async with self._lock:
            if not self._active:
                return
            self._partner_present = False
            logger.info(f"[Session] 상대 퇴장: {self.session.partner_identity}")
            self._notify("partner_left")

    async def _handle_signal(self, message: Union[WebRTCSignal, RequestOffer]):
        async with self._lock:
            if not self._active:
                return
            if self.status in (CallStatus.INIT, CallStatus.ACQUIRING_MEDIA, CallStatus.JOINING):
                logger.debug("[Session] joined-room 이전 시그널 보관")
                self._early_signals.append(message)
                return
            await self._process_signal(message)

    async def _handle_disconnected(self, reason: str):
        async with self._lock:
            if not self._active:
                return
            status = self.status
            if status == CallStatus.JOINING:
                await self._fail(SignalingError(SignalingErrorKind.DISCONNECTED, reason))
            elif status in (CallStatus.WAITING_FOR_OFFER, CallStatus.NEGOTIATING):
                await self._enter_reconnecting(f"시그널링 끊김: {reason}")
            elif status == CallStatus.CONNECTED:
                # 미디어는 피어 간 직접 연결이므로 유지. 다음 재시도에서 재참가
                logger.warning(f"[Session] 통화 중 시그널링 끊김 - 미디어 유지: {reason}")

    async def _handle_relay_error(self, message: str, code: Optional[str] = None):
        async with self._lock:
            if not self._active:
                return
            if self.status == CallStatus.JOINING:
                await self._fail(SignalingError(SignalingErrorKind.REJECTED, message))
            else:
                logger.warning(f"[Session] 릴레이 오류 ({code}): {message}")

    # ============================================================
    # offer / answer / candidate
    # ============================================================

    async def _process_signal(self, message: Union[WebRTCSignal, RequestOffer]):
        if isinstance(message, RequestOffer):
            await self._handle_request_offer()
        elif message.type == "offer":
            await self._handle_offer(message.offer)
        elif message.type == "answer":
            await self._handle_answer(message.answer)
        else:
            await self._handle_remote_candidate(message.candidate)

    async def _negotiate_as_caller(self):
        if self.status != CallStatus.NEGOTIATING:
            self._transition(CallStatus.NEGOTIATING)
        if self._partner_present:
            self._arm_negotiation_timer()
        if self.session.offer_sent:
            logger.debug("[Session] offer 이미 전송됨 - 중복 생성 안 함")
            return

        result = await self.peer_link.create_offer_and_set_local()
        if not self._active or not result.ok:
            return
        self.session.offer_sent = True
        self._local_offer = result.description
        logger.info("[Session] offer 전송")
        await self.signaling.send_signal(self.session.room_id, "offer", result.description)

    async def _handle_offer(self, description: SessionDescription):
        if self.session.role == Role.CALLER:
            logger.warning("[Session] Caller가 offer 수신 - 프로토콜 위반, 무시")
            return
        status = self.status
        if status not in (
            CallStatus.WAITING_FOR_OFFER,
            CallStatus.NEGOTIATING,
            CallStatus.CONNECTED,
            CallStatus.RECONNECTING,
        ):
            logger.debug(f"[Session] {status.value} 상태 offer 무시")
            return
        if description.sdp == self._applied_offer_sdp:
            logger.debug("[Session] 중복 offer 무시")
            return

        if status == CallStatus.RECONNECTING:
            self._retry_timer = self._cancel(self._retry_timer)
        if self._applied_offer_sdp is not None:
            # 이미 협상된 링크에 새 offer - 피어 연결을 새로 만든다
            await self.peer_link.restart()
            self._applied_offer_sdp = None
            if not self._active:
                return

        if self.status != CallStatus.NEGOTIATING:
            self._transition(CallStatus.NEGOTIATING)
        self._arm_negotiation_timer()

        result = await self.peer_link.set_remote_and_create_answer(description)
        if not self._active or not result.ok:
            return
        self._applied_offer_sdp = description.sdp
        logger.info("[Session] answer 전송")
        await self.signaling.send_signal(self.session.room_id, "answer", result.description)

    async def _handle_answer(self, description: SessionDescription):
        if self.session.role == Role.ANSWERER:
            logger.warning("[Session] Answerer가 answer 수신 - 프로토콜 위반, 무시")
            return
        if self.status != CallStatus.NEGOTIATING or not self.session.offer_sent:
            logger.debug(f"[Session] {self.status.value} 상태 answer 무시")
            return
        await self.peer_link.set_remote_description(description)

    async def _handle_remote_candidate(self, candidate: IceCandidatePayload):
        if self.status not in (CallStatus.WAITING_FOR_OFFER, CallStatus.NEGOTIATING, CallStatus.CONNECTED):
            logger.debug(f"[Session] {self.status.value} 상태 candidate 무시")
            return
        await self.peer_link.add_ice_candidate(candidate)

    async def _handle_request_offer(self):
        if self.session.role == Role.ANSWERER:
            logger.warning("[Session] Answerer가 request-offer 수신 - 무시")
            return
        status = self.status
        if status == CallStatus.CONNECTED:
            await self._enter_reconnecting("상대가 재협상 요청")
        elif status == CallStatus.NEGOTIATING:
            if self.peer_link.has_remote_description:
                await self._enter_reconnecting("상대 피어 연결 재생성")
            elif self.session.offer_sent and self._local_offer:
                logger.info("[Session] request-offer 수신 - 저장된 offer 재전송")
                await self.signaling.send_signal(self.session.room_id, "offer", self._local_offer)
        else:
            logger.debug(f"[Session] {status.value} 상태 request-offer 무시")

    # ============================================================
    # 피어 링크 이벤트
    # ============================================================

    async def _handle_connectivity(self, state: str):
        async with self._lock:
            if not self._active:
                return
            status = self.status
            if state == "connected":
                if status == CallStatus.NEGOTIATING:
                    self._enter_connected()
            elif state in ("failed", "disconnected"):
                if status in (CallStatus.NEGOTIATING, CallStatus.CONNECTED):
                    await self._enter_reconnecting(f"피어 연결 {state}")

    async def _handle_local_candidate(self, candidate: IceCandidatePayload):
        async with self._lock:
            if not self._active or self.status not in (CallStatus.NEGOTIATING, CallStatus.CONNECTED):
                return
            await self.signaling.send_signal(self.session.room_id, "candidate", candidate)

    def _handle_remote_track(self, track):
        self._notify("remote_track", track)

    # ============================================================
    # 연결 / 재연결 / 실패
    # ============================================================

    def _enter_connected(self):
        self._negotiation_timer = self._cancel(self._negotiation_timer)
        self._transition(CallStatus.CONNECTED)
        self.session.mark_connected(self.scheduler.now())
        logger.info(f"[Session] 통화 연결됨: room={self.session.room_id}, partner={self.session.partner_identity}")

    async def _enter_reconnecting(self, reason: str):
        self._negotiation_timer = self._cancel(self._negotiation_timer)
        self._retry_timer = self._cancel(self._retry_timer)
        self._transition(CallStatus.RECONNECTING)

        self.session.retry_count += 1
        attempt = self.session.retry_count
        if self.retry_policy.exhausted(attempt):
            await self._fail(RetryExhausted(self.retry_policy.max_attempts))
            return

        delay = self.retry_policy.backoff(attempt)
        logger.info(
            f"[Session] 재연결 {attempt}/{self.retry_policy.max_attempts} 예약 ({delay:.1f}s 후): {reason}"
        )
        self._retry_timer = self.scheduler.call_later(delay, self._run_retry)

    async def _run_retry(self):
        async with self._lock:
            self._retry_timer = None
            if not self._active or self.status != CallStatus.RECONNECTING:
                return
            attempt = self.session.retry_count
            if attempt >= self.retry_policy.max_attempts:
                await self._fail(RetryExhausted(attempt))
                return

            logger.info(f"[Session] 재연결 시도 {attempt}/{self.retry_policy.max_attempts}")
            if not self.signaling.connected:
                try:
                    await self.signaling.connect(timeout=self._settings.SIGNALING_CONNECT_TIMEOUT)
                except SignalingError as e:
                    if self._active:
                        await self._enter_reconnecting(f"릴레이 재연결 실패: {e}")
                    return
                if not self._active:
                    return
                config = self.config
                await self.signaling.join(config.room_id, config.user_id, config.user_name)

            await self.peer_link.restart()
            if not self._active:
                return
            self._applied_offer_sdp = None
            self._local_offer = None

            if self.session.role == Role.CALLER:
                self.session.offer_sent = False
                await self._negotiate_as_caller()
            else:
                self._transition(CallStatus.WAITING_FOR_OFFER)
                self._arm_negotiation_timer()
                await self.signaling.request_offer(self.session.room_id)

    async def _on_negotiation_timeout(self):
        async with self._lock:
            self._negotiation_timer = None
            if not self._active:
                return
            if self.status in (CallStatus.WAITING_FOR_OFFER, CallStatus.NEGOTIATING):
                await self._enter_reconnecting("연결 수립 타임아웃")

    async def _on_join_timeout(self):
        async with self._lock:
            self._join_timer = None
            if self._active and self.status == CallStatus.JOINING:
                await self._fail(SignalingError(SignalingErrorKind.CONNECT_FAILED, "joined-room 응답 타임아웃"))

    async def _fail(self, error: CallError):
        if self.session.is_terminal:
            return
        self._active = False
        self._cancel_timers()
        self.last_error = error
        self._transition(CallStatus.FAILED)
        self.session.mark_finished(self.scheduler.now())
        logger.error(f"[Session] 통화 실패: {type(error).__name__}: {error}")
        await self._teardown()
        if isinstance(error, USER_VISIBLE_ERRORS):
            self._notify("error", error)

    # ============================================================
    # 정리
    # ============================================================

    async def _teardown(self):
        if self._torn_down:
            return
        self._torn_down = True
        try:
            self.media.release()
        except Exception as e:
            logger.warning(f"[Session] 미디어 해제 중 오류 (무시): {e}")
        await self._safely(self.peer_link.close)
        await self._safely(self.signaling.leave)
        await self._safely(self.signaling.disconnect)
        logger.info(f"[Session] 세션 정리 완료: room={self.session.room_id}")

    async def _complete(self):
        if self._completed:
            return
        self._completed = True
        if self._on_complete is None:
            return
        try:
            result = self._on_complete(self.session)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"[Session] 완료 콜백 오류: {e}", exc_info=True)

    @staticmethod
    async def _safely(step: Callable):
        try:
            await step()
        except Exception as e:
            logger.warning(f"[Session] 정리 단계 오류 (무시): {e}")

    # ============================================================
    # 내부 유틸
    # ============================================================

    def _transition(self, target: CallStatus):
        previous = self.session.transition(target)
        logger.info(f"[Session] {previous.value} → {target.value}")
        self._notify("status", target)

    def _set_partner(self, user_name: Optional[str]):
        if user_name and user_name != self.session.partner_identity:
            self.session.partner_identity = user_name
            logger.info(f"[Session] 상대 정보: {user_name}")
            self._notify("partner", user_name)

    def _arm_negotiation_timer(self):
        if self._negotiation_timer is None:
            self._negotiation_timer = self.scheduler.call_later(
                self._settings.CONNECTION_TIMEOUT, self._on_negotiation_timeout
            )

    def _cancel_timers(self):
        self._join_timer = self._cancel(self._join_timer)
        self._negotiation_timer = self._cancel(self._negotiation_timer)
        self._retry_timer = self._cancel(self._retry_timer)

    @staticmethod
    def _cancel(handle):
        if handle is not None:
            handle.cancel()
        return None

    def _notify(self, event: str, *args):
        for callback in self._observers[event]:
            try:
                result = callback(*args)
            except Exception as e:
                logger.error(f"[Session] '{event}' 관찰자 오류: {e}", exc_info=True)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
