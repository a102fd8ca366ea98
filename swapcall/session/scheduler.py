"""타이머/시계 추상화.

상태 머신은 실제 타이머 대신 이 인터페이스에만 의존하므로 테스트에서
수동 스케줄러로 교체할 수 있습니다.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional, Set

logger = logging.getLogger(__name__)


class Scheduler:
    """스케줄러 인터페이스.

    call_later가 반환하는 핸들은 ``cancel()`` 메서드를 가져야 합니다.
    콜백이 코루틴 함수이면 태스크로 실행됩니다.
    """

    def now(self) -> float:
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable[[], Any]):
        raise NotImplementedError


class LoopScheduler(Scheduler):
    """asyncio 이벤트 루프 기반 스케줄러."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        # 실행 중인 태스크 참조 (GC 방지)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, self._run, callback)

    def _run(self, callback: Callable[[], Any]):
        result = callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[Scheduler] 타이머 콜백 오류: {task.exception()!r}")
