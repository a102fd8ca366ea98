"""재연결 재시도 정책.

``backoff(n) = min(base * growth^(n-1), max)``
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """지수 백오프 재시도 정책.

    Attributes:
        base_delay (float): 첫 재시도 대기 시간 (초)
        growth_factor (float): 시도마다 곱해지는 배수
        max_delay (float): 대기 시간 상한 (초)
        max_attempts (int): 최대 재시도 횟수

    Examples:
        >>> policy = RetryPolicy(base_delay=2.0, growth_factor=2.0, max_delay=10.0)
        >>> [policy.backoff(n) for n in (1, 2, 3, 4)]
        [2.0, 4.0, 8.0, 10.0]
    """

    base_delay: float = 2.0
    growth_factor: float = 1.5
    max_delay: float = 10.0
    max_attempts: int = 3

    def __post_init__(self):
        if self.base_delay <= 0 or self.max_delay <= 0:
            raise ValueError("대기 시간은 0보다 커야 합니다")
        if self.growth_factor < 1.0:
            raise ValueError("growth_factor는 1.0 이상이어야 합니다")
        if self.max_attempts < 1:
            raise ValueError("max_attempts는 1 이상이어야 합니다")

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        """CallSettings에서 정책을 생성합니다."""
        return cls(
            base_delay=settings.RETRY_BASE_DELAY,
            growth_factor=settings.RETRY_GROWTH_FACTOR,
            max_delay=settings.RETRY_MAX_DELAY,
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
        )

    def backoff(self, attempt: int) -> float:
        """attempt번째 재시도 전 대기 시간 (attempt는 1부터)."""
        if attempt < 1:
            raise ValueError("attempt는 1부터 시작합니다")
        return min(self.base_delay * self.growth_factor ** (attempt - 1), self.max_delay)

    def exhausted(self, attempt: int) -> bool:
        """attempt번째 시도가 상한을 넘었는지 여부."""
        return attempt > self.max_attempts
