"""
지수 백오프 정책

k8s watch 스트림 재연결 등 일시적 오류 재시도 간격을 계산합니다.
delay = initial_delay * (factor ^ attempt), max_delay 상한 + 지터
"""

import math
import random

from pydantic import BaseModel, ConfigDict, Field


class BackoffPolicy(BaseModel):
    """지수 백오프 설정"""

    model_config = ConfigDict(frozen=True, extra="forbid")

    initial_delay: float = Field(default=0.8, gt=0)  # 초
    max_delay: float = Field(default=30.0, gt=0)
    factor: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(default=0.1, ge=0.0, le=1.0)

    @property
    def max_exponent(self) -> int:
        """max_delay에 도달하는 최소 지수 (이후 지수는 증가시키지 않음)"""
        if self.factor <= 1.0 or self.initial_delay >= self.max_delay:
            return 0
        return math.ceil(math.log(self.max_delay / self.initial_delay, self.factor))

    def delay(self, attempt: int) -> float:
        """attempt번째(0부터) 재시도 전 대기 시간 (초)"""
        exponent = min(max(attempt, 0), self.max_exponent)
        delay = min(self.initial_delay * (self.factor**exponent), self.max_delay)
        return delay + delay * self.jitter * random.random()

    def start(self) -> "Backoff":
        return Backoff(self)


class Backoff:
    """BackoffPolicy의 실행 상태 (시도 횟수 추적)"""

    def __init__(self, policy: BackoffPolicy):
        self.policy = policy
        self.attempt = 0

    def next_delay(self) -> float:
        delay = self.policy.delay(self.attempt)
        self.attempt = min(self.attempt + 1, self.policy.max_exponent)
        return delay

    def reset(self) -> None:
        """성공 이벤트 수신 후 호출"""
        self.attempt = 0
