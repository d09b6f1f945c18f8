"""出站 HTTP 调用的重试策略。

把"最多几次、基础延迟多少、哪些错误可以重试"收敛成一个策略对象，
由调用方统一套用，而不是在各处手写循环。
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from persona_chat.domain.exceptions import BusinessError
from persona_chat.infrastructure.logging.logger import get_logger


T = TypeVar("T")
log = get_logger("http.retry")


def default_retry_predicate(error: Exception) -> bool:
    """4xx 业务错误是调用方的问题，不重试；其余错误都允许重试。"""

    if isinstance(error, BusinessError) and 400 <= error.http_status < 500:
        return False
    return True


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    retry_predicate: Callable[[Exception], bool] = default_retry_predicate
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            self.max_attempts = 1

    def delay_for(self, attempt: int) -> float:
        """第 attempt 次失败后的等待时间（线性退避）。"""

        return self.base_delay * attempt

    def call(self, operation: Callable[[], T]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except Exception as e:
                if attempt == self.max_attempts or not self.retry_predicate(e):
                    raise
                delay = self.delay_for(attempt)
                log.warning(
                    "Request failed, retrying",
                    extra={"extra": {"attempt": attempt, "max_attempts": self.max_attempts, "delay": delay, "error": str(e)}},
                )
                self.sleep(delay)
