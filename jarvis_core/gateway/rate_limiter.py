"""基于最小请求间隔的本地限流器。"""

import time
from typing import Callable, Optional

from jarvis_core.domain.exceptions import RateLimitError


class RateLimiter:
    """记录上一次请求时间；距今不足 min_interval 时拒绝新请求。

    状态不持久化，也从不显式清空——只随时间自然“恢复”。
    只能由 AIRequestGateway.send 调用 acquire()。
    """

    def __init__(self, min_interval: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.min_interval = min_interval
        self._clock = clock
        self._last_request_timestamp: Optional[float] = None

    @property
    def last_request_timestamp(self) -> Optional[float]:
        return self._last_request_timestamp

    def remaining(self) -> float:
        """距离允许下一次请求还需等待的秒数（0 表示可以立即请求）。"""

        if self._last_request_timestamp is None:
            return 0.0
        elapsed = self._clock() - self._last_request_timestamp
        return max(0.0, self.min_interval - elapsed)

    def acquire(self) -> float:
        """检查并记录本次请求时间；被拒绝时抛 RateLimitError 且不更新时间戳。"""

        now = self._clock()
        if self._last_request_timestamp is not None and now - self._last_request_timestamp < self.min_interval:
            raise RateLimitError(
                code="RATE_LIMITED",
                message=f"Request rate limited, retry in {self.remaining():.2f}s",
                http_status=429,
            )
        self._last_request_timestamp = now
        return now
