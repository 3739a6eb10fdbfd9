"""出站网络调用的重试策略。

RetryPolicy 是显式的配置对象：最大尝试次数、退避函数、可重试判定，
以及可注入的 sleep（测试中替换为记录延迟的假实现，不真正等待）。
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from chat_core.config.settings import settings
from chat_core.domain.exceptions import GenerationCancelled
from chat_core.infrastructure.logging.logger import log_event

T = TypeVar("T")

RETRYABLE_PATTERNS: Tuple[str, ...] = (
    "network error",
    "failed to fetch",
    "connection",
    "timeout",
    "timed out",
    "429",
    "500",
    "502",
    "503",
    "504",
)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0  # 秒；第 n 次重试前等待 base_delay * 2**n
    retryable_patterns: Tuple[str, ...] = RETRYABLE_PATTERNS
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, compare=False)

    @classmethod
    def from_settings(cls, cfg=settings, *, balance: bool = False) -> "RetryPolicy":
        attempts = cfg.balance_retry_attempts if balance else cfg.retry_max_attempts
        return cls(max_attempts=attempts, base_delay=cfg.retry_base_delay)

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, GenerationCancelled):
            return False
        msg = str(exc).lower()
        return any(p in msg for p in self.retryable_patterns)

    def delay_for(self, attempt_index: int) -> float:
        return self.base_delay * (2 ** attempt_index)


DEFAULT_RETRY_POLICY = RetryPolicy()


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    *,
    log_ctx: Optional[dict] = None,
) -> T:
    """执行 operation，遇到可重试错误时按指数退避重试。

    重试耗尽或遇到不可重试错误时，原样抛出最后一次的异常。
    """

    policy = policy or DEFAULT_RETRY_POLICY
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt + 1 >= policy.max_attempts or not policy.is_retryable(exc):
                raise
            delay = policy.delay_for(attempt)
            log_event(
                logging.WARNING,
                "Retrying after transient failure",
                log_ctx or {},
                attempt=attempt + 1,
                delay_seconds=delay,
                error=str(exc)[:200],
            )
            await policy.sleep(delay)
            attempt += 1
