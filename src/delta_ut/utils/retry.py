"""协作方调用重试模块 - 错误分类与统一重试装饰器."""

import asyncio
import functools
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from delta_ut.exceptions import (
    ConfigurationError,
    LLMError,
    LLMQuotaError,
    LLMRateLimitError,
)
from delta_ut.utils import get_logger

logger = get_logger("retry")


class ErrorKind(Enum):
    """协作方调用错误类型."""

    RATE_LIMIT = "rate_limit"
    QUOTA = "quota"
    SERVER = "server"
    NON_RETRYABLE = "non_retryable"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.RATE_LIMIT, ErrorKind.SERVER)


@dataclass
class ErrorClassification:
    """错误分类结果."""

    kind: ErrorKind
    retry_after: Optional[float] = None


@dataclass
class CallOutcome:
    """一次 (含重试) 调用的结果."""

    value: Any = None
    error_kind: Optional[ErrorKind] = None
    error: Optional[BaseException] = None
    attempts: int = 1

    @property
    def success(self) -> bool:
        return self.error_kind is None

    def unwrap(self) -> Any:
        """成功时返回结果, 失败时按错误类型抛出 LLMError."""
        if self.error_kind is None:
            return self.value
        if isinstance(self.error, ConfigurationError):
            raise self.error
        message = str(self.error) if self.error else self.error_kind.value
        if self.error_kind == ErrorKind.QUOTA:
            raise LLMQuotaError(message)
        if self.error_kind == ErrorKind.RATE_LIMIT:
            raise LLMRateLimitError(message)
        raise LLMError(
            f"调用失败 ({self.error_kind.value}, {self.attempts} 次尝试): {message}"
        )


@dataclass
class RetryPolicy:
    """重试策略."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_retries=settings.llm_max_retries,
            base_delay=settings.llm_retry_base_delay,
            max_delay=settings.llm_max_retry_delay,
        )

    def backoff(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)


_QUOTA_MARKERS = ("insufficient_quota", "quota exceeded", "exceeded your current quota", "billing")
_RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "too many requests")
_NON_RETRYABLE_MARKERS = ("context_length_exceeded", "maximum context length", "invalid api key")


def _retry_after_from(error: BaseException) -> Optional[float]:
    retry_after = getattr(error, "retry_after", None)
    if retry_after:
        return float(retry_after)
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if headers is not None:
        value = headers.get("retry-after")
        if value:
            try:
                return float(value)
            except ValueError:
                return None
    return None


def classify_error(error: BaseException) -> ErrorClassification:
    """将异常映射为错误类型.

    Args:
        error: 协作方调用抛出的异常

    Returns:
        ErrorClassification: 分类结果
    """
    if isinstance(error, LLMQuotaError):
        return ErrorClassification(ErrorKind.QUOTA)
    if isinstance(error, LLMRateLimitError):
        return ErrorClassification(ErrorKind.RATE_LIMIT, error.retry_after)
    if isinstance(error, ConfigurationError):
        return ErrorClassification(ErrorKind.NON_RETRYABLE)

    message = str(error).lower()
    if any(marker in message for marker in _QUOTA_MARKERS):
        return ErrorClassification(ErrorKind.QUOTA)

    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        if status_code == 429:
            return ErrorClassification(ErrorKind.RATE_LIMIT, _retry_after_from(error))
        if status_code >= 500:
            return ErrorClassification(ErrorKind.SERVER)
        if 400 <= status_code < 500:
            return ErrorClassification(ErrorKind.NON_RETRYABLE)

    if any(marker in message for marker in _RATE_LIMIT_MARKERS):
        return ErrorClassification(ErrorKind.RATE_LIMIT, _retry_after_from(error))
    if any(marker in message for marker in _NON_RETRYABLE_MARKERS):
        return ErrorClassification(ErrorKind.NON_RETRYABLE)
    if isinstance(error, (ConnectionError, asyncio.TimeoutError, OSError)):
        return ErrorClassification(ErrorKind.SERVER)
    if isinstance(error, LLMError):
        return ErrorClassification(ErrorKind.SERVER)
    return ErrorClassification(ErrorKind.NON_RETRYABLE)


def with_retry(
    policy: RetryPolicy,
    operation: str = "LLM 调用",
) -> Callable[[Callable[..., Awaitable[Any]]], Callable[..., Awaitable[CallOutcome]]]:
    """为异步调用添加统一重试, 被装饰函数返回 CallOutcome.

    Args:
        policy: 重试策略
        operation: 操作名称 (日志用)

    Returns:
        装饰器
    """

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[CallOutcome]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> CallOutcome:
            attempt = 0
            while True:
                try:
                    value = await func(*args, **kwargs)
                    return CallOutcome(value=value, attempts=attempt + 1)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    classification = classify_error(e)
                    kind = classification.kind

                    if not kind.retryable or attempt >= policy.max_retries:
                        logger.error(
                            f"{operation} 失败 ({kind.value}, 第 {attempt + 1} 次尝试): {e}"
                        )
                        return CallOutcome(error_kind=kind, error=e, attempts=attempt + 1)

                    if kind == ErrorKind.RATE_LIMIT and classification.retry_after:
                        delay = classification.retry_after
                    else:
                        delay = policy.backoff(attempt)

                    logger.warning(
                        f"{operation} 失败 ({kind.value}, 第 {attempt + 1}/{policy.max_retries + 1} 次), "
                        f"{delay:.1f}s 后重试: {e}"
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
