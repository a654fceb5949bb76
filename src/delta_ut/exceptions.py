"""Delta-UT 专用异常类.

提供细粒度的异常处理，便于错误诊断和恢复。
"""

from typing import Optional


class DeltaUTError(Exception):
    """Delta-UT 基础异常类."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(DeltaUTError):
    """配置错误."""

    def __init__(self, message: str, config_key: Optional[str] = None):
        details = {"config_key": config_key} if config_key else {}
        super().__init__(message, details)


class LLMError(DeltaUTError):
    """LLM 相关错误基类."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ):
        details = {}
        if provider:
            details["provider"] = provider
        if model:
            details["model"] = model
        super().__init__(message, details)


class LLMRateLimitError(LLMError):
    """LLM 速率限制错误."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider: Optional[str] = None,
        model: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, provider, model)
        self.retry_after = retry_after
        if retry_after:
            self.details["retry_after"] = retry_after


class LLMQuotaError(LLMError):
    """LLM 配额耗尽错误 (不可重试)."""

    pass


class LLMResponseError(LLMError):
    """LLM 响应错误."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        response: Optional[str] = None,
    ):
        super().__init__(message, provider, model)
        if response:
            self.details["response_preview"] = response[:500]


class DiffParseError(DeltaUTError):
    """Diff 解析错误."""

    def __init__(self, message: str, file_path: Optional[str] = None):
        details = {"file_path": file_path} if file_path else {}
        super().__init__(message, details)


class TestGenerationError(DeltaUTError):
    """测试生成错误基类."""

    __test__ = False

    def __init__(
        self,
        message: str,
        source_file: Optional[str] = None,
        test_file: Optional[str] = None,
    ):
        details = {}
        if source_file:
            details["source_file"] = source_file
        if test_file:
            details["test_file"] = test_file
        super().__init__(message, details)


class MergeError(TestGenerationError):
    """测试文件合并后结构不完整."""

    def __init__(
        self,
        message: str,
        test_file: Optional[str] = None,
        errors: Optional[list] = None,
    ):
        super().__init__(message, test_file=test_file)
        if errors:
            self.details["errors"] = list(errors)


class TestExecutionError(TestGenerationError):
    """测试执行错误."""

    def __init__(
        self,
        message: str,
        source_file: Optional[str] = None,
        test_file: Optional[str] = None,
        exit_code: Optional[int] = None,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
    ):
        super().__init__(message, source_file, test_file)
        if exit_code is not None:
            self.details["exit_code"] = exit_code
        if stdout:
            self.details["stdout"] = stdout[:1000]
        if stderr:
            self.details["stderr"] = stderr[:1000]


class GitError(DeltaUTError):
    """Git 相关错误."""

    def __init__(self, message: str, operation: Optional[str] = None, repo_path: Optional[str] = None):
        details = {}
        if operation:
            details["operation"] = operation
        if repo_path:
            details["repo_path"] = repo_path
        super().__init__(message, details)


class TimeoutError(DeltaUTError):
    """超时错误."""

    def __init__(self, message: str, timeout_seconds: Optional[float] = None):
        details = {}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message, details)
