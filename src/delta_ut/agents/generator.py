"""Generator Agent - 调用 LLM 生成、搭建与修复测试代码."""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from delta_ut.agents.prompts import (
    build_fix_prompt,
    build_generation_prompt,
    build_scaffold_prompt,
)
from delta_ut.exceptions import LLMError, TestGenerationError
from delta_ut.models.common import TestFailure, TestTarget, ValidationResult
from delta_ut.models.llm import LLMMessage, LLMOptions, LLMProvider
from delta_ut.tools.file_validator import check_private_access
from delta_ut.utils import get_logger
from delta_ut.utils.retry import RetryPolicy, with_retry

logger = get_logger("generator")

SCAFFOLD_TEMPERATURE = 0.1
SCAFFOLD_MAX_TOKENS = 2000

_FULL_CODE_BLOCK = re.compile(r"^```(?:typescript|ts|javascript|js|tsx|jsx)?\s*\n([\s\S]*?)\n```$")
_ANY_CODE_BLOCK = re.compile(r"```(?:typescript|ts|javascript|js|tsx|jsx)?[ \t]*\n?([\s\S]*?)```")
_EXPLANATION_PREFIXES = (
    re.compile(r"^Here'?s?\s+(?:the\s+)?(?:test\s+)?code:?\s*", re.IGNORECASE),
    re.compile(r"^Test\s+code:?\s*", re.IGNORECASE),
    re.compile(r"^Generated\s+test:?\s*", re.IGNORECASE),
    re.compile(r"^Here\s+is\s+the\s+test:?\s*", re.IGNORECASE),
)
_CONTEXT_LENGTH_MARKERS = ("context_length_exceeded", "maximum context length", "context length")


def parse_test_code(response: str) -> str:
    """从 LLM 回复中提取测试代码.

    处理整体代码块、夹杂解释文字的多个代码块 (取最长的一个) 以及常见的开场白.
    无法提取时返回原始回复.
    """
    code = response.strip()

    match = _FULL_CODE_BLOCK.match(code)
    if match:
        code = match.group(1).strip()
    else:
        blocks = _ANY_CODE_BLOCK.findall(code)
        if blocks:
            code = max(blocks, key=len).strip()

    for pattern in _EXPLANATION_PREFIXES:
        code = pattern.sub("", code, count=1).strip()

    code = re.sub(r"^```[\w]*\n?", "", code)
    code = re.sub(r"\n?```$", "", code).strip()

    if not code:
        logger.warning("无法从 LLM 回复中提取测试代码")
        return response
    return code


def validate_test_code_structure(code: str, framework: str) -> ValidationResult:
    """检查测试代码的基本结构.

    Args:
        code: 测试代码
        framework: jest 或 vitest

    Returns:
        ValidationResult: 结构检查结果
    """
    errors: List[str] = []

    if "describe" not in code and "it(" not in code and "test(" not in code:
        errors.append("Missing test structure (describe/it/test)")

    if re.search(r"test\s*\.\s*describe", code):
        errors.append(
            f"Invalid syntax: test.describe() is Playwright syntax, not {framework}. "
            "Use describe() instead."
        )
    elif re.search(r"test\s*\.\s*\w+\s*\(", code):
        errors.append(
            f"Invalid syntax: test.xxx() is Playwright syntax, not {framework}. "
            "Use describe() and it() instead."
        )

    if framework == "vitest" and "from 'vitest'" not in code and 'from "vitest"' not in code:
        errors.append("Missing Vitest import: use \"import { describe, it } from 'vitest';\"")

    if len(code.strip()) < 20:
        errors.append("Test code appears too short or empty")

    if not re.search(r"(describe|it|test)\s*\(", code):
        errors.append("Missing test function calls (describe/it/test)")

    return ValidationResult(valid=not errors, errors=errors)


@dataclass
class FixRequest:
    """测试修复请求."""

    test_file: str
    test_content: str
    source_code: Dict[str, str]
    failures: List[TestFailure]
    attempt: int
    max_attempts: int
    validation_errors: List[str] = field(default_factory=list)


class TestGenerator:
    """测试生成协作方, 在 LLM 提供商之上添加重试、解析和结构检查."""

    __test__ = False

    def __init__(
        self,
        provider: LLMProvider,
        framework: str = "jest",
        temperature: float = 0.2,
        fix_temperature: float = 0.1,
        max_tokens: int = 4000,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.provider = provider
        self.framework = framework
        self.temperature = temperature
        self.fix_temperature = fix_temperature
        self.max_tokens = max_tokens
        self.retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_settings(cls, provider: LLMProvider, settings: Any) -> "TestGenerator":
        return cls(
            provider,
            framework=settings.framework,
            temperature=settings.temperature,
            fix_temperature=settings.fix_temperature,
            max_tokens=settings.max_tokens,
            retry_policy=RetryPolicy.from_settings(settings),
        )

    async def _complete(self, messages: List[LLMMessage], options: LLMOptions) -> str:
        response = await self.provider.generate(messages, options)
        return response.content

    async def _call(self, messages: List[LLMMessage], options: LLMOptions, operation: str) -> str:
        call = with_retry(self.retry_policy, operation)(self._complete)
        outcome = await call(messages, options)
        try:
            return outcome.unwrap()
        except LLMError as e:
            detail = str(outcome.error).lower() if outcome.error else ""
            if any(marker in detail for marker in _CONTEXT_LENGTH_MARKERS):
                raise LLMError(
                    "输入超过模型上下文长度, 请减小变更范围或改用上下文更长的模型",
                    provider=self.provider.name,
                    model=self.provider.model,
                ) from e
            raise

    async def generate(
        self,
        target: TestTarget,
        existing_content: Optional[str],
        test_file_path: str,
        import_path: str,
        framework: Optional[str] = None,
    ) -> str:
        """为单个目标生成测试代码.

        Args:
            target: 测试目标
            existing_content: 已有测试文件内容
            test_file_path: 测试文件路径
            import_path: 导入路径
            framework: 测试框架, 默认使用初始化时的框架

        Returns:
            str: 测试代码

        Raises:
            LLMError: 调用失败 (重试耗尽或不可重试)
            TestGenerationError: 代码直接访问私有成员
        """
        framework = framework or self.framework
        messages = build_generation_prompt(
            target, framework, existing_content, test_file_path, import_path
        )
        options = LLMOptions(temperature=self.temperature, max_tokens=self.max_tokens)
        raw = await self._call(messages, options, f"生成测试 {target.label}")
        code = parse_test_code(raw)

        structure = validate_test_code_structure(code, framework)
        for error in structure.errors:
            logger.warning(f"{target.label} 生成代码结构问题: {error}")

        if target.private_members:
            private_errors = check_private_access(code, target.private_members)
            if private_errors:
                raise TestGenerationError(
                    "; ".join(private_errors),
                    source_file=target.file_path,
                    test_file=test_file_path,
                )
        return code

    async def scaffold(
        self,
        target: TestTarget,
        existing_content: Optional[str],
        test_file_path: str,
        import_path: str,
        framework: Optional[str] = None,
    ) -> str:
        """为单个目标生成测试脚手架, 结构检查不通过时抛出 TestGenerationError."""
        framework = framework or self.framework
        messages = build_scaffold_prompt(
            target, framework, existing_content, test_file_path, import_path
        )
        options = LLMOptions(temperature=SCAFFOLD_TEMPERATURE, max_tokens=SCAFFOLD_MAX_TOKENS)
        raw = await self._call(messages, options, f"生成脚手架 {target.label}")
        code = parse_test_code(raw)

        structure = validate_test_code_structure(code, framework)
        if not structure.valid:
            raise TestGenerationError(
                f"脚手架结构不合法: {'; '.join(structure.errors)}",
                source_file=target.file_path,
                test_file=test_file_path,
            )
        return code

    async def fix(self, request: FixRequest) -> str:
        """修复失败的测试文件, 返回完整的新文件内容."""
        messages = build_fix_prompt(
            self.framework,
            request.test_file,
            request.test_content,
            request.source_code,
            request.failures,
            request.attempt,
            request.max_attempts,
            request.validation_errors,
        )
        options = LLMOptions(temperature=self.fix_temperature, max_tokens=self.max_tokens)
        raw = await self._call(messages, options, f"修复测试 {request.test_file}")
        return parse_test_code(raw)
