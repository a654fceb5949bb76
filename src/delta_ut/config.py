"""配置管理模块."""

import re
from typing import List, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="DELTA_UT_",
        extra="ignore",
    )

    # LLM 配置
    default_llm_provider: str = "openai"

    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    openai_model: str = "gpt-4o"

    deepseek_api_key: Optional[str] = None
    deepseek_base_url: str = "https://api.deepseek.com"
    deepseek_model: str = "deepseek-chat"

    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-3-5-sonnet-20241022"

    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "qwen2.5-coder:14b"

    temperature: float = 0.2
    fix_temperature: float = 0.1
    max_tokens: int = 4000

    # 重试策略配置
    llm_max_retries: int = 3
    llm_retry_base_delay: float = 1.0
    llm_max_retry_delay: float = 10.0
    llm_timeout: int = 120

    # 生成配置
    framework: str = "jest"
    mode: str = "generate"
    max_tests_per_run: int = 50
    request_delay: float = 0.0
    consolidate_class_targets: bool = False

    # 修复循环配置
    max_fix_attempts: int = 3
    max_syntax_failures: int = 3
    min_test_retention: float = 0.95
    min_tests_for_retention_check: int = 10

    # 测试文件位置
    test_location: str = "separate"
    test_directory: str = "__tests__"
    test_file_pattern: str = "*.test.ts"
    include_patterns: List[str] = ["**/*.ts", "**/*.tsx"]
    exclude_patterns: List[str] = [
        "**/*.test.ts",
        "**/*.spec.ts",
        "**/node_modules/**",
    ]

    # 目标提取策略
    new_file_threshold: float = 0.9
    bulk_change_threshold: float = 0.5
    test_all_exports: bool = False

    # 工具链配置
    enable_coverage: bool = True
    enable_type_check: bool = True
    format_generated_code: bool = False
    lint_generated_code: bool = False
    runner_timeout: int = 300

    debug: bool = False

    @field_validator("temperature", "fix_temperature")
    @classmethod
    def validate_temperature(cls, v: float) -> float:
        """验证 temperature 范围."""
        if not 0 <= v <= 2:
            raise ValueError("temperature 必须在 0 到 2 之间")
        return v

    @field_validator("openai_base_url", "deepseek_base_url", "ollama_base_url")
    @classmethod
    def validate_url(cls, v: Optional[str]) -> Optional[str]:
        """验证 URL 格式."""
        if v is None or v == "":
            return v
        url_pattern = re.compile(
            r"^https?://"
            r"(?:localhost|[\w-]+(?:\.[\w-]+)+)"
            r"(?::\d+)?"
            r"(?:/[\w./-]*)?$"
        )
        if not url_pattern.match(v):
            raise ValueError(f"无效的 URL 格式: {v}")
        return v

    @field_validator("framework")
    @classmethod
    def validate_framework(cls, v: str) -> str:
        """验证测试框架."""
        if v not in ("jest", "vitest"):
            raise ValueError(f"不支持的测试框架: {v}")
        return v

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        """验证生成模式."""
        if v not in ("generate", "scaffold"):
            raise ValueError(f"不支持的生成模式: {v}")
        return v

    @field_validator("test_location")
    @classmethod
    def validate_test_location(cls, v: str) -> str:
        """验证测试文件位置策略."""
        if v not in ("separate", "co-located"):
            raise ValueError(f"不支持的测试文件位置: {v}")
        return v

    @field_validator("max_fix_attempts")
    @classmethod
    def validate_max_fix_attempts(cls, v: int) -> int:
        """验证最大修复次数, -1 表示不限."""
        if v < -1:
            raise ValueError("最大修复次数不能小于 -1")
        if v > 10:
            raise ValueError("最大修复次数不能超过 10")
        return v

    @field_validator("max_tests_per_run")
    @classmethod
    def validate_max_tests_per_run(cls, v: int) -> int:
        """验证单次运行目标上限, -1 表示不限."""
        if v == 0 or v < -1:
            raise ValueError("单次运行目标上限必须大于 0 或为 -1")
        return v

    @field_validator("new_file_threshold", "bulk_change_threshold", "min_test_retention")
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        """验证比例阈值."""
        if not 0 < v <= 1:
            raise ValueError("比例阈值必须在 (0, 1] 之间")
        return v

    @field_validator("max_syntax_failures", "max_tokens")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """验证正整数."""
        if v < 1:
            raise ValueError("取值必须大于 0")
        return v

    @field_validator("llm_retry_base_delay", "llm_max_retry_delay", "request_delay")
    @classmethod
    def validate_delay(cls, v: float) -> float:
        """验证延迟时间."""
        if v < 0:
            raise ValueError("延迟时间不能为负数")
        return v

    @field_validator("llm_timeout", "runner_timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        """验证超时时间."""
        if v < 0:
            raise ValueError("超时时间不能为负数")
        return v


settings = Settings()
