"""运行上下文 - 一次运行所需的配置与协作方."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from delta_ut.agents.generator import TestGenerator
from delta_ut.config import Settings
from delta_ut.models.llm import create_llm_provider
from delta_ut.tools.code_formatter import CodeFormatter
from delta_ut.tools.file_validator import TypeChecker
from delta_ut.tools.git_analyzer import WORKTREE_REF, FileSource, LocalFileSource
from delta_ut.tools.test_runner import TestRunner, create_test_runner
from delta_ut.utils import get_logger


@dataclass
class RunContext:
    """一次运行的显式上下文, 依次传入各组件."""

    settings: Settings
    project_root: str
    source: FileSource
    ref: str = WORKTREE_REF
    generator: Optional[TestGenerator] = None
    runner: Optional[TestRunner] = None
    type_checker: Optional[TypeChecker] = None
    formatter: Optional[CodeFormatter] = None
    logger: logging.Logger = field(default_factory=lambda: get_logger("run"))

    @property
    def framework(self) -> str:
        return self.settings.framework

    def resolve(self, relative_path: str) -> Path:
        return Path(self.project_root) / relative_path


def build_run_context(
    settings: Settings,
    project_root: str,
    source: Optional[FileSource] = None,
    ref: str = WORKTREE_REF,
    llm_provider: Optional[str] = None,
    with_generator: bool = True,
) -> RunContext:
    """按配置组装运行上下文.

    Args:
        settings: 配置
        project_root: 项目根目录
        source: 文件来源, 默认本地文件系统
        ref: 变更后的版本引用
        llm_provider: LLM 提供商名称, 默认取配置
        with_generator: 是否创建生成协作方

    Returns:
        RunContext: 运行上下文
    """
    generator = None
    if with_generator:
        provider = create_llm_provider(settings, llm_provider)
        generator = TestGenerator.from_settings(provider, settings)

    formatter = None
    if settings.format_generated_code or settings.lint_generated_code:
        formatter = CodeFormatter(project_root)

    return RunContext(
        settings=settings,
        project_root=project_root,
        source=source or LocalFileSource(project_root),
        ref=ref,
        generator=generator,
        runner=create_test_runner(
            settings.framework, project_root, timeout=settings.runner_timeout
        ),
        type_checker=TypeChecker(timeout=settings.runner_timeout) if settings.enable_type_check else None,
        formatter=formatter,
    )
