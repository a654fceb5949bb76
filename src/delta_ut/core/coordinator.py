"""生成协调模块 - 按目标生成测试并累积到各测试文件缓冲区."""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from delta_ut.core.context import RunContext
from delta_ut.exceptions import ConfigurationError, LLMQuotaError, MergeError
from delta_ut.models.common import (
    DeclKind,
    FileState,
    GenerationError,
    TestFileBuffer,
    TestTarget,
)
from delta_ut.tools.file_validator import check_syntax_completeness
from delta_ut.tools.test_file_merger import has_existing_tests, merge_test_files
from delta_ut.tools.test_paths import calculate_import_path, get_test_file_path

CONSOLIDATED_NAME_SEPARATOR = ", "


@dataclass
class CoordinatorResult:
    """生成阶段结果."""

    buffers: Dict[str, TestFileBuffer] = field(default_factory=dict)
    targets_processed: int = 0
    tests_generated: int = 0
    skipped: List[str] = field(default_factory=list)
    errors: List[GenerationError] = field(default_factory=list)
    aborted: bool = False


def limit_targets(targets: List[TestTarget], max_tests_per_run: int) -> List[TestTarget]:
    """按单次运行上限截断目标列表, -1 表示不限."""
    if max_tests_per_run < 0 or len(targets) <= max_tests_per_run:
        return list(targets)
    return list(targets[:max_tests_per_run])


def consolidate_class_targets(targets: List[TestTarget]) -> List[TestTarget]:
    """将同一文件同一类的方法目标合并为一个目标, 独立函数保持不变.

    合并后的目标位于该类首个方法的位置, 名称为各方法名以逗号连接.
    """
    groups: Dict[tuple, List[TestTarget]] = {}
    order: List[object] = []

    for target in targets:
        if target.owner_class and target.decl_kind == DeclKind.METHOD:
            key = (target.file_path, target.owner_class)
            if key not in groups:
                groups[key] = []
                order.append(key)
            groups[key].append(target)
        else:
            order.append(target)

    consolidated: List[TestTarget] = []
    for item in order:
        if isinstance(item, TestTarget):
            consolidated.append(item)
            continue
        methods = groups[item]
        if len(methods) == 1:
            consolidated.append(methods[0])
            continue
        first = methods[0]
        ranges = []
        for method in methods:
            ranges.extend(r for r in method.overlapping_ranges if r not in ranges)
        consolidated.append(
            TestTarget(
                file_path=first.file_path,
                decl_name=CONSOLIDATED_NAME_SEPARATOR.join(m.decl_name for m in methods),
                decl_kind=DeclKind.METHOD,
                start_line=min(m.start_line for m in methods),
                end_line=max(m.end_line for m in methods),
                source_snippet="\n\n".join(m.source_snippet for m in methods),
                surrounding_context=first.surrounding_context,
                overlapping_ranges=tuple(ranges),
                owner_class=first.owner_class,
                is_private=False,
                private_members=first.private_members,
                existing_test_file_path=first.existing_test_file_path,
            )
        )
    return consolidated


def target_names(target: TestTarget) -> List[str]:
    return target.decl_name.split(CONSOLIDATED_NAME_SEPARATOR)


def is_already_tested(content: Optional[str], target: TestTarget) -> bool:
    """判断目标的所有声明是否已在测试内容中有 describe 块."""
    if not content:
        return False
    return all(
        has_existing_tests(content, name, target.owner_class) for name in target_names(target)
    )


class GenerationCoordinator:
    """生成协调器."""

    def __init__(self, context: RunContext):
        self.context = context
        self.settings = context.settings
        self.logger = context.logger

    def destination_for(self, target: TestTarget) -> str:
        return get_test_file_path(
            target.file_path,
            self.settings.test_location,
            self.settings.test_directory,
            self.settings.test_file_pattern,
        )

    async def _read_test_file(self, test_path: str) -> Optional[str]:
        """通过文件来源读取测试文件, 失败时回退到磁盘."""
        source = self.context.source
        try:
            if await source.file_exists(self.context.ref, test_path):
                return await source.read_file(self.context.ref, test_path)
        except Exception as e:
            self.logger.debug(f"从文件来源读取 {test_path} 失败: {e}")

        disk_path = self.context.resolve(test_path)
        if disk_path.is_file():
            return disk_path.read_text(encoding="utf-8")
        return None

    async def _should_skip(
        self, target: TestTarget, test_path: str, existing_content: Optional[str]
    ) -> bool:
        if is_already_tested(existing_content, target):
            return True
        other = target.existing_test_file_path
        if other and other != test_path:
            return is_already_tested(await self._read_test_file(other), target)
        return False

    async def _generate_code(
        self, target: TestTarget, existing_content: Optional[str], test_path: str
    ) -> str:
        generator = self.context.generator
        if generator is None:
            raise ConfigurationError("未配置测试生成协作方", config_key="default_llm_provider")

        import_path = calculate_import_path(test_path, target.file_path)
        if self.settings.mode == "scaffold":
            code = await generator.scaffold(
                target, existing_content, test_path, import_path, self.context.framework
            )
        else:
            code = await generator.generate(
                target, existing_content, test_path, import_path, self.context.framework
            )

        formatter = self.context.formatter
        if formatter is not None:
            if self.settings.format_generated_code:
                code = await formatter.format(code, test_path)
            if self.settings.lint_generated_code:
                code = await formatter.lint(code, test_path)
        return code

    def _merge_into_buffer(
        self,
        buffers: Dict[str, TestFileBuffer],
        target: TestTarget,
        test_path: str,
        existing_content: Optional[str],
        code: str,
    ) -> None:
        buffer = buffers.get(test_path)
        base = buffer.content if buffer else (existing_content or "")
        merged = merge_test_files(base, code)

        syntax = check_syntax_completeness(merged)
        if not syntax.valid:
            raise MergeError(
                f"合并后的测试代码结构不完整: {'; '.join(syntax.errors)}",
                test_file=test_path,
                errors=syntax.errors,
            )

        if buffer is None:
            buffer = TestFileBuffer(
                content=merged,
                last_valid_content=existing_content or None,
                state=FileState.FAILING,
            )
            buffers[test_path] = buffer
        else:
            buffer.content = merged

        buffer.target_names.append(target.decl_name)
        if target.file_path not in buffer.source_files:
            buffer.source_files.append(target.file_path)
        for member in target.private_members:
            if member not in buffer.private_members:
                buffer.private_members.append(member)

    async def process_target(self, target: TestTarget, result: CoordinatorResult) -> None:
        """处理单个目标: 定位测试文件, 去重, 生成, 合并."""
        test_path = self.destination_for(target)
        buffer = result.buffers.get(test_path)
        existing_content = buffer.content if buffer else await self._read_test_file(test_path)

        if await self._should_skip(target, test_path, existing_content):
            self.logger.info(f"跳过 {target.label}: {test_path} 中已有测试")
            result.skipped.append(target.label)
            return

        code = await self._generate_code(target, existing_content, test_path)
        self._merge_into_buffer(result.buffers, target, test_path, existing_content, code)
        result.tests_generated += 1
        self.logger.info(f"✓ 已生成 {target.label} 的测试")

    async def run(self, targets: List[TestTarget]) -> CoordinatorResult:
        """依次为所有目标生成测试.

        Args:
            targets: 提取出的目标, 按提取顺序

        Returns:
            CoordinatorResult: 缓冲区、计数与错误
        """
        limited = limit_targets(targets, self.settings.max_tests_per_run)
        if len(limited) < len(targets):
            self.logger.warning(
                f"目标数量 {len(targets)} 超过单次上限 {self.settings.max_tests_per_run}, "
                f"丢弃 {len(targets) - len(limited)} 个"
            )
        if self.settings.consolidate_class_targets:
            limited = consolidate_class_targets(limited)

        result = CoordinatorResult(targets_processed=len(limited))
        self.logger.info(f"开始处理 {len(limited)} 个测试目标")

        for index, target in enumerate(limited):
            if index > 0 and self.settings.request_delay > 0:
                await asyncio.sleep(self.settings.request_delay)

            try:
                await self.process_target(target, result)
            except (LLMQuotaError, ConfigurationError) as e:
                self.logger.error(f"✗ {target.label}: {e.message}, 停止本次生成")
                result.errors.append(GenerationError(target=target.label, error=e.message))
                result.aborted = True
                break
            except Exception as e:
                self.logger.error(f"✗ {target.label} 生成失败: {e}")
                result.errors.append(GenerationError(target=target.label, error=str(e)))

        return result
