"""修复循环模块 - 运行、修复、校验直到收敛或预算耗尽.

每个测试文件的状态:
    FAILING -> PASSING            运行器报告零失败
    FAILING -> SYNTAX_QUARANTINE  连续语法类失败达到上限, 磁盘文件回滚到最后一次有效内容
    FAILING -> EXHAUSTED          修复预算耗尽
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from delta_ut.agents.generator import FixRequest
from delta_ut.core.context import RunContext
from delta_ut.models.common import FileState, RunResult, TestFileBuffer
from delta_ut.tools.file_validator import is_syntax_error
from delta_ut.tools.import_fixer import consolidate_file_imports
from delta_ut.tools.test_file_merger import count_tests
from delta_ut.tools.test_file_writer import validate_with_import_fix, write_atomic


@dataclass
class FixLoopResult:
    """修复循环结果."""

    results: Dict[str, RunResult] = field(default_factory=dict)
    iterations: int = 0
    runner_invocations: int = 0
    converged: bool = False


class FixLoop:
    """测试修复循环."""

    def __init__(self, context: RunContext, buffers: Dict[str, TestFileBuffer]):
        self.context = context
        self.settings = context.settings
        self.logger = context.logger
        self.buffers = buffers
        self._validation_errors: Dict[str, List[str]] = {}
        self._source_cache: Dict[str, str] = {}

    @property
    def max_attempts(self) -> int:
        return self.settings.max_fix_attempts

    def _budget_left(self, attempt: int) -> bool:
        return self.max_attempts < 0 or attempt < self.max_attempts

    def _apply_results(self, results: List[RunResult]) -> Dict[str, RunResult]:
        by_path = {result.test_file: result for result in results}
        for path, buffer in self.buffers.items():
            result = by_path.get(path)
            if result is None or buffer.state == FileState.SYNTAX_QUARANTINE:
                continue
            buffer.state = FileState.PASSING if result.success else FileState.FAILING
        return by_path

    def _failing_paths(self, results: Dict[str, RunResult]) -> List[str]:
        return [
            path
            for path, buffer in self.buffers.items()
            if buffer.state == FileState.FAILING and path in results
        ]

    async def _load_sources(self, buffer: TestFileBuffer) -> Dict[str, str]:
        sources: Dict[str, str] = {}
        for source_path in buffer.source_files:
            if source_path not in self._source_cache:
                try:
                    self._source_cache[source_path] = await self.context.source.read_file(
                        self.context.ref, source_path
                    )
                except Exception as e:
                    self.logger.warning(f"读取源文件 {source_path} 失败: {e}")
                    continue
            sources[source_path] = self._source_cache[source_path]
        return sources

    def _quarantine(self, path: str, buffer: TestFileBuffer) -> None:
        buffer.state = FileState.SYNTAX_QUARANTINE
        self.logger.warning(
            f"{path} 连续 {buffer.syntax_failure_count} 次语法错误, 回滚到最后一次有效内容并隔离"
        )
        if buffer.last_valid_content is None:
            return
        disk_path = self.context.resolve(path)
        on_disk = disk_path.read_text(encoding="utf-8") if disk_path.is_file() else None
        if on_disk != buffer.last_valid_content:
            write_atomic(disk_path, buffer.last_valid_content)
        buffer.content = buffer.last_valid_content

    async def _repair(self, path: str, result: RunResult, attempt: int) -> Optional[bool]:
        """修复单个文件.

        Returns:
            Optional[bool]: True 表示已写入新内容, False 表示本轮放弃,
            None 表示出现可在下一轮重试的语法错误
        """
        buffer = self.buffers[path]
        generator = self.context.generator
        if generator is None:
            return False

        request = FixRequest(
            test_file=path,
            test_content=buffer.content,
            source_code=await self._load_sources(buffer),
            failures=result.failures,
            attempt=attempt,
            max_attempts=self.max_attempts,
            validation_errors=self._validation_errors.get(path, []),
        )
        try:
            fixed = await generator.fix(request)
        except Exception as e:
            self.logger.error(f"修复 {path} 失败: {e}")
            return False

        formatter = self.context.formatter
        if formatter is not None and self.settings.format_generated_code:
            fixed = await formatter.format(fixed, path)

        previous_count = count_tests(buffer.content)
        new_count = count_tests(fixed)
        if (
            previous_count > self.settings.min_tests_for_retention_check
            and new_count < previous_count * self.settings.min_test_retention
        ):
            self.logger.warning(
                f"拒绝 {path} 的修复: 用例数从 {previous_count} 降到 {new_count}"
            )
            return False

        fixed = consolidate_file_imports(fixed)
        content, validation = await validate_with_import_fix(
            path,
            fixed,
            self.context.project_root,
            self.context.framework,
            buffer.private_members,
            self.context.type_checker,
        )

        if not validation.valid:
            self._validation_errors[path] = validation.errors
            for error in validation.errors:
                self.logger.warning(f"{path} 修复结果校验失败: {error}")
            if is_syntax_error(validation.errors):
                buffer.syntax_failure_count += 1
                if buffer.syntax_failure_count >= self.settings.max_syntax_failures:
                    self._quarantine(path, buffer)
                    return False
                return None
            return False

        write_atomic(self.context.resolve(path), content)
        buffer.content = content
        buffer.last_valid_content = content
        buffer.syntax_failure_count = 0
        self._validation_errors.pop(path, None)
        self.logger.info(f"✓ 已应用 {path} 的修复 (第 {attempt} 次)")
        return True

    async def run(self) -> FixLoopResult:
        """执行修复循环.

        Returns:
            FixLoopResult: 最后一次运行结果与统计
        """
        loop_result = FixLoopResult()
        runner = self.context.runner
        if runner is None or not self.buffers:
            return loop_result

        attempt = 0
        while True:
            paths = list(self.buffers.keys())
            try:
                results = await runner.run(paths, coverage=False)
            except Exception as e:
                self.logger.error(f"运行测试失败, 结束修复循环: {e}")
                break
            finally:
                loop_result.runner_invocations += 1

            loop_result.results = self._apply_results(results)
            failing = self._failing_paths(loop_result.results)
            if not failing:
                loop_result.converged = all(
                    b.state == FileState.PASSING for b in self.buffers.values()
                )
                self.logger.info("所有测试文件均已通过")
                break

            if not self._budget_left(attempt):
                for path in failing:
                    self.buffers[path].state = FileState.EXHAUSTED
                self.logger.warning(f"修复次数已用尽, {len(failing)} 个文件仍失败")
                break

            attempt += 1
            loop_result.iterations = attempt
            self.logger.info(f"第 {attempt} 轮修复: {len(failing)} 个失败文件")

            written = False
            pending_retry = False
            for path in failing:
                outcome = await self._repair(path, loop_result.results[path], attempt)
                if outcome is True:
                    written = True
                elif outcome is None:
                    pending_retry = True

            if not written and not pending_retry:
                self.logger.warning("本轮没有可应用的修复, 提前结束")
                break

        return loop_result
