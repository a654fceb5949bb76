"""运行编排模块 - 提取、生成、写入、修复、覆盖率与汇总."""

from typing import Dict, Iterable, List, Optional

from delta_ut.core.context import RunContext
from delta_ut.core.coordinator import GenerationCoordinator
from delta_ut.core.fix_loop import FixLoop
from delta_ut.exceptions import ConfigurationError
from delta_ut.models.common import (
    ChangedFile,
    CoverageSnapshot,
    GenerationError,
    RunResult,
    RunSummary,
    TestFileBuffer,
    TestTarget,
)
from delta_ut.tools.coverage_analyzer import calculate_coverage_delta, read_coverage_report
from delta_ut.tools.target_extractor import extract_test_targets
from delta_ut.tools.test_file_writer import write_test_files


class TestGenerationPipeline:
    """一次完整运行的编排器."""

    __test__ = False

    def __init__(self, context: RunContext):
        self.context = context
        self.settings = context.settings
        self.logger = context.logger

    async def extract_targets(self, changed_files: Iterable[ChangedFile]) -> List[TestTarget]:
        return await extract_test_targets(
            changed_files, self.context.ref, self.context.source, self.settings
        )

    def _read_coverage(self) -> Optional[CoverageSnapshot]:
        if not self.settings.enable_coverage:
            return None
        return read_coverage_report(self.context.project_root)

    async def _write_buffers(
        self, buffers: Dict[str, TestFileBuffer], summary: RunSummary
    ) -> Dict[str, TestFileBuffer]:
        write_result = await write_test_files(
            buffers,
            self.context.project_root,
            self.context.framework,
            self.context.type_checker,
        )
        for path in write_result.failed_paths:
            errors = write_result.errors.get(path, [])
            summary.errors.append(
                GenerationError(target=path, error="; ".join(errors) or "写入失败")
            )
        return {path: buffers[path] for path in write_result.written_paths}

    async def _final_run(self, paths: List[str]) -> Optional[List[RunResult]]:
        try:
            return await self.context.runner.run(paths, coverage=self.settings.enable_coverage)
        except Exception as e:
            self.logger.error(f"最终测试运行失败: {e}")
            return None

    async def run(self, changed_files: Iterable[ChangedFile]) -> RunSummary:
        """执行完整流程.

        Args:
            changed_files: 变更文件

        Returns:
            RunSummary: 运行汇总

        Raises:
            ConfigurationError: 缺少测试运行器
        """
        if self.context.runner is None:
            raise ConfigurationError("未配置测试运行器", config_key="framework")

        summary = RunSummary()
        targets = await self.extract_targets(changed_files)
        if not targets:
            self.logger.info("没有需要生成测试的目标")
            return summary
        self.logger.info(f"提取到 {len(targets)} 个测试目标")

        baseline = self._read_coverage()

        generation = await GenerationCoordinator(self.context).run(targets)
        summary.targets_processed = generation.targets_processed
        summary.tests_generated = generation.tests_generated
        summary.errors.extend(generation.errors)
        if not generation.buffers:
            return summary

        written = await self._write_buffers(generation.buffers, summary)
        summary.test_files = list(written.keys())
        if not written:
            return summary

        fix_result = await FixLoop(self.context, written).run()
        self.logger.info(
            f"修复循环结束: {fix_result.iterations} 轮, 运行器调用 {fix_result.runner_invocations} 次"
        )

        final_results = await self._final_run(summary.test_files)
        if final_results is None:
            final_results = list(fix_result.results.values())
        summary.tests_failed = sum(result.failed for result in final_results)

        if self.settings.enable_coverage:
            current = read_coverage_report(self.context.project_root)
            summary.coverage_report = current
            if baseline is not None and current is not None:
                summary.coverage_delta = calculate_coverage_delta(baseline, current)

        return summary
