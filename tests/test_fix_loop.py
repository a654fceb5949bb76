"""修复循环测试."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from delta_ut.config import Settings
from delta_ut.core.context import RunContext
from delta_ut.core.fix_loop import FixLoop
from delta_ut.models.common import FileState, RunResult, TestFailure, TestFileBuffer
from delta_ut.tools.file_validator import TypeCheckResult
from delta_ut.tools.git_analyzer import LocalFileSource

TEST_PATH = "__tests__/math.test.ts"

ORIGINAL = """import { add } from '../src/math';

describe('add', () => {
  it('adds', () => {
    expect(add(1, 2)).toBe(4);
  });
});
"""

FIXED = """import { add } from '../src/math';

describe('add', () => {
  it('adds', () => {
    expect(add(1, 2)).toBe(3);
  });
});
"""

BROKEN = "describe('add', () => {\n  it('adds', () => {\n"


def failing(count: int = 1) -> RunResult:
    return RunResult(
        test_file=TEST_PATH,
        failed=count,
        total=count,
        failures=[TestFailure(test_name=f"add case {i}", message="Expected 4, received 3") for i in range(count)],
    )


def passing(count: int = 1) -> RunResult:
    return RunResult(test_file=TEST_PATH, passed=count, total=count)


def make_context(tmp_path, runner, generator, **settings_overrides) -> RunContext:
    settings_overrides.setdefault("enable_type_check", False)
    return RunContext(
        settings=Settings(_env_file=None, **settings_overrides),
        project_root=str(tmp_path),
        source=LocalFileSource(str(tmp_path)),
        generator=generator,
        runner=runner,
    )


def make_runner(side_effect=None, return_value=None):
    runner = MagicMock()
    if side_effect is not None:
        runner.run = AsyncMock(side_effect=side_effect)
    else:
        runner.run = AsyncMock(return_value=return_value)
    return runner


def make_generator(fixed: str = FIXED):
    generator = MagicMock()
    generator.fix = AsyncMock(return_value=fixed)
    return generator


@pytest.fixture
def project(tmp_path):
    """已写入初始测试文件与源文件的项目."""
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "math.ts").write_text(
        "export function add(a: number, b: number) {\n  return a + b;\n}\n", encoding="utf-8"
    )
    (tmp_path / "__tests__").mkdir()
    (tmp_path / "__tests__" / "math.test.ts").write_text(ORIGINAL, encoding="utf-8")
    return tmp_path


def make_buffers(content: str = ORIGINAL, last_valid=ORIGINAL):
    return {
        TEST_PATH: TestFileBuffer(
            content=content,
            target_names=["add"],
            source_files=["src/math.ts"],
            last_valid_content=last_valid,
        )
    }


class TestFixLoop:
    """FixLoop 测试类."""

    @pytest.mark.asyncio
    async def test_converges_after_one_fix(self, project):
        """测试两个失败用例在第二次运行时全部通过后结束."""
        runner = make_runner(side_effect=[[failing(2)], [passing(2)]])
        generator = make_generator()
        buffers = make_buffers()

        result = await FixLoop(make_context(project, runner, generator), buffers).run()

        assert result.converged
        assert result.iterations == 1
        assert result.runner_invocations == 2
        assert buffers[TEST_PATH].state == FileState.PASSING
        assert (project / TEST_PATH).read_text() == FIXED
        assert buffers[TEST_PATH].last_valid_content == FIXED

        request = generator.fix.call_args[0][0]
        assert request.attempt == 1
        assert len(request.failures) == 2
        assert "src/math.ts" in request.source_code
        runner.run.assert_awaited_with([TEST_PATH], coverage=False)

    @pytest.mark.asyncio
    async def test_already_passing(self, project):
        """测试首次运行即通过时不调用修复."""
        runner = make_runner(return_value=[passing()])
        generator = make_generator()

        result = await FixLoop(make_context(project, runner, generator), make_buffers()).run()

        assert result.converged
        assert result.iterations == 0
        assert result.runner_invocations == 1
        generator.fix.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_attempt_cap(self, project):
        """测试修复次数上限为 3 时运行器最多调用 4 次."""
        runner = make_runner(return_value=[failing()])
        generator = make_generator()
        buffers = make_buffers()

        result = await FixLoop(
            make_context(project, runner, generator, max_fix_attempts=3), buffers
        ).run()

        assert result.runner_invocations == 4
        assert result.iterations == 3
        assert generator.fix.await_count == 3
        assert not result.converged
        assert buffers[TEST_PATH].state == FileState.EXHAUSTED

    @pytest.mark.asyncio
    async def test_zero_attempts(self, project):
        """测试修复次数为 0 时只运行一次."""
        runner = make_runner(return_value=[failing()])
        generator = make_generator()

        result = await FixLoop(
            make_context(project, runner, generator, max_fix_attempts=0), make_buffers()
        ).run()

        assert result.runner_invocations == 1
        generator.fix.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_syntax_quarantine(self, project):
        """测试连续语法错误后隔离并回滚磁盘内容."""
        (project / TEST_PATH).write_text("stale content", encoding="utf-8")
        runner = make_runner(return_value=[failing()])
        generator = make_generator(BROKEN)
        buffers = make_buffers()

        result = await FixLoop(
            make_context(project, runner, generator, max_fix_attempts=-1), buffers
        ).run()

        buffer = buffers[TEST_PATH]
        assert buffer.state == FileState.SYNTAX_QUARANTINE
        assert buffer.syntax_failure_count == 3
        assert generator.fix.await_count == 3
        assert result.runner_invocations == 3
        assert (project / TEST_PATH).read_text() == ORIGINAL
        assert buffer.content == ORIGINAL

        second_request = generator.fix.call_args_list[1][0][0]
        assert any("Unclosed" in e for e in second_request.validation_errors)

    @pytest.mark.asyncio
    async def test_syntax_error_recovers(self, project):
        """测试语法错误后下一轮修复成功时计数清零."""
        runner = make_runner(side_effect=[[failing()], [failing()], [passing()]])
        generator = MagicMock()
        generator.fix = AsyncMock(side_effect=[BROKEN, FIXED])
        buffers = make_buffers()

        result = await FixLoop(make_context(project, runner, generator), buffers).run()

        assert result.converged
        assert result.iterations == 2
        assert buffers[TEST_PATH].syntax_failure_count == 0
        assert (project / TEST_PATH).read_text() == FIXED

    @pytest.mark.asyncio
    async def test_retention_rejects_fix(self, project):
        """测试修复结果删除过多用例时被拒绝."""
        cases = "\n".join(f"  it('case {i}', () => {{\n    expect(add(1, {i})).toBe({i + 1});\n  }});" for i in range(12))
        content = f"import {{ add }} from '../src/math';\n\ndescribe('add', () => {{\n{cases}\n}});\n"
        (project / TEST_PATH).write_text(content, encoding="utf-8")
        runner = make_runner(return_value=[failing()])
        generator = make_generator(FIXED)
        buffers = make_buffers(content, content)

        result = await FixLoop(make_context(project, runner, generator), buffers).run()

        assert result.runner_invocations == 1
        assert (project / TEST_PATH).read_text() == content
        assert buffers[TEST_PATH].content == content

    @pytest.mark.asyncio
    async def test_runner_error_ends_loop(self, project):
        """测试运行器异常时结束循环."""
        runner = make_runner(side_effect=RuntimeError("npx not found"))
        generator = make_generator()

        result = await FixLoop(make_context(project, runner, generator), make_buffers()).run()

        assert result.runner_invocations == 1
        assert not result.converged
        generator.fix.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fix_error_ends_loop(self, project):
        """测试修复调用失败且无可应用修复时提前结束."""
        runner = make_runner(return_value=[failing()])
        generator = MagicMock()
        generator.fix = AsyncMock(side_effect=RuntimeError("service unavailable"))

        result = await FixLoop(make_context(project, runner, generator), make_buffers()).run()

        assert result.runner_invocations == 1
        assert result.iterations == 1
        assert (project / TEST_PATH).read_text() == ORIGINAL

    @pytest.mark.asyncio
    async def test_without_runner(self, project):
        """测试未配置运行器时不做任何事."""
        generator = make_generator()

        result = await FixLoop(make_context(project, None, generator), make_buffers()).run()

        assert result.runner_invocations == 0
        assert result.results == {}

    @pytest.mark.asyncio
    async def test_private_access_not_written(self, project):
        """测试修复结果访问私有成员时不写入, 也不计入语法失败."""
        runner = make_runner(return_value=[failing()])
        generator = make_generator(
            FIXED.replace("expect(add(1, 2)).toBe(3);", "calc.secret = 1;\n    expect(add(1, 2)).toBe(3);")
        )
        buffers = make_buffers()
        buffers[TEST_PATH].private_members = ["secret"]

        result = await FixLoop(make_context(project, runner, generator), buffers).run()

        buffer = buffers[TEST_PATH]
        assert (project / TEST_PATH).read_text() == ORIGINAL
        assert buffer.syntax_failure_count == 0
        assert buffer.state == FileState.FAILING
        assert buffer.content == ORIGINAL
        assert result.runner_invocations == 1
        assert result.iterations == 1

    @pytest.mark.asyncio
    async def test_type_error_not_written(self, project):
        """测试类型检查失败的修复结果不写入, 也不计入语法失败."""
        runner = make_runner(return_value=[failing()])
        generator = make_generator()
        checker = MagicMock()
        checker.check = AsyncMock(
            return_value=TypeCheckResult(
                valid=False,
                errors=["error TS2345: Argument of type 'string' is not assignable to parameter of type 'number'."],
            )
        )
        context = make_context(project, runner, generator)
        context.type_checker = checker
        buffers = make_buffers()

        await FixLoop(context, buffers).run()

        assert (project / TEST_PATH).read_text() == ORIGINAL
        assert buffers[TEST_PATH].syntax_failure_count == 0
        assert buffers[TEST_PATH].state == FileState.FAILING
        checker.check.assert_awaited_once()
