"""测试目标提取测试."""

from unittest.mock import AsyncMock

import pytest

from delta_ut.config import Settings
from delta_ut.models.common import ChangedFile, ChangedRange, ChangeKind, FileStatus
from delta_ut.tools.git_analyzer import LocalFileSource
from delta_ut.tools.target_extractor import (
    ExtractionPolicy,
    analyze_file,
    candidate_test_paths,
    detect_test_file,
    extract_test_targets,
    glob_to_regex,
    is_bulk_change,
    is_mostly_new_file,
    matches_any,
    overlapping_additions,
)


def build_source(filler_lines: int = 30) -> str:
    """构造两个函数之间有大量填充行的源码."""
    lines = ["export function first(a: number) {"]
    lines += [f"  const v{i} = a + {i};" for i in range(8)]
    lines += ["  return a;", "}", ""]
    lines += [f"// filler {i}" for i in range(filler_lines)]
    lines += ["export function second(b: number) {", "  return b * 2;", "}", ""]
    return "\n".join(lines)


SOURCE = build_source()
SECOND_START = SOURCE.split("\n").index("export function second(b: number) {") + 1


class TestGlobPatterns:
    """glob 模式匹配测试类."""

    def test_double_star_prefix(self):
        """测试 **/ 匹配任意目录层级 (包括零层)."""
        assert matches_any("a.ts", ["**/*.ts"])
        assert matches_any("src/deep/a.ts", ["**/*.ts"])

    def test_single_star_does_not_cross_directories(self):
        """测试 * 不跨目录."""
        assert glob_to_regex("src/*.ts").match("src/a.ts")
        assert not glob_to_regex("src/*.ts").match("src/x/a.ts")

    def test_exclude_test_files(self):
        """测试排除测试文件."""
        assert matches_any("src/a.test.ts", ["**/*.test.ts"])
        assert not matches_any("src/a.ts", ["**/*.test.ts"])
        assert matches_any("node_modules/lib/index.ts", ["**/node_modules/**"])


class TestSelectionPolicy:
    """目标选择策略测试类."""

    def test_mostly_new_file(self):
        """测试新文件判定."""
        ranges = [ChangedRange(1, 95, ChangeKind.ADDITION)]

        assert is_mostly_new_file(ranges, 100, 0.9)
        assert not is_mostly_new_file(ranges, 200, 0.9)

    def test_mostly_new_file_requires_single_range(self):
        """测试多个区间不算新文件."""
        ranges = [
            ChangedRange(1, 95, ChangeKind.ADDITION),
            ChangedRange(97, 97, ChangeKind.ADDITION),
        ]

        assert not is_mostly_new_file(ranges, 100, 0.9)

    def test_bulk_change(self):
        """测试大规模改动判定."""
        assert is_bulk_change([ChangedRange(10, 70, ChangeKind.ADDITION)], 100, 0.5)
        assert not is_bulk_change([ChangedRange(10, 20, ChangeKind.ADDITION)], 100, 0.5)
        assert not is_bulk_change([ChangedRange(10, 90, ChangeKind.DELETION)], 100, 0.5)

    def test_overlap_ignores_deletions(self):
        """测试删除区间不参与重叠判断."""
        addition = [ChangedRange(15, 15, ChangeKind.ADDITION)]
        deletion = [ChangedRange(15, 15, ChangeKind.DELETION)]

        assert overlapping_additions(addition, 10, 20) == addition
        assert overlapping_additions(deletion, 10, 20) == []


class TestAnalyzeFile:
    """analyze_file 测试类."""

    def test_selects_overlapping_declaration_only(self):
        """测试只选择与新增区间重叠的声明."""
        ranges = [ChangedRange(SECOND_START + 1, SECOND_START + 1, ChangeKind.ADDITION)]

        targets = analyze_file("src/math.ts", SOURCE, ranges)

        assert [t.decl_name for t in targets] == ["second"]
        assert targets[0].overlapping_ranges == tuple(ranges)
        assert targets[0].start_line == SECOND_START

    def test_deletion_inside_declaration_not_selected(self):
        """测试仅有删除区间时不选择."""
        ranges = [ChangedRange(SECOND_START + 1, SECOND_START + 1, ChangeKind.DELETION)]

        assert analyze_file("src/math.ts", SOURCE, ranges) == []

    def test_test_all_exports(self):
        """测试选择全部声明."""
        ranges = [ChangedRange(SECOND_START + 1, SECOND_START + 1, ChangeKind.ADDITION)]

        targets = analyze_file(
            "src/math.ts", SOURCE, ranges, ExtractionPolicy(test_all_exports=True)
        )

        assert [t.decl_name for t in targets] == ["first", "second"]
        assert targets[0].overlapping_ranges == ()

    def test_new_file_selects_all(self):
        """测试新文件选择全部声明."""
        line_count = len(SOURCE.splitlines())
        ranges = [ChangedRange(1, line_count, ChangeKind.ADDITION)]

        targets = analyze_file("src/math.ts", SOURCE, ranges)

        assert [t.decl_name for t in targets] == ["first", "second"]

    def test_surrounding_context(self):
        """测试上下文从上一个声明起始行开始."""
        ranges = [ChangedRange(SECOND_START, SECOND_START, ChangeKind.ADDITION)]

        targets = analyze_file("src/math.ts", SOURCE, ranges)

        assert targets[0].surrounding_context.startswith("export function first")
        assert "return b * 2;" in targets[0].surrounding_context

    def test_idempotent(self):
        """测试重复提取结果一致."""
        ranges = [ChangedRange(2, 3, ChangeKind.ADDITION)]

        first = analyze_file("src/math.ts", SOURCE, ranges)
        second = analyze_file("src/math.ts", SOURCE, ranges)

        assert first == second

    def test_private_members_attached_to_method_target(self):
        """测试方法目标携带所属类的私有成员."""
        content = """export class Store {
  private items: string[] = [];

  add(item: string) {
    this.items.push(item);
  }
}
"""
        ranges = [ChangedRange(5, 5, ChangeKind.ADDITION)]

        targets = analyze_file("src/store.ts", content, ranges)

        assert len(targets) == 1
        assert targets[0].owner_class == "Store"
        assert targets[0].private_members == ("items",)


class TestDetectTestFile:
    """已有测试文件检测测试类."""

    def test_candidate_order(self):
        """测试候选路径优先级."""
        candidates = candidate_test_paths("src/utils/math.ts", "tests")

        assert candidates[:4] == [
            "src/utils/math.test.ts",
            "src/utils/math.spec.ts",
            "src/utils/__tests__/math.test.ts",
            "src/utils/__tests__/math.spec.ts",
        ]
        assert "tests/math.test.ts" in candidates
        assert "tests/src/utils/math.test.ts" in candidates
        assert len(candidates) == len(set(candidates))

    def test_tsx_candidates(self):
        """测试 TSX 文件候选."""
        candidates = candidate_test_paths("App.tsx")

        assert candidates[0] == "App.test.tsx"
        assert "App.test.ts" in candidates

    @pytest.mark.asyncio
    async def test_first_match_wins(self):
        """测试首个存在的候选胜出."""
        source = AsyncMock()
        source.file_exists = AsyncMock(
            side_effect=lambda ref, path: path in (
                "src/utils/__tests__/math.test.ts",
                "__tests__/math.test.ts",
            )
        )

        result = await detect_test_file("src/utils/math.ts", "HEAD", source)

        assert result == "src/utils/__tests__/math.test.ts"

    @pytest.mark.asyncio
    async def test_not_found(self):
        """测试未找到."""
        source = AsyncMock()
        source.file_exists = AsyncMock(return_value=False)

        assert await detect_test_file("src/a.ts", "HEAD", source) is None


class TestExtractTestTargets:
    """extract_test_targets 测试类."""

    @pytest.mark.asyncio
    async def test_extract_from_local_files(self, tmp_path):
        """测试从本地文件提取并关联已有测试文件."""
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "math.ts").write_text(SOURCE, encoding="utf-8")
        (tmp_path / "src" / "math.test.ts").write_text("describe('first', () => {});\n")
        patch = (
            f"@@ -{SECOND_START + 1},1 +{SECOND_START + 1},1 @@\n"
            "-  return b;\n"
            "+  return b * 2;\n"
        )
        files = [
            ChangedFile(path="src/math.ts", status=FileStatus.MODIFIED, patch=patch),
            ChangedFile(path="src/math.test.ts", status=FileStatus.MODIFIED, patch=patch),
            ChangedFile(path="src/gone.ts", status=FileStatus.REMOVED),
        ]
        settings = Settings(_env_file=None)

        targets = await extract_test_targets(files, "WORKTREE", LocalFileSource(str(tmp_path)), settings)

        assert [t.decl_name for t in targets] == ["second"]
        assert targets[0].existing_test_file_path == "src/math.test.ts"

    @pytest.mark.asyncio
    async def test_unreadable_file_skipped(self, tmp_path):
        """测试读取失败的文件被跳过."""
        files = [ChangedFile(path="src/missing.ts", status=FileStatus.ADDED)]

        targets = await extract_test_targets(
            files, "WORKTREE", LocalFileSource(str(tmp_path)), Settings(_env_file=None)
        )

        assert targets == []

    @pytest.mark.asyncio
    async def test_idempotent(self, tmp_path):
        """测试对同一 diff 重复提取结果一致."""
        (tmp_path / "math.ts").write_text(SOURCE, encoding="utf-8")
        files = [ChangedFile(path="math.ts", status=FileStatus.ADDED)]
        source = LocalFileSource(str(tmp_path))
        settings = Settings(_env_file=None)

        first = await extract_test_targets(files, "WORKTREE", source, settings)
        second = await extract_test_targets(files, "WORKTREE", source, settings)

        assert first == second
        assert len(first) == 2
