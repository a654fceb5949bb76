"""测试目标提取模块 - 将变更区间映射到需要生成测试的声明."""

import re
from dataclasses import dataclass, replace
from pathlib import PurePosixPath
from typing import Iterable, List, Optional, Sequence

from delta_ut.models.common import (
    ChangedFile,
    ChangedRange,
    ChangeKind,
    Declaration,
    FileStatus,
    TestTarget,
)
from delta_ut.tools.diff_parser import count_lines, get_changed_ranges
from delta_ut.tools.git_analyzer import FileSource
from delta_ut.tools.ts_parser import find_class, parse_source
from delta_ut.utils import get_logger

logger = get_logger("target_extractor")

CONTEXT_LINES_BEFORE = 10
CONTEXT_LINES_AFTER = 5

TEST_FILE_PATTERNS = {
    "tsx": [".test.tsx", ".spec.tsx", ".test.ts", ".spec.ts"],
    "jsx": [".test.jsx", ".spec.jsx", ".test.js", ".spec.js"],
    "ts": [".test.ts", ".spec.ts"],
    "js": [".test.js", ".spec.js"],
}


@dataclass
class ExtractionPolicy:
    """目标选择策略."""

    test_all_exports: bool = False
    new_file_threshold: float = 0.9
    bulk_change_threshold: float = 0.5

    @classmethod
    def from_settings(cls, settings) -> "ExtractionPolicy":
        return cls(
            test_all_exports=settings.test_all_exports,
            new_file_threshold=settings.new_file_threshold,
            bulk_change_threshold=settings.bulk_change_threshold,
        )


def glob_to_regex(pattern: str) -> re.Pattern:
    """将 glob 模式转换为正则表达式."""
    parts: List[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            parts.append("(.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$")


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    return any(glob_to_regex(p).match(path) for p in patterns)


def is_mostly_new_file(ranges: Sequence[ChangedRange], line_count: int, threshold: float) -> bool:
    if len(ranges) != 1:
        return False
    only = ranges[0]
    return (
        only.kind == ChangeKind.ADDITION
        and only.start == 1
        and only.end >= line_count * threshold
    )


def is_bulk_change(ranges: Sequence[ChangedRange], line_count: int, threshold: float) -> bool:
    return any(
        r.kind == ChangeKind.ADDITION and (r.end - r.start) >= line_count * threshold
        for r in ranges
    )


def overlapping_additions(
    ranges: Sequence[ChangedRange], start_line: int, end_line: int
) -> List[ChangedRange]:
    """仅新增区间参与重叠判断, 删除区间使用旧行号."""
    return [
        r for r in ranges if r.kind == ChangeKind.ADDITION and r.overlaps(start_line, end_line)
    ]


def extract_context(lines: List[str], declarations: List[Declaration], index: int) -> str:
    """截取声明周边上下文: 上一个声明起始行 (或前 10 行) 到声明后 5 行."""
    decl = declarations[index]
    if index > 0:
        context_start = declarations[index - 1].start_line
    else:
        context_start = max(1, decl.start_line - CONTEXT_LINES_BEFORE)
    context_end = min(len(lines), decl.end_line + CONTEXT_LINES_AFTER)
    return "\n".join(lines[context_start - 1:context_end])


def analyze_file(
    file_path: str,
    content: str,
    ranges: Sequence[ChangedRange],
    policy: Optional[ExtractionPolicy] = None,
) -> List[TestTarget]:
    """分析单个文件, 返回符合条件的测试目标.

    Args:
        file_path: 源文件路径
        content: 源文件内容
        ranges: 合并后的变更区间
        policy: 目标选择策略

    Returns:
        List[TestTarget]: 按声明顺序排列的目标
    """
    policy = policy or ExtractionPolicy()
    parsed = parse_source(file_path, content)
    if parsed.has_errors:
        logger.debug(f"{file_path} 存在语法错误, 按容错结果继续分析")

    lines = content.split("\n")
    line_count = count_lines(content)

    select_all = policy.test_all_exports
    if not select_all and is_mostly_new_file(ranges, line_count, policy.new_file_threshold):
        logger.debug(f"{file_path} 判定为新文件, 测试全部声明")
        select_all = True
    if not select_all and is_bulk_change(ranges, line_count, policy.bulk_change_threshold):
        logger.debug(f"{file_path} 判定为大规模改动, 测试全部声明")
        select_all = True

    targets: List[TestTarget] = []
    for index, decl in enumerate(parsed.declarations):
        overlapping = overlapping_additions(ranges, decl.start_line, decl.end_line)
        if not select_all and not overlapping:
            continue

        owner = find_class(parsed.classes, decl.owner_class)
        targets.append(
            TestTarget(
                file_path=file_path,
                decl_name=decl.name,
                decl_kind=decl.kind,
                start_line=decl.start_line,
                end_line=decl.end_line,
                source_snippet=decl.code,
                surrounding_context=extract_context(lines, parsed.declarations, index),
                overlapping_ranges=tuple(overlapping),
                owner_class=decl.owner_class,
                is_private=decl.is_private,
                private_members=tuple(owner.private_members) if owner else (),
            )
        )

    return targets


def candidate_test_paths(source_path: str, test_directory: str = "__tests__") -> List[str]:
    """按优先级列出可能的已有测试文件路径."""
    path = PurePosixPath(source_path)
    ext = path.suffix.lstrip(".")
    patterns = TEST_FILE_PATTERNS.get(ext, TEST_FILE_PATTERNS["ts"])
    directory = str(path.parent) if str(path.parent) != "." else ""
    base = path.stem

    def join(*parts: str) -> str:
        return str(PurePosixPath(*[p for p in parts if p]))

    locations = [
        (directory,),
        (directory, "__tests__"),
        (test_directory,),
        (test_directory, directory),
        ("__tests__",),
    ]
    candidates = [join(*location, base + suffix) for location in locations for suffix in patterns]

    seen = set()
    ordered = []
    for candidate in candidates:
        if candidate not in seen:
            seen.add(candidate)
            ordered.append(candidate)
    return ordered


async def detect_test_file(
    source_path: str,
    ref: str,
    source: FileSource,
    test_directory: str = "__tests__",
) -> Optional[str]:
    """查找源文件已有的测试文件, 首个命中者胜出.

    Args:
        source_path: 源文件路径
        ref: 版本引用
        source: 文件来源
        test_directory: 配置的测试目录

    Returns:
        Optional[str]: 已有测试文件路径, 未找到返回 None
    """
    for candidate in candidate_test_paths(source_path, test_directory):
        try:
            if await source.file_exists(ref, candidate):
                return candidate
        except Exception as e:
            logger.debug(f"检查测试文件 {candidate} 失败: {e}")
    return None


async def extract_test_targets(
    files: Iterable[ChangedFile],
    ref: str,
    source: FileSource,
    settings,
) -> List[TestTarget]:
    """从变更文件中提取测试目标.

    Args:
        files: 变更文件
        ref: 变更后的版本引用
        source: 文件来源
        settings: 配置 (包含 include/exclude 模式和提取策略)

    Returns:
        List[TestTarget]: 按文件顺序和声明顺序排列的目标
    """
    policy = ExtractionPolicy.from_settings(settings)
    targets: List[TestTarget] = []

    for file in files:
        if file.status == FileStatus.REMOVED:
            continue
        if not matches_any(file.path, settings.include_patterns):
            continue
        if matches_any(file.path, settings.exclude_patterns):
            continue

        try:
            content = await source.read_file(ref, file.path)
            ranges = get_changed_ranges(file, content)
            if not ranges:
                continue

            file_targets = analyze_file(file.path, content, ranges, policy)
            if not file_targets:
                continue

            existing = await detect_test_file(file.path, ref, source, settings.test_directory)
            for target in file_targets:
                if existing:
                    target = replace(target, existing_test_file_path=existing)
                targets.append(target)

            logger.info(f"{file.path}: 发现 {len(file_targets)} 个测试目标")
        except Exception as e:
            logger.debug(f"分析 {file.path} 失败, 已跳过: {e}")

    return targets

