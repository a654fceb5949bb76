"""Diff 解析模块 - 将统一 diff 转换为合并后的变更区间."""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from delta_ut.exceptions import DiffParseError
from delta_ut.models.common import ChangedFile, ChangedRange, ChangeKind, FileStatus
from delta_ut.utils import get_logger

logger = get_logger("diff_parser")

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")
SOURCE_FILE_PATTERN = re.compile(r"\.(ts|tsx|js|jsx)$")

# 同类区间间隔不超过该行数时合并
MERGE_GAP = 2


@dataclass
class DiffHunk:
    """diff 片段."""

    old_start: int
    old_lines: int
    new_start: int
    new_lines: int
    lines: List[str] = field(default_factory=list)


def parse_unified_diff(patch: str) -> List[DiffHunk]:
    """解析统一 diff 文本.

    Args:
        patch: diff 文本

    Returns:
        List[DiffHunk]: 片段列表, 片段外的内容被忽略
    """
    hunks: List[DiffHunk] = []
    current: Optional[DiffHunk] = None

    for line in patch.split("\n"):
        match = HUNK_HEADER.match(line)
        if match:
            current = DiffHunk(
                old_start=int(match.group(1)),
                old_lines=int(match.group(2)) if match.group(2) is not None else 1,
                new_start=int(match.group(3)),
                new_lines=int(match.group(4)) if match.group(4) is not None else 1,
            )
            hunks.append(current)
        elif current is not None:
            current.lines.append(line)

    return hunks


def hunks_to_ranges(hunks: Iterable[DiffHunk]) -> List[ChangedRange]:
    """按行生成变更区间 (新增行用新行号, 删除行用旧行号)."""
    ranges: List[ChangedRange] = []

    for hunk in hunks:
        old_line = hunk.old_start
        new_line = hunk.new_start

        for line in hunk.lines:
            if line.startswith("+") and not line.startswith("+++"):
                ranges.append(ChangedRange(new_line, new_line, ChangeKind.ADDITION))
                new_line += 1
            elif line.startswith("-") and not line.startswith("---"):
                ranges.append(ChangedRange(old_line, old_line, ChangeKind.DELETION))
                old_line += 1
            elif not line.startswith("\\"):
                old_line += 1
                new_line += 1

    return ranges


def merge_ranges(ranges: Iterable[ChangedRange]) -> List[ChangedRange]:
    """合并相邻的同类区间.

    Args:
        ranges: 变更区间

    Returns:
        List[ChangedRange]: 按起始行排序的合并结果
    """
    ordered = sorted(ranges, key=lambda r: (r.kind.value, r.start, r.end))
    if not ordered:
        return []

    merged: List[ChangedRange] = []
    current = ordered[0]

    for nxt in ordered[1:]:
        if nxt.kind == current.kind and nxt.start <= current.end + MERGE_GAP:
            current = ChangedRange(current.start, max(current.end, nxt.end), current.kind)
        else:
            merged.append(current)
            current = nxt

    merged.append(current)
    return sorted(merged, key=lambda r: (r.start, r.kind.value))


def count_lines(content: str) -> int:
    return max(len(content.splitlines()), 1)


def get_changed_ranges(file: ChangedFile, content: Optional[str] = None) -> List[ChangedRange]:
    """计算单个文件的变更区间.

    Args:
        file: 变更文件
        content: 文件内容 (新增文件必须提供)

    Returns:
        List[ChangedRange]: 合并后的变更区间
    """
    if file.status == FileStatus.REMOVED:
        return []

    if file.status == FileStatus.ADDED:
        if content is None:
            raise DiffParseError("新增文件需要提供文件内容", file_path=file.path)
        return [ChangedRange(1, count_lines(content), ChangeKind.ADDITION)]

    if not file.patch:
        logger.debug(f"{file.path} 无 diff 内容")
        return []

    return merge_ranges(hunks_to_ranges(parse_unified_diff(file.patch)))


def filter_source_files(files: Iterable[ChangedFile]) -> List[ChangedFile]:
    """仅保留 TypeScript/JavaScript 源文件."""
    return [f for f in files if SOURCE_FILE_PATTERN.search(f.path)]
