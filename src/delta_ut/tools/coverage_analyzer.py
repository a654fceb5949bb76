"""覆盖率分析模块 - 读取 Istanbul 报告并计算覆盖率变化."""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from delta_ut.models.common import CoverageDelta, CoverageMetric, CoverageSnapshot, FileCoverage
from delta_ut.utils import get_logger

logger = get_logger("coverage_analyzer")

COVERAGE_REPORT_PATH = Path("coverage") / "coverage-final.json"


def _count_hits(hits: Iterable[Any]) -> CoverageMetric:
    metric = CoverageMetric()
    for count in hits:
        if isinstance(count, list):
            # 分支命中数组每一项计为一个分支
            metric.total += len(count)
            metric.covered += sum(1 for c in count if c > 0)
        else:
            metric.total += 1
            if count > 0:
                metric.covered += 1
    return metric


def _line_metric(file_data: Dict[str, Any]) -> CoverageMetric:
    line_hits = file_data.get("l") or file_data.get("lines")
    if isinstance(line_hits, dict):
        return _count_hits(line_hits.values())

    statement_map = file_data.get("statementMap", {})
    statement_hits = file_data.get("s") or file_data.get("statements") or {}
    lines: Dict[int, int] = {}
    for statement_id, location in statement_map.items():
        line = location.get("start", {}).get("line")
        if line is None:
            continue
        count = statement_hits.get(statement_id, 0)
        lines[line] = max(lines.get(line, 0), count)
    return _count_hits(lines.values())


def parse_file_coverage(path: str, file_data: Dict[str, Any]) -> FileCoverage:
    """解析单个文件的覆盖率数据.

    支持 Istanbul 长格式 (s/f/b) 和短格式 (statements/functions/branches/lines).
    """
    statements = file_data.get("s", file_data.get("statements", {})) or {}
    functions = file_data.get("f", file_data.get("functions", {})) or {}
    branches = file_data.get("b", file_data.get("branches", {})) or {}

    return FileCoverage(
        path=file_data.get("path", path),
        lines=_line_metric(file_data),
        branches=_count_hits(branches.values()),
        functions=_count_hits(functions.values()),
        statements=_count_hits(statements.values()),
    )


def parse_coverage_data(data: Dict[str, Any]) -> CoverageSnapshot:
    """将 coverage-final.json 的内容汇总为覆盖率快照.

    Args:
        data: 以文件路径为键的覆盖率数据

    Returns:
        CoverageSnapshot: 汇总结果
    """
    snapshot = CoverageSnapshot()
    for path, file_data in data.items():
        if not isinstance(file_data, dict):
            continue
        file_coverage = parse_file_coverage(path, file_data)
        snapshot.files.append(file_coverage)
        for metric_name in ("lines", "branches", "functions", "statements"):
            total = getattr(snapshot, metric_name)
            metric = getattr(file_coverage, metric_name)
            total.total += metric.total
            total.covered += metric.covered
    return snapshot


def read_coverage_report(project_root: str) -> Optional[CoverageSnapshot]:
    """读取项目的覆盖率报告.

    Args:
        project_root: 项目根目录

    Returns:
        Optional[CoverageSnapshot]: 报告不存在或无法解析时返回 None
    """
    report_path = Path(project_root) / COVERAGE_REPORT_PATH
    if not report_path.exists():
        return None

    try:
        data = json.loads(report_path.read_text(encoding="utf-8"))
        return parse_coverage_data(data)
    except (OSError, ValueError, AttributeError, TypeError) as e:
        logger.warning(f"无法读取覆盖率报告 {report_path}: {e}")
        return None


def calculate_coverage_delta(
    baseline: CoverageSnapshot, current: CoverageSnapshot
) -> CoverageDelta:
    """计算两个快照之间的覆盖率变化 (百分点, 保留两位小数)."""
    return CoverageDelta(
        lines=round(current.lines.percentage - baseline.lines.percentage, 2),
        branches=round(current.branches.percentage - baseline.branches.percentage, 2),
        functions=round(current.functions.percentage - baseline.functions.percentage, 2),
        statements=round(current.statements.percentage - baseline.statements.percentage, 2),
    )


def _format_delta(value: float) -> str:
    return f"+{value:.2f}" if value >= 0 else f"{value:.2f}"


def format_coverage_summary(
    report: CoverageSnapshot, delta: Optional[CoverageDelta] = None
) -> str:
    """生成覆盖率摘要.

    Args:
        report: 覆盖率快照
        delta: 相对基线的变化

    Returns:
        str: 摘要文本
    """
    rows = [
        ("行覆盖率", report.lines, delta.lines if delta else None),
        ("分支覆盖率", report.branches, delta.branches if delta else None),
        ("函数覆盖率", report.functions, delta.functions if delta else None),
        ("语句覆盖率", report.statements, delta.statements if delta else None),
    ]
    lines = ["覆盖率报告摘要:", "================"]
    for label, metric, change in rows:
        line = f"{label}: {metric.percentage:.2f}% ({metric.covered}/{metric.total})"
        if change is not None:
            line += f" [{_format_delta(change)}%]"
        lines.append(line)
    lines.append(f"文件数量: {len(report.files)}")
    return "\n".join(lines)
