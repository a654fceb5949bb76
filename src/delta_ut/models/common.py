"""通用数据模型."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ChangeKind(Enum):
    """变更行类型."""

    ADDITION = "addition"
    DELETION = "deletion"


class FileStatus(Enum):
    """变更文件状态."""

    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"


class DeclKind(Enum):
    """声明类型."""

    FUNCTION = "function"
    ARROW = "arrow"
    METHOD = "method"
    OBJECT_METHOD = "object_method"


class FileState(Enum):
    """修复循环中测试文件的状态."""

    PASSING = "passing"
    FAILING = "failing"
    SYNTAX_QUARANTINE = "syntax_quarantine"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class ChangedRange:
    """变更区间 (闭区间, 1 起始)."""

    start: int
    end: int
    kind: ChangeKind

    def overlaps(self, start_line: int, end_line: int) -> bool:
        return self.start <= end_line and self.end >= start_line


@dataclass
class ChangedFile:
    """变更文件."""

    path: str
    status: FileStatus
    patch: str = ""
    additions: int = 0
    deletions: int = 0


@dataclass
class ClassInfo:
    """类索引信息."""

    name: str
    start_offset: int
    end_offset: int
    private_properties: List[str] = field(default_factory=list)
    private_methods: List[str] = field(default_factory=list)
    is_exported: bool = False

    @property
    def private_members(self) -> List[str]:
        return self.private_properties + self.private_methods

    def contains(self, offset: int) -> bool:
        return self.start_offset <= offset < self.end_offset


@dataclass
class Declaration:
    """源文件中的可测试声明."""

    name: str
    kind: DeclKind
    start_line: int
    end_line: int
    start_offset: int
    end_offset: int
    code: str
    owner_class: Optional[str] = None
    is_private: bool = False
    is_exported: bool = False

    @property
    def qualified_name(self) -> str:
        if self.owner_class:
            return f"{self.owner_class}.{self.name}"
        return self.name


@dataclass(frozen=True)
class TestTarget:
    """单个待生成测试的目标."""

    __test__ = False

    file_path: str
    decl_name: str
    decl_kind: DeclKind
    start_line: int
    end_line: int
    source_snippet: str
    surrounding_context: str
    overlapping_ranges: Tuple[ChangedRange, ...] = ()
    owner_class: Optional[str] = None
    is_private: bool = False
    private_members: Tuple[str, ...] = ()
    existing_test_file_path: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.file_path}:{self.decl_name}"


@dataclass
class TestFileBuffer:
    """按目标测试文件累积的内容缓冲."""

    __test__ = False

    content: str
    target_names: List[str] = field(default_factory=list)
    source_files: List[str] = field(default_factory=list)
    private_members: List[str] = field(default_factory=list)
    last_valid_content: Optional[str] = None
    syntax_failure_count: int = 0
    state: FileState = FileState.FAILING


@dataclass
class ValidationResult:
    """测试文件校验结果."""

    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    missing_imports: List[str] = field(default_factory=list)


@dataclass
class TestFailure:
    """单个失败用例."""

    __test__ = False

    test_name: str
    message: str
    stack: Optional[str] = None


@dataclass
class RunResult:
    """单个测试文件的执行结果."""

    test_file: str
    passed: int = 0
    failed: int = 0
    total: int = 0
    duration: float = 0.0
    failures: List[TestFailure] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


@dataclass
class CoverageMetric:
    """单项覆盖率指标."""

    total: int = 0
    covered: int = 0

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 100.0
        return self.covered / self.total * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "covered": self.covered,
            "percentage": round(self.percentage, 2),
        }


@dataclass
class FileCoverage:
    """单文件覆盖率."""

    path: str
    lines: CoverageMetric = field(default_factory=CoverageMetric)
    branches: CoverageMetric = field(default_factory=CoverageMetric)
    functions: CoverageMetric = field(default_factory=CoverageMetric)
    statements: CoverageMetric = field(default_factory=CoverageMetric)


@dataclass
class CoverageSnapshot:
    """覆盖率快照 (汇总)."""

    lines: CoverageMetric = field(default_factory=CoverageMetric)
    branches: CoverageMetric = field(default_factory=CoverageMetric)
    functions: CoverageMetric = field(default_factory=CoverageMetric)
    statements: CoverageMetric = field(default_factory=CoverageMetric)
    files: List[FileCoverage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lines": self.lines.to_dict(),
            "branches": self.branches.to_dict(),
            "functions": self.functions.to_dict(),
            "statements": self.statements.to_dict(),
            "files": len(self.files),
        }


@dataclass
class CoverageDelta:
    """覆盖率变化 (百分点)."""

    lines: float = 0.0
    branches: float = 0.0
    functions: float = 0.0
    statements: float = 0.0


@dataclass
class GenerationError:
    """单个目标的生成失败记录."""

    target: str
    error: str


@dataclass
class RunSummary:
    """一次运行的结果汇总."""

    targets_processed: int = 0
    tests_generated: int = 0
    tests_failed: int = 0
    test_files: List[str] = field(default_factory=list)
    errors: List[GenerationError] = field(default_factory=list)
    coverage_report: Optional[CoverageSnapshot] = None
    coverage_delta: Optional[CoverageDelta] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "targets_processed": self.targets_processed,
            "tests_generated": self.tests_generated,
            "tests_failed": self.tests_failed,
            "test_files": list(self.test_files),
            "errors": [{"target": e.target, "error": e.error} for e in self.errors],
            "coverage_report": self.coverage_report.to_dict() if self.coverage_report else None,
            "coverage_delta": (
                {
                    "lines": self.coverage_delta.lines,
                    "branches": self.coverage_delta.branches,
                    "functions": self.coverage_delta.functions,
                    "statements": self.coverage_delta.statements,
                }
                if self.coverage_delta
                else None
            ),
        }
