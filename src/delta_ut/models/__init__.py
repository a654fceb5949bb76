"""数据模型与 LLM 模型管理."""

from delta_ut.models.common import (
    ChangedFile,
    ChangedRange,
    ChangeKind,
    ClassInfo,
    CoverageDelta,
    CoverageMetric,
    CoverageSnapshot,
    Declaration,
    DeclKind,
    FileCoverage,
    FileState,
    FileStatus,
    GenerationError,
    RunResult,
    RunSummary,
    TestFailure,
    TestFileBuffer,
    TestTarget,
    ValidationResult,
)

__all__ = [
    "ChangedFile",
    "ChangedRange",
    "ChangeKind",
    "ClassInfo",
    "CoverageDelta",
    "CoverageMetric",
    "CoverageSnapshot",
    "Declaration",
    "DeclKind",
    "FileCoverage",
    "FileState",
    "FileStatus",
    "GenerationError",
    "RunResult",
    "RunSummary",
    "TestFailure",
    "TestFileBuffer",
    "TestTarget",
    "ValidationResult",
]
