"""工具模块."""

from delta_ut.tools.diff_parser import get_changed_ranges, parse_unified_diff
from delta_ut.tools.target_extractor import analyze_file, extract_test_targets
from delta_ut.tools.file_validator import TypeChecker, check_syntax_completeness, validate_test_file
from delta_ut.tools.test_file_merger import has_existing_tests, merge_test_files
from delta_ut.tools.test_runner import TestRunner, create_test_runner
from delta_ut.tools.coverage_analyzer import calculate_coverage_delta, read_coverage_report

__all__ = [
    "get_changed_ranges",
    "parse_unified_diff",
    "analyze_file",
    "extract_test_targets",
    "TypeChecker",
    "check_syntax_completeness",
    "validate_test_file",
    "has_existing_tests",
    "merge_test_files",
    "TestRunner",
    "create_test_runner",
    "calculate_coverage_delta",
    "read_coverage_report",
]
