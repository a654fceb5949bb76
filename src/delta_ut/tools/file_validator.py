"""测试文件校验模块 - 结构完整性、私有成员访问、框架一致性与类型检查."""

import asyncio
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from delta_ut.models.common import ValidationResult
from delta_ut.utils import get_logger

logger = get_logger("file_validator")

TEST_FRAMEWORK_GLOBALS = (
    "describe",
    "it",
    "test",
    "expect",
    "beforeEach",
    "afterEach",
    "beforeAll",
    "afterAll",
    "vi",
    "jest",
)

SYNTAX_ERROR_KEYWORDS = (
    "Unclosed",
    "Syntax",
    "syntax",
    "brace",
    "parenthes",
    "bracket",
    "truncated",
    "incomplete",
)

MAX_REPORTED_TYPE_ERRORS = 10

_BRACKETS = {
    "{": ("}", "braces", "brace"),
    "(": (")", "parentheses", "paren"),
    "[": ("]", "brackets", "bracket"),
}
_CLOSERS = {closer: opener for opener, (closer, _, _) in _BRACKETS.items()}

_CLOSING_ONLY_LINE = re.compile(r"^[})\]]+[;,]?\s*$")
_DANGLING_OPERATOR = re.compile(r"[+\-*/=<>!&|]\s*$")
_BARE_IDENTIFIER = re.compile(r"^\w+\s*$")
_LITERALS = ("true", "false", "null", "undefined")

_JEST_API = re.compile(r"jest\.(Mock|fn|mock|spyOn)")
_VITEST_API = re.compile(r"vi\.(Mock|fn|mock|spyOn)")
_TS_ERROR_LINE = re.compile(r"error (TS\d+|:)\s*(.+)")
_CANNOT_FIND_NAME = re.compile(r"Cannot find name ['\"]([^'\"]+)['\"]")


def _scan_brackets(code: str) -> Tuple[dict, dict]:
    """单遍扫描, 跳过字符串与注释, 返回未闭合的开括号位置与多余闭括号数量."""
    unclosed = {opener: [] for opener in _BRACKETS}
    extra = {opener: 0 for opener in _BRACKETS}

    line, column = 1, 0
    in_string = False
    string_char = ""
    comment: Optional[str] = None
    i = 0
    length = len(code)

    while i < length:
        char = code[i]
        next_char = code[i + 1] if i + 1 < length else ""

        if char == "\n":
            line += 1
            column = 0
        else:
            column += 1

        if comment == "line":
            if char == "\n":
                comment = None
            i += 1
            continue
        if comment == "block":
            if char == "*" and next_char == "/":
                comment = None
                i += 2
                column += 1
                continue
            i += 1
            continue

        if in_string:
            if char == "\\":
                # 转义符只吞掉下一个字符
                if next_char == "\n":
                    line += 1
                    column = 0
                elif next_char:
                    column += 1
                i += 2
                continue
            if char == string_char:
                in_string = False
                string_char = ""
            i += 1
            continue

        if char in ("\"", "'", "`"):
            in_string = True
            string_char = char
            i += 1
            continue

        if char == "/" and next_char == "/":
            comment = "line"
            i += 2
            column += 1
            continue
        if char == "/" and next_char == "*":
            comment = "block"
            i += 2
            column += 1
            continue

        if char in _BRACKETS:
            unclosed[char].append((line, column))
        elif char in _CLOSERS:
            opener = _CLOSERS[char]
            if unclosed[opener]:
                unclosed[opener].pop()
            else:
                extra[opener] += 1

        i += 1

    return unclosed, extra


def _last_meaningful_line(code: str) -> Tuple[str, int]:
    lines = [l.strip() for l in code.strip().split("\n")]
    lines = [l for l in lines if l]
    for index in range(len(lines) - 1, -1, -1):
        if not _CLOSING_ONLY_LINE.match(lines[index]):
            return lines[index], index + 1
    return "", 0


def _truncation_errors(code: str) -> List[str]:
    last_line, line_number = _last_meaningful_line(code)
    if not last_line:
        return []

    errors: List[str] = []
    preview = f'File appears truncated at line {line_number}: "{last_line[:50]}..."'

    if (
        _DANGLING_OPERATOR.search(last_line)
        and not last_line.endswith((";", ",", "++", "--"))
    ):
        errors.append(f"{preview} - expression ends with operator but no operand")

    if last_line.count("(") > last_line.count(")"):
        errors.append(
            f"{preview} - function call is incomplete (missing closing parenthesis)"
        )

    if last_line.endswith("."):
        errors.append(f"{preview} - property access is incomplete (ends with dot)")

    if "=" in last_line and not last_line.endswith((";", ",")):
        after_equals = last_line.split("=")[-1].strip()
        if _BARE_IDENTIFIER.match(after_equals) and after_equals not in _LITERALS:
            errors.append(f"{preview} - assignment expression is incomplete")

    return errors


def check_syntax_completeness(code: str) -> ValidationResult:
    """检查代码结构完整性.

    Args:
        code: 代码

    Returns:
        ValidationResult: 括号平衡与截断检查结果
    """
    errors: List[str] = []
    unclosed, extra = _scan_brackets(code)

    for opener, (_, plural, singular) in _BRACKETS.items():
        positions = unclosed[opener]
        if positions:
            line, column = positions[0]
            errors.append(
                f"Unclosed {plural}: {len(positions)} opening {singular}(s) without closing "
                f"(at line {line}, column {column})"
            )
        if extra[opener]:
            errors.append(
                f"Extra closing {plural}: {extra[opener]} closing {singular}(s) without opening"
            )

    errors.extend(_truncation_errors(code))
    return ValidationResult(valid=not errors, errors=errors)


def check_private_access(content: str, private_members: Iterable[str]) -> List[str]:
    """检查测试代码是否直接访问私有成员."""
    errors: List[str] = []
    for member in private_members:
        pattern = re.compile(rf"(?:\w+\.|this\.){re.escape(member)}\s*[=;]")
        if pattern.search(content):
            errors.append(
                f"Private property access: Attempting to access private property '{member}' directly"
            )
    return errors


def detect_file_framework(file_path: str, content: str) -> Optional[str]:
    """根据路径或导入推断测试文件的框架."""
    if "vitest" in file_path or "from 'vitest'" in content or 'from "vitest"' in content:
        return "vitest"
    if (
        "jest" in file_path
        or "from 'jest'" in content
        or 'from "jest"' in content
        or "@jest/globals" in content
    ):
        return "jest"
    return None


def check_framework_consistency(file_path: str, content: str) -> List[str]:
    """检查框架 API 与文件声明的框架是否一致."""
    framework = detect_file_framework(file_path, content)
    if framework == "vitest" and _JEST_API.search(content):
        return [
            "Framework syntax error: Found Jest syntax (jest.Mock, jest.fn, etc.) in Vitest "
            "test file. Use vi.Mock, vi.fn() instead."
        ]
    if framework == "jest" and _VITEST_API.search(content):
        return [
            "Framework syntax error: Found Vitest syntax (vi.Mock, vi.fn, etc.) in Jest "
            "test file. Use jest.Mock, jest.fn() instead."
        ]
    return []


def is_syntax_error(errors: Iterable[str]) -> bool:
    """判断错误是否属于语法类."""
    return any(keyword in error for error in errors for keyword in SYNTAX_ERROR_KEYWORDS)


@dataclass
class TypeCheckResult:
    """类型检查结果."""

    valid: bool
    errors: List[str] = field(default_factory=list)
    missing_imports: List[str] = field(default_factory=list)


def parse_type_check_output(output: str) -> TypeCheckResult:
    """解析 tsc 输出, 仅识别测试框架全局名的缺失导入.

    Args:
        output: tsc 输出

    Returns:
        TypeCheckResult: 类型检查结果
    """
    error_lines = [
        line for line in output.split("\n") if "error TS" in line or "error:" in line
    ]
    if not error_lines:
        return TypeCheckResult(valid=True)

    errors = []
    for line in error_lines[:MAX_REPORTED_TYPE_ERRORS]:
        match = _TS_ERROR_LINE.search(line)
        errors.append(match.group(2).strip() if match else line.strip())
    if len(error_lines) > MAX_REPORTED_TYPE_ERRORS:
        errors.append(f"... and {len(error_lines) - MAX_REPORTED_TYPE_ERRORS} more error(s)")

    missing: List[str] = []
    for line in error_lines:
        match = _CANNOT_FIND_NAME.search(line)
        if match and match.group(1) in TEST_FRAMEWORK_GLOBALS and match.group(1) not in missing:
            missing.append(match.group(1))

    return TypeCheckResult(valid=False, errors=errors, missing_imports=missing)


class TypeChecker:
    """基于 tsc 的类型检查器."""

    def __init__(self, timeout: int = 120):
        self.timeout = timeout

    def build_command(self, file_path: str) -> List[str]:
        return [
            "npx",
            "--no-install",
            "tsc",
            "--noEmit",
            "--skipLibCheck",
            "--esModuleInterop",
            "--allowJs",
            file_path,
        ]

    async def check(self, file_path: str, project_root: str) -> TypeCheckResult:
        """对单个文件运行类型检查.

        Args:
            file_path: 相对项目根目录的文件路径
            project_root: 项目根目录

        Returns:
            TypeCheckResult: 找不到 tsc 时视为通过
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(file_path),
                cwd=project_root,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except FileNotFoundError:
            logger.warning("未找到 TypeScript 编译器, 跳过类型检查")
            return TypeCheckResult(valid=True)
        except asyncio.TimeoutError:
            logger.warning(f"类型检查超时 ({self.timeout}s), 跳过")
            return TypeCheckResult(valid=True)

        output = stdout.decode("utf-8", errors="replace") + "\n" + stderr.decode(
            "utf-8", errors="replace"
        )
        if process.returncode != 0 and "error TS" not in output:
            if "not found" in output or "could not determine executable" in output:
                logger.warning("未找到 TypeScript 编译器, 跳过类型检查")
                return TypeCheckResult(valid=True)
            return TypeCheckResult(
                valid=False, errors=[f"TypeScript validation error: {output.strip()[:500]}"]
            )
        return parse_type_check_output(output)


def _temp_check_path(file_path: str) -> str:
    path = Path(file_path)
    return str(path.with_name(f"{path.stem}.validate{path.suffix}"))


async def validate_test_file(
    file_path: str,
    content: str,
    project_root: str,
    private_members: Optional[Iterable[str]] = None,
    type_checker: Optional[TypeChecker] = None,
) -> ValidationResult:
    """校验测试文件内容.

    Args:
        file_path: 相对项目根目录的测试文件路径
        content: 待写入的内容
        project_root: 项目根目录
        private_members: 被测类的私有成员名
        type_checker: 类型检查器 (可选)

    Returns:
        ValidationResult: 校验结果, missing_imports 供调用方自动补全
    """
    errors: List[str] = []
    warnings: List[str] = []
    missing_imports: List[str] = []

    syntax = check_syntax_completeness(content)
    errors.extend(f"Syntax: {e}" for e in syntax.errors)

    if private_members:
        errors.extend(check_private_access(content, private_members))

    errors.extend(check_framework_consistency(file_path, content))

    if type_checker is not None:
        temp_relative = _temp_check_path(file_path)
        temp_path = Path(project_root) / temp_relative
        try:
            temp_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(content, encoding="utf-8")
            result = await type_checker.check(temp_relative, project_root)
            if not result.valid:
                errors.extend(f"Type error: {e}" for e in result.errors)
                if result.missing_imports:
                    missing_imports = result.missing_imports
                    errors.append(
                        f"Missing imports: {', '.join(missing_imports)}. "
                        "These should be imported from the test framework."
                    )
        except OSError as e:
            warnings.append(f"Could not validate file with TypeScript: {e}")
            logger.warning(f"无法进行类型检查: {e}")
        finally:
            if temp_path.exists():
                temp_path.unlink()

    return ValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        missing_imports=missing_imports,
    )
