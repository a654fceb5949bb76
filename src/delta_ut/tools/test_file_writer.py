"""测试文件写入模块 - 校验后原子写入."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from delta_ut.models.common import TestFileBuffer, ValidationResult
from delta_ut.tools.file_validator import TypeChecker, validate_test_file
from delta_ut.tools.import_fixer import fix_missing_imports
from delta_ut.utils import get_logger

logger = get_logger("test_file_writer")


@dataclass
class WriteResult:
    """批量写入结果."""

    written_paths: List[str] = field(default_factory=list)
    failed_paths: List[str] = field(default_factory=list)
    errors: Dict[str, List[str]] = field(default_factory=dict)


def write_atomic(file_path: Path, content: str) -> None:
    """先写入 `<path>.tmp` 再重命名, 失败时清理临时文件."""
    file_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = file_path.with_name(file_path.name + ".tmp")
    try:
        temp_path.write_text(content, encoding="utf-8")
        os.replace(temp_path, file_path)
    except OSError:
        if temp_path.exists():
            temp_path.unlink()
        raise


async def validate_with_import_fix(
    test_path: str,
    content: str,
    project_root: str,
    framework: Optional[str],
    private_members: Optional[List[str]] = None,
    type_checker: Optional[TypeChecker] = None,
) -> Tuple[str, ValidationResult]:
    """校验内容, 缺失测试框架导入时自动补全一次后重新校验.

    Returns:
        Tuple[str, ValidationResult]: (可能被补全后的内容, 校验结果)
    """
    result = await validate_test_file(
        test_path, content, project_root, private_members, type_checker
    )
    if result.valid or not result.missing_imports:
        return content, result

    logger.info(f"补全缺失导入: {test_path} ({', '.join(result.missing_imports)})")
    fixed = fix_missing_imports(content, result.missing_imports, framework)
    if fixed == content:
        return content, result
    result = await validate_test_file(
        test_path, fixed, project_root, private_members, type_checker
    )
    return fixed, result


async def write_test_files(
    buffers: Dict[str, TestFileBuffer],
    project_root: str,
    framework: Optional[str] = None,
    type_checker: Optional[TypeChecker] = None,
) -> WriteResult:
    """校验并写入所有缓冲区.

    Args:
        buffers: 以测试文件路径为键的缓冲区
        project_root: 项目根目录
        framework: 测试框架, 用于补全导入
        type_checker: 类型检查器 (可选)

    Returns:
        WriteResult: 写入成功与失败的路径
    """
    result = WriteResult()

    for test_path, buffer in buffers.items():
        content, validation = await validate_with_import_fix(
            test_path,
            buffer.content,
            project_root,
            framework,
            buffer.private_members,
            type_checker,
        )
        for warning in validation.warnings:
            logger.warning(f"{test_path}: {warning}")

        if not validation.valid:
            logger.error(f"测试文件校验失败, 跳过写入: {test_path}")
            for error in validation.errors:
                logger.error(f"  - {error}")
            result.failed_paths.append(test_path)
            result.errors[test_path] = validation.errors
            continue

        try:
            write_atomic(Path(project_root) / test_path, content)
        except OSError as e:
            logger.error(f"写入测试文件失败 {test_path}: {e}")
            result.failed_paths.append(test_path)
            result.errors[test_path] = [str(e)]
            continue

        buffer.content = content
        buffer.last_valid_content = content
        result.written_paths.append(test_path)
        logger.info(f"已写入测试文件: {test_path}")

    return result
