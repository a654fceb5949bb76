"""测试文件路径与导入路径计算模块."""

import posixpath
import re
from pathlib import PurePosixPath

SOURCE_EXTENSION = re.compile(r"\.(ts|tsx|js|jsx)$")


def get_base_name(file_path: str) -> str:
    """去掉目录和扩展名后的文件名."""
    return SOURCE_EXTENSION.sub("", PurePosixPath(file_path).name)


def get_test_file_path(
    source_path: str,
    test_location: str = "separate",
    test_directory: str = "__tests__",
    test_file_pattern: str = "*.test.ts",
) -> str:
    """计算源文件对应的测试文件路径.

    Args:
        source_path: 源文件路径 (相对项目根目录)
        test_location: separate 或 co-located
        test_directory: separate 模式下的测试目录
        test_file_pattern: separate 模式下的文件名模式, * 替换为源文件名

    Returns:
        str: 测试文件路径
    """
    path = PurePosixPath(source_path)
    base_name = get_base_name(source_path)
    test_ext = "ts" if path.suffix in (".ts", ".tsx") else "js"

    if test_location == "co-located":
        return str(path.parent / f"{base_name}.test.{test_ext}")

    file_name = test_file_pattern.replace("*", base_name, 1)
    return str(PurePosixPath(test_directory) / file_name)


def calculate_import_path(test_file_path: str, source_file_path: str) -> str:
    """计算测试文件导入源文件的相对路径.

    Args:
        test_file_path: 测试文件路径
        source_file_path: 源文件路径

    Returns:
        str: 去扩展名且以 ./ 或 ../ 开头的相对路径
    """
    test_dir = posixpath.dirname(posixpath.normpath(test_file_path)) or "."
    relative = posixpath.relpath(posixpath.normpath(source_file_path), test_dir)
    relative = SOURCE_EXTENSION.sub("", relative)
    if not relative.startswith("."):
        return f"./{relative}"
    return relative
