"""导入修复模块 - 合并同源导入并补全缺失的测试框架导入."""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from delta_ut.tools.ts_parser import node_text, parse_tree
from delta_ut.utils import get_logger

logger = get_logger("import_fixer")

FRAMEWORK_MODULES = {
    "vitest": "vitest",
    "jest": "@jest/globals",
}

IMPORT_LINE = re.compile(r"^import\s+.*?from\s+['\"].*?['\"];?[ \t]*$", re.MULTILINE)


@dataclass
class ParsedImport:
    """单条导入语句的组成部分."""

    source: str
    default_import: Optional[str] = None
    namespace_import: Optional[str] = None
    named_imports: List[str] = field(default_factory=list)
    type_only: bool = False


def parse_import(statement: str) -> Optional[ParsedImport]:
    """解析单条导入语句, 无法解析时返回 None."""
    tree = parse_tree(statement)
    node = next(
        (child for child in tree.root_node.named_children if child.type == "import_statement"),
        None,
    )
    if node is None or node.has_error:
        return None

    source_node = node.child_by_field_name("source")
    if source_node is None:
        return None
    parsed = ParsedImport(source=node_text(source_node)[1:-1])
    parsed.type_only = any(child.type == "type" for child in node.children)

    clause = next((c for c in node.named_children if c.type == "import_clause"), None)
    if clause is None:
        return parsed

    for part in clause.named_children:
        if part.type == "identifier":
            parsed.default_import = node_text(part)
        elif part.type == "namespace_import":
            identifier = next((c for c in part.named_children if c.type == "identifier"), None)
            parsed.namespace_import = node_text(identifier)
        elif part.type == "named_imports":
            for spec in part.named_children:
                if spec.type != "import_specifier":
                    continue
                name = node_text(spec.child_by_field_name("name"))
                alias = node_text(spec.child_by_field_name("alias"))
                entry = f"{name} as {alias}" if alias else name
                if entry not in parsed.named_imports:
                    parsed.named_imports.append(entry)
    return parsed


def format_import(parsed: ParsedImport) -> str:
    prefix = "import type" if parsed.type_only else "import"
    parts: List[str] = []
    if parsed.default_import:
        parts.append(parsed.default_import)
    if parsed.named_imports:
        parts.append("{ " + ", ".join(sorted(parsed.named_imports)) + " }")
    elif parsed.namespace_import:
        parts.append(f"* as {parsed.namespace_import}")
    if not parts:
        return f"import '{parsed.source}';"
    return f"{prefix} {', '.join(parts)} from '{parsed.source}';"


def consolidate_imports(statements: List[str]) -> List[str]:
    """合并来自同一模块的导入语句.

    Args:
        statements: 导入语句

    Returns:
        List[str]: 排序后的合并结果, 无法解析的语句原样保留
    """
    by_source: Dict[tuple, ParsedImport] = {}
    passthrough: List[str] = []

    for statement in statements:
        parsed = parse_import(statement.strip())
        if parsed is None:
            passthrough.append(statement.strip())
            continue

        key = (parsed.source, parsed.type_only)
        existing = by_source.get(key)
        if existing is None:
            by_source[key] = parsed
            continue
        if parsed.default_import and not existing.default_import:
            existing.default_import = parsed.default_import
        if parsed.namespace_import and not existing.namespace_import:
            existing.namespace_import = parsed.namespace_import
        for name in parsed.named_imports:
            if name not in existing.named_imports:
                existing.named_imports.append(name)

    consolidated = sorted(format_import(p) for p in by_source.values())
    for statement in passthrough:
        if statement not in consolidated:
            consolidated.append(statement)
    return consolidated


def consolidate_file_imports(content: str) -> str:
    """合并文件顶部的导入语句."""
    imports = IMPORT_LINE.findall(content)
    if not imports:
        return content
    consolidated = consolidate_imports(imports)
    body = IMPORT_LINE.sub("", content).strip()
    return "\n".join(consolidated) + "\n\n" + body + "\n"


def detect_framework(content: str) -> Optional[str]:
    if "from 'vitest'" in content or 'from "vitest"' in content:
        return "vitest"
    if "from 'jest'" in content or 'from "jest"' in content or "@jest/globals" in content:
        return "jest"
    return None


def add_missing_imports(
    content: str,
    missing_imports: List[str],
    framework: Optional[str] = None,
) -> str:
    """在测试框架导入中补充缺失的名称.

    Args:
        content: 测试文件内容
        missing_imports: 缺失的全局名
        framework: 测试框架 (未指定时从内容推断)

    Returns:
        str: 补全后的内容, 无法判断框架时原样返回
    """
    if not missing_imports:
        return content

    framework = framework or detect_framework(content)
    if framework not in FRAMEWORK_MODULES:
        logger.debug("无法判断测试框架, 跳过导入补全")
        return content

    module = FRAMEWORK_MODULES[framework]
    module_import = re.compile(rf"import\s+.*?from\s+['\"]{re.escape(module)}['\"];?")
    existing = module_import.findall(content)

    names: List[str] = []
    for statement in existing:
        parsed = parse_import(statement)
        if parsed is not None:
            names.extend(n for n in parsed.named_imports if n not in names)
    names.extend(n for n in missing_imports if n not in names)

    statement = "import { " + ", ".join(sorted(names)) + f" }} from '{module}';"

    if existing:
        replaced = False

        def _replace(_match: re.Match) -> str:
            nonlocal replaced
            if replaced:
                return ""
            replaced = True
            return statement

        result = module_import.sub(_replace, content)
        return re.sub(r"\n\n\n+", "\n\n", result)

    lines = content.split("\n")
    insert_at = 0
    for index, line in enumerate(lines):
        stripped = line.strip()
        if stripped and not stripped.startswith(("//", "/*")):
            insert_at = index
            break
    lines.insert(insert_at, statement)
    return "\n".join(lines)


def fix_missing_imports(
    content: str,
    missing_imports: List[str],
    framework: Optional[str] = None,
) -> str:
    """补全缺失的测试框架导入并合并导入."""
    if not missing_imports:
        return content
    return consolidate_file_imports(add_missing_imports(content, missing_imports, framework))
