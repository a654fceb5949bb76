"""TypeScript/JavaScript 源码解析模块 - 基于 tree-sitter 构建扁平声明列表."""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional

import tree_sitter_typescript as ts_typescript
from tree_sitter import Language, Node, Parser, Tree

from delta_ut.models.common import ClassInfo, Declaration, DeclKind

FUNCTION_VALUE_TYPES = ("arrow_function", "function_expression", "function")
CLASS_TYPES = ("class_declaration", "abstract_class_declaration", "class")
TOP_LEVEL_FUNCTION_TYPES = ("function_declaration", "generator_function_declaration")


@dataclass
class ParsedSource:
    """源文件解析结果."""

    file_path: str
    classes: List[ClassInfo] = field(default_factory=list)
    declarations: List[Declaration] = field(default_factory=list)
    has_errors: bool = False


@lru_cache(maxsize=2)
def _get_parser(tsx: bool) -> Parser:
    """获取或创建解析器."""
    if tsx:
        return Parser(Language(ts_typescript.language_tsx()))
    return Parser(Language(ts_typescript.language_typescript()))


def uses_tsx_grammar(file_path: str) -> bool:
    return file_path.endswith((".tsx", ".jsx"))


def parse_tree(content: str, tsx: bool = False) -> Tree:
    """解析源码为 tree-sitter 语法树.

    Args:
        content: 源码
        tsx: 是否使用 TSX 语法

    Returns:
        Tree: 语法树
    """
    return _get_parser(tsx).parse(bytes(content, "utf-8"))


def node_text(node: Optional[Node]) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8")


def _is_exported(node: Node) -> bool:
    parent = node.parent
    return parent is not None and parent.type == "export_statement"


def _has_child(node: Node, child_type: str, text: Optional[str] = None) -> bool:
    for child in node.children:
        if child.type == child_type and (text is None or node_text(child) == text):
            return True
    return False


def _is_private_member(node: Node) -> bool:
    name_node = node.child_by_field_name("name")
    if name_node is not None and name_node.type == "private_property_identifier":
        return True
    return _has_child(node, "accessibility_modifier", "private")


def _build_class_info(node: Node) -> Optional[ClassInfo]:
    name_node = node.child_by_field_name("name")
    if name_node is None:
        return None

    info = ClassInfo(
        name=node_text(name_node),
        start_offset=node.start_byte,
        end_offset=node.end_byte,
        is_exported=_is_exported(node),
    )

    body = node.child_by_field_name("body")
    if body is None:
        return info

    for member in body.named_children:
        member_name = node_text(member.child_by_field_name("name"))
        if member.type in ("public_field_definition", "field_definition"):
            if _is_private_member(member):
                info.private_properties.append(member_name)
        elif member.type == "method_definition":
            if member_name == "constructor":
                info.private_properties.extend(_private_parameter_properties(member))
            elif _is_private_member(member):
                info.private_methods.append(member_name)

    return info


def _private_parameter_properties(constructor: Node) -> List[str]:
    """构造函数中的 private 参数属性."""
    names: List[str] = []
    params = constructor.child_by_field_name("parameters")
    if params is None:
        return names
    for param in params.named_children:
        if _has_child(param, "accessibility_modifier", "private"):
            pattern = param.child_by_field_name("pattern")
            if pattern is not None:
                names.append(node_text(pattern))
    return names


def _make_declaration(
    node: Node,
    name: str,
    kind: DeclKind,
    is_exported: bool,
    is_private: bool = False,
) -> Declaration:
    return Declaration(
        name=name,
        kind=kind,
        start_line=node.start_point[0] + 1,
        end_line=node.end_point[0] + 1,
        start_offset=node.start_byte,
        end_offset=node.end_byte,
        code=node_text(node),
        is_private=is_private,
        is_exported=is_exported,
    )


def _collect_declaration(node: Node) -> Optional[Declaration]:
    """将单个节点转换为声明, 非声明节点返回 None."""
    parent = node.parent
    parent_type = parent.type if parent is not None else ""

    if node.type in TOP_LEVEL_FUNCTION_TYPES and parent_type in ("program", "export_statement"):
        name = node_text(node.child_by_field_name("name")) or "default"
        return _make_declaration(node, name, DeclKind.FUNCTION, _is_exported(node))

    if node.type in ("function_expression", "function") and parent_type == "export_statement":
        if _has_child(parent, "default") and node.child_by_field_name("name") is None:
            return _make_declaration(node, "default", DeclKind.FUNCTION, True)
        return None

    if node.type == "method_definition":
        name = node_text(node.child_by_field_name("name"))
        if not name or name == "constructor":
            return None
        if _has_child(node, "get") or _has_child(node, "set"):
            return None
        if parent_type == "class_body":
            return _make_declaration(
                node, name, DeclKind.METHOD, False, is_private=_is_private_member(node)
            )
        if parent_type == "object":
            return _make_declaration(node, name, DeclKind.OBJECT_METHOD, False)
        return None

    if node.type == "variable_declarator":
        value = node.child_by_field_name("value")
        if value is None or value.type not in FUNCTION_VALUE_TYPES:
            return None
        declaration_node = parent
        if declaration_node is None or not _is_exported(declaration_node):
            return None
        name = node_text(value.child_by_field_name("name")) or node_text(
            node.child_by_field_name("name")
        )
        return _make_declaration(declaration_node, name, DeclKind.ARROW, True)

    if node.type == "pair" and parent_type == "object":
        value = node.child_by_field_name("value")
        if value is None or value.type not in FUNCTION_VALUE_TYPES:
            return None
        name = node_text(node.child_by_field_name("key")).strip("'\"`")
        return _make_declaration(node, name, DeclKind.OBJECT_METHOD, False)

    if node.type == "assignment_expression":
        left = node.child_by_field_name("left")
        right = node.child_by_field_name("right")
        if left is None or right is None or left.type != "member_expression":
            return None
        if right.type not in FUNCTION_VALUE_TYPES:
            return None
        name = node_text(left.child_by_field_name("property"))
        return _make_declaration(node, name, DeclKind.OBJECT_METHOD, False)

    return None


def parse_source(file_path: str, content: str) -> ParsedSource:
    """解析源文件, 构建类索引与扁平声明列表.

    Args:
        file_path: 文件路径 (决定是否使用 TSX 语法)
        content: 文件内容

    Returns:
        ParsedSource: 类索引和按出现顺序排列的声明
    """
    tree = parse_tree(content, uses_tsx_grammar(file_path))
    result = ParsedSource(file_path=file_path, has_errors=tree.root_node.has_error)

    stack = [tree.root_node]
    while stack:
        node = stack.pop()

        if node.type in CLASS_TYPES:
            info = _build_class_info(node)
            if info is not None:
                result.classes.append(info)

        declaration = _collect_declaration(node)
        if declaration is not None:
            result.declarations.append(declaration)

        stack.extend(reversed(node.children))

    for declaration in result.declarations:
        if declaration.kind != DeclKind.METHOD:
            continue
        owner = _innermost_class(result.classes, declaration.start_offset)
        if owner is not None:
            declaration.owner_class = owner.name

    result.declarations.sort(key=lambda d: d.start_offset)
    return result


def _innermost_class(classes: List[ClassInfo], offset: int) -> Optional[ClassInfo]:
    containing = [c for c in classes if c.contains(offset)]
    if not containing:
        return None
    return min(containing, key=lambda c: c.end_offset - c.start_offset)


def find_class(classes: List[ClassInfo], name: Optional[str]) -> Optional[ClassInfo]:
    if name is None:
        return None
    return next((c for c in classes if c.name == name), None)
