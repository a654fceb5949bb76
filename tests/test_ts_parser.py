"""TypeScript 源码解析测试."""

from delta_ut.models.common import DeclKind
from delta_ut.tools.ts_parser import find_class, node_text, parse_source, parse_tree


SOURCE = """import { Dep } from './dep';

export function add(a: number, b: number): number {
  return a + b;
}

function internal() {
  return 1;
}

export const multiply = (a: number, b: number) => a * b;

const notExported = () => 0;

export class Calculator {
  private secret = 42;
  #hidden = 0;

  constructor(private readonly dep: Dep) {}

  get value() {
    return this.secret;
  }

  sum(values: number[]): number {
    return values.reduce((acc, v) => acc + v, 0);
  }

  private helper(): void {}
}
"""


class TestParseSource:
    """parse_source 测试类."""

    def test_declarations_in_source_order(self):
        """测试声明按出现顺序排列."""
        parsed = parse_source("src/calc.ts", SOURCE)

        names = [d.name for d in parsed.declarations]
        assert names == ["add", "internal", "multiply", "sum", "helper"]

    def test_declaration_kinds(self):
        """测试声明类型."""
        parsed = parse_source("src/calc.ts", SOURCE)
        kinds = {d.name: d.kind for d in parsed.declarations}

        assert kinds["add"] == DeclKind.FUNCTION
        assert kinds["internal"] == DeclKind.FUNCTION
        assert kinds["multiply"] == DeclKind.ARROW
        assert kinds["sum"] == DeclKind.METHOD

    def test_line_numbers_are_one_based(self):
        """测试行号从 1 开始."""
        parsed = parse_source("src/calc.ts", SOURCE)
        add = parsed.declarations[0]

        assert add.start_line == 3
        assert add.end_line == 5
        assert add.code.startswith("function add")

    def test_export_flags(self):
        """测试导出标记."""
        parsed = parse_source("src/calc.ts", SOURCE)
        exported = {d.name: d.is_exported for d in parsed.declarations}

        assert exported["add"] is True
        assert exported["internal"] is False
        assert exported["multiply"] is True

    def test_non_exported_arrow_ignored(self):
        """测试未导出的箭头函数不作为声明."""
        parsed = parse_source("src/calc.ts", SOURCE)

        assert "notExported" not in [d.name for d in parsed.declarations]

    def test_method_owner_and_privacy(self):
        """测试方法归属类与私有标记."""
        parsed = parse_source("src/calc.ts", SOURCE)
        methods = {d.name: d for d in parsed.declarations if d.kind == DeclKind.METHOD}

        assert methods["sum"].owner_class == "Calculator"
        assert methods["sum"].is_private is False
        assert methods["helper"].is_private is True
        assert methods["sum"].qualified_name == "Calculator.sum"

    def test_class_private_members(self):
        """测试类私有成员索引."""
        parsed = parse_source("src/calc.ts", SOURCE)
        calc = find_class(parsed.classes, "Calculator")

        assert calc is not None
        assert calc.is_exported is True
        assert "secret" in calc.private_properties
        assert "#hidden" in calc.private_properties
        assert "dep" in calc.private_properties
        assert calc.private_methods == ["helper"]

    def test_object_methods(self):
        """测试对象字面量中的方法."""
        content = """export const handlers = {
  onClick() {
    return 1;
  },
  onKey: (e: string) => e,
};
"""
        parsed = parse_source("src/handlers.ts", content)
        kinds = {d.name: d.kind for d in parsed.declarations}

        assert kinds["onClick"] == DeclKind.OBJECT_METHOD
        assert kinds["onKey"] == DeclKind.OBJECT_METHOD

    def test_prototype_assignment(self):
        """测试原型赋值."""
        content = "Foo.prototype.bar = function () {\n  return 1;\n};\n"

        parsed = parse_source("src/foo.js", content)

        assert [d.name for d in parsed.declarations] == ["bar"]
        assert parsed.declarations[0].kind == DeclKind.OBJECT_METHOD

    def test_tsx_file(self):
        """测试 TSX 文件."""
        content = "export function App() {\n  return <div>hi</div>;\n}\n"

        parsed = parse_source("src/App.tsx", content)

        assert parsed.has_errors is False
        assert [d.name for d in parsed.declarations] == ["App"]

    def test_syntax_errors_flagged(self):
        """测试语法错误被标记但不抛异常."""
        parsed = parse_source("src/broken.ts", "export function broken( {\n")

        assert parsed.has_errors is True


class TestHelpers:
    """辅助函数测试类."""

    def test_node_text(self):
        """测试节点文本."""
        tree = parse_tree("const a = 1;")

        assert node_text(tree.root_node) == "const a = 1;"
        assert node_text(None) == ""

    def test_find_class_missing(self):
        """测试查找不存在的类."""
        assert find_class([], "Foo") is None
        assert find_class([], None) is None
