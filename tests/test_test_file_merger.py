"""测试文件合并测试."""

from delta_ut.tools.test_file_merger import (
    count_tests,
    extract_describe_body,
    has_existing_tests,
    merge_describe_block,
    merge_test_files,
    parse_test_file,
)


EXISTING = """import { add } from '../src/math';
import { describe, it, expect } from 'vitest';

// shared fixture
const fixture = [1, 2, 3];

describe('add', () => {
  it('adds two numbers', () => {
    expect(add(1, 2)).toBe(3);
  });
});
"""

BLOCK_SUB = """import { sub } from '../src/math';
import { describe, it, expect } from 'vitest';

describe('sub', () => {
  it('subtracts', () => {
    expect(sub(3, 1)).toBe(2);
  });
});
"""

BLOCK_MUL = """import { mul } from '../src/math';
import { describe, it, expect } from 'vitest';

describe('mul', () => {
  it('multiplies', () => {
    expect(mul(2, 3)).toBe(6);
  });
});
"""


class TestParseTestFile:
    """parse_test_file 测试类."""

    def test_parse_structure(self):
        """测试解析导入、describe 块和其他代码."""
        parsed = parse_test_file(EXISTING)

        assert parsed.imports == [
            "import { add } from '../src/math';",
            "import { describe, it, expect } from 'vitest';",
        ]
        assert list(parsed.blocks) == ["add"]
        assert parsed.other_code == ["// shared fixture\nconst fixture = [1, 2, 3];"]

    def test_empty_content(self):
        """测试空内容."""
        parsed = parse_test_file("   \n")

        assert parsed.imports == []
        assert parsed.blocks == {}

    def test_template_name(self):
        """测试模板字符串名称."""
        parsed = parse_test_file("describe(`Calculator`, () => {});\n")

        assert list(parsed.blocks) == ["Calculator"]


class TestMergeTestFiles:
    """merge_test_files 测试类."""

    def test_empty_existing_returns_new_code(self):
        """测试已有内容为空时直接返回新代码."""
        assert merge_test_files("", BLOCK_SUB) == BLOCK_SUB

    def test_adds_new_block_sorted(self):
        """测试新增 describe 块按名称排序."""
        merged = merge_test_files(EXISTING, BLOCK_SUB)

        assert merged.index("describe('add'") < merged.index("describe('sub'")
        assert "import { sub } from '../src/math';" in merged
        assert merged.count("import { describe, it, expect } from 'vitest';") == 1
        assert "const fixture = [1, 2, 3];" in merged

    def test_imports_before_blocks(self):
        """测试导入位于文件开头."""
        merged = merge_test_files(EXISTING, BLOCK_SUB)

        assert merged.startswith("import ")
        assert merged.endswith("\n")

    def test_merge_order_independent(self):
        """测试合并顺序不影响结果."""
        a_then_b = merge_test_files(merge_test_files(EXISTING, BLOCK_SUB), BLOCK_MUL)
        b_then_a = merge_test_files(merge_test_files(EXISTING, BLOCK_MUL), BLOCK_SUB)

        assert set(parse_test_file(a_then_b).blocks) == {"add", "mul", "sub"}
        assert parse_test_file(a_then_b).blocks == parse_test_file(b_then_a).blocks
        assert list(parse_test_file(a_then_b).blocks) == ["add", "mul", "sub"]
        assert list(parse_test_file(b_then_a).blocks) == ["add", "mul", "sub"]

    def test_same_name_block_merged(self):
        """测试同名 describe 块合并用例."""
        new_code = """describe('add', () => {
  it('handles negatives', () => {
    expect(add(-1, -2)).toBe(-3);
  });
});
"""
        merged = merge_test_files(EXISTING, new_code)

        assert merged.count("describe('add'") == 1
        assert "adds two numbers" in merged
        assert "handles negatives" in merged
        assert merged.index("adds two numbers") < merged.index("handles negatives")


class TestDescribeHelpers:
    """describe 辅助函数测试类."""

    def test_extract_arrow_body(self):
        """测试提取箭头函数体."""
        block = "describe('a', () => {\n  it('b', () => {});\n});"

        assert extract_describe_body(block) == "it('b', () => {});"

    def test_extract_function_body(self):
        """测试提取普通函数体."""
        block = "describe('a', function () {\n  it('b', () => {});\n});"

        assert extract_describe_body(block) == "it('b', () => {});"

    def test_extract_without_callback(self):
        """测试缺少回调."""
        assert extract_describe_body("describe('a');") is None

    def test_merge_describe_block(self):
        """测试插入到结尾之前."""
        merged = merge_describe_block("describe('a', () => {\n  it('x');\n});", "it('y');")

        assert merged.endswith("it('y');\n});")

    def test_merge_block_without_semicolons(self):
        """测试无分号风格的 describe 块, 新用例插入到 describe 回调内而不是上一个 it 内."""
        existing = "describe('add', () => {\n  it('a', () => {\n    expect(1).toBe(1)\n  });\n})"

        merged = merge_describe_block(existing, "it('b', () => {})")

        assert merged == (
            "describe('add', () => {\n  it('a', () => {\n    expect(1).toBe(1)\n  });"
            "\n\nit('b', () => {})\n})"
        )

    def test_merge_files_without_semicolons(self):
        """测试合并无分号风格的测试文件."""
        existing = "describe('add', () => {\n  it('a', () => {\n    expect(1).toBe(1)\n  })\n})\n"
        new_code = "describe('add', () => {\n  it('b', () => {\n    expect(2).toBe(2)\n  })\n})\n"

        merged = merge_test_files(existing, new_code)

        assert merged == (
            "describe('add', () => {\n  it('a', () => {\n    expect(1).toBe(1)\n  })"
            "\n\nit('b', () => {\n    expect(2).toBe(2)\n  })\n})\n"
        )
        assert extract_describe_body(merged).startswith("it('a'")


class TestHasExistingTests:
    """has_existing_tests 测试类."""

    def test_function_name(self):
        """测试函数名匹配."""
        assert has_existing_tests(EXISTING, "add")
        assert not has_existing_tests(EXISTING, "sub")

    def test_case_insensitive(self):
        """测试大小写不敏感."""
        assert has_existing_tests("describe('Add', () => {});", "add")

    def test_class_method_names(self):
        """测试类方法的多种命名."""
        assert has_existing_tests("describe('Calc.sum', () => {});", "sum", "Calc")
        assert has_existing_tests("describe('Calc#sum', () => {});", "sum", "Calc")
        assert has_existing_tests("describe('sum', () => {});", "sum", "Calc")
        assert not has_existing_tests("describe('Calc', () => {});", "sum", "Calc")

    def test_empty_content(self):
        """测试空内容."""
        assert not has_existing_tests("", "add")

    def test_prefix_name_not_matched(self):
        """测试名称前缀不误判."""
        assert not has_existing_tests("describe('addAll', () => {});", "add")


class TestCountTests:
    """count_tests 测试类."""

    def test_count(self):
        """测试统计用例数量."""
        content = """describe('a', () => {
  it('one', () => {});
  test('two', () => {});
  it.each([1])('three', () => {});
  expect(fit).toBeDefined();
});
"""
        assert count_tests(content) == 2
