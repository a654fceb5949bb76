"""Prompt 构建模块 - 测试生成、脚手架与修复."""

from typing import Dict, List, Optional

from delta_ut.models.common import DeclKind, TestFailure, TestTarget
from delta_ut.models.llm import LLMMessage

FRAMEWORK_NAMES = {"jest": "Jest", "vitest": "Vitest"}

_TIMER_MARKERS = ("setTimeout", "setInterval", "debounce", "throttle")
MAX_FAILURES_IN_PROMPT = 10


def framework_name(framework: str) -> str:
    return FRAMEWORK_NAMES.get(framework, framework)


def framework_import(framework: str, names: str = "describe, it, expect") -> str:
    module = "vitest" if framework == "vitest" else "@jest/globals"
    return f"import {{ {names} }} from '{module}';"


def _mock_api(framework: str) -> str:
    if framework == "vitest":
        return "vi.fn() / vi.mock() / vi.spyOn(), 禁止使用 jest.fn() 等 Jest API"
    return "jest.fn() / jest.mock() / jest.spyOn(), 禁止使用 vi.fn() 等 Vitest API"


def _timer_api(framework: str) -> str:
    prefix = "vi" if framework == "vitest" else "jest"
    return (
        f"beforeEach 中调用 {prefix}.useFakeTimers(), afterEach 中调用 {prefix}.useRealTimers(), "
        f"用 {prefix}.advanceTimersByTime(ms) 推进时间"
    )


def needs_fake_timers(target: TestTarget) -> bool:
    text = target.source_snippet + "\n" + target.surrounding_context
    return any(marker in text for marker in _TIMER_MARKERS)


def _target_section(target: TestTarget, test_file_path: str, import_path: str) -> str:
    lines = [
        f"源文件: {target.file_path}",
        f"测试文件: {test_file_path}",
        f"导入路径 (必须原样使用): {import_path}",
        f"函数: {target.decl_name}",
        f"类型: {target.decl_kind.value}",
    ]

    if target.owner_class:
        lines.extend(
            [
                f"所属类: {target.owner_class}",
                "这是类方法, 不是独立函数:",
                f"- 导入类: import {{ {target.owner_class} }} from '{import_path}';",
                f"- 实例化: const instance = new {target.owner_class}()",
                f"- 调用: instance.{target.decl_name}()",
                "- 不要把方法当作函数导入",
            ]
        )
    elif target.decl_kind == DeclKind.OBJECT_METHOD:
        lines.append("这是对象上的方法, 通过所属对象调用.")

    if target.is_private:
        lines.append("警告: 这是私有方法, 只能通过公共方法间接测试.")

    if target.private_members:
        lines.append(f"警告: 该类的私有成员: {', '.join(target.private_members)}")
        lines.append("- 测试中不要直接读写这些成员, 通过构造参数或公共方法准备状态")

    return "\n".join(lines)


def build_generation_prompt(
    target: TestTarget,
    framework: str,
    existing_content: Optional[str],
    test_file_path: str,
    import_path: str,
) -> List[LLMMessage]:
    """构建测试生成 Prompt.

    Args:
        target: 测试目标
        framework: jest 或 vitest
        existing_content: 已有测试文件内容
        test_file_path: 测试文件路径
        import_path: 测试文件导入源文件的相对路径

    Returns:
        List[LLMMessage]: system + user 消息
    """
    name = framework_name(framework)
    system = f"""你是 {name} 单元测试专家, 负责为 TypeScript/JavaScript 函数编写单元测试.

只允许使用 {name} 语法, 不得使用其他测试框架.
测试必须针对代码的实际运行行为, 而不是假设的行为.

要求:
1. 生成完整、可直接运行的 {name} 测试代码
2. 先分析函数代码的实际行为, 再覆盖正常输入、边界条件和异常路径
3. 只有在代码中确实存在 throw 或校验逻辑时才断言异常
4. 遵循 JavaScript 运行时语义: 算术运算不会抛错而是返回 NaN 或 Infinity, TypeScript 类型只在编译期存在
5. 异步函数使用 async/await, 并使用 resolves/rejects 断言
6. 外部依赖使用 {_mock_api(framework)}, 每个用例之间重置 mock
7. 类方法需导入类并实例化, 禁止直接访问私有成员
8. 使用定时器的函数必须使用假定时器: {_timer_api(framework)}
9. 若已有同名 describe 块, 在其中追加用例而不是新建
10. 使用 describe() 和 it() 作为直接函数调用, 禁止 test.describe() 等 Playwright 写法

输出格式:
- 只返回测试代码, 不要解释, 不要 markdown 代码块
- 顶部包含必要的导入, 例如: {framework_import(framework)}
"""

    user = f"""请为以下函数生成 {name} 单元测试.

{_target_section(target, test_file_path, import_path)}

函数代码:
```typescript
{target.source_snippet}
```
"""
    if target.surrounding_context:
        user += f"""
上下文代码:
```typescript
{target.surrounding_context}
```
"""
    if needs_fake_timers(target):
        user += f"\n注意: 该函数使用了定时器, 必须使用假定时器: {_timer_api(framework)}\n"

    if existing_content:
        user += f"""
已有测试文件 (保持其结构和风格, 避免重复的 describe 块):
```typescript
{existing_content}
```
"""
    user += f"\n用 describe('{target.decl_name}', ...) 组织测试. 只返回测试代码."

    return [LLMMessage(role="system", content=system), LLMMessage(role="user", content=user)]


def build_scaffold_prompt(
    target: TestTarget,
    framework: str,
    existing_content: Optional[str],
    test_file_path: str,
    import_path: str,
) -> List[LLMMessage]:
    """构建测试脚手架 Prompt, 只生成结构和 TODO 占位."""
    name = framework_name(framework)
    system = f"""你是测试脚手架助手, 负责为 TypeScript/JavaScript 函数生成最小的 {name} 测试结构.

要求:
1. 只生成 describe/it 结构, 不写具体实现和断言
2. 每个 it 块内用 TODO 注释说明应测试的内容
3. 导入语句: {framework_import(framework, "describe, it")}
4. 使用 describe() 和 it() 作为直接函数调用, 禁止 test.describe() 等写法
5. Mock 相关 API 只能使用 {_mock_api(framework)}

输出格式:
- 只返回测试代码, 不要解释, 不要 markdown 代码块
"""
    user = f"""请为以下函数生成 {name} 测试脚手架.

{_target_section(target, test_file_path, import_path)}

函数代码:
```typescript
{target.source_snippet}
```
"""
    if existing_content:
        user += f"""
已有测试文件 (保持其结构):
```typescript
{existing_content}
```
"""
    user += f"\n用 describe('{target.decl_name}', ...) 组织脚手架. 只返回测试代码."

    return [LLMMessage(role="system", content=system), LLMMessage(role="user", content=user)]


def format_failures(failures: List[TestFailure]) -> str:
    if not failures:
        return "无"
    lines = []
    for failure in failures[:MAX_FAILURES_IN_PROMPT]:
        lines.append(f"- {failure.test_name}\n  {failure.message.strip()[:1000]}")
    if len(failures) > MAX_FAILURES_IN_PROMPT:
        lines.append(f"... 以及另外 {len(failures) - MAX_FAILURES_IN_PROMPT} 个失败用例")
    return "\n".join(lines)


def build_fix_prompt(
    framework: str,
    test_file_path: str,
    test_content: str,
    source_code: Dict[str, str],
    failures: List[TestFailure],
    attempt: int,
    max_attempts: int,
    validation_errors: Optional[List[str]] = None,
) -> List[LLMMessage]:
    """构建测试修复 Prompt.

    Args:
        framework: jest 或 vitest
        test_file_path: 测试文件路径
        test_content: 当前测试文件完整内容
        source_code: 被测源文件路径到内容的映射
        failures: 失败用例
        attempt: 当前修复次数 (1 起始)
        max_attempts: 最大修复次数, -1 表示不限
        validation_errors: 上一次校验的错误

    Returns:
        List[LLMMessage]: system + user 消息
    """
    name = framework_name(framework)
    budget = "不限" if max_attempts < 0 else str(max_attempts)
    system = f"""你是 {name} 测试调试专家, 负责修复失败的单元测试.

当前是第 {attempt} 次修复 (上限 {budget}).

要求:
1. 先分析被测代码的实际行为, 让测试匹配实际行为
2. 只有代码确实抛出异常时才断言异常
3. 保留原有测试意图和所有通过的用例, 不要删除用例
4. 修正导入路径、mock 设置以及语法或类型错误
5. 使用 {name} 语法, Mock 只能使用 {_mock_api(framework)}

输出格式:
- 返回修复后的完整测试文件, 不要解释, 不要 markdown 代码块
"""
    user = f"测试文件: {test_file_path}\n\n"
    for path, code in source_code.items():
        user += f"""被测源文件 {path}:
```typescript
{code}
```

"""
    user += f"""当前测试代码:
```typescript
{test_content}
```

失败用例:
{format_failures(failures)}
"""
    if validation_errors:
        user += "\n上一次修复的校验错误:\n" + "\n".join(f"- {e}" for e in validation_errors) + "\n"
    if attempt > 1:
        user += f"\n注意: 这是第 {attempt} 次修复, 之前的修复均未成功, 请更仔细地分析错误.\n"
    user += "\n请修复测试代码并返回完整文件."

    return [LLMMessage(role="system", content=system), LLMMessage(role="user", content=user)]
