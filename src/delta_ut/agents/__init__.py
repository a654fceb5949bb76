"""测试生成协作方."""

from delta_ut.agents.generator import FixRequest, TestGenerator

__all__ = [
    "FixRequest",
    "TestGenerator",
]
