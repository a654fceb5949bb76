"""Delta-UT: 基于代码变更的增量单元测试生成器."""

__version__ = "0.1.0"
