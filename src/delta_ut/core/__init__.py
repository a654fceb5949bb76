"""核心模块."""

from delta_ut.core.context import RunContext, build_run_context
from delta_ut.core.coordinator import CoordinatorResult, GenerationCoordinator
from delta_ut.core.fix_loop import FixLoop, FixLoopResult
from delta_ut.core.pipeline import TestGenerationPipeline

__all__ = [
    "RunContext",
    "build_run_context",
    "CoordinatorResult",
    "GenerationCoordinator",
    "FixLoop",
    "FixLoopResult",
    "TestGenerationPipeline",
]
