"""CLI 入口模块."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from delta_ut import __version__
from delta_ut.config import Settings, settings
from delta_ut.core.context import build_run_context
from delta_ut.core.pipeline import TestGenerationPipeline
from delta_ut.exceptions import ConfigurationError, DeltaUTError
from delta_ut.models.common import RunSummary, TestTarget
from delta_ut.models.llm import list_available_providers
from delta_ut.tools.coverage_analyzer import format_coverage_summary, read_coverage_report
from delta_ut.tools.git_analyzer import WORKTREE_REF, GitAnalyzer, GitFileSource
from delta_ut.utils import setup_logging

app = typer.Typer(
    name="delta-ut",
    help="基于代码变更的单元测试生成工具",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """版本回调."""
    if value:
        console.print(f"[bold blue]Delta-UT[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
) -> None:
    """Delta-UT: 为变更的函数生成单元测试."""
    pass


def apply_overrides(base: Settings, overrides: Dict[str, Any]) -> Settings:
    """将命令行参数覆盖到配置上, 并重新校验."""
    values = {key: value for key, value in overrides.items() if value is not None}
    if not values:
        return base
    return Settings.model_validate({**base.model_dump(), **values})


def _head_ref(head: str) -> Optional[str]:
    return None if head == WORKTREE_REF else head


async def run_generation(
    project: Path,
    run_settings: Settings,
    base_ref: str,
    head_ref: str,
    llm_provider: Optional[str],
) -> RunSummary:
    """读取 Git 差异并执行完整流程."""
    analyzer = GitAnalyzer(str(project))
    changed_files = analyzer.get_changed_files(base_ref, _head_ref(head_ref))
    context = build_run_context(
        run_settings,
        str(project),
        source=GitFileSource(analyzer),
        ref=head_ref,
        llm_provider=llm_provider,
    )
    return await TestGenerationPipeline(context).run(changed_files)


async def collect_targets(
    project: Path, run_settings: Settings, base_ref: str, head_ref: str
) -> List[TestTarget]:
    """只提取目标, 不生成测试."""
    analyzer = GitAnalyzer(str(project))
    changed_files = analyzer.get_changed_files(base_ref, _head_ref(head_ref))
    context = build_run_context(
        run_settings,
        str(project),
        source=GitFileSource(analyzer),
        ref=head_ref,
        with_generator=False,
    )
    return await TestGenerationPipeline(context).extract_targets(changed_files)


def _is_provider_key(config_key: Optional[str]) -> bool:
    """配置项是否与 LLM 提供商选择有关."""
    if not config_key:
        return False
    return config_key == "default_llm_provider" or config_key.endswith("_api_key")


@app.command(name="generate")
def generate_tests(
    project: Path = typer.Argument(
        ..., help="项目路径", exists=True, file_okay=False, dir_okay=True
    ),
    base_ref: str = typer.Option("HEAD~1", "--base", "-b", help="基准引用"),
    head_ref: str = typer.Option(
        "HEAD", "--head", help=f"目标引用 ({WORKTREE_REF} 表示工作区)"
    ),
    framework: Optional[str] = typer.Option(None, "--framework", "-f", help="测试框架 (jest/vitest)"),
    mode: Optional[str] = typer.Option(None, "--mode", "-m", help="生成模式 (generate/scaffold)"),
    llm_provider: Optional[str] = typer.Option(
        None, "--llm", "-l", help="LLM 提供商 (openai/deepseek/anthropic/ollama)"
    ),
    max_fix_attempts: Optional[int] = typer.Option(
        None, "--max-fix-attempts", help="最大修复次数 (-1 不限)"
    ),
    all_exports: bool = typer.Option(False, "--all-exports", help="为变更文件中的所有声明生成测试"),
    no_coverage: bool = typer.Option(False, "--no-coverage", help="不收集覆盖率"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="将运行汇总写入 JSON 文件"),
    debug: bool = typer.Option(False, "--debug", help="输出调试日志"),
) -> None:
    """为变更的函数生成单元测试."""
    setup_logging(logging.DEBUG if debug or settings.debug else logging.INFO)
    console.print(Panel.fit(
        "[bold blue]🧪 Delta-UT[/bold blue] - 基于变更的单元测试生成",
        border_style="blue"
    ))

    try:
        run_settings = apply_overrides(
            settings,
            {
                "framework": framework,
                "mode": mode,
                "max_fix_attempts": max_fix_attempts,
                "test_all_exports": True if all_exports else None,
                "enable_coverage": False if no_coverage else None,
            },
        )
    except ValueError as e:
        console.print(f"[red]配置错误: {e}[/red]")
        raise typer.Exit(1)

    config_table = Table(box=box.ROUNDED)
    config_table.add_column("配置项", style="cyan")
    config_table.add_column("值", style="green")
    config_table.add_row("项目路径", str(project))
    config_table.add_row("变更范围", f"{base_ref}...{head_ref}")
    config_table.add_row("测试框架", run_settings.framework)
    config_table.add_row("生成模式", run_settings.mode)
    config_table.add_row("LLM 提供商", llm_provider or run_settings.default_llm_provider)
    config_table.add_row("最大修复次数", str(run_settings.max_fix_attempts))
    config_table.add_row("覆盖率", "是" if run_settings.enable_coverage else "否")
    console.print(config_table)
    console.print()

    try:
        summary = asyncio.run(
            run_generation(project, run_settings, base_ref, head_ref, llm_provider)
        )
    except DeltaUTError as e:
        console.print(f"[red]错误: {e.message}[/red]")
        if isinstance(e, ConfigurationError) and _is_provider_key(e.details.get("config_key")):
            available = ", ".join(list_available_providers(run_settings))
            console.print(f"[yellow]可用的 LLM 提供商: {available}[/yellow]")
        raise typer.Exit(1)

    display_summary(summary)

    if output:
        output.write_text(
            json.dumps(summary.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8"
        )
        console.print(f"[dim]运行汇总已写入 {output}[/dim]")

    if summary.tests_failed > 0:
        raise typer.Exit(1)


@app.command(name="targets")
def list_targets(
    project: Path = typer.Argument(
        ..., help="项目路径", exists=True, file_okay=False, dir_okay=True
    ),
    base_ref: str = typer.Option("HEAD~1", "--base", "-b", help="基准引用"),
    head_ref: str = typer.Option(
        "HEAD", "--head", help=f"目标引用 ({WORKTREE_REF} 表示工作区)"
    ),
    all_exports: bool = typer.Option(False, "--all-exports", help="列出变更文件中的所有声明"),
) -> None:
    """列出变更中需要测试的目标."""
    run_settings = apply_overrides(settings, {"test_all_exports": True if all_exports else None})
    try:
        targets = asyncio.run(collect_targets(project, run_settings, base_ref, head_ref))
    except DeltaUTError as e:
        console.print(f"[red]错误: {e.message}[/red]")
        raise typer.Exit(1)

    if not targets:
        console.print("[yellow]没有需要生成测试的目标[/yellow]")
        return

    table = Table(box=box.ROUNDED, title=f"测试目标 ({len(targets)})")
    table.add_column("文件", style="cyan")
    table.add_column("声明", style="green")
    table.add_column("类型")
    table.add_column("行号", justify="right")
    table.add_column("已有测试文件", style="dim")
    for target in targets:
        name = f"{target.owner_class}.{target.decl_name}" if target.owner_class else target.decl_name
        table.add_row(
            target.file_path,
            name,
            target.decl_kind.value,
            f"{target.start_line}-{target.end_line}",
            target.existing_test_file_path or "-",
        )
    console.print(table)


@app.command(name="coverage")
def show_coverage(
    project: Path = typer.Argument(
        ..., help="项目路径", exists=True, file_okay=False, dir_okay=True
    ),
) -> None:
    """显示当前覆盖率报告."""
    report = read_coverage_report(str(project))
    if report is None:
        console.print("[yellow]未找到覆盖率报告 (coverage/coverage-final.json)[/yellow]")
        raise typer.Exit(1)
    console.print(Panel(format_coverage_summary(report), border_style="green"))


def display_summary(summary: RunSummary) -> None:
    """显示运行汇总."""
    console.print()
    console.print(Panel.fit(
        "[bold green]📈 执行结果[/bold green]",
        border_style="green"
    ))

    table = Table(box=box.ROUNDED)
    table.add_column("指标", style="cyan")
    table.add_column("值", style="green")
    table.add_row("处理目标数", str(summary.targets_processed))
    table.add_row("生成测试数", str(summary.tests_generated))
    table.add_row("失败用例数", str(summary.tests_failed))
    table.add_row("测试文件数", str(len(summary.test_files)))
    table.add_row("错误数", str(len(summary.errors)))
    console.print(table)

    if summary.test_files:
        console.print("\n[bold]测试文件:[/bold]")
        for path in summary.test_files:
            console.print(f"  • {path}")

    if summary.errors:
        console.print("\n[bold red]错误:[/bold red]")
        for error in summary.errors:
            console.print(f"  • {error.target}: {error.error}")

    if summary.coverage_report is not None:
        console.print()
        console.print(format_coverage_summary(summary.coverage_report, summary.coverage_delta))


if __name__ == "__main__":
    app()
