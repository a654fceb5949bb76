"""代码规范模块 - 检测项目的格式化/Lint 配置并作用于生成的测试代码."""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from delta_ut.utils import get_logger

logger = get_logger("code_formatter")

ESLINT_CONFIGS = (
    ".eslintrc.js",
    ".eslintrc.cjs",
    ".eslintrc.json",
    ".eslintrc.yaml",
    ".eslintrc.yml",
    "eslint.config.js",
    "eslint.config.mjs",
    "eslint.config.cjs",
)

PRETTIER_CONFIGS = (
    ".prettierrc",
    ".prettierrc.js",
    ".prettierrc.cjs",
    ".prettierrc.json",
    ".prettierrc.yaml",
    ".prettierrc.yml",
    "prettier.config.js",
    "prettier.config.cjs",
    "prettier.config.mjs",
)

BIOME_CONFIGS = ("biome.json", "biome.jsonc")


@dataclass
class CodeStyleConfig:
    """项目代码规范配置."""

    eslint: bool = False
    prettier: bool = False
    biome: bool = False
    typescript: bool = False


def _read_package_json(project_root: Path) -> dict:
    package_json = project_root / "package.json"
    if not package_json.exists():
        return {}
    try:
        data = json.loads(package_json.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def detect_code_style(project_root: str) -> CodeStyleConfig:
    """检测项目中的 ESLint/Prettier/Biome/TypeScript 配置.

    Args:
        project_root: 项目根目录

    Returns:
        CodeStyleConfig: 检测结果
    """
    root = Path(project_root)
    package_json = _read_package_json(root)

    return CodeStyleConfig(
        eslint=any((root / name).exists() for name in ESLINT_CONFIGS)
        or "eslintConfig" in package_json,
        prettier=any((root / name).exists() for name in PRETTIER_CONFIGS)
        or "prettier" in package_json,
        biome=any((root / name).exists() for name in BIOME_CONFIGS),
        typescript=(root / "tsconfig.json").exists(),
    )


class CodeFormatter:
    """通过 npx 调用项目本地的格式化与 Lint 工具."""

    def __init__(self, project_root: str, timeout: int = 60):
        self.project_root = project_root
        self.timeout = timeout
        self._style: Optional[CodeStyleConfig] = None

    @property
    def style(self) -> CodeStyleConfig:
        if self._style is None:
            self._style = detect_code_style(self.project_root)
        return self._style

    async def _pipe(self, cmd: List[str], code: str) -> str:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=self.project_root,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await asyncio.wait_for(
            process.communicate(code.encode("utf-8")), timeout=self.timeout
        )
        if process.returncode != 0 and not stdout.strip():
            raise RuntimeError(stderr.decode("utf-8", errors="replace").strip()[:300])
        return stdout.decode("utf-8", errors="replace")

    async def format(self, code: str, file_path: str) -> str:
        """格式化代码, Prettier 优先, Biome 次之; 失败时返回原代码."""
        if self.style.prettier:
            cmd = ["npx", "--no-install", "prettier", "--stdin-filepath", file_path]
            tool = "Prettier"
        elif self.style.biome:
            cmd = ["npx", "--no-install", "@biomejs/biome", "format", f"--stdin-file-path={file_path}"]
            tool = "Biome"
        else:
            return code

        try:
            formatted = await self._pipe(cmd, code)
        except (OSError, RuntimeError, asyncio.TimeoutError) as e:
            logger.warning(f"{tool} 格式化失败: {e}")
            return code
        return formatted if formatted.strip() else code

    async def lint(self, code: str, file_path: str) -> str:
        """自动修复 Lint 问题, ESLint 优先, Biome 次之; 失败时返回原代码."""
        if self.style.eslint:
            cmd = [
                "npx",
                "--no-install",
                "eslint",
                "--fix-dry-run",
                "--format",
                "json",
                "--stdin",
                "--stdin-filename",
                file_path,
            ]
            try:
                output = await self._pipe(cmd, code)
                results = json.loads(output)
            except (OSError, RuntimeError, ValueError, asyncio.TimeoutError) as e:
                logger.warning(f"ESLint 检查失败: {e}")
                return code
            if results and isinstance(results, list):
                return results[0].get("output") or code
            return code

        if self.style.biome:
            cmd = [
                "npx",
                "--no-install",
                "@biomejs/biome",
                "check",
                "--write",
                f"--stdin-file-path={file_path}",
            ]
            try:
                fixed = await self._pipe(cmd, code)
            except (OSError, RuntimeError, asyncio.TimeoutError) as e:
                logger.warning(f"Biome 检查失败: {e}")
                return code
            return fixed if fixed.strip() else code

        return code
