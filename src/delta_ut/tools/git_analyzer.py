"""Git 差异分析与文件来源模块."""

import asyncio
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, Tuple

from delta_ut.exceptions import GitError
from delta_ut.models.common import ChangedFile, FileStatus
from delta_ut.tools.diff_parser import filter_source_files
from delta_ut.utils import get_logger

logger = get_logger("git_analyzer")

WORKTREE_REF = "WORKTREE"

_STATUS_MAP = {
    "A": FileStatus.ADDED,
    "M": FileStatus.MODIFIED,
    "D": FileStatus.REMOVED,
    "R": FileStatus.RENAMED,
    "C": FileStatus.ADDED,
    "T": FileStatus.MODIFIED,
}


class FileSource(Protocol):
    """文件来源 (版本库或本地文件系统)."""

    async def file_exists(self, ref: str, path: str) -> bool: ...

    async def read_file(self, ref: str, path: str) -> str: ...


class GitAnalyzer:
    """Git 差异分析器."""

    def __init__(self, project_path: str):
        """初始化 Git 分析器.

        Args:
            project_path: 项目路径
        """
        self.project_path = Path(project_path)
        self._check_git_repo()

    def _check_git_repo(self) -> None:
        """检查是否为 Git 仓库."""
        if not (self.project_path / ".git").exists():
            raise GitError(
                f"{self.project_path} 不是 Git 仓库",
                operation="init",
                repo_path=str(self.project_path),
            )

    def _run_git_command(self, args: List[str]) -> str:
        """执行 Git 命令.

        Args:
            args: Git 命令参数

        Returns:
            命令输出
        """
        try:
            result = subprocess.run(
                ["git"] + args,
                cwd=self.project_path,
                capture_output=True,
                text=True,
                encoding="utf-8",
            )
        except FileNotFoundError:
            raise GitError("未找到 Git 命令，请确保 Git 已安装", operation=args[0])
        if result.returncode != 0:
            raise GitError(
                f"Git 命令失败: {result.stderr.strip()}",
                operation=args[0],
                repo_path=str(self.project_path),
            )
        return result.stdout

    def _diff_refs(self, base_ref: str, head_ref: Optional[str]) -> List[str]:
        if head_ref is None or head_ref == WORKTREE_REF:
            return [base_ref]
        return [f"{base_ref}...{head_ref}"]

    def get_changed_files(
        self,
        base_ref: str = "HEAD~1",
        head_ref: Optional[str] = "HEAD",
    ) -> List[ChangedFile]:
        """获取变更的源文件及其 diff.

        Args:
            base_ref: 基准引用
            head_ref: 目标引用, None 表示工作区

        Returns:
            List[ChangedFile]: 仅包含 TS/JS 源文件
        """
        refs = self._diff_refs(base_ref, head_ref)
        output = self._run_git_command(["diff", "--name-status", "-M"] + refs)

        changes: List[ChangedFile] = []
        for line in output.strip().split("\n"):
            if not line.strip():
                continue
            parts = line.split("\t")
            status = _STATUS_MAP.get(parts[0][:1])
            if status is None or len(parts) < 2:
                logger.debug(f"忽略无法识别的变更行: {line}")
                continue
            path = parts[-1]
            changes.append(ChangedFile(path=path, status=status))

        changes = filter_source_files(changes)
        for change in changes:
            if change.status in (FileStatus.MODIFIED, FileStatus.RENAMED):
                change.patch = self._run_git_command(["diff"] + refs + ["--", change.path])
                change.additions, change.deletions = _count_patch_lines(change.patch)

        return changes

    def get_file_at_ref(self, file_path: str, ref: str = "HEAD") -> Optional[str]:
        """获取指定引用处的文件内容."""
        try:
            return self._run_git_command(["show", f"{ref}:{file_path}"])
        except GitError:
            return None

    def file_exists_at_ref(self, file_path: str, ref: str = "HEAD") -> bool:
        try:
            self._run_git_command(["cat-file", "-e", f"{ref}:{file_path}"])
            return True
        except GitError:
            return False


def _count_patch_lines(patch: str) -> Tuple[int, int]:
    additions = sum(
        1 for line in patch.split("\n") if line.startswith("+") and not line.startswith("+++")
    )
    deletions = sum(
        1 for line in patch.split("\n") if line.startswith("-") and not line.startswith("---")
    )
    return additions, deletions


class GitFileSource:
    """基于 Git 引用的文件来源, 工作区引用直接读磁盘."""

    def __init__(self, analyzer: GitAnalyzer):
        self.analyzer = analyzer

    async def file_exists(self, ref: str, path: str) -> bool:
        if ref == WORKTREE_REF:
            return (self.analyzer.project_path / path).is_file()
        return await asyncio.to_thread(self.analyzer.file_exists_at_ref, path, ref)

    async def read_file(self, ref: str, path: str) -> str:
        if ref == WORKTREE_REF:
            return (self.analyzer.project_path / path).read_text(encoding="utf-8")
        content = await asyncio.to_thread(self.analyzer.get_file_at_ref, path, ref)
        if content is None:
            raise GitError(f"{ref}:{path} 不存在", operation="show")
        return content


class LocalFileSource:
    """本地文件系统来源, 忽略引用."""

    def __init__(self, project_root: str):
        self.project_root = Path(project_root)

    async def file_exists(self, ref: str, path: str) -> bool:
        return (self.project_root / path).is_file()

    async def read_file(self, ref: str, path: str) -> str:
        return (self.project_root / path).read_text(encoding="utf-8")
