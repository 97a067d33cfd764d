# -*- coding: utf-8 -*-
"""
git_runner - 外部命令调用层

解析器与元数据获取器只依赖 CommandRunner 协议（参数进、原始输出与状态出），
测试中可注入 Fake runner 代替真实 git 进程。

外部命令（黑盒）:
- git_commits.sh <repo> <sha>...: 批量输出 sha,b64(an),b64(ae),b64(cn),b64(ce),b64(msg); 记录
- git_commits_range.sh <repo> <before> <head> <skip> <limit>: 每行一个 SHA，新→旧
- git fetch origin '+refs/pull/*/head:refs/remotes/origin/pr/*': 仅用于恢复
- git merge-base --is-ancestor <before> <head>: 快进校验
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from .errors import GitCommandError, GitTimeoutError

logger = logging.getLogger(__name__)

GIT_COMMITS_SCRIPT = "git_commits.sh"
GIT_COMMITS_RANGE_SCRIPT = "git_commits_range.sh"
PR_REFSPEC = "+refs/pull/*/head:refs/remotes/origin/pr/*"


@dataclass
class CommandResult:
    """命令执行结果"""

    args: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def raise_for_status(self) -> "CommandResult":
        if not self.success:
            raise GitCommandError(
                f"命令执行失败 (exit={self.returncode}): {_format_cmd(self.args)}",
                {
                    "returncode": self.returncode,
                    "stderr": (self.stderr or "").strip()[-2000:],
                },
            )
        return self


class CommandRunner(Protocol):
    """命令执行器协议"""

    def run(self, args: Sequence[str]) -> CommandResult:
        ...


def _format_cmd(args: Sequence[str], max_args: int = 8) -> str:
    shown = list(args[:max_args])
    if len(args) > max_args:
        shown.append(f"... (+{len(args) - max_args} args)")
    return " ".join(shown)


class SubprocessRunner:
    """subprocess.run 实现；超时抛出 GitTimeoutError"""

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.timeout = timeout

    def run(self, args: Sequence[str]) -> CommandResult:
        cmd = list(args)
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitTimeoutError(
                f"命令超时 ({self.timeout}s): {_format_cmd(cmd)}",
                {"timeout": self.timeout},
            ) from exc
        except OSError as exc:
            raise GitCommandError(
                f"命令无法执行: {_format_cmd(cmd)}: {exc}",
                {"error": str(exc)},
            ) from exc
        return CommandResult(
            args=cmd, returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr
        )


class GitCommands:
    """
    构造外部命令参数并执行

    Args:
        runner: CommandRunner 实现
        scripts_dir: git_commits.sh / git_commits_range.sh 所在目录
    """

    def __init__(self, runner: CommandRunner, scripts_dir: Path) -> None:
        self.runner = runner
        self.scripts_dir = Path(scripts_dir)

    def _script(self, name: str) -> List[str]:
        return ["bash", str(self.scripts_dir / name)]

    def commit_metadata(self, repo_path: Path, shas: Sequence[str]) -> CommandResult:
        return self.runner.run(self._script(GIT_COMMITS_SCRIPT) + [str(repo_path), *shas])

    def commit_range(
        self, repo_path: Path, before: str, head: str, skip: int, limit: int
    ) -> CommandResult:
        return self.runner.run(
            self._script(GIT_COMMITS_RANGE_SCRIPT)
            + [str(repo_path), before, head, str(skip), str(limit)]
        )

    def fetch_pull_refs(self, repo_path: Path) -> CommandResult:
        return self.runner.run(["git", "-C", str(repo_path), "fetch", "-q", "origin", PR_REFSPEC])

    def is_ancestor(self, repo_path: Path, before: str, head: str) -> bool:
        """
        before 是否为 head 的祖先

        Raises:
            GitCommandError: merge-base 无法判断（对象缺失等）
        """
        result = self.runner.run(
            ["git", "-C", str(repo_path), "merge-base", "--is-ancestor", before, head]
        )
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        result.raise_for_status()
        return False
