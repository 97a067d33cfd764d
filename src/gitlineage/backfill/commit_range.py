# -*- coding: utf-8 -*-
"""
commit_range - PushEvent 提交范围解析

给定 (before, head)，通过 git_commits_range.sh 分页列出 before..head 引入的提交，
返回旧→新顺序的 SHA 列表。

两种模式:
- 严格模式（默认）: before/head 必须为非零 40 位十六进制；before == head 为空推送；
  可选快进校验（merge-base --is-ancestor）。列表失败时拉取 PR refs 重试一次，
  仍失败则跳过事件，不回退到 head。
- 兼容模式: before 为空/全 0/格式错误时替换为全 0 哨兵，并用 payload size 限制数量；
  size 缺失或为可疑截断值时只取 head。持续失败时回退到 [head]。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from .errors import CommitRangeError, GitCommandError
from .git_runner import GitCommands
from .models import ZERO_SHA, PushEvent, is_valid_sha, is_zero_sha, normalize_sha

logger = logging.getLogger(__name__)


class RangeStatus(str, Enum):
    OK = "ok"
    NOOP = "noop"
    INVALID_HEAD = "invalid_head"
    INVALID_BEFORE = "invalid_before"
    NON_FAST_FORWARD = "non_fast_forward"
    LIST_FAILED = "list_failed"
    FALLBACK_HEAD = "fallback_head"
    EMPTY = "empty"


@dataclass
class RangeResult:
    """范围解析结果；skipped 为 True 时事件本轮不处理，留待下次"""

    status: RangeStatus
    shas: List[str] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.status not in (RangeStatus.OK, RangeStatus.FALLBACK_HEAD)


class CommitRangeResolver:
    """
    Args:
        git: GitCommands
        page_size: 分页大小
        strict: 严格模式
        reject_non_fast_forward: 严格模式下是否拒绝非快进推送
        fetch_pr_refs: 列表失败时是否尝试拉取 PR refs
        capped_sizes: 兼容模式下视为不可信的 payload size
    """

    def __init__(
        self,
        git: GitCommands,
        *,
        page_size: int = 1000,
        strict: bool = True,
        reject_non_fast_forward: bool = False,
        fetch_pr_refs: bool = True,
        capped_sizes: Iterable[int] = (20,),
    ) -> None:
        self.git = git
        self.page_size = page_size if page_size > 0 else 1000
        self.strict = strict
        self.reject_non_fast_forward = reject_non_fast_forward
        self.fetch_pr_refs = fetch_pr_refs
        self.capped_sizes = frozenset(capped_sizes)

    # ------------------------------------------------------------------
    # 分页列表
    # ------------------------------------------------------------------

    def list_range(
        self, repo_path: Path, before: str, head: str, max_needed: int = 0
    ) -> List[str]:
        """
        分页调用 git_commits_range.sh，返回旧→新顺序

        Args:
            max_needed: >0 时最多取最新的 max_needed 个提交

        Raises:
            GitCommandError: 任意一页执行失败
        """
        if is_zero_sha(head):
            return []
        before = before.strip() or ZERO_SHA
        limit = self.page_size

        collected: List[str] = []
        skip = 0
        while True:
            result = self.git.commit_range(repo_path, before, head, skip, limit)
            result.raise_for_status()

            chunk = [line.strip().lower() for line in result.stdout.splitlines() if line.strip()]
            if not chunk:
                break
            page_len = len(chunk)
            if max_needed > 0 and len(collected) + page_len > max_needed:
                chunk = chunk[: max_needed - len(collected)]
            collected.extend(chunk)

            if max_needed > 0 and len(collected) >= max_needed:
                break
            if page_len < limit:
                break
            skip += limit

        collected.reverse()
        return collected

    # ------------------------------------------------------------------
    # 事件级策略
    # ------------------------------------------------------------------

    def resolve(self, repo_path: Path, event: PushEvent) -> RangeResult:
        if self.strict:
            return self._resolve_strict(repo_path, event)
        return self._resolve_legacy(repo_path, event)

    def _resolve_strict(self, repo_path: Path, event: PushEvent) -> RangeResult:
        head = normalize_sha(event.head)
        before = normalize_sha(event.before)
        if not is_valid_sha(head):
            return RangeResult(RangeStatus.INVALID_HEAD, reason=f"invalid head {event.head!r}")
        if not is_valid_sha(before):
            return RangeResult(RangeStatus.INVALID_BEFORE, reason=f"invalid before {event.before!r}")
        if before == head:
            return RangeResult(RangeStatus.NOOP, reason="before == head")

        if self.reject_non_fast_forward:
            try:
                fast_forward = self._is_ancestor_with_recovery(repo_path, before, head)
            except CommitRangeError as exc:
                return RangeResult(RangeStatus.LIST_FAILED, reason=exc.message)
            if not fast_forward:
                return RangeResult(
                    RangeStatus.NON_FAST_FORWARD,
                    reason=f"{before} is not an ancestor of {head}",
                )

        try:
            shas = self._list_with_recovery(repo_path, before, head, 0)
        except CommitRangeError as exc:
            return RangeResult(RangeStatus.LIST_FAILED, reason=exc.message)
        if not shas:
            return RangeResult(RangeStatus.EMPTY, reason="range is empty")
        return RangeResult(RangeStatus.OK, shas=shas)

    def _resolve_legacy(self, repo_path: Path, event: PushEvent) -> RangeResult:
        head = normalize_sha(event.head)
        before = normalize_sha(event.before)
        if not is_valid_sha(head):
            return RangeResult(RangeStatus.INVALID_HEAD, reason=f"invalid head {event.head!r}")

        max_needed = 0
        if not is_valid_sha(before):
            before = ZERO_SHA
            max_needed = self.legacy_cap(event.size)
            if max_needed <= 0:
                return RangeResult(
                    RangeStatus.INVALID_BEFORE,
                    reason=f"non-positive payload size={event.size} with zero before SHA",
                )
        elif before == head:
            return RangeResult(RangeStatus.NOOP, reason="before == head")

        try:
            shas = self._list_with_recovery(repo_path, before, head, max_needed)
        except CommitRangeError as exc:
            logger.warning(
                f"提交范围列出失败，回退到 head: repo={repo_path}, event={event.event_id}, error={exc.message}"
            )
            return RangeResult(RangeStatus.FALLBACK_HEAD, shas=[head], reason=exc.message)
        if not shas:
            return RangeResult(RangeStatus.EMPTY, reason="range is empty")
        return RangeResult(RangeStatus.OK, shas=shas)

    def legacy_cap(self, size: Optional[int]) -> int:
        """before 不可用时要取的最新提交数；size 未知或为截断值时只取 head"""
        if size is None:
            return 1
        if size <= 0:
            return 0
        if size in self.capped_sizes:
            return 1
        return size

    def _list_with_recovery(
        self, repo_path: Path, before: str, head: str, max_needed: int
    ) -> List[str]:
        try:
            return self.list_range(repo_path, before, head, max_needed)
        except GitCommandError as first:
            if not self.fetch_pr_refs:
                raise CommitRangeError(first.message, first.details) from first
            logger.info(f"提交范围列出失败，尝试拉取 PR refs 后重试: repo={repo_path}, head={head}")
            try:
                self.git.fetch_pull_refs(repo_path).raise_for_status()
            except GitCommandError as exc:
                logger.warning(f"拉取 PR refs 失败: repo={repo_path}, error={exc.message}")
            try:
                return self.list_range(repo_path, before, head, max_needed)
            except GitCommandError as second:
                raise CommitRangeError(
                    f"range listing failed after PR refs fetch: {second.message}",
                    {"first_error": first.message, "before": before, "head": head},
                ) from second

    def _is_ancestor_with_recovery(self, repo_path: Path, before: str, head: str) -> bool:
        """
        快进校验；对象缺失时（merge-base 非 0/1 退出）拉取 PR refs 后重试一次

        Raises:
            CommitRangeError: 重试后仍无法判断
        """
        try:
            return self.git.is_ancestor(repo_path, before, head)
        except GitCommandError as first:
            if not self.fetch_pr_refs:
                raise CommitRangeError(f"merge-base failed: {first.message}", first.details) from first
            logger.info(f"快进校验失败，尝试拉取 PR refs 后重试: repo={repo_path}, head={head}")
            try:
                self.git.fetch_pull_refs(repo_path).raise_for_status()
            except GitCommandError as exc:
                logger.warning(f"拉取 PR refs 失败: repo={repo_path}, error={exc.message}")
            try:
                return self.git.is_ancestor(repo_path, before, head)
            except GitCommandError as second:
                raise CommitRangeError(
                    f"merge-base failed after PR refs fetch: {second.message}",
                    {"first_error": first.message, "before": before, "head": head},
                ) from second
