# -*- coding: utf-8 -*-
"""
git_metadata - 批量获取提交元数据

git_commits.sh 输出格式:
    记录分隔符 ';'，字段分隔符 ','
    sha,b64(author_name),b64(author_email),b64(committer_name),b64(committer_email),b64(message)

失败隔离:
    整批失败时二分重试，合并成功的部分结果；单个 SHA 仍失败时返回其错误，
    因此一个损坏或缺失的对象不会丢弃同批其他提交的元数据。
"""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from .errors import GitCommandError, LineageError, MetadataParseError
from .git_runner import GitCommands
from .models import CommitInfo

logger = logging.getLogger(__name__)

_FIELD_NAMES = ("author_name", "author_email", "committer_name", "committer_email", "message")


def _decode_field(value: str, sha: str, name: str) -> str:
    try:
        raw = base64.b64decode(value.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MetadataParseError(
            f"base64 decode {name} for {sha}: {exc}",
            {"sha": sha, "field": name},
        ) from exc
    # PostgreSQL text 列不能包含 NUL
    return raw.decode("utf-8", errors="replace").replace("\x00", "")


def parse_git_commits_output(out: str, into: Optional[Dict[str, CommitInfo]] = None) -> Dict[str, CommitInfo]:
    """
    解析 git_commits.sh 输出

    Args:
        out: 命令标准输出
        into: 可选，解析结果写入的字典（出错前已解析的记录会保留）

    Returns:
        {sha: CommitInfo}

    Raises:
        MetadataParseError: 记录字段数不为 6、SHA 为空或 base64 无法解码
    """
    result: Dict[str, CommitInfo] = {} if into is None else into
    text = (out or "").strip()
    if not text:
        return result
    for rec in text.split(";"):
        rec = rec.strip()
        if not rec:
            continue
        parts = rec.split(",")
        if len(parts) != 6:
            raise MetadataParseError(
                f"invalid git_commits.sh record (expected 6 fields): {rec[:120]!r}",
                {"fields": len(parts)},
            )
        sha = parts[0].strip().lower()
        if not sha:
            raise MetadataParseError(f"empty sha in git_commits.sh record: {rec[:120]!r}")
        values = {
            name: _decode_field(value, sha, name) for name, value in zip(_FIELD_NAMES, parts[1:])
        }
        result[sha] = CommitInfo(sha=sha, **values)
    return result


class CommitMetadataFetcher:
    """按批次调用 git_commits.sh，失败时二分隔离"""

    def __init__(self, git: GitCommands) -> None:
        self.git = git
        self.invocations = 0

    def fetch(
        self, repo_path: Path, shas: Sequence[str]
    ) -> Tuple[Dict[str, CommitInfo], Optional[LineageError]]:
        """
        获取一批 SHA 的元数据

        Returns:
            (部分或全部结果, 错误或 None)；结果中只包含成功解码的 SHA
        """
        out: Dict[str, CommitInfo] = {}
        if not shas:
            return out, None

        self.invocations += 1
        try:
            result = self.git.commit_metadata(repo_path, shas)
            result.raise_for_status()
        except GitCommandError as exc:
            logger.debug(f"git_commits.sh 失败: repo={repo_path}, batch={len(shas)}, error={exc.message}")
            return self._bisect(repo_path, shas, exc)

        try:
            parse_git_commits_output(result.stdout, out)
        except MetadataParseError as exc:
            logger.warning(
                f"git_commits.sh 输出解析失败: repo={repo_path}, batch={len(shas)}, "
                f"parsed={len(out)}, error={exc.message}"
            )
            return out, exc
        return out, None

    def _bisect(
        self, repo_path: Path, shas: Sequence[str], error: LineageError
    ) -> Tuple[Dict[str, CommitInfo], Optional[LineageError]]:
        if len(shas) == 1:
            return {}, error
        mid = len(shas) // 2
        left, err_left = self.fetch(repo_path, shas[:mid])
        right, err_right = self.fetch(repo_path, shas[mid:])
        left.update(right)
        if err_left is not None and err_right is not None:
            return left, GitCommandError(
                f"git_commits.sh error for both halves: ({err_left.message}) and ({err_right.message})",
                {"failed": err_left.details.get("failed", 1) + err_right.details.get("failed", 1)},
            )
        return left, err_left or err_right

    def fetch_all(
        self, repo_path: Path, shas: Sequence[str], page_size: int
    ) -> Dict[str, CommitInfo]:
        """按 page_size 切片获取全部 SHA，批次错误只记录警告"""
        infos: Dict[str, CommitInfo] = {}
        total = len(shas)
        for i in range(0, total, page_size):
            j = min(i + page_size, total)
            batch, err = self.fetch(repo_path, shas[i:j])
            infos.update(batch)
            if err is not None:
                logger.warning(f"git_commits.sh 错误: repo={repo_path}, batch {i}-{j}/{total}: {err.message}")
        return infos
