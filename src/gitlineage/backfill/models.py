# -*- coding: utf-8 -*-
"""
gitlineage.backfill.models - 回填引擎数据模型

- PushEvent: 从事件库读取的 PushEvent 行（只读输入）
- CommitInfo: 本地 git 中解码得到的提交元数据
- CommitRecord: 待写入 gha_commits 的重建行
- CommitRole: 待写入 gha_commits_roles 的角色行
- Trailer: 提交消息 trailer 解析结果
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

ZERO_SHA = "0" * 40

_SHA_RE = re.compile(r"^[0-9a-fA-F]{40}$")


def is_zero_sha(sha: Optional[str]) -> bool:
    """空字符串或全 0 的 SHA 视为“无引用”"""
    if sha is None:
        return True
    sha = sha.strip()
    if not sha:
        return True
    return all(c == "0" for c in sha)


def is_valid_sha(sha: Optional[str]) -> bool:
    """40 位十六进制且非全 0"""
    if sha is None:
        return False
    sha = sha.strip()
    return bool(_SHA_RE.match(sha)) and not is_zero_sha(sha)


def normalize_sha(sha: Optional[str]) -> str:
    return (sha or "").strip().lower()


@dataclass(frozen=True)
class PushEvent:
    """gha_events + gha_payloads 中的一条 PushEvent"""

    event_id: int
    actor_id: int
    actor_login: str
    repo_id: int
    repo_name: str
    created_at: datetime
    head: str = ""
    before: str = ""
    ref: Optional[str] = None
    size: Optional[int] = None
    recorded_commits: int = 0


@dataclass(frozen=True)
class CommitInfo:
    """git_commits.sh 解码后的单个提交"""

    sha: str
    author_name: str = ""
    author_email: str = ""
    committer_name: str = ""
    committer_email: str = ""
    message: str = ""


@dataclass(frozen=True)
class Trailer:
    role: str
    name: str
    email: str


@dataclass
class CommitRecord:
    """gha_commits 行（已脱敏、已截断）"""

    sha: str
    event_id: int
    author_name: str
    author_email: str
    message: str
    dup_actor_id: int
    dup_actor_login: str
    dup_repo_id: int
    dup_repo_name: str
    dup_type: str
    dup_created_at: datetime
    author_id: Optional[int]
    committer_id: Optional[int]
    dup_author_login: str
    dup_committer_login: str
    committer_name: str
    committer_email: str


@dataclass
class CommitRole:
    """gha_commits_roles 行，actor_id 缺失时写 0"""

    sha: str
    event_id: int
    role: str
    actor_id: int
    actor_login: str
    actor_name: str
    actor_email: str
    dup_repo_id: int
    dup_repo_name: str
    dup_created_at: datetime
