# -*- coding: utf-8 -*-
"""
commit_writer - 仓库级事务写入

一个仓库的全部插入在同一事务中完成:
- gha_commits（ON CONFLICT DO NOTHING，重跑不产生重复）
- gha_commits_roles（Author/Committer 角色可配置，trailer 角色总是写入）
- gha_payloads.size（可选，仅在原值为 NULL 或 <= 1 时刷新）

任一写入失败时抛出 TransactionError，事务整体回滚，不留下部分结果。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from gitlineage.common.redaction import IdentityHider, truncate_bytes

from .commit_db import CommitStore
from .errors import LineageError, TransactionError
from .identity import ActorResolver
from .models import CommitInfo, CommitRecord, CommitRole, PushEvent, is_valid_sha, normalize_sha
from .trailers import parse_trailers

logger = logging.getLogger(__name__)

# 列宽上限（字节）
AUTHOR_NAME_BYTES = 120
AUTHOR_EMAIL_BYTES = 160
MESSAGE_BYTES = 0xFFFF
LOGIN_BYTES = 120
ROLE_BYTES = 60
ROLE_ACTOR_BYTES = 160

PUSH_EVENT_TYPE = "PushEvent"
AUTHOR_ROLE = "Author"
COMMITTER_ROLE = "Committer"


@dataclass
class WriteStats:
    """单个仓库的写入统计"""

    events: int = 0
    commits: int = 0
    roles: int = 0
    skipped_commits: int = 0
    payload_sizes_updated: int = 0


class CommitWriter:
    """
    将解析好的提交写入存储

    Args:
        resolver: 身份解析器（与同库其他仓库共享缓存）
        insert_author_role: 是否写入 Author 角色
        insert_committer_role: 是否写入 Committer 角色
        update_payload_size: 是否刷新 gha_payloads.size
        allowed_trailers: 可选 trailer 白名单（默认使用内置列表）
    """

    def __init__(
        self,
        resolver: ActorResolver,
        *,
        insert_author_role: bool = False,
        insert_committer_role: bool = False,
        update_payload_size: bool = True,
        allowed_trailers: Optional[Mapping[str, Tuple[str, ...]]] = None,
    ) -> None:
        self.resolver = resolver
        self.insert_author_role = insert_author_role
        self.insert_committer_role = insert_committer_role
        self.update_payload_size = update_payload_size
        self.allowed_trailers = allowed_trailers

    @property
    def hider(self) -> IdentityHider:
        return self.resolver.hider

    def write(
        self,
        store: CommitStore,
        repo_name: str,
        events: Sequence[PushEvent],
        event_shas: Mapping[int, List[str]],
        infos: Mapping[str, CommitInfo],
    ) -> WriteStats:
        """
        在单个事务中写入一个仓库的全部提交和角色

        Raises:
            TransactionError: 任一写入失败（事务已回滚）
        """
        stats = WriteStats()
        try:
            with store.transaction():
                for event in events:
                    shas = event_shas.get(event.event_id)
                    if not shas:
                        continue
                    stats.events += 1
                    self._write_event(store, repo_name, event, shas, infos, stats)
        except TransactionError:
            raise
        except Exception as exc:
            message = exc.message if isinstance(exc, LineageError) else str(exc)
            raise TransactionError(
                f"仓库写入失败，事务已回滚: repo={repo_name}: {message}",
                {"repo": repo_name, "error_type": type(exc).__name__},
            ) from exc
        return stats

    def _write_event(
        self,
        store: CommitStore,
        repo_name: str,
        event: PushEvent,
        shas: List[str],
        infos: Mapping[str, CommitInfo],
        stats: WriteStats,
    ) -> None:
        if self.update_payload_size:
            if store.update_payload_size(event.event_id, len(shas)):
                stats.payload_sizes_updated += 1
        if event.size is not None and event.size != len(shas):
            logger.info(
                f"{repo_name} PushEvent {event.event_id}: payload size={event.size}, "
                f"重建提交数={len(shas)} (before {event.before}, head {event.head})"
            )

        for raw_sha in shas:
            sha = normalize_sha(raw_sha)
            if not is_valid_sha(sha):
                logger.debug(f"跳过空/全 0 SHA: {repo_name} PushEvent {event.event_id}")
                stats.skipped_commits += 1
                continue
            info = infos.get(sha)
            if info is None:
                logger.warning(f"缺少 git 元数据，跳过提交: {repo_name} sha={sha} (event {event.event_id})")
                stats.skipped_commits += 1
                continue
            self._write_commit(store, event, sha, info, stats)

    def _write_commit(
        self,
        store: CommitStore,
        event: PushEvent,
        sha: str,
        info: CommitInfo,
        stats: WriteStats,
    ) -> None:
        hide = self.hider
        author_id, author_login = self.resolver.resolve(store, info.author_name, info.author_email)
        committer_id, committer_login = self.resolver.resolve(store, info.committer_name, info.committer_email)

        record = CommitRecord(
            sha=sha,
            event_id=event.event_id,
            author_name=truncate_bytes(hide(info.author_name), AUTHOR_NAME_BYTES),
            author_email=truncate_bytes(hide(info.author_email), AUTHOR_EMAIL_BYTES),
            message=truncate_bytes(info.message, MESSAGE_BYTES),
            dup_actor_id=event.actor_id,
            dup_actor_login=truncate_bytes(hide(event.actor_login), LOGIN_BYTES),
            dup_repo_id=event.repo_id,
            dup_repo_name=event.repo_name,
            dup_type=PUSH_EVENT_TYPE,
            dup_created_at=event.created_at,
            author_id=author_id or None,
            committer_id=committer_id or None,
            dup_author_login=truncate_bytes(hide(author_login), LOGIN_BYTES),
            dup_committer_login=truncate_bytes(hide(committer_login), LOGIN_BYTES),
            committer_name=truncate_bytes(hide(info.committer_name), ROLE_ACTOR_BYTES),
            committer_email=truncate_bytes(hide(info.committer_email), ROLE_ACTOR_BYTES),
        )
        if store.insert_commit(record):
            stats.commits += 1

        roles: List[Tuple[str, int, str, str, str]] = []
        if self.insert_author_role:
            roles.append((AUTHOR_ROLE, author_id, author_login, info.author_name, info.author_email))
        if self.insert_committer_role:
            roles.append((COMMITTER_ROLE, committer_id, committer_login, info.committer_name, info.committer_email))
        for trailer in parse_trailers(info.message, self.allowed_trailers):
            actor_id, login = self.resolver.resolve(store, trailer.name, trailer.email)
            roles.append((trailer.role, actor_id, login, trailer.name, trailer.email))

        for role_name, actor_id, login, name, email in roles:
            role = self._build_role(event, sha, role_name, actor_id, login, name, email)
            if store.insert_commit_role(role):
                stats.roles += 1

    def _build_role(
        self,
        event: PushEvent,
        sha: str,
        role: str,
        actor_id: int,
        login: str,
        name: str,
        email: str,
    ) -> CommitRole:
        hide = self.hider
        return CommitRole(
            sha=sha,
            event_id=event.event_id,
            role=truncate_bytes(role, ROLE_BYTES),
            actor_id=max(actor_id or 0, 0),
            actor_login=truncate_bytes(hide(login), LOGIN_BYTES),
            actor_name=truncate_bytes(hide(name), ROLE_ACTOR_BYTES),
            actor_email=truncate_bytes(hide(email), ROLE_ACTOR_BYTES),
            dup_repo_id=event.repo_id,
            dup_repo_name=event.repo_name,
            dup_created_at=event.created_at,
        )


def event_sha_union(event_shas: Mapping[int, List[str]]) -> List[str]:
    """所有事件 SHA 的并集（去除空/全 0，排序）"""
    union: Dict[str, None] = {}
    for shas in event_shas.values():
        for sha in shas:
            sha = normalize_sha(sha)
            if is_valid_sha(sha):
                union[sha] = None
    return sorted(union)
