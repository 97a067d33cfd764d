# -*- coding: utf-8 -*-
"""
backfill - PushEvent 提交回填编排

处理顺序:
- 数据库按名称排序依次处理（不跨库并发）
- 每个数据库一个共享的身份缓存，仓库按名称排序后提交给有界线程池，
  全部完成后才进入下一个数据库
- 每个仓库 worker 使用自己的连接和事务，失败只记录在该仓库的结果中

单仓库流程:
    克隆检查 -> 选择待处理事件 -> 逐事件解析提交范围 -> 批量获取 git 元数据
    -> 单事务写入 gha_commits / gha_commits_roles -> 提交
"""

from __future__ import annotations

import csv
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from gitlineage.common.redaction import IdentityHider

from .commit_db import CommitStore, PgCommitStore
from .commit_range import CommitRangeResolver, RangeStatus
from .commit_writer import CommitWriter, event_sha_union
from .config import MODE_MISSING, BackfillSettings
from .db import get_connection, get_dsn
from .errors import ConfigError, GitCommandError, LineageError, RepoNotClonedError
from .git_metadata import CommitMetadataFetcher
from .git_runner import CommandRunner, GitCommands, SubprocessRunner
from .identity import ActorCache, ActorResolver
from .models import PushEvent

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_PARTIAL = "partial"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"

# 不视为“部分失败”的跳过原因
_BENIGN_SKIPS = frozenset({RangeStatus.NOOP.value})

StoreFactory = Callable[[], CommitStore]


@dataclass
class RepoBackfillResult:
    """单个仓库的回填结果"""

    db: str
    repo: str
    status: str = STATUS_SUCCESS
    events: int = 0
    events_resolved: int = 0
    events_skipped: int = 0
    skip_reasons: Dict[str, int] = field(default_factory=dict)
    shas: int = 0
    commits: int = 0
    roles: int = 0
    skipped_commits: int = 0
    payload_sizes_updated: int = 0
    metadata_invocations: int = 0
    error_type: Optional[str] = None
    error: Optional[str] = None

    def skip(self, status: RangeStatus) -> None:
        self.events_skipped += 1
        self.skip_reasons[status.value] = self.skip_reasons.get(status.value, 0) + 1

    @property
    def degraded(self) -> bool:
        if self.skipped_commits:
            return True
        return any(reason not in _BENIGN_SKIPS for reason in self.skip_reasons)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DatabaseBackfillResult:
    db: str
    repos: List[RepoBackfillResult] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for r in self.repos if r.status == status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "db": self.db,
            "commits": sum(r.commits for r in self.repos),
            "roles": sum(r.roles for r in self.repos),
            "repos": [r.to_dict() for r in self.repos],
        }


@dataclass
class BackfillSummary:
    """一次回填运行的汇总"""

    mode: int
    dry_run: bool = False
    databases: List[DatabaseBackfillResult] = field(default_factory=list)

    @property
    def repos(self) -> List[RepoBackfillResult]:
        return [r for db in self.databases for r in db.repos]

    @property
    def total_commits(self) -> int:
        return sum(r.commits for r in self.repos)

    @property
    def total_roles(self) -> int:
        return sum(r.roles for r in self.repos)

    @property
    def failed_repos(self) -> List[RepoBackfillResult]:
        return [r for r in self.repos if r.status == STATUS_FAILED]

    def to_dict(self) -> Dict[str, Any]:
        repos = self.repos
        return {
            "mode": self.mode,
            "dry_run": self.dry_run,
            "total_commits": self.total_commits,
            "total_roles": self.total_roles,
            "repos_total": len(repos),
            "repos_success": sum(1 for r in repos if r.status == STATUS_SUCCESS),
            "repos_partial": sum(1 for r in repos if r.status == STATUS_PARTIAL),
            "repos_failed": len(self.failed_repos),
            "repos_skipped": sum(1 for r in repos if r.status == STATUS_SKIPPED),
            "databases": [db.to_dict() for db in self.databases],
        }


class RepoBackfiller:
    """
    单仓库回填

    Args:
        settings: 回填配置
        git: GitCommands（可注入 Fake runner）
        resolver: 同库共享的身份解析器
        dry_run: 只解析范围与元数据，不开启写事务
    """

    def __init__(
        self,
        settings: BackfillSettings,
        git: GitCommands,
        resolver: ActorResolver,
        dry_run: bool = False,
    ) -> None:
        self.settings = settings
        self.git = git
        self.dry_run = dry_run
        self.ranges = CommitRangeResolver(
            git,
            page_size=settings.batch_size,
            strict=settings.strict,
            reject_non_fast_forward=settings.reject_non_fast_forward,
            fetch_pr_refs=settings.fetch_pr_refs,
            capped_sizes=settings.legacy_capped_sizes,
        )
        self.writer = CommitWriter(
            resolver,
            insert_author_role=settings.insert_author_role,
            insert_committer_role=settings.insert_committer_role,
            update_payload_size=settings.update_payload_size,
        )

    def lower_bound(self, store: CommitStore, repo_name: str) -> datetime:
        """mode=1 时以该仓库已记录的最新提交时间作为下界"""
        dt_from = self.settings.default_start_date
        if self.settings.mode != MODE_MISSING:
            return dt_from
        latest = store.latest_commit_created_at(repo_name)
        if latest is None:
            return dt_from
        if latest.tzinfo is None:
            latest = latest.replace(tzinfo=timezone.utc)
        return max(dt_from, latest)

    def check_clone(self, repo_name: str) -> Path:
        path = self.settings.repo_path(repo_name)
        if not path.is_dir():
            raise RepoNotClonedError(
                f"仓库未克隆: {path}",
                {"repo": repo_name, "path": str(path)},
            )
        return path

    def run(self, store: CommitStore, db_name: str, repo_name: str) -> RepoBackfillResult:
        """
        Raises:
            LineageError: 仓库级致命错误（克隆缺失、查询失败、事务回滚）
        """
        result = RepoBackfillResult(db=db_name, repo=repo_name)
        repo_path = self.check_clone(repo_name)

        dt_from = self.lower_bound(store, repo_name)
        events = store.select_push_events_needing_commits(repo_name, dt_from, self.settings.mode)
        result.events = len(events)
        if not events:
            logger.info(f"{repo_name}: 自 {dt_from} 起无需回填提交")
            return result
        logger.info(f"{repo_name}: 自 {dt_from} 起需要回填 {len(events)} 个事件")

        event_shas = self.resolve_ranges(repo_path, repo_name, events, result)
        shas = event_sha_union(event_shas)
        result.shas = len(shas)
        if not shas:
            logger.info(f"{repo_name}: 处理 {len(events)} 个事件后无提交需要回填")
            self._finish(result)
            return result

        fetcher = CommitMetadataFetcher(self.git)
        infos = fetcher.fetch_all(repo_path, shas, self.settings.batch_size)
        result.metadata_invocations = fetcher.invocations
        if not infos:
            raise GitCommandError(
                f"git_commits.sh 未返回任何提交元数据: repo={repo_name} (shas={len(shas)})",
                {"repo": repo_name, "shas": len(shas)},
            )

        if self.dry_run:
            result.skipped_commits = len(shas) - len(infos)
            result.status = STATUS_SKIPPED
            logger.info(f"{repo_name}: dry-run，可回填 {len(infos)}/{len(shas)} 个提交，未写入")
            return result

        stats = self.writer.write(store, repo_name, events, event_shas, infos)
        result.commits = stats.commits
        result.roles = stats.roles
        result.skipped_commits = stats.skipped_commits
        result.payload_sizes_updated = stats.payload_sizes_updated
        self._finish(result)
        logger.info(
            f"{repo_name}: 成功回填 {stats.commits} 个提交和 {stats.roles} 个提交角色 "
            f"({stats.events} 个事件)"
        )
        return result

    def resolve_ranges(
        self,
        repo_path: Path,
        repo_name: str,
        events: Iterable[PushEvent],
        result: RepoBackfillResult,
    ) -> Dict[int, List[str]]:
        event_shas: Dict[int, List[str]] = {}
        for event in events:
            resolved = self.ranges.resolve(repo_path, event)
            if resolved.skipped:
                result.skip(resolved.status)
                log = logger.debug if resolved.status == RangeStatus.NOOP else logger.warning
                log(
                    f"{repo_name}: 跳过 PushEvent {event.event_id} ({resolved.status.value}): "
                    f"{resolved.reason} (before {event.before}, head {event.head})"
                )
                continue
            if resolved.status == RangeStatus.FALLBACK_HEAD:
                result.skip_reasons[resolved.status.value] = (
                    result.skip_reasons.get(resolved.status.value, 0) + 1
                )
            result.events_resolved += 1
            event_shas[event.event_id] = resolved.shas
            logger.debug(f"{repo_name} PushEvent {event.event_id}: 找到 {len(resolved.shas)} 个提交")
        return event_shas

    @staticmethod
    def _finish(result: RepoBackfillResult) -> None:
        result.status = STATUS_PARTIAL if result.degraded else STATUS_SUCCESS


def backfill_database(
    settings: BackfillSettings,
    db_name: str,
    repos: Iterable[str],
    store_factory: StoreFactory,
    git: GitCommands,
    hider: Optional[IdentityHider] = None,
    dry_run: bool = False,
) -> DatabaseBackfillResult:
    """
    处理一个数据库下的所有仓库

    仓库按名称排序后提交给最多 settings.workers 个线程；每个 worker 通过
    store_factory 获取自己的连接。函数在所有仓库完成后返回。
    """
    repo_names = sorted(set(repos))
    db_result = DatabaseBackfillResult(db=db_name)
    if not repo_names:
        return db_result

    resolver = ActorResolver(ActorCache(), hider)
    backfiller = RepoBackfiller(settings, git, resolver, dry_run=dry_run)
    workers = max(1, min(settings.workers, len(repo_names)))
    logger.info(
        f"mode={settings.mode}: 处理数据库 '{db_name}' "
        f"({len(repo_names)} 个仓库, workers {workers}, batch {settings.batch_size})"
    )

    def backfill_one(repo_name: str) -> RepoBackfillResult:
        backfiller.check_clone(repo_name)
        store = store_factory()
        try:
            return backfiller.run(store, db_name, repo_name)
        finally:
            store.close()

    results: Dict[str, RepoBackfillResult] = {}
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"backfill-{db_name}") as executor:
        futures = {executor.submit(backfill_one, repo): repo for repo in repo_names}
        for future in as_completed(futures):
            repo_name = futures[future]
            try:
                results[repo_name] = future.result()
            except LineageError as e:
                logger.error(f"回填失败 (db={db_name}, repo={repo_name}): {e.message}")
                results[repo_name] = RepoBackfillResult(
                    db=db_name,
                    repo=repo_name,
                    status=STATUS_FAILED,
                    error_type=e.error_type,
                    error=e.message,
                )
            except Exception as e:
                logger.exception(f"回填异常 (db={db_name}, repo={repo_name}): {e}")
                results[repo_name] = RepoBackfillResult(
                    db=db_name,
                    repo=repo_name,
                    status=STATUS_FAILED,
                    error_type=type(e).__name__,
                    error=str(e),
                )

    db_result.repos = [results[repo] for repo in repo_names]
    logger.info(
        f"数据库 '{db_name}' 完成: 提交 {sum(r.commits for r in db_result.repos)}, "
        f"角色 {sum(r.roles for r in db_result.repos)}, 失败仓库 {db_result.count(STATUS_FAILED)}"
    )
    return db_result


def load_identity_hider(path: Optional[Path]) -> IdentityHider:
    """
    读取 hide 列表

    Raises:
        ConfigError: 文件无法读取或解码
    """
    try:
        return IdentityHider.from_file(path)
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        raise ConfigError(
            f"无法读取 hide 文件: {path}: {e}",
            {"section": "backfill", "key": "hide_file", "path": str(path)},
        ) from e


def _pg_store_factory(dsn: str) -> StoreFactory:
    def factory() -> CommitStore:
        return PgCommitStore(get_connection(dsn, autocommit=True))

    return factory


def backfill_push_event_commits(
    settings: BackfillSettings,
    *,
    db_filter: Optional[Iterable[str]] = None,
    repo_filter: Optional[Iterable[str]] = None,
    runner: Optional[CommandRunner] = None,
    store_factory_for: Optional[Callable[[str], StoreFactory]] = None,
    dry_run: bool = False,
) -> BackfillSummary:
    """
    回填所有配置数据库中 PushEvent 的提交

    Args:
        settings: 回填配置（[repos] 决定处理哪些数据库和仓库）
        db_filter: 只处理这些数据库
        repo_filter: 只处理这些仓库
        runner: 外部命令执行器（默认 SubprocessRunner）
        store_factory_for: db_name -> StoreFactory（默认按 DSN 打开 psycopg 连接）
        dry_run: 不写入

    Returns:
        BackfillSummary
    """
    summary = BackfillSummary(mode=settings.mode, dry_run=dry_run)
    if not settings.enabled:
        logger.info("回填模式为 0，跳过提交回填")
        return summary

    git = GitCommands(runner or SubprocessRunner(settings.command_timeout), settings.git_scripts_dir)
    hider = load_identity_hider(settings.hide_file)
    if len(hider):
        logger.info(f"已加载 {len(hider)} 个需要隐藏的身份")

    wanted_dbs = set(db_filter) if db_filter else None
    wanted_repos = set(repo_filter) if repo_filter else None

    for db_name in sorted(settings.repos):
        if wanted_dbs is not None and db_name not in wanted_dbs:
            continue
        repos = [r for r in settings.repos[db_name] if wanted_repos is None or r in wanted_repos]
        if not repos:
            continue

        if store_factory_for is not None:
            factory = store_factory_for(db_name)
        else:
            try:
                factory = _pg_store_factory(get_dsn(settings.databases, db_name))
            except LineageError as e:
                logger.error(f"数据库 '{db_name}' 无法处理: {e.message}")
                summary.databases.append(
                    DatabaseBackfillResult(
                        db=db_name,
                        repos=[
                            RepoBackfillResult(
                                db=db_name,
                                repo=repo,
                                status=STATUS_FAILED,
                                error_type=e.error_type,
                                error=e.message,
                            )
                            for repo in sorted(set(repos))
                        ],
                    )
                )
                continue

        summary.databases.append(
            backfill_database(settings, db_name, repos, factory, git, hider=hider, dry_run=dry_run)
        )

    logger.info(
        f"回填完成: 提交 {summary.total_commits}, 角色 {summary.total_roles}, "
        f"失败仓库 {len(summary.failed_repos)}"
    )
    return summary
