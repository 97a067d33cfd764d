"""
gitlineage.backfill - PushEvent 提交回填引擎

约定:
- CLI 输出为结构化 JSON（stdout），日志输出到 stderr
- 错误时返回非 0 exit code
- 支持 --config 参数和 GITLINEAGE_CONFIG 环境变量配置

模块:
- config: 配置管理
- db: 数据库连接
- commit_db: 事件选择、身份查找与幂等写入 SQL
- git_runner: 外部 git 命令调用
- git_metadata: 批量提交元数据获取（二分隔离失败）
- commit_range: 提交范围解析（严格/兼容模式）
- identity: 身份解析与共享缓存
- trailers: 提交消息 trailer 解析
- commit_writer: 仓库级事务写入
- backfill: 数据库/仓库编排
- cli: gitlineage-backfill 入口
"""

__version__ = "0.1.0"

from .backfill import (
    BackfillSummary,
    DatabaseBackfillResult,
    RepoBackfiller,
    RepoBackfillResult,
    backfill_database,
    backfill_push_event_commits,
)
from .commit_range import CommitRangeResolver, RangeResult, RangeStatus
from .commit_writer import CommitWriter, WriteStats
from .config import BackfillSettings, Config, get_backfill_settings
from .errors import (
    CommitRangeError,
    ConfigError,
    DatabaseError,
    GitCommandError,
    LineageError,
    RepoNotClonedError,
    TransactionError,
)
from .git_metadata import CommitMetadataFetcher, parse_git_commits_output
from .git_runner import CommandResult, GitCommands, SubprocessRunner
from .identity import ActorCache, ActorResolver
from .models import CommitInfo, CommitRecord, CommitRole, PushEvent, Trailer
from .trailers import parse_trailers

__all__ = [
    "ActorCache",
    "ActorResolver",
    "BackfillSettings",
    "BackfillSummary",
    "CommandResult",
    "CommitInfo",
    "CommitMetadataFetcher",
    "CommitRangeError",
    "CommitRangeResolver",
    "CommitRecord",
    "CommitRole",
    "CommitWriter",
    "Config",
    "ConfigError",
    "DatabaseBackfillResult",
    "DatabaseError",
    "GitCommandError",
    "GitCommands",
    "LineageError",
    "PushEvent",
    "RangeResult",
    "RangeStatus",
    "RepoBackfiller",
    "RepoBackfillResult",
    "RepoNotClonedError",
    "SubprocessRunner",
    "Trailer",
    "TransactionError",
    "WriteStats",
    "backfill_database",
    "backfill_push_event_commits",
    "get_backfill_settings",
    "parse_git_commits_output",
    "parse_trailers",
]
