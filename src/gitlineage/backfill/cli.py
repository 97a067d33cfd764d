"""
gitlineage.backfill.cli - gitlineage-backfill 命令行入口

用法:
    gitlineage-backfill --config config.toml
    gitlineage-backfill --db gha --repo cncf/devstats --mode 2 --dry-run --pretty

输出:
    stdout: 回填汇总 JSON {ok, mode, total_commits, total_roles, databases: [...]}
    stderr: 日志

退出码:
    0  - 全部仓库成功（或部分成功）
    10 - 至少一个仓库失败
    其他 - 见 errors.ExitCode
"""

import argparse
import logging
import sys
from dataclasses import replace
from typing import List, Optional

from .backfill import backfill_push_event_commits
from .config import (
    Config,
    LoggingConfig,
    add_config_argument,
    get_backfill_settings,
    get_logging_config,
)
from .errors import ExitCode, LineageError, make_success_result
from .io import add_output_arguments, exit_with_error, get_output_options, output_json

logger = logging.getLogger(__name__)


def setup_logging(cfg: LoggingConfig, quiet: bool = False) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if cfg.file:
        handlers.append(logging.FileHandler(cfg.file, encoding="utf-8"))
    level = logging.WARNING if quiet else getattr(logging, cfg.level, logging.INFO)
    logging.basicConfig(level=level, format=cfg.format, handlers=handlers, force=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitlineage-backfill",
        description="从本地 git 克隆回填 PushEvent 缺失的提交 (gha_commits / gha_commits_roles)",
    )
    add_config_argument(parser)
    parser.add_argument(
        "--db",
        action="append",
        metavar="NAME",
        help="只处理指定数据库（可重复）",
    )
    parser.add_argument(
        "--repo",
        action="append",
        metavar="ORG/REPO",
        help="只处理指定仓库（可重复）",
    )
    parser.add_argument(
        "--mode",
        type=int,
        help="回填模式: 0=关闭, 1=仅缺失, >=2=缺失或计数不足",
    )
    parser.add_argument(
        "--legacy",
        action="store_true",
        help="使用兼容模式解析提交范围（before 为空/全 0 时按 payload size 估算）",
    )
    parser.add_argument("--workers", type=int, help="单库内仓库并发上限")
    parser.add_argument("--batch-size", type=int, dest="batch_size", help="git 元数据批量大小与范围分页大小")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="只解析提交范围与元数据，不写入数据库",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    add_output_arguments(parser)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    opts = get_output_options(args)

    try:
        config = Config(args.config_path).load()
        log_cfg = get_logging_config(config)
        if args.verbose:
            log_cfg.level = "DEBUG"
        setup_logging(log_cfg, quiet=opts["quiet"])

        settings = get_backfill_settings(config)
        overrides = {}
        if args.mode is not None:
            overrides["mode"] = args.mode
        if args.legacy:
            overrides["strict"] = False
        if args.workers is not None:
            overrides["workers"] = args.workers
        if args.batch_size is not None:
            overrides["batch_size"] = args.batch_size
        if overrides:
            settings = replace(settings, **overrides)

        summary = backfill_push_event_commits(
            settings,
            db_filter=args.db,
            repo_filter=args.repo,
            dry_run=args.dry_run,
        )
    except LineageError as e:
        exit_with_error(e, **opts)
    except KeyboardInterrupt:
        exit_with_error(LineageError("操作被用户中断", {"signal": "SIGINT"}), **opts)

    output_json(make_success_result(**summary.to_dict()), **opts)
    if summary.failed_repos:
        return ExitCode.PARTIAL_FAILURE
    return ExitCode.SUCCESS


if __name__ == "__main__":
    sys.exit(main())
