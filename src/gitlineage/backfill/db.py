"""
gitlineage.backfill.db - 数据库连接模块

提供 PostgreSQL 连接获取功能。

约定:
- 每个配置的数据库由 [databases] 中的 DSN 指定
- 回填连接使用 autocommit=True，仓库级写入通过显式事务（conn.transaction()）完成，
  选择查询不会意外持有一个未提交的隐式事务
"""

import logging
import os
from typing import Optional

import psycopg

from gitlineage.common.redaction import redact_sensitive_text

from .errors import ConfigError, DbConnectionError

logger = logging.getLogger(__name__)

ENV_STATEMENT_TIMEOUT_MS = "GITLINEAGE_PG_STATEMENT_TIMEOUT_MS"


def get_dsn(databases: dict, db_name: str) -> str:
    """
    获取指定数据库的 DSN

    优先级（高到低）：
    1. [databases] 中的显式配置
    2. 环境变量 GITLINEAGE_DSN_<DB_NAME 大写>

    Raises:
        ConfigError: 当 DSN 不存在时抛出
    """
    dsn = databases.get(db_name)
    if dsn:
        return dsn
    env_name = "GITLINEAGE_DSN_" + db_name.upper().replace("-", "_")
    dsn = os.environ.get(env_name)
    if dsn:
        return dsn
    raise ConfigError(
        f"未找到数据库 DSN 配置: {db_name}",
        {"checked": [f"databases.{db_name}", env_name]},
    )


def get_connection(
    dsn: str,
    autocommit: bool = True,
    statement_timeout_ms: Optional[int] = None,
) -> psycopg.Connection:
    """
    获取数据库连接

    statement_timeout 优先级: 显式参数 > 环境变量 GITLINEAGE_PG_STATEMENT_TIMEOUT_MS

    Raises:
        DbConnectionError: 连接失败时抛出
    """
    try:
        conn = psycopg.connect(dsn, autocommit=autocommit)
    except Exception as e:
        raise DbConnectionError(
            f"数据库连接失败: {redact_sensitive_text(str(e))}",
            {"dsn": redact_sensitive_text(dsn)},
        )

    timeout_ms = statement_timeout_ms
    if timeout_ms is None:
        env_timeout = os.environ.get(ENV_STATEMENT_TIMEOUT_MS)
        if env_timeout:
            try:
                timeout_ms = int(env_timeout)
            except ValueError:
                logger.warning(f"忽略无效的 {ENV_STATEMENT_TIMEOUT_MS}: {env_timeout}")

    if timeout_ms is not None and timeout_ms > 0:
        try:
            with conn.cursor() as cur:
                cur.execute(f"SET statement_timeout TO {int(timeout_ms)}")
        except Exception as e:
            conn.close()
            raise DbConnectionError(
                f"设置 statement_timeout 失败: {e}",
                {"statement_timeout_ms": timeout_ms},
            )

    return conn
