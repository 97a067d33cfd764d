"""
gitlineage.backfill.errors - 错误定义模块

定义提交回填引擎可能抛出的异常类型，统一错误码和错误消息格式。

退出码约定:
    0   - 成功
    1   - 通用错误 (LINEAGE_ERROR)
    2   - 配置错误 (CONFIG_ERROR)
    3   - 数据库错误 (DATABASE_ERROR)
    6   - 校验错误 (VALIDATION_ERROR)
    8   - git 命令错误 (GIT_COMMAND_ERROR)
    9   - 仓库未克隆 (REPO_NOT_CLONED)
    10  - 部分仓库回填失败 (PARTIAL_FAILURE)
"""

from typing import Any, Dict, Optional

# =============================================================================
# 退出码枚举
# =============================================================================


class ExitCode:
    """退出码常量"""

    SUCCESS = 0
    LINEAGE_ERROR = 1
    CONFIG_ERROR = 2
    DATABASE_ERROR = 3
    VALIDATION_ERROR = 6
    GIT_COMMAND_ERROR = 8
    REPO_NOT_CLONED = 9
    PARTIAL_FAILURE = 10


# =============================================================================
# 基础异常类
# =============================================================================


class LineageError(Exception):
    """gitlineage 基础异常类"""

    exit_code: int = ExitCode.LINEAGE_ERROR
    error_type: str = "LINEAGE_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        转换为可序列化的字典格式

        格式: {ok: false, code: str, message: str, detail: dict}
        """
        return {
            "ok": False,
            "code": self.error_type,
            "message": self.message,
            "detail": self.details,
        }


# =============================================================================
# 配置相关错误 (exit_code = 2)
# =============================================================================


class ConfigError(LineageError):
    """配置相关错误"""

    exit_code = ExitCode.CONFIG_ERROR
    error_type = "CONFIG_ERROR"


class ConfigNotFoundError(ConfigError):
    """配置文件未找到"""

    error_type = "CONFIG_NOT_FOUND"


class ConfigParseError(ConfigError):
    """配置文件解析错误"""

    error_type = "CONFIG_PARSE_ERROR"


# =============================================================================
# 数据库相关错误 (exit_code = 3)
# =============================================================================


class DatabaseError(LineageError):
    """数据库相关错误"""

    exit_code = ExitCode.DATABASE_ERROR
    error_type = "DATABASE_ERROR"


class DbConnectionError(DatabaseError):
    """数据库连接错误"""

    error_type = "CONNECTION_ERROR"


class QueryError(DatabaseError):
    """数据库查询错误"""

    error_type = "QUERY_ERROR"


class TransactionError(DatabaseError):
    """事务错误（插入失败、提交失败，整个仓库回滚）"""

    error_type = "TRANSACTION_ERROR"


# =============================================================================
# 校验错误 (exit_code = 6)
# =============================================================================


class ValidationError(LineageError):
    """输入验证错误"""

    exit_code = ExitCode.VALIDATION_ERROR
    error_type = "VALIDATION_ERROR"


class MetadataParseError(ValidationError):
    """git_commits.sh 输出格式错误"""

    error_type = "METADATA_PARSE_ERROR"


# =============================================================================
# git 命令错误 (exit_code = 8)
# =============================================================================


class GitCommandError(LineageError):
    """外部 git 命令执行失败"""

    exit_code = ExitCode.GIT_COMMAND_ERROR
    error_type = "GIT_COMMAND_ERROR"


class GitTimeoutError(GitCommandError):
    """外部 git 命令超时"""

    error_type = "GIT_TIMEOUT"


class CommitRangeError(GitCommandError):
    """提交范围无法列出（PR refs 恢复之后仍失败）"""

    error_type = "COMMIT_RANGE_ERROR"


# =============================================================================
# 仓库错误 (exit_code = 9)
# =============================================================================


class RepoNotClonedError(LineageError):
    """本地克隆不存在或不可读，永远不视为“无事可做”"""

    exit_code = ExitCode.REPO_NOT_CLONED
    error_type = "REPO_NOT_CLONED"


# =============================================================================
# 工具函数
# =============================================================================


def make_success_result(**kwargs) -> Dict[str, Any]:
    """构造成功结果 {ok: true, ...kwargs}"""
    return {"ok": True, **kwargs}
