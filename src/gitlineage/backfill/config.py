"""
gitlineage.backfill.config - 配置管理模块

支持:
- CLI --config 参数覆盖
- 环境变量 GITLINEAGE_CONFIG 指定配置文件路径
- TOML 格式配置文件
- GITLINEAGE_* 环境变量覆盖单个回填选项

优先级: --config > GITLINEAGE_CONFIG > ./.gitlineage/config.toml > ~/.gitlineage/config.toml

配置示例:
    [backfill]
    mode = 2                      # 0=关闭, 1=仅缺失, >=2=缺失或计数不足
    batch_size = 1000             # git 元数据批量大小与范围分页大小
    workers = 8                   # 单库内仓库并发上限
    default_start_date = "2012-07-01T00:00:00+00:00"
    strict = true                 # false 为兼容（legacy）模式
    reject_non_fast_forward = false
    insert_author_role = false
    insert_committer_role = false
    repos_dir = "~/devstats_repos/"

    [databases]
    gha = "postgresql://gha_admin@localhost/gha"

    [repos]
    gha = ["kubernetes/kubernetes", "cncf/devstats"]

    [logging]
    level = "INFO"
"""

import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConfigError, ConfigNotFoundError, ConfigParseError

# 环境变量名称
ENV_CONFIG_PATH = "GITLINEAGE_CONFIG"
ENV_PREFIX = "GITLINEAGE_"

# 默认配置文件搜索路径（按优先级）
DEFAULT_CONFIG_PATHS = [
    Path("./.gitlineage/config.toml"),
    Path.home() / ".gitlineage" / "config.toml",
]

# 回填默认值
DEFAULT_BATCH_SIZE = 1000
DEFAULT_START_DATE = datetime(2012, 7, 1, tzinfo=timezone.utc)
DEFAULT_REPOS_DIR = "~/devstats_repos/"
# GitHub 事件 payload 中的 commits 列表最多 20 条，size 恰为这些值时不可信
DEFAULT_LEGACY_CAPPED_SIZES = (20,)

MODE_DISABLED = 0
MODE_MISSING = 1
MODE_MISSING_OR_UNDERCOUNTED = 2

PACKAGED_GIT_SCRIPTS_DIR = Path(__file__).resolve().parent / "git"


# === TOML 解析工具 ===


def _get_toml_parser():
    """获取 TOML 解析器（兼容 Python 3.11 以下版本）"""
    if sys.version_info >= (3, 11):
        import tomllib

        return tomllib
    else:
        try:
            import tomli as tomllib

            return tomllib
        except ImportError:
            raise ConfigError(
                "需要安装 tomli 包来解析 TOML 配置文件 (Python < 3.11)",
                {"hint": "pip install tomli"},
            )


def _parse_toml_file(path: Path) -> dict:
    """解析 TOML 文件"""
    tomllib = _get_toml_parser()
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigParseError(
            f"配置文件解析失败: {e}",
            {"path": str(path), "error": str(e)},
        )


# === 配置管理类 ===


class Config:
    """配置管理类"""

    def __init__(self, config_path: Optional[str] = None, data: Optional[dict] = None):
        """
        初始化配置

        Args:
            config_path: 配置文件路径，优先级:
                1. 显式传入的 config_path（来自 --config 参数）
                2. 环境变量 GITLINEAGE_CONFIG
                3. ./.gitlineage/config.toml
                4. ~/.gitlineage/config.toml
            data: 直接提供的配置数据（测试用，跳过文件查找）
        """
        self._config_path: Optional[Path] = None
        self._data: dict = {}
        self._loaded = False

        if data is not None:
            self._data = data
            self._loaded = True
        else:
            self._resolve_config_path(config_path)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        return cls(data=data)

    def _resolve_config_path(self, explicit_path: Optional[str] = None) -> None:
        """解析配置文件路径"""
        if explicit_path:
            path = Path(explicit_path)
            if not path.exists():
                raise ConfigNotFoundError(
                    f"指定的配置文件不存在: {explicit_path}",
                    {"path": str(path.absolute())},
                )
            self._config_path = path
            return

        env_path = os.environ.get(ENV_CONFIG_PATH)
        if env_path:
            path = Path(env_path)
            if not path.exists():
                raise ConfigNotFoundError(
                    f"环境变量 {ENV_CONFIG_PATH} 指定的配置文件不存在: {env_path}",
                    {"path": str(path.absolute()), "env_var": ENV_CONFIG_PATH},
                )
            self._config_path = path
            return

        for default_path in DEFAULT_CONFIG_PATHS:
            if default_path.exists():
                self._config_path = default_path
                return

        # 未找到配置文件，允许仅使用环境变量配置
        self._config_path = None

    def load(self) -> "Config":
        """加载配置文件"""
        if self._loaded:
            return self
        if self._config_path is None:
            self._data = {}
        else:
            self._data = _parse_toml_file(self._config_path)
        self._loaded = True
        return self

    def get(self, key: str, default: Any = None) -> Any:
        """
        获取配置值，支持点分隔的嵌套键

        Args:
            key: 配置键，如 "backfill.batch_size"
            default: 默认值

        Returns:
            配置值或默认值
        """
        if not self._loaded:
            self.load()

        value = self._data
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def require(self, key: str) -> Any:
        """
        获取必需的配置值

        Raises:
            ConfigError: 如果配置项不存在或为空
        """
        value = self.get(key)
        if value is None or value == "":
            raise ConfigError(
                f"缺少必需的配置项: {key}",
                {"key": key, "config_path": str(self._config_path)},
            )
        return value

    @property
    def config_path(self) -> Optional[Path]:
        """当前使用的配置文件路径"""
        return self._config_path

    def __repr__(self) -> str:
        return f"Config(path={self._config_path}, loaded={self._loaded})"


def add_config_argument(parser) -> None:
    """为 argparse.ArgumentParser 添加 --config 参数"""
    parser.add_argument(
        "--config",
        "-c",
        metavar="PATH",
        help=f"配置文件路径（优先级: --config > {ENV_CONFIG_PATH} > ./.gitlineage/config.toml > ~/.gitlineage/config.toml）",
        dest="config_path",
    )


# === 规范化配置对象 ===


@dataclass
class LoggingConfig:
    """日志配置"""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


@dataclass
class BackfillSettings:
    """提交回填配置"""

    mode: int = MODE_DISABLED
    batch_size: int = DEFAULT_BATCH_SIZE
    workers: int = field(default_factory=lambda: os.cpu_count() or 1)
    default_start_date: datetime = DEFAULT_START_DATE
    strict: bool = True
    reject_non_fast_forward: bool = False
    insert_author_role: bool = False
    insert_committer_role: bool = False
    update_payload_size: bool = True
    fetch_pr_refs: bool = True
    legacy_capped_sizes: tuple = DEFAULT_LEGACY_CAPPED_SIZES
    repos_dir: str = DEFAULT_REPOS_DIR
    git_scripts_dir: Path = PACKAGED_GIT_SCRIPTS_DIR
    command_timeout: Optional[float] = None
    hide_file: Optional[Path] = None
    databases: Dict[str, str] = field(default_factory=dict)
    repos: Dict[str, List[str]] = field(default_factory=dict)

    def __post_init__(self):
        if self.mode < 0:
            raise ConfigError(
                f"无效的回填模式: {self.mode}",
                {"section": "backfill", "key": "mode", "value": self.mode},
            )
        if self.batch_size <= 0:
            raise ConfigError(
                f"batch_size 必须为正数: {self.batch_size}",
                {"section": "backfill", "key": "batch_size", "value": self.batch_size},
            )
        if self.workers <= 0:
            raise ConfigError(
                f"workers 必须为正数: {self.workers}",
                {"section": "backfill", "key": "workers", "value": self.workers},
            )
        if self.default_start_date.tzinfo is None:
            self.default_start_date = self.default_start_date.replace(tzinfo=timezone.utc)
        for db, repos in self.repos.items():
            if not isinstance(repos, (list, tuple)):
                raise ConfigError(
                    f"[repos].{db} 必须为仓库名列表",
                    {"section": "repos", "key": db, "value": repos},
                )

    @property
    def enabled(self) -> bool:
        return self.mode > MODE_DISABLED

    def repo_path(self, repo_name: str) -> Path:
        """本地克隆路径 = repos_dir + org/repo"""
        return Path(os.path.expanduser(self.repos_dir)) / repo_name


def _env(name: str) -> Optional[str]:
    value = os.environ.get(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _parse_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"无效的布尔值: {key}={value}", {"key": key, "value": value})


def _parse_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"无效的整数值: {key}={value}", {"key": key, "value": value})


def _parse_float(value: Any, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"无效的数值: {key}={value}", {"key": key, "value": value})


def _parse_datetime(value: Any, key: str) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise ConfigError(f"无效的时间值: {key}={value}", {"key": key, "value": value})


def get_backfill_settings(config: Config) -> BackfillSettings:
    """
    获取提交回填配置

    环境变量（GITLINEAGE_MODE/BATCH_SIZE/WORKERS/STRICT/REPOS_DIR）优先于配置文件。

    Args:
        config: Config 实例

    Returns:
        BackfillSettings 实例

    Raises:
        ConfigError: 配置值无效时抛出
    """
    kwargs: Dict[str, Any] = {}

    mode = _env("MODE") or config.get("backfill.mode")
    if mode is not None:
        kwargs["mode"] = _parse_int(mode, "backfill.mode")
    batch_size = _env("BATCH_SIZE") or config.get("backfill.batch_size")
    if batch_size is not None:
        kwargs["batch_size"] = _parse_int(batch_size, "backfill.batch_size")
    workers = _env("WORKERS") or config.get("backfill.workers")
    if workers is not None:
        kwargs["workers"] = _parse_int(workers, "backfill.workers")
    strict = _env("STRICT")
    if strict is None:
        strict = config.get("backfill.strict")
    if strict is not None:
        kwargs["strict"] = _parse_bool(strict, "backfill.strict")
    repos_dir = _env("REPOS_DIR") or config.get("backfill.repos_dir")
    if repos_dir:
        kwargs["repos_dir"] = str(repos_dir)

    start = config.get("backfill.default_start_date")
    if start is not None:
        kwargs["default_start_date"] = _parse_datetime(start, "backfill.default_start_date")

    for key in (
        "reject_non_fast_forward",
        "insert_author_role",
        "insert_committer_role",
        "update_payload_size",
        "fetch_pr_refs",
    ):
        value = config.get(f"backfill.{key}")
        if value is not None:
            kwargs[key] = _parse_bool(value, f"backfill.{key}")

    capped = config.get("backfill.legacy_capped_sizes")
    if capped is not None:
        if not isinstance(capped, (list, tuple)):
            raise ConfigError(
                f"backfill.legacy_capped_sizes 必须为整数列表: {capped}",
                {"key": "backfill.legacy_capped_sizes", "value": capped},
            )
        kwargs["legacy_capped_sizes"] = tuple(
            _parse_int(v, "backfill.legacy_capped_sizes") for v in capped
        )

    scripts_dir = config.get("backfill.git_scripts_dir")
    if scripts_dir:
        kwargs["git_scripts_dir"] = Path(os.path.expanduser(str(scripts_dir)))
    timeout = config.get("backfill.command_timeout")
    if timeout:
        kwargs["command_timeout"] = _parse_float(timeout, "backfill.command_timeout")
    hide_file = config.get("backfill.hide_file")
    if hide_file:
        kwargs["hide_file"] = Path(os.path.expanduser(str(hide_file)))

    kwargs["databases"] = dict(config.get("databases", {}) or {})
    kwargs["repos"] = {
        db: list(names) if isinstance(names, (list, tuple)) else names
        for db, names in (config.get("repos", {}) or {}).items()
    }
    return BackfillSettings(**kwargs)


def get_logging_config(config: Config) -> LoggingConfig:
    defaults = LoggingConfig()
    return LoggingConfig(
        level=str(config.get("logging.level", defaults.level)).upper(),
        format=config.get("logging.format", defaults.format),
        file=config.get("logging.file"),
    )
