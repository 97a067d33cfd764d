"""
gitlineage.backfill.io - CLI I/O 工具模块

约定:
- stdout: 机器可读的 JSON 输出
- stderr: 人读信息（日志、进度等）
- 成功: {ok: true, ...}
- 失败: {ok: false, code, message, detail}
- 错误时返回非 0 exit code
"""

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, NoReturn, Optional

from .errors import LineageError

# =============================================================================
# JSON 输出
# =============================================================================


def output_json(
    data: Any,
    pretty: bool = False,
    quiet: bool = False,
    json_out: Optional[str] = None,
) -> None:
    """
    输出 JSON 到 stdout，可选同时写入文件

    Args:
        data: 要输出的数据
        pretty: 是否格式化输出
        quiet: 静默模式（仍然输出 JSON，但不输出 stderr 信息）
        json_out: 可选的 JSON 输出文件路径
    """
    indent = 2 if pretty else None
    json_str = json.dumps(data, ensure_ascii=False, indent=indent, default=_json_serializer)
    print(json_str, file=sys.stdout)

    if json_out:
        try:
            out_path = Path(json_out)
            out_path.parent.mkdir(parents=True, exist_ok=True)
            with open(out_path, "w", encoding="utf-8") as f:
                f.write(json_str)
                f.write("\n")
            log_info(f"JSON 输出已写入: {json_out}", quiet=quiet)
        except OSError as e:
            log_error(f"写入 JSON 输出文件失败: {json_out} - {e}")


def output_error(
    error: LineageError,
    pretty: bool = False,
    quiet: bool = False,
    json_out: Optional[str] = None,
) -> None:
    """输出错误 JSON 到 stdout，人读消息到 stderr（除非 quiet）"""
    output_json(error.to_dict(), pretty=pretty, quiet=quiet, json_out=json_out)
    log_error(f"[{error.error_type}] {error.message}", quiet=quiet)


# =============================================================================
# stderr 人读信息
# =============================================================================


def log_info(message: str, quiet: bool = False) -> None:
    if not quiet:
        print(message, file=sys.stderr)


def log_error(message: str, quiet: bool = False) -> None:
    if not quiet:
        print(f"ERROR: {message}", file=sys.stderr)


# =============================================================================
# 退出函数
# =============================================================================


def exit_with_error(
    error: LineageError,
    pretty: bool = False,
    quiet: bool = False,
    json_out: Optional[str] = None,
) -> NoReturn:
    """输出错误并以 error.exit_code 退出"""
    output_error(error, pretty=pretty, quiet=quiet, json_out=json_out)
    sys.exit(error.exit_code)


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, "__dict__"):
        return obj.__dict__
    return str(obj)


# =============================================================================
# argparse 参数帮助函数
# =============================================================================


def add_output_arguments(parser) -> None:
    """
    添加输出格式参数

    --pretty: 格式化 JSON 输出
    --quiet/-q: 静默模式
    --json-out: JSON 输出文件路径（同时写入 stdout 和文件）
    """
    parser.add_argument(
        "--pretty",
        action="store_true",
        help="格式化 JSON 输出（便于阅读）",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="静默模式（不输出 stderr 人读信息）",
    )
    parser.add_argument(
        "--json-out",
        dest="json_out",
        metavar="PATH",
        help="JSON 输出文件路径（同时写入 stdout 和文件，自动创建父目录）",
    )


def get_output_options(args) -> Dict[str, Any]:
    return {
        "pretty": getattr(args, "pretty", False),
        "quiet": getattr(args, "quiet", False),
        "json_out": getattr(args, "json_out", None),
    }
