"""
gitlineage - GitHub PushEvent 提交血缘重建

提供：
- backfill: 从本地 git 克隆回填 PushEvent 缺失的提交与提交角色（PostgreSQL 存储）
- common: 公共工具（敏感信息脱敏、身份隐藏）
"""

__version__ = "0.1.0"

from gitlineage.backfill import config, errors

__all__ = ["config", "errors", "__version__"]
