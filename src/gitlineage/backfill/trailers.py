# -*- coding: utf-8 -*-
"""
trailers - 提交消息 trailer 解析

识别 "Key: Name <email>" 形式的行，键名（大小写不敏感）经 git_trailers.yaml
白名单映射为一个或多个规范角色名，每个 (行, 角色) 产生一个 Trailer。
"""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from .errors import ConfigParseError
from .models import Trailer

TRAILER_PATTERN = re.compile(r"^(?P<name>[A-Za-z0-9_\-]+):[ \t]+(?P<value>.+)$")

ALLOWED_TRAILERS_FILE = Path(__file__).resolve().parent / "git_trailers.yaml"


@lru_cache(maxsize=None)
def load_allowed_trailers(path: Path = ALLOWED_TRAILERS_FILE) -> Dict[str, Tuple[str, ...]]:
    """加载 trailer 白名单 {小写键名: (角色, ...)}"""
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigParseError(
            f"trailer 白名单加载失败: {exc}",
            {"path": str(path)},
        ) from exc
    return {
        str(key).strip().lower(): tuple(role for role in roles if role)
        for key, roles in data.items()
        if roles
    }


def _split_name_email(value: str) -> Optional[Tuple[str, str]]:
    name, sep, rest = value.partition("<")
    if not sep:
        return None
    email, sep, _ = rest.partition(">")
    if not sep:
        return None
    name = name.strip()
    email = email.strip()
    if not name or not email:
        return None
    return name, email


def parse_trailers(
    message: str, allowed: Optional[Dict[str, Tuple[str, ...]]] = None
) -> List[Trailer]:
    """
    从提交消息中提取 trailer 角色

    Args:
        message: 完整提交消息
        allowed: 可选的白名单（默认加载 git_trailers.yaml）

    Returns:
        Trailer 列表；未识别的键或格式错误的 name/email 被静默丢弃
    """
    if not message:
        return []
    if allowed is None:
        allowed = load_allowed_trailers()

    out: List[Trailer] = []
    for line in message.split("\n"):
        line = line.rstrip("\r").strip()
        if not line:
            continue
        m = TRAILER_PATTERN.match(line)
        if m is None:
            continue
        roles = allowed.get(m.group("name").strip().lower())
        if not roles:
            continue
        parsed = _split_name_email(m.group("value").strip())
        if parsed is None:
            continue
        name, email = parsed
        for role in roles:
            out.append(Trailer(role=role, name=name, email=email))
    return out
