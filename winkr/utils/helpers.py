"""
@description 通用工具函数
@responsibility 提供时间处理与 JSON 编解码等项目级辅助功能
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    """
    当前 UTC 时间（naive）

    数据库统一存储不带时区的 UTC 时间
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_rfc3339(value: Optional[datetime]) -> Optional[str]:
    """
    将时间格式化为 RFC3339 UTC 字符串

    Examples:
        >>> to_rfc3339(datetime(2024, 1, 2, 3, 4, 5))
        '2024-01-02T03:04:05Z'
    """
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0).isoformat() + "Z"


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return {"__datetime__": obj.isoformat()}
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    raise TypeError(f"无法序列化类型: {type(obj).__name__}")


def _json_object_hook(obj: dict) -> Any:
    if len(obj) == 1 and "__datetime__" in obj:
        return datetime.fromisoformat(obj["__datetime__"])
    return obj


def dumps(value: Any) -> str:
    """缓存值编码：datetime 带类型标记，保证结构化往返"""
    return json.dumps(value, default=_json_default, ensure_ascii=False)


def loads(raw: str | bytes) -> Any:
    return json.loads(raw, object_hook=_json_object_hook)
