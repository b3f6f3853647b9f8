"""
User-facing error categories.

Failures are surfaced as short prefixed strings; no structured codes leave
the process. `ErrorBanner` holds the one message the UI shows.
"""

import json
import logging
from enum import Enum
from typing import Optional

from apps.common.models.report import Language

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    SYNC = "sync"
    QUOTA = "quota"
    PUSH = "push"
    ANALYSIS = "analysis"
    CHAT = "chat"
    LOGIN_REQUIRED = "login_required"


_TEMPLATES = {
    Language.ZH: {
        ErrorCategory.SYNC: "同步失败: {detail}",
        ErrorCategory.QUOTA: "同步失败: 本地缓存已满，系统已尝试自动清理旧数据。请重新加载。",
        ErrorCategory.PUSH: "云端保存失败: {detail}",
        ErrorCategory.ANALYSIS: "AI 引擎异常: {detail}",
        ErrorCategory.CHAT: "回复失败: {detail}",
        ErrorCategory.LOGIN_REQUIRED: "请先登录。",
    },
    Language.EN: {
        ErrorCategory.SYNC: "Sync failed: {detail}",
        ErrorCategory.QUOTA: "Sync failed: local cache is full; old data was cleaned up. Please reload.",
        ErrorCategory.PUSH: "Cloud save failed: {detail}",
        ErrorCategory.ANALYSIS: "AI engine error: {detail}",
        ErrorCategory.CHAT: "Reply failed: {detail}",
        ErrorCategory.LOGIN_REQUIRED: "Please sign in first.",
    },
}

_SYNC_FALLBACK = {
    Language.ZH: "同步服务暂时不可用",
    Language.EN: "sync service is temporarily unavailable",
}


def describe_error(error: object) -> str:
    """上游错误文本优先，否则序列化错误本身"""
    if isinstance(error, str):
        return error
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    if isinstance(error, BaseException) and str(error):
        return str(error)
    try:
        return json.dumps(error, ensure_ascii=False, default=repr)
    except (TypeError, ValueError):
        return repr(error)


def format_error(
    category: ErrorCategory, detail: object = None, language: Language = Language.ZH
) -> str:
    templates = _TEMPLATES.get(language, _TEMPLATES[Language.ZH])
    text = describe_error(detail) if detail is not None else ""
    if category == ErrorCategory.SYNC and not text:
        text = _SYNC_FALLBACK.get(language, _SYNC_FALLBACK[Language.ZH])
    return templates[category].format(detail=text)


class ErrorBanner:
    """当前展示给用户的错误信息（最多一条）"""

    def __init__(self):
        self.message: Optional[str] = None
        self.category: Optional[ErrorCategory] = None

    def report(
        self, category: ErrorCategory, detail: object = None, language: Language = Language.ZH
    ) -> str:
        self.message = format_error(category, detail, language)
        self.category = category
        logger.warning("[%s] %s", category.value, self.message)
        return self.message

    def clear(self) -> None:
        self.message = None
        self.category = None
