"""
Row <-> model mapping for the remote store.

Remote rows use snake_case columns; the `analysis` column is JSON with
camelCase keys (shared with the other clients of the same backend).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from apps.common.models.report import ChatSession, MedicalAnalysis, Message

logger = logging.getLogger(__name__)


def session_to_row(session: ChatSession, user_id: str) -> Dict[str, Any]:
    return {
        "id": session.id,
        "user_id": user_id,
        "title": session.title,
        "created_at": session.created_at.isoformat(),
    }


def message_to_row(message: Message, session_id: str) -> Dict[str, Any]:
    return {
        "id": message.id,
        "session_id": session_id,
        "role": message.role,
        "content": message.content,
        "analysis": (
            message.analysis.model_dump(mode="json", by_alias=True) if message.analysis else None
        ),
        "image": message.image,
        # timestamptz 列只接受 ISO 字符串
        "created_at": ms_to_iso(message.created_at),
    }


def session_to_message_rows(session: ChatSession) -> List[Dict[str, Any]]:
    return [message_to_row(m, session.id) for m in session.messages]


_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def ms_to_iso(ms: int) -> str:
    return (_EPOCH + ms * _ONE_MS).isoformat()


def parse_timestamp(value: Any) -> datetime:
    """ISO 字符串 / epoch 毫秒 -> 带时区 datetime，无法解析时返回 epoch 0"""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    return datetime.fromtimestamp(0, tz=timezone.utc)


def _parse_analysis(raw: Any, message_id: str) -> Optional[MedicalAnalysis]:
    if not raw:
        return None
    try:
        return MedicalAnalysis.model_validate(raw)
    except ValidationError as e:
        logger.warning("Dropping unreadable analysis on message %s: %s", message_id, e)
        return None


def created_at_ms(value: Any) -> Optional[int]:
    """消息 created_at（epoch 毫秒或 ISO 字符串）-> 毫秒；缺失或无法解析时返回 None"""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unreadable message created_at: %r", value)
            return None
        return (parse_timestamp(dt) - _EPOCH) // _ONE_MS
    return None


def row_to_message(row: Dict[str, Any]) -> Message:
    analysis = _parse_analysis(row.get("analysis"), row.get("id", ""))
    data = {
        "id": row["id"],
        "role": row.get("role", "assistant"),
        "content": row.get("content") or "",
        "analysis": analysis,
        "image": row.get("image"),
        "report_type": analysis.report_type if analysis else None,
    }
    created_at = created_at_ms(row.get("created_at"))
    if created_at is not None:
        data["created_at"] = created_at
    return Message(**data)


def row_to_session(row: Dict[str, Any]) -> ChatSession:
    """
    重建会话。

    消息排序键：内嵌分析时间戳 > 消息 created_at > 沿用前一条消息的键；
    键相同时保持到达顺序。旧表结构没有 created_at 的消息因此留在原位，
    不会排到首条分析消息之前。
    """
    keyed = []
    previous_key = 0
    for index, raw in enumerate(row.get("messages") or []):
        message = row_to_message(raw)
        if message.analysis is not None:
            key = message.analysis.timestamp
        elif "created_at" in message.model_fields_set:
            key = message.created_at
        else:
            key = previous_key
            # 回推时沿用同一个键，顺序不会漂移
            message = message.model_copy(update={"created_at": key})
        previous_key = key
        keyed.append((key, index, message))
    keyed.sort(key=lambda item: (item[0], item[1]))

    return ChatSession(
        id=row["id"],
        title=row.get("title") or "",
        messages=[m for _, _, m in keyed],
        created_at=parse_timestamp(row.get("created_at")),
    )


def rows_to_sessions(rows: List[Dict[str, Any]]) -> List[ChatSession]:
    """按创建时间倒序（最新在前）"""
    sessions = [row_to_session(r) for r in rows]
    sessions.sort(key=lambda s: s.created_at, reverse=True)
    return sessions
