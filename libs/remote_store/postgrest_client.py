"""
PostgREST Remote Store.

Async client for the hosted relational backend (Supabase / PostgREST REST
dialect). Knows only rows: `sessions`, `messages` and `feedback`. Mapping to
domain models lives with the caller.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "sessions"
MESSAGES_TABLE = "messages"
FEEDBACK_TABLE = "feedback"

# messages 表上后来加入的列，老库可能没有
OPTIONAL_MESSAGE_COLUMNS = ("created_at",)


class RemoteStoreError(Exception):
    """远端存储请求失败"""

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code

    @property
    def is_missing_relationship(self) -> bool:
        """外键关系不存在或 schema cache 尚未刷新"""
        return self.code == "PGRST200" or "relationship" in self.message.lower()

    @property
    def is_unknown_column(self) -> bool:
        return self.code == "PGRST204"


@dataclass
class RemoteStoreConfig:
    """Connection settings for the PostgREST endpoint."""

    url: str
    api_key: str
    timeout_seconds: float = 30.0

    @property
    def rest_url(self) -> str:
        return self.url.rstrip("/") + "/rest/v1"


def join_sessions_with_messages(
    session_rows: Sequence[Dict[str, Any]], message_rows: Sequence[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """
    按 session_id 在内存中聚合，输出与 `select=*,messages(*)` 相同的嵌套结构。
    消息保持输入顺序。
    """
    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for row in message_rows:
        grouped.setdefault(row.get("session_id"), []).append(row)
    return [{**s, "messages": grouped.get(s["id"], [])} for s in session_rows]


def _in_filter(values: Sequence[str]) -> str:
    quoted = ",".join(json.dumps(str(v)) for v in values)
    return f"in.({quoted})"


class PostgrestRemoteStore:
    """
    远端存储适配器（原子能力）

    约定：
    - 所有写操作都是 upsert，以客户端生成的 id 作为冲突键，重复保存无副作用
    - 不持有可变状态，每次请求单独打开 ClientSession
    """

    def __init__(self, config: RemoteStoreConfig):
        self.config = config

    def is_enabled(self) -> bool:
        return bool(self.config.url and self.config.api_key)

    def _headers(self, prefer: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.config.api_key,
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        payload: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        url = f"{self.config.rest_url}/{table}"
        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, url, params=params, json=payload, headers=self._headers(prefer)
                ) as response:
                    text = await response.text()
                    if response.status >= 400:
                        raise self._error_from_response(response.status, text)
                    if not text:
                        return None
                    return json.loads(text)
        except asyncio.TimeoutError as e:
            raise RemoteStoreError(f"请求超时: {table}", code="TIMEOUT") from e
        except aiohttp.ClientError as e:
            raise RemoteStoreError(f"网络错误: {e}", code="NETWORK") from e

    @staticmethod
    def _error_from_response(status: int, text: str) -> RemoteStoreError:
        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if isinstance(data, dict):
            message = data.get("message") or data.get("error") or text
            return RemoteStoreError(str(message), code=data.get("code"), status_code=status)
        return RemoteStoreError(text[:200] or f"HTTP {status}", status_code=status)

    # region 写操作

    async def upsert_session(self, row: Dict[str, Any]) -> None:
        await self._request(
            "POST",
            SESSIONS_TABLE,
            params={"on_conflict": "id"},
            payload=row,
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def upsert_messages(self, rows: List[Dict[str, Any]]) -> None:
        """批量 upsert，一次请求写入整批消息"""
        if not rows:
            return
        try:
            await self._post_messages(rows)
        except RemoteStoreError as e:
            if not e.is_unknown_column or not any(c in e.message for c in OPTIONAL_MESSAGE_COLUMNS):
                raise
            logger.warning("messages table lacks optional columns, retrying without them: %s", e.message)
            trimmed = [
                {k: v for k, v in row.items() if k not in OPTIONAL_MESSAGE_COLUMNS}
                for row in rows
            ]
            await self._post_messages(trimmed)

    async def _post_messages(self, rows: List[Dict[str, Any]]) -> None:
        await self._request(
            "POST",
            MESSAGES_TABLE,
            params={"on_conflict": "id"},
            payload=rows,
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def delete_session(self, session_id: str) -> None:
        """先删消息再删会话，外键缺失时也能级联"""
        await self._request("DELETE", MESSAGES_TABLE, params={"session_id": f"eq.{session_id}"})
        await self._request("DELETE", SESSIONS_TABLE, params={"id": f"eq.{session_id}"})

    async def upsert_feedback(self, message_id: str, user_id: str, feedback_type: str) -> None:
        await self._request(
            "POST",
            FEEDBACK_TABLE,
            params={"on_conflict": "message_id,user_id"},
            payload={"message_id": message_id, "user_id": user_id, "type": feedback_type},
            prefer="resolution=merge-duplicates,return=minimal",
        )

    # endregion

    # region 读操作

    async def fetch_sessions_with_messages(self, user_id: str) -> List[Dict[str, Any]]:
        """
        拉取用户全部会话及其消息。

        优先联表查询；若后端报告关系缺失（PGRST200），改为两步查询后在内存中聚合。
        """
        try:
            rows = await self._request(
                "GET",
                SESSIONS_TABLE,
                params={"select": "*,messages(*)", "user_id": f"eq.{user_id}"},
            )
            return rows or []
        except RemoteStoreError as e:
            if not e.is_missing_relationship:
                raise
            logger.warning("Relationship not visible in schema cache, falling back to two queries: %s", e.message)

        session_rows = await self._request(
            "GET", SESSIONS_TABLE, params={"select": "*", "user_id": f"eq.{user_id}"}
        )
        if not session_rows:
            return []

        message_rows = await self._request(
            "GET",
            MESSAGES_TABLE,
            params={"select": "*", "session_id": _in_filter([s["id"] for s in session_rows])},
        )
        return join_sessions_with_messages(session_rows, message_rows or [])

    # endregion
