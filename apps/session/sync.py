"""
Sync Orchestrator.

Subscribes to the session store and turns state transitions into remote
calls:

- sign-in  -> one full pull (remote is authoritative at login)
- sign-out -> local session list cleared, no remote call
- session added/updated -> push (session upsert + one message batch upsert)
- session deleted -> detached remote delete, failures only logged
- feedback toggled -> detached feedback upsert, failures only logged

Local state is optimistic: a failed push never rolls back the store.
Remote writes for the same session are chained so they land in issue order.
Concurrent writes from other devices are last-writer-wins at the backend.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from apps.common.models.report import ChatSession, UserProfile
from apps.session.errors import ErrorBanner, ErrorCategory
from apps.session.mapping import rows_to_sessions, session_to_message_rows, session_to_row
from apps.session.persistence import LocalPersistence
from apps.session.store import SessionStore, StoreChange, StoreEvent
from libs.storage_lib import is_quota_error

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """会话同步编排：拉取只在登录时发生，之后只推不拉"""

    def __init__(
        self,
        store: SessionStore,
        remote: Any,
        errors: ErrorBanner,
        persistence: Optional[LocalPersistence] = None,
    ):
        self.store = store
        self.remote = remote
        self.errors = errors
        self.persistence = persistence
        self._tasks: Set[asyncio.Task] = set()
        self._session_tails: Dict[str, asyncio.Task] = {}
        self._pulls_in_flight = 0
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # region 事件分发

    def _on_change(self, change: StoreChange) -> None:
        event = change.event
        if event == StoreEvent.USER_CHANGED:
            self._on_user_changed(change.previous.user, change.current.user)
        elif event in (StoreEvent.SESSION_ADDED, StoreEvent.SESSION_UPDATED):
            self._schedule_push(change.payload["session"])
        elif event == StoreEvent.SESSION_DELETED:
            self._schedule_delete(change.payload["session"].id)
        elif event == StoreEvent.FEEDBACK_CHANGED:
            feedback = change.payload.get("feedback")
            if feedback:
                self._schedule_feedback(change.payload["message_id"], feedback)

    def _on_user_changed(
        self, previous: Optional[UserProfile], current: Optional[UserProfile]
    ) -> None:
        previous_id = previous.id if previous else None
        current_id = current.id if current else None
        if previous_id == current_id:
            return

        if previous_id is not None:
            # 登出（或切换账号）：立即清空本地会话，不访问远端
            logger.info("User %s signed out, clearing local sessions", previous_id)
            self.store.set_sessions([])
            self.store.set_current_session_id(None)

        if current is not None:
            self._spawn(self.pull(current))

    # endregion

    # region 任务调度

    def _spawn(self, coro: Awaitable[Any]) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, remote task dropped")
            coro.close()
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _enqueue_for_session(
        self, session_id: str, factory: Callable[[], Awaitable[Any]]
    ) -> Optional[asyncio.Task]:
        previous = self._session_tails.get(session_id)

        async def _run_after_previous() -> None:
            if previous is not None and not previous.done():
                await asyncio.wait({previous})
            await factory()

        task = self._spawn(_run_after_previous())
        if task is None:
            return None
        self._session_tails[session_id] = task

        def _release(done: asyncio.Task) -> None:
            if self._session_tails.get(session_id) is done:
                del self._session_tails[session_id]

        task.add_done_callback(_release)
        return task

    async def flush(self, session_id: Optional[str] = None) -> None:
        """等待已排队的远端任务完成（某个会话或全部）"""
        if session_id is not None:
            task = self._session_tails.get(session_id)
            if task is not None:
                await asyncio.wait({task})
            return
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    # endregion

    # region 拉取

    async def pull(self, user: UserProfile) -> bool:
        """登录后的一次性全量拉取；失败时保留本地列表并给出分类错误"""
        if self.remote is None:
            logger.info("Remote store not configured, skipping pull")
            return False

        self._pulls_in_flight += 1
        self.store.set_syncing(True)
        try:
            rows = await self.remote.fetch_sessions_with_messages(user.id)
            sessions = rows_to_sessions(rows)
            current_user = self.store.state.user
            if current_user is None or current_user.id != user.id:
                logger.info("Discarding pull result for %s, user changed meanwhile", user.id)
                return False
            self.store.set_sessions(sessions)
            self.errors.clear()
            logger.info("Pulled %d sessions for %s", len(sessions), user.id)
            return True
        except Exception as e:
            logger.error("Sync Error: %s", e)
            language = self.store.state.language
            if is_quota_error(e):
                if self.persistence is not None:
                    self.persistence.purge_superseded()
                self.errors.report(ErrorCategory.QUOTA, language=language)
            else:
                self.errors.report(ErrorCategory.SYNC, e, language=language)
            return False
        finally:
            self._pulls_in_flight -= 1
            if self._pulls_in_flight == 0:
                self.store.set_syncing(False)

    # endregion

    # region 推送

    def _schedule_push(self, session: ChatSession) -> None:
        user = self.store.state.user
        if user is None or self.remote is None:
            logger.debug("Push skipped for %s (signed out or no remote)", session.id)
            return
        self._enqueue_for_session(session.id, lambda: self.push_session(session, user.id))

    async def push_session(self, session: ChatSession, user_id: str) -> bool:
        """会话行 upsert + 消息整批 upsert；失败只提示，不回滚本地状态"""
        try:
            await self.remote.upsert_session(session_to_row(session, user_id))
            rows = session_to_message_rows(session)
            if rows:
                await self.remote.upsert_messages(rows)
            return True
        except Exception as e:
            logger.error("Push failed for session %s: %s", session.id, e)
            self.errors.report(ErrorCategory.PUSH, e, language=self.store.state.language)
            return False

    def _schedule_delete(self, session_id: str) -> None:
        if self.remote is None or self.store.state.user is None:
            return
        self._enqueue_for_session(session_id, lambda: self._delete_remote(session_id))

    async def _delete_remote(self, session_id: str) -> None:
        try:
            await self.remote.delete_session(session_id)
        except Exception as e:
            logger.error("Remote delete failed for session %s: %s", session_id, e)

    def _schedule_feedback(self, message_id: str, feedback: str) -> None:
        user = self.store.state.user
        if user is None or self.remote is None:
            return
        self._spawn(self._send_feedback(message_id, user.id, feedback))

    async def _send_feedback(self, message_id: str, user_id: str, feedback: str) -> None:
        try:
            await self.remote.upsert_feedback(message_id, user_id, feedback)
        except Exception as e:
            logger.error("Feedback submit failed for message %s: %s", message_id, e)

    # endregion
