"""
Session Store.

In-memory authoritative model of the client: signed-in user, analysis
sessions, current session pointer, model configs and the sync flag.

Every mutation builds a new immutable `AppState` and swaps it in with a
single assignment, then notifies subscribers with a `StoreChange`. The store
performs no I/O; remote effects are issued by subscribers (see
`apps.session.sync`).
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from apps.common.models.report import (
    DEFAULT_CONFIGS,
    AIProvider,
    ChatSession,
    FeedbackType,
    Language,
    MedicalAnalysis,
    ModelConfig,
    UserProfile,
)

logger = logging.getLogger(__name__)


class StoreEvent(str, Enum):
    USER_CHANGED = "user_changed"
    SESSIONS_REPLACED = "sessions_replaced"
    SESSION_ADDED = "session_added"
    SESSION_UPDATED = "session_updated"
    SESSION_DELETED = "session_deleted"
    CURRENT_CHANGED = "current_changed"
    CONFIG_CHANGED = "config_changed"
    LANGUAGE_CHANGED = "language_changed"
    SYNCING_CHANGED = "syncing_changed"
    FEEDBACK_CHANGED = "feedback_changed"
    HYDRATED = "hydrated"


@dataclass(frozen=True)
class AppState:
    user: Optional[UserProfile] = None
    sessions: Tuple[ChatSession, ...] = ()
    current_session_id: Optional[str] = None
    configs: Mapping[AIProvider, ModelConfig] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_CONFIGS))
    )
    active_config: ModelConfig = DEFAULT_CONFIGS[AIProvider.GEMINI]
    language: Language = Language.ZH
    is_syncing: bool = False


@dataclass(frozen=True)
class StoreChange:
    event: StoreEvent
    previous: AppState
    current: AppState
    payload: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[StoreChange], None]


class SessionStore:
    """状态容器：同步、无 I/O 的变更操作 + 订阅通知"""

    def __init__(self, initial: Optional[AppState] = None):
        self._state = initial or AppState()
        self._listeners: List[Listener] = []

    @property
    def state(self) -> AppState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _commit(self, event: StoreEvent, new_state: AppState, **payload: Any) -> None:
        previous = self._state
        self._state = new_state
        change = StoreChange(event=event, previous=previous, current=new_state, payload=payload)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Store listener failed on %s", event.value)

    # region 读取

    def get_session(self, session_id: Optional[str]) -> Optional[ChatSession]:
        if session_id is None:
            return None
        for session in self._state.sessions:
            if session.id == session_id:
                return session
        return None

    @property
    def current_session(self) -> Optional[ChatSession]:
        return self.get_session(self._state.current_session_id)

    def last_analysis(self, session_id: Optional[str] = None) -> Optional[MedicalAnalysis]:
        session = self.get_session(session_id) if session_id else self.current_session
        return session.last_analysis() if session else None

    # endregion

    # region 用户与会话

    def set_user(self, user: Optional[UserProfile]) -> None:
        """设置当前用户；None 表示登出"""
        self._commit(StoreEvent.USER_CHANGED, replace(self._state, user=user))

    def set_sessions(self, sessions: Iterable[ChatSession]) -> None:
        """整体替换会话列表（远端拉取之后使用）"""
        new_sessions = tuple(sessions)
        current = self._state.current_session_id
        if current is not None and all(s.id != current for s in new_sessions):
            current = None
        self._commit(
            StoreEvent.SESSIONS_REPLACED,
            replace(self._state, sessions=new_sessions, current_session_id=current),
        )

    def add_session(self, session: ChatSession) -> None:
        """插入到列表最前并设为当前会话；不做去重，调用方保证 id 全新"""
        self._commit(
            StoreEvent.SESSION_ADDED,
            replace(
                self._state,
                sessions=(session,) + self._state.sessions,
                current_session_id=session.id,
            ),
            session=session,
        )

    def update_session(self, session_id: str, **changes: Any) -> bool:
        """合并字段到指定会话；id 不存在时不做任何修改并返回 False"""
        changes.pop("id", None)
        updated: Optional[ChatSession] = None
        sessions = []
        for session in self._state.sessions:
            if session.id == session_id:
                updated = session.model_copy(update=changes)
                sessions.append(updated)
            else:
                sessions.append(session)
        if updated is None:
            logger.debug("update_session: %s not found", session_id)
            return False

        self._commit(
            StoreEvent.SESSION_UPDATED,
            replace(self._state, sessions=tuple(sessions)),
            session=updated,
        )
        return True

    def delete_session(self, session_id: str) -> bool:
        """本地删除；远端删除由订阅方异步发起"""
        removed = self.get_session(session_id)
        if removed is None:
            return False
        current = self._state.current_session_id
        self._commit(
            StoreEvent.SESSION_DELETED,
            replace(
                self._state,
                sessions=tuple(s for s in self._state.sessions if s.id != session_id),
                current_session_id=None if current == session_id else current,
            ),
            session=removed,
        )
        return True

    def set_current_session_id(self, session_id: Optional[str]) -> bool:
        if session_id is not None and self.get_session(session_id) is None:
            logger.warning("set_current_session_id: unknown session %s", session_id)
            return False
        self._commit(StoreEvent.CURRENT_CHANGED, replace(self._state, current_session_id=session_id))
        return True

    def set_message_feedback(
        self, session_id: str, message_id: str, feedback: Optional[FeedbackType]
    ) -> bool:
        """本地反馈开关，不触发会话推送"""
        session = self.get_session(session_id)
        if session is None or all(m.id != message_id for m in session.messages):
            return False
        messages = [
            m.model_copy(update={"feedback": feedback}) if m.id == message_id else m
            for m in session.messages
        ]
        updated = session.model_copy(update={"messages": messages})
        self._commit(
            StoreEvent.FEEDBACK_CHANGED,
            replace(
                self._state,
                sessions=tuple(updated if s.id == session_id else s for s in self._state.sessions),
            ),
            session=updated,
            message_id=message_id,
            feedback=feedback,
        )
        return True

    def set_syncing(self, syncing: bool) -> None:
        self._commit(StoreEvent.SYNCING_CHANGED, replace(self._state, is_syncing=syncing))

    # endregion

    # region 模型配置与语言

    def update_config(self, provider: AIProvider, **changes: Any) -> ModelConfig:
        """更新某个提供商的配置；若它是当前活动提供商，活动配置同步更新"""
        changes.pop("provider", None)
        new_config = self._state.configs[provider].model_copy(update=changes)
        configs = dict(self._state.configs)
        configs[provider] = new_config
        active = self._state.active_config
        if active.provider == provider:
            active = new_config
        self._commit(
            StoreEvent.CONFIG_CHANGED,
            replace(self._state, configs=MappingProxyType(configs), active_config=active),
            provider=provider,
        )
        return new_config

    def set_active_provider(self, provider: AIProvider) -> None:
        self._commit(
            StoreEvent.CONFIG_CHANGED,
            replace(self._state, active_config=self._state.configs[provider]),
            provider=provider,
        )

    def set_language(self, language: Language) -> None:
        self._commit(StoreEvent.LANGUAGE_CHANGED, replace(self._state, language=language))

    def hydrate(
        self,
        configs: Optional[Mapping[AIProvider, ModelConfig]] = None,
        active_provider: Optional[AIProvider] = None,
        language: Optional[Language] = None,
    ) -> None:
        """用本地持久化的偏好恢复配置"""
        merged = dict(self._state.configs)
        merged.update(configs or {})
        active = merged[active_provider or self._state.active_config.provider]
        self._commit(
            StoreEvent.HYDRATED,
            replace(
                self._state,
                configs=MappingProxyType(merged),
                active_config=active,
                language=language or self._state.language,
            ),
        )

    # endregion
