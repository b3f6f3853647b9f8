"""
Analysis Request Pipeline.

Two flows, both driven from the UI:

- upload:  idle -> analyzing -> idle
  image -> analysis -> seed message -> new session -> store -> push
- chat:    idle -> thinking -> idle
  question -> optimistic user message -> reply -> append -> push

Failures are surfaced through the error banner; no partial session is
created on analysis failure and the optimistic user message is kept on chat
failure.
"""

import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from apps.common.models.report import (
    AIProvider,
    ChatSession,
    FeedbackType,
    Language,
    Message,
    ReportType,
)
from apps.common.utils import to_data_url
from apps.session.errors import ErrorBanner, ErrorCategory
from apps.session.store import SessionStore
from apps.session.sync import SyncOrchestrator

logger = logging.getLogger(__name__)

ANALYSIS_ACK = {
    Language.ZH: "深度解读完成，您可以针对报告细节进行追问。",
    Language.EN: "Analysis complete. Feel free to ask about any detail of the report.",
}

_TITLE_TEMPLATE = {
    Language.ZH: "{report_type} 报告分析 - {date}",
    Language.EN: "{report_type} report analysis - {date}",
}

# 前置条件不满足时不调用模型，只返回原因（不进入错误横幅）
_SKIP_REASONS = {
    Language.ZH: {
        "analysis_busy": "上一份报告仍在分析中，请稍候。",
        "user_changed": "账号已切换，分析结果已丢弃。",
        "empty_message": "消息内容为空。",
        "no_session": "没有可追问的会话。",
        "no_analysis": "当前会话没有可追问的报告。",
        "reply_pending": "上一条回复尚未完成，请稍候。",
        "session_deleted": "会话已删除，回复已丢弃。",
    },
    Language.EN: {
        "analysis_busy": "Another report is still being analyzed, please wait.",
        "user_changed": "Account changed, the analysis result was discarded.",
        "empty_message": "Message is empty.",
        "no_session": "No session to ask about.",
        "no_analysis": "This session has no report to ask about.",
        "reply_pending": "Still replying to the previous message, please wait.",
        "session_deleted": "Session was deleted, the reply was discarded.",
    },
}


def build_session_title(report_type: ReportType, language: Language, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    template = _TITLE_TEMPLATE.get(language, _TITLE_TEMPLATE[Language.ZH])
    return template.format(report_type=report_type.value, date=now.strftime("%Y/%m/%d"))


class ReportPipeline:
    """上传分析与追问对话的编排；远端写入交给 SyncOrchestrator"""

    def __init__(
        self,
        store: SessionStore,
        sync: SyncOrchestrator,
        analyzer: Any,
        chatter: Any,
        errors: ErrorBanner,
        connection_probe: Optional[Callable[[], Awaitable[bool]]] = None,
    ):
        self.store = store
        self.sync = sync
        self.analyzer = analyzer
        self.chatter = chatter
        self.errors = errors
        self.connection_probe = connection_probe

        self.is_analyzing = False
        self.chat_input = ""
        self._thinking: Set[str] = set()
        # 最近一次 analyze_report / send_message 返回 None 且不是失败时的原因
        self.skip_reason: Optional[str] = None

    @property
    def is_thinking(self) -> bool:
        return bool(self._thinking)

    def is_thinking_for(self, session_id: str) -> bool:
        return session_id in self._thinking

    def _model_name(self) -> Optional[str]:
        return self.store.state.active_config.model_name or None

    def _skip(self, reason: str, language: Language) -> None:
        self.skip_reason = _SKIP_REASONS.get(language, _SKIP_REASONS[Language.ZH])[reason]
        logger.info("Request skipped: %s", reason)

    def _fail(self, category: ErrorCategory, error: Any, language: Language) -> None:
        self.skip_reason = None
        self.errors.report(category, error, language=language)

    # region 上传分析

    async def analyze_report(self, image_b64: str, report_type: ReportType) -> Optional[ChatSession]:
        state = self.store.state
        language = state.language
        if state.user is None:
            self._fail(ErrorCategory.LOGIN_REQUIRED, None, language)
            return None
        if self.is_analyzing:
            self._skip("analysis_busy", language)
            return None

        self.is_analyzing = True
        self.errors.clear()
        try:
            try:
                analysis = await self.analyzer.execute(
                    image_b64, report_type, language, model_name=self._model_name()
                )
            # pylint: disable=broad-exception-caught
            except Exception as e:
                logger.error("Analysis failed (status=%s): %s", getattr(e, "status_code", None), e)
                self._fail(ErrorCategory.ANALYSIS, e, language)
                return None

            if self.store.state.user is None or self.store.state.user.id != state.user.id:
                self._skip("user_changed", language)
                return None

            message = Message(
                role="assistant",
                content=ANALYSIS_ACK.get(language, ANALYSIS_ACK[Language.ZH]),
                analysis=analysis,
                image=to_data_url(image_b64),
                report_type=report_type,
                created_at=analysis.timestamp,
            )
            session = ChatSession(
                title=build_session_title(report_type, language),
                messages=[message],
            )
            self.skip_reason = None
            self.store.add_session(session)
            await self.sync.flush(session.id)
            return session
        finally:
            self.is_analyzing = False

    # endregion

    # region 追问对话

    async def send_message(
        self, text: Optional[str] = None, session_id: Optional[str] = None
    ) -> Optional[Message]:
        """
        针对当前会话中最近一次分析进行追问。

        缺少输入、会话、分析结果或登录用户时不调用模型，返回 None 并记录 skip_reason。
        """
        content = (self.chat_input if text is None else text).strip()
        state = self.store.state
        session = self.store.get_session(session_id or state.current_session_id)
        analysis = session.last_analysis() if session else None
        language = state.language
        if state.user is None:
            self._fail(ErrorCategory.LOGIN_REQUIRED, None, language)
            return None
        if not content:
            self._skip("empty_message", language)
            return None
        if session is None:
            self._skip("no_session", language)
            return None
        if analysis is None:
            self._skip("no_analysis", language)
            return None
        if session.id in self._thinking:
            self._skip("reply_pending", language)
            return None

        user_message = Message(role="user", content=content)
        messages: List[Message] = list(session.messages) + [user_message]
        self.store.update_session(session.id, messages=messages)
        self.chat_input = ""

        self._thinking.add(session.id)
        try:
            history: List[Dict[str, str]] = [{"role": m.role, "content": m.content} for m in messages]
            try:
                reply = await self.chatter.execute(
                    history, analysis, language, model_name=self._model_name()
                )
            # pylint: disable=broad-exception-caught
            except Exception as e:
                logger.error(
                    "Chat failed for session %s (status=%s): %s", session.id, getattr(e, "status_code", None), e
                )
                self._fail(ErrorCategory.CHAT, e, language)
                return None

            latest = self.store.get_session(session.id)
            if latest is None:
                self._skip("session_deleted", language)
                return None

            self.skip_reason = None
            assistant_message = Message(role="assistant", content=reply)
            self.store.update_session(session.id, messages=list(latest.messages) + [assistant_message])
            await self.sync.flush(session.id)
            return assistant_message
        finally:
            self._thinking.discard(session.id)

    # endregion

    # region 反馈与配置

    def submit_feedback(self, session_id: str, message_id: str, feedback: FeedbackType) -> bool:
        """本地反馈立即生效；远端写入失败只记录日志"""
        if self.store.state.user is None:
            return False
        return self.store.set_message_feedback(session_id, message_id, feedback)

    async def save_model_config(
        self, provider: AIProvider, base_url: str = "", model_name: str = ""
    ) -> bool:
        """测试连接，通过后保存配置并设为活动提供商"""
        ok = False
        if self.connection_probe is not None:
            ok = await self.connection_probe()
        if not ok:
            return False
        self.store.update_config(provider, base_url=base_url, model_name=model_name)
        self.store.set_active_provider(provider)
        return True

    # endregion
