import base64
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, Field

from apps.common.models.report import (
    AIProvider,
    ChatSession,
    FeedbackType,
    Language,
    ReportType,
    UserProfile,
)
from apps.common.utils import read_upload_files
from apps.deps import AppContainer, get_container
from apps.session.store import AppState


class SignInRequest(BaseModel):
    id: str = Field(..., min_length=1)
    email: str = ""
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


class AnalyzeRequest(BaseModel):
    image_b64: str = Field(..., min_length=1)
    report_type: ReportType = ReportType.UNKNOWN


class ChatRequest(BaseModel):
    content: str = Field(..., min_length=1)
    session_id: Optional[str] = None


class FeedbackRequest(BaseModel):
    session_id: str = Field(..., min_length=1)
    feedback: FeedbackType


class CurrentSessionRequest(BaseModel):
    session_id: Optional[str] = None


class ModelConfigRequest(BaseModel):
    provider: AIProvider
    base_url: str = ""
    model_name: str = ""


class LanguageRequest(BaseModel):
    language: Language


class StateResponse(BaseModel):
    success: bool
    state: Dict[str, Any] = {}
    error: Optional[str] = None


class SessionResponse(BaseModel):
    success: bool
    session: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class SessionListResponse(BaseModel):
    success: bool
    sessions: List[Dict[str, Any]] = []
    error: Optional[str] = None


class ChatResponse(BaseModel):
    success: bool
    message: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class ActionResponse(BaseModel):
    success: bool
    error: Optional[str] = None


def _dump_session(session: ChatSession) -> Dict[str, Any]:
    return session.model_dump(mode="json", by_alias=True)


def _dump_state(state: AppState, container: AppContainer) -> Dict[str, Any]:
    pipeline = container.pipeline
    return {
        "user": state.user.model_dump(mode="json") if state.user else None,
        "sessions": [_dump_session(s) for s in state.sessions],
        "current_session_id": state.current_session_id,
        "configs": {p.value: c.model_dump(mode="json") for p, c in state.configs.items()},
        "active_config": state.active_config.model_dump(mode="json"),
        "language": state.language.value,
        "is_syncing": state.is_syncing,
        "is_analyzing": pipeline.is_analyzing,
        "is_thinking": pipeline.is_thinking,
        "error": container.errors.message,
    }


def _pipeline_error(container: AppContainer) -> Optional[str]:
    """未执行的原因优先；否则是本次失败写入错误横幅的信息"""
    return container.pipeline.skip_reason or container.errors.message


def build_report_router() -> APIRouter:
    router = APIRouter()

    # region 登录态

    @router.post("/api/auth/session", response_model=StateResponse)
    async def sign_in(req: SignInRequest, container: AppContainer = Depends(get_container)):
        container.store.set_user(UserProfile(**req.model_dump()))
        # 登录后的全量拉取在后台任务中进行，这里等它落地再返回
        await container.sync.flush()
        return StateResponse(success=True, state=_dump_state(container.store.state, container))

    @router.delete("/api/auth/session", response_model=ActionResponse)
    async def sign_out(container: AppContainer = Depends(get_container)):
        container.store.set_user(None)
        return ActionResponse(success=True)

    @router.get("/api/state", response_model=StateResponse)
    async def get_state(container: AppContainer = Depends(get_container)):
        return StateResponse(success=True, state=_dump_state(container.store.state, container))

    # endregion

    # region 会话

    @router.get("/api/sessions", response_model=SessionListResponse)
    async def list_sessions(container: AppContainer = Depends(get_container)):
        sessions = [_dump_session(s) for s in container.store.state.sessions]
        return SessionListResponse(success=True, sessions=sessions)

    @router.put("/api/sessions/current", response_model=ActionResponse)
    async def set_current_session(
        req: CurrentSessionRequest, container: AppContainer = Depends(get_container)
    ):
        if not container.store.set_current_session_id(req.session_id):
            return ActionResponse(success=False, error="session not found")
        return ActionResponse(success=True)

    @router.delete("/api/sessions/{session_id}", response_model=ActionResponse)
    async def delete_session(session_id: str, container: AppContainer = Depends(get_container)):
        if not container.store.delete_session(session_id):
            return ActionResponse(success=False, error="session not found")
        return ActionResponse(success=True)

    # endregion

    # region 分析与对话

    @router.post("/api/reports/analyze", response_model=SessionResponse)
    async def analyze_report(req: AnalyzeRequest, container: AppContainer = Depends(get_container)):
        session = await container.pipeline.analyze_report(req.image_b64, req.report_type)
        if session is None:
            return SessionResponse(success=False, error=_pipeline_error(container))
        return SessionResponse(success=True, session=_dump_session(session))

    @router.post("/api/reports/analyze_upload", response_model=SessionResponse)
    async def analyze_report_upload(
        report_type: ReportType = Form(ReportType.UNKNOWN),
        images: List[UploadFile] = File(default_factory=list),
        container: AppContainer = Depends(get_container),
    ):
        images_bytes = await read_upload_files(images)
        if not images_bytes:
            return SessionResponse(success=False, error="no image uploaded")
        image_b64 = base64.b64encode(images_bytes[0]).decode("ascii")
        session = await container.pipeline.analyze_report(image_b64, report_type)
        if session is None:
            return SessionResponse(success=False, error=_pipeline_error(container))
        return SessionResponse(success=True, session=_dump_session(session))

    @router.post("/api/chat", response_model=ChatResponse)
    async def chat(req: ChatRequest, container: AppContainer = Depends(get_container)):
        message = await container.pipeline.send_message(req.content, session_id=req.session_id)
        if message is None:
            return ChatResponse(success=False, error=_pipeline_error(container))
        return ChatResponse(success=True, message=message.model_dump(mode="json"))

    @router.post("/api/messages/{message_id}/feedback", response_model=ActionResponse)
    async def message_feedback(
        message_id: str, req: FeedbackRequest, container: AppContainer = Depends(get_container)
    ):
        ok = container.pipeline.submit_feedback(req.session_id, message_id, req.feedback)
        return ActionResponse(success=ok, error=None if ok else "message not found")

    # endregion

    # region 配置

    @router.get("/api/config", response_model=StateResponse)
    async def get_config(container: AppContainer = Depends(get_container)):
        state = container.store.state
        return StateResponse(
            success=True,
            state={
                "configs": {p.value: c.model_dump(mode="json") for p, c in state.configs.items()},
                "active_config": state.active_config.model_dump(mode="json"),
            },
        )

    @router.put("/api/config", response_model=ActionResponse)
    async def save_config(req: ModelConfigRequest, container: AppContainer = Depends(get_container)):
        ok = await container.pipeline.save_model_config(req.provider, req.base_url, req.model_name)
        return ActionResponse(success=ok, error=None if ok else "connection test failed")

    @router.put("/api/language", response_model=ActionResponse)
    async def set_language(req: LanguageRequest, container: AppContainer = Depends(get_container)):
        container.store.set_language(req.language)
        return ActionResponse(success=True)

    @router.delete("/api/error", response_model=ActionResponse)
    async def clear_error(container: AppContainer = Depends(get_container)):
        container.errors.clear()
        return ActionResponse(success=True)

    # endregion

    return router
