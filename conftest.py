"""
测试共用的替身与 fixture

- FakeRemoteStore: 内存版 PostgREST 后端，按 id upsert，记录调用次数
- FakeAnalyzer / FakeChatter: 报告解读与追问的替身，可注入失败或阻塞
- FakeGeminiClient: 用例层使用的模型客户端替身
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from apps.common.models.report import (
    AnalysisDimension,
    Language,
    MedicalAnalysis,
    ReportType,
    Severity,
    UserProfile,
)
from apps.session.errors import ErrorBanner
from apps.session.store import SessionStore
from apps.session.sync import SyncOrchestrator
from libs.llm_gemini.gemini_client import GeminiClientConfig
from libs.remote_store.postgrest_client import join_sessions_with_messages

# "hello"，不是有效图片，足够覆盖数据流
SAMPLE_IMAGE_B64 = "aGVsbG8="


def make_analysis(report_type: ReportType = ReportType.BLOOD, timestamp: Optional[int] = None) -> MedicalAnalysis:
    data: Dict[str, Any] = {
        "report_type": report_type,
        "dimensions": [
            AnalysisDimension(
                title="血常规指标",
                conclusion="白细胞略高",
                highlights=["WBC 10.5"],
                content="可能存在轻度炎症。",
                severity=Severity.MEDIUM,
            )
        ],
        "summary": "整体基本正常，白细胞略高。",
        "disclaimer": "仅供参考，不能替代医生诊断。",
    }
    if timestamp is not None:
        data["timestamp"] = timestamp
    return MedicalAnalysis(**data)


class FakeRemoteStore:
    """内存后端：行为与真实适配器的返回结构一致"""

    def __init__(self):
        self.sessions: Dict[str, Dict[str, Any]] = {}
        self.messages: Dict[str, Dict[str, Any]] = {}
        self.feedback: Dict[tuple, str] = {}

        self.upsert_session_calls = 0
        self.upsert_messages_calls = 0
        self.delete_calls: List[str] = []
        self.feedback_calls = 0
        self.fetch_calls = 0
        self.pushed_message_counts: List[int] = []

        self.fetch_error: Optional[BaseException] = None
        self.push_error: Optional[BaseException] = None
        self.delete_error: Optional[BaseException] = None
        self.feedback_error: Optional[BaseException] = None
        self.fetch_gate: Optional[asyncio.Event] = None

    async def upsert_session(self, row: Dict[str, Any]) -> None:
        self.upsert_session_calls += 1
        if self.push_error is not None:
            raise self.push_error
        self.sessions[row["id"]] = {**self.sessions.get(row["id"], {}), **row}

    async def upsert_messages(self, rows: List[Dict[str, Any]]) -> None:
        self.upsert_messages_calls += 1
        self.pushed_message_counts.append(len(rows))
        if self.push_error is not None:
            raise self.push_error
        for row in rows:
            self.messages[row["id"]] = {**self.messages.get(row["id"], {}), **row}

    async def delete_session(self, session_id: str) -> None:
        self.delete_calls.append(session_id)
        if self.delete_error is not None:
            raise self.delete_error
        self.messages = {k: v for k, v in self.messages.items() if v["session_id"] != session_id}
        self.sessions.pop(session_id, None)

    async def upsert_feedback(self, message_id: str, user_id: str, feedback_type: str) -> None:
        self.feedback_calls += 1
        if self.feedback_error is not None:
            raise self.feedback_error
        self.feedback[(message_id, user_id)] = feedback_type

    async def fetch_sessions_with_messages(self, user_id: str) -> List[Dict[str, Any]]:
        self.fetch_calls += 1
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fetch_error is not None:
            raise self.fetch_error
        session_rows = [s for s in self.sessions.values() if s["user_id"] == user_id]
        return join_sessions_with_messages(session_rows, list(self.messages.values()))


class FakeAnalyzer:
    def __init__(self, analysis: Optional[MedicalAnalysis] = None, error: Optional[BaseException] = None):
        self.analysis = analysis or make_analysis()
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def execute(self, image_b64, report_type, language=Language.ZH, model_name=None):
        self.calls.append(
            {"image_b64": image_b64, "report_type": report_type, "language": language, "model_name": model_name}
        )
        if self.error is not None:
            raise self.error
        return self.analysis


class FakeChatter:
    def __init__(self, reply: str = "白细胞略高通常与炎症有关。", error: Optional[BaseException] = None):
        self.reply = reply
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.histories: List[List[Dict[str, str]]] = []

    async def execute(self, history, analysis, language=Language.ZH, model_name=None):
        self.histories.append(list(history))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.reply


SAMPLE_LLM_RESULT = {
    "reportType": "BLOOD",
    "summary": "整体基本正常。",
    "dimensions": [
        {
            "title": "白细胞",
            "conclusion": "略高",
            "highlights": ["WBC 10.5", "中性粒细胞偏高"],
            "content": "提示可能存在轻度感染。",
            "severity": "medium",
            "visualHint": "shield",
        }
    ],
    "disclaimer": "仅供参考。",
}


class FakeGeminiClient:
    """GeminiStructuredClient 的替身：返回预设结果并记录调用"""

    def __init__(
        self, json_result=None, text_result=None, image_result=None, image_model_name="", model_name="gemini-2.5-flash"
    ):
        self.config = GeminiClientConfig(model_name=model_name, image_model_name=image_model_name)
        self.json_result = json_result if json_result is not None else dict(SAMPLE_LLM_RESULT)
        self.text_result = text_result if text_result is not None else {"text": "好的。"}
        self.image_result = image_result if image_result is not None else {"error": "未配置图片模型"}
        self.json_calls = []
        self.text_calls = []

    async def generate_json_async(self, prompt, images, schema, system_instruction=None, model_name=None):
        self.json_calls.append(
            {
                "prompt": prompt,
                "images": images,
                "model_name": model_name,
                "resolved_model": model_name or self.config.model_name,
            }
        )
        return self.json_result

    async def generate_text_async(self, contents, system_instruction=None, temperature=None, model_name=None):
        self.text_calls.append(
            {
                "contents": contents,
                "system_instruction": system_instruction,
                "resolved_model": model_name or self.config.model_name,
            }
        )
        return self.text_result

    async def generate_image_async(self, prompt):
        return self.image_result

    async def ping_async(self):
        raise RuntimeError("connection reset")


@pytest.fixture
def user():
    return UserProfile(id="user-1", email="a@example.com")


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def errors():
    return ErrorBanner()


@pytest.fixture
def sync(store, remote, errors):
    orchestrator = SyncOrchestrator(store=store, remote=remote, errors=errors)
    orchestrator.attach()
    yield orchestrator
    orchestrator.detach()
