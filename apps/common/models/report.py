"""
Report / Session Models.

Pydantic models shared by the session store, the sync layer and the report
pipeline. Analysis payloads are stored in the remote `analysis` JSON column
with camelCase keys, so the models accept and emit both spellings.
"""

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AIProvider(str, Enum):
    GEMINI = "GEMINI"
    FASTGPT = "FASTGPT"
    DIFY = "DIFY"
    ZHIPU = "ZHIPU"
    CUSTOM = "CUSTOM"


class ReportType(str, Enum):
    BLOOD = "BLOOD"
    CT = "CT"
    MRI = "MRI"
    ULTRASOUND = "ULTRASOUND"
    URINE = "URINE"
    TUMOR_MARKER = "TUMOR_MARKER"
    LIVER_FUNCTION = "LIVER_FUNCTION"
    UNKNOWN = "UNKNOWN"


class Language(str, Enum):
    ZH = "ZH"
    EN = "EN"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    INFO = "info"


Role = Literal["user", "assistant"]
FeedbackType = Literal["up", "down"]


def new_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    return int(time.time() * 1000)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class UserProfile(BaseModel):
    id: str = Field(..., min_length=1, description="Opaque user id from the identity provider")
    email: str = ""
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ModelConfig(BaseModel):
    provider: AIProvider
    base_url: str = ""
    model_name: str = ""

    model_config = ConfigDict(frozen=True)


class AnalysisDimension(_CamelModel):
    title: str
    conclusion: str = Field("", description="One-sentence core conclusion")
    highlights: List[str] = Field(default_factory=list, description="2-3 short findings")
    content: str = Field("", description="Long-form interpretation")
    severity: Severity = Severity.INFO
    visual_hint: Optional[str] = Field(None, description="Icon keyword for the renderer")


class MedicalAnalysis(_CamelModel):
    id: str = Field(default_factory=new_id)
    timestamp: int = Field(default_factory=now_ms, description="Creation time, epoch ms")
    report_type: ReportType = ReportType.UNKNOWN
    dimensions: List[AnalysisDimension] = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    disclaimer: str = Field(..., min_length=1)
    generated_illustration: Optional[str] = Field(None, description="data: URL of the illustration")


class Message(BaseModel):
    id: str = Field(default_factory=new_id)
    role: Role
    content: str
    analysis: Optional[MedicalAnalysis] = None
    image: Optional[str] = Field(None, description="Uploaded report as a data: URL")
    report_type: Optional[ReportType] = None
    feedback: Optional[FeedbackType] = None
    created_at: int = Field(default_factory=now_ms, description="Client clock, epoch ms")

    model_config = ConfigDict(frozen=True)


class ChatSession(BaseModel):
    id: str = Field(default_factory=new_id)
    title: str
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)

    def last_analysis(self) -> Optional[MedicalAnalysis]:
        """最近一条带分析结果的消息（即当前讨论的报告）"""
        for message in reversed(self.messages):
            if message.analysis is not None:
                return message.analysis
        return None


DEFAULT_CONFIGS = {
    # model_name 为空时使用 GEMINI_MODEL_NAME 配置的模型
    AIProvider.GEMINI: ModelConfig(provider=AIProvider.GEMINI),
    AIProvider.FASTGPT: ModelConfig(provider=AIProvider.FASTGPT),
    AIProvider.DIFY: ModelConfig(provider=AIProvider.DIFY),
    AIProvider.ZHIPU: ModelConfig(provider=AIProvider.ZHIPU),
    AIProvider.CUSTOM: ModelConfig(provider=AIProvider.CUSTOM),
}
