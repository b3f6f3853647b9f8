"""
Report Chat Usecase.

Answers follow-up questions about an analysed report.
"""

from typing import Dict, List, Optional

from libs.api_keys.api_key_manager import get_default_api_key_manager
from libs.llm_gemini.gemini_client import GeminiClientConfig, GeminiStructuredClient

from apps.common.models.report import Language, MedicalAnalysis
from apps.report.exceptions import ProviderError
from apps.report.prompt_builder import build_chat_system_instruction

FALLBACK_REPLY = {
    Language.ZH: "系统响应异常。",
    Language.EN: "The system returned an empty response.",
}


class ChatAboutReportUsecase:
    """Usecase for follow-up conversation about a report."""

    # pylint: disable=too-few-public-methods

    def __init__(self, gemini_model_name: str, client: Optional[GeminiStructuredClient] = None):
        self.client = client or GeminiStructuredClient(
            api_key_manager=get_default_api_key_manager(),
            config=GeminiClientConfig(model_name=gemini_model_name, temperature=0.7),
        )

    async def execute(
        self,
        history: List[Dict[str, str]],
        analysis: MedicalAnalysis,
        language: Language = Language.ZH,
        model_name: Optional[str] = None,
    ) -> str:
        """history: [{"role": "user"|"assistant", "content": str}]，按时间顺序"""
        contents = [
            {"role": "user" if h["role"] == "user" else "model", "parts": [h["content"]]}
            for h in history
        ]
        result = await self.client.generate_text_async(
            contents,
            system_instruction=build_chat_system_instruction(analysis, language),
            temperature=0.7,
            model_name=model_name,
        )
        if result.get("error"):
            raise ProviderError(str(result["error"]), status_code=result.get("status_code"))
        return result.get("text") or FALLBACK_REPLY.get(language, FALLBACK_REPLY[Language.ZH])
