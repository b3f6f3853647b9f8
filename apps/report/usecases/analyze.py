"""
Report Analyze Usecase.

Turns an uploaded report image into a structured `MedicalAnalysis` using the
Gemini structured-output client.
"""

import logging
from typing import Optional

from libs.api_keys.api_key_manager import get_default_api_key_manager
from libs.llm_gemini.gemini_client import GeminiClientConfig, GeminiStructuredClient

from apps.common.models.report import Language, MedicalAnalysis, ReportType
from apps.common.utils import bytes_to_data_url, decode_images_b64
from apps.report.exceptions import ProviderError
from apps.report.llm_schema import MEDICAL_ANALYSIS_SCHEMA
from apps.report.postprocess import finalize_analysis
from apps.report.prompt_builder import (
    build_analysis_prompt,
    build_analysis_system_instruction,
    build_illustration_prompt,
)

logger = logging.getLogger(__name__)


class AnalyzeReportUsecase:
    """Usecase for interpreting a medical report image."""

    def __init__(
        self,
        gemini_model_name: str,
        image_model_name: str = "",
        client: Optional[GeminiStructuredClient] = None,
    ):
        self.client = client or GeminiStructuredClient(
            api_key_manager=get_default_api_key_manager(),
            config=GeminiClientConfig(
                model_name=gemini_model_name,
                temperature=0.2,
                image_model_name=image_model_name,
            ),
        )

    async def execute(
        self,
        image_b64: str,
        report_type: ReportType,
        language: Language = Language.ZH,
        model_name: Optional[str] = None,
    ) -> MedicalAnalysis:
        images_bytes = decode_images_b64([image_b64])
        if not images_bytes:
            raise ProviderError("无法解码上传的报告图片")

        llm_result = await self.client.generate_json_async(
            prompt=build_analysis_prompt(language, report_type.value),
            images=images_bytes,
            schema=MEDICAL_ANALYSIS_SCHEMA,
            system_instruction=build_analysis_system_instruction(language),
            model_name=model_name,
        )
        if isinstance(llm_result, dict) and llm_result.get("error"):
            raise ProviderError(str(llm_result["error"]), status_code=llm_result.get("status_code"))

        analysis = finalize_analysis(llm_result, report_type)

        illustration = await self._illustrate(analysis.summary)
        if illustration:
            analysis = analysis.model_copy(update={"generated_illustration": illustration})
        return analysis

    async def _illustrate(self, summary: str) -> Optional[str]:
        """插图是锦上添花，失败只记录日志"""
        if not self.client.config.image_model_name:
            return None
        result = await self.client.generate_image_async(build_illustration_prompt(summary))
        if result.get("error"):
            logger.info("Illustration skipped: %s", result["error"])
            return None
        return bytes_to_data_url(result["data"], result.get("mime_type", "image/png"))
