import json
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, List, Optional

import PIL.Image
import google.generativeai as genai

from libs.api_keys.api_key_manager import APIKeyManager

logger = logging.getLogger(__name__)


@dataclass
class GeminiClientConfig:
    model_name: str
    temperature: float = 0.2
    image_model_name: str = ""


class GeminiStructuredClient:
    """
    Gemini 多模态 + 结构化输出封装（原子能力）

    约定：
    - 只负责“调用模型并按 schema 返回 JSON / 文本 / 图片”
    - 不包含任何业务 prompt/schema
    - 失败时返回 {"error": "..."}，不抛异常
    """

    def __init__(self, api_key_manager: APIKeyManager, config: GeminiClientConfig):
        self.api_key_manager = api_key_manager
        self.config = config
        self.current_api_key: Optional[str] = None
        self.client_ready: bool = False
        self._init_client()

    def _init_client(self) -> None:
        api_key = self.api_key_manager.get_key()
        if not api_key:
            self.client_ready = False
            return
        try:
            genai.configure(api_key=api_key)
            self.current_api_key = api_key
            self.client_ready = True
        except Exception as e:
            logger.error("Gemini client init failed: %s", e)
            self.api_key_manager.mark_failed(api_key)
            self.current_api_key = None
            self.client_ready = False

    def _ensure_ready(self) -> Optional[Dict[str, Any]]:
        if not self.client_ready:
            self._init_client()
            if not self.client_ready:
                return {"error": "Gemini 客户端不可用（无可用 API Key 或初始化失败）"}
        return None

    def _handle_failure(self, action: str, e: Exception) -> Dict[str, Any]:
        msg = str(e)
        lowered = msg.lower()
        result: Dict[str, Any] = {"error": f"Gemini 调用失败: {msg}"}
        # google.api_core 异常自带 HTTP 状态码
        code = getattr(e, "code", None)
        if isinstance(code, int):
            result["status_code"] = code
        if "API key" in msg or "authentication" in lowered:
            if self.current_api_key:
                self.api_key_manager.mark_failed(self.current_api_key)
            self.client_ready = False
            result.setdefault("status_code", 401)
        elif "quota" in lowered or "resource exhausted" in lowered or "429" in msg:
            result.setdefault("status_code", 429)
        logger.warning("Gemini %s failed: %s", action, msg)
        return result

    @staticmethod
    def load_images_from_bytes(images: List[bytes]) -> List[PIL.Image.Image]:
        out: List[PIL.Image.Image] = []
        for b in images or []:
            try:
                img = PIL.Image.open(BytesIO(b))
                img.load()
                out.append(img)
            except (OSError, ValueError):
                continue
        return out

    async def generate_json_async(
        self,
        prompt: str,
        images: List[bytes],
        schema: Dict[str, Any],
        system_instruction: Optional[str] = None,
        model_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        not_ready = self._ensure_ready()
        if not_ready:
            return not_ready

        try:
            model = genai.GenerativeModel(
                model_name or self.config.model_name, system_instruction=system_instruction
            )
            input_content: List[Any] = self.load_images_from_bytes(images) + [prompt]
            generation_config = genai.GenerationConfig(
                response_mime_type="application/json",
                response_schema=schema,
                temperature=self.config.temperature,
            )
            response = await model.generate_content_async(
                input_content, generation_config=generation_config
            )
            result = json.loads(response.text)
        except json.JSONDecodeError as e:
            return {"error": f"Gemini JSON 解析失败: {e}"}
        except Exception as e:
            return self._handle_failure("generate_json", e)

        if not isinstance(result, dict):
            return {"error": "Gemini 返回的 JSON 不是对象"}
        return result

    async def generate_text_async(
        self,
        contents: List[Dict[str, Any]],
        system_instruction: Optional[str] = None,
        temperature: Optional[float] = None,
        model_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """多轮对话文本生成，contents 为 [{"role": "user"|"model", "parts": [text]}]"""
        not_ready = self._ensure_ready()
        if not_ready:
            return not_ready

        try:
            model = genai.GenerativeModel(
                model_name or self.config.model_name, system_instruction=system_instruction
            )
            generation_config = genai.GenerationConfig(
                temperature=self.config.temperature if temperature is None else temperature,
            )
            response = await model.generate_content_async(
                contents, generation_config=generation_config
            )
            return {"text": response.text or ""}
        except Exception as e:
            return self._handle_failure("generate_text", e)

    async def generate_image_async(self, prompt: str) -> Dict[str, Any]:
        """生成图片，返回 {"data": bytes, "mime_type": str}"""
        if not self.config.image_model_name:
            return {"error": "未配置图片模型"}
        not_ready = self._ensure_ready()
        if not_ready:
            return not_ready

        try:
            model = genai.GenerativeModel(self.config.image_model_name)
            response = await model.generate_content_async(prompt)
            for part in response.candidates[0].content.parts:
                inline = getattr(part, "inline_data", None)
                if inline is not None and inline.data:
                    return {"data": inline.data, "mime_type": inline.mime_type or "image/png"}
        except Exception as e:
            return self._handle_failure("generate_image", e)
        return {"error": "Gemini 未返回图片"}

    async def ping_async(self) -> bool:
        """轻量连通性检查，任何异常都视为 False"""
        result = await self.generate_text_async([{"role": "user", "parts": ["ping"]}])
        return bool(result.get("text"))
