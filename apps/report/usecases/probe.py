import logging

from libs.llm_gemini.gemini_client import GeminiStructuredClient

logger = logging.getLogger(__name__)


async def check_connection(client: GeminiStructuredClient) -> bool:
    """保存模型配置前的连通性探测，异常一律视为失败"""
    try:
        return bool(await client.ping_async())
    # pylint: disable=broad-exception-caught
    except Exception as e:
        logger.error("Connection test failed: %s", e)
        return False
