"""AI 提供商相关异常"""

from typing import Optional


class ProviderError(Exception):
    """分析/对话调用失败（鉴权、配额、网络、结构化输出不合法）"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MalformedAnalysisError(ProviderError):
    """模型输出缺少 summary / disclaimer / dimensions"""
