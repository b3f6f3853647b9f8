"""
Medical report LLM 结构化输出 schema（用于 Gemini response_schema）

原则：
- 模型只负责解读文本；id、时间戳、报告图片等由代码侧补齐
- dimensions 名义上 10 个，但代码侧接受更短的列表
"""

SEVERITY_VALUES = ["low", "medium", "high", "info"]

MEDICAL_ANALYSIS_SCHEMA = {
    "type": "object",
    "properties": {
        "reportType": {"type": "string", "description": "确定的报告类型"},
        "summary": {"type": "string", "description": "整个报告的全局结论"},
        "dimensions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "conclusion": {"type": "string", "description": "1 句核心结论"},
                    "highlights": {
                        "type": "array",
                        "items": {"type": "string"},
                        "description": "2-3 个核心发现",
                    },
                    "content": {"type": "string", "description": "深入的临床解读"},
                    "severity": {"type": "string", "enum": SEVERITY_VALUES},
                    "visualHint": {"type": "string", "description": "图标建议"},
                },
                "required": ["title", "conclusion", "highlights", "content", "severity"],
            },
        },
        "disclaimer": {"type": "string", "description": "专业的免责声明"},
    },
    "required": ["reportType", "summary", "dimensions", "disclaimer"],
}
