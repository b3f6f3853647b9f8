import json

from apps.common.models.report import Language, MedicalAnalysis

_TARGET_LANGUAGE = {
    Language.ZH: "Chinese (Simplified)",
    Language.EN: "English",
}


def _target_language(language: Language) -> str:
    return _TARGET_LANGUAGE.get(language, _TARGET_LANGUAGE[Language.ZH])


def build_analysis_system_instruction(language: Language) -> str:
    target = _target_language(language)
    return f"""你是“小白卡助手”，一个顶尖的医学报告分析专家。
任务：提供极其详尽的报告解读。

结构要求（JSON 格式）：
1. reportType：确定的报告类型（BLOOD / CT / MRI / ULTRASOUND / URINE / TUMOR_MARKER / LIVER_FUNCTION / UNKNOWN）。
2. summary：整个报告的全局结论。
3. dimensions：数组，必须包含 10 个维度。每个维度包含：
   - title：维度名称
   - conclusion：1 句核心结论
   - highlights：包含 2-3 个核心发现的数组
   - content：深入的临床解读
   - severity：'low' | 'medium' | 'high' | 'info'
   - visualHint：图标建议
4. disclaimer：专业的免责声明。

严格遵循：所有文本必须是 {target}。内容要专业且富有洞察力。
"""


def build_analysis_prompt(language: Language, report_type: str) -> str:
    target = _target_language(language)
    return (
        f"用户声明的报告类别：{report_type}。"
        f"请严格以 {target} 提供深度分析。确保每个维度都有 conclusion 和至少 2 个 highlights。"
    )


def build_chat_system_instruction(analysis: MedicalAnalysis, language: Language) -> str:
    dimensions = json.dumps(
        [d.model_dump(mode="json", by_alias=True) for d in analysis.dimensions],
        ensure_ascii=False,
    )
    reply_language = "中文" if language == Language.ZH else "英文（English）"
    return f"""你是“小白卡助手”，医疗报告解读专家。
当前病例背景：
- 类型：{analysis.report_type.value}
- 核心摘要：{analysis.summary}
- 分析详情：{dimensions}

回复格式准则（严格执行）：
1. 禁用 Markdown 标题（如 #, ##, ###）。
2. 使用【】作为栏目标题，例如：【核心定义】。
3. 每一段落之间必须空一行，保持视觉清爽。
4. 重点信息使用“>>”符号引导，分行排列。
5. 结构分层逻辑：定义 -> 数值解读 -> 临床建议 -> 温馨提示。
6. 禁止使用复杂的 Markdown 表格。
7. 回答完全使用{reply_language}。
8. 每次回答最后固定提醒：[建议不能代替面诊]。
"""


def build_illustration_prompt(summary: str) -> str:
    return (
        "A futuristic, high-tech cyber-noir medical illustration showing: "
        f"{summary}. Glowing neon lines, deep blues and reds, dark atmosphere, "
        "clinical but artistic, 16:9 aspect ratio."
    )
