from typing import Any, Dict, List

from apps.common.models.report import AnalysisDimension, MedicalAnalysis, ReportType, Severity
from apps.report.exceptions import MalformedAnalysisError


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _severity(value: Any) -> Severity:
    try:
        return Severity(_text(value).lower())
    except ValueError:
        return Severity.INFO


def _report_type(value: Any, declared: ReportType) -> ReportType:
    try:
        return ReportType(_text(value).upper())
    except ValueError:
        return declared


def normalize_dimensions(raw_dimensions: List[Any]) -> List[AnalysisDimension]:
    dimensions: List[AnalysisDimension] = []
    for raw in raw_dimensions:
        if not isinstance(raw, dict):
            continue
        title = _text(raw.get("title"))
        if not title:
            continue
        highlights = raw.get("highlights")
        if not isinstance(highlights, list):
            highlights = []
        dimensions.append(
            AnalysisDimension(
                title=title,
                conclusion=_text(raw.get("conclusion")),
                highlights=[_text(h) for h in highlights if _text(h)],
                content=_text(raw.get("content")),
                severity=_severity(raw.get("severity")),
                visual_hint=_text(raw.get("visualHint")) or None,
            )
        )
    return dimensions


def finalize_analysis(llm_result: Dict[str, Any], declared_type: ReportType) -> MedicalAnalysis:
    """
    校验并补齐模型输出。

    必须包含非空 summary、disclaimer 和 dimensions 列表，否则视为失败；
    维度数量少于约定的 10 个时照常接受。
    """
    summary = _text(llm_result.get("summary"))
    disclaimer = _text(llm_result.get("disclaimer"))
    raw_dimensions = llm_result.get("dimensions")

    missing = []
    if not summary:
        missing.append("summary")
    if not disclaimer:
        missing.append("disclaimer")
    if not isinstance(raw_dimensions, list):
        missing.append("dimensions")
    if missing:
        raise MalformedAnalysisError(f"模型输出缺少字段: {', '.join(missing)}")

    dimensions = normalize_dimensions(raw_dimensions)
    if not dimensions:
        raise MalformedAnalysisError("模型输出的 dimensions 为空")

    return MedicalAnalysis(
        report_type=_report_type(llm_result.get("reportType"), declared_type),
        dimensions=dimensions,
        summary=summary,
        disclaimer=disclaimer,
    )
