"""
LLM auto-fill for empty development report fields.

Only blank or placeholder fields are written; anything the developer filled in
is left as it is.
"""

from typing import Any, Dict

from loguru import logger

from mrpilot.llm import complete_json
from mrpilot.models.report import PLACEHOLDER, RISK_LEVELS, DevelopmentReport

SUMMARY_LIMIT = 6000
DIFF_STAT_LIMIT = 6000
DIFF_LIMIT = 16000

AUTOFILL_PROMPT = """You write merge request reports for a frontend team.
The user message is JSON with the current report (some fields empty), the
changed files (git diff --name-status), the diff stat and the diff itself.
Fill in what the diff supports and nothing else.
Respond with a single JSON object:
{
  "changeSummary": "<2-4 sentences on what changed and why>",
  "files": [{"path": "<path>", "description": "<one line>"}],
  "risks": [{"path": "<path>", "level": "low|medium|high", "reason": "<one line>"}],
  "impactScope": "<bugs only: who or what was affected>",
  "rootCause": "<bugs only: why it happened>"
}"""


def clamp(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"\n... (truncated {len(text) - limit} characters)"


def _blank(value: str) -> bool:
    return not value or value.strip() == PLACEHOLDER


def apply_autofill(report: DevelopmentReport, result: Dict[str, Any]) -> DevelopmentReport:
    """Merge an LLM reply into ``report``, touching only blank fields."""
    data = report.to_json()
    if _blank(data.get("changeSummary", "")) and isinstance(result.get("changeSummary"), str):
        data["changeSummary"] = result["changeSummary"]

    descriptions = {
        item.get("path"): item.get("description")
        for item in result.get("files") or []
        if isinstance(item, dict) and isinstance(item.get("description"), str)
    }
    for entry in data["changes"]["files"]:
        if _blank(entry.get("description", "")) and descriptions.get(entry["path"]):
            entry["description"] = descriptions[entry["path"]]

    risks = {item.get("path"): item for item in result.get("risks") or [] if isinstance(item, dict)}
    for entry in data["riskAssessment"]["files"]:
        suggestion = risks.get(entry["path"])
        if not suggestion or not _blank(entry.get("reason", "")):
            continue
        if suggestion.get("level") in RISK_LEVELS:
            entry["level"] = suggestion["level"]
        if isinstance(suggestion.get("reason"), str):
            entry["reason"] = suggestion["reason"]

    if report.is_bug:
        for key in ("impactScope", "rootCause"):
            if _blank(data["bug"].get(key, "")) and isinstance(result.get(key), str):
                data["bug"][key] = result[key]

    return DevelopmentReport.model_validate(data)


async def autofill_report(llm, report: DevelopmentReport, name_status: str, diff_stat: str, diff: str) -> DevelopmentReport:
    payload = {
        "report": report.to_json(),
        "changedFiles": clamp(name_status, SUMMARY_LIMIT),
        "diffStat": clamp(diff_stat, DIFF_STAT_LIMIT),
        "diff": clamp(diff, DIFF_LIMIT),
    }
    result = await complete_json(llm, AUTOFILL_PROMPT, payload)
    logger.info("Filled empty report fields from the diff")
    return apply_autofill(report, result)
