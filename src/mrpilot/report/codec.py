"""
Render development plan/report documents to the MR description layout and parse them back.

Every rendering ends with a hidden HTML-comment block holding the exact JSON
that produced it, which is what parsing prefers. The table/heading extraction
is only a fallback for hand-edited markdown.
"""

import json
import re
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from mrpilot.models.report import (
    NO_TICKET,
    PLACEHOLDER,
    ChangeEntry,
    DevelopmentPlan,
    DevelopmentReport,
    MergeRequestDescriptionInfo,
    RiskEntry,
    jira_ticket_url,
)

REPORT_JSON_START = "<!-- PANTHEON_DEVELOPMENT_REPORT_JSON_START"
REPORT_JSON_END = "PANTHEON_DEVELOPMENT_REPORT_JSON_END -->"
INFO_JSON_START = "<!-- PANTHEON_MR_DESCRIPTION_INFO_JSON_START"
INFO_JSON_END = "PANTHEON_MR_DESCRIPTION_INFO_JSON_END -->"

PLAN_START = "<!-- PANTHEON_DEVELOPMENT_PLAN_START -->"
PLAN_END = "<!-- PANTHEON_DEVELOPMENT_PLAN_END -->"
REPORT_START = "<!-- PANTHEON_DEVELOPMENT_REPORT_START -->"
REPORT_END = "<!-- PANTHEON_DEVELOPMENT_REPORT_END -->"

HEADING_RELATED = "## Related Ticket"
HEADING_SUMMARY = "## Change Summary"
HEADING_CHANGES = "### Changes"
HEADING_RISK = "## Risk Assessment"
HEADING_IMPACT = "## Impact Scope"
HEADING_ROOT_CAUSE = "## Root Cause"
HEADING_EXPECTED = "## Expected Result"
HEADING_PLAN = "## Development Plan"

TABLE_RELATED = "| Item | Value |"
TABLE_CHANGES = "| File | Status | Description |"
TABLE_RISK = "| File | Risk Level | Assessment |"
TABLE_PLAN = "| Plan | Content |"

TICKET_LINK = re.compile(r"\[([A-Z0-9]+-\d+)\]\(([^)]+)\)")


# Small formatting helpers


def normalize_lf(text: str) -> str:
    return (text or "").replace("\r\n", "\n")


def escape_table_cell(text: Optional[str]) -> str:
    value = (text or "").strip()
    if not value:
        return PLACEHOLDER
    return value.replace("|", "\\|").replace("\r\n", " ").replace("\n", " ")


def unescape_table_cell(text: str) -> str:
    value = text.strip().replace("\\|", "|")
    return "" if value == PLACEHOLDER else value


def format_path(path: str) -> str:
    return f"`{path}`"


def strip_backticks(text: str) -> str:
    value = text.strip()
    if len(value) >= 2 and value.startswith("`") and value.endswith("`"):
        return value[1:-1]
    return value


def text_or_placeholder(text: Optional[str]) -> str:
    return (text or "").strip() or PLACEHOLDER


def _table(header: str, rows: List[List[str]]) -> List[str]:
    columns = header.count("|") - 1
    lines = [header, "|" + " --- |" * columns]
    lines.extend("| " + " | ".join(row) + " |" for row in rows)
    return lines


def hidden_block(start: str, end: str, data: Dict[str, Any]) -> str:
    return f"{start}\n{json.dumps(data, ensure_ascii=False, indent=2)}\n{end}"


def extract_hidden_json(markdown: str, start: str, end: str) -> Optional[Dict[str, Any]]:
    """Decode the JSON between ``start`` and ``end``; None when absent or unparsable."""
    text = normalize_lf(markdown)
    begin = text.find(start)
    if begin == -1:
        return None
    finish = text.find(end, begin + len(start))
    if finish == -1:
        return None
    try:
        data = json.loads(text[begin + len(start) : finish].strip())
    except json.JSONDecodeError:
        logger.warning("Hidden JSON block is not valid JSON, falling back to markdown parsing")
        return None
    return data if isinstance(data, dict) else None


# Normalization


def normalize_report(data: Any, change_files: Optional[List[ChangeEntry]] = None) -> DevelopmentReport:
    report = data if isinstance(data, DevelopmentReport) else DevelopmentReport.model_validate(
        data if isinstance(data, dict) else {}
    )
    if change_files is not None:
        report = report.with_changes(change_files)
    return report


def normalize_description_info(
    data: Any, change_files: Optional[List[ChangeEntry]] = None
) -> MergeRequestDescriptionInfo:
    info = data if isinstance(data, MergeRequestDescriptionInfo) else MergeRequestDescriptionInfo.model_validate(
        data if isinstance(data, dict) else {}
    )
    if change_files is not None and info.report is not None:
        info = info.model_copy(update={"report": normalize_report(info.report, change_files)})
    return info


# Rendering


def render_report(report: Any) -> str:
    r = normalize_report(report)
    ticket_cell = f"[{r.ticket}]({r.jira_ticket_url})" if r.jira_ticket_url else escape_table_cell(r.ticket)

    lines: List[str] = [HEADING_RELATED, ""]
    lines.extend(
        _table(
            TABLE_RELATED,
            [
                ["**Ticket**", ticket_cell],
                ["**Title**", escape_table_cell(r.title)],
                ["**Type**", escape_table_cell(r.issue_type)],
            ],
        )
    )
    lines.extend(["", HEADING_SUMMARY, "", text_or_placeholder(r.change_summary), "", HEADING_CHANGES, ""])
    lines.extend(
        _table(
            TABLE_CHANGES,
            [
                [format_path(f.path), escape_table_cell(f.status), escape_table_cell(f.description)]
                for f in r.changes.files
            ],
        )
    )
    lines.extend(["", HEADING_RISK, ""])
    lines.extend(
        _table(
            TABLE_RISK,
            [
                [format_path(f.path), escape_table_cell(f.level), escape_table_cell(f.reason)]
                for f in r.risk_assessment.files
            ],
        )
    )

    if r.is_bug:
        lines.extend(["", HEADING_IMPACT, "", text_or_placeholder(r.bug.impact_scope)])
        lines.extend(["", HEADING_ROOT_CAUSE, "", text_or_placeholder(r.bug.root_cause)])
    if r.request.expected_result:
        lines.extend(["", HEADING_EXPECTED, "", r.request.expected_result])

    lines.extend(["", hidden_block(REPORT_JSON_START, REPORT_JSON_END, r.to_json())])
    return "\n".join(lines)


def render_plan(plan: DevelopmentPlan) -> str:
    """Plan table, or an empty string when the plan has nothing in it."""
    if not plan.has_content:
        return ""
    lines = [HEADING_PLAN, ""]
    lines.extend(
        _table(
            TABLE_PLAN,
            [
                ["**Target**", escape_table_cell(plan.target)],
                ["**Scope**", escape_table_cell(plan.scope)],
                ["**Test**", escape_table_cell(plan.test)],
            ],
        )
    )
    return "\n".join(lines)


def render_description_info(info: Any, change_files: Optional[List[ChangeEntry]] = None) -> str:
    """Full MR description body: plan block, report block, then the info JSON anchor."""
    normalized = normalize_description_info(info, change_files)
    parts = []
    plan_markdown = render_plan(normalized.plan)
    if plan_markdown:
        parts.append(f"{PLAN_START}\n{plan_markdown}\n{PLAN_END}")
    if normalized.report is not None:
        parts.append(f"{REPORT_START}\n{render_report(normalized.report)}\n{REPORT_END}")
    parts.append(hidden_block(INFO_JSON_START, INFO_JSON_END, normalized.to_json()))
    return "\n\n".join(parts)


# Parsing


def parse_markdown_table(markdown: str, header: str) -> List[List[str]]:
    lines = normalize_lf(markdown).split("\n")
    try:
        index = next(i for i, line in enumerate(lines) if line.strip() == header)
    except StopIteration:
        return []

    rows = []
    for line in lines[index + 1 :]:
        stripped = line.strip()
        if not stripped.startswith("|"):
            break
        if re.match(r"^\|(\s*:?-{3,}:?\s*\|)+$", stripped):
            continue
        cells = re.split(r"(?<!\\)\|", stripped)[1:-1]
        if cells:
            rows.append([unescape_table_cell(cell) for cell in cells])
    return rows


def extract_section_text(markdown: str, heading: str) -> str:
    """Text after ``heading`` up to the next heading (or hidden block)."""
    text = normalize_lf(markdown)
    index = text.find(heading)
    if index == -1:
        return ""
    after = text[index + len(heading) :]
    stops = [m.start() for m in (re.search(r"\n#{1,6}\s+", after), re.search(r"\n<!--", after)) if m]
    body = after[: min(stops)] if stops else after
    body = body.strip()
    return "" if body == PLACEHOLDER else body


def parse_report(markdown: str, fallback_ticket: str = NO_TICKET) -> DevelopmentReport:
    """Best-effort parse of a rendered or hand-written report; never raises."""
    embedded = extract_hidden_json(markdown, REPORT_JSON_START, REPORT_JSON_END)
    if embedded is not None:
        try:
            return normalize_report(embedded)
        except PydanticValidationError as e:
            logger.warning(f"Embedded report JSON is malformed, parsing markdown instead: {e}")

    related = {row[0].strip("* "): row[1] if len(row) > 1 else "" for row in parse_markdown_table(markdown, TABLE_RELATED)}
    ticket_match = TICKET_LINK.search(related.get("Ticket", ""))
    ticket = ticket_match.group(1) if ticket_match else (related.get("Ticket") or fallback_ticket or NO_TICKET)
    url = ticket_match.group(2) if ticket_match else jira_ticket_url(ticket)

    changes = [
        ChangeEntry(path=strip_backticks(row[0]), status=row[1] if len(row) > 1 else "", description=row[2] if len(row) > 2 else "")
        for row in parse_markdown_table(markdown, TABLE_CHANGES)
    ]
    risks = [
        RiskEntry(path=strip_backticks(row[0]), level=row[1] if len(row) > 1 else "", reason=row[2] if len(row) > 2 else "")
        for row in parse_markdown_table(markdown, TABLE_RISK)
    ]
    try:
        return DevelopmentReport(
            ticket=ticket,
            jira_ticket_url=url,
            title=related.get("Title", ""),
            issue_type=related.get("Type", ""),
            change_summary=extract_section_text(markdown, HEADING_SUMMARY),
            changes={"files": changes},
            risk_assessment={"files": risks},
            bug={
                "impact_scope": extract_section_text(markdown, HEADING_IMPACT),
                "root_cause": extract_section_text(markdown, HEADING_ROOT_CAUSE),
            },
            request={"expected_result": extract_section_text(markdown, HEADING_EXPECTED)},
        )
    except PydanticValidationError as e:
        logger.warning(f"Could not parse development report markdown: {e}")
        return DevelopmentReport(ticket=fallback_ticket or NO_TICKET)


def parse_plan(markdown: str) -> DevelopmentPlan:
    rows = {row[0].strip("* "): row[1] if len(row) > 1 else "" for row in parse_markdown_table(markdown, TABLE_PLAN)}
    return DevelopmentPlan(target=rows.get("Target", ""), scope=rows.get("Scope", ""), test=rows.get("Test", ""))


def parse_description_info(markdown: str, fallback_ticket: str = NO_TICKET) -> MergeRequestDescriptionInfo:
    """Recover the description info from an MR description; never raises."""
    embedded = extract_hidden_json(markdown, INFO_JSON_START, INFO_JSON_END)
    if embedded is not None:
        try:
            return normalize_description_info(embedded)
        except PydanticValidationError as e:
            logger.warning(f"Embedded description JSON is malformed, parsing markdown instead: {e}")

    report = None
    if TABLE_CHANGES in markdown or REPORT_JSON_START in markdown:
        report = parse_report(markdown, fallback_ticket)
    ticket = report.ticket if report is not None else (fallback_ticket or NO_TICKET)
    return MergeRequestDescriptionInfo(ticket=ticket, plan=parse_plan(markdown), report=report)


# Description editing


def extract_block(description: str, start: str, end: str) -> str:
    text = normalize_lf(description)
    begin = text.find(start)
    if begin == -1:
        return ""
    finish = text.find(end, begin + len(start))
    if finish == -1:
        return ""
    return text[begin + len(start) : finish].strip()


def upsert_block(description: str, start: str, end: str, block: str) -> str:
    """Replace the text between ``start`` and ``end`` with ``block``, or append the marked block."""
    text = normalize_lf(description).rstrip()
    wrapped = f"{start}\n{block.strip()}\n{end}"
    begin = text.find(start)
    finish = text.find(end, begin + len(start)) if begin != -1 else -1
    if begin != -1 and finish != -1:
        return text[:begin] + wrapped + text[finish + len(end) :]
    if not text:
        return wrapped
    return f"{text}\n\n{wrapped}"


def upsert_plan(description: str, plan_markdown: str) -> str:
    return upsert_block(description, PLAN_START, PLAN_END, plan_markdown)


def upsert_report(description: str, report_markdown: str) -> str:
    return upsert_block(description, REPORT_START, REPORT_END, report_markdown)


def upsert_description_info(description: str, info: MergeRequestDescriptionInfo) -> str:
    """Merge plan, report and info anchor into an existing description without duplicating them."""
    merged = description
    plan_markdown = render_plan(info.plan)
    if plan_markdown:
        merged = upsert_plan(merged, plan_markdown)
    if info.report is not None:
        merged = upsert_report(merged, render_report(info.report))

    anchor = hidden_block(INFO_JSON_START, INFO_JSON_END, info.to_json())
    text = normalize_lf(merged)
    begin = text.find(INFO_JSON_START)
    finish = text.find(INFO_JSON_END, begin) if begin != -1 else -1
    if begin != -1 and finish != -1:
        return text[:begin] + anchor + text[finish + len(INFO_JSON_END) :]
    return f"{text.rstrip()}\n\n{anchor}"


def normalize_for_compare(markdown: str) -> str:
    return "\n".join(line.rstrip() for line in normalize_lf(markdown).strip().split("\n"))


def _has_table(description: str, header: str) -> bool:
    return any(line.strip() == header for line in normalize_lf(description).split("\n"))


def validate_description(description: str, issue_type: str = "") -> List[str]:
    """Names of required sections missing from an MR description (empty means valid)."""
    missing = []
    if HEADING_RELATED not in description or not _has_table(description, TABLE_RELATED):
        missing.append(f"{HEADING_RELATED} (with {TABLE_RELATED} table)")
    if HEADING_SUMMARY not in description:
        missing.append(HEADING_SUMMARY)
    if HEADING_CHANGES not in description or not _has_table(description, TABLE_CHANGES):
        missing.append(f"{HEADING_CHANGES} (with {TABLE_CHANGES} table)")
    if HEADING_RISK not in description or not _has_table(description, TABLE_RISK):
        missing.append(f"{HEADING_RISK} (with {TABLE_RISK} table)")
    if "bug" in (issue_type or "").lower():
        if HEADING_IMPACT not in description:
            missing.append(f"{HEADING_IMPACT} (required for bugs)")
        if HEADING_ROOT_CAUSE not in description:
            missing.append(f"{HEADING_ROOT_CAUSE} (required for bugs)")
    return missing
