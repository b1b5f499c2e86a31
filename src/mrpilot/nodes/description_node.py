"""Build (create) or merge (update) the MR description from the ticket's description info."""

from loguru import logger

from mrpilot.agents.state import AgentState
from mrpilot.errors import ValidationError
from mrpilot.models.report import ChangeEntry, DevelopmentReport, MergeRequestDescriptionInfo
from mrpilot.nodes.common import record_error, record_warning
from mrpilot.report.autofill import autofill_report
from mrpilot.report.codec import (
    normalize_report,
    parse_description_info,
    render_description_info,
    upsert_description_info,
    validate_description,
)
from mrpilot.report.storage import load_description_info, save_description_info
from mrpilot.signature import append_signature


async def description_node(state: AgentState) -> AgentState:
    logger.info("Executing Description Node")
    try:
        git = state["git"]
        settings = state["settings"]
        options = state["options"]
        mode = state.get("mode", "create")
        ticket = state["ticket"]
        target = state["target_branch"]

        git.fetch(target)
        changed = git.changed_files(target)
        state["changed_files"] = changed
        entries = [ChangeEntry(path=f.path, status=f.status.value) for f in changed]

        existing_description = ""
        if mode == "update":
            existing_description = state["merge_request"].get("description") or ""

        info = load_description_info(git.root, ticket)
        if info is None and existing_description:
            logger.info("No local description info, recovering it from the merge request")
            info = parse_description_info(existing_description, ticket)
        if info is None:
            info = MergeRequestDescriptionInfo.default(ticket)

        report = normalize_report(info.report or DevelopmentReport(ticket=ticket), entries)
        issue = state.get("issue")
        if issue is not None:
            report = report.model_copy(
                update={"title": report.title or issue.summary, "issue_type": report.issue_type or issue.issue_type}
            )

        if options.auto_fill:
            llm = state.get("llm")
            if llm is None:
                record_warning(state, "description_node", "No LLM configured, skipping report auto-fill")
            else:
                try:
                    report = await autofill_report(
                        llm,
                        report,
                        "\n".join(f"{f.status.value}\t{f.path}" for f in changed),
                        git.diff_stat(target),
                        git.diff_text(target),
                    )
                except Exception as e:
                    record_warning(state, "description_node", f"Report auto-fill failed: {e}")

        data = info.to_json()
        data["report"] = report.to_json()
        info = MergeRequestDescriptionInfo.model_validate(data)

        if mode == "update":
            description = upsert_description_info(existing_description, info)
        else:
            description = render_description_info(info)
        description = append_signature(description, settings.agent_display_name, git.user_name())

        missing = validate_description(description, report.issue_type)
        if missing:
            raise ValidationError(
                f"Merge request description is missing: {'; '.join(missing)}",
                hint=f"Complete the report with `mrpilot task-info --ticket {ticket} --json <report.json>`",
            )

        save_description_info(git.root, info)
        state["description_info"] = info
        state["description"] = description
        logger.info(f"Description ready ({len(entries)} changed files)")

    except Exception as e:
        record_error(state, "description_node", e)

    return state
