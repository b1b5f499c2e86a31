"""Label decision and target branch resolution for the MR workflows."""

from typing import List, Optional

from loguru import logger

from mrpilot.agents.state import AgentState
from mrpilot.analysis.diff_impact import GitDiffSource
from mrpilot.config import Settings
from mrpilot.errors import ApiError, ValidationError
from mrpilot.git_ops import GitExecutor
from mrpilot.knowledge import load_knowledge
from mrpilot.labels import (
    LABEL_AI,
    LabelContext,
    LabelDecider,
    TaskOriginLabelSource,
    build_label_sources,
    filter_allowed_labels,
    merge_labels,
)
from mrpilot.nodes.common import record_error, record_warning
from mrpilot.task import read_start_task_info


def build_label_context(git: GitExecutor, settings: Settings, ticket: Optional[str], target: str) -> LabelContext:
    """Collect changed files, start-task info and a diff source for ``target``."""
    return LabelContext(
        ticket=ticket,
        project_root=git.root,
        target_branch=target,
        changed_files=git.changed_files(target),
        task_info=read_start_task_info(git, ticket, settings.default_target_branch),
        diff_source=GitDiffSource(git, target),
        diff_summary=git.diff_stat(target),
    )


def _project_labels(state: AgentState) -> Optional[List[str]]:
    """Label names defined on the GitLab project; None skips the project check."""
    gitlab = state.get("gitlab")
    if gitlab is None:
        return None
    try:
        return [label["name"] for label in gitlab.list_labels()]
    except ApiError as e:
        record_warning(state, "labels_node", f"Could not list project labels, skipping that check: {e}")
        return None


def filter_user_labels(state: AgentState, labels: List[str], knowledge) -> List[str]:
    """Apply the allowlist and the project's label list to ``--labels`` input only."""
    if not labels:
        return []
    kept, dropped = filter_allowed_labels(labels, knowledge, _project_labels(state))
    if dropped:
        record_warning(state, "labels_node", f"Dropped labels not allowed in this project: {', '.join(dropped)}")
    return kept


async def labels_node(state: AgentState) -> AgentState:
    """Decide labels; in update mode only the AI label (and explicit ones) are ever added."""
    logger.info("Executing Labels Node")
    try:
        git = state["git"]
        settings = state["settings"]
        options = state["options"]
        mode = state.get("mode", "create")
        ticket = state["ticket"]
        target = state.get("target_branch") or settings.default_target_branch

        git.fetch(target)
        context = build_label_context(git, settings, ticket, target)
        knowledge = load_knowledge(git.root)

        if mode == "update":
            decider = LabelDecider([TaskOriginLabelSource()])
        else:
            decider = LabelDecider(
                build_label_sources(
                    options.label_strategy,
                    state.get("jira"),
                    settings.fe_ticket_prefix,
                    llm=state.get("llm"),
                    knowledge=knowledge,
                )
            )
        decision = await decider.decide(context)
        if decision.auth_error is not None:
            record_warning(state, "labels_node", f"{decision.auth_error} (version labels were skipped)")
        for warning in decision.warnings:
            record_warning(state, "labels_node", warning)

        if mode == "create" and decision.release_branch:
            if not options.target_explicit:
                logger.info(f"Hotfix detected, target {target} -> {decision.release_branch}")
                target = decision.release_branch
            elif not target.startswith("release/") and not options.yes:
                raise ValidationError(
                    f"Ticket {ticket} is a hotfix but the target {target} is not a release branch",
                    hint=f"Use --target={decision.release_branch}, or pass --yes to keep {target}",
                )

        # Rule labels are kept as decided; LlmLabelSource already restricts itself to the allowlist.
        user_labels = filter_user_labels(state, list(options.labels), knowledge)
        if mode == "update":
            existing = state.get("merge_request", {}).get("labels") or []
            wanted = [label for label in decision.labels if label == LABEL_AI]
            kept = [label for label in merge_labels(wanted, user_labels) if label not in existing]
        else:
            kept = merge_labels(decision.labels, user_labels)

        state["label_decision"] = decision
        state["labels"] = kept
        state["target_branch"] = target
        logger.info(f"Labels: {', '.join(kept) or '(none)'}; target: {target}")

    except Exception as e:
        record_error(state, "labels_node", e)

    return state
