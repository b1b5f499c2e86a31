"""
Merge request label decision.

Labels come from an ordered list of sources, each adding to one running,
de-duplicated set. No source removes a label another source added.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from loguru import logger

from mrpilot.analysis.diff_impact import GitDiffSource, ImpactClassifier, analyze_impact_scope
from mrpilot.clients.jira import JiraClient
from mrpilot.errors import JiraAuthError
from mrpilot.knowledge import RepoKnowledge
from mrpilot.llm import complete_json
from mrpilot.models.diff import ChangedFile
from mrpilot.models.report import NO_TICKET
from mrpilot.task import StartTaskInfo, has_task_origin

LABEL_AI = "AI"
LABEL_FE_BOARD = "FE Board"
LABEL_HOTFIX = "Hotfix"
VARIANT_LABELS = {"v3": "3.0UI", "v4": "4.0UI"}

VERSION_PATTERN = re.compile(r"^(\d+)\.(\d+)(?:\.\d+)?")
HOTFIX_PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


def extract_version_label(fix_version: Optional[str]) -> Optional[str]:
    """``"5.35.3"`` -> ``"v5.35"``; None when the text is not a version."""
    match = VERSION_PATTERN.match((fix_version or "").strip())
    if not match:
        return None
    return f"v{match.group(1)}.{match.group(2)}"


def is_hotfix_version(fix_version: Optional[str]) -> bool:
    match = HOTFIX_PATTERN.match((fix_version or "").strip())
    return bool(match) and int(match.group(3)) != 0


def extract_release_branch(fix_version: Optional[str]) -> Optional[str]:
    match = VERSION_PATTERN.match((fix_version or "").strip())
    if not match:
        return None
    return f"release/{match.group(1)}.{match.group(2)}"


class LabelSet:
    """Insertion-ordered set of label names."""

    def __init__(self, labels: Iterable[str] = ()):
        self._labels: List[str] = []
        self.extend(labels)

    def add(self, label: Optional[str]) -> None:
        name = (label or "").strip()
        if name and name not in self._labels:
            self._labels.append(name)

    def extend(self, labels: Iterable[str]) -> None:
        for label in labels:
            self.add(label)

    def __contains__(self, label: str) -> bool:
        return label in self._labels

    def __iter__(self):
        return iter(self._labels)

    def __len__(self) -> int:
        return len(self._labels)

    def to_list(self) -> List[str]:
        return list(self._labels)


def merge_labels(*groups: Iterable[str]) -> List[str]:
    merged = LabelSet()
    for group in groups:
        merged.extend(group or [])
    return merged.to_list()


def parse_label_arg(value: Optional[str]) -> List[str]:
    """``--labels=a, b`` -> ``["a", "b"]``."""
    return merge_labels(part for part in (value or "").split(","))


def filter_allowed_labels(
    labels: Sequence[str],
    knowledge: Optional[RepoKnowledge],
    project_labels: Optional[Sequence[str]] = None,
) -> Tuple[List[str], List[str]]:
    """Split labels into (kept, dropped) by the knowledge allowlist and the project's label list.

    A missing knowledge file or project list disables that check.
    """
    allowed = set(knowledge.allowed_names()) if knowledge is not None else None
    existing = set(project_labels) if project_labels is not None else None
    kept, dropped = [], []
    for label in labels:
        if (allowed is not None and label not in allowed) or (existing is not None and label not in existing):
            dropped.append(label)
        else:
            kept.append(label)
    return kept, dropped


@dataclass
class LabelContext:
    """Inputs every label source may consult."""

    ticket: Optional[str]
    project_root: str
    target_branch: str = "main"
    changed_files: List[ChangedFile] = field(default_factory=list)
    task_info: Optional[StartTaskInfo] = None
    diff_source: Optional[GitDiffSource] = None
    diff_summary: str = ""


@dataclass
class LabelDecision:
    labels: LabelSet = field(default_factory=LabelSet)
    release_branch: Optional[str] = None
    auth_error: Optional[JiraAuthError] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def is_hotfix(self) -> bool:
        return LABEL_HOTFIX in self.labels


class LabelSource(Protocol):
    async def apply(self, context: LabelContext, decision: LabelDecision) -> None: ...


class TaskOriginLabelSource:
    async def apply(self, context: LabelContext, decision: LabelDecision) -> None:
        if has_task_origin(context.task_info, context.ticket, context.project_root):
            logger.info("Branch was started by start-task, adding AI label")
            decision.labels.add(LABEL_AI)


class TicketPrefixLabelSource:
    def __init__(self, prefix: str = "FE-", label: str = LABEL_FE_BOARD):
        self.prefix = prefix
        self.label = label

    async def apply(self, context: LabelContext, decision: LabelDecision) -> None:
        if context.ticket and context.ticket.startswith(self.prefix):
            decision.labels.add(self.label)


class ImpactLabelSource:
    """UI variant labels from the diff-impact heuristics."""

    def __init__(self, classifier: Optional[ImpactClassifier] = None):
        self.classifier = classifier

    async def apply(self, context: LabelContext, decision: LabelDecision) -> None:
        if not context.changed_files or context.diff_source is None:
            return
        scope = analyze_impact_scope(context.changed_files, context.diff_source, self.classifier)
        logger.info(f"Impacted UI variants: {', '.join(scope.variants())}")
        for variant in scope.variants():
            decision.labels.add(VARIANT_LABELS[variant])


LLM_LABEL_PROMPT = """You label GitLab merge requests for a frontend repository.
The user message is JSON with the ticket, the changed files, a diff summary and
the candidate labels (each with the scenario it is meant for).
Pick every candidate label that fits this change and no others.
Respond with a single JSON object: {"labels": ["<candidate name>", ...]}"""


class LlmLabelSource:
    """Labels suggested by an LLM, restricted to the knowledge file's applicable labels."""

    def __init__(self, llm, knowledge: Optional[RepoKnowledge]):
        self.llm = llm
        self.knowledge = knowledge

    async def apply(self, context: LabelContext, decision: LabelDecision) -> None:
        if self.knowledge is None:
            decision.warnings.append("No adapt.json found, skipping LLM label suggestions")
            return
        candidates = self.knowledge.applicable_labels()
        if not candidates:
            return
        payload = {
            "ticket": context.ticket,
            "changedFiles": [{"path": f.path, "status": f.status.value} for f in context.changed_files],
            "diffSummary": context.diff_summary,
            "candidates": [{"name": c.name, "scenario": c.scenario} for c in candidates],
        }
        try:
            result = await complete_json(self.llm, LLM_LABEL_PROMPT, payload)
        except Exception as e:
            logger.warning(f"LLM label suggestion failed: {e}")
            decision.warnings.append(f"LLM label suggestion failed: {e}")
            return

        allowed = {c.name for c in candidates}
        suggested = result.get("labels") if isinstance(result.get("labels"), list) else []
        for label in suggested:
            if isinstance(label, str) and label in allowed:
                decision.labels.add(label)
            else:
                logger.debug(f"Ignoring LLM label outside the allowlist: {label}")


class FixVersionLabelSource:
    """Version label, plus Hotfix and the release branch for patch versions."""

    def __init__(self, jira: Optional[JiraClient]):
        self.jira = jira

    async def apply(self, context: LabelContext, decision: LabelDecision) -> None:
        if not context.ticket or context.ticket == NO_TICKET:
            return
        if self.jira is None:
            decision.warnings.append("Jira is not configured, skipping the version label")
            return
        try:
            fix_version = self.jira.get_fix_version(context.ticket)
        except JiraAuthError as e:
            logger.error(str(e))
            decision.auth_error = e
            return
        if not fix_version:
            return

        logger.info(f"Jira ticket {context.ticket} fix version: {fix_version}")
        decision.labels.add(extract_version_label(fix_version))
        if is_hotfix_version(fix_version):
            decision.labels.add(LABEL_HOTFIX)
            decision.release_branch = extract_release_branch(fix_version)
            logger.info(f"Hotfix version, targeting {decision.release_branch}")


class LabelDecider:
    def __init__(self, sources: Sequence[LabelSource]):
        self.sources = list(sources)

    async def decide(self, context: LabelContext) -> LabelDecision:
        decision = LabelDecision()
        for source in self.sources:
            await source.apply(context, decision)
        return decision


def build_label_sources(
    strategy: str,
    jira: Optional[JiraClient],
    fe_prefix: str = "FE-",
    llm=None,
    knowledge: Optional[RepoKnowledge] = None,
    classifier: Optional[ImpactClassifier] = None,
) -> List[LabelSource]:
    """Source list for ``strategy``: ``heuristic`` (diff scan), ``llm`` or ``none``."""
    sources: List[LabelSource] = [TaskOriginLabelSource(), TicketPrefixLabelSource(fe_prefix)]
    if strategy == "heuristic":
        sources.append(ImpactLabelSource(classifier))
    elif strategy == "llm":
        if llm is None:
            logger.warning("No LLM configured, falling back to heuristic labels")
            sources.append(ImpactLabelSource(classifier))
        else:
            sources.append(LlmLabelSource(llm, knowledge))
    sources.append(FixVersionLabelSource(jira))
    return sources
