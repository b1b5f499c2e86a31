"""
Development plan / report documents embedded in merge request descriptions.

The JSON shape uses camelCase keys; models accept either spelling and dump by
alias so the stored files stay compatible with other tooling reading them.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic.alias_generators import to_camel

from mrpilot.config import DEFAULT_JIRA_BASE_URL

SCHEMA_VERSION = 1
PLACEHOLDER = "TBD"
NO_TICKET = "N/A"
RISK_LEVELS = ("low", "medium", "high")

STATUS_NAMES = {
    "A": "Added",
    "ADDED": "Added",
    "M": "Updated",
    "MODIFIED": "Updated",
    "UPDATED": "Updated",
    "D": "Deleted",
    "DELETED": "Deleted",
    "R": "Renamed",
    "RENAMED": "Renamed",
}


def jira_ticket_url(ticket: str, base_url: str = DEFAULT_JIRA_BASE_URL) -> str:
    if not ticket or ticket == NO_TICKET:
        return ""
    return f"{base_url.rstrip('/')}/browse/{ticket}"


def status_name(status: Optional[str]) -> str:
    """Display name for a change status; git letters and enum names are both accepted."""
    text = (status or "").strip()
    return STATUS_NAMES.get(text.upper(), text or "Updated")


class DocumentModel(BaseModel):
    """Base model: camelCase aliases, unknown keys ignored, text trimmed, nulls defaulted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _clean(cls, value: Any, info: ValidationInfo) -> Any:
        field = cls.model_fields[info.field_name]
        if value is None and not field.is_required():
            return field.get_default(call_default_factory=True)
        if field.annotation is str and value is not None and not isinstance(value, str):
            value = str(value)
        return value.strip() if isinstance(value, str) else value

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class ChangeEntry(DocumentModel):
    path: str = ""
    status: str = "Updated"
    description: str = ""

    @field_validator("status")
    @classmethod
    def _status(cls, value: str) -> str:
        return status_name(value)


class RiskEntry(DocumentModel):
    path: str = ""
    level: str = "medium"
    reason: str = PLACEHOLDER

    @field_validator("level")
    @classmethod
    def _level(cls, value: str) -> str:
        level = value.lower()
        return level if level in RISK_LEVELS else "medium"

    @field_validator("reason")
    @classmethod
    def _reason(cls, value: str) -> str:
        return value or PLACEHOLDER


class ChangeList(DocumentModel):
    files: List[ChangeEntry] = Field(default_factory=list)


class RiskList(DocumentModel):
    files: List[RiskEntry] = Field(default_factory=list)


class BugInfo(DocumentModel):
    impact_scope: str = ""
    root_cause: str = ""
    regression_source: str = ""


class RequestInfo(DocumentModel):
    expected_result: str = ""


class DevelopmentReport(DocumentModel):
    """What changed on the branch and how risky it is."""

    schema_version: int = SCHEMA_VERSION
    ticket: str = NO_TICKET
    jira_ticket_url: str = ""
    title: str = ""
    issue_type: str = ""
    change_summary: str = ""
    changes: ChangeList = Field(default_factory=ChangeList)
    risk_assessment: RiskList = Field(default_factory=RiskList)
    bug: BugInfo = Field(default_factory=BugInfo)
    request: RequestInfo = Field(default_factory=RequestInfo)

    @model_validator(mode="after")
    def _sync(self) -> "DevelopmentReport":
        self.schema_version = SCHEMA_VERSION
        self.ticket = self.ticket or NO_TICKET
        self.jira_ticket_url = self.jira_ticket_url or jira_ticket_url(self.ticket)
        kept = [entry for entry in self.changes.files if entry.path]
        self.changes = self.changes.model_copy(update={"files": kept})

        # One risk row per changed path, in change order.
        existing = {}
        for risk in self.risk_assessment.files:
            if risk.path and risk.path not in existing:
                existing[risk.path] = risk
        paths = list(dict.fromkeys(entry.path for entry in self.changes.files))
        self.risk_assessment = self.risk_assessment.model_copy(
            update={"files": [existing.get(path) or RiskEntry(path=path) for path in paths]}
        )
        return self

    @property
    def is_bug(self) -> bool:
        return "bug" in self.issue_type.lower()

    @property
    def has_content(self) -> bool:
        """True once anything beyond the generated skeleton has been written."""
        if self.change_summary or any(entry.description for entry in self.changes.files):
            return True
        bug, request = self.bug, self.request
        return bool(bug.impact_scope or bug.root_cause or bug.regression_source or request.expected_result)

    def with_changes(self, changes: List[ChangeEntry]) -> "DevelopmentReport":
        """Copy with the change rows replaced, keeping descriptions already written for known paths."""
        descriptions = {entry.path: entry.description for entry in self.changes.files}
        rows = [
            ChangeEntry(path=c.path, status=c.status, description=c.description or descriptions.get(c.path, ""))
            for c in changes
        ]
        data = self.to_json()
        data["changes"] = {"files": [row.to_json() for row in rows]}
        return DevelopmentReport.model_validate(data)


class DevelopmentPlan(DocumentModel):
    jira_ticket_url: str = ""
    target: str = ""
    scope: str = ""
    test: str = ""

    @property
    def has_content(self) -> bool:
        return bool(self.target or self.scope or self.test)


class MergeRequestDescriptionInfo(DocumentModel):
    """Plan plus (optional) report for one ticket; the unit stored on disk and in the MR."""

    schema_version: int = SCHEMA_VERSION
    ticket: str = NO_TICKET
    jira_ticket_url: str = ""
    plan: DevelopmentPlan = Field(default_factory=DevelopmentPlan)
    report: Optional[DevelopmentReport] = None

    @model_validator(mode="after")
    def _sync(self) -> "MergeRequestDescriptionInfo":
        self.schema_version = SCHEMA_VERSION
        self.ticket = self.ticket or NO_TICKET
        self.jira_ticket_url = self.jira_ticket_url or jira_ticket_url(self.ticket)
        # Copies, so a plan or report handed in by the caller is left as it was.
        if not self.plan.jira_ticket_url:
            self.plan = self.plan.model_copy(update={"jira_ticket_url": self.jira_ticket_url})
        if self.report is not None:
            update = {}
            if self.report.ticket == NO_TICKET:
                update["ticket"] = self.ticket
            if not self.report.jira_ticket_url:
                update["jira_ticket_url"] = self.jira_ticket_url
            if update:
                self.report = self.report.model_copy(update=update)
        return self

    @classmethod
    def default(cls, ticket: str) -> "MergeRequestDescriptionInfo":
        return cls(ticket=ticket)
