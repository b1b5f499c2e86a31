from unittest.mock import AsyncMock, patch

import pytest

from mrpilot.models.report import DevelopmentReport
from mrpilot.report.autofill import apply_autofill, autofill_report, clamp


def make_report(issue_type="Story"):
    return DevelopmentReport.model_validate(
        {
            "ticket": "FE-1",
            "issueType": issue_type,
            "changes": {
                "files": [
                    {"path": "a.ts", "status": "M", "description": "kept as written"},
                    {"path": "b.ts", "status": "A"},
                ]
            },
            "riskAssessment": {"files": [{"path": "a.ts", "level": "low", "reason": "small"}]},
        }
    )


LLM_REPLY = {
    "changeSummary": "Adds b.",
    "files": [{"path": "a.ts", "description": "overwritten?"}, {"path": "b.ts", "description": "new helper"}],
    "risks": [
        {"path": "a.ts", "level": "high", "reason": "ignored"},
        {"path": "b.ts", "level": "high", "reason": "new code"},
    ],
    "impactScope": "checkout",
    "rootCause": "typo",
}


def test_clamp():
    assert clamp("abc", 5) == "abc"
    assert clamp("abcdef", 3) == "abc\n... (truncated 3 characters)"


def test_apply_autofill_only_fills_blanks():
    report = apply_autofill(make_report(), LLM_REPLY)

    assert report.change_summary == "Adds b."
    assert [f.description for f in report.changes.files] == ["kept as written", "new helper"]
    assert [(r.level, r.reason) for r in report.risk_assessment.files] == [("low", "small"), ("high", "new code")]
    assert report.bug.impact_scope == ""


def test_apply_autofill_fills_bug_fields():
    report = apply_autofill(make_report("Bug"), LLM_REPLY)

    assert report.bug.impact_scope == "checkout"
    assert report.bug.root_cause == "typo"


def test_apply_autofill_ignores_garbage():
    report = apply_autofill(make_report(), {"changeSummary": 3, "files": "nope", "risks": [None]})

    assert report.change_summary == ""
    assert report.changes.files[1].description == ""


@pytest.mark.asyncio
async def test_autofill_report_sends_clamped_diff():
    with patch("mrpilot.report.autofill.complete_json", new=AsyncMock(return_value=LLM_REPLY)) as complete:
        report = await autofill_report(object(), make_report(), "M\ta.ts", "1 file changed", "x" * 20000)

    payload = complete.await_args.args[2]
    assert payload["diff"].endswith("(truncated 4000 characters)")
    assert report.change_summary == "Adds b."
