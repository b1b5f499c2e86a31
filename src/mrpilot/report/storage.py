"""Per-ticket working files under ``.cursor/tmp/<ticket>``."""

import json
import shutil
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from mrpilot.tickets import validate_ticket
from mrpilot.errors import ValidationError
from mrpilot.models.report import MergeRequestDescriptionInfo

DESCRIPTION_INFO_FILE = "merge-request-description-info.json"
START_TASK_INFO_FILE = "start-task-info.json"
LEGACY_REPORT_FILE = "development-report.json"
LEGACY_PLAN_FILE = "development-plan.json"


def tmp_root(project_root: str) -> Path:
    return Path(project_root) / ".cursor" / "tmp"


def task_dir(project_root: str, ticket: str) -> Path:
    if not validate_ticket(ticket):
        raise ValidationError(f"Invalid ticket: {ticket}", hint="Tickets look like FE-1234")
    return tmp_root(project_root) / ticket


def ensure_task_dir(project_root: str, ticket: str) -> Path:
    path = task_dir(project_root, ticket)
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_task_dir(project_root: str, ticket: str) -> bool:
    """Delete the ticket's working directory; refuses anything outside ``.cursor/tmp``."""
    path = task_dir(project_root, ticket).resolve()
    root = tmp_root(project_root).resolve()
    if root not in path.parents:
        raise ValidationError(f"Refusing to remove {path}: not inside {root}")
    if not path.exists():
        return False
    shutil.rmtree(path)
    logger.info(f"Removed working files in {path}")
    return True


def read_json_if_exists(path: Path) -> Optional[Any]:
    if not path.is_file():
        return None
    text = path.read_text(encoding="utf-8").lstrip("\ufeff").replace("\r\n", "\n")
    if not text.strip():
        return None
    return json.loads(text)


def write_json_file(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def description_info_path(project_root: str, ticket: str) -> Path:
    return task_dir(project_root, ticket) / DESCRIPTION_INFO_FILE


def load_description_info(project_root: str, ticket: str) -> Optional[MergeRequestDescriptionInfo]:
    """Stored description info for ``ticket``, assembling it from legacy plan/report files if needed."""
    directory = task_dir(project_root, ticket)
    data = read_json_if_exists(directory / DESCRIPTION_INFO_FILE)
    if data is None:
        plan = read_json_if_exists(directory / LEGACY_PLAN_FILE)
        report = read_json_if_exists(directory / LEGACY_REPORT_FILE)
        if plan is None and report is None:
            return None
        data = {"ticket": ticket, "plan": plan or {}, "report": report}
    return MergeRequestDescriptionInfo.model_validate(data)


def save_description_info(project_root: str, info: MergeRequestDescriptionInfo) -> Path:
    path = description_info_path(project_root, info.ticket)
    write_json_file(path, info.to_json())
    logger.debug(f"Wrote {path}")
    return path
