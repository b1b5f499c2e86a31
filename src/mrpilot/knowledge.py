"""
Repository knowledge file (``adapt.json``): which GitLab labels suit this repo and when.
"""

import json
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from mrpilot.errors import ConfigError


class Applicability(BaseModel):
    ok: bool
    reason: str = ""


class LabelKnowledge(BaseModel):
    """One label entry; ``applicable`` may be missing, a bool, or ``{ok, reason}``."""

    name: str = Field(..., min_length=1)
    scenario: str = ""
    applicable: Union[bool, Applicability, None] = None

    @property
    def is_applicable(self) -> bool:
        if self.applicable is None:
            return True
        if isinstance(self.applicable, bool):
            return self.applicable
        return self.applicable.ok


class RepoKnowledge(BaseModel):
    labels: List[LabelKnowledge] = Field(default_factory=list)

    def applicable_labels(self) -> List[LabelKnowledge]:
        return [label for label in self.labels if label.is_applicable]

    def allowed_names(self) -> List[str]:
        return [label.name for label in self.applicable_labels()]


def knowledge_candidates(project_root: str) -> List[Path]:
    root = Path(project_root)
    return [root / ".cursor" / "tmp" / "pantheon" / "adapt.json", root / "adapt.json"]


def load_knowledge(project_root: str) -> Optional[RepoKnowledge]:
    """Read the first knowledge file found; None when there is none."""
    for path in knowledge_candidates(project_root):
        if not path.is_file():
            continue
        try:
            knowledge = RepoKnowledge.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise ConfigError(f"Cannot read {path}: {e}", hint="Fix or regenerate adapt.json") from e
        logger.debug(f"Loaded {len(knowledge.labels)} label entries from {path}")
        return knowledge
    return None
