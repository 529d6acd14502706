"""Run-wide context: recent commits, design token diff and PR metadata."""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

_REFACTOR_RE = re.compile(r"(^|\W)refactor(\(|:|\b)", re.IGNORECASE)


class CommitInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    commit_id: str
    message: str
    timestamp: str = ""  # ISO timestamp
    files: tuple[str, ...] = ()

    @property
    def short_id(self) -> str:
        return self.commit_id[:8]

    @property
    def is_refactor(self) -> bool:
        return bool(_REFACTOR_RE.search(self.message))

    def touches(self, source_file: Optional[str], component: str) -> bool:
        """Whether this commit plausibly touches the given component."""
        if source_file:
            norm = source_file.replace("\\", "/").lstrip("./")
            if any(f.replace("\\", "/").lstrip("./") == norm for f in self.files):
                return True
        if not component:
            return False
        component = component.lower()
        for f in self.files:
            stem = f.replace("\\", "/").rsplit("/", 1)[-1].split(".", 1)[0].lower()
            if stem == component:
                return True
        return not self.files and component in self.message.lower()


class TokenChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    old_value: str
    new_value: str
    commit_id: str = ""


class ContextSnapshot(BaseModel):
    """Immutable context shared by reference across every story in a run.

    ``unavailable`` lists the parts (``commits``, ``tokens``, ``pr``) the
    context collaborator could not obtain.
    """

    model_config = ConfigDict(frozen=True)

    commits: tuple[CommitInfo, ...] = ()
    token_changes: tuple[TokenChange, ...] = ()
    pr_description: str = ""
    branch: str = ""
    lookback_days: int = 7
    unavailable: tuple[str, ...] = Field(default=())

    @property
    def is_pull_request(self) -> bool:
        return bool(self.pr_description.strip())

    @property
    def is_partial(self) -> bool:
        return bool(self.unavailable)

    def refactor_commits_for(self, source_file: Optional[str], component: str) -> list[CommitInfo]:
        return [c for c in self.commits if c.is_refactor and c.touches(source_file, component)]
