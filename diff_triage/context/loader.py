"""Context collaborator: builds the run's ContextSnapshot exactly once.

Sources are a JSON context file (token diff, PR text, optional commits) and
the local git history bounded by the lookback window. Each missing part is
recorded in ``unavailable`` instead of failing the run.
"""

from __future__ import annotations

import json
import logging
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

from diff_triage.errors import ContextUnavailable
from diff_triage.models.context import CommitInfo, ContextSnapshot, TokenChange

logger = logging.getLogger(__name__)

_RECORD_SEP = "\x1e"
_FIELD_SEP = "\x1f"


def _parse_timestamp(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _within(commit: CommitInfo, cutoff: datetime) -> bool:
    ts = _parse_timestamp(commit.timestamp)
    return ts is None or ts >= cutoff


def _commit_from_dict(data: dict[str, Any]) -> CommitInfo:
    return CommitInfo(
        commit_id=str(data.get("id") or data.get("commit_id") or data.get("sha") or ""),
        message=str(data.get("message", "")),
        timestamp=str(data.get("timestamp", "")),
        files=tuple(data.get("files", [])),
    )


def _token_from_dict(data: dict[str, Any]) -> TokenChange:
    return TokenChange(
        name=str(data["name"]),
        old_value=str(data.get("old") or data.get("old_value") or ""),
        new_value=str(data.get("new") or data.get("new_value") or ""),
        commit_id=str(data.get("commit") or data.get("commit_id") or ""),
    )


def read_git_commits(repo_dir: Path, lookback_days: int) -> list[CommitInfo]:
    """Read commits from ``git log`` within the lookback window."""
    fmt = f"{_RECORD_SEP}%H{_FIELD_SEP}%cI{_FIELD_SEP}%B{_FIELD_SEP}"
    try:
        proc = subprocess.run(
            ["git", "log", f"--since={lookback_days}.days", "--name-only", f"--format={fmt}"],
            cwd=repo_dir, capture_output=True, text=True, timeout=30, check=True,
        )
    except (OSError, subprocess.SubprocessError) as e:
        raise ContextUnavailable(f"git log failed: {e}") from e
    return parse_git_log(proc.stdout)


def parse_git_log(output: str) -> list[CommitInfo]:
    commits = []
    for record in output.split(_RECORD_SEP):
        if not record.strip():
            continue
        parts = record.split(_FIELD_SEP)
        if len(parts) < 4:
            continue
        sha, timestamp, message, files_blob = parts[0], parts[1], parts[2], parts[3]
        files = tuple(line.strip() for line in files_blob.splitlines() if line.strip())
        commits.append(CommitInfo(
            commit_id=sha.strip(), message=message.strip(), timestamp=timestamp.strip(), files=files,
        ))
    return commits


def read_git_branch(repo_dir: Path) -> str:
    try:
        proc = subprocess.run(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            cwd=repo_dir, capture_output=True, text=True, timeout=10, check=True,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug("Could not read git branch: %s", e)
        return ""
    return proc.stdout.strip()


def load_context(
    context_file: Optional[Path] = None,
    repo_dir: Optional[Path] = None,
    lookback_days: int = 7,
    now: Optional[datetime] = None,
) -> ContextSnapshot:
    """Build the run's context snapshot.

    Raises ContextUnavailable only when no part could be obtained at all.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=lookback_days)
    data: dict[str, Any] = {}
    unavailable: list[str] = []

    if context_file is not None:
        try:
            with open(context_file) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Context file %s unreadable: %s", context_file, e)

    commits: list[CommitInfo] = []
    commits_ok = False
    if "commits" in data:
        commits = [_commit_from_dict(c) for c in data["commits"]]
        commits_ok = True
    elif repo_dir is not None:
        try:
            commits = read_git_commits(repo_dir, lookback_days)
            commits_ok = True
        except ContextUnavailable as e:
            logger.warning("Commit history unavailable: %s", e)
    if not commits_ok:
        unavailable.append("commits")
    commits = [c for c in commits if _within(c, cutoff)]

    tokens: list[TokenChange] = []
    if "tokens" in data:
        try:
            tokens = [_token_from_dict(t) for t in data["tokens"]]
        except (KeyError, TypeError) as e:
            logger.warning("Malformed token diff in context file: %s", e)
            unavailable.append("tokens")
    else:
        unavailable.append("tokens")

    pr_description = data.get("prDescription", data.get("pr_description"))
    if pr_description is None:
        unavailable.append("pr")
        pr_description = ""

    branch = str(data.get("branch", "")) or (read_git_branch(repo_dir) if repo_dir else "")

    if len(unavailable) == 3:
        raise ContextUnavailable("no commit, token or PR context could be obtained")

    snapshot = ContextSnapshot(
        commits=tuple(commits),
        token_changes=tuple(tokens),
        pr_description=str(pr_description),
        branch=branch,
        lookback_days=lookback_days,
        unavailable=tuple(unavailable),
    )
    logger.info(
        "Context: %d commits, %d token changes, PR=%s, branch=%s%s",
        len(snapshot.commits), len(snapshot.token_changes), snapshot.is_pull_request,
        snapshot.branch or "?", f" (unavailable: {', '.join(unavailable)})" if unavailable else "",
    )
    return snapshot
