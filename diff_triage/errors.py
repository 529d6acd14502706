"""Error taxonomy for the triage engine.

Per-story conditions are contained and turned into report entries by the
orchestrator; only ``RunAborted`` ends a whole run.
"""

from __future__ import annotations


class DiffTriageError(Exception):
    """Base class for triage engine errors."""


class IncompatibleBaseline(DiffTriageError):
    def __init__(self, baseline_size: tuple[int, int], current_size: tuple[int, int]):
        self.baseline_size = baseline_size
        self.current_size = current_size
        super().__init__(
            f"baseline incompatible: baseline is {baseline_size[0]}x{baseline_size[1]}, "
            f"current is {current_size[0]}x{current_size[1]}"
        )


class MissingBaseline(DiffTriageError):
    """No baseline stored for a story; a first-run condition, not a failure."""


class CorruptBaseline(DiffTriageError):
    """Stored baseline is unreadable or does not match its recorded hash."""


class ContextUnavailable(DiffTriageError):
    """Commit, token or PR context could not be obtained."""


class ClassifierTimeout(DiffTriageError):
    """The optional external classifier did not answer in time."""


class RunAborted(DiffTriageError):
    """Cancellation or an unrecoverable infrastructure failure."""
