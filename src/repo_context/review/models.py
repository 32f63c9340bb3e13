"""Data structures for the autonomous code review loop.

Every type here is immutable. The review loop threads a :class:`ReviewState`
through its iterations and each step produces a new state via
:meth:`ReviewState.append`, so the run's history is never rewritten.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

PLANNER_OBSERVATIONS_SHOWN = 3


class Severity(str, Enum):
    """Severity level of a finding."""

    SUGGESTION = "suggestion"
    WARNING = "warning"
    ERROR = "error"

    @classmethod
    def coerce(cls, value: Any) -> "Severity":
        """Map any input onto a severity; unknown values become SUGGESTION."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.SUGGESTION


class PlanAction(str, Enum):
    DONE = "done"
    REVIEW_FILE = "review_file"
    SUMMARIZE = "summarize"


@dataclass(frozen=True)
class Finding:
    """A single issue reported while reviewing a file."""

    file: str
    message: str
    line: int | None = None
    rule: str = ""
    severity: Severity = Severity.SUGGESTION

    def __post_init__(self) -> None:
        if not self.message or not self.message.strip():
            raise ValueError("Finding message must be non-empty")

    @classmethod
    def from_raw(cls, raw: Any, default_path: str) -> "Finding | None":
        """Normalize one LLM-produced finding.

        Missing ``file`` falls back to ``default_path``; ``line`` becomes an
        int or None; ``severity`` is clamped to the allowed values. Entries
        that are not objects or have no message are dropped (``None``).
        """
        if not isinstance(raw, dict):
            return None
        message = str(raw.get("message") or "").strip()
        if not message:
            return None

        file = str(raw.get("file") or "").strip() or default_path
        return cls(
            file=file,
            message=message,
            line=_coerce_line(raw.get("line")),
            rule=str(raw.get("rule") or "").strip(),
            severity=Severity.coerce(raw.get("severity")),
        )

    def format(self) -> str:
        """``[severity] file:line rule: message`` (``:line`` omitted when unknown)."""
        location = f"{self.file}:{self.line}" if self.line is not None else self.file
        return f"[{self.severity.value}] {location} {self.rule}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line,
            "rule": self.rule,
            "message": self.message,
            "severity": self.severity.value,
        }


def _coerce_line(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@dataclass(frozen=True)
class ReviewPlanStep:
    """What the planner wants to do next.

    ``action`` is kept as the stripped string the planner returned, so an
    unknown action is neither ``is_done`` nor ``is_review_file`` and the
    agent skips it.
    """

    action: str
    target: str | None = None
    reasoning: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "action", str(self.action or "").strip())
        object.__setattr__(self, "target", _strip_or_none(self.target))
        object.__setattr__(self, "reasoning", _strip_or_none(self.reasoning))

    @classmethod
    def done(cls, reasoning: str | None = None) -> "ReviewPlanStep":
        return cls(action=PlanAction.DONE.value, reasoning=reasoning)

    @classmethod
    def review_file(cls, target: str, reasoning: str | None = None) -> "ReviewPlanStep":
        return cls(action=PlanAction.REVIEW_FILE.value, target=target, reasoning=reasoning)

    @property
    def is_done(self) -> bool:
        return self.action == PlanAction.DONE.value

    @property
    def is_review_file(self) -> bool:
        return self.action == PlanAction.REVIEW_FILE.value

    @property
    def is_summarize(self) -> bool:
        return self.action == PlanAction.SUMMARIZE.value


@dataclass(frozen=True)
class FileReviewOutcome:
    """Result of one review step (a file review or the final summary)."""

    findings: tuple[Finding, ...] = ()
    observation: str | None = None
    reviewed_path: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "findings", tuple(self.findings))
        object.__setattr__(self, "observation", _strip_or_none(self.observation))
        object.__setattr__(self, "reviewed_path", _strip_or_none(self.reviewed_path))

    @classmethod
    def with_no_findings(cls, reviewed_path: str | None = None) -> "FileReviewOutcome":
        return cls(findings=(), observation=None, reviewed_path=reviewed_path)


@dataclass(frozen=True)
class ReviewState:
    """Immutable snapshot of an in-progress review."""

    request_paths: tuple[str, ...]
    focus: str
    reviewed_paths: tuple[str, ...] = ()
    findings: tuple[Finding, ...] = ()
    iteration: int = 0
    observations: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "request_paths", tuple(self.request_paths))
        object.__setattr__(self, "focus", str(self.focus or ""))
        object.__setattr__(self, "reviewed_paths", tuple(self.reviewed_paths))
        object.__setattr__(self, "findings", tuple(self.findings))
        object.__setattr__(self, "observations", tuple(self.observations))

    def append(self, outcome: FileReviewOutcome) -> "ReviewState":
        """New state with ``outcome`` recorded and ``iteration`` advanced."""
        reviewed = self.reviewed_paths
        if outcome.reviewed_path and outcome.reviewed_path not in reviewed:
            reviewed = (*reviewed, outcome.reviewed_path)

        observations = self.observations
        if outcome.observation:
            observations = (*observations, outcome.observation)

        return replace(
            self,
            reviewed_paths=reviewed,
            findings=(*self.findings, *outcome.findings),
            iteration=self.iteration + 1,
            observations=observations,
        )

    def remaining_candidates(self, candidate_paths: Iterable[str]) -> list[str]:
        """Candidates not yet reviewed, in candidate order."""
        reviewed = set(self.reviewed_paths)
        return [p for p in candidate_paths if p not in reviewed]

    @property
    def latest_observation(self) -> str | None:
        return self.observations[-1] if self.observations else None

    def summary_for_planner(self) -> str:
        lines = [f"Focus: {self.focus}"]
        if self.reviewed_paths:
            lines.append(
                f"Reviewed ({len(self.reviewed_paths)}): {', '.join(self.reviewed_paths)}"
            )
        lines.append(f"Findings so far: {len(self.findings)}")
        for observation in self.observations[-PLANNER_OBSERVATIONS_SHOWN:]:
            lines.append(f"Observation: {observation}")
        return "\n".join(lines)


@dataclass(frozen=True)
class ReviewReport:
    """Final review result in the shape returned to API callers."""

    findings: tuple[Finding, ...]
    summary: str | None
    reviewed_paths: tuple[str, ...]
    iterations: int

    @classmethod
    def from_state(cls, state: ReviewState) -> "ReviewReport":
        return cls(
            findings=state.findings,
            summary=state.latest_observation,
            reviewed_paths=state.reviewed_paths,
            iterations=state.iteration,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "findings": [f.to_dict() for f in self.findings],
            "summary": self.summary,
            "reviewed_paths": list(self.reviewed_paths),
            "iterations": self.iterations,
        }


def format_findings(findings: Sequence[Finding]) -> str:
    if not findings:
        return "No findings."
    return "\n".join(f.format() for f in findings)
