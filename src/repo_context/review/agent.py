"""Autonomous plan -> act -> observe -> replan code review loop.

Phases::

    PLANNING ──> REVIEWING_FILE ──> PLANNING ...
        │
        └──> SUMMARIZING ──> DONE

The loop runs at most ``max_iterations`` plan/act cycles. Running out of
iterations is a normal exit: the caller gets the partial state. A
:class:`CancellationToken` is checked before each plan and around every file
read; an in-flight LLM call is never interrupted.
"""

import os
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from loguru import logger

from ..config.defaults import (
    DEFAULT_REVIEW_EXCLUDED_PATTERNS,
    DEFAULT_REVIEW_FOCUS,
    DEFAULT_REVIEW_MAX_FILE_SIZE,
    DEFAULT_REVIEW_MAX_ITERATIONS,
    DEFAULT_REVIEW_MAX_PATHS,
)
from ..core.discovery import RepoPaths, filter_review_paths
from ..utils.cancellation import CancellationToken
from .executor import ReviewStepExecutor
from .models import FileReviewOutcome, ReviewReport, ReviewState
from .planner import ReviewPlanner
from .summary import ReviewSummaryWriter


class AgentPhase(str, Enum):
    PLANNING = "planning"
    REVIEWING_FILE = "reviewing_file"
    SUMMARIZING = "summarizing"
    DONE = "done"


@dataclass(frozen=True)
class ReviewEvent:
    """Progress notification emitted by :meth:`CodeReviewAgent.run`.

    Names: ``plan``, ``review_file``, ``review_done``, ``summarize``,
    ``summary_done``, ``cancelled``, ``done``.
    """

    name: str
    iteration: int
    phase: AgentPhase
    payload: Any = None


EventCallback = Callable[[ReviewEvent], None]


class CandidatePathSource(Protocol):
    def candidate_paths(self) -> list[str]: ...


def resolve_target(target: str, candidates: Sequence[str]) -> str | None:
    """Match a planner target to a candidate: exact, then ``/target`` suffix, then basename."""
    if target in candidates:
        return target
    for candidate in candidates:
        if candidate.endswith(f"/{target}"):
            return candidate
    for candidate in candidates:
        if os.path.basename(candidate) == target:
            return candidate
    return None


class CodeReviewAgent:
    """Drives a review over a bounded set of repository files."""

    def __init__(
        self,
        planner: ReviewPlanner,
        executor: ReviewStepExecutor,
        summary_writer: ReviewSummaryWriter,
        repo_paths: RepoPaths,
        path_source: CandidatePathSource | None = None,
        max_iterations: int = DEFAULT_REVIEW_MAX_ITERATIONS,
        max_paths: int = DEFAULT_REVIEW_MAX_PATHS,
        max_file_size: int = DEFAULT_REVIEW_MAX_FILE_SIZE,
        excluded_patterns: Sequence[str] = tuple(DEFAULT_REVIEW_EXCLUDED_PATTERNS),
        default_focus: str = DEFAULT_REVIEW_FOCUS,
    ) -> None:
        """Initialize the agent.

        Args:
            planner: Chooses the next step
            executor: Reviews one file
            summary_writer: Produces the closing summary
            repo_paths: Safe file access under the repository root
            path_source: Supplies candidates when the caller passes no paths
            max_iterations: Upper bound on plan/act cycles
            max_paths: Upper bound on candidate files
            max_file_size: Larger files are never reviewed (bytes)
            excluded_patterns: fnmatch globs for paths never reviewed
            default_focus: Focus used when the caller gives none
        """
        self.planner = planner
        self.executor = executor
        self.summary_writer = summary_writer
        self.repo_paths = repo_paths
        self.path_source = path_source
        self.max_iterations = max_iterations
        self.max_paths = max_paths
        self.max_file_size = max_file_size
        self.excluded_patterns = list(excluded_patterns)
        self.default_focus = default_focus

    def candidate_paths(self, request_paths: Sequence[str] | None = None) -> list[str]:
        """Seed paths for a run, filtered to reviewable files."""
        paths = list(request_paths or [])
        if not paths and self.path_source is not None:
            paths = self.path_source.candidate_paths()
        return filter_review_paths(
            paths,
            self.repo_paths,
            max_paths=self.max_paths,
            max_file_size=self.max_file_size,
            excluded_patterns=self.excluded_patterns,
        )

    def run(
        self,
        request_paths: Sequence[str] | None = None,
        focus: str | None = None,
        cancel_token: CancellationToken | None = None,
        on_event: EventCallback | None = None,
    ) -> ReviewState:
        """Review files until the planner is done, iterations run out, or cancelled.

        Args:
            request_paths: Files to review; discovered candidates when empty
            focus: What the review should prioritize
            cancel_token: Checked between iterations and around file reads
            on_event: Receives a :class:`ReviewEvent` per transition

        Returns:
            The final (possibly partial) review state
        """
        candidates = self.candidate_paths(request_paths)
        state = ReviewState(request_paths=candidates, focus=focus or self.default_focus)
        logger.info(f"review: {len(candidates)} candidate path(s), focus={state.focus!r}")

        def emit(name: str, phase: AgentPhase, payload: Any = None) -> None:
            self._emit(on_event, ReviewEvent(name, state.iteration, phase, payload))

        def cancelled() -> bool:
            if cancel_token is not None and cancel_token.cancelled:
                logger.warning(f"review cancelled at iteration {state.iteration}")
                emit("cancelled", AgentPhase.DONE, state)
                return True
            return False

        if not candidates:
            emit("done", AgentPhase.DONE, state)
            return state

        for _ in range(self.max_iterations):
            emit("plan", AgentPhase.PLANNING)
            if cancelled():
                return state

            step = self.planner.next_step(state, candidates)
            if step.is_done:
                emit("summarize", AgentPhase.SUMMARIZING)
                outcome = self.summary_writer.summarize(state)
                state = state.append(outcome)
                emit("summary_done", AgentPhase.SUMMARIZING, outcome)
                emit("done", AgentPhase.DONE, state)
                return state

            if not step.is_review_file or not step.target:
                logger.debug(f"skipping planner action {step.action!r}")
                continue

            path = resolve_target(step.target, candidates)
            if path is None:
                logger.warning(f"planner target not in candidates: {step.target}")
                continue

            emit("review_file", AgentPhase.REVIEWING_FILE, path)
            if cancelled():
                return state

            content = self.repo_paths.read_text(path)
            if content is None:
                logger.warning(f"could not read file: {path}")
                state = state.append(FileReviewOutcome.with_no_findings(path))
                continue

            outcome = self.executor.execute(step, content, path, focus=state.focus)
            state = state.append(outcome)
            emit("review_done", AgentPhase.REVIEWING_FILE, outcome)
            if cancelled():
                return state

        logger.info(f"review: iteration cap {self.max_iterations} reached")
        emit("done", AgentPhase.DONE, state)
        return state

    def review(
        self,
        request_paths: Sequence[str] | None = None,
        focus: str | None = None,
        **kwargs: Any,
    ) -> ReviewReport:
        """Run a review and return the API-facing report."""
        return ReviewReport.from_state(self.run(request_paths, focus, **kwargs))

    @staticmethod
    def _emit(callback: EventCallback | None, event: ReviewEvent) -> None:
        if callback is None:
            return
        try:
            callback(event)
        except Exception as e:
            logger.warning(f"review event callback failed on {event.name}: {e}")
