"""Autonomous code review loop: planner, executor, summary writer and agent."""

from .agent import AgentPhase, CodeReviewAgent, ReviewEvent, resolve_target
from .executor import ReviewStepExecutor
from .models import (
    FileReviewOutcome,
    Finding,
    PlanAction,
    ReviewPlanStep,
    ReviewReport,
    ReviewState,
    Severity,
)
from .planner import ReviewPlanner
from .summary import ReviewSummaryWriter

__all__ = [
    "AgentPhase",
    "CodeReviewAgent",
    "FileReviewOutcome",
    "Finding",
    "PlanAction",
    "ReviewEvent",
    "ReviewPlanStep",
    "ReviewPlanner",
    "ReviewReport",
    "ReviewState",
    "ReviewStepExecutor",
    "ReviewSummaryWriter",
    "Severity",
    "resolve_target",
]
