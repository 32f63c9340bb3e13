"""Chooses the next review step."""

from collections.abc import Sequence

from loguru import logger

from ..core.exceptions import LLMError
from ..core.llm_client import LLMClient
from .models import PlanAction, ReviewPlanStep, ReviewState
from .prompts import PLAN_PATHS_LIMIT, PLAN_PROMPT, PLAN_SCHEMA


class ReviewPlanner:
    """Asks the LLM which unreviewed file to look at next, or to stop.

    Never returns ``None``: with no candidates left it answers ``done``
    without calling the LLM, and when the LLM fails it falls back to
    reviewing the first remaining candidate.
    """

    def __init__(self, client: LLMClient, model: str | None = None) -> None:
        self.client = client
        self.model = model

    def next_step(self, state: ReviewState, candidate_paths: Sequence[str]) -> ReviewPlanStep:
        if not candidate_paths:
            return ReviewPlanStep.done("No files to review")

        remaining = state.remaining_candidates(candidate_paths)
        if not remaining:
            return ReviewPlanStep.done("All candidates reviewed")

        prompt = PLAN_PROMPT.format(
            focus=state.focus,
            state_summary=state.summary_for_planner(),
            remaining="\n".join(remaining[:PLAN_PATHS_LIMIT]),
        )
        try:
            response = self.client.generate(prompt, PLAN_SCHEMA, model=self.model)
        except LLMError as e:
            logger.warning(f"planner failed: {e}, defaulting to first remaining file")
            return ReviewPlanStep.review_file(remaining[0], "fallback")

        action = str(response.get("next_action") or "")
        if response.get("done") is True:
            action = PlanAction.DONE.value

        step = ReviewPlanStep(
            action=action,
            target=str(response.get("target") or ""),
            reasoning=str(response.get("reasoning") or ""),
        )
        logger.info(f"planner: action={step.action}, target={step.target}")
        return step
