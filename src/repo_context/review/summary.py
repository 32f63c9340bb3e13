"""Final summary step of the review loop."""

from loguru import logger

from ..core.exceptions import LLMError
from ..core.llm_client import LLMClient
from .models import FileReviewOutcome, ReviewState, format_findings
from .prompts import SUMMARY_PROMPT, SUMMARY_SCHEMA

NO_SUMMARY_PLACEHOLDER = "No summary produced."


class ReviewSummaryWriter:
    """Turns the accumulated findings into a short developer-facing summary."""

    def __init__(self, client: LLMClient, model: str | None = None) -> None:
        self.client = client
        self.model = model

    def summarize(self, state: ReviewState) -> FileReviewOutcome:
        if not state.reviewed_paths:
            return FileReviewOutcome.with_no_findings(None)

        prompt = SUMMARY_PROMPT.format(
            focus=state.focus,
            reviewed_paths=", ".join(state.reviewed_paths),
            findings=format_findings(state.findings),
        )
        try:
            response = self.client.generate(prompt, SUMMARY_SCHEMA, model=self.model)
        except LLMError as e:
            logger.warning(f"summary failed: {e}")
            return FileReviewOutcome(observation=f"Summary failed: {e}")

        summary = str(response.get("summary") or "").strip() or NO_SUMMARY_PLACEHOLDER
        logger.info("summary produced")
        return FileReviewOutcome(observation=summary)
