"""Reviews a single file."""

from loguru import logger

from ..config.defaults import DEFAULT_REVIEW_MAX_FILE_SIZE
from ..core.exceptions import LLMError
from ..core.llm_client import LLMClient
from .models import FileReviewOutcome, Finding, ReviewPlanStep
from .prompts import FINDINGS_SCHEMA, REVIEW_PROMPT, TRUNCATION_MARKER


class ReviewStepExecutor:
    """Runs one ``review_file`` step and normalizes the LLM's findings."""

    def __init__(
        self,
        client: LLMClient,
        model: str | None = None,
        max_content_chars: int = DEFAULT_REVIEW_MAX_FILE_SIZE,
    ) -> None:
        self.client = client
        self.model = model
        self.max_content_chars = max_content_chars

    def execute(
        self,
        step: ReviewPlanStep,
        file_content: str,
        path: str,
        focus: str | None = None,
    ) -> FileReviewOutcome:
        """Review ``file_content`` and return its findings.

        An LLM failure yields a zero-finding outcome whose observation records
        the reason; the path still counts as reviewed.
        """
        prompt = REVIEW_PROMPT.format(
            focus=focus or step.reasoning or "general quality",
            path=path,
            content=self._bounded(file_content),
        )
        try:
            response = self.client.generate(prompt, FINDINGS_SCHEMA, model=self.model)
        except LLMError as e:
            logger.warning(f"executor failed for {path}: {e}")
            return FileReviewOutcome(observation=f"Review failed: {e}", reviewed_path=path)

        raw_findings = response.get("findings")
        if not isinstance(raw_findings, list):
            raw_findings = []
        findings = [
            finding
            for finding in (Finding.from_raw(raw, path) for raw in raw_findings)
            if finding is not None
        ]
        observation = str(response.get("observation") or "")

        logger.info(f"executor: {len(findings)} finding(s) for {path}")
        return FileReviewOutcome(
            findings=tuple(findings), observation=observation, reviewed_path=path
        )

    def _bounded(self, content: str) -> str:
        if len(content) <= self.max_content_chars:
            return content
        return content[: self.max_content_chars] + TRUNCATION_MARKER.format(
            shown=self.max_content_chars, total=len(content)
        )
