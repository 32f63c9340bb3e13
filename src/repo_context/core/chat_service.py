"""Question answering over an assembled repository context."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from ..config.defaults import DEFAULT_OLLAMA_TEMPERATURE
from .context_builder import ContextAssembler
from .exceptions import LLMError
from .llm_client import LLMClient

SIMPLE_RESPONSE_SCHEMA = {
    "type": "object",
    "properties": {"response": {"type": "string"}},
}

UNAVAILABLE_REPLY = (
    "Sorry, the language model is unavailable right now. Please try again shortly."
)

QUESTION_PREVIEW_CHARS = 80

CONTEXT_GUIDANCE = """You are a helpful assistant for a codebase. The user is asking about the repository whose file contents are provided below. "This", "this repo", "the codebase" and similar phrases always refer to that content; do not ask for clarification or a URL. Answer from the provided code and file contents. Section headers "--- path ---" show which files are included; if the user asks what files are available, list those paths. When the user asks what a ticket, task or phrase means, infer from the codebase what it could mean using the repo's structure, CI/CD, config and docs, and say you're inferring from the context. Only say "not in the provided file contents" if you truly cannot relate the question to the context. Be concise but accurate."""

SYSTEM_TEMPLATE = """{guidance}

Codebase context (file contents from the repo):
{context}"""

GENERATE_TEMPLATE = """{guidance}

Codebase context (file contents from the repo):
{context}

Question: {question}

Reply with a JSON object containing one key "response" and your answer as the value."""


def sanitize_history(history: Sequence[dict[str, Any]] | None) -> list[dict[str, str]]:
    """Chat history limited to user/assistant roles with non-empty content.

    Any role other than ``assistant`` is treated as ``user``, so a client
    cannot inject a ``system`` message.
    """
    messages: list[dict[str, str]] = []
    for msg in history or []:
        if not isinstance(msg, dict):
            continue
        role = "assistant" if str(msg.get("role", "")) == "assistant" else "user"
        content = str(msg.get("content") or "")
        if content.strip():
            messages.append({"role": role, "content": content})
    return messages


class ChatService:
    """Answers a question given the repository context and prior turns."""

    def __init__(
        self,
        client: LLMClient,
        model: str | None = None,
        temperature: float = DEFAULT_OLLAMA_TEMPERATURE,
    ) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature

    def ask(
        self,
        question: str,
        repo_context: str,
        history: Sequence[dict[str, Any]] | None = None,
    ) -> str:
        """Reply text for ``question``. Never raises on LLM failure.

        Tries the chat endpoint first, then a single structured ``generate``
        call, then returns a fixed apology.
        """
        preview = (
            f"{question[:QUESTION_PREVIEW_CHARS]}..."
            if len(question) > QUESTION_PREVIEW_CHARS
            else question
        )
        logger.info(f'ask (chat): "{preview}" (model={self.model})')

        try:
            reply = self._reply_from_chat(question, repo_context, history)
        except LLMError as e:
            logger.warning(f"chat failed: {e}, falling back to generate")
            reply = self.ask_via_generate(question, repo_context)

        logger.info(f"reply: {len(reply)} chars")
        return reply

    def ask_via_generate(self, question: str, repo_context: str) -> str:
        prompt = GENERATE_TEMPLATE.format(
            guidance=CONTEXT_GUIDANCE, context=repo_context, question=question
        )
        try:
            response = self.client.generate(prompt, SIMPLE_RESPONSE_SCHEMA, model=self.model)
        except LLMError as e:
            logger.error(f"generate fallback failed: {e}")
            return UNAVAILABLE_REPLY
        return str(response.get("response") or "")

    def build_messages(
        self,
        question: str,
        repo_context: str,
        history: Sequence[dict[str, Any]] | None,
    ) -> list[dict[str, str]]:
        system = SYSTEM_TEMPLATE.format(guidance=CONTEXT_GUIDANCE, context=repo_context)
        return [
            {"role": "system", "content": system},
            *sanitize_history(history),
            {"role": "user", "content": question},
        ]

    def _reply_from_chat(
        self,
        question: str,
        repo_context: str,
        history: Sequence[dict[str, Any]] | None,
    ) -> str:
        raw = self.client.chat(
            self.build_messages(question, repo_context, history),
            model=self.model,
            options={"temperature": self.temperature},
        )
        message = raw.get("message")
        if not isinstance(message, dict):
            return ""
        return str(message.get("content") or "")


@dataclass
class ChatReply:
    """Reply text plus the history to send back with the next question."""

    response: str
    history: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"response": self.response, "history": self.history}


def answer_question(
    assembler: ContextAssembler,
    service: ChatService,
    message: str,
    history: Sequence[dict[str, Any]] | None = None,
) -> ChatReply:
    """Gather context for ``message``, ask the model and extend the history."""
    context = assembler.gather(message)
    reply = service.ask(message, repo_context=context, history=history)
    new_history = sanitize_history(history) + [
        {"role": "user", "content": message},
        {"role": "assistant", "content": reply},
    ]
    return ChatReply(response=reply, history=new_history)
