"""Shared fixtures: a scripted LLM client and a small sample repository."""

from pathlib import Path

import pytest

from repo_context.core.exceptions import LLMError

# Vocabulary for the fake embedding model: one dimension per keyword
EMBED_VOCABULARY = ("invoice", "user", "payment", "route")


def keyword_embedding(text: str) -> list[float]:
    """Deterministic embedding: keyword counts plus a constant bias dimension."""
    lowered = text.lower()
    return [float(lowered.count(word)) for word in EMBED_VOCABULARY] + [0.1]


class FakeLLMClient:
    """LLMClient double that replays scripted responses and records calls.

    ``generate_responses`` / ``chat_responses`` are consumed in order; an
    exception instance in the list is raised instead of returned. Running out
    of scripted responses raises ``LLMError``.
    """

    def __init__(
        self,
        generate_responses=None,
        chat_responses=None,
        embed_fn=keyword_embedding,
        embed_error: Exception | None = None,
    ):
        self.generate_responses = list(generate_responses or [])
        self.chat_responses = list(chat_responses or [])
        self.embed_fn = embed_fn
        self.embed_error = embed_error
        self.generate_calls: list[tuple[str, dict, str | None]] = []
        self.chat_calls: list[tuple[list, str | None, dict | None]] = []
        self.embed_calls: list[str] = []

    def generate(self, prompt, schema, model=None):
        self.generate_calls.append((prompt, schema, model))
        return self._next(self.generate_responses, "generate")

    def chat(self, messages, model=None, options=None):
        self.chat_calls.append((messages, model, options))
        return self._next(self.chat_responses, "chat")

    def embed(self, text, model=None):
        self.embed_calls.append(text)
        if self.embed_error is not None:
            raise self.embed_error
        return self.embed_fn(text)

    @staticmethod
    def _next(queue, name):
        if not queue:
            raise LLMError(f"no scripted {name} response left")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def fake_llm():
    """A FakeLLMClient with nothing scripted (every generate/chat fails)."""
    return FakeLLMClient()


@pytest.fixture
def make_llm():
    """Factory fixture: ``make_llm(generate_responses=[...], ...)``."""
    return FakeLLMClient


def write_files(root: Path, files: dict[str, str]) -> None:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


@pytest.fixture
def sample_repo(tmp_path):
    """A small Rails-like repository under ``tmp_path``."""
    write_files(
        tmp_path,
        {
            "README.md": "# Billing\nHandles invoice and payment flows.\n",
            "Gemfile": "source 'https://rubygems.org'\ngem 'rails'\n",
            "app/models/invoice.rb": "class Invoice\n  def total\n    42\n  end\nend\n",
            "app/models/user.rb": "class User\n  def name\n    'u'\n  end\nend\n",
            "app/services/payment_gateway.rb": "class PaymentGateway\nend\n",
            "lib/tasks.rb": "# rake tasks for invoice export\n",
            "config/routes.rb": "Rails.application.routes.draw do\n  # route table\nend\n",
            "docs/notes.txt": "not an indexed extension\n",
        },
    )
    return tmp_path
