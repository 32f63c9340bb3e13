"""Data models for the context pipeline."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Chunk:
    """A window of a file's text plus its embedding; the unit of retrieval.

    ``embedding`` is empty until the chunk has been embedded.
    """

    path: str
    chunk_index: int
    text: str
    embedding: tuple[float, ...] = field(default=(), repr=False)

    def to_block(self) -> str:
        """Render as a ``--- path ---`` section for the LLM context."""
        return f"--- {self.path} ---\n{self.text}"


@dataclass(frozen=True)
class ScoredChunk:
    """A chunk paired with its cosine similarity to a query."""

    chunk: Chunk
    score: float


@dataclass(frozen=True)
class RetrievedContext:
    """Chunk blocks packed into a character budget.

    ``overflowed`` is set when a block was dropped because it did not fit.
    """

    text: str = ""
    overflowed: bool = False
