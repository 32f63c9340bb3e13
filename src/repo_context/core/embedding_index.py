"""Incremental embedding index and similarity retrieval.

Pipeline for one question:

1. Build (or reuse) the index: for every candidate file compare the stored
   mtime watermark with the file on disk; unchanged files reuse their stored
   chunks, changed or new files are re-chunked, embedded and upserted.
2. Embed the question.
3. Rank every indexed chunk by cosine similarity, keep the top K.
4. Emit ``--- path ---`` blocks in score order until the character budget
   is exhausted.

Any LLM, storage or filesystem failure degrades to an empty string; the
caller simply gets no embedding context for that question.
"""

import threading
from collections.abc import Callable, Sequence
from pathlib import Path

import numpy as np
from loguru import logger

from ..config.defaults import (
    DEFAULT_EMBED_CHUNK_OVERLAP,
    DEFAULT_EMBED_CHUNK_SIZE,
    DEFAULT_EMBED_MAX_CHUNKS,
    DEFAULT_EMBED_MIN_QUESTION_LENGTH,
    DEFAULT_EMBED_TOP_K,
)
from .exceptions import LLMError, VectorStoreError
from .llm_client import LLMClient
from .models import Chunk, RetrievedContext, ScoredChunk
from .vector_store import VectorStore

BLOCK_SEPARATOR = "\n\n"

PathsSource = Sequence[str] | Callable[[], Sequence[str]]


def chunk_text(
    text: str,
    path: str,
    chunk_size: int = DEFAULT_EMBED_CHUNK_SIZE,
    overlap: int = DEFAULT_EMBED_CHUNK_OVERLAP,
    max_chunks: int = DEFAULT_EMBED_MAX_CHUNKS,
) -> list[Chunk]:
    """Split ``text`` into overlapping fixed-size windows.

    Windows start every ``chunk_size - overlap`` characters. Splitting stops
    at the end of the text or after ``max_chunks`` windows.

    Raises:
        ValueError: If ``chunk_size`` is not positive or ``overlap`` is not
            smaller than ``chunk_size``
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError(
            f"overlap must be in [0, chunk_size), got {overlap} (chunk_size={chunk_size})"
        )

    step = chunk_size - overlap
    chunks: list[Chunk] = []
    start = 0
    while start < len(text) and len(chunks) < max_chunks:
        chunks.append(
            Chunk(path=path, chunk_index=len(chunks), text=text[start : start + chunk_size])
        )
        start += step
    return chunks


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 for empty, mismatched or zero-norm vectors."""
    if len(a) != len(b) or len(a) == 0:
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def top_k_by_similarity(
    chunks: Sequence[Chunk], query_vec: Sequence[float], k: int
) -> list[ScoredChunk]:
    """Top ``k`` chunks by cosine similarity, highest first.

    The sort is stable, so equal scores keep their index order.
    """
    if k <= 0:
        return []
    scored = [ScoredChunk(chunk=c, score=cosine_similarity(query_vec, c.embedding)) for c in chunks]
    scored.sort(key=lambda s: -s.score)
    return scored[:k]


def pack_chunks(chunks: Sequence[Chunk], max_chars: int) -> RetrievedContext:
    """Join chunk blocks in order without exceeding ``max_chars``.

    The first block that would overflow the budget (separator included) is
    dropped, not truncated, and packing stops there with ``overflowed`` set.
    """
    parts: list[str] = []
    total = 0
    overflowed = False
    for chunk in chunks:
        block = chunk.to_block()
        cost = len(block) + (len(BLOCK_SEPARATOR) if parts else 0)
        if total + cost > max_chars:
            overflowed = True
            break
        parts.append(block)
        total += cost

    if parts:
        logger.info(f"embed context: {len(parts)} chunks, {total} chars")
    return RetrievedContext(BLOCK_SEPARATOR.join(parts), overflowed)


def assemble_context(chunks: Sequence[Chunk], max_chars: int) -> str:
    return pack_chunks(chunks, max_chars).text


class EmbeddingIndexBuilder:
    """Builds the embedding index for a repository and retrieves context.

    The built index is kept as an immutable snapshot. The first caller builds
    it under a lock; concurrent callers wait and then reuse the snapshot, so
    simultaneous first requests never duplicate embedding work.
    """

    def __init__(
        self,
        client: LLMClient,
        store: VectorStore,
        repo_root: Path,
        paths_source: PathsSource,
        enabled: bool = True,
        top_k: int = DEFAULT_EMBED_TOP_K,
        chunk_size: int = DEFAULT_EMBED_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_EMBED_CHUNK_OVERLAP,
        max_chunks: int = DEFAULT_EMBED_MAX_CHUNKS,
        min_question_length: int = DEFAULT_EMBED_MIN_QUESTION_LENGTH,
        embed_model: str | None = None,
    ) -> None:
        """Initialize the builder.

        Args:
            client: LLM client used for ``embed``
            store: Persistent chunk store
            repo_root: Repository root the candidate paths are relative to
            paths_source: Relative paths to index, or a callable returning them
            enabled: When False, ``context_for_question`` always returns ""
            top_k: Chunks retrieved per question
            chunk_size: Window size in characters
            chunk_overlap: Characters shared by consecutive windows
            max_chunks: Cap on chunks per file and on the whole index
            min_question_length: Shorter (stripped) questions are not embedded
            embed_model: Embedding model override passed to the client
        """
        self.client = client
        self.store = store
        self.repo_root = repo_root
        self.paths_source = paths_source
        self.enabled = enabled
        self.top_k = top_k
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.max_chunks = max_chunks
        self.min_question_length = min_question_length
        self.embed_model = embed_model

        self._index_lock = threading.Lock()
        self._index: tuple[Chunk, ...] | None = None
        self._index_root: Path | None = None

    def context_for_question(self, question: str | None, max_chars: int) -> str:
        """Top-K chunk blocks relevant to ``question`` within ``max_chars``.

        Returns "" when disabled, when there is no budget, when the question
        is too short, or when anything in the pipeline fails.
        """
        return self.retrieve(question, max_chars).text

    def retrieve(self, question: str | None, max_chars: int) -> RetrievedContext:
        """Like :meth:`context_for_question`, also reporting a dropped block."""
        if not self.enabled or self.top_k <= 0 or max_chars <= 0:
            return RetrievedContext()
        if not self.question_worth_embedding(question):
            logger.debug("embed context: question too short, skipping")
            return RetrievedContext()

        try:
            index = self.index_for()
            if not index:
                return RetrievedContext()

            query_vec = self.client.embed(str(question).strip(), model=self.embed_model)
            if not query_vec:
                logger.warning("embed context: empty query embedding, skipping")
                return RetrievedContext()

            top = top_k_by_similarity(index, query_vec, self.top_k)
            return pack_chunks([s.chunk for s in top], max_chars)

        except (LLMError, VectorStoreError, OSError) as e:
            logger.warning(f"embed context failed ({type(e).__name__}): {e}")
            return RetrievedContext()

    def question_worth_embedding(self, question: str | None) -> bool:
        if question is None:
            return False
        return len(str(question).strip()) >= self.min_question_length

    def index_for(
        self, paths: Sequence[str] | None = None, refresh: bool = False
    ) -> tuple[Chunk, ...]:
        """Return the index snapshot, building it on first use.

        Args:
            paths: Relative paths to index (defaults to ``paths_source``)
            refresh: Rebuild even if a snapshot exists (unchanged files are
                still reused from the store)
        """
        with self._index_lock:
            if (
                not refresh
                and self._index is not None
                and self._index_root == self.repo_root
            ):
                return self._index

            logger.info("building/loading embedding index...")
            to_index = list(paths) if paths is not None else self._resolve_paths()
            index = tuple(self.build_index(to_index))
            self._index = index
            self._index_root = self.repo_root
            logger.info(f"embedding index ready: {len(index)} chunks")
            return index

    def invalidate(self) -> None:
        """Drop the in-memory snapshot; the next question rebuilds it."""
        with self._index_lock:
            self._index = None
            self._index_root = None

    def build_index(self, paths: Sequence[str]) -> list[Chunk]:
        """Index ``paths`` incrementally and return every indexed chunk.

        Files whose stored mtime matches the file on disk are reused from the
        store without any embedding request, unless the stored chunk set is
        empty (a previous embed failed), in which case they are re-embedded.

        Raises:
            LLMError: If an embedding request fails (files indexed before the
                failure stay persisted)
            VectorStoreError: If the store cannot be read or written
        """
        all_chunks: list[Chunk] = []

        for rel_path in paths:
            if len(all_chunks) >= self.max_chunks:
                logger.debug(f"embedding index: chunk cap {self.max_chunks} reached")
                break

            full_path = self.repo_root / rel_path
            try:
                if not full_path.is_file():
                    continue
                mtime = int(full_path.stat().st_mtime)
            except OSError as e:
                logger.warning(f"cannot stat {rel_path}: {e}")
                continue

            if self.store.stored_mtime(rel_path) == mtime:
                stored = self.store.find_chunks(rel_path)
                if stored:
                    logger.debug(f"verifying {rel_path}: unchanged")
                    all_chunks.extend(stored)
                    continue

            file_chunks = self._embed_file(
                full_path, rel_path, self.max_chunks - len(all_chunks)
            )
            if file_chunks:
                self.store.upsert(rel_path, mtime, file_chunks)
                all_chunks.extend(file_chunks)

        return all_chunks[: self.max_chunks]

    def _embed_file(self, full_path: Path, rel_path: str, limit: int) -> list[Chunk]:
        try:
            content = full_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"cannot read {rel_path}: {e}")
            return []

        logger.info(f"indexing {rel_path} (new/modified)...")
        embedded: list[Chunk] = []
        for chunk in chunk_text(
            content, rel_path, self.chunk_size, self.chunk_overlap, limit
        ):
            vector = self.client.embed(chunk.text, model=self.embed_model)
            if not vector:
                logger.debug(f"empty embedding for {rel_path}#{chunk.chunk_index}")
                continue
            embedded.append(
                Chunk(
                    path=rel_path,
                    chunk_index=len(embedded),
                    text=chunk.text,
                    embedding=tuple(vector),
                )
            )
        return embedded

    def _resolve_paths(self) -> list[str]:
        source = self.paths_source
        return list(source() if callable(source) else source)
