"""Context assembly for repository questions.

The final context string is built in four stages, each charged against one
global character budget:

1. Reference files (README, Gemfile, ...), or the fallback list if none load
2. Embedding retrieval for the question
3. "Boost" files named in the question ("the Invoice model" -> invoice.rb)
4. Files picked by the LLM discovery step

Blocks are joined with a blank line. Headers and joiners count toward the
budget, so the returned string never exceeds ``max_chars``. Once a stage
drops or truncates a block, the later stages add nothing, so a smaller
budget never includes a source that a larger one left out.
"""

import re
from collections.abc import Sequence
from pathlib import Path

from loguru import logger

from ..config.defaults import (
    BOOST_PATH_TEMPLATES,
    DEFAULT_CONTEXT_MAX_CHARS,
    DEFAULT_FALLBACK_CONTEXT_FILES,
    DEFAULT_REFERENCE_FILES,
)
from .discovery import DiscoverySelector, RepoPaths
from .embedding_index import BLOCK_SEPARATOR, EmbeddingIndexBuilder

BOOST_PHRASE_RE = re.compile(r"\b([A-Z][a-zA-Z]*)\s+(?:model|class|service)\b")


def pascal_to_snake(name: str) -> str:
    """``InvoiceLineItem`` -> ``invoice_line_item``; ``HTTPClient`` -> ``http_client``."""
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", name)
    return name.lower()


class _ContextBuffer:
    """Accumulates blocks and tracks the loaded files against the budget."""

    def __init__(self, max_chars: int) -> None:
        self.max_chars = max_chars
        self.parts: list[str] = []
        self.used = 0
        self.loaded: set[Path] = set()
        # Set once a stage drops or truncates a block; later loading stops.
        self.exhausted = False

    def room(self) -> int:
        """Characters available for the next block, after its joiner."""
        joiner = len(BLOCK_SEPARATOR) if self.parts else 0
        return max(0, self.max_chars - self.used - joiner)

    def add(self, block: str) -> None:
        if self.parts:
            self.used += len(BLOCK_SEPARATOR)
        self.parts.append(block)
        self.used += len(block)

    def render(self) -> str:
        return BLOCK_SEPARATOR.join(self.parts)


class ContextAssembler:
    """Builds the character-budgeted context blob for a question.

    Example:
        >>> assembler = ContextAssembler(RepoPaths(Path("/repo")), max_chars=20_000)
        >>> context = assembler.gather("How is the Invoice model validated?")
        >>> len(context) <= 20_000
        True
    """

    def __init__(
        self,
        repo_paths: RepoPaths,
        selector: DiscoverySelector | None = None,
        embedding_index: EmbeddingIndexBuilder | None = None,
        reference_files: Sequence[str] = tuple(DEFAULT_REFERENCE_FILES),
        fallback_files: Sequence[str] = tuple(DEFAULT_FALLBACK_CONTEXT_FILES),
        max_chars: int = DEFAULT_CONTEXT_MAX_CHARS,
        discovery_enabled: bool = True,
        boost_templates: Sequence[str] = tuple(BOOST_PATH_TEMPLATES),
    ) -> None:
        """Initialize the assembler.

        Args:
            repo_paths: Safe access to files under the repository root
            selector: Discovery selector; ``None`` disables discovery
            embedding_index: Retrieval stage; ``None`` disables it
            reference_files: Files loaded first into every context
            fallback_files: Loaded instead when no reference file loads
            max_chars: Global character budget
            discovery_enabled: Run the LLM discovery stage
            boost_templates: Path templates probed for boost names (``{snake}``)
        """
        self.repo_paths = repo_paths
        self.selector = selector
        self.embedding_index = embedding_index
        self.reference_files = list(reference_files)
        self.fallback_files = list(fallback_files)
        self.max_chars = max_chars
        self.discovery_enabled = discovery_enabled
        self.boost_templates = list(boost_templates)

    def candidate_paths(self) -> list[str]:
        if self.selector is None:
            return []
        return self.selector.candidate_paths()

    def gather(self, question: str) -> str:
        buffer = _ContextBuffer(self.max_chars)

        self._append_reference_files(buffer)
        self._append_embedding_context(buffer, question)
        self._append_boost_files(buffer, question)
        if self.discovery_enabled:
            self._append_discovery_files(buffer, question)

        context = buffer.render()
        logger.info(
            f"context assembled: {len(buffer.parts)} block(s), {len(context)} chars "
            f"(budget {self.max_chars})"
        )
        return context

    def load_files(self, names: Sequence[str], buffer: _ContextBuffer) -> int:
        """Add ``names`` to ``buffer`` until the budget runs out.

        Missing, unreadable, unsafe and already-loaded files are skipped. A
        file that does not fit is truncated to the remaining room with a
        ``(first N chars)`` marker, and the buffer is marked exhausted so no
        later stage adds anything.

        Returns:
            Number of files added
        """
        if buffer.exhausted:
            return 0
        added = 0
        for raw in names:
            name = raw.strip()
            path = self.repo_paths.resolve(name)
            if path is None or path in buffer.loaded or not path.is_file():
                continue
            try:
                content = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.warning(f"could not read {name}: {e}")
                continue

            room = buffer.room()
            block = f"--- {name} ---\n{content}"
            if len(block) <= room:
                buffer.add(block)
                buffer.loaded.add(path)
                added += 1
                continue

            truncated = self._truncated_block(name, content, room)
            if truncated is not None:
                buffer.add(truncated)
                buffer.loaded.add(path)
                added += 1
                logger.info(f"truncated {name} to fit budget (file size {len(content)})")
            buffer.exhausted = True
            break

        return added

    def boost_paths(self, question: str) -> list[str]:
        """Conventional file paths for ``<Name> model/class/service`` phrases."""
        paths: list[str] = []
        seen_names: set[str] = set()

        for match in BOOST_PHRASE_RE.finditer(question or ""):
            name = match.group(1)
            if name in seen_names:
                continue
            seen_names.add(name)

            snake = pascal_to_snake(name)
            for template in self.boost_templates:
                candidate = template.format(snake=snake)
                path = self.repo_paths.resolve(candidate)
                if path is not None and path.is_file():
                    if candidate not in paths:
                        paths.append(candidate)
                    break

        return paths

    def _append_reference_files(self, buffer: _ContextBuffer) -> None:
        loaded = self.load_files(self.reference_files, buffer)
        if loaded == 0 and self.fallback_files and not buffer.exhausted:
            logger.info(
                f"repo context: no {','.join(self.reference_files)} in "
                f"{self.repo_paths.repo_root}, trying fallback: {','.join(self.fallback_files)}"
            )
            loaded = self.load_files(self.fallback_files, buffer)
        logger.info(f"repo context: {loaded} file(s), {buffer.used} chars total")

    def _append_embedding_context(self, buffer: _ContextBuffer, question: str) -> None:
        if self.embedding_index is None:
            return
        room = buffer.room()
        if room <= 0 or buffer.exhausted:
            return
        retrieved = self.embedding_index.retrieve(question, room)
        buffer.exhausted = retrieved.overflowed
        if retrieved.text:
            buffer.add(retrieved.text)
            logger.info(f"context after embeddings: {buffer.used} chars")

    def _append_boost_files(self, buffer: _ContextBuffer, question: str) -> None:
        boost = self.boost_paths(question)
        if not boost:
            return
        if self.load_files(boost, buffer):
            logger.info(f"context after question boost ({', '.join(boost)}): {buffer.used} chars")

    def _append_discovery_files(self, buffer: _ContextBuffer, question: str) -> None:
        if self.selector is None or buffer.exhausted or buffer.room() <= 0:
            return
        try:
            candidates = self.selector.candidate_paths()
        except OSError as e:
            logger.warning(f"discovery scan failed: {e}, using base context only")
            return

        chosen = self.selector.pick_paths(question, candidates)
        if chosen and self.load_files(chosen, buffer):
            logger.info(f"context after discovery: {buffer.used} chars")

    @staticmethod
    def _truncated_block(name: str, content: str, room: int) -> str | None:
        # Sized with the widest header (N = room), so the block fits for the real N.
        keep = room - len(f"--- {name} (first {room} chars) ---\n")
        if keep <= 0:
            return None
        return f"--- {name} (first {keep} chars) ---\n{content[:keep]}"
