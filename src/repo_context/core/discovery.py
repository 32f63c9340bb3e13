"""Repository path safety, candidate discovery and review path filtering."""

import fnmatch
import hashlib
import re
from collections.abc import Iterable, Sequence
from pathlib import Path

from loguru import logger

from ..config.defaults import (
    BINARY_EXTENSIONS,
    CANDIDATE_PATHS_MAX,
    DEFAULT_DISCOVERY_DIRS,
    DEFAULT_DISCOVERY_EXTENSIONS,
    DEFAULT_REVIEW_EXCLUDED_PATTERNS,
    DEFAULT_REVIEW_MAX_FILE_SIZE,
    DEFAULT_REVIEW_MAX_PATHS,
    DISCOVERY_PATHS_MAX,
    DISCOVERY_PROMPT_PATHS_LIMIT,
)
from .cache import CacheManager
from .exceptions import LLMError, PathSecurityError
from .llm_client import LLMClient

DISCOVERY_SCHEMA = {
    "type": "object",
    "required": ["paths"],
    "properties": {"paths": {"type": "array", "items": {"type": "string"}}},
}

DISCOVERY_PROMPT = """User question about the codebase: {question}

List of file paths in the repo (one per line):
{paths}

Return a JSON object with one key "paths": an array of up to {limit} paths from the list above that are most relevant to answer the question. Use exact path strings from the list.
"""


class RepoPaths:
    """Maps repository-relative paths to files that stay inside the root."""

    def __init__(self, repo_root: Path) -> None:
        self.repo_root = repo_root.resolve()

    def require(self, relative: str) -> Path:
        """Absolute path for ``relative``.

        Raises:
            PathSecurityError: If the path is empty or escapes the root
        """
        name = (relative or "").strip()
        if not name:
            raise PathSecurityError("Empty path", context={"path": relative})

        candidate = (self.repo_root / name).resolve()
        if not candidate.is_relative_to(self.repo_root):
            raise PathSecurityError(
                f"Path escapes repository root: {name}",
                context={"path": name, "repo_root": str(self.repo_root)},
            )
        return candidate

    def resolve(self, relative: str) -> Path | None:
        """Like :meth:`require` but returns ``None`` for unsafe paths."""
        try:
            return self.require(relative)
        except PathSecurityError as e:
            logger.warning(f"rejected path: {e}")
            return None

    def relative(self, path: Path) -> str:
        return path.resolve().relative_to(self.repo_root).as_posix()

    def read_text(self, relative: str) -> str | None:
        """File content, or ``None`` if the path is unsafe, missing or unreadable."""
        path = self.resolve(relative)
        if path is None or not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"could not read {relative}: {e}")
            return None


class DiscoverySelector:
    """Lists candidate repository paths and lets the LLM pick relevant ones."""

    def __init__(
        self,
        client: LLMClient,
        repo_paths: RepoPaths,
        model: str | None = None,
        discovery_dirs: Sequence[str] = tuple(DEFAULT_DISCOVERY_DIRS),
        extensions: Iterable[str] = tuple(DEFAULT_DISCOVERY_EXTENSIONS),
        candidate_paths_max: int = CANDIDATE_PATHS_MAX,
        discovery_paths_max: int = DISCOVERY_PATHS_MAX,
        cache: CacheManager | None = None,
    ) -> None:
        self.client = client
        self.repo_paths = repo_paths
        self.model = model
        self.discovery_dirs = list(discovery_dirs)
        self.extensions = {ext.lower() for ext in extensions}
        self.candidate_paths_max = candidate_paths_max
        self.discovery_paths_max = discovery_paths_max
        self.cache = cache

    def candidate_paths(self) -> list[str]:
        """Bounded, de-duplicated list of relative paths worth offering.

        The root contributes its direct children; every existing discovery
        directory contributes its direct children plus files one level down.
        """
        root = self.repo_paths.repo_root
        seen: set[str] = set()
        paths: list[str] = []

        scans: list[list[Path]] = [sorted(root.glob("*"))]
        for name in self.discovery_dirs:
            directory = root / name
            if directory.is_dir():
                scans.append(sorted(directory.glob("*")) + sorted(directory.glob("*/*")))

        for entries in scans:
            for entry in entries:
                if len(paths) >= self.candidate_paths_max:
                    return paths
                if entry.suffix.lower() not in self.extensions or not entry.is_file():
                    continue
                rel = entry.relative_to(root).as_posix()
                if rel not in seen:
                    seen.add(rel)
                    paths.append(rel)

        logger.debug(f"discovery: {len(paths)} candidate path(s)")
        return paths

    def pick_paths(self, question: str, paths: Sequence[str]) -> list[str]:
        """Ask the LLM for the paths most relevant to ``question``.

        Picks are cached per (question, candidate list) when a cache is set.
        Returns ``[]`` when there is nothing to choose from or the LLM fails;
        failures are not cached.
        """
        if not paths:
            return []

        cache_key = self._cache_key(question, paths)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if isinstance(cached, list):
                return cached

        prompt = DISCOVERY_PROMPT.format(
            question=question,
            paths="\n".join(paths[:DISCOVERY_PROMPT_PATHS_LIMIT]),
            limit=self.discovery_paths_max,
        )
        try:
            response = self.client.generate(prompt, DISCOVERY_SCHEMA, model=self.model)
        except LLMError as e:
            logger.warning(f"discovery pick_paths failed: {e}")
            return []

        raw = response.get("paths")
        if not isinstance(raw, list):
            raw = []
        chosen = [p.strip() for p in raw if isinstance(p, str) and p.strip()]
        chosen = chosen[: self.discovery_paths_max]
        logger.info(f"discovery: picked {len(chosen)} path(s): {', '.join(chosen)}")
        if self.cache is not None:
            self.cache.set(cache_key, chosen)
        return chosen

    @staticmethod
    def _cache_key(question: str, paths: Sequence[str]) -> str:
        digest = hashlib.sha256("\n".join([question, *paths]).encode("utf-8")).hexdigest()
        return f"discovery:{digest}"


def _compile_patterns(patterns: Iterable[str]) -> list[re.Pattern[str]]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(fnmatch.translate(pattern)))
        except re.error as e:
            logger.warning(f"Failed to compile pattern '{pattern}': {e}")
    return compiled


def is_excluded(relative: str, patterns: Sequence[re.Pattern[str]]) -> bool:
    """True if the path, or any component of it, matches an exclusion glob."""
    candidates = [relative, *Path(relative).parts]
    return any(p.match(c) for p in patterns for c in candidates)


def filter_review_paths(
    paths: Iterable[str],
    repo_paths: RepoPaths,
    max_paths: int = DEFAULT_REVIEW_MAX_PATHS,
    max_file_size: int = DEFAULT_REVIEW_MAX_FILE_SIZE,
    excluded_patterns: Iterable[str] = tuple(DEFAULT_REVIEW_EXCLUDED_PATTERNS),
) -> list[str]:
    """Keep the paths a review may read, in order, capped at ``max_paths``.

    A path survives when it resolves inside the repository, is a regular file
    no larger than ``max_file_size`` bytes, matches no exclusion pattern and
    does not carry a binary extension.
    """
    compiled = _compile_patterns(excluded_patterns)
    kept: list[str] = []

    for raw in paths:
        if len(kept) >= max_paths:
            break

        path = repo_paths.resolve(raw)
        if path is None:
            continue
        rel = repo_paths.relative(path)
        if rel in kept:
            continue
        if path.suffix.lower() in BINARY_EXTENSIONS:
            logger.debug(f"review filter: skipping binary {rel}")
            continue
        if is_excluded(rel, compiled):
            logger.debug(f"review filter: excluded {rel}")
            continue
        try:
            if not path.is_file() or path.stat().st_size > max_file_size:
                logger.debug(f"review filter: missing or too large {rel}")
                continue
        except OSError as e:
            logger.warning(f"review filter: cannot stat {rel}: {e}")
            continue

        kept.append(rel)

    return kept
