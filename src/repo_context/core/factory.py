"""Component factory: wires every component from :class:`RepoContextSettings`."""

from dataclasses import dataclass
from typing import Any

from loguru import logger
from pydantic import ValidationError

from ..config.settings import RepoContextSettings
from ..review.agent import CodeReviewAgent
from ..review.executor import ReviewStepExecutor
from ..review.planner import ReviewPlanner
from ..review.summary import ReviewSummaryWriter
from .cache import CacheManager, build_cache_manager
from .chat_service import ChatService
from .context_builder import ContextAssembler
from .discovery import DiscoverySelector, RepoPaths
from .embedding_index import EmbeddingIndexBuilder
from .exceptions import ConfigError
from .llm_client import LLMClient, OllamaClient
from .vector_store import VectorStore


def load_settings(**overrides: Any) -> RepoContextSettings:
    """Resolve settings from the environment plus explicit overrides.

    Raises:
        ConfigError: If any value fails validation
    """
    try:
        return RepoContextSettings(**overrides)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid repo-context configuration: {e}",
            context={"errors": e.errors(include_url=False)},
        ) from e


@dataclass
class ComponentBundle:
    """Everything a chat or review request needs, built once at startup."""

    settings: RepoContextSettings
    client: LLMClient
    cache: CacheManager
    repo_paths: RepoPaths
    selector: DiscoverySelector
    assembler: ContextAssembler
    chat_service: ChatService
    review_agent: CodeReviewAgent
    embedding_index: EmbeddingIndexBuilder | None = None
    vector_store: VectorStore | None = None

    def close(self) -> None:
        if self.vector_store is not None:
            self.vector_store.close()
        close = getattr(self.client, "close", None)
        if callable(close):
            close()


class ComponentFactory:
    """Factory for creating commonly used components."""

    @staticmethod
    def create_client(settings: RepoContextSettings) -> OllamaClient:
        return OllamaClient(
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            embed_model=settings.ollama_embed_model,
            timeout=settings.ollama_timeout,
            temperature=settings.ollama_temperature,
            retries=settings.ollama_retries,
        )

    @staticmethod
    def create_cache(settings: RepoContextSettings) -> CacheManager:
        return build_cache_manager(
            enabled=settings.cache_enabled,
            namespace=settings.cache_namespace,
            ttl_seconds=settings.cache_ttl_seconds,
            db_path=settings.cache_db_path,
        )

    @staticmethod
    def create_selector(
        settings: RepoContextSettings,
        client: LLMClient,
        repo_paths: RepoPaths,
        cache: CacheManager | None = None,
    ) -> DiscoverySelector:
        return DiscoverySelector(
            client=client,
            repo_paths=repo_paths,
            model=settings.ollama_model,
            discovery_dirs=settings.discovery_dirs,
            extensions=settings.discovery_extensions,
            candidate_paths_max=settings.candidate_paths_max,
            discovery_paths_max=settings.discovery_paths_max,
            cache=cache if settings.cache_enabled else None,
        )

    @staticmethod
    def create_embedding_index(
        settings: RepoContextSettings,
        client: LLMClient,
        store: VectorStore,
        selector: DiscoverySelector,
    ) -> EmbeddingIndexBuilder:
        return EmbeddingIndexBuilder(
            client=client,
            store=store,
            repo_root=settings.repo_root,
            paths_source=selector.candidate_paths,
            enabled=settings.embed_enabled,
            top_k=settings.embed_top_k,
            chunk_size=settings.embed_chunk_size,
            chunk_overlap=settings.embed_chunk_overlap,
            max_chunks=settings.embed_max_chunks,
            min_question_length=settings.embed_min_question_length,
            embed_model=settings.ollama_embed_model,
        )

    @staticmethod
    def create_assembler(
        settings: RepoContextSettings,
        repo_paths: RepoPaths,
        selector: DiscoverySelector,
        embedding_index: EmbeddingIndexBuilder | None,
    ) -> ContextAssembler:
        return ContextAssembler(
            repo_paths=repo_paths,
            selector=selector,
            embedding_index=embedding_index,
            reference_files=settings.reference_files,
            fallback_files=settings.fallback_context_files,
            max_chars=settings.context_max_chars,
            discovery_enabled=settings.discovery_enabled,
        )

    @staticmethod
    def create_review_agent(
        settings: RepoContextSettings,
        client: LLMClient,
        repo_paths: RepoPaths,
        path_source: ContextAssembler,
    ) -> CodeReviewAgent:
        model = settings.review_model
        return CodeReviewAgent(
            planner=ReviewPlanner(client, model=model),
            executor=ReviewStepExecutor(
                client, model=model, max_content_chars=settings.review_max_file_size
            ),
            summary_writer=ReviewSummaryWriter(client, model=model),
            repo_paths=repo_paths,
            path_source=path_source,
            max_iterations=settings.review_max_iterations,
            max_paths=settings.review_max_paths,
            max_file_size=settings.review_max_file_size,
            excluded_patterns=settings.review_excluded_patterns,
            default_focus=settings.review_focus,
        )

    @staticmethod
    def create_standard_components(
        settings: RepoContextSettings | None = None,
        client: LLMClient | None = None,
    ) -> ComponentBundle:
        """Create the full component set.

        Args:
            settings: Resolved settings (loaded from the environment if omitted)
            client: LLM client override (an :class:`OllamaClient` by default)

        Returns:
            ComponentBundle with every component wired
        """
        settings = settings or load_settings()
        client = client or ComponentFactory.create_client(settings)
        cache = ComponentFactory.create_cache(settings)
        repo_paths = RepoPaths(settings.repo_root)
        selector = ComponentFactory.create_selector(settings, client, repo_paths, cache)

        store: VectorStore | None = None
        embedding_index: EmbeddingIndexBuilder | None = None
        if settings.embed_enabled:
            store = VectorStore(settings.repo_root)
            embedding_index = ComponentFactory.create_embedding_index(
                settings, client, store, selector
            )

        assembler = ComponentFactory.create_assembler(
            settings, repo_paths, selector, embedding_index
        )
        review_agent = ComponentFactory.create_review_agent(
            settings, client, repo_paths, assembler
        )

        logger.info(
            f"components ready: repo_root={settings.repo_root}, model={settings.ollama_model}, "
            f"embeddings={'on' if settings.embed_enabled else 'off'}"
        )
        return ComponentBundle(
            settings=settings,
            client=client,
            cache=cache,
            repo_paths=repo_paths,
            selector=selector,
            assembler=assembler,
            chat_service=ChatService(
                client, model=settings.ollama_model, temperature=settings.ollama_temperature
            ),
            review_agent=review_agent,
            embedding_index=embedding_index,
            vector_store=store,
        )
