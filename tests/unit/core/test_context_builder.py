"""Unit tests for ContextAssembler.gather() and its loading stages."""

from unittest.mock import MagicMock

import pytest

from repo_context.core.context_builder import ContextAssembler, pascal_to_snake
from repo_context.core.discovery import DiscoverySelector, RepoPaths
from repo_context.core.embedding_index import pack_chunks
from repo_context.core.models import Chunk, RetrievedContext

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _assembler(repo, client=None, **kwargs) -> ContextAssembler:
    repo_paths = RepoPaths(repo)
    selector = DiscoverySelector(client, repo_paths) if client is not None else None
    return ContextAssembler(repo_paths=repo_paths, selector=selector, **kwargs)


def _block(repo, rel: str) -> str:
    return f"--- {rel} ---\n{(repo / rel).read_text()}"


def _sources(context: str) -> set[str]:
    return {line.split(" ")[1] for line in context.splitlines() if line.startswith("--- ")}


class StubIndex:
    """Retrieval stage that always ranks the same chunks."""

    def __init__(self, chunks):
        self.chunks = chunks
        self.calls = []

    def retrieve(self, question, max_chars):
        self.calls.append((question, max_chars))
        return pack_chunks(self.chunks, max_chars)


# ---------------------------------------------------------------------------
# Tests: reference files
# ---------------------------------------------------------------------------


class TestReferenceFiles:
    def test_loads_reference_files_in_order(self, sample_repo):
        context = _assembler(sample_repo, discovery_enabled=False).gather("hi")

        assert context == _block(sample_repo, "README.md") + "\n\n" + _block(
            sample_repo, "Gemfile"
        )

    def test_falls_back_when_no_reference_file_exists(self, sample_repo):
        assembler = _assembler(
            sample_repo,
            reference_files=["MISSING.md"],
            fallback_files=["Gemfile"],
            discovery_enabled=False,
        )

        assert assembler.gather("hi") == _block(sample_repo, "Gemfile")

    def test_truncates_file_that_does_not_fit(self, sample_repo):
        (sample_repo / "README.md").write_text("r" * 500)
        assembler = _assembler(
            sample_repo, reference_files=["README.md", "Gemfile"], max_chars=100
        )

        context = assembler.gather("hi")

        assert context.startswith("--- README.md (first ")
        assert "Gemfile" not in context
        assert len(context) <= 100
        shown = int(context.split("(first ")[1].split(" chars)")[0])
        assert context.endswith("r" * shown)

    def test_rejects_paths_outside_repo(self, sample_repo, tmp_path_factory):
        outside = tmp_path_factory.mktemp("outside") / "secret.txt"
        outside.write_text("secret")
        assembler = _assembler(
            sample_repo,
            reference_files=[f"../{outside.parent.name}/secret.txt", str(outside)],
            fallback_files=[],
            discovery_enabled=False,
        )

        assert "secret" not in assembler.gather("hi")


# ---------------------------------------------------------------------------
# Tests: boost files
# ---------------------------------------------------------------------------


class TestBoostFiles:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Invoice", "invoice"),
            ("InvoiceLineItem", "invoice_line_item"),
            ("HTTPClient", "http_client"),
            ("User2Factor", "user2_factor"),
        ],
    )
    def test_pascal_to_snake(self, name, expected):
        assert pascal_to_snake(name) == expected

    def test_boost_paths_for_model_class_and_service_phrases(self, sample_repo):
        assembler = _assembler(sample_repo)

        paths = assembler.boost_paths(
            "How does the Invoice model talk to the PaymentGateway service? "
            "And the Invoice model again? Also the Ghost class."
        )

        assert paths == ["app/models/invoice.rb", "app/services/payment_gateway.rb"]

    def test_boost_file_is_appended_after_reference_files(self, sample_repo):
        assembler = _assembler(sample_repo, discovery_enabled=False)

        context = assembler.gather("What does the User model store?")

        assert context.endswith(_block(sample_repo, "app/models/user.rb"))

    def test_boost_skips_already_loaded_file(self, sample_repo):
        assembler = _assembler(
            sample_repo, reference_files=["app/models/user.rb"], discovery_enabled=False
        )

        context = assembler.gather("What does the User model store?")

        assert context.count("--- app/models/user.rb ---") == 1


# ---------------------------------------------------------------------------
# Tests: embedding and discovery stages
# ---------------------------------------------------------------------------


class TestRetrievalStages:
    def test_embedding_block_is_budgeted_against_remaining_room(self, sample_repo):
        index = MagicMock()
        index.retrieve.return_value = RetrievedContext("--- lib/tasks.rb ---\nchunk")
        assembler = _assembler(
            sample_repo, embedding_index=index, max_chars=1000, discovery_enabled=False
        )

        context = assembler.gather("question about tasks")

        base = _block(sample_repo, "README.md") + "\n\n" + _block(sample_repo, "Gemfile")
        index.retrieve.assert_called_once_with(
            "question about tasks", 1000 - len(base) - 2
        )
        assert context == base + "\n\n--- lib/tasks.rb ---\nchunk"

    def test_discovery_loads_picked_files_once(self, sample_repo, make_llm):
        client = make_llm(
            generate_responses=[{"paths": ["config/routes.rb", "README.md", "nope.rb"]}]
        )
        assembler = _assembler(sample_repo, client=client)

        context = assembler.gather("where are routes defined?")

        assert context.count("--- README.md ---") == 1
        assert context.endswith(_block(sample_repo, "config/routes.rb"))
        prompt = client.generate_calls[0][0]
        assert "where are routes defined?" in prompt
        assert "app/models/invoice.rb" in prompt

    def test_discovery_failure_keeps_base_context(self, sample_repo, fake_llm):
        assembler = _assembler(sample_repo, client=fake_llm)

        context = assembler.gather("where are routes defined?")

        assert context == _block(sample_repo, "README.md") + "\n\n" + _block(
            sample_repo, "Gemfile"
        )
        assert len(fake_llm.generate_calls) == 1

    def test_discovery_disabled_makes_no_llm_call(self, sample_repo, fake_llm):
        _assembler(sample_repo, client=fake_llm, discovery_enabled=False).gather("q")
        assert fake_llm.generate_calls == []

    def test_candidate_paths_delegate_to_selector(self, sample_repo, fake_llm):
        assert "config/routes.rb" in _assembler(sample_repo, client=fake_llm).candidate_paths()
        assert _assembler(sample_repo).candidate_paths() == []


# ---------------------------------------------------------------------------
# Tests: context budget
# ---------------------------------------------------------------------------


class TestBudgetLaw:
    @pytest.mark.parametrize("budget", [0, 1, 10, 30, 64, 65, 66, 100, 150, 250, 400, 10_000])
    def test_context_never_exceeds_budget(self, sample_repo, make_llm, budget):
        client = make_llm(generate_responses=[{"paths": ["config/routes.rb", "lib/tasks.rb"]}])
        index = StubIndex([Chunk("lib/tasks.rb", 0, "e" * 40)])
        assembler = _assembler(
            sample_repo, client=client, embedding_index=index, max_chars=budget
        )

        context = assembler.gather("How is the Invoice model exported by tasks?")

        assert len(context) <= budget

    def test_smaller_budget_never_adds_sources(self, sample_repo, make_llm):
        def sources(budget):
            client = make_llm(generate_responses=[{"paths": ["config/routes.rb"]}])
            context = _assembler(sample_repo, client=client, max_chars=budget).gather(
                "How is the Invoice model routed?"
            )
            return _sources(context)

        budgets = [1000, 300, 200, 120, 60, 0]
        included = [sources(b) for b in budgets]
        for larger, smaller in zip(included, included[1:]):
            assert smaller <= larger

    def test_dropped_embedding_block_stops_later_stages(self, sample_repo):
        index = StubIndex([Chunk("lib/big.rb", 0, "b" * 880)])

        def sources(budget):
            assembler = _assembler(
                sample_repo,
                embedding_index=index,
                reference_files=[],
                fallback_files=[],
                discovery_enabled=False,
                max_chars=budget,
            )
            return _sources(assembler.gather("How does the Invoice model work?"))

        assert sources(2000) == {"lib/big.rb", "app/models/invoice.rb"}
        assert sources(905) == {"lib/big.rb"}
        assert sources(500) == set()

    def test_unfit_reference_file_skips_fallback(self, sample_repo):
        # Too big to load and its header alone leaves no room to truncate.
        reference = "docs/architecture_and_reference_overview.md"
        (sample_repo / reference).write_text("r" * 500)
        assembler = _assembler(
            sample_repo,
            reference_files=[reference],
            fallback_files=["Gemfile"],
            discovery_enabled=False,
            max_chars=70,
        )

        assert assembler.gather("hi") == ""
