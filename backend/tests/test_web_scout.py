"""
Tests for web_scout.py - the bounded search/evaluate/refine loop.

Results on github.com whose title matches the goal score well above the
relevance threshold without an LLM call; pinterest results score far below
it. That keeps every test deterministic.
"""
from vaultflow.models.artifact import Artifact
from vaultflow.models.document import Document
from vaultflow.schemas.flows import WebScoutRequest
from vaultflow.schemas.llm import DerivedQueries
from vaultflow.services.web_scout import WebScout

from tests.fixtures.fakes import FakeLLM, FakeSearch, add_document, make_result

GOAL = "rust ownership"
DAY = "2025-06-01"


def good(i):
    return make_result(f"https://github.com/r{i}", f"Rust ownership {i}", f"ownership explained {i}")


def bad(i):
    return make_result(f"https://pinterest.com/p{i}", "Pretty pictures", "")


def _request(**kwargs):
    defaults = {"goal": GOAL, "query": GOAL, "day": DAY, "min_quality_results": 3}
    defaults.update(kwargs)
    return WebScoutRequest(**defaults)


def _scout(db, llm=None, search=None, sink=None):
    return WebScout(db, llm or FakeLLM(), search or FakeSearch(), on_step=sink)


class TestTermination:
    def test_quality_met_in_first_iteration(self, db, sink):
        search = FakeSearch(default=[good(1), good(2), good(3), bad(4)])
        result = _scout(db, search=search, sink=sink).run(_request())

        assert result.termination_reason == "quality-met"
        assert result.counts.iterations == 1
        assert result.counts.queries_executed == 1
        assert result.counts.results_fetched == 4
        assert result.counts.results_evaluated == 4
        assert result.counts.llm_evaluations == 0
        assert len(result.proposals) == 3
        assert result.queries_used == [GOAL]
        assert sink.find("web-scout.run", "ok")

    def test_iteration_budget(self, db):
        llm = FakeLLM(completions=["rust borrow checker", "rust lifetimes"])
        search = FakeSearch(default=[bad(1)])
        result = _scout(db, llm, search).run(_request(max_iterations=2))

        assert result.termination_reason == "iteration-budget-exhausted"
        assert result.counts.iterations == 2
        assert search.queries == [GOAL, "rust borrow checker"]
        assert result.proposals == []

    def test_query_budget(self, db):
        llm = FakeLLM(completions=["q2", "q3", "q4"])
        search = FakeSearch(default=[bad(1)])
        result = _scout(db, llm, search).run(_request(max_iterations=5, max_queries=2))

        assert result.termination_reason == "query-budget-exhausted"
        assert result.counts.queries_executed == 2
        assert len(search.queries) == 2

    def test_refinement_repeating_a_query_stops(self, db):
        llm = FakeLLM(completions=[GOAL])
        search = FakeSearch(default=[bad(1)])
        result = _scout(db, llm, search).run(_request())

        assert result.termination_reason == "no-queries-available"
        assert result.counts.iterations == 1

    def test_refinement_failure_stops(self, db):
        search = FakeSearch(default=[bad(1)])
        result = _scout(db, FakeLLM(), search).run(_request())
        assert result.termination_reason == "no-queries-available"
        assert search.queries == [GOAL]

    def test_one_query_per_iteration(self, db):
        llm = FakeLLM(completions=["q2", "q3"])
        result = _scout(db, llm, FakeSearch(default=[bad(1)])).run(_request(max_iterations=3))
        assert result.counts.iterations == result.counts.queries_executed == 3


class TestDeriveMode:
    def test_empty_vault_has_no_queries(self, db):
        search = FakeSearch(default=[good(1)])
        result = _scout(db, search=search).run(_request(mode="derive-from-vault", query=None))
        assert result.termination_reason == "no-queries-available"
        assert search.queries == []
        assert result.counts.iterations == 0

    def test_derived_queries_run_in_priority_order(self, db):
        add_document(db, "Rust book", tags=["rust"])
        llm = FakeLLM({DerivedQueries: {"queries": [
            {"query": "second", "priority": 2},
            {"query": "first", "priority": 1},
        ]}})
        search = FakeSearch(results_by_query={"second": [good(1), good(2), good(3)]})
        result = _scout(db, llm, search).run(_request(mode="derive-from-vault", query=None, max_iterations=5))

        assert search.queries == ["first", "second"]
        assert result.termination_reason == "quality-met"
        assert result.counts.iterations == 2

    def test_derivation_failure_has_no_queries(self, db, sink):
        add_document(db, "Rust book", tags=["rust"])
        result = _scout(db, FakeLLM(), sink=sink).run(_request(mode="derive-from-vault", query=None))
        assert result.termination_reason == "no-queries-available"
        assert sink.find("derive_queries", "error")


class TestFiltering:
    def test_duplicates_within_run_and_vault(self, db):
        add_document(db, "known", url="https://github.com/known")
        known = make_result("https://github.com/known", "Rust ownership known", "x")
        search = FakeSearch(results_by_query={
            GOAL: [good(1), good(1), known],
            "q2": [good(1), good(2)],
        })
        llm = FakeLLM(completions=["q2"])
        result = _scout(db, llm, search).run(_request(max_iterations=2))

        assert result.counts.duplicates_filtered == 3
        assert result.counts.results_evaluated == 2
        assert sorted(p.url for p in result.proposals) == ["https://github.com/r1", "https://github.com/r2"]
        assert result.termination_reason == "iteration-budget-exhausted"

    def test_domain_allow_list(self, db):
        search = FakeSearch(default=[
            good(1),
            make_result("https://docs.github.com/ownership", "Rust ownership docs", "d"),
            make_result("https://example.org/rust", "Rust ownership", "e"),
        ])
        result = _scout(db, search=search).run(
            _request(allowed_domains=["GitHub.com"], min_quality_results=2)
        )
        assert search.include_domains[0] == ["github.com"]
        assert result.counts.domain_filtered == 1
        assert len(result.proposals) == 2

    def test_search_failure_counts_iteration_and_continues(self, db, sink):
        search = FakeSearch(fail_on=[GOAL], results_by_query={"q2": [good(1), good(2), good(3)]})
        llm = FakeLLM(completions=["q2"])
        result = _scout(db, llm, search, sink).run(_request())

        assert result.termination_reason == "quality-met"
        assert result.counts.iterations == 2
        assert result.counts.results_fetched == 3
        assert sink.find("search_web", "error")

    def test_unexpected_connector_exception_does_not_abort(self, db, sink):
        class TimingOutSearch(FakeSearch):
            def search(self, query, max_results, *, include_domains=None):
                self.queries.append(query)
                raise TimeoutError("provider timed out")

        search = TimingOutSearch()
        llm = FakeLLM(completions=["q2"])
        result = _scout(db, llm, search, sink).run(_request(max_iterations=2))

        assert result.termination_reason == "iteration-budget-exhausted"
        assert result.counts.iterations == 2
        assert search.queries == [GOAL, "q2"]
        assert result.proposals == []
        failures = sink.find("search_web", "error")
        assert len(failures) == 2
        assert isinstance(failures[0].error, TimeoutError)
        assert sink.find("web-scout.run", "ok")


class TestProposals:
    def test_proposals_become_artifacts(self, db):
        search = FakeSearch(default=[good(1), good(2), good(3)])
        result = _scout(db, search=search).run(_request())

        artifacts = db.query(Artifact).filter(Artifact.kind == "web-proposal").all()
        assert len(artifacts) == 3
        assert sorted(result.artifact_ids) == sorted(a.id for a in artifacts)
        first = artifacts[0]
        assert first.agent == "web-scout"
        assert first.status == "proposed"
        assert first.day == DAY
        assert first.source_refs["query"] == GOAL
        assert first.content["reasoning"]
        assert first.content["url"].startswith("https://github.com/")

    def test_proposals_sorted_by_score(self, db):
        strong = make_result("https://github.com/a", "Rust ownership", "")
        weaker = make_result("https://github.com/b", "Rust", "")
        search = FakeSearch(default=[weaker, strong])
        result = _scout(db, search=search).run(_request(min_quality_results=2, min_relevance=0.6))
        assert [p.url for p in result.proposals] == ["https://github.com/a", "https://github.com/b"]
        assert result.proposals[0].reasoning[0].startswith("Found via query")

    def test_import_to_library(self, db):
        search = FakeSearch(default=[good(1), good(2), good(3)])
        result = _scout(db, search=search).run(_request(import_to_library=True))

        assert result.counts.documents_imported == 3
        assert len(result.imported_document_ids) == 3
        docs = db.query(Document).filter(Document.source == "web").all()
        assert sorted(d.url for d in docs) == [f"https://github.com/r{i}" for i in (1, 2, 3)]

    def test_second_scout_skips_imported_urls(self, db):
        search = FakeSearch(default=[good(1), good(2), good(3)])
        _scout(db, search=search).run(_request(import_to_library=True))
        again = _scout(db, search=FakeSearch(default=[good(1), good(2), good(3)])).run(
            _request(import_to_library=True)
        )
        assert again.counts.duplicates_filtered == 3
        assert again.proposals == []
        assert db.query(Document).count() == 3
