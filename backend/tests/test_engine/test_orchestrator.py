"""Tests for ResearchOrchestrator: the iterative research loop end to end."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from fakes import FakeExtractor, FakeLLM, FakeSearch

from relevx.engine.orchestrator import NO_RESULTS_SUMMARY, ResearchOrchestrator
from relevx.errors import FatalProviderError, ProviderNotConfiguredError, SearchProviderError
from relevx.models.history import ProcessedUrl
from relevx.models.project import utcnow
from relevx.models.research import ResearchOptions
from relevx.retry import RetryPolicy


def _urls(n, prefix="https://example.com/article-"):
    return [f"{prefix}{i}" for i in range(1, n + 1)]


def _orchestrator(store, llm, search, extractor=None, email_sender=None, sleep=None):
    return ResearchOrchestrator(
        store,
        llm_provider=llm,
        search_provider=search,
        extractor=extractor or FakeExtractor(),
        email_sender=email_sender,
        retry_policy=RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0, sleep=sleep or AsyncMock()),
    )


def _run(orchestrator, project, **options):
    return asyncio.run(orchestrator.run(project.user_id, project.id, ResearchOptions(**options)))


# === End-to-end ===


def test_end_to_end_keeps_items_above_threshold(store, make_project):
    project = make_project(min_results=1, max_results=3, relevancy_threshold=60)
    u1, u2, u3, u4, u5 = _urls(5)
    llm = FakeLLM(queries=["solid state battery"], scores={u1: 80, u2: 70, u3: 50, u4: 40})
    search = FakeSearch({"solid state battery": [u1, u2, u3, u4, u5]})
    extractor = FakeExtractor(failures={u5})

    result = _run(_orchestrator(store, llm, search, extractor), project)

    assert result.success is True
    assert result.error is None
    assert [r.url for r in result.relevant_results] == [u1, u2]
    assert [r.relevancy_score for r in result.relevant_results] == [80, 70]
    assert llm.report_calls == [[u1, u2]]
    assert result.iterations_used == 1
    assert result.urls_fetched == 5
    assert result.urls_successful == 4
    assert result.urls_relevant == 2
    assert result.total_results_analyzed == 4
    assert result.queries_generated == ["solid state battery"]
    assert result.queries_executed == ["solid state battery"]
    assert result.report.result_count == 2
    assert result.delivery_log_id is not None
    assert result.relevant_results[0].source_query == "solid state battery"
    assert result.relevant_results[0].search_engine == "fake"


def test_end_to_end_persists_run_outputs(store, make_project):
    project = make_project()
    u1, u2, u3 = _urls(3)
    llm = FakeLLM(queries=["q"], scores={u1: 90, u2: 65, u3: 10})
    search = FakeSearch({"q": [u1, u2, u3]})

    before = utcnow()
    result = _run(_orchestrator(store, llm, search), project)

    saved = store.list_search_results(project.user_id, project.id)
    assert sorted(r.url for r in saved) == [u1, u2]

    updated = store.get_project(project.user_id, project.id)
    assert updated.status == "active"
    assert updated.last_error is None
    assert updated.last_run_at is not None
    assert updated.next_run_at > before

    history = store.get_search_history(project.user_id, project.id)
    assert history.normalized_urls == {u1, u2, u3}
    assert history.get_url(u1).was_included is True
    assert history.get_url(u3).was_included is False
    assert history.get_url(u3).last_relevancy_score == 10
    perf = history.get_query("q")
    assert perf.times_used == 1
    assert perf.urls_found == 3
    assert perf.relevant_urls_found == 2
    assert perf.success_rate == pytest.approx(200 / 3)

    log = store.get_delivery_log(result.delivery_log_id)
    assert log.result_count == 2
    assert log.status == "pending"
    assert log.stats["iterations_required"] == 1
    assert log.search_result_ids == [r.id for r in result.relevant_results]


# === Stopping rules ===


def test_min_results_early_exit(store, make_project):
    project = make_project(min_results=2, max_results=10)
    urls = _urls(3)
    llm = FakeLLM(queries=["q"], scores={u: 90 for u in urls})
    search = FakeSearch({"q": urls})

    result = _run(_orchestrator(store, llm, search), project)

    assert result.iterations_used == 1
    assert len(llm.query_calls) == 1
    assert len(result.relevant_results) == 3


def test_keeps_iterating_until_max_iterations(store, make_project):
    project = make_project(min_results=5)
    llm = FakeLLM(queries=[["q1"], ["q2"], ["q3"]], scores={})
    search = FakeSearch({"q1": _urls(1, "https://a.com/"), "q2": _urls(1, "https://b.com/"),
                         "q3": _urls(1, "https://c.com/")})

    result = _run(_orchestrator(store, llm, search), project, max_iterations=3)

    assert result.success is True
    assert result.iterations_used == 3
    assert [c["options"].iteration for c in llm.query_calls] == [1, 2, 3]
    assert result.queries_executed == ["q1", "q2", "q3"]


def test_exhaustion_stops_immediately(store, make_project):
    project = make_project(min_results=5)
    urls = _urls(3)
    store.update_search_history(
        project.user_id, project.id,
        [ProcessedUrl(url=u, normalized_url=u) for u in urls],
        {},
    )
    llm = FakeLLM(queries=["q"])
    search = FakeSearch({"q": urls})
    extractor = FakeExtractor()

    result = _run(_orchestrator(store, llm, search, extractor), project)

    assert result.success is True
    assert result.iterations_used == 1
    assert extractor.calls == []
    assert llm.score_calls == []
    assert result.relevant_results == []


def test_exhaustion_in_later_iteration(store, make_project):
    project = make_project(min_results=1)
    u1 = "https://example.com/only"
    llm = FakeLLM(queries=["q"], scores={u1: 20})
    search = FakeSearch({"q": [u1]})

    result = _run(_orchestrator(store, llm, search), project)

    # Second iteration sees only the URL processed in the first
    assert result.iterations_used == 2
    assert len(llm.score_calls) == 1


def test_query_repeated_across_iterations_counts_once_per_run(store, make_project):
    project = make_project(min_results=1)
    u1 = "https://example.com/only"
    llm = FakeLLM(queries=["q"], scores={u1: 20})
    search = FakeSearch({"q": [u1]})

    result = _run(_orchestrator(store, llm, search), project)

    assert result.queries_executed == ["q", "q"]
    perf = store.get_search_history(project.user_id, project.id).get_query("q")
    assert perf.times_used == 1
    # Both searches reported the URL
    assert perf.urls_found == 2
    assert perf.relevant_urls_found == 0


# === Ranking ===


def test_ordering_and_truncation(store, make_project):
    project = make_project(min_results=1, max_results=5)
    urls = _urls(10)
    scores = dict(zip(urls, [91, 97, 93, 100, 95, 92, 99, 94, 98, 96]))
    llm = FakeLLM(queries=["q"], scores=scores)
    search = FakeSearch({"q": urls})

    result = _run(_orchestrator(store, llm, search), project)

    got = [r.relevancy_score for r in result.relevant_results]
    assert got == [100, 99, 98, 97, 96]
    assert result.urls_relevant == 10
    assert result.report.result_count == 5


def test_equal_scores_keep_encounter_order(store, make_project):
    project = make_project(max_results=10)
    urls = _urls(4)
    llm = FakeLLM(queries=["q"], scores={u: 75 for u in urls})
    search = FakeSearch({"q": urls})

    result = _run(_orchestrator(store, llm, search), project)

    assert [r.url for r in result.relevant_results] == urls


def test_threshold_requires_score_and_relevance_flag(store, make_project):
    project = make_project(relevancy_threshold=60, max_results=10)
    u1, u2, u3, u4 = _urls(4)
    llm = FakeLLM(
        queries=["q"],
        scores={u1: 59, u2: 95, u3: 40, u4: 70},
        relevance={u1: False, u2: False, u3: True},
    )
    search = FakeSearch({"q": [u1, u2, u3, u4]})

    result = _run(_orchestrator(store, llm, search), project)

    assert [r.url for r in result.relevant_results] == [u4]


def test_option_threshold_overrides_project(store, make_project):
    project = make_project(relevancy_threshold=60, max_results=10)
    u1, u2 = _urls(2)
    llm = FakeLLM(queries=["q"], scores={u1: 85, u2: 70})
    search = FakeSearch({"q": [u1, u2]})

    result = _run(_orchestrator(store, llm, search), project, relevancy_threshold=80)

    assert [r.url for r in result.relevant_results] == [u1]


# === Dedup ===


def test_cross_run_dedup(store, make_project):
    project = make_project(max_results=10)
    first = "https://example.com/a"
    llm = FakeLLM(queries=["q"], scores={first: 90, "https://example.com/b": 90})
    search = FakeSearch({"q": [first]})
    _run(_orchestrator(store, llm, search), project)

    search = FakeSearch({"q": ["https://www.EXAMPLE.com/a/?utm_source=x", "https://example.com/b"]})
    extractor = FakeExtractor()
    result = _run(_orchestrator(store, llm, search, extractor), project, ignore_frequency_check=True)

    assert extractor.calls == ["https://example.com/b"]
    assert [r.url for r in result.relevant_results] == ["https://example.com/b"]
    history = store.get_search_history(project.user_id, project.id)
    assert history.get_url(first).times_found == 1


def test_within_run_duplicates_are_fetched_once(store, make_project):
    project = make_project(max_results=10)
    llm = FakeLLM(queries=["q1", "q2"], scores={"https://example.com/x": 80})
    search = FakeSearch({
        "q1": ["https://example.com/x"],
        "q2": ["https://www.example.com/x/", "https://example.com/x#comments"],
    })
    extractor = FakeExtractor()

    result = _run(_orchestrator(store, llm, search, extractor), project)

    assert extractor.calls == ["https://example.com/x"]
    assert len(result.relevant_results) == 1
    assert result.relevant_results[0].source_query == "q1"


def test_source_query_is_first_query_returning_url(store, make_project):
    project = make_project(max_results=10)
    u1, u2 = _urls(2)
    llm = FakeLLM(queries=["q1", "q2"], scores={u1: 90, u2: 80})
    search = FakeSearch({"q1": [u1], "q2": [u1, u2]})

    result = _run(_orchestrator(store, llm, search), project)

    by_url = {r.url: r.source_query for r in result.relevant_results}
    assert by_url == {u1: "q1", u2: "q2"}


def test_candidate_cap_limits_extraction(store, make_project):
    project = make_project()
    urls = _urls(5)
    llm = FakeLLM(queries=["q"])
    search = FakeSearch({"q": urls})
    extractor = FakeExtractor()

    _run(_orchestrator(store, llm, search, extractor), project,
         max_iterations=1, max_candidates_per_iteration=2)

    assert extractor.calls == urls[:2]


# === Partial failures ===


def test_failed_query_does_not_fail_run(store, make_project):
    project = make_project(max_results=10)
    llm = FakeLLM(queries=["q1", "q2", "q3"], scores={"https://a.com/1": 80, "https://c.com/1": 75})
    search = FakeSearch({
        "q1": ["https://a.com/1"],
        "q2": SearchProviderError("rate limited"),
        "q3": ["https://c.com/1"],
    })
    extractor = FakeExtractor()

    result = _run(_orchestrator(store, llm, search, extractor), project)

    assert result.success is True
    assert result.queries_executed == ["q1", "q3"]
    assert sorted(extractor.calls) == ["https://a.com/1", "https://c.com/1"]
    assert len(result.relevant_results) == 2

    history = store.get_search_history(project.user_id, project.id)
    failed = history.get_query("q2")
    assert failed.times_used == 1
    assert failed.urls_found == 0


def test_extraction_failures_are_counted_not_raised(store, make_project):
    project = make_project(min_results=1)
    urls = _urls(2)
    llm = FakeLLM(queries=["q"], scores={urls[1]: 88})
    search = FakeSearch({"q": urls})
    extractor = FakeExtractor(failures={urls[0]})

    result = _run(_orchestrator(store, llm, search, extractor), project)

    assert result.success is True
    assert result.urls_fetched == 2
    assert result.urls_successful == 1
    assert llm.score_calls == [[urls[1]]]


def test_all_extractions_failing_moves_to_next_iteration(store, make_project):
    project = make_project(min_results=1)
    llm = FakeLLM(queries=[["q1"], ["q2"]], scores={"https://b.com/1": 90})
    search = FakeSearch({"q1": ["https://a.com/1"], "q2": ["https://b.com/1"]})
    extractor = FakeExtractor(failures={"https://a.com/1"})

    result = _run(_orchestrator(store, llm, search, extractor), project)

    assert result.iterations_used == 2
    assert [r.url for r in result.relevant_results] == ["https://b.com/1"]


# === Pre-filter ===


def test_prefilter_failure_keeps_all_candidates(store, make_project):
    project = make_project()
    urls = _urls(3)
    llm = FakeLLM(queries=["q"], filter_error=RuntimeError("filter model down"))
    search = FakeSearch({"q": urls})
    extractor = FakeExtractor()

    result = _run(_orchestrator(store, llm, search, extractor), project, max_iterations=1)

    assert result.success is True
    assert extractor.calls == urls


def test_prefilter_unsupported_keeps_all_candidates(store, make_project):
    project = make_project()
    urls = _urls(3)
    llm = FakeLLM(queries=["q"], decisions=None)
    extractor = FakeExtractor()

    _run(_orchestrator(store, llm, FakeSearch({"q": urls}), extractor), project, max_iterations=1)

    assert extractor.calls == urls


def test_prefilter_drops_only_explicit_rejections(store, make_project):
    project = make_project()
    u1, u2, u3 = _urls(3)
    llm = FakeLLM(queries=["q"], decisions={u2: False})
    extractor = FakeExtractor()

    _run(_orchestrator(store, llm, FakeSearch({"q": [u1, u2, u3]}), extractor), project, max_iterations=1)

    assert llm.filter_calls == [[u1, u2, u3]]
    assert extractor.calls == [u1, u3]


# === Keyword filters ===


def test_keyword_filters(store, make_project):
    project = make_project(
        max_results=10,
        search_parameters={"required_keywords": ["lithium"], "excluded_keywords": ["sponsored"]},
    )
    keep = "https://example.com/lithium-news"
    no_keyword = "https://example.com/other"
    sponsored = "https://example.com/sponsored-post"
    llm = FakeLLM(queries=["q"], scores={keep: 90, no_keyword: 90})
    search = FakeSearch({"q": [keep, no_keyword, sponsored]})
    extractor = FakeExtractor(texts={
        keep: "New lithium anode results.",
        no_keyword: "Nothing about the element.",
    })

    result = _run(_orchestrator(store, llm, search, extractor), project, max_iterations=1)

    assert "lithium" in llm.query_calls[0]["context"]
    assert sponsored not in extractor.calls
    assert llm.score_calls == [[keep]]
    assert [r.url for r in result.relevant_results] == [keep]


# === Report / delivery ===


def test_no_results_gives_placeholder_report(store, make_project):
    project = make_project(title="Grid storage")
    urls = _urls(2)
    llm = FakeLLM(queries=["q"], scores={u: 10 for u in urls})

    result = _run(_orchestrator(store, llm, FakeSearch({"q": urls})), project, max_iterations=1)

    assert result.success is True
    assert result.relevant_results == []
    assert result.report.title == "Grid storage"
    assert result.report.summary == NO_RESULTS_SUMMARY
    assert result.report.result_count == 0
    assert llm.report_calls == []
    assert result.delivery_log_id is None


def test_delivery_success_marks_log(store, make_project):
    project = make_project()
    u1 = "https://example.com/hit"
    llm = FakeLLM(queries=["q"], scores={u1: 90})
    sender = AsyncMock(return_value=True)

    result = _run(_orchestrator(store, llm, FakeSearch({"q": [u1]}), email_sender=sender), project)

    sender.assert_awaited_once()
    address, report, sent_project, log_id = sender.await_args.args
    assert address == "owner@example.com"
    assert report.title == result.report.title
    assert sent_project.id == project.id
    assert log_id == result.delivery_log_id
    log = store.get_delivery_log(result.delivery_log_id)
    assert log.status == "success"
    assert log.delivered_at is not None


def test_delivery_uses_project_address(store, make_project):
    project = make_project(delivery_config={"email": {"address": "team@example.com"}})
    u1 = "https://example.com/hit"
    sender = AsyncMock(return_value=True)

    _run(_orchestrator(store, FakeLLM(queries=["q"], scores={u1: 90}), FakeSearch({"q": [u1]}),
                       email_sender=sender), project)

    assert sender.await_args.args[0] == "team@example.com"


def test_delivery_failure_does_not_fail_run(store, make_project):
    project = make_project()
    u1 = "https://example.com/hit"
    sender = AsyncMock(side_effect=ConnectionError("smtp down"))

    result = _run(_orchestrator(store, FakeLLM(queries=["q"], scores={u1: 90}), FakeSearch({"q": [u1]}),
                                email_sender=sender), project)

    assert result.success is True
    log = store.get_delivery_log(result.delivery_log_id)
    assert log.status == "error"
    assert "smtp down" in log.error
    assert store.get_project(project.user_id, project.id).status == "active"


def test_destination_none_skips_sending(store, make_project):
    project = make_project(results_destination="none")
    u1 = "https://example.com/hit"
    sender = AsyncMock(return_value=True)

    result = _run(_orchestrator(store, FakeLLM(queries=["q"], scores={u1: 90}), FakeSearch({"q": [u1]}),
                                email_sender=sender), project)

    sender.assert_not_awaited()
    assert store.get_delivery_log(result.delivery_log_id).status == "pending"


# === Retries and errors ===


def test_transient_scoring_error_is_retried(store, make_project):
    project = make_project()
    u1 = "https://example.com/hit"
    llm = FakeLLM(queries=["q"], scores={u1: 90}, score_errors=[TimeoutError("slow")])
    sleep = AsyncMock()

    result = _run(_orchestrator(store, llm, FakeSearch({"q": [u1]}), sleep=sleep), project)

    assert result.success is True
    assert len(llm.score_calls) == 2
    sleep.assert_awaited_once_with(1.0)


def test_exhausted_retries_mark_project_error(store, make_project):
    project = make_project()
    u1 = "https://example.com/hit"
    llm = FakeLLM(queries=["q"], score_errors=[RuntimeError("overloaded")] * 3)
    sleep = AsyncMock()

    result = _run(_orchestrator(store, llm, FakeSearch({"q": [u1]}), sleep=sleep), project)

    assert result.success is False
    assert result.error == "overloaded"
    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]
    updated = store.get_project(project.user_id, project.id)
    assert updated.status == "error"
    assert updated.last_error == "overloaded"
    assert updated.last_run_at is None


def test_fatal_error_is_not_retried(store, make_project):
    project = make_project()
    llm = FakeLLM(queries=["q"], query_errors=[FatalProviderError("invalid api key")])

    result = _run(_orchestrator(store, llm, FakeSearch()), project)

    assert result.success is False
    assert "invalid api key" in result.error
    assert len(llm.query_calls) == 1
    assert store.get_project(project.user_id, project.id).status == "error"


def test_report_failure_fails_run(store, make_project):
    project = make_project()
    u1 = "https://example.com/hit"
    llm = FakeLLM(queries=["q"], scores={u1: 90}, report_error=RuntimeError("report model down"))

    result = _run(_orchestrator(store, llm, FakeSearch({"q": [u1]})), project)

    assert result.success is False
    assert len(llm.report_calls) == 3
    assert store.list_search_results(project.user_id, project.id) == []


# === Guards ===


def test_frequency_guard_refuses_without_mutation(store, make_project):
    last_run = utcnow() - timedelta(hours=23)
    project = make_project(last_run_at=last_run)
    before = store.get_project(project.user_id, project.id)
    llm = FakeLLM()

    result = _run(_orchestrator(store, llm, FakeSearch()), project)

    assert result.success is False
    assert "more than once per day" in result.error
    assert "Last run:" in result.error
    assert llm.query_calls == []
    after = store.get_project(project.user_id, project.id)
    assert after.status == before.status
    assert after.updated_at == before.updated_at


def test_frequency_guard_can_be_ignored(store, make_project):
    project = make_project(last_run_at=utcnow() - timedelta(hours=1))
    llm = FakeLLM(queries=["q"])

    result = _run(_orchestrator(store, llm, FakeSearch()), project, ignore_frequency_check=True)

    assert result.success is True


def test_frequency_guard_allows_after_a_day(store, make_project):
    project = make_project(frequency="weekly", last_run_at=utcnow() - timedelta(hours=25))

    result = _run(_orchestrator(store, FakeLLM(queries=["q"]), FakeSearch()), project)

    assert result.success is True


def test_running_project_is_refused(store, make_project):
    project = make_project(status="running")
    llm = FakeLLM()

    result = _run(_orchestrator(store, llm, FakeSearch()), project)

    assert result.success is False
    assert "already running" in result.error
    assert llm.query_calls == []


def test_unknown_project(store, make_project):
    orchestrator = _orchestrator(store, FakeLLM(), FakeSearch())

    result = asyncio.run(orchestrator.run("user-1", "missing"))

    assert result.success is False
    assert result.error == "Project missing not found"


def test_project_of_other_user_is_not_found(store, make_project):
    project = make_project(user_id="user-2")

    result = asyncio.run(_orchestrator(store, FakeLLM(), FakeSearch()).run("user-1", project.id))

    assert result.success is False
    assert "not found" in result.error


def test_missing_providers_raise(store, make_project):
    project = make_project()

    with pytest.raises(ProviderNotConfiguredError):
        asyncio.run(ResearchOrchestrator(store).run(project.user_id, project.id))


def test_option_providers_override_constructor(store, make_project):
    project = make_project()
    u1 = "https://example.com/hit"
    llm = FakeLLM(queries=["q"], scores={u1: 90})
    orchestrator = ResearchOrchestrator(store, retry_policy=RetryPolicy(sleep=AsyncMock()))

    result = _run(orchestrator, project, llm_provider=llm, search_provider=FakeSearch({"q": [u1]}),
                  extractor=FakeExtractor())

    assert result.success is True
    assert [r.url for r in result.relevant_results] == [u1]


# === Query generation inputs ===


def test_previous_queries_feed_later_runs(store, make_project):
    project = make_project(search_parameters={"date_range_preference": "last_week"})
    u1 = "https://example.com/hit"
    llm = FakeLLM(queries=["good query"], scores={u1: 90})
    _run(_orchestrator(store, llm, FakeSearch({"good query": [u1]})), project)

    llm2 = FakeLLM(queries=["next"])
    _run(_orchestrator(store, llm2, FakeSearch()), project, ignore_frequency_check=True, max_iterations=1)

    options = llm2.query_calls[0]["options"]
    assert options.focus_recent is True
    assert [q.query for q in options.previous_queries] == ["good query"]
    assert options.previous_queries[0].success_rate == 100.0


def test_date_preference_sets_search_window(store, make_project):
    project = make_project(frequency="weekly", search_parameters={"date_range_preference": "last_week",
                                                                  "region": "US", "language": "en"})
    search = FakeSearch()

    _run(_orchestrator(store, FakeLLM(queries=["q"]), search), project, max_iterations=1)

    _query, filters = search.calls[0]
    assert filters.country == "US"
    assert filters.language == "en"
    assert filters.date_from is not None
    assert filters.date_to is not None
