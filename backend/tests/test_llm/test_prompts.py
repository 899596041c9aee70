"""Tests for research prompt builders."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

from relevx.llm import prompts
from relevx.providers.base import CandidateToFilter, ContentToAnalyze


def test_required_keywords_context():
    assert prompts.required_keywords_context([]) is None
    text = prompts.required_keywords_context(["lithium", "sodium"])
    assert text.startswith("Please incorporate the following keywords into the search queries: lithium, sodium.")


def test_query_prompt_first_iteration_has_no_guidance():
    prompt = prompts.build_query_prompt("goal text", count=5)
    assert prompt.startswith("Project Description:\ngoal text")
    assert "retry iteration" not in prompt
    assert prompt.endswith("Generate 5 diverse search queries.")


def test_query_prompt_widening_guidance():
    second = prompts.build_query_prompt("goal text", count=4, iteration=2)
    third = prompts.build_query_prompt("goal text", count=4, iteration=3)
    assert "retry iteration 2. Generate broader queries" in second
    assert "retry iteration 3. Generate very broad queries" in third


def test_iterations_past_three_keep_broadest_guidance():
    assert prompts.iteration_guidance(1) is None
    assert prompts.iteration_guidance(5) == prompts.BROADEST_GUIDANCE.format(iteration=5)
    prompt = prompts.build_query_prompt("goal text", count=4, iteration=4)
    assert "retry iteration 4. Generate very broad queries" in prompt


def test_filter_prompt_lists_candidates():
    prompt = prompts.build_filter_prompt("goal", [
        CandidateToFilter(url="https://a.com/1", title="A", description="first"),
        CandidateToFilter(url="https://b.com/2", title="B", description="second"),
    ])
    assert "Result 1:\nURL: https://a.com/1\nTitle: A\nSnippet: first" in prompt
    assert "Result 2:" in prompt


def test_relevancy_prompt_includes_dates_when_known():
    prompt = prompts.build_relevancy_prompt("goal", [
        ContentToAnalyze(url="https://a.com/1", title="A", snippet="text", published_date="2026-05-01"),
        ContentToAnalyze(url="https://b.com/2", title="B", snippet="other"),
    ], threshold=70)
    assert "Minimum Relevancy Threshold: 70" in prompt
    assert prompt.count("Published:") == 1
