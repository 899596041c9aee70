"""Prompt text and prompt builders for the research LLM steps.

Each builder returns the user message; system prompts are module constants so
they can be sent with cache_control across batched calls.
"""

from __future__ import annotations

from relevx.models.history import QueryPerformance

QUERY_GENERATION_SYSTEM = """\
You are a search query optimization expert. Your task is to generate diverse, \
effective search queries that will find relevant content on the web.

Use a mix of strategies:
1. BROAD queries - general terms that cast a wide net
2. SPECIFIC queries - precise terms with specific details
3. QUESTION queries - phrased as questions people might ask
4. TEMPORAL queries - include recency indicators like "latest", "recent", "new"

Each query should be distinct and approach the topic from a different angle.
Queries should be concise (3-8 words typically) and use natural search language."""

CANDIDATE_FILTER_SYSTEM = """\
You are a research assistant triaging web search results. Using only the \
title and snippet, decide which results are worth fetching in full for the \
user's research project. Keep anything that is plausibly relevant; drop \
results that are clearly off-topic, spam, or navigation pages."""

RELEVANCY_SYSTEM = """\
You are a content relevancy analyst. Your task is to analyze web content and \
determine how relevant it is to a user's research project.

For each piece of content, provide:
1. A relevancy score (0-100) where:
   - 90-100: Highly relevant, directly addresses the topic
   - 70-89: Very relevant, covers important aspects
   - 50-69: Moderately relevant, tangentially related
   - 30-49: Slightly relevant, mentions the topic
   - 0-29: Not relevant or off-topic
2. Clear reasoning explaining the score
3. Key relevant points found in the content
4. Whether it meets the minimum threshold for inclusion (is_relevant)"""

REPORT_SYSTEM = """\
You are a research report compiler. Your task is to create a well-structured \
markdown report from research findings.

The report should:
- Open with a clear executive summary
- Be organized into logical sections by topic or theme
- Cite every result it uses with [link text](url)
- Include images where available with ![alt text](image-url)
- Provide context and analysis, not just a list of results

Use # for the main title, ## for sections, **bold** for emphasis and > for key quotes."""

BROADER_GUIDANCE = (
    "This is retry iteration {iteration}. Generate broader queries with less restrictive terms."
)
BROADEST_GUIDANCE = (
    "This is retry iteration {iteration}. Generate very broad queries with alternative phrasings."
)


def iteration_guidance(iteration: int) -> str | None:
    """Widening instructions for retry iterations; iteration 3 and later get the broadest."""
    if iteration <= 1:
        return None
    template = BROADER_GUIDANCE if iteration == 2 else BROADEST_GUIDANCE
    return template.format(iteration=iteration)


def required_keywords_context(keywords: list[str]) -> str | None:
    if not keywords:
        return None
    return (
        "Please incorporate the following keywords into the search queries: "
        f"{', '.join(keywords)}. These keywords are important for improving "
        "search result relevance."
    )


def build_query_prompt(
    goal: str,
    count: int,
    additional_context: str | None = None,
    previous_queries: list[QueryPerformance] | None = None,
    iteration: int = 1,
    focus_recent: bool = False,
) -> str:
    parts = [f"Project Description:\n{goal}"]
    if additional_context:
        parts.append(additional_context)
    if previous_queries:
        lines = [
            f'- "{q.query}" ({q.success_rate:.0f}% success rate, {q.relevant_urls_found} relevant results)'
            for q in previous_queries
        ]
        parts.append(
            "Previous successful queries (for reference, create NEW variations):\n" + "\n".join(lines)
        )
    if focus_recent:
        parts.append("Favor recent content: include at least one TEMPORAL query.")
    guidance = iteration_guidance(iteration)
    if guidance:
        parts.append(guidance)
    parts.append(f"Generate {count} diverse search queries.")
    return "\n\n".join(parts)


def build_filter_prompt(goal: str, candidates: list) -> str:
    rows = [
        f"Result {i}:\nURL: {c.url}\nTitle: {c.title}\nSnippet: {c.description}\n---"
        for i, c in enumerate(candidates, 1)
    ]
    return (
        f"Project Description:\n{goal}\n\n"
        f"Search results:\n" + "\n".join(rows) + "\n\n"
        "Return a decision (keep true/false) for every URL above."
    )


def build_relevancy_prompt(goal: str, items: list, threshold: int) -> str:
    rows = []
    for i, item in enumerate(items, 1):
        row = f"Content {i}:\nURL: {item.url}\nTitle: {item.title}\n"
        if item.published_date:
            row += f"Published: {item.published_date}\n"
        row += f"Content: {item.snippet}\n---"
        rows.append(row)
    return (
        f"Project Description:\n{goal}\n\n"
        f"Minimum Relevancy Threshold: {threshold}\n\n"
        "Content to Analyze:\n" + "\n".join(rows) + "\n\n"
        "Score every URL above. Set is_relevant to true only if the score meets the threshold."
    )


def build_report_prompt(goal: str, results: list, tone: str, max_length: int) -> str:
    rows = []
    for i, r in enumerate(results, 1):
        row = f"Result {i} (score {r.score:.0f}):\nURL: {r.url}\nTitle: {r.title}\n"
        if r.published_date:
            row += f"Published: {r.published_date}\n"
        if r.author:
            row += f"Author: {r.author}\n"
        if r.image_url:
            row += f"Image: {r.image_url} ({r.image_alt or ''})\n"
        if r.key_points:
            row += "Key points:\n" + "\n".join(f"- {p}" for p in r.key_points) + "\n"
        row += f"Snippet: {r.snippet}\n---"
        rows.append(row)
    return (
        f"Research goal: {goal}\n\n"
        f"Create a {tone} markdown report (at most {max_length} characters) from "
        f"these {len(results)} research findings:\n\n" + "\n".join(rows)
    )
