"""Error taxonomy for the research engine.

Configuration errors fail fast; policy errors are reported before any project
mutation; provider errors are either retried or propagated to the run handler.
"""

from __future__ import annotations


class RelevxError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(RelevxError):
    """The engine is not wired up correctly."""


class ProviderNotConfiguredError(ConfigurationError):
    """No LLM or search provider was registered or injected."""


class ProjectNotFoundError(RelevxError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id


class FrequencyViolationError(RelevxError):
    """The project ran less than one day ago."""


class ProjectBusyError(RelevxError):
    """The project is already marked as running."""


class ProviderError(RelevxError):
    """An external provider call failed."""


class FatalProviderError(ProviderError):
    """Provider failure that retrying cannot fix (auth, bad request, bad config)."""


class SearchProviderError(ProviderError):
    """A search backend returned an error for a query."""
