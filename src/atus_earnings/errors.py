"""Exceptions raised by the analysis pipeline. None of them are retried."""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every pipeline failure."""


class MissingKeyError(PipelineError):
    """An eligible respondent has no matching demographic or activity record."""

    def __init__(self, table: str, respondent_ids: list[int]):
        self.table = table
        self.respondent_ids = respondent_ids
        preview = ", ".join(str(r) for r in respondent_ids[:5])
        more = "" if len(respondent_ids) <= 5 else f" (+{len(respondent_ids) - 5} more)"
        super().__init__(
            f"{len(respondent_ids)} respondent(s) have no {table} record: {preview}{more}"
        )


class InvariantViolation(PipelineError):
    """Input data breaks an assumption the analysis depends on."""


class ConfigurationError(PipelineError):
    """A configuration value is missing, malformed, or not usable."""


class ModelError(PipelineError):
    """A regression cannot be fitted on the analysis table."""
