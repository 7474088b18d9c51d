"""
Earnings and leisure time in the American Time Use Survey.

Builds a one-row-per-respondent analysis table from the ATUS respondent,
ATUS-CPS and activity extracts, and fits the earnings regressions on it.
"""

__version__ = "1.0.0"

from .config import AnalysisSettings, Config, load_config
from .errors import ConfigurationError, InvariantViolation, MissingKeyError, ModelError, PipelineError
from .extracts import Extracts, load_extracts
from .pipeline import (
    aggregate_activities,
    build_analysis_table,
    filter_respondents,
    merge_and_derive,
    select_demographics,
)

__all__ = [
    'AnalysisSettings',
    'Config',
    'load_config',
    'ConfigurationError',
    'InvariantViolation',
    'MissingKeyError',
    'ModelError',
    'PipelineError',
    'Extracts',
    'load_extracts',
    'aggregate_activities',
    'build_analysis_table',
    'filter_respondents',
    'merge_and_derive',
    'select_demographics',
]
