"""Canonical column names and dtypes of the three source tables and the output."""

from __future__ import annotations

import polars as pl

RESPONDENT_ID = "respondent_id"

ECONOMIC_SCHEMA: dict[str, pl.DataType] = {
    RESPONDENT_ID: pl.Int64,
    "survey_year": pl.Int64,
    "employment_type": pl.Int64,
    "job_count": pl.Int64,
    "student_flag": pl.Boolean,
    "labor_status": pl.Int64,
    "weekly_earnings": pl.Float64,
    "work_hours_per_week": pl.Float64,
    "household_size": pl.Int64,
}

DEMOGRAPHIC_SCHEMA: dict[str, pl.DataType] = {
    RESPONDENT_ID: pl.Int64,
    "state": pl.Int64,
    "sex": pl.Int64,
    "age": pl.Int64,
    "education_level": pl.Int64,
    "race": pl.Int64,
    "ethnicity_flag": pl.Boolean,
    "birth_country": pl.Int64,
    "citizenship_status": pl.Int64,
    "marital_status": pl.Int64,
}

ACTIVITY_SCHEMA: dict[str, pl.DataType] = {
    RESPONDENT_ID: pl.Int64,
    "activity_code": pl.Int64,
    "duration_minutes": pl.Int64,
}

DEMOGRAPHIC_FIELDS = list(DEMOGRAPHIC_SCHEMA)

# Derived columns appended by the feature deriver
LOG_WEEKLY_EARNINGS = "log_weekly_earnings"
LOG_WORK_HOURS = "log_work_hours"
LOG_HOUSEHOLD_SIZE = "log_household_size"


def hours_column(activity_col: str) -> str:
    return f"{activity_col}_hours"


def log_hours_column(activity_col: str) -> str:
    return f"{activity_col}_log_hours"

