"""Shared fixtures: small canonical survey tables built from sensible defaults.

Every factory method takes ``**overrides`` so a test only spells out the
field it is about.
"""

import polars as pl
import pytest

from atus_earnings.codebook import (
    Citizenship,
    EducationLevel,
    EmploymentType,
    LaborStatus,
    MaritalStatus,
    Race,
    Sex,
)
from atus_earnings.config import AnalysisSettings
from atus_earnings.extracts import Extracts
from atus_earnings.schema import ACTIVITY_SCHEMA, DEMOGRAPHIC_SCHEMA, ECONOMIC_SCHEMA

TARGET_YEAR = 2019
EARNINGS_BOUND = 2000.0


class SurveyDataBuilder:
    """Factory for canonical economic, demographic and activity tables."""

    @staticmethod
    def _to_value(field):
        """Convert enum to value, handling None and non-enum types."""
        return field.value if hasattr(field, "value") else field

    @classmethod
    def economic_row(
        cls,
        respondent_id: int = 1,
        survey_year: int = TARGET_YEAR,
        employment_type=EmploymentType.FULL_TIME,
        job_count: int = 1,
        student_flag: bool | None = False,
        labor_status=LaborStatus.EMPLOYED_AT_WORK,
        weekly_earnings: float | None = 1000.0,
        work_hours_per_week: float | None = 40.0,
        household_size: int = 2,
    ) -> dict:
        return {
            "respondent_id": respondent_id,
            "survey_year": survey_year,
            "employment_type": cls._to_value(employment_type),
            "job_count": job_count,
            "student_flag": student_flag,
            "labor_status": cls._to_value(labor_status),
            "weekly_earnings": weekly_earnings,
            "work_hours_per_week": work_hours_per_week,
            "household_size": household_size,
        }

    @classmethod
    def demographic_row(
        cls,
        respondent_id: int = 1,
        state: int = 6,
        sex=Sex.FEMALE,
        age: int = 35,
        education_level=EducationLevel.BACHELORS,
        race=Race.WHITE,
        ethnicity_flag: bool | None = False,
        birth_country: int = 57,
        citizenship_status=Citizenship.NATIVE_US,
        marital_status=MaritalStatus.MARRIED_SPOUSE_PRESENT,
    ) -> dict:
        return {
            "respondent_id": respondent_id,
            "state": state,
            "sex": cls._to_value(sex),
            "age": age,
            "education_level": cls._to_value(education_level),
            "race": cls._to_value(race),
            "ethnicity_flag": ethnicity_flag,
            "birth_country": birth_country,
            "citizenship_status": cls._to_value(citizenship_status),
            "marital_status": cls._to_value(marital_status),
        }

    @staticmethod
    def economic(rows: list[dict]) -> pl.DataFrame:
        return pl.DataFrame(rows, schema=ECONOMIC_SCHEMA)

    @staticmethod
    def demographic(rows: list[dict]) -> pl.DataFrame:
        return pl.DataFrame(rows, schema=DEMOGRAPHIC_SCHEMA)

    @staticmethod
    def activity(records: list[tuple[int, int, int]]) -> pl.DataFrame:
        """Activity table from (respondent_id, activity_code, duration_minutes) tuples."""
        return pl.DataFrame(
            {
                "respondent_id": [r[0] for r in records],
                "activity_code": [r[1] for r in records],
                "duration_minutes": [r[2] for r in records],
            },
            schema=ACTIVITY_SCHEMA,
        )

    @classmethod
    def sample_extracts(cls) -> Extracts:
        """Ten respondents; 1, 8, 9 and 10 are eligible, 8 earns over the bound.

        1  eligible, 1000/week, diary with repeated sleep episodes
        2  part time
        3  two jobs
        4  student
        5  unemployed
        6  earnings not reported
        7  wrong survey year
        8  eligible, 2500/week (over the bound)
        9  eligible, just under the bound
        10 eligible, employed but absent from work
        """
        economic = cls.economic([
            cls.economic_row(1),
            cls.economic_row(2, employment_type=EmploymentType.PART_TIME),
            cls.economic_row(3, job_count=2),
            cls.economic_row(4, student_flag=True),
            cls.economic_row(5, labor_status=LaborStatus.UNEMPLOYED_LOOKING),
            cls.economic_row(6, weekly_earnings=None),
            cls.economic_row(7, survey_year=TARGET_YEAR - 1),
            cls.economic_row(8, weekly_earnings=2500.0),
            cls.economic_row(9, weekly_earnings=1999.99, household_size=4),
            cls.economic_row(10, labor_status=LaborStatus.EMPLOYED_ABSENT, weekly_earnings=500.0),
        ])
        demographic = cls.demographic([
            cls.demographic_row(i, sex=Sex.MALE if i % 2 else Sex.FEMALE) for i in range(1, 11)
        ])
        activity = cls.activity([
            (1, 10101, 400),
            (1, 10101, 60),
            (1, 120302, 30),
            (1, 120303, 120),
            (2, 10101, 300),
            (2, 50101, 480),
            (8, 10101, 480),
            (9, 10101, 420),
            (9, 120312, 45),
            (10, 10101, 500),
            (10, 120101, 90),
        ])
        return Extracts(economic=economic, demographic=demographic, activity=activity)


@pytest.fixture
def builder():
    return SurveyDataBuilder


@pytest.fixture
def settings():
    return AnalysisSettings(
        target_year=TARGET_YEAR,
        earnings_upper_bound=EARNINGS_BOUND,
        log_offset=0.01,
        missing_policy="drop",
    )


@pytest.fixture
def sample_extracts():
    return SurveyDataBuilder.sample_extracts()
