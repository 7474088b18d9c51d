"""
Codebook for the canonical ATUS analysis schema.

Enumeration values are the ATUS/CPS codes as they appear in the extracts,
so a column can be compared against ``Member.value`` directly. Fields with
open-ended code lists (race combinations, country of birth) are collapsed
into the groups the models use; see ``collapse_expr``.
"""

from __future__ import annotations

from enum import Enum

import polars as pl


class EmploymentType(Enum):
    """TRDPFTPT: full time or part time status."""
    FULL_TIME = 1
    PART_TIME = 2


class LaborStatus(Enum):
    """TELFS: labor force status."""
    EMPLOYED_AT_WORK = 1
    EMPLOYED_ABSENT = 2
    UNEMPLOYED_ON_LAYOFF = 3
    UNEMPLOYED_LOOKING = 4
    NOT_IN_LABOR_FORCE = 5


EMPLOYED = (LaborStatus.EMPLOYED_AT_WORK, LaborStatus.EMPLOYED_ABSENT)


class Sex(Enum):
    """PESEX"""
    MALE = 1
    FEMALE = 2


class EducationLevel(Enum):
    """PEEDUCA: highest level of school completed."""
    LESS_THAN_1ST_GRADE = 31
    GRADES_1_TO_4 = 32
    GRADES_5_TO_6 = 33
    GRADES_7_TO_8 = 34
    GRADE_9 = 35
    GRADE_10 = 36
    GRADE_11 = 37
    GRADE_12_NO_DIPLOMA = 38
    HIGH_SCHOOL = 39
    SOME_COLLEGE = 40
    ASSOCIATE_VOCATIONAL = 41
    ASSOCIATE_ACADEMIC = 42
    BACHELORS = 43
    MASTERS = 44
    PROFESSIONAL = 45
    DOCTORATE = 46


class Race(Enum):
    """PTDTRACE, with every multiple-race combination (codes 6+) collapsed."""
    WHITE = 1
    BLACK = 2
    AMERICAN_INDIAN = 3
    ASIAN = 4
    PACIFIC_ISLANDER = 5
    MULTIRACIAL = 6


class BirthCountry(Enum):
    """PENATVTY, collapsed to born in the United States or not."""
    UNITED_STATES = 57
    ELSEWHERE = 0


class Citizenship(Enum):
    """PRCITSHP"""
    NATIVE_US = 1
    NATIVE_TERRITORY = 2
    NATIVE_ABROAD = 3
    NATURALIZED = 4
    NONCITIZEN = 5


class MaritalStatus(Enum):
    """PEMARITL"""
    MARRIED_SPOUSE_PRESENT = 1
    MARRIED_SPOUSE_ABSENT = 2
    WIDOWED = 3
    DIVORCED = 4
    SEPARATED = 5
    NEVER_MARRIED = 6


class ActivityCode(Enum):
    """Six digit ATUS lexicon codes of the activities the analysis models."""
    SLEEPING = 10101
    SOCIALIZING = 120101
    TOBACCO_AND_DRUGS = 120302
    TELEVISION_AND_MOVIES = 120303
    MUSIC_NOT_RADIO = 120306
    READING_FOR_INTEREST = 120312
    GAMBLING = 120404

    @property
    def column(self) -> str:
        return activity_column(self.value)


def activity_column(code: int) -> str:
    """Wide-table column name for an activity code, e.g. 10101 -> 't010101'."""
    if code < 0 or code > 999999:
        raise ValueError(f"Activity code out of range: {code}")
    return f"t{code:06d}"


def collapse_expr(column: str, enum: type[Enum]) -> pl.Expr:
    """Map raw codes onto the members of ``enum``; codes outside it become null."""
    col = pl.col(column)
    if enum is Race:
        col = pl.when(col >= Race.MULTIRACIAL.value).then(Race.MULTIRACIAL.value).otherwise(col)
    elif enum is BirthCountry:
        col = (
            pl.when(col == BirthCountry.UNITED_STATES.value)
            .then(BirthCountry.UNITED_STATES.value)
            .when(col.is_not_null())
            .then(BirthCountry.ELSEWHERE.value)
            .otherwise(None)
        )
    valid = [m.value for m in enum]
    return pl.when(col.is_in(valid)).then(col).otherwise(None).alias(column)


# Categorical fields of the analysis table and the enumeration that decodes each
CATEGORICAL_FIELDS: dict[str, type[Enum]] = {
    "sex": Sex,
    "education_level": EducationLevel,
    "race": Race,
    "birth_country": BirthCountry,
    "citizenship_status": Citizenship,
    "marital_status": MaritalStatus,
}
