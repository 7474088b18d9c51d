"""Tests for categorical encoding and the regression sequence."""

import numpy as np
import polars as pl
import pytest

from atus_earnings.codebook import ActivityCode
from atus_earnings.errors import ModelError, PipelineError
from atus_earnings.models import (
    coefficient_table,
    encode_categoricals,
    fit_all,
    fit_model_sequence,
    fit_ols,
    fit_summary_table,
    model_sequence,
    stepwise_aic,
)
from atus_earnings.schema import (
    LOG_HOUSEHOLD_SIZE,
    LOG_WEEKLY_EARNINGS,
    LOG_WORK_HOURS,
    log_hours_column,
)

SLEEP = log_hours_column(ActivityCode.SLEEPING.column)
N_ROWS = 400


def _analysis_table(n: int = N_ROWS, seed: int = 7) -> pl.DataFrame:
    """Synthetic analysis table where log earnings depend on sleep alone."""
    rng = np.random.default_rng(seed)
    data = {
        log_hours_column(code.column): rng.normal(0.0, 1.0, n) for code in ActivityCode
    }
    data[LOG_WEEKLY_EARNINGS] = 6.0 + 0.3 * data[SLEEP] + rng.normal(0.0, 0.05, n)
    data.update({
        "age": rng.integers(18, 65, n),
        LOG_WORK_HOURS: np.log(rng.integers(35, 60, n) + 1.0),
        LOG_HOUSEHOLD_SIZE: np.log(rng.integers(1, 6, n) + 1.0),
        "sex": rng.choice([1, 2], n),
        "education_level": rng.choice([39, 43, 44], n),
        "race": rng.choice([1, 2, 4, 7], n),   # 7 is a multiple-race code
        "ethnicity_flag": rng.choice([True, False], n),
        "birth_country": rng.choice([57, 210], n),
        "citizenship_status": rng.choice([1, 4, 5], n),
        "marital_status": rng.choice([1, 6], n),
        "state": rng.choice([6, 36, 48], n),
    })
    return pl.DataFrame(data)


@pytest.fixture
def table():
    return _analysis_table()


@pytest.fixture
def design(table, settings):
    return encode_categoricals(table, settings)


def test_dummy_columns_and_references(design):
    assert design.terms["sex"] == ("sex_female",)
    assert design.reference_levels["sex"] == "male"
    assert design.terms["race"] == ("race_black", "race_asian", "race_multiracial")
    assert design.terms["birth_country"] == ("birth_country_elsewhere",)
    assert design.terms["state"] == ("state_ny", "state_tx")
    assert design.reference_levels["state"] == "ca"
    assert design.terms[SLEEP] == (SLEEP,)


def test_dummies_are_zero_one(design, table):
    female = design.frame["sex_female"]
    assert set(female.to_list()) == {0.0, 1.0}
    assert female.sum() == (table["sex"] == 2).sum()


def test_unknown_code_drops_row_only_where_field_is_used(table, settings):
    table = table.with_row_index("i").with_columns(
        pl.when(pl.col("i") == 0).then(99).otherwise(pl.col("education_level")).alias("education_level")
    ).drop("i")
    design = encode_categoricals(table, settings)
    fits = {f.name: f for f in fit_model_sequence(design, model_sequence(settings))}
    assert fits["m3_sex_age"].nobs == N_ROWS
    assert fits["m4_education"].nobs == N_ROWS - 1


def test_sequence_is_nested(settings):
    specs = model_sequence(settings)
    assert [s.name for s in specs] == [
        "m1_activities",
        "m2_controls",
        "m3_sex_age",
        "m4_education",
        "m5_background",
        "m6_marital_state",
    ]
    assert len(specs[0].terms) == len(settings.activities_of_interest)
    for smaller, larger in zip(specs, specs[1:]):
        assert larger.terms[: len(smaller.terms)] == smaller.terms
    assert specs[-1].terms[-1] == "state"


def test_recovers_sleep_effect(design, settings):
    fits = fit_model_sequence(design, model_sequence(settings))
    for fit in fits:
        assert fit.params[SLEEP] == pytest.approx(0.3, abs=0.05)
        assert fit.params["const"] == pytest.approx(6.0, abs=0.5)


def test_r_squared_never_falls_along_the_sequence(design, settings):
    fits = fit_model_sequence(design, model_sequence(settings))
    r2 = [f.rsquared for f in fits]
    assert all(b >= a - 1e-12 for a, b in zip(r2, r2[1:]))


def test_stepwise_improves_on_full_model(design, settings):
    full_terms = model_sequence(settings)[-1].terms
    full = fit_ols(design, full_terms, "full")
    best = stepwise_aic(design, full_terms)
    assert best.aic <= full.aic
    assert SLEEP in best.terms
    assert set(best.terms) <= set(full_terms)


def test_stepwise_with_zero_steps_is_the_full_model(design, settings):
    full_terms = model_sequence(settings)[-1].terms
    best = stepwise_aic(design, full_terms, max_steps=0)
    assert best.terms == tuple(full_terms)


def test_fit_all_and_tables(table, settings):
    fits = fit_all(table, settings)
    assert [f.name for f in fits][-1] == "m7_stepwise"
    assert len(fits) == 7

    coefs = coefficient_table(fits)
    assert coefs.columns == ["model", "term", "estimate", "std_error", "p_value"]
    assert coefs.height == sum(len(f.params) for f in fits)
    assert coefs.filter(pl.col("term") == "const").height == 7

    summary = fit_summary_table(fits)
    assert summary["model"].to_list() == [f.name for f in fits]
    assert summary["n_terms"][0] == len(settings.activities_of_interest)
    assert (summary["nobs"] == N_ROWS).all()


def test_too_few_rows(settings):
    design = encode_categoricals(_analysis_table(n=5), settings)
    with pytest.raises(ModelError, match="complete rows"):
        fit_ols(design, model_sequence(settings)[0].terms, "m1_activities")


def test_model_errors_are_pipeline_errors():
    assert issubclass(ModelError, PipelineError)
