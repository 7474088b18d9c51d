"""
Regression stage: explicit categorical encoding, the nested OLS sequence
for log weekly earnings, and stepwise AIC selection.

Terms are groups of design columns (a categorical field is one term made
of its dummies) so selection adds or drops whole fields at a time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import polars as pl
import statsmodels.api as sm
import us

from .codebook import CATEGORICAL_FIELDS, activity_column, collapse_expr
from .config import AnalysisSettings
from .errors import ModelError
from .schema import (
    LOG_HOUSEHOLD_SIZE,
    LOG_WEEKLY_EARNINGS,
    LOG_WORK_HOURS,
    log_hours_column,
)

logger = logging.getLogger(__name__)

# State FIPS codes -> postal abbreviations for readable dummy names
STATE_FIPS_MAP = {int(s.fips): s.abbr for s in us.states.STATES}
STATE_FIPS_MAP[11] = 'DC'

NUMERIC_TERMS = ("age", LOG_WORK_HOURS, LOG_HOUSEHOLD_SIZE)


@dataclass(frozen=True)
class EncodedDesign:
    frame: pl.DataFrame                   # response + every design column
    terms: Dict[str, Tuple[str, ...]]     # term -> design columns
    reference_levels: Dict[str, str] = field(default_factory=dict)

    def columns_for(self, terms: Sequence[str]) -> List[str]:
        return [c for t in terms for c in self.terms[t]]

    def complete_cases(self, terms: Sequence[str], response: str = LOG_WEEKLY_EARNINGS) -> "EncodedDesign":
        """Restrict to rows with no nulls in the response or the given terms."""
        cols = [response, *self.columns_for(terms)]
        return EncodedDesign(
            frame=self.frame.select(cols).drop_nulls(),
            terms={t: self.terms[t] for t in terms},
            reference_levels={t: r for t, r in self.reference_levels.items() if t in terms},
        )


@dataclass(frozen=True)
class ModelSpec:
    name: str
    terms: Tuple[str, ...]


@dataclass
class ModelFit:
    name: str
    terms: Tuple[str, ...]
    params: Dict[str, float]
    std_errors: Dict[str, float]
    p_values: Dict[str, float]
    rsquared: float
    rsquared_adj: float
    aic: float
    nobs: int


def _state_label(fips: int) -> str:
    return STATE_FIPS_MAP.get(fips, f"{fips:02d}").lower()


def encode_categoricals(table: pl.DataFrame, settings: AnalysisSettings) -> EncodedDesign:
    """
    Build the design frame from the analysis table.

    Each categorical field becomes 0/1 dummies for its observed enumeration
    members; the first observed member (in codebook order) is the reference
    and gets no column. Codes outside the codebook become null dummies, so
    those rows fall out of any model that uses the field.
    """
    exprs: List[pl.Expr] = [pl.col(LOG_WEEKLY_EARNINGS)]
    terms: Dict[str, Tuple[str, ...]] = {}
    reference: Dict[str, str] = {}

    for code in settings.activities_of_interest:
        col = log_hours_column(activity_column(code))
        exprs.append(pl.col(col).cast(pl.Float64))
        terms[col] = (col,)

    for col in NUMERIC_TERMS:
        exprs.append(pl.col(col).cast(pl.Float64))
        terms[col] = (col,)

    for field_name, enum in CATEGORICAL_FIELDS.items():
        collapsed = table.select(collapse_expr(field_name, enum))[field_name]
        observed = set(collapsed.drop_nulls().to_list())
        levels = [m for m in enum if m.value in observed]
        dummies = []
        for member in levels[1:]:
            name = f"{field_name}_{member.name.lower()}"
            exprs.append(
                (collapse_expr(field_name, enum) == member.value).cast(pl.Float64).alias(name)
            )
            dummies.append(name)
        terms[field_name] = tuple(dummies)
        if levels:
            reference[field_name] = levels[0].name.lower()

    exprs.append(pl.col("ethnicity_flag").cast(pl.Float64))
    terms["ethnicity_flag"] = ("ethnicity_flag",)

    states = sorted(set(table["state"].drop_nulls().to_list()))
    state_dummies = []
    for fips in states[1:]:
        name = f"state_{_state_label(fips)}"
        exprs.append((pl.col("state") == fips).cast(pl.Float64).alias(name))
        state_dummies.append(name)
    terms["state"] = tuple(state_dummies)
    if states:
        reference["state"] = _state_label(states[0])

    return EncodedDesign(frame=table.select(exprs), terms=terms, reference_levels=reference)


def model_sequence(settings: AnalysisSettings) -> List[ModelSpec]:
    """Six nested specifications, each adding one block of terms to the last."""
    activities = tuple(log_hours_column(activity_column(c)) for c in settings.activities_of_interest)
    blocks = [
        ("m1_activities", activities),
        ("m2_controls", (LOG_WORK_HOURS, LOG_HOUSEHOLD_SIZE)),
        ("m3_sex_age", ("sex", "age")),
        ("m4_education", ("education_level",)),
        ("m5_background", ("race", "ethnicity_flag", "birth_country", "citizenship_status")),
        ("m6_marital_state", ("marital_status", "state")),
    ]
    specs: List[ModelSpec] = []
    terms: Tuple[str, ...] = ()
    for name, block in blocks:
        terms = terms + block
        specs.append(ModelSpec(name=name, terms=terms))
    return specs


def fit_ols(
    design: EncodedDesign,
    terms: Sequence[str],
    name: str,
    response: str = LOG_WEEKLY_EARNINGS,
) -> ModelFit:
    """OLS of ``response`` on an intercept plus the columns of ``terms``."""
    cols = design.columns_for(terms)
    data = design.frame.select([response, *cols]).drop_nulls()
    if data.height <= len(cols) + 1:
        raise ModelError(
            f"{name}: {data.height} complete rows cannot identify {len(cols) + 1} parameters"
        )

    y = data[response].to_numpy().astype(float)
    if cols:
        X = data.select(cols).to_numpy().astype(float)
    else:
        X = np.empty((data.height, 0))
    X = sm.add_constant(X, has_constant="add")
    res = sm.OLS(y, X).fit()

    names = ["const", *cols]
    return ModelFit(
        name=name,
        terms=tuple(terms),
        params=dict(zip(names, map(float, res.params))),
        std_errors=dict(zip(names, map(float, res.bse))),
        p_values=dict(zip(names, map(float, res.pvalues))),
        rsquared=float(res.rsquared),
        rsquared_adj=float(res.rsquared_adj),
        aic=float(res.aic),
        nobs=int(res.nobs),
    )


def fit_model_sequence(design: EncodedDesign, specs: Sequence[ModelSpec]) -> List[ModelFit]:
    fits = []
    for spec in specs:
        fit = fit_ols(design, spec.terms, spec.name)
        logger.info(f"Models: Fitted {spec.name} with {len(fit.params) - 1} regressors on {fit.nobs:,} rows")
        fits.append(fit)
    return fits


def stepwise_aic(
    design: EncodedDesign,
    terms: Sequence[str],
    response: str = LOG_WEEKLY_EARNINGS,
    name: str = "stepwise",
    max_steps: Optional[int] = None,
) -> ModelFit:
    """
    Bidirectional stepwise selection by AIC, starting from all ``terms``.

    Each step tries dropping every current term and re-adding every dropped
    one, and takes the single move with the lowest AIC. Stops when no move
    lowers AIC. All candidates are fitted on the same complete-case rows.
    """
    design = design.complete_cases(terms, response)
    current = list(terms)
    best = fit_ols(design, current, name, response)
    steps = 0

    while max_steps is None or steps < max_steps:
        candidates: List[Tuple[str, List[str], ModelFit]] = []
        for t in current:
            trial = [x for x in current if x != t]
            candidates.append((f"- {t}", trial, fit_ols(design, trial, name, response)))
        for t in terms:
            if t in current:
                continue
            trial = [x for x in terms if x in current or x == t]
            candidates.append((f"+ {t}", trial, fit_ols(design, trial, name, response)))
        if not candidates:
            break

        move, trial, fit = min(candidates, key=lambda c: c[2].aic)
        if fit.aic >= best.aic:
            break
        logger.info(f"Models: Step {steps + 1}: {move} (AIC {best.aic:.2f} -> {fit.aic:.2f})")
        current, best = trial, fit
        steps += 1

    logger.info(f"Models: Stepwise kept {len(current)} of {len(terms)} terms")
    return best


def fit_all(table: pl.DataFrame, settings: AnalysisSettings) -> List[ModelFit]:
    """The six-model sequence plus stepwise selection from the largest model."""
    design = encode_categoricals(table, settings)
    specs = model_sequence(settings)
    fits = fit_model_sequence(design, specs)
    fits.append(stepwise_aic(design, specs[-1].terms, name="m7_stepwise"))
    return fits


def coefficient_table(fits: Sequence[ModelFit]) -> pl.DataFrame:
    rows = [
        {
            "model": f.name,
            "term": term,
            "estimate": f.params[term],
            "std_error": f.std_errors[term],
            "p_value": f.p_values[term],
        }
        for f in fits
        for term in f.params
    ]
    return pl.DataFrame(
        rows,
        schema={"model": pl.Utf8, "term": pl.Utf8, "estimate": pl.Float64,
                "std_error": pl.Float64, "p_value": pl.Float64},
    )


def fit_summary_table(fits: Sequence[ModelFit]) -> pl.DataFrame:
    return pl.DataFrame(
        [
            {"model": f.name, "nobs": f.nobs, "n_terms": len(f.terms),
             "rsquared": f.rsquared, "rsquared_adj": f.rsquared_adj, "aic": f.aic}
            for f in fits
        ],
        schema={"model": pl.Utf8, "nobs": pl.Int64, "n_terms": pl.Int64,
                "rsquared": pl.Float64, "rsquared_adj": pl.Float64, "aic": pl.Float64},
    )
