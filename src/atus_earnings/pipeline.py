"""
Analysis-table pipeline for the ATUS earnings / leisure-time study.

Steps:
1) Respondents: keep eligible full-time, single-job, non-student, employed
   respondents of the target year with reported weekly earnings.
2) Demographics: project the fixed demographic fields (no filtering).
3) Activities: sum diary minutes per respondent x activity code, pivot wide, fill 0.
4) Merge: left-join from the eligible respondents, derive hour and log features,
   then drop weekly earnings at or above the configured bound.

Every step takes polars frames and returns a new frame; nothing is shared
between runs. Paths and parameters come from config.yml (see config.py).
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

import polars as pl

from .codebook import EMPLOYED, EmploymentType, activity_column
from .config import AnalysisSettings, Config, load_config
from .errors import InvariantViolation, MissingKeyError, PipelineError
from .extracts import Extracts, load_extracts
from .log import setup_colored_logging
from .schema import (
    DEMOGRAPHIC_FIELDS,
    LOG_HOUSEHOLD_SIZE,
    LOG_WEEKLY_EARNINGS,
    LOG_WORK_HOURS,
    RESPONDENT_ID,
    hours_column,
    log_hours_column,
)

logger = logging.getLogger(__name__)

MINUTES_PER_HOUR = 60

# Join markers, dropped before the table is returned
_HAS_DEMOGRAPHIC = "__has_demographic"
_HAS_ACTIVITY = "__has_activity"


def _require_unique(df: pl.DataFrame, table: str) -> None:
    dupes = (
        df.group_by(RESPONDENT_ID)
          .len()
          .filter(pl.col("len") > 1)
          .sort(RESPONDENT_ID)
    )
    if dupes.height:
        ids = dupes[RESPONDENT_ID].head(5).to_list()
        raise InvariantViolation(
            f"{table} table has {dupes.height:,} respondent id(s) with more than one row, e.g. {ids}"
        )


# ---------------- 1) Respondent filter ---------------- #

def eligibility_predicates(target_year: int) -> dict[str, pl.Expr]:
    """The conjunctive eligibility rules, keyed by a short label for logging."""
    return {
        "survey year": pl.col("survey_year") == target_year,
        "full time": pl.col("employment_type") == EmploymentType.FULL_TIME.value,
        "single job": pl.col("job_count") == 1,
        "not a student": ~pl.col("student_flag"),
        "employed": pl.col("labor_status").is_in([s.value for s in EMPLOYED]),
        # negative values are ATUS null markers
        "earnings reported": (
            pl.col("weekly_earnings").is_not_null()
            & pl.col("weekly_earnings").cast(pl.Float64).is_not_nan()
            & (pl.col("weekly_earnings") >= 0)
        ),
    }


def filter_respondents(economic: pl.DataFrame, target_year: int) -> pl.DataFrame:
    """
    Return the eligible subset of the economic table.

    A predicate evaluating to null (unknown student status, say) counts as
    failed. A target year absent from the data yields an empty frame.
    """
    if economic.filter(pl.col("survey_year") == target_year).is_empty():
        logger.warning(f"Filter: No economic rows for survey year {target_year}; result is empty")

    predicates = eligibility_predicates(target_year)
    for label, expr in predicates.items():
        n_pass = economic.filter(expr).height
        logger.debug(f"Filter: {label}: {n_pass:,} of {economic.height:,} rows pass")

    out = economic.filter(pl.all_horizontal(list(predicates.values())))
    share = out.height / economic.height if economic.height else 0
    logger.info(f"Filter: {out.height:,} of {economic.height:,} respondents eligible ({share:.1%})")
    return out


# ---------------- 2) Demographic selector ---------------- #

def select_demographics(demographic: pl.DataFrame) -> pl.DataFrame:
    """Project the fixed demographic fields; one row per respondent is required."""
    missing = [c for c in DEMOGRAPHIC_FIELDS if c not in demographic.columns]
    if missing:
        raise InvariantViolation(f"Demographic table lacks field(s): {missing}")
    _require_unique(demographic, "demographic")
    out = demographic.select(DEMOGRAPHIC_FIELDS)
    logger.info(f"Demographics: Selected {len(DEMOGRAPHIC_FIELDS)} fields for {out.height:,} respondents")
    return out


# ---------------- 3) Activity aggregator ---------------- #

def aggregate_activities(activity: pl.DataFrame) -> pl.DataFrame:
    """
    Collapse diary episodes to one row per respondent with one column per activity code.

    Minutes are summed within (respondent, code). A code the respondent never
    reported is 0, not null: no report means no time spent. Columns are named
    by ``activity_column`` and ordered by code; rows are ordered by respondent.
    """
    bad = activity.filter(
        pl.col("duration_minutes").is_null()
        | (pl.col("duration_minutes") < 0)
        | pl.col("activity_code").is_null()
        | pl.col(RESPONDENT_ID).is_null()
    )
    if bad.height:
        raise InvariantViolation(
            f"Activity table has {bad.height:,} episode(s) with a missing key or a null/negative duration"
        )

    if activity.is_empty():
        logger.warning("Activities: No diary episodes; activity table is empty")
        return pl.DataFrame(schema={RESPONDENT_ID: pl.Int64})

    codes = activity["activity_code"].unique().sort().to_list()
    try:
        col_for_code = {code: activity_column(code) for code in codes}
    except ValueError as e:
        raise InvariantViolation(str(e)) from e

    summed = (
        activity.group_by([RESPONDENT_ID, "activity_code"])
        .agg(pl.col("duration_minutes").sum())
        .with_columns(
            pl.col("activity_code")
              .replace_strict(col_for_code, return_dtype=pl.Utf8)
              .alias("activity_column")
        )
        .sort([RESPONDENT_ID, "activity_code"])
    )

    wide = (
        summed.pivot(on="activity_column", index=RESPONDENT_ID, values="duration_minutes")
        .fill_null(0)
        .select([RESPONDENT_ID, *col_for_code.values()])
        .sort(RESPONDENT_ID)
    )
    logger.info(
        f"Activities: Aggregated {activity.height:,} episodes to {wide.height:,} respondents "
        f"x {len(codes):,} activity codes"
    )
    return wide


# ---------------- 4) Merge & derive ---------------- #

def _apply_missing_policy(merged: pl.DataFrame, policy: str) -> pl.DataFrame:
    no_demo = merged.filter(pl.col(_HAS_DEMOGRAPHIC).is_null())[RESPONDENT_ID].to_list()
    no_act = merged.filter(pl.col(_HAS_ACTIVITY).is_null())[RESPONDENT_ID].to_list()
    if not no_demo and not no_act:
        return merged

    if policy == "error":
        if no_demo:
            raise MissingKeyError("demographic", no_demo)
        raise MissingKeyError("activity", no_act)

    if policy == "drop":
        out = merged.filter(
            pl.col(_HAS_DEMOGRAPHIC).is_not_null() & pl.col(_HAS_ACTIVITY).is_not_null()
        )
        logger.warning(
            f"Merge: Dropped {merged.height - out.height:,} respondents missing demographic "
            f"({len(no_demo):,}) or activity ({len(no_act):,}) data"
        )
        return out

    logger.warning(
        f"Merge: Retained {len(no_demo):,} respondents without demographic data and "
        f"{len(no_act):,} without activity data; their fields are null"
    )
    return merged


def derive_features(merged: pl.DataFrame, settings: AnalysisSettings) -> pl.DataFrame:
    """Hours and log-hours per activity of interest, plus the log control and response terms."""
    eps = settings.log_offset
    out = merged

    # An activity nobody in the sample reported still gets a column of zeros
    absent = [
        activity_column(code) for code in settings.activities_of_interest
        if activity_column(code) not in out.columns
    ]
    if absent:
        out = out.with_columns([
            pl.when(pl.col(_HAS_ACTIVITY)).then(pl.lit(0, dtype=pl.Int64)).otherwise(None).alias(c)
            for c in absent
        ])

    exprs: List[pl.Expr] = []
    for code in settings.activities_of_interest:
        col = activity_column(code)
        hours = pl.col(col) / MINUTES_PER_HOUR
        exprs.append(hours.alias(hours_column(col)))
        exprs.append((hours + eps).log().alias(log_hours_column(col)))

    exprs.extend([
        (pl.col("work_hours_per_week") + 1).log().alias(LOG_WORK_HOURS),
        (pl.col("household_size").cast(pl.Float64) + 1).log().alias(LOG_HOUSEHOLD_SIZE),
        (pl.col("weekly_earnings") + 1).log().alias(LOG_WEEKLY_EARNINGS),
    ])
    return out.with_columns(exprs)


def merge_and_derive(
    economic: pl.DataFrame,
    demographic: pl.DataFrame,
    activity_wide: pl.DataFrame,
    settings: AnalysisSettings,
) -> pl.DataFrame:
    """
    Join the three tables on respondent id, derive features, apply the earnings bound.

    The join is anchored on the (already filtered) economic rows. Respondents
    without a demographic or activity match are handled per
    ``settings.missing_policy``. The earnings bound is applied only here, after
    derivation, never to the economic table before the join.
    """
    _require_unique(economic, "economic")
    _require_unique(activity_wide, "activity")

    merged = (
        economic
        .join(demographic.with_columns(pl.lit(True).alias(_HAS_DEMOGRAPHIC)), on=RESPONDENT_ID, how="left")
        .join(activity_wide.with_columns(pl.lit(True).alias(_HAS_ACTIVITY)), on=RESPONDENT_ID, how="left")
    )
    logger.info(f"Merge: Joined {merged.height:,} eligible respondents with demographic and activity data")

    merged = _apply_missing_policy(merged, settings.missing_policy)
    derived = derive_features(merged, settings)

    bound = settings.earnings_upper_bound
    out = (
        derived.filter(pl.col("weekly_earnings") < bound)
        .drop([_HAS_DEMOGRAPHIC, _HAS_ACTIVITY])
        .sort(RESPONDENT_ID)
    )
    logger.info(
        f"Merge: Earnings bound {bound:,.2f} dropped {derived.height - out.height:,} rows; "
        f"{out.height:,} rows in analysis table"
    )
    return out


def build_analysis_table(extracts: Extracts, settings: AnalysisSettings) -> pl.DataFrame:
    """Run the four stages over already-loaded extracts."""
    eligible = filter_respondents(extracts.economic, settings.target_year)
    demographics = select_demographics(extracts.demographic)
    activity_wide = aggregate_activities(extracts.activity)
    return merge_and_derive(eligible, demographics, activity_wide, settings)


def qc_analysis_rows(table: pl.DataFrame, settings: AnalysisSettings) -> pl.DataFrame:
    """
    Return rows with potential issues:
    - weekly earnings missing or at/above the configured bound
    - an activity-of-interest minute column negative, or null unless the
      missing policy retains unmatched respondents
    """
    activity_cols = [
        activity_column(code) for code in settings.activities_of_interest
        if activity_column(code) in table.columns
    ]
    bad_earnings = (
        pl.col("weekly_earnings").is_null()
        | (pl.col("weekly_earnings") >= settings.earnings_upper_bound)
    )
    if settings.missing_policy == "retain":
        bad_minutes = [(pl.col(c) < 0).fill_null(False) for c in activity_cols]
    else:
        bad_minutes = [pl.col(c).is_null() | (pl.col(c) < 0) for c in activity_cols]
    return table.filter(pl.any_horizontal([bad_earnings, *bad_minutes]))


# ---------------- Output ---------------- #

def _export_stata(df: pl.DataFrame, file_path: Path) -> None:
    """Export a Polars DataFrame to Stata .dta format via pandas"""
    # Stata has no boolean type
    bool_cols = [c for c, dt in df.schema.items() if dt == pl.Boolean]
    df_pandas = df.with_columns([pl.col(c).cast(pl.Int8) for c in bool_cols]).to_pandas()
    file_path.parent.mkdir(parents=True, exist_ok=True)
    df_pandas.to_stata(str(file_path), write_index=False, version=119)
    logger.info(f"Exported {len(df):,} rows to {file_path}")


def write_table(df: pl.DataFrame, file_path: Path, fmt: str = "csv") -> Path:
    if fmt == "dta":
        file_path = file_path.with_suffix(".dta")
        _export_stata(df, file_path)
        return file_path
    file_path.parent.mkdir(parents=True, exist_ok=True)
    df.write_csv(str(file_path))
    logger.info(f"Saved {len(df):,} rows to {file_path}")
    return file_path


def run(cfg: Config, output: Optional[Path] = None, fmt: str = "csv", fit_models: bool = False) -> dict[str, Path]:
    """Load, build, check and write the analysis table; optionally fit the models."""
    extracts = load_extracts(cfg)
    table = build_analysis_table(extracts, cfg.analysis)

    issues = qc_analysis_rows(table, cfg.analysis)
    if issues.height:
        raise InvariantViolation(f"QC: {issues.height:,} analysis rows break the output contract")

    # Fit before writing; a failed fit must leave no output files
    fits = None
    if fit_models:
        from .models import coefficient_table, fit_all, fit_summary_table

        fits = fit_all(table, cfg.analysis)
        for row in fit_summary_table(fits).iter_rows(named=True):
            logger.info(
                f"Models: {row['model']}: n={row['nobs']:,} R2={row['rsquared']:.3f} AIC={row['aic']:.1f}"
            )

    out_paths: dict[str, Path] = {}
    out_path = output or cfg.get_output_path("analysis_table", cfg.processed_dir / "analysis_table.csv")
    out_paths["analysis_table"] = write_table(table, out_path, fmt)
    if fits is not None:
        coef_path = cfg.get_output_path("coefficients", cfg.processed_dir / "model_coefficients.csv")
        out_paths["coefficients"] = write_table(coefficient_table(fits), coef_path)
    return out_paths


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Build the ATUS earnings analysis table.")
    parser.add_argument("--config", type=str, default=None, help="Path to config file (YAML, optional)")
    parser.add_argument("--output", type=str, default=None, help="Output path for the analysis table")
    parser.add_argument("--format", choices=("csv", "dta"), default="csv", help="Output format")
    parser.add_argument("--fit-models", action="store_true", help="Also fit the regression sequence")
    parser.add_argument("--verbose", action="store_true", help="Log per-predicate filter counts")
    args = parser.parse_args(argv)

    log = setup_colored_logging(logging.DEBUG if args.verbose else logging.INFO)
    try:
        cfg = load_config(args.config)
        out = run(
            cfg,
            output=Path(args.output) if args.output else None,
            fmt=args.format,
            fit_models=args.fit_models,
        )
    except (PipelineError, FileNotFoundError) as e:
        log.error(f"Run failed: {e}")
        return 1

    log.info("Run completed. Outputs:")
    for k, p in out.items():
        log.info(f" - {k}: {p}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
