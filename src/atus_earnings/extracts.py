"""
Load the three ATUS extracts (respondent, ATUS-CPS, activity) into the
canonical schema.

Raw files are the comma-delimited ``.dat`` files BLS publishes (plain or
gzipped). The YAML column map renames raw variables; a few ATUS variables
need decoding on the way in (yes/no questions, the multiple-jobs flag),
and negative ATUS sentinels (-1 blank, -2 don't know, -3 refused, -4
hours vary) become null on the respondent and CPS tables.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict

import polars as pl

from .config import Config, TableConfig
from .errors import ConfigurationError, InvariantViolation
from .schema import (
    ACTIVITY_SCHEMA,
    DEMOGRAPHIC_SCHEMA,
    ECONOMIC_SCHEMA,
    RESPONDENT_ID,
)

logger = logging.getLogger(__name__)

LINE_NUMBER = "line_number"
RESPONDENT_LINE = 1


@dataclass(frozen=True)
class Extracts:
    economic: pl.DataFrame
    demographic: pl.DataFrame
    activity: pl.DataFrame


def _yes_no(col: str) -> pl.Expr:
    # 1 = yes, 2 = no, anything else unknown
    return (
        pl.when(pl.col(col) == 1).then(True)
        .when(pl.col(col) == 2).then(False)
        .otherwise(None)
        .alias(col)
    )


def _more_than_one_job(col: str) -> pl.Expr:
    # TEMJOT asks "more than one job?"; a yes counts as two or more jobs
    return (
        pl.when(pl.col(col) == 1).then(2)
        .when(pl.col(col) == 2).then(1)
        .otherwise(None)
        .alias(col)
    )


# Raw ATUS variables whose codes do not carry the canonical meaning directly
DECODERS: Dict[str, Callable[[str], pl.Expr]] = {
    "TEMJOT": _more_than_one_job,
    "TESCHENR": _yes_no,
    "PEHSPNON": _yes_no,
}


def _null_sentinels(df: pl.DataFrame, keep: set[str]) -> pl.DataFrame:
    numeric = [
        c for c, dt in df.schema.items()
        if c not in keep and dt.is_numeric()
    ]
    return df.with_columns([
        pl.when(pl.col(c) < 0).then(None).otherwise(pl.col(c)).alias(c)
        for c in numeric
    ])


def read_table(
    path: Path,
    table: TableConfig,
    schema: dict[str, pl.DataType],
    null_sentinels: bool = True,
) -> pl.DataFrame:
    """Read one extract and return it with exactly the columns of ``schema``."""
    if not path.exists():
        raise FileNotFoundError(f"Extract not found: {path}")

    header = pl.read_csv(str(path), n_rows=0).columns
    missing_raw = [c for c in table.columns if c not in header]
    if missing_raw:
        raise ConfigurationError(f"{path.name} lacks mapped column(s): {missing_raw}")
    unmapped = [c for c in schema if c not in table.columns.values()]
    if unmapped:
        raise ConfigurationError(f"No raw column mapped to {unmapped} for {path.name}")

    df = pl.read_csv(str(path), columns=list(table.columns), infer_schema_length=10000)
    logger.info(f"Load: Loaded {df.height:,} rows from {path}")

    # Decode known ATUS variables before sentinels are dropped, then rename
    df = df.with_columns([DECODERS[c](c) for c in table.columns if c in DECODERS])
    df = df.rename(table.columns)

    if null_sentinels:
        df = _null_sentinels(df, keep={RESPONDENT_ID, LINE_NUMBER})

    if LINE_NUMBER in df.columns:
        n_before = df.height
        df = df.filter(pl.col(LINE_NUMBER) == RESPONDENT_LINE).drop(LINE_NUMBER)
        logger.info(f"Load: Kept respondent line only ({n_before:,} -> {df.height:,} rows)")

    if table.scale:
        df = df.with_columns([
            (pl.col(c).cast(pl.Float64) * factor).alias(c)
            for c, factor in table.scale.items()
            if c in df.columns
        ])

    try:
        return df.select([pl.col(c).cast(dt, strict=True) for c, dt in schema.items()])
    except pl.exceptions.PolarsError as e:
        raise InvariantViolation(f"{path.name} has values outside the expected types: {e}") from e


def load_extracts(cfg: Config) -> Extracts:
    """Read the economic, demographic and activity extracts named in the config."""
    economic = read_table(cfg.table_path("economic"), cfg.tables["economic"], ECONOMIC_SCHEMA)
    demographic = read_table(cfg.table_path("demographic"), cfg.tables["demographic"], DEMOGRAPHIC_SCHEMA)
    # Durations keep their sign so the aggregator can reject negative values
    activity = read_table(
        cfg.table_path("activity"), cfg.tables["activity"], ACTIVITY_SCHEMA, null_sentinels=False
    )
    return Extracts(economic=economic, demographic=demographic, activity=activity)
