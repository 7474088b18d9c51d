"""
Configuration loading.

All paths, column maps and analysis parameters come from a YAML file
(``src/atus_earnings/config.yml`` by default), parsed into dataclasses.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .codebook import ActivityCode
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

PACKAGE_DIR = Path(__file__).resolve().parent
REPO_ROOT = PACKAGE_DIR.parents[1]
# Default config search paths
_CFG_SEARCH = [
    PACKAGE_DIR / "config.yml",
    REPO_ROOT / "config.yml",
]

TABLE_NAMES = ("economic", "demographic", "activity")
MISSING_POLICIES = ("drop", "retain", "error")


# ---------------- Configuration object model ---------------- #

@dataclass(frozen=True)
class AnalysisSettings:
    target_year: int
    earnings_upper_bound: float
    log_offset: float = 0.01
    missing_policy: str = "drop"
    activities_of_interest: tuple[int, ...] = tuple(a.value for a in ActivityCode)

    def __post_init__(self):
        if isinstance(self.target_year, bool) or not isinstance(self.target_year, int):
            raise ConfigurationError(f"target_year must be an integer year, got {self.target_year!r}")
        if not self.earnings_upper_bound > 0:
            raise ConfigurationError(
                f"earnings_upper_bound must be positive, got {self.earnings_upper_bound!r}"
            )
        if not self.log_offset > 0:
            raise ConfigurationError(f"log_offset must be positive, got {self.log_offset!r}")
        if self.missing_policy not in MISSING_POLICIES:
            raise ConfigurationError(
                f"missing_policy must be one of {MISSING_POLICIES}, got {self.missing_policy!r}"
            )
        if not self.activities_of_interest:
            raise ConfigurationError("activities_of_interest is empty")
        if len(set(self.activities_of_interest)) != len(self.activities_of_interest):
            raise ConfigurationError("activities_of_interest lists a code twice")


@dataclass
class TableConfig:
    file: str
    # raw extract column -> canonical column
    columns: Dict[str, str] = field(default_factory=dict)
    # canonical column -> multiplier applied after loading (implied decimals)
    scale: Dict[str, float] = field(default_factory=dict)


@dataclass
class Config:
    raw_dir: Path
    processed_dir: Path
    analysis: AnalysisSettings
    tables: Dict[str, TableConfig] = field(default_factory=dict)
    outputs: Dict[str, Path] = field(default_factory=dict)

    def get_output_path(self, key: str, default: Path) -> Path:
        p = self.outputs.get(key)
        return p if p is not None else default

    def table_path(self, name: str) -> Path:
        return self.raw_dir / self.tables[name].file


def _coerce_to_path(p: Any, base: Path) -> Path:
    if isinstance(p, Path):
        return p
    if p is None:
        return base
    return (base / str(p)).resolve() if not str(p).startswith("/") else Path(str(p)).resolve()


def resolve_tokens(s: str, cfg: dict) -> str:
    """Replace ${a.b.c} with cfg["a"]["b"]["c"]; unresolved tokens are an error."""
    def get_path(d, path):
        cur = d
        for k in path.split("."):
            if isinstance(cur, dict) and k in cur:
                cur = cur[k]
            else:
                return None
        return cur

    def repl(m: re.Match) -> str:
        val = get_path(cfg, m.group(1))
        if val is None or isinstance(val, dict):
            raise ConfigurationError(f"Unresolved config token: {m.group(0)}")
        return str(val)

    return re.sub(r"\$\{([^}]+)\}", repl, s)


def _parse_analysis(raw: dict) -> AnalysisSettings:
    if "target_year" not in raw:
        raise ConfigurationError("analysis.target_year is required")
    if "earnings_upper_bound" not in raw:
        raise ConfigurationError("analysis.earnings_upper_bound is required")

    kwargs: Dict[str, Any] = {}
    try:
        kwargs["target_year"] = int(raw["target_year"])
        kwargs["earnings_upper_bound"] = float(raw["earnings_upper_bound"])
        if "log_offset" in raw:
            kwargs["log_offset"] = float(raw["log_offset"])
        if "activities_of_interest" in raw:
            kwargs["activities_of_interest"] = tuple(int(c) for c in raw["activities_of_interest"] or [])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid analysis setting: {e}") from e
    if "missing_policy" in raw:
        kwargs["missing_policy"] = str(raw["missing_policy"])
    return AnalysisSettings(**kwargs)


def _parse_tables(raw: dict) -> Dict[str, TableConfig]:
    tables: Dict[str, TableConfig] = {}
    for name in TABLE_NAMES:
        t = raw.get(name)
        if not t or not t.get("file"):
            raise ConfigurationError(f"tables.{name}.file is required")
        columns = {str(k): str(v) for k, v in (t.get("columns") or {}).items()}
        if "respondent_id" not in columns.values():
            raise ConfigurationError(f"tables.{name}.columns must map a column to respondent_id")
        tables[name] = TableConfig(
            file=str(t["file"]),
            columns=columns,
            scale={str(k): float(v) for k, v in (t.get("scale") or {}).items()},
        )
    return tables


def _in_source_checkout() -> bool:
    return (REPO_ROOT / "pyproject.toml").exists() and (REPO_ROOT / "src" / PACKAGE_DIR.name).is_dir()


def _default_base(cfg_path: Path) -> Path:
    """
    Directory that relative paths in ``cfg_path`` resolve against.

    A user config resolves against its own directory. The packaged config
    resolves against the repository root in a source checkout and against
    the working directory once installed.
    """
    if cfg_path.resolve().parent != PACKAGE_DIR:
        return cfg_path.resolve().parent
    return REPO_ROOT if _in_source_checkout() else Path.cwd()


def load_config(config_path: Optional[str | Path] = None, base_dir: Optional[Path] = None) -> Config:
    """
    Load configuration from YAML and return a Config object.

    If config_path is None, searches the package directory and the repo root.
    Relative paths in the file resolve against ``base_dir`` when given, else
    see ``_default_base``.
    """
    cfg_path: Optional[Path] = None
    if config_path is not None:
        cfg_path = Path(config_path)
        if not cfg_path.exists():
            raise FileNotFoundError(f"Config file not found: {cfg_path}")
    else:
        for p in _CFG_SEARCH:
            if p.exists():
                cfg_path = p
                break
    if cfg_path is None:
        raise FileNotFoundError("config.yml not found in expected locations.")

    with open(cfg_path, "r") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{cfg_path} does not hold a YAML mapping")

    base = base_dir or _default_base(cfg_path)
    paths = raw.get("paths", {}) or {}
    raw_dir = _coerce_to_path(resolve_tokens(str(paths.get("raw_dir", "data/raw")), raw), base)
    processed_dir = _coerce_to_path(
        resolve_tokens(str(paths.get("processed_dir", "data/processed")), raw), base
    )

    outputs: Dict[str, Path] = {}
    for k, v in (paths.get("outputs", {}) or {}).items():
        outputs[k] = _coerce_to_path(resolve_tokens(str(v), raw), base)

    cfg = Config(
        raw_dir=raw_dir,
        processed_dir=processed_dir,
        analysis=_parse_analysis(raw.get("analysis", {}) or {}),
        tables=_parse_tables(raw.get("tables", {}) or {}),
        outputs=outputs,
    )
    logger.info(f"Load: Config loaded from {cfg_path} (target year {cfg.analysis.target_year})")
    return cfg
