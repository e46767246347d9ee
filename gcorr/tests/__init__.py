"""Shared fixtures and writers for the gcorr test-suite."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Mapping, Sequence

os.environ.setdefault("MPLBACKEND", "Agg")

import pandas as pd

from gcorr.logparse import NUMERIC_FIELDS, RESULT_FIELDS, SUMMARY_MARKER

LOG_PREAMBLE = [
    "*********************************************************************",
    "* LD Score Regression (LDSC)",
    "*********************************************************************",
    "Beginning analysis at Mon Jan  1 00:00:00 2024",
    "Reading summary statistics from a.sumstats.gz ...",
    "",
    "Genetic Correlation",
    "-------------------",
    "Genetic Correlation: 0.1 (0.05)",
    "",
]

MANIFEST_COLUMNS = ["description", "phenotype", "sex", "is_primary_gwas", "ldsc_sumstat_file"]


def write_tsv(path: str | Path, df: pd.DataFrame) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep="\t", index=False)
    return path


def rg_log_text(
    values: Mapping[str, object] | None = None,
    *,
    header: Sequence[str] = RESULT_FIELDS,
    row: Sequence[object] | None = None,
    marker: str = SUMMARY_MARKER,
    include_marker: bool = True,
) -> str:
    """Text of an rg log whose summary block carries ``values`` under ``header``."""
    values = dict(values or {})
    if row is None:
        row = [values.get(col, "NA") for col in header]
    lines = list(LOG_PREAMBLE)
    if include_marker:
        lines.append(marker)
        lines.append("  ".join(header))
        lines.append("  ".join(str(v) for v in row))
        lines.append("")
    lines.append("Analysis finished at Mon Jan  1 00:01:00 2024")
    return "\n".join(lines) + "\n"


def write_rg_log(path: str | Path, values: Mapping[str, object] | None = None, **kwargs) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(rg_log_text(values, **kwargs), encoding="utf-8")
    return path


def rg_values(p1: str, p2: str, rg: float, se: float, p: float, **extra) -> dict[str, object]:
    """Full summary row with plausible heritability columns filled in."""
    values: dict[str, object] = {
        "p1": p1,
        "p2": p2,
        "rg": rg,
        "se": se,
        "z": round(rg / se, 4) if se else "NA",
        "p": p,
        "h2_obs": 0.12,
        "h2_obs_se": 0.01,
        "h2_int": 1.01,
        "h2_int_se": 0.008,
        "gcov_int": 0.002,
        "gcov_int_se": 0.005,
    }
    values.update(extra)
    return values


def make_manifest(rows: Iterable[Sequence[object]]) -> pd.DataFrame:
    """Manifest frame from ``(description, phenotype, sex, is_primary, file)`` tuples."""
    return pd.DataFrame([list(r) for r in rows], columns=MANIFEST_COLUMNS)


def sumstat_url(phenotype: str, sex: str) -> str:
    return f"https://example.org/ldsc/{phenotype}.ldsc.imputed_v3.{sex}.tsv.bgz"


def metric_path(code: str) -> str:
    return f"metrics/{code}.sumstats.gz"


def make_ctx(tmp_path: Path, **overrides) -> dict:
    from gcorr import config

    base = {
        "out_dir": str(tmp_path / "out"),
        "log_dir": str(tmp_path / "logs"),
        "workers": 2,
    }
    base.update(overrides)
    return config.get_ctx(base, use_env=False)


TRAITS = {
    "Standing height": "50_irnt",
    "Weight": "21002_irnt",
    "Testosterone (nmol/L)": "30850_irnt",
}

# (trait, metric) -> (rg, se, p)
TRAIT_ESTIMATES = {
    ("Standing height", "AGE"): (0.35, 0.04, 1e-12),
    ("Standing height", "BMI"): (-0.12, 0.05, 0.02),
    ("Weight", "AGE"): (0.05, 0.06, 0.4),
    ("Weight", "BMI"): (0.62, 0.03, 1e-40),
    ("Testosterone (nmol/L)", "AGE"): (0.10, 0.05, 0.05),
    ("Testosterone (nmol/L)", "BMI"): (0.30, 0.25, 0.2),
}

# (metric_a, metric_b) -> (rg, se, p)
METRIC_ESTIMATES = {
    ("AGE", "BMI"): (0.21, 0.05, 1e-4),
    ("BMI", "AGE"): (0.20, 0.05, 1e-4),
    ("AGE", "HGT"): (-0.08, 0.06, 0.18),
    ("HGT", "AGE"): (-0.07, 0.06, 0.2),
    ("BMI", "HGT"): (1.12, 0.09, 1e-30),
    ("HGT", "BMI"): (1.08, 0.09, 1e-30),
    ("AGE", "AGE"): (1.0, 0.0, 0.0),
}


def build_workspace(root: Path) -> dict[str, Path]:
    """Manifest, trait list and two rg log directories mimicking a finished LDSC batch."""
    from gcorr.identifiers import file_key

    rows = [(name, code, "both_sexes", "True", sumstat_url(code, "both_sexes")) for name, code in TRAITS.items()]
    rows.append(("Standing height", "50_raw", "both_sexes", "True", sumstat_url("50_raw", "both_sexes")))
    rows.append(("Endometriosis of uterus", "N80_1", "both_sexes", "True", sumstat_url("N80_1", "both_sexes")))
    rows.append(("Endometriosis of uterus", "N80_2", "both_sexes", "True", sumstat_url("N80_2", "both_sexes")))
    manifest = write_tsv(root / "manifest.tsv", make_manifest(rows))

    trait_dir = root / "rg_traits"
    for (trait, metric), (rg, se, p) in TRAIT_ESTIMATES.items():
        p1 = "/ldsc/" + file_key(sumstat_url(TRAITS[trait], "both_sexes"))
        write_rg_log(trait_dir / f"{TRAITS[trait]}__{metric}.log", rg_values(p1, metric_path(metric), rg, se, p))
    write_rg_log(trait_dir / "stray.log", rg_values("/ldsc/99999_irnt.tsv.bgz", metric_path("AGE"), 0.1, 0.05, 0.01))
    write_rg_log(trait_dir / "crashed.log", include_marker=False)

    metric_dir = root / "rg_metrics"
    for (a, b), (rg, se, p) in METRIC_ESTIMATES.items():
        write_rg_log(metric_dir / f"{a}__{b}.log", rg_values(metric_path(a), metric_path(b), rg, se, p))

    traits_file = root / "traits.txt"
    traits_file.write_text("\n".join(TRAITS) + "\n", encoding="utf-8")
    return {
        "root": root,
        "manifest": manifest,
        "trait_logs": trait_dir,
        "metric_logs": metric_dir,
        "traits": traits_file,
    }


def reset_package_logger() -> None:
    logger = logging.getLogger("gcorr")
    logger.handlers = []
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


__all__ = [
    "LOG_PREAMBLE",
    "MANIFEST_COLUMNS",
    "METRIC_ESTIMATES",
    "NUMERIC_FIELDS",
    "TRAITS",
    "TRAIT_ESTIMATES",
    "build_workspace",
    "make_ctx",
    "make_manifest",
    "metric_path",
    "reset_package_logger",
    "rg_log_text",
    "rg_values",
    "sumstat_url",
    "write_rg_log",
    "write_tsv",
]
