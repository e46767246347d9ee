"""Run configuration for the genetic-correlation matrix pipeline.

Values are layered: ``DEFAULTS`` < JSON config file < ``GCORR_*`` environment
variables < command line flags.
"""

from __future__ import annotations

import copy
import json
import os
from pathlib import Path
from typing import Any, Callable, Optional

DEFAULTS: dict[str, Any] = {
    # Inputs and outputs
    "manifest": None,
    "trait_logs": None,
    "metric_logs": None,
    "sumstat_dir": "",
    "out_dir": "gcorr_out",
    "log_dir": "logs",
    "log_pattern": "*.log",
    "traits": None,
    # Estimator report layout
    "marker": "Summary of Genetic Correlation Results",
    "header_offset": 1,
    "row_offset": 2,
    # Manifest resolution
    "file_column": "ldsc_sumstat_file",
    "female_only": [
        "Age at menopause (last menstrual period)",
        "Number of live births",
    ],
    "male_only": [
        "Relative age of first facial hair",
    ],
    "force_female": [
        "Age when periods started (menarche)",
    ],
    "dropped_variants": ["raw"],
    # Metric identifiers
    "metric_prefixes": ["metrics/"],
    "metric_suffixes": [".sumstats.gz", ".sumstats"],
    "metric_labels": {},
    # Statistics
    "se_threshold": 0.2,
    "alpha": 0.05,
    "p_adjust_method": "holm",
    "workers": min(8, os.cpu_count() or 1),
    # Rendering
    "row_policy": "significance",
    "column_policy": "alphabetical",
    "column_order": None,
    "decimals": 2,
    "clamp_upper": 1.0,
    "cmap": "RdBu_r",
    "absent_color": "#d9d9d9",
    "figure_formats": ["pdf"],
    "top_n": 20,
    "only": None,
}

# name -> (config key, cast)
ENV_OVERRIDES: dict[str, tuple[str, Callable[[str], Any]]] = {
    "GCORR_SE_THRESHOLD": ("se_threshold", float),
    "GCORR_ALPHA": ("alpha", float),
    "GCORR_P_ADJUST": ("p_adjust_method", str),
    "GCORR_WORKERS": ("workers", int),
    "GCORR_SUMSTAT_DIR": ("sumstat_dir", str),
    "GCORR_LOG_DIR": ("log_dir", str),
    "GCORR_HEADER_OFFSET": ("header_offset", int),
    "GCORR_ROW_OFFSET": ("row_offset", int),
}


def _maybe_parse_env(name: str, cast):
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        return cast(raw.strip())
    except Exception:
        print(f"[Config] Ignoring invalid value for {name!s}: {raw!r}", flush=True)
        return None


def env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for env_name, (key, cast) in ENV_OVERRIDES.items():
        value = _maybe_parse_env(env_name, cast)
        if value is not None:
            overrides[key] = value
    return overrides


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Read a JSON object of configuration overrides."""
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object.")
    unknown = sorted(set(data) - set(DEFAULTS))
    if unknown:
        raise ValueError(f"Config file {path} has unknown keys: {unknown}")
    return data


def get_ctx(
    overrides: Optional[dict[str, Any]] = None,
    *,
    config_file: str | Path | None = None,
    use_env: bool = True,
) -> dict[str, Any]:
    cfg = copy.deepcopy(DEFAULTS)
    if config_file is not None:
        cfg.update(load_config_file(config_file))
    if use_env:
        cfg.update(env_overrides())
    if overrides:
        cfg.update({k: v for k, v in overrides.items() if v is not None})
    if float(cfg["se_threshold"]) <= 0:
        raise ValueError("se_threshold must be positive")
    if not 0 < float(cfg["alpha"]) < 1:
        raise ValueError("alpha must lie in (0, 1)")
    cfg["workers"] = max(1, int(cfg["workers"]))
    return cfg
