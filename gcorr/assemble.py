"""Aggregate parsed rg records into one typed, filtered result table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import MissingJoinError
from .identifiers import file_key, normalize_metric_id
from .logparse import NUMERIC_FIELDS, RESULT_FIELDS, CorrelationResult

logger = logging.getLogger(__name__)

TRAIT_METRIC = "trait_metric"
METRIC_METRIC = "metric_metric"
MODES = (TRAIT_METRIC, METRIC_METRIC)

TABLE_COLUMNS = ["subject_a", "subject_b", *NUMERIC_FIELDS, "source"]


@dataclass
class AssemblyReport:
    table: pd.DataFrame
    n_input: int = 0
    missing_joins: list[MissingJoinError] = field(default_factory=list)
    discarded_subjects: list[str] = field(default_factory=list)
    duplicates: int = 0
    self_pairs: int = 0


def results_frame(results: Sequence[CorrelationResult]) -> pd.DataFrame:
    rows = [res.as_row() for res in results]
    return pd.DataFrame(rows, columns=["source", *RESULT_FIELDS])


def coerce_numeric(frame: pd.DataFrame) -> pd.DataFrame:
    """Coerce schema numeric columns; ``NA`` and other unparseable tokens become NaN."""
    out = frame.copy()
    for col in NUMERIC_FIELDS:
        if col in out.columns:
            out[col] = pd.to_numeric(out[col], errors="coerce").astype(float)
        else:
            out[col] = np.nan
    return out


def attach_display_names(
    frame: pd.DataFrame, id_map: pd.DataFrame
) -> tuple[pd.DataFrame, list[MissingJoinError]]:
    """Replace the subject-A sumstat path with its resolved display name."""
    lookup = id_map[["file_key", "display_name"]].drop_duplicates(subset="file_key", keep="first")
    keyed = frame.assign(file_key=frame["p1"].map(file_key))
    merged = keyed.merge(lookup, on="file_key", how="left")

    unmatched = merged["display_name"].isna()
    missing = [
        MissingJoinError(src, key)
        for src, key in merged.loc[unmatched, ["source", "file_key"]].itertuples(index=False)
    ]
    for err in missing:
        logger.warning("Dropping result: %s", err)

    kept = merged.loc[~unmatched].drop(columns=["file_key"])
    kept = kept.rename(columns={"display_name": "subject_a"})
    return kept.reset_index(drop=True), missing


def attach_metric_ids(
    frame: pd.DataFrame,
    source_col: str,
    target_col: str,
    *,
    prefixes: Sequence[str] = (),
    suffixes: Sequence[str] = (".sumstats.gz", ".sumstats"),
    labels: Optional[Mapping[str, str]] = None,
) -> pd.DataFrame:
    labels = dict(labels or {})

    def _metric(value: str) -> str:
        code = normalize_metric_id(value, prefixes=prefixes, suffixes=suffixes)
        return labels.get(code, code)

    out = frame.copy()
    out[target_col] = out[source_col].map(_metric)
    return out


def reliability_filter(
    frame: pd.DataFrame, *, se_threshold: float = 0.2, group_col: str = "subject_a"
) -> tuple[pd.DataFrame, list[str]]:
    """Discard every row of a subject whose group contains an unreliable estimate."""
    unreliable = (frame["se"] > se_threshold) | frame["se"].isna() | frame["rg"].isna()
    discarded = sorted(frame.loc[unreliable, group_col].astype(str).unique().tolist())
    kept = frame.loc[~frame[group_col].isin(discarded)].reset_index(drop=True)
    return kept, discarded


def _drop_duplicate_pairs(frame: pd.DataFrame) -> tuple[pd.DataFrame, int]:
    dup_mask = frame.duplicated(subset=["subject_a", "subject_b"], keep="first")
    n_dup = int(dup_mask.sum())
    if n_dup:
        dups = frame.loc[dup_mask, ["subject_a", "subject_b", "source"]]
        for row in dups.itertuples(index=False):
            logger.warning(
                "Duplicate estimate for %s vs %s in %s; keeping the first",
                row.subject_a, row.subject_b, row.source,
            )
    return frame.loc[~dup_mask].reset_index(drop=True), n_dup


def assemble(
    results: Sequence[CorrelationResult],
    ctx: dict,
    *,
    mode: str = TRAIT_METRIC,
    id_map: Optional[pd.DataFrame] = None,
) -> AssemblyReport:
    if mode not in MODES:
        raise ValueError(f"Unknown assembly mode {mode!r}; expected one of {MODES}")

    metric_kwargs = dict(
        prefixes=ctx.get("metric_prefixes") or (),
        suffixes=ctx.get("metric_suffixes") or (),
        labels=ctx.get("metric_labels") or {},
    )
    frame = results_frame(results)
    report = AssemblyReport(table=pd.DataFrame(columns=TABLE_COLUMNS), n_input=len(frame))
    if frame.empty:
        return report

    if mode == TRAIT_METRIC:
        if id_map is None:
            raise ValueError("trait_metric assembly requires an identifier map")
        frame, report.missing_joins = attach_display_names(frame, id_map)
    else:
        frame = attach_metric_ids(frame, "p1", "subject_a", **metric_kwargs)
    frame = attach_metric_ids(frame, "p2", "subject_b", **metric_kwargs)

    frame = coerce_numeric(frame)
    if mode == METRIC_METRIC:
        self_mask = frame["subject_a"] == frame["subject_b"]
        report.self_pairs = int(self_mask.sum())
        frame = frame.loc[~self_mask].reset_index(drop=True)
    frame, report.duplicates = _drop_duplicate_pairs(frame)
    frame, report.discarded_subjects = reliability_filter(
        frame, se_threshold=float(ctx.get("se_threshold", 0.2))
    )
    for subject in report.discarded_subjects:
        logger.info("Reliability filter discarded all results for '%s'", subject)

    report.table = frame[TABLE_COLUMNS].reset_index(drop=True)
    return report
