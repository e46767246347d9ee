"""Per-metric multiple-testing correction, significance markers and subject ranking."""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

NONE = "none"
NOMINAL = "nominal"
CORRECTED = "corrected"
MARKER_LEVELS = [NONE, NOMINAL, CORRECTED]

_P_FLOOR = np.finfo(float).tiny


def adjust_pvalues(
    frame: pd.DataFrame,
    *,
    method: str = "holm",
    alpha: float = 0.05,
    group_col: str = "subject_b",
) -> pd.Series:
    """Adjust ``p`` within each ``group_col`` partition; missing p-values stay missing."""
    adjusted = pd.Series(np.nan, index=frame.index, dtype=float, name="adjusted_p")
    if frame.empty:
        return adjusted
    for _, group in frame.groupby(group_col, sort=False):
        p = pd.to_numeric(group["p"], errors="coerce")
        mask = p.notna()
        if not mask.any():
            continue
        _, q, _, _ = multipletests(p[mask].to_numpy(dtype=float), alpha=alpha, method=method)
        adjusted.loc[p[mask].index] = q
    return adjusted


def significance_markers(p: pd.Series, adjusted_p: pd.Series, *, alpha: float = 0.05) -> pd.Series:
    p = pd.to_numeric(p, errors="coerce")
    adjusted_p = pd.to_numeric(adjusted_p, errors="coerce")
    markers = np.where(adjusted_p < alpha, CORRECTED, np.where(p < alpha, NOMINAL, NONE))
    return pd.Series(
        pd.Categorical(markers, categories=MARKER_LEVELS),
        index=p.index,
        name="significance_marker",
    )


def subject_significance(frame: pd.DataFrame, *, subject_col: str = "subject_a") -> pd.Series:
    """Maximum ``-log10(p)`` across each subject's rows."""
    p = pd.to_numeric(frame["p"], errors="coerce").clip(lower=_P_FLOOR)
    return (-np.log10(p)).groupby(frame[subject_col]).max()


def rank_subjects(frame: pd.DataFrame, *, subject_col: str = "subject_a") -> list[str]:
    """Subjects ordered from least to most significant; ties broken by name."""
    scores = subject_significance(frame, subject_col=subject_col).fillna(-np.inf)
    return [name for name, _ in sorted(scores.items(), key=lambda kv: (kv[1], str(kv[0])))]


def display_order(ranking: Sequence[str]) -> list[str]:
    """Top-to-bottom display order: the most significant subject first."""
    return list(reversed(list(ranking)))


def annotate(
    frame: pd.DataFrame,
    ctx: dict,
    *,
    subject_col: str = "subject_a",
    group_col: str = "subject_b",
) -> pd.DataFrame:
    alpha = float(ctx.get("alpha", 0.05))
    out = frame.copy()
    out["adjusted_p"] = adjust_pvalues(
        out, method=ctx.get("p_adjust_method", "holm"), alpha=alpha, group_col=group_col
    )
    out["significance_marker"] = significance_markers(out["p"], out["adjusted_p"], alpha=alpha)
    positions = {name: i for i, name in enumerate(rank_subjects(out, subject_col=subject_col))}
    out["row_rank"] = out[subject_col].map(positions).astype("Int64")
    return out
