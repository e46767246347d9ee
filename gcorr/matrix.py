"""Pivot annotated rg results into labelled grids and draw them as heatmaps."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

import matplotlib as mpl
import matplotlib.patches as mpatches
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from .significance import CORRECTED, NOMINAL, NONE, display_order, rank_subjects

logger = logging.getLogger(__name__)

MARKER_SYMBOLS = {NONE: "", NOMINAL: "*", CORRECTED: "**"}
ORDER_POLICIES = ("significance", "alphabetical", "given")
FLAT_COLUMNS = ["row_id", "column_id", "value", "marker"]

# Figure sizing (inches)
CELL = 0.55
EXTRA_W = 4.5
EXTRA_H = 2.5
MIN_W, MAX_W = 6.0, 60.0
MIN_H, MAX_H = 4.0, 60.0

mpl.rcParams.update({
    "font.size": 10,
    "axes.linewidth": 0.8,
    "pdf.fonttype": 42,
    "ps.fonttype": 42,
})


@dataclass
class CorrelationMatrix:
    row_ids: list[str]
    column_ids: list[str]
    values: pd.DataFrame
    markers: pd.DataFrame
    labels: pd.DataFrame
    diagonal: bool = False

    @property
    def shape(self) -> tuple[int, int]:
        return len(self.row_ids), len(self.column_ids)

    def to_flat_table(self) -> pd.DataFrame:
        """One row per cell; absent cells carry a NaN value."""
        rows = [
            {
                "row_id": r,
                "column_id": c,
                "value": self.values.at[r, c],
                "marker": self.markers.at[r, c],
            }
            for r in self.row_ids
            for c in self.column_ids
        ]
        return pd.DataFrame(rows, columns=FLAT_COLUMNS)


def clamp(v, lo, hi):
    return max(lo, min(hi, v))


def clamp_values(values: pd.DataFrame, upper: float) -> pd.DataFrame:
    """Cap values above ``upper``; NaN cells are left absent."""
    return values.mask(values > upper, upper)


def axis_order(
    frame: pd.DataFrame,
    column: str,
    policy: str = "alphabetical",
    *,
    explicit: Optional[Sequence[str]] = None,
    universe: Optional[Sequence[str]] = None,
) -> list[str]:
    """Return the ids of one matrix axis ordered by ``policy``."""
    if universe is None:
        universe = frame[column].astype(str).tolist() if column in frame.columns else []
    present = list(dict.fromkeys(str(x) for x in universe))
    present_set = set(present)

    if policy == "alphabetical":
        return sorted(present)
    if policy == "given":
        given = [x for x in dict.fromkeys(explicit or ()) if x in present_set]
        return given + sorted(present_set - set(given))
    if policy == "significance":
        ranked = [x for x in display_order(rank_subjects(frame, subject_col=column)) if x in present_set]
        return ranked + sorted(present_set - set(ranked))
    raise ValueError(f"Unknown ordering policy {policy!r}; expected one of {ORDER_POLICIES}")


def _cell_label(value: float, marker: str, decimals: int, symbols: Mapping[str, str]) -> str:
    if pd.isna(value):
        return ""
    return f"{value:.{decimals}f}{symbols.get(marker, '')}"


def build_matrix(
    frame: pd.DataFrame,
    row_order: Sequence[str],
    column_order: Sequence[str],
    *,
    diagonal: bool = False,
    clamp_upper: Optional[float] = None,
    decimals: int = 2,
    marker_symbols: Mapping[str, str] = MARKER_SYMBOLS,
    row_col: str = "subject_a",
    col_col: str = "subject_b",
) -> CorrelationMatrix:
    rows = list(dict.fromkeys(str(r) for r in row_order))
    cols = list(dict.fromkeys(str(c) for c in column_order))

    data = frame.copy()
    data[row_col] = data[row_col].astype(str)
    data[col_col] = data[col_col].astype(str)
    if diagonal:
        data = data.loc[data[row_col] != data[col_col]]
    data = data.drop_duplicates(subset=[row_col, col_col], keep="first")
    if "significance_marker" in data.columns:
        data["_marker"] = data["significance_marker"].astype(str)
    else:
        data["_marker"] = NONE

    values = pd.DataFrame(np.nan, index=rows, columns=cols, dtype=float)
    markers = pd.DataFrame(NONE, index=rows, columns=cols, dtype=object)
    if not data.empty:
        pivot_v = data.pivot(index=row_col, columns=col_col, values="rg")
        pivot_m = data.pivot(index=row_col, columns=col_col, values="_marker")
        values = pivot_v.reindex(index=rows, columns=cols).astype(float)
        markers = pivot_m.reindex(index=rows, columns=cols).astype(object)
        markers = markers.where(values.notna(), NONE)

    if clamp_upper is not None:
        values = clamp_values(values, float(clamp_upper))

    diag_ids = [ident for ident in rows if ident in set(cols)] if diagonal else []
    for ident in diag_ids:
        values.at[ident, ident] = 1.0
        markers.at[ident, ident] = NONE

    labels = pd.DataFrame("", index=rows, columns=cols, dtype=object)
    for r in rows:
        for c in cols:
            labels.at[r, c] = _cell_label(values.at[r, c], markers.at[r, c], decimals, marker_symbols)
    for ident in diag_ids:
        labels.at[ident, ident] = ""

    values.index.name = row_col
    values.columns.name = col_col
    return CorrelationMatrix(
        row_ids=rows,
        column_ids=cols,
        values=values,
        markers=markers,
        labels=labels,
        diagonal=diagonal,
    )


def compute_figsize(n_rows: int, n_cols: int) -> tuple[float, float]:
    w = clamp(n_cols * CELL + EXTRA_W, MIN_W, MAX_W)
    h = clamp(n_rows * CELL + EXTRA_H, MIN_H, MAX_H)
    return (w, h)


def render_heatmap(
    matrix: CorrelationMatrix,
    out_paths: Sequence[str | Path],
    *,
    title: str = "",
    xlabel: str = "",
    ylabel: str = "",
    cmap: str = "RdBu_r",
    absent_color: str = "#d9d9d9",
    alpha: float = 0.05,
    marker_symbols: Mapping[str, str] = MARKER_SYMBOLS,
) -> list[Path]:
    """Draw ``matrix`` as an annotated heatmap; absent cells keep a neutral fill."""
    n_rows, n_cols = matrix.shape
    if n_rows == 0 or n_cols == 0:
        logger.warning("Matrix '%s' is empty; no heatmap written", title or "untitled")
        return []

    fig, ax = plt.subplots(figsize=compute_figsize(n_rows, n_cols))
    try:
        ax.set_facecolor(absent_color)
        sns.heatmap(
            matrix.values,
            mask=matrix.values.isna(),
            cmap=cmap,
            center=0.0,
            vmin=-1.0,
            vmax=1.0,
            annot=matrix.labels.to_numpy(),
            fmt="",
            annot_kws={"fontsize": 7},
            linewidths=0.5,
            linecolor="white",
            square=True,
            cbar_kws={"label": "Genetic correlation (rg)", "shrink": 0.6},
            ax=ax,
        )
        ax.set_xticks(np.arange(n_cols) + 0.5)
        ax.set_yticks(np.arange(n_rows) + 0.5)
        ax.set_xticklabels(matrix.column_ids, rotation=45, ha="right")
        ax.set_yticklabels(matrix.row_ids, rotation=0)
        ax.tick_params(which="both", length=0)
        ax.set_xlabel(xlabel)
        ax.set_ylabel(ylabel)
        if title:
            ax.set_title(title, fontweight="bold")

        legend_elements = [
            mpatches.Patch(facecolor="none", edgecolor="none",
                           label=f"{marker_symbols[CORRECTED]} corrected P < {alpha:g}"),
            mpatches.Patch(facecolor="none", edgecolor="none",
                           label=f"{marker_symbols[NOMINAL]} nominal P < {alpha:g}"),
            mpatches.Patch(facecolor=absent_color, edgecolor="black", linewidth=0.5,
                           label="No estimate"),
        ]
        ax.legend(handles=legend_elements, loc="upper left", bbox_to_anchor=(1.25, 1.0),
                  frameon=False, fontsize=8)

        fig.tight_layout()
        written = []
        for out in out_paths:
            out = Path(out)
            out.parent.mkdir(parents=True, exist_ok=True)
            fig.savefig(out, bbox_inches="tight", facecolor="white", dpi=300)
            written.append(out)
        return written
    finally:
        plt.close(fig)
