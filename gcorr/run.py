"""Run the trait-vs-metric and metric-vs-metric correlation matrix pipelines."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pandas as pd

from . import assemble as asm
from . import identifiers
from . import logparse
from . import matrix as mx
from . import significance
from .logging_utils import run_logging

pd.options.mode.chained_assignment = None

RESULT_COLUMNS = [
    "subject_a",
    "subject_b",
    "rg",
    "se",
    "z",
    "p",
    "adjusted_p",
    "significance_marker",
    "row_rank",
    "h2_obs",
    "h2_obs_se",
    "h2_int",
    "h2_int_se",
    "gcov_int",
    "gcov_int_se",
    "source",
]


class Timer:
    """Context manager for timing code blocks."""
    def __enter__(self):
        self.start_time = time.time()
        return self
    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.time()
        self.duration = self.end_time - self.start_time


@dataclass
class RunArtifacts:
    label: str
    table: pd.DataFrame
    matrix: mx.CorrelationMatrix
    results_path: Path
    matrix_path: Path
    summary_path: Path
    figure_paths: list[Path] = field(default_factory=list)
    summary: dict = field(default_factory=dict)


def _write_tsv(df: pd.DataFrame, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, sep="\t", index=False, na_rep="NA")
    return path


def _requested_traits(ctx: dict, manifest: pd.DataFrame) -> list[str]:
    traits = ctx.get("traits")
    if traits is None:
        return list(dict.fromkeys(manifest["description"].tolist()))
    if isinstance(traits, (str, Path)):
        with open(traits, "r", encoding="utf-8") as fh:
            return [line.strip() for line in fh if line.strip() and not line.startswith("#")]
    return [str(t).strip() for t in traits]


def resolve_traits(ctx: dict) -> pd.DataFrame:
    """Resolve the requested trait names against the manifest; ambiguity is fatal."""
    if not ctx.get("manifest"):
        raise ValueError("A manifest is required for the trait-vs-metric matrix.")
    manifest = identifiers.load_manifest(ctx["manifest"], file_column=ctx["file_column"])
    records = identifiers.manifest_records(
        manifest, file_column=ctx["file_column"], sumstat_dir=ctx.get("sumstat_dir") or ""
    )
    names = _requested_traits(ctx, manifest)
    print(f"[Identifiers] Resolving {len(names)} traits against {len(records)} manifest entries", flush=True)
    resolved = identifiers.resolve_all(names, records, ctx)
    return identifiers.identifier_map(resolved)


def _parse_logs(directory, ctx: dict) -> tuple[int, logparse.ParseReport]:
    paths = logparse.discover_logs(directory, ctx.get("log_pattern") or "*.log")
    print(f"[Parse] Found {len(paths)} rg logs in {directory}", flush=True)
    report = logparse.read_results(
        paths,
        workers=ctx["workers"],
        progress=True,
        marker=ctx["marker"],
        header_offset=int(ctx["header_offset"]),
        row_offset=int(ctx["row_offset"]),
    )
    print(f"[Parse] {report.n_parsed} parsed, {report.n_rejected} skipped", flush=True)
    return len(paths), report


def _print_top_hits(table: pd.DataFrame, label: str, top_n: int) -> None:
    if table.empty or top_n <= 0:
        print(f"[{label}] No results to display.", flush=True)
        return

    def _fmt(v, fmt_str):
        return f"{float(v):{fmt_str}}" if pd.notna(v) else ""

    top = table.sort_values("p", na_position="last").head(top_n).copy()
    top["rg"] = top["rg"].apply(lambda v: _fmt(v, "+0.3f"))
    top["se"] = top["se"].apply(lambda v: _fmt(v, "0.3f"))
    top["P"] = top["p"].apply(lambda v: _fmt(v, ".3e"))
    top["P_adj"] = top["adjusted_p"].apply(lambda v: _fmt(v, ".3e"))
    cols = ["subject_a", "subject_b", "rg", "se", "P", "P_adj", "significance_marker"]
    print(f"\n[{label}] --- Top Results ---\n" + top[cols].to_string(index=False) + "\n", flush=True)


def _finalize(
    label: str,
    table: pd.DataFrame,
    matrix: mx.CorrelationMatrix,
    ctx: dict,
    summary: dict,
    *,
    title: str,
    xlabel: str,
    ylabel: str,
) -> RunArtifacts:
    out_dir = Path(ctx["out_dir"])
    table = table[RESULT_COLUMNS]
    results_path = _write_tsv(table, out_dir / f"{label}.results.tsv")
    matrix_path = _write_tsv(matrix.to_flat_table(), out_dir / f"{label}.matrix.tsv")

    formats = ctx.get("figure_formats") or ["pdf"]
    figure_paths = mx.render_heatmap(
        matrix,
        [out_dir / f"{label}.heatmap.{ext.lstrip('.')}" for ext in formats],
        title=title,
        xlabel=xlabel,
        ylabel=ylabel,
        cmap=ctx["cmap"],
        absent_color=ctx["absent_color"],
        alpha=float(ctx["alpha"]),
    )

    markers = table["significance_marker"].astype(str)
    summary.update(
        rows=int(len(table)),
        subjects=len(matrix.row_ids),
        columns=len(matrix.column_ids),
        corrected=int((markers == significance.CORRECTED).sum()),
        nominal=int((markers == significance.NOMINAL).sum()),
        figures=[str(p) for p in figure_paths],
    )
    summary_path = out_dir / f"{label}.summary.json"
    with open(summary_path, "w", encoding="utf-8") as fh:
        json.dump(summary, fh, indent=2, sort_keys=True, default=str)

    _print_top_hits(table, label, int(ctx.get("top_n", 0)))
    print(
        f"[{label}] {summary['rows']} results across {summary['subjects']} x {summary['columns']} cells; "
        f"{summary['corrected']} corrected, {summary['nominal']} nominal. Outputs in {out_dir}",
        flush=True,
    )
    return RunArtifacts(
        label=label,
        table=table,
        matrix=matrix,
        results_path=results_path,
        matrix_path=matrix_path,
        summary_path=summary_path,
        figure_paths=figure_paths,
        summary=summary,
    )


def _base_summary(label: str, n_logs: int, parsed: logparse.ParseReport, assembly: asm.AssemblyReport) -> dict:
    return {
        "label": label,
        "logs_found": n_logs,
        "parsed": parsed.n_parsed,
        "malformed": parsed.n_rejected,
        "missing_joins": len(assembly.missing_joins),
        "duplicates": assembly.duplicates,
        "self_pairs": assembly.self_pairs,
        "discarded_subjects": assembly.discarded_subjects,
    }


def run_trait_metric(ctx: dict, id_map: Optional[pd.DataFrame] = None) -> RunArtifacts:
    label = asm.TRAIT_METRIC
    with run_logging(label, directory=ctx["log_dir"]), Timer() as timer:
        if id_map is None:
            id_map = resolve_traits(ctx)
        _write_tsv(id_map, Path(ctx["out_dir"]) / "sumstat_map.tsv")

        n_logs, parsed = _parse_logs(ctx["trait_logs"], ctx)
        assembly = asm.assemble(parsed.results, ctx, mode=label, id_map=id_map)
        print(
            f"[Assemble] {len(assembly.table)} rows kept; {len(assembly.missing_joins)} unmatched, "
            f"{len(assembly.discarded_subjects)} traits discarded by the reliability filter",
            flush=True,
        )
        table = significance.annotate(assembly.table, ctx)

        rows = mx.axis_order(table, "subject_a", ctx["row_policy"])
        cols = mx.axis_order(table, "subject_b", ctx["column_policy"], explicit=ctx.get("column_order"))
        matrix = mx.build_matrix(table, rows, cols, decimals=int(ctx["decimals"]))

        summary = _base_summary(label, n_logs, parsed, assembly)
        artifacts = _finalize(
            label, table, matrix, ctx, summary,
            title="Genetic correlation of traits with metrics",
            xlabel="Metric",
            ylabel="Trait",
        )
    artifacts.summary["duration_sec"] = round(timer.duration, 3)
    return artifacts


def run_metric_metric(ctx: dict) -> RunArtifacts:
    label = asm.METRIC_METRIC
    with run_logging(label, directory=ctx["log_dir"]), Timer() as timer:
        n_logs, parsed = _parse_logs(ctx["metric_logs"], ctx)
        assembly = asm.assemble(parsed.results, ctx, mode=label)
        print(
            f"[Assemble] {len(assembly.table)} rows kept; {assembly.self_pairs} self-pairs excluded, "
            f"{len(assembly.discarded_subjects)} metrics discarded by the reliability filter",
            flush=True,
        )
        table = significance.annotate(assembly.table, ctx)

        universe = sorted(set(table["subject_a"].astype(str)) | set(table["subject_b"].astype(str)))
        order = mx.axis_order(
            table, "subject_b", ctx["column_policy"], explicit=ctx.get("column_order"), universe=universe
        )
        matrix = mx.build_matrix(
            table,
            order,
            order,
            diagonal=True,
            clamp_upper=ctx.get("clamp_upper"),
            decimals=int(ctx["decimals"]),
        )

        summary = _base_summary(label, n_logs, parsed, assembly)
        artifacts = _finalize(
            label, table, matrix, ctx, summary,
            title="Genetic correlation between metrics",
            xlabel="Metric",
            ylabel="Metric",
        )
    artifacts.summary["duration_sec"] = round(timer.duration, 3)
    return artifacts


def run_pipeline(ctx: dict) -> dict[str, RunArtifacts]:
    only = ctx.get("only")
    want_traits = only in (None, asm.TRAIT_METRIC) and ctx.get("trait_logs")
    want_metrics = only in (None, asm.METRIC_METRIC) and ctx.get("metric_logs")
    if not want_traits and not want_metrics:
        raise ValueError("Nothing to do: provide trait logs and/or metric logs.")

    Path(ctx["out_dir"]).mkdir(parents=True, exist_ok=True)
    artifacts: dict[str, RunArtifacts] = {}
    if want_traits:
        artifacts[asm.TRAIT_METRIC] = run_trait_metric(ctx)
    if want_metrics:
        artifacts[asm.METRIC_METRIC] = run_metric_metric(ctx)
    return artifacts
