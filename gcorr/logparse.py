"""Extract the summary row from LDSC ``--rg`` logs.

The estimator ends a successful run with a fixed report block::

    Summary of Genetic Correlation Results
    p1  p2  rg  se  z  p  h2_obs  h2_obs_se  h2_int  h2_int_se  gcov_int  gcov_int_se
    a.sumstats.gz  b.sumstats.gz  0.1  0.05  2.0  0.04  ...

The header and data row are located by their fixed offsets from the first
marker line, then bound to an explicit field schema.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional, Sequence

from tqdm import tqdm

from .errors import MalformedLogError

logger = logging.getLogger(__name__)

SUMMARY_MARKER = "Summary of Genetic Correlation Results"
HEADER_OFFSET = 1
ROW_OFFSET = 2

ID_FIELDS = ("p1", "p2")
NUMERIC_FIELDS = (
    "rg",
    "se",
    "z",
    "p",
    "h2_obs",
    "h2_obs_se",
    "h2_int",
    "h2_int_se",
    "gcov_int",
    "gcov_int_se",
)
RESULT_FIELDS = ID_FIELDS + NUMERIC_FIELDS


@dataclass(frozen=True)
class RawResultLine:
    source: str
    header: tuple[str, ...]
    values: tuple[str, ...]


@dataclass(frozen=True)
class CorrelationResult:
    source: str
    p1: str
    p2: str
    rg: Optional[float] = None
    se: Optional[float] = None
    z: Optional[float] = None
    p: Optional[float] = None
    h2_obs: Optional[float] = None
    h2_obs_se: Optional[float] = None
    h2_int: Optional[float] = None
    h2_int_se: Optional[float] = None
    gcov_int: Optional[float] = None
    gcov_int_se: Optional[float] = None

    def populated_fields(self) -> tuple[str, ...]:
        return tuple(name for name in RESULT_FIELDS if getattr(self, name) is not None)

    def as_row(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class ParseReport:
    results: list[CorrelationResult] = field(default_factory=list)
    rejected: list[MalformedLogError] = field(default_factory=list)

    @property
    def n_parsed(self) -> int:
        return len(self.results)

    @property
    def n_rejected(self) -> int:
        return len(self.rejected)


def _token_line(lines: list[str], index: int, what: str, path: str) -> tuple[str, ...]:
    if index < 0 or index >= len(lines):
        raise MalformedLogError(path, f"{what} line {index + 1} is outside the log ({len(lines)} lines)")
    tokens = tuple(lines[index].split())
    if not tokens:
        raise MalformedLogError(path, f"{what} line {index + 1} is empty")
    return tokens


def parse_rg_log(
    path: str | Path,
    *,
    marker: str = SUMMARY_MARKER,
    header_offset: int = HEADER_OFFSET,
    row_offset: int = ROW_OFFSET,
) -> RawResultLine:
    """Return the header and summary row of one completed rg log."""
    path = str(path)
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as fh:
            lines = fh.read().splitlines()
    except OSError as exc:
        raise MalformedLogError(path, f"cannot read log: {exc}") from exc

    marker_index = next((i for i, line in enumerate(lines) if line.strip() == marker), None)
    if marker_index is None:
        raise MalformedLogError(path, f"marker '{marker}' not found; the run did not complete")

    header = _token_line(lines, marker_index + header_offset, "header", path)
    values = _token_line(lines, marker_index + row_offset, "summary row", path)
    if len(header) != len(values):
        raise MalformedLogError(
            path, f"header has {len(header)} tokens but summary row has {len(values)}"
        )
    return RawResultLine(source=path, header=header, values=values)


def _to_float(token: str) -> float:
    try:
        return float(token)
    except ValueError:
        return math.nan


def bind_fields(raw: RawResultLine) -> CorrelationResult:
    """Bind header tokens to row tokens against the fixed result schema."""
    unknown = [tok for tok in raw.header if tok not in RESULT_FIELDS]
    if unknown:
        raise MalformedLogError(raw.source, f"unexpected header columns: {unknown}")
    if len(set(raw.header)) != len(raw.header):
        raise MalformedLogError(raw.source, "duplicate header columns")
    missing_ids = [name for name in ID_FIELDS if name not in raw.header]
    if missing_ids:
        raise MalformedLogError(raw.source, f"header lacks identifier columns: {missing_ids}")
    if len(raw.header) != len(raw.values):
        raise MalformedLogError(raw.source, "header and summary row lengths differ")

    bound = dict(zip(raw.header, raw.values))
    kwargs = {name: bound[name] for name in ID_FIELDS}
    for name in NUMERIC_FIELDS:
        if name in bound:
            kwargs[name] = _to_float(bound[name])
    return CorrelationResult(source=raw.source, **kwargs)


def read_result(path: str | Path, **layout) -> CorrelationResult | None:
    """Parse one log; malformed or incomplete logs yield ``None`` with a warning."""
    try:
        return bind_fields(parse_rg_log(path, **layout))
    except MalformedLogError as exc:
        logger.warning("Skipping rg log: %s", exc)
        return None


def _read_or_error(path: str, layout: dict) -> CorrelationResult | MalformedLogError:
    try:
        return bind_fields(parse_rg_log(path, **layout))
    except MalformedLogError as exc:
        return exc


def read_results(
    paths: Sequence[str | Path],
    *,
    workers: int = 1,
    progress: bool = False,
    **layout,
) -> ParseReport:
    """Parse many logs concurrently and merge them in input order."""
    paths = [str(p) for p in paths]
    outcomes: list[CorrelationResult | MalformedLogError | None] = [None] * len(paths)

    with ThreadPoolExecutor(max_workers=max(1, int(workers))) as executor:
        futures = {executor.submit(_read_or_error, p, layout): i for i, p in enumerate(paths)}
        pbar = tqdm(as_completed(futures), total=len(futures), unit="log", disable=not progress)
        for future in pbar:
            outcomes[futures[future]] = future.result()

    report = ParseReport()
    for outcome in outcomes:
        if isinstance(outcome, MalformedLogError):
            logger.warning("Skipping rg log: %s", outcome)
            report.rejected.append(outcome)
        elif outcome is not None:
            report.results.append(outcome)
    return report


def discover_logs(directory: str | Path, pattern: str = "*.log") -> list[Path]:
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Log directory not found: {directory}")
    return sorted(p for p in directory.glob(pattern) if p.is_file())
