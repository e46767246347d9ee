"""Reconcile sumstat file paths, phenotype descriptions and short trait/metric codes."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Sequence
from urllib.parse import urlparse

import pandas as pd

from .errors import AmbiguousIdentifierError, ManifestError
from .logging_utils import sanitize_token

logger = logging.getLogger(__name__)

FEMALE = "female"
MALE = "male"
BOTH = "both_sexes"
SEX_STRATA = (FEMALE, MALE, BOTH)

REQUIRED_COLUMNS = ("description", "phenotype", "sex", "is_primary_gwas")

_TRUE_STRINGS = {"true", "t", "1", "yes", "y"}
_FALSE_STRINGS = {"false", "f", "0", "no", "n", ""}


@dataclass(frozen=True)
class SumstatRecord:
    identifier: str
    display_name: str
    file_path: str
    sex_stratum: str
    is_primary: bool
    variant: str = ""

    @property
    def file_key(self) -> str:
        return file_key(self.file_path)

    @property
    def file_token(self) -> str:
        return sanitize_token(self.display_name)


def file_key(reference: str) -> str:
    """Basename of a path or URL; the join key between logs and the manifest."""
    ref = str(reference).strip()
    parsed = urlparse(ref)
    if parsed.scheme and parsed.netloc:
        ref = parsed.path
    return posixpath.basename(ref.replace("\\", "/"))


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return False
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise ManifestError(f"Unrecognized is_primary_gwas value: {value!r}")


def _variant_of(code: str) -> str:
    code = str(code)
    return code.rsplit("_", 1)[1].lower() if "_" in code else ""


def load_manifest(path: str | Path, *, file_column: str = "ldsc_sumstat_file") -> pd.DataFrame:
    path = Path(path)
    sep = "," if path.suffix.lower() == ".csv" else "\t"
    try:
        manifest = pd.read_csv(path, sep=sep, dtype=str, keep_default_na=False)
    except (OSError, pd.errors.ParserError) as exc:
        raise ManifestError(f"Could not read manifest {path}: {exc}") from exc

    missing = [c for c in (*REQUIRED_COLUMNS, file_column) if c not in manifest.columns]
    if missing:
        raise ManifestError(f"Manifest {path} is missing required columns: {missing}")

    manifest["description"] = manifest["description"].str.strip()
    manifest["sex"] = manifest["sex"].str.strip().str.lower()
    bad_sex = sorted(set(manifest["sex"]) - set(SEX_STRATA))
    if bad_sex:
        raise ManifestError(f"Manifest {path} has unknown sex strata: {bad_sex}")
    return manifest


def manifest_records(
    manifest: pd.DataFrame,
    *,
    file_column: str = "ldsc_sumstat_file",
    sumstat_dir: str | Path = "",
) -> list[SumstatRecord]:
    records = []
    for row in manifest.to_dict("records"):
        key = file_key(row[file_column])
        records.append(
            SumstatRecord(
                identifier=str(row["phenotype"]).strip(),
                display_name=str(row["description"]).strip(),
                file_path=str(Path(sumstat_dir) / key) if sumstat_dir else key,
                sex_stratum=str(row["sex"]).strip().lower(),
                is_primary=_parse_bool(row["is_primary_gwas"]),
                variant=_variant_of(row["phenotype"]),
            )
        )
    return records


def _required_stratum(display_name: str, ctx: dict) -> str:
    if display_name in set(ctx.get("female_only") or ()) | set(ctx.get("force_female") or ()):
        return FEMALE
    if display_name in set(ctx.get("male_only") or ()):
        return MALE
    return BOTH


def _relabel_forced(candidates: list[SumstatRecord], display_name: str, ctx: dict) -> list[SumstatRecord]:
    if display_name not in set(ctx.get("force_female") or ()):
        return candidates
    relabeled = []
    for rec in candidates:
        if rec.sex_stratum == BOTH:
            rec = SumstatRecord(
                identifier=rec.identifier,
                display_name=rec.display_name,
                file_path=rec.file_path,
                sex_stratum=FEMALE,
                is_primary=rec.is_primary,
                variant=rec.variant,
            )
        relabeled.append(rec)
    return relabeled


def disambiguation_steps(ctx: dict) -> tuple[tuple[str, Callable[[SumstatRecord], bool]], ...]:
    """Ordered predicates applied while more than one candidate remains."""
    dropped = {str(v).lower() for v in (ctx.get("dropped_variants") or ())}
    return (
        ("variant filter", lambda rec: rec.variant not in dropped),
        ("primary filter", lambda rec: rec.is_primary),
    )


def resolve_sumstat(display_name: str, records: Iterable[SumstatRecord], ctx: dict) -> SumstatRecord:
    candidates = [rec for rec in records if rec.display_name == display_name]
    candidates = _relabel_forced(candidates, display_name, ctx)

    stratum = _required_stratum(display_name, ctx)
    candidates = [rec for rec in candidates if rec.sex_stratum == stratum]
    stage = f"{stratum} stratum filter"

    for label, keep in disambiguation_steps(ctx):
        if len(candidates) <= 1:
            break
        candidates = [rec for rec in candidates if keep(rec)]
        stage = label

    if len(candidates) != 1:
        raise AmbiguousIdentifierError(display_name, [rec.identifier for rec in candidates], stage)
    return candidates[0]


def resolve_all(
    display_names: Sequence[str], records: Sequence[SumstatRecord], ctx: dict
) -> dict[str, SumstatRecord]:
    resolved: dict[str, SumstatRecord] = {}
    for name in dict.fromkeys(str(n).strip() for n in display_names):
        resolved[name] = resolve_sumstat(name, records, ctx)

    by_key: dict[str, str] = {}
    for name, rec in resolved.items():
        other = by_key.setdefault(rec.file_key, name)
        if other != name:
            logger.warning("'%s' and '%s' resolve to the same sumstat file %s", other, name, rec.file_key)
    return resolved


def identifier_map(resolved: dict[str, SumstatRecord]) -> pd.DataFrame:
    rows = [
        {
            "display_name": rec.display_name,
            "identifier": rec.identifier,
            "file_path": rec.file_path,
            "file_key": rec.file_key,
            "sex_stratum": rec.sex_stratum,
            "file_token": rec.file_token,
        }
        for rec in resolved.values()
    ]
    columns = ["display_name", "identifier", "file_path", "file_key", "sex_stratum", "file_token"]
    return pd.DataFrame(rows, columns=columns)


def normalize_metric_id(
    path: str,
    *,
    prefixes: Sequence[str] = (),
    suffixes: Sequence[str] = (".sumstats.gz", ".sumstats"),
) -> str:
    """Reduce an auxiliary metric sumstat path to its short metric code."""
    text = str(path).strip().replace("\\", "/")
    for prefix in prefixes:
        if prefix and text.startswith(prefix):
            text = text[len(prefix):]
            break
    text = posixpath.basename(text)
    for suffix in suffixes:
        if suffix and text.endswith(suffix):
            text = text[: -len(suffix)]
            break
    return text
