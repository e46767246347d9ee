from __future__ import annotations

import math

import pandas as pd
import pytest

from gcorr import assemble as asm
from gcorr import config
from gcorr.logparse import CorrelationResult

pytestmark = pytest.mark.timeout(30)


def _res(p1, p2, rg, se, p=0.01, source=None):
    return CorrelationResult(
        source=source or f"{p1}__{p2}.log", p1=p1, p2=p2, rg=rg, se=se, z=None if se is None else 1.0, p=p
    )


@pytest.fixture
def ctx():
    return config.get_ctx(use_env=False)


@pytest.fixture
def id_map():
    return pd.DataFrame({
        "display_name": ["Testosterone (nmol/L)", "Standing height", "Weight"],
        "file_key": ["30850_irnt.tsv.bgz", "50_irnt.tsv.bgz", "21002_irnt.tsv.bgz"],
    })


def test_group_with_one_unreliable_estimate_is_dropped(ctx, id_map):
    results = [
        _res("/d/30850_irnt.tsv.bgz", "metrics/AGE.sumstats.gz", 0.1, 0.05),
        _res("/d/30850_irnt.tsv.bgz", "metrics/BMI.sumstats.gz", 0.2, 0.25),
        _res("/d/50_irnt.tsv.bgz", "metrics/AGE.sumstats.gz", 0.3, 0.04),
        _res("/d/50_irnt.tsv.bgz", "metrics/BMI.sumstats.gz", -0.1, 0.03),
    ]
    report = asm.assemble(results, ctx, mode=asm.TRAIT_METRIC, id_map=id_map)
    assert report.discarded_subjects == ["Testosterone (nmol/L)"]
    assert set(report.table["subject_a"]) == {"Standing height"}
    assert sorted(report.table["subject_b"]) == ["AGE", "BMI"]
    assert list(report.table.columns) == asm.TABLE_COLUMNS


def test_kept_rows_satisfy_reliability_threshold(ctx, id_map):
    results = [
        _res("50_irnt.tsv.bgz", "metrics/M1.sumstats.gz", 0.3, 0.2),
        _res("50_irnt.tsv.bgz", "metrics/M2.sumstats.gz", 0.3, 0.19),
        _res("21002_irnt.tsv.bgz", "metrics/M1.sumstats.gz", None, 0.01),
        _res("30850_irnt.tsv.bgz", "metrics/M1.sumstats.gz", 0.5, None),
    ]
    report = asm.assemble(results, ctx, mode=asm.TRAIT_METRIC, id_map=id_map)
    table = report.table
    assert (table["se"] <= 0.2).all()
    assert table["rg"].notna().all()
    assert report.discarded_subjects == ["Testosterone (nmol/L)", "Weight"]


def test_unmatched_result_is_dropped_and_reported(ctx, id_map):
    results = [
        _res("50_irnt.tsv.bgz", "metrics/AGE.sumstats.gz", 0.3, 0.04),
        _res("99999_irnt.tsv.bgz", "metrics/AGE.sumstats.gz", 0.3, 0.04, source="stray.log"),
    ]
    report = asm.assemble(results, ctx, mode=asm.TRAIT_METRIC, id_map=id_map)
    assert len(report.table) == 1
    assert len(report.missing_joins) == 1
    err = report.missing_joins[0]
    assert err.source == "stray.log"
    assert err.file_key == "99999_irnt.tsv.bgz"


def test_trait_mode_requires_identifier_map(ctx):
    with pytest.raises(ValueError):
        asm.assemble([_res("a", "b", 0.1, 0.1)], ctx, mode=asm.TRAIT_METRIC)


def test_unknown_mode_is_rejected(ctx):
    with pytest.raises(ValueError, match="Unknown assembly mode"):
        asm.assemble([], ctx, mode="pairs")


def test_empty_input_gives_empty_table(ctx, id_map):
    report = asm.assemble([], ctx, mode=asm.TRAIT_METRIC, id_map=id_map)
    assert report.table.empty
    assert list(report.table.columns) == asm.TABLE_COLUMNS


def test_coerce_numeric_turns_na_tokens_into_nan():
    frame = pd.DataFrame({"rg": ["0.5", "NA", "nan"], "se": [0.1, "x", None]})
    out = asm.coerce_numeric(frame)
    assert out["rg"].tolist()[0] == pytest.approx(0.5)
    assert math.isnan(out["rg"].iloc[1])
    assert math.isnan(out["se"].iloc[1])
    assert out["gcov_int_se"].isna().all()


def test_metric_mode_excludes_self_pairs_and_duplicates(ctx):
    results = [
        _res("metrics/AGE.sumstats.gz", "metrics/AGE.sumstats.gz", 1.0, 0.0),
        _res("metrics/AGE.sumstats.gz", "metrics/BMI.sumstats.gz", 0.4, 0.05),
        _res("metrics/AGE.sumstats.gz", "metrics/BMI.sumstats.gz", 0.5, 0.05, source="dup.log"),
        _res("metrics/BMI.sumstats.gz", "metrics/AGE.sumstats.gz", 0.41, 0.05),
    ]
    report = asm.assemble(results, ctx, mode=asm.METRIC_METRIC)
    assert report.self_pairs == 1
    assert report.duplicates == 1
    table = report.table.set_index(["subject_a", "subject_b"])
    assert table.loc[("AGE", "BMI"), "rg"] == pytest.approx(0.4)
    assert table.loc[("BMI", "AGE"), "rg"] == pytest.approx(0.41)


def test_metric_labels_rename_codes(ctx):
    ctx["metric_labels"] = {"AGE": "Age at recruitment"}
    report = asm.assemble(
        [_res("metrics/BMI.sumstats.gz", "metrics/AGE.sumstats.gz", 0.2, 0.05)], ctx, mode=asm.METRIC_METRIC
    )
    assert report.table.loc[0, "subject_b"] == "Age at recruitment"
    assert report.table.loc[0, "subject_a"] == "BMI"


def test_custom_threshold(ctx, id_map):
    results = [_res("50_irnt.tsv.bgz", "metrics/AGE.sumstats.gz", 0.3, 0.15)]
    ctx["se_threshold"] = 0.1
    report = asm.assemble(results, ctx, mode=asm.TRAIT_METRIC, id_map=id_map)
    assert report.table.empty
    assert report.discarded_subjects == ["Standing height"]
