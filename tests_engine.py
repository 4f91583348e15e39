import io, math

import polars as pl
import pytest

from groupstat_stream import (
    INVALID_GROUP, GroupingEngine, Policy, format_number, iter_lines, parse_number,
    render_table, stream_groups_filelike,
)
from make_groups import generate_lines

def test_right_split_keeps_composite_key():
    e = GroupingEngine(",")
    e.ingest("a,b,5")
    out = e.finalize()
    assert list(out) == ["a,b"]
    assert out["a,b"]["count"] == 1 and out["a,b"]["mean"] == 5.0

def test_line_without_delimiter_goes_to_sentinel():
    e = GroupingEngine(",")
    e.ingest("noDelimiterHere")
    out = e.finalize()
    assert list(out) == [INVALID_GROUP]
    assert out[INVALID_GROUP]["null_count"] == 1
    assert out[INVALID_GROUP]["count"] == 0

def test_every_malformed_line_counts():
    e = GroupingEngine(",", strings=True)
    e.consume(["one", "two", "g,v"])
    out = e.finalize()
    assert out[INVALID_GROUP]["null_count"] == 2
    assert out[INVALID_GROUP]["length"]["null_count"] == 0
    assert e.invalid == 2 and e.lines == 3

def test_numeric_end_to_end():
    e = GroupingEngine(",")
    e.consume(["g1,10", "g1,20", "g1,30", "g2,x"])
    out = e.finalize()
    g1, g2 = out["g1"], out["g2"]
    assert (g1["count"], g1["min"], g1["max"], g1["mean"]) == (3, 10.0, 30.0, 20.0)
    assert g1["stddev"] == pytest.approx(math.sqrt(200 / 3), rel=1e-12)
    assert g2["count"] == 0 and g2["null_count"] == 1

def test_string_end_to_end():
    e = GroupingEngine(",", strings=True, policy=Policy(empty_as_null=True, cardinality_cap=10))
    e.consume(["g1,ab", "g1,abcd", "g1,"])
    g1 = e.finalize()["g1"]
    assert g1["length"]["count"] == 2
    assert g1["length"]["null_count"] == 1
    assert (g1["length"]["min"], g1["length"]["max"]) == (2.0, 4.0)
    assert g1["cardinality"] == {"count": 2, "capped": False, "disabled": False}

def test_empty_string_is_a_value_unless_configured():
    e = GroupingEngine(",", strings=True)
    e.consume(["g,", "g,a"])
    g = e.finalize()["g"]
    assert g["length"]["count"] == 2 and g["length"]["min"] == 0.0
    assert g["cardinality"]["count"] == 2

def test_zero_as_null_policy():
    e = GroupingEngine(";", policy=Policy(zero_as_null=True))
    e.consume(["k;0", "k;-0.0", "k;0e3", "k;2"])
    k = e.finalize()["k"]
    assert k["count"] == 1 and k["null_count"] == 3

def test_keys_are_not_normalized():
    e = GroupingEngine(",")
    e.consume(["A,1", "a,1", " a,1"])
    assert sorted(e.finalize()) == [" a", "A", "a"]

@pytest.mark.parametrize("raw,expected", [
    ("5", 5.0), ("-1.5e3", -1500.0), ("+.5", 0.5), ("1e400", None), ("nan", None),
    ("inf", None), (" 5", None), ("5 ", None), ("1_000", None), ("", None), ("abc", None),
    ("\u0663", None), ("\uff15", None),
])
def test_parse_number(raw, expected):
    assert parse_number(raw) == expected

def test_finalize_is_idempotent_and_closes_engine():
    e = GroupingEngine(",")
    e.ingest("g,1")
    assert e.finalize() == e.finalize()
    with pytest.raises(RuntimeError):
        e.ingest("g,2")

def test_bad_delimiter_rejected():
    with pytest.raises(ValueError):
        GroupingEngine(",,")

def test_negative_cap_rejected_at_construction():
    with pytest.raises(ValueError):
        GroupingEngine(",", strings=True, policy=Policy(cardinality_cap=-1))

def test_non_ascii_digits_are_null():
    e = GroupingEngine(",")
    e.consume(["g,\u0663", "g,\uff15", "g,7"])
    g = e.finalize()["g"]
    assert g["count"] == 1 and g["null_count"] == 2

def test_iter_lines_strips_one_terminator():
    fh = io.StringIO("a,1\r\nb,2\n\nc,3\r\r\ng,1\rx,5\nd,4", newline="\n")
    assert list(iter_lines(fh)) == ["a,1", "b,2", "", "c,3\r", "g,1\rx,5", "d,4"]

def test_stream_groups_filelike():
    e = GroupingEngine("\t")
    n = stream_groups_filelike(io.StringIO("x\t1\nx\t3\n"), e)
    assert n == 2
    assert e.finalize()["x"]["mean"] == 2.0

def test_format_number():
    assert format_number(None, 2) == ""
    assert format_number(3, 2) == "3"
    assert format_number(8.164965, 3) == "8.165"
    assert format_number(20.0, 0) == "20"

def test_render_table_sorted_and_aligned():
    e = GroupingEngine(",")
    e.consume(["zz,1", "a,2", "a,4"])
    out = render_table(e.finalize(), decimals=1)
    assert out[0].split() == ["group", "count", "nulls", "min", "max", "mean", "stddev"]
    assert out[2].split() == ["a", "2", "0", "2.0", "4.0", "3.0", "1.0"]
    assert out[3].split()[0] == "zz"
    assert len({len(line) for line in out[:3]}) == 1

def _split(lines):
    keys, vals = [], []
    for line in lines:
        k, _, v = line.rpartition(",")
        keys.append(k); vals.append(v)
    return pl.DataFrame({"g": keys, "v": vals})

def test_numeric_parity_with_polars():
    lines = list(generate_lines(5000, 20, 2, 0.1, 7))
    e = GroupingEngine(",")
    e.consume(lines)
    out = e.finalize()
    ref = (
        _split(lines)
        .with_columns(pl.col("v").cast(pl.Float64, strict=False))
        .group_by("g")
        .agg(
            pl.col("v").count().alias("count"),
            pl.col("v").null_count().alias("nulls"),
            pl.col("v").min().alias("min"),
            pl.col("v").max().alias("max"),
            pl.col("v").mean().alias("mean"),
            pl.col("v").std(ddof=0).alias("stddev"),
        )
    )
    assert ref.height == len(out) == 20
    for row in ref.iter_rows(named=True):
        got = out[row["g"]]
        assert got["count"] == row["count"]
        assert got["null_count"] == row["nulls"]
        assert got["min"] == row["min"] and got["max"] == row["max"]
        assert got["mean"] == pytest.approx(row["mean"], rel=1e-9, abs=1e-6)
        assert got["stddev"] == pytest.approx(row["stddev"], rel=1e-9, abs=1e-6)

def test_string_parity_with_polars():
    lines = list(generate_lines(3000, 5, 1, 0.2, 11, strings=True))
    e = GroupingEngine(",", strings=True, policy=Policy(empty_as_null=True))
    e.consume(lines)
    out = e.finalize()
    df = _split(lines)
    ref = (
        df.filter(pl.col("v") != "")
        .group_by("g")
        .agg(
            pl.len().alias("count"),
            pl.col("v").n_unique().alias("unique"),
            pl.col("v").str.len_chars().mean().alias("mean_len"),
        )
    )
    nulls = dict(df.filter(pl.col("v") == "").group_by("g").agg(pl.len().alias("n")).iter_rows())
    for row in ref.iter_rows(named=True):
        got = out[row["g"]]
        assert got["length"]["count"] == row["count"]
        assert got["null_count"] == nulls.get(row["g"], 0)
        assert got["cardinality"]["count"] == row["unique"]
        assert got["length"]["mean"] == pytest.approx(row["mean_len"], rel=1e-9)

def test_generate_lines_is_deterministic():
    a = list(generate_lines(200, 4, 3, 0.5, 99))
    assert a == list(generate_lines(200, 4, 3, 0.5, 99))
    assert all(line.count(",") == 3 for line in a)
    assert any(line.endswith(",x") for line in a)
