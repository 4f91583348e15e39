import math, random

import pytest

from groupstat_stream import CardinalitySet, NumberStats, StringStats

def two_pass(values):
    m = sum(values) / len(values)
    return m, math.sqrt(sum((x - m) ** 2 for x in values) / len(values))

def test_welford_matches_two_pass():
    rng = random.Random(1337)
    for n in (1, 2, 17, 1000):
        values = [rng.uniform(-1e6, 1e6) for _ in range(n)]
        s = NumberStats()
        for x in values:
            s.add(x)
        r = s.snapshot()
        mean, sd = two_pass(values)
        assert r["count"] == n
        assert r["mean"] == pytest.approx(mean, rel=1e-9, abs=1e-9)
        assert r["stddev"] == pytest.approx(sd, rel=1e-9, abs=1e-9)
        assert r["min"] == min(values) and r["max"] == max(values)
        assert r["min"] <= r["mean"] <= r["max"]

def test_welford_stable_with_large_offset():
    s = NumberStats()
    for x in (1e9 + 4, 1e9 + 7, 1e9 + 13, 1e9 + 16):
        s.add(x)
    assert s.snapshot()["stddev"] == pytest.approx(math.sqrt(22.5), rel=1e-9)

def test_single_value_has_zero_stddev():
    s = NumberStats()
    s.add(-3.5)
    assert s.snapshot() == {"count": 1, "null_count": 0, "min": -3.5, "max": -3.5, "mean": -3.5, "stddev": 0.0}

def test_empty_snapshot_is_undefined():
    s = NumberStats()
    s.add_null()
    assert s.snapshot() == {"count": 0, "null_count": 1, "min": None, "max": None, "mean": None, "stddev": None}

def test_nulls_never_perturb_stats():
    rng = random.Random(42)
    values = [rng.gauss(10, 3) for _ in range(200)]
    plain, mixed = NumberStats(), NumberStats()
    nulls = 0
    for x in values:
        plain.add(x)
        while rng.random() < 0.3:
            mixed.add_null()
            nulls += 1
        mixed.add(x)
    a, b = plain.snapshot(), mixed.snapshot()
    assert b.pop("null_count") == nulls
    a.pop("null_count")
    assert a == b

def test_snapshot_has_no_side_effects():
    s = NumberStats()
    for x in (1.0, 2.0, 4.0):
        s.add(x)
    assert s.snapshot() == s.snapshot()

def test_cardinality_unlimited_is_exact():
    c = CardinalitySet()
    for v in ["a", "b", "a", "", "c", "b"]:
        c.observe(v)
    assert c.snapshot() == {"count": 4, "capped": False, "disabled": False}

@pytest.mark.parametrize("cap", [1, 3, 10])
def test_cardinality_cap_latches(cap):
    rng = random.Random(cap)
    c = CardinalitySet(cap)
    distinct = set()
    for _ in range(50):
        v = str(rng.randint(0, 12))
        c.observe(v)
        distinct.add(v)
        r = c.snapshot()
        assert r["count"] <= cap
        assert r["capped"] == (len(distinct) > cap)
        if not r["capped"]:
            assert r["count"] == len(distinct)
    for i in range(cap + 1):
        c.observe(f"fresh{i}")
    assert c.snapshot() == {"count": cap, "capped": True, "disabled": False}

def test_cardinality_exactly_at_cap_is_not_capped():
    c = CardinalitySet(2)
    for v in ["x", "y", "x", "y"]:
        c.observe(v)
    assert c.snapshot() == {"count": 2, "capped": False, "disabled": False}

def test_cardinality_zero_cap_disables():
    c = CardinalitySet(0)
    for v in ["a", "b"]:
        c.observe(v)
    assert c.disabled
    assert c.snapshot() == {"count": 0, "capped": False, "disabled": True}

def test_cardinality_negative_cap_rejected():
    with pytest.raises(ValueError):
        CardinalitySet(-1)

def test_cardinality_hashed_counts_distinct():
    c = CardinalitySet(hashed=True)
    for v in ["alpha", "beta", "alpha", "gamma"]:
        c.observe(v)
    assert c.snapshot()["count"] == 3

def test_string_stats_lengths_are_characters():
    s = StringStats()
    s.add("héllo")
    s.add("日本")
    r = s.snapshot()
    assert r["length"]["min"] == 2.0 and r["length"]["max"] == 5.0
    assert r["cardinality"]["count"] == 2

def test_string_nulls_skip_cardinality():
    s = StringStats(cap=10)
    s.add("ab")
    s.add_null()
    s.add_invalid()
    r = s.snapshot()
    assert r["null_count"] == 2
    assert r["length"]["null_count"] == 1
    assert r["length"]["count"] == 1
    assert r["cardinality"] == {"count": 1, "capped": False, "disabled": False}
