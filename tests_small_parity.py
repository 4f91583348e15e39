import subprocess, sys, os, re, tempfile
from pathlib import Path

SCRIPT = str(Path(__file__).with_name("groupstat_stream.py"))

def run(args, stdin_text=None):
    return subprocess.run([sys.executable, SCRIPT] + args, input=stdin_text,
                          capture_output=True, text=True, encoding="utf-8")

def test_table_numbers_from_file():
    data = "g1,10\ng1,20\ng1,30\ng2,x\n"
    with tempfile.NamedTemporaryFile("w", delete=False, suffix=".txt") as f:
        f.write(data); path = f.name
    try:
        r = run(["-d", ",", "-r", "4", path])
        assert r.returncode == 0, r.stderr
        lines = r.stdout.splitlines()
        assert re.match(r"group\s+count\s+nulls\s+min\s+max\s+mean\s+stddev$", lines[0])
        assert set(lines[1].replace(" ", "")) == {"-"}
        assert re.match(r"g1\s+3\s+0\s+10\.0000\s+30\.0000\s+20\.0000\s+8\.1650$", lines[2])
        assert re.match(r"g2\s+0\s+1$", lines[3])
        assert len(lines) == 4
    finally:
        os.remove(path)

def test_delimited_numbers_from_stdin():
    r = run(["-d", ",", "-D", ";", "-r", "4"], "g1,10\ng1,20\ng1,30\ng2,x\n")
    assert r.returncode == 0, r.stderr
    assert r.stdout.splitlines() == [
        "group1;count;nulls;min;max;mean;stddev",
        "g1;3;0;10.0000;30.0000;20.0000;8.1650",
        "g2;0;1;;;;",
    ]

def test_delimited_splits_composite_keys():
    r = run(["-d", ",", "-D", "\\t"], "a,b,5\na,b,7\nc,1\nbroken\r\n")
    assert r.returncode == 0, r.stderr
    assert r.stdout.splitlines() == [
        "group1\tgroup2\tcount\tnulls\tmin\tmax\tmean\tstddev",
        "<INVALID>\t\t0\t1\t\t\t\t",
        "a\tb\t2\t0\t5\t7\t6\t1",
        "c\t\t1\t0\t1\t1\t1\t0",
    ]

def test_zero_as_null():
    r = run(["-d", ",", "-D", ",", "-z"], "g,0\ng,0.0\ng,4\n")
    assert r.stdout.splitlines()[1] == "g,1,2,4,4,4,0"

def test_strings_mode():
    r = run(["-d", ",", "-D", ",", "-r", "1", "-s", "-e", "-c", "10"], "g1,ab\ng1,abcd\ng1,\n")
    assert r.returncode == 0, r.stderr
    assert r.stdout.splitlines() == [
        "group1,count,nulls,min_len,max_len,mean_len,stddev_len,cardinality",
        "g1,2,1,2.0,4.0,3.0,1.0,2",
    ]

def test_strings_cardinality_capped_and_disabled():
    data = "g,a\ng,b\ng,c\ng,a\n"
    capped = run(["-d", ",", "-D", ",", "-s", "-c", "2"], data)
    assert capped.stdout.splitlines()[1].endswith(",2+")
    disabled = run(["-d", ",", "-D", ",", "-s", "-c", "0"], data)
    assert disabled.stdout.splitlines()[1] == "g,4,0,1,1,1,0,"
    hashed = run(["-d", ",", "-D", ",", "-s", "--hash-values"], data)
    assert hashed.stdout.splitlines()[1].endswith(",3")

def test_missing_file_is_fatal_and_renders_nothing():
    r = run(["-d", ",", os.path.join(tempfile.gettempdir(), "does-not-exist-groupstat.txt")])
    assert r.returncode == 1
    assert r.stdout == ""
    assert r.stderr.startswith("error:")

def test_bad_configuration_rejected():
    assert run(["-d", "ab"], "").returncode == 2
    assert run(["-d", ",", "-c", "-1"], "").returncode == 2
    assert run(["-d", ",", "-r", "x"], "").returncode == 2

def test_progress_and_memory_on_stderr():
    data = "".join(f"g{i % 3},{i}\n" for i in range(10))
    r = run(["-d", ",", "--progress", "--progress-every-rows", "4", "--memory"], data)
    assert r.returncode == 0, r.stderr
    assert "[progress]" in r.stderr
    assert "[summary] lines=10 groups=3 invalid=0" in r.stderr
    assert "[memory] peak RSS" in r.stderr
    assert "[progress]" not in r.stdout

def run_bytes(args, stdin_bytes):
    return subprocess.run([sys.executable, SCRIPT] + args, input=stdin_bytes, capture_output=True)

def test_lone_carriage_return_does_not_end_a_line():
    r = run_bytes(["-d", ",", "-D", ";"], b"g,1\rx,5\n")
    assert r.returncode == 0, r.stderr
    assert r.stdout.decode("utf-8").split("\n")[:-1] == [
        "group1;group2;count;nulls;min;max;mean;stddev",
        "g;1\rx;1;0;5;5;5;0",
    ]

def test_decode_error_is_fatal_and_renders_nothing():
    r = run_bytes(["-d", ","], b"g,1\ng,\xff\n")
    assert r.returncode == 1
    assert r.stdout == b""
    assert r.stderr.startswith(b"error:")

def test_broken_pipe_exits_quietly():
    data = "".join(f"g{i},{i}\n" for i in range(20_000)).encode()
    p = subprocess.Popen([sys.executable, SCRIPT, "-d", ","], stdin=subprocess.PIPE,
                         stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    p.stdout.close()
    _, err = p.communicate(data, timeout=60)
    assert p.returncode == 1
    assert b"Traceback" not in err
