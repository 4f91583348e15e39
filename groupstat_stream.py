#!/usr/bin/env python3
import io, os, sys, math, time, argparse
from typing import Dict, Iterable, Iterator, List, NamedTuple, Optional, Tuple, Union
from collections import deque  # progress window

import psutil
import xxhash

MB = 1024 * 1024
GB = 1024 * MB

INVALID_GROUP = "<INVALID>"

def human(n: int) -> str:
    if n >= GB: return f"{n/GB:.1f} GB"
    if n >= MB: return f"{n/MB:.1f} MB"
    return f"{n} B"

def _fast_hash64(val: str) -> int:
    return xxhash.xxh64_intdigest(val.encode("utf-8"))  # 64-bit

# ---- Running numeric stats (Welford) ----
class NumberStats:
    __slots__ = ("count", "null_count", "min", "max", "mean", "m2")
    def __init__(self):
        self.count = 0
        self.null_count = 0
        self.min = math.inf
        self.max = -math.inf
        self.mean = 0.0
        self.m2 = 0.0
    def add(self, x: float):
        if self.count == 0:
            self.mean = x
            self.min = self.max = x
            self.m2 = 0.0
        else:
            d = x - self.mean
            self.mean += d / (self.count + 1)
            self.m2 += d * (x - self.mean)
            if x < self.min: self.min = x
            if x > self.max: self.max = x
        self.count += 1
    def add_null(self):
        self.null_count += 1
    def snapshot(self) -> dict:
        if self.count == 0:
            return {"count": 0, "null_count": self.null_count,
                    "min": None, "max": None, "mean": None, "stddev": None}
        return {
            "count": self.count,
            "null_count": self.null_count,
            "min": self.min,
            "max": self.max,
            "mean": self.mean,
            "stddev": math.sqrt(self.m2 / self.count),  # population
        }

# ---- Capped distinct tracker ----
class CardinalitySet:
    """Distinct values up to ``cap``, then latches ``capped``.

    cap=None tracks without limit, cap=0 disables tracking. With
    ``hashed`` the set holds xxh64 digests instead of the strings.
    """
    __slots__ = ("cap", "hashed", "capped", "_seen")
    def __init__(self, cap: Optional[int] = None, hashed: bool = False):
        if cap is not None and cap < 0:
            raise ValueError(f"cardinality cap must be >= 0, got {cap}")
        self.cap = cap
        self.hashed = hashed
        self.capped = False
        self._seen: Optional[set] = None if cap == 0 else set()
    @property
    def disabled(self) -> bool:
        return self._seen is None
    def observe(self, val: str):
        if self._seen is None or self.capped:
            return
        item = _fast_hash64(val) if self.hashed else val
        if item in self._seen:
            return
        if self.cap is not None and len(self._seen) >= self.cap:
            # one past the cap: latch, the set stays at exactly cap entries
            self.capped = True
            return
        self._seen.add(item)
    def snapshot(self) -> dict:
        return {
            "count": 0 if self._seen is None else len(self._seen),
            "capped": self.capped,
            "disabled": self._seen is None,
        }

# ---- String values: length stats + cardinality ----
class StringStats:
    __slots__ = ("null_count", "length", "cardinality")
    def __init__(self, cap: Optional[int] = None, hashed: bool = False):
        self.null_count = 0
        self.length = NumberStats()
        self.cardinality = CardinalitySet(cap, hashed=hashed)
    def add(self, val: str):
        self.length.add(float(len(val)))
        self.cardinality.observe(val)
    def add_null(self):
        self.length.add_null()
        self.null_count += 1
    def add_invalid(self):
        # malformed line: value side only, length stats untouched
        self.null_count += 1
    def snapshot(self) -> dict:
        return {
            "null_count": self.null_count,
            "length": self.length.snapshot(),
            "cardinality": self.cardinality.snapshot(),
        }

Accumulator = Union[NumberStats, StringStats]

class Policy(NamedTuple):
    zero_as_null: bool = False
    empty_as_null: bool = False
    cardinality_cap: Optional[int] = None
    hash_values: bool = False

def parse_number(raw: str) -> Optional[float]:
    """Strict float parse; None for anything unusable (incl. nan/inf)."""
    if not raw or not raw.isascii() or raw != raw.strip() or "_" in raw:
        return None
    try:
        x = float(raw)
    except ValueError:
        return None
    if math.isinf(x) or math.isnan(x):
        return None
    return x

# ---- Grouping / dispatch ----
class GroupingEngine:
    def __init__(self, delimiter: str, strings: bool = False, policy: Optional[Policy] = None):
        if not isinstance(delimiter, str) or len(delimiter) != 1:
            raise ValueError(f"delimiter must be a single character, got {delimiter!r}")
        if policy is not None and policy.cardinality_cap is not None and policy.cardinality_cap < 0:
            raise ValueError(f"cardinality cap must be >= 0, got {policy.cardinality_cap}")
        self.delimiter = delimiter
        self.strings = strings
        self.policy = policy if policy is not None else Policy()
        self.groups: Dict[str, Accumulator] = {}
        self.lines = 0
        self.invalid = 0
        self._finalized = False

    def _group(self, key: str) -> Accumulator:
        acc = self.groups.get(key)
        if acc is None:
            if self.strings:
                acc = StringStats(self.policy.cardinality_cap, hashed=self.policy.hash_values)
            else:
                acc = NumberStats()
            self.groups[key] = acc
        return acc

    def ingest(self, line: str):
        if self._finalized:
            raise RuntimeError("ingest() called after finalize()")
        self.lines += 1
        key, sep, raw = line.rpartition(self.delimiter)
        if not sep:
            self.invalid += 1
            acc = self._group(INVALID_GROUP)
            if self.strings:
                acc.add_invalid()
            else:
                acc.add_null()
            return
        acc = self._group(key)
        if self.strings:
            if self.policy.empty_as_null and raw == "":
                acc.add_null()
            else:
                acc.add(raw)
            return
        x = parse_number(raw)
        if x is None or (self.policy.zero_as_null and x == 0.0):
            acc.add_null()
        else:
            acc.add(x)

    def consume(self, lines: Iterable[str]) -> int:
        n = 0
        for line in lines:
            self.ingest(line)
            n += 1
        return n

    def finalize(self) -> Dict[str, dict]:
        self._finalized = True
        return {k: acc.snapshot() for k, acc in self.groups.items()}

# ---- Input framing ----
def iter_lines(fh) -> Iterator[str]:
    """Yield lines without their terminator (one \\n, then one \\r)."""
    for line in fh:
        if line.endswith("\n"):
            line = line[:-1]
            if line.endswith("\r"):
                line = line[:-1]
        yield line

def open_input(path: str):
    if path == "-":
        return io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8", newline="\n")
    return open(path, encoding="utf-8", newline="\n", buffering=1024*1024)  # larger buffer

# ---- Diagnostics ----
class MemoryTracker:
    __slots__ = ("proc", "peak")
    def __init__(self):
        self.proc = psutil.Process(os.getpid())
        self.peak = 0
    def sample(self) -> int:
        rss = self.proc.memory_info().rss
        if rss > self.peak:
            self.peak = rss
        return rss

class ProgressReporter:
    __slots__ = ("every", "show", "memory", "start", "window", "last_report")
    def __init__(self, every: int, show: bool = True, memory: Optional[MemoryTracker] = None):
        self.every = every
        self.show = show
        self.memory = memory
        self.start = time.time()
        self.window = deque()  # (time, rows)
        self.last_report = 0
    def tick(self, rows: int):
        if self.every <= 0 or rows % self.every:
            return
        if self.memory is not None:
            self.memory.sample()
        if self.show:
            self.window.append((time.time(), rows))
            self.report(rows)
    def report(self, rows: int):
        now = time.time()
        # maintain 5s window
        while self.window and now - self.window[0][0] > 5:
            self.window.popleft()
        if len(self.window) >= 2:
            dt = self.window[-1][0] - self.window[0][0]
            dr = self.window[-1][1] - self.window[0][1]
            rps = dr / dt if dt > 0 else 0
        else:
            rps = rows / (now - self.start) if (now - self.start) > 0 else 0
        mem = f" | rss {human(self.memory.peak)}" if self.memory is not None else ""
        print(f"[progress] {rows:,} rows | {rps:,.0f} rows/s{mem}", file=sys.stderr)
        self.last_report = rows
    def finish(self, rows: int):
        if self.memory is not None:
            self.memory.sample()
        if self.show and rows != self.last_report:
            self.window.append((time.time(), rows))
            self.report(rows)

def stream_groups_filelike(fh, engine: GroupingEngine, progress: Optional[ProgressReporter] = None) -> int:
    rows = 0
    if progress is None:
        return engine.consume(iter_lines(fh))
    for line in iter_lines(fh):
        engine.ingest(line)
        rows += 1
        progress.tick(rows)
    progress.finish(rows)
    return rows

def stream_groups_path(path: str, engine: GroupingEngine, progress: Optional[ProgressReporter] = None) -> int:
    with open_input(path) as f:
        return stream_groups_filelike(f, engine, progress)

# ---- Output ----
NUMBER_COLUMNS = ["count", "nulls", "min", "max", "mean", "stddev"]
STRING_COLUMNS = ["count", "nulls", "min_len", "max_len", "mean_len", "stddev_len", "cardinality"]

def format_number(x: Optional[Union[int, float]], decimals: int) -> str:
    if x is None:
        return ""
    if isinstance(x, int):
        return str(x)
    return f"{x:.{decimals}f}"

def format_cardinality(card: dict) -> str:
    if card["disabled"]:
        return ""
    if card["capped"]:
        return f"{card['count']}+"  # floor: at least cap distinct values
    return str(card["count"])

def _number_cells(s: dict, decimals: int) -> List[str]:
    return [
        format_number(s["count"], decimals),
        format_number(s["null_count"], decimals),
        format_number(s["min"], decimals),
        format_number(s["max"], decimals),
        format_number(s["mean"], decimals),
        format_number(s["stddev"], decimals),
    ]

def group_rows(groups: Dict[str, dict], strings: bool, decimals: int) -> Tuple[List[str], List[Tuple[str, List[str]]]]:
    """Column names and (group key, cells) rows, sorted by group key."""
    rows = []
    for key in sorted(groups):
        s = groups[key]
        if strings:
            cells = _number_cells(s["length"], decimals)
            cells[1] = format_number(s["null_count"], decimals)
            cells.append(format_cardinality(s["cardinality"]))
        else:
            cells = _number_cells(s, decimals)
        rows.append((key, cells))
    return (STRING_COLUMNS if strings else NUMBER_COLUMNS), rows

def render_table(groups: Dict[str, dict], strings: bool = False, decimals: int = 0) -> List[str]:
    columns, rows = group_rows(groups, strings, decimals)
    header = ["group"] + columns
    widths = [len(h) for h in header]
    for key, cells in rows:
        for i, c in enumerate([key] + cells):
            if len(c) > widths[i]:
                widths[i] = len(c)
    def fmt(cells: List[str]) -> str:
        first = cells[0].ljust(widths[0])
        rest = [c.rjust(w) for c, w in zip(cells[1:], widths[1:])]
        return "  ".join([first] + rest).rstrip()
    out = [fmt(header), "  ".join("-" * w for w in widths)]
    out.extend(fmt([key] + cells) for key, cells in rows)
    return out

def render_delimited(groups: Dict[str, dict], input_delimiter: str, output_delimiter: str,
                     strings: bool = False, decimals: int = 0) -> List[str]:
    columns, rows = group_rows(groups, strings, decimals)
    split_rows = [(key.split(input_delimiter), cells) for key, cells in rows]
    depth = max((len(parts) for parts, _ in split_rows), default=1)
    header = [f"group{i}" for i in range(1, depth + 1)] + columns
    out = [output_delimiter.join(header)]
    for parts, cells in split_rows:
        parts = parts + [""] * (depth - len(parts))
        out.append(output_delimiter.join(parts + cells))
    return out

# ---- CLI ----
def delimiter_arg(s: str) -> str:
    if s == "\\t":
        return "\t"
    if len(s) != 1:
        raise argparse.ArgumentTypeError(f"expected a single character, got {s!r}")
    return s

def non_negative_int(s: str) -> int:
    try:
        n = int(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got {s!r}")
    if n < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {n}")
    return n

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="groupstat",
        description="Grouped stats on a stream (count, min, max, mean, stddev). "
                    "The last column is the value, all preceding columns are the group.")
    ap.add_argument("file", nargs="?", default="-", help="Input path or '-' for stdin (must not be a tty)")
    ap.add_argument("-d", "--input-delimiter", type=delimiter_arg, required=True, help="Input delimiter ('\\t' for tab)")
    ap.add_argument("-D", "--output-delimiter", type=delimiter_arg, default=None, help="Output delimiter; default is a human readable table")
    ap.add_argument("-r", "--decimals", type=non_negative_int, default=0, help="Decimals to round output to (default 0)")
    ap.add_argument("-z", "--zero-as-null", action="store_true", help="Count zeros as null, in addition to non-numbers")
    ap.add_argument("-s", "--strings", action="store_true", help="Interpret values as strings: length stats and cardinality")
    ap.add_argument("-c", "--cardinality-cap", type=non_negative_int, default=None, help="Cap on tracked distinct values per group, 0 disables cardinality")
    ap.add_argument("-e", "--empty-as-null", action="store_true", help="Count empty strings as null (strings mode)")
    ap.add_argument("--hash-values", action="store_true", help="Track cardinality with 64-bit hashes instead of the values")
    ap.add_argument("--progress", action="store_true", help="Show progress (rows, rows/s) on stderr")
    ap.add_argument("--progress-every-rows", type=non_negative_int, default=500_000, help="Emit progress every N rows (0=disable)")
    ap.add_argument("--memory", action="store_true", help="Report peak RSS on stderr at the end")
    return ap

def policy_from_args(args) -> Policy:
    return Policy(
        zero_as_null=args.zero_as_null,
        empty_as_null=args.empty_as_null,
        cardinality_cap=args.cardinality_cap,
        hash_values=args.hash_values,
    )

def main(argv: Optional[List[str]] = None):
    ap = build_parser()
    args = ap.parse_args(argv)

    if args.file == "-" and sys.stdin.isatty():
        ap.print_help()
        sys.exit(2)

    engine = GroupingEngine(args.input_delimiter, strings=args.strings, policy=policy_from_args(args))
    memory = MemoryTracker() if args.memory else None
    progress = None
    if args.progress or memory is not None:
        progress = ProgressReporter(args.progress_every_rows, show=args.progress, memory=memory)

    try:
        stream_groups_path(args.file, engine, progress)
    except (OSError, UnicodeDecodeError) as e:
        # partial results are never rendered
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)

    groups = engine.finalize()
    if args.output_delimiter is None:
        out = render_table(groups, strings=args.strings, decimals=args.decimals)
    else:
        out = render_delimited(groups, args.input_delimiter, args.output_delimiter,
                               strings=args.strings, decimals=args.decimals)
    try:
        sys.stdout.write("\n".join(out) + "\n")
        sys.stdout.flush()
    except BrokenPipeError:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(1)

    if args.progress:
        print(f"[summary] lines={engine.lines:,} groups={len(groups):,} invalid={engine.invalid:,}", file=sys.stderr)
    if memory is not None:
        print(f"[memory] peak RSS {human(memory.peak)}", file=sys.stderr)

if __name__ == "__main__":
    main()
