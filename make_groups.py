#!/usr/bin/env python3
import random, sys
from pathlib import Path
from typing import Iterator

# Usage: python make_groups.py out.txt rows groups key_cols null_rate seed [--strings]
# Example: python make_groups.py /tmp/groups_1gb.txt 50_000_000 1000 2 0.05 1337

def generate_lines(rows: int, ngroups: int, key_cols: int, null_rate: float, seed: int,
                   strings: bool = False, delimiter: str = ",") -> Iterator[str]:
    """Deterministic grouped lines ``k,...,value``; nulls are 'x' (numbers) or '' (strings)."""
    rng = random.Random(seed)
    rr = rng.random
    ri = rng.randint
    ru = rng.uniform
    choice = rng.choice
    letters = "abcdefxyz"
    keys = [delimiter.join(f"k{c}_{g % (c + 2) if c else g}" for c in range(key_cols)) for g in range(ngroups)]
    for _ in range(rows):
        key = choice(keys)
        if rr() < null_rate:
            val = "" if strings else "x"
        elif strings:
            val = "".join(choice(letters) for _ in range(ri(3, 10)))
        elif rr() < 0.5:
            val = str(ri(-10**6, 10**6))
        else:
            val = f"{ru(-1e6, 1e6):.6f}"
        yield f"{key}{delimiter}{val}"

def main():
    argv = [a for a in sys.argv[1:] if a != "--strings"]
    if len(argv) != 6:
        print("Usage: python make_groups.py out.txt rows groups key_cols null_rate seed [--strings]", file=sys.stderr)
        sys.exit(2)
    out, rows, ngroups, key_cols, null_rate, seed = (
        argv[0], int(argv[1].replace('_','')), int(argv[2].replace('_','')),
        int(argv[3]), float(argv[4]), int(argv[5])
    )
    if ngroups < 1 or key_cols < 1:
        print("groups and key_cols must be >= 1", file=sys.stderr)
        sys.exit(2)
    p = Path(out)
    with p.open("w", newline="") as f:
        for line in generate_lines(rows, ngroups, key_cols, null_rate, seed, strings="--strings" in sys.argv):
            f.write(line)
            f.write("\n")

if __name__ == "__main__":
    main()
