"""Run the suite under :mod:`trace` and enforce line coverage on the core modules."""
from __future__ import annotations

import argparse
import sys
import trace
from pathlib import Path
from types import CodeType

CORE_MODULES = [
    Path("skurecon/fingerprint.py"),
    Path("skurecon/matching.py"),
    Path("skurecon/discovery.py"),
    Path("skurecon/repair.py"),
    Path("skurecon/orchestrator.py"),
]
THRESHOLD = 0.8


def _walk_code(code: CodeType):
    yield code
    for const in code.co_consts:
        if isinstance(const, CodeType):
            yield from _walk_code(const)


def executable_lines(path: Path) -> set[int]:
    """Line numbers that carry bytecode."""

    module = compile(path.read_text(encoding="utf-8"), str(path), "exec")
    lines = set()
    for code in _walk_code(module):
        lines.update(line for _, _, line in code.co_lines() if line is not None)
    return lines


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--threshold", type=float, default=THRESHOLD)
    args = parser.parse_args(argv)

    root = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(root))
    tracer = trace.Trace(count=True, trace=False, ignoremods=("pytest", "pluggy", "_pytest"))
    exit_code = 0
    try:
        tracer.run(f"import pytest; raise SystemExit(pytest.main([{str(root / 'tests')!r}]))")
    except SystemExit as exc:
        exit_code = exc.code or 0

    counts = tracer.results().counts
    all_ok = exit_code == 0
    for module in CORE_MODULES:
        abs_path = (root / module).resolve()
        executed = {
            lineno
            for (filename, lineno), count in counts.items()
            if count > 0 and Path(filename).resolve() == abs_path
        }
        eligible = executable_lines(abs_path)
        hit = len(executed & eligible)
        ratio = hit / len(eligible) if eligible else 1.0
        print(f"Coverage {module}: {ratio:.1%} ({hit}/{len(eligible)})")
        if ratio < args.threshold:
            all_ok = False

    if not all_ok:
        print(f"Coverage below {args.threshold:.0%} threshold or tests failed.")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
