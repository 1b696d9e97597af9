#!/usr/bin/env python3
"""agtrace invariant checks against the runtime policy document."""

import json
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from agtrace.policy.invariants import check_policy_invariants  # noqa: E402

POLICY_PATH = ROOT / "src" / "agtrace" / "policy" / "runtime_policy.json"


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check(path: Path = POLICY_PATH) -> int:
    errors = check_policy_invariants(load_json(path))

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check(Path(sys.argv[1]) if len(sys.argv) > 1 else POLICY_PATH))
