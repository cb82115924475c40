#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path


def _ensure_src_on_path() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src = repo_root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))


def _read_json(path: str) -> object:
    p = Path(path)
    if not p.exists():
        raise SystemExit(f"File not found: {p}")
    try:
        return json.loads(p.read_text(encoding="utf-8", errors="replace"))
    except json.JSONDecodeError as e:
        raise SystemExit(f"{p} is not valid JSON: {e}")


def main(argv: list[str] | None = None) -> int:
    _ensure_src_on_path()

    from vtb_history_sync.portal.detail import DetailPayload, parse_detail

    p = argparse.ArgumentParser(
        prog="parse_detail_snapshot",
        description=(
            "Parse detail payloads saved with --step-debug (data/debug/detail_*.json) into operations.\n"
            "This is intended for debugging parsing regressions offline (no Playwright, no secrets)."
        ),
    )
    p.add_argument("files", nargs="+", help="One or more detail_*.json files")
    p.add_argument("--out", default="", help="Optional output JSON path (otherwise prints to stdout)")
    args = p.parse_args(argv)

    results = []
    for f in args.files:
        payload = DetailPayload.from_raw(_read_json(f))
        record = parse_detail(payload)
        results.append(
            {
                "file": f,
                "operation": record.model_dump(mode="json") if record else None,
            }
        )

    out_json = json.dumps({"operations": results}, indent=2, ensure_ascii=False)
    if args.out:
        Path(args.out).write_text(out_json, encoding="utf-8")
    else:
        print(out_json)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
