from __future__ import annotations

import json
import time
import zipfile
from pathlib import Path


# Prefixes passed to HistoryPage.save_debug().
ERROR_DUMP_PREFIXES = ("collect_error", "fatal_error_page")
MAX_STEP_SCREENSHOTS = 30


def classify_debug_file(path: Path) -> str:
    """
    Sort a file from the debug dir into "error", "detail", "step" or "other".
    """
    name = path.name
    if path.stem in ERROR_DUMP_PREFIXES:
        return "error"
    if name.startswith("detail_") and path.suffix == ".json":
        return "detail"
    if name.startswith("step_") and path.suffix == ".png":
        return "step"
    return "other"


def create_debug_bundle(
    *,
    debug_dir: str,
    log_file: str,
    out_dir: str = "data",
    label: str = "",
    max_steps: int = MAX_STEP_SCREENSHOTS,
) -> Path:
    """
    Zip the error page dumps, detail payloads, recent step screenshots and the log into one archive.

    Error dumps and detail payloads are always kept; step screenshots are capped at the newest
    `max_steps`. A `manifest.json` lists what went in. Never includes the browser profile, `.env`
    or the operations DB.
    """
    out_root = Path(out_dir)
    out_root.mkdir(parents=True, exist_ok=True)

    stamp = time.strftime("%Y%m%d_%H%M%S")
    tag = (label or "").strip().lower()
    tag_part = f"_{tag}" if tag else ""
    out_path = out_root / f"debug_bundle{tag_part}_{stamp}.zip"

    dbg = Path(debug_dir)
    log = Path(log_file)

    groups: dict[str, list[Path]] = {"error": [], "detail": [], "step": [], "other": []}
    if dbg.is_dir():
        for p in sorted(dbg.iterdir()):
            if p.is_file():
                groups[classify_debug_file(p)].append(p)
    dropped_steps = max(0, len(groups["step"]) - max(0, max_steps))
    groups["step"] = groups["step"][dropped_steps:]

    manifest: dict[str, object] = {"label": tag, "created": stamp, "log": None, "dropped_steps": dropped_steps}

    def _add_file(z: zipfile.ZipFile, file_path: Path, arcname: str) -> bool:
        try:
            z.write(file_path, arcname=arcname)
            return True
        except OSError:
            # a screenshot may be rotated away while we zip
            return False

    with zipfile.ZipFile(out_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
        if log.is_file() and _add_file(z, log, arcname=log.name):
            manifest["log"] = log.name

        for group, paths in groups.items():
            manifest[group] = [p.name for p in paths if _add_file(z, p, arcname=f"debug/{p.name}")]

        if any(manifest[g] for g in groups) or manifest["log"]:
            z.writestr("manifest.json", json.dumps(manifest, ensure_ascii=False, indent=2))

    return out_path
