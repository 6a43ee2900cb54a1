from __future__ import annotations

import json
import os
import tempfile
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from cryptoscope.core.models import CryptoAsset


def _atomic_write_text(path: Path, text: str) -> None:
    """Write text to path atomically by writing to a temp file on the same
    directory and replacing the target. Ensures parent directory exists.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    # create temp file in same directory to avoid cross-device move issues
    fd, tmp = tempfile.mkstemp(dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError:
                # some filesystems refuse fsync
                pass
        os.replace(tmp, str(path))
    except BaseException:
        try:
            os.remove(tmp)
        except OSError:
            pass
        raise


def write_json(path: str | Path, obj: Any) -> Path:
    p = Path(path)
    _atomic_write_text(p, json.dumps(obj, indent=2, ensure_ascii=False) + "\n")
    return p


def write_ndjson_assets(assets: Iterable[CryptoAsset], out_path: str | Path) -> Path:
    """One JSON object per asset per line, written atomically."""
    p = Path(out_path)
    lines = [json.dumps(a.to_dict(), ensure_ascii=False) for a in assets]
    text = "\n".join(lines) + ("\n" if lines else "")
    _atomic_write_text(p, text)
    return p


def build_summary(assets: Iterable[CryptoAsset], scanned_files: Optional[int] = None) -> Dict[str, Any]:
    """Aggregates for dashboards: counts by severity, quantum safety, primitive."""
    items = list(assets)
    by_severity: Counter = Counter()
    by_quantum: Counter = Counter()
    by_primitive: Counter = Counter()
    by_detector: Counter = Counter()
    files: Counter = Counter()
    by_name: Counter = Counter()

    for a in items:
        by_severity[a.severity or "unclassified"] += 1
        by_quantum[str(a.quantum_safe).lower()] += 1
        by_primitive[a.primitive] += 1
        for kind in a.detected_by:
            by_detector[kind] += 1
        by_name[a.name] += a.occurrences
        for ctx in a.detection_contexts:
            files[ctx.file_path] += len(ctx.line_numbers)

    summary: Dict[str, Any] = {
        "total_assets": len(items),
        "total_occurrences": sum(a.occurrences for a in items),
        "counts": {
            "by_severity": dict(by_severity),
            "by_quantum_safe": dict(by_quantum),
            "by_primitive": dict(by_primitive),
            "by_detector": dict(by_detector),
        },
        "top_algorithms": [{"name": n, "occurrences": c} for n, c in by_name.most_common(20)],
        "top_files": [{"path": p, "occurrences": c} for p, c in files.most_common(20)],
    }
    if scanned_files is not None:
        summary["scanned_files"] = scanned_files
    return summary


def generate_summary(
    assets: Iterable[CryptoAsset], out_dir: str | Path, scanned_files: Optional[int] = None
) -> Path:
    """Write `cbom.summary.json` into `out_dir` atomically and return its path."""
    return write_json(Path(out_dir) / "cbom.summary.json", build_summary(assets, scanned_files))
