from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple

from cryptoscope.core.models import CryptoAsset

MergeKey = Tuple[str, str, str, str, int]

_API_PREFIX = "Detected via API call"


def merge_key(asset: CryptoAsset) -> MergeKey:
    """(name, primitive, asset_type, first file, first line)."""
    ctx = asset.first_context
    path = ctx.file_path if ctx else ""
    line = ctx.first_line if ctx else 0
    return (asset.name, asset.primitive, asset.asset_type, path, line)


def merge_detector_results(results: Iterable[Sequence[CryptoAsset]]) -> List[CryptoAsset]:
    """Merge findings from several detectors for ONE file.

    Lists are consumed in order and the first asset seen for a merge key
    survives. Later duplicates are dropped without touching the survivor's
    count or contexts; only provenance is carried over: the dropped
    detector's kind is appended to `detected_by`, and an API-call
    description replaces a plain one.

    Inputs are never mutated; survivors are copies.
    """
    merged: Dict[MergeKey, CryptoAsset] = {}
    for batch in results:
        for asset in batch or ():
            key = merge_key(asset)
            kept = merged.get(key)
            if kept is None:
                merged[key] = asset.copy()
                continue
            for kind in asset.detected_by:
                if kind not in kept.detected_by:
                    kept.detected_by.append(kind)
            if asset.description.startswith(_API_PREFIX) and not kept.description.startswith(
                _API_PREFIX
            ):
                kept.description = asset.description
    return list(merged.values())


def merge_into_workspace(acc: Dict[str, CryptoAsset], assets: Iterable[CryptoAsset]) -> Dict[str, CryptoAsset]:
    """Accumulate per-file results into a workspace map keyed by asset id.

    A new id is stored as a copy. An existing id gets the incoming contexts
    appended (a context whose (file, first line) is already present is
    skipped) and its occurrences grow by the lines actually added, so
    `occurrences` keeps matching the sum of context line counts.
    """
    for asset in assets:
        cur = acc.get(asset.id)
        if cur is None:
            acc[asset.id] = asset.copy()
            continue
        present = {(c.file_path, c.first_line) for c in cur.detection_contexts}
        for ctx in asset.detection_contexts:
            k = (ctx.file_path, ctx.first_line)
            if k in present:
                continue
            present.add(k)
            cur.detection_contexts.append(ctx)
            cur.occurrences += len(ctx.line_numbers)
        for kind in asset.detected_by:
            if kind not in cur.detected_by:
                cur.detected_by.append(kind)
    return acc
