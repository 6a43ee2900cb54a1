"""auditor.intake

Enumerates scannable source files under the given paths and computes the
per-language WorkspaceMatrix (file and byte counts).

Files are kept when their extension is in the source-extension set, which
is wider than the set of languages with a grammar. A Rust file gets only
lexical detection; its language is taken from the extension, or recorded
as "other" for extensions without a name.
Dependency/build directories are pruned during the walk, include/exclude
globs are matched against the path relative to the scan root (and against
the bare file name), and files above the size limit are skipped.
"""

from __future__ import annotations

import datetime
import fnmatch
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from cryptoscope.core.kb import DEFAULT_SOURCE_EXTENSIONS, OTHER_LANGUAGE, source_language
from cryptoscope.core.models import CryptoAsset, WorkspaceMatrix
from cryptoscope.detectors.runner import _atomic_write_text
from cryptoscope.settings import DEFAULT_EXCLUDED_DIRS

logger = logging.getLogger(__name__)


def _matches_any(rel_path: str, globs: Sequence[str]) -> bool:
    name = rel_path.rsplit("/", 1)[-1]
    for g in globs:
        if fnmatch.fnmatch(rel_path, g) or fnmatch.fnmatch(name, g):
            return True
        # "node_modules" or "vendor/" excludes the whole subtree
        d = g.rstrip("/")
        if d and not any(ch in d for ch in "*?[") and (rel_path == d or rel_path.startswith(d + "/")):
            return True
    return False


def _item(path: str, rel: str, size: int, mtime: float, language: str) -> Dict[str, Any]:
    return {
        "path": os.path.abspath(path),
        "relpath": rel,
        "size": size,
        "mtime": datetime.datetime.fromtimestamp(mtime, datetime.timezone.utc).isoformat(),
        "language": language,
    }


def enumerate_sources_iter(
    paths: Iterable[str],
    include_globs: Optional[Sequence[str]] = None,
    exclude_globs: Optional[Sequence[str]] = None,
    excluded_dirs: Optional[Sequence[str]] = None,
    max_file_size_bytes: Optional[int] = None,
    source_extensions: Optional[Sequence[str]] = None,
    follow_symlinks: bool = False,
    progress_cb=None,
    cancel_event: Optional["threading.Event"] = None,
) -> Iterator[Dict[str, Any]]:
    """Yield one item dict per accepted source file, in sorted path order.

    Items carry path (absolute), relpath (posix, relative to its root),
    size, mtime (ISO-8601 UTC) and language. If progress_cb is provided it
    is called as progress_cb(count, path) after each accepted file. The
    iterator stops early once cancel_event is set.
    """
    skip_dirs = set(DEFAULT_EXCLUDED_DIRS if excluded_dirs is None else excluded_dirs)
    include = list(include_globs or [])
    exclude = list(exclude_globs or [])
    exts = {e.lower() for e in (DEFAULT_SOURCE_EXTENSIONS if source_extensions is None else source_extensions)}
    count = 0

    def accept(fp: str, rel: str) -> Optional[Dict[str, Any]]:
        if os.path.splitext(fp)[1].lower() not in exts:
            return None
        lang = source_language(fp) or OTHER_LANGUAGE
        if include and not _matches_any(rel, include):
            return None
        if exclude and _matches_any(rel, exclude):
            return None
        try:
            st = os.stat(fp) if follow_symlinks else os.lstat(fp)
        except OSError as e:
            logger.warning("cannot stat %s: %s", fp, e)
            return None
        if not follow_symlinks and os.path.islink(fp):
            return None
        if max_file_size_bytes and st.st_size > max_file_size_bytes:
            logger.debug("skipping %s (%d bytes > limit)", fp, st.st_size)
            return None
        return _item(fp, rel, st.st_size, st.st_mtime, lang)

    for root_path in paths:
        if cancel_event is not None and cancel_event.is_set():
            return
        candidates: List[tuple] = []
        if os.path.isdir(root_path):
            for root, dirs, files in os.walk(root_path, followlinks=follow_symlinks):
                # prune in place so os.walk never descends
                dirs[:] = sorted(d for d in dirs if d not in skip_dirs)
                for fn in sorted(files):
                    fp = os.path.join(root, fn)
                    rel = os.path.relpath(fp, root_path).replace(os.sep, "/")
                    candidates.append((fp, rel))
        elif os.path.isfile(root_path):
            candidates.append((root_path, os.path.basename(root_path)))
        else:
            logger.warning("input path does not exist: %s", root_path)
            continue

        for fp, rel in sorted(candidates, key=lambda c: c[1]):
            if cancel_event is not None and cancel_event.is_set():
                return
            item = accept(fp, rel)
            if item is None:
                continue
            count += 1
            if callable(progress_cb):
                progress_cb(count, item["path"])
            yield item


def enumerate_source_files(paths: Iterable[str], **kwargs) -> List[Dict[str, Any]]:
    """List form of `enumerate_sources_iter` (same keyword arguments)."""
    return list(enumerate_sources_iter(paths, **kwargs))


def build_workspace_matrix(
    items: Iterable[Dict[str, Any]], assets: Optional[Iterable[CryptoAsset]] = None
) -> WorkspaceMatrix:
    """Per-language file/byte totals, with findings attached by file language.

    An asset spanning several languages is listed under each of them.
    """
    matrix = WorkspaceMatrix()
    by_path: Dict[str, str] = {}
    for it in items:
        lang = it.get("language") or source_language(it["path"])
        if lang is None:
            continue
        by_path[os.path.abspath(it["path"])] = lang
        matrix.add_file(lang, int(it.get("size") or 0))
    for a in assets or ():
        langs = []
        for ctx in a.detection_contexts:
            lang = by_path.get(os.path.abspath(ctx.file_path)) or source_language(ctx.file_path)
            if lang and lang not in langs:
                langs.append(lang)
        for lang in langs:
            st = matrix.stats.get(lang)
            if st is not None:
                st.detections.append(a)
    return matrix


def write_manifest(manifest_path: str | Path, items: List[Dict[str, Any]]) -> Path:
    """Write `{generated_at, items}` JSON atomically."""
    p = Path(manifest_path)
    doc = {
        "generated_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "items": items,
    }
    _atomic_write_text(p, json.dumps(doc, indent=2))
    return p
