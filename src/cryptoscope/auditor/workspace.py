# auditor/workspace.py
"""Workspace scanner: run the orchestrator over many files.

Files are processed in sorted path order and their findings accumulated by
asset id, so one algorithm seen in ten files becomes one asset with ten
contexts. Cancellation is cooperative: once the event is set no further
file is started and whatever has been accumulated so far is returned.
"""
from __future__ import annotations

import collections
import concurrent.futures
import logging
import os
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from cryptoscope.core.models import CryptoAsset, WorkspaceMatrix
from cryptoscope.detectors.merge import merge_into_workspace
from cryptoscope.detectors.orchestrator import DetectorOrchestrator

from .intake import build_workspace_matrix

logger = logging.getLogger(__name__)

FileRef = Union[str, Dict[str, Any]]
ProgressCb = Callable[[int, int], None]


def _file_path(ref: FileRef) -> str:
    return ref["path"] if isinstance(ref, dict) else str(ref)


class WorkspaceScanner:
    def __init__(self, orchestrator: DetectorOrchestrator, workers: int = 1):
        self.orchestrator = orchestrator
        self.workers = max(1, int(workers))

    def _scan_one(self, path: str, cancel_event: Optional[threading.Event]) -> Optional[List[CryptoAsset]]:
        # a queued file that has not started yet must not start after cancel
        if cancel_event is not None and cancel_event.is_set():
            return None
        try:
            return self.orchestrator.scan_path(path)
        except Exception as e:
            logger.warning("scan failed for %s: %s", path, e)
            return []

    def scan_workspace(
        self,
        files: Iterable[FileRef],
        progress_cb: Optional[ProgressCb] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[CryptoAsset]:
        """Scan `files` and return assets accumulated by id.

        progress_cb(processed, total) is called on this thread after every
        completed file, so `processed` only ever increases.
        """
        paths = sorted({_file_path(f) for f in files})
        total = len(paths)
        acc: Dict[str, CryptoAsset] = {}
        processed = 0
        logger.info("scanning %d files with %d worker(s)", total, self.workers)

        def done(result: Optional[List[CryptoAsset]]) -> None:
            nonlocal processed
            if result is None:
                return
            merge_into_workspace(acc, result)
            processed += 1
            if callable(progress_cb):
                progress_cb(processed, total)

        if self.workers == 1:
            for p in paths:
                if cancel_event is not None and cancel_event.is_set():
                    break
                done(self._scan_one(p, cancel_event))
        else:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=self.workers, thread_name_prefix="workspace"
            ) as pool:
                pending: collections.deque = collections.deque()
                it = iter(paths)
                exhausted = False
                while True:
                    # keep at most `workers` files in flight
                    while not exhausted and len(pending) < self.workers:
                        if cancel_event is not None and cancel_event.is_set():
                            exhausted = True
                            break
                        p = next(it, None)
                        if p is None:
                            exhausted = True
                            break
                        pending.append(pool.submit(self._scan_one, p, cancel_event))
                    if not pending:
                        break
                    # in submission order, so accumulation order is stable
                    done(pending.popleft().result())

        if cancel_event is not None and cancel_event.is_set():
            logger.info("scan cancelled after %d of %d files", processed, total)
        else:
            logger.info("scan finished: %d files, %d assets", processed, len(acc))
        return list(acc.values())

    def build_matrix(self, files: Iterable[FileRef], assets: Iterable[CryptoAsset]) -> WorkspaceMatrix:
        items = []
        for f in files:
            if isinstance(f, dict):
                items.append(f)
                continue
            try:
                size = os.path.getsize(f)
            except OSError:
                size = 0
            items.append({"path": str(f), "size": size})
        return build_workspace_matrix(items, assets)
