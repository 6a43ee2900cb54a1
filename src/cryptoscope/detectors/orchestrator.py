from __future__ import annotations

import concurrent.futures
import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from cryptoscope.core.kb import RuleDatabase
from cryptoscope.core.models import CryptoAsset, DetectionContext
from cryptoscope.core.scoring import classify_asset
from cryptoscope.errors import ExternalAnalyzerError
from cryptoscope.settings import ScanSettings

from .adapter import BaseDetector, read_source
from .merge import merge_detector_results
from .regex_detector import RegexDetector
from .semgrep_adapter import BaseAnalyzer
from .tree_sitter_detector import GrammarRegistry, TreeSitterDetector

logger = logging.getLogger(__name__)


def _path_key(path: str) -> str:
    return os.path.normcase(os.path.abspath(path))


class DetectorOrchestrator:
    """Runs every detector on a file and returns one merged, classified list.

    The lexical and syntax-tree detectors run side by side on a thread pool,
    each limited by `settings.file_timeout`. External findings (Semgrep,
    SARIF import) are gathered once per repository with `attach_external`
    and merged in ahead of the built-in results, so they win key collisions.

    Per-file problems (unreadable file, parse error, timeout) are logged and
    degrade to fewer findings; `scan_file` and `scan_path` never raise for
    them. Use as a context manager, or call `close()`, to stop the pool.
    """

    def __init__(
        self,
        rules: RuleDatabase,
        settings: Optional[ScanSettings] = None,
        registry: Optional[GrammarRegistry] = None,
        external: Optional[BaseAnalyzer] = None,
        detectors: Optional[Sequence[BaseDetector]] = None,
    ):
        self.rules = rules
        self.settings = settings or ScanSettings()
        if detectors is None:
            tree = TreeSitterDetector(
                rules,
                registry=registry,
                snippet_radius=self.settings.snippet_radius,
                strict_parse=self.settings.strict_parse,
            )
            # load grammars now so a broken runtime fails at startup
            tree.registry.ensure_loaded()
            detectors = (RegexDetector(rules, self.settings.snippet_radius), tree)
        self.detectors: Sequence[BaseDetector] = tuple(detectors)
        self.external = external
        self._external_by_file: Dict[str, List[CryptoAsset]] = {}
        self._pool = concurrent.futures.ThreadPoolExecutor(
            max_workers=max(1, self.settings.detector_threads),
            thread_name_prefix="detector",
        )
        self._closed = False
        self._lock = threading.Lock()

    def __enter__(self) -> "DetectorOrchestrator":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._closed = True
                # a timed-out detector keeps running; do not block on it
                self._pool.shutdown(wait=False)

    def attach_external(self, repo_path: str, language: Optional[str] = None) -> int:
        """Run the external analyzer once and index its findings by file.

        Returns the number of findings attached. Any failure is logged and
        leaves the scan on built-in detectors only.
        """
        self._external_by_file = {}
        if self.external is None:
            return 0
        try:
            assets = self.external.analyze(repo_path, language)
        except ExternalAnalyzerError as e:
            logger.warning("external analyzer disabled for this scan: %s", e)
            return 0
        except Exception as e:
            logger.warning("external analyzer crashed, continuing without it: %s", e)
            return 0
        count = 0
        for a in assets:
            ctx = a.first_context
            if ctx is None:
                continue
            p = ctx.file_path
            if not os.path.isabs(p):
                p = os.path.join(repo_path, p)
            self._external_by_file.setdefault(_path_key(p), []).append(a)
            count += 1
        logger.info("attached %d external findings across %d files", count, len(self._external_by_file))
        return count

    def _external_for(self, file_path: str) -> List[CryptoAsset]:
        found = self._external_by_file.get(_path_key(file_path))
        if not found:
            return []
        # re-home contexts onto the caller's path so merge keys line up
        out = []
        for a in found:
            b = a.copy()
            b.detection_contexts = [
                DetectionContext(file_path, c.line_numbers, c.snippet) for c in a.detection_contexts
            ]
            out.append(b)
        return out

    def scan_file(self, content: str, file_path: str) -> List[CryptoAsset]:
        futures = [
            (det, self._pool.submit(det.scan, content, file_path))
            for det in self.detectors
        ]
        results: List[List[CryptoAsset]] = [self._external_for(file_path)]
        for det, fut in futures:
            try:
                results.append(fut.result(timeout=self.settings.file_timeout))
            except concurrent.futures.TimeoutError:
                fut.cancel()
                logger.warning(
                    "%s detector timed out after %.1fs on %s", det.kind, self.settings.file_timeout, file_path
                )
            except Exception as e:
                logger.warning("%s detector failed on %s: %s", det.kind, file_path, e)
        merged = merge_detector_results(results)
        for asset in merged:
            classify_asset(asset)
        return merged

    def scan_path(self, path: str | Path) -> List[CryptoAsset]:
        content = read_source(path)
        if content is None:
            return []
        return self.scan_file(content, str(path))
