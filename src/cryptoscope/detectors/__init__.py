"""Detector package.

Detectors share one small contract (`BaseDetector.scan(text, file_path)`)
so the orchestrator can run lexical, syntax-tree and external sources side
by side and merge their CryptoAsset results.
"""

from .adapter import BaseDetector

__all__ = ["BaseDetector"]
