from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from cryptoscope.core.models import SNIPPET_LIMIT, AlgorithmRule, CryptoAsset, collapse_snippet
from cryptoscope.core.patterns import RulePattern, compile_rule_pattern, find_all_offsets
from cryptoscope.core.positions import LineIndex

logger = logging.getLogger(__name__)

DEFAULT_SNIPPET_RADIUS = 80

__all__ = [
    "BaseDetector",
    "RulePattern",
    "compile_rule_pattern",
    "compiled_rules",
    "find_all_offsets",
    "line_text",
    "make_asset_id",
    "read_source",
    "snippet_at",
]


def snippet_at(text: str, offset: int, radius: int = DEFAULT_SNIPPET_RADIUS) -> str:
    """Text around `offset`, newlines collapsed, trimmed, capped at SNIPPET_LIMIT."""
    start = max(0, offset - radius)
    end = min(len(text), offset + radius)
    return collapse_snippet(text[start:end]).strip()[:SNIPPET_LIMIT]


def line_text(text: str, line: int, index: Optional[LineIndex] = None) -> str:
    """The 1-based `line` of `text` (without newline), or "".

    Lines are split on "\\n" only, the same way LineIndex numbers them.
    """
    idx = index if index is not None else LineIndex(text)
    span = idx.span(line)
    if span is None:
        return ""
    start, end = span
    return text[start:end].rstrip("\r\n")

def normalize_name(name: str) -> str:
    return name.strip().lower().replace(" ", "-")


def make_asset_id(kind: str, name: str, line: int | None = None) -> str:
    """`<kind>:<name>` or `<kind>:<name>-<line>` for per-line findings."""
    base = f"{kind}:{normalize_name(name)}"
    return base if line is None else f"{base}-{line}"


class BaseDetector:
    """Detector contract.

    Implementations provide `scan(text, file_path)` returning CryptoAsset
    objects for one file. `scan_path` and `scan_files` read files for you;
    a file that cannot be read or decoded is logged and skipped.
    """

    kind = "base"

    def scan(self, text: str, file_path: str) -> List[CryptoAsset]:
        raise NotImplementedError()

    def scan_path(self, path: str | Path) -> List[CryptoAsset]:
        text = read_source(path)
        if text is None:
            return []
        return self.scan(text, str(path))

    def scan_files(self, files: Iterable[str]) -> Iterable[CryptoAsset]:
        for p in files:
            for asset in self.scan_path(p):
                yield asset


def read_source(path: str | Path) -> str | None:
    """Read a source file as strict UTF-8; None (with a warning) on failure."""
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning("skipping unreadable file %s: %s", path, e)
        return None


def compiled_rules(rules: Sequence[AlgorithmRule]) -> Tuple[RulePattern, ...]:
    return tuple(RulePattern(r) for r in rules)
