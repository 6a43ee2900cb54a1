"""Lexical detector: whole-word, case-insensitive name matching.

One asset per rule that matches anywhere in the file; the asset carries a
single detection context listing every distinct matching line.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from cryptoscope.core.kb import GENERIC, RuleDatabase
from cryptoscope.core.models import AlgorithmRule, CryptoAsset, DetectionContext
from cryptoscope.core.positions import LineIndex

from .adapter import (
    DEFAULT_SNIPPET_RADIUS,
    BaseDetector,
    compiled_rules,
    make_asset_id,
    snippet_at,
)

logger = logging.getLogger(__name__)


class RegexDetector(BaseDetector):
    kind = "regex"

    def __init__(
        self,
        rules: RuleDatabase | Sequence[AlgorithmRule],
        snippet_radius: int = DEFAULT_SNIPPET_RADIUS,
    ):
        if isinstance(rules, RuleDatabase):
            rules = rules.lookup(GENERIC)
        self._compiled = compiled_rules(rules)
        self.snippet_radius = snippet_radius

    def scan(self, text: str, file_path: str) -> List[CryptoAsset]:
        if not text:
            return []
        index: Optional[LineIndex] = None
        out: List[CryptoAsset] = []
        for matcher in self._compiled:
            rule = matcher.rule
            offsets = matcher.offsets(text)
            if not offsets:
                continue
            if index is None:
                index = LineIndex(text)
            lines = index.lines_of(offsets)
            ctx = DetectionContext(
                file_path=file_path,
                line_numbers=tuple(lines),
                snippet=snippet_at(text, offsets[0], self.snippet_radius),
            )
            out.append(
                CryptoAsset(
                    id=make_asset_id(self.kind, rule.name),
                    name=rule.name,
                    primitive=rule.primitive,
                    quantum_safe=rule.quantum_safe,
                    description=rule.description,
                    occurrences=len(lines),
                    detection_contexts=[ctx],
                    detected_by=[self.kind],
                )
            )
        logger.debug("regex: %d assets in %s", len(out), file_path)
        return out
