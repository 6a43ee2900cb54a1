"""Whole-word name matching for rule patterns.

Shared by the rule loader (overlap checks) and every detector, so a name
is recognised the same way everywhere.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

from cryptoscope.core.models import AlgorithmRule

# (?<!\w) / (?!\w) behave like \b for word characters and still work for
# variants ending in punctuation such as "sphincs+"
_LEFT = r"(?<!\w)"
_RIGHT = r"(?!\w)"


def compile_literals(words: Iterable[str]) -> re.Pattern:
    """One case-insensitive whole-word alternation, longest literal first."""
    variants = sorted({w for w in words if w}, key=lambda w: (-len(w), w))
    body = "|".join(re.escape(v) for v in variants)
    return re.compile(f"{_LEFT}(?:{body}){_RIGHT}", re.IGNORECASE)


def compile_rule_pattern(rule: AlgorithmRule) -> re.Pattern:
    """Alternation of the rule's literal variants.

    Longest variants come first so "aes-256-gcm" wins over "aes".
    """
    return compile_literals(rule.patterns)


def find_all_offsets(rx: re.Pattern, text: str) -> List[int]:
    """Start offsets of every non-overlapping match.

    Advances the cursor by one on an empty match so a degenerate pattern
    cannot spin forever.
    """
    out: List[int] = []
    pos = 0
    n = len(text)
    while pos <= n:
        m = rx.search(text, pos)
        if m is None:
            break
        out.append(m.start())
        pos = m.end() if m.end() > m.start() else m.start() + 1
    return out


class RulePattern:
    """Compiled matcher for one rule.

    A hit that falls inside a match of one of the rule's `excludes` is
    dropped: "des" inside "des-ede3-cbc", "dsa" inside "ML-DSA-65".
    """

    def __init__(self, rule: AlgorithmRule):
        self.rule = rule
        self.rx = compile_rule_pattern(rule)
        self.exclude_rx: Optional[re.Pattern] = (
            compile_literals(rule.excludes) if rule.excludes else None
        )

    def _excluded_spans(self, text: str) -> List[Tuple[int, int]]:
        if self.exclude_rx is None:
            return []
        return [m.span() for m in self.exclude_rx.finditer(text)]

    def offsets(self, text: str) -> List[int]:
        found = find_all_offsets(self.rx, text)
        if not found or self.exclude_rx is None:
            return found
        spans = self._excluded_spans(text)
        return [o for o in found if not any(s <= o < e for s, e in spans)]

    def search(self, text: str) -> bool:
        return bool(self.offsets(text))

    def __repr__(self) -> str:
        return f"RulePattern({self.rule.name!r})"
