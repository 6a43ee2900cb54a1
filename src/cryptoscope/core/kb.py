# core/kb.py
"""Rule database: the table of known cryptographic algorithms.

The table lives in `rules/crypto_rules.yaml` next to this module and is
loaded once, explicitly, with `load_rule_database()`. A bad table is a
setup error (`RuleDatabaseError`), never something a detector discovers
halfway through a scan.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

import yaml

from cryptoscope.core.models import (
    UNKNOWN,
    AlgorithmRule,
    QuantumSafe,
    normalize_quantum_safe,
)
from cryptoscope.core.patterns import RulePattern
from cryptoscope.errors import RuleDatabaseError
from cryptoscope.validation import schema_errors

logger = logging.getLogger(__name__)

GENERIC = "generic"

DEFAULT_RULES_PATH = Path(__file__).resolve().parent / "rules" / "crypto_rules.yaml"

# extension -> language key
_EXT_LANG: Dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".java": "java",
    ".c": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".hh": "cpp",
    ".h": "cpp",
    ".go": "go",
}

# no grammar; only the lexical detector runs on these
_LEXICAL_EXT_LANG: Dict[str, str] = {
    ".rs": "rust",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "csharp",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".swift": "swift",
    ".scala": "scala",
    ".sol": "solidity",
}

OTHER_LANGUAGE = "other"
DEFAULT_SOURCE_EXTENSIONS: Tuple[str, ...] = tuple(sorted(set(_EXT_LANG) | set(_LEXICAL_EXT_LANG)))


def language_for_path(path: Union[str, Path]) -> Optional[str]:
    """Return the language key for a source path, or None if unsupported."""
    return _EXT_LANG.get(os.path.splitext(str(path))[1].lower())


def supported_extensions() -> List[str]:
    return sorted(_EXT_LANG)


def source_language(path: Union[str, Path]) -> Optional[str]:
    """Grammar language key, else the name of a lexical-only language, else None."""
    ext = os.path.splitext(str(path))[1].lower()
    return _EXT_LANG.get(ext) or _LEXICAL_EXT_LANG.get(ext)


class RuleDatabase:
    """Immutable set of AlgorithmRule objects with per-language views."""

    def __init__(self, rules: Iterable[AlgorithmRule], languages: Iterable[str] = ()):
        self._rules: Tuple[AlgorithmRule, ...] = tuple(rules)
        self._languages = tuple(languages)
        self._by_name: Dict[str, AlgorithmRule] = {}
        for r in self._rules:
            self._by_name[r.name.lower()] = r
        # variants resolve only when nothing owns them as a canonical name
        for r in self._rules:
            for pat in r.patterns:
                self._by_name.setdefault(pat.lower(), r)
        self._views: Dict[str, List[AlgorithmRule]] = {}

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self):
        return iter(self._rules)

    @property
    def rules(self) -> Tuple[AlgorithmRule, ...]:
        return self._rules

    def languages(self) -> Tuple[str, ...]:
        return self._languages

    def lookup(self, language_key: str) -> List[AlgorithmRule]:
        """Rules applicable to `language_key`.

        "generic" returns every rule (used by the lexical detector). A known
        language returns the rules that carry API signatures for it. Anything
        else returns an empty list.
        """
        key = (language_key or "").lower()
        if key == GENERIC:
            return list(self._rules)
        if key not in self._languages:
            return []
        view = self._views.get(key)
        if view is None:
            view = [r for r in self._rules if r.signatures_for(key)]
            self._views[key] = view
        return list(view)

    def find(self, name: str) -> Optional[AlgorithmRule]:
        """Case-insensitive lookup by canonical name or pattern variant."""
        if not name:
            return None
        s = name.strip().lower()
        hit = self._by_name.get(s)
        if hit is None:
            # "SHA-256" vs "sha256", "AES_256" vs "aes-256"
            hit = self._by_name.get(s.replace("-", "").replace("_", ""))
        return hit


def _words(value: Any) -> Tuple[str, ...]:
    return tuple(str(v).strip() for v in value or ())


def _parse_rule(raw: Dict[str, Any], languages: Tuple[str, ...]) -> AlgorithmRule:
    name = str(raw["name"]).strip()
    sigs: Dict[str, Tuple[str, ...]] = {}
    for lang, lst in (raw.get("api_signatures") or {}).items():
        lang_key = str(lang).lower()
        if languages and lang_key not in languages:
            raise RuleDatabaseError(f"rule {name!r}: unknown language {lang!r}")
        sigs[lang_key] = _words(lst)
    return AlgorithmRule(
        name=name,
        primitive=raw["primitive"],
        quantum_safe=normalize_quantum_safe(raw.get("quantum_safe")),
        patterns=_words(raw["patterns"]),
        description=str(raw.get("description") or ""),
        api_signatures=sigs,
        excludes=_words(raw.get("excludes")),
    )


def validate_rules(rules: Iterable[AlgorithmRule]) -> None:
    """Raise RuleDatabaseError on duplicate names or overlapping patterns.

    Two rules of the same primitive may not share a pattern variant, and no
    variant of one rule may be matched by another rule of the same
    primitive (after that rule's exclusions), otherwise one literal would
    be reported as two algorithms.
    """
    rules = list(rules)
    names = set()
    owners: Dict[Tuple[str, str], str] = {}
    for r in rules:
        n = r.name.lower()
        if n in names:
            raise RuleDatabaseError(f"duplicate rule name {r.name!r}")
        names.add(n)
        for pat in r.patterns:
            k = (r.primitive, pat.lower())
            other = owners.get(k)
            if other is not None and other != r.name:
                raise RuleDatabaseError(
                    f"pattern {pat!r} shared by {other!r} and {r.name!r} ({r.primitive})"
                )
            owners[k] = r.name

    matchers = [RulePattern(r) for r in rules]
    for r in rules:
        for m in matchers:
            if m.rule is r or m.rule.primitive != r.primitive:
                continue
            for pat in r.patterns:
                if m.search(pat):
                    raise RuleDatabaseError(
                        f"pattern {pat!r} of {r.name!r} overlaps {m.rule.name!r} ({r.primitive});"
                        f" add it to the excludes of {m.rule.name!r}"
                    )


def rules_from_data(data: Any) -> RuleDatabase:
    """Build a validated RuleDatabase from already-parsed YAML/JSON data."""
    errors = schema_errors("crypto_rules", data)
    if errors:
        raise RuleDatabaseError("invalid rule file: " + "; ".join(errors))
    languages = tuple(str(x).lower() for x in (data.get("languages") or ()))
    rules = [_parse_rule(r, languages) for r in data["algorithms"]]
    validate_rules(rules)
    if not languages:
        # infer from the signatures actually present
        seen: Dict[str, None] = {}
        for r in rules:
            for lang in r.api_signatures:
                seen.setdefault(lang, None)
        languages = tuple(seen)
    return RuleDatabase(rules, languages)


def load_rule_database(path: Optional[Union[str, Path]] = None) -> RuleDatabase:
    """Load and validate the rule table (YAML or JSON). Call once at startup."""
    p = Path(path) if path else DEFAULT_RULES_PATH
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise RuleDatabaseError(f"cannot read rule file {p}: {e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise RuleDatabaseError(f"cannot parse rule file {p}: {e}") from e
    db = rules_from_data(data)
    logger.debug("loaded %d algorithm rules from %s", len(db), p)
    return db


# Fallback tiers for names that are not in the table (external findings).
_CLASSIFY_TIERS: Tuple[Tuple[re.Pattern, str, QuantumSafe], ...] = (
    (re.compile(r"kyber|dilithium|falcon|sphincs|ntru|mceliece|ml-kem|ml-dsa|slh-dsa", re.I), "post-quantum", True),
    (re.compile(r"md5|sha-?1\b|\bdes\b|3des|rc4|rc2", re.I), "hash", False),
    (re.compile(r"rsa|ecdsa|ecdh|ed25519|dsa|\bdh\b|diffie", re.I), "asymmetric", False),
    (re.compile(r"aes|chacha|salsa|blowfish|camellia", re.I), "symmetric", "partial"),
    (re.compile(r"sha|blake|keccak|ripemd", re.I), "hash", "partial"),
    (re.compile(r"hmac|cmac|poly1305", re.I), "mac", "partial"),
)


def classify_algorithm(name: str) -> Tuple[str, QuantumSafe]:
    """Best-effort (primitive, quantum_safe) for a name not in the table."""
    for rx, primitive, qs in _CLASSIFY_TIERS:
        if rx.search(name or ""):
            if qs is False and primitive == "hash" and re.search(r"des|rc[24]", name, re.I):
                # broken ciphers share the "broken" tier with broken hashes
                return "symmetric", False
            return primitive, qs
    return "other", UNKNOWN
