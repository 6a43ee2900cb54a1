from __future__ import annotations

import importlib
import logging
import threading
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Sequence, Set, Tuple

from cryptoscope.core.kb import RuleDatabase, language_for_path
from cryptoscope.core.models import (
    SNIPPET_LIMIT,
    AlgorithmRule,
    CryptoAsset,
    DetectionContext,
    collapse_snippet,
)
from cryptoscope.core.positions import LineIndex
from cryptoscope.errors import DetectionError, GrammarInitError

from .adapter import (
    DEFAULT_SNIPPET_RADIUS,
    BaseDetector,
    RulePattern,
    line_text,
    make_asset_id,
    snippet_at,
)
from .tree_sitter_utils import (
    arguments_text,
    callee_matches,
    callee_text,
    is_token,
    iter_nodes,
    node_text,
)

logger = logging.getLogger(__name__)

# language key -> (grammar module, function returning the language pointer)
GRAMMAR_MODULES: Dict[str, Tuple[str, str]] = {
    "python": ("tree_sitter_python", "language"),
    "javascript": ("tree_sitter_javascript", "language"),
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
    "java": ("tree_sitter_java", "language"),
    "c": ("tree_sitter_c", "language"),
    "cpp": ("tree_sitter_cpp", "language"),
    "go": ("tree_sitter_go", "language"),
}


class GrammarRegistry:
    """Lazily loads tree-sitter grammars, once, for every thread.

    The first caller of `get()`/`available()` imports `tree_sitter` and every
    grammar package under a lock; later callers see the finished table. A
    grammar package that is not installed simply disables that language. A
    `tree_sitter` runtime that cannot be imported raises GrammarInitError,
    and keeps raising the same error on later calls without retrying.
    """

    def __init__(self, modules: Optional[Mapping[str, Tuple[str, str]]] = None):
        self._modules = dict(modules if modules is not None else GRAMMAR_MODULES)
        self._lock = threading.Lock()
        self._languages: Optional[Dict[str, Any]] = None
        self._error: Optional[GrammarInitError] = None
        self._ts: Any = None

    def _load(self) -> None:
        try:
            ts = importlib.import_module("tree_sitter")
        except ImportError as e:
            self._error = GrammarInitError(f"tree_sitter runtime unavailable: {e}")
            raise self._error from e
        langs: Dict[str, Any] = {}
        for key, (mod_name, fn_name) in self._modules.items():
            try:
                mod = importlib.import_module(mod_name)
            except ImportError:
                logger.debug("grammar %s not installed; %s disabled", mod_name, key)
                continue
            try:
                langs[key] = ts.Language(getattr(mod, fn_name)())
            except Exception as e:  # ABI mismatch, missing symbol
                logger.warning("cannot load %s grammar from %s: %s", key, mod_name, e)
        self._ts = ts
        self._languages = langs
        logger.debug("tree-sitter grammars loaded: %s", sorted(langs))

    def ensure_loaded(self) -> Dict[str, Any]:
        if self._languages is None:
            with self._lock:
                if self._error is not None:
                    raise self._error
                if self._languages is None:
                    self._load()
        return self._languages  # type: ignore[return-value]

    def get(self, language: str) -> Any:
        return self.ensure_loaded().get(language)

    def available(self) -> List[str]:
        return sorted(self.ensure_loaded())

    def new_parser(self, language: str) -> Any:
        """A fresh Parser bound to `language`; parsers are never shared."""
        lang = self.get(language)
        if lang is None:
            return None
        return self._ts.Parser(lang)


_default_registry: Optional[GrammarRegistry] = None
_default_lock = threading.Lock()


def default_registry() -> GrammarRegistry:
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = GrammarRegistry()
        return _default_registry


class _Signature(NamedTuple):
    text: str
    self_naming: bool  # names the algorithm itself, e.g. hashlib.md5


class _RuleMatcher(NamedTuple):
    rule: AlgorithmRule
    pattern: RulePattern
    signatures: Tuple[_Signature, ...]


class Hit(NamedTuple):
    rule: AlgorithmRule
    line: int
    snippet: str
    callee: Optional[str]  # set for API-call hits


def _matchers_for(rules: Sequence[AlgorithmRule], language: str) -> Tuple[_RuleMatcher, ...]:
    out = []
    for r in rules:
        pats = [p.lower() for p in r.patterns]
        sigs = tuple(
            _Signature(s, any(p in s.lower() for p in pats)) for s in r.signatures_for(language)
        )
        out.append(_RuleMatcher(r, RulePattern(r), sigs))
    return tuple(out)


def collect_tree_hits(
    root: Any, src: bytes, language: str, matchers: Sequence[_RuleMatcher]
) -> Tuple[Hit, ...]:
    """Walk the whole tree and return one hit per (rule, line).

    Call nodes are checked against API signatures, token nodes against name
    patterns. Lines come from byte offsets, so a token spanning several
    lines (block comment, template string) reports the line of each match.
    """
    index = LineIndex(src)
    found: List[Hit] = []
    seen: Set[Tuple[str, int]] = set()

    for node in iter_nodes(root):
        callee = callee_text(node, src, language)
        if callee:
            args = None
            for m in matchers:
                for sig in m.signatures:
                    if not callee_matches(callee, sig.text):
                        continue
                    if not sig.self_naming:
                        if args is None:
                            args = arguments_text(node, src)
                        if not m.pattern.search(args):
                            continue
                    line = index.line_of(node.start_byte)
                    if (m.rule.name, line) not in seen:
                        seen.add((m.rule.name, line))
                        snippet = collapse_snippet(node_text(node, src), SNIPPET_LIMIT)
                        found.append(Hit(m.rule, line, snippet, callee))
                    break
        if is_token(node) and node.end_byte > node.start_byte:
            text = node_text(node, src)
            for m in matchers:
                for off in m.pattern.offsets(text):
                    byte_off = node.start_byte + len(text[:off].encode("utf-8"))
                    line = index.line_of(byte_off)
                    if (m.rule.name, line) in seen:
                        continue
                    seen.add((m.rule.name, line))
                    found.append(Hit(m.rule, line, "", None))
    return tuple(found)


class TreeSitterDetector(BaseDetector):
    """Syntax-tree detector backed by py-tree-sitter grammars.

    For each supported file: parse, walk every node for API calls and
    algorithm-named tokens, then sweep the raw text with the same rules so
    nothing the lexer can see is missed on a line the tree walk skipped.
    Parse problems are logged and yield no findings; they never raise.
    """

    kind = "ast"
    text_kind = "text"

    def __init__(
        self,
        rules: RuleDatabase,
        registry: Optional[GrammarRegistry] = None,
        snippet_radius: int = DEFAULT_SNIPPET_RADIUS,
        strict_parse: bool = True,
    ):
        self.db = rules
        self.registry = registry or default_registry()
        self.snippet_radius = snippet_radius
        self.strict_parse = strict_parse
        self._matchers: Dict[str, Tuple[_RuleMatcher, ...]] = {
            lang: _matchers_for(rules.lookup(lang), lang) for lang in rules.languages()
        }

    def supports(self, language: Optional[str]) -> bool:
        return bool(language and self._matchers.get(language) and self.registry.get(language))

    def parse(self, src: bytes, file_path: str, language: str) -> Any:
        """Return the root node, raising DetectionError on parse failure."""
        parser = self.registry.new_parser(language)
        if parser is None:
            raise DetectionError(file_path, f"no grammar for {language}")
        try:
            tree = parser.parse(src)
        except Exception as e:
            raise DetectionError(file_path, f"parse failed: {e}") from e
        root = getattr(tree, "root_node", None)
        if root is None:
            raise DetectionError(file_path, "parser returned no tree")
        if self.strict_parse and getattr(root, "has_error", False):
            raise DetectionError(file_path, "syntax errors in file")
        return root

    def scan(self, text: str, file_path: str, language: Optional[str] = None) -> List[CryptoAsset]:
        lang = language or language_for_path(file_path)
        if not self.supports(lang):
            return []
        matchers = self._matchers[lang]
        src = text.encode("utf-8")
        try:
            root = self.parse(src, file_path, lang)
        except DetectionError as e:
            logger.warning("%s", e)
            return []

        hits = collect_tree_hits(root, src, lang, matchers)
        index = LineIndex(text)
        out = [self._asset(h, text, file_path, index) for h in hits]
        seen = {(h.rule.name, h.line) for h in hits}
        out.extend(self._text_sweep(text, file_path, matchers, seen, index))
        logger.debug("ast: %d assets (%d from tree) in %s", len(out), len(hits), file_path)
        return out

    def _asset(self, hit: Hit, text: str, file_path: str, index: LineIndex) -> CryptoAsset:
        r = hit.rule
        snippet = hit.snippet or collapse_snippet(line_text(text, hit.line, index).strip(), SNIPPET_LIMIT)
        desc = f"Detected via API call {hit.callee}()" if hit.callee else r.description
        return CryptoAsset(
            id=make_asset_id(self.kind, r.name, hit.line),
            name=r.name,
            primitive=r.primitive,
            quantum_safe=r.quantum_safe,
            description=desc,
            occurrences=1,
            detection_contexts=[DetectionContext(file_path, (hit.line,), snippet)],
            detected_by=[self.kind],
        )

    def _text_sweep(
        self,
        text: str,
        file_path: str,
        matchers: Sequence[_RuleMatcher],
        seen: Set[Tuple[str, int]],
        index: LineIndex,
    ) -> List[CryptoAsset]:
        seen = set(seen)
        out: List[CryptoAsset] = []
        for m in matchers:
            for off in m.pattern.offsets(text):
                line = index.line_of(off)
                if (m.rule.name, line) in seen:
                    continue
                seen.add((m.rule.name, line))
                out.append(
                    CryptoAsset(
                        id=make_asset_id(self.text_kind, m.rule.name, line),
                        name=m.rule.name,
                        primitive=m.rule.primitive,
                        quantum_safe=m.rule.quantum_safe,
                        description=m.rule.description,
                        occurrences=1,
                        detection_contexts=[
                            DetectionContext(
                                file_path, (line,), snippet_at(text, off, self.snippet_radius)
                            )
                        ],
                        detected_by=[self.kind],
                    )
                )
        return out
