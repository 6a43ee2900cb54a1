from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from cryptoscope.core.kb import RuleDatabase, classify_algorithm
from cryptoscope.core.models import CryptoAsset, DetectionContext, collapse_snippet
from cryptoscope.errors import ExternalAnalyzerError

from .adapter import make_asset_id

logger = logging.getLogger(__name__)

EXTERNAL_SNIPPET_LIMIT = 200

_MESSAGE_RX = re.compile(r"(?:algorithm|cipher|hash):\s*([A-Z0-9-]+)", re.IGNORECASE)
_RULE_ID_RX = re.compile(r"crypto[/.\-]([a-z0-9-]+)", re.IGNORECASE)


def extract_algorithm_name(
    message: str, rule_id: str, properties: Optional[Dict[str, Any]] = None
) -> str:
    """Algorithm name for an external finding.

    Tries the rule's `algorithmName`/`algorithm` property, then an
    `algorithm: X` style phrase in the message, then a `crypto/x` rule id.
    """
    props = properties or {}
    for k in ("algorithmName", "algorithm"):
        v = props.get(k)
        if isinstance(v, str) and v.strip():
            return v.strip()
    m = _MESSAGE_RX.search(message or "")
    if m:
        return m.group(1)
    m = _RULE_ID_RX.search(rule_id or "")
    if m:
        return m.group(1).upper()
    return "Unknown"


def _uri_to_path(uri: str) -> str:
    if uri.startswith("file://"):
        uri = uri[len("file://") :]
    return uri


class BaseAnalyzer:
    """External static-analysis source.

    `analyze(repo_path, language)` returns CryptoAsset objects with file paths
    as reported by the tool (usually relative to `repo_path`). Failures raise
    ExternalAnalyzerError; callers fall back to the built-in detectors.
    """

    kind = "external"

    def __init__(self, rules: Optional[RuleDatabase] = None):
        self.rules = rules

    def analyze(self, repo_path: str, language: Optional[str] = None) -> List[CryptoAsset]:
        raise NotImplementedError()

    def make_asset(
        self, name: str, file_path: str, line: int, snippet: str, description: str
    ) -> CryptoAsset:
        rule = self.rules.find(name) if self.rules is not None else None
        if rule is not None:
            name, primitive, qs = rule.name, rule.primitive, rule.quantum_safe
            description = description or rule.description
        else:
            primitive, qs = classify_algorithm(name)
        return CryptoAsset(
            id=make_asset_id(self.kind, name, line),
            name=name,
            primitive=primitive,
            quantum_safe=qs,
            description=description,
            occurrences=1,
            detection_contexts=[
                DetectionContext(
                    file_path, (line,), collapse_snippet(snippet or "", EXTERNAL_SNIPPET_LIMIT)
                )
            ],
            detected_by=[self.kind],
        )

    def dedupe(self, assets: Iterable[CryptoAsset]) -> List[CryptoAsset]:
        seen: Set[Tuple[str, str, int]] = set()
        out = []
        for a in assets:
            ctx = a.first_context
            key = (a.name.lower(), ctx.file_path if ctx else "", ctx.first_line if ctx else 0)
            if key in seen:
                continue
            seen.add(key)
            out.append(a)
        return out


def parse_sarif_results(sarif: Dict[str, Any], analyzer: BaseAnalyzer) -> List[CryptoAsset]:
    """Convert a SARIF 2.1.0 document into CryptoAsset objects."""
    found = []
    for run in sarif.get("runs") or []:
        driver = ((run.get("tool") or {}).get("driver")) or {}
        rules = {r.get("id"): r for r in driver.get("rules") or [] if isinstance(r, dict)}
        for result in run.get("results") or []:
            rule_id = result.get("ruleId") or ""
            rule = rules.get(rule_id) or {}
            message = (result.get("message") or {}).get("text") or ""
            name = extract_algorithm_name(message, rule_id, rule.get("properties"))
            for loc in result.get("locations") or []:
                phys = loc.get("physicalLocation") or {}
                uri = (phys.get("artifactLocation") or {}).get("uri")
                region = phys.get("region") or {}
                line = region.get("startLine")
                if not uri or not isinstance(line, int):
                    continue
                snippet = (region.get("snippet") or {}).get("text") or ""
                found.append(analyzer.make_asset(name, _uri_to_path(uri), line, snippet, message))
    return analyzer.dedupe(found)


def parse_semgrep_results(parsed: Any, analyzer: BaseAnalyzer) -> List[CryptoAsset]:
    """Convert `semgrep --json` output into CryptoAsset objects."""
    # semgrep JSON is normally {"results": [...]}; some wrappers emit the list
    if isinstance(parsed, dict):
        results = parsed.get("results")
        if isinstance(results, dict):
            results = results.get("results")
    elif isinstance(parsed, list):
        results = parsed
    else:
        results = None
    if not isinstance(results, list):
        raise ExternalAnalyzerError("semgrep output has no results list")

    found = []
    for r in results:
        if not isinstance(r, dict):
            continue
        path = r.get("path")
        start = r.get("start") or {}
        line = start.get("line")
        if not path or not isinstance(line, int):
            continue
        extra = r.get("extra") or {}
        check_id = r.get("check_id") or r.get("rule_id") or ""
        message = extra.get("message") or ""
        lines = extra.get("lines")
        if isinstance(lines, (list, tuple)):
            lines = "\n".join(lines)
        name = extract_algorithm_name(message, check_id, extra.get("metadata"))
        found.append(analyzer.make_asset(name, path, line, lines or "", message))
    return analyzer.dedupe(found)


class SemgrepAnalyzer(BaseAnalyzer):
    """Runs the `semgrep` CLI over a repository and normalizes its JSON."""

    kind = "semgrep"

    def __init__(
        self,
        rules: Optional[RuleDatabase] = None,
        config: str = "auto",
        timeout: Optional[float] = 600.0,
    ):
        super().__init__(rules)
        self.config = config
        self.timeout = timeout

    def build_command(self, repo_path: str, language: Optional[str] = None) -> List[str]:
        cmd = ["semgrep", "--json", "--quiet", "--config", self.config]
        if language:
            cmd += ["--lang", language]
        return cmd + [repo_path]

    def analyze(self, repo_path: str, language: Optional[str] = None) -> List[CryptoAsset]:
        if shutil.which("semgrep") is None:
            raise ExternalAnalyzerError("semgrep CLI not found on PATH")
        cmd = self.build_command(repo_path, language)
        logger.info("running %s", " ".join(cmd))
        try:
            out = subprocess.check_output(cmd, stderr=subprocess.DEVNULL, timeout=self.timeout)
        except (OSError, subprocess.SubprocessError) as e:
            raise ExternalAnalyzerError(f"semgrep failed: {e}") from e
        try:
            parsed = json.loads(out.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise ExternalAnalyzerError(f"semgrep produced invalid JSON: {e}") from e
        assets = parse_semgrep_results(parsed, self)
        logger.info("semgrep reported %d crypto findings", len(assets))
        return assets


class SarifFileAnalyzer(BaseAnalyzer):
    """Imports findings from an existing SARIF file, e.g. CodeQL output."""

    kind = "codeql"

    def __init__(self, sarif_path: str, rules: Optional[RuleDatabase] = None):
        super().__init__(rules)
        self.sarif_path = sarif_path

    def analyze(self, repo_path: str, language: Optional[str] = None) -> List[CryptoAsset]:
        try:
            data = json.loads(Path(self.sarif_path).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise ExternalAnalyzerError(f"cannot read SARIF {self.sarif_path}: {e}") from e
        if not isinstance(data, dict):
            raise ExternalAnalyzerError(f"{self.sarif_path} is not a SARIF document")
        assets = parse_sarif_results(data, self)
        logger.info("imported %d findings from %s", len(assets), os.path.basename(self.sarif_path))
        return assets
