"""SARIF 2.1.0 writer for code-scanning dashboards.

One rule per distinct (primitive, name), one result per detection context.
URIs are made relative to `base_dir` when given, otherwise stripped of any
drive or leading slash; either way they use forward slashes.
"""

from __future__ import annotations

import hashlib
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from cryptoscope import __version__
from cryptoscope.core.models import CryptoAsset
from cryptoscope.detectors.runner import write_json

SARIF_SCHEMA = "https://json.schemastore.org/sarif-2.1.0.json"
SARIF_SNIPPET_LIMIT = 200

_LEVELS = {"high": "error", "medium": "warning", "low": "note"}
_SECURITY_SEVERITY = {"high": "8.0", "medium": "5.0", "low": "2.0"}


def level_for(severity: Optional[str]) -> str:
    return _LEVELS.get(severity or "", "none")


def security_severity(severity: Optional[str]) -> str:
    return _SECURITY_SEVERITY.get(severity or "", "0.0")


def rule_id(asset: CryptoAsset) -> str:
    name = re.sub(r"[^a-z0-9-]", "-", asset.name.lower())
    return f"crypto/{asset.primitive or 'unknown'}/{name}"


def normalize_uri(file_path: str, base_dir: Optional[str] = None) -> str:
    p = file_path
    if base_dir:
        try:
            p = os.path.relpath(os.path.abspath(file_path), os.path.abspath(base_dir))
        except ValueError:
            # different drive on Windows
            p = file_path
    p = p.replace("\\", "/")
    p = re.sub(r"^[A-Za-z]:/", "", p)
    return p.lstrip("/")


def fingerprint(name: str, file_path: str, line: int) -> str:
    return hashlib.sha256(f"{name}:{file_path}:{line}".encode("utf-8")).hexdigest()[:16]


def _tags(asset: CryptoAsset) -> List[str]:
    tags = ["cryptography", "security"]
    if asset.primitive:
        tags.append(asset.primitive)
    if asset.quantum_safe is False:
        tags += ["quantum-vulnerable", "deprecated"]
    elif asset.quantum_safe is True:
        tags += ["post-quantum", "quantum-safe"]
    if asset.severity == "high":
        tags.append("high-risk")
    return tags


def _help_text(asset: CryptoAsset) -> str:
    parts = [
        f"# {asset.name}\n",
        f"**Type:** {asset.primitive}",
        f"**Quantum-Safe:** {str(asset.quantum_safe).lower()}",
        f"**Risk Score:** {asset.risk_score or 0}/100\n",
    ]
    if asset.reason:
        parts.append(f"## Risk Assessment\n{asset.reason}\n")
    if asset.quantum_safe is False:
        parts.append(
            "## Recommendation\nThis algorithm is vulnerable to quantum computing attacks. "
            "Consider migrating to quantum-resistant alternatives:"
        )
        if asset.primitive == "asymmetric":
            parts.append("- Kyber (key encapsulation)\n- Dilithium (digital signatures)\n- Falcon (compact signatures)")
        elif asset.primitive == "hash":
            parts.append("- SHA-256 or SHA-512 (longer output)\n- SHA3-256 or SHA3-512\n- BLAKE2b")
    return "\n".join(parts) + "\n"


def _message(asset: CryptoAsset) -> str:
    msg = f"{asset.name} cryptographic algorithm detected"
    if asset.quantum_safe is False:
        msg += " (quantum-vulnerable)"
    elif asset.quantum_safe is True:
        msg += " (quantum-safe)"
    if asset.description:
        msg += f": {asset.description}"
    return msg


def build_sarif(assets: Iterable[CryptoAsset], base_dir: Optional[str] = None) -> Dict[str, Any]:
    items = list(assets)
    rules: Dict[str, Dict[str, Any]] = {}
    results: List[Dict[str, Any]] = []

    for a in items:
        rid = rule_id(a)
        if rid not in rules:
            rules[rid] = {
                "id": rid,
                "name": a.name,
                "shortDescription": {"text": f"{a.name} cryptographic algorithm detected"},
                "fullDescription": {"text": a.description or f"{a.name} is a {a.primitive} algorithm"},
                "help": {"text": _help_text(a)},
                "properties": {
                    "tags": _tags(a),
                    "severity": a.severity or "low",
                    "security-severity": security_severity(a.severity),
                },
            }
        for ctx in a.detection_contexts:
            if not ctx.file_path:
                continue
            uri = normalize_uri(ctx.file_path, base_dir)
            first = ctx.first_line or 1
            last = ctx.line_numbers[-1] if ctx.line_numbers else first
            region: Dict[str, Any] = {"startLine": first, "endLine": last}
            if ctx.snippet:
                region["snippet"] = {"text": ctx.snippet[:SARIF_SNIPPET_LIMIT]}
            results.append(
                {
                    "ruleId": rid,
                    "level": level_for(a.severity),
                    "message": {"text": _message(a)},
                    "locations": [
                        {
                            "physicalLocation": {
                                "artifactLocation": {"uri": uri, "uriBaseId": "%SRCROOT%"},
                                "region": region,
                            }
                        }
                    ],
                    "partialFingerprints": {"primaryLocationLineHash": fingerprint(a.name, uri, first)},
                }
            )

    return {
        "version": "2.1.0",
        "$schema": SARIF_SCHEMA,
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": "cryptoscope",
                        "version": __version__,
                        "rules": list(rules.values()),
                    }
                },
                "results": results,
                "properties": {
                    "statistics": {
                        "totalDetected": len(items),
                        "highRisk": sum(1 for a in items if a.severity == "high"),
                        "mediumRisk": sum(1 for a in items if a.severity == "medium"),
                        "lowRisk": sum(1 for a in items if a.severity == "low"),
                        "quantumSafe": sum(1 for a in items if a.quantum_safe is True),
                        "quantumVulnerable": sum(1 for a in items if a.quantum_safe is False),
                    }
                },
            }
        ],
    }


def write_sarif(assets: Iterable[CryptoAsset], out_path: str | Path, base_dir: Optional[str] = None) -> Path:
    return write_json(out_path, build_sarif(assets, base_dir))
