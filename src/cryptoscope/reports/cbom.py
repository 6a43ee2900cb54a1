"""CycloneDX 1.6 Cryptographic Bill of Materials writer."""

from __future__ import annotations

import datetime
import os
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from cryptoscope import __version__
from cryptoscope.core.models import PARTIAL, CryptoAsset
from cryptoscope.detectors.runner import write_json

_PRIMITIVE_MAP = {
    "hash": "hash",
    "symmetric": "ae",
    "cipher": "ae",
    "asymmetric": "pke",
    "mac": "mac",
    "post-quantum": "pke",
    "pqc": "pke",
    "signature": "signature",
    "kdf": "kdf",
    "other": "other",
}

_FUNCTION_MAP = {
    "hash": "digest",
    "symmetric": "encrypt",
    "cipher": "encrypt",
    "asymmetric": "keygen",
    "post-quantum": "keygen",
    "mac": "tag",
    "signature": "sign",
    "kdf": "keyderive",
}

_ASSET_TYPES = ("algorithm", "certificate", "protocol", "related-crypto-material")


def map_primitive(primitive: str) -> str:
    return _PRIMITIVE_MAP.get((primitive or "").lower(), "other")


def map_crypto_function(primitive: str) -> str:
    return _FUNCTION_MAP.get((primitive or "").lower(), "unknown")


def map_asset_type(asset_type: str) -> str:
    if asset_type in _ASSET_TYPES:
        return asset_type
    # keys and libraries have no CycloneDX asset type of their own
    return "related-crypto-material" if asset_type == "key" else "algorithm"


def quantum_mode(quantum_safe: Any) -> str:
    if quantum_safe is True:
        return "pqc-secure"
    if quantum_safe == PARTIAL:
        return "hybrid"
    return "classical"


def _component(asset: CryptoAsset, idx: int) -> Dict[str, Any]:
    qs = asset.quantum_safe
    return {
        "bom-ref": f"crypto-asset-{idx}",
        "type": "cryptographic-asset",
        "name": asset.name,
        "description": asset.description or f"{asset.primitive} cryptographic algorithm",
        "cryptoProperties": {
            "assetType": map_asset_type(asset.asset_type),
            "algorithmProperties": {
                "primitive": map_primitive(asset.primitive),
                "mode": quantum_mode(qs),
                "cryptoFunctions": [map_crypto_function(asset.primitive)],
            },
        },
        "quantumSafe": qs,
        "severity": asset.severity,
        "riskScore": asset.risk_score,
        "properties": [
            {"name": "quantum-safe", "value": str(qs).lower()},
            {"name": "severity", "value": asset.severity or "unknown"},
            {"name": "risk-score", "value": str(asset.risk_score or 0)},
            {"name": "occurrences", "value": str(asset.occurrences)},
            {"name": "detected-by", "value": ",".join(asset.detected_by)},
        ],
        "evidence": {
            "occurrences": [
                {
                    "location": ctx.file_path,
                    "lineNumbers": list(ctx.line_numbers),
                    "line": ctx.first_line,
                    "snippet": ctx.snippet,
                }
                for ctx in asset.detection_contexts
            ]
        },
    }


def build_cbom(
    assets: Iterable[CryptoAsset],
    project_name: str = "project",
    timestamp: Optional[str] = None,
    serial: Optional[str] = None,
) -> Dict[str, Any]:
    """Return the CBOM document as a plain dict (JSON-serializable)."""
    serial = serial or f"urn:uuid:{uuid.uuid4()}"
    ts = timestamp or datetime.datetime.now(datetime.timezone.utc).isoformat()
    return {
        "bomFormat": "CycloneDX",
        "specVersion": "1.6",
        "serialNumber": serial,
        "version": 1,
        "metadata": {
            "timestamp": ts,
            "tools": {
                "components": [{"type": "application", "name": "cryptoscope", "version": __version__}]
            },
            "component": {
                "type": "application",
                "bom-ref": serial,
                "name": project_name,
                "description": "Cryptographic Bill of Materials for project",
            },
        },
        "components": [_component(a, i) for i, a in enumerate(assets)],
    }


def write_cbom(assets: Iterable[CryptoAsset], out_path: str | Path, project_name: Optional[str] = None) -> Path:
    p = Path(out_path)
    name = project_name or os.path.basename(os.path.abspath(str(p.parent)))
    return write_json(p, build_cbom(assets, project_name=name))
