"""Core data models for detection results.

AlgorithmRule: immutable descriptor for one known crypto algorithm.
DetectionContext: where (file, lines) and how (snippet) an asset was seen.
CryptoAsset: the canonical finding every detector produces and merges into.
RiskResult: output of the risk classifier.
LanguageStats / WorkspaceMatrix: per-language file and byte counts for a scan.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

PRIMITIVES = ("hash", "symmetric", "asymmetric", "mac", "post-quantum", "other")
ASSET_TYPES = ("algorithm", "library", "key", "certificate")
SEVERITIES = ("low", "medium", "high")

PARTIAL = "partial"
UNKNOWN = "unknown"

# True | False | "partial" | "unknown"
QuantumSafe = Union[bool, str]

SNIPPET_LIMIT = 300


def normalize_quantum_safe(value: Any) -> QuantumSafe:
    """Coerce a raw value (YAML bool, string, None) into the tri-state form."""
    if isinstance(value, bool):
        return value
    if value is None:
        return UNKNOWN
    s = str(value).strip().lower()
    if s in ("true", "yes", "safe"):
        return True
    if s in ("false", "no", "vulnerable"):
        return False
    if s == PARTIAL:
        return PARTIAL
    return UNKNOWN


def collapse_snippet(text: str, limit: int = SNIPPET_LIMIT) -> str:
    """Replace newlines with spaces and cut to `limit` characters."""
    return text.replace("\r\n", " ").replace("\n", " ").replace("\r", " ")[:limit]


@dataclass(frozen=True)
class AlgorithmRule:
    name: str                          # canonical display name, e.g. "SHA256"
    primitive: str                     # one of PRIMITIVES
    quantum_safe: QuantumSafe
    patterns: Tuple[str, ...]          # literal name variants, matched whole-word
    description: str = ""
    api_signatures: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    excludes: Tuple[str, ...] = ()     # longer names whose hits are not this rule

    def signatures_for(self, language: str) -> Tuple[str, ...]:
        return tuple(self.api_signatures.get(language, ()))

    @property
    def key(self) -> str:
        return self.name.lower().replace(" ", "-")


@dataclass(frozen=True)
class DetectionContext:
    file_path: str
    line_numbers: Tuple[int, ...]
    snippet: str = ""

    @property
    def first_line(self) -> int:
        return self.line_numbers[0] if self.line_numbers else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filePath": self.file_path,
            "lineNumbers": list(self.line_numbers),
            "snippet": self.snippet,
        }


@dataclass
class CryptoAsset:
    """One detected cryptographic asset.

    `occurrences` always equals the number of line numbers summed over
    `detection_contexts`; merge helpers in `detectors.merge` keep it that way.
    """

    id: str
    name: str
    primitive: str
    quantum_safe: QuantumSafe
    asset_type: str = "algorithm"
    description: str = ""
    occurrences: int = 0
    detection_contexts: List[DetectionContext] = field(default_factory=list)
    detected_by: List[str] = field(default_factory=list)
    severity: Optional[str] = None
    risk_score: Optional[int] = None
    reason: Optional[str] = None

    @property
    def first_context(self) -> Optional[DetectionContext]:
        return self.detection_contexts[0] if self.detection_contexts else None

    def line_count(self) -> int:
        return sum(len(c.line_numbers) for c in self.detection_contexts)

    def copy(self) -> "CryptoAsset":
        return CryptoAsset(
            id=self.id,
            name=self.name,
            primitive=self.primitive,
            quantum_safe=self.quantum_safe,
            asset_type=self.asset_type,
            description=self.description,
            occurrences=self.occurrences,
            detection_contexts=list(self.detection_contexts),
            detected_by=list(self.detected_by),
            severity=self.severity,
            risk_score=self.risk_score,
            reason=self.reason,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "primitive": self.primitive,
            "assetType": self.asset_type,
            "quantumSafe": self.quantum_safe,
            "description": self.description,
            "occurrences": self.occurrences,
            "detectionContexts": [c.to_dict() for c in self.detection_contexts],
            "detectedBy": list(self.detected_by),
            "severity": self.severity,
            "riskScore": self.risk_score,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class RiskResult:
    severity: str
    score: int
    explanation: str


@dataclass
class LanguageStats:
    language: str
    file_count: int = 0
    byte_count: int = 0
    detections: List[CryptoAsset] = field(default_factory=list)


@dataclass
class WorkspaceMatrix:
    stats: Dict[str, LanguageStats] = field(default_factory=dict)
    total_files: int = 0
    total_bytes: int = 0

    @property
    def languages(self) -> List[str]:
        # largest language first
        ordered = sorted(self.stats.values(), key=lambda s: s.byte_count, reverse=True)
        return [s.language for s in ordered]

    @property
    def total_detections(self) -> int:
        return sum(len(s.detections) for s in self.stats.values())

    def add_file(self, language: str, size: int) -> None:
        st = self.stats.setdefault(language, LanguageStats(language=language))
        st.file_count += 1
        st.byte_count += size
        self.total_files += 1
        self.total_bytes += size
