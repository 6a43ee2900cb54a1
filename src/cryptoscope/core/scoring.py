"""Risk scoring for detected crypto assets.

assign_risk(quantum_safe, primitive_type, name) -> RiskResult combines a
per-algorithm base score, a quantum-safety adjustment and a small primitive
adjustment, clamps to 0..100 and buckets into low/medium/high.
"""

from typing import Optional, Tuple

from .models import PARTIAL, CryptoAsset, QuantumSafe, RiskResult

# (substrings, base) - first tier that matches wins
_BASE_TIERS: Tuple[Tuple[Tuple[str, ...], int], ...] = (
    (("md5", "sha1", "des", "rc4"), 95),  # broken
    (("rsa", "ecdsa"), 80),  # classical asymmetric, Shor-vulnerable
    (("aes", "sha256", "sha512"), 50),  # sound today
    (("kyber", "dilithium", "falcon", "sphincs"), 20),  # post-quantum
)
_DEFAULT_BASE = 50

HIGH_THRESHOLD = 75
MEDIUM_THRESHOLD = 45


def base_score(name: str) -> int:
    n = (name or "").lower()
    for needles, score in _BASE_TIERS:
        if any(s in n for s in needles):
            return score
    return _DEFAULT_BASE


def quantum_adjustment(quantum_safe: Optional[QuantumSafe]) -> int:
    # `is` checks: 1 == True must not count as quantum-safe
    if quantum_safe is False:
        return 20
    if quantum_safe is True:
        return -10
    if quantum_safe == PARTIAL:
        return 10
    return 0


def primitive_adjustment(primitive_type: str) -> int:
    t = (primitive_type or "").lower()
    if "cipher" in t or "encryption" in t:
        return 5
    elif "signature" in t or "keygen" in t:
        return 10
    elif "hash" in t:
        return -5
    return 0


def severity_for(score: int) -> str:
    if score >= HIGH_THRESHOLD:
        return "high"
    if score >= MEDIUM_THRESHOLD:
        return "medium"
    return "low"


def assign_risk(
    quantum_safe: Optional[QuantumSafe], primitive_type: str, name: str
) -> RiskResult:
    """Score one algorithm.

    >>> assign_risk(False, "asymmetric", "RSA").score
    100
    >>> assign_risk("partial", "hash", "SHA256")
    RiskResult(severity='medium', score=55, explanation='base 50 (SHA256), quantum partial +10, primitive hash -5')
    """
    base = base_score(name)
    q = quantum_adjustment(quantum_safe)
    p = primitive_adjustment(primitive_type)
    score = max(0, min(100, base + q + p))
    qs_label = "unknown" if quantum_safe is None else str(quantum_safe).lower()
    explanation = (
        f"base {base} ({name}), quantum {qs_label} {q:+d}, "
        f"primitive {primitive_type or 'unknown'} {p:+d}"
    )
    if score != base + q + p:
        explanation += f", clamped to {score}"
    return RiskResult(severity=severity_for(score), score=score, explanation=explanation)


def classify_asset(asset: CryptoAsset) -> CryptoAsset:
    """Write severity, risk_score and reason onto `asset` and return it."""
    res = assign_risk(asset.quantum_safe, asset.primitive, asset.name)
    asset.severity = res.severity
    asset.risk_score = res.score
    asset.reason = res.explanation
    return asset
