import threading

import pytest

from cryptoscope.detectors.adapter import BaseDetector
from cryptoscope.detectors.orchestrator import DetectorOrchestrator
from cryptoscope.detectors.regex_detector import RegexDetector
from cryptoscope.detectors.semgrep_adapter import BaseAnalyzer
from cryptoscope.errors import ExternalAnalyzerError, GrammarInitError
from cryptoscope.settings import ScanSettings

SRC = "import hashlib\nh = hashlib.md5(b'x')  # not sha256\n"


class BlockingDetector(BaseDetector):
    kind = "slow"

    def __init__(self):
        self.release = threading.Event()

    def scan(self, text, file_path):
        self.release.wait(5)
        return []


class BrokenDetector(BaseDetector):
    kind = "broken"

    def scan(self, text, file_path):
        raise RuntimeError("detector bug")


class FakeAnalyzer(BaseAnalyzer):
    kind = "semgrep"

    def __init__(self, rules, error=None):
        super().__init__(rules)
        self.error = error
        self.calls = 0

    def analyze(self, repo_path, language=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [
            self.make_asset("md5", "a.py", 2, "hashlib.md5(b'x')", ""),
            self.make_asset("RSA", "other.py", 7, "rsa", "RSA key"),
        ]


class BrokenRegistry:
    def ensure_loaded(self):
        raise GrammarInitError("tree_sitter runtime unavailable")


@pytest.fixture
def orch(rules, no_grammars):
    with DetectorOrchestrator(rules, registry=no_grammars) as o:
        yield o


def _names(assets):
    return {a.name: a for a in assets}


def test_scan_file_merges_and_classifies(orch):
    found = _names(orch.scan_file(SRC, "a.py"))
    assert set(found) == {"MD5", "SHA256"}
    md5 = found["MD5"]
    assert (md5.severity, md5.risk_score) == ("high", 100)
    assert md5.reason
    sha = found["SHA256"]
    assert (sha.severity, sha.risk_score) == ("medium", 55)


def test_scan_file_is_idempotent(orch):
    first = [a.to_dict() for a in orch.scan_file(SRC, "a.py")]
    second = [a.to_dict() for a in orch.scan_file(SRC, "a.py")]
    assert first == second


def test_unreadable_file_yields_nothing(orch, tmp_path):
    p = tmp_path / "bad.py"
    p.write_bytes(b"md5 \xc3\x28")
    assert orch.scan_path(p) == []


def test_empty_file(orch, tmp_path):
    p = tmp_path / "empty.py"
    p.write_text("", encoding="utf-8")
    assert orch.scan_path(p) == []


def test_broken_grammar_runtime_fails_at_startup(rules):
    with pytest.raises(GrammarInitError):
        DetectorOrchestrator(rules, registry=BrokenRegistry())


def test_timed_out_detector_is_skipped(rules, caplog):
    slow = BlockingDetector()
    settings = ScanSettings(file_timeout=0.05)
    with DetectorOrchestrator(rules, settings=settings, detectors=[RegexDetector(rules), slow]) as o:
        try:
            found = _names(o.scan_file(SRC, "a.py"))
        finally:
            slow.release.set()
    assert "MD5" in found
    assert "timed out" in caplog.text


def test_failing_detector_is_logged(rules, caplog):
    with DetectorOrchestrator(rules, detectors=[BrokenDetector(), RegexDetector(rules)]) as o:
        found = _names(o.scan_file(SRC, "a.py"))
    assert "MD5" in found
    assert "detector bug" in caplog.text


def test_external_findings_win_key_collisions(rules, no_grammars, tmp_path):
    target = tmp_path / "a.py"
    target.write_text(SRC, encoding="utf-8")
    ext = FakeAnalyzer(rules)
    with DetectorOrchestrator(rules, registry=no_grammars, external=ext) as o:
        assert o.attach_external(str(tmp_path)) == 2
        found = _names(o.scan_path(target))
    md5 = found["MD5"]
    assert md5.id == "semgrep:md5-2"
    assert md5.detected_by == ["semgrep", "regex"]
    assert md5.detection_contexts[0].file_path == str(target)
    assert md5.severity == "high"
    # findings for files that were not scanned do not leak in
    assert "RSA" not in found
    assert ext.calls == 1


def test_external_failure_keeps_builtin_results(rules, no_grammars, tmp_path, caplog):
    target = tmp_path / "a.py"
    target.write_text(SRC, encoding="utf-8")
    ext = FakeAnalyzer(rules, error=ExternalAnalyzerError("semgrep CLI not found on PATH"))
    with DetectorOrchestrator(rules, registry=no_grammars, external=ext) as o:
        assert o.attach_external(str(tmp_path)) == 0
        found = _names(o.scan_path(target))
    assert found["MD5"].detected_by == ["regex"]
    assert "semgrep CLI not found" in caplog.text


def test_close_is_idempotent(rules, no_grammars):
    o = DetectorOrchestrator(rules, registry=no_grammars)
    o.close()
    o.close()
