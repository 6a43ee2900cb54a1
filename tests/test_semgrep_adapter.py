import json
import shutil
import subprocess

import pytest

from cryptoscope.detectors.semgrep_adapter import (
    SarifFileAnalyzer,
    SemgrepAnalyzer,
    extract_algorithm_name,
    parse_semgrep_results,
)
from cryptoscope.errors import ExternalAnalyzerError


def fake_semgrep_output_dict():
    return json.dumps(
        {
            "results": [
                {
                    "path": "src/app.py",
                    "check_id": "python.crypto.weak-hash",
                    "start": {"line": 10},
                    "extra": {"message": "Weak hash: MD5 in use", "lines": ["h = hashlib.md5()", "x()"]},
                },
                {
                    "path": "src/app.py",
                    "check_id": "python.crypto.weak-hash",
                    "start": {"line": 10},
                    "extra": {"message": "Weak hash: md5 in use"},
                },
            ]
        }
    ).encode("utf-8")


def fake_semgrep_output_list():
    return json.dumps(
        [
            {
                "path": "src/app.py",
                "rule_id": "crypto/md5",
                "start": {"line": 10},
                "extra": {"message": "matched"},
            }
        ]
    ).encode("utf-8")


@pytest.mark.parametrize("out_bytes", [fake_semgrep_output_dict(), fake_semgrep_output_list()])
def test_semgrep_analyzer_parses(monkeypatch, rules, out_bytes):
    seen = {}

    def fake_check_output(cmd, stderr=None, **kwargs):
        seen["cmd"] = cmd
        return out_bytes

    monkeypatch.setattr(subprocess, "check_output", fake_check_output)
    monkeypatch.setattr(shutil, "which", lambda name: "/usr/bin/semgrep")

    assets = SemgrepAnalyzer(rules).analyze("/repo")
    assert len(assets) == 1
    a = assets[0]
    assert a.id == "semgrep:md5-10"
    assert a.name == "MD5"
    assert a.primitive == "hash"
    assert a.detected_by == ["semgrep"]
    assert a.detection_contexts[0].file_path == "src/app.py"
    assert a.detection_contexts[0].line_numbers == (10,)
    assert seen["cmd"][-1] == "/repo"


def test_snippet_lines_are_joined_and_capped(rules):
    long_lines = ["x" * 150, "y" * 150]
    parsed = {"results": [{"path": "a.py", "check_id": "crypto/rc4", "start": {"line": 1},
                           "extra": {"lines": long_lines}}]}
    a = parse_semgrep_results(parsed, SemgrepAnalyzer(rules))[0]
    snippet = a.detection_contexts[0].snippet
    assert "\n" not in snippet
    assert len(snippet) == 200


def test_missing_results_list(rules):
    with pytest.raises(ExternalAnalyzerError):
        parse_semgrep_results({"errors": []}, SemgrepAnalyzer(rules))
    with pytest.raises(ExternalAnalyzerError):
        parse_semgrep_results("nonsense", SemgrepAnalyzer(rules))


def test_semgrep_not_installed(monkeypatch, rules):
    monkeypatch.setattr(shutil, "which", lambda name: None)
    with pytest.raises(ExternalAnalyzerError, match="not found"):
        SemgrepAnalyzer(rules).analyze("/repo")


@pytest.mark.parametrize(
    "effect",
    [
        subprocess.CalledProcessError(2, ["semgrep"]),
        subprocess.TimeoutExpired(["semgrep"], 1),
        b"not json",
    ],
)
def test_semgrep_failures_are_wrapped(monkeypatch, rules, effect):
    def fake_check_output(cmd, stderr=None, **kwargs):
        if isinstance(effect, Exception):
            raise effect
        return effect

    monkeypatch.setattr(subprocess, "check_output", fake_check_output)
    monkeypatch.setattr(shutil, "which", lambda name: "semgrep")
    with pytest.raises(ExternalAnalyzerError):
        SemgrepAnalyzer(rules).analyze("/repo")


def test_build_command():
    an = SemgrepAnalyzer(config="p/crypto")
    assert an.build_command("/r") == ["semgrep", "--json", "--quiet", "--config", "p/crypto", "/r"]
    assert an.build_command("/r", "java")[-3:] == ["--lang", "java", "/r"]


@pytest.mark.parametrize(
    "message,rule_id,props,expected",
    [
        ("", "", {"algorithmName": "AES-256-GCM"}, "AES-256-GCM"),
        ("", "", {"algorithm": " RSA "}, "RSA"),
        ("Use of cipher: DES detected", "x", None, "DES"),
        ("nothing here", "java.crypto.sha1-usage", None, "SHA1-USAGE"),
        ("nothing here", "crypto/ecdsa", None, "ECDSA"),
        ("nothing", "other", None, "Unknown"),
    ],
)
def test_extract_algorithm_name(message, rule_id, props, expected):
    assert extract_algorithm_name(message, rule_id, props) == expected


def test_unknown_algorithm_falls_back_to_name_classification(rules):
    parsed = {"results": [{"path": "a.py", "check_id": "crypto/whirlpool", "start": {"line": 3}}]}
    a = parse_semgrep_results(parsed, SemgrepAnalyzer(rules))[0]
    assert a.name == "WHIRLPOOL"
    assert (a.primitive, a.quantum_safe) == ("other", "unknown")
    parsed = {"results": [{"path": "a.py", "check_id": "crypto/blake2b", "start": {"line": 3}}]}
    a = parse_semgrep_results(parsed, SemgrepAnalyzer())[0]
    assert (a.primitive, a.quantum_safe) == ("hash", "partial")


def _sarif_doc():
    return {
        "version": "2.1.0",
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": "CodeQL",
                        "rules": [{"id": "java/weak-crypto", "properties": {"algorithmName": "RSA"}}],
                    }
                },
                "results": [
                    {
                        "ruleId": "java/weak-crypto",
                        "message": {"text": "RSA key generation"},
                        "locations": [
                            {
                                "physicalLocation": {
                                    "artifactLocation": {"uri": "file://src/Keys.java"},
                                    "region": {"startLine": 5, "snippet": {"text": "KeyPairGenerator"}},
                                }
                            },
                            {"physicalLocation": {"artifactLocation": {"uri": "src/NoLine.java"}}},
                        ],
                    }
                ],
            }
        ],
    }


def test_sarif_file_analyzer(tmp_path, rules):
    p = tmp_path / "codeql.sarif"
    p.write_text(json.dumps(_sarif_doc()), encoding="utf-8")
    assets = SarifFileAnalyzer(str(p), rules).analyze(str(tmp_path))
    assert len(assets) == 1
    a = assets[0]
    assert a.id == "codeql:rsa-5"
    assert (a.name, a.primitive, a.quantum_safe) == ("RSA", "asymmetric", False)
    assert a.detection_contexts[0].file_path == "src/Keys.java"
    assert a.description == "RSA key generation"


@pytest.mark.parametrize("content", [None, "{broken", "[1, 2]"])
def test_sarif_file_analyzer_errors(tmp_path, content):
    p = tmp_path / "in.sarif"
    if content is not None:
        p.write_text(content, encoding="utf-8")
    with pytest.raises(ExternalAnalyzerError):
        SarifFileAnalyzer(str(p)).analyze(str(tmp_path))
