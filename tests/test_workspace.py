import threading

import pytest

from cryptoscope.auditor.workspace import WorkspaceScanner
from cryptoscope.detectors.orchestrator import DetectorOrchestrator


@pytest.fixture
def orch(rules, no_grammars):
    with DetectorOrchestrator(rules, registry=no_grammars) as o:
        yield o


def _write(tmp_path, name, text):
    p = tmp_path / name
    p.write_text(text, encoding="utf-8")
    return str(p)


def _by_id(assets):
    return {a.id: a for a in assets}


def test_same_algorithm_in_two_files_accumulates(orch, tmp_path):
    a = _write(tmp_path, "a.py", "key = AES.new(k)\n")
    b = _write(tmp_path, "b.py", "\n\ncipher = 'aes'\n")
    found = _by_id(WorkspaceScanner(orch).scan_workspace([b, a]))
    aes = found["regex:aes"]
    assert aes.occurrences == 2
    assert [(c.file_path, c.line_numbers) for c in aes.detection_contexts] == [(a, (1,)), (b, (3,))]
    assert aes.severity == "medium"


def test_accepts_intake_items(orch, tmp_path):
    a = _write(tmp_path, "a.go", 'import "crypto/md5"\n')
    found = _by_id(WorkspaceScanner(orch).scan_workspace([{"path": a, "size": 20}]))
    assert "regex:md5" in found


def test_progress_is_monotonic(orch, tmp_path):
    files = [_write(tmp_path, f"f{i}.py", "sha1\n") for i in range(4)]
    calls = []
    WorkspaceScanner(orch).scan_workspace(files, progress_cb=lambda done, total: calls.append((done, total)))
    assert calls == [(1, 4), (2, 4), (3, 4), (4, 4)]


def test_cancel_stops_after_current_file(orch, tmp_path):
    files = [_write(tmp_path, f"f{i}.py", "sha1\n") for i in range(5)]
    cancel = threading.Event()

    def progress(done, total):
        if done == 2:
            cancel.set()

    found = _by_id(WorkspaceScanner(orch).scan_workspace(files, progress_cb=progress, cancel_event=cancel))
    assert found["regex:sha1"].occurrences == 2


def test_cancel_before_start(orch, tmp_path):
    files = [_write(tmp_path, "a.py", "md5\n")]
    cancel = threading.Event()
    cancel.set()
    assert WorkspaceScanner(orch).scan_workspace(files, cancel_event=cancel) == []
    assert WorkspaceScanner(orch, workers=3).scan_workspace(files, cancel_event=cancel) == []


def test_parallel_matches_serial(orch, tmp_path):
    files = [_write(tmp_path, f"f{i}.js", f"// {i}\nconst h = 'sha256';\nmd5\n") for i in range(9)]
    serial = [a.to_dict() for a in WorkspaceScanner(orch).scan_workspace(files)]
    parallel = [a.to_dict() for a in WorkspaceScanner(orch, workers=4).scan_workspace(files)]
    assert serial == parallel
    assert _by_id(WorkspaceScanner(orch, workers=4).scan_workspace(files))["regex:md5"].occurrences == 9


def test_bad_file_does_not_stop_the_scan(orch, tmp_path):
    bad = tmp_path / "bad.py"
    bad.write_bytes(b"\xff\xfe")
    good = _write(tmp_path, "good.py", "rsa\n")
    calls = []
    found = _by_id(
        WorkspaceScanner(orch).scan_workspace([str(bad), good], progress_cb=lambda d, t: calls.append(d))
    )
    assert set(found) == {"regex:rsa"}
    assert calls == [1, 2]


def test_build_matrix_from_paths(orch, tmp_path):
    a = _write(tmp_path, "a.py", "rsa\n")
    b = _write(tmp_path, "b.go", "package x\n")
    scanner = WorkspaceScanner(orch)
    assets = scanner.scan_workspace([a, b])
    m = scanner.build_matrix([a, b], assets)
    assert m.total_files == 2
    assert m.total_bytes == 4 + 10
    assert [x.name for x in m.stats["python"].detections] == ["RSA"]
    assert m.stats["go"].detections == []
