"""Command-line front end.

Usage (after `pip install -e .`):
    cryptoscope scan ./repo --format all --output ./cbom-out
    cryptoscope scan ./repo --include 'src/**' --exclude 'tests/**' --workers 4
    cryptoscope scan ./repo --sarif-input codeql-results.sarif
    cryptoscope info

`scan` enumerates source files, runs every detector, and writes the CBOM
(CycloneDX JSON), SARIF, NDJSON findings, a summary and the input
manifest into the output directory. Setup errors (bad rule table, bad
config, broken tree-sitter runtime) are printed and exit with status 1.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from collections import Counter
from pathlib import Path
from typing import List, Optional

from cryptoscope import __version__
from cryptoscope.core.kb import DEFAULT_SOURCE_EXTENSIONS, load_rule_database, supported_extensions
from cryptoscope.detectors.orchestrator import DetectorOrchestrator
from cryptoscope.detectors.runner import generate_summary, write_ndjson_assets
from cryptoscope.detectors.semgrep_adapter import BaseAnalyzer, SarifFileAnalyzer, SemgrepAnalyzer
from cryptoscope.detectors.tree_sitter_detector import default_registry
from cryptoscope.errors import CryptoScopeError
from cryptoscope.reports.cbom import write_cbom
from cryptoscope.reports.sarif import write_sarif
from cryptoscope.settings import ScanSettings, load_settings

from .intake import enumerate_source_files, write_manifest
from .workspace import WorkspaceScanner

logger = logging.getLogger(__name__)

FORMATS = ("cbom", "sarif", "ndjson", "all")


def _split(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [g.strip() for g in value.split(",") if g.strip()]


def _configure_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="cryptoscope", description="Cryptographic Bill of Materials scanner")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    p.add_argument("-q", "--quiet", action="store_true", help="Only warnings and errors")
    sub = p.add_subparsers(dest="command")

    s = sub.add_parser("scan", help="Scan a directory or file")
    s.add_argument("path")
    s.add_argument("--format", choices=FORMATS, default="all")
    s.add_argument("--output", default=None, help="Output directory (default: <path>/.cbom-analysis)")
    s.add_argument("--config", default=None, help="Settings file (json or yaml)")
    s.add_argument(
        "--include",
        default=None,
        help="Comma-separated include glob patterns (e.g. 'src/**,*.py')",
    )
    s.add_argument(
        "--exclude",
        default=None,
        help="Comma-separated exclude glob patterns (e.g. 'vendor,tests/**')",
    )
    s.add_argument(
        "--max-size-kb",
        default=None,
        type=int,
        help="Skip files larger than this size in KB (0 = no limit)",
    )
    s.add_argument("--workers", default=None, type=int, help="Files scanned in parallel")
    s.add_argument("--semgrep", action="store_true", help="Also run the semgrep CLI")
    s.add_argument("--semgrep-config", default=None)
    s.add_argument("--sarif-input", default=None, help="Import findings from a SARIF file (e.g. CodeQL)")
    s.add_argument("--language", default=None, help="Language hint for the external analyzer")

    sub.add_parser("info", help="Show supported languages, grammars and rule count")
    return p


def _settings_from_args(args) -> ScanSettings:
    s = load_settings(args.config)
    external = None
    if args.sarif_input:
        external = "sarif"
    elif args.semgrep:
        external = "semgrep"
    max_bytes = None
    if args.max_size_kb is not None:
        max_bytes = max(0, args.max_size_kb) * 1024
    return s.with_overrides(
        include_globs=_split(args.include),
        exclude_globs=_split(args.exclude),
        max_file_size_bytes=max_bytes,
        workers=args.workers,
        external_analyzer=external,
        semgrep_config=args.semgrep_config,
        sarif_path=args.sarif_input,
    )


def _external(settings: ScanSettings, rules) -> Optional[BaseAnalyzer]:
    if settings.external_analyzer == "semgrep":
        return SemgrepAnalyzer(rules, config=settings.semgrep_config)
    if settings.external_analyzer == "sarif":
        return SarifFileAnalyzer(settings.sarif_path, rules)
    return None


def cmd_scan(args) -> int:
    settings = _settings_from_args(args)
    rules = load_rule_database(settings.rules_path)
    target = os.path.abspath(args.path)
    repo_root = target if os.path.isdir(target) else os.path.dirname(target)
    out_dir = Path(args.output) if args.output else Path(repo_root) / ".cbom-analysis"

    items = enumerate_source_files(
        [target],
        include_globs=settings.include_globs,
        exclude_globs=settings.exclude_globs,
        excluded_dirs=settings.excluded_dirs,
        max_file_size_bytes=settings.max_file_size_bytes,
        source_extensions=settings.source_extensions,
    )
    logger.info("%d source files selected under %s", len(items), target)

    with DetectorOrchestrator(rules, settings, external=_external(settings, rules)) as orch:
        orch.attach_external(repo_root, args.language)
        scanner = WorkspaceScanner(orch, workers=settings.workers)
        assets = scanner.scan_workspace(items)
        matrix = scanner.build_matrix(items, assets)

    fmt = args.format
    written = [write_manifest(out_dir / "inputs.manifest.json", items)]
    if fmt in ("cbom", "all"):
        written.append(write_cbom(assets, out_dir / "cbom.json", project_name=os.path.basename(repo_root)))
    if fmt in ("sarif", "all"):
        written.append(write_sarif(assets, out_dir / "cbom.sarif", base_dir=repo_root))
    if fmt in ("ndjson", "all"):
        written.append(write_ndjson_assets(assets, out_dir / "findings.ndjson"))
    written.append(generate_summary(assets, out_dir, scanned_files=len(items)))

    sev = Counter(a.severity for a in assets)
    qs = Counter(str(a.quantum_safe).lower() for a in assets)
    print(f"Scanned {matrix.total_files} files ({matrix.total_bytes} bytes) in {len(matrix.stats)} languages")
    for lang in matrix.languages:
        st = matrix.stats[lang]
        print(f"  {lang:<11} {st.file_count:>6} files  {len(st.detections):>4} assets")
    print(
        f"Found {len(assets)} crypto assets: "
        f"{sev.get('high', 0)} high, {sev.get('medium', 0)} medium, {sev.get('low', 0)} low"
    )
    print(
        f"Quantum safety: {qs.get('false', 0)} vulnerable, {qs.get('partial', 0)} partial, "
        f"{qs.get('true', 0)} safe, {qs.get('unknown', 0)} unknown"
    )
    for p in written:
        print(f"Wrote {p}")
    return 0


def cmd_info(args) -> int:
    rules = load_rule_database()
    grammars = default_registry().available()
    print(f"cryptoscope {__version__}")
    print(f"Rules: {len(rules)} algorithms")
    print(f"Languages: {', '.join(rules.languages())}")
    print(f"Grammars available: {', '.join(grammars) or 'none'}")
    print(f"Extensions: {' '.join(supported_extensions())}")
    lexical_only = [e for e in DEFAULT_SOURCE_EXTENSIONS if e not in supported_extensions()]
    print(f"Lexical-only extensions: {' '.join(lexical_only)}")
    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose, args.quiet)
    if args.command is None:
        parser.print_help()
        return 1
    try:
        if args.command == "scan":
            return cmd_scan(args)
        return cmd_info(args)
    except CryptoScopeError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
