"""cryptoscope: find cryptographic algorithms in source code and rate them.

Typical use::

    from cryptoscope.core.kb import load_rule_database
    from cryptoscope.detectors.orchestrator import DetectorOrchestrator

    rules = load_rule_database()
    with DetectorOrchestrator(rules) as orch:
        assets = orch.scan_path("app.py")
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
