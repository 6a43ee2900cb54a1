"""Exception types shared across the scanner.

Only setup failures (rule table, grammar runtime, configuration) are meant
to reach the user. Per-file problems are raised as `DetectionError` or
`ExternalAnalyzerError` and caught at the file boundary.
"""

from __future__ import annotations


class CryptoScopeError(Exception):
    """Base class for all scanner errors."""


class RuleDatabaseError(CryptoScopeError):
    """The algorithm rule table could not be loaded or failed validation."""


class GrammarInitError(CryptoScopeError):
    """The tree-sitter runtime itself could not be initialised."""


class ConfigError(CryptoScopeError):
    """A settings file or environment override is invalid."""


class DetectionError(CryptoScopeError):
    """A single file could not be read or parsed."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class ExternalAnalyzerError(CryptoScopeError):
    """An external static-analysis tool failed or produced unusable output."""
