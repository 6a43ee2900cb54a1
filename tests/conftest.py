import sys
from pathlib import Path

import pytest

# Make the src/ layout importable while running tests without installing.
repo_root = Path(__file__).resolve().parents[1]
src_dir = repo_root / "src"
if src_dir.exists() and str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from cryptoscope.core.kb import load_rule_database  # noqa: E402


class NoGrammarRegistry:
    """Stands in for GrammarRegistry when no grammar is installed."""

    def ensure_loaded(self):
        return {}

    def get(self, language):
        return None

    def available(self):
        return []

    def new_parser(self, language):
        return None


@pytest.fixture(scope="session")
def rules():
    return load_rule_database()


@pytest.fixture
def no_grammars():
    return NoGrammarRegistry()
