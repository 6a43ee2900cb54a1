"""Scan configuration.

Settings come from three places, later ones winning:

1. `ScanSettings` defaults;
2. a settings file: the explicit `path`, or else `settings.yaml` /
   `settings.json` in the per-user data directory when one exists;
3. `CRYPTOSCOPE_*` environment variables (`CRYPTOSCOPE_WORKERS=4`,
   `CRYPTOSCOPE_EXCLUDE_GLOBS=vendor/**,*.min.js`, ...).

Files may be JSON or YAML (JSON is valid YAML, so both go through PyYAML).
Unknown keys and values of the wrong type raise ConfigError. The merged
result is checked against `schemas/settings.schema.json`.
"""

from __future__ import annotations

import os
import platform
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from cryptoscope.core.kb import DEFAULT_SOURCE_EXTENSIONS
from cryptoscope.errors import ConfigError
from cryptoscope.validation import schema_errors

_APP_NAME = "CryptoScope"
_SETTINGS_FILES = ("settings.yaml", "settings.yml", "settings.json")
ENV_PREFIX = "CRYPTOSCOPE_"

DEFAULT_EXCLUDED_DIRS = (
    "node_modules",
    ".git",
    "venv",
    ".venv",
    "__pycache__",
    "build",
    "dist",
    "target",
    "out",
    ".cbom-analysis",
)


@dataclass(frozen=True)
class ScanSettings:
    file_timeout: float = 30.0  # seconds per file per detector
    workers: int = 1  # files scanned in parallel
    detector_threads: int = 2  # detectors run in parallel per file
    max_file_size_bytes: int = 2 * 1024 * 1024  # 0 = unlimited
    snippet_radius: int = 80
    strict_parse: bool = True  # a tree with syntax errors yields no ast findings
    include_globs: List[str] = field(default_factory=list)
    exclude_globs: List[str] = field(default_factory=list)
    excluded_dirs: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED_DIRS))
    source_extensions: List[str] = field(default_factory=lambda: list(DEFAULT_SOURCE_EXTENSIONS))
    external_analyzer: Optional[str] = None
    semgrep_config: str = "auto"
    sarif_path: Optional[str] = None
    rules_path: Optional[str] = None

    def with_overrides(self, **kwargs: Any) -> "ScanSettings":
        """Copy with the given non-None values applied and validated."""
        return _validated(replace(self, **{k: v for k, v in kwargs.items() if v is not None}))


def _get_user_data_dir() -> Path:
    """Return a platform-appropriate per-user data directory for the app."""
    system = platform.system()
    home = Path.home()
    if system == "Windows":
        appdata = os.getenv("APPDATA")
        if appdata:
            return Path(appdata) / _APP_NAME
        return home / f".{_APP_NAME}"
    if system == "Darwin":
        return home / "Library" / "Application Support" / _APP_NAME
    # Linux / other: honor XDG_DATA_HOME if set
    xdg = os.getenv("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / _APP_NAME
    return home / ".local" / "share" / _APP_NAME


def user_settings_path() -> Optional[Path]:
    """The first existing settings file in the user data dir, if any."""
    d = _get_user_data_dir()
    for name in _SETTINGS_FILES:
        p = d / name
        if p.is_file():
            return p
    return None


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Convert a raw file/env value to the type of the field's default."""
    if name in ("external_analyzer", "sarif_path", "rules_path"):
        if value is None or value == "":
            return None
        return str(value)
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        s = str(value).strip().lower()
        if s in ("1", "true", "yes", "on"):
            return True
        if s in ("0", "false", "no", "off"):
            return False
        raise ConfigError(f"{name}: expected a boolean, got {value!r}")
    if isinstance(default, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name}: expected an integer, got {value!r}") from None
    if isinstance(default, float):
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name}: expected a number, got {value!r}") from None
    if isinstance(default, list):
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value]
        raise ConfigError(f"{name}: expected a list, got {value!r}")
    return str(value)


def _validated(s: ScanSettings) -> ScanSettings:
    errors = schema_errors("settings", asdict(s))
    if errors:
        raise ConfigError("invalid settings: " + "; ".join(errors))
    return s


def settings_from_mapping(data: Mapping[str, Any], base: Optional[ScanSettings] = None) -> ScanSettings:
    base = base or ScanSettings()
    defaults = {f.name: getattr(base, f.name) for f in fields(ScanSettings)}
    updates: Dict[str, Any] = {}
    for k, v in data.items():
        key = str(k).replace("-", "_")
        if key not in defaults:
            raise ConfigError(f"unknown setting {k!r}")
        updates[key] = _coerce(key, v, defaults[key])
    return _validated(replace(base, **updates))


def _read_file(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read settings file {path}: {e}") from e
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse settings file {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"settings file {path} must contain a mapping")
    return data


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = os.environ if environ is None else environ
    names = {f.name for f in fields(ScanSettings)}
    out = {}
    for k, v in env.items():
        if not k.startswith(ENV_PREFIX):
            continue
        key = k[len(ENV_PREFIX) :].lower()
        if key in names:
            out[key] = v
    return out


def load_settings(
    path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> ScanSettings:
    """Defaults, then the settings file, then CRYPTOSCOPE_* variables."""
    s = ScanSettings()
    p = Path(path) if path else user_settings_path()
    if p is not None:
        s = settings_from_mapping(_read_file(p), s)
    overrides = env_overrides(environ)
    if overrides:
        s = settings_from_mapping(overrides, s)
    return _validated(s)
