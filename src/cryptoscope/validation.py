"""JSON-schema validation for the rule table and settings documents.

Schemas live in `schemas/<name>.schema.json` inside the package and are
checked with `jsonschema.Draft7Validator`. Every violation is reported,
each as `<location>: <message>`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import jsonschema

_SCHEMA_DIR = Path(__file__).resolve().parent / "schemas"

_schema_cache: Dict[str, Any] = {}


def load_schema(name: str) -> Dict[str, Any]:
    schema = _schema_cache.get(name)
    if schema is None:
        with (_SCHEMA_DIR / f"{name}.schema.json").open("r", encoding="utf-8") as f:
            schema = json.load(f)
        jsonschema.Draft7Validator.check_schema(schema)
        _schema_cache[name] = schema
    return schema


def schema_errors(name: str, obj: Any) -> List[str]:
    """All violations of schema `name` by `obj`; empty when valid."""
    validator = jsonschema.Draft7Validator(load_schema(name))
    errors = []
    for err in sorted(validator.iter_errors(obj), key=lambda e: list(map(str, e.absolute_path))):
        loc = "/".join(str(p) for p in err.absolute_path) or "(root)"
        errors.append(f"{loc}: {err.message}")
    return errors
