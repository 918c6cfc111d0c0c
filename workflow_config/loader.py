"""
Configuration Loader (``workflow_config.loader``).

Responsibility
--------------
Loads the YAML files under ``workflow_config/sets`` and parses them into
the frozen dataclasses of ``workflow_config.schema``.  This is internal
tooling: runtime callers go through ``workflow_config.get_active_templates()``
and ``workflow_config.get_settings()``.

Invariants enforced
-------------------
* No silent defaults for required fields -- a missing key raises
  ``KeyError`` naming the template.
* ``compute_checksum`` is a deterministic SHA-256 over the canonical JSON
  of the raw YAML, so the same files always yield the same checksum.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown ``type`` on a template  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any

import yaml

from workflow_config.schema import (
    CategoryTemplateDef,
    ChainTemplateDef,
    DatabaseSettings,
    TemplateDef,
    WorkflowConfigurationSet,
    WorkflowSettings,
)

DATABASE_URL_ENV = "DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _optional_int(value: Any) -> int | None:
    return int(value) if value is not None else None


def parse_template(kind: str, data: dict[str, Any]) -> TemplateDef:
    """Parse one entry of the ``templates`` mapping."""
    template_type = data.get("type")
    common = {
        "require_reject_comment": bool(data.get("require_reject_comment", False)),
        "default_reject_comment": data.get(
            "default_reject_comment", "Rejected by {role_name}"
        ),
        "max_response_hours": _optional_int(data.get("max_response_hours")),
    }

    if template_type == "chain":
        if "stages" not in data:
            raise KeyError(f"Template '{kind}': chain requires 'stages'")
        return ChainTemplateDef(
            kind=kind,
            stages=tuple(str(s) for s in data["stages"] or ()),
            **common,
        )

    if template_type == "category":
        for key in ("intake_role", "category_field", "fallback_role"):
            if key not in data:
                raise KeyError(f"Template '{kind}': category requires '{key}'")
        routes = data.get("routes") or {}
        return CategoryTemplateDef(
            kind=kind,
            intake_role=str(data["intake_role"]),
            category_field=str(data["category_field"]),
            fallback_role=str(data["fallback_role"]),
            routes=tuple(
                (str(category).strip().lower(), str(role))
                for category, role in sorted(routes.items())
            ),
            **common,
        )

    raise ValueError(
        f"Template '{kind}': unknown type {template_type!r} "
        "(expected 'chain' or 'category')"
    )


def parse_configuration(data: dict[str, Any]) -> WorkflowConfigurationSet:
    """Parse the whole templates file into a configuration set."""
    roles = data.get("roles") or {}
    templates = data.get("templates") or {}
    return WorkflowConfigurationSet(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        role_names=tuple(sorted((str(k), str(v)) for k, v in roles.items())),
        templates=tuple(
            parse_template(str(kind), body or {})
            for kind, body in sorted(templates.items())
        ),
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> WorkflowConfigurationSet:
    return parse_configuration(load_yaml_file(path))


def load_settings(path: Path) -> WorkflowSettings:
    """Load runtime settings; ``DATABASE_URL`` overrides ``database.url``."""
    data = load_yaml_file(path)
    db = data.get("database") or {}
    url = os.environ.get(DATABASE_URL_ENV) or db.get("url")
    if not url:
        raise KeyError(
            f"No database URL: set {DATABASE_URL_ENV} or database.url in {path}"
        )
    log = data.get("logging") or {}
    return WorkflowSettings(
        database=DatabaseSettings(
            url=str(url),
            pool_size=int(db.get("pool_size", 10)),
            max_overflow=int(db.get("max_overflow", 5)),
            statement_timeout_ms=int(db.get("statement_timeout_ms", 5000)),
            echo=bool(db.get("echo", False)),
        ),
        log_level=str(log.get("level", "INFO")).upper(),
    )
