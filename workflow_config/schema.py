"""
WorkflowConfigurationSet schema.

Defines the human-authored, reviewable source artifact for workflow
configuration.  YAML files are parsed into these types by the loader,
checked by the validator, and compiled into a kernel
``TemplateRegistry`` by ``workflow_config.get_active_templates()``.

Key distinction:
  WorkflowConfigurationSet = source artifact (human-authored, versioned)
  TemplateRegistry         = runtime artifact (validated, frozen)
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Template definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainTemplateDef:
    """``type: chain`` -- fixed ordered approver roles."""

    kind: str
    stages: tuple[str, ...]
    require_reject_comment: bool = False
    default_reject_comment: str = "Rejected by {role_name}"
    max_response_hours: int | None = None


@dataclass(frozen=True)
class CategoryTemplateDef:
    """``type: category`` -- intake role, then a payload-selected specialist."""

    kind: str
    intake_role: str
    category_field: str
    fallback_role: str
    routes: tuple[tuple[str, str], ...] = ()
    require_reject_comment: bool = False
    default_reject_comment: str = "Rejected by {role_name}"
    max_response_hours: int | None = None


TemplateDef = ChainTemplateDef | CategoryTemplateDef


# ---------------------------------------------------------------------------
# Configuration set
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowConfigurationSet:
    """All templates plus role display names, as authored."""

    config_id: str
    version: int
    role_names: tuple[tuple[str, str], ...] = ()
    templates: tuple[TemplateDef, ...] = ()
    checksum: str = ""


# ---------------------------------------------------------------------------
# Runtime settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    pool_size: int = 10
    max_overflow: int = 5
    statement_timeout_ms: int = 5000
    echo: bool = False


@dataclass(frozen=True)
class WorkflowSettings:
    database: DatabaseSettings
    log_level: str = "INFO"
