"""
workflow_config -- single public entrypoint for workflow configuration.

Responsibility:
    Provides the ONLY way to obtain workflow templates and runtime
    settings: ``get_active_templates()`` and ``get_settings()``.  No other
    component reads the YAML files or the environment directly.

Architecture position:
    Configuration -- YAML-driven, validated before use.  Sits above
    ``workflow_kernel`` and below ``workflow_services``.  The kernel MUST
    NEVER import from ``workflow_config``; this package compiles the YAML
    into kernel domain types.

Invariants enforced:
    - Single entrypoint for templates and settings.
    - Validation before compilation: an invalid configuration never
      produces a registry.
    - Deterministic: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``ValueError`` -- validation failed.
    - ``KeyError`` -- required key missing (including the database URL).

Audit relevance:
    Every successful ``get_active_templates()`` call emits a
    ``WORKFLOW_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying each transition to the templates in force.
"""

from __future__ import annotations

from pathlib import Path

from workflow_config.loader import load_configuration, load_settings
from workflow_config.schema import (
    CategoryTemplateDef,
    ChainTemplateDef,
    TemplateDef,
    WorkflowConfigurationSet,
    WorkflowSettings,
)
from workflow_config.validator import ConfigValidationResult, validate_configuration
from workflow_kernel.domain.template import (
    CategoryRouted,
    FixedChain,
    TemplateRegistry,
    WorkflowTemplate,
)
from workflow_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
TEMPLATES_FILE = "templates.yaml"
SETTINGS_FILE = "settings.yaml"

__all__ = [
    "ConfigValidationResult",
    "WorkflowConfigurationSet",
    "WorkflowSettings",
    "compile_registry",
    "get_active_templates",
    "get_settings",
    "validate_configuration",
]


def get_active_templates(config_dir: Path | None = None) -> TemplateRegistry:
    """The ONLY public template entrypoint.

    Contract:
        Loads ``templates.yaml``, validates it, and compiles it into a
        frozen ``TemplateRegistry``.

    Guarantees:
        - The returned registry has passed validation.
        - ``registry.checksum`` equals the source checksum.
        - A ``WORKFLOW_CONFIG_TRACE`` log entry is emitted.

    Args:
        config_dir: Override path to the configuration directory.
            Defaults to workflow_config/sets/.

    Raises:
        FileNotFoundError: If the templates file is missing.
        ValueError: If validation fails.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    config_set = load_configuration(sets_dir / TEMPLATES_FILE)

    validation = validate_configuration(config_set)
    if not validation.is_valid:
        raise ValueError(
            "Workflow configuration validation failed:\n"
            + "\n".join(f"  - {e}" for e in validation.errors)
        )
    for warning in validation.warnings:
        _logger.warning("workflow_config_warning", extra={"warning": warning})

    registry = compile_registry(config_set)

    _logger.info(
        "WORKFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "WORKFLOW_CONFIG_TRACE",
            "config_set_id": config_set.config_id,
            "config_set_version": config_set.version,
            "checksum": registry.checksum,
            "template_count": len(registry.templates),
            "role_count": len(registry.role_names),
        },
    )
    return registry


def get_settings(config_dir: Path | None = None) -> WorkflowSettings:
    """Runtime settings from ``settings.yaml`` (``DATABASE_URL`` overrides)."""
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    return load_settings(sets_dir / SETTINGS_FILE)


def compile_registry(config_set: WorkflowConfigurationSet) -> TemplateRegistry:
    """Translate validated source definitions into kernel templates."""
    return TemplateRegistry(
        templates={t.kind: _compile_template(t) for t in config_set.templates},
        role_names=dict(config_set.role_names),
        checksum=config_set.checksum,
    )


def _compile_template(template: TemplateDef) -> WorkflowTemplate:
    if isinstance(template, ChainTemplateDef):
        return FixedChain(
            kind=template.kind,
            stages=template.stages,
            require_reject_comment=template.require_reject_comment,
            default_reject_comment=template.default_reject_comment,
            max_response_hours=template.max_response_hours,
        )
    assert isinstance(template, CategoryTemplateDef)
    return CategoryRouted(
        kind=template.kind,
        intake_role=template.intake_role,
        category_field=template.category_field,
        routes=dict(template.routes),
        fallback_role=template.fallback_role,
        require_reject_comment=template.require_reject_comment,
        default_reject_comment=template.default_reject_comment,
        max_response_hours=template.max_response_hours,
    )
