"""
Configuration Validator (``workflow_config.validator``).

Responsibility
--------------
Checks a ``WorkflowConfigurationSet`` before it is compiled into a
``TemplateRegistry``, so that routing can never reach a state with no
next approver.

Invariants enforced
-------------------
* Kinds are known ``RequestKind`` values and each appears once.
* Chains are non-empty and never repeat a role.
* Category templates have a fallback, and no route targets the intake
  role (that would loop the request back to intake).
* Every role used has a display name (warning only).
* ``default_reject_comment`` formats with ``{role_name}`` only.

Failure modes
-------------
* Validation errors (``ConfigValidationResult.errors``) -> configuration
  MUST NOT be compiled.
* Validation warnings -> compiled, but should be reviewed.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from workflow_config.schema import (
    CategoryTemplateDef,
    ChainTemplateDef,
    TemplateDef,
    WorkflowConfigurationSet,
)
from workflow_kernel.domain.workflow import RequestKind


@dataclass
class ConfigValidationResult:
    """
    Result of configuration validation.

    Contract
    --------
    * ``is_valid`` returns ``True`` only when ``errors`` is empty.
    * Warnings do not block compilation but should be reviewed.
    """

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)


_KNOWN_KINDS = frozenset(k.value for k in RequestKind)


def validate_configuration(config: WorkflowConfigurationSet) -> ConfigValidationResult:
    """
    Validate a configuration set.

    Postconditions:
        - Returns a ``ConfigValidationResult``; never raises for content
          problems.
    """
    result = ConfigValidationResult()
    role_names = dict(config.role_names)

    if not config.templates:
        result.add_error("No templates defined")

    seen: set[str] = set()
    for template in config.templates:
        if template.kind in seen:
            result.add_error(f"Duplicate template for kind '{template.kind}'")
        seen.add(template.kind)
        if template.kind not in _KNOWN_KINDS:
            result.add_error(f"Unknown request kind '{template.kind}'")

        if isinstance(template, ChainTemplateDef):
            _validate_chain(template, result)
        elif isinstance(template, CategoryTemplateDef):
            _validate_category(template, result)

        _validate_common(template, result)

        for role in _roles_of(template):
            if role not in role_names:
                result.add_warning(
                    f"Template '{template.kind}': role '{role}' has no display name"
                )

    return result


def _validate_chain(template: ChainTemplateDef, result: ConfigValidationResult) -> None:
    if not template.stages:
        result.add_error(f"Template '{template.kind}': chain has no stages")
        return
    duplicates = sorted({s for s in template.stages if template.stages.count(s) > 1})
    if duplicates:
        result.add_error(
            f"Template '{template.kind}': chain repeats roles {duplicates}"
        )


def _validate_category(
    template: CategoryTemplateDef, result: ConfigValidationResult,
) -> None:
    if not template.intake_role:
        result.add_error(f"Template '{template.kind}': missing intake_role")
    if not template.category_field:
        result.add_error(f"Template '{template.kind}': missing category_field")
    if not template.fallback_role:
        result.add_error(f"Template '{template.kind}': missing fallback_role")
    if template.fallback_role == template.intake_role:
        result.add_error(
            f"Template '{template.kind}': fallback_role must differ from intake_role"
        )
    for category, role in template.routes:
        if role == template.intake_role:
            result.add_error(
                f"Template '{template.kind}': route '{category}' targets the "
                f"intake role '{role}'"
            )
    if not template.routes:
        result.add_warning(
            f"Template '{template.kind}': no routes; every request goes to "
            f"'{template.fallback_role}'"
        )


def _validate_common(template: TemplateDef, result: ConfigValidationResult) -> None:
    if template.max_response_hours is not None and template.max_response_hours <= 0:
        result.add_error(
            f"Template '{template.kind}': max_response_hours must be positive"
        )
    try:
        template.default_reject_comment.format(role_name="X")
    except (KeyError, IndexError, ValueError) as exc:
        result.add_error(
            f"Template '{template.kind}': default_reject_comment does not "
            f"format with {{role_name}}: {exc}"
        )


def _roles_of(template: TemplateDef) -> tuple[str, ...]:
    if isinstance(template, ChainTemplateDef):
        return template.stages
    return (
        template.intake_role,
        *(role for _, role in template.routes),
        template.fallback_role,
    )
