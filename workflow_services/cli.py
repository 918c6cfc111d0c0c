"""
workflow_services.cli -- Admin command line for the workflow core.

Usage:
    workflow-cli [--database-url URL] [--config-dir DIR] COMMAND ...

Commands:
    init-db                              create the workflow tables
    create KIND SUBJECT [--payload JSON] [--priority P]
    worklist ROLE [--kind KIND]          one JSON line per actionable request
    show REQUEST_ID                      status, approval flow and history
    transition REQUEST_ID ROLE ACTOR approve|reject [--comment TEXT]
    stats [--role ROLE] [--subject SUBJECT]
    overdue [--role ROLE]
    verify REQUEST_ID                    replay history against stored status

Output is JSON on stdout.  Kernel errors print ``{"error": CODE, ...}`` on
stderr and exit with status 1.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Sequence
from uuid import UUID

from workflow_config import get_active_templates, get_settings
from workflow_engines.progress import describe_status, status_code
from workflow_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
)
from workflow_kernel.domain.workflow import WorkflowRequest
from workflow_kernel.exceptions import InvalidPayloadError, WorkflowKernelError
from workflow_kernel.logging_config import configure_logging
from workflow_services.workflow_gateway import WorkflowGateway


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="workflow-cli",
        description="Inspect and drive approval workflows.",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="Overrides DATABASE_URL and settings.yaml",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory holding templates.yaml and settings.yaml",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the workflow tables")

    p = sub.add_parser("create", help="File a new request")
    p.add_argument("kind")
    p.add_argument("subject_id")
    p.add_argument("--payload", default="{}", help="JSON object")
    p.add_argument("--priority", default="medium")

    p = sub.add_parser("worklist", help="Requests waiting on a role")
    p.add_argument("role")
    p.add_argument("--kind", default=None)

    p = sub.add_parser("show", help="One request with its approval flow")
    p.add_argument("request_id", type=UUID)

    p = sub.add_parser("transition", help="Approve or reject a request")
    p.add_argument("request_id", type=UUID)
    p.add_argument("role")
    p.add_argument("actor_id")
    p.add_argument("action", choices=["approve", "reject"])
    p.add_argument("--comment", default=None)
    p.add_argument("--actor-name", default=None)
    p.add_argument("--idempotency-key", default=None)

    p = sub.add_parser("stats", help="Counts by phase")
    p.add_argument("--role", default=None)
    p.add_argument("--subject", default=None)

    p = sub.add_parser("overdue", help="Pending requests past their window")
    p.add_argument("--role", default=None)

    p = sub.add_parser("verify", help="Replay history against stored status")
    p.add_argument("request_id", type=UUID)

    return parser.parse_args(argv)


def _summary(request: WorkflowRequest, role_names: dict[str, str]) -> dict[str, Any]:
    return {
        "request_id": str(request.request_id),
        "kind": request.kind,
        "subject_id": request.subject_id,
        "title": request.title,
        "priority": request.priority.value,
        "status": status_code(request),
        "status_text": describe_status(request, role_names),
        "created_at": request.created_at,
        "updated_at": request.updated_at,
    }


def _emit(obj: Any) -> None:
    print(json.dumps(obj, default=str))


def _parse_payload(kind: str, raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidPayloadError(kind, f"--payload is not valid JSON: {exc.msg}") from exc


def _init_engine(args: argparse.Namespace) -> None:
    if args.database_url:
        init_engine_from_url(args.database_url)
        return
    db = get_settings(args.config_dir).database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        statement_timeout_ms=db.statement_timeout_ms,
    )


def _run(args: argparse.Namespace) -> int:
    _init_engine(args)
    if args.command == "init-db":
        create_tables()
        _emit({"status": "ok"})
        return 0

    registry = get_active_templates(args.config_dir)
    gateway = WorkflowGateway(get_session_factory(), registry=registry)
    names = registry.role_names

    if args.command == "create":
        request = gateway.create_request(
            args.kind, args.subject_id, _parse_payload(args.kind, args.payload), args.priority,
        )
        _emit(_summary(request, names))
    elif args.command == "worklist":
        for request in gateway.list_actionable(args.role, kind=args.kind):
            _emit(_summary(request, names))
    elif args.command == "show":
        request = gateway.get_request(args.request_id)
        out = _summary(request, names)
        out["flow"] = [asdict(step) for step in gateway.approval_flow(request.request_id)]
        out["history"] = [asdict(entry) for entry in request.history]
        _emit(out)
    elif args.command == "transition":
        outcome = gateway.transition(
            args.request_id,
            actor_role=args.role,
            actor_id=args.actor_id,
            action=args.action,
            comment=args.comment,
            actor_name=args.actor_name,
            idempotency_key=args.idempotency_key,
        )
        out = _summary(outcome.request, names)
        out["replayed"] = outcome.replayed
        _emit(out)
    elif args.command == "stats":
        _emit(asdict(gateway.stats(role=args.role, subject_id=args.subject)))
    elif args.command == "overdue":
        for request in gateway.list_overdue(role=args.role):
            _emit(_summary(request, names))
    elif args.command == "verify":
        status = gateway.verify_consistency(args.request_id)
        _emit({"request_id": str(args.request_id), "consistent": True, "status": status_code(status)})
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging(level=logging.WARNING)
    try:
        return _run(args)
    except WorkflowKernelError as exc:
        print(
            json.dumps({"error": exc.code, "message": str(exc)}),
            file=sys.stderr,
        )
        return 1


if __name__ == "__main__":
    sys.exit(main())
