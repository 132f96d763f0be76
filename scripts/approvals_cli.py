#!/usr/bin/env python3
"""
Approval engine command line.

Seeds the workflow catalog from YAML, lists the stored workflow
definitions and runs the escalation scheduler loop.

Usage:
  python3 scripts/approvals_cli.py [--config PATH] seed
  python3 scripts/approvals_cli.py [--config PATH] list-workflows [--all]
  python3 scripts/approvals_cli.py [--config PATH] run-scheduler --directory PATH [--interval SECONDS]

The database URL comes from the configuration's ``settings.database_url``
unless APPROVALS_DATABASE_URL is set.

The directory file for ``run-scheduler`` is required; escalation targets
missing from it count as inactive and block their stage.  It maps user
ids to role lists:

  users:
    u-ops-1: [OPERATIONS_MANAGER]
    u-cfo: [CFO]
"""

import argparse
import signal
import sys
import threading
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Multi-stage approval engine tooling",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Approval configuration YAML (default: packaged approvals.yaml)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("seed", help="Create tables and publish the configured workflows if the catalog is empty")

    list_p = sub.add_parser("list-workflows", help="Print stored workflow definitions")
    list_p.add_argument("--all", action="store_true", help="Include inactive and superseded versions")

    run_p = sub.add_parser("run-scheduler", help="Run the escalation scheduler until interrupted")
    run_p.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Tick interval in seconds (default: settings.tick_interval_seconds)",
    )
    run_p.add_argument(
        "--directory",
        required=True,
        help="YAML file mapping user ids to roles",
    )
    return parser.parse_args(argv)


def _load_directory(path: str):
    import yaml

    from approval_kernel.domain.directory import InMemoryApproverDirectory

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    users = {str(user_id): set(roles or ()) for user_id, roles in (data.get("users") or {}).items()}
    return InMemoryApproverDirectory(users)


def _connect(config) -> None:
    from approval_kernel.db.engine import create_tables, init_engine_from_url

    init_engine_from_url(config.settings.database_url, echo=False)
    create_tables()


def cmd_seed(config) -> int:
    from approval_config import compile_workflows
    from approval_kernel.db.engine import session_scope
    from approval_kernel.exceptions import ConfigCompilationError
    from approval_kernel.services.workflow_catalog import WorkflowCatalog

    try:
        definitions = compile_workflows(config)
    except ConfigCompilationError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    _connect(config)
    with session_scope() as session:
        created = WorkflowCatalog(session).seed_defaults(list(definitions))

    if created:
        print(f"  Seeded {created} workflow definition(s).")
    else:
        print("  Catalog already populated; nothing seeded.")
    return 0


def cmd_list_workflows(config, include_all: bool) -> int:
    from approval_kernel.db.engine import session_scope
    from approval_kernel.services.workflow_catalog import WorkflowCatalog

    _connect(config)
    with session_scope() as session:
        catalog = WorkflowCatalog(session)
        definitions = catalog.list_all() if include_all else catalog.list_active()

    if not definitions:
        print("  No workflow definitions.")
        return 0

    for d in definitions:
        app = d.applicability
        rtype = app.requisition_type.value if app.requisition_type else "ANY"
        low = app.min_amount if app.min_amount is not None else "-"
        high = app.max_amount if app.max_amount is not None else "-"
        flag = "active" if d.is_active else "inactive"
        print(f"  {d.name}  v{d.version}  [{flag}]  type={rtype}  amount={low}..{high}")
        for s in d.stages:
            esc = ""
            if s.escalation:
                esc = f"  escalate after {s.escalation.after_hours}h -> {s.escalation.escalate_to}"
            print(f"      {s.stage_number}. {s.name}  {s.approver.describe()}  {s.approval_type.value}{esc}")
    return 0


def cmd_run_scheduler(config, interval: float | None, directory_path: str) -> int:
    from approval_kernel.db.engine import get_session_factory
    from approval_kernel.services.approval_engine import ApprovalEngine
    from approval_kernel.services.escalation_scheduler import EscalationScheduler

    try:
        directory = _load_directory(directory_path)
    except FileNotFoundError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    settings = config.settings
    _connect(config)
    engine = ApprovalEngine(
        session_factory=get_session_factory(),
        directory=directory,
        strict_matching=settings.strict_workflow_matching,
        lock_timeout_seconds=settings.lock_timeout_seconds,
        max_conflict_retries=settings.max_conflict_retries,
    )
    scheduler = EscalationScheduler(
        engine,
        tick_interval_seconds=interval if interval is not None else settings.tick_interval_seconds,
        lock_timeout_seconds=settings.lock_timeout_seconds,
    )

    stopped = threading.Event()

    def _handle_signal(signum, frame):
        stopped.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    print("  Escalation scheduler running; Ctrl+C to stop.")
    scheduler.start()
    try:
        while not stopped.wait(timeout=1.0):
            if not scheduler.is_running:
                break
    finally:
        scheduler.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from approval_config import get_default_config
    from approval_kernel.logging_config import configure_logging

    configure_logging()
    try:
        config = get_default_config(args.config)
    except FileNotFoundError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    if args.command == "seed":
        return cmd_seed(config)
    if args.command == "list-workflows":
        return cmd_list_workflows(config, args.all)
    if args.command == "run-scheduler":
        return cmd_run_scheduler(config, args.interval, args.directory)
    return 2


if __name__ == "__main__":
    sys.exit(main())
