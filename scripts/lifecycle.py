"""Operator CLI for service brokers, instances and keys.

This module serves as a CLI wrapper around app.core.lifecycle services:

    python -m scripts.lifecycle register-broker --name db --url https://broker.local --username u --password p
    python -m scripts.lifecycle create-instance --name orders-db --broker db --service-id pg --plan-id small
    python -m scripts.lifecycle show <guid>
"""
from __future__ import annotations
import argparse
import datetime
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.config import load_settings
from app.core.feature_flags import AccessPolicy
from app.core.lifecycle.exceptions import LifecycleError, UnknownResourceError
from app.core.lifecycle.manager import OperationHandle
from app.core.services import LifecycleServices, build_services
from scripts import audit


def _parse_parameters(raw: Optional[str], parser: argparse.ArgumentParser):
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        parser.error(f"--parameters must be JSON: {e}")
    if not isinstance(value, dict):
        parser.error("--parameters must be a JSON object")
    return value


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, default=str))


def _report(services: LifecycleServices, handle: OperationHandle) -> None:
    if handle.done:
        handle.wait()
    try:
        _print_json(services.manager.get_resource_with_operation(handle.resource_guid))
    except UnknownResourceError:
        print(f"{handle.resource_guid} deleted")


def _resolve_broker(services: LifecycleServices, ref: str) -> str:
    broker = services.repository.find_broker_by_name(ref)
    if broker is not None:
        return broker.guid
    return services.repository.get_broker(ref).guid


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Service lifecycle helper")
    parser.add_argument("--operator", default=os.environ.get("LIFECYCLE_OPERATOR", "cli"),
                        help="Operator identifier for audit logs (default: cli)")

    sub = parser.add_subparsers(dest="cmd")

    rb = sub.add_parser("register-broker")
    rb.add_argument("--name", required=True)
    rb.add_argument("--url", required=True)
    rb.add_argument("--username", required=True)
    rb.add_argument("--password", default=os.environ.get("BROKER_AUTH_PASSWORD"))

    ci = sub.add_parser("create-instance")
    ci.add_argument("--name", required=True)
    ci.add_argument("--broker", required=True, help="Broker name or guid")
    ci.add_argument("--service-id", required=True)
    ci.add_argument("--plan-id", required=True)
    ci.add_argument("--parameters", help="JSON object passed to the broker")
    ci.add_argument("--description", default="")
    ci.add_argument("--admin", action="store_true", help="Skip admin-skippable feature flags")

    ui = sub.add_parser("update-instance")
    ui.add_argument("guid")
    ui.add_argument("--name")
    ui.add_argument("--plan-id")
    ui.add_argument("--parameters", help="JSON object passed to the broker")
    ui.add_argument("--description", default="")

    di = sub.add_parser("delete-instance")
    di.add_argument("guid")

    ck = sub.add_parser("create-key")
    ck.add_argument("--name", required=True)
    ck.add_argument("--instance", required=True, help="Service instance guid")
    ck.add_argument("--parameters", help="JSON object passed to the broker")
    ck.add_argument("--description", default="")

    dk = sub.add_parser("delete-key")
    dk.add_argument("guid")

    sh = sub.add_parser("show")
    sh.add_argument("guid")

    sf = sub.add_parser("set-flag")
    sf.add_argument("name")
    state = sf.add_mutually_exclusive_group(required=True)
    state.add_argument("--enable", dest="enabled", action="store_true")
    state.add_argument("--disable", dest="enabled", action="store_false")
    sf.add_argument("--error-message")

    st = sub.add_parser("stuck")
    st.add_argument("--minutes", type=int, help="Age threshold (default: STUCK_OPERATION_MINUTES)")

    sub.add_parser("verify-audit")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 0

    if args.cmd == "verify-audit":
        total, valid = audit.verify_audit_log()
        print(f"Audit log: {valid}/{total} events with valid signatures")
        return 0 if total == valid else 1

    if args.cmd == "register-broker" and not args.password:
        parser.error("Missing broker password (--password or BROKER_AUTH_PASSWORD)")

    parameters = _parse_parameters(getattr(args, "parameters", None), parser)

    cfg = load_settings()
    services = build_services(cfg)
    manager = services.manager

    try:
        if args.cmd == "register-broker":
            broker = services.repository.register_broker(args.name, args.url, args.username, args.password)
            print(broker.guid)
        elif args.cmd == "create-instance":
            handle = manager.create_service_instance(
                args.name,
                _resolve_broker(services, args.broker),
                args.service_id,
                args.plan_id,
                parameters,
                description=args.description,
                actor=args.operator,
                policy=AccessPolicy(admin_override=args.admin),
            )
            _report(services, handle)
        elif args.cmd == "update-instance":
            handle = manager.update_service_instance(
                args.guid,
                name=args.name,
                plan_id=args.plan_id,
                parameters=parameters,
                description=args.description,
                actor=args.operator,
            )
            _report(services, handle)
        elif args.cmd == "delete-instance":
            _report(services, manager.delete_service_instance(args.guid, actor=args.operator))
        elif args.cmd == "create-key":
            handle = manager.create_service_key(
                args.name,
                args.instance,
                parameters,
                description=args.description,
                actor=args.operator,
            )
            _report(services, handle)
        elif args.cmd == "delete-key":
            _report(services, manager.delete_service_key(args.guid, actor=args.operator))
        elif args.cmd == "show":
            _print_json(manager.get_resource_with_operation(args.guid))
        elif args.cmd == "set-flag":
            flag = services.flags.set(args.name, args.enabled, args.error_message)
            audit.safe_log_service_event(
                "audit.feature_flag.update",
                args.name,
                resource_name=args.name,
                actor=args.operator,
                details=flag.to_dict(),
            )
            _print_json(flag.to_dict())
        elif args.cmd == "stuck":
            minutes = args.minutes or cfg.stuck_operation_minutes
            stuck = services.store.stuck_operations(datetime.timedelta(minutes=minutes))
            for operation in stuck:
                print(f"{operation.resource_guid}\t{operation.type.value}\tsince {operation.updated_at}")
            print(f"{len(stuck)} operation(s) in progress for more than {minutes} minute(s)")
    except LifecycleError as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        return 1
    finally:
        # Let queued async jobs finish before the process exits
        services.shutdown(wait=True)

    return 0


if __name__ == "__main__":
    sys.exit(main())
