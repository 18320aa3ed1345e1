"""Registry CLI — command-line interface for namespace moderation.

Usage:
    python -m nsregistry.cli status
    python -m nsregistry.cli submit --prefix /origins/example.org
    python -m nsregistry.cli list --state pending
    python -m nsregistry.cli approve --id ns_0123456789ab
    python -m nsregistry.cli deny --id ns_0123456789ab
    python -m nsregistry.cli delete --id ns_0123456789ab
    python -m nsregistry.cli check-status --prefix /origins/example.org
    python -m nsregistry.cli check-config

The acting user is taken from NSREGISTRY_USER, falling back to the OS
login. Its role comes from the configured admin_users list.
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from nsregistry.config import RegistryConfig
from nsregistry.identity import ActorResolver
from nsregistry.models.actor import Action, Actor
from nsregistry.models.registration import RegistrationState, ServerType
from nsregistry.persistence.event_log import EventLog
from nsregistry.persistence.store import JsonFileRegistrationStore
from nsregistry.service import RegistryService, ServiceResult


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"


def _make_service(config: RegistryConfig) -> RegistryService:
    """Create a RegistryService with durable persistence."""
    db_path = config.db_location or DEFAULT_DATA / "registrations.json"
    log_path = config.event_log_location or DEFAULT_DATA / "events.jsonl"
    return RegistryService(
        config,
        store=JsonFileRegistrationStore(db_path),
        event_log=EventLog(storage_path=log_path),
    )


def _current_actor(config: RegistryConfig) -> Actor:
    user = os.environ.get("NSREGISTRY_USER") or getpass.getuser()
    return ActorResolver(config.admin_users).resolve(user)


def _report(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(args: argparse.Namespace, config: RegistryConfig) -> int:
    service = _make_service(config)
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_list(args: argparse.Namespace, config: RegistryConfig) -> int:
    service = _make_service(config)
    state = RegistrationState(args.state) if args.state else None
    server_type = ServerType(args.type) if args.type else None
    return _report(service.list_registrations(_current_actor(config), state, server_type))


def cmd_show(args: argparse.Namespace, config: RegistryConfig) -> int:
    service = _make_service(config)
    return _report(service.get_registration(_current_actor(config), args.id))


def cmd_submit(args: argparse.Namespace, config: RegistryConfig) -> int:
    service = _make_service(config)
    result = service.submit_registration(
        _current_actor(config),
        prefix=args.prefix,
        server_type=ServerType(args.type) if args.type else None,
        description=args.description,
        site_name=args.site_name,
        institution=args.institution,
        security_contact=args.security_contact,
    )
    return _report(result)


def cmd_moderate(args: argparse.Namespace, config: RegistryConfig) -> int:
    service = _make_service(config)
    result = service.moderate(
        _current_actor(config),
        Action(args.command),
        args.id,
        expected_version=args.expected_version,
    )
    return _report(result)


def cmd_check_status(args: argparse.Namespace, config: RegistryConfig) -> int:
    service = _make_service(config)
    return _report(service.check_namespace_status(args.prefix))


def cmd_check_config(args: argparse.Namespace, config: RegistryConfig) -> int:
    """Run configuration invariant checks."""
    errors = config.validate()
    if errors:
        for error in errors:
            print(f"Config error: {error}", file=sys.stderr)
        return 1
    print("Registry configuration OK")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nsregistry",
        description="Namespace registry — registration moderation CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show registry status")

    # list
    p_list = sub.add_parser("list", help="List registrations")
    p_list.add_argument("--state", choices=[s.value for s in RegistrationState])
    p_list.add_argument("--type", choices=[t.value for t in ServerType])

    # show
    p_show = sub.add_parser("show", help="Show one registration")
    p_show.add_argument("--id", required=True, help="Registration ID")

    # submit
    p_submit = sub.add_parser("submit", help="Request a namespace prefix")
    p_submit.add_argument("--prefix", required=True, help="Namespace prefix")
    p_submit.add_argument(
        "--type", choices=[t.value for t in ServerType],
        help="Server type (default: inferred from prefix)",
    )
    p_submit.add_argument("--description", default="")
    p_submit.add_argument("--site-name", default="")
    p_submit.add_argument("--institution", default="")
    p_submit.add_argument("--security-contact", default="")

    # approve / deny / delete
    for action, text in (
        (Action.APPROVE, "Approve a registration"),
        (Action.DENY, "Deny a registration"),
        (Action.DELETE, "Delete a pending or denied registration"),
    ):
        p_mod = sub.add_parser(action.value, help=text)
        p_mod.add_argument("--id", required=True, help="Registration ID")
        p_mod.add_argument(
            "--expected-version", type=int,
            help="Refuse if the registration changed since this version",
        )

    # check-status
    p_cs = sub.add_parser("check-status", help="Check whether a prefix is approved")
    p_cs.add_argument("--prefix", required=True, help="Namespace prefix")

    # check-config
    sub.add_parser("check-config", help="Validate registry configuration")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "status": cmd_status,
        "list": cmd_list,
        "show": cmd_show,
        "submit": cmd_submit,
        "approve": cmd_moderate,
        "deny": cmd_moderate,
        "delete": cmd_moderate,
        "check-status": cmd_check_status,
        "check-config": cmd_check_config,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        config = RegistryConfig.from_config_dir(args.config)
    except (OSError, ValueError) as e:
        print(f"Failed to load config: {e}", file=sys.stderr)
        return 1

    try:
        return handler(args, config)
    except (OSError, ValueError) as e:
        print(f"Failed to open registry data: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
