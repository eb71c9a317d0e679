"""
Operator command line for the RBAC service.

    quicklink-rbac seed
    quicklink-rbac verify
    quicklink-rbac bootstrap-admin --principal-id root --email root@quicklink.example
    quicklink-rbac issue-token root
    quicklink-rbac check ops_admin merchantManagement suspend
    quicklink-rbac serve --port 8000
"""

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from typing import List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from quicklink_rbac.config import get_config, reload_config
from quicklink_rbac.config.jwt_config import get_jwt_settings
from quicklink_rbac.config.logging import setup_logging
from quicklink_rbac.core.audit import InMemoryAuditSink
from quicklink_rbac.core.errors import RBACError
from quicklink_rbac.core.models import PrincipalDraft
from quicklink_rbac.core.service import RBACService
from quicklink_rbac.core.system_roles import SYSTEM_ROLE_IDS
from quicklink_rbac.core.types import MODULE_ACTIONS, SUPER_ADMIN_LEVEL
from quicklink_rbac.middleware.auth import JWTAuthenticator

logger = logging.getLogger(__name__)

console = Console()

ROOT_ID = "cli-root"
PROBE_ID = "cli-probe"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="quicklink-rbac", description="QuickLink Pay RBAC operator tool")
    parser.add_argument("--environment", "-e", help="Configuration environment (default: $ENVIRONMENT)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log at DEBUG level")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("seed", help="Seed the system roles")
    sub.add_parser("verify", help="Seed and list the system roles with their levels")

    bootstrap = sub.add_parser("bootstrap-admin", help="Create the root super admin and print a token")
    bootstrap.add_argument("--principal-id", required=True)
    bootstrap.add_argument("--email", required=True)
    bootstrap.add_argument("--display-name", default="Super Admin")

    token = sub.add_parser("issue-token", help="Issue an access token for a principal id")
    token.add_argument("principal_id")
    token.add_argument("--minutes", type=int, help="Token lifetime in minutes")

    check = sub.add_parser("check", help="Evaluate a role's permissions")
    check.add_argument("role_id")
    check.add_argument("resource", nargs="?", help="Resource module or document path")
    check.add_argument("action", nargs="?")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    serve.add_argument("--reload", action="store_true")

    return parser


def _service() -> RBACService:
    return RBACService.from_config(get_config(), audit_sink=InMemoryAuditSink())


async def cmd_seed(args) -> int:
    service = _service()
    result = await service.roles.seed_system_roles()
    console.print(f"System roles {result.message}: {result.count}", style="green" if result.seeded else "yellow")
    return 0


async def cmd_verify(args) -> int:
    service = _service()
    await service.roles.seed_system_roles()
    roles = service.roles.verify_system_roles()

    table = Table(show_header=True, header_style="bold magenta", title="System roles")
    table.add_column("Level", justify="right")
    table.add_column("Role")
    table.add_column("Display name")
    table.add_column("Manages users")
    table.add_column("Quota", justify="right")
    for role in roles:
        table.add_row(
            str(role.level),
            role.role_id,
            role.display_name,
            "yes" if role.can_manage_users else "no",
            "-" if role.max_sub_users is None else str(role.max_sub_users),
        )
    console.print(table)

    missing = sorted(SYSTEM_ROLE_IDS - {r.role_id for r in roles})
    if missing:
        console.print(f"Missing system roles: {', '.join(missing)}", style="bold red")
        return 1
    console.print(f"All {len(roles)} system roles present", style="bold green")
    return 0


async def cmd_bootstrap_admin(args) -> int:
    service = _service()
    await service.roles.seed_system_roles()
    principal = await service.subordinates.bootstrap_root(PrincipalDraft(
        principal_id=args.principal_id,
        email=args.email,
        display_name=args.display_name,
        role_id="super_admin",
    ))
    token = JWTAuthenticator(get_jwt_settings()).create_access_token(principal.principal_id)
    console.print(Panel.fit(
        f"[bold]{principal.display_name}[/bold] ({principal.principal_id})\n"
        f"access level: {principal.access_level.value}\n"
        f"subordinate quota: {principal.max_sub_users}\n\n{token}",
        title="Root principal",
    ))
    return 0


async def cmd_issue_token(args) -> int:
    expires = timedelta(minutes=args.minutes) if args.minutes else None
    print(JWTAuthenticator(get_jwt_settings()).create_access_token(args.principal_id, expires))
    return 0


async def cmd_check(args) -> int:
    service = _service()
    await service.roles.seed_system_roles()
    role = service.roles.get_role(args.role_id)

    await service.subordinates.bootstrap_root(PrincipalDraft(ROOT_ID, "root@cli.local", "CLI root", "super_admin"))
    probe_id = ROOT_ID
    if role.level != SUPER_ADMIN_LEVEL:
        probe = await service.subordinates.create_subordinate(
            ROOT_ID, PrincipalDraft(PROBE_ID, "probe@cli.local", "CLI probe", role.role_id)
        )
        probe_id = probe.principal_id
    ctx = service.load_context(probe_id)

    if args.resource:
        if not args.action:
            console.print("An action is required with a resource", style="red")
            return 2
        allowed = service.evaluator.can(ctx, args.resource, args.action)
        decision = service.enforcement.authorize(probe_id, args.resource, args.action)
        console.print(f"evaluator: {'allow' if allowed else 'deny'}")
        console.print(f"enforcement: {'allow' if decision.granted else 'deny'} ({decision.reason})")
        return 0 if allowed == decision.granted else 1

    table = Table(show_header=True, header_style="bold magenta", title=f"{role.display_name} (level {role.level})")
    table.add_column("Module")
    table.add_column("Granted")
    table.add_column("Denied", style="dim")
    granted = service.evaluator.effective_permissions(ctx)
    for module, actions in MODULE_ACTIONS.items():
        allowed = granted.get(module.value, [])
        denied = sorted(a.value for a in actions if a.value not in allowed)
        table.add_row(module.value, ", ".join(allowed), ", ".join(denied))
    console.print(table)
    return 0


def cmd_serve(args) -> int:
    import uvicorn

    server = get_config().server
    uvicorn.run(
        "quicklink_rbac.main:create_app",
        factory=True,
        host=args.host or server.host,
        port=args.port or server.port,
        reload=args.reload or server.reload,
        access_log=server.access_log,
    )
    return 0


COMMANDS = {
    "seed": cmd_seed,
    "verify": cmd_verify,
    "bootstrap-admin": cmd_bootstrap_admin,
    "issue-token": cmd_issue_token,
    "check": cmd_check,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config = reload_config(args.environment) if args.environment else get_config()
    setup_logging(
        log_level="DEBUG" if args.verbose else "WARNING",
        log_format="text",
        log_file=config.logging.file,
        enable_access_log=False,
    )

    if args.command == "serve":
        return cmd_serve(args)
    try:
        return asyncio.run(COMMANDS[args.command](args))
    except RBACError as e:
        console.print(f"{e.kind}: {e.message}", style="bold red")
        console.print(e.hint, style="yellow")
        return 1


if __name__ == "__main__":
    sys.exit(main())
