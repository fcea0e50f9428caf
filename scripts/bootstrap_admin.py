#!/usr/bin/env python3
"""Create the first administrator account, or promote an existing individual.

Usage:
    ADMIN_EMAIL=admin@adoptly.com.br ADMIN_PASSWORD='Adm1n!Segura' \
        DATA_DIR=/var/lib/adoptly python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --email admin@adoptly.com.br --name "Equipe Adoptly"

Environment Variables:
    ADMIN_EMAIL: Email for the admin account
    ADMIN_PASSWORD: Password for the admin account (must satisfy the password policy)
    DATA_DIR: Directory holding the persisted identity store; without it nothing survives the run
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def bootstrap_admin(email: str, password: str, name: str, dry_run: bool = False) -> dict:
    """Create or promote an admin account.

    Returns:
        dict with identity_id, email and status
        ('created', 'promoted', 'already_admin' or 'dry_run')
    """
    # imported late so the environment is settled before settings load
    from adoptly.service.runtime import get_runtime
    from adoptly.storage.models import IdentityKind, Role

    runtime = get_runtime()
    existing = runtime.auth.resolver.find_by_email(email)

    if existing:
        if existing.role == Role.ADMIN:
            return {"identity_id": existing.id, "email": email, "status": "already_admin"}
        if existing.kind != IdentityKind.INDIVIDUAL:
            raise ValueError(
                f"{email} belongs to a {existing.kind.value} account; only individuals can be promoted"
            )
        if dry_run:
            return {"identity_id": existing.id, "email": email, "status": "dry_run"}
        await runtime.auth.set_role(existing.id, Role.ADMIN)
        return {"identity_id": existing.id, "email": email, "status": "promoted"}

    if dry_run:
        return {"identity_id": None, "email": email, "status": "dry_run"}

    result = await runtime.auth.register_individual(
        name=name, email=email, password=password, role=Role.ADMIN
    )
    return {
        "identity_id": result.identity_id,
        "email": email,
        "status": "created",
        "token": result.token,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin account for Adoptly",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument("--name", default="Administrador", help="Display name for a new account")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)
    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    if not os.environ.get("DATA_DIR"):
        print("Note: DATA_DIR is not set; the account will not outlive this process")
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    from adoptly.service.errors import ServiceError

    try:
        result = asyncio.run(bootstrap_admin(args.email, args.password, args.name, args.dry_run))
    except ServiceError as exc:
        print(f"Error: {exc.message}")
        if exc.detail:
            print(f"       {exc.detail}")
        sys.exit(1)
    except ValueError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    status = result["status"]
    if status == "created":
        print(f"Admin account created: {result['email']} (id: {result['identity_id']})")
    elif status == "promoted":
        print(f"Promoted {result['email']} to admin (id: {result['identity_id']})")
    elif status == "already_admin":
        print(f"No changes needed: {result['email']} is already an admin.")
    else:
        print(f"[DRY RUN] Would set up admin account for {result['email']}")


if __name__ == "__main__":
    main()
