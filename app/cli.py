"""CLI commands for the dance booking auth service."""

import argparse
import getpass
import json
import sys
from datetime import datetime

from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models.user import User, UserRole
from app.services.auth.errors import AuthError, StoreUnavailable
from app.services.auth.local_provider import hash_password
from app.services.auth.login_tokens import ALL_ROLES, LoginTokenService, build_login_url
from app.services.auth.session_cleanup import SessionCleanupService


def create_admin(email: str, password: str | None = None) -> None:
    """Create an admin user."""
    db: Session = SessionLocal()

    try:
        # Check if email already exists
        existing = db.query(User).filter(User.email == email.lower()).first()
        if existing:
            print(f"Error: User with email '{email}' already exists.")
            sys.exit(1)

        # Get password if not provided
        if not password:
            password = getpass.getpass("Password: ")
            password_confirm = getpass.getpass("Confirm password: ")
            if password != password_confirm:
                print("Error: Passwords do not match.")
                sys.exit(1)

        if len(password) < 8:
            print("Error: Password must be at least 8 characters.")
            sys.exit(1)

        user = User(
            email=email.lower(),
            password_hash=hash_password(password),
            role=UserRole.ADMIN,
            is_verified=True,
        )
        db.add(user)
        db.commit()

        print(f"Admin user created successfully: {email}")

    finally:
        db.close()


def cleanup_sessions() -> None:
    """Run one session cleanup sweep (for cron)."""
    db: Session = SessionLocal()

    try:
        report = SessionCleanupService(db).run()
    except StoreUnavailable:
        print("Error: Session store unavailable.")
        sys.exit(1)
    finally:
        db.close()

    print(
        f"Session cleanup completed: {report.expired} expired, "
        f"{report.purged} purged, {report.orphaned} orphaned"
    )


def generate_login_token(
    name: str = "CLI Generated Token",
    purpose: str = "cli",
    max_uses: int | None = None,
    expires_at: str | None = None,
    roles: str | None = None,
    metadata: str | None = None,
) -> None:
    """Issue a login token and print its login URL."""
    try:
        expiry = datetime.fromisoformat(expires_at) if expires_at else None
        extra = json.loads(metadata) if metadata else None
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    allowed_roles = [r.strip().upper() for r in roles.split(",")] if roles else list(ALL_ROLES)

    db: Session = SessionLocal()

    try:
        login_token = LoginTokenService(db).issue_token(
            None,
            name=name,
            purpose=purpose,
            max_uses=max_uses,
            expires_at=expiry,
            allowed_roles=allowed_roles,
            metadata=extra,
        )
    except AuthError as e:
        print(f"Error generating token: {e.message}")
        sys.exit(1)
    finally:
        db.close()

    print("Login token generated successfully")
    print(f"ID: {login_token.id}")
    print(f"Name: {login_token.name}")
    print(f"Purpose: {login_token.purpose}")
    print(f"Token: {login_token.token}")
    print(f"Login URL: {build_login_url(login_token.token)}")
    print(f"Max Uses: {login_token.max_uses or 'Unlimited'}")
    print(f"Expires: {login_token.expires_at.isoformat() if login_token.expires_at else 'Never'}")
    print(f"Allowed Roles: {', '.join(login_token.allowed_roles)}")


def schedule_cleanup() -> None:
    """Enqueue the first run of the recurring cleanup actor."""
    from app.workers.session_cleanup_worker import cleanup_sessions

    cleanup_sessions.send()
    print("Session cleanup scheduled")


def main():
    parser = argparse.ArgumentParser(description="Dance booking auth CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # create-admin command
    create_admin_parser = subparsers.add_parser(
        "create-admin", help="Create an admin user"
    )
    create_admin_parser.add_argument(
        "--email", required=True, help="Admin email address"
    )
    create_admin_parser.add_argument(
        "--password", help="Admin password (will prompt if not provided)"
    )

    # cleanup-sessions command
    subparsers.add_parser(
        "cleanup-sessions", help="Expire, purge and orphan-sweep sessions once"
    )

    # generate-login-token command
    token_parser = subparsers.add_parser(
        "generate-login-token", help="Issue a login token and print its URL"
    )
    token_parser.add_argument("--name", default="CLI Generated Token", help="Token name")
    token_parser.add_argument("--purpose", default="cli", help="Token purpose")
    token_parser.add_argument("--max-uses", type=int, help="Maximum number of uses")
    token_parser.add_argument("--expires-at", help="Expiry (ISO 8601)")
    token_parser.add_argument(
        "--roles", help="Comma-separated allowed roles (default: all)"
    )
    token_parser.add_argument("--metadata", help="JSON metadata")

    # schedule-cleanup command
    subparsers.add_parser(
        "schedule-cleanup", help="Start the recurring session cleanup job"
    )

    args = parser.parse_args()

    if args.command == "create-admin":
        create_admin(args.email, args.password)
    elif args.command == "cleanup-sessions":
        cleanup_sessions()
    elif args.command == "generate-login-token":
        generate_login_token(
            name=args.name,
            purpose=args.purpose,
            max_uses=args.max_uses,
            expires_at=args.expires_at,
            roles=args.roles,
            metadata=args.metadata,
        )
    elif args.command == "schedule-cleanup":
        schedule_cleanup()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
