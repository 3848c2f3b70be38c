#!/usr/bin/env python3
"""
User Management Utility

Sign-in itself happens at the external identity provider. This script stands
in for the provider callback and covers account administration:
- Issue a session token for an identity profile
- Change the role of a user
"""

import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from api.auth import create_access_token
from catalog.database import MongoDBManager
from catalog.exceptions import LibraryError
from catalog.models import IdentityProfile, UserRole
from catalog.users import UserService
from utilities.config import config
from utilities.logger import setup_logging


def create_db_manager() -> MongoDBManager:
    return MongoDBManager(
        connection_url=config.mongodb_url,
        database_name=config.mongodb_database,
        server_selection_timeout_ms=config.server_selection_timeout_ms
    )


def parse_options(arguments):
    """Parse ``--key value`` pairs."""
    options = {}
    for flag, value in zip(arguments[::2], arguments[1::2]):
        if flag.startswith("--"):
            options[flag[2:].replace("-", "_")] = value
    return options


async def issue_token(options):
    """Find or create the user for a profile and print a session token."""
    print("\n🔑 ISSUING SESSION TOKEN")
    print("=" * 80)

    try:
        profile = IdentityProfile(**options)
    except ValidationError as e:
        print(f"❌ Invalid profile: {e}")
        return

    db_manager = create_db_manager()
    try:
        await db_manager.connect()
        users = UserService(db_manager)

        user = await users.find_or_create(profile)
        token, expires_at = create_access_token(str(user["_id"]), user["role"])

        print(f"👤 User:    {user['name']} <{user['email']}>")
        print(f"🆔 ID:      {user['_id']}")
        print(f"🎭 Role:    {user['role']}")
        print(f"⏰ Expires: {expires_at.isoformat()}")
        print()
        print(token)

    except (LibraryError, PyMongoError) as e:
        print(f"❌ Error issuing token: {e}")
    finally:
        await db_manager.disconnect()


async def promote(email: str, role: str):
    """Change the role of the user with the given email."""
    print(f"\n🎭 CHANGING ROLE")
    print(f"Email: {email}")
    print("=" * 80)

    db_manager = create_db_manager()
    try:
        await db_manager.connect()
        users = UserService(db_manager)

        user = await users.set_role(email, UserRole(role))
        print(f"✅ {user['name']} is now {user['role']}")

    except (LibraryError, PyMongoError) as e:
        print(f"❌ Error changing role: {e}")
    finally:
        await db_manager.disconnect()


async def main():
    """Main function."""
    if len(sys.argv) < 2:
        print("Usage: python manage_users.py [issue-token|promote] [options]")
        print()
        print("Commands:")
        print("  issue-token  - Sign in an identity profile and print a session token")
        print("  promote      - Change the role of a user (reader, author, admin)")
        print()
        print("Examples:")
        print("  python manage_users.py issue-token --external-id google-123 --email ada@example.com --name 'Ada Lovelace'")
        print("  python manage_users.py promote ada@example.com admin")
        sys.exit(1)

    command = sys.argv[1].lower()

    # Setup logging
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug
    )

    if command == "issue-token":
        options = parse_options(sys.argv[2:])
        missing = [name for name in ("external_id", "email", "name") if name not in options]
        if missing:
            print(f"❌ Error: missing options: {', '.join('--' + name.replace('_', '-') for name in missing)}")
            print("Usage: python manage_users.py issue-token --external-id <id> --email <email> --name <name> [--picture <url>]")
            sys.exit(1)
        await issue_token(options)
    elif command == "promote":
        roles = [role.value for role in UserRole]
        if len(sys.argv) < 4 or sys.argv[3] not in roles:
            print("❌ Error: email and role required for promote command")
            print(f"Usage: python manage_users.py promote <email> <{'|'.join(roles)}>")
            sys.exit(1)
        await promote(sys.argv[2], sys.argv[3])
    else:
        print(f"❌ Unknown command: {command}")
        print("Available commands: issue-token, promote")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
