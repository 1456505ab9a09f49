"""Command line tools for phi-guard key and role setup."""

import argparse
import sys
from typing import List, Optional

from phi_guard.config import get_settings
from phi_guard.repositories.database import SQLAlchemyRoleRepository, create_session_factory
from phi_guard.security.phi_encryption import PHICipher, create_search_hash, generate_key
from phi_guard.services.role_catalog import seed_healthcare_roles
from phi_guard.utils.exceptions import KeyConfigurationError, PersistenceError


def cmd_generate_key(args: argparse.Namespace) -> int:
    """Print a new 256-bit PHI encryption key."""
    print(generate_key())
    return 0


def cmd_verify_key(args: argparse.Namespace) -> int:
    """Check that a key parses and survives an encrypt/decrypt round trip."""
    hex_key = args.key or get_settings().phi_encryption_key
    try:
        cipher = PHICipher.from_hex(hex_key, version=get_settings().ciphertext_version)
    except KeyConfigurationError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    if not cipher.self_test():
        print("✗ Encryption self-test failed", file=sys.stderr)
        return 1

    print(f"✓ Key valid (ciphertext version v{cipher.version})")
    return 0


def cmd_search_hash(args: argparse.Namespace) -> int:
    """Print the search hash of a value."""
    digest = create_search_hash(args.value)
    if digest is None:
        print("✗ Cannot hash an empty value", file=sys.stderr)
        return 1
    print(digest)
    return 0


def cmd_seed_roles(args: argparse.Namespace) -> int:
    """Write the default healthcare roles to the database."""
    database_url = args.database_url or get_settings().database_url
    try:
        repository = SQLAlchemyRoleRepository(create_session_factory(database_url))
        roles = seed_healthcare_roles(repository)
    except PersistenceError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1

    for role in roles:
        print(f"  - {role.name} ({len(role.permissions)} permissions)")
    print(f"✓ Seeded {len(roles)} roles")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="phi-guard", description="PHI encryption and access control tools"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    generate_parser = subparsers.add_parser("generate-key", help="Generate an encryption key")
    generate_parser.set_defaults(handler=cmd_generate_key)

    verify_parser = subparsers.add_parser("verify-key", help="Validate an encryption key")
    verify_parser.add_argument(
        "--key", help="Hex key to check (defaults to PHI_ENCRYPTION_KEY)"
    )
    verify_parser.set_defaults(handler=cmd_verify_key)

    hash_parser = subparsers.add_parser("search-hash", help="Compute a search hash")
    hash_parser.add_argument("value", help="Value to hash")
    hash_parser.set_defaults(handler=cmd_search_hash)

    seed_parser = subparsers.add_parser("seed-roles", help="Seed default healthcare roles")
    seed_parser.add_argument(
        "--database-url", help="Database URL (defaults to DATABASE_URL)"
    )
    seed_parser.set_defaults(handler=cmd_seed_roles)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
