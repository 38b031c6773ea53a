#!/usr/bin/env python3
"""KeyManager CLI.

Inspect and operate the KMS-backed signing keys owned by this key manager.
Settings are read from KEYMANAGER_* environment variables (or .env), and
every command starts by reconciling the keys held in the KMS.

Usage:
    keymanager list
    keymanager generate svid-1 --type EC_P256
    keymanager sign svid-1 --digest 9f86d081...
    keymanager prune
    keymanager --format json status

Exit Codes:
    0 - Success
    1 - Operation failed
    2 - Configuration error
    3 - Invalid arguments
"""

import argparse
import asyncio
import base64
import json
import sys
from typing import Any, Optional

from keymanager.config import load_settings
from keymanager.core.exceptions import ConfigurationError, KeyManagerError, ReconciliationError
from keymanager.core.key_manager import KeyManager
from keymanager.core.key_store import PublicKey
from keymanager.core.key_types import HashAlgorithm, KeyType, SigningOptions
from keymanager.core.logging import setup_logging


class Colors:
    """ANSI color codes for terminal output."""
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"
    RESET = "\033[0m"

    @classmethod
    def disable(cls):
        for attr in ["RED", "GREEN", "YELLOW", "CYAN", "BOLD", "RESET"]:
            setattr(cls, attr, "")


def colored(text: str, color: str) -> str:
    return f"{color}{text}{Colors.RESET}"


def public_key_to_dict(public_key: PublicKey) -> dict[str, Any]:
    return {
        "id": public_key.id,
        "type": public_key.type.value,
        "fingerprint": public_key.fingerprint,
        "pkix_data": base64.b64encode(public_key.pkix_data).decode("ascii"),
    }


def print_public_key(public_key: PublicKey) -> None:
    print(f"  {colored(public_key.id, Colors.BOLD)}")
    print(f"    Type:        {public_key.type.value}")
    print(f"    Fingerprint: {public_key.fingerprint}")


# =============================================================================
# Commands
# =============================================================================

async def cmd_list(manager: KeyManager, args) -> int:
    """List the public keys of all managed keys."""
    keys = sorted(manager.get_public_keys(), key=lambda k: k.id)

    if args.format == "json":
        print(json.dumps([public_key_to_dict(k) for k in keys], indent=2))
        return 0

    print(f"\n{colored('Managed Keys', Colors.BOLD + Colors.CYAN)} ({len(keys)} total)")
    print("=" * 60)
    for public_key in keys:
        print_public_key(public_key)
    return 0


async def cmd_generate(manager: KeyManager, args) -> int:
    """Generate (or rotate) a key."""
    public_key = await manager.generate_key(args.key_id, KeyType(args.type))

    if args.format == "json":
        print(json.dumps(public_key_to_dict(public_key), indent=2))
        return 0

    print(colored("✓ Key generated", Colors.GREEN))
    print_public_key(public_key)
    return 0


async def cmd_sign(manager: KeyManager, args) -> int:
    """Sign a hex-encoded digest."""
    try:
        digest = bytes.fromhex(args.digest)
    except ValueError:
        print(colored("Digest must be hex encoded", Colors.RED), file=sys.stderr)
        return 3

    options = SigningOptions(
        hash_algorithm=HashAlgorithm(args.hash) if args.hash else None,
        pss=args.pss,
    )
    signature = await manager.sign_data(args.key_id, digest, options)

    if args.format == "json":
        print(json.dumps({
            "key_id": args.key_id,
            "signature": base64.b64encode(signature).decode("ascii"),
        }, indent=2))
    else:
        print(signature.hex())
    return 0


async def cmd_prune(manager: KeyManager, args) -> int:
    """Delete orphaned and superseded KMS keys."""
    pruned = await manager.prune_orphaned_keys()

    if args.format == "json":
        print(json.dumps({"pruned": pruned, "remaining": sorted(manager.orphaned_keys)}, indent=2))
        return 0 if not manager.orphaned_keys else 1

    print(f"\n{colored('Scheduled for deletion:', Colors.BOLD)} {len(pruned)}")
    for kms_key_id in pruned:
        print(f"  {kms_key_id}")
    if manager.orphaned_keys:
        print(colored(f"⚠ {len(manager.orphaned_keys)} key(s) could not be deleted", Colors.YELLOW))
        return 1
    return 0


async def cmd_status(manager: KeyManager, args) -> int:
    """Show KMS connectivity and reconciliation results."""
    health = await manager.verify_health()
    report = manager.last_reconciliation
    if report is not None:
        health["reconciliation"] = {
            "reconciled": len(report.reconciled),
            "skipped": len(report.skipped),
            "failed": sorted(report.failures),
            "stale": len(report.stale),
        }

    if args.format == "json":
        print(json.dumps(health, indent=2))
        return 0 if health["healthy"] else 1

    status = colored("✓ HEALTHY", Colors.GREEN) if health["healthy"] else colored("✗ UNHEALTHY", Colors.RED)
    print(f"\n{colored('KeyManager Status', Colors.BOLD + Colors.CYAN)}")
    print("=" * 60)
    print(f"\nOverall: {status}")
    print(f"  Backend: {health.get('backend')}")
    print(f"  Entries: {health.get('entries', 0)}")
    print(f"  Orphaned keys: {health.get('orphaned_keys', 0)}")
    if "error" in health:
        print(f"  Error: {colored(health['error'], Colors.RED)}")
    if "reconciliation" in health:
        failed = health["reconciliation"]["failed"]
        print(f"  Reconciliation failures: {len(failed)}")
    return 0 if health["healthy"] else 1


COMMANDS = {
    "list": cmd_list,
    "generate": cmd_generate,
    "sign": cmd_sign,
    "prune": cmd_prune,
    "status": cmd_status,
}


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="keymanager",
        description="Manage KMS-backed signing keys",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show keys found in the KMS
  keymanager list

  # Create or rotate a key
  keymanager generate svid-1 --type EC_P256

  # Sign a SHA-256 digest
  keymanager sign svid-1 --digest $(printf data | sha256sum | cut -d' ' -f1)
        """
    )

    parser.add_argument("--no-color", action="store_true", help="Disable colored output")
    parser.add_argument("--format", choices=["text", "json"], default="text")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("list", help="List managed public keys")

    generate_parser = subparsers.add_parser("generate", help="Generate or rotate a key")
    generate_parser.add_argument("key_id", help="Logical key id")
    generate_parser.add_argument(
        "--type", "-t",
        choices=[t.value for t in KeyType if t not in (KeyType.UNSPECIFIED, KeyType.RSA_1024)],
        default=KeyType.EC_P256.value,
    )

    sign_parser = subparsers.add_parser("sign", help="Sign a digest")
    sign_parser.add_argument("key_id", help="Logical key id")
    sign_parser.add_argument("--digest", "-d", required=True, help="Hex encoded digest")
    sign_parser.add_argument("--hash", choices=[h.value for h in HashAlgorithm], help="Digest hash algorithm")
    sign_parser.add_argument("--pss", action="store_true", help="Use RSASSA-PSS (RSA keys only)")

    subparsers.add_parser("prune", help="Delete orphaned and superseded KMS keys")
    subparsers.add_parser("status", help="Show KMS health and reconciliation results")

    return parser


async def run(args, manager: Optional[KeyManager] = None) -> int:
    """Configure a key manager and dispatch one command."""
    manager = manager or KeyManager()

    try:
        settings = load_settings()
        setup_logging(json_output=settings.log_json, level=settings.log_level)
        await manager.configure(settings)
    except ConfigurationError as e:
        print(colored(f"Configuration error: {e}", Colors.RED), file=sys.stderr)
        return 2
    except ReconciliationError as e:
        print(colored(f"Reconciliation failed: {e}", Colors.RED), file=sys.stderr)
        for kms_key_id, error in sorted(e.report.failures.items()):
            print(f"  {kms_key_id}: {error}", file=sys.stderr)
        return 1
    except KeyManagerError as e:
        print(colored(f"Failed to reach KMS: {e}", Colors.RED), file=sys.stderr)
        return 1

    try:
        return await COMMANDS[args.command](manager, args)
    except (KeyManagerError, ValueError) as e:
        print(colored(f"✗ {e}", Colors.RED), file=sys.stderr)
        return 1
    finally:
        await manager.close()


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.no_color or not sys.stdout.isatty():
        Colors.disable()

    if not args.command:
        parser.print_help()
        return 0

    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
