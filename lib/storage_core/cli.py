"""
Storage Core - Operator CLI
===========================
Maintenance jobs for the credential store.

Usage:
    storage-core generate-key
    storage-core rotate-keys --to v2
    storage-core refresh-expiring --within-minutes 60

Configuration comes from the environment (a .env file is loaded first).
Job results are printed as JSON; the exit code is 1 when any record failed.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from datetime import timedelta
from typing import List, Optional

from dotenv import load_dotenv

from .config.constants import DEFAULT_REFRESH_WINDOW_SECONDS, SHARED_VERSION
from .config.credentials import TokenCipher, generate_encryption_key
from .config.key_rotation import rotate_encryption_keys
from .config.settings import StorageSettings
from .db.credential_store import CredentialStore
from .errors import TokenCipherError
from .providers.storage.factory import StorageProviderFactory
from .providers.storage.token_refresh import refresh_expiring_tokens

logger = logging.getLogger("storage_core.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="storage-core",
        description="Storage connection maintenance",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {SHARED_VERSION}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("generate-key", help="Print a new 256-bit token encryption key (hex)")

    rotate = subparsers.add_parser("rotate-keys", help="Re-encrypt stored tokens with a key version")
    rotate.add_argument("--to", dest="version", required=True, help="Target key version, e.g. v2")

    refresh = subparsers.add_parser("refresh-expiring", help="Refresh tokens that expire soon")
    refresh.add_argument(
        "--within-minutes",
        type=int,
        default=DEFAULT_REFRESH_WINDOW_SECONDS // 60,
        help="Refresh tokens expiring within this many minutes (default: %(default)s)",
    )
    return parser


async def _rotate_keys(settings: StorageSettings, version: str) -> int:
    store = CredentialStore.from_settings(settings)
    try:
        stats = await rotate_encryption_keys(store, TokenCipher(settings), version)
    finally:
        await store.close()
    print(json.dumps(stats.to_dict(), indent=2))
    return 1 if stats.failed else 0


async def _refresh_expiring(settings: StorageSettings, within_minutes: int) -> int:
    store = CredentialStore.from_settings(settings)
    factory = StorageProviderFactory(store, TokenCipher(settings), settings)
    try:
        stats = await refresh_expiring_tokens(factory, store, timedelta(minutes=within_minutes))
    finally:
        await store.close()
    print(json.dumps(stats.to_dict(), indent=2))
    return 1 if stats.failed else 0


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("STORAGE_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args = build_parser().parse_args(argv)

    if args.command == "generate-key":
        print(generate_encryption_key())
        return 0

    try:
        settings = StorageSettings.from_env()
        if args.command == "rotate-keys":
            return asyncio.run(_rotate_keys(settings, args.version))
        return asyncio.run(_refresh_expiring(settings, args.within_minutes))
    except TokenCipherError as e:
        logger.error("Configuration error: %s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
